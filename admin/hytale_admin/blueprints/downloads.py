from flask import Blueprint, current_app, jsonify, request

from ..decorators import setup_incomplete_required
from ..services.assets import start_custom_download, start_extraction, verify_download
from ..sse import sse_response

bp = Blueprint('downloads', __name__, url_prefix='/api/setup')


# ── Downloader credentials (device-code bridge #1) ───────────────────────────

@bp.route('/download/auth/start', methods=['POST'])
@setup_incomplete_required
def download_auth_start():
    grant = current_app.setup_runtime.downloader.start()
    return jsonify({'success': True, **grant})


@bp.route('/download/auth/status')
def download_auth_status():
    return jsonify(current_app.setup_runtime.downloader.poll())


@bp.route('/download/auth/retry', methods=['POST'])
@setup_incomplete_required
def download_auth_retry():
    grant = current_app.setup_runtime.downloader.retry()
    return jsonify({'success': True, **grant})


# ── Download ─────────────────────────────────────────────────────────────────

@bp.route('/download/start', methods=['POST'])
@setup_incomplete_required
def download_start():
    rt = current_app.setup_runtime
    data = request.get_json(silent=True) or {}
    method = data.get('method')
    if method == 'official':
        grant = rt.downloader.start()
        return jsonify({'success': True, 'message': 'Download in progress via game container',
                        'auth': grant})
    if method == 'custom':
        start_custom_download(current_app.hytale_config, rt.download)
        return jsonify({'success': True, 'message': 'Download started'})
    if method == 'manual':
        return jsonify({'success': True})
    return jsonify({'success': False, 'error': 'Invalid download method'}), 400


@bp.route('/download/verify')
def download_verify():
    return jsonify(verify_download(current_app.hytale_config))


@bp.route('/download/progress')
def download_progress():
    return sse_response(current_app.setup_runtime.download.events())


@bp.route('/download/status')
def download_status():
    return jsonify(current_app.setup_runtime.download.snapshot())


# ── Extraction ───────────────────────────────────────────────────────────────

@bp.route('/assets/extract', methods=['POST'])
@setup_incomplete_required
def assets_extract():
    start_extraction(current_app.hytale_config, current_app.setup_runtime.extraction)
    return jsonify({'success': True, 'message': 'Asset extraction started'})


@bp.route('/assets/progress')
def assets_progress():
    return sse_response(current_app.setup_runtime.extraction.events())


@bp.route('/assets/status')
def assets_status():
    return jsonify(current_app.setup_runtime.extraction.snapshot())
