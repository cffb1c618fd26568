"""Setup-time game server endpoints: first boot, live console, server account auth."""
import logging
import os

from flask import Blueprint, current_app, jsonify, request

from .. import extensions
from ..decorators import setup_incomplete_required
from ..services.console import derive_flags, read_recent_lines, start_first
from ..services.server_auth import summarize_auth_lines
from ..sse import sse_response

log = logging.getLogger(__name__)

bp = Blueprint('server', __name__, url_prefix='/api/setup')


@bp.route('/server/start-first', methods=['POST'])
@setup_incomplete_required
def server_start_first():
    rt = current_app.setup_runtime
    try:
        result = start_first(current_app.hytale_config, rt.console)
    except Exception as exc:
        log.exception('First start of the game server failed')
        return jsonify({'success': False, 'error': 'Failed to start the game server',
                        'detail': str(exc)}), 500
    rt.console.start()
    return jsonify(result)


@bp.route('/server/console')
def server_console():
    return sse_response(current_app.setup_runtime.console.events())


@bp.route('/server/logs')
def server_logs():
    """Stateless fallback for clients whose console stream keeps dropping."""
    cfg = current_app.hytale_config
    try:
        count = max(1, min(int(request.args.get('lines', 100)), 1000))
    except ValueError:
        count = 100
    try:
        lines = read_recent_lines(cfg, count)
    except Exception as exc:
        log.warning('Reading server logs failed: %s', exc)
        lines = list(extensions.console_buffer)[-count:]
    flags = derive_flags(lines)
    return jsonify({'lines': lines, 'booted': flags['booted'], 'authRequired': flags['authRequired']})


# ── Game server account (device-code bridge #2) ──────────────────────────────

@bp.route('/auth/server/start', methods=['POST'])
@setup_incomplete_required
def server_auth_start():
    grant = current_app.setup_runtime.server_auth.start()
    return jsonify({'success': True, **grant})


@bp.route('/auth/server/status')
def server_auth_status():
    return jsonify(current_app.setup_runtime.server_auth.poll())


@bp.route('/auth/server/retry', methods=['POST'])
@setup_incomplete_required
def server_auth_retry():
    grant = current_app.setup_runtime.server_auth.retry()
    return jsonify({'success': True, **grant})


@bp.route('/auth/persistence', methods=['POST'])
@setup_incomplete_required
def auth_persistence():
    result = current_app.setup_runtime.server_auth_provider.request_persistence()
    return jsonify({'success': True, **result})


@bp.route('/auth/status')
def auth_status():
    cfg = current_app.hytale_config
    rt = current_app.setup_runtime
    try:
        lines = read_recent_lines(cfg, 500)
    except Exception as exc:
        log.warning('Reading server logs failed: %s', exc)
        lines = list(extensions.console_buffer)
    flags = summarize_auth_lines(lines)
    downloader_ok = (rt.downloader.snapshot()['authenticated']
                     or os.path.exists(cfg.DOWNLOADER_CREDENTIALS_FILE))
    return jsonify({
        'downloaderAuth': {'authenticated': downloader_ok},
        'serverAuth': {
            'authenticated': flags['authenticated'] or rt.server_auth.snapshot()['authenticated'],
            'persistent': flags['persistent'] or rt.server_auth_provider.persistence_confirmed(),
        },
        'machineId': {'generated': flags['machineId']},
    })
