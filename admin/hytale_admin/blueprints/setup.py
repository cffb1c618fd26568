import ipaddress
import socket

import psutil
from flask import Blueprint, current_app, jsonify, request

from ..decorators import dev_only
from ..services.system_check import run_single_check

bp = Blueprint('setup', __name__, url_prefix='/api/setup')


def _result(result):
    return jsonify(result), (200 if result.get('success') else 400)


@bp.route('/status')
def status():
    return jsonify(current_app.setup_runtime.sequencer.get_status())


@bp.route('/check')
def check():
    return jsonify({'setupComplete': current_app.setup_runtime.sequencer.is_complete()})


@bp.route('/system-check')
def system_check():
    return jsonify(current_app.setup_runtime.run_system_checks())


@bp.route('/system-check/<check_id>')
def single_system_check(check_id):
    result = run_single_check(check_id, current_app.hytale_config)
    if result is None:
        return jsonify({'error': 'Check not found',
                        'message': f'No system check found with ID: {check_id}'}), 404
    return jsonify(result)


@bp.route('/step/<step_id>', methods=['POST'])
def save_step(step_id):
    payload = request.get_json(silent=True)
    return _result(current_app.setup_runtime.sequencer.save_step(step_id, payload))


@bp.route('/admin', methods=['POST'])
def create_admin():
    """Shortcut for the admin-account step; ``confirmPassword`` is optional here."""
    payload = request.get_json(silent=True)
    if isinstance(payload, dict):
        payload = dict(payload)
        payload.setdefault('confirmPassword', payload.get('password'))
    return _result(current_app.setup_runtime.sequencer.save_step('admin-account', payload))


@bp.route('/step/<step_id>/skip', methods=['POST'])
def skip_step(step_id):
    return _result(current_app.setup_runtime.sequencer.skip_step(step_id))


@bp.route('/back', methods=['POST'])
def back():
    data = request.get_json(silent=True) or {}
    return _result(current_app.setup_runtime.sequencer.go_back(data.get('stepId')))


@bp.route('/complete', methods=['POST'])
def complete():
    return _result(current_app.setup_runtime.sequencer.complete_setup())


@bp.route('/reset', methods=['POST'])
@dev_only
def reset():
    return _result(current_app.setup_runtime.sequencer.reset())


@bp.route('/skip', methods=['POST'])
@dev_only
def skip_setup():
    return _result(current_app.setup_runtime.sequencer.force_complete())


def _private_ipv4():
    for addrs in psutil.net_if_addrs().values():
        for addr in addrs:
            if addr.family != socket.AF_INET:
                continue
            ip = ipaddress.ip_address(addr.address)
            if ip.is_private and not ip.is_loopback and not ip.is_link_local:
                return addr.address
    return None


@bp.route('/detect-ip')
def detect_ip():
    cfg = current_app.hytale_config
    ip = _private_ipv4()
    if not ip:
        forwarded = request.headers.get('X-Forwarded-For', '').split(',')[0].strip()
        if forwarded and not forwarded.startswith(('127.', '::')):
            ip = forwarded
    return jsonify({
        'ip': ip,
        'port': cfg.MANAGER_PORT,
        'panelUrl': f'http://{ip or "localhost"}:{cfg.MANAGER_PORT}',
        'serverPort': cfg.SERVER_PORT,
        'interfaces': sorted(psutil.net_if_addrs()),
    })


@bp.route('/server-info')
def server_info():
    cfg = current_app.hytale_config
    return jsonify({
        'managerPort': cfg.MANAGER_PORT,
        'serverPort': cfg.SERVER_PORT,
        'gameContainerName': cfg.SERVER_CONTAINER,
        'serverPath': cfg.SERVER_DIR,
        'dataPath': cfg.DATA_DIR,
    })
