from flask import Blueprint, current_app, jsonify, request

from ..decorators import login_required
from ..extensions import console_lines_since
from ..services.screen import screen_send

bp = Blueprint('console', __name__)


@bp.route('/api/console/lines')
@login_required
def api_console_lines():
    try:
        since = int(request.args.get('since', 0))
    except ValueError:
        since = 0
    lines, total = console_lines_since(since)
    return jsonify({'lines': lines, 'total': total})


@bp.route('/api/console/send', methods=['POST'])
@login_required
def api_console_send():
    cfg = current_app.hytale_config
    data = request.get_json(silent=True) or {}
    cmd = (data.get('cmd') or '').strip()
    if not cmd:
        return jsonify({'ok': False, 'error': 'Empty command'})
    if not screen_send(cmd, cfg):
        return jsonify({'ok': False, 'error': 'Server console is not available'}), 503
    return jsonify({'ok': True})
