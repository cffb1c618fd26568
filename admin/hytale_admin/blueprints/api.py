from flask import Blueprint, current_app, jsonify

from ..decorators import login_required
from ..services.server import get_server_status

bp = Blueprint('api', __name__)


@bp.route('/api/status')
@login_required
def api_status():
    cfg = current_app.hytale_config
    status = get_server_status(cfg)
    status['setupComplete'] = current_app.setup_runtime.sequencer.is_complete()
    return jsonify(status)
