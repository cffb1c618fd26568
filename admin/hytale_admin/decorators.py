import functools

from flask import current_app, jsonify, session

from .errors import SetupLockedError


def login_required(f):
    @functools.wraps(f)
    def decorated(*args, **kwargs):
        if not session.get('logged_in'):
            return jsonify({'error': 'Authentication required', 'status': 401}), 401
        return f(*args, **kwargs)
    return decorated


def setup_incomplete_required(f):
    """Reject setup mutations once the wizard has been completed."""
    @functools.wraps(f)
    def decorated(*args, **kwargs):
        if current_app.setup_runtime.sequencer.is_complete():
            raise SetupLockedError()
        return f(*args, **kwargs)
    return decorated


def dev_only(f):
    @functools.wraps(f)
    def decorated(*args, **kwargs):
        if not current_app.hytale_config.DEV_MODE:
            return jsonify({'success': False, 'error': 'Only available in development mode'}), 403
        return f(*args, **kwargs)
    return decorated
