from flask import Blueprint, current_app, jsonify, request, session

from ..services.auth import authenticate

bp = Blueprint('auth', __name__, url_prefix='/api/auth')


@bp.route('/login', methods=['POST'])
def login():
    cfg = current_app.hytale_config
    data = request.get_json(silent=True) or {}
    username = (data.get('username') or '').strip()
    password = data.get('password') or ''
    user = authenticate(username, password, cfg)
    if user is None:
        return jsonify({'success': False, 'error': 'Invalid credentials'}), 401
    session.clear()
    session['logged_in'] = True
    session['username'] = username
    session['role'] = user.get('role', 'admin')
    return jsonify({'success': True, 'username': username, 'role': session['role']})


@bp.route('/logout', methods=['POST'])
def logout():
    session.clear()
    return jsonify({'success': True})
