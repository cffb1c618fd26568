import logging
import os

from flask import Flask, jsonify, request

from .config import Config
from .errors import SetupError

log = logging.getLogger(__name__)


def create_app(config_class=Config, runtime=None):
    app = Flask(__name__)
    cfg = config_class()
    app.secret_key = cfg.SECRET_KEY
    app.config['SESSION_COOKIE_HTTPONLY'] = cfg.SESSION_COOKIE_HTTPONLY
    app.config['SESSION_COOKIE_SAMESITE'] = getattr(cfg, 'SESSION_COOKIE_SAMESITE', 'Lax')
    app.config['SESSION_COOKIE_SECURE']   = getattr(cfg, 'SESSION_COOKIE_SECURE', False)
    app.config['PERMANENT_SESSION_LIFETIME'] = cfg.PERMANENT_SESSION_LIFETIME
    app.config['MAX_CONTENT_LENGTH'] = cfg.MAX_CONTENT_LENGTH

    # Store config and the setup runtime on the app for routes and threads
    app.hytale_config = cfg
    if runtime is None:
        from .services.runtime import SetupRuntime
        runtime = SetupRuntime(cfg)
    app.setup_runtime = runtime

    from .blueprints.setup     import bp as setup_bp
    from .blueprints.downloads import bp as downloads_bp
    from .blueprints.server    import bp as server_bp
    from .blueprints.auth      import bp as auth_bp
    from .blueprints.api       import bp as api_bp
    from .blueprints.console   import bp as console_bp

    app.register_blueprint(setup_bp)
    app.register_blueprint(downloads_bp)
    app.register_blueprint(server_bp)
    app.register_blueprint(auth_bp)
    app.register_blueprint(api_bp)
    app.register_blueprint(console_bp)

    # Security headers on every response
    @app.after_request
    def _security_headers(response):
        response.headers.setdefault('X-Content-Type-Options', 'nosniff')
        response.headers.setdefault('X-Frame-Options', 'DENY')
        response.headers.setdefault('Referrer-Policy', 'same-origin')
        return response

    # Error handlers
    @app.errorhandler(SetupError)
    def setup_error(e):
        return jsonify(e.to_dict()), e.status_code

    @app.errorhandler(404)
    def not_found(e):
        return jsonify({'error': 'Not found', 'status': 404}), 404

    @app.errorhandler(405)
    def not_allowed(e):
        return jsonify({'error': 'Method not allowed', 'status': 405}), 405

    @app.errorhandler(413)
    def too_large(e):
        return jsonify({'error': 'Request too large', 'status': 413}), 413

    @app.errorhandler(500)
    def server_error(e):
        log.error('Unhandled error on %s %s', request.method, request.path)
        return jsonify({'success': False, 'error': 'Internal server error', 'status': 500}), 500

    # Start background threads only once.
    # Skip in TESTING mode (CI/pytest) to avoid Docker calls and thread leaks.
    # Guard against werkzeug reloader double-start in dev.
    if not os.environ.get('TESTING') and (
        not app.debug or os.environ.get('WERKZEUG_RUN_MAIN') == 'true'
    ):
        runtime.start_background()

    return app
