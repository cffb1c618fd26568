"""
Shared pytest fixtures.

Key design decisions:
- TestConfig class with all paths pinned to a tmp dir (avoids class-level os.environ.get timing issues).
- TESTING env var prevents the console bridge thread from starting.
- Docker SDK is patched so no daemon is needed.
- System checks are stubbed on the runtime; they probe the real host otherwise.
"""
import os
from unittest.mock import MagicMock, patch

import pytest


def _make_test_config_class(root):
    """Return a Config-compatible class with all paths pinned to *root*."""
    _root = str(root)

    class TestConfig:
        SECRET_KEY = 'pytest-secret'
        SESSION_COOKIE_HTTPONLY = True
        PERMANENT_SESSION_LIFETIME = 3600
        MAX_CONTENT_LENGTH = 16 * 1024 * 1024

        DATA_DIR = os.path.join(_root, 'data')
        SERVER_DIR = os.path.join(_root, 'server')
        ASSETS_DIR = os.path.join(_root, 'assets')
        DOWNLOADER_DIR = os.path.join(_root, 'downloader')
        SERVER_CONTAINER = 'hytale-server'
        LOG_FILE = None
        SERVER_PORT = 5520
        MANAGER_PORT = 18080

        USE_HYTALE_DOWNLOADER = True
        SERVER_JAR_URL = ''
        ASSETS_URL = ''

        SETUP_SESSION_ID = 'default'
        DEV_MODE = False
        RESTART_AFTER_SETUP = False
        RESTART_DELAY_SECONDS = 0

        SUPPORTED_LANGUAGES = ('en', 'de', 'pt_br')
        USERNAME_MIN_LENGTH = 3
        USERNAME_MAX_LENGTH = 32
        PASSWORD_MIN_LENGTH = 12
        SERVER_NAME_MIN_LENGTH = 3
        SERVER_NAME_MAX_LENGTH = 64
        MOTD_MAX_LENGTH = 256
        MAX_PLAYERS_LIMIT = 100

        AUTH_GRANT_TTL_SECONDS = 900
        AUTH_POLL_INTERVAL_SECONDS = 0

        MAX_CONSOLE_LINES = 500
        CONSOLE_BACKOFF_BASE = 1.0
        CONSOLE_BACKOFF_CAP = 30.0
        CONSOLE_MAX_RECONNECTS = 5
        CONSOLE_POLL_INTERVAL = 5.0
        CONSOLE_POLL_LINES = 200

        MIN_RAM_GB = 4
        RECOMMENDED_RAM_GB = 8
        MIN_DISK_GB = 10
        AUTH_HOST = 'oauth.accounts.hytale.com'

        @property
        def SETUP_DIR(self):
            return os.path.join(self.DATA_DIR, 'setup')

        @property
        def USERS_FILE(self):
            return os.path.join(self.DATA_DIR, 'users.json')

        @property
        def PANEL_CONFIG_FILE(self):
            return os.path.join(self.DATA_DIR, 'panel-config.json')

        @property
        def MAIN_CONFIG_FILE(self):
            return os.path.join(self.DATA_DIR, 'config.json')

        @property
        def SCHEDULER_CONFIG_FILE(self):
            return os.path.join(self.DATA_DIR, 'scheduler.json')

        @property
        def SERVER_CONFIG_FILE(self):
            return os.path.join(self.SERVER_DIR, 'config.json')

        @property
        def SERVER_JAR(self):
            return os.path.join(self.SERVER_DIR, 'HytaleServer.jar')

        @property
        def ASSETS_ZIP(self):
            return os.path.join(self.SERVER_DIR, 'Assets.zip')

        @property
        def DOWNLOADER_CREDENTIALS_FILE(self):
            return os.path.join(self.DOWNLOADER_DIR, '.hytale-downloader-credentials.json')

        @property
        def CONSOLE_FIFO(self):
            return os.path.join(self.SERVER_DIR, '.server-input')

    return TestConfig


def passing_checks():
    return {
        'checks': [
            {'id': 'docker_socket', 'name': 'Docker Socket', 'status': 'pass',
             'message': 'Connected', 'required': True, 'details': None},
            {'id': 'ram', 'name': 'RAM', 'status': 'pass', 'message': '16.0 GB total',
             'required': True, 'details': None, 'totalGb': 16.0},
        ],
        'canProceed': True,
        'warnings': 0,
        'ramTotalGb': 16.0,
    }


def _make_mock_docker():
    """Return a pre-configured docker.from_env() mock."""
    container = MagicMock()
    container.status = 'running'
    container.logs.return_value = b'[Server] Starting\nHytale Server Booted!\n'
    container.attrs = {'State': {'StartedAt': ''}}
    client = MagicMock()
    client.containers.get.return_value = container
    return client, container


def write_server_files(cfg):
    os.makedirs(cfg.SERVER_DIR, exist_ok=True)
    for path in (cfg.SERVER_JAR, cfg.ASSETS_ZIP):
        with open(path, 'wb') as f:
            f.write(b'\x00' * 2048)


@pytest.fixture(autouse=True)
def _clean_globals():
    """Console buffer and container status cache are process-wide."""
    from hytale_admin import extensions
    from hytale_admin.services import server
    with extensions.console_lock:
        extensions.console_buffer.clear()
        extensions.console_seq = 0
    server._status_cache.clear()
    yield
    server._status_cache.clear()


@pytest.fixture()
def config_class(tmp_path):
    return _make_test_config_class(tmp_path)


@pytest.fixture()
def cfg(config_class):
    return config_class()


@pytest.fixture()
def runtime(cfg):
    from hytale_admin.services.runtime import SetupRuntime
    rt = SetupRuntime(cfg, restart_fn=None, follow_downloads=False)
    rt.run_system_checks = passing_checks
    return rt


@pytest.fixture()
def server_files(cfg):
    """Non-empty HytaleServer.jar and Assets.zip in SERVER_DIR."""
    write_server_files(cfg)
    return cfg


@pytest.fixture()
def app(config_class, runtime):
    """
    Flask test application.

    Background threads are suppressed via TESTING env var.
    """
    os.environ['TESTING'] = '1'
    from hytale_admin import create_app
    flask_app = create_app(config_class=config_class, runtime=runtime)
    # The runtime was built with its own cfg instance; keep one view of the config.
    flask_app.hytale_config = runtime.cfg
    flask_app.config['TESTING'] = True
    return flask_app


@pytest.fixture()
def client(app):
    """Flask test client (unauthenticated)."""
    return app.test_client()


@pytest.fixture()
def auth_client(app):
    """Flask test client pre-authenticated as admin."""
    c = app.test_client()
    with c.session_transaction() as sess:
        sess['logged_in'] = True
        sess['username'] = 'admin'
    return c


@pytest.fixture()
def mock_docker():
    """Patch docker.from_env for a single test, returns (client_mock, container_mock)."""
    client, container = _make_mock_docker()
    with patch('docker.from_env', return_value=client):
        yield client, container
