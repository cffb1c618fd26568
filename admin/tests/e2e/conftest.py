"""
Live-server E2E conftest.

Starts a real Flask server on a random port in a background thread,
then tears it down after the session. The wizard is driven over HTTP
with SetupApiClient.

Usage:
    pytest -m e2e
"""
import os
import shutil
import socket
import tempfile
import threading
import time
from unittest.mock import MagicMock, patch

import pytest

from hytale_admin.client.api import SetupApiClient


def _make_mock_docker():
    container = MagicMock()
    container.status = 'running'
    container.logs.return_value = b'[HytaleServer] Hytale Server Booted!\n'
    container.attrs = {'State': {'StartedAt': ''}}
    client = MagicMock()
    client.containers.get.return_value = container
    return client, container


def _free_port():
    sock = socket.socket()
    sock.bind(('127.0.0.1', 0))
    port = sock.getsockname()[1]
    sock.close()
    return port


@pytest.fixture(scope='session')
def live_app():
    """Session-scoped live Flask server for E2E tests."""
    root = tempfile.mkdtemp(prefix='hytale_e2e_')
    os.environ['TESTING'] = '1'

    from hytale_admin import create_app
    from hytale_admin.config import Config
    from hytale_admin.services.runtime import SetupRuntime

    class E2EConfig(Config):
        SECRET_KEY = 'e2e-key'
        DATA_DIR = os.path.join(root, 'data')
        SERVER_DIR = os.path.join(root, 'server')
        ASSETS_DIR = os.path.join(root, 'assets')
        DOWNLOADER_DIR = os.path.join(root, 'downloader')
        USE_HYTALE_DOWNLOADER = True
        DEV_MODE = False
        RESTART_AFTER_SETUP = False
        AUTH_POLL_INTERVAL_SECONDS = 0

    cfg = E2EConfig()
    runtime = SetupRuntime(cfg, restart_fn=None, follow_downloads=False)
    runtime.run_system_checks = lambda: {
        'checks': [{'id': 'docker_socket', 'status': 'pass', 'required': True}],
        'canProceed': True, 'warnings': 0, 'ramTotalGb': 8.0,
    }

    mock_client, _ = _make_mock_docker()
    patchers = [
        patch('docker.from_env', return_value=mock_client),
        # No game server console FIFO in the test environment.
        patch('hytale_admin.services.server_auth.screen_send', return_value=True),
    ]
    for p in patchers:
        p.start()

    flask_app = create_app(config_class=E2EConfig, runtime=runtime)
    flask_app.hytale_config = cfg
    flask_app.config['TESTING'] = True

    port = _free_port()
    server_thread = threading.Thread(
        target=lambda: flask_app.run(host='127.0.0.1', port=port, use_reloader=False, threaded=True),
        daemon=True,
    )
    server_thread.start()
    time.sleep(0.5)  # give server time to start

    yield f'http://127.0.0.1:{port}', cfg

    for p in patchers:
        p.stop()
    shutil.rmtree(root, ignore_errors=True)


@pytest.fixture(scope='session')
def base_url(live_app):
    url, _ = live_app
    return url


@pytest.fixture(scope='session')
def e2e_cfg(live_app):
    _, cfg = live_app
    return cfg


@pytest.fixture()
def api(base_url):
    return SetupApiClient(base_url)
