"""
End-to-end wizard run against a live Flask server.

Mark: @pytest.mark.e2e
Run with: pytest -m e2e
"""
import os
import time
import zipfile

import pytest

from hytale_admin import extensions
from hytale_admin.client.projection import WizardProjection

pytestmark = pytest.mark.e2e

ADMIN_PASSWORD = 'e2e-password-long-enough'


# ── Helpers ───────────────────────────────────────────────────────────────────

def place_server_files(cfg):
    os.makedirs(cfg.SERVER_DIR, exist_ok=True)
    with open(cfg.SERVER_JAR, 'wb') as f:
        f.write(b'\xca\xfe\xba\xbe' * 256)
    with zipfile.ZipFile(cfg.ASSETS_ZIP, 'w') as zf:
        zf.writestr('Common/Icons/logo.png', b'p' * 2048)
        zf.writestr('Server/manifest.json', b'{"name": "Assets"}')


def wait_for(fn, timeout=10.0, interval=0.1):
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        value = fn()
        if value:
            return value
        time.sleep(interval)
    raise AssertionError('condition not met in time')


# ── Full wizard ───────────────────────────────────────────────────────────────

def test_wizard_happy_path(api, e2e_cfg):
    wizard = WizardProjection(api)
    assert wizard.mount()['currentStepId'] == 'system-check'

    assert wizard.submit('system-check', {})['success']
    assert wizard.submit('language', {'language': 'en'})['success']

    short = wizard.submit('admin-account', {'username': 'admin', 'password': 'short',
                                            'confirmPassword': 'short'})
    assert short['error'] == 'password too short'
    assert wizard.current_step_id == 'admin-account'
    assert wizard.submit('admin-account', {'username': 'admin', 'password': ADMIN_PASSWORD,
                                           'confirmPassword': ADMIN_PASSWORD})['success']

    # Official download: device-code grant, then the files land on disk.
    wizard.download.select('official')
    started = api.download_start('official')
    assert started['auth']['deviceCode']
    place_server_files(e2e_cfg)
    assert wizard.download.on_verified(api.download_verify())
    assert wizard.submit('download-method', {'method': 'official'})['success']
    assert wizard.download.complete

    # Asset extraction streamed over the event stream.
    wizard.extraction.start()
    assert api.assets_extract()['success']
    wizard.follow_extraction()
    assert wizard.extraction.percent == 100.0
    assert wizard.submit('assets-extract', {'extract': True})['success']

    # Server account: the login command goes out, the console answers.
    grant = api.server_auth_start()
    assert grant['success']
    extensions.append_console_line('[AuthCommand] Visit: https://oauth.accounts.hytale.com/oauth2/device/verify')
    extensions.append_console_line('[AuthCommand] Enter code: E2EC-0DE5')
    wait_for(lambda: wizard.poll_server_auth()['state'] == 'pending')
    assert wizard.server_auth.auth['userCode'] == 'E2EC-0DE5'
    extensions.append_console_line('Authentication successful! Mode: OAUTH_DEVICE')
    wait_for(lambda: wizard.poll_server_auth()['authenticated'])
    assert wizard.server_auth.state == 'persistence'
    assert wizard.submit('server-auth', {})['success']

    assert wizard.submit('server-config', {'name': 'E2E Realm', 'maxPlayers': 8})['success']
    for step_id in ('security-settings', 'automation', 'performance', 'plugin', 'integrations'):
        assert wizard.skip(step_id)['success']
    assert wizard.submit('network', {'accessMode': 'lan'})['success']
    assert wizard.submit('summary', {})['success']

    done = wizard.complete()
    assert done['success'] is True
    assert done['redirectUrl'] == '/login'
    assert wizard.setup_complete

    # The wizard is locked and the new admin can log in.
    assert api.save_step('language', {'language': 'de'})['error'] == 'Setup is already complete'
    assert api.login('admin', ADMIN_PASSWORD)['success'] is True
    assert os.path.exists(e2e_cfg.SERVER_CONFIG_FILE)


def test_server_info_and_logs(api):
    assert api.server_info()['gameContainerName'] == 'hytale-server'
    logs = api.server_logs(20)
    assert logs['booted'] is True
