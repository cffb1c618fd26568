"""HTTP client for the setup API, used by the wizard projection and the e2e tests."""
import logging

import requests

from .sse import iter_sse_events

log = logging.getLogger(__name__)


class SetupApiError(Exception):
    def __init__(self, status_code, body):
        super().__init__(f'HTTP {status_code}: {body}')
        self.status_code = status_code
        self.body = body


class SetupApiClient:
    def __init__(self, base_url, session=None, timeout=10, stream_timeout=60):
        self.base_url = base_url.rstrip('/')
        self.session = session or requests.Session()
        self.timeout = timeout
        # The server sends a keepalive every 15s, so a silent stream is a dead one.
        self.stream_timeout = stream_timeout

    def _url(self, path):
        return f'{self.base_url}/{path.lstrip("/")}'

    def _handle(self, r):
        try:
            body = r.json()
        except ValueError:
            body = {'error': r.text}
        # 4xx bodies carry {success: false, error} and are answers, not failures.
        if r.status_code >= 500:
            raise SetupApiError(r.status_code, body)
        return body

    def get(self, path, **params):
        return self._handle(self.session.get(self._url(path), params=params or None, timeout=self.timeout))

    def post(self, path, payload=None):
        return self._handle(self.session.post(self._url(path), json=payload, timeout=self.timeout))

    def stream(self, path, keepalives=False):
        """Yield events from an event-stream endpoint until the server closes it.

        With *keepalives* set, each keepalive comment is yielded as ``None``.
        """
        with self.session.get(self._url(path), stream=True,
                              timeout=(self.timeout, self.stream_timeout)) as r:
            if r.status_code >= 400:
                raise SetupApiError(r.status_code, r.text)
            yield from iter_sse_events(r.iter_lines(decode_unicode=True), keepalives=keepalives)

    # ── Sequencer ────────────────────────────────────────────────────────────

    def get_status(self):
        return self.get('api/setup/status')

    def check(self):
        return self.get('api/setup/check')

    def system_check(self):
        return self.get('api/setup/system-check')

    def run_check(self, check_id):
        return self.get(f'api/setup/system-check/{check_id}')

    def save_step(self, step_id, payload):
        return self.post(f'api/setup/step/{step_id}', payload)

    def skip_step(self, step_id):
        return self.post(f'api/setup/step/{step_id}/skip')

    def back(self, step_id=None):
        return self.post('api/setup/back', {'stepId': step_id} if step_id else {})

    def complete(self):
        return self.post('api/setup/complete')

    # ── Downloads and extraction ─────────────────────────────────────────────

    def download_auth_start(self):
        return self.post('api/setup/download/auth/start')

    def download_auth_status(self):
        return self.get('api/setup/download/auth/status')

    def download_auth_retry(self):
        return self.post('api/setup/download/auth/retry')

    def download_start(self, method):
        return self.post('api/setup/download/start', {'method': method})

    def download_verify(self):
        return self.get('api/setup/download/verify')

    def download_status(self):
        return self.get('api/setup/download/status')

    def download_progress(self):
        return self.stream('api/setup/download/progress')

    def assets_extract(self):
        return self.post('api/setup/assets/extract')

    def assets_status(self):
        return self.get('api/setup/assets/status')

    def assets_progress(self):
        return self.stream('api/setup/assets/progress')

    # ── Game server ──────────────────────────────────────────────────────────

    def server_start_first(self):
        return self.post('api/setup/server/start-first')

    def server_console(self):
        return self.stream('api/setup/server/console', keepalives=True)

    def server_logs(self, lines=100):
        return self.get('api/setup/server/logs', lines=lines)

    def server_auth_start(self):
        return self.post('api/setup/auth/server/start')

    def server_auth_status(self):
        return self.get('api/setup/auth/server/status')

    def server_auth_retry(self):
        return self.post('api/setup/auth/server/retry')

    def auth_persistence(self):
        return self.post('api/setup/auth/persistence')

    def auth_status(self):
        return self.get('api/setup/auth/status')

    # ── Misc ─────────────────────────────────────────────────────────────────

    def detect_ip(self):
        return self.get('api/setup/detect-ip')

    def server_info(self):
        return self.get('api/setup/server-info')

    def login(self, username, password):
        return self.post('api/auth/login', {'username': username, 'password': password})

    def logout(self):
        return self.post('api/auth/logout')
