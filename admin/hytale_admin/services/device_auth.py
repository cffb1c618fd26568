"""Device-code authorization bridge.

A :class:`DeviceCodeBridge` runs one OAuth device-code grant at a time against
a provider. Providers own the credential domain (the downloader, the game
server's own account) and implement three calls:

``begin()``
    Kick off a new grant. May return the prompt right away or leave it to
    be discovered by ``check()``. Raises :class:`ConfigurationRequired` when
    the deployment cannot run this flow at all.
``check()``
    Return what the provider currently knows about the grant: ``userCode``,
    ``verificationUrl``, ``verificationUrlDirect``, ``authenticated``.
    Raises :class:`TransientAuthError` for hiccups worth polling through and
    :class:`AuthRejected` when the grant is dead.
``persist()``
    Make the obtained credentials durable. Called once per grant.

Providers may also define ``describe()`` returning extra read-only fields
for the status payload.

States: idle -> requesting -> pending -> authenticated | expired | error.
``retry()`` discards the grant from any state and starts a new one. Expiry
is decided here from the bridge's own clock, never by the client.
"""
import logging
import re
import secrets
import threading
import time

from ..errors import AuthRejected, ConfigurationRequired, SetupError, TransientAuthError
from .setup_store import utc_now_iso

log = logging.getLogger(__name__)

IDLE = 'idle'
REQUESTING = 'requesting'
PENDING = 'pending'
AUTHENTICATED = 'authenticated'
EXPIRED = 'expired'
ERROR = 'error'

OAUTH_URL_RE = re.compile(r'(https://oauth\.accounts\.hytale\.com/[^\s\]]+)')
VISIT_URL_RE = re.compile(r'(?:Open|Visit|Go to)[:\s]+?(https://[^\s\]]+)', re.IGNORECASE)
USER_CODE_RES = (
    re.compile(r'user_code=([A-Za-z0-9-]{4,12})'),
    re.compile(r'(?:enter\s+code|user_code|code)[:\s=]+([A-Za-z0-9]{4,8}(?:-[A-Za-z0-9]{4})?)', re.IGNORECASE),
    re.compile(r'\[([A-Za-z0-9]{8})\]'),
)


def parse_device_prompt(text):
    """Pull the verification URL(s) and user code out of tool output.

    The last occurrence wins so a re-issued prompt replaces an older one.
    """
    found = {}
    urls = OAUTH_URL_RE.findall(text) or VISIT_URL_RE.findall(text)
    for url in urls:
        if 'user_code=' in url:
            found['verificationUrlDirect'] = url
        else:
            found['verificationUrl'] = url
    if 'verificationUrlDirect' in found and 'verificationUrl' not in found:
        found['verificationUrl'] = found['verificationUrlDirect'].split('?', 1)[0]
    for pattern in USER_CODE_RES:
        codes = pattern.findall(text)
        if codes:
            found['userCode'] = codes[-1].upper()
            break
    return found


class DeviceCodeBridge:
    def __init__(self, name, provider, ttl_seconds=900, poll_interval=3, clock=time.monotonic):
        self.name = name
        self.provider = provider
        self.ttl_seconds = ttl_seconds
        self.poll_interval = poll_interval
        self._clock = clock
        self._lock = threading.RLock()
        self._reset()

    def _reset(self):
        self.state = IDLE
        self.grant = None
        self.expires_at = None
        self.last_poll = None
        self.error = None
        self.error_kind = None
        self.instructions = None
        self.warning = None
        self.authenticated_at = None
        self.persist_result = None

    # ── Transitions ──────────────────────────────────────────────────────────

    def start(self):
        """Begin a grant. Idempotent while one is in flight or already authenticated."""
        with self._lock:
            if self.state in (REQUESTING, PENDING, AUTHENTICATED):
                return self.snapshot()
            return self._request()

    def retry(self):
        with self._lock:
            old = (self.grant or {}).get('deviceCode')
            log.info('%s auth retry, discarding grant %s in state %s', self.name, old, self.state)
            return self._request()

    def _request(self):
        self._reset()
        self.state = REQUESTING
        self.grant = {
            'deviceCode': secrets.token_urlsafe(16),
            'userCode': None,
            'verificationUrl': None,
            'verificationUrlDirect': None,
        }
        self.expires_at = self._clock() + self.ttl_seconds
        try:
            prompt = self.provider.begin() or {}
        except ConfigurationRequired as exc:
            self._fail(exc, 'configuration-required')
            raise
        except TransientAuthError as exc:
            self.warning = exc.message
            log.warning('%s auth start hiccup: %s', self.name, exc.message)
            return self.snapshot()
        except SetupError as exc:
            self._fail(exc, 'provider-rejected')
            raise
        self._absorb(prompt)
        log.info('%s auth requested, grant %s', self.name, self.grant['deviceCode'])
        return self.snapshot()

    def poll(self):
        with self._lock:
            if self.state in (IDLE, AUTHENTICATED, EXPIRED, ERROR):
                return self.snapshot()
            now = self._clock()
            if now >= self.expires_at:
                self.state = EXPIRED
                log.info('%s auth grant %s expired', self.name, self.grant['deviceCode'])
                return self.snapshot()
            if self.last_poll is not None and now - self.last_poll < self.poll_interval:
                return self.snapshot()
            self.last_poll = now

            try:
                observed = self.provider.check() or {}
            except TransientAuthError as exc:
                self.warning = exc.message
                log.warning('%s auth poll hiccup: %s', self.name, exc.message)
                return self.snapshot()
            except ConfigurationRequired as exc:
                self._fail(exc, 'configuration-required')
                return self.snapshot()
            except AuthRejected as exc:
                self._fail(exc, 'provider-rejected')
                return self.snapshot()

            self.warning = None
            self._absorb(observed)
            if observed.get('authenticated'):
                self._authenticated()
            return self.snapshot()

    def _absorb(self, info):
        for key in ('userCode', 'verificationUrl', 'verificationUrlDirect'):
            if info.get(key):
                self.grant[key] = info[key]
        if self.state == REQUESTING and self.grant['userCode']:
            self.state = PENDING

    def _authenticated(self):
        self.state = AUTHENTICATED
        self.authenticated_at = utc_now_iso()
        log.info('%s auth grant %s authenticated', self.name, self.grant['deviceCode'])
        try:
            self.persist_result = self.provider.persist() or {}
        except SetupError as exc:
            log.warning('%s credential persistence failed: %s', self.name, exc.message)
            self.persist_result = {'persistError': exc.message}

    def _fail(self, exc, kind):
        self.state = ERROR
        self.error = exc.message
        self.error_kind = kind
        self.instructions = getattr(exc, 'instructions', None)
        log.warning('%s auth error (%s): %s', self.name, kind, exc.message)

    # ── Read side ────────────────────────────────────────────────────────────

    def expires_in(self):
        if self.expires_at is None:
            return 0
        return max(0, int(round(self.expires_at - self._clock())))

    def snapshot(self):
        with self._lock:
            grant = self.grant or {}
            data = {
                'state': self.state,
                'authenticated': self.state == AUTHENTICATED,
                'expired': self.state == EXPIRED,
                'deviceCode': grant.get('deviceCode'),
                'userCode': grant.get('userCode'),
                'verificationUrl': grant.get('verificationUrl'),
                'verificationUrlDirect': grant.get('verificationUrlDirect'),
                'expiresIn': self.expires_in() if self.state in (REQUESTING, PENDING) else 0,
                'pollIntervalSeconds': self.poll_interval,
                'authenticatedAt': self.authenticated_at,
            }
            if self.error:
                data['error'] = self.error
                data['errorKind'] = self.error_kind
            if self.error_kind == 'configuration-required':
                data['needsEnvConfig'] = True
                data['instructions'] = list(self.instructions or [])
            if self.warning:
                data['warning'] = self.warning
            if self.persist_result:
                data.update(self.persist_result)
            describe = getattr(self.provider, 'describe', None)
            if describe is not None:
                data.update(describe())
            return data
