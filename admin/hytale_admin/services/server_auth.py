"""Game-server account linkage through the server's own ``/auth`` console commands."""
import logging

from .. import extensions
from ..errors import AuthRejected, SetupError, TransientAuthError
from .device_auth import parse_device_prompt
from .screen import is_server_running, screen_send

log = logging.getLogger(__name__)

LOGIN_COMMAND = '/auth login device'
PERSIST_COMMAND = '/auth persistence Encrypted'

AUTH_SUCCESS_MARKERS = (
    'Authentication successful! Mode:',
    'Authentication successful! Use',
    'Connection Auth: Authenticated',
    'Successfully created game session',
    'Token Source: OAuth',
)
AUTH_FAILED_MARKERS = ('Authentication failed', 'Device code expired', 'authorization_declined')
PERSISTENCE_MARKERS = (
    'Credential storage changed to: Encrypted',
    'Swapped credential store to: EncryptedAuthCredentialStoreProvider',
    'credential store to: Encrypted',
)
MACHINE_ID_MARKERS = ('Machine ID', 'machine-id', 'MachineId')


def _last_index(lines, markers):
    idx = -1
    for i, line in enumerate(lines):
        if any(m in line for m in markers):
            idx = i
    return idx


def summarize_auth_lines(lines):
    """Derive server auth flags from log lines. The newest relevant line wins."""
    success = _last_index(lines, AUTH_SUCCESS_MARKERS)
    failed = _last_index(lines, AUTH_FAILED_MARKERS)
    authenticated = success >= 0 and success > failed
    return {
        'authenticated': authenticated,
        'rejected': failed > success,
        'persistent': _last_index(lines, PERSISTENCE_MARKERS) >= 0,
        'machineId': _last_index(lines, MACHINE_ID_MARKERS) >= 0,
    }


class ServerAuthProvider:
    """Device-code provider for the game server account.

    Sends the login command to the server console and watches the console
    buffer for the prompt and the outcome. Only lines written after the
    command went out are considered.
    """

    def __init__(self, cfg):
        self.cfg = cfg
        self._since_seq = None
        self._persist_seq = None
        self._sent = False

    def _lines(self, since):
        lines, _ = extensions.console_lines_since(since)
        return lines

    def begin(self):
        if not is_server_running(self.cfg):
            raise SetupError('Game server is not running. Start it first.')
        with extensions.console_lock:
            self._since_seq = extensions.console_seq
        self._persist_seq = None
        self._sent = False
        self._send_login()
        return {}

    def _send_login(self):
        if not screen_send(LOGIN_COMMAND, self.cfg):
            raise TransientAuthError('Could not reach the server console, retrying')
        self._sent = True
        log.info('Sent %s to the server console', LOGIN_COMMAND)

    def check(self):
        if self._since_seq is None:
            raise TransientAuthError('Login command not sent yet')
        if not self._sent:
            self._send_login()
        lines = self._lines(self._since_seq)
        found = parse_device_prompt('\n'.join(lines))
        flags = summarize_auth_lines(lines)
        if flags['rejected']:
            raise AuthRejected('The game server rejected the authorization')
        found['authenticated'] = flags['authenticated']
        return found

    def persist(self):
        return self.request_persistence()

    def request_persistence(self):
        with extensions.console_lock:
            self._persist_seq = extensions.console_seq
        if not screen_send(PERSIST_COMMAND, self.cfg):
            raise SetupError('Could not send the persistence command to the server console')
        log.info('Requested encrypted credential persistence')
        return {'persistenceRequested': True}

    def persistence_confirmed(self):
        since = self._persist_seq if self._persist_seq is not None else self._since_seq
        if since is None:
            return False
        return _last_index(self._lines(since), PERSISTENCE_MARKERS) >= 0

    def describe(self):
        return {'persistent': self.persistence_confirmed()}
