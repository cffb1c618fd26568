"""Client-side mirror of the setup sequencer.

The server is authoritative: every projection re-reads ``GET status`` on
mount and after each mutation. The per-step sub-flows below are UI state
only. They may move back to an earlier sub-state, but nothing they do
unwinds a committed step; only a new ``save_step`` supersedes it.
"""
import logging
import time

import requests

log = logging.getLogger(__name__)


class SubFlow:
    """Ordered sub-states of one wizard step."""

    states = ()
    step_id = None

    def __init__(self):
        self.state = self.states[0]
        self.error = None

    def _index(self, state):
        return self.states.index(state)

    def _advance(self, state):
        # Only forward moves; repeated notifications are no-ops.
        if self._index(state) > self._index(self.state):
            log.debug('%s: %s -> %s', self.step_id, self.state, state)
            self.state = state

    def back(self, state=None):
        """Re-enter an earlier sub-state. Never goes past the first one."""
        if self.state == self.states[-1]:
            return False
        target = state or self.states[max(0, self._index(self.state) - 1)]
        if self._index(target) >= self._index(self.state):
            return False
        self.state = target
        self.error = None
        return True

    def reconcile(self, status):
        if self.step_id in status.get('completedSteps', []):
            self.state = self.states[-1]
        elif self.state == self.states[-1]:
            # Completed locally but the server does not agree.
            self.state = self.states[0]

    @property
    def complete(self):
        return self.state == self.states[-1]


class DownloadFlow(SubFlow):
    states = ('select', 'auth', 'downloading', 'verifying', 'complete')
    step_id = 'download-method'

    def __init__(self):
        super().__init__()
        self.method = None
        self.auth = None
        self.percent = 0.0

    def select(self, method):
        self.method = method
        self.error = None
        if method == 'official':
            self._advance('auth')
        elif method == 'custom':
            self._advance('downloading')
        else:
            self._advance('verifying')

    def on_auth(self, snapshot):
        """Feed a download auth poll response. Expiry comes only from the server."""
        self.auth = snapshot
        if snapshot.get('needsEnvConfig') or snapshot.get('state') == 'error':
            self.error = snapshot.get('error')
        elif snapshot.get('authenticated'):
            self._advance('downloading')
        if snapshot.get('downloadComplete'):
            self._advance('verifying')

    def on_progress(self, event):
        if event.get('type') == 'progress':
            self.percent = max(self.percent, event.get('percent') or 0.0)
        elif event.get('type') == 'complete':
            self.percent = 100.0
            self._advance('verifying')
        elif event.get('type') == 'error':
            self.back('select')
            self.error = event.get('error')

    def on_verified(self, result):
        if not result.get('success'):
            self.error = 'Server files are missing or empty'
        return bool(result.get('success'))

    def on_saved(self, result):
        if result.get('success'):
            self.state = 'complete'
        else:
            self.error = result.get('error')


class ServerAuthFlow(SubFlow):
    states = ('starting', 'server-auth', 'persistence', 'complete')
    step_id = 'server-auth'

    def __init__(self):
        super().__init__()
        self.auth = None

    def on_console(self, event):
        if event.get('type') in ('started', 'auth_required'):
            self._advance('server-auth')
        elif event.get('type') == 'status' and (event.get('booted') or event.get('authRequired')):
            self._advance('server-auth')

    def on_auth(self, snapshot):
        self.auth = snapshot
        if snapshot.get('state') == 'error':
            self.error = snapshot.get('error')
        elif snapshot.get('authenticated'):
            self._advance('persistence')

    def on_saved(self, result):
        if result.get('success'):
            self.state = 'complete'
        else:
            self.error = result.get('error')


class ExtractionFlow(SubFlow):
    states = ('select', 'extracting', 'complete')
    step_id = 'assets-extract'

    def __init__(self):
        super().__init__()
        self.percent = 0.0

    def start(self):
        self._advance('extracting')

    def on_progress(self, event):
        if event.get('type') == 'progress':
            self.percent = max(self.percent, event.get('percent') or 0.0)
        elif event.get('type') == 'complete':
            self.percent = 100.0
        elif event.get('type') == 'error':
            self.back('select')
            self.error = event.get('error')

    def on_saved(self, result):
        if result.get('success'):
            self.state = 'complete'
        else:
            self.error = result.get('error')


class Countdown:
    """Display-only estimate of a grant's remaining lifetime.

    Anchored to the last poll response; it never decides expiry.
    """

    def __init__(self, clock=time.monotonic):
        self._clock = clock
        self._anchor = None
        self._remaining = 0

    def sync(self, snapshot):
        self._anchor = self._clock()
        self._remaining = snapshot.get('expiresIn') or 0

    def display_seconds(self):
        if self._anchor is None:
            return 0
        return max(0, int(self._remaining - (self._clock() - self._anchor)))


class WizardProjection:
    def __init__(self, api):
        self.api = api
        self.status = {}
        self.download = DownloadFlow()
        self.server_auth = ServerAuthFlow()
        self.extraction = ExtractionFlow()
        self.countdown = Countdown()
        self.error = None

    @property
    def flows(self):
        return (self.download, self.server_auth, self.extraction)

    def mount(self):
        """Load authoritative state and line every sub-flow up with it."""
        self.status = self.api.get_status()
        for flow in self.flows:
            flow.reconcile(self.status)
        return self.status

    @property
    def setup_complete(self):
        return bool(self.status.get('setupComplete'))

    @property
    def current_step_id(self):
        return self.status.get('currentStepId')

    def submit(self, step_id, payload):
        result = self.api.save_step(step_id, payload)
        self.error = None if result.get('success') else result.get('error')
        for flow in self.flows:
            if flow.step_id == step_id:
                flow.on_saved(result)
        self.mount()
        return result

    def skip(self, step_id):
        result = self.api.skip_step(step_id)
        self.error = None if result.get('success') else result.get('error')
        self.mount()
        return result

    def back(self, step_id=None):
        result = self.api.back(step_id)
        self.mount()
        return result

    def poll_server_auth(self):
        snapshot = self.api.server_auth_status()
        self.countdown.sync(snapshot)
        self.server_auth.on_auth(snapshot)
        return snapshot

    def poll_download_auth(self):
        snapshot = self.api.download_auth_status()
        self.countdown.sync(snapshot)
        self.download.on_auth(snapshot)
        return snapshot

    def follow_extraction(self):
        """Consume the extraction stream; resync from the status endpoint if it drops."""
        try:
            for event in self.api.assets_progress():
                self.extraction.on_progress(event)
                if event.get('type') in ('complete', 'error'):
                    return event
        except requests.RequestException as exc:
            log.warning('Extraction stream dropped: %s', exc)
        snap = self.api.assets_status()
        if snap.get('status') == 'complete':
            self.extraction.on_progress({'type': 'complete'})
        elif snap.get('status') == 'error':
            self.extraction.on_progress({'type': 'error', 'error': snap.get('error')})
        return snap

    def complete(self):
        result = self.api.complete()
        self.error = None if result.get('success') else result.get('error')
        self.mount()
        return result
