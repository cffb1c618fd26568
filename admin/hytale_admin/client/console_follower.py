import logging
import time
from collections import deque

import requests

from ..backoff import DEGRADED, ReconnectPolicy

log = logging.getLogger(__name__)


class ConsoleFollower:
    """Follow the setup console stream, degrading to log polling when it keeps dropping."""

    def __init__(self, api, policy=None, sleep=time.sleep, poll_interval=5.0,
                 poll_lines=200, max_lines=500):
        self.api = api
        self.policy = policy or ReconnectPolicy()
        self._sleep = sleep
        self.poll_interval = poll_interval
        self.poll_lines = poll_lines
        self.lines = deque(maxlen=max_lines)
        self.booted = False
        self.auth_required = False

    @property
    def state(self):
        return self.policy.describe()

    def handle(self, event):
        kind = event.get('type')
        if kind == 'status':
            self.booted = self.booted or bool(event.get('booted'))
            self.auth_required = bool(event.get('authRequired'))
            return
        self.lines.append(event)
        if kind == 'started':
            self.booted = True
        elif kind == 'auth_required':
            self.auth_required = True

    def poll(self):
        data = self.api.server_logs(self.poll_lines)
        self.booted = self.booted or bool(data.get('booted'))
        self.auth_required = bool(data.get('authRequired'))
        return data

    def follow(self, until, timeout=None):
        """Run until ``until(self)`` is true. Returns False on timeout.

        The deadline is also checked between stream events and keepalives,
        so a connected but idle or chatty stream cannot hold the caller.
        """
        deadline = None if timeout is None else time.monotonic() + timeout
        while not _expired(deadline):
            if self.policy.state == DEGRADED:
                try:
                    self.poll()
                except requests.RequestException as exc:
                    log.warning('Console poll failed: %s', exc)
                if until(self):
                    return True
                self._sleep(_bounded(self.poll_interval, deadline))
                continue
            stream = None
            try:
                stream = self.api.server_console()
                for event in stream:
                    self.policy.on_connected()
                    if isinstance(event, dict):
                        self.handle(event)
                        if until(self):
                            return True
                    if _expired(deadline):
                        return False
            except requests.RequestException as exc:
                log.warning('Console stream dropped: %s', exc)
            finally:
                close = getattr(stream, 'close', None)
                if close is not None:
                    close()
            delay = self.policy.on_drop()
            if delay is not None:
                self._sleep(_bounded(delay, deadline))
        return False


def _expired(deadline):
    return deadline is not None and time.monotonic() >= deadline


def _bounded(delay, deadline):
    if deadline is None:
        return delay
    return max(0.0, min(delay, deadline - time.monotonic()))
