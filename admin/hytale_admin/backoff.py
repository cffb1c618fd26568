"""Reconnect policy shared by the server-side console bridge and the client follower.

States: ``connected`` -> ``reconnecting`` (attempt N, exponential delay,
capped) -> ``degraded-polling`` once the attempt budget is spent.
"""
import logging

log = logging.getLogger(__name__)

CONNECTED = 'connected'
RECONNECTING = 'reconnecting'
DEGRADED = 'degraded-polling'


class ReconnectPolicy:
    def __init__(self, base=1.0, cap=30.0, max_attempts=5):
        self.base = base
        self.cap = cap
        self.max_attempts = max_attempts
        self.state = CONNECTED
        self.attempt = 0

    def on_connected(self):
        if self.state != CONNECTED:
            log.info('Stream reconnected after %d attempt(s)', self.attempt)
        self.state = CONNECTED
        self.attempt = 0

    def on_drop(self):
        """Record a dropped stream. Returns the delay before the next attempt, or None when degraded."""
        if self.state == DEGRADED:
            return None
        self.attempt += 1
        if self.attempt > self.max_attempts:
            self.state = DEGRADED
            log.warning('Stream gave up after %d attempts, falling back to polling', self.max_attempts)
            return None
        self.state = RECONNECTING
        return self.delay_for(self.attempt)

    def delay_for(self, attempt):
        return min(self.cap, self.base * 2 ** (attempt - 1))

    def reset(self):
        self.state = CONNECTED
        self.attempt = 0

    def describe(self):
        if self.state == RECONNECTING:
            return f'{RECONNECTING}({self.attempt})'
        return self.state
