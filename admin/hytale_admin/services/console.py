"""Live game-server console: classification, broadcast and reconnect handling."""
import json
import logging
import os
import queue
import re
import threading
import time
from datetime import datetime, timezone

from .. import extensions
from ..backoff import DEGRADED, ReconnectPolicy
from .screen import is_server_running
from .server import container_action, read_container_logs
from .server_auth import AUTH_SUCCESS_MARKERS

log = logging.getLogger(__name__)

EVENT_TYPES = ('log', 'auth_required', 'started', 'error')
LEVELS = ('info', 'warning', 'error')

BOOT_MARKERS = ('Hytale Server Booted',)
AUTH_REQUIRED_MARKERS = ('AUTHENTICATION REQUIRED', 'No server tokens configured',
                         'Server authentication unavailable')
ERROR_RE = re.compile(r'\b(ERROR|SEVERE|FATAL)\b|Exception\b')
WARN_RE = re.compile(r'\bWARN(ING)?\b')


def _now():
    return datetime.now(timezone.utc).isoformat(timespec='seconds')


class StructuredLineClassifier:
    """Lines that are JSON objects carrying an ``event`` field.

    ``{"event": "started", "message": "...", "level": "info"}``
    """

    def classify(self, line):
        if not line.startswith('{'):
            return None
        try:
            data = json.loads(line)
        except ValueError:
            return None
        if not isinstance(data, dict) or data.get('event') not in EVENT_TYPES:
            return None
        level = data.get('level')
        if level not in LEVELS:
            level = 'error' if data['event'] == 'error' else 'info'
        return {
            'type': data['event'],
            'message': str(data.get('message', '')),
            'level': level,
            'timestamp': data.get('timestamp') or _now(),
        }


class BannerClassifier:
    """Plain-text fallback keyed on known boot and auth banners."""

    def classify(self, line):
        if any(m in line for m in BOOT_MARKERS):
            kind, level = 'started', 'info'
        elif any(m in line for m in AUTH_REQUIRED_MARKERS):
            kind, level = 'auth_required', 'warning'
        elif ERROR_RE.search(line):
            kind, level = 'error', 'error'
        else:
            kind = 'log'
            level = 'warning' if WARN_RE.search(line) else 'info'
        return {'type': kind, 'message': line, 'level': level, 'timestamp': _now()}


class ChainClassifier:
    def __init__(self, *classifiers):
        self.classifiers = classifiers

    def classify(self, line):
        for classifier in self.classifiers:
            event = classifier.classify(line)
            if event is not None:
                return event
        return {'type': 'log', 'message': line, 'level': 'info', 'timestamp': _now()}


def default_classifier():
    return ChainClassifier(StructuredLineClassifier(), BannerClassifier())


def derive_flags(lines, classifier=None):
    """Re-derive boot/auth flags from a batch of lines (polling fallback)."""
    classifier = classifier or default_classifier()
    booted = auth_required = False
    errors = 0
    for line in lines:
        event = classifier.classify(line)
        if event['type'] == 'started':
            booted = True
        elif event['type'] == 'auth_required':
            auth_required = True
        elif event['type'] == 'error':
            errors += 1
        if any(m in line for m in AUTH_SUCCESS_MARKERS):
            auth_required = False
    return {'booted': booted, 'authRequired': auth_required, 'errors': errors}


def split_chunk(pending, chunk):
    """Append raw PTY output to *pending*; return (complete_lines, new_pending).

    With tty:true the Docker streaming API may deliver a character at a time
    and use \\r for in-place updates, so only the text after the last \\r of
    each line is kept (what a real terminal would show).
    """
    pending += extensions.ANSI_ESCAPE.sub('', chunk.decode('utf-8', errors='replace'))
    lines = []
    while '\n' in pending:
        raw_line, pending = pending.split('\n', 1)
        if '\r' in raw_line:
            raw_line = raw_line.rsplit('\r', 1)[-1]
        line = raw_line.strip()
        if line:
            lines.append(line)
    if '\r' in pending:
        pending = pending.rsplit('\r', 1)[-1]
    return lines, pending


def read_recent_lines(cfg, lines):
    """Last *lines* lines of server output: LOG_FILE if configured, else container logs."""
    log_file = getattr(cfg, 'LOG_FILE', None)
    if log_file and os.path.exists(log_file):
        with open(log_file, errors='replace') as f:
            tail = f.readlines()[-lines:]
        return [extensions.ANSI_ESCAPE.sub('', l).strip() for l in tail if l.strip()]
    return read_container_logs(cfg, lines)


class ConsoleBridge:
    """Single producer (container output) fanned out to subscriber queues.

    Lines also land in the shared console ring buffer so stateless readers
    (``/api/console/lines``, the server auth bridge) see them.
    """

    def __init__(self, cfg, classifier=None, policy=None, sleep=time.sleep):
        self.cfg = cfg
        self.classifier = classifier or default_classifier()
        self.policy = policy or ReconnectPolicy(cfg.CONSOLE_BACKOFF_BASE, cfg.CONSOLE_BACKOFF_CAP,
                                                cfg.CONSOLE_MAX_RECONNECTS)
        self._sleep = sleep
        self._lock = threading.Lock()
        self._subscribers = []
        self._thread = None
        self._last_drop = None
        self.booted = False
        self.auth_required = False

    # ── Fan-out ──────────────────────────────────────────────────────────────

    def subscribe(self):
        q = queue.Queue(maxsize=self.cfg.MAX_CONSOLE_LINES)
        with self._lock:
            self._subscribers.append(q)
        return q

    def unsubscribe(self, q):
        with self._lock:
            if q in self._subscribers:
                self._subscribers.remove(q)

    def _broadcast(self, event):
        with self._lock:
            subscribers = list(self._subscribers)
        for q in subscribers:
            try:
                q.put_nowait(event)
            except queue.Full:
                # Slow consumer: drop its oldest event.
                try:
                    q.get_nowait()
                except queue.Empty:
                    pass
                q.put_nowait(event)

    def publish_line(self, line):
        extensions.append_console_line(line)
        event = self.classifier.classify(line)
        if event['type'] == 'started' and not self.booted:
            self.booted = True
            log.info('Game server boot detected')
        elif event['type'] == 'auth_required':
            self.auth_required = True
        if any(m in line for m in AUTH_SUCCESS_MARKERS):
            self.auth_required = False
        self._broadcast(event)
        return event

    def events(self, heartbeat=15.0):
        """Yield console events forever. ``None`` marks a heartbeat."""
        q = self.subscribe()
        try:
            yield {'type': 'status', **self.status()}
            while True:
                try:
                    yield q.get(timeout=heartbeat)
                except queue.Empty:
                    yield None
        finally:
            self.unsubscribe(q)

    def status(self):
        return {
            'connection': self.policy.describe(),
            'booted': self.booted,
            'authRequired': self.auth_required,
        }

    # ── Producer loop ────────────────────────────────────────────────────────

    def stream_once(self):
        """Follow container output until the stream ends. Raises on Docker errors."""
        import docker
        client = docker.from_env()
        try:
            container = client.containers.get(self.cfg.SERVER_CONTAINER)
            kwargs = {'stream': True, 'follow': True, 'stdout': True, 'stderr': True}
            if self._last_drop is None:
                kwargs['tail'] = 200
            else:
                kwargs['since'] = self._last_drop
            stream = container.logs(**kwargs)
            self.policy.on_connected()
            pending = ''
            for chunk in stream:
                lines, pending = split_chunk(pending, chunk)
                for line in lines:
                    self.publish_line(line)
        finally:
            client.close()

    def poll_once(self):
        lines = read_recent_lines(self.cfg, self.cfg.CONSOLE_POLL_LINES)
        flags = derive_flags(lines, self.classifier)
        self.booted = self.booted or flags['booted']
        self.auth_required = flags['authRequired']
        self._broadcast({'type': 'status', **self.status()})
        return flags

    def run(self, stop=None):
        stop = stop or threading.Event()
        polls = 0
        while not stop.is_set():
            if self.policy.state == DEGRADED:
                try:
                    self.poll_once()
                except Exception as exc:
                    log.warning('Console poll failed: %s', exc)
                polls += 1
                # Every so often try the live stream again.
                if polls % 12 == 0:
                    self.policy.reset()
                self._sleep(self.cfg.CONSOLE_POLL_INTERVAL)
                continue
            try:
                self.stream_once()
            except Exception as exc:
                log.warning('Console stream error: %s', exc)
            self._last_drop = int(time.time())
            delay = self.policy.on_drop()
            self._broadcast({'type': 'status', **self.status()})
            if delay is not None:
                self._sleep(delay)

    def start(self):
        if self._thread and self._thread.is_alive():
            return
        self._thread = threading.Thread(target=self.run, daemon=True, name='console-bridge')
        self._thread.start()

    def reset_flags(self):
        self.booted = False
        self.auth_required = False


def start_first(cfg, bridge):
    """Start the game container for the first boot of the setup flow."""
    if is_server_running(cfg):
        return {'success': True, 'alreadyRunning': True}
    bridge.reset_flags()
    container_action('start', cfg)
    return {'success': True, 'alreadyRunning': False}
