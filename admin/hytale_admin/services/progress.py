"""Fan-out of long-running operation progress (downloads, extraction).

One relay per operation kind. The worker thread calls ``begin`` / ``update`` /
``complete`` / ``fail``; readers either subscribe to a queue (event stream) or
read ``snapshot()`` (polling). Events are not replayed: a subscriber that
attaches after the operation finished only receives the terminal event.
"""
import logging
import queue
import threading
import time

from ..errors import OperationInProgress

log = logging.getLogger(__name__)

TERMINAL_STATES = ('complete', 'error')


def _idle_state():
    return {
        'status': 'idle',
        'percent': 0.0,
        'currentFile': None,
        'filesDone': 0,
        'filesTotal': 0,
        'bytesDone': 0,
        'bytesTotal': 0,
        'bytesPerSecond': 0,
        'estimatedSeconds': None,
        'error': None,
    }


class ProgressRelay:
    def __init__(self, name, clock=time.monotonic):
        self.name = name
        self._clock = clock
        self._lock = threading.Lock()
        self._subscribers = []
        self._state = _idle_state()
        self._started = None
        self._terminal_event = None

    # ── Producer side ────────────────────────────────────────────────────────

    def begin(self, bytes_total=0, files_total=0):
        with self._lock:
            if self._state['status'] == 'running':
                raise OperationInProgress(f'{self.name} already in progress')
            self._state = _idle_state()
            self._state.update(status='running', bytesTotal=bytes_total or 0,
                               filesTotal=files_total or 0)
            self._started = self._clock()
            self._terminal_event = None
        log.info('%s started', self.name)

    def update(self, bytes_done=None, files_done=None, current_file=None,
               bytes_total=None, files_total=None, percent=None):
        """Apply new counters. Counters never move backwards."""
        with self._lock:
            state = self._state
            if state['status'] != 'running':
                return None
            if bytes_total:
                state['bytesTotal'] = max(state['bytesTotal'], bytes_total)
            if files_total:
                state['filesTotal'] = max(state['filesTotal'], files_total)
            if bytes_done is not None:
                state['bytesDone'] = max(state['bytesDone'], bytes_done)
            if files_done is not None:
                state['filesDone'] = max(state['filesDone'], files_done)
            if current_file is not None:
                state['currentFile'] = current_file

            if state['bytesTotal']:
                computed = state['bytesDone'] * 100.0 / state['bytesTotal']
            elif state['filesTotal']:
                computed = state['filesDone'] * 100.0 / state['filesTotal']
            else:
                computed = percent or 0.0
            state['percent'] = round(max(state['percent'], min(computed, 100.0)), 1)

            elapsed = max(self._clock() - self._started, 1e-6)
            rate = int(state['bytesDone'] / elapsed) if state['bytesDone'] else 0
            state['bytesPerSecond'] = rate
            if rate and state['bytesTotal']:
                state['estimatedSeconds'] = int((state['bytesTotal'] - state['bytesDone']) / rate)
            else:
                state['estimatedSeconds'] = None

            event = self._progress_event()
            self._publish(event)
        return event

    def complete(self, **extra):
        with self._lock:
            if self._state['status'] != 'running':
                return False
            state = self._state
            state['status'] = 'complete'
            state['percent'] = 100.0
            if state['bytesTotal']:
                state['bytesDone'] = state['bytesTotal']
            if state['filesTotal']:
                state['filesDone'] = state['filesTotal']
            state['estimatedSeconds'] = 0
            event = {'type': 'complete', 'percent': 100.0,
                     'bytesDone': state['bytesDone'], 'filesDone': state['filesDone']}
            event.update(extra)
            self._terminal_event = event
            self._publish(event)
        log.info('%s complete', self.name)
        return True

    def fail(self, error):
        with self._lock:
            if self._state['status'] != 'running':
                return False
            self._state['status'] = 'error'
            self._state['error'] = str(error)
            event = {'type': 'error', 'error': str(error)}
            self._terminal_event = event
            self._publish(event)
        log.warning('%s failed: %s', self.name, error)
        return True

    def _progress_event(self):
        s = self._state
        return {
            'type': 'progress',
            'percent': s['percent'],
            'currentFile': s['currentFile'],
            'filesDone': s['filesDone'],
            'filesTotal': s['filesTotal'],
            'bytesDone': s['bytesDone'],
            'bytesTotal': s['bytesTotal'],
            'bytesPerSecond': s['bytesPerSecond'],
            'estimatedSeconds': s['estimatedSeconds'],
        }

    def _publish(self, event):
        # Called with the lock held so every subscriber sees the same order.
        for q in self._subscribers:
            q.put(event)

    # ── Consumer side ────────────────────────────────────────────────────────

    @property
    def running(self):
        with self._lock:
            return self._state['status'] == 'running'

    def snapshot(self):
        with self._lock:
            return dict(self._state)

    def subscribe(self):
        q = queue.Queue()
        with self._lock:
            if self._terminal_event is not None:
                q.put(self._terminal_event)
            self._subscribers.append(q)
        return q

    def unsubscribe(self, q):
        with self._lock:
            if q in self._subscribers:
                self._subscribers.remove(q)

    def events(self, heartbeat=15.0):
        """Yield events until the terminal one. ``None`` marks a heartbeat."""
        q = self.subscribe()
        try:
            while True:
                try:
                    event = q.get(timeout=heartbeat)
                except queue.Empty:
                    yield None
                    continue
                yield event
                if event['type'] in TERMINAL_STATES:
                    return
        finally:
            self.unsubscribe(q)

