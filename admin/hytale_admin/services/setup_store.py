import json
import logging
import os
import re
import tempfile
import threading
from datetime import datetime, timezone

log = logging.getLogger(__name__)

_SESSION_ID_RE = re.compile(r'^[A-Za-z0-9_-]{1,64}$')


class SetupSession:
    """Durable state of one setup run.

    ``completed_steps`` and ``skipped_steps`` never share an id.
    """

    def __init__(self, session_id='default', current_step_index=0, completed_steps=None,
                 skipped_steps=None, payloads=None, setup_complete=False,
                 completed_at=None, revision=0):
        self.session_id = session_id
        self.current_step_index = current_step_index
        self.completed_steps = list(completed_steps or [])
        self.skipped_steps = list(skipped_steps or [])
        self.payloads = dict(payloads or {})
        self.setup_complete = setup_complete
        self.completed_at = completed_at
        self.revision = revision

    def mark_completed(self, step_id):
        if step_id not in self.completed_steps:
            self.completed_steps.append(step_id)
        if step_id in self.skipped_steps:
            self.skipped_steps.remove(step_id)

    def mark_skipped(self, step_id):
        if step_id not in self.skipped_steps:
            self.skipped_steps.append(step_id)

    def payload(self, step_id):
        return self.payloads.get(step_id) or {}

    def copy(self):
        return SetupSession.from_dict(json.loads(json.dumps(self.to_dict())))

    def to_dict(self):
        return {
            'sessionId': self.session_id,
            'currentStepIndex': self.current_step_index,
            'completedSteps': list(self.completed_steps),
            'skippedSteps': list(self.skipped_steps),
            'payloads': self.payloads,
            'setupComplete': self.setup_complete,
            'setupCompletedAt': self.completed_at,
            'revision': self.revision,
        }

    @classmethod
    def from_dict(cls, data):
        return cls(
            session_id=data.get('sessionId', 'default'),
            current_step_index=int(data.get('currentStepIndex', 0)),
            completed_steps=data.get('completedSteps', []),
            skipped_steps=data.get('skippedSteps', []),
            payloads=data.get('payloads', {}),
            setup_complete=bool(data.get('setupComplete', False)),
            completed_at=data.get('setupCompletedAt'),
            revision=int(data.get('revision', 0)),
        )


class SetupStore:
    """JSON file per session under ``directory``, replaced atomically on commit."""

    def __init__(self, directory, session_id='default'):
        if not _SESSION_ID_RE.match(session_id or ''):
            raise ValueError(f'Invalid setup session id: {session_id!r}')
        self.directory = directory
        self.session_id = session_id
        self.lock = threading.RLock()

    @property
    def path(self):
        return os.path.join(self.directory, f'{self.session_id}.json')

    def load(self):
        with self.lock:
            if not os.path.exists(self.path):
                return SetupSession(session_id=self.session_id)
            with open(self.path, encoding='utf-8') as f:
                data = json.load(f)
            session = SetupSession.from_dict(data)
            session.session_id = self.session_id
            return session

    def commit(self, session):
        with self.lock:
            session.revision += 1
            os.makedirs(self.directory, exist_ok=True)
            fd, tmp = tempfile.mkstemp(prefix=f'.{self.session_id}.', suffix='.tmp', dir=self.directory)
            try:
                with os.fdopen(fd, 'w', encoding='utf-8') as f:
                    json.dump(session.to_dict(), f, indent=2)
                    f.flush()
                    os.fsync(f.fileno())
                os.replace(tmp, self.path)
            except BaseException:
                session.revision -= 1
                if os.path.exists(tmp):
                    os.unlink(tmp)
                raise
            try:
                os.chmod(self.path, 0o600)
            except OSError:
                pass
            log.debug('Committed setup session %s revision %d', self.session_id, session.revision)

    def reset(self):
        with self.lock:
            session = SetupSession(session_id=self.session_id)
            self.commit(session)
            return session


def utc_now_iso():
    return datetime.now(timezone.utc).isoformat(timespec='seconds')
