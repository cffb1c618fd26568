"""Setup step sequencer.

Owns the canonical step order, validates step payloads and commits them
through a :class:`SetupStore`. All mutations run under the store lock, so
one sequencer instance is the single writer for its session.
"""
import logging

from .finalize import finalize_setup, schedule_restart
from .setup_store import utc_now_iso
from .steps import (
    REQUIRED_STEPS, STEP_DEFINITIONS, STEP_IDS, STEP_VALIDATORS,
    StepContext, get_step, step_index,
)

log = logging.getLogger(__name__)


def _failure(error, session=None, **extra):
    result = {'success': False, 'error': error}
    if session is not None:
        result['currentStep'] = session.current_step_index
    result.update(extra)
    return result


def next_incomplete_index(session, after):
    """First step after *after* that is neither completed nor skipped, wrapping once."""
    done = set(session.completed_steps) | set(session.skipped_steps)
    order = list(range(after + 1, len(STEP_IDS))) + list(range(0, after + 1))
    for i in order:
        if STEP_IDS[i] not in done:
            return i
    return len(STEP_IDS) - 1


class SetupSequencer:
    def __init__(self, cfg, store, runtime=None, restart_fn=None):
        self.cfg = cfg
        self.store = store
        self.runtime = runtime
        self.restart_fn = restart_fn

    # ── Queries ──────────────────────────────────────────────────────────────

    def get_status(self):
        session = self.store.load()
        return {
            'setupComplete': session.setup_complete,
            'currentStep': session.current_step_index,
            'currentStepId': STEP_IDS[session.current_step_index],
            'totalSteps': len(STEP_IDS),
            'completedSteps': list(session.completed_steps),
            'skippedSteps': list(session.skipped_steps),
            'steps': [dict(s) for s in STEP_DEFINITIONS],
        }

    def is_complete(self):
        return self.store.load().setup_complete

    def step_payload(self, step_id):
        return self.store.load().payload(step_id)

    # ── Mutations ────────────────────────────────────────────────────────────

    def save_step(self, step_id, payload):
        validator = STEP_VALIDATORS.get(step_id)
        if validator is None:
            return _failure('Unknown step', validSteps=list(STEP_IDS))
        if not isinstance(payload, dict):
            return _failure('Step payload must be a JSON object')

        with self.store.lock:
            session = self.store.load()
            if session.setup_complete:
                return _failure('Setup is already complete', session)
            index = step_index(step_id)
            if index > session.current_step_index:
                return _failure(f'Step {step_id} is not available yet', session)

            normalized, error = validator(payload, StepContext(self.cfg, session, self.runtime))
            if error:
                log.info('Step %s rejected: %s', step_id, error)
                return _failure(error, session)

            updated = session.copy()
            updated.payloads[step_id] = normalized
            updated.mark_completed(step_id)
            updated.current_step_index = max(
                session.current_step_index, next_incomplete_index(updated, index))
            self.store.commit(updated)

        log.info('Step %s completed, current step is now %s',
                 step_id, STEP_IDS[updated.current_step_index])
        return {
            'success': True,
            'nextStep': STEP_IDS[updated.current_step_index],
            'currentStep': updated.current_step_index,
        }

    def skip_step(self, step_id):
        step = get_step(step_id)
        if step is None:
            return _failure('Unknown step')
        with self.store.lock:
            session = self.store.load()
            if session.setup_complete:
                return _failure('Setup is already complete', session)
            if step['required'] or not step['skippable']:
                return _failure(f'Step {step_id} is required and cannot be skipped', session)
            if step_id in session.completed_steps:
                return _failure(f'Step {step_id} is already completed', session)
            index = step_index(step_id)
            if index > session.current_step_index:
                return _failure(f'Step {step_id} is not available yet', session)

            updated = session.copy()
            updated.mark_skipped(step_id)
            updated.current_step_index = max(
                session.current_step_index, next_incomplete_index(updated, index))
            self.store.commit(updated)

        log.info('Step %s skipped', step_id)
        return {
            'success': True,
            'nextStep': STEP_IDS[updated.current_step_index],
            'currentStep': updated.current_step_index,
        }

    def go_back(self, step_id=None):
        """Move the cursor back without touching committed payloads."""
        with self.store.lock:
            session = self.store.load()
            if session.setup_complete:
                return _failure('Setup is already complete', session)
            if step_id is None:
                target = session.current_step_index - 1
            elif step_id in STEP_IDS:
                target = step_index(step_id)
            else:
                return _failure('Unknown step', session)
            if target < 0 or target >= session.current_step_index:
                return _failure('Can only navigate to an earlier step', session)
            updated = session.copy()
            updated.current_step_index = target
            self.store.commit(updated)
        return {'success': True, 'currentStep': target, 'nextStep': STEP_IDS[target]}

    def complete_setup(self):
        with self.store.lock:
            session = self.store.load()
            if session.setup_complete:
                return _failure('Setup is already complete')
            missing = [s for s in REQUIRED_STEPS if s not in session.completed_steps]
            if missing:
                return _failure('Required steps are incomplete: ' + ', '.join(missing),
                                missingSteps=missing)
            try:
                summary = finalize_setup(self.cfg, session)
            except (OSError, ValueError) as exc:
                log.exception('Setup finalization failed')
                return _failure(f'Failed to finalize setup: {exc}')

            updated = session.copy()
            updated.setup_complete = True
            updated.completed_at = utc_now_iso()
            admin = dict(updated.payload('admin-account'))
            admin.pop('passwordHash', None)
            updated.payloads['admin-account'] = admin
            self.store.commit(updated)

        log.info('Setup complete')
        if self.cfg.RESTART_AFTER_SETUP and self.restart_fn is not None:
            schedule_restart(self.cfg, self.restart_fn)
        result = {'success': True, 'message': 'Setup completed successfully', 'redirectUrl': '/login'}
        result.update(summary)
        return result

    # ── Development-only ─────────────────────────────────────────────────────

    def reset(self):
        self.store.reset()
        log.warning('Setup session %s reset', self.store.session_id)
        return {'success': True, 'message': 'Setup has been reset'}

    def force_complete(self):
        with self.store.lock:
            session = self.store.load()
            session.setup_complete = True
            session.completed_at = utc_now_iso()
            self.store.commit(session)
        log.warning('Setup session %s marked complete without finalization', self.store.session_id)
        return {'success': True, 'redirectUrl': '/login'}
