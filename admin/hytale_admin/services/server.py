import logging
import time
from datetime import datetime, timezone

from .. import extensions

log = logging.getLogger(__name__)

# Cache container status for 5 seconds to reduce Docker SDK connections
_status_cache: dict = {}
_STATUS_CACHE_TTL = 5


def _container_state(cfg):
    """Return (status, started_at) for the game server container, cached briefly.

    status is the Docker status string, or 'not_found' when the container
    does not exist or Docker is unreachable.
    """
    import docker
    cache_key = cfg.SERVER_CONTAINER
    cached = _status_cache.get(cache_key)
    if cached and (time.monotonic() - cached['ts']) < _STATUS_CACHE_TTL:
        return cached['status'], cached['started_at']
    client = None
    try:
        client = docker.from_env()
        container = client.containers.get(cfg.SERVER_CONTAINER)
        status = container.status
        started_at = container.attrs.get('State', {}).get('StartedAt', '') if status == 'running' else ''
    except Exception as exc:
        log.debug('Container lookup failed: %s', exc)
        status, started_at = 'not_found', ''
    finally:
        if client:
            client.close()
    _status_cache[cache_key] = {'status': status, 'started_at': started_at, 'ts': time.monotonic()}
    return status, started_at


def invalidate_status_cache(cfg):
    _status_cache.pop(cfg.SERVER_CONTAINER, None)


def _uptime(started_at):
    if not started_at:
        return ''
    try:
        # Docker uses RFC3339 nanoseconds: "2024-01-15T10:30:00.123456789Z"
        ts = started_at[:26].rstrip('Z') + '+00:00'
        start = datetime.fromisoformat(ts)
        total = int((datetime.now(timezone.utc) - start).total_seconds())
    except ValueError:
        return ''
    if total < 0:
        return ''
    h, rem = divmod(total, 3600)
    m, s = divmod(rem, 60)
    if h >= 24:
        d, h = divmod(h, 24)
        return f'{d}d {h}h {m}m'
    return f'{h:02d}:{m:02d}:{s:02d}'


def container_action(action, cfg):
    """Start, stop, or restart the game server container via Docker SDK."""
    import docker
    client = docker.from_env()
    try:
        container = client.containers.get(cfg.SERVER_CONTAINER)
        if action == 'stop':
            container.stop(timeout=30)
        elif action == 'start':
            container.start()
        elif action == 'restart':
            container.restart(timeout=30)
        else:
            raise ValueError(f'Unknown container action: {action}')
    finally:
        client.close()
        invalidate_status_cache(cfg)
    log.info('Container %s: %s', cfg.SERVER_CONTAINER, action)


def read_container_logs(cfg, lines=200, since=None):
    """Return the last *lines* log lines of the game container, ANSI-stripped.

    Raises docker errors to the caller.
    """
    import docker
    client = docker.from_env()
    try:
        container = client.containers.get(cfg.SERVER_CONTAINER)
        kwargs = {'tail': lines, 'stdout': True, 'stderr': True}
        if since is not None:
            kwargs['since'] = since
        raw = container.logs(**kwargs)
    finally:
        client.close()
    text = extensions.ANSI_ESCAPE.sub('', raw.decode('utf-8', errors='replace'))
    out = []
    for raw_line in text.split('\n'):
        if '\r' in raw_line:
            raw_line = raw_line.rsplit('\r', 1)[-1]
        line = raw_line.strip()
        if line:
            out.append(line)
    return out


def get_server_status(cfg):
    status, started_at = _container_state(cfg)
    running = status == 'running'
    return {
        'online': running,
        'status': status,
        'container': cfg.SERVER_CONTAINER,
        'port': cfg.SERVER_PORT,
        'uptime': _uptime(started_at) if running else '',
        'error': None if running else 'Server is stopped',
    }
