"""Project committed step payloads into the panel's and the game server's config files."""
import json
import logging
import os
import secrets
import tempfile
import threading
import time

from .setup_store import utc_now_iso

log = logging.getLogger(__name__)


def _read_json(path):
    try:
        with open(path, encoding='utf-8') as f:
            return json.load(f)
    except FileNotFoundError:
        return {}
    except (ValueError, OSError) as exc:
        log.warning('Ignoring unreadable %s: %s', path, exc)
        return {}


def write_json_atomic(path, data, mode=None):
    directory = os.path.dirname(path)
    os.makedirs(directory, exist_ok=True)
    fd, tmp = tempfile.mkstemp(prefix='.tmp-', dir=directory)
    try:
        with os.fdopen(fd, 'w', encoding='utf-8') as f:
            json.dump(data, f, indent=2)
            f.flush()
            os.fsync(f.fileno())
        os.replace(tmp, path)
    except BaseException:
        if os.path.exists(tmp):
            os.unlink(tmp)
        raise
    if mode is not None:
        try:
            os.chmod(path, mode)
        except OSError:
            pass


def cron_to_time(cron):
    """'30 4 * * *' -> '04:30'. Falls back to 04:00 for anything unparsable."""
    parts = (cron or '').split()
    if len(parts) >= 2 and parts[0].isdigit() and parts[1].isdigit():
        return f'{int(parts[1]):02d}:{int(parts[0]):02d}'
    return '04:00'


def automation_to_scheduler(automation):
    if not automation:
        return {}
    backups = automation.get('backups', {})
    restart = automation.get('restart', {})
    return {
        'backups': {
            'enabled': backups.get('enabled', True),
            'interval': backups.get('interval', '6h'),
            'schedule': '03:00',
            'retentionDays': backups.get('retention', 7),
            'beforeRestart': True,
        },
        'scheduledRestarts': {
            'enabled': restart.get('enabled', False),
            'times': [cron_to_time(restart.get('schedule'))] if restart.get('enabled') else [],
            'warningMinutes': [m for m in (30, 15, 5, 1) if m <= restart.get('warnMinutes', 5)] or [1],
            'warningMessage': 'Server restart in {minutes} minute(s)!',
            'restartMessage': 'Server is restarting now!',
            'createBackup': True,
        },
    }


def build_server_config(existing, session):
    """Merge setup answers into the game server's config.json without dropping unknown keys."""
    server = session.payload('server-config')
    security = session.payload('security-settings')
    performance = session.payload('performance')
    method = session.payload('download-method')

    merged = dict(existing)
    merged['ServerName'] = server.get('name', 'Hytale Server')
    merged['MOTD'] = server.get('motd', '')
    merged['MaxPlayers'] = server.get('maxPlayers', 20)
    merged['Password'] = security.get('password') or server.get('password', '')
    merged['Whitelist'] = security.get('whitelist', False)
    merged['AllowOp'] = security.get('allowOp', True)
    defaults = dict(merged.get('Defaults') or {})
    defaults['GameMode'] = server.get('gameMode', 'Adventure')
    merged['Defaults'] = defaults
    if performance.get('viewRadius'):
        merged['ViewRadius'] = performance['viewRadius']

    update_config = dict(merged.get('updateConfig') or {})
    update_config.update({
        'enabled': True,
        'checkIntervalSeconds': update_config.get('checkIntervalSeconds', 3600),
        'notifyPlayersOnAvailable': update_config.get('notifyPlayersOnAvailable', True),
        'patchline': method.get('patchline', 'release'),
        'runBackupBeforeUpdate': True,
        'backupConfigBeforeUpdate': True,
        'autoApplyMode': 'WHEN_EMPTY' if method.get('autoUpdate') else 'DISABLED',
        'autoApplyDelayMinutes': update_config.get('autoApplyDelayMinutes', 5),
    })
    merged['updateConfig'] = update_config
    return merged


def build_main_config(session, secret):
    network = session.payload('network')
    integrations = session.payload('integrations')
    domain = network.get('domain')
    return {
        'setupComplete': True,
        'secretKey': secret,
        'language': session.payload('language').get('language', 'en'),
        'corsOrigins': [domain] if domain else [],
        'network': {
            'accessMode': network.get('accessMode', 'local'),
            'domain': domain,
            'trustProxy': network.get('trustProxy', False),
        },
        'integrations': {
            'modtaleApiKey': integrations.get('modtaleApiKey', ''),
            'stackmartApiKey': integrations.get('stackmartApiKey', ''),
            'webmap': integrations.get('webmap', False),
        },
        'automation': session.payload('automation') or None,
        'performance': session.payload('performance') or None,
        'plugin': session.payload('plugin') or None,
    }


def finalize_setup(cfg, session):
    """Write every config file derived from *session*. Returns a summary dict.

    Raises on I/O failure before anything marks the session complete.
    """
    admin = session.payload('admin-account')
    if not admin.get('username') or not admin.get('passwordHash'):
        raise ValueError('Admin account not configured')

    write_json_atomic(cfg.USERS_FILE, {
        'users': [{
            'username': admin['username'],
            'passwordHash': admin['passwordHash'],
            'role': 'admin',
            'createdAt': utc_now_iso(),
            'tokenVersion': 1,
        }],
    }, mode=0o600)

    server = session.payload('server-config')
    security = session.payload('security-settings')
    write_json_atomic(cfg.PANEL_CONFIG_FILE, {
        'patchline': session.payload('download-method').get('patchline', 'release'),
        'acceptEarlyPlugins': server.get('acceptEarlyPlugins', False),
        'disableSentry': server.get('disableSentry', False),
        'allowOp': security.get('allowOp', True),
    })

    server_config_written = False
    if os.path.isdir(cfg.SERVER_DIR) and os.access(cfg.SERVER_DIR, os.W_OK):
        merged = build_server_config(_read_json(cfg.SERVER_CONFIG_FILE), session)
        write_json_atomic(cfg.SERVER_CONFIG_FILE, merged)
        server_config_written = True
    else:
        log.info('Server directory %s not ready, server config not written', cfg.SERVER_DIR)

    secret = secrets.token_urlsafe(48)
    write_json_atomic(cfg.MAIN_CONFIG_FILE, build_main_config(session, secret), mode=0o600)

    scheduler = automation_to_scheduler(session.payload('automation'))
    if scheduler:
        write_json_atomic(cfg.SCHEDULER_CONFIG_FILE, scheduler)

    log.info('Setup finalized for admin %s', admin['username'])
    return {
        'serverConfigWritten': server_config_written,
        'schedulerConfigWritten': bool(scheduler),
    }


def schedule_restart(cfg, restart_fn):
    """Restart the game container after a short delay so the HTTP response goes out first."""
    def _run():
        time.sleep(cfg.RESTART_DELAY_SECONDS)
        try:
            restart_fn('restart', cfg)
            log.info('Server container restarted after setup')
        except Exception as exc:
            log.warning('Post-setup restart failed: %s', exc)

    thread = threading.Thread(target=_run, daemon=True, name='setup-restart')
    thread.start()
    return thread
