"""Canonical setup step list and per-step payload validators.

Every validator takes ``(payload, ctx)`` and returns ``(normalized, error)``.
``normalized`` is the record committed for the step, ``error`` is a
human-readable reason or None. ``ctx`` is a :class:`StepContext`.
"""
import re

from werkzeug.security import generate_password_hash

STEP_DEFINITIONS = [
    {'id': 'system-check',      'required': True,  'skippable': False},
    {'id': 'language',          'required': True,  'skippable': False},
    {'id': 'admin-account',     'required': True,  'skippable': False},
    {'id': 'download-method',   'required': True,  'skippable': False},
    {'id': 'assets-extract',    'required': False, 'skippable': True},
    {'id': 'server-auth',       'required': True,  'skippable': False},
    {'id': 'server-config',     'required': True,  'skippable': False},
    {'id': 'security-settings', 'required': False, 'skippable': True},
    {'id': 'automation',        'required': False, 'skippable': True},
    {'id': 'performance',       'required': False, 'skippable': True},
    {'id': 'plugin',            'required': False, 'skippable': True},
    {'id': 'integrations',      'required': False, 'skippable': True},
    {'id': 'network',           'required': False, 'skippable': True},
    {'id': 'summary',           'required': True,  'skippable': False},
]

STEP_IDS = [s['id'] for s in STEP_DEFINITIONS]
REQUIRED_STEPS = [s['id'] for s in STEP_DEFINITIONS if s['required']]

USERNAME_RE = re.compile(r'^[A-Za-z0-9_]+$')
RAM_RE = re.compile(r'^(\d+)([MG])$', re.IGNORECASE)
CRON_RE = re.compile(r'^(\S+\s+){4}\S+$')
DOMAIN_RE = re.compile(r'^(https?://)?[A-Za-z0-9.-]+(:\d+)?/?$')

DOWNLOAD_METHODS = ('official', 'custom', 'manual')
PATCHLINES = ('release', 'pre-release')
GAME_MODES = ('Adventure', 'Creative')
ACCESS_MODES = ('local', 'lan', 'domain')


def get_step(step_id):
    for step in STEP_DEFINITIONS:
        if step['id'] == step_id:
            return step
    return None


def step_index(step_id):
    return STEP_IDS.index(step_id)


class StepContext:
    """What validators may look at besides the payload itself.

    ``session`` is the last committed session so a step can read answers
    given by earlier steps. ``runtime`` exposes the live collaborators
    (system checks, auth bridges, progress relays).
    """

    def __init__(self, cfg, session, runtime=None):
        self.cfg = cfg
        self.session = session
        self.runtime = runtime

    def earlier(self, step_id):
        return self.session.payload(step_id)


def _str(payload, *keys, default=''):
    for key in keys:
        value = payload.get(key)
        if isinstance(value, str):
            return value.strip()
    return default


def _int(value, default, low, high):
    try:
        number = int(value)
    except (TypeError, ValueError):
        return default
    return max(low, min(high, number))


def _bool(value, default=False):
    if value is None:
        return default
    return value is True


def _ram_to_mb(value):
    match = RAM_RE.match(str(value or ''))
    if not match:
        return None
    amount, unit = int(match.group(1)), match.group(2).upper()
    return amount * 1024 if unit == 'G' else amount


# ── Required steps ────────────────────────────────────────────────────────────

def validate_system_check(payload, ctx):
    result = ctx.runtime.run_system_checks()
    failing = [c for c in result['checks'] if c['required'] and c['status'] == 'fail']
    if failing:
        names = ', '.join(c['id'] for c in failing)
        return None, f'Required system checks failed: {names}'
    return {
        'canProceed': True,
        'warnings': result.get('warnings', 0),
        'ramTotalGb': result.get('ramTotalGb'),
        'checks': [{'id': c['id'], 'status': c['status']} for c in result['checks']],
    }, None


def validate_language(payload, ctx):
    language = _str(payload, 'language')
    if not language:
        return None, 'Language is required'
    if language not in ctx.cfg.SUPPORTED_LANGUAGES:
        return None, f'Unsupported language: {language}'
    return {'language': language}, None


def validate_admin_account(payload, ctx):
    cfg = ctx.cfg
    username = _str(payload, 'username')
    password = payload.get('password') or ''
    confirm = payload.get('confirmPassword', payload.get('passwordConfirm'))
    if not username or not isinstance(password, str) or not password:
        return None, 'username and password are required'
    if not cfg.USERNAME_MIN_LENGTH <= len(username) <= cfg.USERNAME_MAX_LENGTH:
        return None, (f'username must be {cfg.USERNAME_MIN_LENGTH}-'
                      f'{cfg.USERNAME_MAX_LENGTH} characters')
    if not USERNAME_RE.match(username):
        return None, 'username may only contain letters, numbers and underscores'
    if len(password) < cfg.PASSWORD_MIN_LENGTH:
        return None, 'password too short'
    if confirm != password:
        return None, 'passwords do not match'
    return {
        'username': username,
        'passwordHash': generate_password_hash(password),
    }, None


def validate_download_method(payload, ctx):
    method = _str(payload, 'method')
    if method not in DOWNLOAD_METHODS:
        return None, 'Invalid download method'
    patchline = _str(payload, 'patchline', default='release')
    if patchline not in PATCHLINES:
        return None, 'Invalid patchline'
    if method != 'manual' and not ctx.runtime.download_verified():
        return None, 'Server files have not been downloaded yet'
    return {
        'method': method,
        'patchline': patchline,
        'autoUpdate': _bool(payload.get('autoUpdate')),
    }, None


def validate_server_auth(payload, ctx):
    state = ctx.runtime.server_auth.snapshot()
    if not state.get('authenticated'):
        return None, 'Server is not authenticated yet'
    return {
        'authenticated': True,
        'persistent': bool(state.get('persistent')),
        'authenticatedAt': state.get('authenticatedAt'),
    }, None


def validate_server_config(payload, ctx):
    cfg = ctx.cfg
    name = _str(payload, 'name', 'serverName')
    motd = payload.get('motd') or ''
    if not isinstance(motd, str):
        return None, 'MOTD must be text'
    if not cfg.SERVER_NAME_MIN_LENGTH <= len(name) <= cfg.SERVER_NAME_MAX_LENGTH:
        return None, (f'server name must be {cfg.SERVER_NAME_MIN_LENGTH}-'
                      f'{cfg.SERVER_NAME_MAX_LENGTH} characters')
    if len(motd) > cfg.MOTD_MAX_LENGTH:
        return None, f'MOTD must be at most {cfg.MOTD_MAX_LENGTH} characters'
    game_mode = _str(payload, 'gameMode', 'defaultGamemode', default='Adventure')
    if game_mode not in GAME_MODES:
        return None, f'Invalid game mode: {game_mode}'
    return {
        'name': name,
        'motd': motd,
        'maxPlayers': _int(payload.get('maxPlayers'), 20, 1, cfg.MAX_PLAYERS_LIMIT),
        'gameMode': game_mode,
        'password': _str(payload, 'password'),
        'acceptEarlyPlugins': _bool(payload.get('acceptEarlyPlugins')),
        'disableSentry': _bool(payload.get('disableSentry')),
    }, None


def validate_summary(payload, ctx):
    return {'confirmed': True}, None


# ── Optional steps ────────────────────────────────────────────────────────────

def validate_assets_extract(payload, ctx):
    if payload.get('extract') is not True:
        return {'extracted': False}, None
    state = ctx.runtime.extraction.snapshot()
    if state['status'] != 'complete':
        return None, 'Asset extraction has not finished'
    return {
        'extracted': True,
        'path': ctx.cfg.ASSETS_DIR,
        'sizeBytes': state.get('bytesDone', 0),
    }, None


def validate_security_settings(payload, ctx):
    return {
        'password': _str(payload, 'password'),
        'whitelist': _bool(payload.get('whitelist', payload.get('enableWhitelist'))),
        'allowOp': _bool(payload.get('allowOp', payload.get('enableOp')), default=True),
    }, None


def validate_automation(payload, ctx):
    backups = payload.get('backups') if isinstance(payload.get('backups'), dict) else {}
    restart = payload.get('restart') if isinstance(payload.get('restart'), dict) else {}
    schedule = restart.get('schedule') if isinstance(restart.get('schedule'), str) else ''
    if not CRON_RE.match(schedule.strip()):
        schedule = '0 4 * * *'
    interval = backups.get('interval') if isinstance(backups.get('interval'), str) else '6h'
    return {
        'backups': {
            'enabled': backups.get('enabled') is not False,
            'interval': interval,
            'retention': _int(backups.get('retention'), 7, 1, 365),
        },
        'restart': {
            'enabled': _bool(restart.get('enabled')),
            'schedule': schedule.strip(),
            'warnMinutes': _int(restart.get('warnMinutes'), 5, 0, 60),
        },
    }, None


def _default_ram(ctx):
    detected = ctx.earlier('system-check').get('ramTotalGb')
    if not detected:
        return '3G', '4G'
    max_gb = max(2, min(16, int(detected * 0.5)))
    return f'{max(1, max_gb // 2)}G', f'{max_gb}G'


def validate_performance(payload, ctx):
    default_min, default_max = _default_ram(ctx)
    min_ram = _str(payload, 'minRam') or default_min
    max_ram = _str(payload, 'maxRam', 'memoryAllocation') or default_max
    min_mb, max_mb = _ram_to_mb(min_ram), _ram_to_mb(max_ram)
    if min_mb is None or max_mb is None or min_mb > max_mb:
        min_ram, max_ram = default_min, default_max
    return {
        'minRam': min_ram.upper(),
        'maxRam': max_ram.upper(),
        'viewRadius': _int(payload.get('viewRadius', payload.get('maxViewDistance')), 16, 4, 64),
    }, None


def validate_plugin(payload, ctx):
    install = _bool(payload.get('installPlugin', payload.get('installKyuubiPlugin')))
    return {
        'installPlugin': install,
        'version': _str(payload, 'version') if install else None,
    }, None


def validate_integrations(payload, ctx):
    return {
        'modtaleApiKey': _str(payload, 'modtaleApiKey'),
        'stackmartApiKey': _str(payload, 'stackmartApiKey'),
        'webmap': _bool(payload.get('webmap', payload.get('webmapEnabled'))),
    }, None


def validate_network(payload, ctx):
    mode = _str(payload, 'accessMode', default='local')
    if mode not in ACCESS_MODES:
        return None, 'Invalid access mode'
    domain = _str(payload, 'domain', 'customDomain') or None
    if mode == 'domain' and (not domain or not DOMAIN_RE.match(domain)):
        return None, 'A valid domain is required for domain access'
    return {
        'accessMode': mode,
        'domain': domain if mode == 'domain' else None,
        'trustProxy': _bool(payload.get('trustProxy')),
    }, None


STEP_VALIDATORS = {
    'system-check':      validate_system_check,
    'language':          validate_language,
    'admin-account':     validate_admin_account,
    'download-method':   validate_download_method,
    'assets-extract':    validate_assets_extract,
    'server-auth':       validate_server_auth,
    'server-config':     validate_server_config,
    'security-settings': validate_security_settings,
    'automation':        validate_automation,
    'performance':       validate_performance,
    'plugin':            validate_plugin,
    'integrations':      validate_integrations,
    'network':           validate_network,
    'summary':           validate_summary,
}
