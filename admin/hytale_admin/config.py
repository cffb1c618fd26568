import os

from dotenv import load_dotenv

load_dotenv()


def _env_flag(name, default='false'):
    return os.environ.get(name, default).strip().lower() in ('1', 'true', 'yes', 'on')


class Config:
    SECRET_KEY = os.environ.get('SECRET_KEY', 'change-me-in-production')
    SESSION_COOKIE_HTTPONLY = True
    PERMANENT_SESSION_LIFETIME = 3600
    MAX_CONTENT_LENGTH = 16 * 1024 * 1024  # 16 MB

    DATA_DIR         = os.environ.get('DATA_DIR', '/opt/hytale/data')
    SERVER_DIR       = os.environ.get('SERVER_DIR', '/opt/hytale/server')
    ASSETS_DIR       = os.environ.get('ASSETS_DIR', '/opt/hytale/assets')
    DOWNLOADER_DIR   = os.environ.get('DOWNLOADER_DIR', '/opt/hytale/downloader')
    SERVER_CONTAINER = os.environ.get('SERVER_CONTAINER', 'hytale-server')
    LOG_FILE         = os.environ.get('LOG_FILE') or None
    SERVER_PORT      = int(os.environ.get('SERVER_PORT', '5520'))
    MANAGER_PORT     = int(os.environ.get('MANAGER_PORT', '18080'))

    USE_HYTALE_DOWNLOADER = _env_flag('USE_HYTALE_DOWNLOADER')
    SERVER_JAR_URL        = os.environ.get('SERVER_JAR_URL', '')
    ASSETS_URL            = os.environ.get('ASSETS_URL', '')

    SETUP_SESSION_ID    = os.environ.get('SETUP_SESSION_ID', 'default')
    DEV_MODE            = _env_flag('DEV_MODE')
    RESTART_AFTER_SETUP = _env_flag('RESTART_AFTER_SETUP', 'true')
    RESTART_DELAY_SECONDS = 3

    SUPPORTED_LANGUAGES = ('en', 'de', 'pt_br')
    USERNAME_MIN_LENGTH = 3
    USERNAME_MAX_LENGTH = 32
    PASSWORD_MIN_LENGTH = 12
    SERVER_NAME_MIN_LENGTH = 3
    SERVER_NAME_MAX_LENGTH = 64
    MOTD_MAX_LENGTH = 256
    MAX_PLAYERS_LIMIT = 100

    # Device-code grants
    AUTH_GRANT_TTL_SECONDS = int(os.environ.get('AUTH_GRANT_TTL_SECONDS', '900'))
    AUTH_POLL_INTERVAL_SECONDS = int(os.environ.get('AUTH_POLL_INTERVAL_SECONDS', '3'))

    # Console bridge
    MAX_CONSOLE_LINES = 500
    CONSOLE_BACKOFF_BASE = 1.0
    CONSOLE_BACKOFF_CAP = 30.0
    CONSOLE_MAX_RECONNECTS = 5
    CONSOLE_POLL_INTERVAL = 5.0
    CONSOLE_POLL_LINES = 200

    # System checks
    MIN_RAM_GB = 4
    RECOMMENDED_RAM_GB = 8
    MIN_DISK_GB = 10
    AUTH_HOST = 'oauth.accounts.hytale.com'

    @property
    def SETUP_DIR(self):
        return os.path.join(self.DATA_DIR, 'setup')

    @property
    def USERS_FILE(self):
        return os.path.join(self.DATA_DIR, 'users.json')

    @property
    def PANEL_CONFIG_FILE(self):
        return os.path.join(self.DATA_DIR, 'panel-config.json')

    @property
    def MAIN_CONFIG_FILE(self):
        return os.path.join(self.DATA_DIR, 'config.json')

    @property
    def SCHEDULER_CONFIG_FILE(self):
        return os.path.join(self.DATA_DIR, 'scheduler.json')

    @property
    def SERVER_CONFIG_FILE(self):
        return os.path.join(self.SERVER_DIR, 'config.json')

    @property
    def SERVER_JAR(self):
        return os.path.join(self.SERVER_DIR, 'HytaleServer.jar')

    @property
    def ASSETS_ZIP(self):
        return os.path.join(self.SERVER_DIR, 'Assets.zip')

    @property
    def DOWNLOADER_CREDENTIALS_FILE(self):
        return os.path.join(self.DOWNLOADER_DIR, '.hytale-downloader-credentials.json')

    @property
    def CONSOLE_FIFO(self):
        return os.path.join(self.SERVER_DIR, '.server-input')
