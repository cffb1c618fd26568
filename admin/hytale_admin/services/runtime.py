"""Per-session wiring of the setup collaborators.

One :class:`SetupRuntime` is created per app (and per setup session id) and
stored on the Flask app. Routes and tests reach every collaborator through
it instead of module globals, so several runtimes can coexist in one
process.
"""
import logging

from .assets import verify_download
from .console import ConsoleBridge
from .device_auth import DeviceCodeBridge
from .downloader import DownloaderProvider
from .progress import ProgressRelay
from .server import container_action
from .server_auth import ServerAuthProvider
from .setup import SetupSequencer
from .setup_store import SetupStore
from .system_check import run_system_checks

log = logging.getLogger(__name__)


class SetupRuntime:
    def __init__(self, cfg, session_id=None, restart_fn=container_action, follow_downloads=True):
        self.cfg = cfg
        self.store = SetupStore(cfg.SETUP_DIR, session_id or cfg.SETUP_SESSION_ID)
        self.sequencer = SetupSequencer(cfg, self.store, runtime=self, restart_fn=restart_fn)

        self.download = ProgressRelay('download')
        self.extraction = ProgressRelay('extraction')
        self.console = ConsoleBridge(cfg)

        self.downloader_provider = DownloaderProvider(cfg, self.download, follow=follow_downloads)
        self.downloader = DeviceCodeBridge(
            'downloader', self.downloader_provider,
            ttl_seconds=cfg.AUTH_GRANT_TTL_SECONDS, poll_interval=cfg.AUTH_POLL_INTERVAL_SECONDS,
        )
        self.server_auth_provider = ServerAuthProvider(cfg)
        self.server_auth = DeviceCodeBridge(
            'server', self.server_auth_provider,
            ttl_seconds=cfg.AUTH_GRANT_TTL_SECONDS, poll_interval=cfg.AUTH_POLL_INTERVAL_SECONDS,
        )

    def run_system_checks(self):
        return run_system_checks(self.cfg)

    def download_verified(self):
        return verify_download(self.cfg)['success']

    def start_background(self):
        self.console.start()
        log.info('Setup runtime for session %s started', self.store.session_id)
