"""Official server-file download through the Hytale downloader.

The downloader runs as part of the game container's entrypoint when
``USE_HYTALE_DOWNLOADER`` is set. It prints a device-code prompt, waits for
the operator to authorize, then downloads and unpacks the server files.
Everything here is derived from the container's output.
"""
import logging
import os
import re
import threading
import time

from .. import extensions
from ..errors import AuthRejected, ConfigurationRequired, SetupError, TransientAuthError
from .device_auth import parse_device_prompt
from .server import container_action, read_container_logs
from .screen import is_server_running

log = logging.getLogger(__name__)

AUTH_SUCCESS_MARKERS = ('Download successful', 'Authentication successful', 'Credentials saved')
DOWNLOAD_DONE_MARKERS = ('Extraction complete', 'Server files verified')
AUTH_FAILED_RE = re.compile(r'authentication failed|authorization[_ ]declined|access denied', re.IGNORECASE)
PERCENT_RE = re.compile(r'(\d+(?:\.\d+)?)\s*%')

ENV_INSTRUCTIONS = [
    '1. Add USE_HYTALE_DOWNLOADER=true to your .env file',
    '2. Run: docker-compose down && docker-compose up -d',
    '3. Then retry the download',
]


def needs_env_config(text):
    return 'SERVER FILES NOT FOUND' in text and 'AUTHENTICATION REQUIRED' not in text


def parse_downloader_output(lines):
    text = '\n'.join(lines)
    result = parse_device_prompt(text)
    result['authenticated'] = any(m in text for m in AUTH_SUCCESS_MARKERS)
    result['downloadComplete'] = any(m in text for m in DOWNLOAD_DONE_MARKERS)
    result['needsEnvConfig'] = needs_env_config(text)
    result['rejected'] = bool(AUTH_FAILED_RE.search(text))
    percents = PERCENT_RE.findall(text)
    result['percent'] = float(percents[-1]) if percents else None
    return result


class DownloaderProvider:
    """Device-code provider for the downloader's credentials.

    Authorization and the download that follows it complete out of band:
    a follower thread tails the container output and feeds download
    progress into ``relay`` while the auth bridge keeps polling.
    """

    def __init__(self, cfg, relay, follow=True):
        self.cfg = cfg
        self.relay = relay
        self.follow = follow
        self._since = None
        self._generation = 0

    def begin(self):
        cfg = self.cfg
        if not cfg.USE_HYTALE_DOWNLOADER:
            raise ConfigurationRequired(
                'USE_HYTALE_DOWNLOADER=true is not set. Please add it to your .env file '
                'and restart containers with docker-compose up -d',
                ENV_INSTRUCTIONS,
            )
        # Restarting reruns the entrypoint so the downloader prints a fresh prompt.
        action = 'restart' if is_server_running(cfg) else 'start'
        try:
            container_action(action, cfg)
        except Exception as exc:
            raise SetupError('Game container not found. Make sure docker-compose is running.',
                             detail=str(exc))
        self._since = int(time.time()) - 1
        self._generation += 1
        if self.relay.running:
            self.relay.fail('Download restarted')
        self.relay.begin()
        if self.follow:
            threading.Thread(target=self._follow, args=(self._generation,),
                             daemon=True, name='downloader-follower').start()
        return {}

    def check(self):
        try:
            lines = read_container_logs(self.cfg, 300, since=self._since)
        except Exception as exc:
            raise TransientAuthError(f'Could not read downloader output: {exc}')
        parsed = parse_downloader_output(lines)
        if parsed['needsEnvConfig']:
            raise ConfigurationRequired('The game container started without the downloader enabled',
                                        ENV_INSTRUCTIONS)
        if parsed['rejected'] and not parsed['authenticated']:
            raise AuthRejected('The downloader authorization was declined')
        if parsed['percent'] is not None:
            self.relay.update(percent=parsed['percent'], current_file='Downloading server files')
        if parsed['downloadComplete']:
            self.relay.complete()
        return parsed

    def persist(self):
        # The downloader stores its own credentials; confirm they landed.
        saved = os.path.exists(self.cfg.DOWNLOADER_CREDENTIALS_FILE)
        if not saved:
            log.info('Downloader credentials file not found at %s', self.cfg.DOWNLOADER_CREDENTIALS_FILE)
        return {'credentialsSaved': saved}

    def describe(self):
        snap = self.relay.snapshot()
        return {
            'downloadStatus': snap['status'],
            'downloadPercent': snap['percent'],
            'downloadComplete': snap['status'] == 'complete',
        }

    def feed_line(self, line):
        match = PERCENT_RE.search(line)
        if match:
            self.relay.update(percent=float(match.group(1)), current_file='Downloading server files')
        if any(m in line for m in DOWNLOAD_DONE_MARKERS):
            self.relay.complete()

    def _follow(self, generation):
        while generation == self._generation and self.relay.running:
            client = None
            try:
                import docker
                client = docker.from_env()
                container = client.containers.get(self.cfg.SERVER_CONTAINER)
                pending = ''
                for chunk in container.logs(stream=True, follow=True, since=self._since,
                                            stdout=True, stderr=True):
                    if generation != self._generation or not self.relay.running:
                        return
                    pending += extensions.ANSI_ESCAPE.sub('', chunk.decode('utf-8', errors='replace'))
                    # Progress bars redraw with \r, so every \r or \n ends a segment.
                    segments = re.split(r'[\r\n]', pending)
                    pending = segments.pop()
                    for segment in segments:
                        if segment.strip():
                            self.feed_line(segment.strip())
            except Exception as exc:
                log.warning('Downloader follower error (retry in 5s): %s', exc)
            finally:
                if client:
                    try:
                        client.close()
                    except Exception:
                        pass
            time.sleep(5)
