"""Server file acquisition helpers: custom-URL download, verification, Assets.zip extraction."""
import contextlib
import logging
import math
import os
import threading
import zipfile

import requests

from ..errors import ConfigurationRequired, SetupError

log = logging.getLogger(__name__)

CHUNK_SIZE = 1024 * 1024

CUSTOM_URL_INSTRUCTIONS = [
    'Add to .env:',
    '  SERVER_JAR_URL=https://your-url/HytaleServer.jar',
    '  ASSETS_URL=https://your-url/Assets.zip',
    'Then restart: docker-compose up -d',
]


def format_bytes(size):
    if size <= 0:
        return '0 B'
    units = ['B', 'KB', 'MB', 'GB']
    i = min(int(math.log(size, 1024)), len(units) - 1)
    value = round(size / 1024 ** i, 1)
    if value == int(value):
        value = int(value)
    return f'{value} {units[i]}'


def _file_size(path):
    try:
        return os.path.getsize(path)
    except OSError:
        return 0


def verify_download(cfg):
    jar = _file_size(cfg.SERVER_JAR)
    assets = _file_size(cfg.ASSETS_ZIP)
    return {
        'success': jar > 0 and assets > 0,
        'serverJarSize': format_bytes(jar),
        'serverJarIntegrity': jar > 0,
        'assetsZipSize': format_bytes(assets),
        'assetsZipIntegrity': assets > 0,
    }


# ── Custom URL download ──────────────────────────────────────────────────────

def _save_stream(r, dest, relay, offset):
    tmp = dest + '.part'
    done = offset
    with open(tmp, 'wb') as f:
        for chunk in r.iter_content(chunk_size=CHUNK_SIZE):
            if not chunk:
                continue
            f.write(chunk)
            done += len(chunk)
            relay.update(bytes_done=done, current_file=os.path.basename(dest))
    os.replace(tmp, dest)
    return done


def run_custom_download(cfg, relay, session=requests):
    """Download every configured URL in turn. Reports to *relay*; never raises.

    All responses are opened before any body is read so the byte total
    covers both files from the first progress event on.
    """
    targets = [(cfg.SERVER_JAR_URL, cfg.SERVER_JAR), (cfg.ASSETS_URL, cfg.ASSETS_ZIP)]
    total = 0
    try:
        os.makedirs(cfg.SERVER_DIR, exist_ok=True)
        with contextlib.ExitStack() as stack:
            opened = []
            for url, dest in targets:
                r = stack.enter_context(session.get(url, stream=True, timeout=30))
                r.raise_for_status()
                opened.append((r, dest))
            relay.update(bytes_total=sum(int(r.headers.get('Content-Length') or 0) for r, _ in opened))
            for n, (r, dest) in enumerate(opened, 1):
                total = _save_stream(r, dest, relay, total)
                relay.update(files_done=n)
    except (requests.RequestException, OSError) as exc:
        relay.fail(f'Download failed: {exc}')
        return
    except Exception as exc:
        log.exception('Custom download crashed')
        relay.fail(f'Download failed: {exc}')
        return
    relay.complete(bytesDone=total)


def start_custom_download(cfg, relay, session=requests):
    if not cfg.SERVER_JAR_URL or not cfg.ASSETS_URL:
        raise ConfigurationRequired('Custom URLs must be set in docker-compose.yml or .env file',
                                    CUSTOM_URL_INSTRUCTIONS)
    relay.begin(files_total=2)
    thread = threading.Thread(target=run_custom_download, args=(cfg, relay, session),
                              daemon=True, name='custom-download')
    thread.start()
    return thread


# ── Extraction ───────────────────────────────────────────────────────────────

def extract_assets(zip_path, dest, relay):
    """Extract *zip_path* into *dest*. Reports to *relay*; never raises."""
    try:
        with zipfile.ZipFile(zip_path) as zf:
            members = zf.infolist()
            relay.update(bytes_total=sum(m.file_size for m in members), files_total=len(members))
            os.makedirs(dest, exist_ok=True)
            done = 0
            for n, member in enumerate(members, 1):
                zf.extract(member, dest)
                done += member.file_size
                relay.update(bytes_done=done, files_done=n, current_file=member.filename)
    except (zipfile.BadZipFile, OSError) as exc:
        relay.fail(f'Extraction failed: {exc}')
        return
    except Exception as exc:
        log.exception('Extraction of %s crashed', zip_path)
        relay.fail(f'Extraction failed: {exc}')
        return
    relay.complete(path=dest)


def start_extraction(cfg, relay):
    """Start extraction in the background. A client disconnect does not cancel it."""
    if not os.path.exists(cfg.ASSETS_ZIP):
        raise SetupError('Assets.zip not found. Download the server files first.')
    relay.begin()
    thread = threading.Thread(target=extract_assets, args=(cfg.ASSETS_ZIP, cfg.ASSETS_DIR, relay),
                              daemon=True, name='assets-extract')
    thread.start()
    return thread
