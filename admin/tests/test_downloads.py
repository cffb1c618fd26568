"""Tests for server file acquisition: downloader output, custom URLs, verification, extraction."""
import os
import zipfile
from unittest.mock import MagicMock, patch

import pytest
import requests

from hytale_admin.errors import AuthRejected, ConfigurationRequired, SetupError, TransientAuthError
from hytale_admin.services.assets import (
    extract_assets, format_bytes, run_custom_download, start_custom_download,
    start_extraction, verify_download,
)
from hytale_admin.services.downloader import (
    DownloaderProvider, needs_env_config, parse_downloader_output,
)
from hytale_admin.services.progress import ProgressRelay

DEVICE_PROMPT = [
    '[Downloader] Please visit the following URL to authenticate:',
    '[Downloader] https://oauth.accounts.hytale.com/oauth2/device/verify?user_code=QWER7890',
    '[Downloader] Authorization code: QWER7890',
]


class FakeResponse:
    def __init__(self, body, status=200):
        self.body = body
        self.status = status
        self.headers = {'Content-Length': str(len(body))}

    def __enter__(self):
        return self

    def __exit__(self, *exc):
        return False

    def raise_for_status(self):
        if self.status >= 400:
            raise requests.HTTPError(f'{self.status} error')

    def iter_content(self, chunk_size=1):
        for i in range(0, len(self.body), 100):
            yield self.body[i:i + 100]


class FakeSession:
    def __init__(self, responses):
        self.responses = responses
        self.urls = []

    def get(self, url, stream=False, timeout=None):
        self.urls.append(url)
        return self.responses[url]


class TestFormatBytes:
    @pytest.mark.parametrize('size,expected', [
        (0, '0 B'),
        (512, '512 B'),
        (1536, '1.5 KB'),
        (3 * 1024 ** 3, '3 GB'),
    ])
    def test_format(self, size, expected):
        assert format_bytes(size) == expected


class TestVerifyDownload:
    def test_missing_files(self, cfg):
        result = verify_download(cfg)
        assert result['success'] is False
        assert result['serverJarSize'] == '0 B'

    def test_present_files(self, server_files):
        result = verify_download(server_files)
        assert result['success'] is True
        assert result['serverJarIntegrity'] is True
        assert result['assetsZipSize'] == '2 KB'

    def test_empty_jar_fails(self, cfg, server_files):
        open(cfg.SERVER_JAR, 'wb').close()
        assert verify_download(cfg)['success'] is False


class TestDownloaderOutput:
    def test_prompt_parsed(self):
        parsed = parse_downloader_output(DEVICE_PROMPT)
        assert parsed['userCode'] == 'QWER7890'
        assert parsed['authenticated'] is False
        assert parsed['needsEnvConfig'] is False

    def test_progress_and_completion(self):
        parsed = parse_downloader_output(DEVICE_PROMPT + [
            'Authentication successful', 'Downloading 12.5%', 'Downloading 87%',
            'Extraction complete'])
        assert parsed['authenticated'] is True
        assert parsed['percent'] == 87.0
        assert parsed['downloadComplete'] is True

    def test_env_config_detection(self):
        assert needs_env_config('SERVER FILES NOT FOUND') is True
        assert needs_env_config('SERVER FILES NOT FOUND\nAUTHENTICATION REQUIRED') is False


class TestDownloaderProvider:
    def test_disabled_requires_configuration(self, cfg):
        cfg.USE_HYTALE_DOWNLOADER = False
        provider = DownloaderProvider(cfg, ProgressRelay('download'), follow=False)
        with pytest.raises(ConfigurationRequired) as exc:
            provider.begin()
        assert exc.value.to_dict()['needsEnvConfig'] is True
        assert exc.value.instructions[0].startswith('1. Add USE_HYTALE_DOWNLOADER=true')

    def test_begin_restarts_running_container(self, cfg, mock_docker):
        _, container = mock_docker
        relay = ProgressRelay('download')
        provider = DownloaderProvider(cfg, relay, follow=False)
        provider.begin()
        container.restart.assert_called_once()
        assert relay.running

    def test_begin_without_container(self, cfg):
        client = MagicMock()
        client.containers.get.side_effect = Exception('404 Not Found')
        with patch('docker.from_env', return_value=client):
            provider = DownloaderProvider(cfg, ProgressRelay('download'), follow=False)
            with pytest.raises(SetupError) as exc:
                provider.begin()
        assert 'Game container not found' in exc.value.message

    def test_check_feeds_relay(self, cfg):
        relay = ProgressRelay('download')
        relay.begin()
        provider = DownloaderProvider(cfg, relay, follow=False)
        lines = DEVICE_PROMPT + ['Authentication successful', '[=====>    ] 50%']
        with patch('hytale_admin.services.downloader.read_container_logs', return_value=lines):
            found = provider.check()
        assert found['authenticated'] is True
        assert relay.snapshot()['percent'] == 50.0
        assert provider.describe()['downloadComplete'] is False

    def test_check_rejected(self, cfg):
        provider = DownloaderProvider(cfg, ProgressRelay('download'), follow=False)
        with patch('hytale_admin.services.downloader.read_container_logs',
                   return_value=['Error: authorization_declined']):
            with pytest.raises(AuthRejected):
                provider.check()

    def test_check_log_error_is_transient(self, cfg):
        provider = DownloaderProvider(cfg, ProgressRelay('download'), follow=False)
        with patch('hytale_admin.services.downloader.read_container_logs',
                   side_effect=Exception('socket closed')):
            with pytest.raises(TransientAuthError):
                provider.check()

    def test_feed_line_completes(self, cfg):
        relay = ProgressRelay('download')
        relay.begin()
        provider = DownloaderProvider(cfg, relay, follow=False)
        provider.feed_line('Downloading HytaleServer.jar 30%')
        provider.feed_line('Server files verified')
        assert relay.snapshot()['status'] == 'complete'

    def test_persist_reports_credentials(self, cfg):
        provider = DownloaderProvider(cfg, ProgressRelay('download'), follow=False)
        assert provider.persist() == {'credentialsSaved': False}
        os.makedirs(cfg.DOWNLOADER_DIR)
        open(cfg.DOWNLOADER_CREDENTIALS_FILE, 'w').close()
        assert provider.persist() == {'credentialsSaved': True}


class TestCustomDownload:
    def test_missing_urls(self, cfg):
        with pytest.raises(ConfigurationRequired):
            start_custom_download(cfg, ProgressRelay('download'))

    def test_downloads_both_files(self, cfg):
        cfg.SERVER_JAR_URL = 'https://files.example/HytaleServer.jar'
        cfg.ASSETS_URL = 'https://files.example/Assets.zip'
        session = FakeSession({
            cfg.SERVER_JAR_URL: FakeResponse(b'j' * 300),
            cfg.ASSETS_URL: FakeResponse(b'a' * 700),
        })
        relay = ProgressRelay('download')
        relay.begin(files_total=2)
        q = relay.subscribe()
        run_custom_download(cfg, relay, session=session)

        assert verify_download(cfg)['success'] is True
        assert not os.path.exists(cfg.SERVER_JAR + '.part')
        events = []
        while not q.empty():
            events.append(q.get_nowait())
        assert events[-1]['type'] == 'complete'
        assert events[-1]['bytesDone'] == 1000
        percents = [e['percent'] for e in events if e['type'] == 'progress']
        assert percents == sorted(percents)

    def test_http_error_fails_relay(self, cfg):
        cfg.SERVER_JAR_URL = 'https://files.example/HytaleServer.jar'
        cfg.ASSETS_URL = 'https://files.example/Assets.zip'
        session = FakeSession({cfg.SERVER_JAR_URL: FakeResponse(b'', status=404)})
        relay = ProgressRelay('download')
        relay.begin()
        run_custom_download(cfg, relay, session=session)
        snap = relay.snapshot()
        assert snap['status'] == 'error'
        assert 'Download failed' in snap['error']

    def test_unexpected_error_still_ends_the_operation(self, cfg):
        cfg.SERVER_JAR_URL = 'https://files.example/HytaleServer.jar'
        cfg.ASSETS_URL = 'https://files.example/Assets.zip'
        bad_length = FakeResponse(b'j' * 300)
        bad_length.headers = {'Content-Length': 'abc'}
        session = FakeSession({cfg.SERVER_JAR_URL: bad_length, cfg.ASSETS_URL: FakeResponse(b'a' * 10)})
        relay = ProgressRelay('download')
        relay.begin()
        q = relay.subscribe()
        run_custom_download(cfg, relay, session=session)

        snap = relay.snapshot()
        assert snap['status'] == 'error'
        assert snap['error'].startswith('Download failed')
        assert q.get_nowait()['type'] == 'error'
        # A failed download can be retried.
        relay.begin()
        assert relay.running


class TestExtraction:
    def _make_zip(self, path):
        with zipfile.ZipFile(path, 'w') as zf:
            zf.writestr('Common/BlockTextures/stone.png', b'x' * 400)
            zf.writestr('Server/Item/Items/sword.json', b'{}' * 50)
            zf.writestr('manifest.json', b'{"version": 1}')

    def test_extract_reports_every_file(self, cfg, tmp_path):
        zip_path = str(tmp_path / 'Assets.zip')
        self._make_zip(zip_path)
        relay = ProgressRelay('extraction')
        relay.begin()
        q = relay.subscribe()
        extract_assets(zip_path, cfg.ASSETS_DIR, relay)

        assert os.path.exists(os.path.join(cfg.ASSETS_DIR, 'manifest.json'))
        snap = relay.snapshot()
        assert snap['status'] == 'complete'
        assert snap['filesDone'] == 3
        events = []
        while not q.empty():
            events.append(q.get_nowait())
        assert [e['type'] for e in events].count('complete') == 1
        assert events[-1]['path'] == cfg.ASSETS_DIR

    def test_bad_zip_fails(self, cfg, tmp_path):
        zip_path = str(tmp_path / 'Assets.zip')
        with open(zip_path, 'wb') as f:
            f.write(b'not a zip')
        relay = ProgressRelay('extraction')
        relay.begin()
        extract_assets(zip_path, cfg.ASSETS_DIR, relay)
        assert relay.snapshot()['status'] == 'error'

    def test_unsupported_member_still_ends_the_operation(self, cfg, tmp_path):
        zip_path = str(tmp_path / 'Assets.zip')
        self._make_zip(zip_path)
        relay = ProgressRelay('extraction')
        relay.begin()
        q = relay.subscribe()
        with patch.object(zipfile.ZipFile, 'extract',
                          side_effect=NotImplementedError('That compression method is not supported')):
            extract_assets(zip_path, cfg.ASSETS_DIR, relay)

        snap = relay.snapshot()
        assert snap['status'] == 'error'
        assert 'compression method' in snap['error']
        events = []
        while not q.empty():
            events.append(q.get_nowait())
        assert [e['type'] for e in events if e['type'] in ('complete', 'error')] == ['error']
        relay.begin()
        assert relay.running

    def test_start_without_zip(self, cfg):
        with pytest.raises(SetupError):
            start_extraction(cfg, ProgressRelay('extraction'))
