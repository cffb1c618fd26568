import logging
import os
import secrets
import socket

import psutil
import requests

log = logging.getLogger(__name__)

GB = 1024 ** 3
DOWNLOAD_HOST = 'downloader.hytale.com'


def _check(check_id, name, required):
    return {
        'id': check_id,
        'name': name,
        'status': 'fail',
        'message': 'Checking...',
        'required': required,
        'details': None,
    }


def check_docker(cfg):
    import docker
    check = _check('docker_socket', 'Docker Socket', True)
    client = None
    try:
        client = docker.from_env()
        info = client.version()
        check['status'] = 'pass'
        check['message'] = 'Connected'
        check['details'] = f"Docker version: {info.get('Version', 'unknown')}"
    except Exception as exc:
        check['message'] = 'Connection failed'
        check['details'] = str(exc)
    finally:
        if client:
            client.close()
    return check


def _udp_port_free(port):
    sock = socket.socket(socket.AF_INET, socket.SOCK_DGRAM)
    try:
        sock.bind(('0.0.0.0', port))
        return True
    except OSError:
        return False
    finally:
        sock.close()


def check_ports(cfg):
    manager = _check(f'port_{cfg.MANAGER_PORT}', f'Port {cfg.MANAGER_PORT} (TCP)', False)
    manager.update(status='pass', message='Active', details='Panel is serving on this port')

    game = _check(f'port_{cfg.SERVER_PORT}', f'Port {cfg.SERVER_PORT} (UDP)', True)
    if _udp_port_free(cfg.SERVER_PORT):
        game.update(status='pass', message='Available', details='Game Server port is free')
    else:
        game.update(message='In use', details=f'Port {cfg.SERVER_PORT}/UDP must be free for the game server')
    return [manager, game]


def check_disk_space(cfg):
    check = _check('disk_space', 'Disk Space', True)
    path = cfg.DATA_DIR if os.path.exists(cfg.DATA_DIR) else '/'
    try:
        free = psutil.disk_usage(path).free
    except OSError as exc:
        check['message'] = 'Could not check disk space'
        check['details'] = str(exc)
        return check
    free_gb = free / GB
    if free_gb >= cfg.MIN_DISK_GB:
        check.update(status='pass', message=f'{free_gb:.1f} GB available', details=f'Path: {path}')
    else:
        check.update(message=f'Only {free_gb:.1f} GB available',
                     details=f'Minimum: {cfg.MIN_DISK_GB} GB at {path}')
    return check


def check_ram(cfg):
    check = _check('ram', 'RAM', True)
    mem = psutil.virtual_memory()
    total_gb = mem.total / GB
    free_gb = mem.available / GB
    check['totalGb'] = round(total_gb, 1)
    if total_gb >= cfg.RECOMMENDED_RAM_GB:
        check.update(status='pass', message=f'{total_gb:.1f} GB total',
                     details=f'{free_gb:.1f} GB currently free')
    elif total_gb >= cfg.MIN_RAM_GB:
        check.update(status='warning', message=f'{total_gb:.1f} GB total',
                     details=f'Minimum met, but {cfg.RECOMMENDED_RAM_GB}+ GB recommended')
    else:
        check.update(message=f'Only {total_gb:.1f} GB total',
                     details=f'Minimum required: {cfg.MIN_RAM_GB} GB')
    return check


def check_write_permissions(cfg):
    check = _check('write_permissions', 'Write Permissions', True)
    probe = os.path.join(cfg.DATA_DIR, f'.write-test-{secrets.token_hex(4)}')
    try:
        os.makedirs(cfg.DATA_DIR, exist_ok=True)
        with open(probe, 'w') as f:
            f.write('test')
        os.unlink(probe)
        check.update(status='pass', message='Writable', details=f'Path: {cfg.DATA_DIR}')
    except PermissionError:
        check.update(message='Permission denied', details=f'Cannot write to {cfg.DATA_DIR}')
    except OSError as exc:
        check.update(message='Write failed', details=str(exc))
    return check


def check_dns(cfg):
    check = _check('dns', 'DNS Resolution', True)
    try:
        socket.gethostbyname(cfg.AUTH_HOST)
        check.update(status='pass', message='Working', details=f'Resolved {cfg.AUTH_HOST}')
    except OSError as exc:
        check.update(message='DNS failed', details=str(exc))
    return check


def check_download_host(cfg):
    check = _check('hytale_server', 'Hytale Server', False)
    try:
        r = requests.head(f'https://{DOWNLOAD_HOST}/', timeout=10)
        check.update(status='pass', message='Reachable',
                     details=f'{DOWNLOAD_HOST} responded with status {r.status_code}')
    except requests.RequestException as exc:
        check.update(status='warning', message='Unreachable', details=str(exc))
    return check


SINGLE_CHECKS = {
    'docker_socket': check_docker,
    'disk_space': check_disk_space,
    'ram': check_ram,
    'write_permissions': check_write_permissions,
    'dns': check_dns,
    'hytale_server': check_download_host,
}


def run_system_checks(cfg):
    checks = [check_docker(cfg)]
    checks.extend(check_ports(cfg))
    for fn in (check_disk_space, check_ram, check_write_permissions, check_dns, check_download_host):
        checks.append(fn(cfg))

    ram = next((c for c in checks if c['id'] == 'ram'), {})
    result = {
        'checks': checks,
        'canProceed': all(c['status'] != 'fail' for c in checks if c['required']),
        'warnings': sum(1 for c in checks if c['status'] == 'warning'),
        'ramTotalGb': ram.get('totalGb'),
    }
    log.info('System checks finished, canProceed=%s', result['canProceed'])
    return result


def run_single_check(check_id, cfg):
    fn = SINGLE_CHECKS.get(check_id)
    if fn is not None:
        return fn(cfg)
    if check_id.startswith('port_'):
        for check in check_ports(cfg):
            if check['id'] == check_id:
                return check
    return None
