import os


def screen_send(cmd, cfg):
    """Write a command to the game server's stdin FIFO (non-blocking)."""
    try:
        # O_NONBLOCK prevents blocking when the server is not running
        # (no reader on the other end of the FIFO).
        fd = os.open(cfg.CONSOLE_FIFO, os.O_WRONLY | os.O_NONBLOCK)
        with os.fdopen(fd, 'w') as f:
            f.write(cmd + '\n')
        return True
    except OSError:
        return False


def is_server_running(cfg):
    """Check whether the game server container is running."""
    import docker
    client = None
    try:
        client = docker.from_env()
        container = client.containers.get(cfg.SERVER_CONTAINER)
        return container.status == 'running'
    except Exception:
        return False
    finally:
        if client:
            client.close()
