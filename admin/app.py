#!/usr/bin/env python3
"""
Hytale Server Manager - first-run setup wizard backend
Serves the setup API on MANAGER_PORT and bridges the game server container.
"""

import logging
import os

from hytale_admin import create_app
from hytale_admin.config import Config

logging.basicConfig(
    level=os.environ.get('LOG_LEVEL', 'INFO').upper(),
    format='%(asctime)s %(levelname)s %(name)s: %(message)s',
)

app = create_app()


if __name__ == '__main__':
    cfg = app.hytale_config
    print("=" * 50)
    print("Hytale Server Manager")
    print("=" * 50)
    print(f"Data directory:   {cfg.DATA_DIR}")
    print(f"Server directory: {cfg.SERVER_DIR}")
    print(f"Game container:   {cfg.SERVER_CONTAINER}")
    print(f"Access:           http://0.0.0.0:{Config.MANAGER_PORT}")
    print("=" * 50)

    app.run(host='0.0.0.0', port=Config.MANAGER_PORT, debug=False)
