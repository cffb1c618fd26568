import json
import logging
import os

from werkzeug.security import check_password_hash

log = logging.getLogger(__name__)


def get_users(cfg):
    if os.path.exists(cfg.USERS_FILE):
        try:
            with open(cfg.USERS_FILE) as f:
                return json.load(f).get('users', [])
        except (OSError, ValueError) as exc:
            log.warning('Could not read %s: %s', cfg.USERS_FILE, exc)
    return []


def authenticate(username, password, cfg):
    """Return the user record for valid credentials, else None."""
    for user in get_users(cfg):
        if user.get('username') == username:
            if check_password_hash(user.get('passwordHash', ''), password):
                return user
            return None
    return None
