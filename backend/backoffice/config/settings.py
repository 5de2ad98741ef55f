"""Application configuration defaults.

Values come from the process environment (a ``.env`` file is loaded by
``create_app``); callers and tests override them through the ``config`` dict.
"""
from __future__ import annotations
import os
from typing import Any, Dict


def _env_int(name: str, default: int) -> int:
    raw = os.getenv(name)
    if raw is None or raw == '':
        return default
    try:
        return int(raw)
    except ValueError:
        raise ValueError(f'{name} must be an integer, got {raw!r}')


def load_settings() -> Dict[str, Any]:
    return {
        'JWT_SECRET_KEY': os.getenv('JWT_SECRET_KEY', 'dev-secret'),
        'DATABASE_URL': os.getenv('DATABASE_URL', 'sqlite:///dev.db'),
        # Identity travels in the Authorization header (API clients) or the access cookie (browser pages)
        'JWT_TOKEN_LOCATION': ['headers', 'cookies'],
        'JWT_COOKIE_SECURE': os.getenv('JWT_COOKIE_SECURE', '0') == '1',
        'PERMISSION_CACHE_TTL_SECONDS': _env_int('PERMISSION_CACHE_TTL_SECONDS', 300),
        'LOCK_TIMEOUT_MINUTES': _env_int('LOCK_TIMEOUT_MINUTES', 30),
        'LOG_LEVEL': os.getenv('LOG_LEVEL', 'INFO'),
    }
