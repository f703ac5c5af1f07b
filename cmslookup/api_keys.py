"""API key gate.

A single shared key is configured through ``API_KEY``; callers send it in
the ``X-API-KEY`` header. With no key configured the gate stays open.
"""

import hashlib
import hmac
import logging
from typing import Optional

from flask import current_app, request

from .exceptions import UnauthorizedError

API_KEY_HEADER = 'X-API-KEY'

_LOG = logging.getLogger('cmslookup.auth')


def hash_api_key(api_key: str) -> str:
    """SHA256 hex digest of a key, so raw keys never reach the logs."""
    return hashlib.sha256(api_key.encode()).hexdigest()


def key_matches(provided: Optional[str], expected: Optional[str]) -> bool:
    if not expected:
        return True
    if not provided:
        return False
    return hmac.compare_digest(provided.encode(), expected.encode())


def require_api_key() -> None:
    """``before_request`` hook: raise UnauthorizedError on a bad key.

    With no key configured any ``X-API-KEY`` value, including a non-empty
    one, is let through; the old service compared against an empty key and
    answered 401 to a non-empty header.
    """
    expected = current_app.config.get('API_KEY')
    provided = request.headers.get(API_KEY_HEADER)
    if key_matches(provided, expected):
        return None
    _LOG.warning('rejected api key remote=%s key=%s', request.remote_addr,
                 hash_api_key(provided)[:12] if provided else '-')
    raise UnauthorizedError()
