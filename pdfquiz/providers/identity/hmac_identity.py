"""Stateless HMAC-SHA256 bearer tokens.

Token format: ``{owner_id}.{issued_at}.{signature}`` where ``issued_at`` is
UTC epoch seconds and ``signature`` is the hex HMAC-SHA256 of
``{owner_id}.{issued_at}`` under ``Settings.auth_secret``.

Verification checks, in order: shape, signature (constant-time compare),
then age against ``auth_token_ttl_hours``.  No server-side session state
is kept, so revoking a single token means rotating the secret.
"""

from __future__ import annotations

import hashlib
import hmac
import secrets
import time
from collections.abc import Callable

import structlog

from pdfquiz.config.settings import Settings
from pdfquiz.interfaces.identity_provider import IIdentityProvider
from pdfquiz.utils.errors import AuthenticationError

logger = structlog.get_logger(logger_name=__name__)


class HmacIdentityProvider(IIdentityProvider):
    """Issues and verifies HMAC-signed owner tokens."""

    def __init__(self, settings: Settings, clock: Callable[[], float] = time.time) -> None:
        secret = settings.auth_secret
        if not secret:
            secret = secrets.token_hex(32)
            logger.warning(
                "auth_secret_generated",
                msg="AUTH_SECRET is not set; tokens will not survive a restart.",
            )
        self._secret = secret.encode("utf-8")
        self._ttl_seconds = settings.auth_token_ttl_hours * 3600
        self._clock = clock

    def issue(self, owner_id: str) -> str:
        if not owner_id:
            raise ValueError("owner_id must not be empty")
        issued_at = str(int(self._clock()))
        return f"{owner_id}.{issued_at}.{self._sign(owner_id, issued_at)}"

    def verify(self, token: str) -> str:
        parts = (token or "").rsplit(".", 2)
        if len(parts) != 3 or not all(parts):
            raise AuthenticationError("Malformed token")

        owner_id, issued_at, signature = parts
        if not hmac.compare_digest(signature, self._sign(owner_id, issued_at)):
            raise AuthenticationError("Invalid token signature")

        try:
            issued = int(issued_at)
        except ValueError as exc:
            raise AuthenticationError("Malformed token") from exc

        age = self._clock() - issued
        if age < -60 or age > self._ttl_seconds:
            raise AuthenticationError("Token expired")
        return owner_id

    def _sign(self, owner_id: str, issued_at: str) -> str:
        return hmac.new(
            self._secret,
            f"{owner_id}.{issued_at}".encode("utf-8"),
            hashlib.sha256,
        ).hexdigest()
