"""Expo push notification provider.

Sends messages through the Expo push HTTP API
(``Settings.expo_push_url``) on an injected ``httpx.AsyncClient``.  Tokens
that are not Expo push tokens are skipped; messages go out in batches of
100, the API's per-request limit.

When ``push_enabled`` is false every send is a no-op returning 0, which
keeps local development free of outbound calls.
"""

from __future__ import annotations

import re
from typing import Any

import httpx
import structlog

from pdfquiz.config.settings import Settings
from pdfquiz.interfaces.push_provider import IPushProvider
from pdfquiz.providers.push.sqlite_token_store import SQLitePushTokenStore
from pdfquiz.utils.errors import ProviderError

logger = structlog.get_logger(logger_name=__name__)

_EXPO_TOKEN_RE = re.compile(r"^Expo(?:nent)?PushToken\[.+\]$")
_BATCH_SIZE = 100


def is_expo_push_token(token: str) -> bool:
    return bool(_EXPO_TOKEN_RE.match(token))


class ExpoPushProvider(IPushProvider):
    """Delivers notifications to every Expo device registered for an owner.

    Parameters
    ----------
    settings:
        Supplies the endpoint, the on/off switch and the request timeout.
    token_store:
        Where device tokens are kept.
    http_client:
        Injected ``httpx.AsyncClient`` for connection pooling and tests.
    """

    def __init__(
        self,
        settings: Settings,
        token_store: SQLitePushTokenStore,
        http_client: httpx.AsyncClient,
    ) -> None:
        self._url = settings.expo_push_url
        self._enabled = settings.push_enabled
        self._timeout = settings.external_call_timeout_seconds
        self._tokens = token_store
        self._http = http_client

    async def register_token(self, owner_id: str, token: str, platform: str = "") -> None:
        if not is_expo_push_token(token):
            raise ValueError(f"Not an Expo push token: {token!r}")
        await self._tokens.add(owner_id, token, platform)
        logger.info("push_token_registered", owner_id=owner_id, platform=platform)

    async def remove_token(self, owner_id: str, token: str) -> bool:
        return await self._tokens.remove(owner_id, token)

    async def send(
        self,
        owner_id: str,
        title: str,
        body: str,
        data: dict[str, Any] | None = None,
    ) -> int:
        if not self._enabled:
            return 0

        tokens = [t for t in await self._tokens.list_for_owner(owner_id) if is_expo_push_token(t)]
        if not tokens:
            return 0

        messages = [
            {"to": token, "sound": "default", "title": title, "body": body, "data": data or {}}
            for token in tokens
        ]
        accepted = 0
        for start in range(0, len(messages), _BATCH_SIZE):
            batch = messages[start : start + _BATCH_SIZE]
            try:
                response = await self._http.post(
                    self._url,
                    json=batch,
                    headers={"Accept": "application/json"},
                    timeout=self._timeout,
                )
                response.raise_for_status()
            except httpx.HTTPError as exc:
                raise ProviderError(f"Expo push failed: {exc}", provider_name="expo") from exc

            tickets = response.json().get("data", [])
            accepted += sum(1 for t in tickets if t.get("status") == "ok")
            for ticket in tickets:
                if ticket.get("status") == "error":
                    logger.warning(
                        "push_ticket_error",
                        owner_id=owner_id,
                        message=ticket.get("message"),
                    )

        logger.info("push_sent", owner_id=owner_id, devices=len(tokens), accepted=accepted)
        return accepted
