"""WebSocket endpoint streaming a document's progress events.

``/ws/documents/{document_id}?token=<bearer token>``

The token is checked and document ownership verified before the
connection is accepted; a rejected connection is closed with 4401
(authentication) or 4404 (unknown document).  Once accepted, the client
receives the current snapshot and then every event until a terminal one
(``completed``, ``failed`` or ``cancelled``), after which the server closes
the connection.
"""

from __future__ import annotations

import asyncio
import contextlib

import structlog
from fastapi import WebSocket, WebSocketDisconnect

from pdfquiz.interfaces.identity_provider import IIdentityProvider
from pdfquiz.pipeline.orchestrator import DocumentPipeline
from pdfquiz.utils.errors import AuthenticationError, DocumentNotFoundError
from pdfquiz.utils.logging import get_logger

_logger: structlog.BoundLogger = get_logger(__name__)

CLOSE_UNAUTHORIZED = 4401
CLOSE_NOT_FOUND = 4404


async def websocket_progress(websocket: WebSocket, document_id: str) -> None:
    """Stream progress for *document_id* to the connected client."""
    identity: IIdentityProvider = websocket.app.state.identity_provider
    pipeline: DocumentPipeline = websocket.app.state.pipeline

    try:
        owner_id = identity.verify(websocket.query_params.get("token", ""))
        await pipeline.get_document(document_id, owner_id)
    except AuthenticationError:
        await websocket.close(code=CLOSE_UNAUTHORIZED)
        return
    except DocumentNotFoundError:
        await websocket.close(code=CLOSE_NOT_FOUND)
        return

    await websocket.accept()
    _logger.info("websocket_connected", document_id=document_id, owner_id=owner_id)

    async def _send_events() -> None:
        async for progress_event in pipeline.subscribe(document_id, owner_id):
            await websocket.send_json(progress_event.to_wire())

    async def _wait_for_disconnect() -> None:
        # Client messages are ignored; this only notices the disconnect.
        while True:
            await websocket.receive_text()

    sender = asyncio.create_task(_send_events())
    receiver = asyncio.create_task(_wait_for_disconnect())
    try:
        done, _ = await asyncio.wait({sender, receiver}, return_when=asyncio.FIRST_COMPLETED)
        if sender in done and sender.exception() is None:
            with contextlib.suppress(RuntimeError):
                await websocket.close()
        elif receiver in done and isinstance(receiver.exception(), WebSocketDisconnect):
            _logger.info("websocket_disconnected", document_id=document_id)
    finally:
        for task in (sender, receiver):
            task.cancel()
        await asyncio.gather(sender, receiver, return_exceptions=True)
        _logger.debug("websocket_closed", document_id=document_id)
