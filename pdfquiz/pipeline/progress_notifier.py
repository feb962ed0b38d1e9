"""Document progress fan-out with callback and stream subscribers.

Keeps the latest :class:`ProgressEvent` per document and broadcasts each
new one to:

- listeners registered on the document's channel,
- connection listeners registered for the document's owner (skipped when
  the same callback is already on the document channel, so nobody gets an
  event twice),
- open :meth:`stream` iterators for the document,
- the push provider, for ``completed`` and ``failed`` events only.

Progress never goes backwards within a run: a lower value than the last
published one is raised to it.  :meth:`reset` starts a new run (used by
retry, which restarts the bar from the resumed stage).

Snapshots of in-flight documents are kept until their terminal event.  The
terminal snapshot then moves to a bounded ``cachetools.TTLCache`` so late
subscribers still see the real outcome for a while; after it expires the
pipeline rebuilds the terminal event from the stored document.

Publishing is fire-and-forget from the pipeline's point of view:
:meth:`publish` logs and swallows every delivery error so a broken
WebSocket or push outage never fails a stage.
"""

from __future__ import annotations

import asyncio
import time
from collections.abc import AsyncIterator, Callable
from typing import Any

import structlog
from cachetools import TTLCache

from pdfquiz.interfaces.push_provider import IPushProvider
from pdfquiz.models.document import DocumentStatus
from pdfquiz.models.pipeline import EventKind, ProgressEvent
from pdfquiz.utils.logging import get_logger

Listener = Callable[[ProgressEvent], Any]

_PUSH_EVENTS = frozenset({"completed", "failed"})


class ProgressNotifier:
    """Tracks and broadcasts document progress.

    Parameters
    ----------
    push_provider:
        Optional out-of-band channel for terminal outcomes.
    finished_ttl_seconds, max_finished:
        How long, and for how many documents, terminal snapshots are kept.
    clock:
        Time source for the terminal snapshot cache.
    """

    def __init__(
        self,
        push_provider: IPushProvider | None = None,
        finished_ttl_seconds: float = 3600.0,
        max_finished: int = 10_000,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._push = push_provider
        self._snapshots: dict[str, ProgressEvent] = {}
        self._finished: TTLCache[str, ProgressEvent] = TTLCache(
            maxsize=max_finished, ttl=finished_ttl_seconds, timer=clock
        )
        self._listeners: dict[str, list[Listener]] = {}
        self._owner_listeners: dict[str, list[Listener]] = {}
        self._streams: dict[str, set[asyncio.Queue[ProgressEvent]]] = {}
        self._logger: structlog.BoundLogger = get_logger(__name__)

    # ------------------------------------------------------------------
    # Publishing
    # ------------------------------------------------------------------

    async def publish(
        self,
        document_id: str,
        owner_id: str,
        status: DocumentStatus,
        progress: int,
        message: str,
        event: EventKind = "progress",
        data: dict[str, Any] | None = None,
    ) -> ProgressEvent | None:
        """Record and broadcast an event.  Never raises.

        Returns
        -------
        ProgressEvent or None
            The event as delivered (progress clamped), or ``None`` if it
            could not be built.
        """
        try:
            progress = max(0, min(100, int(progress)))
            previous = self.snapshot(document_id)
            if previous is not None:
                progress = max(progress, previous.progress)

            progress_event = ProgressEvent(
                document_id=document_id,
                owner_id=owner_id,
                status=status,
                progress=progress,
                message=message,
                event=event,
                data=data or {},
            )
            self._remember(progress_event)
        except Exception as exc:
            self._logger.warning(
                "progress_publish_failed", document_id=document_id, error=str(exc)
            )
            return None

        self._logger.debug(
            "progress_update",
            document_id=document_id,
            status=status.value,
            progress=progress,
            progress_event=event,
            message=message,
        )

        await self._notify_listeners(progress_event)
        self._feed_streams(progress_event)
        if event in _PUSH_EVENTS:
            await self._send_push(progress_event)
        return progress_event

    def snapshot(self, document_id: str) -> ProgressEvent | None:
        """Return the last event published for the document, if any."""
        current = self._snapshots.get(document_id)
        if current is not None:
            return current
        return self._finished.get(document_id)

    def reset(self, document_id: str) -> None:
        """Forget the document's progress so the next run starts from its own value."""
        self._snapshots.pop(document_id, None)
        self._finished.pop(document_id, None)

    def tracked_documents(self) -> int:
        """Number of documents with a retained snapshot, in flight or finished."""
        self._finished.expire()
        return len(self._snapshots) + len(self._finished)

    # ------------------------------------------------------------------
    # Subscription
    # ------------------------------------------------------------------

    def register_listener(self, document_id: str, callback: Listener) -> None:
        """Subscribe *callback* (sync or async) to one document's channel."""
        listeners = self._listeners.setdefault(document_id, [])
        if callback not in listeners:
            listeners.append(callback)
            self._logger.debug(
                "listener_registered",
                document_id=document_id,
                total_listeners=len(listeners),
            )

    def unregister_listener(self, document_id: str, callback: Listener) -> None:
        listeners = self._listeners.get(document_id, [])
        if callback in listeners:
            listeners.remove(callback)
        if not listeners:
            self._listeners.pop(document_id, None)

    def register_owner_listener(self, owner_id: str, callback: Listener) -> None:
        """Subscribe *callback* to every document owned by *owner_id*."""
        listeners = self._owner_listeners.setdefault(owner_id, [])
        if callback not in listeners:
            listeners.append(callback)

    def unregister_owner_listener(self, owner_id: str, callback: Listener) -> None:
        listeners = self._owner_listeners.get(owner_id, [])
        if callback in listeners:
            listeners.remove(callback)
        if not listeners:
            self._owner_listeners.pop(owner_id, None)

    async def stream(self, document_id: str) -> AsyncIterator[ProgressEvent]:
        """Yield the current snapshot (if any), then live events until a terminal one."""
        queue: asyncio.Queue[ProgressEvent] = asyncio.Queue()
        self._streams.setdefault(document_id, set()).add(queue)
        try:
            current = self.snapshot(document_id)
            if current is not None:
                yield current
                if current.is_terminal:
                    return
            while True:
                progress_event = await queue.get()
                yield progress_event
                if progress_event.is_terminal:
                    return
        finally:
            streams = self._streams.get(document_id)
            if streams is not None:
                streams.discard(queue)
                if not streams:
                    self._streams.pop(document_id, None)

    # ------------------------------------------------------------------
    # Private helpers
    # ------------------------------------------------------------------

    def _remember(self, progress_event: ProgressEvent) -> None:
        document_id = progress_event.document_id
        if progress_event.is_terminal:
            self._snapshots.pop(document_id, None)
            self._finished[document_id] = progress_event
        else:
            self._finished.pop(document_id, None)
            self._snapshots[document_id] = progress_event

    async def _notify_listeners(self, progress_event: ProgressEvent) -> None:
        channel = list(self._listeners.get(progress_event.document_id, []))
        owner = [
            cb
            for cb in self._owner_listeners.get(progress_event.owner_id, [])
            if cb not in channel
        ]
        for callback in channel + owner:
            try:
                result = callback(progress_event)
                if asyncio.iscoroutine(result):
                    await result
            except Exception as exc:
                self._logger.warning(
                    "listener_error",
                    document_id=progress_event.document_id,
                    error=str(exc),
                )

    def _feed_streams(self, progress_event: ProgressEvent) -> None:
        for queue in self._streams.get(progress_event.document_id, set()):
            queue.put_nowait(progress_event)

    async def _send_push(self, progress_event: ProgressEvent) -> None:
        if self._push is None:
            return
        title_text = progress_event.data.get("title") or "Your document"
        if progress_event.event == "completed":
            title = "Document ready"
            count = progress_event.data.get("questions_count", 0)
            body = f"{title_text}: {count} study questions are ready."
        else:
            title = "Processing failed"
            body = f"{title_text} could not be processed."
        try:
            await self._push.send(
                progress_event.owner_id,
                title,
                body,
                data={
                    "document_id": progress_event.document_id,
                    "type": progress_event.event,
                },
            )
        except Exception as exc:
            self._logger.warning(
                "push_notification_failed",
                document_id=progress_event.document_id,
                error=str(exc),
            )
