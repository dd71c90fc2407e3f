"""Best-effort delivery of session events to the configured webhook."""

from __future__ import annotations

import asyncio
from contextlib import suppress

import httpx
import structlog

from wagateway.models import WebhookEvent
from wagateway.settings import settings

logger = structlog.get_logger(__name__)

ALL_EVENTS = "ALL"
STOP_DRAIN_SECONDS = 5.0


class WebhookDispatcher:
    """Filters events by an allow-list and posts them from a worker pool.

    Events wait in a bounded queue; when it is full ``dispatch`` waits for
    room instead of spawning unbounded outbound calls. Delivery is at most
    once: failures are logged and dropped.
    """

    def __init__(
        self,
        url: str | None = None,
        allowed_events: list[str] | None = None,
        *,
        workers: int | None = None,
        queue_size: int | None = None,
        timeout: float | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.url = settings.webhook_url() if url is None else url
        self.allowed_events = set(
            settings.webhook_allowed_events() if allowed_events is None else allowed_events
        )
        self._worker_count = workers or settings.webhook_workers()
        self._queue: asyncio.Queue[WebhookEvent] = asyncio.Queue(
            maxsize=queue_size or settings.webhook_queue_size()
        )
        self._timeout = timeout if timeout is not None else settings.webhook_timeout_seconds()
        self._transport = transport
        self._client: httpx.AsyncClient | None = None
        self._workers: list[asyncio.Task] = []

    @property
    def enabled(self) -> bool:
        return bool(self.url)

    def allows(self, event_type: str) -> bool:
        return ALL_EVENTS in self.allowed_events or event_type in self.allowed_events

    async def start(self) -> None:
        """Spawn delivery workers. No-op when no destination is configured."""
        if not self.enabled or self._workers:
            return
        self._client = httpx.AsyncClient(timeout=self._timeout, transport=self._transport)
        self._workers = [
            asyncio.create_task(self._worker(index)) for index in range(self._worker_count)
        ]
        logger.info("Webhook dispatcher started", url=self.url, workers=self._worker_count)

    async def stop(self) -> None:
        """Give queued events a short chance to drain, then stop workers."""
        if not self._workers:
            return
        with suppress(asyncio.TimeoutError):
            await asyncio.wait_for(self._queue.join(), timeout=STOP_DRAIN_SECONDS)
        for task in self._workers:
            task.cancel()
        for task in self._workers:
            with suppress(asyncio.CancelledError):
                await task
        self._workers = []
        if self._client is not None:
            await self._client.aclose()
            self._client = None

    async def dispatch(self, session_id: str, event_type: str, data: object) -> None:
        """Queue an event for delivery if it passes the allow-list.

        Args:
            session_id: Session that produced the event.
            event_type: Upper-case event tag, e.g. ``MESSAGES_UPSERT``.
            data: Event-specific payload.
        """
        if not self.enabled or not self.allows(event_type):
            return
        await self._queue.put(WebhookEvent(instance=session_id, type=event_type, data=data))

    async def _worker(self, index: int) -> None:
        while True:
            event = await self._queue.get()
            try:
                await self._deliver(event)
            except Exception:
                # A dead worker would leave dispatch() blocked on a full queue.
                logger.exception(
                    "Webhook worker failed",
                    worker=index,
                    session_id=event.instance,
                    event_type=event.type,
                )
            finally:
                self._queue.task_done()

    async def _deliver(self, event: WebhookEvent) -> None:
        assert self._client is not None
        try:
            resp = await self._client.post(self.url, json=event.model_dump(mode="json"))
            resp.raise_for_status()
        except (httpx.HTTPError, ValueError) as exc:
            logger.warning(
                "Webhook delivery failed",
                session_id=event.instance,
                event_type=event.type,
                error=str(exc),
            )
            return
        logger.debug("Webhook delivered", session_id=event.instance, event_type=event.type)
