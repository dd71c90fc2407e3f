"""Session lifecycle: create, reconnect, recover, delete and event fan-out."""

from __future__ import annotations

import asyncio
import base64
import io
import os
from contextlib import contextmanager, suppress
from dataclasses import dataclass, field

import qrcode
import structlog

from wagateway.context import RequestContext
from wagateway.credentials import CredentialStore
from wagateway.engine.base import (
    DisconnectReason,
    EngineConnection,
    EngineError,
    EngineEvent,
    MessageResolver,
    ProtocolEngine,
    disconnect_status_code,
)
from wagateway.events import (
    EVENT_TYPES,
    QRCODE_UPDATED,
    lid_mappings,
    shape_group_participants,
    shape_messages_update,
    shape_messages_upsert,
    shape_receipt_update,
)
from wagateway.history import HistoryCache
from wagateway.jid import resolve_canonical_jid
from wagateway.models import SessionState
from wagateway.registry import RetryTracker, SessionRegistry
from wagateway.settings import settings
from wagateway.webhook import WebhookDispatcher

logger = structlog.get_logger(__name__)

CREATE_FAILED = "Unable to create session."
QR_FAILED = "Unable to create QR code."


@contextmanager
def _session_logging_context(session_id: str):
    structlog.contextvars.bind_contextvars(session_id=session_id)
    try:
        yield
    finally:
        structlog.contextvars.unbind_contextvars("session_id")


def render_qr_data_url(payload: str) -> str:
    """Render a pairing challenge as a PNG ``data:`` URL."""
    qr = qrcode.QRCode(error_correction=qrcode.constants.ERROR_CORRECT_M, border=4)
    qr.add_data(payload)
    qr.make(fit=True)
    img = qr.make_image(fill_color="black", back_color="white").convert("RGB")
    buf = io.BytesIO()
    img.save(buf, format="PNG")
    return "data:image/png;base64," + base64.b64encode(buf.getvalue()).decode("ascii")


def make_message_resolver(history: HistoryCache) -> MessageResolver:
    """Build the lookup the engine uses to re-fetch messages it has seen."""

    async def get_message(key: dict) -> dict | None:
        jid = resolve_canonical_jid(key) or key.get("remoteJid") or ""
        message = history.load_message(jid, key.get("id") or "")
        return (message or {}).get("message") or None

    return get_message


def _remove_file(path: str) -> None:
    with suppress(FileNotFoundError):
        os.remove(path)


@dataclass
class SessionHandle:
    """Live state of one session.

    ``closed`` is set once the connection reported a close or the handle was
    superseded; events still queued for it are ignored afterwards.
    """

    session_id: str
    connection: EngineConnection
    history: HistoryCache
    get_message: MessageResolver
    context: RequestContext | None = None
    state: SessionState = SessionState.INITIALIZING
    pairing_mode: bool = False
    closed: bool = False
    task: asyncio.Task | None = None
    pairing_ready: asyncio.Event = field(default_factory=asyncio.Event)


class SessionManager:
    """Owns every session's lifecycle and the state shared between them.

    The registry, the retry tracker and the LID map live on the instance; a
    process normally builds one manager in the application lifespan.
    Each session's engine events are drained by a single consumer task, so
    they are handled in emission order.
    """

    def __init__(
        self,
        engine: ProtocolEngine,
        credentials: CredentialStore,
        dispatcher: WebhookDispatcher,
        *,
        max_retries: int | None = None,
        reconnect_interval_ms: int | None = None,
        pairing_timeout: float | None = None,
        inline_media: bool | None = None,
        flush_interval: float | None = None,
    ) -> None:
        self.engine = engine
        self.credentials = credentials
        self.dispatcher = dispatcher
        self.registry: SessionRegistry[SessionHandle] = SessionRegistry()
        self.retries = RetryTracker(
            settings.max_retries() if max_retries is None else max_retries
        )
        self.reconnect_interval_ms = (
            settings.reconnect_interval_ms() if reconnect_interval_ms is None else reconnect_interval_ms
        )
        self.pairing_timeout = (
            settings.pairing_timeout_seconds() if pairing_timeout is None else pairing_timeout
        )
        self.inline_media = (
            settings.webhook_file_in_base64() if inline_media is None else inline_media
        )
        self.flush_interval = (
            settings.history_flush_seconds() if flush_interval is None else flush_interval
        )
        # lid jid -> phone-number jid, learned from lid-mapping updates
        self.lid_map: dict[str, str] = {}
        self._create_locks: dict[str, asyncio.Lock] = {}
        self._deletions: dict[str, int] = {}
        self._reconnects: dict[str, asyncio.Task] = {}
        self._pending: set[asyncio.Task] = set()
        self._flush_task: asyncio.Task | None = None
        self._stopping = False
        self._shutdowns = 0

    # ------------------------------------------------------------------
    # Startup and shutdown
    # ------------------------------------------------------------------

    async def start(self) -> None:
        await self.dispatcher.start()
        if self._flush_task is None and self.flush_interval > 0:
            self._flush_task = asyncio.create_task(self._flush_loop())

    async def recover_all(self) -> list[str]:
        """Start every session that has stored credentials.

        Raises:
            OSError: The sessions directory cannot be listed.
        """
        session_ids = self.credentials.list_session_ids()
        for session_id in session_ids:
            logger.info("Recovering session", session_id=session_id)
            self.start_create(session_id)
        return session_ids

    def start_create(
        self,
        session_id: str,
        context: RequestContext | None = None,
        *,
        use_pairing_code: bool = False,
        phone_number: str = "",
    ) -> asyncio.Task:
        """Run ``create`` in the background; the task is cancelled on shutdown."""
        task = asyncio.create_task(
            self.create(
                session_id,
                context,
                use_pairing_code=use_pairing_code,
                phone_number=phone_number,
            )
        )
        self._pending.add(task)
        task.add_done_callback(self._pending.discard)
        return task

    async def shutdown(self) -> None:
        """Persist histories and drop every connection without logging out.

        Creates still opening when shutdown begins are abandoned; a create
        started afterwards runs normally.
        """
        self._stopping = True
        self._shutdowns += 1
        try:
            if self._flush_task is not None:
                self._flush_task.cancel()
                with suppress(asyncio.CancelledError):
                    await self._flush_task
                self._flush_task = None
            for task in list(self._pending) + list(self._reconnects.values()):
                task.cancel()
                with suppress(asyncio.CancelledError):
                    await task
            self._reconnects.clear()
            self.flush_histories(only_persisted=False)
            for session_id in self.registry.list_ids():
                handle = self.registry.delete(session_id)
                if handle is not None:
                    await self._stop_handle(handle)
            await self.dispatcher.stop()
        finally:
            self._stopping = False
        logger.info("Session manager stopped")

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def get(self, session_id: str) -> SessionHandle | None:
        return self.registry.get(session_id)

    def list(self) -> list[str]:
        return self.registry.list_ids()

    def is_registered(self, session_id: str) -> bool:
        return self.registry.has(session_id)

    async def is_connected(self, session_id: str) -> bool:
        """Ask the transport, at call time, whether the session is open."""
        handle = self.registry.get(session_id)
        if handle is None:
            return False
        try:
            return await handle.connection.is_open()
        except EngineError as exc:
            logger.warning("Connection state check failed", session_id=session_id, error=str(exc))
            return False

    def resolve_recipient(self, jid: str) -> str:
        """Map a LID to its phone-number JID when the mapping is known."""
        return self.lid_map.get(jid, jid)

    # ------------------------------------------------------------------
    # Create
    # ------------------------------------------------------------------

    def _create_lock(self, session_id: str) -> asyncio.Lock:
        lock = self._create_locks.get(session_id)
        if lock is None:
            lock = asyncio.Lock()
            self._create_locks[session_id] = lock
        return lock

    async def create(
        self,
        session_id: str,
        context: RequestContext | None = None,
        *,
        use_pairing_code: bool = False,
        phone_number: str = "",
    ) -> SessionHandle | None:
        """Open a connection for ``session_id`` and install it in the registry.

        Creates for the same id run one at a time; a later create replaces
        the handle installed by an earlier one.

        Args:
            session_id: Caller-chosen session identifier.
            context: Reply channel of a waiting HTTP request, if any.
            use_pairing_code: Pair with a code instead of a QR challenge.
            phone_number: Phone number the pairing code is requested for.

        Returns:
            The installed handle, or None when the connection could not be opened.
        """
        with _session_logging_context(session_id):
            failed = False
            async with self._create_lock(session_id):
                try:
                    handle = await self._open(session_id, context, use_pairing_code)
                except (EngineError, OSError):
                    logger.exception("Failed to open session")
                    handle, failed = None, True
            if failed:
                await self._on_open_failed(session_id, context)
                return None
            if handle is None:
                return None
            if handle.pairing_mode:
                await self._request_pairing_code(handle, phone_number)
            return handle

    async def _open(
        self,
        session_id: str,
        context: RequestContext | None,
        use_pairing_code: bool,
    ) -> SessionHandle | None:
        epoch = self._deletions.get(session_id, 0)
        shutdowns = self._shutdowns
        credentials = await self.credentials.load(session_id)
        previous = self.registry.get(session_id)
        if previous is not None:
            history = previous.history
        else:
            history = await asyncio.to_thread(
                HistoryCache.read_from_file, self.credentials.history_path(session_id)
            )
        get_message = make_message_resolver(history)
        connection = await self.engine.open(session_id, credentials, get_message)

        if self._shutdowns != shutdowns or self._deletions.get(session_id, 0) != epoch:
            # Deleted, or the manager shut down, while the connection was opening.
            logger.info("Session gone during create; dropping connection")
            await connection.close()
            if context is not None:
                context.fail(CREATE_FAILED)
            return None

        pairing_mode = (
            use_pairing_code
            and not connection.registered
            and not credentials.creds.get("account")
        )
        handle = SessionHandle(
            session_id=session_id,
            connection=connection,
            history=history,
            get_message=get_message,
            context=context,
            state=SessionState.PAIRING if pairing_mode else SessionState.INITIALIZING,
            pairing_mode=pairing_mode,
        )
        previous = self.registry.get(session_id)
        self.registry.set(session_id, handle)
        if previous is not None:
            await self._stop_handle(previous)
        handle.task = asyncio.create_task(self._consume(handle))
        logger.info("Session created", pairing_mode=pairing_mode)
        return handle

    async def _on_open_failed(self, session_id: str, context: RequestContext | None) -> None:
        """Apply the disconnect policy to a connection that could not be opened.

        A first create answers its caller. Reconnects and boot recovery retry
        within the budget; once it is spent a reconnecting session is deleted,
        while a recovering one keeps its stored credentials for the next start.
        """
        previous = self.registry.get(session_id)
        if self._stopping or (previous is None and context is not None):
            if context is not None:
                context.fail(CREATE_FAILED)
            return
        if self.retries.should_reconnect(session_id):
            if previous is not None:
                previous.state = SessionState.RECONNECTING
            self._schedule_reconnect(session_id, context, self.reconnect_interval_ms / 1000)
            return
        if context is not None:
            context.fail(CREATE_FAILED)
        if previous is None:
            logger.error("Giving up on session recovery; credentials kept")
            self.retries.clear(session_id)
            return
        previous.state = SessionState.CLOSED
        await self.delete(session_id)

    async def _request_pairing_code(self, handle: SessionHandle, phone_number: str) -> None:
        context = handle.context
        try:
            await asyncio.wait_for(handle.pairing_ready.wait(), timeout=self.pairing_timeout or None)
        except asyncio.TimeoutError:
            logger.warning("Timed out waiting for pairing challenge")
            if context is not None:
                context.fail(CREATE_FAILED)
            return
        if handle.closed or self.registry.get(handle.session_id) is not handle:
            # The close branch answers the caller.
            return
        try:
            code = await handle.connection.request_pairing_code(phone_number)
        except EngineError:
            logger.exception("Failed to request pairing code")
            code = None
        if context is None:
            return
        if code:
            context.succeed("Verify on your phone and enter the provided code.", {"code": code})
        else:
            context.fail(CREATE_FAILED)

    # ------------------------------------------------------------------
    # Event handling
    # ------------------------------------------------------------------

    async def _consume(self, handle: SessionHandle) -> None:
        with _session_logging_context(handle.session_id):
            async for event in handle.connection.events():
                if handle.closed:
                    break
                try:
                    handle.history.apply(event)
                    finished = await self._handle_event(handle, event)
                except Exception:
                    logger.exception("Failed to handle engine event", engine_event=event.name)
                    continue
                if finished:
                    break

    async def _handle_event(self, handle: SessionHandle, event: EngineEvent) -> bool:
        """Process one event. Returns True once the connection has closed."""
        if event.name == "creds.update":
            try:
                await self.credentials.save(handle.session_id, event.data or {})
            except OSError:
                logger.exception("Failed to persist credentials")
            return False
        if event.name == "connection.update":
            return await self._on_connection_update(handle, event.data or {})
        await self._route_event(handle, event)
        return False

    async def _route_event(self, handle: SessionHandle, event: EngineEvent) -> None:
        session_id = handle.session_id
        name, data = event.name, event.data
        if name == "lid-mapping.update":
            self.lid_map.update(lid_mappings(data))
        event_type = EVENT_TYPES.get(name)
        if event_type is None:
            logger.debug("Ignoring engine event", engine_event=name)
            return
        if not self.dispatcher.enabled or not self.dispatcher.allows(event_type):
            return

        if name == "messages.upsert":
            payload = await shape_messages_upsert(
                data, handle.connection, inline_media=self.inline_media
            )
            if payload is not None:
                await self.dispatcher.dispatch(session_id, event_type, payload)
        elif name == "messages.update":
            for item in await shape_messages_update(data, handle.get_message):
                await self.dispatcher.dispatch(session_id, event_type, [item])
        elif name == "message-receipt.update":
            payload = await shape_receipt_update(data, handle.connection, handle.get_message)
            await self.dispatcher.dispatch(session_id, event_type, payload)
        elif name == "group-participants.update":
            await self.dispatcher.dispatch(session_id, event_type, shape_group_participants(data))
        elif name == "lid-mapping.update":
            size = len((data or {}).get("mappings") or [])
            await self.dispatcher.dispatch(session_id, event_type, {"size": size})
        elif name == "chats.set" and isinstance(data, dict):
            await self.dispatcher.dispatch(session_id, event_type, data.get("chats") or [])
        else:
            await self.dispatcher.dispatch(session_id, event_type, data)

    async def _on_connection_update(self, handle: SessionHandle, update: dict) -> bool:
        await self.dispatcher.dispatch(handle.session_id, EVENT_TYPES["connection.update"], update)
        connection = update.get("connection")

        if connection == "open":
            self.retries.clear(handle.session_id)
            handle.state = SessionState.CONNECTED
            logger.info("Session connected")
            if handle.context is not None:
                handle.context.succeed("Session connected.")

        if update.get("qr"):
            await self._on_qr(handle, update)

        if connection == "close":
            await self._on_close(handle, update)
            return True
        return False

    async def _on_qr(self, handle: SessionHandle, update: dict) -> None:
        if handle.pairing_mode:
            handle.pairing_ready.set()
            return
        context = handle.context
        if context is None or context.responded:
            return
        await self.dispatcher.dispatch(handle.session_id, QRCODE_UPDATED, update)
        try:
            qr = await asyncio.to_thread(render_qr_data_url, str(update["qr"]))
        except Exception:
            logger.exception("Failed to render QR code")
            context.fail(QR_FAILED)
            return
        context.succeed("QR code received, please scan the QR code.", {"qr": qr})

    async def _on_close(self, handle: SessionHandle, update: dict) -> None:
        session_id = handle.session_id
        handle.closed = True
        handle.pairing_ready.set()
        if self.registry.get(session_id) is not handle:
            return
        status_code = disconnect_status_code(update)
        if status_code == DisconnectReason.LOGGED_OUT or not self.retries.should_reconnect(session_id):
            logger.warning("Session closed permanently", status_code=status_code)
            handle.state = SessionState.CLOSED
            if handle.context is not None:
                handle.context.fail(CREATE_FAILED)
            await self.delete(session_id)
            return
        handle.state = SessionState.RECONNECTING
        if status_code == DisconnectReason.RESTART_REQUIRED:
            delay = 0.0
        else:
            delay = self.reconnect_interval_ms / 1000
        logger.info("Connection closed; reconnect scheduled", status_code=status_code, delay=delay)
        self._schedule_reconnect(session_id, handle.context, delay)

    # ------------------------------------------------------------------
    # Reconnect
    # ------------------------------------------------------------------

    def _schedule_reconnect(
        self, session_id: str, context: RequestContext | None, delay: float
    ) -> asyncio.Task | None:
        self._cancel_reconnect(session_id)
        if self._stopping:
            return None
        task = asyncio.create_task(self._reconnect(session_id, context, delay))
        self._reconnects[session_id] = task
        return task

    async def _reconnect(self, session_id: str, context: RequestContext | None, delay: float) -> None:
        await asyncio.sleep(delay)
        task = asyncio.current_task()
        if self._reconnects.get(session_id) is task:
            del self._reconnects[session_id]
        # Past the delay the attempt is an in-flight create; shutdown cancels those.
        self._pending.add(task)
        try:
            await self.create(session_id, context)
        finally:
            self._pending.discard(task)

    def _cancel_reconnect(self, session_id: str) -> None:
        task = self._reconnects.pop(session_id, None)
        if task is not None and task is not asyncio.current_task() and not task.done():
            task.cancel()

    # ------------------------------------------------------------------
    # Delete
    # ------------------------------------------------------------------

    async def delete(self, session_id: str) -> None:
        """Forget a session and remove its persisted state. Idempotent."""
        self._deletions[session_id] = self._deletions.get(session_id, 0) + 1
        handle = self.registry.delete(session_id)
        self._cancel_reconnect(session_id)
        self.retries.clear(session_id)
        if handle is not None:
            handle.state = SessionState.CLOSED
            await self._stop_handle(handle)
        await self.credentials.remove(session_id)
        await asyncio.to_thread(_remove_file, self.credentials.history_path(session_id))
        lock = self._create_locks.get(session_id)
        if lock is None or not lock.locked():
            self._create_locks.pop(session_id, None)
            self._deletions.pop(session_id, None)
        logger.info("Session deleted", session_id=session_id)

    async def logout(self, session_id: str) -> None:
        """Log the device out, then delete the session."""
        handle = self.registry.get(session_id)
        if handle is not None:
            try:
                await handle.connection.logout()
            except EngineError as exc:
                logger.warning("Engine logout failed", session_id=session_id, error=str(exc))
        await self.delete(session_id)

    async def _stop_handle(self, handle: SessionHandle) -> None:
        handle.closed = True
        handle.pairing_ready.set()
        task = handle.task
        if task is not None and task is not asyncio.current_task() and not task.done():
            task.cancel()
            with suppress(asyncio.CancelledError):
                await task
        try:
            await handle.connection.close()
        except Exception:
            logger.exception("Failed to close engine connection", session_id=handle.session_id)

    # ------------------------------------------------------------------
    # History persistence
    # ------------------------------------------------------------------

    def flush_histories(self, *, only_persisted: bool = True) -> None:
        """Write every session's history cache to disk.

        Args:
            only_persisted: Skip sessions whose credential directory is gone.
        """
        for handle in self.registry.values():
            session_id = handle.session_id
            if only_persisted and not self.credentials.exists(session_id):
                continue
            try:
                handle.history.write_to_file(self.credentials.history_path(session_id))
            except OSError:
                logger.exception("Failed to write history", session_id=session_id)

    async def _flush_loop(self) -> None:
        while True:
            await asyncio.sleep(self.flush_interval)
            try:
                self.flush_histories()
            except Exception:
                logger.exception("History flush failed")
