"""Shared pytest fixtures for gateway tests."""

import asyncio
import os
from typing import AsyncGenerator, Callable

import httpx
import pytest

# Ensure host configuration does not affect test results. These settings are
# intentionally unprefixed and may exist in a developer/CI environment.
for k in (
    "APP_WEBHOOK_URL",
    "APP_WEBHOOK_ALLOWED_EVENTS",
    "APP_WEBHOOK_FILE_IN_BASE64",
    "MAX_RETRIES",
    "RECONNECT_INTERVAL",
    "WAGATEWAY_TOKEN",
):
    os.environ.pop(k, None)

from wagateway.credentials import CredentialStore
from wagateway.engine.base import CredentialState, EngineError, EngineEvent
from wagateway.main import app
from wagateway.manager import SessionManager
from wagateway.models import WebhookEvent
from wagateway.webhook import WebhookDispatcher

# Disable auth by setting empty token on app state
app.state.api_token = ""


class FakeConnection:
    """In-memory engine connection driven by the test."""

    def __init__(self, session_id: str, get_message, *, registered: bool = False) -> None:
        self.session_id = session_id
        self.get_message = get_message
        self.registered = registered
        self.open = False
        self.closed = False
        self.calls: list[tuple] = []
        self.fail_methods: set[str] = set()
        self.pairing_code = "ABCD-1234"
        self.on_whatsapp_result: list[dict] = [{"exists": True, "jid": "15551234567@s.whatsapp.net"}]
        self.group = {"id": "123-456@g.us", "subject": "Team"}
        self.media = b"media-bytes"
        self._queue: asyncio.Queue[EngineEvent | None] = asyncio.Queue()

    def emit(self, name: str, data=None) -> None:
        if name == "connection.update" and (data or {}).get("connection") == "open":
            self.open = True
        if name == "connection.update" and (data or {}).get("connection") == "close":
            self.open = False
        self._queue.put_nowait(EngineEvent(name, data))

    def close_with(self, status_code: int) -> None:
        self.emit(
            "connection.update",
            {"connection": "close", "lastDisconnect": {"error": {"output": {"statusCode": status_code}}}},
        )

    async def events(self):
        while True:
            event = await self._queue.get()
            if event is None:
                return
            yield event

    async def is_open(self) -> bool:
        return self.open

    async def _call(self, method: str, *args):
        self.calls.append((method, *args))
        if method in self.fail_methods:
            raise EngineError(f"{method} failed")

    def called(self, method: str) -> list[tuple]:
        return [call[1:] for call in self.calls if call[0] == method]

    async def request_pairing_code(self, phone_number: str) -> str:
        await self._call("request_pairing_code", phone_number)
        return self.pairing_code

    async def send_message(self, jid: str, content: dict) -> dict:
        await self._call("send_message", jid, content)
        return {"key": {"id": "SENT1", "remoteJid": jid, "fromMe": True}}

    async def on_whatsapp(self, jid: str) -> list[dict]:
        await self._call("on_whatsapp", jid)
        return self.on_whatsapp_result

    async def group_metadata(self, jid: str) -> dict:
        await self._call("group_metadata", jid)
        return self.group if jid == self.group["id"] else {}

    async def group_fetch_all_participating(self) -> dict:
        await self._call("group_fetch_all_participating")
        return {self.group["id"]: self.group}

    async def group_participants_update(self, jid, participants, action) -> list[dict]:
        await self._call("group_participants_update", jid, participants, action)
        return [{"status": "200", "jid": p} for p in participants]

    async def group_update_subject(self, jid, subject) -> None:
        await self._call("group_update_subject", jid, subject)

    async def group_update_description(self, jid, description) -> None:
        await self._call("group_update_description", jid, description)

    async def group_setting_update(self, jid, setting) -> None:
        await self._call("group_setting_update", jid, setting)

    async def group_leave(self, jid) -> None:
        await self._call("group_leave", jid)

    async def group_invite_code(self, jid) -> str:
        await self._call("group_invite_code", jid)
        return "INVITE"

    async def group_revoke_invite(self, jid) -> str:
        await self._call("group_revoke_invite", jid)
        return "INVITE2"

    async def group_accept_invite(self, code) -> str:
        await self._call("group_accept_invite", code)
        return self.group["id"]

    async def update_profile_status(self, status) -> None:
        await self._call("update_profile_status", status)

    async def update_profile_name(self, name) -> None:
        await self._call("update_profile_name", name)

    async def update_profile_picture(self, jid, image) -> None:
        await self._call("update_profile_picture", jid, image)

    async def profile_picture_url(self, jid, kind="image"):
        await self._call("profile_picture_url", jid, kind)
        return "https://pps.example/pic.jpg"

    async def update_block_status(self, jid, action) -> None:
        await self._call("update_block_status", jid, action)

    async def read_messages(self, keys) -> None:
        await self._call("read_messages", keys)

    async def send_presence_update(self, presence, jid) -> None:
        await self._call("send_presence_update", presence, jid)

    async def download_media(self, message) -> bytes:
        await self._call("download_media", message)
        return self.media

    async def aggregate_poll_votes(self, message, poll_updates) -> list[dict]:
        await self._call("aggregate_poll_votes", message, poll_updates)
        return [{"name": "yes", "voters": ["1@s.whatsapp.net"]}]

    async def logout(self) -> None:
        await self._call("logout")

    async def close(self) -> None:
        self.closed = True
        self.open = False
        self._queue.put_nowait(None)


class FakeEngine:
    """Engine that hands out FakeConnections and remembers them."""

    def __init__(self) -> None:
        self.connections: list[FakeConnection] = []
        self.opened_with: list[CredentialState] = []
        self.fail_open = False
        self.open_attempts = 0
        self.registered = False
        # Events emitted by every new connection right after it opens.
        self.initial_events: list[tuple[str, dict]] = []

    async def open(self, session_id: str, credentials: CredentialState, get_message) -> FakeConnection:
        self.open_attempts += 1
        if self.fail_open:
            raise EngineError("engine unavailable")
        self.opened_with.append(credentials)
        connection = FakeConnection(
            session_id, get_message, registered=credentials.registered or self.registered
        )
        for name, data in self.initial_events:
            connection.emit(name, data)
        self.connections.append(connection)
        return connection

    def latest(self) -> FakeConnection:
        return self.connections[-1]

    async def aclose(self) -> None:
        pass


class RecordingDispatcher(WebhookDispatcher):
    """Dispatcher that records accepted events instead of posting them."""

    def __init__(self, allowed_events: list[str] | None = None) -> None:
        super().__init__("http://hooks.test/events", allowed_events or ["ALL"])
        self.events: list[WebhookEvent] = []

    async def dispatch(self, session_id: str, event_type: str, data: object) -> None:
        if not self.allows(event_type):
            return
        self.events.append(WebhookEvent(instance=session_id, type=event_type, data=data))

    def types(self) -> list[str]:
        return [event.type for event in self.events]


@pytest.fixture
def sessions_dir(tmp_path) -> str:
    """Create a temporary sessions directory for test isolation."""
    path = tmp_path / "sessions"
    path.mkdir()
    return str(path)


@pytest.fixture
def engine() -> FakeEngine:
    return FakeEngine()


@pytest.fixture
def dispatcher() -> RecordingDispatcher:
    return RecordingDispatcher()


@pytest.fixture
async def make_manager(engine, dispatcher, sessions_dir):
    """Build SessionManagers over the fake engine; all are shut down after the test."""
    managers: list[SessionManager] = []

    def factory(**overrides) -> SessionManager:
        options = {
            "max_retries": 0,
            "reconnect_interval_ms": 0,
            "pairing_timeout": 2.0,
            "inline_media": False,
            "flush_interval": 0,
        }
        options.update(overrides)
        manager = SessionManager(engine, CredentialStore(sessions_dir), dispatcher, **options)
        managers.append(manager)
        return manager

    yield factory
    for manager in managers:
        await manager.shutdown()


@pytest.fixture
def manager(make_manager) -> SessionManager:
    return make_manager()


@pytest.fixture
def eventually() -> Callable:
    """Poll a predicate until it holds, letting background tasks run."""

    async def wait(predicate: Callable[[], bool], timeout: float = 2.0) -> None:
        deadline = asyncio.get_running_loop().time() + timeout
        while not predicate():
            if asyncio.get_running_loop().time() > deadline:
                raise AssertionError("condition not met in time")
            await asyncio.sleep(0.01)

    return wait


@pytest.fixture
async def api_client(manager, monkeypatch) -> AsyncGenerator[httpx.AsyncClient, None]:
    """Create an async HTTP client bound to the test manager."""
    monkeypatch.setenv("WAGATEWAY_CREATE_TIMEOUT_SECONDS", "2")
    app.state.manager = manager
    app.state.api_token = ""
    transport = httpx.ASGITransport(app=app)
    async with httpx.AsyncClient(transport=transport, base_url="http://test") as client:
        yield client


@pytest.fixture(scope="session")
def anyio_backend() -> str:
    """Run async tests under asyncio; the gateway uses asyncio primitives directly."""
    return "asyncio"
