"""Tests for the sidecar-backed engine adapter."""

import json

import httpx
import pytest

from wagateway.engine.base import CredentialState, EngineError
from wagateway.engine.sidecar import SidecarEngine


def _sse(*events: dict) -> bytes:
    return "".join(f"data: {json.dumps(event)}\n\n" for event in events).encode()


class Sidecar:
    """Scripted sidecar answering the adapter's HTTP calls."""

    def __init__(self, events: bytes = b"", open_status: int = 200, status_body: bytes | None = None) -> None:
        self.events = events
        self.open_status = open_status
        self.status_body = status_body
        self.requests: list[tuple[str, str, dict]] = []

    def handler(self, request: httpx.Request) -> httpx.Response:
        body = json.loads(request.content) if request.content else {}
        self.requests.append((request.method, request.url.path, body))
        path = request.url.path
        if path == "/sessions/open":
            return httpx.Response(self.open_status, json={"registered": True})
        if path.endswith("/events"):
            return httpx.Response(200, content=self.events, headers={"content-type": "text/event-stream"})
        if path.endswith("/status"):
            if self.status_body is not None:
                return httpx.Response(200, content=self.status_body)
            return httpx.Response(200, json={"open": True})
        if path.endswith("/call"):
            if body["method"] == "sendMessage":
                return httpx.Response(200, json={"result": {"key": {"id": "SENT"}}})
            if body["method"] == "downloadMediaMessage":
                return httpx.Response(200, json={"result": "AQI="})
            return httpx.Response(200, json={"result": None})
        return httpx.Response(200, json={})

    def posted(self, suffix: str) -> list[dict]:
        return [body for method, path, body in self.requests if method == "POST" and path.endswith(suffix)]


async def _resolver(key: dict):
    return {"conversation": "original"} if key.get("id") == "M1" else None


def _engine(sidecar: Sidecar) -> SidecarEngine:
    return SidecarEngine("http://sidecar.test", token="t0k", transport=httpx.MockTransport(sidecar.handler))


class TestOpen:
    """Test opening connections."""

    @pytest.mark.anyio
    async def test_open_sends_credentials(self) -> None:
        sidecar = Sidecar()
        engine = _engine(sidecar)

        connection = await engine.open("s1", CredentialState(creds={"me": {}}), _resolver)
        await connection.close()
        await engine.aclose()

        assert sidecar.posted("/sessions/open") == [{"session_id": "s1", "creds": {"me": {}}, "keys": {}}]
        assert connection.registered is True

    @pytest.mark.anyio
    async def test_open_failure_raises_engine_error(self) -> None:
        engine = _engine(Sidecar(open_status=503))

        with pytest.raises(EngineError):
            await engine.open("s1", CredentialState(), _resolver)
        await engine.aclose()


class TestEventStream:
    """Test turning the SSE stream into engine events."""

    @pytest.mark.anyio
    async def test_stream_end_reports_lost_connection(self) -> None:
        sidecar = Sidecar(
            _sse(
                {"type": "creds.update", "data": {"creds": {"registered": False}}},
                {"type": "message.resolve", "data": {"request_id": "r1", "key": {"id": "M1"}}},
                {"type": "messages.upsert", "data": {"messages": []}},
            )
        )
        engine = _engine(sidecar)
        connection = await engine.open("s1", CredentialState(), _resolver)

        events = [event async for event in connection.events()]
        await engine.aclose()

        assert [event.name for event in events] == ["creds.update", "messages.upsert", "connection.update"]
        assert events[-1].data["lastDisconnect"]["error"]["output"]["statusCode"] == 408
        assert connection.registered is False
        assert sidecar.posted("/resolve") == [
            {"request_id": "r1", "message": {"conversation": "original"}}
        ]

    @pytest.mark.anyio
    async def test_close_event_is_terminal(self) -> None:
        close = {"connection": "close", "lastDisconnect": {"error": {"output": {"statusCode": 401}}}}
        sidecar = Sidecar(_sse({"type": "connection.update", "data": close}, {"type": "chats.set", "data": []}))
        engine = _engine(sidecar)
        connection = await engine.open("s1", CredentialState(), _resolver)

        events = [event async for event in connection.events()]
        await engine.aclose()

        assert [event.data for event in events] == [close]


class TestCalls:
    """Test method calls proxied to the sidecar."""

    @pytest.mark.anyio
    async def test_send_message_and_media(self) -> None:
        sidecar = Sidecar()
        engine = _engine(sidecar)
        connection = await engine.open("s1", CredentialState(), _resolver)

        sent = await connection.send_message("5@s.whatsapp.net", {"text": "hi"})
        media = await connection.download_media({"key": {"id": "M1"}})
        is_open = await connection.is_open()
        await connection.close()
        await engine.aclose()

        assert sent == {"key": {"id": "SENT"}}
        assert media == b"\x01\x02"
        assert is_open is True
        assert {"method": "sendMessage", "params": {"jid": "5@s.whatsapp.net", "content": {"text": "hi"}}} in sidecar.posted("/call")
        assert sidecar.posted("/sessions/s1/close") == [{}]

    @pytest.mark.anyio
    @pytest.mark.parametrize("body", [b"<html>bad gateway</html>", b"[true]"])
    async def test_malformed_status_reads_as_closed(self, body: bytes) -> None:
        engine = _engine(Sidecar(status_body=body))
        connection = await engine.open("s1", CredentialState(), _resolver)

        is_open = await connection.is_open()
        await connection.close()
        await engine.aclose()

        assert is_open is False
