"""Tests for the HTTP endpoints of the relay server."""

from __future__ import annotations

import base64
import uuid

import pytest
import pytest_asyncio
from aiohttp.test_utils import TestClient, TestServer

from crowbar.auth.accounts import compute_proof
from crowbar.core.config import ServerConfig
from crowbar.server.relay import RelayServer


@pytest_asyncio.fixture
async def relay(directory):
    server = RelayServer(ServerConfig(closed_session_ttl=0), directory=directory)
    client = TestClient(TestServer(server.build_app()))
    await client.start_server()
    yield client
    await client.close()


async def _text(response) -> str:
    assert response.status == 200
    return await response.text()


async def _proof(client: TestClient, username: str = "alice", secret: str = "s") -> str:
    body = await _text(await client.get("/auth", params={"username": username}))
    assert body.startswith("DATA:")
    challenge = base64.b64decode(body[len("DATA:"):])
    return base64.b64encode(compute_proof(challenge, secret)).decode()


async def _connect(client: TestClient, host: str, port: int | str, **overrides) -> str:
    params = {
        "remote_host": host,
        "remote_port": str(port),
        "username": "alice",
        "proof": overrides.pop("proof", None) or await _proof(client),
    }
    params.update(overrides)
    return await _text(await client.get("/connect/", params=params))


async def _pull_until(client: TestClient, session_id: str, size: int) -> bytes:
    data = bytearray()
    while len(data) < size:
        body = await _text(await client.get("/sync", params={"uuid": session_id}))
        assert body.startswith("DATA:"), body
        data.extend(base64.b64decode(body[len("DATA:"):]))
    return bytes(data)


class TestAuthEndpoint:
    """Tests for /auth."""

    @pytest.mark.asyncio
    async def test_issues_sixteen_byte_challenge(self, relay):
        body = await _text(await relay.get("/auth", params={"username": "alice"}))
        assert body.startswith("DATA:")
        assert len(base64.b64decode(body[len("DATA:"):])) == 16

    @pytest.mark.asyncio
    async def test_unknown_user(self, relay):
        body = await _text(await relay.get("/auth", params={"username": "mallory"}))
        assert body == "ERROR:No such user."

    @pytest.mark.asyncio
    async def test_missing_username(self, relay):
        body = await _text(await relay.get("/auth"))
        assert body == "ERROR:No such user."


class TestConnectEndpoint:
    """Tests for /connect/."""

    @pytest.mark.asyncio
    async def test_connect_returns_session_uuid(self, relay, echo_server):
        body = await _connect(relay, echo_server.host, echo_server.port)
        assert body.startswith("OK:")
        assert uuid.UUID(body[len("OK:"):])

    @pytest.mark.asyncio
    async def test_connect_without_trailing_slash(self, relay, echo_server):
        params = {
            "remote_host": echo_server.host,
            "remote_port": str(echo_server.port),
            "username": "alice",
            "proof": await _proof(relay),
        }
        body = await _text(await relay.get("/connect", params=params))
        assert body.startswith("OK:")

    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        ("overrides", "expected"),
        [
            ({"remote_host": ""}, "ERROR:Invalid host"),
            ({"remote_port": "http"}, "ERROR:Invalid port number."),
            ({"remote_port": ""}, "ERROR:Invalid port number."),
            ({"remote_port": "65536"}, "ERROR:Invalid port number."),
            ({"remote_port": "-5"}, "ERROR:Invalid port number."),
            ({"remote_port": "8_0"}, "ERROR:Invalid port number."),
            ({"remote_port": " 80 "}, "ERROR:Invalid port number."),
            ({"remote_port": "\u0668\u0660"}, "ERROR:Invalid port number."),
            ({"remote_host": "a..b", "remote_port": "80"}, "ERROR:Could not connect to a..b:80"),
            ({"username": ""}, "ERROR:Invalid username"),
            ({"username": "mallory"}, "ERROR:Invalid username"),
            ({"proof": "not base64!"}, "ERROR:Invalid nonce"),
            ({"proof": base64.b64encode(b"x" * 32).decode()}, "ERROR:Invalid nonce"),
        ],
    )
    async def test_connect_errors(self, relay, echo_server, overrides, expected):
        body = await _connect(relay, echo_server.host, echo_server.port, **overrides)
        assert body == expected

    @pytest.mark.asyncio
    async def test_host_checked_before_port(self, relay):
        body = await _connect(relay, "", "bogus")
        assert body == "ERROR:Invalid host"

    @pytest.mark.asyncio
    async def test_connect_without_challenge(self, relay, echo_server):
        params = {
            "remote_host": echo_server.host,
            "remote_port": str(echo_server.port),
            "username": "bob",
            "proof": base64.b64encode(b"x" * 32).decode(),
        }
        body = await _text(await relay.get("/connect/", params=params))
        assert body == "ERROR:Invalid nonce"

    @pytest.mark.asyncio
    async def test_stale_challenge_rejected(self, relay, echo_server):
        stale = await _proof(relay)
        await _proof(relay)
        body = await _connect(relay, echo_server.host, echo_server.port, proof=stale)
        assert body == "ERROR:Invalid nonce"

    @pytest.mark.asyncio
    async def test_dial_failure(self, relay, unused_port):
        body = await _connect(relay, "127.0.0.1", unused_port)
        assert body == f"ERROR:Could not connect to 127.0.0.1:{unused_port}"


class TestSyncEndpoint:
    """Tests for /sync."""

    @pytest.mark.asyncio
    @pytest.mark.parametrize("method", ["GET", "POST"])
    async def test_unknown_uuid(self, relay, method):
        response = await relay.request(method, "/sync", params={"uuid": str(uuid.uuid4())})
        assert await _text(response) == "ERROR:No such UUID"

    @pytest.mark.asyncio
    async def test_push_and_pull_echo(self, relay, echo_server):
        session_id = (await _connect(relay, echo_server.host, echo_server.port))[len("OK:"):]

        for chunk in (b"GET / HTTP/1.0\r\n", b"\r\n"):
            body = await _text(
                await relay.post(
                    "/sync",
                    params={"uuid": session_id},
                    data={"data": base64.b64encode(chunk).decode()},
                )
            )
            assert body == "OK:Sent."

        assert await _pull_until(relay, session_id, 18) == b"GET / HTTP/1.0\r\n\r\n"

    @pytest.mark.asyncio
    async def test_push_requires_data(self, relay, echo_server):
        session_id = (await _connect(relay, echo_server.host, echo_server.port))[len("OK:"):]
        body = await _text(await relay.post("/sync", params={"uuid": session_id}, data={"other": "x"}))
        assert body == "ERROR:Data is required."

    @pytest.mark.asyncio
    async def test_push_rejects_bad_base64(self, relay, echo_server):
        session_id = (await _connect(relay, echo_server.host, echo_server.port))[len("OK:"):]
        body = await _text(
            await relay.post("/sync", params={"uuid": session_id}, data={"data": "%%%"})
        )
        assert body == "ERROR:Could not decode B64."

    @pytest.mark.asyncio
    async def test_pull_reports_quit(self, relay, closing_server):
        session_id = (await _connect(relay, closing_server.host, closing_server.port))[len("OK:"):]

        assert await _pull_until(relay, session_id, 5) == b"hello"
        body = await _text(await relay.get("/sync", params={"uuid": session_id}))
        assert body == "QUIT:Connection closed by remote"
        body = await _text(await relay.get("/sync", params={"uuid": session_id}))
        assert body == "QUIT:Connection closed by remote"


class TestPullTimeout:
    """Tests for the optional pull timeout."""

    @pytest.mark.asyncio
    async def test_idle_pull_answers_empty_data(self, directory, echo_server):
        server = RelayServer(ServerConfig(pull_timeout=0.05, closed_session_ttl=0), directory=directory)
        async with TestClient(TestServer(server.build_app())) as client:
            session_id = (await _connect(client, echo_server.host, echo_server.port))[len("OK:"):]
            body = await _text(await client.get("/sync", params={"uuid": session_id}))
            assert body == "DATA:"


class TestOperationalEndpoints:
    """Tests for /health and /metrics."""

    @pytest.mark.asyncio
    async def test_health(self, relay):
        response = await relay.get("/health")
        assert response.status == 200
        assert await response.json() == {"status": "healthy"}

    @pytest.mark.asyncio
    async def test_metrics(self, relay):
        await relay.get("/auth", params={"username": "alice"})
        response = await relay.get("/metrics")
        assert response.status == 200
        body = await response.text()
        assert "crowbar_challenges_issued_total" in body
        assert "crowbar_active_sessions" in body
