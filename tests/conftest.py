"""Shared fixtures: accounts, throwaway remote TCP servers and a session registry."""

from __future__ import annotations

import asyncio
import socket

import pytest
import pytest_asyncio

from crowbar.auth.accounts import Account, AccountDirectory, compute_proof
from crowbar.auth.challenge import AuthenticationService
from crowbar.core.config import ServerConfig
from crowbar.server.session import SessionRegistry

SECRET = "s"


class RemoteServer:
    """A local TCP server standing in for the tunnel target."""

    def __init__(self, handler) -> None:
        self._handler = handler
        self._server: asyncio.Server | None = None
        self._writers: list[asyncio.StreamWriter] = []
        self.received = bytearray()
        self.host = "127.0.0.1"
        self.port = 0

    async def start(self) -> RemoteServer:
        self._server = await asyncio.start_server(self._handle, self.host, 0)
        self.port = self._server.sockets[0].getsockname()[1]
        return self

    async def _handle(self, reader: asyncio.StreamReader, writer: asyncio.StreamWriter) -> None:
        self._writers.append(writer)
        try:
            await self._handler(self, reader, writer)
        except (ConnectionError, OSError):
            pass

    async def stop(self) -> None:
        for writer in self._writers:
            writer.close()
        if self._server is not None:
            self._server.close()
            await self._server.wait_closed()


async def _echo(remote: RemoteServer, reader: asyncio.StreamReader, writer: asyncio.StreamWriter) -> None:
    while data := await reader.read(4096):
        remote.received.extend(data)
        writer.write(data)
        await writer.drain()
    writer.close()


async def _greet_and_close(
    remote: RemoteServer, reader: asyncio.StreamReader, writer: asyncio.StreamWriter
) -> None:
    writer.write(b"hello")
    await writer.drain()
    writer.close()


@pytest.fixture
def directory() -> AccountDirectory:
    return AccountDirectory([Account(name="alice", secret=SECRET), Account(name="bob", secret="hunter2")])


@pytest.fixture
def auth(directory: AccountDirectory) -> AuthenticationService:
    return AuthenticationService(directory)


@pytest_asyncio.fixture
async def registry(auth: AuthenticationService):
    registry = SessionRegistry(auth, ServerConfig(connect_timeout=5.0))
    yield registry
    await registry.close_all()


@pytest_asyncio.fixture
async def echo_server():
    remote = await RemoteServer(_echo).start()
    yield remote
    await remote.stop()


@pytest_asyncio.fixture
async def closing_server():
    remote = await RemoteServer(_greet_and_close).start()
    yield remote
    await remote.stop()


@pytest.fixture
def unused_port() -> int:
    """A port nothing is listening on."""
    sock = socket.socket(socket.AF_INET, socket.SOCK_STREAM)
    sock.bind(("127.0.0.1", 0))
    port = sock.getsockname()[1]
    sock.close()
    return port


@pytest.fixture
def connect(auth: AuthenticationService, registry: SessionRegistry):
    """Run the full challenge/proof handshake and return the new session id."""

    async def _connect(host: str, port: int, username: str = "alice", secret: str = SECRET) -> str:
        challenge = await auth.issue_challenge(username)
        return await registry.open_session(username, host, port, compute_proof(challenge, secret))

    return _connect
