"""Session registry, relay workers and the push/pull sync transport.

A session binds one dialed remote TCP connection to two bounded queues:

- ``inbound`` carries :class:`DataCommand` items pushed by HTTP clients and
  written to the remote socket by the relay worker.
- ``outbound`` carries :class:`DataResponse` items read from the remote
  socket, followed by exactly one :class:`QuitResponse` when it closes.

HTTP handlers only ever touch the queues; the relay worker is the only code
that reads from or writes to the socket.
"""

from __future__ import annotations

import asyncio
import contextlib
import time
from dataclasses import dataclass, field
from uuid import uuid4

import structlog

from crowbar.auth.challenge import AuthenticationService
from crowbar.core.config import ServerConfig
from crowbar.core.exceptions import (
    AuthenticationFailedError,
    DialFailedError,
    InvalidTargetError,
    NoChallengeIssuedError,
    NoSuchSessionError,
    PullTimeoutError,
    UnknownAccountError,
)
from crowbar.observability.metrics import ACTIVE_SESSIONS, BYTES_RELAYED, SESSIONS_OPENED
from crowbar.protocol.messages import Command, DataCommand, DataResponse, QuitResponse, Response

logger = structlog.get_logger()

MAX_PORT = 0xFFFF
REMOTE_CLOSED_REASON = "Connection closed by remote"
SERVER_SHUTDOWN_REASON = "Server shutting down"


@dataclass
class Session:
    """A live tunnel to one remote endpoint."""

    id: str
    remote_host: str
    remote_port: int
    reader: asyncio.StreamReader
    writer: asyncio.StreamWriter
    inbound: asyncio.Queue[Command]
    outbound: asyncio.Queue[Response]
    username: str = ""
    created_at: float = field(default_factory=time.monotonic)
    closed_at: float | None = None
    quit: QuitResponse | None = None
    worker: RelayWorker | None = None

    @property
    def remote(self) -> str:
        return f"{self.remote_host}:{self.remote_port}"

    @property
    def is_closed(self) -> bool:
        return self.closed_at is not None

    async def push(self, payload: bytes) -> None:
        """Queue bytes for the remote socket, waiting while the queue is full.

        Pushes to a closed session are dropped without queueing.
        """
        if self.is_closed:
            logger.debug("Dropping data for closed session", session=self.id, size=len(payload))
            return
        await self.inbound.put(DataCommand(payload=payload))

    def discard_pending(self) -> int:
        """Empty the inbound queue, releasing any push waiting on it."""
        dropped = 0
        while True:
            try:
                self.inbound.get_nowait()
            except asyncio.QueueEmpty:
                return dropped
            dropped += 1

    async def pull(self, timeout: float | None = None) -> Response:
        """Wait for the next response from the remote side.

        Once the quit response has been handed out it is returned again on
        every later pull instead of blocking forever.
        """
        if self.quit is not None:
            return self.quit

        try:
            if timeout:
                response = await asyncio.wait_for(self.outbound.get(), timeout=timeout)
            else:
                response = await self.outbound.get()
        except TimeoutError as e:
            raise PullTimeoutError() from e

        if isinstance(response, QuitResponse):
            self.quit = response
            # Wake any other pull already parked on this session.
            with contextlib.suppress(asyncio.QueueFull):
                self.outbound.put_nowait(response)
        return response


class RelayWorker:
    """Moves bytes between a session's queues and its remote socket."""

    def __init__(self, session: Session, read_chunk_size: int = 4096) -> None:
        self._session = session
        self._read_chunk_size = read_chunk_size
        self._write_error: str | None = None
        self._reader_task: asyncio.Task | None = None
        self._writer_task: asyncio.Task | None = None

    def start(self) -> None:
        if self._reader_task is not None:
            raise RuntimeError(f"Relay worker for {self._session.id} already started")
        self._reader_task = asyncio.create_task(
            self._remote_to_outbound(), name=f"relay-read-{self._session.id}"
        )
        self._writer_task = asyncio.create_task(
            self._drain_to_remote(), name=f"relay-write-{self._session.id}"
        )

    async def stop(self) -> None:
        """Cancel both duties and close the remote socket."""
        for task in (self._reader_task, self._writer_task):
            if task is not None and not task.done():
                task.cancel()
                with contextlib.suppress(asyncio.CancelledError):
                    await task
        self._close_socket()

    async def _drain_to_remote(self) -> None:
        session = self._session
        while True:
            command = await session.inbound.get()
            if session.is_closed or self._write_error is not None:
                logger.debug(
                    "Dropping data for closed session",
                    session=session.id,
                    size=len(command.payload),
                )
                continue
            try:
                session.writer.write(command.payload)
                await session.writer.drain()
            except OSError as e:
                self._write_error = str(e) or type(e).__name__
                logger.info("Remote write failed", session=session.id, error=self._write_error)
                # Closing the transport makes the read side finish and report the quit.
                session.writer.transport.abort()
                continue
            BYTES_RELAYED.labels(direction="to_remote").inc(len(command.payload))

    async def _remote_to_outbound(self) -> None:
        session = self._session
        reason = REMOTE_CLOSED_REASON
        try:
            while True:
                data = await session.reader.read(self._read_chunk_size)
                if not data:
                    break
                BYTES_RELAYED.labels(direction="from_remote").inc(len(data))
                await session.outbound.put(DataResponse(payload=data))
        except OSError as e:
            reason = str(e) or type(e).__name__

        if self._write_error is not None:
            reason = self._write_error

        session.closed_at = time.monotonic()
        logger.info("Remote connection closed", session=session.id, remote=session.remote, reason=reason)
        await session.outbound.put(QuitResponse(reason=reason))
        self._close_socket()

    def _close_socket(self) -> None:
        with contextlib.suppress(Exception):
            self._session.writer.close()


class SessionRegistry:
    """Process-wide table of sessions keyed by UUID."""

    def __init__(self, auth: AuthenticationService, config: ServerConfig | None = None) -> None:
        self._auth = auth
        self.config = config or ServerConfig()
        self._sessions: dict[str, Session] = {}
        self._lock = asyncio.Lock()

    def __len__(self) -> int:
        return len(self._sessions)

    async def open_session(
        self,
        account_name: str,
        remote_host: str,
        remote_port: int,
        proof: bytes | None,
    ) -> str:
        """Authenticate, dial the remote endpoint and register a new session.

        Returns the session identifier as soon as the relay worker has been
        scheduled. A ``proof`` of None stands for one that could not be decoded.

        Raises:
            InvalidTargetError: Empty host or port outside [0, 65535]
            UnknownAccountError: Empty or unknown account name
            AuthenticationFailedError: Proof does not match the current challenge
            DialFailedError: The remote endpoint could not be reached
        """
        if not remote_host:
            SESSIONS_OPENED.labels(result="invalid_target").inc()
            raise InvalidTargetError("Invalid host")
        if not 0 <= remote_port <= MAX_PORT:
            SESSIONS_OPENED.labels(result="invalid_target").inc()
            raise InvalidTargetError("Invalid port number.")
        if not account_name or account_name not in self._auth.directory:
            SESSIONS_OPENED.labels(result="auth_failed").inc()
            raise UnknownAccountError("Invalid username")
        if proof is None:
            SESSIONS_OPENED.labels(result="auth_failed").inc()
            raise AuthenticationFailedError()

        try:
            authenticated = await self._auth.verify_proof(account_name, proof)
        except NoChallengeIssuedError as e:
            SESSIONS_OPENED.labels(result="auth_failed").inc()
            raise AuthenticationFailedError() from e
        if not authenticated:
            SESSIONS_OPENED.labels(result="auth_failed").inc()
            logger.warning("Proof rejected", username=account_name)
            raise AuthenticationFailedError()

        logger.info("Connecting", username=account_name, remote=f"{remote_host}:{remote_port}")
        try:
            reader, writer = await asyncio.wait_for(
                asyncio.open_connection(remote_host, remote_port),
                timeout=self.config.connect_timeout,
            )
        except (OSError, TimeoutError, ValueError) as e:
            # ValueError: hostnames that fail IDNA encoding or carry a NUL.
            SESSIONS_OPENED.labels(result="dial_failed").inc()
            logger.warning(
                "Dial failed",
                remote=f"{remote_host}:{remote_port}",
                error=str(e) or type(e).__name__,
            )
            raise DialFailedError(remote_host, remote_port, str(e)) from e

        session = Session(
            id=str(uuid4()),
            remote_host=remote_host,
            remote_port=remote_port,
            reader=reader,
            writer=writer,
            inbound=asyncio.Queue(maxsize=self.config.queue_size),
            outbound=asyncio.Queue(maxsize=self.config.queue_size),
            username=account_name,
        )
        session.worker = RelayWorker(session, read_chunk_size=self.config.read_chunk_size)

        async with self._lock:
            self._sessions[session.id] = session
            ACTIVE_SESSIONS.set(len(self._sessions))

        session.worker.start()
        SESSIONS_OPENED.labels(result="ok").inc()
        logger.info("Session opened", session=session.id, username=account_name, remote=session.remote)
        return session.id

    async def get(self, session_id: str) -> Session:
        async with self._lock:
            session = self._sessions.get(session_id)
        if session is None:
            raise NoSuchSessionError()
        return session

    async def push(self, session_id: str, payload: bytes) -> None:
        session = await self.get(session_id)
        await session.push(payload)

    async def pull(self, session_id: str, timeout: float | None = None) -> Response:
        session = await self.get(session_id)
        return await session.pull(timeout=timeout)

    async def reap_finished(self, ttl: float) -> int:
        """Remove sessions whose remote side closed more than ``ttl`` seconds ago."""
        now = time.monotonic()
        async with self._lock:
            expired = [
                session
                for session in self._sessions.values()
                if session.closed_at is not None and now - session.closed_at > ttl
            ]
            for session in expired:
                del self._sessions[session.id]
            ACTIVE_SESSIONS.set(len(self._sessions))

        for session in expired:
            if session.worker is not None:
                await session.worker.stop()
            dropped = session.discard_pending()
            logger.debug("Reaped finished session", session=session.id, dropped=dropped)
        return len(expired)

    async def close_all(self) -> None:
        async with self._lock:
            sessions = list(self._sessions.values())
            self._sessions.clear()
            ACTIVE_SESSIONS.set(0)

        for session in sessions:
            if session.worker is not None:
                await session.worker.stop()
            if not session.is_closed:
                session.closed_at = time.monotonic()
                # Release pulls still parked on the session.
                with contextlib.suppress(asyncio.QueueFull):
                    session.outbound.put_nowait(QuitResponse(reason=SERVER_SHUTDOWN_REASON))
            session.discard_pending()
