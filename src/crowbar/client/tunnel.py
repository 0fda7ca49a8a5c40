"""Tunnel client: authenticates, opens sessions and pumps bytes over /sync."""

from __future__ import annotations

import asyncio
import contextlib

import httpx
import structlog

from crowbar.auth.accounts import compute_proof
from crowbar.core.config import ClientConfig
from crowbar.core.exceptions import CrowbarError, TunnelError
from crowbar.protocol.messages import (
    ENDPOINT_AUTH,
    ENDPOINT_CONNECT,
    ENDPOINT_SYNC,
    Envelope,
    EnvelopeKind,
    encode_b64,
    parse_envelope,
)

logger = structlog.get_logger()

LOCAL_READ_SIZE = 4096


class TunnelSession:
    """One remote TCP connection reached through the relay server."""

    def __init__(self, client: TunnelClient, session_id: str) -> None:
        self._client = client
        self.id = session_id
        self.quit_reason: str | None = None

    @property
    def closed(self) -> bool:
        return self.quit_reason is not None

    async def send(self, data: bytes) -> None:
        """Push ``data`` to the remote endpoint."""
        await self._client.request(
            "POST",
            ENDPOINT_SYNC,
            params={"uuid": self.id},
            data={"data": encode_b64(data)},
        )

    async def receive(self) -> bytes | None:
        """Pull the next chunk from the remote endpoint.

        Returns None once the remote side has closed. Empty data envelopes
        (a server-side pull timeout) are polled through transparently.
        """
        while self.quit_reason is None:
            envelope = await self._client.request("GET", ENDPOINT_SYNC, params={"uuid": self.id})
            if envelope.kind == EnvelopeKind.QUIT:
                self.quit_reason = envelope.text
                logger.info("Remote closed", session=self.id, reason=envelope.text)
                break
            data = envelope.data
            if data:
                return data
        return None

    async def pipe(self, reader: asyncio.StreamReader, writer: asyncio.StreamWriter) -> None:
        """Relay a local stream pair through this session.

        EOF from the local side only ends the upstream direction; replies are
        still delivered until the remote side quits.
        """

        async def upstream() -> None:
            while True:
                data = await reader.read(LOCAL_READ_SIZE)
                if not data:
                    return
                await self.send(data)

        async def downstream() -> None:
            while True:
                data = await self.receive()
                if data is None:
                    return
                writer.write(data)
                await writer.drain()

        upstream_task = asyncio.create_task(upstream())
        downstream_task = asyncio.create_task(downstream())
        tasks = [upstream_task, downstream_task]
        try:
            done, _ = await asyncio.wait(tasks, return_when=asyncio.FIRST_COMPLETED)
            if downstream_task in done:
                downstream_task.result()
            else:
                upstream_task.result()
                logger.debug("Local side finished sending", session=self.id)
                await downstream_task
        finally:
            for task in tasks:
                task.cancel()
                with contextlib.suppress(asyncio.CancelledError):
                    await task
            writer.close()
            with contextlib.suppress(OSError):
                await writer.wait_closed()


class TunnelClient:
    """HTTP client for a Crowbar relay server."""

    def __init__(
        self,
        config: ClientConfig,
        http_client: httpx.AsyncClient | None = None,
    ) -> None:
        self.config = config
        self._http_client = http_client
        self._owns_client = http_client is None
        # A new challenge replaces the previous one, so handshakes must not interleave.
        self._handshake_lock = asyncio.Lock()

    async def __aenter__(self) -> TunnelClient:
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.close()

    def _get_http_client(self) -> httpx.AsyncClient:
        if self._http_client is None:
            self._http_client = httpx.AsyncClient(
                base_url=self.config.server_url,
                timeout=httpx.Timeout(self.config.timeout),
            )
        return self._http_client

    async def close(self) -> None:
        if self._http_client is not None and self._owns_client:
            await self._http_client.aclose()
            self._http_client = None

    async def request(self, method: str, path: str, **kwargs) -> Envelope:
        """Send a request and decode its envelope.

        Raises:
            TunnelError: If the server answered with an ERROR envelope
            httpx.HTTPError: On transport failures
        """
        response = await self._get_http_client().request(method, path, **kwargs)
        response.raise_for_status()
        envelope = parse_envelope(response.text)
        if envelope.kind == EnvelopeKind.ERROR:
            raise TunnelError(envelope.text)
        return envelope

    async def authenticate(self) -> bytes:
        """Fetch a fresh challenge and return the proof for it."""
        envelope = await self.request("GET", ENDPOINT_AUTH, params={"username": self.config.username})
        return compute_proof(envelope.data, self.config.secret)

    async def connect(self, remote_host: str, remote_port: int) -> TunnelSession:
        """Open a session to ``remote_host:remote_port`` through the server."""
        async with self._handshake_lock:
            proof = await self.authenticate()
            envelope = await self.request(
                "GET",
                ENDPOINT_CONNECT,
                params={
                    "remote_host": remote_host,
                    "remote_port": str(remote_port),
                    "username": self.config.username,
                    "proof": encode_b64(proof),
                },
            )
        logger.info("Session opened", session=envelope.text, remote=f"{remote_host}:{remote_port}")
        return TunnelSession(self, envelope.text)


class Forwarder:
    """Accepts local TCP connections and tunnels each to a fixed remote endpoint."""

    def __init__(
        self,
        client: TunnelClient,
        remote_host: str,
        remote_port: int,
        local_host: str = "127.0.0.1",
        local_port: int = 0,
    ) -> None:
        self.client = client
        self.remote_host = remote_host
        self.remote_port = remote_port
        self.local_host = local_host
        self.local_port = local_port
        self._server: asyncio.Server | None = None
        self._connections: set[asyncio.Task] = set()

    async def start(self) -> int:
        """Start listening and return the bound local port."""
        self._server = await asyncio.start_server(
            self._handle_connection, self.local_host, self.local_port
        )
        self.local_port = self._server.sockets[0].getsockname()[1]
        logger.info(
            "Forwarding",
            local=f"{self.local_host}:{self.local_port}",
            remote=f"{self.remote_host}:{self.remote_port}",
        )
        return self.local_port

    async def serve_forever(self) -> None:
        """Serve until cancelled, then stop and drop open tunnels."""
        if self._server is None:
            await self.start()
        try:
            await asyncio.Event().wait()
        finally:
            await self.stop()

    async def stop(self) -> None:
        if self._server is not None:
            self._server.close()
            # Half-closed connections may still be waiting on the remote side.
            connections = list(self._connections)
            for task in connections:
                task.cancel()
            await asyncio.gather(*connections, return_exceptions=True)
            await self._server.wait_closed()
            self._server = None

    async def _handle_connection(
        self, reader: asyncio.StreamReader, writer: asyncio.StreamWriter
    ) -> None:
        task = asyncio.current_task()
        self._connections.add(task)
        try:
            await self._tunnel(reader, writer)
        finally:
            self._connections.discard(task)

    async def _tunnel(self, reader: asyncio.StreamReader, writer: asyncio.StreamWriter) -> None:
        peer = writer.get_extra_info("peername")
        try:
            session = await self.client.connect(self.remote_host, self.remote_port)
        except (CrowbarError, httpx.HTTPError) as e:
            logger.warning("Could not open tunnel", peer=str(peer), error=str(e))
            writer.close()
            return

        try:
            await session.pipe(reader, writer)
        except (CrowbarError, httpx.HTTPError, OSError) as e:
            logger.warning("Tunnel failed", session=session.id, error=str(e))
        logger.debug("Local connection finished", peer=str(peer), session=session.id)
