"""HTTP relay server exposing the auth, connect and sync endpoints."""

from __future__ import annotations

import asyncio
import contextlib
import re
from pathlib import Path

import structlog
from aiohttp import web

from crowbar.auth.accounts import AccountDirectory
from crowbar.auth.challenge import AuthenticationService
from crowbar.core.config import ServerConfig, get_config
from crowbar.core.exceptions import CrowbarError, MalformedEncodingError, PullTimeoutError
from crowbar.observability.metrics import (
    ACTIVE_SESSIONS,
    SYNC_REQUESTS,
    generate_metrics,
    get_content_type,
)
from crowbar.protocol.messages import (
    CONTENT_TYPE,
    ENDPOINT_AUTH,
    ENDPOINT_CONNECT,
    ENDPOINT_SYNC,
    data_envelope,
    decode_b64,
    error_envelope,
    ok_envelope,
    response_envelope,
)
from crowbar.server.session import SessionRegistry

logger = structlog.get_logger()

# ASCII decimal digits with an optional sign.
_PORT_PATTERN = re.compile(r"[+-]?[0-9]+")


def _envelope(body: str) -> web.Response:
    return web.Response(text=body, content_type=CONTENT_TYPE)


def _parse_port(value: str) -> int:
    """Parse a port query value; anything unparsable maps to an invalid port."""
    if not _PORT_PATTERN.fullmatch(value):
        return -1
    return int(value)


class RelayServer:
    """Relay server that tunnels TCP connections over HTTP long-polling."""

    def __init__(
        self,
        config: ServerConfig | None = None,
        directory: AccountDirectory | None = None,
    ) -> None:
        self.config = config or get_config()
        if directory is None:
            directory = AccountDirectory.load(Path(self.config.userfile))
        self.auth = AuthenticationService(directory)
        self.sessions = SessionRegistry(self.auth, self.config)
        self._runner: web.AppRunner | None = None
        self._shutdown_event = asyncio.Event()
        self._cleanup_task: asyncio.Task | None = None

    def build_app(self) -> web.Application:
        app = web.Application()
        app.router.add_get(ENDPOINT_AUTH, self._handle_auth)
        app.router.add_get(ENDPOINT_CONNECT, self._handle_connect)
        app.router.add_get(ENDPOINT_CONNECT.rstrip("/"), self._handle_connect)
        app.router.add_route("*", ENDPOINT_SYNC, self._handle_sync)
        app.router.add_get("/health", self._handle_health_check)
        app.router.add_get("/metrics", self._handle_metrics)
        app.on_startup.append(self._on_startup)
        app.on_shutdown.append(self._on_shutdown)
        return app

    async def start(self) -> None:
        """Start serving on the configured listen address."""
        app = self.build_app()
        self._runner = web.AppRunner(app)
        await self._runner.setup()

        host, port = self.config.bind_address()
        site = web.TCPSite(self._runner, host, port)
        await site.start()

        logger.info(
            "Relay server started",
            host=host,
            port=port,
            accounts=len(self.auth.directory),
        )

    async def stop(self) -> None:
        """Stop the relay server gracefully."""
        logger.info("Stopping relay server...")
        if self._runner:
            await self._runner.cleanup()
            self._runner = None
        logger.info("Relay server stopped")

    async def _on_startup(self, app: web.Application) -> None:
        if self.config.closed_session_ttl > 0:
            self._cleanup_task = asyncio.create_task(self._cleanup_loop())

    async def _on_shutdown(self, app: web.Application) -> None:
        self._shutdown_event.set()
        if self._cleanup_task:
            self._cleanup_task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await self._cleanup_task
            self._cleanup_task = None
        await self.sessions.close_all()

    async def _cleanup_loop(self) -> None:
        """Periodically drop sessions whose remote side has closed."""
        while not self._shutdown_event.is_set():
            try:
                await asyncio.sleep(self.config.cleanup_interval)
                reaped = await self.sessions.reap_finished(self.config.closed_session_ttl)
                if reaped:
                    logger.info("Reaped finished sessions", count=reaped)
            except asyncio.CancelledError:
                break
            except Exception as e:
                logger.error("Cleanup error", error=str(e))

    async def _handle_auth(self, request: web.Request) -> web.Response:
        username = request.query.get("username", "")
        try:
            challenge = await self.auth.issue_challenge(username)
        except CrowbarError as e:
            logger.info("Challenge refused", username=username, reason=e.message)
            return _envelope(error_envelope(e.message))
        return _envelope(data_envelope(challenge))

    async def _handle_connect(self, request: web.Request) -> web.Response:
        query = request.query
        try:
            proof: bytes | None = decode_b64(query.get("proof", ""))
        except MalformedEncodingError:
            proof = None

        try:
            session_id = await self.sessions.open_session(
                account_name=query.get("username", ""),
                remote_host=query.get("remote_host", ""),
                remote_port=_parse_port(query.get("remote_port", "")),
                proof=proof,
            )
        except CrowbarError as e:
            return _envelope(error_envelope(e.message))
        return _envelope(ok_envelope(session_id))

    async def _handle_sync(self, request: web.Request) -> web.Response:
        try:
            session = await self.sessions.get(request.query.get("uuid", ""))
        except CrowbarError as e:
            SYNC_REQUESTS.labels(method=request.method, outcome="no_session").inc()
            return _envelope(error_envelope(e.message))

        if request.method == "POST":
            form = await request.post()
            encoded = form.get("data")
            if encoded is None:
                SYNC_REQUESTS.labels(method="POST", outcome="error").inc()
                return _envelope(error_envelope("Data is required."))
            try:
                data = decode_b64(str(encoded))
            except MalformedEncodingError as e:
                SYNC_REQUESTS.labels(method="POST", outcome="error").inc()
                return _envelope(error_envelope(e.message))
            await session.push(data)
            SYNC_REQUESTS.labels(method="POST", outcome="ok").inc()
            return _envelope(ok_envelope("Sent."))

        try:
            response = await session.pull(timeout=self.config.pull_timeout)
        except PullTimeoutError:
            # An empty data envelope tells the client to simply poll again.
            SYNC_REQUESTS.labels(method=request.method, outcome="timeout").inc()
            return _envelope(data_envelope(b""))
        SYNC_REQUESTS.labels(method=request.method, outcome="ok").inc()
        return _envelope(response_envelope(response))

    async def _handle_health_check(self, request: web.Request) -> web.Response:
        return web.json_response({"status": "healthy"})

    async def _handle_metrics(self, request: web.Request) -> web.Response:
        ACTIVE_SESSIONS.set(len(self.sessions))
        return web.Response(
            body=generate_metrics(),
            headers={"Content-Type": get_content_type()},
        )
