"""Relay server: HTTP endpoints, session registry and relay workers."""

from crowbar.server.relay import RelayServer
from crowbar.server.session import RelayWorker, Session, SessionRegistry

__all__ = ["RelayServer", "RelayWorker", "Session", "SessionRegistry"]
