"""Prometheus metrics for the relay server."""

from crowbar.observability.metrics import (
    ACTIVE_SESSIONS,
    BYTES_RELAYED,
    CHALLENGES_ISSUED,
    SESSIONS_OPENED,
    SYNC_REQUESTS,
    generate_metrics,
    get_content_type,
)

__all__ = [
    "ACTIVE_SESSIONS",
    "BYTES_RELAYED",
    "CHALLENGES_ISSUED",
    "SESSIONS_OPENED",
    "SYNC_REQUESTS",
    "generate_metrics",
    "get_content_type",
]
