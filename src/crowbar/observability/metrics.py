from prometheus_client import CONTENT_TYPE_LATEST, Counter, Gauge, generate_latest

SESSIONS_OPENED = Counter(
    "crowbar_sessions_opened_total",
    "Total session open attempts",
    ["result"],  # ok, invalid_target, auth_failed, dial_failed
)

CHALLENGES_ISSUED = Counter(
    "crowbar_challenges_issued_total",
    "Total authentication challenges issued",
)

BYTES_RELAYED = Counter(
    "crowbar_bytes_total",
    "Bytes relayed through sessions",
    ["direction"],  # direction: to_remote/from_remote
)

SYNC_REQUESTS = Counter(
    "crowbar_sync_requests_total",
    "Total sync requests",
    ["method", "outcome"],
)

ACTIVE_SESSIONS = Gauge(
    "crowbar_active_sessions",
    "Sessions currently registered",
)


def generate_metrics() -> bytes:
    return generate_latest()


def get_content_type() -> str:
    return CONTENT_TYPE_LATEST
