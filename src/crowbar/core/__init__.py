"""Core."""

from .config import ClientConfig, ServerConfig, clear_config, get_config, load_config_from_file
from .exceptions import (
    AccountFileError,
    AuthenticationFailedError,
    CrowbarError,
    DialFailedError,
    InvalidTargetError,
    MalformedEncodingError,
    NoChallengeIssuedError,
    NoSuchSessionError,
    PullTimeoutError,
    TunnelError,
    UnknownAccountError,
)

__all__ = [
    "AccountFileError",
    "AuthenticationFailedError",
    "ClientConfig",
    "CrowbarError",
    "DialFailedError",
    "InvalidTargetError",
    "MalformedEncodingError",
    "NoChallengeIssuedError",
    "NoSuchSessionError",
    "PullTimeoutError",
    "ServerConfig",
    "TunnelError",
    "UnknownAccountError",
    "clear_config",
    "get_config",
    "load_config_from_file",
]
