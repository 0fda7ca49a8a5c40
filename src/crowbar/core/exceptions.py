"""Exception hierarchy for Crowbar.

Every error that can be reported to an HTTP caller carries a ``message``
attribute holding the exact text rendered into the ``ERROR:`` envelope.
"""

from __future__ import annotations


class CrowbarError(Exception):
    """Base class for all Crowbar errors."""

    default_message = "Internal error."

    def __init__(self, message: str | None = None) -> None:
        self.message = message or self.default_message
        super().__init__(self.message)


class UnknownAccountError(CrowbarError):
    """The account directory has no entry for the requested name."""

    default_message = "No such user."


class NoChallengeIssuedError(CrowbarError):
    """A proof was submitted for an account that never requested a challenge."""

    default_message = "No challenge issued."


class AuthenticationFailedError(CrowbarError):
    """The submitted proof does not match the current challenge."""

    default_message = "Invalid nonce"


class InvalidTargetError(CrowbarError):
    """The requested remote host or port is unusable."""

    default_message = "Invalid host"


class DialFailedError(CrowbarError):
    """The remote endpoint could not be reached."""

    def __init__(self, host: str, port: int, reason: str = "") -> None:
        self.host = host
        self.port = port
        self.reason = reason
        super().__init__(f"Could not connect to {host}:{port}")


class NoSuchSessionError(CrowbarError):
    """No session is registered under the given identifier."""

    default_message = "No such UUID"


class MalformedEncodingError(CrowbarError):
    """Request data could not be decoded."""

    default_message = "Could not decode B64."


class PullTimeoutError(CrowbarError):
    """A pull waited longer than the configured timeout."""

    default_message = "Pull timed out."


class AccountFileError(CrowbarError):
    """The account file could not be parsed."""

    default_message = "Invalid account file."


class TunnelError(CrowbarError):
    """The server answered a client request with an error envelope."""

    default_message = "Tunnel error."
