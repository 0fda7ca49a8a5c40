"""Account lookup and challenge/response authentication."""

from crowbar.auth.accounts import Account, AccountDirectory, compute_proof
from crowbar.auth.challenge import CHALLENGE_SIZE, AuthenticationService

__all__ = [
    "CHALLENGE_SIZE",
    "Account",
    "AccountDirectory",
    "AuthenticationService",
    "compute_proof",
]
