"""Nonce-based challenge/response authentication."""

from __future__ import annotations

import asyncio
import secrets

import structlog

from crowbar.auth.accounts import AccountDirectory
from crowbar.core.exceptions import NoChallengeIssuedError, UnknownAccountError
from crowbar.observability.metrics import CHALLENGES_ISSUED

logger = structlog.get_logger()

CHALLENGE_SIZE = 16


class AuthenticationService:
    """Issues per-account challenges and verifies proofs against them.

    Only the most recently issued challenge for an account is kept. Verifying
    a proof does not consume it.
    """

    def __init__(self, directory: AccountDirectory) -> None:
        self._directory = directory
        self._challenges: dict[str, bytes] = {}
        self._lock = asyncio.Lock()

    @property
    def directory(self) -> AccountDirectory:
        return self._directory

    async def issue_challenge(self, account_name: str) -> bytes:
        if self._directory.get(account_name) is None:
            raise UnknownAccountError()

        challenge = secrets.token_bytes(CHALLENGE_SIZE)
        async with self._lock:
            self._challenges[account_name] = challenge
        CHALLENGES_ISSUED.inc()
        logger.debug("Challenge issued", username=account_name)
        return challenge

    async def verify_proof(self, account_name: str, proof: bytes) -> bool:
        account = self._directory.get(account_name)
        if account is None:
            raise UnknownAccountError()

        async with self._lock:
            challenge = self._challenges.get(account_name)
        if challenge is None:
            raise NoChallengeIssuedError()

        return account.authenticate(challenge, proof)
