"""File-backed account directory.

The account file holds one ``username:secret`` pair per line. Blank lines and
lines starting with ``#`` are ignored.
"""

from __future__ import annotations

import hashlib
import hmac
from dataclasses import dataclass, field
from pathlib import Path

import structlog

from crowbar.core.exceptions import AccountFileError

logger = structlog.get_logger()


def compute_proof(challenge: bytes, secret: str) -> bytes:
    """Derive the proof a client sends for ``challenge``."""
    return hmac.new(secret.encode(), challenge, hashlib.sha256).digest()


@dataclass(frozen=True)
class Account:
    """A named identity with its shared secret."""

    name: str
    secret: str = field(repr=False)

    def authenticate(self, challenge: bytes, proof: bytes) -> bool:
        expected = compute_proof(challenge, self.secret)
        return hmac.compare_digest(expected, proof)


class AccountDirectory:
    """Read-only lookup of accounts by name."""

    def __init__(self, accounts: list[Account] | None = None) -> None:
        self._accounts: dict[str, Account] = {}
        for account in accounts or []:
            self._accounts[account.name] = account

    def get(self, name: str) -> Account | None:
        return self._accounts.get(name)

    def __contains__(self, name: object) -> bool:
        return name in self._accounts

    def __len__(self) -> int:
        return len(self._accounts)

    @classmethod
    def from_lines(cls, lines: list[str], source: str = "<memory>") -> AccountDirectory:
        accounts = []
        for lineno, raw in enumerate(lines, start=1):
            line = raw.strip()
            if not line or line.startswith("#"):
                continue
            name, sep, secret = line.partition(":")
            if not sep or not name or not secret:
                raise AccountFileError(f"Invalid account entry in {source} at line {lineno}")
            accounts.append(Account(name=name, secret=secret))
        return cls(accounts)

    @classmethod
    def load(cls, path: str | Path) -> AccountDirectory:
        """Load accounts from ``path``.

        Raises:
            FileNotFoundError: If the file doesn't exist
            AccountFileError: If a line is not a ``username:secret`` pair
        """
        path = Path(path)
        if not path.exists():
            raise FileNotFoundError(f"Account file not found: {path}")
        directory = cls.from_lines(path.read_text(encoding="utf-8").splitlines(), str(path))
        logger.info("Accounts loaded", path=str(path), count=len(directory))
        return directory
