"""
auth/passwords.py -- Pluggable password hashing.

Security design decisions:
  Algorithm and tuning are configuration (PASSWORD_HASH_ALGO and
  PASSWORD_HASH_OPTIONS), so operators can raise the work factor or switch
  algorithm without a code change. get_hasher() builds the configured hasher;
  every stored hash embeds its own algorithm and parameters, so hashes made
  under an older policy still verify, and needs_rehash() tells the login flow
  when to upgrade one.

  bcrypt: used directly, no passlib wrapper. passlib's bcrypt backend probes
       with a password longer than 72 bytes, which bcrypt 4.x rejects. bcrypt
       only reads 72 bytes of input, so the hasher advertises max_bytes and
       CredentialStore refuses longer passwords instead of letting them be
       silently truncated or raise inside hashpw.

  pbkdf2_sha256: passlib, pure Python, no binary wheel constraints. Useful on
       hosts where the bcrypt wheel cannot load.

  Verification is always the algorithm's own constant-time check
  (bcrypt.checkpw / passlib verify), never a byte comparison. Malformed or
  foreign hashes verify as False instead of raising.

  dummy_verify() burns the same CPU as a real check. Callers run it when the
  user does not exist so response time does not reveal which identifiers are
  registered.
"""

from __future__ import annotations

from abc import ABC, abstractmethod

import bcrypt
from passlib.hash import pbkdf2_sha256 as _pbkdf2

_DUMMY_PASSWORD = "loginkeep_timing_dummy"


class PasswordHasher(ABC):
    """Interface shared by the concrete hashers."""

    name: str = ""
    # Longest input (in UTF-8 bytes) the algorithm actually uses. None = unbounded.
    max_bytes: int | None = None

    def __init__(self) -> None:
        self._dummy_hash: str | None = None

    @abstractmethod
    def hash(self, plain: str) -> str: ...

    @abstractmethod
    def verify(self, plain: str, hashed: str) -> bool: ...

    @abstractmethod
    def identify(self, hashed: str) -> bool:
        """Return True if hashed was produced by this algorithm."""

    @abstractmethod
    def needs_rehash(self, hashed: str) -> bool:
        """Return True if hashed uses another algorithm or other parameters."""

    def warm_up(self) -> None:
        """Build the throwaway hash dummy_verify() checks against.

        Stores call this at construction so the first unknown-user login
        costs one verify, like every later one.
        """
        if self._dummy_hash is None:
            self._dummy_hash = self.hash(_DUMMY_PASSWORD)

    def dummy_verify(self, plain: str) -> None:
        """Run a verify against a throwaway hash for timing equalization."""
        self.warm_up()
        self.verify(plain, self._dummy_hash)


class BcryptHasher(PasswordHasher):
    """bcrypt with a configurable cost factor (log2 of iterations)."""

    name = "bcrypt"
    max_bytes = 72

    def __init__(self, rounds: int = 12) -> None:
        super().__init__()
        if not 4 <= rounds <= 31:
            raise ValueError("bcrypt rounds must be between 4 and 31")
        self.rounds = rounds

    def hash(self, plain: str) -> str:
        salt = bcrypt.gensalt(rounds=self.rounds)
        return bcrypt.hashpw(plain.encode("utf-8"), salt).decode("utf-8")

    def verify(self, plain: str, hashed: str) -> bool:
        try:
            return bcrypt.checkpw(plain.encode("utf-8"), hashed.encode("utf-8"))
        except (ValueError, TypeError):
            # Invalid hash format, or input over 72 bytes on bcrypt >= 5
            return False

    def identify(self, hashed: str) -> bool:
        return hashed.startswith(("$2a$", "$2b$", "$2y$"))

    def needs_rehash(self, hashed: str) -> bool:
        if not self.identify(hashed):
            return True
        # bcrypt format: $2b$XX$<salt+digest>
        try:
            return int(hashed.split("$")[2]) != self.rounds
        except (ValueError, IndexError):
            return True


class Pbkdf2Sha256Hasher(PasswordHasher):
    """PBKDF2-SHA256 via passlib. The salt is embedded in the hash string."""

    name = "pbkdf2_sha256"

    def __init__(self, rounds: int = 600_000) -> None:
        super().__init__()
        if rounds < 1000:
            raise ValueError("pbkdf2_sha256 rounds must be at least 1000")
        self.rounds = rounds
        self._handler = _pbkdf2.using(rounds=rounds)

    def hash(self, plain: str) -> str:
        return self._handler.hash(plain)

    def verify(self, plain: str, hashed: str) -> bool:
        try:
            return _pbkdf2.verify(plain, hashed)
        except (ValueError, TypeError):
            return False

    def identify(self, hashed: str) -> bool:
        return _pbkdf2.identify(hashed)

    def needs_rehash(self, hashed: str) -> bool:
        if not self.identify(hashed):
            return True
        try:
            return _pbkdf2.from_string(hashed).rounds != self.rounds
        except ValueError:
            return True


_HASHERS: dict[str, type[PasswordHasher]] = {
    BcryptHasher.name: BcryptHasher,
    Pbkdf2Sha256Hasher.name: Pbkdf2Sha256Hasher,
}


def get_hasher(algo: str, options: dict | None = None) -> PasswordHasher:
    """Build the hasher named by algo with its tuning options.

    Raises ValueError for an unknown algorithm or an option the algorithm
    does not accept.
    """
    try:
        hasher_cls = _HASHERS[algo]
    except KeyError:
        raise ValueError(f"Unknown password hash algorithm: {algo!r}") from None
    try:
        return hasher_cls(**(options or {}))
    except TypeError as exc:
        raise ValueError(f"Invalid options for {algo}: {options!r}") from exc


def verify_any(plain: str, hashed: str, preferred: PasswordHasher) -> bool:
    """Verify against whichever known algorithm produced hashed.

    preferred is tried first (the common case once hashes are migrated).
    Hashes from an algorithm no longer configured still verify, so the login
    flow can re-hash them under the current policy.
    """
    if preferred.identify(hashed):
        return preferred.verify(plain, hashed)
    for hasher_cls in _HASHERS.values():
        if hasher_cls is type(preferred):
            continue
        # Defaults are fine here: parameters are read from the hash itself.
        candidate = hasher_cls()
        if candidate.identify(hashed):
            return candidate.verify(plain, hashed)
    return False
