"""Signing-link tokens and the access decision made on every signing request.

The raw token only ever exists in the client's URL. The database stores an
HMAC-SHA256 of it keyed with SIGNING_TOKEN_SECRET; contracts created before
hashing was introduced still carry the raw token in a legacy column.

Lookups produce a TokenMatch:
    RawMatch(contract)              legacy raw-token column matched
    HashMatch(contract, verified)   hash column matched, constant-time re-check result
    NoMatch()                       nothing matched

decide_access() is the single place that turns a TokenMatch plus the caller's
recent attempt count into an allow/deny decision.
"""

from __future__ import annotations

import enum
import hashlib
import hmac
import secrets
from dataclasses import dataclass
from datetime import UTC, datetime, timedelta
from typing import TYPE_CHECKING, Any

from pay2start.domain.enums import FINALIZED_STATUSES, ContractStatus
from pay2start.domain.exceptions import (
    ContractCancelledError,
    RateLimitedError,
    SigningLinkInvalidError,
    SigningLinkUsedError,
    TokenExpiredError,
)

if TYPE_CHECKING:
    from pay2start.domain.exceptions import SigningLinkError

TOKEN_BYTES = 32


def generate_token() -> str:
    """Return a new 64-character hex signing token."""
    return secrets.token_hex(TOKEN_BYTES)


def hash_token(token: str, secret: str) -> str:
    return hmac.new(secret.encode("utf-8"), token.encode("utf-8"), hashlib.sha256).hexdigest()


def verify_token(token: str, stored_hash: str, secret: str) -> bool:
    """Constant-time comparison of a presented token against a stored hash."""
    return hmac.compare_digest(hash_token(token, secret), stored_hash)


def token_expiry(days: int, now: datetime | None = None) -> datetime:
    return (now or datetime.now(UTC)) + timedelta(days=days)


def as_utc(value: datetime | None) -> datetime | None:
    """Treat naive datetimes (SQLite round-trips) as UTC."""
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=UTC)
    return value


def is_token_expired(expires_at: datetime | None, now: datetime | None = None) -> bool:
    # Legacy contracts have no expiry and never expire.
    if expires_at is None:
        return False
    return (now or datetime.now(UTC)) >= as_utc(expires_at)


# ---------------------------------------------------------------------------
# Lookup result
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class RawMatch:
    contract: Any


@dataclass(frozen=True)
class HashMatch:
    contract: Any
    verified: bool


@dataclass(frozen=True)
class NoMatch:
    pass


TokenMatch = RawMatch | HashMatch | NoMatch


# ---------------------------------------------------------------------------
# Access decision
# ---------------------------------------------------------------------------


class AccessMode(enum.StrEnum):
    VIEW = "view"
    SUBMIT = "submit"


@dataclass(frozen=True)
class AccessDecision:
    """Outcome of decide_access.

    attempt_success tells the caller what to append to the attempt log:
    True/False for a successful/failed attempt, None to record nothing.
    """

    contract: Any | None
    error: SigningLinkError | None
    attempt_success: bool | None

    @property
    def allowed(self) -> bool:
        return self.error is None

    @property
    def contract_id(self) -> Any | None:
        return getattr(self.contract, "id", None)


def _deny(error: SigningLinkError, contract: Any = None, record: bool | None = False) -> AccessDecision:
    return AccessDecision(contract=contract, error=error, attempt_success=record)


def decide_access(
    token_match: TokenMatch,
    *,
    mode: AccessMode,
    recent_attempts: int,
    max_attempts: int,
    now: datetime | None = None,
) -> AccessDecision:
    """Decide whether the bearer of a signing link may view or sign.

    Order: unknown token, tampered token, rate limit, expiry, cancellation,
    one-time use. Unknown tokens are never counted against the rate limit.
    """
    match token_match:
        case NoMatch():
            return _deny(SigningLinkInvalidError(), record=None)
        case HashMatch(contract=contract, verified=False):
            return _deny(SigningLinkInvalidError(), contract)
        case RawMatch(contract=contract) | HashMatch(contract=contract):
            pass

    if recent_attempts >= max_attempts:
        return _deny(RateLimitedError(), contract)

    if is_token_expired(contract.signing_token_expires_at, now):
        return _deny(TokenExpiredError(), contract)

    status = ContractStatus(contract.status)
    if status is ContractStatus.CANCELLED:
        return _deny(ContractCancelledError(), contract, record=None)

    if contract.signing_token_used_at is not None:
        if mode is AccessMode.SUBMIT or status not in FINALIZED_STATUSES:
            return _deny(SigningLinkUsedError(), contract)

    return AccessDecision(contract=contract, error=None, attempt_success=True)
