"""Email verification token issuance and redemption."""

import logging
import re
from dataclasses import dataclass
from datetime import datetime
from secrets import token_hex
from urllib.parse import urlencode

from gtovantage.config import settings
from gtovantage.logging import token_hint
from gtovantage.models import VerificationToken
from gtovantage.services.token_store import (
    InvalidInputError,
    MalformedTokenError,
    TokenStats,
    TokenStore,
    VerificationError,
    get_token_store,
)
from gtovantage.utils.clock import MS_PER_DAY, MS_PER_HOUR, Clock, from_epoch_ms, now_ms

logger = logging.getLogger(__name__)

# 32 random bytes, hex encoded
TOKEN_BYTES = 32
TOKEN_PATTERN = re.compile(r"[0-9a-f]{64}")


def generate_token() -> str:
    """Generate a new unguessable token id."""
    return token_hex(TOKEN_BYTES)


def is_well_formed(token: str) -> bool:
    """Shape check only: 64 lowercase hex characters."""
    return TOKEN_PATTERN.fullmatch(token) is not None


def build_verification_url(token: str, base_url: str | None = None) -> str:
    """Build the link a user follows to redeem ``token``."""
    base = (base_url or settings.app_url).rstrip("/")
    return f"{base}/verify-email?{urlencode({'token': token})}"


@dataclass
class IssuedToken:
    """Result of issuing a verification token."""

    token: str
    verification_url: str
    email: str
    expires_at: datetime


class VerificationService:
    """Issues and redeems single-use email verification tokens."""

    def __init__(
        self,
        store: TokenStore | None = None,
        clock: Clock = now_ms,
        ttl_hours: int | None = None,
        base_url: str | None = None,
    ):
        self._store = store
        self.clock = clock
        self.ttl_hours = ttl_hours or settings.verification_token_ttl_hours
        self.base_url = base_url

    @property
    def store(self) -> TokenStore:
        """Lazy-load the store."""
        if self._store is None:
            self._store = get_token_store()
        return self._store

    async def issue(self, email: str, name: str | None = None) -> IssuedToken:
        """Issue a token for ``email`` and persist it.

        Email format is the caller's concern; only emptiness is rejected here.

        Raises:
            InvalidInputError: if email is empty
            TokenCollisionError: if the generated id already exists
            StorageUnavailableError: if the store cannot be read or written
        """
        email = (email or "").strip()
        if not email:
            raise InvalidInputError("Email is required")

        created_at = self.clock()
        record = VerificationToken(
            token=generate_token(),
            email=email,
            name=name,
            created_at=created_at,
            expiration_time=created_at + self.ttl_hours * MS_PER_HOUR,
            used=False,
        )
        await self.store.insert(record)

        logger.info(f"Issued verification token {token_hint(record.token)} for {email}")

        return IssuedToken(
            token=record.token,
            verification_url=build_verification_url(record.token, self.base_url),
            email=email,
            expires_at=from_epoch_ms(record.expiration_time),
        )

    async def redeem(self, token: str) -> str:
        """Redeem ``token`` and return the email it verifies.

        Raises:
            MalformedTokenError: if token is not 64 hex characters (no lookup)
            TokenNotFoundError, TokenExpiredError, TokenAlreadyUsedError,
            StorageUnavailableError
        """
        if not is_well_formed(token):
            raise MalformedTokenError()

        try:
            record = await self.store.redeem(token, self.clock())
        except VerificationError as e:
            logger.info(f"Verification token {token_hint(token)} rejected: {e}")
            raise

        logger.info(f"Verification token {token_hint(token)} redeemed for {record.email}")
        return record.email

    async def inspect(self, token: str) -> VerificationToken | None:
        """Load a token without changing it."""
        if not is_well_formed(token):
            raise MalformedTokenError()
        return await self.store.get(token)

    async def sweep(self, retention_days: int | None = None, dry_run: bool = False) -> int:
        """Remove tokens used or expired more than ``retention_days`` ago."""
        if retention_days is None:
            retention_days = settings.verification_token_retention_days
        cutoff = self.clock() - retention_days * MS_PER_DAY
        removed = await self.store.sweep(cutoff, dry_run=dry_run)
        logger.info(
            f"Token sweep {'found' if dry_run else 'removed'} {removed} tokens "
            f"older than {retention_days} days"
        )
        return removed

    async def stats(self) -> TokenStats:
        return await self.store.stats(self.clock())


# Global verification service instance
verification_service = VerificationService()
