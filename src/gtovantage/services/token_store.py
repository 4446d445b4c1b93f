"""Durable storage for verification tokens.

Two backends share one contract:

- ``FileTokenStore`` keeps every token in a single JSON document that is read
  and rewritten wholesale on each mutation. Mutations are serialized by a
  process-wide lock per file, and writes land through an atomic rename so a
  failure never leaves a truncated document behind.
- ``DatabaseTokenStore`` keeps tokens in the ``verification_tokens`` table and
  redeems with a single conditional UPDATE, so at most one caller can flip
  ``used`` even across processes.

Both backends raise the errors defined here. Every operation is bounded by a
timeout; storage failures of any kind surface as ``StorageUnavailableError``.
"""

import asyncio
import json
import logging
import uuid
from abc import ABC, abstractmethod
from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager, suppress
from dataclasses import dataclass
from pathlib import Path
from typing import Any

import aiofiles
import aiofiles.os
from pydantic import ValidationError
from sqlalchemy import and_, delete, func, or_, select, text, update
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker
from sqlmodel import col

from gtovantage.config import settings
from gtovantage.models import VerificationToken

logger = logging.getLogger(__name__)


class VerificationError(Exception):
    """Base class for token issuance and redemption failures."""

    code = "verification_error"
    message = "Verification failed"
    retryable = False

    def __init__(self, message: str | None = None):
        super().__init__(message or self.message)


class InvalidInputError(VerificationError):
    """Missing or malformed request fields."""

    code = "invalid_input"
    message = "Invalid input"


class MalformedTokenError(InvalidInputError):
    """Token string does not have the shape of an issued token."""

    code = "malformed_token"
    message = "Invalid token"


class TokenNotFoundError(VerificationError):
    code = "token_not_found"
    message = "Token not found"


class TokenAlreadyUsedError(VerificationError):
    code = "token_already_used"
    message = "This token has already been used"


class TokenExpiredError(VerificationError):
    code = "token_expired"
    message = "This token has expired"


class TokenCollisionError(VerificationError):
    """A freshly generated token id is already present in the store."""

    code = "token_collision"
    message = "Could not issue a unique token"
    retryable = True


class StorageUnavailableError(VerificationError):
    """The durable medium could not be read or written."""

    code = "storage_unavailable"
    message = "Token storage is unavailable"
    retryable = True


@dataclass
class TokenStats:
    """Counts of tokens by state at a given instant."""

    total: int
    active: int
    used: int
    expired: int


def is_sweepable(token: VerificationToken, cutoff: int) -> bool:
    """Whether a token was used or expired before ``cutoff`` (epoch ms)."""
    if token.expiration_time < cutoff:
        return True
    if token.used:
        return (token.used_at if token.used_at is not None else token.created_at) < cutoff
    return False


def check_redeemable(token: VerificationToken, now: int) -> None:
    """Raise if ``token`` cannot be redeemed at ``now``.

    Expiry wins over the used flag, so an expired token always reports expired.
    """
    if token.is_expired(now):
        raise TokenExpiredError()
    if token.used:
        raise TokenAlreadyUsedError()


class TokenStore(ABC):
    """Abstract base class for token storage backends."""

    def __init__(self, timeout: float | None = None):
        self.timeout = timeout if timeout is not None else settings.token_store_timeout_seconds

    @asynccontextmanager
    async def _bounded(self, operation: str) -> AsyncGenerator[None, None]:
        """Bound an operation by the storage timeout."""
        try:
            async with asyncio.timeout(self.timeout):
                yield
        except TimeoutError as e:
            logger.error(f"Token store {operation} timed out after {self.timeout}s")
            raise StorageUnavailableError(f"Token storage timed out during {operation}") from e

    @abstractmethod
    async def insert(self, token: VerificationToken) -> None:
        """Persist a new token.

        Raises:
            TokenCollisionError: if a token with the same id exists
            StorageUnavailableError: if the medium cannot be read or written
        """
        pass

    @abstractmethod
    async def get(self, token: str) -> VerificationToken | None:
        """Load a token by id, or None if it was never issued."""
        pass

    @abstractmethod
    async def redeem(self, token: str, now: int) -> VerificationToken:
        """Atomically mark a redeemable token as used.

        Args:
            token: Token id
            now: Current time (epoch ms)

        Returns:
            The updated token

        Raises:
            TokenNotFoundError, TokenExpiredError, TokenAlreadyUsedError,
            StorageUnavailableError
        """
        pass

    @abstractmethod
    async def sweep(self, cutoff: int, dry_run: bool = False) -> int:
        """Delete tokens used or expired before ``cutoff`` (epoch ms).

        Returns:
            Number of tokens removed, or that would be removed in dry-run mode
        """
        pass

    @abstractmethod
    async def stats(self, now: int) -> TokenStats:
        """Count tokens by state."""
        pass

    @abstractmethod
    async def ping(self) -> None:
        """Check that the medium is readable. Raises StorageUnavailableError."""
        pass


# One lock per token document, shared by every store pointed at that file
_file_locks: dict[str, asyncio.Lock] = {}


def _lock_for(path: Path) -> asyncio.Lock:
    key = str(path.resolve())
    if key not in _file_locks:
        _file_locks[key] = asyncio.Lock()
    return _file_locks[key]


class FileTokenStore(TokenStore):
    """Token store backed by a single JSON document.

    Mutations take the file lock before the storage timeout starts, so time
    spent queued behind other writers never counts against the timeout.
    """

    def __init__(self, path: str | Path, timeout: float | None = None):
        super().__init__(timeout)
        self.path = Path(path)
        self._lock = _lock_for(self.path)

    async def _read(self) -> dict[str, Any]:
        """Read the whole document. A missing file is an empty store."""
        try:
            async with aiofiles.open(self.path, encoding="utf-8") as f:
                content = await f.read()
        except FileNotFoundError:
            return {}
        except OSError as e:
            logger.error(f"Failed to read token store {self.path}: {e}")
            raise StorageUnavailableError(f"Could not read token storage: {e}") from e
        except UnicodeDecodeError as e:
            logger.error(f"Token store {self.path} is not valid UTF-8: {e}")
            raise StorageUnavailableError("Token storage document is corrupt") from e

        try:
            document = json.loads(content)
        except json.JSONDecodeError as e:
            logger.error(f"Token store {self.path} is corrupt: {e}")
            raise StorageUnavailableError("Token storage document is corrupt") from e

        if not isinstance(document, dict):
            logger.error(f"Token store {self.path} is not a JSON object")
            raise StorageUnavailableError("Token storage document is corrupt")
        return document

    async def _write(self, document: dict[str, Any]) -> None:
        """Replace the document atomically via a temporary sibling file."""
        payload = json.dumps(document, indent=2, ensure_ascii=False)
        tmp_path = self.path.with_name(f".{self.path.name}.{uuid.uuid4().hex}.tmp")

        try:
            await aiofiles.os.makedirs(self.path.parent, exist_ok=True)
            async with aiofiles.open(tmp_path, "w", encoding="utf-8") as f:
                await f.write(payload)
                await f.flush()
            await aiofiles.os.replace(tmp_path, self.path)
        except OSError as e:
            logger.error(f"Failed to write token store {self.path}: {e}")
            raise StorageUnavailableError(f"Could not write token storage: {e}") from e
        finally:
            # No-op after a successful replace
            with suppress(OSError):
                tmp_path.unlink(missing_ok=True)

    def _parse(self, token: str, data: Any) -> VerificationToken:
        try:
            return VerificationToken.from_record(token, data)
        except ValidationError as e:
            logger.error(f"Token store {self.path} holds a malformed record: {e}")
            raise StorageUnavailableError("Token storage document is corrupt") from e

    async def insert(self, token: VerificationToken) -> None:
        async with self._lock, self._bounded("insert"):
            document = await self._read()
            if token.token in document:
                raise TokenCollisionError()
            document[token.token] = token.to_record()
            await self._write(document)

    async def get(self, token: str) -> VerificationToken | None:
        async with self._bounded("get"):
            document = await self._read()
        data = document.get(token)
        if data is None:
            return None
        return self._parse(token, data)

    async def redeem(self, token: str, now: int) -> VerificationToken:
        async with self._lock, self._bounded("redeem"):
            document = await self._read()
            data = document.get(token)
            if data is None:
                raise TokenNotFoundError()

            record = self._parse(token, data)
            check_redeemable(record, now)

            record.used = True
            record.used_at = now
            document[token] = record.to_record()
            await self._write(document)
            return record

    async def sweep(self, cutoff: int, dry_run: bool = False) -> int:
        async with self._lock, self._bounded("sweep"):
            document = await self._read()
            stale = [
                key for key, data in document.items() if is_sweepable(self._parse(key, data), cutoff)
            ]
            if stale and not dry_run:
                for key in stale:
                    del document[key]
                await self._write(document)
            return len(stale)

    async def stats(self, now: int) -> TokenStats:
        async with self._bounded("stats"):
            document = await self._read()

        used = expired = 0
        for key, data in document.items():
            record = self._parse(key, data)
            if record.used:
                used += 1
            elif record.is_expired(now):
                expired += 1
        total = len(document)
        return TokenStats(total=total, active=total - used - expired, used=used, expired=expired)

    async def ping(self) -> None:
        async with self._bounded("ping"):
            await self._read()


class DatabaseTokenStore(TokenStore):
    """Token store backed by the ``verification_tokens`` table."""

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession] | None = None,
        timeout: float | None = None,
    ):
        super().__init__(timeout)
        self._session_factory = session_factory

    @property
    def session_factory(self) -> async_sessionmaker[AsyncSession]:
        """Lazy-load the session factory."""
        if self._session_factory is None:
            from gtovantage.database import get_session_factory

            self._session_factory = get_session_factory()
        return self._session_factory

    @asynccontextmanager
    async def _session(self, operation: str) -> AsyncGenerator[AsyncSession, None]:
        try:
            async with self._bounded(operation), self.session_factory() as session:
                yield session
        except SQLAlchemyError as e:
            logger.error(f"Token store {operation} failed: {e!r}")
            raise StorageUnavailableError(f"Token storage failed during {operation}") from e

    async def insert(self, token: VerificationToken) -> None:
        async with self._session("insert") as session:
            if await session.get(VerificationToken, token.token) is not None:
                raise TokenCollisionError()
            session.add(token)
            try:
                await session.commit()
            except IntegrityError as e:
                await session.rollback()
                raise TokenCollisionError() from e

    async def get(self, token: str) -> VerificationToken | None:
        async with self._session("get") as session:
            return await session.get(VerificationToken, token)

    async def redeem(self, token: str, now: int) -> VerificationToken:
        async with self._session("redeem") as session:
            stmt = (
                update(VerificationToken)
                .where(col(VerificationToken.token) == token)
                .where(col(VerificationToken.used).is_(False))
                .where(col(VerificationToken.expiration_time) > now)
                .values(used=True, used_at=now)
            )
            result = await session.execute(stmt)
            await session.commit()

            record = await session.get(VerificationToken, token, populate_existing=True)
            if record is None:
                raise TokenNotFoundError()
            if result.rowcount == 1:  # type: ignore[attr-defined]
                return record

            check_redeemable(record, now)
            # Lost a race between the UPDATE and the re-read
            raise TokenAlreadyUsedError()

    def _sweep_condition(self, cutoff: int) -> Any:
        return or_(
            col(VerificationToken.expiration_time) < cutoff,
            and_(
                col(VerificationToken.used).is_(True),
                func.coalesce(VerificationToken.used_at, VerificationToken.created_at) < cutoff,
            ),
        )

    async def sweep(self, cutoff: int, dry_run: bool = False) -> int:
        condition = self._sweep_condition(cutoff)
        async with self._session("sweep") as session:
            count_stmt = select(func.count()).select_from(VerificationToken).where(condition)
            count = (await session.execute(count_stmt)).scalar_one()
            if count and not dry_run:
                await session.execute(delete(VerificationToken).where(condition))
                await session.commit()
            return count

    async def stats(self, now: int) -> TokenStats:
        async with self._session("stats") as session:
            total = (
                await session.execute(select(func.count()).select_from(VerificationToken))
            ).scalar_one()
            used = (
                await session.execute(
                    select(func.count())
                    .select_from(VerificationToken)
                    .where(col(VerificationToken.used).is_(True))
                )
            ).scalar_one()
            expired = (
                await session.execute(
                    select(func.count())
                    .select_from(VerificationToken)
                    .where(col(VerificationToken.used).is_(False))
                    .where(col(VerificationToken.expiration_time) <= now)
                )
            ).scalar_one()
        return TokenStats(total=total, active=total - used - expired, used=used, expired=expired)

    async def ping(self) -> None:
        async with self._session("ping") as session:
            await session.execute(text("SELECT 1"))


def get_token_store() -> TokenStore:
    """Get the configured token store backend."""
    if settings.token_store_backend == "file":
        return FileTokenStore(settings.verification_tokens_file)
    elif settings.token_store_backend == "database":
        return DatabaseTokenStore()
    else:
        raise ValueError(f"Unknown token store backend: {settings.token_store_backend}")

