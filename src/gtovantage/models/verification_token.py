"""Verification token model for email verification."""

from pydantic import BaseModel, ConfigDict, Field as PydanticField
from pydantic.alias_generators import to_camel
from sqlalchemy import BigInteger
from sqlmodel import Field, SQLModel


class VerificationToken(SQLModel, table=True):
    """Single-use, time-limited token proving control of an email address."""

    __tablename__ = "verification_tokens"

    token: str = Field(
        primary_key=True, min_length=64, max_length=64, description="Random verification token"
    )
    email: str = Field(index=True, min_length=1, max_length=255, description="Email address")
    name: str | None = Field(default=None, max_length=255, description="Display name")
    created_at: int = Field(
        sa_type=BigInteger,  # type: ignore[call-overload]
        description="Creation time (epoch ms)",
    )
    expiration_time: int = Field(
        sa_type=BigInteger,  # type: ignore[call-overload]
        index=True,
        description="Instant after which the token is no longer redeemable (epoch ms)",
    )
    used: bool = Field(default=False, description="Whether the token has been redeemed")
    used_at: int | None = Field(
        default=None,
        sa_type=BigInteger,  # type: ignore[call-overload]
        description="Redemption time (epoch ms)",
    )

    def is_expired(self, now: int) -> bool:
        return now >= self.expiration_time

    def to_record(self) -> dict:
        """Serialize to the persisted document layout (token is the key, not a field)."""
        return TokenRecord(
            email=self.email,
            name=self.name,
            created_at=self.created_at,
            expiration_time=self.expiration_time,
            used=self.used,
            used_at=self.used_at,
        ).model_dump(by_alias=True, exclude_none=True)

    @classmethod
    def from_record(cls, token: str, data: object) -> "VerificationToken":
        """Build a token from its persisted document entry.

        Raises:
            pydantic.ValidationError: if the entry does not match the layout
        """
        record = TokenRecord.model_validate(data)
        return cls(token=token, **record.model_dump())


class TokenRecord(BaseModel):
    """One entry of the persisted token document.

    Stored as ``{email, name, expirationTime, used, createdAt, usedAt?}``.
    """

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="ignore")

    email: str = PydanticField(min_length=1)
    name: str | None = None
    created_at: int
    expiration_time: int
    used: bool = False
    used_at: int | None = None

