"""SQLModel database models."""

from gtovantage.models.verification_token import TokenRecord, VerificationToken

__all__ = [
    "TokenRecord",
    "VerificationToken",
]
