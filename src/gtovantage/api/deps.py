"""FastAPI dependencies for dependency injection."""

from typing import Annotated

from fastapi import Depends, HTTPException, Request, status

from gtovantage.services.email import EmailService, email_service
from gtovantage.services.rate_limit import (
    RateLimitResult,
    RateLimitType,
    check_email_rate_limit,
    check_rate_limit,
    rate_limit_headers,
)
from gtovantage.services.verification import VerificationService, verification_service


def get_verification_service() -> VerificationService:
    """Get the verification service (overridden in tests)."""
    return verification_service


def get_email_service() -> EmailService:
    """Get the email service (overridden in tests)."""
    return email_service


VerificationServiceDep = Annotated[VerificationService, Depends(get_verification_service)]
EmailServiceDep = Annotated[EmailService, Depends(get_email_service)]


def raise_if_limited(result: RateLimitResult) -> None:
    """Raise 429 with rate limit headers when a check failed."""
    if result.success:
        return
    headers = rate_limit_headers(result)
    raise HTTPException(
        status_code=status.HTTP_429_TOO_MANY_REQUESTS,
        detail=f"Rate limit exceeded. Please try again in {headers['Retry-After']} seconds.",
        headers=headers,
    )


class RateLimitDependency:
    """Per-IP rate limit for an endpoint.

    Usage:
        @router.post("/endpoint")
        async def endpoint(
            rate_limit: Annotated[None, Depends(RateLimitDependency(RateLimitType.REDEEM))]
        ):
            ...
    """

    def __init__(self, limit_type: RateLimitType) -> None:
        self.limit_type = limit_type

    async def __call__(self, request: Request) -> None:
        raise_if_limited(await check_rate_limit(request, self.limit_type))


async def enforce_email_rate_limit(email: str) -> None:
    """Limit how many tokens one address can be sent. Raises 429."""
    raise_if_limited(await check_email_rate_limit(email))


IssueRateLimit = Annotated[None, Depends(RateLimitDependency(RateLimitType.ISSUE))]
RedeemRateLimit = Annotated[None, Depends(RateLimitDependency(RateLimitType.REDEEM))]
