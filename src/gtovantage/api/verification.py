"""Email verification token endpoints."""

import logging
from datetime import datetime
from typing import Annotated

from fastapi import APIRouter, Body, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from pydantic import BaseModel, ConfigDict, EmailStr, Field
from pydantic.alias_generators import to_camel

from gtovantage.api.deps import (
    EmailServiceDep,
    IssueRateLimit,
    RedeemRateLimit,
    VerificationServiceDep,
    enforce_email_rate_limit,
)
from gtovantage.config import settings
from gtovantage.services.rate_limit import release_email_rate_limit
from gtovantage.services.token_store import InvalidInputError, VerificationError

logger = logging.getLogger(__name__)

router = APIRouter()


class CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class IssueRequest(BaseModel):
    """Request body for issuing a verification token."""

    email: EmailStr
    name: str | None = Field(default=None, max_length=255)


class IssueResponse(CamelModel):
    """Response for an issued token."""

    verification_url: str
    expires_at: datetime
    email_sent: bool
    # Only outside production, for testing the flow without an inbox
    token: str | None = None


class RedeemRequest(BaseModel):
    """Optional request body for redemption; must match the path token."""

    token: str | None = None


class RedeemResponse(CamelModel):
    """Response for a redeemed token."""

    email: str
    verified: bool = True


def error_body(error: VerificationError) -> dict[str, str]:
    # Storage failures keep their internals out of the response
    message = error.message if error.retryable else str(error)
    return {"error": message, "code": error.code}


async def verification_error_handler(_request: Request, exc: VerificationError) -> JSONResponse:
    """Render verification errors as ``{error, code}`` with 400 or 500."""
    status_code = (
        status.HTTP_500_INTERNAL_SERVER_ERROR if exc.retryable else status.HTTP_400_BAD_REQUEST
    )
    if exc.retryable:
        logger.error(f"Verification request failed: {exc!r}")
    return JSONResponse(status_code=status_code, content=error_body(exc))


async def validation_error_handler(_request: Request, exc: RequestValidationError) -> JSONResponse:
    """Report malformed request bodies as 400 invalid input."""
    fields = [".".join(str(part) for part in err["loc"][1:]) for err in exc.errors()]
    fields = [f for f in fields if f]
    message = f"Invalid or missing fields: {', '.join(fields)}" if fields else "Invalid request"
    return JSONResponse(
        status_code=status.HTTP_400_BAD_REQUEST,
        content={"error": message, "code": InvalidInputError.code},
    )


@router.post(
    "",
    response_model=IssueResponse,
    response_model_exclude_none=True,
    status_code=status.HTTP_201_CREATED,
)
async def issue_verification_token(
    request: IssueRequest,
    service: VerificationServiceDep,
    emails: EmailServiceDep,
    _rate_limit: IssueRateLimit,
):
    """
    Issue a verification token and email the verification link.
    """
    await enforce_email_rate_limit(request.email)

    try:
        issued = await service.issue(request.email, request.name)
    except VerificationError:
        await release_email_rate_limit(request.email)
        raise

    email_sent = await emails.send_verification_email(
        to=issued.email,
        verification_url=issued.verification_url,
        name=request.name,
    )

    if not email_sent and settings.is_production:
        return JSONResponse(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            content={"error": "Failed to send verification email", "code": "email_not_sent"},
        )

    response = IssueResponse(
        verification_url=issued.verification_url,
        expires_at=issued.expires_at,
        email_sent=email_sent,
    )

    if settings.token_exposure_enabled:
        response.token = issued.token

    return response


@router.post("/{token}/redeem", response_model=RedeemResponse)
async def redeem_verification_token(
    token: str,
    service: VerificationServiceDep,
    _rate_limit: RedeemRateLimit,
    body: Annotated[RedeemRequest | None, Body()] = None,
):
    """
    Redeem a verification token, marking its email address as verified.
    """
    if body is not None and body.token is not None and body.token != token:
        raise InvalidInputError("Token in body does not match the URL")

    email = await service.redeem(token)
    return RedeemResponse(email=email)
