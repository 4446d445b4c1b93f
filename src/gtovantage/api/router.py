"""Main API router that aggregates all route modules."""

from fastapi import APIRouter

from gtovantage.api import health, verification

api_router = APIRouter()

api_router.include_router(health.router, prefix="/health", tags=["health"])
api_router.include_router(
    verification.router, prefix="/verification-tokens", tags=["verification"]
)
