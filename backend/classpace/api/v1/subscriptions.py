"""Subscription API endpoints: resume, cancel and refresh the caller's plan.

Every failure is reported the same way: HTTP 500 with ``{"error": ...}``.
The front end disables the action while a request is in flight, so these
endpoints are treated as at-most-once.
"""

import logging

from fastapi import APIRouter, Depends, Header, status
from fastapi.responses import JSONResponse
from sqlalchemy.ext.asyncio import AsyncSession

from classpace.api.deps import bearer_token, build_reconciler, get_db, get_identity_directory
from classpace.billing.tiers import TIERS
from classpace.identity.directory import Principal
from classpace.schemas.subscription import (
    CancelResponse,
    CheckResponse,
    ErrorResponse,
    ResumeResponse,
    TierResponse,
    TiersListResponse,
)

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/v1/subscriptions", tags=["subscriptions"])

_ERROR_RESPONSES = {status.HTTP_500_INTERNAL_SERVER_ERROR: {"model": ErrorResponse}}


def _error(step: str, exc: Exception) -> JSONResponse:
    logger.exception("%s failed: %s", step, exc)
    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content=ErrorResponse(error=str(exc) or exc.__class__.__name__).model_dump(),
    )


async def _authenticate(authorization: str | None) -> Principal:
    principal = await get_identity_directory().verify_token(bearer_token(authorization))
    logger.info("User authenticated: %s", principal.id)
    return principal


@router.get("/tiers", response_model=TiersListResponse)
async def list_tiers() -> TiersListResponse:
    """List entitlement tiers and their features (public, no auth required)."""
    return TiersListResponse(
        tiers=[
            TierResponse(
                name=t.name,
                display_name=t.display_name,
                audience=t.audience,
                is_premium=t.is_premium,
                features=list(t.features),
            )
            for t in TIERS.values()
        ]
    )


@router.post("/resume", response_model=ResumeResponse, responses=_ERROR_RESPONSES)
async def resume_subscription(
    authorization: str | None = Header(default=None),
    db: AsyncSession = Depends(get_db),
):
    """Clear a pending cancellation on the caller's subscription."""
    try:
        principal = await _authenticate(authorization)
        next_renewal = await build_reconciler(db).resume_subscription(principal)
    except Exception as e:
        return _error("resume-subscription", e)
    return ResumeResponse(success=True, next_renewal=next_renewal)


@router.post("/cancel", response_model=CancelResponse, responses=_ERROR_RESPONSES)
async def cancel_subscription(
    authorization: str | None = Header(default=None),
    db: AsyncSession = Depends(get_db),
):
    """Schedule the caller's subscription to cancel at period end."""
    try:
        principal = await _authenticate(authorization)
        cancel_at = await build_reconciler(db).cancel_subscription(principal)
    except Exception as e:
        return _error("cancel-subscription", e)
    return CancelResponse(success=True, cancel_at=cancel_at)


@router.post("/check", response_model=CheckResponse, responses=_ERROR_RESPONSES)
async def check_subscription(
    authorization: str | None = Header(default=None),
    db: AsyncSession = Depends(get_db),
):
    """Refresh the caller's entitlement from Stripe and return it."""
    try:
        principal = await _authenticate(authorization)
        result = await build_reconciler(db).refresh_subscription(principal)
    except Exception as e:
        return _error("check-subscription", e)
    return CheckResponse(
        subscribed=result.subscribed,
        tier=result.tier,
        product_id=result.product_id,
        subscription_end=result.subscription_end,
        cancel_at_period_end=result.cancel_at_period_end,
    )
