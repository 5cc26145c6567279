"""Admin API endpoints for the gateway sync."""

import logging
from typing import AsyncGenerator, List, Optional

from fastapi import APIRouter, Depends, HTTPException, Query, Request
from fastapi.responses import JSONResponse
from pydantic import BaseModel
from sqlalchemy.ext.asyncio import AsyncSession

from ..auth import verify_api_key, limiter, sync_rate_limit
from ..config import get_settings
from ..database import get_db
from ..errors import NetworkError
from ..gateway import GatewayClientBase, get_gateway_client
from .models import StageFailurePolicy, SyncRunReport
from .service import SyncService

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/sync", tags=["sync"])


class BalanceResponse(BaseModel):
    """Balance for one currency, in major units."""
    currency: str
    balance: float


async def get_gateway() -> AsyncGenerator[GatewayClientBase, None]:
    """Dependency yielding a gateway client for one request."""
    settings = get_settings()
    try:
        client = get_gateway_client("paystack", settings)
    except ValueError as e:
        logger.error(f"Gateway client unavailable: {e}")
        raise HTTPException(status_code=503, detail=str(e))
    try:
        yield client
    finally:
        await client.close()


def _report_response(report: SyncRunReport, include_details: bool) -> JSONResponse:
    body = report.to_full_dict() if include_details else report.to_summary_dict()
    status_code = 500 if report.failed_stages else 200
    return JSONResponse(status_code=status_code, content=body)


@router.post("/transactions")
@limiter.limit(sync_rate_limit)
async def sync_transactions(
    request: Request,
    deadline_seconds: Optional[float] = Query(default=None, gt=0, description="Per-run deadline in seconds"),
    include_details: bool = Query(default=True, description="Include per-record issues"),
    api_key: str = Depends(verify_api_key),
    db: AsyncSession = Depends(get_db),
    gateway: GatewayClientBase = Depends(get_gateway),
):
    """Reconcile gateway transactions into payments."""
    service = SyncService(db, gateway_client=gateway, settings=get_settings())
    report = await service.sync_transactions(deadline_seconds=deadline_seconds)
    return _report_response(report, include_details)


@router.post("/transfers")
@limiter.limit(sync_rate_limit)
async def sync_transfers(
    request: Request,
    deadline_seconds: Optional[float] = Query(default=None, gt=0, description="Per-run deadline in seconds"),
    include_details: bool = Query(default=True, description="Include per-record issues"),
    api_key: str = Depends(verify_api_key),
    db: AsyncSession = Depends(get_db),
    gateway: GatewayClientBase = Depends(get_gateway),
):
    """Reconcile gateway transfers into payouts."""
    service = SyncService(db, gateway_client=gateway, settings=get_settings())
    report = await service.sync_transfers(deadline_seconds=deadline_seconds)
    return _report_response(report, include_details)


@router.post("/all")
@limiter.limit(sync_rate_limit)
async def sync_all(
    request: Request,
    failure_policy: Optional[StageFailurePolicy] = Query(default=None, description="abort or continue after a failed stage"),
    deadline_seconds: Optional[float] = Query(default=None, gt=0, description="Per-run deadline in seconds"),
    include_details: bool = Query(default=True, description="Include per-record issues"),
    api_key: str = Depends(verify_api_key),
    db: AsyncSession = Depends(get_db),
    gateway: GatewayClientBase = Depends(get_gateway),
):
    """
    Run the full sync: transactions first, then transfers.

    A run in which any stage failed answers 500 with the report as body.
    """
    service = SyncService(db, gateway_client=gateway, settings=get_settings())
    report = await service.sync_all(failure_policy=failure_policy, deadline_seconds=deadline_seconds)
    return _report_response(report, include_details)


@router.get("/gateway/balance", response_model=List[BalanceResponse])
async def gateway_balance(
    api_key: str = Depends(verify_api_key),
    db: AsyncSession = Depends(get_db),
    gateway: GatewayClientBase = Depends(get_gateway),
):
    """Current gateway balance per currency."""
    service = SyncService(db, gateway_client=gateway, settings=get_settings())
    try:
        balances = await service.fetch_balance()
    except NetworkError as e:
        raise HTTPException(status_code=502, detail=str(e))
    return [BalanceResponse(currency=b.currency, balance=b.balance / 100) for b in balances]


@router.get("/gateway/settlements")
async def gateway_settlements(
    page: int = Query(default=1, ge=1),
    per_page: Optional[int] = Query(default=None, ge=1, le=1000),
    api_key: str = Depends(verify_api_key),
    db: AsyncSession = Depends(get_db),
    gateway: GatewayClientBase = Depends(get_gateway),
):
    """One page of gateway settlements, as the gateway reports them."""
    service = SyncService(db, gateway_client=gateway, settings=get_settings())
    try:
        settlements = await service.fetch_settlements(page=page, per_page=per_page)
    except NetworkError as e:
        raise HTTPException(status_code=502, detail=str(e))
    return [s.model_dump(mode="json") for s in settlements]


@router.get("/health")
async def sync_health():
    """Health check endpoint for the sync service."""
    return {"status": "healthy", "service": "sync"}
