"""REST API routes for usage statistics and monthly billing reports."""

import logging
from datetime import datetime, timezone

from fastapi import APIRouter, Depends, HTTPException, Query, Request
from fastapi.concurrency import run_in_threadpool

from api.auth import get_client
from api.schemas import BillingClientInfo, BillingPeriod, BillingStatsResponse
from db.models import ClientRecord
from services import report_service
from services.errors import LedgerError

logger = logging.getLogger(__name__)

router = APIRouter()

MAX_LOOKBACK_DAYS = 365
MIN_REPORT_YEAR, MAX_REPORT_YEAR = 2020, 2030


@router.get("/billing/stats", response_model=BillingStatsResponse)
async def billing_stats(
    request: Request,
    days: int = Query(30),
    client: ClientRecord = Depends(get_client),
):
    if days < 1 or days > MAX_LOOKBACK_DAYS:
        raise HTTPException(status_code=400, detail={
            "error": "invalid_period",
            "message": f"days must be between 1 and {MAX_LOOKBACK_DAYS}",
        })

    now = datetime.now(timezone.utc)
    try:
        stats = await run_in_threadpool(
            report_service.get_usage_stats, request.app.state.ledger, client.client_id, days, now,
        )
    except LedgerError as e:
        logger.error("Failed to read billing stats", extra={"fields": {
            "client_id": client.client_id, "request_id": request.state.request_id, "error": str(e),
        }})
        raise HTTPException(status_code=500, detail={
            "error": "billing_stats_error",
            "message": "Unable to retrieve billing statistics",
        })

    return BillingStatsResponse(
        client_info=BillingClientInfo(
            client_id=client.client_id,
            client_name=client.display_name,
            plan=client.plan.value,
            price_per_request=float(client.price_per_request),
        ),
        usage_stats=stats,
        current_period=BillingPeriod(
            days=days, start_date=stats["period_start"], end_date=stats["period_end"],
        ),
    )


@router.get("/billing/report/{year}/{month}")
async def monthly_report(
    request: Request,
    year: int,
    month: int,
    client: ClientRecord = Depends(get_client),
):
    if not (MIN_REPORT_YEAR <= year <= MAX_REPORT_YEAR) or not (1 <= month <= 12):
        raise HTTPException(status_code=400, detail={
            "error": "invalid_period",
            "message": f"Please provide valid year ({MIN_REPORT_YEAR}-{MAX_REPORT_YEAR}) and month (1-12)",
            "example": "/v1/billing/report/2025/5",
        })

    try:
        report = await run_in_threadpool(
            report_service.generate_monthly_report, request.app.state.ledger, client.client_id, year, month,
        )
    except LedgerError as e:
        logger.error("Failed to generate monthly report", extra={"fields": {
            "client_id": client.client_id, "request_id": request.state.request_id, "error": str(e),
        }})
        raise HTTPException(status_code=500, detail={
            "error": "report_generation_error",
            "message": "Unable to generate billing report",
        })

    if report is None:
        raise HTTPException(status_code=404, detail={
            "error": "no_usage_data",
            "message": f"No usage data found for {year}-{month:02d}",
            "client_id": client.client_id,
        })
    return report
