"""REST API routes for API key introspection."""

import time
from datetime import datetime, timezone

from fastapi import APIRouter, Depends, Request

from api.auth import get_client
from api.rate_limiter import per_minute_limit
from api.schemas import ClientInfo, UsageLimits, ValidateKeyResponse
from db.models import ClientRecord, format_timestamp

router = APIRouter()


@router.get("/validate-key", response_model=ValidateKeyResponse)
async def validate_key(request: Request, client: ClientRecord = Depends(get_client)):
    duration = int((time.monotonic() - request.state.start_time) * 1000)
    return ValidateKeyResponse(
        valid=True,
        client_info=ClientInfo(**client.public_info()),
        usage_limits=UsageLimits(
            requests_per_hour=client.hourly_quota,
            requests_per_minute=per_minute_limit(client.plan.value),
        ),
        response_time=f"{duration}ms",
        validated_at=format_timestamp(datetime.now(timezone.utc)),
    )
