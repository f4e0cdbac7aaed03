"""Administrative endpoints, guarded by the x-admin-key header."""

import hmac
import logging
import time

from fastapi import APIRouter, Header, HTTPException, Request

from api.auth import client_ip
from api.rate_limiter import Tier
from config.settings import ADMIN_KEY, ENVIRONMENT
from services.errors import QuotaError

logger = logging.getLogger(__name__)

router = APIRouter()


@router.get("/admin/stats")
async def admin_stats(request: Request, x_admin_key: str = Header(None)):
    decision = request.app.state.limiter.check_and_increment(Tier.ADMIN, client_ip(request))
    if not decision.allowed:
        request.state.quota_denied = True
        raise QuotaError(decision)

    if not ADMIN_KEY or not x_admin_key or not hmac.compare_digest(x_admin_key, ADMIN_KEY):
        logger.warning("Admin authentication failed", extra={"fields": {"ip": client_ip(request)}})
        raise HTTPException(status_code=401, detail={
            "error": "admin_authentication_required",
            "message": "Admin authentication required",
        })

    return {
        **request.app.state.key_validator.registry.stats(),
        "server_info": {
            "uptime_seconds": int(time.monotonic() - request.app.state.started_at),
            "environment": ENVIRONMENT,
        },
    }
