"""API key authentication and per-client quota dependencies."""

import logging
from typing import Optional

from fastapi import Depends, Header, HTTPException, Request

from api.rate_limiter import QuotaLimiter, Tier, anonymous_key, per_minute_limit
from config.settings import SALES_EMAIL, UPGRADE_HINTS
from db.models import ClientRecord
from services.errors import AuthError, HourlyExceeded, MissingKey, PerMinuteExceeded
from services.key_validator import KeyValidator

logger = logging.getLogger(__name__)


def extract_api_key(authorization: Optional[str], x_api_key: Optional[str]) -> Optional[str]:
    """Key from ``Authorization: Bearer <key>``, else from ``x-api-key``."""
    if authorization:
        parts = authorization.split(" ")
        if len(parts) == 2 and parts[0].lower() == "bearer" and parts[1]:
            return parts[1]
    if x_api_key:
        return x_api_key.strip() or None
    return None


def client_ip(request: Request) -> str:
    return request.client.host if request.client else "unknown"


async def get_client(
    request: Request,
    authorization: str = Header(None),
    x_api_key: str = Header(None),
) -> ClientRecord:
    """Authenticate the caller. Anonymous callers are throttled by IP before the 401."""
    validator: KeyValidator = request.app.state.key_validator
    ip = client_ip(request)
    api_key = extract_api_key(authorization, x_api_key)
    try:
        client = validator.validate(api_key, ip=ip)
    except MissingKey:
        limiter: QuotaLimiter = request.app.state.limiter
        decision = limiter.check_and_increment(Tier.CLIENT_HOURLY, anonymous_key(ip))
        if not decision.allowed:
            request.state.quota_denied = True
            raise HourlyExceeded(decision)
        raise
    except AuthError:
        # Rejected keys give back the global IP increment taken by the middleware.
        request.state.quota_denied = True
        raise
    request.state.client = client
    return client


async def enforce_client_quota(request: Request, client: ClientRecord = Depends(get_client)) -> ClientRecord:
    """Hourly then per-minute analysis quota for an authenticated client."""
    limiter: QuotaLimiter = request.app.state.limiter
    plan = client.plan.value
    decision = limiter.check_chain([
        (Tier.CLIENT_HOURLY, client.client_id, client.hourly_quota),
        (Tier.CLIENT_PER_MINUTE, client.client_id, per_minute_limit(plan)),
    ])
    if not decision.allowed:
        request.state.quota_denied = True
        logger.warning("Rate limit exceeded", extra={"fields": {
            "client_id": client.client_id,
            "plan": plan,
            "tier": decision.tier.value,
            "limit": decision.limit,
            "ip": client_ip(request),
            "endpoint": request.url.path,
        }})
        error_cls = HourlyExceeded if decision.tier == Tier.CLIENT_HOURLY else PerMinuteExceeded
        raise error_cls(decision, plan=plan, client_id=client.client_id)

    request.state.rate_limit_headers = {
        "X-RateLimit-Limit": str(client.hourly_quota),
        "X-RateLimit-Remaining": str(limiter.remaining(Tier.CLIENT_HOURLY, client.client_id, client.hourly_quota)),
    }
    return client


def require_feature(feature: str, base=enforce_client_quota):
    """Dependency that checks the client's plan includes a feature."""
    async def _check(client: ClientRecord = Depends(base)) -> ClientRecord:
        if feature not in client.features:
            logger.warning("Feature not available for client", extra={"fields": {
                "client_id": client.client_id,
                "plan": client.plan.value,
                "requested_feature": feature,
            }})
            raise HTTPException(status_code=403, detail={
                "error": "feature_not_available",
                "message": f"Feature '{feature}' not available in your {client.plan.value} plan",
                "current_plan": client.plan.value,
                "available_features": sorted(client.features),
                "upgrade_info": UPGRADE_HINTS.get(client.plan.value) or "Contact support for enterprise features",
                "contact": SALES_EMAIL,
            })
        return client
    return _check
