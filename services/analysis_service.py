"""Client for the external document-analysis workflow (webhook over HTTP)."""

import asyncio
import logging
import re
import socket
import time
from datetime import datetime, timezone

import httpx

from config.settings import (
    API_VERSION, APP_VERSION, BACKEND_HEALTH_TIMEOUT_SECONDS,
    BACKEND_TIMEOUT_SECONDS, BACKEND_WEBHOOK_URL, ENVIRONMENT,
)
from db.models import ClientRecord, format_timestamp
from services.errors import BackendApplicationError, BackendError, BackendErrorKind

logger = logging.getLogger(__name__)

_DNS_MARKERS = ("name or service not known", "nodename nor servname", "getaddrinfo failed",
                "temporary failure in name resolution", "no address associated")


def mask_url(url: str) -> str:
    """Hide the last path segment (the webhook secret) for logs."""
    return re.sub(r"/[^/]+$", "/***", url)


def _is_dns_failure(exc: BaseException) -> bool:
    seen = set()
    while exc is not None and id(exc) not in seen:
        seen.add(id(exc))
        if isinstance(exc, socket.gaierror):
            return True
        if any(marker in str(exc).lower() for marker in _DNS_MARKERS):
            return True
        exc = exc.__cause__ or exc.__context__
    return False


def classify_exception(exc: BaseException) -> str:
    """Map a transport exception onto a BackendErrorKind value."""
    if isinstance(exc, (asyncio.TimeoutError, httpx.TimeoutException)):
        return BackendErrorKind.TIMEOUT
    if isinstance(exc, httpx.HTTPStatusError):
        status = exc.response.status_code
        if 400 <= status < 500:
            return BackendErrorKind.CLIENT_ERROR
        if status >= 500:
            return BackendErrorKind.SERVER_ERROR
        return BackendErrorKind.UNKNOWN
    if isinstance(exc, httpx.ConnectError):
        if _is_dns_failure(exc):
            return BackendErrorKind.DNS_FAILURE
        return BackendErrorKind.CONNECTION_REFUSED
    return BackendErrorKind.UNKNOWN


class AnalysisBackend:
    """Async webhook client. One instance per app; close with ``aclose()``."""

    def __init__(self, webhook_url: str = BACKEND_WEBHOOK_URL,
                 timeout: float = BACKEND_TIMEOUT_SECONDS,
                 transport: httpx.AsyncBaseTransport = None):
        if not webhook_url:
            raise ValueError("BACKEND_WEBHOOK_URL is required")
        self.webhook_url = webhook_url
        self.timeout = timeout
        self._client = httpx.AsyncClient(
            timeout=timeout,
            transport=transport,
            headers={
                "Content-Type": "application/json",
                "Accept": "application/json",
                "User-Agent": f"RiskAssessmentGateway/{APP_VERSION}",
            },
        )

    async def aclose(self) -> None:
        await self._client.aclose()

    def _describe(self, exc: BaseException) -> str:
        # httpx embeds the request URL in some messages
        text = str(exc) or type(exc).__name__
        return text.replace(self.webhook_url, mask_url(self.webhook_url))

    async def _post(self, payload: dict, timeout: float) -> dict:
        # wait_for cancels the in-flight request if the deadline passes first.
        response = await asyncio.wait_for(self._client.post(self.webhook_url, json=payload), timeout=timeout)
        response.raise_for_status()
        return response.json()

    async def process_risk_assessment(self, payload: dict, client: ClientRecord, request_id: str) -> dict:
        """Forward one analysis request. Raises BackendError on any failure."""
        started = time.monotonic()
        enriched = {
            **payload,
            "request_id": request_id,
            "api_metadata": {
                "client_id": client.client_id,
                "client_name": client.display_name,
                "plan": client.plan.value,
                "price_per_request": float(client.price_per_request),
                "request_timestamp": format_timestamp(datetime.now(timezone.utc)),
                "api_version": API_VERSION,
                "gateway_version": APP_VERSION,
            },
            "source": "api_gateway",
            "environment": ENVIRONMENT,
        }

        logger.info("Sending request to analysis backend", extra={"fields": {
            "client_id": client.client_id,
            "request_id": request_id,
            "document_type": payload.get("document_type"),
            "webhook_url": mask_url(self.webhook_url),
        }})

        try:
            data = await self._post(enriched, self.timeout)
        except (asyncio.TimeoutError, httpx.HTTPError, ValueError) as e:
            duration = int((time.monotonic() - started) * 1000)
            kind = classify_exception(e)
            detail = self._describe(e)
            status = e.response.status_code if isinstance(e, httpx.HTTPStatusError) else None
            logger.error("Analysis backend request failed", extra={"fields": {
                "client_id": client.client_id,
                "request_id": request_id,
                "error": detail,
                "error_type": kind,
                "status": status,
                "duration_ms": duration,
                "webhook_url": mask_url(self.webhook_url),
            }})
            raise BackendError(kind, detail, status_code=status, duration_ms=duration) from e

        duration = int((time.monotonic() - started) * 1000)
        if not isinstance(data, dict) or not data:
            raise BackendError(BackendErrorKind.UNKNOWN, "Empty response from analysis backend",
                               duration_ms=duration)

        if data.get("status") == "error":
            message = data.get("message") or "Unknown backend processing error"
            logger.error("Analysis backend processing error", extra={"fields": {
                "client_id": client.client_id,
                "request_id": request_id,
                "error": message,
            }})
            raise BackendApplicationError(f"Backend processing error: {message}", duration_ms=duration)

        logger.info("Analysis completed", extra={"fields": {
            "client_id": client.client_id,
            "request_id": request_id,
            "duration_ms": duration,
            "risk_assessment": data.get("risk_assessment"),
            "risk_score": data.get("risk_score"),
        }})

        return {
            **data,
            "api_metadata": {
                **(data.get("api_metadata") or {}),
                "gateway_processing_time_ms": duration,
                "processed_at": format_timestamp(datetime.now(timezone.utc)),
            },
        }

    async def health_check(self) -> dict:
        """Probe the webhook with a marker payload. Never raises."""
        started = time.monotonic()
        payload = {
            "health_check": True,
            "timestamp": format_timestamp(datetime.now(timezone.utc)),
            "source": "api_gateway_health_check",
        }
        try:
            await self._post(payload, BACKEND_HEALTH_TIMEOUT_SECONDS)
        except (asyncio.TimeoutError, httpx.HTTPError, ValueError) as e:
            kind = classify_exception(e)
            logger.warning("Analysis backend health check failed", extra={"fields": {
                "error": self._describe(e), "type": kind,
            }})
            return {
                "status": "unhealthy",
                "error_type": kind,
                "is_retryable": BackendError(kind, "").retryable,
            }
        return {
            "status": "healthy",
            "response_time_ms": int((time.monotonic() - started) * 1000),
        }
