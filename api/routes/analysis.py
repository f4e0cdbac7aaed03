"""REST API route for document risk assessment."""

import logging
import time

from fastapi import APIRouter, Depends, HTTPException, Request
from fastapi.concurrency import run_in_threadpool
from fastapi.responses import JSONResponse

from api.auth import require_feature
from api.schemas import ErrorResponse, RiskAssessmentRequest
from config.settings import CURRENCY, MAX_PDF_SIZE_MB, SUPPORT_EMAIL
from db.models import ClientRecord, UsageStatus
from services import billing_service
from services.analysis_service import AnalysisBackend
from services.errors import BackendError, BackendErrorKind

logger = logging.getLogger(__name__)

router = APIRouter()


def _elapsed_ms(request: Request) -> int:
    return int((time.monotonic() - request.state.start_time) * 1000)


def _backend_error_response(request: Request, err: BackendError, duration_ms: int) -> JSONResponse:
    """Classified, caller-safe error body. Internal details stay in the logs."""
    base = {
        "message": err.user_message,
        "request_id": request.state.request_id,
        "is_retryable": err.retryable,
    }
    if err.kind == BackendErrorKind.TIMEOUT:
        return JSONResponse(status_code=504, content={
            "error": "processing_timeout", **base,
            "processing_time_ms": duration_ms,
            "hint": "Try again with a smaller or clearer document",
        })
    if err.kind == BackendErrorKind.CLIENT_ERROR:
        return JSONResponse(status_code=422, content={
            "error": "processing_error", **base,
            "hint": "Check your PDF format and content",
        })
    return JSONResponse(status_code=502, content={
        "error": "backend_error", **base,
        "support": f"Contact {SUPPORT_EMAIL} with this request ID",
    })


@router.post(
    "/risk-assessment",
    responses={
        400: {"model": ErrorResponse}, 401: {"model": ErrorResponse}, 403: {"model": ErrorResponse},
        413: {"model": ErrorResponse}, 429: {"model": ErrorResponse}, 504: {"model": ErrorResponse},
    },
)
async def risk_assessment(
    request: Request,
    body: RiskAssessmentRequest,
    client: ClientRecord = Depends(require_feature("basic_analysis")),
):
    """Forward a PDF to the analysis backend and bill the client on success."""
    request_id = request.state.request_id
    if body.pdf_size_mb > MAX_PDF_SIZE_MB:
        raise HTTPException(status_code=413, detail={
            "error": "payload_too_large",
            "message": f"PDF too large: {body.pdf_size_mb:.1f}MB. Maximum allowed: {MAX_PDF_SIZE_MB}MB",
            "max_size": f"{MAX_PDF_SIZE_MB}MB",
        })

    pdf_size_kb = body.pdf_size_kb
    logger.info("Processing risk assessment", extra={"fields": {
        "request_id": request_id,
        "client_id": client.client_id,
        "document_type": body.document_type,
        "pdf_size_kb": pdf_size_kb,
        "price_per_request": float(client.price_per_request),
    }})

    backend: AnalysisBackend = request.app.state.backend
    ledger = request.app.state.ledger
    try:
        result = await backend.process_risk_assessment(body.model_dump(), client, request_id)
    except BackendError as e:
        duration = _elapsed_ms(request)
        status = UsageStatus.TIMEOUT if e.kind == BackendErrorKind.TIMEOUT else UsageStatus.ERROR
        usage = billing_service.build_usage_record(
            client, request_id, body.document_type, duration, status, pdf_size_kb=pdf_size_kb,
        )
        await run_in_threadpool(billing_service.record_usage_safely, ledger, client.client_id, usage)
        logger.error("Risk assessment failed", extra={"fields": {
            "request_id": request_id,
            "client_id": client.client_id,
            "error_type": e.kind,
            "is_retryable": e.retryable,
            "duration_ms": duration,
        }})
        return _backend_error_response(request, e, duration)

    duration = _elapsed_ms(request)
    usage = billing_service.build_usage_record(
        client, request_id, body.document_type, duration, UsageStatus.SUCCESS,
        result=result, pdf_size_kb=pdf_size_kb,
    )
    await run_in_threadpool(billing_service.record_usage_safely, ledger, client.client_id, usage)

    logger.info("Risk assessment completed successfully", extra={"fields": {
        "request_id": request_id,
        "client_id": client.client_id,
        "risk_assessment": result.get("risk_assessment"),
        "processing_time_ms": duration,
        "billable_amount": float(usage.billable_amount),
    }})

    return {
        **result,
        "api_metadata": {
            **result.get("api_metadata", {}),
            "request_id": request_id,
            "client_id": client.client_id,
            "plan": client.plan.value,
            "total_processing_time_ms": duration,
            "billable_amount": float(usage.billable_amount),
            "currency": CURRENCY,
            "pdf_size_kb": pdf_size_kb,
        },
    }
