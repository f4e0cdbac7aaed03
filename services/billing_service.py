"""Usage recording for billing — build records and append them to the ledger."""

import logging
from datetime import datetime, timezone
from decimal import Decimal
from typing import Optional

from config.settings import API_VERSION
from db.ledger import Ledger
from db.models import ClientRecord, UsageRecord, UsageStatus
from services.errors import LedgerError

logger = logging.getLogger(__name__)


def _as_float(value) -> Optional[float]:
    if value is None or isinstance(value, bool):
        return None
    try:
        return float(value)
    except (TypeError, ValueError):
        return None


def build_usage_record(client: ClientRecord, request_id: str, category: Optional[str],
                       processing_time_ms: int, status: UsageStatus,
                       result: dict = None, pdf_size_kb: int = None,
                       now: datetime = None) -> UsageRecord:
    """Build the ledger entry for a completed request. Only successes are billed."""
    result = result or {}
    billable = client.price_per_request if status == UsageStatus.SUCCESS else Decimal("0")
    return UsageRecord(
        timestamp=now or datetime.now(timezone.utc),
        client_id=client.client_id,
        request_id=request_id,
        category=category,
        processing_time_ms=int(processing_time_ms),
        billable_amount=billable,
        status=status,
        risk_label=result.get("risk_assessment"),
        risk_score=_as_float(result.get("risk_score")),
        confidence=_as_float(result.get("confidence")),
        pdf_size_kb=pdf_size_kb,
        api_version=API_VERSION,
    )


def record_usage(ledger: Ledger, client_id: str, usage: UsageRecord) -> int:
    """Append one usage record. Raises LedgerError when the store is unavailable.
    Returns the number of records in the partition."""
    if usage.client_id != client_id:
        raise ValueError(f"usage record belongs to {usage.client_id}, not {client_id}")
    try:
        total = ledger.append(usage)
    except LedgerError as e:
        logger.error("Failed to record usage", extra={"fields": {
            "client_id": client_id,
            "request_id": usage.request_id,
            "error": str(e),
        }})
        raise

    logger.info("Usage recorded for billing", extra={"fields": {
        "client_id": client_id,
        "request_id": usage.request_id,
        "amount": float(usage.billable_amount),
        "status": usage.status.value,
        "month": usage.period,
        "total_records_this_month": total,
    }})
    return total


def record_usage_safely(ledger: Ledger, client_id: str, usage: UsageRecord) -> bool:
    """record_usage for request handlers: a ledger failure is logged, never raised,
    so completed work is still returned to the client."""
    try:
        record_usage(ledger, client_id, usage)
        return True
    except LedgerError:
        logger.warning("Billing record dropped; request served without accounting",
                       extra={"fields": {"client_id": client_id, "request_id": usage.request_id}})
        return False
