"""Usage statistics and monthly billing reports computed from the ledger.

Everything here is a pure function of the partition contents: two reports over
an unchanged ledger differ only in ``generated_at``.
"""

import logging
from collections import Counter
from datetime import datetime, timedelta, timezone
from decimal import ROUND_HALF_UP, Decimal
from typing import Iterable, Optional

from config.settings import CURRENCY, RISK_LABELS
from db.ledger import Ledger, period_key
from db.models import UsageRecord, UsageStatus, format_timestamp

logger = logging.getLogger(__name__)

_CENT = Decimal("0.01")


def _amount(value: Decimal) -> float:
    return float(value.quantize(_CENT, rounding=ROUND_HALF_UP))


def _rate(part: int, whole: int) -> str:
    if whole == 0:
        return "0.0%"
    pct = (Decimal(part) * 100 / Decimal(whole)).quantize(Decimal("0.1"), rounding=ROUND_HALF_UP)
    return f"{pct}%"


def _mean(values: Iterable, places: Optional[int] = None):
    """Mean of the non-null values, or None for an empty set."""
    present = [Decimal(str(v)) for v in values if v is not None]
    if not present:
        return None
    mean = sum(present) / len(present)
    if places is None:
        return int(mean.quantize(Decimal("1"), rounding=ROUND_HALF_UP))
    return float(mean.quantize(Decimal(1).scaleb(-places), rounding=ROUND_HALF_UP))


def _total(records: Iterable[UsageRecord]) -> Decimal:
    return sum((r.billable_amount for r in records), Decimal("0"))


def _successes(records: list[UsageRecord]) -> list[UsageRecord]:
    return [r for r in records if r.status == UsageStatus.SUCCESS]


# ---------------------------------------------------------------------------
# Grouping
# ---------------------------------------------------------------------------

def group_by_document_type(records: list[UsageRecord]) -> dict:
    groups: dict[str, list[UsageRecord]] = {}
    for r in records:
        groups.setdefault(r.category or "unknown", []).append(r)
    breakdown = {}
    for category in sorted(groups):
        items = groups[category]
        success_count = len(_successes(items))
        breakdown[category] = {
            "count": len(items),
            "amount": _amount(_total(items)),
            "success_count": success_count,
            "success_rate": _rate(success_count, len(items)),
        }
    return breakdown


def group_by_day(records: list[UsageRecord]) -> list[dict]:
    """Per-day totals, ascending by date."""
    groups: dict[str, list[UsageRecord]] = {}
    for r in records:
        groups.setdefault(r.day, []).append(r)
    days = []
    for day in sorted(groups):
        items = groups[day]
        successful = len(_successes(items))
        days.append({
            "date": day,
            "requests": len(items),
            "amount": _amount(_total(items)),
            "successful_requests": successful,
            "success_rate": _rate(successful, len(items)),
        })
    return days


def risk_distribution(successful: list[UsageRecord]) -> dict:
    distribution = {label: 0 for label in RISK_LABELS}
    for r in successful:
        if r.risk_label in distribution:
            distribution[r.risk_label] += 1
    return distribution


def summarize(records: list[UsageRecord]) -> dict:
    successful = _successes(records)
    return {
        "total_requests": len(records),
        "successful_requests": len(successful),
        "failed_requests": sum(1 for r in records if r.status == UsageStatus.ERROR),
        "timeout_requests": sum(1 for r in records if r.status == UsageStatus.TIMEOUT),
        "success_rate": _rate(len(successful), len(records)),
        "total_amount": _amount(_total(records)),
        "average_processing_time_ms": _mean(r.processing_time_ms for r in records),
    }


# ---------------------------------------------------------------------------
# Public operations
# ---------------------------------------------------------------------------

def generate_monthly_report(ledger: Ledger, client_id: str, year: int, month: int,
                            now: datetime = None) -> Optional[dict]:
    """Billing report for one calendar month, or None when no usage exists for it."""
    period = period_key(year, month)
    records = ledger.read_partition(client_id, period)
    if not records:
        logger.info("No usage data found for period", extra={"fields": {
            "client_id": client_id, "period": period,
        }})
        return None

    successful = _successes(records)
    total = _total(records)
    request_counts = Counter(r.request_id for r in records)

    report = {
        "client_id": client_id,
        "period": period,
        "generated_at": format_timestamp(now or datetime.now(timezone.utc)),
        "summary": summarize(records),
        "breakdown_by_document_type": group_by_document_type(records),
        "daily_usage": group_by_day(records),
        "performance_stats": {
            "avg_risk_score": _mean(r.risk_score for r in successful),
            "risk_distribution": risk_distribution(successful),
            "avg_confidence": _mean((r.confidence for r in successful), places=3),
        },
        "billing_details": {
            "billable_requests": sum(1 for r in records if r.billable_amount > 0),
            "free_requests": sum(1 for r in records if r.billable_amount == 0),
            "total_billable_amount": _amount(total),
            "currency": CURRENCY,
            "duplicate_request_ids": sum(1 for n in request_counts.values() if n > 1),
        },
        "detailed_usage": [
            {
                "timestamp": format_timestamp(r.timestamp),
                "request_id": r.request_id,
                "document_type": r.category,
                "status": r.status.value,
                "billable_amount": float(r.billable_amount),
                "risk_assessment": r.risk_label,
                "risk_score": r.risk_score,
            }
            for r in records
        ],
    }

    logger.info("Monthly report generated", extra={"fields": {
        "client_id": client_id,
        "period": period,
        "total_requests": len(records),
        "total_amount": _amount(total),
    }})
    return report


def _periods_between(start: datetime, end: datetime) -> list[str]:
    periods = []
    year, month = start.year, start.month
    while (year, month) <= (end.year, end.month):
        periods.append(period_key(year, month))
        year, month = (year + 1, 1) if month == 12 else (year, month + 1)
    return periods


def get_usage_stats(ledger: Ledger, client_id: str, lookback_days: int = 30,
                    now: datetime = None) -> dict:
    """Usage over the last ``lookback_days``, spanning as many monthly partitions as needed."""
    end = (now or datetime.now(timezone.utc)).astimezone(timezone.utc)
    start = end - timedelta(days=lookback_days)

    records: list[UsageRecord] = []
    for period in _periods_between(start, end):
        for r in ledger.read_partition(client_id, period) or []:
            if start <= r.timestamp <= end:
                records.append(r)

    successful = len(_successes(records))
    return {
        "client_id": client_id,
        "period_days": lookback_days,
        "period_start": format_timestamp(start),
        "period_end": format_timestamp(end),
        "total_requests": len(records),
        "successful_requests": successful,
        "total_amount": _amount(_total(records)),
        "success_rate": _rate(successful, len(records)),
        "average_processing_time_ms": _mean(r.processing_time_ms for r in records),
        "breakdown_by_document_type": group_by_document_type(records),
        "daily_breakdown": group_by_day(records),
    }
