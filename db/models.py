"""Data models for clients and usage records as typed dataclasses."""

import dataclasses
import enum
from dataclasses import dataclass, field
from datetime import date, datetime, timezone
from decimal import Decimal
from typing import Optional


class Plan(str, enum.Enum):
    SANDBOX = "sandbox"
    BASIC = "basic"
    PREMIUM = "premium"
    ENTERPRISE = "enterprise"


class PaymentModel(str, enum.Enum):
    FREE = "free"
    INVOICE = "invoice"
    CREDITS = "credits"
    SUBSCRIPTION = "subscription"


class UsageStatus(str, enum.Enum):
    SUCCESS = "success"
    ERROR = "error"
    TIMEOUT = "timeout"


def _parse_datetime(value) -> Optional[datetime]:
    """Accept datetimes, dates and ISO strings (with or without 'Z'); return aware UTC."""
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        dt = value
    elif isinstance(value, date):
        dt = datetime(value.year, value.month, value.day)
    else:
        dt = datetime.fromisoformat(str(value).replace("Z", "+00:00"))
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc)


def format_timestamp(dt: datetime) -> str:
    return dt.astimezone(timezone.utc).isoformat(timespec="milliseconds").replace("+00:00", "Z")


@dataclass(frozen=True)
class ClientRecord:
    api_key: str
    client_id: str
    display_name: str
    plan: Plan
    hourly_quota: int
    price_per_request: Decimal
    active: bool = True
    features: frozenset = field(default_factory=frozenset)
    payment_model: PaymentModel = PaymentModel.INVOICE
    expires_at: Optional[datetime] = None
    created_at: str = ""
    contact_email: Optional[str] = None

    def __post_init__(self):
        if self.hourly_quota <= 0:
            raise ValueError(f"hourly_quota must be positive for {self.client_id}")
        if self.price_per_request < 0:
            raise ValueError(f"price_per_request must not be negative for {self.client_id}")

    @classmethod
    def from_dict(cls, api_key: str, data: dict) -> "ClientRecord":
        """Build a record from a config mapping (see config/clients.py)."""
        return cls(
            api_key=api_key,
            client_id=data["client_id"],
            display_name=data.get("display_name") or data.get("client_name", ""),
            plan=Plan(data["plan"]),
            hourly_quota=int(data["hourly_quota"] if "hourly_quota" in data else data["rate_limit"]),
            price_per_request=Decimal(str(data.get("price_per_request", "0"))),
            active=bool(data.get("active", True)),
            features=frozenset(data.get("features", ())),
            payment_model=PaymentModel(data.get("payment_model", "invoice")),
            expires_at=_parse_datetime(data.get("expires_at")),
            created_at=data.get("created_at", ""),
            contact_email=data.get("contact_email"),
        )

    def is_expired(self, now: datetime = None) -> bool:
        if self.expires_at is None:
            return False
        return self.expires_at < (now or datetime.now(timezone.utc))

    def public_info(self) -> dict:
        """Client info safe to return to the key owner (never includes the key)."""
        return {
            "client_id": self.client_id,
            "client_name": self.display_name,
            "plan": self.plan.value,
            "features": sorted(self.features),
            "rate_limit": self.hourly_quota,
            "price_per_request": float(self.price_per_request),
            "payment_model": self.payment_model.value,
            "created_at": self.created_at,
        }


@dataclass(frozen=True)
class UsageRecord:
    timestamp: datetime
    client_id: str
    request_id: str
    category: Optional[str]
    processing_time_ms: int
    billable_amount: Decimal
    status: UsageStatus
    risk_label: Optional[str] = None
    risk_score: Optional[float] = None
    confidence: Optional[float] = None
    pdf_size_kb: Optional[int] = None
    api_version: str = "1.0"

    def __post_init__(self):
        if self.billable_amount < 0:
            raise ValueError("billable_amount must not be negative")
        if self.billable_amount > 0 and self.status != UsageStatus.SUCCESS:
            raise ValueError("only successful requests can carry a billable amount")

    @property
    def period(self) -> str:
        """Ledger partition key, YYYY-MM in UTC."""
        return self.timestamp.astimezone(timezone.utc).strftime("%Y-%m")

    @property
    def day(self) -> str:
        return self.timestamp.astimezone(timezone.utc).strftime("%Y-%m-%d")

    def to_dict(self) -> dict:
        return {
            "timestamp": format_timestamp(self.timestamp),
            "client_id": self.client_id,
            "request_id": self.request_id,
            "category": self.category,
            "processing_time_ms": self.processing_time_ms,
            "billable_amount": str(self.billable_amount),
            "status": self.status.value,
            "api_version": self.api_version,
            "risk_label": self.risk_label,
            "risk_score": self.risk_score,
            "confidence": self.confidence,
            "pdf_size_kb": self.pdf_size_kb,
        }

    @classmethod
    def from_dict(cls, data: dict) -> "UsageRecord":
        return cls(
            timestamp=_parse_datetime(data["timestamp"]),
            client_id=data["client_id"],
            request_id=data["request_id"],
            category=data.get("category"),
            processing_time_ms=int(data.get("processing_time_ms") or 0),
            billable_amount=Decimal(str(data.get("billable_amount") or 0)),
            status=UsageStatus(data["status"]),
            risk_label=data.get("risk_label"),
            risk_score=data.get("risk_score"),
            confidence=data.get("confidence"),
            pdf_size_kb=data.get("pdf_size_kb"),
            api_version=data.get("api_version") or "1.0",
        )


# ---------------------------------------------------------------------------
# Helper to convert sqlite3.Row to a model dataclass
# ---------------------------------------------------------------------------

def row_to_usage_record(row) -> Optional[UsageRecord]:
    """Convert a sqlite3.Row to a UsageRecord, ignoring storage-only columns."""
    if row is None:
        return None
    d = dict(row)
    field_names = {f.name for f in dataclasses.fields(UsageRecord)}
    filtered = {k: v for k, v in d.items() if k in field_names}
    return UsageRecord.from_dict(filtered)


def rows_to_usage_records(rows) -> list[UsageRecord]:
    return [row_to_usage_record(r) for r in rows]
