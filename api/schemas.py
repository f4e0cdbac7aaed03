"""Pydantic request/response models for the REST API."""

import re
from typing import Literal, Optional

from pydantic import BaseModel, field_validator

_BASE64_RE = re.compile(r"^[A-Za-z0-9+/=]+$")


# ---------------------------------------------------------------------------
# Analysis
# ---------------------------------------------------------------------------

class RiskAssessmentRequest(BaseModel):
    client_name: str
    client_id: str
    document_type: Literal["renta", "patrimonio"]
    pdf_base64: str

    @field_validator("client_name", "client_id")
    @classmethod
    def _not_blank(cls, value: str) -> str:
        value = value.strip()
        if not value:
            raise ValueError("must not be blank")
        return value

    @field_validator("pdf_base64")
    @classmethod
    def _is_base64(cls, value: str) -> str:
        if not _BASE64_RE.match(value):
            raise ValueError("pdf_base64 must be valid base64 encoded PDF")
        return value

    @property
    def pdf_size_kb(self) -> int:
        return round(len(self.pdf_base64) * 0.75 / 1024)

    @property
    def pdf_size_mb(self) -> float:
        return len(self.pdf_base64) * 0.75 / (1024 * 1024)


REQUIRED_ANALYSIS_FIELDS = list(RiskAssessmentRequest.model_fields)


# ---------------------------------------------------------------------------
# Account
# ---------------------------------------------------------------------------

class ClientInfo(BaseModel):
    client_id: str
    client_name: str
    plan: str
    features: list[str]
    rate_limit: int
    price_per_request: float
    payment_model: str
    created_at: str = ""


class UsageLimits(BaseModel):
    requests_per_hour: int
    requests_per_minute: int


class ValidateKeyResponse(BaseModel):
    valid: bool
    client_info: ClientInfo
    usage_limits: UsageLimits
    response_time: str
    validated_at: str


# ---------------------------------------------------------------------------
# Billing
# ---------------------------------------------------------------------------

class BillingClientInfo(BaseModel):
    client_id: str
    client_name: str
    plan: str
    price_per_request: float


class BillingPeriod(BaseModel):
    days: int
    start_date: str
    end_date: str


class BillingStatsResponse(BaseModel):
    client_info: BillingClientInfo
    usage_stats: dict
    current_period: BillingPeriod


class ErrorResponse(BaseModel):
    error: str
    message: str
    request_id: Optional[str] = None
