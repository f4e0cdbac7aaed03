"""Shared test fixtures."""

import sys
from pathlib import Path

import httpx
import pytest

# Ensure the project root is on the path
project_root = Path(__file__).resolve().parent.parent
if str(project_root) not in sys.path:
    sys.path.insert(0, str(project_root))

from api.rate_limiter import QuotaLimiter  # noqa: E402
from db.ledger import JsonFileLedger  # noqa: E402
from services.analysis_service import AnalysisBackend  # noqa: E402
from services.client_registry import ClientRegistry  # noqa: E402

BACKEND_URL = "http://backend.internal:5678/webhook/secret-webhook-path"

TEST_CLIENTS = {
    "rk_test_sandbox123456": {
        "client_id": "sandbox_testing",
        "display_name": "Sandbox Testing",
        "plan": "sandbox",
        "hourly_quota": 50,
        "price_per_request": "0.00",
        "features": ["basic_analysis"],
        "payment_model": "free",
    },
    "rk_live_premium345678": {
        "client_id": "banco_grande",
        "display_name": "Banco Grande SA",
        "plan": "premium",
        "hourly_quota": 1000,
        "price_per_request": "2.50",
        "features": ["basic_analysis", "advanced_metrics"],
        "payment_model": "invoice",
    },
    "rk_live_suspended0001": {
        "client_id": "suspended_client",
        "display_name": "Suspended Ltd",
        "plan": "basic",
        "hourly_quota": 100,
        "price_per_request": "1.50",
        "active": False,
        "features": ["basic_analysis"],
    },
    "rk_live_expired000001": {
        "client_id": "expired_client",
        "display_name": "Expired Ltd",
        "plan": "basic",
        "hourly_quota": 100,
        "price_per_request": "1.50",
        "features": ["basic_analysis"],
        "expires_at": "2020-01-01T00:00:00Z",
    },
    "rk_live_nofeature0001": {
        "client_id": "no_feature_client",
        "display_name": "Metrics Only",
        "plan": "basic",
        "hourly_quota": 100,
        "price_per_request": "1.50",
        "features": ["email_notifications"],
    },
}

SUCCESS_PAYLOAD = {
    "status": "ok",
    "risk_assessment": "SOLVENTE",
    "risk_score": 72,
    "confidence": 0.91,
}


class FakeClock:
    """Epoch-seconds clock that only moves when told to."""

    def __init__(self, start: float = 1_750_000_000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


def make_backend(handler, timeout: float = 5.0) -> AnalysisBackend:
    return AnalysisBackend(webhook_url=BACKEND_URL, timeout=timeout, transport=httpx.MockTransport(handler))


def ok_handler(request: httpx.Request) -> httpx.Response:
    return httpx.Response(200, json=SUCCESS_PAYLOAD)


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def registry():
    return ClientRegistry.from_config(TEST_CLIENTS)


@pytest.fixture
def limiter(clock):
    return QuotaLimiter(clock=clock)


@pytest.fixture
def ledger(tmp_path):
    return JsonFileLedger(tmp_path / "billing")
