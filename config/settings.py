"""Central configuration for the Risk Assessment gateway. Loads .env and defines constants."""

import os
from pathlib import Path

from dotenv import load_dotenv

load_dotenv()

# ---------------------------------------------------------------------------
# Paths
# ---------------------------------------------------------------------------
BASE_DIR = Path(__file__).resolve().parent.parent
# PERSIST_DIR holds all mutable data (usage ledgers + SQLite file). Mount a
# volume here in production; locally it defaults to <project>/data.
PERSIST_DIR = Path(os.getenv("PERSIST_DIR", str(BASE_DIR / "data")))
BILLING_DIR = PERSIST_DIR / "billing"
DB_PATH = PERSIST_DIR / "risk_gateway.db"

# "json" (one file per client and month) or "sqlite"
LEDGER_BACKEND = os.getenv("LEDGER_BACKEND", "json")

# Optional JSON file with client records; the built-in seed is used when unset.
CLIENTS_FILE = os.getenv("CLIENTS_FILE", "")

# ---------------------------------------------------------------------------
# App
# ---------------------------------------------------------------------------
APP_TITLE = "Risk Assessment API Gateway"
APP_VERSION = "1.0.0"
API_VERSION = "1.0"
ENVIRONMENT = os.getenv("ENVIRONMENT", "development")
LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")
ADMIN_KEY = os.getenv("ADMIN_KEY", "")
ALLOWED_ORIGINS = [o.strip() for o in os.getenv("ALLOWED_ORIGINS", "*").split(",") if o.strip()]
SUPPORT_EMAIL = "support@riskgateway.example"
SALES_EMAIL = "sales@riskgateway.example"

# ---------------------------------------------------------------------------
# Analysis backend (external workflow engine)
# ---------------------------------------------------------------------------
BACKEND_WEBHOOK_URL = os.getenv("BACKEND_WEBHOOK_URL", "http://localhost:5678/webhook/risk-assessment")
BACKEND_TIMEOUT_SECONDS = float(os.getenv("BACKEND_TIMEOUT_SECONDS", "60"))
BACKEND_HEALTH_TIMEOUT_SECONDS = 10.0

# ---------------------------------------------------------------------------
# Request validation
# ---------------------------------------------------------------------------
MAX_PDF_SIZE_MB = int(os.getenv("MAX_PDF_SIZE_MB", "10"))
DOCUMENT_TYPES = ("renta", "patrimonio")

# ---------------------------------------------------------------------------
# API
# ---------------------------------------------------------------------------
API_SERVER_PORT = int(os.getenv("API_SERVER_PORT", "3000"))

# ---------------------------------------------------------------------------
# Rate limiting
# ---------------------------------------------------------------------------
GLOBAL_RATE_LIMIT = int(os.getenv("GLOBAL_RATE_LIMIT", "100"))
GLOBAL_WINDOW_SECONDS = 15 * 60
CLIENT_HOURLY_WINDOW_SECONDS = 60 * 60
CLIENT_MINUTE_WINDOW_SECONDS = 60
UNAUTHENTICATED_HOURLY_LIMIT = int(os.getenv("UNAUTHENTICATED_HOURLY_LIMIT", "10"))
ADMIN_RATE_LIMIT = 30
ADMIN_WINDOW_SECONDS = 60
RATE_LIMIT_STRIPES = 64

# Paths that never count against the per-IP global window.
GLOBAL_RATE_LIMIT_EXEMPT = ("/health", "/v1/info", "/v1/plans", "/v1/validate-key")

# Analysis requests per minute, by plan. Unknown plans get the floor.
PER_MINUTE_LIMITS = {
    "sandbox": 2,
    "basic": 5,
    "premium": 20,
    "enterprise": 50,
}
PER_MINUTE_FLOOR = 1

# ---------------------------------------------------------------------------
# Billing
# ---------------------------------------------------------------------------
CURRENCY = "EUR"
RISK_LABELS = ("SOLVENTE", "RIESGO_MEDIO", "NO_SOLVENTE")

# ---------------------------------------------------------------------------
# Plan definitions
# ---------------------------------------------------------------------------
PLANS = {
    "sandbox": {
        "name": "Sandbox",
        "price_per_request": "0.00",
        "rate_limit": 50,
        "description": "Testing and development, free of charge",
        "features": ["basic_analysis"],
        "sla_response_time": "60s",
        "support_level": "community",
        "monthly_minimum": 0,
    },
    "basic": {
        "name": "Basic",
        "price_per_request": "1.50",
        "rate_limit": 100,
        "description": "Small companies and startups",
        "features": ["basic_analysis", "email_notifications"],
        "sla_response_time": "30s",
        "support_level": "email",
        "monthly_minimum": 0,
    },
    "premium": {
        "name": "Premium",
        "price_per_request": "2.50",
        "rate_limit": 1000,
        "description": "Mid-sized companies with high volume",
        "features": ["basic_analysis", "advanced_metrics", "priority_support", "custom_webhooks"],
        "sla_response_time": "15s",
        "support_level": "priority_email",
        "monthly_minimum": 100,
    },
    "enterprise": {
        "name": "Enterprise",
        "price_per_request": "2.00",
        "rate_limit": 5000,
        "description": "Large corporations",
        "features": [
            "basic_analysis", "advanced_metrics", "priority_support",
            "custom_webhooks", "white_label", "dedicated_support",
        ],
        "sla_response_time": "10s",
        "support_level": "dedicated_manager",
        "monthly_minimum": 500,
        "custom_contract": True,
    },
}

# Shown to clients that hit a quota on their current plan.
UPGRADE_HINTS = {
    "sandbox": "Upgrade to Basic for production limits (100 req/hour)",
    "basic": "Upgrade to Premium for higher limits (1000 req/hour)",
    "premium": "Upgrade to Enterprise for highest limits (5000 req/hour)",
    "enterprise": None,
}
