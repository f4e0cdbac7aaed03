"""Public, unauthenticated service information."""

from fastapi import APIRouter

from config.settings import (
    APP_VERSION, CURRENCY, DOCUMENT_TYPES, MAX_PDF_SIZE_MB, PLANS,
    SALES_EMAIL, SUPPORT_EMAIL,
)

router = APIRouter()


@router.get("/info")
async def info():
    return {
        "service": "Risk Assessment API",
        "version": APP_VERSION,
        "description": "AI-powered financial document risk assessment API",
        "endpoints": {
            "POST /v1/risk-assessment": "Analyze financial documents for credit risk",
            "GET /v1/validate-key": "Validate your API key",
            "GET /v1/plans": "View available pricing plans",
            "GET /v1/billing/stats": "View your usage statistics",
            "GET /v1/billing/report/{year}/{month}": "Monthly billing report",
        },
        "authentication": {
            "type": "API Key",
            "header": "Authorization: Bearer YOUR_API_KEY",
            "alternative": "x-api-key: YOUR_API_KEY",
        },
        "supported_documents": list(DOCUMENT_TYPES),
        "max_file_size": f"{MAX_PDF_SIZE_MB}MB",
        "support": SUPPORT_EMAIL,
    }


@router.get("/plans")
async def plans():
    return {
        "plans": PLANS,
        "currency": CURRENCY,
        "billing_model": "Pay per request + optional monthly minimums",
        "contact": {"sales": SALES_EMAIL, "support": SUPPORT_EMAIL},
    }
