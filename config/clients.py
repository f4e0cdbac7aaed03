"""Built-in client records. Replace with a CLIENTS_FILE in production."""

DEFAULT_CLIENTS = {
    "rk_test_sandbox123456": {
        "client_id": "sandbox_testing",
        "display_name": "Sandbox Testing",
        "plan": "sandbox",
        "hourly_quota": 50,
        "price_per_request": "0.00",
        "active": True,
        "created_at": "2025-01-01",
        "features": ["basic_analysis"],
        "payment_model": "free",
    },
    "rk_live_basic789012": {
        "client_id": "cliente_fintech_startup",
        "display_name": "Fintech Startup SL",
        "plan": "basic",
        "hourly_quota": 100,
        "price_per_request": "1.50",
        "active": True,
        "created_at": "2025-01-15",
        "features": ["basic_analysis", "email_notifications"],
        "payment_model": "invoice",
        "contact_email": "contacto@fintech-startup.example",
    },
    "rk_live_premium345678": {
        "client_id": "cliente_banco_grande",
        "display_name": "Banco Grande SA",
        "plan": "premium",
        "hourly_quota": 1000,
        "price_per_request": "2.50",
        "active": True,
        "created_at": "2025-01-10",
        "features": ["basic_analysis", "advanced_metrics", "priority_support", "custom_webhooks"],
        "payment_model": "invoice",
        "contact_email": "api@banco-grande.example",
    },
    "rk_live_enterprise901234": {
        "client_id": "cliente_corporacion",
        "display_name": "Corporacion Financiera Internacional",
        "plan": "enterprise",
        "hourly_quota": 5000,
        "price_per_request": "2.00",
        "active": True,
        "created_at": "2025-01-05",
        "features": [
            "basic_analysis", "advanced_metrics", "priority_support",
            "custom_webhooks", "white_label", "dedicated_support",
        ],
        "payment_model": "invoice",
        "contact_email": "integraciones@corp-financiera.example",
    },
}
