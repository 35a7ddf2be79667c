import os
import yaml

ROOT_PATH = os.path.dirname(__file__)
CONFIG_FILE_PATH = os.path.join(ROOT_PATH, "env.yaml")

if os.path.exists(CONFIG_FILE_PATH):
    with open(CONFIG_FILE_PATH, "r") as r_file:
        data = yaml.safe_load(r_file) or dict()
else:
    data = dict()


class ApplicationConfig:
    DB_URI = data.get("DB_URI", "sqlite+aiosqlite:///./billing.db")
    API_PREFIX = data.get("API_PREFIX", "")
    API_PORT = data.get("API_PORT", 8000)
    API_HOST = data.get("API_HOST", "0.0.0.0")
    APP_URL = data.get("APP_URL", "http://localhost:3000")
    CORS_ORIGINS = data.get("CORS_ORIGINS", [])
    CORS_ALLOW_CREDENTIALS = data.get("CORS_ALLOW_CREDENTIALS", True)
    LOG_LEVEL = data.get("LOG_LEVEL", "INFO")
    ENABLE_SENTRY = data.get("ENABLE_SENTRY", 0)
    DSN_SENTRY = data.get("DSN_SENTRY", "")
    SENTRY_ENVIRONMENT = data.get("SENTRY_ENVIRONMENT", "dev")

    # Card processor (DIRECT)
    STRIPE_SECRET_KEY = data.get("STRIPE_SECRET_KEY", "")
    STRIPE_WEBHOOK_SECRET = data.get("STRIPE_WEBHOOK_SECRET", "")
    STRIPE_PRICE_IDS = data.get("STRIPE_PRICE_IDS", {})  # {"ELITE": {"monthly": "price_...", "annual": "price_..."}}

    # Marketplace (MARKETPLACE)
    SHOPIFY_API_SECRET = data.get("SHOPIFY_API_SECRET", "")
    SHOPIFY_API_VERSION = data.get("SHOPIFY_API_VERSION", "2024-01")
    SHOPIFY_BILLING_TEST = bool(data.get("SHOPIFY_BILLING_TEST", True))

    TRIAL_DAYS = data.get("TRIAL_DAYS", 30)
    RECONCILE_MAX_ATTEMPTS = data.get("RECONCILE_MAX_ATTEMPTS", 3)

    # Empty means in-memory rate limiting (single process)
    RATE_LIMIT_REDIS_URL = data.get("RATE_LIMIT_REDIS_URL", "")

    # Periodic subscription re-sync
    SYNC_ENABLED = bool(data.get("SYNC_ENABLED", True))
    SYNC_INTERVAL_SECONDS = data.get("SYNC_INTERVAL_SECONDS", 3600)  # Hourly
    SYNC_BATCH_SIZE = data.get("SYNC_BATCH_SIZE", 500)
