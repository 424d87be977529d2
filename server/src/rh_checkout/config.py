"""Configuration loader for the Rich Habits checkout service"""

import os
from pathlib import Path

from dotenv import load_dotenv

server_dir = Path(__file__).parent.parent.parent
env_path = server_dir / ".env"

# Load .env file if it exists. For local development only.
if env_path.exists():
    load_dotenv(env_path)

# Configuration dictionary - set once at initialization
config = {
    "database_url": os.getenv("DATABASE_URL"),
    "redis_url": os.getenv("REDIS_URL", "redis://localhost:6379/0"),
    "port": int(os.getenv("PORT", "8080")),
    "log_level": os.getenv("LOG_LEVEL", "INFO"),
    "app_base_url": os.getenv("APP_BASE_URL"),
    "environment": os.getenv("ENVIRONMENT", "development"),
    "stripe_secret_key": os.getenv("STRIPE_SECRET_KEY"),
    "stripe_webhook_secret": os.getenv("STRIPE_WEBHOOK_SECRET"),
    "stripe_currency": os.getenv("STRIPE_CURRENCY", "usd"),
    # "memory" for a single instance, "redis" when several instances share checkout state
    "session_store_backend": os.getenv("SESSION_STORE_BACKEND", "memory"),
    "session_ttl_seconds": int(os.getenv("SESSION_TTL_SECONDS", "900")),
    "session_bucket_seconds": int(os.getenv("SESSION_BUCKET_SECONDS", "300")),
    "max_payment_attempts": int(os.getenv("MAX_PAYMENT_ATTEMPTS", "3")),
    "session_lock_wait_seconds": float(os.getenv("SESSION_LOCK_WAIT_SECONDS", "10")),
    "shopify_store_domain": os.getenv("SHOPIFY_STORE_DOMAIN"),
    "shopify_access_token": os.getenv("SHOPIFY_ACCESS_TOKEN"),
    "shopify_api_version": os.getenv("SHOPIFY_API_VERSION", "2023-10"),
    "mailgun_api_key": os.getenv("MAILGUN_API_KEY"),
    "mailgun_domain": os.getenv("MAILGUN_DOMAIN"),
    "sender_email": os.getenv("SENDER_EMAIL"),
}
