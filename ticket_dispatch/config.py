"""Configuration for the dispatch worker, API and Zammad backend client."""

import os

REDIS_URL: str = os.environ.get("REDIS_URL", "redis://localhost:6379/0")
REDIS_CONN_TIMEOUT: int = int(os.environ.get("REDIS_CONN_TIMEOUT", "5"))
LOG_LEVEL: str = os.environ.get("LOG_LEVEL", "INFO")

# --- Zammad ticketing backend ---
ZAMMAD_URL: str = os.environ.get("ZAMMAD_URL", "").rstrip("/")
ZAMMAD_API_TOKEN: str = os.environ.get("ZAMMAD_API_TOKEN", "")
ZAMMAD_TIMEOUT_SECONDS: float = float(os.environ.get("ZAMMAD_TIMEOUT_SECONDS", "5"))
ZAMMAD_MAX_RETRIES: int = int(os.environ.get("ZAMMAD_MAX_RETRIES", "1"))
ZAMMAD_TICKET_PAGE_SIZE: int = int(os.environ.get("ZAMMAD_TICKET_PAGE_SIZE", "100"))
ZAMMAD_MAX_TICKET_PAGES: int = int(os.environ.get("ZAMMAD_MAX_TICKET_PAGES", "10"))
# Optional: HMAC-SHA256 secret for signed Zammad trigger webhooks (X-Zammad-Signature).
ZAMMAD_WEBHOOK_SECRET: str = os.environ.get("ZAMMAD_WEBHOOK_SECRET", "")

# --- Auto-assignment ---
# System/dispatcher mailboxes that must never receive ticket assignments (comma-separated).
DISPATCH_EXCLUDED_EMAILS: frozenset[str] = frozenset(
    e.strip().lower()
    for e in os.environ.get(
        "DISPATCH_EXCLUDED_EMAILS", "support@howentech.com,howensupport@howentech.com"
    ).split(",")
    if e.strip()
)
# Shared secret for the scheduler hitting POST /tickets/auto-assign without an admin session.
CRON_SECRET: str = os.environ.get("CRON_SECRET", "")
# Zammad's system user; a ticket owned by it has no real owner.
ZAMMAD_SYSTEM_USER_ID: int = int(os.environ.get("ZAMMAD_SYSTEM_USER_ID", "1"))
AUTO_ASSIGN_SWEEP_ENABLED: bool = os.environ.get("AUTO_ASSIGN_SWEEP_ENABLED", "true").lower() in ("1", "true", "yes")

# --- Notifications ---
# Optional: delivery endpoint for in-app notifications; if unset, notifications are only logged.
WEBHOOK_URL: str = os.environ.get("WEBHOOK_URL", "")

# --- Staff availability listing ---
STAFF_CACHE_TTL_SECONDS: int = int(os.environ.get("STAFF_CACHE_TTL_SECONDS", "30"))
