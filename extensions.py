from datetime import datetime, timezone

from flask import request
from flask_limiter import Limiter
from flask_sqlalchemy import SQLAlchemy

# Shared extension instances. Blueprints import them from here (not from app.py)
# to avoid circular imports; app.py binds them with init_app().
db = SQLAlchemy()


def utcnow() -> datetime:
    # Naive UTC, matching the DateTime columns.
    return datetime.now(timezone.utc).replace(tzinfo=None)


def get_client_ip() -> str:
    """Return the best-effort client IP.

    After ProxyFix, request.access_route[0] should be the real client IP.
    Falls back to request.remote_addr for local development.
    """
    try:
        if request.access_route:
            return request.access_route[0]
    except Exception:
        pass
    return request.remote_addr or "0.0.0.0"


# Storage and enablement come from app.config (RATELIMIT_STORAGE_URI / RATELIMIT_ENABLED).
limiter = Limiter(key_func=get_client_ip, default_limits=["200 per day", "50 per hour"])
