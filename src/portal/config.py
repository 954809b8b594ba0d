"""
Portal configuration.

All settings come from environment variables so the same build can point at
any deployment of the authorization API.
"""

import os

from ..shared.security import TokenGenerator


def _env_bool(name: str, default: bool) -> bool:
    value = os.getenv(name)
    if value is None:
        return default
    return value.strip().lower() in ("1", "true", "yes", "on")


def load_config() -> dict:
    """
    Build the portal configuration from the environment.

    Returns:
        dict: Configuration values keyed by name
    """
    return {
        "api_url": os.getenv("PORTAL_API_URL", "http://localhost:8000").rstrip("/"),
        "api_prefix": os.getenv("PORTAL_API_PREFIX", "/api/v1"),
        "api_timeout": float(os.getenv("PORTAL_API_TIMEOUT", "5.0")),
        "session_secret": os.getenv("SESSION_SECRET", TokenGenerator.generate_session_secret()),
        "session_cookie_name": "portal_session",
        "token_cookie_name": "accessToken",
        "token_cookie_max_age": 60 * 60 * 24 * 30,
        "cookie_secure": _env_bool("PORTAL_COOKIE_SECURE", False),
        "log_requests": _env_bool("PORTAL_LOG_REQUESTS", True),
        "host": os.getenv("PORTAL_HOST", "0.0.0.0"),
        "port": int(os.getenv("PORTAL_PORT", "3000")),
        "otp_ttl_seconds": 600,
        "default_scope": "openid profile email",
        "log_page_size": 20,
        "users_page_size": 10,
        "billing_limit": 50,
    }


PORTAL_CONFIG = load_config()


def api_base_url(config: dict = PORTAL_CONFIG) -> str:
    """Backend URL including the versioned prefix."""
    return f"{config['api_url']}{config['api_prefix']}"
