# app/config.py
"""
Centralized configuration management with startup validation.

Defines REQUIRED vs OPTIONAL environment variables and provides
safe configuration loading with validation and logging.

Required:
- STRIPE_SECRET_KEY: Stripe API secret key
- STRIPE_ENDPOINT_SECRET: Webhook signing secret
- STRIPE_PLAN_ID: The single subscription price/plan ID

Optional:
- URL_APP / URL_API: Public URLs of the web app and of this API
- BILLING_DEACTIVATE_ON_PAYMENT_FAILURE: Reconcile teams on failed invoices
"""
import logging
import os
import re
from dataclasses import dataclass, field
from typing import Optional

logger = logging.getLogger(__name__)

# =============================================================================
# Constants
# =============================================================================

SERVICE_NAME = "team-billing-gateway"
SERVICE_VERSION = "0.1.0"

# Pinned Stripe API version
STRIPE_API_VERSION = "2020-03-02"

DEFAULT_URL_APP = "http://localhost:3000"
DEFAULT_URL_API = "http://localhost:8000"

REQUIRED_ENV_VARS = ("STRIPE_SECRET_KEY", "STRIPE_ENDPOINT_SECRET", "STRIPE_PLAN_ID")

# Sensitive substrings that should never appear in logs
SENSITIVE_SUBSTRINGS = ("key", "token", "secret", "password", "credential", "auth")


# =============================================================================
# Configuration Errors
# =============================================================================


class ConfigurationError(Exception):
    """Raised when required configuration is missing or invalid."""

    pass


# =============================================================================
# Configuration Dataclasses
# =============================================================================


@dataclass(frozen=True)
class BillingConfig:
    """Stripe settings, read-only for the process lifetime."""

    stripe_secret_key: str = field(default="", repr=False)
    stripe_endpoint_secret: str = field(default="", repr=False)
    stripe_plan_id: str = ""
    stripe_api_version: str = STRIPE_API_VERSION
    url_app: str = DEFAULT_URL_APP
    url_api: str = DEFAULT_URL_API
    deactivate_on_payment_failure: bool = False


@dataclass
class AppConfig:
    """Application configuration loaded from environment."""

    # Service info
    service_name: str = SERVICE_NAME
    service_version: str = SERVICE_VERSION
    environment: str = "development"

    billing: BillingConfig = field(default_factory=BillingConfig)

    # Warnings collected during config load
    warnings: list = field(default_factory=list)


# =============================================================================
# Configuration Loading
# =============================================================================


def _parse_bool_env(name: str, default: bool = False) -> bool:
    """Parse a boolean environment variable."""
    raw = os.environ.get(name, "").lower()
    if raw in ("true", "1", "yes", "on"):
        return True
    if raw in ("false", "0", "no", "off", ""):
        return default
    return default


def _parse_url_env(name: str, default: str) -> tuple[str, Optional[str]]:
    """
    Parse a base URL environment variable.

    Returns (value, warning_message). Trailing slashes are stripped so
    paths can be appended directly.
    """
    raw = os.environ.get(name)
    if raw is None or not raw.strip():
        return default, None

    value = raw.strip().rstrip("/")
    if not value.startswith(("http://", "https://")):
        warning = f"{name}='{raw}' is not an http(s) URL; using default {default}"
        return default, warning

    return value, None


def load_config(fail_fast: bool = True) -> AppConfig:
    """
    Load and validate application configuration from environment.

    Args:
        fail_fast: If True, raise ConfigurationError on critical issues.
                   If False, collect warnings and continue.

    Returns:
        AppConfig instance with validated configuration.

    Raises:
        ConfigurationError: If required configuration is missing/invalid
                           and fail_fast is True.
    """
    warnings = []

    environment = os.environ.get("APP_ENVIRONMENT", "development")

    missing = [name for name in REQUIRED_ENV_VARS if not os.environ.get(name, "").strip()]
    if missing:
        message = f"Missing required environment variables: {', '.join(missing)}"
        if fail_fast:
            raise ConfigurationError(message)
        warnings.append(message)

    url_app, url_app_warning = _parse_url_env("URL_APP", DEFAULT_URL_APP)
    if url_app_warning:
        warnings.append(url_app_warning)

    url_api, url_api_warning = _parse_url_env("URL_API", DEFAULT_URL_API)
    if url_api_warning:
        warnings.append(url_api_warning)

    billing = BillingConfig(
        stripe_secret_key=os.environ.get("STRIPE_SECRET_KEY", "").strip(),
        stripe_endpoint_secret=os.environ.get("STRIPE_ENDPOINT_SECRET", "").strip(),
        stripe_plan_id=os.environ.get("STRIPE_PLAN_ID", "").strip(),
        url_app=url_app,
        url_api=url_api,
        deactivate_on_payment_failure=_parse_bool_env(
            "BILLING_DEACTIVATE_ON_PAYMENT_FAILURE", False
        ),
    )

    # Log warnings
    for warning in warnings:
        logger.warning(f"[CONFIG] {warning}")

    return AppConfig(
        environment=environment,
        billing=billing,
        warnings=warnings,
    )


def log_config_snapshot(config: AppConfig) -> str:
    """
    Generate and log a safe configuration snapshot.

    Returns the snapshot string for testing purposes.
    Never logs actual secret values - only boolean presence flags.
    """
    billing = config.billing
    snapshot = (
        f"[STARTUP] service={config.service_name} "
        f"version={config.service_version} "
        f"environment={config.environment} "
        f"url_app={billing.url_app} "
        f"url_api={billing.url_api} "
        f"stripe_api_version={billing.stripe_api_version} "
        f"stripe_plan_id_present={bool(billing.stripe_plan_id)} "
        f"stripe_secret_key_present={bool(billing.stripe_secret_key)} "
        f"stripe_endpoint_secret_present={bool(billing.stripe_endpoint_secret)} "
        f"deactivate_on_payment_failure={billing.deactivate_on_payment_failure}"
    )
    logger.info(snapshot)
    return snapshot


def validate_config_snapshot_safety(snapshot: str) -> bool:
    """
    Validate that a config snapshot doesn't contain sensitive values.

    Returns True if safe, False if potentially unsafe.
    """
    snapshot_lower = snapshot.lower()

    # We allow "key_present=" but not "key=" followed by a non-boolean value
    for sensitive in SENSITIVE_SUBSTRINGS:
        pattern = rf"{sensitive}=(?!true|false)"
        if re.search(pattern, snapshot_lower):
            return False

    return True
