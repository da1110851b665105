# app/config.py
"""
Centralized configuration management with startup validation.

Every setting is OPTIONAL with a safe default; invalid values fall back
to the default with a [CONFIG] warning. Settings that make the service
unusable (unknown provider names, http backend without a URL) raise
ConfigurationError when fail_fast is set.
"""
import logging
import os
import re
from dataclasses import dataclass, field
from datetime import timedelta
from typing import Optional

from pricing.lock import LockPolicy

logger = logging.getLogger(__name__)

# =============================================================================
# Constants
# =============================================================================

SERVICE_NAME = "essay-checkout"
SERVICE_VERSION = "0.1.0"

DEFAULT_MAX_REQUEST_SIZE_BYTES = 1_048_576  # 1MB
MIN_REQUEST_SIZE_BYTES = 1024  # 1KB minimum

DEFAULT_PRICE_LOCK_TTL_SECONDS = 900
DEFAULT_AUTOPILOT_MAX_RETRIES = 3
DEFAULT_AUTOPILOT_RETRY_DELAY_MS = 1000

PAYMENT_PROVIDERS = ("mock", "stripe")
GENERATION_BACKENDS = ("mock", "http")

# Sensitive substrings that should never appear in logs
SENSITIVE_SUBSTRINGS = ("key", "token", "secret", "password", "credential", "auth")


# =============================================================================
# Configuration Errors
# =============================================================================


class ConfigurationError(Exception):
    """Raised when required configuration is missing or invalid."""

    pass


# =============================================================================
# Configuration Dataclass
# =============================================================================


@dataclass
class AppConfig:
    """Application configuration loaded from environment."""

    # Service info
    service_name: str = SERVICE_NAME
    service_version: str = SERVICE_VERSION
    environment: str = "development"

    # Security settings
    max_request_size_bytes: int = DEFAULT_MAX_REQUEST_SIZE_BYTES

    # Pricing
    price_lock_ttl_seconds: int = DEFAULT_PRICE_LOCK_TTL_SECONDS
    price_lock_policy: LockPolicy = LockPolicy.LOWER

    # Autopilot
    autopilot_max_retries: int = DEFAULT_AUTOPILOT_MAX_RETRIES
    autopilot_retry_delay_ms: int = DEFAULT_AUTOPILOT_RETRY_DELAY_MS

    # Domain event tracking ([TRACK] log lines)
    track_events: bool = True

    # Integrations
    payment_provider: str = "mock"
    generation_backend: str = "mock"
    generation_backend_url: Optional[str] = None

    # API keys (presence only, never the value)
    stripe_key_present: bool = False
    generation_api_key_present: bool = False

    # Warnings collected during config load
    warnings: list = field(default_factory=list)

    @property
    def lock_ttl(self) -> timedelta:
        return timedelta(seconds=self.price_lock_ttl_seconds)

    @property
    def retry_delay_seconds(self) -> float:
        return self.autopilot_retry_delay_ms / 1000


# =============================================================================
# Configuration Loading
# =============================================================================


def _parse_int_env(
    name: str, default: int, min_value: Optional[int] = None
) -> tuple[int, Optional[str]]:
    """
    Parse an integer environment variable with validation.

    Returns (value, warning_message).
    On invalid input, returns default with a warning.
    """
    raw = os.environ.get(name)
    if raw is None:
        return default, None

    try:
        value = int(raw)
    except ValueError:
        warning = f"{name}='{raw}' is not a valid integer; using default {default}"
        return default, warning

    if min_value is not None and value < min_value:
        warning = f"{name}={value} is below minimum {min_value}; using default {default}"
        return default, warning

    return value, None


def _parse_bool_env(name: str, default: bool = False) -> bool:
    """Parse a boolean environment variable."""
    raw = os.environ.get(name, "").lower()
    if raw in ("true", "1", "yes", "on"):
        return True
    if raw in ("false", "0", "no", "off"):
        return False
    return default


def _parse_choice_env(name: str, choices: tuple, default: str) -> tuple[str, Optional[str]]:
    """Parse a lowercase choice. Unknown values are reported, not defaulted."""
    raw = os.environ.get(name)
    if raw is None or raw.strip() == "":
        return default, None
    value = raw.strip().lower()
    if value not in choices:
        return value, f"{name}='{raw}' is not one of {list(choices)}"
    return value, None


def load_config(fail_fast: bool = True) -> AppConfig:
    """
    Load and validate application configuration from environment.

    Args:
        fail_fast: If True, raise ConfigurationError on critical issues.
                   If False, collect warnings and fall back to mocks.

    Raises:
        ConfigurationError: If integration settings are unusable
                           and fail_fast is True.
    """
    warnings = []
    errors = []

    environment = os.environ.get("RAILWAY_ENVIRONMENT", "development")

    max_request_size, size_warning = _parse_int_env(
        "MAX_REQUEST_SIZE_BYTES",
        DEFAULT_MAX_REQUEST_SIZE_BYTES,
        min_value=MIN_REQUEST_SIZE_BYTES,
    )
    if size_warning:
        warnings.append(size_warning)

    # Pricing
    ttl_seconds, ttl_warning = _parse_int_env(
        "PRICE_LOCK_TTL_SECONDS", DEFAULT_PRICE_LOCK_TTL_SECONDS, min_value=1
    )
    if ttl_warning:
        warnings.append(ttl_warning)

    policy_name, policy_warning = _parse_choice_env(
        "PRICE_LOCK_POLICY", tuple(p.value for p in LockPolicy), LockPolicy.LOWER.value
    )
    if policy_warning:
        warnings.append(f"{policy_warning}; using default {LockPolicy.LOWER.value}")
        policy_name = LockPolicy.LOWER.value

    # Autopilot
    max_retries, retries_warning = _parse_int_env(
        "AUTOPILOT_MAX_RETRIES", DEFAULT_AUTOPILOT_MAX_RETRIES, min_value=0
    )
    if retries_warning:
        warnings.append(retries_warning)

    retry_delay_ms, delay_warning = _parse_int_env(
        "AUTOPILOT_RETRY_DELAY_MS", DEFAULT_AUTOPILOT_RETRY_DELAY_MS, min_value=0
    )
    if delay_warning:
        warnings.append(delay_warning)

    track_events = _parse_bool_env("TRACK_EVENTS", default=True)

    # Integrations
    payment_provider, payment_error = _parse_choice_env("PAYMENT_PROVIDER", PAYMENT_PROVIDERS, "mock")
    if payment_error:
        errors.append(payment_error)
        payment_provider = "mock"

    generation_backend, backend_error = _parse_choice_env(
        "GENERATION_BACKEND", GENERATION_BACKENDS, "mock"
    )
    if backend_error:
        errors.append(backend_error)
        generation_backend = "mock"

    generation_backend_url = os.environ.get("GENERATION_BACKEND_URL") or None
    if generation_backend == "http" and not generation_backend_url:
        errors.append("GENERATION_BACKEND=http requires GENERATION_BACKEND_URL")
        generation_backend = "mock"

    stripe_key = os.environ.get("STRIPE_SECRET_KEY")
    stripe_key_present = bool(stripe_key and len(stripe_key) > 0)
    if payment_provider == "stripe" and not stripe_key_present:
        warnings.append(
            "PAYMENT_PROVIDER is stripe but STRIPE_SECRET_KEY is not set; "
            "payments will fail at runtime"
        )

    generation_key = os.environ.get("GENERATION_API_KEY")
    generation_api_key_present = bool(generation_key)

    if errors and fail_fast:
        raise ConfigurationError("; ".join(errors))
    for error in errors:
        warnings.append(f"{error}; falling back to mock")

    for warning in warnings:
        logger.warning(f"[CONFIG] {warning}")

    return AppConfig(
        environment=environment,
        max_request_size_bytes=max_request_size,
        price_lock_ttl_seconds=ttl_seconds,
        price_lock_policy=LockPolicy(policy_name),
        autopilot_max_retries=max_retries,
        autopilot_retry_delay_ms=retry_delay_ms,
        track_events=track_events,
        payment_provider=payment_provider,
        generation_backend=generation_backend,
        generation_backend_url=generation_backend_url,
        stripe_key_present=stripe_key_present,
        generation_api_key_present=generation_api_key_present,
        warnings=warnings,
    )


def log_config_snapshot(config: AppConfig) -> str:
    """
    Generate and log a safe configuration snapshot.

    Returns the snapshot string for testing purposes.
    Never logs actual secret values - only boolean presence flags.
    """
    snapshot = (
        f"[STARTUP] service={config.service_name} "
        f"version={config.service_version} "
        f"environment={config.environment} "
        f"max_request_size_bytes={config.max_request_size_bytes} "
        f"price_lock_ttl_seconds={config.price_lock_ttl_seconds} "
        f"price_lock_policy={config.price_lock_policy.value} "
        f"autopilot_max_retries={config.autopilot_max_retries} "
        f"autopilot_retry_delay_ms={config.autopilot_retry_delay_ms} "
        f"track_events={config.track_events} "
        f"payment_provider={config.payment_provider} "
        f"generation_backend={config.generation_backend} "
        f"stripe_key_present={config.stripe_key_present} "
        f"generation_api_key_present={config.generation_api_key_present}"
    )
    logger.info(snapshot)
    return snapshot


def validate_config_snapshot_safety(snapshot: str) -> bool:
    """
    Validate that a config snapshot doesn't contain sensitive values.

    Returns True if safe, False if potentially unsafe.
    """
    snapshot_lower = snapshot.lower()

    # "key_present=" is allowed; "key=" followed by a non-boolean value is not
    for sensitive in SENSITIVE_SUBSTRINGS:
        pattern = rf"{sensitive}=(?!true|false)"
        if re.search(pattern, snapshot_lower):
            return False

    return True
