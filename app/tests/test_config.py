# app/tests/test_config.py
"""Tests for configuration management and startup validation."""
import os
from datetime import timedelta
from unittest.mock import patch

import pytest

from app.config import (
    DEFAULT_AUTOPILOT_MAX_RETRIES,
    DEFAULT_MAX_REQUEST_SIZE_BYTES,
    DEFAULT_PRICE_LOCK_TTL_SECONDS,
    AppConfig,
    ConfigurationError,
    load_config,
    log_config_snapshot,
    validate_config_snapshot_safety,
)
from pricing.lock import LockPolicy


class TestLoadConfig:
    """Tests for load_config function."""

    def test_default_values(self):
        """Config loads with sensible defaults when no env vars set."""
        with patch.dict(os.environ, {}, clear=True):
            config = load_config()

        assert config.service_name == "essay-checkout"
        assert config.environment == "development"
        assert config.max_request_size_bytes == DEFAULT_MAX_REQUEST_SIZE_BYTES
        assert config.price_lock_ttl_seconds == DEFAULT_PRICE_LOCK_TTL_SECONDS
        assert config.lock_ttl == timedelta(minutes=15)
        assert config.price_lock_policy is LockPolicy.LOWER
        assert config.autopilot_max_retries == DEFAULT_AUTOPILOT_MAX_RETRIES
        assert config.retry_delay_seconds == 1.0
        assert config.payment_provider == "mock"
        assert config.generation_backend == "mock"
        assert config.stripe_key_present is False
        assert config.warnings == []

    def test_environment_from_railway(self):
        with patch.dict(os.environ, {"RAILWAY_ENVIRONMENT": "production"}, clear=True):
            config = load_config()

        assert config.environment == "production"

    def test_pricing_and_autopilot_overrides(self):
        with patch.dict(
            os.environ,
            {
                "PRICE_LOCK_TTL_SECONDS": "600",
                "PRICE_LOCK_POLICY": "Midpoint",
                "AUTOPILOT_MAX_RETRIES": "5",
                "AUTOPILOT_RETRY_DELAY_MS": "250",
            },
            clear=True,
        ):
            config = load_config()

        assert config.lock_ttl == timedelta(minutes=10)
        assert config.price_lock_policy is LockPolicy.MIDPOINT
        assert config.autopilot_max_retries == 5
        assert config.retry_delay_seconds == 0.25

    def test_track_events_can_be_disabled(self):
        with patch.dict(os.environ, {"TRACK_EVENTS": "false"}, clear=True):
            config = load_config()

        assert config.track_events is False

    def test_track_events_unknown_value_keeps_default(self):
        with patch.dict(os.environ, {"TRACK_EVENTS": "maybe"}, clear=True):
            config = load_config()

        assert config.track_events is True


class TestValidation:
    """Tests for invalid values."""

    def test_invalid_ttl_uses_default_with_warning(self):
        with patch.dict(os.environ, {"PRICE_LOCK_TTL_SECONDS": "soon"}, clear=True):
            config = load_config()

        assert config.price_lock_ttl_seconds == DEFAULT_PRICE_LOCK_TTL_SECONDS
        assert any("not a valid integer" in w for w in config.warnings)

    def test_zero_ttl_uses_default_with_warning(self):
        with patch.dict(os.environ, {"PRICE_LOCK_TTL_SECONDS": "0"}, clear=True):
            config = load_config()

        assert config.price_lock_ttl_seconds == DEFAULT_PRICE_LOCK_TTL_SECONDS
        assert any("below minimum" in w for w in config.warnings)

    def test_unknown_policy_uses_lower_with_warning(self):
        with patch.dict(os.environ, {"PRICE_LOCK_POLICY": "haggle"}, clear=True):
            config = load_config()

        assert config.price_lock_policy is LockPolicy.LOWER
        assert any("PRICE_LOCK_POLICY" in w for w in config.warnings)

    def test_request_size_below_minimum(self):
        with patch.dict(os.environ, {"MAX_REQUEST_SIZE_BYTES": "100"}, clear=True):
            config = load_config()

        assert config.max_request_size_bytes == DEFAULT_MAX_REQUEST_SIZE_BYTES

    def test_unknown_provider_fails_fast(self):
        with patch.dict(os.environ, {"PAYMENT_PROVIDER": "paypal"}, clear=True):
            with pytest.raises(ConfigurationError):
                load_config()

    def test_unknown_provider_falls_back_without_fail_fast(self):
        with patch.dict(os.environ, {"PAYMENT_PROVIDER": "paypal"}, clear=True):
            config = load_config(fail_fast=False)

        assert config.payment_provider == "mock"
        assert any("falling back to mock" in w for w in config.warnings)

    def test_http_backend_requires_url(self):
        with patch.dict(os.environ, {"GENERATION_BACKEND": "http"}, clear=True):
            with pytest.raises(ConfigurationError) as exc_info:
                load_config()
        assert "GENERATION_BACKEND_URL" in str(exc_info.value)

    def test_http_backend_with_url(self):
        with patch.dict(
            os.environ,
            {"GENERATION_BACKEND": "http", "GENERATION_BACKEND_URL": "https://gen.internal"},
            clear=True,
        ):
            config = load_config()

        assert config.generation_backend == "http"
        assert config.generation_backend_url == "https://gen.internal"

    def test_stripe_without_key_warns(self):
        with patch.dict(os.environ, {"PAYMENT_PROVIDER": "stripe"}, clear=True):
            config = load_config()

        assert config.payment_provider == "stripe"
        assert any("STRIPE_SECRET_KEY is not set" in w for w in config.warnings)


class TestConfigSnapshotSafety:
    """Tests for config snapshot security."""

    def test_snapshot_contains_expected_fields(self):
        snapshot = log_config_snapshot(AppConfig())

        for key in (
            "service=",
            "environment=",
            "price_lock_ttl_seconds=",
            "price_lock_policy=",
            "autopilot_max_retries=",
            "payment_provider=",
            "generation_backend=",
            "stripe_key_present=",
        ):
            assert key in snapshot

    def test_snapshot_never_contains_actual_secrets(self):
        with patch.dict(
            os.environ,
            {"STRIPE_SECRET_KEY": "sk_live_super_secret_12345", "PAYMENT_PROVIDER": "stripe"},
            clear=True,
        ):
            config = load_config()
            snapshot = log_config_snapshot(config)

        assert "sk_live_super_secret" not in snapshot
        assert "stripe_key_present=True" in snapshot

    def test_clean_snapshot_passes_safety_check(self):
        assert validate_config_snapshot_safety(log_config_snapshot(AppConfig())) is True

    def test_safety_check_catches_leaked_key(self):
        assert validate_config_snapshot_safety("service=test key=sk-1234") is False

    def test_safety_check_allows_presence_flags(self):
        assert validate_config_snapshot_safety("api_key_present=True token_present=False") is True
