# app/tests/test_correlation.py
"""
Tests for correlation ID middleware and request-scoped logging.

These tests verify:
1. Client-provided X-Request-Id is echoed in response
2. Missing or invalid X-Request-Id is replaced with a generated one
3. Error bodies carry the same request_id
4. Log records are stamped with the request id
"""
import logging
from unittest.mock import MagicMock

import pytest
from fastapi.testclient import TestClient

from app.config import AppConfig
from app.correlation import (
    RequestIdLogFilter,
    current_request_id,
    generate_request_id,
    get_request_id,
    validate_request_id,
)
from app.main import create_app


class TestValidateRequestId:
    """Tests for request ID validation."""

    def test_valid_uuid(self):
        request_id = "550e8400-e29b-41d4-a716-446655440000"
        assert validate_request_id(request_id) == request_id

    def test_empty_and_none_rejected(self):
        assert validate_request_id("") is None
        assert validate_request_id(None) is None

    def test_length_limit(self):
        assert validate_request_id("a" * 64) == "a" * 64
        assert validate_request_id("a" * 65) is None

    def test_special_chars_rejected(self):
        assert validate_request_id("abc@123") is None
        assert validate_request_id("abc 123") is None
        assert validate_request_id("abc/123") is None


class TestRequestIdHelpers:
    """Tests for generation and lookup."""

    def test_generated_ids_are_unique_uuids(self):
        ids = [generate_request_id() for _ in range(50)]
        assert len(set(ids)) == 50
        assert all(len(i.split("-")) == 5 for i in ids)

    def test_get_request_id_from_state(self):
        request = MagicMock()
        request.state.request_id = "test-id-123"
        assert get_request_id(request) == "test-id-123"

    def test_no_current_request_outside_middleware(self):
        assert current_request_id() is None


class TestRequestIdLogFilter:
    """Tests for stamping log records."""

    def test_record_outside_request_gets_placeholder(self):
        record = logging.LogRecord("x", logging.INFO, __file__, 1, "msg", None, None)
        assert RequestIdLogFilter().filter(record) is True
        assert record.request_id == "-"

    def test_explicit_request_id_kept(self):
        record = logging.LogRecord("x", logging.INFO, __file__, 1, "msg", None, None)
        record.request_id = "given"
        RequestIdLogFilter().filter(record)
        assert record.request_id == "given"


class TestCorrelationIdIntegration:
    """Integration tests for correlation ID with FastAPI."""

    @pytest.fixture
    def client(self):
        with TestClient(create_app(config=AppConfig())) as client:
            yield client

    def test_client_request_id_echoed(self, client):
        response = client.get("/health", headers={"X-Request-Id": "my-request-123"})
        assert response.headers.get("X-Request-Id") == "my-request-123"

    def test_missing_request_id_generated(self, client):
        response = client.get("/health")
        assert len(response.headers["X-Request-Id"].split("-")) == 5

    def test_invalid_request_id_replaced(self, client):
        response = client.get("/health", headers={"X-Request-Id": "bad@id!"})
        assert response.headers["X-Request-Id"] != "bad@id!"

    def test_error_body_includes_request_id(self, client):
        response = client.get("/checkout/missing", headers={"X-Request-Id": "error-test-789"})

        assert response.status_code == 404
        assert response.json()["request_id"] == "error-test-789"

    def test_success_body_includes_request_id(self, client):
        response = client.post("/checkout/proj_1", headers={"X-Request-Id": "open-test-1"})

        assert response.status_code == 201
        assert response.json()["request_id"] == "open-test-1"
