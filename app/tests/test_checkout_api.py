# app/tests/test_checkout_api.py
"""
Tests for the checkout API.

Each test builds its own app over a registry with mock integrations so
payment outcomes and generation speed are scripted. TestClient is used
as a context manager to keep one event loop alive for the background
progress pump.
"""
import time

import pytest
from fastapi.testclient import TestClient

from app.config import AppConfig
from app.main import create_app
from autopilot.backends import MockGenerationBackend
from billing.providers import MockPaymentProvider
from checkout.clock import ManualClock
from checkout.controller import CheckoutController
from checkout.registry import CheckoutRegistry

PARAMS = {"word_count": 1000, "verify_level": "Standard"}


def make_app(outcomes=None, clock=None):
    provider = MockPaymentProvider(outcomes=outcomes)
    backend = MockGenerationBackend(step_percent=25)
    clock = clock or ManualClock()

    def factory(project_id):
        return CheckoutController(project_id, provider, backend, clock=clock)

    return create_app(config=AppConfig(), registry=CheckoutRegistry(factory))


def wait_for_state(client, project_id, state, timeout=5.0):
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        checkout = client.get(f"/checkout/{project_id}").json()["checkout"]
        if checkout["state"] == state:
            return checkout
        time.sleep(0.01)
    raise AssertionError(f"checkout {project_id} never reached {state}")


@pytest.fixture
def client():
    with TestClient(make_app()) as client:
        yield client


class TestOpenCheckout:
    """Tests for opening, reading and closing checkouts."""

    def test_open_with_params_is_quoted(self, client):
        response = client.post("/checkout/proj_1", json=PARAMS)

        assert response.status_code == 201
        assert "X-Request-Id" in response.headers
        checkout = response.json()["checkout"]
        assert checkout["state"] == "quoted"
        assert checkout["estimate"] is not None
        assert checkout["lock"] is None

    def test_open_without_params_is_idle(self, client):
        response = client.post("/checkout/proj_1")

        assert response.status_code == 201
        assert response.json()["checkout"]["state"] == "idle"

    def test_duplicate_open_conflicts(self, client):
        client.post("/checkout/proj_1", json=PARAMS)
        response = client.post("/checkout/proj_1", json=PARAMS)

        assert response.status_code == 409
        assert response.json()["error"]["code"] == "project_already_open"

    def test_unknown_project_is_404(self, client):
        response = client.get("/checkout/nope")

        assert response.status_code == 404
        body = response.json()
        assert body["error"]["code"] == "project_not_found"
        assert body["request_id"] == response.headers["X-Request-Id"]

    def test_delete_then_get_is_404(self, client):
        client.post("/checkout/proj_1", json=PARAMS)

        response = client.delete("/checkout/proj_1")
        assert response.status_code == 200
        assert response.json()["disposed"] == "proj_1"
        assert client.get("/checkout/proj_1").status_code == 404

    def test_negative_word_count_rejected(self, client):
        response = client.post("/checkout/proj_1", json={"word_count": -5})
        assert response.status_code == 422


class TestSelection:
    """Tests for verify level and addon changes."""

    def test_addon_catalog(self, client):
        addons = client.get("/addons").json()["addons"]

        assert len(addons) == 6
        assert {"addon_id": "latex", "label": "LaTeX export", "price": "10.00"} in addons

    def test_toggle_addon_updates_total(self, client):
        client.post("/checkout/proj_1", json=PARAMS)

        response = client.put("/checkout/proj_1/addons/latex", json={"on": True})

        checkout = response.json()["checkout"]
        assert checkout["addons"] == ["latex"]
        assert checkout["addons_total"] == "10.00"

    def test_unknown_addon_is_422(self, client):
        client.post("/checkout/proj_1", json=PARAMS)

        response = client.put("/checkout/proj_1/addons/ghostwriter", json={"on": True})

        assert response.status_code == 422
        assert response.json()["error"]["code"] == "unknown_addon"

    def test_set_verify_level(self, client):
        client.post("/checkout/proj_1", json=PARAMS)

        response = client.put("/checkout/proj_1/verify-level", json={"verify_level": "Pro"})

        assert response.json()["checkout"]["verify_level"] == "Pro"

    def test_invalid_verify_level_rejected(self, client):
        client.post("/checkout/proj_1", json=PARAMS)

        response = client.put("/checkout/proj_1/verify-level", json={"verify_level": "Ultra"})

        assert response.status_code == 422

    def test_selection_change_drops_lock(self, client):
        client.post("/checkout/proj_1", json=PARAMS)
        client.post("/checkout/proj_1/lock")

        response = client.put("/checkout/proj_1/addons/latex", json={"on": True})

        checkout = response.json()["checkout"]
        assert checkout["state"] == "quoted"
        assert checkout["lock"] is None


class TestLockAndPay:
    """Tests for the lock -> pay -> autopilot flow."""

    def test_lock_before_estimate_conflicts(self, client):
        client.post("/checkout/proj_1")

        response = client.post("/checkout/proj_1/lock")

        assert response.status_code == 409
        assert response.json()["error"]["code"] == "invalid_transition"

    def test_lock_reports_remaining_seconds(self, client):
        client.post("/checkout/proj_1", json=PARAMS)

        checkout = client.post("/checkout/proj_1/lock").json()["checkout"]

        assert checkout["state"] == "locked"
        assert checkout["lock_remaining_seconds"] == 900

    def test_pay_runs_autopilot_to_done(self, client):
        client.post("/checkout/proj_1", json=PARAMS)
        client.post("/checkout/proj_1/lock")

        response = client.post("/checkout/proj_1/pay")

        assert response.status_code == 200
        body = response.json()
        assert body["payment"]["status"] == "succeeded"
        assert body["checkout"]["state"] in ("autopilot_running", "done")

        checkout = wait_for_state(client, "proj_1", "done")
        assert checkout["doc_id"] is not None
        assert checkout["task"]["progress_percent"] == 100

    def test_pay_without_lock_conflicts(self, client):
        client.post("/checkout/proj_1", json=PARAMS)

        response = client.post("/checkout/proj_1/pay")

        assert response.status_code in (409, 410)

    def test_expired_lock_is_410(self):
        clock = ManualClock()
        with TestClient(make_app(clock=clock)) as client:
            client.post("/checkout/proj_1", json=PARAMS)
            client.post("/checkout/proj_1/lock")
            clock.advance(minutes=16)

            response = client.post("/checkout/proj_1/pay")

            assert response.status_code == 410
            assert response.json()["error"]["recovery"] == "requote"
            assert client.get("/checkout/proj_1").json()["checkout"]["state"] == "quoted"

    def test_declined_payment_then_retry(self):
        with TestClient(make_app(outcomes=["failed:card_declined"])) as client:
            client.post("/checkout/proj_1", json=PARAMS)
            client.post("/checkout/proj_1/lock")

            declined = client.post("/checkout/proj_1/pay")
            assert declined.status_code == 402
            assert declined.json()["error"]["recovery"] == "retry"
            assert client.get("/checkout/proj_1").json()["checkout"]["state"] == "payment_failed"

            retried = client.post("/checkout/proj_1/retry")
            assert retried.status_code == 200
            assert retried.json()["checkout"]["state"] in ("autopilot_running", "done")
            wait_for_state(client, "proj_1", "done")


class TestAutopilotControls:
    """Tests for autopilot control routes and progress streaming."""

    def test_pause_before_autopilot_conflicts(self, client):
        client.post("/checkout/proj_1", json=PARAMS)

        response = client.post("/checkout/proj_1/autopilot/pause")

        assert response.status_code == 409

    def test_progress_before_autopilot_conflicts(self, client):
        client.post("/checkout/proj_1", json=PARAMS)

        response = client.get("/checkout/proj_1/progress")

        assert response.status_code == 409

    def test_progress_stream_after_done(self, client):
        client.post("/checkout/proj_1", json=PARAMS)
        client.post("/checkout/proj_1/lock")
        client.post("/checkout/proj_1/pay")
        wait_for_state(client, "proj_1", "done")

        response = client.get("/checkout/proj_1/progress")

        assert response.status_code == 200
        assert response.headers["content-type"].startswith("text/event-stream")
        assert "event: progress" in response.text
        assert '"status": "succeeded"' in response.text

    def test_retry_with_nothing_to_recover_conflicts(self, client):
        client.post("/checkout/proj_1", json=PARAMS)

        response = client.post("/checkout/proj_1/retry")

        assert response.status_code == 409
