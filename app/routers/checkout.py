# app/routers/checkout.py
"""
Checkout API.

Every route resolves the project's controller from the registry on
app.state and delegates to it; no checkout logic lives here.

Error contract:
    {
        "request_id": "...",
        "error": {"code": "...", "message": "...", "recovery": "...", ...}
    }
"""

import json
import logging
from typing import Optional

from fastapi import APIRouter, Depends, Request
from fastapi.responses import JSONResponse, StreamingResponse

from app.correlation import get_request_id
from app.schemas.checkout import (
    AddonToggleRequest,
    LockRequest,
    ProjectParamsSchema,
    VerifyLevelRequest,
)
from checkout.controller import CheckoutController
from checkout.errors import (
    AlreadyTerminalError,
    AutopilotFailedError,
    CheckoutError,
    ExpiredLockError,
    InvalidAmountError,
    InvalidTransitionError,
    PaymentFailedError,
    ProjectAlreadyOpenError,
    ProjectNotFoundError,
    TaskAlreadyActiveError,
    UnknownAddonError,
)
from checkout.registry import CheckoutRegistry
from pricing.addons import ADDON_CATALOG

logger = logging.getLogger(__name__)

router = APIRouter(tags=["checkout"])

ERROR_STATUS = {
    ProjectNotFoundError: 404,
    ExpiredLockError: 410,
    PaymentFailedError: 402,
    AutopilotFailedError: 502,
    UnknownAddonError: 422,
    InvalidAmountError: 422,
    InvalidTransitionError: 409,
    TaskAlreadyActiveError: 409,
    AlreadyTerminalError: 409,
    ProjectAlreadyOpenError: 409,
}


def status_for(error: CheckoutError) -> int:
    for error_type, status in ERROR_STATUS.items():
        if isinstance(error, error_type):
            return status
    return 400


async def checkout_error_handler(request: Request, exc: CheckoutError) -> JSONResponse:
    """Render a CheckoutError as the shared error body."""
    status = status_for(exc)
    request_id = get_request_id(request) or "unknown"
    logger.info(
        f"Checkout request failed: {exc.code} ({status})",
        extra={"request_id": request_id, "path": request.url.path},
    )
    return JSONResponse(
        status_code=status,
        content={"request_id": request_id, "error": exc.to_dict()},
    )


def get_registry(request: Request) -> CheckoutRegistry:
    return request.app.state.checkout_registry


def _view(raw_request: Request, controller: CheckoutController, **extra) -> dict:
    body = {
        "request_id": get_request_id(raw_request) or "unknown",
        "checkout": controller.snapshot().to_dict(),
    }
    body.update(extra)
    return body


@router.get("/addons")
async def list_addons():
    """Addon catalog with prices in CNY."""
    return {"addons": [addon.to_dict() for addon in ADDON_CATALOG.values()]}


@router.post("/checkout/{project_id}", status_code=201)
async def open_checkout(
    project_id: str,
    raw_request: Request,
    body: Optional[ProjectParamsSchema] = None,
    registry: CheckoutRegistry = Depends(get_registry),
):
    """Open a checkout. With a body, the first estimate is computed immediately."""
    controller = registry.create(project_id, body.to_params() if body else None)
    return _view(raw_request, controller)


@router.get("/checkout/{project_id}")
async def get_checkout(project_id: str, raw_request: Request, registry: CheckoutRegistry = Depends(get_registry)):
    return _view(raw_request, registry.get(project_id))


@router.delete("/checkout/{project_id}")
async def close_checkout(project_id: str, raw_request: Request, registry: CheckoutRegistry = Depends(get_registry)):
    """Dispose the controller. A running backend task is left untouched."""
    await registry.dispose(project_id)
    return {"request_id": get_request_id(raw_request) or "unknown", "disposed": project_id}


@router.put("/checkout/{project_id}/params")
async def update_params(
    project_id: str,
    body: ProjectParamsSchema,
    raw_request: Request,
    registry: CheckoutRegistry = Depends(get_registry),
):
    controller = registry.get(project_id)
    controller.update_params(body.to_params())
    return _view(raw_request, controller)


@router.put("/checkout/{project_id}/verify-level")
async def set_verify_level(
    project_id: str,
    body: VerifyLevelRequest,
    raw_request: Request,
    registry: CheckoutRegistry = Depends(get_registry),
):
    controller = registry.get(project_id)
    controller.set_verify_level(body.verify_level)
    return _view(raw_request, controller)


@router.put("/checkout/{project_id}/addons/{addon_id}")
async def toggle_addon(
    project_id: str,
    addon_id: str,
    body: AddonToggleRequest,
    raw_request: Request,
    registry: CheckoutRegistry = Depends(get_registry),
):
    controller = registry.get(project_id)
    controller.toggle_addon(addon_id, body.on)
    return _view(raw_request, controller)


@router.post("/checkout/{project_id}/lock")
async def request_lock(
    project_id: str,
    raw_request: Request,
    body: Optional[LockRequest] = None,
    registry: CheckoutRegistry = Depends(get_registry),
):
    controller = registry.get(project_id)
    controller.request_lock(force=body.force if body else False)
    return _view(raw_request, controller)


@router.post("/checkout/{project_id}/pay")
async def pay(project_id: str, raw_request: Request, registry: CheckoutRegistry = Depends(get_registry)):
    """
    Pay the locked price. On success the autopilot starts automatically.

    402 on decline (retry), 410 when the lock expired (request a new lock).
    """
    controller = registry.get(project_id)
    outcome = await controller.confirm_payment()
    return _view(raw_request, controller, payment=outcome.to_dict())


@router.post("/checkout/{project_id}/autopilot/start")
async def start_autopilot(project_id: str, raw_request: Request, registry: CheckoutRegistry = Depends(get_registry)):
    controller = registry.get(project_id)
    await controller.start_autopilot()
    return _view(raw_request, controller)


@router.post("/checkout/{project_id}/autopilot/pause")
async def pause_autopilot(project_id: str, raw_request: Request, registry: CheckoutRegistry = Depends(get_registry)):
    controller = registry.get(project_id)
    await controller.pause_autopilot()
    return _view(raw_request, controller)


@router.post("/checkout/{project_id}/autopilot/resume")
async def resume_autopilot(project_id: str, raw_request: Request, registry: CheckoutRegistry = Depends(get_registry)):
    controller = registry.get(project_id)
    await controller.resume_autopilot()
    return _view(raw_request, controller)


@router.post("/checkout/{project_id}/autopilot/cancel")
async def cancel_autopilot(project_id: str, raw_request: Request, registry: CheckoutRegistry = Depends(get_registry)):
    controller = registry.get(project_id)
    await controller.cancel_autopilot()
    return _view(raw_request, controller)


@router.post("/checkout/{project_id}/retry")
async def retry(project_id: str, raw_request: Request, registry: CheckoutRegistry = Depends(get_registry)):
    """Recover from the last error (re-lock, re-confirm or restart)."""
    controller = registry.get(project_id)
    await controller.retry()
    return _view(raw_request, controller)


@router.get("/checkout/{project_id}/progress")
async def stream_progress(project_id: str, registry: CheckoutRegistry = Depends(get_registry)):
    """
    Server-sent events of autopilot progress.

    The last known progress is sent first; the stream ends after the
    terminal event.
    """
    updates = registry.get(project_id).progress_updates()

    async def event_source():
        async for event in updates:
            yield f"event: progress\ndata: {json.dumps(event.to_dict())}\n\n"

    return StreamingResponse(
        event_source(),
        media_type="text/event-stream",
        headers={"Cache-Control": "no-cache"},
    )
