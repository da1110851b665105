# autopilot/http_backend.py
"""
HTTP generation backend client.

Endpoints (relative to base_url):
- POST /autopilot/start            {"fromStep", "config"} -> {"taskId"}
- GET  /autopilot/{id}/stream      text/event-stream of JSON "data:" lines
- POST /autopilot/{id}/pause|resume|cancel

Transport errors and 5xx responses are transient; 4xx are permanent.
"""

from __future__ import annotations

import json
import logging
from typing import AsyncIterator, Optional

import httpx

from autopilot.backends import (
    BackendError,
    BackendEvent,
    GenerationBackend,
    TransientBackendError,
)
from autopilot.models import AutopilotConfig

_logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT_SECONDS = 30.0


def _config_payload(config: AutopilotConfig) -> dict:
    return {
        "verifyLevel": config.verify_level.value,
        "addons": list(config.addons),
        "allowPreprint": config.allow_preprint,
        "useStyle": config.use_style_samples,
    }


def _check_status(response: httpx.Response, action: str) -> None:
    if response.status_code >= 500:
        raise TransientBackendError(f"{action} failed with HTTP {response.status_code}")
    if response.status_code >= 400:
        raise BackendError(f"{action} rejected with HTTP {response.status_code}")


class HttpGenerationBackend(GenerationBackend):
    """Generation service reached over HTTP with SSE progress."""

    def __init__(
        self,
        base_url: str,
        api_key: Optional[str] = None,
        timeout: float = DEFAULT_TIMEOUT_SECONDS,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        headers = {"Accept": "application/json"}
        if api_key:
            headers["Authorization"] = f"Bearer {api_key}"
        self._client = httpx.AsyncClient(
            base_url=base_url,
            headers=headers,
            timeout=timeout,
            transport=transport,
        )

    @property
    def source_name(self) -> str:
        return "http"

    async def start(self, from_step: str, config: AutopilotConfig) -> str:
        try:
            response = await self._client.post(
                "/autopilot/start",
                json={"fromStep": from_step, "config": _config_payload(config)},
            )
        except httpx.TransportError as e:
            raise TransientBackendError(f"start request failed: {e}") from e

        _check_status(response, "start")
        task_id = response.json().get("taskId")
        if not task_id:
            raise BackendError("start response missing taskId")
        return task_id

    async def stream(self, task_id: str) -> AsyncIterator[BackendEvent]:
        try:
            async with self._client.stream(
                "GET",
                f"/autopilot/{task_id}/stream",
                headers={"Accept": "text/event-stream"},
            ) as response:
                _check_status(response, "stream")
                async for line in response.aiter_lines():
                    event = self._parse_line(line)
                    if event is not None:
                        yield event
        except httpx.TransportError as e:
            raise TransientBackendError(f"progress stream dropped: {e}") from e

    async def pause(self, task_id: str) -> None:
        await self._control(task_id, "pause")

    async def resume(self, task_id: str) -> None:
        await self._control(task_id, "resume")

    async def cancel(self, task_id: str) -> None:
        await self._control(task_id, "cancel")

    async def aclose(self) -> None:
        await self._client.aclose()

    async def _control(self, task_id: str, action: str) -> None:
        try:
            response = await self._client.post(f"/autopilot/{task_id}/{action}")
        except httpx.TransportError as e:
            raise TransientBackendError(f"{action} request failed: {e}") from e
        _check_status(response, action)

    @staticmethod
    def _parse_line(line: str) -> Optional[BackendEvent]:
        # SSE comments, event names and keep-alives carry no payload
        if not line.startswith("data:"):
            return None
        raw = line[len("data:"):].strip()
        if not raw:
            return None
        try:
            payload = json.loads(raw)
        except json.JSONDecodeError:
            _logger.warning(f"Skipping malformed progress payload: {raw[:80]}")
            return None
        return BackendEvent.from_payload(payload)
