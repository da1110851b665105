# autopilot/backends.py
"""
Generation backend interface and the in-memory mock.

A backend owns the real task. The orchestrator only starts it, follows
its event stream and forwards pause/resume/cancel. Dropping a stream
never affects the task itself.
"""

from __future__ import annotations

import asyncio
import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import AsyncIterator, Optional
from uuid import uuid4

from autopilot.models import AutopilotConfig

_logger = logging.getLogger(__name__)

EVENT_PROGRESS = "progress"
EVENT_DONE = "done"
EVENT_ERROR = "error"


class BackendError(Exception):
    """Permanent backend failure. Not retried."""

    pass


class TransientBackendError(BackendError):
    """Network hiccup or dropped stream. Retried with backoff."""

    pass


@dataclass(frozen=True)
class BackendEvent:
    """One message from the backend stream."""

    kind: str
    percent: int = 0
    step: Optional[str] = None
    message: Optional[str] = None
    doc_id: Optional[str] = None
    retryable: bool = False

    @classmethod
    def from_payload(cls, payload: dict) -> "BackendEvent":
        """
        Parse the wire format:
            {"step": "search|strategy|outline|done|error",
             "progress": 0-100, "message": str?, "docId": str?, "retryable": bool?}
        """
        step = payload.get("step")
        percent = int(payload.get("progress", 0))
        message = payload.get("message")
        if step == "done":
            return cls(EVENT_DONE, percent=100, step=step, message=message, doc_id=payload.get("docId"))
        if step == "error":
            return cls(
                EVENT_ERROR,
                percent=percent,
                step=step,
                message=message or "generation failed",
                retryable=bool(payload.get("retryable", False)),
            )
        return cls(EVENT_PROGRESS, percent=percent, step=step, message=message)


class GenerationBackend(ABC):
    """
    Abstract base class for generation backends.

    stream() must start by reporting the task's current progress so a
    reconnecting consumer can resume without gaps.
    """

    @property
    @abstractmethod
    def source_name(self) -> str:
        ...

    @abstractmethod
    async def start(self, from_step: str, config: AutopilotConfig) -> str:
        """Start a task and return its id."""
        ...

    @abstractmethod
    def stream(self, task_id: str) -> AsyncIterator[BackendEvent]:
        """
        Follow the task's events until done/error.

        Raises:
            TransientBackendError: connection dropped, safe to reconnect
            BackendError: permanent failure
        """
        ...

    @abstractmethod
    async def pause(self, task_id: str) -> None:
        ...

    @abstractmethod
    async def resume(self, task_id: str) -> None:
        ...

    @abstractmethod
    async def cancel(self, task_id: str) -> None:
        ...

    async def aclose(self) -> None:
        """Release transport resources."""
        return None


DEFAULT_STAGES = ("search", "strategy", "outline")


@dataclass
class _MockJob:
    config: AutopilotConfig
    percent: int = 0
    stage_index: int = 0
    cancelled: bool = False
    doc_id: Optional[str] = None
    running: asyncio.Event = field(default_factory=asyncio.Event)


class MockGenerationBackend(GenerationBackend):
    """
    Deterministic stand-in for the generation service.

    Walks search -> strategy -> outline in fixed increments. Failures can
    be scripted:
    - disconnects: number of times a stream drops mid-task
    - fail_at: percent at which the task reports a permanent error
    - start_failures: number of start() calls that fail transiently
    """

    def __init__(
        self,
        tick_delay: float = 0.0,
        step_percent: int = 10,
        stages: tuple = DEFAULT_STAGES,
        disconnects: int = 0,
        fail_at: Optional[int] = None,
        start_failures: int = 0,
    ):
        self.tick_delay = tick_delay
        self.step_percent = step_percent
        self.stages = stages
        self.disconnects = disconnects
        self.fail_at = fail_at
        self.start_failures = start_failures
        self.jobs: dict[str, _MockJob] = {}
        self.start_calls = 0
        self.stream_calls = 0

    @property
    def source_name(self) -> str:
        return "mock"

    async def start(self, from_step: str, config: AutopilotConfig) -> str:
        self.start_calls += 1
        await asyncio.sleep(0)
        if self.start_failures > 0:
            self.start_failures -= 1
            raise TransientBackendError("start request timed out")

        task_id = f"task_{uuid4().hex[:16]}"
        job = _MockJob(config=config)
        job.running.set()
        self.jobs[task_id] = job
        _logger.debug(f"Mock autopilot {task_id} started from {from_step}")
        return task_id

    async def stream(self, task_id: str) -> AsyncIterator[BackendEvent]:
        job = self._job(task_id)
        self.stream_calls += 1
        yield BackendEvent(EVENT_PROGRESS, percent=job.percent, step=self._stage(job))

        while not job.cancelled:
            await job.running.wait()
            if job.cancelled:
                return
            await asyncio.sleep(self.tick_delay)
            if job.cancelled:
                return

            if self.disconnects > 0 and job.percent > 0:
                self.disconnects -= 1
                raise TransientBackendError("progress stream disconnected")

            if self.fail_at is not None and job.percent >= self.fail_at:
                yield BackendEvent(EVENT_ERROR, percent=job.percent, message="citation source unavailable")
                return

            job.percent = min(100, job.percent + self.step_percent)
            if job.percent >= 100:
                job.doc_id = job.doc_id or f"doc_{uuid4().hex[:12]}"
                yield BackendEvent(EVENT_DONE, percent=100, step="done", doc_id=job.doc_id)
                return
            yield BackendEvent(
                EVENT_PROGRESS,
                percent=job.percent,
                step=self._stage(job),
                message=f"{self._stage(job)} in progress",
            )

    async def pause(self, task_id: str) -> None:
        self._job(task_id).running.clear()

    async def resume(self, task_id: str) -> None:
        self._job(task_id).running.set()

    async def cancel(self, task_id: str) -> None:
        job = self._job(task_id)
        job.cancelled = True
        job.running.set()

    def _job(self, task_id: str) -> _MockJob:
        job = self.jobs.get(task_id)
        if job is None:
            raise BackendError(f"Unknown task {task_id}")
        return job

    def _stage(self, job: _MockJob) -> str:
        index = min(len(self.stages) - 1, job.percent * len(self.stages) // 100)
        return self.stages[index]
