# autopilot/orchestrator.py
"""
Autopilot orchestrator: one generation task at a time per project.

Coordinates:
- starting the backend task (with bounded retry on transient errors)
- following its progress stream and republishing it on a ProgressChannel
- reconnecting dropped streams with exponential backoff
- pause / resume / cancel, with illegal transitions rejected loudly

Retry exhaustion fails the task with retryable=True so the controller can
offer a user-initiated restart with the same config.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Awaitable, Callable, Optional

from autopilot.backends import (
    EVENT_DONE,
    EVENT_ERROR,
    BackendError,
    BackendEvent,
    GenerationBackend,
    TransientBackendError,
)
from autopilot.models import AutopilotConfig, AutopilotTask, ProgressEvent, TaskStatus
from autopilot.stream import ProgressChannel, ProgressListener
from checkout.errors import (
    AlreadyTerminalError,
    AutopilotFailedError,
    InvalidTransitionError,
    TaskAlreadyActiveError,
)
from checkout.events import Subscription

_logger = logging.getLogger(__name__)

DEFAULT_MAX_RETRIES = 3
DEFAULT_RETRY_DELAY_SECONDS = 1.0
DEFAULT_FROM_STEP = "outline"


class AutopilotOrchestrator:
    """Drives the autopilot task lifecycle for one project."""

    def __init__(
        self,
        backend: GenerationBackend,
        max_retries: int = DEFAULT_MAX_RETRIES,
        retry_delay: float = DEFAULT_RETRY_DELAY_SECONDS,
        sleep: Optional[Callable[[float], Awaitable[None]]] = None,
    ):
        """
        Args:
            backend: Generation backend that owns the real task
            max_retries: Reconnect attempts after a transient error
            retry_delay: Base delay in seconds, doubled per attempt
            sleep: Awaitable sleep, injectable for tests
        """
        self._backend = backend
        self._max_retries = max_retries
        self._retry_delay = retry_delay
        self._sleep = sleep or asyncio.sleep
        self._task: Optional[AutopilotTask] = None
        self._channel: Optional[ProgressChannel] = None
        self._pump: Optional[asyncio.Task] = None

    @property
    def task(self) -> Optional[AutopilotTask]:
        return self._task

    @property
    def channel(self) -> Optional[ProgressChannel]:
        return self._channel

    @property
    def backend(self) -> GenerationBackend:
        return self._backend

    def has_active_task(self) -> bool:
        return self._task is not None and not self._task.status.is_terminal

    async def start(self, config: AutopilotConfig, from_step: str = DEFAULT_FROM_STEP) -> AutopilotTask:
        """
        Start a new generation task.

        Raises:
            TaskAlreadyActiveError: a non-terminal task exists
            AutopilotFailedError: the backend could not start the task
        """
        if self.has_active_task():
            raise TaskAlreadyActiveError(self._task.task_id)

        task = AutopilotTask(config=config, status=TaskStatus.STARTING)
        self._task = task
        self._channel = None
        self._pump = None

        try:
            task_id = await self._start_with_retry(task, from_step, config)
        except TransientBackendError as e:
            if task.status is TaskStatus.CANCELLED:
                return self._abandon_start(task, e)
            raise self._fail_start(task, f"could not start: {e}", retryable=True) from e
        except BackendError as e:
            if task.status is TaskStatus.CANCELLED:
                return self._abandon_start(task, e)
            raise self._fail_start(task, f"start rejected: {e}", retryable=False) from e

        task.task_id = task_id
        if self._task is not task:
            # Cancelled while starting and already replaced by a newer task
            await self._cancel_remote(task_id)
            return task

        channel = ProgressChannel(task_id)
        self._channel = channel

        if task.status is TaskStatus.CANCELLED:
            # cancel() arrived while the backend was still starting
            await self._cancel_remote(task_id)
            channel.publish(ProgressEvent(task_id, 0, status=TaskStatus.CANCELLED))
            return task

        task.status = TaskStatus.RUNNING
        channel.publish(ProgressEvent(task_id, 0, note="started"))
        self._pump = asyncio.ensure_future(self._follow(task, channel))
        _logger.info(
            f"Autopilot task {task_id} started",
            extra={"task_id": task_id, "config": config.to_dict()},
        )
        return task

    async def pause(self) -> AutopilotTask:
        """Pause a running task. Only legal from running."""
        task = self._require_task("pause")
        if task.status is not TaskStatus.RUNNING:
            raise InvalidTransitionError(task.status.value, "pause")
        await self._control(self._backend.pause, task, "pause")
        if task.status is TaskStatus.RUNNING:
            task.status = TaskStatus.PAUSED
        return task

    async def resume(self) -> AutopilotTask:
        """Resume a paused task. Only legal from paused."""
        task = self._require_task("resume")
        if task.status is not TaskStatus.PAUSED:
            raise InvalidTransitionError(task.status.value, "resume")
        await self._control(self._backend.resume, task, "resume")
        if task.status is TaskStatus.PAUSED:
            task.status = TaskStatus.RUNNING
        return task

    async def cancel(self) -> AutopilotTask:
        """
        Cancel the task from any non-terminal state.

        Raises:
            AlreadyTerminalError: task already succeeded, failed or was cancelled
        """
        task = self._require_task("cancel")
        if task.status.is_terminal:
            raise AlreadyTerminalError(task.status.value, task.task_id)

        previous = task.status
        task.status = TaskStatus.CANCELLED
        if self._pump is not None:
            self._pump.cancel()

        if previous is not TaskStatus.STARTING and task.task_id:
            await self._cancel_remote(task.task_id)
        if self._channel is not None and not self._channel.closed:
            self._channel.publish(
                ProgressEvent(
                    task.task_id,
                    task.progress_percent,
                    step=task.step,
                    status=TaskStatus.CANCELLED,
                )
            )
        _logger.info(f"Autopilot task {task.task_id} cancelled", extra={"task_id": task.task_id})
        return task

    def subscribe(self, listener: ProgressListener) -> Subscription:
        """Attach to the current task's progress (last value replayed first)."""
        if self._channel is None:
            status = self._task.status.value if self._task else TaskStatus.IDLE.value
            raise InvalidTransitionError(status, "subscribe", "no progress stream open")
        return self._channel.subscribe(listener)

    async def wait(self) -> Optional[AutopilotTask]:
        """Wait until the stream follower stops, then return the task."""
        if self._pump is not None and not self._pump.done():
            await asyncio.wait({self._pump})
        return self._task

    async def detach(self) -> None:
        """
        Stop following the stream without touching the backend task.

        Used when the owning controller is disposed.
        """
        if self._pump is not None and not self._pump.done():
            self._pump.cancel()
            await asyncio.wait({self._pump})

    def _require_task(self, action: str) -> AutopilotTask:
        if self._task is None:
            raise InvalidTransitionError(TaskStatus.IDLE.value, action, "no autopilot task")
        return self._task

    def _backoff(self, attempt: int) -> float:
        return self._retry_delay * (2 ** (attempt - 1))

    async def _start_with_retry(self, task: AutopilotTask, from_step: str, config: AutopilotConfig) -> str:
        retries = 0
        while True:
            try:
                return await self._backend.start(from_step, config)
            except TransientBackendError as e:
                if retries >= self._max_retries or task.status is TaskStatus.CANCELLED:
                    raise
                retries += 1
                delay = self._backoff(retries)
                _logger.warning(f"Autopilot start failed ({e}); retry {retries}/{self._max_retries} in {delay}s")
                await self._sleep(delay)

    def _abandon_start(self, task: AutopilotTask, error: BackendError) -> AutopilotTask:
        _logger.info(f"Autopilot start failed after cancel, keeping cancelled: {error}")
        return task

    def _fail_start(self, task: AutopilotTask, reason: str, retryable: bool) -> AutopilotFailedError:
        task.status = TaskStatus.FAILED
        task.error = reason
        task.retryable = retryable
        _logger.error(f"Autopilot start failed: {reason}")
        return AutopilotFailedError(reason, retryable=retryable)

    async def _control(self, call, task: AutopilotTask, action: str) -> None:
        try:
            await call(task.task_id)
        except TransientBackendError as e:
            raise AutopilotFailedError(f"{action} failed: {e}", retryable=True, task_id=task.task_id) from e
        except BackendError as e:
            raise AutopilotFailedError(f"{action} rejected: {e}", retryable=False, task_id=task.task_id) from e

    async def _cancel_remote(self, task_id: str) -> None:
        try:
            await self._backend.cancel(task_id)
        except BackendError as e:
            # Local state is already final; the backend will time the task out
            _logger.error(f"Backend cancel failed for {task_id}: {e}")

    async def _follow(self, task: AutopilotTask, channel: ProgressChannel) -> None:
        retries = 0
        while not task.status.is_terminal:
            try:
                async for event in self._backend.stream(task.task_id):
                    if task.status.is_terminal:
                        return
                    if event.percent > task.progress_percent:
                        retries = 0
                    if self._apply(task, channel, event):
                        return
                if task.status.is_terminal:
                    return
                raise TransientBackendError("progress stream ended before completion")
            except TransientBackendError as e:
                if task.status.is_terminal:
                    return
                if retries >= self._max_retries:
                    self._finish(
                        task,
                        channel,
                        TaskStatus.FAILED,
                        error=f"progress stream lost after {retries} retries: {e}",
                        retryable=True,
                    )
                    return
                retries += 1
                delay = self._backoff(retries)
                _logger.warning(
                    f"Autopilot stream for {task.task_id} dropped ({e}); "
                    f"retry {retries}/{self._max_retries} in {delay}s"
                )
                await self._sleep(delay)
            except BackendError as e:
                if not task.status.is_terminal:
                    self._finish(task, channel, TaskStatus.FAILED, error=str(e), retryable=False)
                return
            except Exception as e:
                _logger.exception(f"Unexpected error following autopilot task {task.task_id}")
                if not task.status.is_terminal:
                    self._finish(task, channel, TaskStatus.FAILED, error=f"internal error: {e}", retryable=False)
                return

    def _apply(self, task: AutopilotTask, channel: ProgressChannel, event: BackendEvent) -> bool:
        """Apply one backend event. Returns True when it was terminal."""
        if event.kind == EVENT_DONE:
            doc_id = event.doc_id or f"doc_{task.task_id}"
            self._finish(task, channel, TaskStatus.SUCCEEDED, doc_id=doc_id)
            return True
        if event.kind == EVENT_ERROR:
            self._finish(task, channel, TaskStatus.FAILED, error=event.message, retryable=event.retryable)
            return True

        task.progress_percent = max(task.progress_percent, min(100, event.percent))
        task.step = event.step or task.step
        channel.publish(
            ProgressEvent(task.task_id, task.progress_percent, step=task.step, note=event.message)
        )
        return False

    def _finish(
        self,
        task: AutopilotTask,
        channel: ProgressChannel,
        status: TaskStatus,
        doc_id: Optional[str] = None,
        error: Optional[str] = None,
        retryable: bool = False,
    ) -> None:
        task.status = status
        if status is TaskStatus.SUCCEEDED:
            task.progress_percent = 100
            task.result_doc_id = doc_id
        task.error = error
        task.retryable = retryable
        channel.publish(
            ProgressEvent(
                task.task_id,
                task.progress_percent,
                step=task.step,
                status=status,
                doc_id=doc_id,
                error=error,
                retryable=retryable,
            )
        )
        if status is TaskStatus.SUCCEEDED:
            _logger.info(f"Autopilot task {task.task_id} completed", extra={"doc_id": doc_id})
        else:
            _logger.warning(f"Autopilot task {task.task_id} {status.value}: {error}")
