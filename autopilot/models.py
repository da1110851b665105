# autopilot/models.py
"""
Autopilot task models.

Task lifecycle:
    idle -> starting -> running -> {succeeded | failed | cancelled}
    running <-> paused
Terminal states are final.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Optional, Tuple

from pricing.models import VerifyLevel


class TaskStatus(str, Enum):
    IDLE = "idle"
    STARTING = "starting"
    RUNNING = "running"
    PAUSED = "paused"
    SUCCEEDED = "succeeded"
    FAILED = "failed"
    CANCELLED = "cancelled"

    @property
    def is_terminal(self) -> bool:
        return self in _TERMINAL


_TERMINAL = frozenset({TaskStatus.SUCCEEDED, TaskStatus.FAILED, TaskStatus.CANCELLED})


@dataclass(frozen=True)
class AutopilotConfig:
    """What was paid for. Reused verbatim on retry."""

    verify_level: VerifyLevel
    addons: Tuple[str, ...] = ()
    allow_preprint: bool = True
    use_style_samples: bool = False

    def __post_init__(self):
        object.__setattr__(self, "verify_level", VerifyLevel(self.verify_level))
        object.__setattr__(self, "addons", tuple(sorted(set(self.addons))))

    def to_dict(self) -> dict:
        return {
            "verify_level": self.verify_level.value,
            "addons": list(self.addons),
            "allow_preprint": self.allow_preprint,
            "use_style_samples": self.use_style_samples,
        }


@dataclass(frozen=True)
class ProgressEvent:
    """
    One entry of a task's progress stream.

    `status` is set only on the terminal event that closes the stream.
    """

    task_id: str
    percent: int
    step: Optional[str] = None
    note: Optional[str] = None
    status: Optional[TaskStatus] = None
    doc_id: Optional[str] = None
    error: Optional[str] = None
    retryable: bool = False

    @property
    def is_terminal(self) -> bool:
        return self.status is not None and self.status.is_terminal

    def to_dict(self) -> dict:
        return {
            "task_id": self.task_id,
            "percent": self.percent,
            "step": self.step,
            "note": self.note,
            "status": self.status.value if self.status else None,
            "doc_id": self.doc_id,
            "error": self.error,
            "retryable": self.retryable,
        }


@dataclass
class AutopilotTask:
    """
    Live view of one generation task.

    Mutated only by AutopilotOrchestrator.
    """

    config: AutopilotConfig
    task_id: Optional[str] = None
    status: TaskStatus = TaskStatus.IDLE
    progress_percent: int = 0
    step: Optional[str] = None
    result_doc_id: Optional[str] = None
    error: Optional[str] = None
    retryable: bool = False

    def to_dict(self) -> dict:
        return {
            "task_id": self.task_id,
            "status": self.status.value,
            "progress_percent": self.progress_percent,
            "step": self.step,
            "result_doc_id": self.result_doc_id,
            "error": self.error,
            "retryable": self.retryable,
            "config": self.config.to_dict(),
        }
