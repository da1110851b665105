# autopilot/__init__.py
"""
Autopilot: long-running document generation after payment.

Provides:
- AutopilotOrchestrator (start / pause / resume / cancel, stream retry)
- ProgressChannel with replay-last-known-value semantics
- GenerationBackend interface with mock and HTTP implementations
"""

from autopilot.backends import (
    BackendError,
    BackendEvent,
    GenerationBackend,
    MockGenerationBackend,
    TransientBackendError,
)
from autopilot.models import AutopilotConfig, AutopilotTask, ProgressEvent, TaskStatus
from autopilot.orchestrator import AutopilotOrchestrator
from autopilot.stream import ProgressChannel

__all__ = [
    "BackendError",
    "BackendEvent",
    "GenerationBackend",
    "MockGenerationBackend",
    "TransientBackendError",
    "AutopilotConfig",
    "AutopilotTask",
    "ProgressEvent",
    "TaskStatus",
    "AutopilotOrchestrator",
    "ProgressChannel",
]
