# checkout/errors.py
"""
Error taxonomy for the checkout flow.

Every error carries:
- code: stable machine-readable identifier
- recovery: affordance the presentation layer should offer
  ("retry", "requote", "contact_support" or None when the caller is at fault)
- retryable: whether CheckoutController.retry() can recover from it

Programmer-misuse errors (InvalidTransitionError, AlreadyTerminalError,
UnknownAddonError) are never retried.
"""

from __future__ import annotations

from typing import Optional

RECOVERY_RETRY = "retry"
RECOVERY_REQUOTE = "requote"
RECOVERY_CONTACT_SUPPORT = "contact_support"


class CheckoutError(Exception):
    """Base checkout error."""

    code = "checkout_error"
    recovery: Optional[str] = RECOVERY_CONTACT_SUPPORT
    retryable = False

    def to_dict(self) -> dict:
        """Convert to JSON-serializable dict for API responses."""
        return {
            "code": self.code,
            "message": str(self),
            "recovery": self.recovery,
            "retryable": self.retryable,
        }


class ExpiredLockError(CheckoutError):
    """The price lock can no longer back a payment."""

    code = "expired_lock"
    recovery = RECOVERY_REQUOTE
    retryable = True

    def __init__(self, message: str, reason: str = "expired", lock_id: Optional[str] = None):
        super().__init__(message)
        # expired | superseded | spent | missing
        self.reason = reason
        self.lock_id = lock_id

    def to_dict(self) -> dict:
        data = super().to_dict()
        data.update({"reason": self.reason, "lock_id": self.lock_id})
        return data


class InvalidAmountError(CheckoutError):
    """A lock with a non-positive value cannot be paid."""

    code = "invalid_amount"


class PaymentFailedError(CheckoutError):
    """The payment provider declined or errored."""

    code = "payment_failed"
    recovery = RECOVERY_RETRY
    retryable = True

    def __init__(self, reason: str, intent_id: Optional[str] = None):
        super().__init__(f"Payment failed: {reason}")
        self.reason = reason
        self.intent_id = intent_id

    def to_dict(self) -> dict:
        data = super().to_dict()
        data.update({"reason": self.reason, "intent_id": self.intent_id})
        return data


class TaskAlreadyActiveError(CheckoutError):
    """A non-terminal autopilot task already exists for the project."""

    code = "task_already_active"
    recovery = None

    def __init__(self, task_id: Optional[str] = None):
        super().__init__(f"Autopilot task {task_id or '(starting)'} is still active")
        self.task_id = task_id


class InvalidTransitionError(CheckoutError):
    """Command is not legal in the current state."""

    code = "invalid_transition"
    recovery = None

    def __init__(self, current: str, attempted: str, detail: str = ""):
        message = f"Cannot {attempted} while {current}"
        if detail:
            message = f"{message}: {detail}"
        super().__init__(message)
        self.current = current
        self.attempted = attempted

    def to_dict(self) -> dict:
        data = super().to_dict()
        data.update({"current": self.current, "attempted": self.attempted})
        return data


class AlreadyTerminalError(CheckoutError):
    """The autopilot task already reached a final state."""

    code = "already_terminal"
    recovery = None

    def __init__(self, status: str, task_id: Optional[str] = None):
        super().__init__(f"Autopilot task {task_id} already {status}")
        self.status = status
        self.task_id = task_id


class AutopilotFailedError(CheckoutError):
    """The generation task failed."""

    code = "autopilot_failed"

    def __init__(self, reason: str, retryable: bool = False, task_id: Optional[str] = None):
        super().__init__(f"Autopilot failed: {reason}")
        self.reason = reason
        self.retryable = retryable
        self.recovery = RECOVERY_RETRY if retryable else RECOVERY_CONTACT_SUPPORT
        self.task_id = task_id

    def to_dict(self) -> dict:
        data = super().to_dict()
        data.update({"reason": self.reason, "task_id": self.task_id})
        return data


class UnknownAddonError(CheckoutError):
    """Addon id is not part of the catalog."""

    code = "unknown_addon"
    recovery = None

    def __init__(self, addon_id: str):
        super().__init__(f"Unknown addon: {addon_id}")
        self.addon_id = addon_id


class ProjectNotFoundError(CheckoutError):
    """No open checkout for the project."""

    code = "project_not_found"
    recovery = RECOVERY_REQUOTE

    def __init__(self, project_id: str):
        super().__init__(f"No checkout open for project {project_id}")
        self.project_id = project_id


class ProjectAlreadyOpenError(CheckoutError):
    """A checkout controller already owns the project."""

    code = "project_already_open"
    recovery = None

    def __init__(self, project_id: str):
        super().__init__(f"Checkout already open for project {project_id}")
        self.project_id = project_id
