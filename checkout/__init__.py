# checkout/__init__.py
"""
Checkout orchestration: quote -> price lock -> payment -> autopilot.

The controller lives in checkout.controller and is created per project
through checkout.registry.CheckoutRegistry. This package root only
exposes the leaf pieces shared by pricing, billing and autopilot.
"""

from checkout.errors import (
    AlreadyTerminalError,
    AutopilotFailedError,
    CheckoutError,
    ExpiredLockError,
    InvalidAmountError,
    InvalidTransitionError,
    PaymentFailedError,
    TaskAlreadyActiveError,
    UnknownAddonError,
)
from checkout.events import EventBus, Subscription

__all__ = [
    "AlreadyTerminalError",
    "AutopilotFailedError",
    "CheckoutError",
    "ExpiredLockError",
    "InvalidAmountError",
    "InvalidTransitionError",
    "PaymentFailedError",
    "TaskAlreadyActiveError",
    "UnknownAddonError",
    "EventBus",
    "Subscription",
]
