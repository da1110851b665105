# checkout/controller.py
"""
Checkout controller - the single writer for one project's checkout.

State machine:
    idle -> quoted -> locked -> payment_pending -> payment_failed | payment_succeeded
         -> autopilot_running -> done | failed | cancelled

- locked -> quoted when the lock expires (detected lazily on read/command)
  or the selection changes
- payment_failed -> quoted on selection change
- selection is frozen from payment_pending onwards

Commands that only touch local state are synchronous. Paying and driving
the autopilot await external services, so those are coroutines; every
precondition is checked before the first await.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, replace
from datetime import timedelta
from decimal import Decimal
from enum import Enum
from typing import AsyncIterator, Callable, Mapping, Optional, Tuple

from autopilot.backends import GenerationBackend
from autopilot.models import AutopilotConfig, AutopilotTask, ProgressEvent, TaskStatus
from autopilot.orchestrator import (
    DEFAULT_FROM_STEP,
    DEFAULT_MAX_RETRIES,
    DEFAULT_RETRY_DELAY_SECONDS,
    AutopilotOrchestrator,
)
from autopilot.stream import ProgressListener
from billing.gate import PaymentGate
from billing.models import PaymentIntent, PaymentOutcome
from billing.providers import PaymentProvider
from checkout.clock import Clock
from checkout.errors import (
    AlreadyTerminalError,
    AutopilotFailedError,
    CheckoutError,
    ExpiredLockError,
    InvalidTransitionError,
    PaymentFailedError,
    TaskAlreadyActiveError,
)
from checkout.events import (
    AutopilotCancelled,
    AutopilotCompleted,
    AutopilotFailed,
    AutopilotPaused,
    AutopilotProgress,
    AutopilotResumed,
    AutopilotStarted,
    EstimateUpdated,
    EventBus,
    Listener,
    LockAcquired,
    LockInvalidated,
    PaymentFailed,
    PaymentIntentCreated,
    PaymentSucceeded,
    StateChanged,
    Subscription,
    tracking_listener,
)
from pricing.addons import ADDON_CATALOG, Addon, AddonLedger
from pricing.lock import DEFAULT_LOCK_TTL, LockPolicy, PriceLockManager
from pricing.models import Estimate, PriceLock, ProjectParams, VerifyLevel
from pricing.quote import QuoteEngine

_logger = logging.getLogger(__name__)


class CheckoutState(str, Enum):
    IDLE = "idle"
    QUOTED = "quoted"
    LOCKED = "locked"
    PAYMENT_PENDING = "payment_pending"
    PAYMENT_FAILED = "payment_failed"
    PAYMENT_SUCCEEDED = "payment_succeeded"
    AUTOPILOT_RUNNING = "autopilot_running"
    DONE = "done"
    FAILED = "failed"
    CANCELLED = "cancelled"


# States holding a lock that may go stale
_LOCK_HOLDING = frozenset({CheckoutState.LOCKED, CheckoutState.PAYMENT_FAILED})

# States reached only after a successful payment
_PAID = frozenset(
    {
        CheckoutState.PAYMENT_SUCCEEDED,
        CheckoutState.AUTOPILOT_RUNNING,
        CheckoutState.DONE,
        CheckoutState.FAILED,
        CheckoutState.CANCELLED,
    }
)

# States from which a (re)start of the autopilot is allowed
_STARTABLE = frozenset(
    {CheckoutState.PAYMENT_SUCCEEDED, CheckoutState.FAILED, CheckoutState.CANCELLED}
)


@dataclass(frozen=True)
class CheckoutSnapshot:
    """Read-only view handed to presentation layers."""

    project_id: str
    state: CheckoutState
    verify_level: VerifyLevel
    addons: Tuple[str, ...]
    addons_total: Decimal
    estimate: Optional[Estimate] = None
    lock: Optional[PriceLock] = None
    lock_remaining: Optional[timedelta] = None
    intent: Optional[PaymentIntent] = None
    outcome: Optional[PaymentOutcome] = None
    task: Optional[dict] = None
    doc_id: Optional[str] = None
    error: Optional[dict] = None

    def to_dict(self) -> dict:
        return {
            "project_id": self.project_id,
            "state": self.state.value,
            "verify_level": self.verify_level.value,
            "addons": list(self.addons),
            "addons_total": str(self.addons_total),
            "estimate": self.estimate.to_dict() if self.estimate else None,
            "lock": self.lock.to_dict() if self.lock else None,
            "lock_remaining_seconds": (
                int(self.lock_remaining.total_seconds()) if self.lock_remaining is not None else None
            ),
            "intent": self.intent.to_dict() if self.intent else None,
            "outcome": self.outcome.to_dict() if self.outcome else None,
            "task": self.task,
            "doc_id": self.doc_id,
            "error": self.error,
        }


class CheckoutController:
    """
    Sequences quote, lock, payment and autopilot for one project.

    Create through CheckoutRegistry (or directly in tests) and call
    dispose() when the project's checkout session ends.
    """

    def __init__(
        self,
        project_id: str,
        payment_provider: PaymentProvider,
        generation_backend: GenerationBackend,
        params: Optional[ProjectParams] = None,
        quote_engine: Optional[QuoteEngine] = None,
        catalog: Mapping[str, Addon] = ADDON_CATALOG,
        lock_ttl: timedelta = DEFAULT_LOCK_TTL,
        lock_policy: LockPolicy = LockPolicy.LOWER,
        max_retries: int = DEFAULT_MAX_RETRIES,
        retry_delay: float = DEFAULT_RETRY_DELAY_SECONDS,
        from_step: str = DEFAULT_FROM_STEP,
        auto_start: bool = True,
        clock: Optional[Clock] = None,
        sleep=None,
        track: bool = True,
    ):
        self.project_id = project_id
        self._clock = clock or Clock()
        self._engine = quote_engine or QuoteEngine()
        self._ledger = AddonLedger(catalog)
        self._locks = PriceLockManager(lock_ttl, lock_policy, self._clock)
        self._gate = PaymentGate(payment_provider, self._locks, self._clock)
        self._autopilot = AutopilotOrchestrator(
            generation_backend, max_retries=max_retries, retry_delay=retry_delay, sleep=sleep
        )
        self._from_step = from_step
        self._auto_start = auto_start
        self._bus = EventBus()
        if track:
            self._bus.subscribe(tracking_listener)

        self._state = CheckoutState.IDLE
        self._params: Optional[ProjectParams] = None
        self._verify_level = VerifyLevel.STANDARD
        self._estimate: Optional[Estimate] = None
        self._lock: Optional[PriceLock] = None
        self._lock_expired = False
        self._intent: Optional[PaymentIntent] = None
        self._outcome: Optional[PaymentOutcome] = None
        self._settling: Optional[asyncio.Future] = None
        self._starting = False
        self._paid_config: Optional[AutopilotConfig] = None
        self._doc_id: Optional[str] = None
        self._last_error: Optional[CheckoutError] = None
        self._progress_sub: Optional[Subscription] = None
        self._disposed = False

        if params is not None:
            self.update_params(params)

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    @property
    def state(self) -> CheckoutState:
        if not self._disposed:
            self._expire_stale_lock()
        return self._state

    @property
    def estimate(self) -> Optional[Estimate]:
        return self._estimate

    @property
    def lock(self) -> Optional[PriceLock]:
        if not self._disposed:
            self._expire_stale_lock()
        return self._lock

    @property
    def verify_level(self) -> VerifyLevel:
        return self._verify_level

    @property
    def addons(self):
        return self._ledger.selection

    @property
    def addons_total(self) -> Decimal:
        return self._ledger.total()

    @property
    def intent(self) -> Optional[PaymentIntent]:
        return self._intent

    @property
    def task(self) -> Optional[AutopilotTask]:
        return self._autopilot.task

    @property
    def doc_id(self) -> Optional[str]:
        return self._doc_id

    @property
    def last_error(self) -> Optional[CheckoutError]:
        return self._last_error

    @property
    def disposed(self) -> bool:
        return self._disposed

    def lock_remaining(self) -> Optional[timedelta]:
        """Countdown for display. None when no lock is held."""
        lock = self.lock
        return self._locks.remaining(lock) if lock is not None else None

    def snapshot(self) -> CheckoutSnapshot:
        state = self.state
        task = self._autopilot.task
        return CheckoutSnapshot(
            project_id=self.project_id,
            state=state,
            verify_level=self._verify_level,
            addons=tuple(sorted(self._ledger.selection)),
            addons_total=self._ledger.total(),
            estimate=self._estimate,
            lock=self._lock,
            lock_remaining=self._locks.remaining(self._lock) if self._lock else None,
            intent=self._intent,
            outcome=self._outcome,
            task=task.to_dict() if task else None,
            doc_id=self._doc_id,
            error=self._last_error.to_dict() if self._last_error else None,
        )

    def subscribe(self, listener: Listener, *event_types) -> Subscription:
        """Subscribe to domain events, optionally filtered by type."""
        return self._bus.subscribe(listener, *event_types)

    def subscribe_progress(self, listener: ProgressListener) -> Subscription:
        """Subscribe to the current task's raw progress (last value replayed first)."""
        return self._autopilot.subscribe(listener)

    def progress_updates(self) -> AsyncIterator[ProgressEvent]:
        """Async iterator over the current task's progress until terminal."""
        channel = self._autopilot.channel
        if channel is None:
            raise InvalidTransitionError(self._state.value, "follow progress", "no autopilot task")
        return channel.updates()

    # ------------------------------------------------------------------
    # Selection commands
    # ------------------------------------------------------------------

    def update_params(self, params: ProjectParams) -> Optional[Estimate]:
        """
        Replace the project parameters, including verify level and addons.

        Returns the recomputed estimate.
        """
        ledger = AddonLedger(self._ledger.catalog, params.addons)

        def apply() -> bool:
            changed = self._params is None or params != self._effective_params(self._params)
            self._params = params
            self._verify_level = params.verify_level
            self._ledger = ledger
            return changed

        self._mutate("update parameters", apply)
        return self._estimate

    def set_verify_level(self, level) -> Optional[Estimate]:
        """Change verification level. Invalidates any held lock."""
        level = VerifyLevel(level)

        def apply() -> bool:
            if level is self._verify_level:
                return False
            self._verify_level = level
            return True

        self._mutate("change verification level", apply)
        return self._estimate

    def toggle_addon(self, addon_id: str, on: bool):
        """Add or remove an addon. Invalidates any held lock when the selection changes."""

        def apply() -> bool:
            before = self._ledger.selection
            return self._ledger.toggle(addon_id, on) != before

        self._mutate("toggle addon", apply)
        return self._ledger.selection

    # ------------------------------------------------------------------
    # Lock and payment
    # ------------------------------------------------------------------

    def request_lock(self, force: bool = False) -> PriceLock:
        """
        Lock the current estimate plus addon total.

        A valid lock already held is returned unchanged unless force=True,
        so a double "write now" click does not restart the countdown.
        """
        self._ensure_open("lock price")
        self._expire_stale_lock()

        if self._state is CheckoutState.LOCKED and self._lock is not None and not force:
            return self._lock
        if self._state not in (CheckoutState.QUOTED, CheckoutState.LOCKED, CheckoutState.PAYMENT_FAILED):
            detail = "an estimate is required" if self._state is CheckoutState.IDLE else ""
            raise InvalidTransitionError(self._state.value, "lock price", detail)

        if self._lock is not None:
            self._emit(LockInvalidated, lock_id=self._lock.lock_id, reason="superseded")

        lock = self._locks.acquire(self._estimate, self._ledger.total(), self._ledger.selection)
        self._lock = lock
        self._lock_expired = False
        self._intent = None
        self._outcome = None
        self._last_error = None
        self._emit(
            LockAcquired,
            lock_id=lock.lock_id,
            value=lock.value,
            currency=lock.currency,
            expires_at=lock.expires_at,
        )
        self._transition(CheckoutState.LOCKED)
        return lock

    async def confirm_payment(self) -> PaymentOutcome:
        """
        Pay the held lock, then hand off to the autopilot.

        Re-submitting while the payment is in flight awaits the same
        confirmation; re-submitting after success returns the stored outcome.

        Raises:
            ExpiredLockError: lock expired or missing; re-quote
            PaymentFailedError: provider declined; retry() re-confirms
            AutopilotFailedError: paid, but the autopilot could not start
        """
        self._ensure_open("pay")

        if self._state in _PAID and self._outcome is not None and self._outcome.succeeded:
            return self._outcome
        if self._state is CheckoutState.PAYMENT_PENDING and self._settling is not None:
            return await asyncio.shield(self._settling)

        if self._expire_stale_lock() or (self._state is CheckoutState.QUOTED and self._lock_expired):
            raise ExpiredLockError("Price lock expired; request a new quote", reason="expired")
        if self._state not in _LOCK_HOLDING:
            raise InvalidTransitionError(self._state.value, "pay", "lock a price first")

        self._gate.check_lock(self._lock)
        self._intent = None
        self._outcome = None
        self._transition(CheckoutState.PAYMENT_PENDING)

        self._settling = asyncio.ensure_future(self._settle_payment(self._lock))
        outcome = await asyncio.shield(self._settling)

        if self._auto_start and self._state is CheckoutState.PAYMENT_SUCCEEDED:
            await self.start_autopilot()
        return outcome

    async def _settle_payment(self, lock: PriceLock) -> PaymentOutcome:
        try:
            try:
                intent = await self._gate.create_intent(lock)
            except PaymentFailedError as e:
                if not self._disposed:
                    self._fail_payment(e)
                raise
            except CheckoutError:
                if not self._disposed:
                    # Lock went stale between the check and the provider call
                    self._transition(CheckoutState.LOCKED)
                raise

            self._intent = intent
            self._emit(PaymentIntentCreated, intent_id=intent.intent_id, amount=intent.amount)
            outcome = await self._gate.confirm(intent.intent_id)
        finally:
            self._settling = None

        self._outcome = outcome
        self._intent = self._gate.get_intent(intent.intent_id) or intent
        if self._disposed:
            return outcome

        if not outcome.succeeded:
            error = PaymentFailedError(outcome.reason or "declined", intent_id=intent.intent_id)
            self._fail_payment(error)
            raise error

        params = self._effective_params(self._params)
        self._paid_config = AutopilotConfig(
            verify_level=lock.verify_level,
            addons=tuple(lock.addons),
            allow_preprint=params.allow_preprint,
            use_style_samples=params.has_style_samples,
        )
        self._lock = None
        self._last_error = None
        self._emit(PaymentSucceeded, intent_id=intent.intent_id, amount=outcome.amount)
        self._transition(CheckoutState.PAYMENT_SUCCEEDED)
        return outcome

    # ------------------------------------------------------------------
    # Autopilot
    # ------------------------------------------------------------------

    async def start_autopilot(self) -> AutopilotTask:
        """
        Start (or restart) generation with the paid-for config.

        Raises:
            TaskAlreadyActiveError: a task is starting or running
            InvalidTransitionError: payment has not succeeded
            AutopilotFailedError: the backend could not start the task
        """
        self._ensure_open("start autopilot")
        if self._starting:
            raise TaskAlreadyActiveError()
        if self._autopilot.has_active_task():
            raise TaskAlreadyActiveError(self._autopilot.task.task_id)
        if self._state not in _STARTABLE or self._paid_config is None:
            raise InvalidTransitionError(self._state.value, "start autopilot", "payment required")

        self._release_progress()
        self._starting = True
        try:
            task = await self._autopilot.start(self._paid_config, from_step=self._from_step)
        except AutopilotFailedError as e:
            self._last_error = e
            self._emit(AutopilotFailed, reason=e.reason, retryable=e.retryable)
            self._transition(CheckoutState.FAILED)
            raise
        finally:
            self._starting = False

        if task is not self._autopilot.task:
            return task
        if task.status is TaskStatus.CANCELLED:
            self._mark_cancelled(task)
            return task

        self._last_error = None
        self._doc_id = None
        self._emit(
            AutopilotStarted,
            task_id=task.task_id,
            verify_level=self._paid_config.verify_level.value,
            addons=self._paid_config.addons,
        )
        self._transition(CheckoutState.AUTOPILOT_RUNNING)
        self._progress_sub = self._autopilot.subscribe(self._on_progress)
        return task

    async def pause_autopilot(self) -> AutopilotTask:
        self._ensure_open("pause autopilot")
        if self._state is not CheckoutState.AUTOPILOT_RUNNING:
            raise InvalidTransitionError(self._state.value, "pause autopilot")
        task = await self._autopilot.pause()
        self._emit(AutopilotPaused, task_id=task.task_id)
        return task

    async def resume_autopilot(self) -> AutopilotTask:
        self._ensure_open("resume autopilot")
        if self._state is not CheckoutState.AUTOPILOT_RUNNING:
            raise InvalidTransitionError(self._state.value, "resume autopilot")
        task = await self._autopilot.resume()
        self._emit(AutopilotResumed, task_id=task.task_id)
        return task

    async def cancel_autopilot(self) -> AutopilotTask:
        """
        Cancel the running task.

        Raises:
            AlreadyTerminalError: the task already finished
            InvalidTransitionError: no task was ever started
        """
        self._ensure_open("cancel autopilot")
        task = self._autopilot.task
        if task is None:
            raise InvalidTransitionError(self._state.value, "cancel autopilot", "no autopilot task")
        if task.status.is_terminal:
            raise AlreadyTerminalError(task.status.value, task.task_id)

        task = await self._autopilot.cancel()
        self._mark_cancelled(task)
        return task

    async def wait_for_autopilot(self) -> Optional[AutopilotTask]:
        """Wait until the current task stops streaming (terminal or detached)."""
        return await self._autopilot.wait()

    # ------------------------------------------------------------------
    # Recovery and lifecycle
    # ------------------------------------------------------------------

    async def retry(self) -> CheckoutSnapshot:
        """
        Replay the smallest step that can recover from the last error.

        - lock expired: acquire a new lock (user confirms the new price)
        - payment failed: new intent for the same lock and confirm again
        - retryable autopilot failure: restart with the same config
        """
        self._ensure_open("retry")
        self._expire_stale_lock()

        if self._state is CheckoutState.QUOTED and self._lock_expired:
            self.request_lock()
        elif self._state is CheckoutState.PAYMENT_FAILED:
            await self.confirm_payment()
        elif self._state is CheckoutState.FAILED:
            error = self._last_error
            if isinstance(error, AutopilotFailedError) and not error.retryable:
                raise error
            await self.start_autopilot()
        else:
            raise InvalidTransitionError(self._state.value, "retry", "nothing to retry")
        return self.snapshot()

    async def dispose(self) -> None:
        """
        Release subscriptions and stop following progress.

        The backend task keeps running; cancelling it is a separate command.
        """
        if self._disposed:
            return
        self._disposed = True
        self._release_progress()
        await self._autopilot.detach()
        self._bus.clear()
        _logger.info(f"Checkout {self.project_id} disposed")

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _effective_params(self, params: Optional[ProjectParams]) -> ProjectParams:
        base = params or ProjectParams(word_count=0)
        return replace(base, verify_level=self._verify_level, addons=self._ledger.selection)

    def _ensure_open(self, action: str) -> None:
        if self._disposed:
            raise InvalidTransitionError("disposed", action)

    def _mutate(self, action: str, apply: Callable[[], bool]) -> None:
        self._ensure_open(action)
        self._expire_stale_lock()
        if self._state is CheckoutState.PAYMENT_PENDING or self._state in _PAID:
            raise InvalidTransitionError(
                self._state.value, action, "selection is fixed once payment is submitted"
            )
        if not apply():
            return
        if self._state in _LOCK_HOLDING:
            self._drop_lock("selection_changed")
        self._lock_expired = False
        self._last_error = None
        self._recompute()

    def _recompute(self) -> None:
        if self._params is None:
            return
        estimate = self._engine.estimate(self._effective_params(self._params))
        self._estimate = estimate
        self._emit(
            EstimateUpdated,
            price_min=estimate.price_range[0],
            price_max=estimate.price_range[1],
            verify_level=estimate.verify_level.value,
        )
        self._transition(CheckoutState.QUOTED)

    def _drop_lock(self, reason: str) -> None:
        lock = self._lock
        self._locks.invalidate(reason)
        self._lock = None
        self._intent = None
        self._outcome = None
        if lock is not None:
            self._emit(LockInvalidated, lock_id=lock.lock_id, reason=reason)

    def _expire_stale_lock(self) -> bool:
        """Lazy expiry check. Returns True if a lock expired just now."""
        if self._state not in _LOCK_HOLDING or self._lock is None:
            return False
        if self._locks.is_valid(self._lock):
            return False
        self._drop_lock("expired")
        self._lock_expired = True
        self._transition(CheckoutState.QUOTED)
        return True

    def _fail_payment(self, error: PaymentFailedError) -> None:
        self._last_error = error
        self._emit(PaymentFailed, intent_id=error.intent_id or "", reason=error.reason)
        self._transition(CheckoutState.PAYMENT_FAILED)

    def _on_progress(self, event: ProgressEvent) -> None:
        if not event.is_terminal:
            self._emit(
                AutopilotProgress,
                task_id=event.task_id,
                percent=event.percent,
                step=event.step,
                note=event.note,
            )
            return

        if event.status is TaskStatus.SUCCEEDED:
            self._doc_id = event.doc_id
            self._emit(AutopilotCompleted, task_id=event.task_id, doc_id=event.doc_id)
            self._transition(CheckoutState.DONE)
        elif event.status is TaskStatus.FAILED:
            error = AutopilotFailedError(
                event.error or "unknown error", retryable=event.retryable, task_id=event.task_id
            )
            self._last_error = error
            self._emit(
                AutopilotFailed, task_id=event.task_id, reason=error.reason, retryable=error.retryable
            )
            self._transition(CheckoutState.FAILED)
        elif event.status is TaskStatus.CANCELLED:
            task = self._autopilot.task
            if task is not None and task.task_id == event.task_id:
                self._mark_cancelled(task)

    def _mark_cancelled(self, task: Optional[AutopilotTask]) -> None:
        if self._state is CheckoutState.CANCELLED:
            return
        self._emit(AutopilotCancelled, task_id=task.task_id if task else "")
        self._transition(CheckoutState.CANCELLED)

    def _release_progress(self) -> None:
        if self._progress_sub is not None:
            self._progress_sub.cancel()
            self._progress_sub = None

    def _transition(self, new_state: CheckoutState) -> None:
        if new_state is self._state:
            return
        previous, self._state = self._state, new_state
        _logger.info(
            f"Checkout {self.project_id}: {previous.value} -> {new_state.value}",
            extra={"project_id": self.project_id},
        )
        self._emit(StateChanged, previous=previous.value, current=new_state.value)

    def _emit(self, event_cls, **kwargs) -> None:
        self._bus.publish(event_cls(project_id=self.project_id, occurred_at=self._clock.now(), **kwargs))
