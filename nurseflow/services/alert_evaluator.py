"""
Due-dose alerting.

Key patterns:
- Protocol-based notification dispatcher (easy to fake in tests)
- Read-only over the ward snapshot: alerting never changes schedule state
- One alert per due-instant, tracked with structured (medication, due time) keys
- Async polling loop with an immediate first evaluation
"""

import asyncio
import time
from collections.abc import AsyncIterator, Callable
from dataclasses import dataclass
from datetime import datetime, timedelta
from enum import Enum
from typing import Protocol

import structlog
from pydantic import BaseModel, Field

from nurseflow.domain.models import DueInstant, Medication, WardSnapshot, utc_now
from nurseflow.services.result import Result

logger = structlog.get_logger(__name__)

UNKNOWN_PATIENT_LABEL = "Unknown Patient"


class NotificationPermission(str, Enum):
    """Platform permission to show notifications."""

    DEFAULT = "default"  # not asked yet
    GRANTED = "granted"
    DENIED = "denied"
    UNSUPPORTED = "unsupported"


_PERMISSION_ADVICE = {
    NotificationPermission.DEFAULT: (
        "Notifications are not enabled yet. Enable them in Settings to get due-dose alerts."
    ),
    NotificationPermission.DENIED: (
        "Notification permission was denied. Allow notifications for NurseFlow in your "
        "system or browser settings to receive due-dose alerts."
    ),
    NotificationPermission.UNSUPPORTED: (
        "This platform does not support system notifications. Keep the dashboard open "
        "to follow due doses."
    ),
}


def permission_advisory(permission: NotificationPermission) -> str | None:
    """User-facing advice for a permission state, or None when alerts work."""
    return _PERMISSION_ADVICE.get(permission)


class NotificationDispatcher(Protocol):
    """
    Delivers OS-level notifications.

    ``notify`` reports platform rejection as an error result; it may also
    raise, which the evaluator treats the same way.
    """

    permission: NotificationPermission

    async def notify(self, title: str, body: str, dedupe_tag: str) -> Result[None, Exception]:
        ...

    async def request_permission(self) -> NotificationPermission:
        ...


class AlertEvaluatorConfig(BaseModel):
    """Polling configuration with validation and sensible defaults."""

    check_interval_seconds: float = Field(
        default=30.0, gt=0.0, description="Interval between evaluations in seconds."
    )
    alert_window_hours: float = Field(
        default=24.0,
        gt=0.0,
        description="Doses overdue for longer than this are skipped silently.",
    )


@dataclass(frozen=True)
class DueAlert:
    """A notification that should be sent for one due-instant."""

    instant: DueInstant
    title: str
    body: str


def _format_due_time(due_at: datetime) -> str:
    return due_at.astimezone().strftime("%H:%M")


def build_alert(medication: Medication, snapshot: WardSnapshot) -> DueAlert:
    if medication.next_due_at is None:
        raise ValueError(f"medication {medication.id} has no pending due time")
    patient = snapshot.patients.get(medication.patient_id)
    patient_name = patient.name if patient else UNKNOWN_PATIENT_LABEL
    return DueAlert(
        instant=DueInstant(medication.id, medication.next_due_at),
        title=f"Medication Due: {medication.name}",
        body=(
            f"{patient_name} - {medication.dose} {medication.route}\n"
            f"Due at {_format_due_time(medication.next_due_at)}"
        ),
    )


class AlertEvaluator:
    """
    Decides which due doses get a notification and sends it.

    A due-instant is alert-eligible while ``0 <= now - due < window``. Once a
    notification for it is delivered the instant is remembered for the life
    of the evaluator; a failed delivery is not remembered, so the next tick
    retries it.
    """

    def __init__(
        self,
        config: AlertEvaluatorConfig,
        dispatcher: NotificationDispatcher,
        source: Callable[[], WardSnapshot],
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        self.config = config
        self.dispatcher = dispatcher
        self._source = source
        self._clock = clock
        self._fired: set[DueInstant] = set()
        self._tick_lock: asyncio.Lock | None = None
        self._is_running = False
        self.logger = logger.bind(component="alert_evaluator")

    @property
    def fired(self) -> frozenset[DueInstant]:
        return frozenset(self._fired)

    @property
    def window(self) -> timedelta:
        return timedelta(hours=self.config.alert_window_hours)

    def pending_alerts(self, snapshot: WardSnapshot, now: datetime) -> list[DueAlert]:
        """Alert-eligible doses that have not been notified yet."""
        alerts = []
        for medication in snapshot.medications.values():
            if medication.next_due_at is None or not medication.is_active:
                continue

            age = now - medication.next_due_at
            if age < timedelta(0) or age >= self.window:
                continue

            if DueInstant(medication.id, medication.next_due_at) in self._fired:
                continue
            alerts.append(build_alert(medication, snapshot))
        return alerts

    async def _deliver(self, alert: DueAlert) -> bool:
        try:
            result = await self.dispatcher.notify(alert.title, alert.body, alert.instant.tag)
        except Exception as e:
            result = Result.err(e)

        if result.is_err():
            self.logger.error(
                "dose_alert_failed",
                medication_id=alert.instant.medication_id,
                due_at=alert.instant.due_at.isoformat(),
                error=str(result.unwrap_err()),
            )
            return False
        return True

    async def evaluate_once(self, now: datetime | None = None) -> list[DueInstant]:
        """
        Run one tick. Returns the instants notified during this tick.

        Ticks never overlap: a call made while another tick is delivering
        waits for it and then sees what it fired.
        """
        if self._tick_lock is None:
            self._tick_lock = asyncio.Lock()

        async with self._tick_lock:
            if self.dispatcher.permission is not NotificationPermission.GRANTED:
                self.logger.debug(
                    "dose_alerts_disabled", permission=self.dispatcher.permission.value
                )
                return []

            now = now or self._clock()
            snapshot = self._source()
            sent: list[DueInstant] = []

            for alert in self.pending_alerts(snapshot, now):
                if await self._deliver(alert):
                    self._fired.add(alert.instant)
                    sent.append(alert.instant)
                    self.logger.info(
                        "dose_alert_sent",
                        medication_id=alert.instant.medication_id,
                        due_at=alert.instant.due_at.isoformat(),
                    )

            return sent

    async def run_continuously(self) -> AsyncIterator[list[DueInstant]]:
        """
        Evaluate immediately, then every ``check_interval_seconds`` until stopped.

        Yields the instants notified on each tick (possibly empty).
        """
        self._is_running = True
        self.logger.info(
            "dose_alerts_started", interval_seconds=self.config.check_interval_seconds
        )

        try:
            while self._is_running:
                tick_start = time.perf_counter()

                try:
                    yield await self.evaluate_once()
                except Exception as e:
                    self.logger.exception("dose_alert_tick_failed", error=str(e))

                elapsed = time.perf_counter() - tick_start
                sleep_time = max(0.0, self.config.check_interval_seconds - elapsed)
                if sleep_time > 0 and self._is_running:
                    await asyncio.sleep(sleep_time)
        finally:
            self._is_running = False
            self.logger.info("dose_alerts_stopped")

    def stop(self) -> None:
        self._is_running = False
