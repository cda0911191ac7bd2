"""
Integration service wiring the ward together:

1. Load the stored snapshot and keep it in a WardService
2. Persist every committed change wholesale
3. Poll due doses and dispatch alerts
4. Answer drug questions on demand

The alert loop and drug lookups run on the event loop; ward mutations stay
synchronous and never wait on either.
"""

import asyncio
from datetime import timedelta

import structlog

from adapters.storage.json_store import JsonSnapshotRepository, SnapshotPersister
from nurseflow.config import AppConfig, get_config
from nurseflow.services.alert_evaluator import (
    AlertEvaluator,
    AlertEvaluatorConfig,
    NotificationDispatcher,
    NotificationPermission,
    permission_advisory,
)
from nurseflow.services.drug_info import DrugInfoService
from nurseflow.services.ward import WardService

logger = structlog.get_logger(__name__)


class IntegratedWardService:
    """Main service combining storage, scheduling, alerting and drug info."""

    def __init__(
        self,
        dispatcher: NotificationDispatcher,
        config: AppConfig | None = None,
        repository: JsonSnapshotRepository | None = None,
        drug_info: DrugInfoService | None = None,
    ) -> None:
        self.config = config or get_config()
        self.logger = logger.bind(component="integrated_ward")

        self.repository = repository or JsonSnapshotRepository(self.config.storage.snapshot_path)
        self.ward = WardService(
            self.repository.load(),
            soon_threshold=timedelta(minutes=self.config.alerts.soon_threshold_minutes),
        )
        self.persister = SnapshotPersister(self.repository)
        self.ward.add_commit_listener(self.persister)

        self.dispatcher = dispatcher
        self.alerts = AlertEvaluator(
            AlertEvaluatorConfig(
                check_interval_seconds=self.config.alerts.check_interval_seconds,
                alert_window_hours=self.config.alerts.alert_window_hours,
            ),
            dispatcher,
            source=lambda: self.ward.snapshot,
        )
        self.drug_info = drug_info or DrugInfoService(self.config.ai_provider)
        self._alert_task: asyncio.Task[None] | None = None

    async def enable_notifications(self) -> str | None:
        """Ask for notification permission. Returns advice if alerts stay off."""
        try:
            permission = await self.dispatcher.request_permission()
        except Exception as e:
            self.logger.error("notification_permission_request_failed", error=str(e))
            permission = NotificationPermission.UNSUPPORTED

        self.logger.info("notification_permission", permission=permission.value)
        return permission_advisory(permission)

    async def _alert_loop(self) -> None:
        async for sent in self.alerts.run_continuously():
            if sent:
                self.logger.info("dose_alerts_tick", sent=len(sent))

    def start_alerts(self) -> None:
        if self._alert_task is None or self._alert_task.done():
            self._alert_task = asyncio.create_task(self._alert_loop())

    async def stop(self) -> None:
        """Stop alerting and wait for pending snapshot writes."""
        self.alerts.stop()
        if self._alert_task is not None:
            self._alert_task.cancel()
            try:
                await self._alert_task
            except asyncio.CancelledError:
                pass
            self._alert_task = None
        await self.persister.flush()
        self.logger.info("integrated_ward_stopped")


async def main() -> None:
    """Small end-to-end walk through the ward flow."""
    from rich.console import Console
    from rich.table import Table

    from adapters.notifications.console import ConsoleNotificationDispatcher
    from nurseflow.config import configure_logging
    from nurseflow.domain.models import DoseStatus, Frequency, MedicationDraft, utc_now

    configure_logging()
    console = Console()
    service = IntegratedWardService(ConsoleNotificationDispatcher(console))

    advice = await service.enable_notifications()
    if advice:
        console.print(f"[yellow]{advice}[/yellow]")

    ward = service.ward
    patient = ward.add_patient("Jane Doe", "12B")
    stat = ward.add_medication(
        patient.id,
        MedicationDraft(name="Ondansetron", dose="4mg", route="IV", frequency=Frequency.STAT),
    )
    qid = ward.add_medication(
        patient.id,
        MedicationDraft(name="Paracetamol", dose="1g", route="PO", frequency=Frequency.QID),
    )
    if stat is None or qid is None:
        return
    ward.log_dose(qid.id, DoseStatus.SERVED, utc_now() - timedelta(hours=7))

    await service.alerts.evaluate_once()

    table = Table(title="Upcoming doses")
    for column in ("Patient", "Medication", "Due"):
        table.add_column(column)
    for dose in ward.upcoming():
        due = dose.medication.next_due_at
        table.add_row(dose.patient_name, dose.medication.name, due.isoformat() if due else "")
    console.print(table)

    console.print(await service.drug_info.summarize("Paracetamol"))
    await service.stop()


if __name__ == "__main__":
    asyncio.run(main())
