"""
Notification dispatchers for terminals and headless deployments.

Both implement the ``NotificationDispatcher`` protocol from
``nurseflow.services.alert_evaluator``.
"""

import structlog
from rich.console import Console
from rich.panel import Panel

from nurseflow.services.alert_evaluator import NotificationPermission
from nurseflow.services.result import Result

logger = structlog.get_logger(__name__)


class LoggingNotificationDispatcher:
    """Emits each notification as a structured log event."""

    def __init__(
        self, permission: NotificationPermission = NotificationPermission.GRANTED
    ) -> None:
        self.permission = permission
        self.logger = logger.bind(component="logging_dispatcher")

    async def notify(self, title: str, body: str, dedupe_tag: str) -> Result[None, Exception]:
        if self.permission is not NotificationPermission.GRANTED:
            return Result.err(PermissionError(f"notifications are {self.permission.value}"))
        self.logger.warning("medication_notification", title=title, body=body, tag=dedupe_tag)
        return Result.ok(None)

    async def request_permission(self) -> NotificationPermission:
        if self.permission is NotificationPermission.DEFAULT:
            self.permission = NotificationPermission.GRANTED
        return self.permission


class ConsoleNotificationDispatcher:
    """Shows notifications as panels on a rich console. Repeated tags are shown once."""

    def __init__(self, console: Console | None = None) -> None:
        self.console = console or Console()
        self.permission = (
            NotificationPermission.GRANTED
            if self.console.is_terminal
            else NotificationPermission.DEFAULT
        )
        self._shown_tags: set[str] = set()

    async def notify(self, title: str, body: str, dedupe_tag: str) -> Result[None, Exception]:
        if self.permission is not NotificationPermission.GRANTED:
            return Result.err(PermissionError(f"notifications are {self.permission.value}"))
        if dedupe_tag in self._shown_tags:
            return Result.ok(None)

        try:
            self.console.print(Panel(body, title=f"💊 {title}", border_style="yellow"))
        except OSError as e:
            return Result.err(e)

        self._shown_tags.add(dedupe_tag)
        return Result.ok(None)

    async def request_permission(self) -> NotificationPermission:
        if self.permission is NotificationPermission.DEFAULT:
            self.permission = NotificationPermission.GRANTED
            self.console.print("[green]NurseFlow notifications enabled.[/green]")
        return self.permission
