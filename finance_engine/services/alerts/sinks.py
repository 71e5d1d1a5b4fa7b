"""
Alert Sink Implementations

- CollectingAlertSink keeps alerts in memory (tests, request-scoped use)
- StructlogAlertSink writes each alert as a structured log line
"""

from typing import Optional

import structlog

from finance_engine.models.alert import Alert, AlertKind
from finance_engine.services.alerts.interface import AlertSink


class CollectingAlertSink(AlertSink):
    """Keeps every emitted alert in a list."""

    def __init__(self):
        self.alerts: list[Alert] = []

    async def emit(self, alert: Alert) -> None:
        self.alerts.append(alert)

    def of_kind(self, kind: AlertKind) -> list[Alert]:
        return [a for a in self.alerts if a.kind == kind]

    def clear(self) -> None:
        self.alerts.clear()


class StructlogAlertSink(AlertSink):
    """Logs alerts; the default sink when nothing else is wired."""

    def __init__(self, logger: Optional[structlog.BoundLogger] = None):
        self._logger = logger or structlog.get_logger("finance_engine.alerts")

    async def emit(self, alert: Alert) -> None:
        self._logger.warning(
            "alert",
            alert_id=str(alert.alert_id),
            kind=alert.kind.value,
            entity_id=str(alert.entity_id),
            user_id=alert.user_id,
            message=alert.message,
            dedup_key=alert.dedup_key(),
            **{f"ctx_{k}": str(v) for k, v in alert.context.items()},
        )
