"""Alert sink interface and implementations."""

from finance_engine.services.alerts.interface import AlertDeliveryError, AlertSink
from finance_engine.services.alerts.sinks import CollectingAlertSink, StructlogAlertSink

__all__ = [
    "AlertDeliveryError",
    "AlertSink",
    "CollectingAlertSink",
    "StructlogAlertSink",
]
