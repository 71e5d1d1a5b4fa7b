"""
Abstract Alert Sink

The engine produces alerts; delivering them (email, push, in-app banner)
is somebody else's job. A sink receives each alert exactly once per
emission and is free to deduplicate using Alert.dedup_key().
"""

from abc import ABC, abstractmethod

from finance_engine.models.alert import Alert


class AlertSink(ABC):
    """Destination for alerts."""

    @abstractmethod
    async def emit(self, alert: Alert) -> None:
        """
        Hand an alert to the sink.

        Args:
            alert: The alert payload

        Raises:
            AlertDeliveryError: If the sink could not accept the alert
        """
        pass


class AlertDeliveryError(Exception):
    """The sink rejected or failed to accept an alert."""
    pass
