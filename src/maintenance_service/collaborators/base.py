from __future__ import annotations

from abc import ABC, abstractmethod
from datetime import datetime

from maintenance_service.core.domain import AlertEvent, DeviceInfo, TelemetrySample


class TelemetryStore(ABC):
    @abstractmethod
    def fetch_historical_samples(
        self, device_id: str, start: datetime, end: datetime
    ) -> list[TelemetrySample]:
        """Samples with ``start <= timestamp <= end``; raises DeviceNotFoundError."""
        raise NotImplementedError


class DeviceRegistry(ABC):
    @abstractmethod
    def get_device_info(self, device_id: str) -> DeviceInfo:
        raise NotImplementedError

    @abstractmethod
    def list_devices(self) -> list[str]:
        raise NotImplementedError


class AlertDispatcher(ABC):
    @abstractmethod
    def send_alert(self, event: AlertEvent) -> None:
        raise NotImplementedError
