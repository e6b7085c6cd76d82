from __future__ import annotations

import threading
from datetime import datetime
from typing import Iterable

from loguru import logger

from maintenance_service.collaborators.base import AlertDispatcher, DeviceRegistry, TelemetryStore
from maintenance_service.core.domain import AlertEvent, DeviceInfo, TelemetrySample, ensure_utc
from maintenance_service.core.errors import DeviceNotFoundError


class InMemoryDeviceRepository(TelemetryStore, DeviceRegistry):
    """Device metadata and telemetry held in process memory (demos and tests)."""

    def __init__(self) -> None:
        self._devices: dict[str, DeviceInfo] = {}
        self._samples: dict[str, list[TelemetrySample]] = {}
        self._lock = threading.Lock()

    def add_device(self, info: DeviceInfo, samples: Iterable[TelemetrySample] = ()) -> None:
        with self._lock:
            self._devices[info.device_id] = info
            self._samples[info.device_id] = list(samples)

    def append_samples(self, device_id: str, samples: Iterable[TelemetrySample]) -> None:
        with self._lock:
            if device_id not in self._devices:
                raise DeviceNotFoundError(f"Unknown device '{device_id}'", device_id=device_id)
            self._samples[device_id] = [*self._samples[device_id], *samples]

    def get_device_info(self, device_id: str) -> DeviceInfo:
        info = self._devices.get(device_id)
        if info is None:
            raise DeviceNotFoundError(f"Unknown device '{device_id}'", device_id=device_id)
        return info

    def list_devices(self) -> list[str]:
        return sorted(self._devices)

    def fetch_historical_samples(
        self, device_id: str, start: datetime, end: datetime
    ) -> list[TelemetrySample]:
        if device_id not in self._devices:
            raise DeviceNotFoundError(f"Unknown device '{device_id}'", device_id=device_id)
        start, end = ensure_utc(start), ensure_utc(end)
        return [
            s for s in self._samples[device_id] if start <= ensure_utc(s.timestamp) <= end
        ]


class LoggingAlertDispatcher(AlertDispatcher):
    """Writes alerts to the log and keeps them for inspection."""

    def __init__(self) -> None:
        self.sent: list[AlertEvent] = []

    def send_alert(self, event: AlertEvent) -> None:
        logger.warning(
            {
                "event": "device_alert",
                "device_id": event.device_id,
                "alert_type": event.alert_type,
                "severity": event.severity.value,
                "message": event.message,
            }
        )
        self.sent.append(event)
