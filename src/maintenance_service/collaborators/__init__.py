from __future__ import annotations

from maintenance_service.collaborators.base import AlertDispatcher, DeviceRegistry, TelemetryStore
from maintenance_service.collaborators.file_store import FileDeviceRepository
from maintenance_service.collaborators.memory import InMemoryDeviceRepository, LoggingAlertDispatcher
from maintenance_service.core.config import settings


def get_device_repository() -> FileDeviceRepository | InMemoryDeviceRepository:
    if settings.telemetry_data_dir is not None:
        return FileDeviceRepository(settings.telemetry_data_dir)
    return InMemoryDeviceRepository()


__all__ = [
    "AlertDispatcher",
    "DeviceRegistry",
    "TelemetryStore",
    "FileDeviceRepository",
    "InMemoryDeviceRepository",
    "LoggingAlertDispatcher",
    "get_device_repository",
]
