from __future__ import annotations


class MaintenanceEngineError(Exception):
    """Base class for every failure the engine surfaces to callers.

    ``device_id`` and ``operation`` are filled in by the orchestrator before
    the error leaves the engine; components raise without them.
    """

    code = "engine_error"

    def __init__(self, message: str, *, device_id: str | None = None, operation: str | None = None):
        super().__init__(message)
        self.message = message
        self.device_id = device_id
        self.operation = operation

    def with_context(self, *, device_id: str | None, operation: str) -> "MaintenanceEngineError":
        if self.device_id is None:
            self.device_id = device_id
        if self.operation is None:
            self.operation = operation
        return self

    def to_dict(self) -> dict[str, str | None]:
        return {
            "code": self.code,
            "message": self.message,
            "device_id": self.device_id,
            "operation": self.operation,
        }

    def __str__(self) -> str:
        parts = [self.message]
        if self.operation:
            parts.append(f"operation={self.operation}")
        if self.device_id is not None:
            parts.append(f"device_id={self.device_id}")
        return " ".join(parts)


class DeviceNotFoundError(MaintenanceEngineError):
    code = "device_not_found"


class InsufficientDataError(MaintenanceEngineError):
    code = "insufficient_data"


class UnknownDeviceCategoryError(MaintenanceEngineError):
    code = "unknown_device_category"


class DataUnavailableError(MaintenanceEngineError):
    code = "data_unavailable"


class TrainingDivergenceError(MaintenanceEngineError):
    code = "training_divergence"
