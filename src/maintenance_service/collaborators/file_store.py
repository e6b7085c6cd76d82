from __future__ import annotations

import json
from datetime import datetime
from pathlib import Path
from typing import Any, Iterable

import pandas as pd

from maintenance_service.collaborators.base import DeviceRegistry, TelemetryStore
from maintenance_service.core.domain import DeviceInfo, TelemetrySample, ensure_utc
from maintenance_service.core.errors import DeviceNotFoundError

SAMPLE_COLUMNS = (
    "timestamp",
    "power_consumption",
    "voltage",
    "current",
    "power_factor",
    "temperature",
    "vibration",
    "operating_hours",
    "maintenance_flag",
)


def _read_records(path: Path) -> Iterable[dict]:
    if path.suffix.lower() == ".csv":
        df = pd.read_csv(path)
        for _, row in df.iterrows():
            yield row.to_dict()
        return

    if path.suffix.lower() == ".json":
        data = json.loads(path.read_text(encoding="utf-8"))
        if isinstance(data, dict) and "records" in data:
            data = data["records"]
        if not isinstance(data, list):
            raise ValueError("JSON telemetry must be a list or {records: [...]} object.")
        for rec in data:
            yield rec
        return

    raise ValueError(f"Unsupported telemetry format: {path}")


def _as_bool(value: Any) -> bool:
    if isinstance(value, str):
        return value.strip().lower() in {"1", "true", "yes", "y"}
    if value is None or (isinstance(value, float) and pd.isna(value)):
        return False
    return bool(value)


def _to_sample(rec: dict) -> TelemetrySample:
    missing = [c for c in SAMPLE_COLUMNS if c not in rec and c != "maintenance_flag"]
    if missing:
        raise ValueError(f"Telemetry record missing fields: {missing}")
    return TelemetrySample(
        timestamp=pd.to_datetime(rec["timestamp"], utc=True).to_pydatetime(),
        power_consumption=float(rec["power_consumption"]),
        voltage=float(rec["voltage"]),
        current=float(rec["current"]),
        power_factor=float(rec["power_factor"]),
        temperature=float(rec["temperature"]),
        vibration=float(rec["vibration"]),
        operating_hours=float(rec["operating_hours"]),
        maintenance_flag=_as_bool(rec.get("maintenance_flag", False)),
    )


class FileDeviceRepository(TelemetryStore, DeviceRegistry):
    """
    Devices and telemetry exported to a directory:

        <data_dir>/devices.json            [{"device_id", "name", "category"}, ...]
        <data_dir>/telemetry/<id>.csv      one row per sample (or <id>.json)

    Files are re-read on every call so exports can be refreshed in place.
    """

    def __init__(self, data_dir: str | Path):
        self.data_dir = Path(data_dir)

    def _devices(self) -> dict[str, DeviceInfo]:
        path = self.data_dir / "devices.json"
        if not path.exists():
            return {}
        devices = {}
        for rec in _read_records(path):
            info = DeviceInfo(
                device_id=str(rec["device_id"]), name=str(rec["name"]), category=str(rec["category"])
            )
            devices[info.device_id] = info
        return devices

    def _telemetry_path(self, device_id: str) -> Path | None:
        for suffix in (".csv", ".json"):
            p = self.data_dir / "telemetry" / f"{device_id}{suffix}"
            if p.exists():
                return p
        return None

    def get_device_info(self, device_id: str) -> DeviceInfo:
        info = self._devices().get(device_id)
        if info is None:
            raise DeviceNotFoundError(f"Unknown device '{device_id}'", device_id=device_id)
        return info

    def list_devices(self) -> list[str]:
        return sorted(self._devices())

    def fetch_historical_samples(
        self, device_id: str, start: datetime, end: datetime
    ) -> list[TelemetrySample]:
        self.get_device_info(device_id)
        path = self._telemetry_path(device_id)
        if path is None:
            return []
        start, end = ensure_utc(start), ensure_utc(end)
        samples = (_to_sample(rec) for rec in _read_records(path))
        return [s for s in samples if start <= s.timestamp <= end]
