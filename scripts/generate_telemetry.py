from __future__ import annotations

import json
import random
from dataclasses import asdict, dataclass
from datetime import datetime, timedelta, timezone
from pathlib import Path

import pandas as pd


@dataclass
class DeviceRecord:
    device_id: str
    name: str
    category: str


@dataclass
class SampleRecord:
    timestamp: str
    power_consumption: float
    voltage: float
    current: float
    power_factor: float
    temperature: float
    vibration: float
    operating_hours: float
    maintenance_flag: bool


PROFILES = {
    "ClimateControl": {"power": 1200.0, "temp": 35.0, "vibration": 0.6},
    "RefrigerationAppliance": {"power": 150.0, "temp": 30.0, "vibration": 0.4},
    "LaundryWashingMachine": {"power": 500.0, "temp": 30.0, "vibration": 1.8},
    "HeatPumpSystem": {"power": 2500.0, "temp": 45.0, "vibration": 1.2},
    "SmartOutlet": {"power": 60.0, "temp": 25.0, "vibration": 0.0},
    "ElectricVehicleCharger": {"power": 7000.0, "temp": 38.0, "vibration": 0.1},
}

# degrading devices drift upward in temperature and power and lose their service history
CONDITIONS = ["healthy", "healthy", "degrading"]


def _samples(category: str, condition: str, days: int, start: datetime) -> list[SampleRecord]:
    profile = PROFILES[category]
    hours = random.uniform(500, 15000)
    n = days * 24
    service_at = random.randint(0, n - 1) if condition == "healthy" else None

    out: list[SampleRecord] = []
    for i in range(n):
        drift = 1.0 + (0.02 * i / 24 if condition == "degrading" else 0.0)
        power = profile["power"] * drift * random.uniform(0.98, 1.02)
        voltage = random.gauss(230.0, 1.5)
        out.append(
            SampleRecord(
                timestamp=(start + timedelta(hours=i)).isoformat(),
                power_consumption=round(power, 2),
                voltage=round(voltage, 2),
                current=round(power / voltage, 3),
                power_factor=round(random.uniform(0.9, 0.99), 3),
                temperature=round(profile["temp"] * drift + random.uniform(-0.5, 0.5), 2),
                vibration=round(profile["vibration"] * drift + random.uniform(0.0, 0.05), 3),
                operating_hours=round(hours + i, 1),
                maintenance_flag=i == service_at,
            )
        )
    return out


def generate(
    n_devices: int = 12, days: int = 30, seed: int | None = None
) -> tuple[list[DeviceRecord], dict[str, list[SampleRecord]]]:
    if seed is not None:
        random.seed(seed)
    start = (datetime.now(timezone.utc) - timedelta(days=days)).replace(
        minute=0, second=0, microsecond=0
    )

    devices: list[DeviceRecord] = []
    telemetry: dict[str, list[SampleRecord]] = {}
    for i in range(n_devices):
        category = random.choice(list(PROFILES))
        condition = random.choice(CONDITIONS)
        device = DeviceRecord(
            device_id=f"dev-{i:03d}",
            name=f"{category} #{i}",
            category=category,
        )
        devices.append(device)
        telemetry[device.device_id] = _samples(category, condition, days, start)
    return devices, telemetry


def main() -> None:
    out_dir = Path("data/telemetry_export")
    (out_dir / "telemetry").mkdir(parents=True, exist_ok=True)

    devices, telemetry = generate()

    (out_dir / "devices.json").write_text(
        json.dumps([asdict(d) for d in devices], indent=2),
        encoding="utf-8",
    )
    for device_id, samples in telemetry.items():
        df = pd.DataFrame([asdict(s) for s in samples])
        df.to_csv(out_dir / "telemetry" / f"{device_id}.csv", index=False)

    print(f"Wrote {len(devices)} devices to {out_dir}")


if __name__ == "__main__":
    main()
