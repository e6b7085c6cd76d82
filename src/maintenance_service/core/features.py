from __future__ import annotations

from datetime import datetime, timezone
from typing import Sequence

import numpy as np

from .domain import MaintenanceFeatureVector, TelemetrySample, ensure_utc
from .errors import InsufficientDataError

SECONDS_PER_DAY = 86400.0


def _mean_std(values: np.ndarray) -> tuple[float, float]:
    mean = float(values.mean())
    std = float(values.std(ddof=1)) if values.size >= 2 else 0.0
    return mean, std


def normalized_trend(elapsed_days: np.ndarray, values: np.ndarray, mean: float) -> float:
    """OLS slope of ``values`` against elapsed days, as a fraction of the mean per day."""
    if np.unique(elapsed_days).size < 2 or abs(mean) < 1e-9:
        return 0.0
    x = elapsed_days - elapsed_days.mean()
    slope = float(np.dot(x, values - values.mean()) / np.dot(x, x))
    return slope / abs(mean)


class FeatureExtractor:
    """Turns an ordered telemetry window into a fixed-shape feature vector.

    Pure function of its input: holds no state between calls.
    """

    def extract(
        self,
        samples: Sequence[TelemetrySample],
        anomaly_score: float = 0.0,
        now: datetime | None = None,
    ) -> MaintenanceFeatureVector:
        if not samples:
            raise InsufficientDataError("Cannot extract features from an empty telemetry window")

        now = ensure_utc(now) if now is not None else datetime.now(timezone.utc)
        timestamps = [ensure_utc(s.timestamp) for s in samples]
        first = timestamps[0]
        elapsed_days = np.array(
            [(ts - first).total_seconds() / SECONDS_PER_DAY for ts in timestamps], dtype=float
        )

        power = np.array([s.power_consumption for s in samples], dtype=float)
        voltage = np.array([s.voltage for s in samples], dtype=float)
        current = np.array([s.current for s in samples], dtype=float)
        temperature = np.array([s.temperature for s in samples], dtype=float)
        vibration = np.array([s.vibration for s in samples], dtype=float)
        hours = np.array([s.operating_hours for s in samples], dtype=float)

        power_mean, power_std = _mean_std(power)
        temp_mean, _ = _mean_std(temperature)

        # Cumulative counter; a reset or glitch makes it non-monotonic
        if hours.size >= 2 and np.any(np.diff(hours) < 0):
            operating_hours = float(hours.max())
        else:
            operating_hours = float(hours[-1])

        maintained = [ts for ts, s in zip(timestamps, samples) if s.maintenance_flag]
        if maintained:
            days_since = (now - max(maintained)).total_seconds() / SECONDS_PER_DAY
        else:
            days_since = float(elapsed_days[-1])

        return MaintenanceFeatureVector(
            average_power_consumption=power_mean,
            power_consumption_std_dev=power_std,
            average_voltage=_mean_std(voltage)[0],
            average_current=_mean_std(current)[0],
            average_temperature=temp_mean,
            average_vibration=_mean_std(vibration)[0],
            operating_hours=operating_hours,
            power_trend=normalized_trend(elapsed_days, power, power_mean),
            temperature_trend=normalized_trend(elapsed_days, temperature, temp_mean),
            days_since_last_maintenance=max(0.0, float(days_since)),
            anomaly_score=float(anomaly_score),
        )
