from __future__ import annotations

from dataclasses import dataclass

from .config import settings
from .domain import MaintenanceFeatureVector

BANDS = ((90, "excellent"), (75, "good"), (50, "fair"), (25, "poor"), (0, "critical"))


@dataclass(frozen=True)
class HealthScorerConfig:
    failure_weight: float = 70.0
    anomaly_weight: float = 15.0
    temperature_min: float = 0.0
    temperature_max: float = 60.0
    temperature_penalty_per_degree: float = 0.5
    max_temperature_penalty: float = 10.0
    vibration_max: float = 2.0
    vibration_penalty_per_unit: float = 5.0
    max_vibration_penalty: float = 10.0

    @classmethod
    def from_settings(cls) -> "HealthScorerConfig":
        return cls(
            failure_weight=settings.health_failure_weight,
            anomaly_weight=settings.health_anomaly_weight,
            temperature_min=settings.nominal_temperature_min,
            temperature_max=settings.nominal_temperature_max,
            temperature_penalty_per_degree=settings.temperature_penalty_per_degree,
            max_temperature_penalty=settings.max_temperature_penalty,
            vibration_max=settings.nominal_vibration_max,
            vibration_penalty_per_unit=settings.vibration_penalty_per_unit,
            max_vibration_penalty=settings.max_vibration_penalty,
        )


class HealthScorer:
    def __init__(self, config: HealthScorerConfig | None = None):
        self.config = config or HealthScorerConfig.from_settings()

    def _condition_penalty(self, features: MaintenanceFeatureVector) -> float:
        cfg = self.config
        t = features.average_temperature
        out_of_range = max(0.0, t - cfg.temperature_max, cfg.temperature_min - t)
        temperature = min(cfg.max_temperature_penalty, out_of_range * cfg.temperature_penalty_per_degree)
        excess_vibration = max(0.0, features.average_vibration - cfg.vibration_max)
        vibration = min(cfg.max_vibration_penalty, excess_vibration * cfg.vibration_penalty_per_unit)
        return temperature + vibration

    def score(self, features: MaintenanceFeatureVector, failure_probability: float) -> int:
        p = min(1.0, max(0.0, failure_probability))
        anomaly = min(1.0, max(0.0, features.anomaly_score))
        raw = (
            100.0
            - self.config.failure_weight * p
            - self.config.anomaly_weight * anomaly
            - self._condition_penalty(features)
        )
        return int(min(100, max(0, round(raw))))

    @staticmethod
    def band(score: int) -> str:
        for floor, label in BANDS:
            if score >= floor:
                return label
        return "critical"
