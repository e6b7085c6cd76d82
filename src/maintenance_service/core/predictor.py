from __future__ import annotations

import math
from dataclasses import dataclass, replace
from datetime import datetime, timedelta, timezone
from typing import Dict, List, Mapping, Optional

from .config import settings
from .domain import MaintenanceFeatureVector, ensure_utc
from .parameters import ParameterSet, ParameterStore
from .schemas import MaintenancePrediction

REASSURING_ACTION = "Device operating within normal parameters; no maintenance action required."
URGENT_ACTION = "Schedule maintenance immediately; failure risk is critical."
GENERIC_ACTION = "Schedule a general inspection of the device."

ACTIONS: Dict[str, str] = {
    "average_power_consumption": "Compare power draw against the device's rated consumption.",
    "power_consumption_std_dev": "Check power supply stability and load connections.",
    "average_voltage": "Verify supply voltage and wiring with a qualified electrician.",
    "average_current": "Check current draw against the device rating.",
    "average_temperature": "Inspect cooling/ventilation; device is running hot.",
    "average_vibration": "Inspect mounts, bearings and moving parts for wear.",
    "operating_hours": "Plan replacement of wear components; device is nearing rated service life.",
    "power_trend": "Investigate the drifting power draw for degrading components.",
    "temperature_trend": "Inspect cooling/ventilation; temperature is drifting.",
    "days_since_last_maintenance": "Schedule routine maintenance; the service interval has elapsed.",
    "anomaly_score": "Review recent telemetry anomalies for intermittent faults.",
}

TREND_FEATURES = ("power_trend", "temperature_trend")


def sigmoid(x: float) -> float:
    if x >= 0:
        return 1.0 / (1.0 + math.exp(-x))
    z = math.exp(x)
    return z / (1.0 + z)


def logit(p: float, eps: float = 1e-6) -> float:
    p = min(1.0 - eps, max(eps, p))
    return math.log(p / (1.0 - p))


def risk_inputs(f: MaintenanceFeatureVector, refs: Mapping[str, float]) -> Dict[str, float]:
    """Map raw features to non-negative, scale-free risk inputs keyed by feature name."""
    power_mean = abs(f.average_power_consumption)
    nominal_voltage = refs["nominal_voltage"]

    power_cv = f.power_consumption_std_dev / power_mean if power_mean > 1e-9 else 0.0
    if nominal_voltage > 0 and f.average_voltage > 0:
        voltage_dev = abs(f.average_voltage - nominal_voltage) / nominal_voltage
    else:
        voltage_dev = 0.0

    return {
        "average_power_consumption": 0.0,
        "power_consumption_std_dev": power_cv / refs["power_cv"],
        "average_voltage": voltage_dev / refs["voltage_tolerance"],
        "average_current": 0.0,
        "average_temperature": max(0.0, f.average_temperature - refs["nominal_temperature"])
        / refs["temperature_scale"],
        "average_vibration": max(0.0, f.average_vibration - refs["nominal_vibration"])
        / refs["vibration_scale"],
        "operating_hours": max(0.0, f.operating_hours) / refs["rated_hours"],
        "power_trend": abs(f.power_trend) / refs["trend_drift"],
        "temperature_trend": abs(f.temperature_trend) / refs["trend_drift"],
        "days_since_last_maintenance": f.days_since_last_maintenance
        / refs["service_interval_days"],
        "anomaly_score": min(1.0, max(0.0, f.anomaly_score)),
    }


@dataclass(frozen=True)
class PredictorConfig:
    actionable_threshold: float = 0.3
    critical_probability: float = 0.8
    forecast_horizon_days: int = 365
    operating_hours_per_day: float = 24.0
    min_feedback_samples: int = 20
    min_importance_share: float = 0.05
    max_recommendations: int = 5

    @classmethod
    def from_settings(cls) -> "PredictorConfig":
        return cls(
            actionable_threshold=settings.actionable_threshold,
            critical_probability=settings.critical_probability,
            forecast_horizon_days=settings.forecast_horizon_days,
            operating_hours_per_day=settings.operating_hours_per_day,
            min_feedback_samples=settings.min_feedback_samples,
            min_importance_share=settings.min_importance_share,
            max_recommendations=settings.max_recommendations,
        )


class FailurePredictor:
    """
    Interpretable logistic failure model.

    ``p = sigmoid(bias + sum(weight_i * input_i))`` where every input is a
    normalised, non-negative risk signal, so each term is directly that
    feature's contribution to the prediction.
    """

    def __init__(self, store: ParameterStore, config: PredictorConfig | None = None):
        self.store = store
        self.config = config or PredictorConfig.from_settings()

    def contributions(
        self, features: MaintenanceFeatureVector, params: ParameterSet
    ) -> Dict[str, float]:
        inputs = risk_inputs(features, params.references)
        return {name: w * inputs.get(name, 0.0) for name, w in params.weights.items() if w != 0.0}

    def probability(self, features: MaintenanceFeatureVector, params: ParameterSet) -> float:
        score = params.bias + sum(self.contributions(features, params).values())
        return min(1.0, max(0.0, sigmoid(score)))

    def confidence(self, params: ParameterSet) -> float:
        n = max(0, params.feedback_count)
        return n / (n + self.config.min_feedback_samples)

    @staticmethod
    def feature_importance(
        contributions: Mapping[str, float], params: ParameterSet
    ) -> Dict[str, float]:
        if not params.is_trained:
            return {}
        magnitudes = {k: abs(v) for k, v in contributions.items()}
        total = sum(magnitudes.values())
        if total <= 0.0:
            magnitudes = {k: abs(w) for k, w in params.weights.items() if w != 0.0}
            total = sum(magnitudes.values())
        ranked = sorted(magnitudes.items(), key=lambda kv: kv[1], reverse=True)
        return {k: v / total for k, v in ranked}

    def _project(
        self, features: MaintenanceFeatureVector, dominant: Optional[str], days: int
    ) -> MaintenanceFeatureVector:
        changes = {
            "days_since_last_maintenance": features.days_since_last_maintenance + days,
            "operating_hours": features.operating_hours + days * self.config.operating_hours_per_day,
        }
        if dominant == "temperature_trend":
            growth = max(0.0, 1.0 + features.temperature_trend * days)
            changes["average_temperature"] = features.average_temperature * growth
        elif dominant == "power_trend":
            growth = max(0.0, 1.0 + features.power_trend * days)
            changes["average_power_consumption"] = features.average_power_consumption * growth
            changes["average_current"] = features.average_current * growth
        return replace(features, **changes)

    def predicted_failure_date(
        self,
        features: MaintenanceFeatureVector,
        params: ParameterSet,
        probability: float,
        importance: Mapping[str, float],
        now: datetime,
    ) -> Optional[datetime]:
        if probability < self.config.actionable_threshold:
            return None
        if probability >= self.config.critical_probability:
            return now

        trends = [t for t in TREND_FEATURES if importance.get(t, 0.0) > 0.0]
        dominant = max(trends, key=lambda t: importance[t]) if trends else None

        for day in range(1, self.config.forecast_horizon_days + 1):
            projected = self._project(features, dominant, day)
            if self.probability(projected, params) >= self.config.critical_probability:
                return now + timedelta(days=day)
        return None

    def recommended_actions(
        self, probability: float, importance: Mapping[str, float]
    ) -> List[str]:
        if probability < self.config.actionable_threshold:
            return [REASSURING_ACTION]

        actions: List[str] = []
        if probability >= self.config.critical_probability:
            actions.append(URGENT_ACTION)
        for name, share in importance.items():
            if share < self.config.min_importance_share:
                break
            action = ACTIONS.get(name)
            if action and action not in actions:
                actions.append(action)
            if len(actions) >= self.config.max_recommendations:
                break
        if not actions:
            actions.append(GENERIC_ACTION)
        return actions

    def predict(
        self,
        device_id: str,
        device_name: str,
        device_type: str,
        features: MaintenanceFeatureVector,
        now: datetime | None = None,
    ) -> MaintenancePrediction:
        now = ensure_utc(now) if now is not None else datetime.now(timezone.utc)
        params = self.store.get(device_type)

        contributions = self.contributions(features, params)
        probability = min(1.0, max(0.0, sigmoid(params.bias + sum(contributions.values()))))
        importance = self.feature_importance(contributions, params)

        return MaintenancePrediction(
            device_id=device_id,
            device_name=device_name,
            device_type=device_type,
            failure_probability=probability,
            predicted_failure_date=self.predicted_failure_date(
                features, params, probability, importance, now
            ),
            confidence=self.confidence(params),
            recommended_actions=self.recommended_actions(probability, importance),
            feature_importance=importance,
            last_updated=now,
            model_version=params.version,
        )
