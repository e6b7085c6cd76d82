from __future__ import annotations

import threading
from contextlib import contextmanager
from dataclasses import dataclass, field, replace
from datetime import datetime
from pathlib import Path
from typing import Dict, Iterator, Mapping, Optional

import joblib
from loguru import logger

from .domain import DeviceCategory
from .errors import UnknownDeviceCategoryError

DEFAULT_BIAS = -4.0

DEFAULT_WEIGHTS: Dict[str, float] = {
    "power_consumption_std_dev": 0.5,
    "average_voltage": 0.4,
    "average_temperature": 1.2,
    "average_vibration": 0.8,
    "operating_hours": 0.8,
    "power_trend": 0.6,
    "temperature_trend": 0.9,
    "days_since_last_maintenance": 0.6,
    "anomaly_score": 2.5,
}

DEFAULT_REFERENCES: Dict[str, float] = {
    "power_cv": 0.10,  # coefficient of variation treated as one unit of risk
    "nominal_voltage": 230.0,  # <= 0 disables the voltage input
    "voltage_tolerance": 0.05,
    "nominal_temperature": 40.0,
    "temperature_scale": 20.0,
    "nominal_vibration": 1.0,
    "vibration_scale": 1.0,
    "rated_hours": 20000.0,
    "trend_drift": 0.01,  # fraction of the mean per day
    "service_interval_days": 180.0,
}

CATEGORY_REFERENCES: Dict[DeviceCategory, Dict[str, float]] = {
    DeviceCategory.SolarPanelSystem: {"nominal_temperature": 65.0, "nominal_voltage": 0.0},
    DeviceCategory.SolarInverterUnit: {"nominal_temperature": 55.0},
    DeviceCategory.BatteryStorageSystem: {"nominal_temperature": 35.0, "nominal_voltage": 48.0},
    DeviceCategory.WaterHeatingSystem: {"nominal_temperature": 75.0},
    DeviceCategory.HeatPumpSystem: {"nominal_temperature": 55.0, "nominal_vibration": 2.0},
    DeviceCategory.AirConditioningUnit: {"nominal_vibration": 2.0},
    DeviceCategory.LaundryWashingMachine: {"nominal_vibration": 3.0, "rated_hours": 5000.0},
    DeviceCategory.ClothesDryingMachine: {"nominal_temperature": 60.0, "rated_hours": 5000.0},
    DeviceCategory.DishwashingAppliance: {"nominal_temperature": 65.0, "rated_hours": 5000.0},
    DeviceCategory.LightingSystem: {"rated_hours": 25000.0},
    DeviceCategory.ElectricVehicleCharger: {"nominal_temperature": 50.0},
}


@dataclass(frozen=True)
class ParameterSet:
    """One category's model parameters. Never mutated; build a new one with ``evolve``."""

    category: str
    weights: Mapping[str, float]
    bias: float
    references: Mapping[str, float]
    feedback_count: int = 0
    version: int = 0
    trained_at: Optional[datetime] = None

    @property
    def is_trained(self) -> bool:
        return any(w != 0.0 for w in self.weights.values())

    def evolve(self, **changes) -> "ParameterSet":
        for name in ("weights", "references"):
            if name in changes:
                changes[name] = dict(changes[name])
        return replace(self, **changes)


def default_parameter_set(category: DeviceCategory) -> ParameterSet:
    references = dict(DEFAULT_REFERENCES)
    references.update(CATEGORY_REFERENCES.get(category, {}))
    return ParameterSet(
        category=category.value,
        weights=dict(DEFAULT_WEIGHTS),
        bias=DEFAULT_BIAS,
        references=references,
    )


def default_parameter_sets() -> Dict[str, ParameterSet]:
    return {c.value: default_parameter_set(c) for c in DeviceCategory}


@dataclass
class ParameterStore:
    """
    Versioned copy-on-write store of per-category parameter sets.

    Readers get whichever frozen set is current when they call ``get``; the
    trained mapping is replaced wholesale on every swap, so a reader never
    observes a half-applied update. Writers take ``write_lock(category)``.
    """

    defaults: Dict[str, ParameterSet] = field(default_factory=default_parameter_sets)
    path: Optional[Path] = None
    fallback_category: Optional[str] = None
    _trained: Dict[str, ParameterSet] = field(default_factory=dict, init=False, repr=False)
    _locks: Dict[str, threading.Lock] = field(default_factory=dict, init=False, repr=False)
    _locks_guard: threading.Lock = field(default_factory=threading.Lock, init=False, repr=False)
    _swap_lock: threading.RLock = field(default_factory=threading.RLock, init=False, repr=False)

    def get(self, category: str) -> ParameterSet:
        trained = self._trained
        if category in trained:
            return trained[category]
        if category in self.defaults:
            return self.defaults[category]
        if self.fallback_category and self.fallback_category != category:
            fallback = trained.get(self.fallback_category) or self.defaults.get(
                self.fallback_category
            )
            if fallback is not None:
                return fallback
        raise UnknownDeviceCategoryError(
            f"No trained or default parameters for device category '{category}'"
        )

    def trained_categories(self) -> list[str]:
        return sorted(self._trained)

    @contextmanager
    def write_lock(self, category: str) -> Iterator[None]:
        with self._locks_guard:
            lock = self._locks.setdefault(category, threading.Lock())
        with lock:
            yield

    def swap(self, params: ParameterSet) -> None:
        # Categories are locked separately; the shared mapping is replaced under one store lock
        with self._swap_lock:
            trained = dict(self._trained)
            trained[params.category] = params
            self._trained = trained
            if self.path is not None:
                self.save()
        logger.info(
            {
                "event": "parameters_swapped",
                "category": params.category,
                "version": params.version,
                "feedback_count": params.feedback_count,
            }
        )

    def save(self, path: Path | None = None) -> None:
        p = Path(path or self.path)
        p.parent.mkdir(parents=True, exist_ok=True)
        with self._swap_lock:
            joblib.dump(dict(self._trained), p)

    def load(self, path: Path | None = None) -> int:
        p = Path(path or self.path)
        if not p.exists():
            return 0
        loaded = joblib.load(p)
        if not isinstance(loaded, dict) or not all(
            isinstance(v, ParameterSet) for v in loaded.values()
        ):
            raise ValueError(f"Unsupported parameter store format in {p}")
        with self._swap_lock:
            self._trained = dict(loaded)
        logger.info({"event": "parameters_loaded", "path": str(p), "categories": len(loaded)})
        return len(loaded)
