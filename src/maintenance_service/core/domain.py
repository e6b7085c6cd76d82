from __future__ import annotations

import enum
from dataclasses import asdict, dataclass, fields, replace
from datetime import datetime, timezone


class DeviceCategory(str, enum.Enum):
    ClimateControl = "ClimateControl"
    LightingSystem = "LightingSystem"
    ElectricalSwitch = "ElectricalSwitch"
    EnergyMonitoring = "EnergyMonitoring"
    SolarPanelSystem = "SolarPanelSystem"
    SolarInverterUnit = "SolarInverterUnit"
    BatteryStorageSystem = "BatteryStorageSystem"
    SmartOutlet = "SmartOutlet"
    MotionDetector = "MotionDetector"
    DoorAccessSensor = "DoorAccessSensor"
    WindowSecuritySensor = "WindowSecuritySensor"
    SmartLockSystem = "SmartLockSystem"
    SecurityCameraSystem = "SecurityCameraSystem"
    VoiceAssistantDevice = "VoiceAssistantDevice"
    AirConditioningUnit = "AirConditioningUnit"
    WaterHeatingSystem = "WaterHeatingSystem"
    RefrigerationAppliance = "RefrigerationAppliance"
    LaundryWashingMachine = "LaundryWashingMachine"
    ClothesDryingMachine = "ClothesDryingMachine"
    DishwashingAppliance = "DishwashingAppliance"
    ElectricVehicleCharger = "ElectricVehicleCharger"
    HeatPumpSystem = "HeatPumpSystem"
    ElectricityMeterDevice = "ElectricityMeterDevice"
    WeatherMonitoringStation = "WeatherMonitoringStation"
    GenericIotDevice = "GenericIotDevice"


class AlertSeverity(str, enum.Enum):
    info = "Info"
    warning = "Warning"
    critical = "Critical"


# Telemetry channels the detector can analyse, keyed by sample attribute
METRICS = ("power_consumption", "voltage", "current", "temperature", "vibration")


@dataclass(frozen=True)
class TelemetrySample:
    timestamp: datetime
    power_consumption: float
    voltage: float
    current: float
    power_factor: float
    temperature: float
    vibration: float
    operating_hours: float
    maintenance_flag: bool = False

    def value(self, metric: str) -> float:
        if metric not in METRICS:
            raise ValueError(f"Unknown telemetry metric: {metric}")
        return float(getattr(self, metric))


@dataclass(frozen=True)
class MaintenanceFeatureVector:
    average_power_consumption: float
    power_consumption_std_dev: float
    average_voltage: float
    average_current: float
    average_temperature: float
    average_vibration: float
    operating_hours: float
    power_trend: float
    temperature_trend: float
    days_since_last_maintenance: float
    anomaly_score: float

    def with_anomaly_score(self, anomaly_score: float) -> "MaintenanceFeatureVector":
        return replace(self, anomaly_score=float(anomaly_score))

    def to_dict(self) -> dict[str, float]:
        return asdict(self)


FEATURE_NAMES = tuple(f.name for f in fields(MaintenanceFeatureVector))


@dataclass(frozen=True)
class DeviceInfo:
    device_id: str
    name: str
    category: str


@dataclass(frozen=True)
class AlertEvent:
    device_id: str
    message: str
    severity: AlertSeverity = AlertSeverity.warning
    alert_type: str = "PredictiveMaintenance"


def ensure_utc(ts: datetime) -> datetime:
    # Naive timestamps from collaborators are taken to be UTC
    if ts.tzinfo is None:
        return ts.replace(tzinfo=timezone.utc)
    return ts.astimezone(timezone.utc)
