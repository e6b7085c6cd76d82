from __future__ import annotations

from pathlib import Path

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_prefix="PDM_", case_sensitive=False)

    service_name: str = "maintenance-service"
    api_prefix: str = "/v1"
    log_level: str = "INFO"

    # Absolute path to: <repo>/src/maintenance_service
    service_root: Path = Field(default_factory=lambda: Path(__file__).resolve().parents[1])

    # Optional persistence (relative paths are resolved against service_root)
    parameter_store_path: Path | None = None
    telemetry_data_dir: Path | None = None

    # Telemetry reads
    reader_timeout_seconds: float = 5.0
    reader_max_workers: int = 8
    retry_backoff_seconds: float = 0.5
    prediction_lookback_days: float = 30.0
    anomaly_lookback_hours: float = 24.0 * 7

    # Anomaly detection
    anomaly_min_points: int = 10
    anomaly_window_size: int = 20
    anomaly_min_baseline: int = 5
    anomaly_z_threshold: float = 3.0
    anomaly_epsilon: float = 1e-9
    anomaly_relative_tolerance: float = 1e-3
    anomaly_confidence_k: float = 1.0

    # Failure prediction
    actionable_threshold: float = 0.3
    critical_probability: float = 0.8
    forecast_horizon_days: int = 365
    operating_hours_per_day: float = 24.0
    min_feedback_samples: int = 20
    min_importance_share: float = 0.05
    max_recommendations: int = 5
    fallback_category: str | None = None

    # Health score
    health_failure_weight: float = 70.0
    health_anomaly_weight: float = 15.0
    nominal_temperature_min: float = 0.0
    nominal_temperature_max: float = 60.0
    temperature_penalty_per_degree: float = 0.5
    max_temperature_penalty: float = 10.0
    nominal_vibration_max: float = 2.0
    vibration_penalty_per_unit: float = 5.0
    max_vibration_penalty: float = 10.0

    # Training
    learning_rate: float = 0.1
    training_epochs: int = 50
    training_pseudo_count: float = 5.0
    max_bias_step: float = 1.0
    calibration_slope_bounds: tuple[float, float] = (0.5, 2.0)
    calibration_slope_tolerance: float = 0.05
    max_abs_bias: float = 20.0
    max_abs_weight: float = 50.0

    # MLflow
    mlflow_tracking_uri: str | None = None
    mlflow_experiment: str = "maintenance-service"

    def model_post_init(self, __context) -> None:
        for name in ("parameter_store_path", "telemetry_data_dir"):
            p: Path | None = getattr(self, name)
            if p is not None and not p.is_absolute():
                setattr(self, name, (self.service_root / p))


settings = Settings()
