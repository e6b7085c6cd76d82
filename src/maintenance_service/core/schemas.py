from datetime import datetime
from pydantic import BaseModel, ConfigDict, Field, model_validator
from typing import Dict, List, Literal, Optional


class AnomalyPoint(BaseModel):
    model_config = ConfigDict(frozen=True)

    index: int = Field(..., ge=0, description="Position within the analyzed series.")
    value: float
    timestamp: datetime
    score: float = Field(..., ge=0.0)
    metric: Optional[str] = None


class AnomalyDetectionResult(BaseModel):
    model_config = ConfigDict(frozen=True)

    device_id: str
    has_anomalies: bool
    anomaly_count: int
    anomalies: List[AnomalyPoint] = Field(default_factory=list)
    confidence: float = Field(..., ge=0.0, le=1.0)
    detection_timestamp: datetime

    @model_validator(mode="after")
    def _check_counts(self):
        if self.anomaly_count != len(self.anomalies):
            raise ValueError("anomaly_count must equal the number of anomalies")
        if self.has_anomalies != (self.anomaly_count > 0):
            raise ValueError("has_anomalies must be true exactly when anomalies exist")
        return self

    @property
    def anomaly_score(self) -> float:
        # Confidence is 1.0 for a clean series, so it only means "anomalous" when points exist
        return self.confidence if self.has_anomalies else 0.0


class MaintenancePrediction(BaseModel):
    model_config = ConfigDict(frozen=True)

    device_id: str
    device_name: str
    device_type: str
    failure_probability: float = Field(..., ge=0.0, le=1.0)
    predicted_failure_date: Optional[datetime] = None
    confidence: float = Field(..., ge=0.0, le=1.0)
    recommended_actions: List[str] = Field(default_factory=list)
    feature_importance: Dict[str, float] = Field(default_factory=dict)
    last_updated: datetime
    model_version: int = 0


class HealthScoreResult(BaseModel):
    model_config = ConfigDict(frozen=True)

    device_id: str
    health_score: int = Field(..., ge=0, le=100)


class MaintenanceFeedback(BaseModel):
    model_config = ConfigDict(frozen=True)

    feedback_type: str = ""
    predicted_failure_probability: float = Field(..., ge=0.0, le=1.0)
    actual_outcome: bool = Field(..., description="True when the device actually failed.")
    notes: str = ""


class TrainResponse(BaseModel):
    status: Literal["trained", "skipped"]
    category: str
    version: int
    feedback_count: int


class HealthResponse(BaseModel):
    status: Literal["ok", "degraded"]
    telemetry_store: str
    trained_categories: int
