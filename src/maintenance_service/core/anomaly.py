from __future__ import annotations

import math
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Mapping, Sequence, Tuple

import numpy as np

from .config import settings
from .errors import InsufficientDataError
from .schemas import AnomalyDetectionResult, AnomalyPoint

SeriesPoint = Tuple[datetime, float]


@dataclass(frozen=True)
class DetectorConfig:
    min_points: int = 10
    window_size: int = 20
    min_baseline: int = 5
    z_threshold: float = 3.0
    epsilon: float = 1e-9
    relative_tolerance: float = 1e-3
    confidence_k: float = 1.0

    @classmethod
    def from_settings(cls) -> "DetectorConfig":
        return cls(
            min_points=settings.anomaly_min_points,
            window_size=settings.anomaly_window_size,
            min_baseline=settings.anomaly_min_baseline,
            z_threshold=settings.anomaly_z_threshold,
            epsilon=settings.anomaly_epsilon,
            relative_tolerance=settings.anomaly_relative_tolerance,
            confidence_k=settings.anomaly_confidence_k,
        )


class AnomalyDetector:
    """
    Trailing-window z-score detector.

    Each point is compared against the ``window_size`` points that precede it.
    Points with fewer than ``min_baseline`` predecessors are never flagged, so
    the first few samples of a window only serve as baseline.
    """

    def __init__(self, config: DetectorConfig | None = None):
        self.config = config or DetectorConfig.from_settings()

    def scores(self, values: np.ndarray) -> np.ndarray:
        cfg = self.config
        out = np.zeros(values.size, dtype=float)
        for i in range(cfg.min_baseline, values.size):
            baseline = values[max(0, i - cfg.window_size) : i]
            mean = baseline.mean()
            std = baseline.std(ddof=1) if baseline.size >= 2 else 0.0
            # Spread below this floor is treated as sensor quantisation, not signal
            floor = max(cfg.epsilon, cfg.relative_tolerance * abs(mean))
            out[i] = abs(values[i] - mean) / max(std, floor)
        return out

    def confidence(self, points: Sequence[AnomalyPoint], n: int) -> float:
        if not points:
            return 1.0
        total_excess = sum(p.score - self.config.z_threshold for p in points)
        conf = 1.0 - math.exp(-self.config.confidence_k * total_excess / math.sqrt(n))
        return float(min(1.0, max(0.0, conf)))

    def _flag(self, series: Sequence[SeriesPoint], metric: str | None) -> list[AnomalyPoint]:
        if len(series) < self.config.min_points:
            raise InsufficientDataError(
                f"Anomaly detection needs at least {self.config.min_points} points, got {len(series)}"
            )
        values = np.array([v for _, v in series], dtype=float)
        scores = self.scores(values)
        return [
            AnomalyPoint(
                index=i,
                value=float(values[i]),
                timestamp=series[i][0],
                score=float(scores[i]),
                metric=metric,
            )
            for i in np.flatnonzero(scores > self.config.z_threshold)
        ]

    def _result(self, device_id: str, points: list[AnomalyPoint], n: int) -> AnomalyDetectionResult:
        return AnomalyDetectionResult(
            device_id=device_id,
            has_anomalies=bool(points),
            anomaly_count=len(points),
            anomalies=points,
            confidence=self.confidence(points, n),
            detection_timestamp=datetime.now(timezone.utc),
        )

    def detect(
        self, device_id: str, series: Sequence[SeriesPoint], metric: str | None = None
    ) -> AnomalyDetectionResult:
        points = self._flag(series, metric)
        return self._result(device_id, points, len(series))

    def detect_many(
        self, device_id: str, series_by_metric: Mapping[str, Sequence[SeriesPoint]]
    ) -> AnomalyDetectionResult:
        """Detect on several channels of one window and merge by position.

        All channels must come from the same samples, so index ``i`` refers to
        the same instant everywhere. Where channels disagree, the point with the
        highest score is kept.
        """
        if not series_by_metric:
            raise InsufficientDataError("No telemetry series supplied for anomaly detection")
        lengths = {len(s) for s in series_by_metric.values()}
        if len(lengths) > 1:
            raise ValueError("All series must share the same length to be merged")

        best: dict[int, AnomalyPoint] = {}
        for metric, series in series_by_metric.items():
            for point in self._flag(series, metric):
                current = best.get(point.index)
                if current is None or point.score > current.score:
                    best[point.index] = point

        merged = [best[i] for i in sorted(best)]
        return self._result(device_id, merged, lengths.pop())
