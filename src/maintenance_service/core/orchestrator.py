from __future__ import annotations

import enum
from contextlib import contextmanager
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Callable, Iterator, Optional, Sequence

from loguru import logger
from tenacity import Retrying, retry_if_exception_type, stop_after_attempt, wait_exponential

from ..collaborators.base import AlertDispatcher, DeviceRegistry, TelemetryStore
from .anomaly import AnomalyDetector
from .config import settings
from .domain import METRICS, AlertEvent, AlertSeverity, DeviceInfo, MaintenanceFeatureVector, TelemetrySample
from .errors import DataUnavailableError, MaintenanceEngineError
from .features import FeatureExtractor
from .health import HealthScorer
from .metrics import ALERTS, ANOMALIES_FLAGGED, FAILURE_PROBABILITY, OPERATIONS, TRAINING_RUNS
from .parameters import ParameterStore
from .predictor import FailurePredictor
from .reader import TelemetryWindowReader, to_series
from .schemas import AnomalyDetectionResult, HealthScoreResult, MaintenanceFeedback, MaintenancePrediction
from .trainer import ModelTrainer


class RunState(str, enum.Enum):
    idle = "Idle"
    fetching = "Fetching"
    extracting = "Extracting"
    detecting = "Detecting"
    predicting = "Predicting"
    scoring = "Scoring"
    done = "Done"
    failed = "Failed"


_ORDER = list(RunState)
TERMINAL = frozenset({RunState.done, RunState.failed})


@dataclass
class PipelineRun:
    """
    One request moving through the engine. States only move forward; an
    operation may skip stages it does not need (detection skips Predicting).
    """

    operation: str
    device_id: Optional[str]
    observer: Optional[Callable[["PipelineRun", RunState], None]] = None
    state: RunState = RunState.idle
    history: list[RunState] = field(default_factory=lambda: [RunState.idle])
    error: Optional[BaseException] = None

    def advance(self, state: RunState) -> None:
        if self.state in TERMINAL:
            raise RuntimeError(f"{self.operation} already finished in state {self.state.value}")
        if state is not RunState.failed and _ORDER.index(state) <= _ORDER.index(self.state):
            raise RuntimeError(f"Illegal transition {self.state.value} -> {state.value}")
        self.state = state
        self.history.append(state)
        logger.debug(
            {
                "event": "state_transition",
                "operation": self.operation,
                "device_id": self.device_id,
                "state": state.value,
            }
        )
        if self.observer is not None:
            self.observer(self, state)

    def fail(self, error: BaseException) -> None:
        self.error = error
        if self.state not in TERMINAL:
            self.advance(RunState.failed)


class PredictionOrchestrator:
    """Composes the engine components behind the four public operations."""

    def __init__(
        self,
        telemetry: TelemetryStore,
        registry: DeviceRegistry,
        store: ParameterStore | None = None,
        dispatcher: AlertDispatcher | None = None,
        *,
        reader: TelemetryWindowReader | None = None,
        extractor: FeatureExtractor | None = None,
        detector: AnomalyDetector | None = None,
        predictor: FailurePredictor | None = None,
        scorer: HealthScorer | None = None,
        trainer: ModelTrainer | None = None,
        observer: Callable[[PipelineRun, RunState], None] | None = None,
        clock: Callable[[], datetime] | None = None,
        retry_backoff_seconds: float | None = None,
    ):
        self.registry = registry
        self.store = store or ParameterStore(
            path=settings.parameter_store_path, fallback_category=settings.fallback_category
        )
        self.dispatcher = dispatcher
        self.reader = reader or TelemetryWindowReader(telemetry)
        self.extractor = extractor or FeatureExtractor()
        self.detector = detector or AnomalyDetector()
        self.predictor = predictor or FailurePredictor(self.store)
        self.scorer = scorer or HealthScorer()
        self.trainer = trainer or ModelTrainer(self.store)
        self.observer = observer
        self.clock = clock or (lambda: datetime.now(timezone.utc))
        self.retry_backoff_seconds = (
            settings.retry_backoff_seconds if retry_backoff_seconds is None else retry_backoff_seconds
        )

    def close(self) -> None:
        self.reader.close()

    @contextmanager
    def _run(self, operation: str, device_id: str | None) -> Iterator[PipelineRun]:
        run = PipelineRun(operation=operation, device_id=device_id, observer=self.observer)
        try:
            yield run
        except MaintenanceEngineError as e:
            e.with_context(device_id=device_id, operation=operation)
            run.fail(e)
            OPERATIONS.labels(operation, e.code).inc()
            logger.warning({"event": "operation_failed", **e.to_dict()})
            raise
        except Exception as e:
            run.fail(e)
            OPERATIONS.labels(operation, "error").inc()
            logger.exception(
                {"event": "operation_error", "operation": operation, "device_id": device_id, "error": str(e)}
            )
            raise
        else:
            run.advance(RunState.done)
            OPERATIONS.labels(operation, "ok").inc()

    # --- stages ---

    def _fetch(
        self, run: PipelineRun, device_id: str, window: timedelta
    ) -> tuple[DeviceInfo, tuple[TelemetrySample, ...]]:
        run.advance(RunState.fetching)
        info = self.registry.get_device_info(device_id)
        end = self.clock()
        start = end - window

        retrying = Retrying(
            retry=retry_if_exception_type(DataUnavailableError),
            stop=stop_after_attempt(2),
            wait=wait_exponential(multiplier=self.retry_backoff_seconds, max=8),
            before_sleep=lambda state: logger.warning(
                {"event": "telemetry_retry", "device_id": device_id, "attempt": state.attempt_number}
            ),
            reraise=True,
        )
        for attempt in retrying:
            with attempt:
                samples = self.reader.read(device_id, start, end)
        return info, samples

    def _extract(
        self, run: PipelineRun, samples: Sequence[TelemetrySample]
    ) -> MaintenanceFeatureVector:
        run.advance(RunState.extracting)
        return self.extractor.extract(samples, anomaly_score=0.0, now=self.clock())

    def _detect(
        self, run: PipelineRun, device_id: str, samples: Sequence[TelemetrySample], metric: str | None = None
    ) -> AnomalyDetectionResult:
        run.advance(RunState.detecting)
        if metric is not None:
            result = self.detector.detect(device_id, to_series(samples, metric), metric=metric)
        else:
            result = self.detector.detect_many(device_id, {m: to_series(samples, m) for m in METRICS})
        ANOMALIES_FLAGGED.inc(result.anomaly_count)
        return result

    def _predict(
        self, run: PipelineRun, info: DeviceInfo, features: MaintenanceFeatureVector
    ) -> MaintenancePrediction:
        run.advance(RunState.predicting)
        prediction = self.predictor.predict(
            info.device_id, info.name, info.category, features, now=self.clock()
        )
        FAILURE_PROBABILITY.labels(info.category).observe(prediction.failure_probability)
        return prediction

    def _analyse(
        self, run: PipelineRun, device_id: str
    ) -> tuple[MaintenanceFeatureVector, MaintenancePrediction]:
        info, samples = self._fetch(run, device_id, timedelta(days=settings.prediction_lookback_days))
        features = self._extract(run, samples)
        detection = self._detect(run, device_id, samples)
        features = features.with_anomaly_score(detection.anomaly_score)
        return features, self._predict(run, info, features)

    def _emit_alert(self, prediction: MaintenancePrediction) -> None:
        if self.dispatcher is None:
            return
        if prediction.failure_probability < self.predictor.config.actionable_threshold:
            return
        critical = prediction.failure_probability >= self.predictor.config.critical_probability
        message = (
            f"{prediction.device_name} ({prediction.device_type}) failure probability "
            f"{prediction.failure_probability:.0%}. {prediction.recommended_actions[0]}"
        )
        event = AlertEvent(
            device_id=prediction.device_id,
            message=message,
            severity=AlertSeverity.critical if critical else AlertSeverity.warning,
        )
        try:
            self.dispatcher.send_alert(event)
            ALERTS.labels("sent").inc()
        except Exception as e:
            ALERTS.labels("failed").inc()
            logger.exception(
                {"event": "alert_dispatch_failed", "device_id": prediction.device_id, "error": str(e)}
            )

    # --- public operations ---

    def predict_maintenance_needs(self, device_id: str) -> MaintenancePrediction:
        with self._run("predict_maintenance_needs", device_id) as run:
            _, prediction = self._analyse(run, device_id)
            self._emit_alert(prediction)
        return prediction

    def detect_anomalies(
        self,
        device_id: str,
        lookback_window: timedelta | None = None,
        metric: str | None = None,
    ) -> AnomalyDetectionResult:
        if metric is not None and metric not in METRICS:
            raise ValueError(f"Unknown telemetry metric '{metric}'; expected one of {list(METRICS)}")
        window = lookback_window or timedelta(hours=settings.anomaly_lookback_hours)
        with self._run("detect_anomalies", device_id) as run:
            _, samples = self._fetch(run, device_id, window)
            result = self._detect(run, device_id, samples, metric=metric)
        return result

    def calculate_health_score(self, device_id: str) -> HealthScoreResult:
        with self._run("calculate_health_score", device_id) as run:
            features, prediction = self._analyse(run, device_id)
            run.advance(RunState.scoring)
            result = HealthScoreResult(
                device_id=device_id,
                health_score=self.scorer.score(features, prediction.failure_probability),
            )
        return result

    def train_model(self, device_category: str, feedback_batch: Sequence[MaintenanceFeedback]) -> None:
        try:
            with self._run("train_model", None):
                self.trainer.train(device_category, list(feedback_batch))
        except MaintenanceEngineError as e:
            TRAINING_RUNS.labels(device_category, e.code).inc()
            raise
        TRAINING_RUNS.labels(device_category, "ok" if feedback_batch else "skipped").inc()

    def scan_devices(self, device_ids: Sequence[str] | None = None) -> list[MaintenancePrediction]:
        """Predict for every device (or the given ones), riskiest first.

        A device that cannot be analysed is logged and left out; it does not
        abort the sweep.
        """
        ids = list(device_ids) if device_ids is not None else self.registry.list_devices()
        predictions = []
        for device_id in ids:
            try:
                predictions.append(self.predict_maintenance_needs(device_id))
            except MaintenanceEngineError as e:
                logger.warning({"event": "scan_device_skipped", **e.to_dict()})
        return sorted(predictions, key=lambda p: p.failure_probability, reverse=True)
