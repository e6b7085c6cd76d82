from __future__ import annotations

import math
import threading
from collections import defaultdict
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Dict, List, Sequence

import mlflow
import numpy as np
from loguru import logger

from .config import settings
from .errors import TrainingDivergenceError
from .parameters import ParameterSet, ParameterStore
from .predictor import logit
from .schemas import MaintenanceFeedback


@dataclass(frozen=True)
class TrainerConfig:
    learning_rate: float = 0.1
    epochs: int = 50
    pseudo_count: float = 5.0
    max_bias_step: float = 1.0
    slope_bounds: tuple[float, float] = (0.5, 2.0)
    slope_tolerance: float = 0.05
    max_abs_bias: float = 20.0
    max_abs_weight: float = 50.0

    @classmethod
    def from_settings(cls) -> "TrainerConfig":
        return cls(
            learning_rate=settings.learning_rate,
            epochs=settings.training_epochs,
            pseudo_count=settings.training_pseudo_count,
            max_bias_step=settings.max_bias_step,
            slope_bounds=tuple(settings.calibration_slope_bounds),
            slope_tolerance=settings.calibration_slope_tolerance,
            max_abs_bias=settings.max_abs_bias,
            max_abs_weight=settings.max_abs_weight,
        )


def fit_calibration(
    predicted: np.ndarray, outcomes: np.ndarray, cfg: TrainerConfig, fit_slope: bool = True
) -> tuple[float, float]:
    """Fit ``q = sigmoid(a * logit(p) + b)`` by gradient ascent on the log-likelihood.

    With ``fit_slope=False`` only the offset ``b`` is fitted and ``a`` stays 1.
    """
    z = np.array([logit(float(p)) for p in predicted], dtype=float)
    a, b = 1.0, 0.0
    lo, hi = cfg.slope_bounds
    for _ in range(cfg.epochs):
        q = 1.0 / (1.0 + np.exp(-(a * z + b)))
        residual = outcomes - q
        if fit_slope:
            a = float(np.clip(a + cfg.learning_rate * np.mean(residual * z), lo, hi))
        b = float(np.clip(b + cfg.learning_rate * np.mean(residual), -cfg.max_bias_step, cfg.max_bias_step))
    return a, b


class ModelTrainer:
    """
    Recalibrates a category's parameters from prediction feedback.

    Feedback only carries the predicted probability and the outcome, so the
    update is a slope/offset correction on the model's logit, folded back into
    the weights and bias. The correction is shrunk by a pseudo-count so a small
    batch moves the model only part of the way.
    """

    def __init__(self, store: ParameterStore, config: TrainerConfig | None = None):
        self.store = store
        self.config = config or TrainerConfig.from_settings()
        self._archive: Dict[str, List[MaintenanceFeedback]] = defaultdict(list)
        self._archive_lock = threading.Lock()

    def archived(self, category: str) -> list[MaintenanceFeedback]:
        with self._archive_lock:
            return list(self._archive.get(category, []))

    def _check_bounds(self, params: ParameterSet) -> None:
        values = [params.bias, *params.weights.values()]
        if not all(math.isfinite(v) for v in values):
            raise TrainingDivergenceError(f"Non-finite parameters for category '{params.category}'")
        if abs(params.bias) > self.config.max_abs_bias:
            raise TrainingDivergenceError(
                f"Bias {params.bias:.3f} outside +/-{self.config.max_abs_bias} for '{params.category}'"
            )
        if any(abs(w) > self.config.max_abs_weight for w in params.weights.values()):
            raise TrainingDivergenceError(
                f"Weight outside +/-{self.config.max_abs_weight} for '{params.category}'"
            )

    def _updated(self, current: ParameterSet, feedback: Sequence[MaintenanceFeedback]) -> ParameterSet:
        predicted = np.array([f.predicted_failure_probability for f in feedback], dtype=float)
        outcomes = np.array([1.0 if f.actual_outcome else 0.0 for f in feedback], dtype=float)
        # A one-sided batch moves every logit the same way: offset only
        bias_error = float(outcomes.mean() - predicted.mean())
        directional = abs(bias_error) > self.config.slope_tolerance
        a, b = fit_calibration(predicted, outcomes, self.config, fit_slope=not directional)
        if directional:
            b = max(b, 0.0) if bias_error > 0 else min(b, 0.0)

        n = len(feedback)
        shrink = n / (n + self.config.pseudo_count)
        a = 1.0 + shrink * (a - 1.0)
        b = shrink * b

        return current.evolve(
            weights={k: a * w for k, w in current.weights.items()},
            bias=a * current.bias + b,
            feedback_count=current.feedback_count + n,
            version=current.version + 1,
            trained_at=datetime.now(timezone.utc),
        )

    def train(self, category: str, feedback: Sequence[MaintenanceFeedback]) -> ParameterSet:
        if not feedback:
            logger.warning({"event": "training_skipped", "category": category, "reason": "empty feedback"})
            return self.store.get(category)

        with self.store.write_lock(category):
            current = self.store.get(category)
            if current.category != category:
                # Fallback parameters: start this category from a copy of them
                current = current.evolve(category=category)
            updated = self._updated(current, feedback)
            try:
                self._check_bounds(updated)
            except TrainingDivergenceError:
                logger.error(
                    {
                        "event": "training_diverged",
                        "category": category,
                        "retained_version": current.version,
                    }
                )
                raise
            self.store.swap(updated)

        with self._archive_lock:
            self._archive[category].extend(feedback)

        logger.info(
            {
                "event": "model_trained",
                "category": category,
                "version": updated.version,
                "batch_size": len(feedback),
                "bias": round(updated.bias, 4),
            }
        )
        self._log_run(current, updated, feedback)
        return updated

    def _log_run(
        self, before: ParameterSet, after: ParameterSet, feedback: Sequence[MaintenanceFeedback]
    ) -> None:
        if not settings.mlflow_tracking_uri:
            return
        failures = sum(1 for f in feedback if f.actual_outcome)
        with mlflow.start_run(run_name=f"train-{after.category}-v{after.version}"):
            mlflow.log_params({"category": after.category, "version": after.version})
            mlflow.log_metrics(
                {
                    "batch_size": float(len(feedback)),
                    "failure_rate": failures / len(feedback),
                    "bias_before": before.bias,
                    "bias_after": after.bias,
                    "feedback_count": float(after.feedback_count),
                }
            )
