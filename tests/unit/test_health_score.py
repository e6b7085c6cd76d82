from dataclasses import replace

import pytest

from maintenance_service.core.domain import MaintenanceFeatureVector
from maintenance_service.core.health import HealthScorer, HealthScorerConfig

NOMINAL = MaintenanceFeatureVector(
    average_power_consumption=100.0,
    power_consumption_std_dev=1.0,
    average_voltage=230.0,
    average_current=0.43,
    average_temperature=25.0,
    average_vibration=0.5,
    operating_hours=1000.0,
    power_trend=0.0,
    temperature_trend=0.0,
    days_since_last_maintenance=10.0,
    anomaly_score=0.0,
)


@pytest.fixture
def scorer() -> HealthScorer:
    return HealthScorer(HealthScorerConfig())


def test_nominal_device_scores_full_marks(scorer) -> None:
    assert scorer.score(NOMINAL, 0.0) == 100


def test_failure_probability_dominates(scorer) -> None:
    assert scorer.score(NOMINAL, 0.5) == 65


def test_anomaly_and_condition_penalties(scorer) -> None:
    f = replace(NOMINAL, anomaly_score=1.0, average_temperature=64.0, average_vibration=3.0)
    # 100 - 15 (anomaly) - 2 (4 degrees over) - 5 (1 unit over)
    assert scorer.score(f, 0.0) == 78


def test_condition_penalties_are_capped(scorer) -> None:
    f = replace(NOMINAL, average_temperature=200.0, average_vibration=50.0)
    assert scorer.score(f, 0.0) == 80


def test_score_is_clamped_to_zero(scorer) -> None:
    f = replace(NOMINAL, anomaly_score=1.0, average_temperature=-40.0, average_vibration=10.0)
    assert scorer.score(f, 1.0) == 0


def test_out_of_range_probability_is_clamped(scorer) -> None:
    assert scorer.score(NOMINAL, -0.5) == 100
    assert scorer.score(NOMINAL, 2.0) == 30


@pytest.mark.parametrize(
    "score,band", [(100, "excellent"), (80, "good"), (50, "fair"), (30, "poor"), (0, "critical")]
)
def test_bands(score, band) -> None:
    assert HealthScorer.band(score) == band


def test_score_never_rises_with_probability(scorer) -> None:
    scores = [scorer.score(NOMINAL, p / 10) for p in range(11)]
    assert scores == sorted(scores, reverse=True)
