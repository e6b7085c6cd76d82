import threading

import pytest

from maintenance_service.core.domain import DeviceCategory
from maintenance_service.core.errors import UnknownDeviceCategoryError
from maintenance_service.core.parameters import DEFAULT_BIAS, ParameterStore


def test_every_category_has_defaults() -> None:
    store = ParameterStore()
    for category in DeviceCategory:
        params = store.get(category.value)
        assert params.category == category.value
        assert params.bias == DEFAULT_BIAS
        assert params.version == 0


def test_category_overrides_apply() -> None:
    store = ParameterStore()
    assert store.get("WaterHeatingSystem").references["nominal_temperature"] == 75.0
    assert store.get("ClimateControl").references["nominal_temperature"] == 40.0


def test_unknown_category_without_fallback() -> None:
    with pytest.raises(UnknownDeviceCategoryError):
        ParameterStore().get("Toaster")


def test_unknown_category_uses_fallback() -> None:
    store = ParameterStore(fallback_category="GenericIotDevice")
    assert store.get("Toaster").category == "GenericIotDevice"


def test_swap_replaces_without_touching_held_snapshot() -> None:
    store = ParameterStore()
    before = store.get("SmartOutlet")
    store.swap(before.evolve(bias=-2.0, version=1))

    assert before.bias == DEFAULT_BIAS
    assert store.get("SmartOutlet").bias == -2.0
    assert store.trained_categories() == ["SmartOutlet"]


def test_evolve_copies_mappings() -> None:
    params = ParameterStore().get("SmartOutlet")
    weights = dict(params.weights)
    changed = params.evolve(weights=weights)
    weights["anomaly_score"] = 99.0
    assert changed.weights["anomaly_score"] == params.weights["anomaly_score"]


def test_save_and_load_round_trip(tmp_path) -> None:
    path = tmp_path / "models" / "parameters.joblib"
    store = ParameterStore(path=path)
    store.swap(store.get("HeatPumpSystem").evolve(bias=-3.5, version=2, feedback_count=7))
    assert path.exists()

    restored = ParameterStore(path=path)
    assert restored.load() == 1
    params = restored.get("HeatPumpSystem")
    assert params.bias == -3.5
    assert params.version == 2
    assert params.feedback_count == 7


def test_load_missing_file_is_a_no_op(tmp_path) -> None:
    assert ParameterStore(path=tmp_path / "missing.joblib").load() == 0


def test_write_lock_is_per_category() -> None:
    store = ParameterStore()
    entered = threading.Event()

    def other_category():
        with store.write_lock("SmartOutlet"):
            entered.set()

    with store.write_lock("HeatPumpSystem"):
        t = threading.Thread(target=other_category)
        t.start()
        assert entered.wait(timeout=2.0)
        t.join()
