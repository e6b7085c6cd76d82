from __future__ import annotations

from typing import Set

from prometheus_client.parser import text_string_to_metric_families

from maintenance_service.core.metrics import OPERATIONS, REQUESTS


def _counter_value(metrics_text: str, metric_name: str, required_label_values: Set[str]) -> float:
    candidate_sample_names = {metric_name, f"{metric_name}_total"}

    for family in text_string_to_metric_families(metrics_text):
        for sample in family.samples:
            if sample.name not in candidate_sample_names:
                continue
            if required_label_values.issubset(set(sample.labels.values())):
                return float(sample.value)
    return 0.0


def _has_histogram_bucket(metrics_text: str, required_label_values: Set[str]) -> bool:
    for family in text_string_to_metric_families(metrics_text):
        for sample in family.samples:
            if sample.name.endswith("_bucket") and required_label_values.issubset(
                set(sample.labels.values())
            ):
                return True
    return False


def test_request_counter_increments(client) -> None:
    assert client.get("/health").status_code == 200
    metrics_1 = client.get("/metrics").text

    health_labels = {"/health", "GET", "200"}
    c1 = _counter_value(metrics_1, REQUESTS._name, health_labels)
    assert c1 >= 1
    assert _has_histogram_bucket(
        metrics_1, {"/health", "GET"}
    ), "Expected a latency histogram bucket for /health GET"

    assert client.get("/health").status_code == 200
    metrics_2 = client.get("/metrics").text

    c2 = _counter_value(metrics_2, REQUESTS._name, health_labels)
    assert c2 == c1 + 1, f"Expected /health counter to increment by 1 (before={c1}, after={c2})"


def test_failed_operations_are_counted_by_code(client, api_prefix) -> None:
    labels = {"predict_maintenance_needs", "device_not_found"}
    before = _counter_value(client.get("/metrics").text, OPERATIONS._name, labels)

    r = client.get(f"{api_prefix}/devices/ghost/prediction")
    assert r.status_code == 404, r.text

    after = _counter_value(client.get("/metrics").text, OPERATIONS._name, labels)
    assert after == before + 1
