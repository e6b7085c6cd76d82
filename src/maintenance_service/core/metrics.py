import time
from prometheus_client import Counter, Histogram

REQUESTS = Counter(
    "http_requests_total",
    "Total HTTP requests",
    ["path", "method", "status"],
)

LATENCY = Histogram(
    "http_request_latency_seconds",
    "HTTP request latency in seconds",
    ["path", "method"],
    buckets=(0.005, 0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1, 2, 5),
)

OPERATIONS = Counter(
    "maintenance_operations_total",
    "Engine operations by outcome",
    ["operation", "outcome"],
)

ANOMALIES_FLAGGED = Counter(
    "maintenance_anomalies_flagged_total",
    "Anomalous points flagged by the detector",
)

FAILURE_PROBABILITY = Histogram(
    "maintenance_failure_probability",
    "Predicted failure probability per device category",
    ["category"],
    buckets=(0.05, 0.1, 0.2, 0.3, 0.5, 0.8, 0.9, 1.0),
)

TRAINING_RUNS = Counter(
    "maintenance_training_runs_total",
    "Model training runs by category and outcome",
    ["category", "outcome"],
)

ALERTS = Counter(
    "maintenance_alerts_total",
    "Predictive maintenance alerts by delivery outcome",
    ["outcome"],
)


class Timer:
    def __init__(self, path: str, method: str):
        self.path = path
        self.method = method
        self.start = 0.0

    def __enter__(self):
        self.start = time.perf_counter()
        return self

    def __exit__(self, exc_type, exc, tb):
        elapsed = time.perf_counter() - self.start
        LATENCY.labels(self.path, self.method).observe(elapsed)
