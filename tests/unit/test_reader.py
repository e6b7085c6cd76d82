import time
from dataclasses import replace
from datetime import timedelta, timezone

import pytest

from maintenance_service.collaborators.base import TelemetryStore
from maintenance_service.core.errors import DataUnavailableError
from maintenance_service.core.reader import TelemetryWindowReader, to_series


class StaticStore(TelemetryStore):
    def __init__(self, samples):
        self.samples = samples

    def fetch_historical_samples(self, device_id, start, end):
        return list(self.samples)


class SlowStore(TelemetryStore):
    def fetch_historical_samples(self, device_id, start, end):
        time.sleep(0.5)
        return []


class BrokenStore(TelemetryStore):
    def fetch_historical_samples(self, device_id, start, end):
        raise ConnectionError("connection refused")


@pytest.fixture
def make_reader():
    readers = []

    def _make(store, **kwargs):
        reader = TelemetryWindowReader(store, **kwargs)
        readers.append(reader)
        return reader

    yield _make
    for r in readers:
        r.close()


def test_orders_and_deduplicates(make_reader, sample_factory, now) -> None:
    samples = sample_factory(5)
    late_duplicate = replace(samples[2], temperature=99.0)
    raw = [samples[4], samples[2], samples[0], samples[3], samples[1], late_duplicate]

    out = make_reader(StaticStore(raw)).read("d1", now - timedelta(days=1), now)

    assert [s.timestamp for s in out] == [s.timestamp for s in samples]
    assert out[2].temperature == 99.0


def test_naive_timestamps_become_utc(make_reader, sample_factory, now) -> None:
    naive = [replace(s, timestamp=s.timestamp.replace(tzinfo=None)) for s in sample_factory(3)]
    out = make_reader(StaticStore(naive)).read("d1", now - timedelta(days=1), now)
    assert all(s.timestamp.tzinfo == timezone.utc for s in out)


def test_timeout_is_data_unavailable(make_reader, now) -> None:
    reader = make_reader(SlowStore(), timeout_seconds=0.05)
    with pytest.raises(DataUnavailableError) as exc:
        reader.read("d1", now - timedelta(days=1), now)
    assert exc.value.device_id == "d1"


def test_connection_error_is_data_unavailable(make_reader, now) -> None:
    with pytest.raises(DataUnavailableError):
        make_reader(BrokenStore()).read("d1", now - timedelta(days=1), now)


def test_to_series_pairs_timestamp_and_value(sample_factory) -> None:
    samples = sample_factory(3)
    series = to_series(samples, "voltage")
    assert series == [(s.timestamp, 230.0) for s in samples]


def test_explicit_zero_timeout_is_kept(make_reader) -> None:
    assert make_reader(StaticStore([]), timeout_seconds=0).timeout_seconds == 0
    assert make_reader(StaticStore([])).timeout_seconds > 0
