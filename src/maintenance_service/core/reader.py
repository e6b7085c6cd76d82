from __future__ import annotations

from concurrent.futures import ThreadPoolExecutor
from concurrent.futures import TimeoutError as FutureTimeoutError
from dataclasses import replace
from datetime import datetime
from typing import Sequence

from loguru import logger

from ..collaborators.base import TelemetryStore
from .anomaly import SeriesPoint
from .config import settings
from .domain import TelemetrySample, ensure_utc
from .errors import DataUnavailableError


def to_series(samples: Sequence[TelemetrySample], metric: str) -> list[SeriesPoint]:
    return [(s.timestamp, s.value(metric)) for s in samples]


class TelemetryWindowReader:
    """
    Reads a device's telemetry window from the external store.

    This is the only place the engine blocks on I/O. Each fetch runs on a
    worker thread and is abandoned after ``timeout_seconds``.
    """

    def __init__(
        self,
        store: TelemetryStore,
        timeout_seconds: float | None = None,
        max_workers: int | None = None,
    ):
        self.store = store
        self.timeout_seconds = (
            settings.reader_timeout_seconds if timeout_seconds is None else timeout_seconds
        )
        self._executor = ThreadPoolExecutor(
            max_workers=max_workers or settings.reader_max_workers,
            thread_name_prefix="telemetry-reader",
        )

    def close(self) -> None:
        self._executor.shutdown(wait=False, cancel_futures=True)

    def read(
        self,
        device_id: str,
        start: datetime,
        end: datetime,
        timeout: float | None = None,
    ) -> tuple[TelemetrySample, ...]:
        timeout = timeout if timeout is not None else self.timeout_seconds
        future = self._executor.submit(self.store.fetch_historical_samples, device_id, start, end)
        try:
            raw = future.result(timeout=timeout)
        except FutureTimeoutError as e:
            future.cancel()
            raise DataUnavailableError(
                f"Telemetry store did not answer within {timeout:.1f}s", device_id=device_id
            ) from e
        except (ConnectionError, OSError) as e:
            raise DataUnavailableError(
                f"Telemetry store unreachable: {e}", device_id=device_id
            ) from e
        return self._normalize(device_id, raw)

    @staticmethod
    def _normalize(device_id: str, raw: Sequence[TelemetrySample]) -> tuple[TelemetrySample, ...]:
        by_ts: dict[datetime, TelemetrySample] = {}
        for s in raw:
            ts = ensure_utc(s.timestamp)
            by_ts[ts] = replace(s, timestamp=ts)
        if len(by_ts) != len(raw):
            logger.warning(
                {
                    "event": "duplicate_timestamps_dropped",
                    "device_id": device_id,
                    "dropped": len(raw) - len(by_ts),
                }
            )
        return tuple(by_ts[ts] for ts in sorted(by_ts))
