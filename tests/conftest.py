import os
import sys
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Callable, List, Optional, Sequence

import pytest

REPO_ROOT = Path(__file__).resolve().parents[1]
SRC_DIR = REPO_ROOT / "src"

for p in (REPO_ROOT, SRC_DIR):
    if p.exists() and str(p) not in sys.path:
        sys.path.insert(0, str(p))

from maintenance_service.collaborators import InMemoryDeviceRepository, LoggingAlertDispatcher  # noqa: E402
from maintenance_service.core.domain import DeviceInfo, TelemetrySample  # noqa: E402
from maintenance_service.core.orchestrator import PredictionOrchestrator  # noqa: E402
from maintenance_service.core.parameters import ParameterStore  # noqa: E402

NOW = datetime(2026, 1, 31, 12, 0, tzinfo=timezone.utc)


def make_samples(
    n: int,
    *,
    end: datetime = NOW,
    step: timedelta = timedelta(hours=1),
    power: float = 100.0,
    voltage: float = 230.0,
    temperature: Optional[Sequence[float]] = None,
    base_temperature: float = 22.0,
    vibration: float = 0.2,
    start_hours: float = 1000.0,
    maintenance_at: Optional[int] = None,
) -> List[TelemetrySample]:
    """Hourly samples ending at ``end``. Temperature alternates +/-0.5 around its base
    unless an explicit series is given."""
    out = []
    for i in range(n):
        temp = temperature[i] if temperature is not None else base_temperature + (0.5 if i % 2 else -0.5)
        out.append(
            TelemetrySample(
                timestamp=end - (n - 1 - i) * step,
                power_consumption=power,
                voltage=voltage,
                current=power / voltage,
                power_factor=0.95,
                temperature=temp,
                vibration=vibration,
                operating_hours=start_hours + i,
                maintenance_flag=i == maintenance_at,
            )
        )
    return out


def spike_temperatures(n: int = 100, at: int = 50, value: float = 45.0) -> List[float]:
    temps = [22.0 + (0.5 if i % 2 else -0.5) for i in range(n)]
    temps[at] = value
    return temps


def _seed(repo: InMemoryDeviceRepository) -> None:
    repo.add_device(DeviceInfo("steady-1", "Hallway Thermostat", "ClimateControl"), make_samples(30 * 24))
    repo.add_device(
        DeviceInfo("spike-1", "Kitchen Fridge", "RefrigerationAppliance"),
        make_samples(100, temperature=spike_temperatures()),
    )
    repo.add_device(
        DeviceInfo("hot-1", "Garage Heat Pump", "ClimateControl"),
        make_samples(30 * 24, base_temperature=80.0, vibration=3.0),
    )
    repo.add_device(
        DeviceInfo("critical-1", "Attic Fan", "ClimateControl"),
        make_samples(30 * 24, base_temperature=120.0, vibration=3.0),
    )
    repo.add_device(DeviceInfo("sparse-1", "Porch Light", "LightingSystem"), make_samples(5))
    repo.add_device(DeviceInfo("empty-1", "Spare Outlet", "SmartOutlet"))
    repo.add_device(DeviceInfo("odd-1", "Toaster", "Toaster"), make_samples(48))


@pytest.fixture(scope="session")
def repo_root() -> Path:
    return REPO_ROOT


@pytest.fixture
def now() -> datetime:
    return NOW


@pytest.fixture
def sample_factory() -> Callable[..., List[TelemetrySample]]:
    return make_samples


@pytest.fixture
def spike_series() -> List[float]:
    return spike_temperatures()


@pytest.fixture
def repository() -> InMemoryDeviceRepository:
    repo = InMemoryDeviceRepository()
    _seed(repo)
    return repo


@pytest.fixture
def dispatcher() -> LoggingAlertDispatcher:
    return LoggingAlertDispatcher()


@pytest.fixture
def orchestrator(repository, dispatcher):
    engine = PredictionOrchestrator(
        telemetry=repository,
        registry=repository,
        store=ParameterStore(),
        dispatcher=dispatcher,
        clock=lambda: NOW,
        retry_backoff_seconds=0.0,
    )
    yield engine
    engine.close()


@pytest.fixture(scope="session")
def app():
    from maintenance_service.main import app as fastapi_app

    return fastapi_app


@pytest.fixture(scope="session")
def client(app):
    from fastapi.testclient import TestClient

    import maintenance_service.main as main

    repo = InMemoryDeviceRepository()
    _seed(repo)
    main.ORCHESTRATOR = PredictionOrchestrator(
        telemetry=repo,
        registry=repo,
        store=ParameterStore(),
        dispatcher=LoggingAlertDispatcher(),
        clock=lambda: NOW,
        retry_backoff_seconds=0.0,
    )
    with TestClient(app) as c:
        yield c
    main.ORCHESTRATOR.close()
    main.ORCHESTRATOR = None


@pytest.fixture(scope="session")
def base_url() -> str:
    return os.getenv("MAINTENANCE_BASE_URL", "http://localhost:8002")


@pytest.fixture(scope="session")
def api_prefix() -> str:
    return os.getenv("MAINTENANCE_API_PREFIX", "/v1")
