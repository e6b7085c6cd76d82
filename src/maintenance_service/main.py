from __future__ import annotations

from contextlib import asynccontextmanager
from datetime import timedelta
from typing import List, Optional

import mlflow
from fastapi import APIRouter, FastAPI, HTTPException, Query, Request, Response
from prometheus_client import CONTENT_TYPE_LATEST, generate_latest
from loguru import logger

from maintenance_service.core.config import settings

from .collaborators import LoggingAlertDispatcher, get_device_repository
from .core.errors import MaintenanceEngineError
from .core.logging import setup_logging
from .core.metrics import REQUESTS, Timer
from .core.orchestrator import PredictionOrchestrator
from .core.parameters import ParameterStore
from .core.schemas import (
    AnomalyDetectionResult,
    HealthResponse,
    HealthScoreResult,
    MaintenanceFeedback,
    MaintenancePrediction,
    TrainResponse,
)

ORCHESTRATOR: PredictionOrchestrator | None = None

STATUS_BY_CODE = {
    "device_not_found": 404,
    "insufficient_data": 422,
    "unknown_device_category": 400,
    "data_unavailable": 503,
    "training_divergence": 409,
}


def build_orchestrator() -> PredictionOrchestrator:
    repository = get_device_repository()
    store = ParameterStore(
        path=settings.parameter_store_path, fallback_category=settings.fallback_category
    )
    if store.path is not None:
        store.load()
    return PredictionOrchestrator(
        telemetry=repository,
        registry=repository,
        store=store,
        dispatcher=LoggingAlertDispatcher(),
    )


@asynccontextmanager
async def lifespan(app: FastAPI):
    global ORCHESTRATOR
    setup_logging(settings.log_level)

    created = False
    if ORCHESTRATOR is None:
        try:
            ORCHESTRATOR = build_orchestrator()
            created = True
            logger.info(
                {
                    "event": "engine_ready",
                    "telemetry_store": type(ORCHESTRATOR.registry).__name__,
                    "trained_categories": ORCHESTRATOR.store.trained_categories(),
                }
            )
        except Exception as e:
            logger.exception({"event": "engine_start_failed", "error": str(e)})

    if settings.mlflow_tracking_uri:
        mlflow.set_tracking_uri(settings.mlflow_tracking_uri)
        mlflow.set_experiment(settings.mlflow_experiment)

    yield

    if created and ORCHESTRATOR is not None:
        ORCHESTRATOR.close()
        ORCHESTRATOR = None


app = FastAPI(title=settings.service_name, version="1.0.0", lifespan=lifespan)
router = APIRouter(prefix=settings.api_prefix)


@app.middleware("http")
async def prometheus_mw(request: Request, call_next):
    method = request.method
    with Timer(path=request.url.path, method=method) as t:
        resp = await call_next(request)
        # Label device routes by template, not by device id
        t.path = getattr(request.scope.get("route"), "path", t.path)
    REQUESTS.labels(t.path, method, str(resp.status_code)).inc()
    return resp


def _engine() -> PredictionOrchestrator:
    if ORCHESTRATOR is None:
        raise HTTPException(status_code=503, detail="Maintenance engine not available")
    return ORCHESTRATOR


def _http_error(e: MaintenanceEngineError) -> HTTPException:
    return HTTPException(status_code=STATUS_BY_CODE.get(e.code, 500), detail=e.to_dict())


@app.get("/health", response_model=HealthResponse)
def health():
    if ORCHESTRATOR is None:
        return HealthResponse(status="degraded", telemetry_store="none", trained_categories=0)
    return HealthResponse(
        status="ok",
        telemetry_store=type(ORCHESTRATOR.registry).__name__,
        trained_categories=len(ORCHESTRATOR.store.trained_categories()),
    )


@app.get("/metrics")
def metrics():
    return Response(generate_latest(), media_type=CONTENT_TYPE_LATEST)


@router.get("/devices/{device_id}/prediction", response_model=MaintenancePrediction)
def predict_maintenance(device_id: str):
    try:
        return _engine().predict_maintenance_needs(device_id)
    except MaintenanceEngineError as e:
        raise _http_error(e)


@router.get("/devices/{device_id}/anomalies", response_model=AnomalyDetectionResult)
def detect_anomalies(
    device_id: str,
    lookback_hours: float = Query(default=settings.anomaly_lookback_hours, gt=0),
    metric: Optional[str] = None,
):
    try:
        return _engine().detect_anomalies(
            device_id, lookback_window=timedelta(hours=lookback_hours), metric=metric
        )
    except MaintenanceEngineError as e:
        raise _http_error(e)
    except ValueError as e:
        raise HTTPException(status_code=422, detail=str(e))


@router.get("/devices/{device_id}/health-score", response_model=HealthScoreResult)
def health_score(device_id: str):
    try:
        return _engine().calculate_health_score(device_id)
    except MaintenanceEngineError as e:
        raise _http_error(e)


@router.post("/models/{category}/train", response_model=TrainResponse)
def train_model(category: str, feedback: List[MaintenanceFeedback]):
    engine = _engine()
    try:
        engine.train_model(category, feedback)
        params = engine.store.get(category)
    except MaintenanceEngineError as e:
        raise _http_error(e)
    return TrainResponse(
        status="trained" if feedback else "skipped",
        category=category,
        version=params.version,
        feedback_count=params.feedback_count,
    )


@router.get("/maintenance/scan", response_model=List[MaintenancePrediction])
def scan():
    return _engine().scan_devices()


app.include_router(router)
