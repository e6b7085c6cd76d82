from __future__ import annotations

import json
from datetime import timedelta
from pathlib import Path
from typing import List, Optional

import typer

from maintenance_service.core.config import settings
from maintenance_service.core.errors import MaintenanceEngineError
from maintenance_service.core.logging import setup_logging
from maintenance_service.core.schemas import MaintenanceFeedback
from maintenance_service.main import build_orchestrator

app = typer.Typer(no_args_is_help=True)


def _fail(e: MaintenanceEngineError) -> None:
    typer.echo(json.dumps(e.to_dict(), indent=2), err=True)
    raise typer.Exit(code=1)


@app.callback()
def main(log_level: str = typer.Option(settings.log_level, help="Log level for engine events.")) -> None:
    setup_logging(log_level, serialize=False)


@app.command()
def predict(device_id: str) -> None:
    engine = build_orchestrator()
    try:
        prediction = engine.predict_maintenance_needs(device_id)
    except MaintenanceEngineError as e:
        _fail(e)
    finally:
        engine.close()
    typer.echo(prediction.model_dump_json(indent=2))


@app.command()
def detect(
    device_id: str,
    lookback_hours: float = typer.Option(settings.anomaly_lookback_hours, min=0.0),
    metric: Optional[str] = None,
) -> None:
    engine = build_orchestrator()
    try:
        result = engine.detect_anomalies(
            device_id, lookback_window=timedelta(hours=lookback_hours), metric=metric
        )
    except MaintenanceEngineError as e:
        _fail(e)
    except ValueError as e:
        raise typer.BadParameter(str(e), param_hint="--metric")
    finally:
        engine.close()
    typer.echo(result.model_dump_json(indent=2))


@app.command("health-score")
def health_score(device_id: str) -> None:
    engine = build_orchestrator()
    try:
        result = engine.calculate_health_score(device_id)
    except MaintenanceEngineError as e:
        _fail(e)
    finally:
        engine.close()
    typer.echo(result.model_dump_json(indent=2))


@app.command()
def train(category: str, feedback_file: Path = typer.Argument(..., exists=True, dir_okay=False)) -> None:
    """Recalibrate CATEGORY from a JSON list of feedback records."""
    data = json.loads(feedback_file.read_text(encoding="utf-8"))
    if isinstance(data, dict) and "records" in data:
        data = data["records"]
    feedback = [MaintenanceFeedback.model_validate(rec) for rec in data]

    engine = build_orchestrator()
    try:
        engine.train_model(category, feedback)
        params = engine.store.get(category)
    except MaintenanceEngineError as e:
        _fail(e)
    finally:
        engine.close()
    typer.echo(
        json.dumps(
            {
                "category": category,
                "version": params.version,
                "feedback_count": params.feedback_count,
                "bias": params.bias,
            },
            indent=2,
        )
    )


@app.command()
def scan(device_ids: Optional[List[str]] = typer.Argument(None)) -> None:
    engine = build_orchestrator()
    try:
        predictions = engine.scan_devices(device_ids or None)
    finally:
        engine.close()
    typer.echo(json.dumps([p.model_dump(mode="json") for p in predictions], indent=2))


if __name__ == "__main__":
    app()
