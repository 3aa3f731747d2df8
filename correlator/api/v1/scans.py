"""Scan endpoints: trigger a platform scan, poll a run, list scan history."""

from typing import Annotated

from fastapi import APIRouter, BackgroundTasks, Depends, HTTPException, Query
from sqlalchemy import func, select
from sqlalchemy.orm import Session, sessionmaker

from correlator.core.config import Settings, get_settings
from correlator.core.database import get_db, get_session_factory
from correlator.models import ScanRun
from correlator.schemas.scans import (
    ScanHistoryResponse,
    ScanRunDetail,
    ScanRunSummary,
    ScanTriggerResponse,
)
from correlator.services.scan_orchestrator import ScanOrchestrator, product_severity_counts

router = APIRouter()

MAX_HISTORY_LIMIT = 100


def get_orchestrator(
    session_factory: Annotated[sessionmaker, Depends(get_session_factory)],
    settings: Annotated[Settings, Depends(get_settings)],
) -> ScanOrchestrator:
    return ScanOrchestrator(session_factory, settings)


@router.post("/scan", response_model=ScanTriggerResponse, status_code=202)
def post_scan(
    background_tasks: BackgroundTasks,
    orchestrator: Annotated[ScanOrchestrator, Depends(get_orchestrator)],
) -> ScanTriggerResponse:
    """
    Start a platform-wide scan in the background.

    Returns status 'started' with the new run id, or 'already_running' with the id of
    the active run. Poll GET /scan/{run_id} for progress.
    """
    start = orchestrator.try_start(trigger_type="manual", triggered_by="api")
    if start.status == "started":
        background_tasks.add_task(orchestrator.execute, start.run_id, start.holder)
    return ScanTriggerResponse(status=start.status, run_id=start.run_id)


@router.get("/scan/{run_id}", response_model=ScanRunDetail)
def get_scan(
    run_id: int,
    db: Annotated[Session, Depends(get_db)],
) -> ScanRunDetail:
    """Return a run's status, summary counts, per-source timing and per-product counts."""
    run = db.get(ScanRun, run_id)
    if run is None:
        raise HTTPException(status_code=404, detail=f"Scan run {run_id} not found")
    summary = ScanRunSummary.model_validate(run)
    return ScanRunDetail(**summary.model_dump(), products=product_severity_counts(db, run_id))


@router.get("/scan-history", response_model=ScanHistoryResponse)
def get_scan_history(
    db: Annotated[Session, Depends(get_db)],
    page: Annotated[int, Query(ge=1)] = 1,
    limit: Annotated[int, Query(ge=1, le=MAX_HISTORY_LIMIT)] = 20,
) -> ScanHistoryResponse:
    """Paginated scan runs, newest first."""
    total = db.scalar(select(func.count(ScanRun.id))) or 0
    runs = db.scalars(
        select(ScanRun)
        .order_by(ScanRun.started_at.desc(), ScanRun.id.desc())
        .offset((page - 1) * limit)
        .limit(limit)
    ).all()
    return ScanHistoryResponse(
        runs=[ScanRunSummary.model_validate(r) for r in runs],
        page=page,
        limit=limit,
        total=total,
    )
