"""Vulnerability database endpoints: trigger feed syncs and report sync status."""

import logging
from typing import Annotated

from fastapi import APIRouter, BackgroundTasks, Body, Depends, HTTPException
from sqlalchemy.orm import Session, sessionmaker

from correlator.core.config import Settings, get_settings
from correlator.core.database import get_db, get_session_factory
from correlator.schemas.vulndb import (
    EcosystemTrigger,
    SyncTriggerRequest,
    SyncTriggerResponse,
    VulnDbStatusResponse,
)
from correlator.services.feed_sync import FeedSyncService, resolve_ecosystems, sync_status_summary

logger = logging.getLogger(__name__)

router = APIRouter()


def get_sync_service(
    session_factory: Annotated[sessionmaker, Depends(get_session_factory)],
    settings: Annotated[Settings, Depends(get_settings)],
) -> FeedSyncService:
    return FeedSyncService(session_factory, settings)


def _run_syncs(service: FeedSyncService, started: list[tuple[str, str]]) -> None:
    try:
        for ecosystem, holder in started:
            service.run_started(ecosystem, holder)
    finally:
        service.close()


@router.post("/sync", response_model=SyncTriggerResponse, status_code=202)
def post_sync(
    background_tasks: BackgroundTasks,
    service: Annotated[FeedSyncService, Depends(get_sync_service)],
    body: Annotated[SyncTriggerRequest | None, Body()] = None,
) -> SyncTriggerResponse:
    """
    Start feed syncs in the background, one ecosystem after another.

    Each requested ecosystem (all when omitted) reports 'started', or 'already_running'
    when a sync for it is in progress. Unknown ecosystem names are rejected with 422.
    """
    try:
        ecosystems = resolve_ecosystems(body.ecosystems if body else None)
    except ValueError as e:
        service.close()
        raise HTTPException(status_code=422, detail=str(e)) from e

    results: list[EcosystemTrigger] = []
    started: list[tuple[str, str]] = []
    for ecosystem in ecosystems:
        holder = service.try_start(ecosystem)
        if holder is None:
            results.append(EcosystemTrigger(ecosystem=ecosystem, status="already_running"))
        else:
            started.append((ecosystem, holder))
            results.append(EcosystemTrigger(ecosystem=ecosystem, status="started"))

    if started:
        background_tasks.add_task(_run_syncs, service, started)
    else:
        service.close()
    logger.info("Sync trigger: %s", ", ".join(f"{r.ecosystem}={r.status}" for r in results))
    return SyncTriggerResponse(results=results)


@router.get("/status", response_model=VulnDbStatusResponse)
def get_status(db: Annotated[Session, Depends(get_db)]) -> VulnDbStatusResponse:
    """Per-ecosystem sync state plus total advisories, CVEs and active CPE index entries."""
    return VulnDbStatusResponse(**sync_status_summary(db))
