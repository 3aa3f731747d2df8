"""Finding triage endpoint."""

import logging
from datetime import datetime, timezone
from typing import Annotated

from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.orm import Session

from correlator.core.database import get_db
from correlator.models import Finding
from correlator.schemas.findings import FindingOut, FindingStatusUpdate

logger = logging.getLogger(__name__)

router = APIRouter()


@router.put("/{finding_id}", response_model=FindingOut)
def put_finding_status(
    finding_id: int,
    body: FindingStatusUpdate,
    db: Annotated[Session, Depends(get_db)],
) -> FindingOut:
    """
    Set a finding's status to open, mitigated or dismissed, with an optional reason.

    Mitigated and dismissed carry over to the same finding in later scan runs.
    Closed findings (no longer detected) cannot be triaged.
    """
    finding = db.get(Finding, finding_id)
    if finding is None:
        raise HTTPException(status_code=404, detail=f"Finding {finding_id} not found")
    if finding.status == "closed":
        raise HTTPException(status_code=409, detail="Finding is closed and can no longer be triaged")
    finding.status = body.status
    finding.status_reason = body.reason
    finding.updated_at = datetime.now(timezone.utc)
    db.commit()
    db.refresh(finding)
    logger.info("Finding %s set to %s", finding_id, body.status)
    return FindingOut.model_validate(finding)
