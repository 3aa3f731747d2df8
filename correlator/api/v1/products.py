"""Product endpoints: replace a product's SBOM components, read its current findings."""

import logging
from typing import Annotated

from fastapi import APIRouter, Body, Depends, Path, Query
from sqlalchemy import delete, select
from sqlalchemy.orm import Session

from correlator.core.database import get_db
from correlator.models import Finding, ProductComponent
from correlator.schemas.components import (
    MAX_COMPONENTS_PER_PRODUCT,
    ComponentIn,
    ComponentsReplaceResponse,
)
from correlator.schemas.findings import (
    FindingOut,
    FindingStatus,
    ProductFindingsResponse,
    SeveritySummary,
)
from correlator.services.scan_orchestrator import latest_completed_run
from correlator.services.severity import severity_rank

logger = logging.getLogger(__name__)

router = APIRouter()

ProductId = Annotated[str, Path(min_length=1, max_length=255)]


@router.put("/{product_id}/components", response_model=ComponentsReplaceResponse)
def put_components(
    product_id: ProductId,
    components: Annotated[list[ComponentIn], Body(max_length=MAX_COMPONENTS_PER_PRODUCT)],
    db: Annotated[Session, Depends(get_db)],
) -> ComponentsReplaceResponse:
    """
    Replace the product's component list with the given SBOM components.

    The next scan run picks up the new list; findings of earlier runs are unchanged.
    """
    db.execute(delete(ProductComponent).where(ProductComponent.product_id == product_id))
    db.add_all(
        ProductComponent(
            product_id=product_id,
            name=c.name,
            version=c.version,
            ecosystem=c.ecosystem,
            purl=c.purl,
        )
        for c in components
    )
    db.commit()
    logger.info("Replaced components of product %s: %s entries", product_id, len(components))
    return ComponentsReplaceResponse(product_id=product_id, component_count=len(components))


@router.get("/{product_id}/findings", response_model=ProductFindingsResponse)
def get_product_findings(
    product_id: ProductId,
    db: Annotated[Session, Depends(get_db)],
    status: Annotated[FindingStatus | None, Query()] = None,
) -> ProductFindingsResponse:
    """
    Findings of the product in the latest completed scan run, most severe first,
    optionally filtered by status, with a per-severity summary.
    """
    run = latest_completed_run(db)
    if run is None:
        return ProductFindingsResponse(product_id=product_id, summary=SeveritySummary(), findings=[])

    stmt = select(Finding).where(Finding.scan_run_id == run.id, Finding.product_id == product_id)
    if status is not None:
        stmt = stmt.where(Finding.status == status)
    rows = sorted(
        db.scalars(stmt),
        key=lambda f: (-severity_rank(f.severity), f.dependency_name, f.source_id),
    )
    summary = SeveritySummary(total=len(rows))
    for f in rows:
        setattr(summary, f.severity, getattr(summary, f.severity) + 1)
    return ProductFindingsResponse(
        product_id=product_id,
        scan_run_id=run.id,
        scanned_at=run.completed_at,
        summary=summary,
        findings=[FindingOut.model_validate(f) for f in rows],
    )
