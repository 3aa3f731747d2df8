"""API v1 routes."""

from fastapi import APIRouter

from correlator.api.v1 import findings, health, products, scans, vulndb

router = APIRouter()
router.include_router(health.router, prefix="/health", tags=["health"])
router.include_router(scans.router, tags=["scans"])
router.include_router(vulndb.router, prefix="/vulnerability-db", tags=["vulnerability-db"])
router.include_router(products.router, prefix="/products", tags=["products"])
router.include_router(findings.router, prefix="/findings", tags=["findings"])
