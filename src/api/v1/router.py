"""API v1 router configuration."""

from fastapi import APIRouter

from src.api.v1.endpoints import (
    access_requests,
    principals,
    records,
    transfer_requests,
)

router = APIRouter(prefix="/api/v1")

router.include_router(principals.router, prefix="/principals", tags=["principals"])
router.include_router(records.router, prefix="/records", tags=["records"])
router.include_router(
    access_requests.router, prefix="/access-requests", tags=["access-requests"]
)
router.include_router(
    transfer_requests.router, prefix="/transfer-requests", tags=["transfer-requests"]
)
