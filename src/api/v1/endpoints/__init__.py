"""API v1 endpoints package."""

from src.api.v1.endpoints import (
    access_requests,
    principals,
    records,
    transfer_requests,
)

__all__ = ["access_requests", "principals", "records", "transfer_requests"]
