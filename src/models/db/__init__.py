"""Database models package."""

from src.models.db.access_request import AccessRequest
from src.models.db.api_key import ApiKey
from src.models.db.audit_event import AuditEvent
from src.models.db.base import Base, TimestampMixin
from src.models.db.health_record import HealthRecord
from src.models.db.principal import Principal
from src.models.db.transfer_request import TransferRequest

__all__ = [
    "AccessRequest",
    "ApiKey",
    "AuditEvent",
    "Base",
    "HealthRecord",
    "Principal",
    "TimestampMixin",
    "TransferRequest",
]
