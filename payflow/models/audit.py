"""
Audit log model.

Provides the immutable, append-only trail for every lifecycle transition,
erase, and project/vendor creation.
"""
from sqlalchemy import Column, String, DateTime, Enum as SQLEnum
from payflow.clock import utcnow
from payflow.database import Base
from payflow.models.enums import Role


class AuditLog(Base):
    """
    Immutable audit entry.

    Invariants:
    - Once written, never edited or deleted
    - Append-only
    - One entry per status change (creation included)
    """
    __tablename__ = "audit_logs"

    id = Column(String, primary_key=True, index=True)
    action = Column(String, nullable=False)  # e.g., "Approved for settlement"
    entity_type = Column(String, nullable=False)  # e.g., "PaymentRequest", "Project"
    entity_id = Column(String, nullable=False, index=True)
    actor_name = Column(String, nullable=False)
    actor_role = Column(SQLEnum(Role, values_callable=lambda members: [m.value for m in members]), nullable=False)
    timestamp = Column(DateTime, nullable=False, default=utcnow, index=True)


class EntityType:
    """Audited entity names."""
    PAYMENT_REQUEST = "PaymentRequest"
    PROJECT = "Project"
    VENDOR = "Vendor"
