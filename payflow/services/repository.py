"""
Repository interface the lifecycle core depends on, plus the SQLAlchemy
implementation used by the authoritative store.

Every mutating method takes an optional audit entry. When one is given, the
record change and the entry are written together or not at all.
"""
from abc import ABC, abstractmethod
from typing import Any, Dict, List, Optional

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from payflow.api.schemas import (
    AuditLogRecord,
    PaymentRequestRecord,
    ProjectRecord,
    SyncSnapshot,
    VendorRecord,
)
from payflow.errors import ConflictError, NotFoundError
from payflow.models.audit import AuditLog
from payflow.models.domain import PaymentRequest, Project, Vendor


class Repository(ABC):
    """Storage seam for requests, projects, vendors and audit entries."""

    # Requests
    @abstractmethod
    def list_requests(self) -> List[PaymentRequestRecord]:
        """All requests, newest submission first."""

    @abstractmethod
    def get_request(self, request_id: str) -> Optional[PaymentRequestRecord]:
        ...

    @abstractmethod
    def add_request(
        self, record: PaymentRequestRecord, log: Optional[AuditLogRecord] = None
    ) -> PaymentRequestRecord:
        ...

    @abstractmethod
    def update_request(
        self,
        request_id: str,
        changes: Dict[str, Any],
        log: Optional[AuditLogRecord] = None,
        expected_version: Optional[int] = None
    ) -> PaymentRequestRecord:
        """
        Apply ``changes`` and bump the version.

        Raises NotFoundError for an unknown id and ConflictError when
        ``expected_version`` no longer matches the stored version.
        """

    @abstractmethod
    def delete_request(self, request_id: str, log: Optional[AuditLogRecord] = None) -> None:
        ...

    # Projects and vendors
    @abstractmethod
    def list_projects(self) -> List[ProjectRecord]:
        ...

    @abstractmethod
    def add_project(self, record: ProjectRecord, log: Optional[AuditLogRecord] = None) -> ProjectRecord:
        ...

    @abstractmethod
    def list_vendors(self) -> List[VendorRecord]:
        ...

    @abstractmethod
    def add_vendor(self, record: VendorRecord, log: Optional[AuditLogRecord] = None) -> VendorRecord:
        ...

    # Audit
    @abstractmethod
    def list_audit_logs(self, entity_id: Optional[str] = None) -> List[AuditLogRecord]:
        """Audit entries, newest first, optionally for one entity."""

    @abstractmethod
    def add_audit_log(self, entry: AuditLogRecord) -> AuditLogRecord:
        ...

    def snapshot(self) -> SyncSnapshot:
        """Combined read of all four collections."""
        return SyncSnapshot(
            projects=self.list_projects(),
            vendors=self.list_vendors(),
            requests=self.list_requests(),
            audit_logs=self.list_audit_logs(),
        )


class SqlAlchemyRepository(Repository):
    """Repository backed by a SQLAlchemy session (one per HTTP request)."""

    def __init__(self, db: Session):
        self.db = db

    def _commit(self) -> None:
        try:
            self.db.commit()
        except SQLAlchemyError:
            self.db.rollback()
            raise

    def _stage_log(self, log: Optional[AuditLogRecord]) -> None:
        if log is not None:
            self.db.add(AuditLog(**log.model_dump()))

    def _get_row(self, request_id: str) -> Optional[PaymentRequest]:
        return self.db.query(PaymentRequest).filter(PaymentRequest.id == request_id).first()

    # Requests
    def list_requests(self) -> List[PaymentRequestRecord]:
        rows = self.db.query(PaymentRequest).order_by(
            PaymentRequest.submitted_at.desc(), PaymentRequest.id.desc()
        ).all()
        return [PaymentRequestRecord.model_validate(row) for row in rows]

    def get_request(self, request_id: str) -> Optional[PaymentRequestRecord]:
        row = self._get_row(request_id)
        return PaymentRequestRecord.model_validate(row) if row else None

    def add_request(self, record, log=None):
        row = PaymentRequest(**record.model_dump())
        self.db.add(row)
        self._stage_log(log)
        self._commit()
        self.db.refresh(row)
        return PaymentRequestRecord.model_validate(row)

    def update_request(self, request_id, changes, log=None, expected_version=None):
        row = self._get_row(request_id)
        if row is None:
            raise NotFoundError(f"Payment request {request_id} not found")
        if expected_version is not None and row.version != expected_version:
            raise ConflictError(
                f"Payment request {request_id} is at version {row.version}, "
                f"not {expected_version}. Refresh and retry."
            )

        for field, value in changes.items():
            setattr(row, field, value)
        row.version = row.version + 1
        self._stage_log(log)
        self._commit()
        self.db.refresh(row)
        return PaymentRequestRecord.model_validate(row)

    def delete_request(self, request_id, log=None):
        row = self._get_row(request_id)
        if row is None:
            raise NotFoundError(f"Payment request {request_id} not found")
        self.db.delete(row)
        self._stage_log(log)
        self._commit()

    # Projects and vendors
    def list_projects(self) -> List[ProjectRecord]:
        rows = self.db.query(Project).order_by(Project.created_at.asc(), Project.id.asc()).all()
        return [ProjectRecord.model_validate(row) for row in rows]

    def get_project(self, project_id: str) -> Optional[ProjectRecord]:
        row = self.db.query(Project).filter(Project.id == project_id).first()
        return ProjectRecord.model_validate(row) if row else None

    def add_project(self, record, log=None):
        row = Project(**record.model_dump())
        self.db.add(row)
        self._stage_log(log)
        self._commit()
        self.db.refresh(row)
        return ProjectRecord.model_validate(row)

    def list_vendors(self) -> List[VendorRecord]:
        rows = self.db.query(Vendor).order_by(Vendor.created_at.asc(), Vendor.id.asc()).all()
        return [VendorRecord.model_validate(row) for row in rows]

    def get_vendor(self, vendor_id: str) -> Optional[VendorRecord]:
        row = self.db.query(Vendor).filter(Vendor.id == vendor_id).first()
        return VendorRecord.model_validate(row) if row else None

    def add_vendor(self, record, log=None):
        row = Vendor(**record.model_dump())
        self.db.add(row)
        self._stage_log(log)
        self._commit()
        self.db.refresh(row)
        return VendorRecord.model_validate(row)

    # Audit
    def list_audit_logs(self, entity_id=None):
        query = self.db.query(AuditLog)
        if entity_id is not None:
            query = query.filter(AuditLog.entity_id == entity_id)
        rows = query.order_by(AuditLog.timestamp.desc(), AuditLog.id.desc()).all()
        return [AuditLogRecord.model_validate(row) for row in rows]

    def get_audit_log(self, log_id: str) -> Optional[AuditLogRecord]:
        row = self.db.query(AuditLog).filter(AuditLog.id == log_id).first()
        return AuditLogRecord.model_validate(row) if row else None

    def add_audit_log(self, entry):
        row = AuditLog(**entry.model_dump())
        self.db.add(row)
        self._commit()
        self.db.refresh(row)
        return AuditLogRecord.model_validate(row)
