"""
Repository over the local mirror.

Reads come from the mirror's visible state. Writes never touch the network:
each one becomes a PendingChange staged on the sync engine, which shows it
immediately and delivers it later. Updates and erases embed their audit entry
in the record call; creations send it as a follow-up call.
"""
from typing import List, Optional

from payflow.api.schemas import (
    AuditLogRecord,
    PaymentRequestRecord,
    ProjectRecord,
    RequestUpdate,
    VendorRecord,
)
from payflow.clock import new_id
from payflow.errors import ConflictError, NotFoundError
from payflow.services.repository import Repository
from payflow.sync.engine import SyncEngine
from payflow.sync.mirror import Operation, OperationKind, PendingChange


def _log_op(log: Optional[AuditLogRecord]) -> List[Operation]:
    if log is None:
        return []
    return [Operation(
        kind=OperationKind.CREATE_AUDIT_LOG,
        entity_id=log.id,
        payload=log.model_dump(mode="json"),
    )]


class MirrorRepository(Repository):
    """Repository whose writes are optimistic and queued for the store."""

    def __init__(self, engine: SyncEngine):
        self.engine = engine

    @property
    def mirror(self):
        return self.engine.mirror

    def _stage(self, description: str, operations: List[Operation]) -> None:
        self.engine.stage(PendingChange(
            change_id=new_id("CHG"),
            description=description,
            operations=operations,
        ))

    # Requests
    def list_requests(self) -> List[PaymentRequestRecord]:
        return self.mirror.requests()

    def get_request(self, request_id: str) -> Optional[PaymentRequestRecord]:
        return self.mirror.get_request(request_id)

    def add_request(self, record, log=None):
        self._stage(f"Submit {record.id}", [
            Operation(
                kind=OperationKind.CREATE_REQUEST,
                entity_id=record.id,
                payload=record.model_dump(mode="json"),
            ),
            *_log_op(log),
        ])
        return self.mirror.get_request(record.id)

    def update_request(self, request_id, changes, log=None, expected_version=None):
        current = self.mirror.get_request(request_id)
        if current is None:
            raise NotFoundError(f"Payment request {request_id} not found")
        if expected_version is None:
            expected_version = current.version
        elif current.version != expected_version:
            raise ConflictError(
                f"Payment request {request_id} is at version {current.version}, "
                f"not {expected_version}. Refresh and retry."
            )

        if log is not None:
            changes = {**changes, "audit": log}
        payload = RequestUpdate(**changes, expected_version=expected_version).model_dump(
            mode="json", exclude_unset=True
        )
        self._stage(f"Update {request_id}", [
            Operation(kind=OperationKind.UPDATE_REQUEST, entity_id=request_id, payload=payload),
        ])
        return self.mirror.get_request(request_id)

    def delete_request(self, request_id, log=None):
        if self.mirror.get_request(request_id) is None:
            raise NotFoundError(f"Payment request {request_id} not found")
        payload = {"audit": log.model_dump(mode="json")} if log is not None else {}
        self._stage(f"Erase {request_id}", [
            Operation(kind=OperationKind.DELETE_REQUEST, entity_id=request_id, payload=payload),
        ])

    # Projects and vendors
    def list_projects(self) -> List[ProjectRecord]:
        return self.mirror.projects()

    def add_project(self, record, log=None):
        self._stage(f"Create project {record.name}", [
            Operation(
                kind=OperationKind.CREATE_PROJECT,
                entity_id=record.id,
                payload=record.model_dump(mode="json"),
            ),
            *_log_op(log),
        ])
        return record

    def list_vendors(self) -> List[VendorRecord]:
        return self.mirror.vendors()

    def add_vendor(self, record, log=None):
        self._stage(f"Register vendor {record.name}", [
            Operation(
                kind=OperationKind.CREATE_VENDOR,
                entity_id=record.id,
                payload=record.model_dump(mode="json"),
            ),
            *_log_op(log),
        ])
        return record

    # Audit
    def list_audit_logs(self, entity_id=None):
        return self.mirror.audit_logs(entity_id=entity_id)

    def add_audit_log(self, entry):
        self._stage(f"Audit {entry.entity_id}", _log_op(entry))
        return entry
