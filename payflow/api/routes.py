"""API routes for the authoritative store."""
import logging
from typing import List, Optional

from fastapi import APIRouter, Body, Depends, HTTPException, Response, status
from sqlalchemy.orm import Session

from payflow.database import get_db
from payflow.errors import ConflictError, NotFoundError, RefusalError
from payflow.models.enums import INITIAL_STATUSES
from payflow.services.reports import summarize
from payflow.services.repository import SqlAlchemyRepository
from payflow.services.state_machine import validate_update
from payflow.api.schemas import (
    AuditLogRecord,
    PaymentRequestRecord,
    ProjectRecord,
    RefusalResponse,
    ReportSummary,
    RequestUpdate,
    SyncSnapshot,
    VendorRecord,
)

logger = logging.getLogger(__name__)

router = APIRouter()


def get_repository(db: Session = Depends(get_db)) -> SqlAlchemyRepository:
    return SqlAlchemyRepository(db)


def _refused(e: RefusalError) -> HTTPException:
    logger.info(f"Refused: {e.message}")
    return HTTPException(
        status_code=422,
        detail={"message": e.message}
    )


def _fresh_log(repo: SqlAlchemyRepository, entry: Optional[AuditLogRecord]) -> Optional[AuditLogRecord]:
    # Audit ids are write-once
    if entry is None or repo.get_audit_log(entry.id):
        return None
    return entry


# Full state
@router.get("/sync", response_model=SyncSnapshot)
def get_full_state(repo: SqlAlchemyRepository = Depends(get_repository)):
    """All four collections in one call - the shape pull refresh uses."""
    return repo.snapshot()


# PaymentRequest endpoints
@router.get("/requests", response_model=List[PaymentRequestRecord])
def list_requests(repo: SqlAlchemyRepository = Depends(get_repository)):
    """List all requests, newest first."""
    return repo.list_requests()


@router.get("/requests/{request_id}", response_model=PaymentRequestRecord)
def get_request(request_id: str, repo: SqlAlchemyRepository = Depends(get_repository)):
    record = repo.get_request(request_id)
    if not record:
        raise HTTPException(status_code=404, detail="Payment request not found")
    return record


@router.post("/requests", response_model=PaymentRequestRecord, status_code=status.HTTP_201_CREATED, responses={
    422: {"model": RefusalResponse, "description": "Refusal - not an initial status"}
})
def create_request(
    record: PaymentRequestRecord,
    response: Response,
    repo: SqlAlchemyRepository = Depends(get_repository)
):
    """
    Store a screened request.

    Re-posting an id that already exists echoes the stored record (200) so
    retransmissions from reconnecting clients are harmless.
    """
    existing = repo.get_request(record.id)
    if existing:
        response.status_code = status.HTTP_200_OK
        return existing

    if record.status not in INITIAL_STATUSES:
        raise _refused(RefusalError(
            f"REFUSAL: A new request cannot start as {record.status.value}.",
            request_id=record.id,
        ))
    if record.utr or record.proof:
        raise _refused(RefusalError(
            "REFUSAL: Settlement details can only be set by settling the request.",
            request_id=record.id,
        ))

    return repo.add_request(record.model_copy(update={"version": 1}))


@router.patch("/requests/{request_id}", response_model=PaymentRequestRecord, responses={
    409: {"model": RefusalResponse, "description": "Stale write - version moved on"},
    422: {"model": RefusalResponse, "description": "Refusal - invalid transition or immutable field"}
})
def update_request(
    request_id: str,
    update: RequestUpdate,
    repo: SqlAlchemyRepository = Depends(get_repository)
):
    """
    Apply status and/or settlement fields.

    WILL REFUSE if:
    - amount, vendor, bill reference, requester or submission time would change
    - the status change is not an allowed transition
    - settlement lacks its transaction reference or proof
    - expected_version is stale (409)

    An ``audit`` entry in the body is written in the same commit as the update.
    """
    record = repo.get_request(request_id)
    if not record:
        raise HTTPException(status_code=404, detail="Payment request not found")

    try:
        changes = validate_update(record, update)
        if not changes:
            return record
        return repo.update_request(
            request_id,
            changes,
            log=_fresh_log(repo, update.audit),
            expected_version=record.version
        )
    except ConflictError as e:
        logger.info(f"Conflict on {request_id}: {e.message}")
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail={"message": e.message})
    except RefusalError as e:
        raise _refused(e)


@router.delete("/requests/{request_id}", status_code=status.HTTP_204_NO_CONTENT)
def delete_request(
    request_id: str,
    audit: Optional[AuditLogRecord] = Body(None, embed=True),
    repo: SqlAlchemyRepository = Depends(get_repository)
):
    """Administrative erase. An ``audit`` entry in the body is written in the same commit."""
    if audit is not None and audit.entity_id != request_id:
        raise HTTPException(
            status_code=422,
            detail={"message": f"REFUSAL: Audit entry {audit.id} does not describe {request_id}."}
        )
    try:
        repo.delete_request(request_id, log=_fresh_log(repo, audit))
    except NotFoundError:
        raise HTTPException(status_code=404, detail="Payment request not found")
    logger.warning(f"Request {request_id} erased")
    return Response(status_code=status.HTTP_204_NO_CONTENT)


# Project endpoints
@router.get("/projects", response_model=List[ProjectRecord])
def list_projects(repo: SqlAlchemyRepository = Depends(get_repository)):
    return repo.list_projects()


@router.post("/projects", response_model=ProjectRecord, status_code=status.HTTP_201_CREATED)
def create_project(record: ProjectRecord, response: Response, repo: SqlAlchemyRepository = Depends(get_repository)):
    existing = repo.get_project(record.id)
    if existing:
        response.status_code = status.HTTP_200_OK
        return existing
    return repo.add_project(record)


# Vendor endpoints
@router.get("/vendors", response_model=List[VendorRecord])
def list_vendors(repo: SqlAlchemyRepository = Depends(get_repository)):
    return repo.list_vendors()


@router.post("/vendors", response_model=VendorRecord, status_code=status.HTTP_201_CREATED)
def create_vendor(record: VendorRecord, response: Response, repo: SqlAlchemyRepository = Depends(get_repository)):
    existing = repo.get_vendor(record.id)
    if existing:
        response.status_code = status.HTTP_200_OK
        return existing
    return repo.add_vendor(record)


# Audit endpoints
@router.get("/audit-logs", response_model=List[AuditLogRecord])
def list_audit_logs(entity_id: Optional[str] = None, repo: SqlAlchemyRepository = Depends(get_repository)):
    """Audit trail, newest first. Append-only: there is no update or delete route."""
    return repo.list_audit_logs(entity_id=entity_id)


@router.post("/audit-logs", response_model=AuditLogRecord, status_code=status.HTTP_201_CREATED)
def create_audit_log(entry: AuditLogRecord, response: Response, repo: SqlAlchemyRepository = Depends(get_repository)):
    existing = repo.get_audit_log(entry.id)
    if existing:
        response.status_code = status.HTTP_200_OK
        return existing
    return repo.add_audit_log(entry)


# Reports
@router.get("/reports/summary", response_model=ReportSummary)
def get_summary(repo: SqlAlchemyRepository = Depends(get_repository)):
    """Approval queue, disbursement and per-project spend."""
    return summarize(repo.list_requests(), repo.list_projects())
