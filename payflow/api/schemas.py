"""Pydantic schemas for request/response validation and client-side records."""
from datetime import datetime
from decimal import Decimal
from typing import Annotated, Dict, List, Optional

from pydantic import AfterValidator, BaseModel, ConfigDict, Field

from payflow.clock import to_naive_utc
from payflow.models.enums import (
    RequestStatus,
    RiskLevel,
    CutoffStatus,
    Role,
    RequestCategory,
    PaymentMode,
    PaymentType,
    ProjectPhase,
    ProjectStatus,
    VendorType,
    VendorStatus,
)

UtcDatetime = Annotated[datetime, AfterValidator(to_naive_utc)]


class User(BaseModel):
    """Operator identity supplied by the authentication collaborator."""
    id: str
    username: str
    name: str
    role: Role


# Project schemas
class ProjectDraft(BaseModel):
    name: str = Field(..., min_length=1, max_length=200)
    client_details: Optional[str] = None
    location: Optional[str] = None
    in_charge: Optional[str] = None
    budget: Decimal = Field(..., ge=0, max_digits=14, decimal_places=2)
    phase: ProjectPhase = ProjectPhase.PLANNING
    current_work: Optional[str] = None
    next_work: Optional[str] = None


class ProjectRecord(ProjectDraft):
    model_config = ConfigDict(from_attributes=True)

    id: str
    status: ProjectStatus = ProjectStatus.ACTIVE
    created_at: UtcDatetime


# Vendor schemas
class VendorDraft(BaseModel):
    name: str = Field(..., min_length=1, max_length=200)
    type: VendorType = VendorType.COMPANY
    contact: Optional[str] = None


class VendorRecord(VendorDraft):
    model_config = ConfigDict(from_attributes=True)

    id: str
    status: VendorStatus = VendorStatus.ACTIVE
    created_at: UtcDatetime


# PaymentRequest schemas
class RequestDraft(BaseModel):
    """What the submission desk fills in. Risk, status and cutoff are computed."""
    raised_by: str = Field(..., min_length=1)
    raised_by_role: Optional[str] = None
    raised_by_department: Optional[str] = None
    category: RequestCategory = RequestCategory.NON_PROJECT
    purpose: Optional[str] = None
    project_id: Optional[str] = None
    work_order_number: Optional[str] = None

    vendor_id: Optional[str] = None
    vendor_name: str = Field(..., min_length=1)
    bill_number: str = ""
    bill_date: Optional[str] = None
    amount: Decimal = Field(..., gt=0, max_digits=14, decimal_places=2)
    payment_type: PaymentType = PaymentType.FULL

    payment_mode: PaymentMode = PaymentMode.BANK_TRANSFER
    account_number: Optional[str] = None
    account_number_confirm: Optional[str] = None
    ifsc: Optional[str] = None
    upi_id: Optional[str] = None
    upi_id_confirm: Optional[str] = None

    bills_link: Optional[str] = None
    work_proof_link: Optional[str] = None
    payment_deadline: Optional[UtcDatetime] = None


class PaymentRequestRecord(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    raised_by: str
    raised_by_role: Optional[str] = None
    raised_by_department: Optional[str] = None
    submitted_at: UtcDatetime
    category: RequestCategory = RequestCategory.NON_PROJECT
    purpose: Optional[str] = None
    project_id: Optional[str] = None
    work_order_number: Optional[str] = None

    vendor_id: Optional[str] = None
    vendor_name: str
    bill_number: str = ""
    bill_date: Optional[str] = None
    amount: Decimal = Field(..., gt=0, max_digits=14, decimal_places=2)
    payment_type: PaymentType = PaymentType.FULL

    payment_mode: PaymentMode = PaymentMode.BANK_TRANSFER
    account_number: Optional[str] = None
    ifsc: Optional[str] = None
    upi_id: Optional[str] = None

    bills_link: Optional[str] = None
    work_proof_link: Optional[str] = None

    payment_deadline: Optional[UtcDatetime] = None
    cutoff_status: CutoffStatus
    risk: RiskLevel
    status: RequestStatus

    utr: Optional[str] = None
    proof: Optional[str] = None
    version: int = 1


# Fields an update payload may never change
IMMUTABLE_REQUEST_FIELDS = (
    "amount",
    "vendor_id",
    "vendor_name",
    "bill_number",
    "raised_by",
    "submitted_at",
)


# Audit schemas
class AuditLogRecord(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    action: str
    entity_type: str
    entity_id: str
    actor_name: str
    actor_role: Role
    timestamp: UtcDatetime


class RequestUpdate(BaseModel):
    """
    PATCH body. Only status and settlement fields are applied; immutable
    fields may be echoed back unchanged but any difference is refused.

    ``audit`` is the entry describing the change. The store writes it in
    the same commit as the update, and not at all when nothing changes.
    """
    model_config = ConfigDict(extra="forbid")

    status: Optional[RequestStatus] = None
    utr: Optional[str] = None
    proof: Optional[str] = None
    expected_version: Optional[int] = None
    audit: Optional[AuditLogRecord] = None

    amount: Optional[Decimal] = None
    vendor_id: Optional[str] = None
    vendor_name: Optional[str] = None
    bill_number: Optional[str] = None
    raised_by: Optional[str] = None
    submitted_at: Optional[UtcDatetime] = None


class SyncSnapshot(BaseModel):
    """Full authoritative state, the payload of GET /api/sync."""
    projects: List[ProjectRecord] = []
    vendors: List[VendorRecord] = []
    requests: List[PaymentRequestRecord] = []
    audit_logs: List[AuditLogRecord] = []


# Reports
class ProjectSpend(BaseModel):
    project_id: str
    name: str
    budget: Decimal
    settled: Decimal
    committed: Decimal


class ReportSummary(BaseModel):
    approval_queue: int
    awaiting_settlement: int
    settled_count: int
    total_disbursed: Decimal
    high_risk_open: int
    by_status: Dict[str, int]
    projects: List[ProjectSpend]


# Error response
class RefusalResponse(BaseModel):
    """Response when an action is refused."""
    message: str
