"""Domain models - the records the authoritative store accepts and returns."""
from sqlalchemy import Column, String, Integer, DateTime, Numeric, Enum as SQLEnum
from payflow.clock import utcnow
from payflow.database import Base
from payflow.models.enums import (
    RequestStatus,
    RiskLevel,
    CutoffStatus,
    RequestCategory,
    PaymentMode,
    PaymentType,
    ProjectPhase,
    ProjectStatus,
    VendorType,
    VendorStatus,
)


def _enum(enum_cls):
    # Persist the enum values ("similar-exists"), not the member names
    return SQLEnum(enum_cls, values_callable=lambda members: [m.value for m in members])


class Project(Base):
    """
    A budget envelope that requests may be linked to for reporting.

    Invariants:
    - budget is immutable once created
    - never used for authorization
    """
    __tablename__ = "projects"

    id = Column(String, primary_key=True, index=True)
    name = Column(String, nullable=False)
    client_details = Column(String, nullable=True)
    location = Column(String, nullable=True)
    in_charge = Column(String, nullable=True)
    budget = Column(Numeric(14, 2), nullable=False)
    phase = Column(_enum(ProjectPhase), nullable=False, default=ProjectPhase.PLANNING)
    current_work = Column(String, nullable=True)
    next_work = Column(String, nullable=True)
    status = Column(_enum(ProjectStatus), nullable=False, default=ProjectStatus.ACTIVE)
    created_at = Column(DateTime, nullable=False, default=utcnow)


class Vendor(Base):
    __tablename__ = "vendors"

    id = Column(String, primary_key=True, index=True)
    name = Column(String, nullable=False)
    type = Column(_enum(VendorType), nullable=False, default=VendorType.COMPANY)
    contact = Column(String, nullable=True)
    status = Column(_enum(VendorStatus), nullable=False, default=VendorStatus.ACTIVE)
    created_at = Column(DateTime, nullable=False, default=utcnow)


class PaymentRequest(Base):
    """
    A payment request moves through: new/similar-exists/request-cutoff-missed
    → approved/hold → settled (or payment-cutoff-missed → settled).

    Invariants enforced in the service layer:
    - amount, vendor, bill reference, requester and submitted_at never change
    - status only changes through the lifecycle state machine
    - version increments on every applied change
    """
    __tablename__ = "payment_requests"

    id = Column(String, primary_key=True, index=True)

    # Requester accountability
    raised_by = Column(String, nullable=False)
    raised_by_role = Column(String, nullable=True)
    raised_by_department = Column(String, nullable=True)
    submitted_at = Column(DateTime, nullable=False, index=True)

    category = Column(_enum(RequestCategory), nullable=False, default=RequestCategory.NON_PROJECT)
    purpose = Column(String, nullable=True)
    project_id = Column(String, nullable=True, index=True)  # Reporting only
    work_order_number = Column(String, nullable=True)

    # Vendor and bill (immutable)
    vendor_id = Column(String, nullable=True)
    vendor_name = Column(String, nullable=False, index=True)
    bill_number = Column(String, nullable=False, default="")
    bill_date = Column(String, nullable=True)
    amount = Column(Numeric(14, 2), nullable=False)
    payment_type = Column(_enum(PaymentType), nullable=False, default=PaymentType.FULL)

    # Destination
    payment_mode = Column(_enum(PaymentMode), nullable=False, default=PaymentMode.BANK_TRANSFER)
    account_number = Column(String, nullable=True)
    ifsc = Column(String, nullable=True)
    upi_id = Column(String, nullable=True)

    # Supporting documents
    bills_link = Column(String, nullable=True)
    work_proof_link = Column(String, nullable=True)

    # Compliance
    payment_deadline = Column(DateTime, nullable=True)
    cutoff_status = Column(_enum(CutoffStatus), nullable=False)
    risk = Column(_enum(RiskLevel), nullable=False)
    status = Column(_enum(RequestStatus), nullable=False, index=True)

    # Settlement (set only by the settle transition)
    utr = Column(String, nullable=True)
    proof = Column(String, nullable=True)  # Link or data URL

    version = Column(Integer, nullable=False, default=1)
