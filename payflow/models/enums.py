"""Enums for payflow - these define the valid values for statuses, roles and risk."""
from enum import Enum


class RequestStatus(str, Enum):
    """The seven statuses a PaymentRequest can be in. No other statuses are allowed."""
    NEW = "new"
    SIMILAR_EXISTS = "similar-exists"
    REQUEST_CUTOFF_MISSED = "request-cutoff-missed"
    APPROVED = "approved"
    HOLD = "hold"
    PAYMENT_CUTOFF_MISSED = "payment-cutoff-missed"
    SETTLED = "settled"


# Statuses the risk detector may assign at submission time
INITIAL_STATUSES = frozenset({
    RequestStatus.NEW,
    RequestStatus.SIMILAR_EXISTS,
    RequestStatus.REQUEST_CUTOFF_MISSED,
})


class RiskLevel(str, Enum):
    LOW = "LOW"
    MEDIUM = "MEDIUM"
    HIGH = "HIGH"


class CutoffStatus(str, Enum):
    """Binary cutoff compliance flag."""
    WITHIN = "WITHIN"
    MISSED = "MISSED"


class CutoffMode(str, Enum):
    """How cutoff compliance is evaluated."""
    DEADLINE = "deadline"
    FIXED_HOUR = "fixed-hour"


class Role(str, Enum):
    """The four operator roles supplied by the authentication collaborator."""
    APPROVER = "approver"
    SUBMISSION_DESK = "submission-desk"
    FINANCE = "finance"
    ADMINISTRATOR = "administrator"


class RequestCategory(str, Enum):
    PROJECT = "Project"
    NON_PROJECT = "Non-Project"


class PaymentMode(str, Enum):
    BANK_TRANSFER = "Bank Transfer"
    UPI = "UPI"


class PaymentType(str, Enum):
    ADVANCE = "Advance"
    PARTIAL = "Partial"
    FINAL = "Final"
    FULL = "Full"


class ProjectPhase(str, Enum):
    PLANNING = "Planning"
    ONGOING = "Ongoing"
    NEAR_COMPLETION = "Near Completion"
    COMPLETED = "Completed"


class ProjectStatus(str, Enum):
    ACTIVE = "Active"
    CLOSED = "Closed"


class VendorType(str, Enum):
    COMPANY = "Company"
    CONTRACTOR = "Contractor"
    INDIVIDUAL = "Individual"


class VendorStatus(str, Enum):
    ACTIVE = "Active"
    INACTIVE = "Inactive"
