"""
State machine that enforces the payment request lifecycle.

This is the core enforcement mechanism - all status changes MUST go through here.
"""
import logging
from typing import Any, Callable, Dict, Optional

from payflow.api.schemas import (
    IMMUTABLE_REQUEST_FIELDS,
    PaymentRequestRecord,
    ProjectDraft,
    ProjectRecord,
    RequestDraft,
    RequestUpdate,
    User,
    VendorDraft,
    VendorRecord,
)
from payflow.clock import new_id, utcnow
from payflow.errors import ConflictError, NotFoundError, RefusalError, ValidationRefusal
from payflow.models.audit import EntityType
from payflow.models.enums import (
    CutoffStatus,
    PaymentMode,
    RequestStatus,
    Role,
)
from payflow.services.audit import AuditRecorder
from payflow.services.cutoff import CutoffPolicy
from payflow.services.repository import Repository
from payflow.services.risk import Candidate, RiskDetector

logger = logging.getLogger(__name__)

# Allowed transitions. SETTLED is terminal.
TRANSITIONS = {
    RequestStatus.NEW: {RequestStatus.APPROVED, RequestStatus.HOLD},
    RequestStatus.SIMILAR_EXISTS: {RequestStatus.APPROVED, RequestStatus.HOLD},
    RequestStatus.REQUEST_CUTOFF_MISSED: {RequestStatus.APPROVED},
    RequestStatus.HOLD: {RequestStatus.APPROVED},
    RequestStatus.APPROVED: {RequestStatus.SETTLED, RequestStatus.PAYMENT_CUTOFF_MISSED},
    RequestStatus.PAYMENT_CUTOFF_MISSED: {RequestStatus.SETTLED},
    RequestStatus.SETTLED: set(),
}

# Who may move a request into each target status
TRANSITION_ROLES = {
    RequestStatus.APPROVED: {Role.APPROVER},
    RequestStatus.HOLD: {Role.APPROVER},
    RequestStatus.SETTLED: {Role.FINANCE},
    RequestStatus.PAYMENT_CUTOFF_MISSED: {Role.FINANCE},
}

SUBMITTER_ROLES = {Role.SUBMISSION_DESK, Role.ADMINISTRATOR}
ADMIN_ROLES = {Role.ADMINISTRATOR}


def validate_transition(request_id: str, current: RequestStatus, target: RequestStatus) -> None:
    """Raise RefusalError unless ``current → target`` is in the transition table."""
    allowed = TRANSITIONS[current]
    if not allowed:
        raise RefusalError(
            f"REFUSAL: Request {request_id} is {current.value}, which is terminal. "
            "No further transitions are permitted.",
            request_id=request_id,
            current_status=current.value,
            target_status=target.value,
        )
    if target not in allowed:
        raise RefusalError(
            f"REFUSAL: Request {request_id} cannot move from {current.value} to {target.value}. "
            f"Allowed: {', '.join(sorted(s.value for s in allowed))}",
            request_id=request_id,
            current_status=current.value,
            target_status=target.value,
        )


def check_settlement_refs(request_id: str, utr: Optional[str], proof: Optional[str]) -> None:
    """Settlement needs both a transaction reference and a proof of payment."""
    missing = []
    if not (utr or "").strip():
        missing.append("transaction reference (UTR)")
    if not (proof or "").strip():
        missing.append("proof of payment")
    if missing:
        raise RefusalError(
            f"REFUSAL: Cannot settle {request_id} without {' and '.join(missing)}.",
            request_id=request_id,
            target_status=RequestStatus.SETTLED.value,
        )


def validate_update(record: PaymentRequestRecord, update: RequestUpdate) -> Dict[str, Any]:
    """
    Check a PATCH payload against the stored record and return the changes to apply.

    - any changed immutable field is refused
    - a status change must follow the transition table (settlement needs its refs)
    - approving a request that missed its cutoff is refused
    - a stale ``expected_version`` is a conflict, unless the patch is already applied
    An empty dict means the stored record already reflects the patch. Explicit
    nulls are treated as absent.
    """
    payload = {
        field: value
        for field, value in update.model_dump(exclude_unset=True).items()
        if value is not None
    }

    if update.audit is not None and update.audit.entity_id != record.id:
        raise RefusalError(
            f"REFUSAL: Audit entry {update.audit.id} does not describe {record.id}.",
            request_id=record.id,
        )

    tampered = [
        field for field in IMMUTABLE_REQUEST_FIELDS
        if field in payload and payload[field] != getattr(record, field)
    ]
    if tampered:
        raise RefusalError(
            f"REFUSAL: {', '.join(tampered)} cannot be changed after submission.",
            request_id=record.id,
        )

    changes = {
        field: payload[field]
        for field in ("status", "utr", "proof")
        if field in payload and payload[field] != getattr(record, field)
    }
    if not changes:
        return {}

    expected = payload.get("expected_version")
    if expected is not None and expected != record.version:
        raise ConflictError(
            f"Payment request {record.id} is at version {record.version}, not {expected}. "
            "Refresh and retry."
        )

    target = changes.get("status")
    if target is not None:
        validate_transition(record.id, record.status, target)
    if target == RequestStatus.APPROVED and record.cutoff_status == CutoffStatus.MISSED:
        raise RefusalError(
            f"REFUSAL: Request {record.id} missed its cutoff and cannot be approved.",
            request_id=record.id,
            current_status=record.status.value,
            target_status=target.value,
        )
    if target == RequestStatus.SETTLED:
        check_settlement_refs(record.id, changes.get("utr", record.utr), changes.get("proof", record.proof))
    elif "utr" in changes or "proof" in changes:
        raise RefusalError(
            f"REFUSAL: Settlement details of {record.id} can only be set by settling it.",
            request_id=record.id,
            current_status=record.status.value,
        )
    return changes


class RequestStateMachine:
    """Enforces transition invariants and business rules over a repository."""

    def __init__(
        self,
        repository: Repository,
        cutoff_policy: Optional[CutoffPolicy] = None,
        detector: Optional[RiskDetector] = None,
        clock: Callable = utcnow
    ):
        self.repository = repository
        self.cutoff_policy = cutoff_policy or CutoffPolicy()
        self.detector = detector or RiskDetector()
        self.clock = clock
        self.recorder = AuditRecorder(repository, clock=clock)

    def _require_role(self, actor: User, roles, action: str) -> None:
        if actor.role not in roles:
            raise RefusalError(
                f"REFUSAL: {actor.role.value} may not {action}. "
                f"Requires: {', '.join(sorted(r.value for r in roles))}"
            )

    def _load(self, request_id: str) -> PaymentRequestRecord:
        record = self.repository.get_request(request_id)
        if record is None:
            raise NotFoundError(f"Payment request {request_id} not found")
        return record

    def submit(self, draft: RequestDraft, actor: User) -> PaymentRequestRecord:
        """
        Screen and record a new request.

        Cutoff is evaluated first, then risk/duplicate classification against the
        current population; both are frozen on the record. Creation is logged.
        """
        self._require_role(actor, SUBMITTER_ROLES, "submit payment requests")

        if draft.payment_mode == PaymentMode.BANK_TRANSFER:
            if not draft.account_number:
                raise ValidationRefusal("Account number is required for bank transfers.")
            if draft.account_number != draft.account_number_confirm:
                raise ValidationRefusal("Account Number mismatch.")
        else:
            if not draft.upi_id:
                raise ValidationRefusal("UPI ID is required for UPI payments.")
            if draft.upi_id != draft.upi_id_confirm:
                raise ValidationRefusal("UPI ID mismatch.")

        now = self.clock()
        cutoff = self.cutoff_policy.evaluate(now, draft.payment_deadline)
        candidate = Candidate(
            vendor_name=draft.vendor_name,
            bill_number=draft.bill_number,
            amount=draft.amount,
            submitted_at=now,
        )
        risk, status = self.detector.classify(
            candidate, self.repository.list_requests(), cutoff == CutoffStatus.MISSED
        )

        fields = draft.model_dump(exclude={"account_number_confirm", "upi_id_confirm"})
        record = PaymentRequestRecord(
            id=new_id("PAY"),
            submitted_at=now,
            cutoff_status=cutoff,
            risk=risk,
            status=status,
            version=1,
            **fields,
        )
        log = self.recorder.entry_for(
            f"Submitted {record.vendor_name} bill {record.bill_number or '(none)'} "
            f"for {record.amount} - status {status.value}, risk {risk.value}",
            record.id,
            actor,
        )
        logger.info(f"Request {record.id} submitted: status={status.value} risk={risk.value}")
        return self.repository.add_request(record, log=log)

    def approve(self, request_id: str, actor: User) -> PaymentRequestRecord:
        """
        Approve a pending or held request.

        HARD REFUSAL when the request missed its cutoff - blocked, not warned.
        Re-approving an approved request is a no-op.
        """
        self._require_role(actor, TRANSITION_ROLES[RequestStatus.APPROVED], "approve requests")
        record = self._load(request_id)
        if record.status == RequestStatus.APPROVED:
            return record

        validate_transition(record.id, record.status, RequestStatus.APPROVED)
        if record.cutoff_status == CutoffStatus.MISSED:
            raise RefusalError(
                f"REFUSAL: Request {record.id} missed its cutoff and cannot be approved.",
                request_id=record.id,
                current_status=record.status.value,
                target_status=RequestStatus.APPROVED.value,
            )
        return self._transition(record, RequestStatus.APPROVED, actor, "Approved for settlement")

    def hold(self, request_id: str, actor: User) -> PaymentRequestRecord:
        """Put a pending request on hold. Reversible via approve; re-holding is a no-op."""
        self._require_role(actor, TRANSITION_ROLES[RequestStatus.HOLD], "hold requests")
        record = self._load(request_id)
        if record.status == RequestStatus.HOLD:
            return record

        validate_transition(record.id, record.status, RequestStatus.HOLD)
        return self._transition(record, RequestStatus.HOLD, actor, "Placed on hold")

    def settle(self, request_id: str, actor: User, utr: str, proof: str) -> PaymentRequestRecord:
        """Mark an approved request paid. Both references are mandatory."""
        self._require_role(actor, TRANSITION_ROLES[RequestStatus.SETTLED], "settle requests")
        record = self._load(request_id)

        validate_transition(record.id, record.status, RequestStatus.SETTLED)
        check_settlement_refs(record.id, utr, proof)
        late = " (after payment cutoff)" if record.status == RequestStatus.PAYMENT_CUTOFF_MISSED else ""
        return self._transition(
            record,
            RequestStatus.SETTLED,
            actor,
            f"Settled with UTR {utr.strip()}{late}",
            extra={"utr": utr.strip(), "proof": proof.strip()},
        )

    def flag_payment_cutoff(self, request_id: str, actor: User) -> PaymentRequestRecord:
        """Flag an approved request whose payment deadline has passed unpaid."""
        self._require_role(
            actor, TRANSITION_ROLES[RequestStatus.PAYMENT_CUTOFF_MISSED], "flag payment cutoffs"
        )
        record = self._load(request_id)

        validate_transition(record.id, record.status, RequestStatus.PAYMENT_CUTOFF_MISSED)
        if record.payment_deadline is None and self.cutoff_policy.requires_deadline:
            raise RefusalError(
                f"REFUSAL: Request {record.id} has no payment deadline to miss.",
                request_id=record.id,
            )
        if self.cutoff_policy.evaluate(self.clock(), record.payment_deadline) == CutoffStatus.WITHIN:
            raise RefusalError(
                f"REFUSAL: Request {record.id} is still within its payment cutoff.",
                request_id=record.id,
            )
        return self._transition(
            record, RequestStatus.PAYMENT_CUTOFF_MISSED, actor, "Payment cutoff missed"
        )

    def sweep_payment_cutoffs(self, actor: User):
        """Flag every approved request that is past its payment cutoff."""
        flagged = []
        for record in self.repository.list_requests():
            if record.status != RequestStatus.APPROVED:
                continue
            try:
                flagged.append(self.flag_payment_cutoff(record.id, actor))
            except RefusalError:
                continue
        return flagged

    def erase(self, request_id: str, actor: User) -> None:
        """Administrative erase. Not a transition, but always logged."""
        self._require_role(actor, ADMIN_ROLES, "erase requests")
        record = self._load(request_id)
        log = self.recorder.entry_for(
            f"Erased record ({record.status.value}, {record.vendor_name}, {record.amount})",
            record.id,
            actor,
        )
        logger.warning(f"Request {record.id} erased by {actor.name}")
        self.repository.delete_request(record.id, log=log)

    def create_project(self, draft: ProjectDraft, actor: User) -> ProjectRecord:
        self._require_role(actor, ADMIN_ROLES, "create projects")
        record = ProjectRecord(id=new_id("PRJ"), created_at=self.clock(), **draft.model_dump())
        log = self.recorder.entry_for(
            f"Created project {record.name} (budget {record.budget})",
            record.id,
            actor,
            entity_type=EntityType.PROJECT,
        )
        return self.repository.add_project(record, log=log)

    def create_vendor(self, draft: VendorDraft, actor: User) -> VendorRecord:
        self._require_role(actor, ADMIN_ROLES, "register vendors")
        record = VendorRecord(id=new_id("VND"), created_at=self.clock(), **draft.model_dump())
        log = self.recorder.entry_for(
            f"Registered vendor {record.name}",
            record.id,
            actor,
            entity_type=EntityType.VENDOR,
        )
        return self.repository.add_vendor(record, log=log)

    def _transition(
        self,
        record: PaymentRequestRecord,
        target: RequestStatus,
        actor: User,
        action: str,
        extra: Optional[Dict[str, Any]] = None
    ) -> PaymentRequestRecord:
        changes = {"status": target}
        if extra:
            changes.update(extra)
        log = self.recorder.entry_for(f"{action} ({record.status.value} → {target.value})", record.id, actor)
        updated = self.repository.update_request(
            record.id, changes, log=log, expected_version=record.version
        )
        logger.info(f"Request {record.id}: {record.status.value} → {target.value} by {actor.role.value}")
        return updated
