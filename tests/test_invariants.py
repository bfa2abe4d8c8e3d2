"""
Tests that prove the lifecycle invariants.

Each test verifies a specific rule of the request state machine.
"""
from datetime import timedelta
from decimal import Decimal

import pytest

from conftest import NOW
from payflow.errors import NotFoundError, RefusalError, ValidationRefusal
from payflow.models.enums import CutoffMode, CutoffStatus, PaymentMode, RequestStatus, RiskLevel
from payflow.services.cutoff import CutoffPolicy
from payflow.services.state_machine import RequestStateMachine, validate_transition


class TestSubmission:

    def test_submission_before_deadline_is_new_and_low(self, machine, submitter, make_draft):
        record = machine.submit(make_draft(), submitter)

        assert record.id.startswith("PAY-")
        assert record.status == RequestStatus.NEW
        assert record.risk == RiskLevel.LOW
        assert record.cutoff_status == CutoffStatus.WITHIN
        assert record.submitted_at == NOW
        assert record.version == 1

    def test_submission_at_deadline_is_cutoff_missed(self, machine, submitter, make_draft):
        """
        INVARIANT: a submission exactly at its deadline is MISSED.
        """
        record = machine.submit(make_draft(payment_deadline=NOW), submitter)

        assert record.cutoff_status == CutoffStatus.MISSED
        assert record.status == RequestStatus.REQUEST_CUTOFF_MISSED
        assert record.risk == RiskLevel.HIGH

    def test_fixed_hour_policy_needs_no_deadline(self, repo, clock, submitter, make_draft):
        machine = RequestStateMachine(
            repo, cutoff_policy=CutoffPolicy(mode=CutoffMode.FIXED_HOUR, cutoff_hour=14), clock=clock
        )
        record = machine.submit(make_draft(payment_deadline=None), submitter)
        assert record.cutoff_status == CutoffStatus.WITHIN

    def test_deadline_mode_requires_deadline(self, machine, repo, submitter, make_draft):
        with pytest.raises(ValidationRefusal):
            machine.submit(make_draft(payment_deadline=None), submitter)
        assert repo.list_requests() == []

    def test_account_number_confirmation_must_match(self, machine, repo, submitter, make_draft):
        with pytest.raises(ValidationRefusal) as exc_info:
            machine.submit(make_draft(account_number_confirm="001122334456"), submitter)

        assert exc_info.value.message == "Account Number mismatch."
        assert repo.list_requests() == []
        assert repo.list_audit_logs() == []

    def test_upi_confirmation_must_match(self, machine, submitter, make_draft):
        draft = make_draft(
            payment_mode=PaymentMode.UPI,
            account_number=None,
            account_number_confirm=None,
            upi_id="acme@bank",
            upi_id_confirm="acme@bnak",
        )
        with pytest.raises(ValidationRefusal) as exc_info:
            machine.submit(draft, submitter)
        assert exc_info.value.message == "UPI ID mismatch."

    def test_confirmation_fields_are_not_stored(self, machine, repo, submitter, make_draft):
        record = machine.submit(make_draft(), submitter)
        stored = repo.get_request(record.id)
        assert stored.account_number == "001122334455"
        assert not hasattr(stored, "account_number_confirm")

    def test_only_submitters_may_submit(self, machine, approver, make_draft):
        with pytest.raises(RefusalError) as exc_info:
            machine.submit(make_draft(), approver)
        assert "REFUSAL" in str(exc_info.value)

    def test_administrator_may_submit(self, machine, admin, make_draft):
        assert machine.submit(make_draft(), admin).status == RequestStatus.NEW

    def test_settled_duplicate_is_flagged_on_submit(
        self, machine, submitter, approver, finance, make_draft, clock
    ):
        first = machine.submit(make_draft(), submitter)
        machine.approve(first.id, approver)
        machine.settle(first.id, finance, "UTR123", "https://proof/1")

        clock.advance(days=40)
        second = machine.submit(make_draft(payment_deadline=clock() + timedelta(days=1)), submitter)

        assert second.status == RequestStatus.SIMILAR_EXISTS
        assert second.risk == RiskLevel.HIGH


class TestTransitionTable:

    def test_settled_is_terminal(self):
        with pytest.raises(RefusalError) as exc_info:
            validate_transition("PAY-X", RequestStatus.SETTLED, RequestStatus.APPROVED)
        assert "terminal" in exc_info.value.message
        assert exc_info.value.current_status == "settled"
        assert exc_info.value.target_status == "approved"

    def test_new_cannot_be_settled_directly(self):
        with pytest.raises(RefusalError):
            validate_transition("PAY-X", RequestStatus.NEW, RequestStatus.SETTLED)

    def test_cutoff_missed_cannot_be_held(self):
        with pytest.raises(RefusalError):
            validate_transition("PAY-X", RequestStatus.REQUEST_CUTOFF_MISSED, RequestStatus.HOLD)

    def test_hold_can_be_approved(self):
        validate_transition("PAY-X", RequestStatus.HOLD, RequestStatus.APPROVED)


class TestApproval:

    def test_approve_new_request(self, machine, submitter, approver, make_draft):
        record = machine.submit(make_draft(), submitter)
        approved = machine.approve(record.id, approver)

        assert approved.status == RequestStatus.APPROVED
        assert approved.version == 2

    def test_approve_refused_when_cutoff_missed(self, machine, repo, submitter, approver, make_draft):
        """
        INVARIANT: a request that missed its cutoff is blocked, not warned.
        """
        record = machine.submit(make_draft(payment_deadline=NOW - timedelta(hours=1)), submitter)
        logs_before = len(repo.list_audit_logs(entity_id=record.id))

        with pytest.raises(RefusalError) as exc_info:
            machine.approve(record.id, approver)

        assert "cutoff" in exc_info.value.message
        stored = repo.get_request(record.id)
        assert stored.status == RequestStatus.REQUEST_CUTOFF_MISSED
        assert stored.version == 1
        assert len(repo.list_audit_logs(entity_id=record.id)) == logs_before

    def test_only_approvers_approve(self, machine, submitter, finance, make_draft):
        record = machine.submit(make_draft(), submitter)
        with pytest.raises(RefusalError):
            machine.approve(record.id, finance)

    def test_reapprove_is_a_no_op(self, machine, repo, submitter, approver, make_draft):
        record = machine.submit(make_draft(), submitter)
        machine.approve(record.id, approver)

        again = machine.approve(record.id, approver)

        assert again.version == 2
        assert len(repo.list_audit_logs(entity_id=record.id)) == 2

    def test_hold_then_approve(self, machine, submitter, approver, make_draft):
        record = machine.submit(make_draft(), submitter)

        held = machine.hold(record.id, approver)
        assert held.status == RequestStatus.HOLD
        assert machine.hold(record.id, approver).version == held.version

        assert machine.approve(record.id, approver).status == RequestStatus.APPROVED

    def test_approved_cannot_be_held(self, machine, submitter, approver, make_draft):
        record = machine.submit(make_draft(), submitter)
        machine.approve(record.id, approver)
        with pytest.raises(RefusalError):
            machine.hold(record.id, approver)

    def test_unknown_request(self, machine, approver):
        with pytest.raises(NotFoundError):
            machine.approve("PAY-MISSING", approver)


class TestSettlement:

    @pytest.fixture
    def approved(self, machine, submitter, approver, make_draft):
        record = machine.submit(make_draft(), submitter)
        return machine.approve(record.id, approver)

    @pytest.mark.parametrize("utr,proof", [("", "https://proof/1"), ("UTR1", ""), ("  ", "  ")])
    def test_settle_requires_both_references(self, machine, repo, finance, approved, utr, proof):
        with pytest.raises(RefusalError):
            machine.settle(approved.id, finance, utr, proof)
        assert repo.get_request(approved.id).status == RequestStatus.APPROVED

    def test_settle_records_references(self, machine, finance, approved):
        settled = machine.settle(approved.id, finance, " UTR123 ", "https://proof/1")

        assert settled.status == RequestStatus.SETTLED
        assert settled.utr == "UTR123"
        assert settled.proof == "https://proof/1"

    def test_only_finance_settles(self, machine, approver, approved):
        with pytest.raises(RefusalError):
            machine.settle(approved.id, approver, "UTR123", "https://proof/1")

    def test_settled_request_is_terminal(self, machine, approver, finance, approved):
        machine.settle(approved.id, finance, "UTR123", "https://proof/1")
        with pytest.raises(RefusalError):
            machine.settle(approved.id, finance, "UTR124", "https://proof/2")
        with pytest.raises(RefusalError):
            machine.approve(approved.id, approver)

    def test_unapproved_request_cannot_be_settled(self, machine, submitter, finance, make_draft):
        record = machine.submit(make_draft(bill_number="INV-200"), submitter)
        with pytest.raises(RefusalError):
            machine.settle(record.id, finance, "UTR123", "https://proof/1")


class TestPaymentCutoff:

    def test_sweep_flags_overdue_approved_requests(
        self, machine, repo, submitter, approver, finance, make_draft, clock
    ):
        due = machine.submit(make_draft(payment_deadline=NOW + timedelta(hours=1)), submitter)
        later = machine.submit(make_draft(bill_number="INV-101", amount=Decimal("10")), submitter)
        machine.approve(due.id, approver)
        machine.approve(later.id, approver)

        clock.advance(hours=2)
        flagged = machine.sweep_payment_cutoffs(finance)

        assert [r.id for r in flagged] == [due.id]
        assert repo.get_request(due.id).status == RequestStatus.PAYMENT_CUTOFF_MISSED
        assert repo.get_request(later.id).status == RequestStatus.APPROVED

    def test_late_settlement_is_allowed_and_noted(
        self, machine, repo, submitter, approver, finance, make_draft, clock
    ):
        record = machine.submit(make_draft(payment_deadline=NOW + timedelta(hours=1)), submitter)
        machine.approve(record.id, approver)
        clock.advance(hours=2)
        machine.flag_payment_cutoff(record.id, finance)

        clock.advance(minutes=5)
        settled = machine.settle(record.id, finance, "UTR9", "https://proof/9")

        assert settled.status == RequestStatus.SETTLED
        latest = repo.list_audit_logs(entity_id=record.id)[0]
        assert "after payment cutoff" in latest.action

    def test_cannot_flag_within_deadline(self, machine, submitter, approver, finance, make_draft):
        record = machine.submit(make_draft(), submitter)
        machine.approve(record.id, approver)
        with pytest.raises(RefusalError):
            machine.flag_payment_cutoff(record.id, finance)
