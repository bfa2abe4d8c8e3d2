"""Reporting over the request population. Project links are used here and nowhere else."""
from collections import Counter
from decimal import Decimal
from typing import Iterable

from payflow.api.schemas import PaymentRequestRecord, ProjectRecord, ProjectSpend, ReportSummary
from payflow.models.enums import RequestStatus, RiskLevel

PENDING_APPROVAL = {
    RequestStatus.NEW,
    RequestStatus.SIMILAR_EXISTS,
    RequestStatus.REQUEST_CUTOFF_MISSED,
    RequestStatus.HOLD,
}
AWAITING_SETTLEMENT = {RequestStatus.APPROVED, RequestStatus.PAYMENT_CUTOFF_MISSED}


def summarize(
    requests: Iterable[PaymentRequestRecord],
    projects: Iterable[ProjectRecord]
) -> ReportSummary:
    requests = list(requests)
    settled = [r for r in requests if r.status == RequestStatus.SETTLED]

    spend = []
    for project in projects:
        linked = [r for r in requests if r.project_id == project.id]
        spend.append(ProjectSpend(
            project_id=project.id,
            name=project.name,
            budget=project.budget,
            settled=sum((r.amount for r in linked if r.status == RequestStatus.SETTLED), Decimal("0")),
            committed=sum((r.amount for r in linked if r.status in AWAITING_SETTLEMENT), Decimal("0")),
        ))

    return ReportSummary(
        approval_queue=sum(1 for r in requests if r.status in PENDING_APPROVAL),
        awaiting_settlement=sum(1 for r in requests if r.status in AWAITING_SETTLEMENT),
        settled_count=len(settled),
        total_disbursed=sum((r.amount for r in settled), Decimal("0")),
        high_risk_open=sum(
            1 for r in requests
            if r.risk == RiskLevel.HIGH and r.status != RequestStatus.SETTLED
        ),
        by_status=dict(Counter(r.status.value for r in requests)),
        projects=spend,
    )
