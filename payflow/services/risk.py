"""
Risk and duplicate detection for new payment requests.

Rules are evaluated in strict priority order - the first match wins:

1. Settled duplicate: same vendor, same non-empty bill reference, prior is settled
   → HIGH / similar-exists
2. Cutoff already missed at submission → HIGH / request-cutoff-missed
3. Recent similar: same vendor, same amount, submitted within the trailing window
   → MEDIUM / similar-exists
4. Otherwise → LOW / new

A settled duplicate must outrank a recency match: it routes the request to
fraud review rather than routine duplicate review.
"""
from dataclasses import dataclass
from datetime import datetime, timedelta
from decimal import Decimal
from typing import Iterable, Tuple

from payflow.api.schemas import PaymentRequestRecord
from payflow.models.enums import RequestStatus, RiskLevel

DEFAULT_WINDOW_DAYS = 30


@dataclass(frozen=True)
class Candidate:
    """The attributes of a new request that screening looks at."""
    vendor_name: str
    bill_number: str
    amount: Decimal
    submitted_at: datetime


def vendor_key(name: str) -> str:
    return (name or "").strip().casefold()


def bill_key(bill_number: str) -> str:
    return (bill_number or "").strip()


class RiskDetector:
    """Classifies a candidate against the existing request population."""

    def __init__(self, window_days: int = DEFAULT_WINDOW_DAYS):
        self.window = timedelta(days=window_days)

    def classify(
        self,
        candidate: Candidate,
        prior_requests: Iterable[PaymentRequestRecord],
        cutoff_missed: bool
    ) -> Tuple[RiskLevel, RequestStatus]:
        """Return ``(risk, initial_status)``. Pure and deterministic."""
        priors = list(prior_requests)
        vendor = vendor_key(candidate.vendor_name)
        bill = bill_key(candidate.bill_number)

        if bill and any(
            vendor_key(r.vendor_name) == vendor
            and bill_key(r.bill_number) == bill
            and r.status == RequestStatus.SETTLED
            for r in priors
        ):
            return RiskLevel.HIGH, RequestStatus.SIMILAR_EXISTS

        if cutoff_missed:
            return RiskLevel.HIGH, RequestStatus.REQUEST_CUTOFF_MISSED

        # Inclusive lower bound of the trailing window
        window_start = candidate.submitted_at - self.window
        if any(
            vendor_key(r.vendor_name) == vendor
            and r.amount == candidate.amount
            and r.submitted_at >= window_start
            for r in priors
        ):
            return RiskLevel.MEDIUM, RequestStatus.SIMILAR_EXISTS

        return RiskLevel.LOW, RequestStatus.NEW


def classify(
    candidate: Candidate,
    prior_requests: Iterable[PaymentRequestRecord],
    cutoff_missed: bool
) -> Tuple[RiskLevel, RequestStatus]:
    """Classify with the default 30-day window."""
    return RiskDetector().classify(candidate, prior_requests, cutoff_missed)
