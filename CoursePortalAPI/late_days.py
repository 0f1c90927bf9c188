"""
Late-day rules: balance accounting, assignment availability and deadline extension.

Everything in this module is a pure function of the rows passed in, except
`LateDaysView`, which holds one student's rows and applies claim results to
them. Rows may be ORM objects or any object exposing the same attribute names.
"""

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Any, Callable, Dict, Iterable, List, Optional, Tuple

from CoursePortalAPI.constants import (
    AVAILABILITY_ARCHIVED,
    AVAILABILITY_AWAITING_DEADLINE,
    AVAILABILITY_CLAIMABLE,
    AVAILABILITY_CLOSED,
    AVAILABILITY_NO_BALANCE,
    BASE_ALLOWANCE,
    HOURS_PER_LATE_DAY,
)
from CoursePortalAPI.errors import ClaimValidationError, NotFoundError, ProcedureError

logger = logging.getLogger(__name__)


def as_utc(value: Optional[datetime]) -> Optional[datetime]:
    """Return `value` as an aware UTC datetime; naive values are taken to be UTC."""
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass
class LateDayBalance:
    """
    A student's late-day totals.

    Attributes:
        used_days (int): Sum of days_used over the student's claims.
        granted_days (int): Sum of days_delta over the student's adjustments.
        total_allowance (int): BASE_ALLOWANCE plus granted_days.
        remaining (int): Days still available, never below zero.
    """
    used_days: int
    granted_days: int
    total_allowance: int
    remaining: int


@dataclass
class AssignmentClaimStats:
    claimed_days: int = 0
    claim_count: int = 0
    latest_claim_at: Optional[datetime] = None
    latest_due_at: Optional[datetime] = None


@dataclass
class AssignmentAvailability:
    """
    Availability of one assignment for one student.

    Attributes:
        assignment_id (int): The assignment.
        state (str): One of the AVAILABILITY_* constants.
        effective_due_at (datetime): Deadline currently in force, or None.
        claimed_days (int): Days this student already spent on the assignment.
        claim_count (int): Number of claims this student made on it.
        latest_claim_at (datetime): When the most recent claim was made.
    """
    assignment_id: Any
    state: str
    effective_due_at: Optional[datetime]
    claimed_days: int = 0
    claim_count: int = 0
    latest_claim_at: Optional[datetime] = None

    @property
    def can_claim(self) -> bool:
        return self.state == AVAILABILITY_CLAIMABLE


def compute_balance(claims: Iterable[Any], adjustments: Iterable[Any]) -> LateDayBalance:
    """
    Derive a student's balance from their claims and adjustments.

    Args:
        claims (Iterable): The student's claim rows (uses `days_used`).
        adjustments (Iterable): The student's adjustment rows (uses `days_delta`).

    Returns:
        LateDayBalance: Used, granted, total and remaining days.
    """
    used = sum(int(claim.days_used or 0) for claim in claims)
    granted = sum(int(adjustment.days_delta or 0) for adjustment in adjustments)
    total = BASE_ALLOWANCE + granted
    return LateDayBalance(
        used_days=used,
        granted_days=granted,
        total_allowance=total,
        remaining=max(0, total - used),
    )


def extend_deadline(current_due_at: datetime, days: int) -> datetime:
    """
    Push a deadline forward by whole late days.

    The extension always starts from the deadline in force, not from the time
    the claim is made.

    Args:
        current_due_at (datetime): The effective deadline being extended.
        days (int): Whole late days, at least one.

    Returns:
        datetime: The new deadline, exactly `days * 24h` later.

    Raises:
        ValueError: If days is not a positive integer.
    """
    if isinstance(days, bool) or not isinstance(days, int) or days < 1:
        raise ValueError("Late days must be a whole number greater than 0.")
    return as_utc(current_due_at) + timedelta(hours=HOURS_PER_LATE_DAY * days)


def _claim_sort_key(claim: Any) -> Tuple[datetime, datetime]:
    return (as_utc(claim.claimed_at), as_utc(claim.due_at_after_claim))


def group_claims_by_assignment(claims: Iterable[Any]) -> Dict[Any, AssignmentClaimStats]:
    """
    Aggregate claims per assignment in a single pass.

    O(n) in the number of claims. The latest claim (by claimed_at) decides
    `latest_due_at`, which is the assignment's effective deadline.

    Args:
        claims (Iterable): Claim rows of one student.

    Returns:
        dict: assignment_id -> AssignmentClaimStats.
    """
    grouped: Dict[Any, AssignmentClaimStats] = {}
    latest: Dict[Any, Any] = {}
    for claim in claims:
        stats = grouped.setdefault(claim.assignment_id, AssignmentClaimStats())
        stats.claimed_days += int(claim.days_used or 0)
        stats.claim_count += 1
        current = latest.get(claim.assignment_id)
        if current is None or _claim_sort_key(claim) > _claim_sort_key(current):
            latest[claim.assignment_id] = claim
    for assignment_id, claim in latest.items():
        grouped[assignment_id].latest_claim_at = as_utc(claim.claimed_at)
        grouped[assignment_id].latest_due_at = as_utc(claim.due_at_after_claim)
    return grouped


def effective_deadline(assignment: Any, stats: Optional[AssignmentClaimStats]) -> Optional[datetime]:
    if stats is not None and stats.latest_due_at is not None:
        return stats.latest_due_at
    return as_utc(assignment.due_at)


def _classify(assignment: Any, stats: Optional[AssignmentClaimStats], remaining: int, now: datetime) -> AssignmentAvailability:
    due_at = effective_deadline(assignment, stats)
    stats = stats or AssignmentClaimStats()

    # First matching check wins
    if not assignment.active:
        state = AVAILABILITY_ARCHIVED
    elif due_at is None:
        state = AVAILABILITY_AWAITING_DEADLINE
    elif as_utc(now) > due_at:
        state = AVAILABILITY_CLOSED
    elif remaining <= 0:
        state = AVAILABILITY_NO_BALANCE
    else:
        state = AVAILABILITY_CLAIMABLE

    return AssignmentAvailability(
        assignment_id=assignment.id,
        state=state,
        effective_due_at=due_at,
        claimed_days=stats.claimed_days,
        claim_count=stats.claim_count,
        latest_claim_at=stats.latest_claim_at,
    )


def classify_assignment(assignment: Any, claims: Iterable[Any], remaining: int, now: Optional[datetime] = None) -> AssignmentAvailability:
    """
    Classify one assignment for the current student.

    Args:
        assignment: The assignment row.
        claims (Iterable): The student's claims; claims on other assignments are ignored.
        remaining (int): The student's remaining balance.
        now (datetime, optional): Evaluation time, defaults to the current UTC time.

    Returns:
        AssignmentAvailability: State plus per-assignment claim stats.
    """
    grouped = group_claims_by_assignment(c for c in claims if c.assignment_id == assignment.id)
    return _classify(assignment, grouped.get(assignment.id), remaining, now or utcnow())


def classify_assignments(assignments: Iterable[Any], claims: Iterable[Any], remaining: int, now: Optional[datetime] = None) -> List[AssignmentAvailability]:
    """Classify every assignment, grouping the claims once."""
    grouped = group_claims_by_assignment(claims)
    now = now or utcnow()
    return [_classify(a, grouped.get(a.id), remaining, now) for a in assignments]


ClaimProcedure = Callable[[Any, int], Dict[str, Any]]
Refetch = Callable[[], Tuple[List[Any], List[Any], List[Any]]]


class LateDaysView:
    """
    One student's late-day state: assignments, own claims and adjustments.

    Derived values (balance, availability) are recomputed from the rows on
    every access so a claim or a deleted claim is reflected immediately.
    """

    def __init__(self, assignments: Iterable[Any], claims: Iterable[Any], adjustments: Iterable[Any]):
        self.assignments: List[Any] = list(assignments)
        self.claims: List[Any] = list(claims)
        self.adjustments: List[Any] = list(adjustments)
        self.closed = False

    def close(self) -> None:
        """Stop accepting results; responses that arrive afterwards are dropped."""
        self.closed = True

    def replace(self, assignments: Iterable[Any], claims: Iterable[Any], adjustments: Iterable[Any]) -> None:
        self.assignments = list(assignments)
        self.claims = list(claims)
        self.adjustments = list(adjustments)

    @property
    def balance(self) -> LateDayBalance:
        return compute_balance(self.claims, self.adjustments)

    def availability(self, now: Optional[datetime] = None) -> List[AssignmentAvailability]:
        return classify_assignments(self.assignments, self.claims, self.balance.remaining, now)

    def find_assignment(self, assignment_id: Any) -> Any:
        for assignment in self.assignments:
            if assignment.id == assignment_id:
                return assignment
        raise NotFoundError("Assignment not found")

    def availability_for(self, assignment_id: Any, now: Optional[datetime] = None) -> AssignmentAvailability:
        assignment = self.find_assignment(assignment_id)
        return classify_assignment(assignment, self.claims, self.balance.remaining, now)

    def validate_claim(self, assignment_id: Any, requested_days: Any, now: Optional[datetime] = None) -> AssignmentAvailability:
        """
        Check a claim locally before anything is sent to the store.

        Raises:
            NotFoundError: If the assignment is not in the view.
            ClaimValidationError: If the assignment is not claimable or the
                day count is not a whole number between 1 and the remaining balance.
        """
        availability = self.availability_for(assignment_id, now)
        if not availability.can_claim:
            raise ClaimValidationError(
                f"Late days cannot be claimed for this assignment ({availability.state}).",
                code=f"late_days_{availability.state}",
            )
        remaining = self.balance.remaining
        if isinstance(requested_days, bool) or not isinstance(requested_days, int) or requested_days < 1 or requested_days > remaining:
            raise ClaimValidationError(f"Choose between 1 and {remaining} late day(s).")
        return availability

    def submit_claim(
        self,
        assignment_id: Any,
        requested_days: Any,
        procedure: ClaimProcedure,
        refetch: Optional[Refetch] = None,
        now: Optional[datetime] = None,
    ) -> Optional[Dict[str, Any]]:
        """
        Validate and submit a claim, then apply the confirmed result.

        Args:
            assignment_id: The assignment to claim against.
            requested_days (int): Whole days to claim.
            procedure (callable): Store procedure `(assignment_id, days) -> result dict`.
            refetch (callable, optional): Returns fresh `(assignments, claims, adjustments)`;
                used when the result does not carry the created claim.
            now (datetime, optional): Evaluation time for the local checks.

        Returns:
            dict: The procedure result, or None if the view was closed while
            the call was in flight.

        Raises:
            ClaimValidationError: Local checks failed; the procedure was not called.
            ProcedureError: The store rejected the claim; state is unchanged.
        """
        self.validate_claim(assignment_id, requested_days, now)

        result = procedure(assignment_id, requested_days) or {}
        if result.get("success") is False:
            raise ProcedureError(result.get("message") or "Late-day claim was rejected.", code="late_days_claim_failed")

        if self.closed:
            logger.debug("Discarding late-day claim result for closed view (assignment %s)", assignment_id)
            return None

        claim = result.get("claim")
        if claim is not None:
            self.claims.insert(0, claim)
        elif refetch is not None:
            self.replace(*refetch())
        return result
