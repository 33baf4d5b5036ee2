"""Incentive milestones and the approval workflow."""

import logging
import uuid
from datetime import date
from typing import Iterable, Optional

from nethaji.errors import InvalidTransitionError
from nethaji.models import (
    Incentive,
    IncentiveCreateRequest,
    MilestoneReport,
    MilestoneStatus,
    Student,
)

logger = logging.getLogger(__name__)

STREAK_MILESTONE = '16_week_streak'
STREAK_MILESTONE_DAYS = 16 * 7
STREAK_MILESTONE_AMOUNT = 5000.0

# Allowed approval_status moves
TRANSITIONS = {
    'pending': ('approved', 'rejected'),
    'approved': ('disbursed',),
    'rejected': (),
    'disbursed': (),
}
OPEN_STATUSES = ('pending', 'approved')


def check_milestone_eligibility(student: Student, incentives: Iterable[Incentive]) -> MilestoneReport:
    """Progress of a student towards the streak milestone."""
    claimed = any(
        i.milestone_type == STREAK_MILESTONE and i.approval_status != 'rejected'
        for i in incentives
    )
    streak = student.streak_count
    progress = min(100, int(streak / STREAK_MILESTONE_DAYS * 100 + 0.5))

    return MilestoneReport(
        student_id=student.id,
        current_streak=streak,
        milestones={
            STREAK_MILESTONE: MilestoneStatus(
                required=STREAK_MILESTONE_DAYS,
                current=streak,
                eligible=streak >= STREAK_MILESTONE_DAYS and not claimed,
                already_claimed=claimed,
                amount=STREAK_MILESTONE_AMOUNT,
                progress=progress,
            )
        },
    )


def create_incentive(repo, request: IncentiveCreateRequest, today: date) -> Incentive:
    """Open a pending incentive unless one is already pending or approved for the milestone."""
    repo.get_student(request.student_id)

    incentive = Incentive(
        id=str(uuid.uuid4()),
        student_id=request.student_id,
        milestone_type=request.milestone_type,
        amount=request.amount,
        weeks_completed=request.weeks_completed,
        created_on=today,
    )
    return repo.open_incentive(incentive, OPEN_STATUSES)


def _transition(repo, incentive_id: str, target: str, update: dict) -> Incentive:
    """
    Move an incentive to target status.

    The allowed-move check runs on the current copy; the repository then
    re-checks the status atomically, so only one of two racing requests wins.
    """
    incentive = repo.get_incentive(incentive_id)
    if target not in TRANSITIONS[incentive.approval_status]:
        raise InvalidTransitionError(
            f"Incentive is {incentive.approval_status} and cannot become {target}"
        )
    return repo.transition_incentive(
        incentive_id, incentive.approval_status, {'approval_status': target, **update}
    )


def approve_incentive(repo, incentive_id: str, today: date, notes: Optional[str] = None) -> Incentive:
    """Approve a pending incentive and credit the student's savings balance."""
    update = {'approved_date': today}
    if notes is not None:
        update['notes'] = notes
    approved = _transition(repo, incentive_id, 'approved', update)

    repo.credit_student(approved.student_id, savings=approved.amount)
    logger.info("Incentive %s approved (%.2f)", incentive_id, approved.amount)
    return approved


def reject_incentive(repo, incentive_id: str, notes: Optional[str] = None) -> Incentive:
    update = {} if notes is None else {'notes': notes}
    rejected = _transition(repo, incentive_id, 'rejected', update)
    logger.info("Incentive %s rejected", incentive_id)
    return rejected


def disburse_incentive(repo, incentive_id: str, today: date, method: str,
                       transaction_id: str, notes: Optional[str] = None) -> Incentive:
    """Mark an approved incentive as paid out."""
    update = {
        'disbursed_date': today,
        'disbursement_method': method,
        'transaction_id': transaction_id,
    }
    if notes:
        update['notes'] = notes
    disbursed = _transition(repo, incentive_id, 'disbursed', update)
    logger.info("Incentive %s disbursed via %s", incentive_id, method)
    return disbursed
