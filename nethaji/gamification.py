"""Badges and challenges: the operations that earn gamification points."""

import logging
import uuid
from datetime import date
from typing import Optional

from nethaji.errors import NethajiError
from nethaji.models import BadgeAward, Student, StudentChallenge

logger = logging.getLogger(__name__)


def award_badge(repo, student_id: str, badge_id: str, today: date) -> Student:
    """
    Give a student a badge once and add the badge's points.

    Raises:
        NotFoundError: unknown badge or student
        ConflictError: the student already holds the badge
    """
    badge = repo.get_badge(badge_id)
    award = BadgeAward(name=badge.name, rarity=badge.rarity, earned_on=today, badge_id=badge.id)
    student = repo.grant_badge(student_id, award, badge.points_value)
    logger.info("Badge %s awarded to student %s (+%d points)", badge.name, student_id, badge.points_value)
    return student


def enroll_in_challenge(repo, student_id: str, challenge_id: str, today: date) -> StudentChallenge:
    """Enroll a student in an active challenge that has not ended."""
    repo.get_student(student_id)
    challenge = repo.get_challenge(challenge_id)

    if not challenge.is_active:
        raise NethajiError("Challenge is not active")
    if challenge.end_date is not None and challenge.end_date < today:
        raise NethajiError("Challenge has ended")

    enrollment = StudentChallenge(
        id=str(uuid.uuid4()),
        student_id=student_id,
        challenge_id=challenge.id,
        title=challenge.title,
    )
    return repo.add_enrollment(enrollment)


def complete_challenge(repo, student_id: str, challenge_id: str, today: date,
                       progress: Optional[str] = None) -> StudentChallenge:
    """
    Mark a student's challenge completed and credit its reward.

    Raises:
        NotFoundError: unknown challenge, or the student is not enrolled
        InvalidTransitionError: the challenge is already completed
    """
    challenge = repo.get_challenge(challenge_id)
    finished = repo.finish_challenge(student_id, challenge_id, challenge.points_reward, today, progress)
    logger.info(
        "Challenge %s completed by student %s (+%d points)",
        challenge.title, student_id, challenge.points_reward
    )
    return finished
