"""Risk scoring logic: dropout rules, rates, geofence distance and teacher score."""

from datetime import date, timedelta
from typing import Iterable, List, Optional

import numpy as np

from nethaji.models import (
    RiskAssessment,
    RiskGroups,
    RiskRanking,
    RiskSummary,
    StudentSnapshot,
    TeacherPerformance,
    Village,
)


# Dropout rule weights and thresholds
NO_RECENT_ATTENDANCE_WEIGHT = 40
LOW_ATTENDANCE_WEIGHT = 30
ZERO_STREAK_WEIGHT = 15
LOW_ENGAGEMENT_WEIGHT = 15

RECENT_WINDOW_DAYS = 7
MONTH_WINDOW_DAYS = 30
MIN_MONTHLY_ATTENDANCE = 8
MIN_ENGAGEMENT_POINTS = 100

# Lower bound of each risk level, highest first
RISK_LEVEL_THRESHOLDS = (
    ('critical', 60),
    ('high', 40),
    ('medium', 20),
)
AT_RISK_LEVELS = ('critical', 'high', 'medium')

EARTH_RADIUS_M = 6371000.0

# Teacher performance
COMPLETION_WEIGHT = 0.6
RETENTION_WEIGHT = 0.4
EXPECTED_SESSIONS_PER_STUDENT = 30
BONUS_THRESHOLD = 90.0


def get_risk_level(risk_score: float) -> str:
    """
    Map a risk score onto low/medium/high/critical.

    Args:
        risk_score: Risk score (0-100)

    Returns:
        Risk level string
    """
    for level, lower_bound in RISK_LEVEL_THRESHOLDS:
        if risk_score >= lower_bound:
            return level
    return 'low'


def assess_dropout_risk(snapshot: StudentSnapshot, as_of: date) -> RiskAssessment:
    """
    Score a student's dropout risk from their trailing attendance window.

    Each rule adds its weight independently:
    no attendance in 7 days (+40), fewer than 8 days in 30 (+30),
    zero streak (+15), fewer than 100 points (+15).

    Args:
        snapshot: Student with attendance already limited to 30 days
        as_of: Reference day the windows are counted back from

    Returns:
        RiskAssessment for the student
    """
    recent_cutoff = as_of - timedelta(days=RECENT_WINDOW_DAYS)
    month_cutoff = as_of - timedelta(days=MONTH_WINDOW_DAYS)

    last_7 = sum(1 for entry in snapshot.attendance_window if entry.date >= recent_cutoff)
    last_30 = sum(1 for entry in snapshot.attendance_window if entry.date >= month_cutoff)

    factors: List[str] = []
    score = 0

    if last_7 == 0:
        factors.append('No attendance in last 7 days')
        score += NO_RECENT_ATTENDANCE_WEIGHT

    if last_30 < MIN_MONTHLY_ATTENDANCE:
        factors.append('Low attendance (< 8 days in 30 days)')
        score += LOW_ATTENDANCE_WEIGHT

    if snapshot.streak_count == 0:
        factors.append('Zero streak')
        score += ZERO_STREAK_WEIGHT

    if snapshot.gamification_points < MIN_ENGAGEMENT_POINTS:
        factors.append('Low engagement (< 100 points)')
        score += LOW_ENGAGEMENT_WEIGHT

    return RiskAssessment(
        student_id=snapshot.id,
        name=snapshot.name,
        phone=snapshot.phone,
        village=snapshot.village,
        squad=snapshot.squad,
        teacher=snapshot.teacher,
        attendance_last_7_days=last_7,
        attendance_last_30_days=last_30,
        current_streak=snapshot.streak_count,
        points=snapshot.gamification_points,
        risk_score=score,
        risk_level=get_risk_level(score),
        risk_factors=tuple(factors),
    )


def rank_and_group(assessments: Iterable[RiskAssessment]) -> RiskRanking:
    """
    Keep medium-or-worse students, order them by score and bucket by level.

    Ties keep their input order.
    """
    assessments = list(assessments)
    at_risk = [a for a in assessments if a.risk_level != 'low']
    at_risk.sort(key=lambda a: -a.risk_score)

    grouped = {level: [a for a in at_risk if a.risk_level == level] for level in AT_RISK_LEVELS}

    summary = RiskSummary(
        total_students=len(assessments),
        at_risk_count=len(at_risk),
        critical_count=len(grouped['critical']),
        high_count=len(grouped['high']),
        medium_count=len(grouped['medium']),
    )
    return RiskRanking(summary=summary, students=at_risk, grouped=RiskGroups(**grouped))


def compute_rate(part: float, whole: float) -> float:
    """Percentage of part in whole, 2 decimals; 0.0 when whole is zero."""
    if not whole:
        return 0.0
    return round((part / whole) * 100.0, 2)


def haversine_distance_meters(lat1: float, lon1: float, lat2: float, lon2: float) -> float:
    """Great-circle distance in meters between two GPS fixes."""
    phi1 = np.radians(lat1)
    phi2 = np.radians(lat2)
    d_phi = np.radians(lat2 - lat1)
    d_lambda = np.radians(lon2 - lon1)

    a = np.sin(d_phi / 2) ** 2 + np.cos(phi1) * np.cos(phi2) * np.sin(d_lambda / 2) ** 2
    c = 2 * np.arctan2(np.sqrt(a), np.sqrt(1 - a))
    return float(EARTH_RADIUS_M * c)


def is_within_geofence(latitude: float, longitude: float, village: Optional[Village]) -> bool:
    """
    Check a GPS fix against a village geofence.

    Villages without registered coordinates always pass.
    """
    if village is None or village.latitude is None or village.longitude is None:
        return True

    distance = haversine_distance_meters(latitude, longitude, village.latitude, village.longitude)
    return distance <= village.geofence_radius


def compute_teacher_performance(
    attendance_count: int,
    active_students: int,
    total_assigned_students: int
) -> TeacherPerformance:
    """
    Blend attendance completion (60%) and student retention (40%) into a 0-100 score.

    Completion expects one session per active student per day over 30 days.
    A teacher with no assigned students keeps full retention.
    """
    if active_students > 0:
        completion = (attendance_count / (active_students * EXPECTED_SESSIONS_PER_STUDENT)) * 100.0
    else:
        completion = 0.0

    if total_assigned_students > 0:
        retention = (active_students / total_assigned_students) * 100.0
    else:
        retention = 100.0

    score = float(np.clip(completion * COMPLETION_WEIGHT + retention * RETENTION_WEIGHT, 0.0, 100.0))

    return TeacherPerformance(
        score=score,
        bonus_eligible=score >= BONUS_THRESHOLD,
        attendance_completion_rate=round(completion, 1),
        student_retention_rate=round(retention, 1),
        active_students=active_students,
        total_attendance_logged=attendance_count,
    )
