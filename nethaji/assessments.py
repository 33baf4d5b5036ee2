"""Student assessments and per-metric progress."""

import logging
import uuid
from typing import List, Optional

from nethaji.errors import NethajiError, NotFoundError
from nethaji.models import (
    Assessment,
    AssessmentCreateRequest,
    ProgressPoint,
    ProgressTrend,
    StudentProgress,
)

logger = logging.getLogger(__name__)


def record_assessment(repo, request: AssessmentCreateRequest, acting_teacher_id: Optional[str]) -> Assessment:
    """
    Store an assessment for a student.

    Without an acting teacher the student's assigned teacher is used.
    """
    student = repo.get_student(request.student_id)

    teacher_id = acting_teacher_id or student.teacher_id
    if not teacher_id:
        raise NethajiError("Student has no assigned teacher. Please provide teacher_id in request body.")

    assessment = Assessment(
        id=str(uuid.uuid4()),
        teacher_id=teacher_id,
        **request.model_dump(exclude={'teacher_id'}),
    )
    logger.info("Assessment %s (%s) recorded for student %s", assessment.metric, assessment.category, student.id)
    return repo.add_assessment(assessment)


def student_progress(assessments: List[Assessment], metric: str) -> StudentProgress:
    """
    Chronological values of a metric with its first and latest value.

    Args:
        assessments: The student's assessments for the metric, any order

    Raises:
        NotFoundError: no assessment for the metric
    """
    ordered = sorted(assessments, key=lambda a: a.assessment_date)
    if not ordered:
        raise NotFoundError("No assessments found for this metric")

    first, last = ordered[0], ordered[-1]
    change = round(last.value - first.value, 2) if len(ordered) > 1 else None

    return StudentProgress(
        metric=metric,
        unit=first.unit,
        progress=[
            ProgressPoint(id=a.id, assessment_date=a.assessment_date, value=a.value, unit=a.unit, notes=a.notes)
            for a in ordered
        ],
        trend=ProgressTrend(
            initial=first.value,
            current=last.value,
            change=change,
            data_points=len(ordered),
        ),
    )
