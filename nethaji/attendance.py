"""Attendance marking: geofence verification, duplicate checks and streaks."""

import logging
import uuid
from collections import Counter
from datetime import date
from typing import Dict, Iterable, List

from nethaji.errors import ConflictError, GeofenceError, NotFoundError
from nethaji.models import (
    AttendanceRecord,
    BulkAttendanceError,
    BulkAttendanceResult,
    MarkAttendanceCommand,
)
from nethaji.risk import is_within_geofence

logger = logging.getLogger(__name__)


def next_streak(current_streak: int, attended_previous_day: bool) -> int:
    """Continue the streak after a consecutive day, otherwise start over at 1."""
    if attended_previous_day:
        return current_streak + 1
    return 1


def _build_record(command: MarkAttendanceCommand, student_id: str) -> AttendanceRecord:
    return AttendanceRecord(
        id=str(uuid.uuid4()),
        student_id=student_id,
        teacher_id=command.acting_teacher_id,
        date=command.date,
        activity_type=command.activity_type,
        hours=command.hours,
        check_in_time=command.check_in_time,
        latitude=command.latitude,
        longitude=command.longitude,
        notes=command.notes,
    )


def verify_location(repo, command: MarkAttendanceCommand, student) -> None:
    """Raise GeofenceError when a supplied GPS fix falls outside the student's village."""
    if command.latitude is None or command.longitude is None or not student.village_id:
        return

    village = repo.get_village(student.village_id)
    if not is_within_geofence(command.latitude, command.longitude, village):
        logger.warning(
            "Geofence check failed for student %s at (%s, %s)",
            student.id, command.latitude, command.longitude
        )
        raise GeofenceError("You are outside the designated area for this village")


def mark_attendance(repo, command: MarkAttendanceCommand, today: date) -> AttendanceRecord:
    """
    Record one student's attendance.

    Raises:
        NotFoundError: unknown student
        GeofenceError: GPS fix outside the village geofence
        ConflictError: attendance already marked for this activity and day
    """
    student_id = command.student_ids[0]
    student = repo.get_student(student_id)

    verify_location(repo, command, student)

    record = repo.add_attendance(_build_record(command, student_id), today)
    logger.info("Attendance marked for student %s (%s, %s)", student_id, command.date, command.activity_type)
    return record


def mark_bulk_attendance(repo, command: MarkAttendanceCommand, today: date) -> BulkAttendanceResult:
    """
    Record the same session for several students.

    Every student must exist before anything is written. Duplicates are
    reported per student and do not stop the rest of the batch.
    """
    students = []
    missing = []
    for student_id in command.student_ids:
        try:
            students.append(repo.get_student(student_id))
        except NotFoundError:
            missing.append(student_id)
    if missing:
        raise NotFoundError(f"One or more students not found: {', '.join(missing)}")

    created: List[AttendanceRecord] = []
    errors: List[BulkAttendanceError] = []

    for student in students:
        try:
            created.append(repo.add_attendance(_build_record(command, student.id), today))
        except ConflictError:
            errors.append(BulkAttendanceError(
                student_id=student.id,
                error='Attendance already marked for this activity'
            ))

    logger.info(
        "Bulk attendance: %d requested, %d created, %d failed",
        len(command.student_ids), len(created), len(errors)
    )
    return BulkAttendanceResult(
        summary={
            'total': len(command.student_ids),
            'successful': len(created),
            'failed': len(errors),
        },
        attendance=created,
        errors=errors,
    )


def summarize_attendance(records: Iterable[AttendanceRecord]) -> Dict:
    """Totals for a list of attendance records."""
    records = list(records)
    total_hours = sum(r.hours for r in records)
    return {
        'total_records': len(records),
        'unique_students': len({r.student_id for r in records}),
        'total_hours': round(total_hours, 2),
        'activity_breakdown': dict(Counter(r.activity_type for r in records)),
    }
