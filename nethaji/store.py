"""Repository interface and the in-memory implementation used by the service."""

import logging
import threading
from datetime import date, timedelta
from typing import Any, Dict, Iterable, List, Optional, Protocol, Tuple

from nethaji.attendance import next_streak
from nethaji.errors import ConflictError, InvalidTransitionError, NotFoundError
from nethaji.models import (
    Assessment,
    AttendanceEntry,
    AttendanceRecord,
    Badge,
    BadgeAward,
    Challenge,
    Incentive,
    Squad,
    Student,
    StudentChallenge,
    StudentQuery,
    StudentSnapshot,
    Teacher,
    Village,
)

logger = logging.getLogger(__name__)


class Repository(Protocol):
    """
    Data access used by request handlers; the risk engine never sees it.

    Methods that check state and then change it (add_attendance,
    open_incentive, transition_incentive, credit_student, grant_badge,
    add_enrollment, finish_challenge) do both as one atomic step.
    """

    def get_student(self, student_id: str) -> Student: ...
    def find_students(self, query: StudentQuery) -> List[Student]: ...
    def credit_student(self, student_id: str, points: int = 0, savings: float = 0.0) -> Student: ...
    def load_roster(self, students: Iterable[Student], attendance: Iterable[AttendanceRecord]) -> None: ...
    def get_village(self, village_id: str) -> Optional[Village]: ...
    def list_villages(self) -> List[Village]: ...
    def get_teacher(self, teacher_id: str) -> Teacher: ...
    def list_teachers(self) -> List[Teacher]: ...
    def save_teacher(self, teacher: Teacher) -> Teacher: ...
    def list_squads(self, village_id: Optional[str] = None) -> List[Squad]: ...
    def list_attendance(self, student_id: Optional[str] = None, teacher_id: Optional[str] = None,
                        start: Optional[date] = None, end: Optional[date] = None) -> List[AttendanceRecord]: ...
    def student_snapshots(self, query: StudentQuery, as_of: date, window_days: int = 30) -> List[StudentSnapshot]: ...
    def add_attendance(self, record: AttendanceRecord, today: date) -> AttendanceRecord: ...
    def list_incentives(self, student_id: Optional[str] = None) -> List[Incentive]: ...
    def get_incentive(self, incentive_id: str) -> Incentive: ...
    def open_incentive(self, incentive: Incentive, blocking_statuses: Tuple[str, ...]) -> Incentive: ...
    def transition_incentive(self, incentive_id: str, expected_status: str,
                             update: Dict[str, Any]) -> Incentive: ...
    def get_badge(self, badge_id: str) -> Badge: ...
    def grant_badge(self, student_id: str, award: BadgeAward, points: int) -> Student: ...
    def get_challenge(self, challenge_id: str) -> Challenge: ...
    def list_challenges(self, student_id: Optional[str] = None) -> List[StudentChallenge]: ...
    def add_enrollment(self, enrollment: StudentChallenge) -> StudentChallenge: ...
    def finish_challenge(self, student_id: str, challenge_id: str, points: int,
                         completed_on: date, progress: Optional[str] = None) -> StudentChallenge: ...
    def add_assessment(self, assessment: Assessment) -> Assessment: ...
    def list_assessments(self, student_id: str, metric: Optional[str] = None,
                         start: Optional[date] = None, end: Optional[date] = None) -> List[Assessment]: ...


class InMemoryRepository:
    """
    Dict-backed repository.

    Every check-then-write runs under one lock against the stored copy, so
    concurrent requests cannot interleave streak, hours, points or savings
    updates, or pass the same status check twice.
    """

    def __init__(self):
        self._lock = threading.Lock()
        self.villages: Dict[str, Village] = {}
        self.squads: Dict[str, Squad] = {}
        self.teachers: Dict[str, Teacher] = {}
        self.students: Dict[str, Student] = {}
        self.attendance: List[AttendanceRecord] = []
        self.incentives: Dict[str, Incentive] = {}
        self.badges: Dict[str, Badge] = {}
        self.challenges: Dict[str, Challenge] = {}
        self.enrollments: List[StudentChallenge] = []
        self.assessments: List[Assessment] = []

    # -- seeding -----------------------------------------------------------

    def add_village(self, village: Village) -> Village:
        self.villages[village.id] = village
        return village

    def add_squad(self, squad: Squad) -> Squad:
        self.squads[squad.id] = squad
        return squad

    def add_badge(self, badge: Badge) -> Badge:
        self.badges[badge.id] = badge
        return badge

    def add_challenge(self, challenge: Challenge) -> Challenge:
        self.challenges[challenge.id] = challenge
        return challenge

    def load_roster(self, students: Iterable[Student], attendance: Iterable[AttendanceRecord]) -> None:
        """Replace or add students and append their attendance history."""
        with self._lock:
            for student in students:
                self.students[student.id] = student
            self.attendance.extend(attendance)

    # -- students ----------------------------------------------------------

    def _require_student(self, student_id: str) -> Student:
        student = self.students.get(student_id)
        if student is None:
            raise NotFoundError(f"Student {student_id} not found")
        return student

    def get_student(self, student_id: str) -> Student:
        return self._require_student(student_id)

    def save_student(self, student: Student) -> Student:
        with self._lock:
            self.students[student.id] = student
        return student

    def credit_student(self, student_id: str, points: int = 0, savings: float = 0.0) -> Student:
        """Add points and savings to the stored student."""
        with self._lock:
            student = self._require_student(student_id)
            updated = student.model_copy(update={
                'gamification_points': student.gamification_points + points,
                'savings_balance': student.savings_balance + savings,
            })
            self.students[student_id] = updated
        return updated

    def find_students(self, query: StudentQuery) -> List[Student]:
        students = list(self.students.values())
        if not query.include_dropouts:
            students = [s for s in students if not s.is_dropout]
        if query.village_id:
            students = [s for s in students if s.village_id == query.village_id]
        if query.squad_id:
            students = [s for s in students if s.squad_id == query.squad_id]
        if query.teacher_id:
            students = [s for s in students if s.teacher_id == query.teacher_id]
        return students

    def student_snapshots(self, query: StudentQuery, as_of: date, window_days: int = 30) -> List[StudentSnapshot]:
        """Build read-only snapshots with attendance trimmed to the trailing window."""
        since = as_of - timedelta(days=window_days)
        by_student: Dict[str, List[AttendanceEntry]] = {}
        for record in sorted(self.attendance, key=lambda r: r.date):
            if record.date >= since:
                by_student.setdefault(record.student_id, []).append(
                    AttendanceEntry(date=record.date, activity_type=record.activity_type)
                )

        snapshots = []
        for student in self.find_students(query):
            village = self.villages.get(student.village_id) if student.village_id else None
            squad = self.squads.get(student.squad_id) if student.squad_id else None
            teacher = self.teachers.get(student.teacher_id) if student.teacher_id else None
            snapshots.append(StudentSnapshot(
                id=student.id,
                name=student.name,
                phone=student.phone,
                streak_count=student.streak_count,
                gamification_points=student.gamification_points,
                is_dropout=student.is_dropout,
                village=village.name if village else None,
                squad=squad.name if squad else None,
                teacher=teacher.name if teacher else None,
                attendance_window=by_student.get(student.id, []),
            ))
        return snapshots

    # -- villages, squads, teachers ---------------------------------------

    def get_village(self, village_id: str) -> Optional[Village]:
        return self.villages.get(village_id)

    def list_villages(self) -> List[Village]:
        return list(self.villages.values())

    def list_squads(self, village_id: Optional[str] = None) -> List[Squad]:
        squads = list(self.squads.values())
        if village_id:
            squads = [s for s in squads if s.village_id == village_id]
        return squads

    def get_teacher(self, teacher_id: str) -> Teacher:
        teacher = self.teachers.get(teacher_id)
        if teacher is None:
            raise NotFoundError(f"Teacher {teacher_id} not found")
        return teacher

    def list_teachers(self) -> List[Teacher]:
        return list(self.teachers.values())

    def save_teacher(self, teacher: Teacher) -> Teacher:
        with self._lock:
            self.teachers[teacher.id] = teacher
        return teacher

    # -- attendance --------------------------------------------------------

    def list_attendance(self, student_id: Optional[str] = None, teacher_id: Optional[str] = None,
                        start: Optional[date] = None, end: Optional[date] = None) -> List[AttendanceRecord]:
        records = self.attendance
        if student_id:
            records = [r for r in records if r.student_id == student_id]
        if teacher_id:
            records = [r for r in records if r.teacher_id == teacher_id]
        if start:
            records = [r for r in records if r.date >= start]
        if end:
            records = [r for r in records if r.date <= end]
        return sorted(records, key=lambda r: r.date, reverse=True)

    def add_attendance(self, record: AttendanceRecord, today: date) -> AttendanceRecord:
        """
        Store a record, add its hours to the student and roll the streak for today.

        Raises:
            ConflictError: the student already has this activity on this day
        """
        with self._lock:
            student = self._require_student(record.student_id)
            same_student = [r for r in self.attendance if r.student_id == student.id]
            if any(r.date == record.date and r.activity_type == record.activity_type for r in same_student):
                raise ConflictError("This student already has attendance marked for this activity today")

            update = {'total_hours': student.total_hours + record.hours}
            if record.date == today and not any(r.date == today for r in same_student):
                yesterday = today - timedelta(days=1)
                attended_yesterday = any(r.date == yesterday for r in same_student)
                update['streak_count'] = next_streak(student.streak_count, attended_yesterday)

            self.attendance.append(record)
            self.students[student.id] = student.model_copy(update=update)
        logger.debug("Attendance %s stored for student %s", record.id, record.student_id)
        return record

    # -- incentives --------------------------------------------------------

    def list_incentives(self, student_id: Optional[str] = None) -> List[Incentive]:
        incentives = list(self.incentives.values())
        if student_id:
            incentives = [i for i in incentives if i.student_id == student_id]
        return incentives

    def _require_incentive(self, incentive_id: str) -> Incentive:
        incentive = self.incentives.get(incentive_id)
        if incentive is None:
            raise NotFoundError(f"Incentive {incentive_id} not found")
        return incentive

    def get_incentive(self, incentive_id: str) -> Incentive:
        return self._require_incentive(incentive_id)

    def open_incentive(self, incentive: Incentive, blocking_statuses: Tuple[str, ...]) -> Incentive:
        """Store a new incentive unless the student holds one of the same milestone in blocking_statuses."""
        with self._lock:
            for existing in self.incentives.values():
                if (existing.student_id == incentive.student_id
                        and existing.milestone_type == incentive.milestone_type
                        and existing.approval_status in blocking_statuses):
                    raise ConflictError(
                        f"Student already has a {existing.approval_status} incentive for this milestone"
                    )
            self.incentives[incentive.id] = incentive
        return incentive

    def transition_incentive(self, incentive_id: str, expected_status: str,
                             update: Dict[str, Any]) -> Incentive:
        """Apply an update only while the stored incentive still has expected_status."""
        with self._lock:
            incentive = self._require_incentive(incentive_id)
            if incentive.approval_status != expected_status:
                raise InvalidTransitionError(
                    f"Incentive is {incentive.approval_status} and cannot become {update.get('approval_status')}"
                )
            updated = incentive.model_copy(update=update)
            self.incentives[incentive_id] = updated
        return updated

    # -- badges, challenges, assessments ----------------------------------

    def get_badge(self, badge_id: str) -> Badge:
        badge = self.badges.get(badge_id)
        if badge is None:
            raise NotFoundError(f"Badge {badge_id} not found")
        return badge

    def grant_badge(self, student_id: str, award: BadgeAward, points: int) -> Student:
        """Attach a badge once per student and add its points."""
        with self._lock:
            student = self._require_student(student_id)
            if any(b.badge_id == award.badge_id for b in student.badges):
                raise ConflictError("Student already has this badge")
            updated = student.model_copy(update={
                'badges': student.badges + [award],
                'gamification_points': student.gamification_points + points,
            })
            self.students[student_id] = updated
        return updated

    def get_challenge(self, challenge_id: str) -> Challenge:
        challenge = self.challenges.get(challenge_id)
        if challenge is None:
            raise NotFoundError(f"Challenge {challenge_id} not found")
        return challenge

    def list_challenges(self, student_id: Optional[str] = None) -> List[StudentChallenge]:
        if student_id:
            return [c for c in self.enrollments if c.student_id == student_id]
        return list(self.enrollments)

    def add_enrollment(self, enrollment: StudentChallenge) -> StudentChallenge:
        with self._lock:
            if any(e.student_id == enrollment.student_id and e.challenge_id == enrollment.challenge_id
                   for e in self.enrollments):
                raise ConflictError("Already enrolled in this challenge")
            self.enrollments.append(enrollment)
        return enrollment

    def finish_challenge(self, student_id: str, challenge_id: str, points: int,
                         completed_on: date, progress: Optional[str] = None) -> StudentChallenge:
        """Complete an enrollment and add its points to the student in one step."""
        with self._lock:
            index = next(
                (i for i, e in enumerate(self.enrollments)
                 if e.student_id == student_id and e.challenge_id == challenge_id),
                None,
            )
            if index is None:
                raise NotFoundError("Student is not enrolled in this challenge")
            enrollment = self.enrollments[index]
            if enrollment.status == 'completed':
                raise InvalidTransitionError("Challenge already completed")

            student = self._require_student(student_id)
            finished = enrollment.model_copy(update={
                'status': 'completed',
                'points_earned': points,
                'completed_on': completed_on,
                'progress': progress if progress is not None else enrollment.progress,
            })
            self.enrollments[index] = finished
            self.students[student_id] = student.model_copy(
                update={'gamification_points': student.gamification_points + points}
            )
        return finished

    def add_assessment(self, assessment: Assessment) -> Assessment:
        with self._lock:
            self.assessments.append(assessment)
        return assessment

    def list_assessments(self, student_id: str, metric: Optional[str] = None,
                         start: Optional[date] = None, end: Optional[date] = None) -> List[Assessment]:
        """A student's assessments, oldest first."""
        records = [a for a in self.assessments if a.student_id == student_id]
        if metric:
            records = [a for a in records if a.metric == metric]
        if start:
            records = [a for a in records if a.assessment_date >= start]
        if end:
            records = [a for a in records if a.assessment_date <= end]
        return sorted(records, key=lambda a: a.assessment_date)
