"""Data models for the Nethaji Empowerment Initiative service."""

from datetime import date, datetime
from typing import Optional, Dict, List, Tuple, Literal

from pydantic import BaseModel, ConfigDict, Field


ActivityType = Literal['sports', 'chess', 'yoga', 'meditation', 'strength_training']
RiskLevel = Literal['low', 'medium', 'high', 'critical']
Role = Literal['admin', 'teacher', 'student', 'parent']
ApprovalStatus = Literal['pending', 'approved', 'rejected', 'disbursed']
ChallengeStatus = Literal['in_progress', 'completed', 'failed']
AssessmentCategory = Literal['physical', 'mental', 'behavioral', 'academic']


# ---------------------------------------------------------------------------
# Stored records
# ---------------------------------------------------------------------------

class Village(BaseModel):
    id: str
    name: str
    latitude: Optional[float] = None
    longitude: Optional[float] = None
    geofence_radius: float = 200.0


class Squad(BaseModel):
    id: str
    name: str
    village_id: str
    total_points: int = 0


class Teacher(BaseModel):
    id: str
    name: str
    village_id: Optional[str] = None
    employment_type: Literal['full_time', 'part_time'] = 'part_time'
    monthly_salary: float = 0.0
    is_active: bool = True
    performance_score: float = 0.0
    bonus_eligible: bool = False
    active_students_count: int = 0


class Badge(BaseModel):
    id: str
    name: str
    rarity: str = 'common'
    points_value: int = Field(0, ge=0)


class BadgeAward(BaseModel):
    name: str
    rarity: str = 'common'
    earned_on: date
    badge_id: Optional[str] = None


class Student(BaseModel):
    id: str
    name: str
    phone: Optional[str] = None
    village_id: Optional[str] = None
    squad_id: Optional[str] = None
    teacher_id: Optional[str] = None
    streak_count: int = Field(0, ge=0)
    gamification_points: int = Field(0, ge=0)
    level: int = 1
    is_dropout: bool = False
    dropout_date: Optional[date] = None
    enrolled_on: Optional[date] = None
    total_hours: float = 0.0
    savings_balance: float = 0.0
    badges: List[BadgeAward] = []


class AttendanceRecord(BaseModel):
    id: str
    student_id: str
    teacher_id: Optional[str] = None
    date: date
    activity_type: ActivityType
    hours: float
    check_in_time: Optional[datetime] = None
    latitude: Optional[float] = None
    longitude: Optional[float] = None
    notes: Optional[str] = None


class Incentive(BaseModel):
    id: str
    student_id: str
    milestone_type: str
    amount: float
    weeks_completed: int = 0
    approval_status: ApprovalStatus = 'pending'
    created_on: Optional[date] = None
    approved_date: Optional[date] = None
    disbursed_date: Optional[date] = None
    disbursement_method: Optional[str] = None
    transaction_id: Optional[str] = None
    notes: Optional[str] = None


class Challenge(BaseModel):
    """A challenge students can enroll in."""
    id: str
    title: str
    points_reward: int = Field(0, ge=0)
    is_active: bool = True
    end_date: Optional[date] = None


class StudentChallenge(BaseModel):
    id: str
    student_id: str
    title: str
    challenge_id: Optional[str] = None
    status: ChallengeStatus = 'in_progress'
    points_earned: int = 0
    progress: Optional[str] = None
    completed_on: Optional[date] = None


class Assessment(BaseModel):
    id: str
    student_id: str
    teacher_id: Optional[str] = None
    assessment_date: date
    category: AssessmentCategory
    metric: str
    value: float
    unit: Optional[str] = None
    notes: Optional[str] = None


# ---------------------------------------------------------------------------
# Risk engine input and output
# ---------------------------------------------------------------------------

class AttendanceEntry(BaseModel):
    """One attended day inside a student's trailing window."""
    date: date
    activity_type: Optional[ActivityType] = None


class StudentSnapshot(BaseModel):
    """Read-only view of a student with the trailing 30-day attendance window."""
    id: str
    name: str
    phone: Optional[str] = None
    streak_count: int = Field(0, ge=0)
    gamification_points: int = Field(0, ge=0)
    is_dropout: bool = False
    village: Optional[str] = None
    squad: Optional[str] = None
    teacher: Optional[str] = None
    attendance_window: List[AttendanceEntry] = []


class RiskAssessment(BaseModel):
    """Dropout risk for a single student; built per request and never stored."""
    model_config = ConfigDict(frozen=True)

    student_id: str
    name: str
    phone: Optional[str] = None
    village: Optional[str] = None
    squad: Optional[str] = None
    teacher: Optional[str] = None
    attendance_last_7_days: int
    attendance_last_30_days: int
    current_streak: int
    points: int
    risk_score: int
    risk_level: RiskLevel
    risk_factors: Tuple[str, ...]


class RiskSummary(BaseModel):
    total_students: int
    at_risk_count: int
    critical_count: int
    high_count: int
    medium_count: int


class RiskGroups(BaseModel):
    critical: List[RiskAssessment]
    high: List[RiskAssessment]
    medium: List[RiskAssessment]


class RiskRanking(BaseModel):
    summary: RiskSummary
    students: List[RiskAssessment]
    grouped: RiskGroups


class DropoutRiskResponse(BaseModel):
    success: bool
    data: RiskRanking


class TeacherPerformance(BaseModel):
    score: float
    bonus_eligible: bool
    attendance_completion_rate: float
    student_retention_rate: float
    active_students: int
    total_attendance_logged: int


# ---------------------------------------------------------------------------
# Queries, commands and requests
# ---------------------------------------------------------------------------

class Actor(BaseModel):
    """Caller identity as resolved by the HTTP layer."""
    role: Role
    teacher_id: Optional[str] = None
    student_id: Optional[str] = None


class StudentQuery(BaseModel):
    """Explicit student filter; every field is optional."""
    village_id: Optional[str] = None
    squad_id: Optional[str] = None
    teacher_id: Optional[str] = None
    include_dropouts: bool = False


class MarkAttendanceRequest(BaseModel):
    student_id: str
    date: date
    activity_type: ActivityType
    hours: float = Field(..., ge=0.5, le=8)
    check_in_time: Optional[datetime] = None
    latitude: Optional[float] = Field(None, ge=-90, le=90)
    longitude: Optional[float] = Field(None, ge=-180, le=180)
    notes: Optional[str] = None
    teacher_id: Optional[str] = None


class BulkAttendanceRequest(BaseModel):
    student_ids: List[str] = Field(..., min_length=1)
    date: date
    activity_type: ActivityType
    hours: float = Field(..., ge=0.5, le=8)
    check_in_time: Optional[datetime] = None
    latitude: Optional[float] = Field(None, ge=-90, le=90)
    longitude: Optional[float] = Field(None, ge=-180, le=180)
    notes: Optional[str] = None
    teacher_id: Optional[str] = None


class MarkAttendanceCommand(BaseModel):
    """Attendance to record on behalf of an already-resolved teacher."""
    acting_teacher_id: Optional[str]
    student_ids: List[str]
    date: date
    activity_type: ActivityType
    hours: float
    check_in_time: Optional[datetime] = None
    latitude: Optional[float] = None
    longitude: Optional[float] = None
    notes: Optional[str] = None


class BulkAttendanceError(BaseModel):
    student_id: str
    error: str


class BulkAttendanceResult(BaseModel):
    summary: Dict[str, int]
    attendance: List[AttendanceRecord]
    errors: List[BulkAttendanceError] = []


class IncentiveCreateRequest(BaseModel):
    student_id: str
    milestone_type: str
    amount: float = Field(..., ge=0)
    weeks_completed: int = Field(0, ge=0)


class ApproveIncentiveRequest(BaseModel):
    notes: Optional[str] = None


class DisburseIncentiveRequest(BaseModel):
    disbursement_method: str
    transaction_id: str
    notes: Optional[str] = None


class MilestoneStatus(BaseModel):
    required: int
    current: int
    eligible: bool
    already_claimed: bool
    amount: float
    progress: int


class MilestoneReport(BaseModel):
    student_id: str
    current_streak: int
    milestones: Dict[str, MilestoneStatus]


class AwardBadgeRequest(BaseModel):
    student_id: str
    badge_id: str


class EnrollChallengeRequest(BaseModel):
    student_id: str


class CompleteChallengeRequest(BaseModel):
    student_id: str
    progress: Optional[str] = None


class AssessmentCreateRequest(BaseModel):
    student_id: str
    assessment_date: date
    category: AssessmentCategory
    metric: str = Field(..., min_length=1)
    value: float
    unit: Optional[str] = None
    notes: Optional[str] = None
    teacher_id: Optional[str] = None


class ProgressPoint(BaseModel):
    id: str
    assessment_date: date
    value: float
    unit: Optional[str] = None
    notes: Optional[str] = None


class ProgressTrend(BaseModel):
    initial: float
    current: float
    change: Optional[float] = None
    data_points: int


class StudentProgress(BaseModel):
    """Chronological values of one assessment metric for a student."""
    metric: str
    unit: Optional[str] = None
    progress: List[ProgressPoint]
    trend: ProgressTrend


class OutreachDraftRequest(BaseModel):
    """Request for an outreach message draft."""
    student_id: str
    audience: Literal['student', 'parent'] = 'parent'


class OutreachDraftResponse(BaseModel):
    subject: str
    body: str


class RosterUploadResponse(BaseModel):
    """Response from roster upload endpoint."""
    success: bool
    message: str
    students_imported: int
    attendance_imported: int
