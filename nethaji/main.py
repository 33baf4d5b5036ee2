"""FastAPI application for the Nethaji Empowerment Initiative service."""

import csv
import logging
import traceback
from datetime import date, timedelta
from io import StringIO
from typing import Optional

from fastapi import Depends, FastAPI, File, Header, HTTPException, Query, Request, UploadFile
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, StreamingResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from nethaji import config
from nethaji.analytics import (
    attendance_trends,
    budget_tracking,
    build_leaderboard,
    challenge_stats,
    dashboard_overview,
    performance_metrics,
)
from nethaji.assessments import record_assessment, student_progress
from nethaji.attendance import mark_attendance, mark_bulk_attendance, summarize_attendance
from nethaji.errors import AccessDeniedError, NethajiError, NotFoundError
from nethaji.gamification import award_badge, complete_challenge, enroll_in_challenge
from nethaji.incentives import (
    approve_incentive,
    check_milestone_eligibility,
    create_incentive,
    disburse_incentive,
    reject_incentive,
)
from nethaji.models import (
    Actor,
    ApproveIncentiveRequest,
    AssessmentCreateRequest,
    AwardBadgeRequest,
    BulkAttendanceRequest,
    CompleteChallengeRequest,
    DisburseIncentiveRequest,
    DropoutRiskResponse,
    EnrollChallengeRequest,
    IncentiveCreateRequest,
    MarkAttendanceCommand,
    MarkAttendanceRequest,
    MilestoneReport,
    OutreachDraftRequest,
    OutreachDraftResponse,
    RiskRanking,
    RosterUploadResponse,
    Student,
    StudentProgress,
    StudentQuery,
)
from nethaji.outreach import generate_outreach_draft
from nethaji.parsers import parse_roster
from nethaji.risk import assess_dropout_risk, compute_teacher_performance, rank_and_group
from nethaji.store import InMemoryRepository, Repository

config.configure_logging()
logger = logging.getLogger(__name__)

app = FastAPI(title="Nethaji Empowerment Initiative", version="1.0.0")

app.add_middleware(
    CORSMiddleware,
    allow_origins=config.ALLOW_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Process-wide store; tests and deployments swap it through dependency_overrides
repository = InMemoryRepository()


def get_repository() -> Repository:
    return repository


def get_today() -> date:
    return date.today()


def resolve_actor(
    x_user_role: Optional[str] = Header(None),
    x_teacher_id: Optional[str] = Header(None),
    x_student_id: Optional[str] = Header(None),
) -> Actor:
    """Build the caller identity from the headers set by the auth gateway."""
    if x_user_role not in ('admin', 'teacher', 'student', 'parent'):
        raise HTTPException(status_code=401, detail="Authentication required")
    if x_user_role == 'teacher' and not x_teacher_id:
        raise HTTPException(status_code=404, detail="Teacher profile not found")
    if x_user_role == 'student' and not x_student_id:
        raise HTTPException(status_code=404, detail="Student profile not found")
    return Actor(role=x_user_role, teacher_id=x_teacher_id, student_id=x_student_id)


def require_admin(actor: Actor = Depends(resolve_actor)) -> Actor:
    if actor.role != 'admin':
        raise AccessDeniedError("Access denied: Admin only")
    return actor


def require_staff(actor: Actor = Depends(resolve_actor)) -> Actor:
    if actor.role not in ('admin', 'teacher'):
        raise AccessDeniedError("Only teachers and admins can perform this action")
    return actor


def acting_teacher_id(actor: Actor, requested_teacher_id: Optional[str]) -> Optional[str]:
    """Teachers always act as themselves; an admin may act on behalf of a teacher."""
    if actor.role == 'teacher':
        return actor.teacher_id
    return requested_teacher_id


def scoped_teacher_id(actor: Actor) -> Optional[str]:
    """Teachers only ever see their own students."""
    return actor.teacher_id if actor.role == 'teacher' else None


def ensure_assigned(actor: Actor, student: Student) -> None:
    """Teachers may only act on students assigned to them."""
    if actor.role == 'teacher' and student.teacher_id != actor.teacher_id:
        raise AccessDeniedError("Access denied: Not your assigned student")


# ---------------------------------------------------------------------------
# Exception handlers
# ---------------------------------------------------------------------------

@app.exception_handler(NethajiError)
async def domain_exception_handler(request: Request, exc: NethajiError):
    """Map domain errors to JSON with their status code."""
    return JSONResponse(
        status_code=exc.status_code,
        content={"success": False, "error": exc.error, "message": exc.message}
    )


@app.exception_handler(StarletteHTTPException)
async def http_exception_handler_json(request: Request, exc: StarletteHTTPException):
    """Handle HTTP exceptions and return JSON."""
    return JSONResponse(
        status_code=exc.status_code,
        content={"success": False, "detail": exc.detail}
    )


@app.exception_handler(RequestValidationError)
async def validation_exception_handler_json(request: Request, exc: RequestValidationError):
    """Handle validation errors and return JSON."""
    return JSONResponse(
        status_code=422,
        content={"success": False, "error": "Validation error", "detail": jsonable_errors(exc)}
    )


def jsonable_errors(exc: RequestValidationError):
    return [
        {'loc': list(err.get('loc', ())), 'msg': err.get('msg'), 'type': err.get('type')}
        for err in exc.errors()
    ]


@app.exception_handler(Exception)
async def global_exception_handler(request: Request, exc: Exception):
    """Handle all unhandled exceptions and return JSON."""
    logger.exception("Unhandled error on %s %s", request.method, request.url.path)
    error_detail = str(exc)
    if config.DEBUG:
        error_detail = f"{str(exc)}\n\n{traceback.format_exc()}"

    return JSONResponse(
        status_code=500,
        content={
            "success": False,
            "detail": f"Internal server error: {error_detail}",
            "type": type(exc).__name__
        }
    )


# ---------------------------------------------------------------------------
# Health
# ---------------------------------------------------------------------------

@app.get("/health")
async def health_check():
    """Health check endpoint to test server connectivity."""
    return {"status": "ok", "message": "Server is running"}


# ---------------------------------------------------------------------------
# Analytics
# ---------------------------------------------------------------------------

def _risk_ranking(repo: Repository, query: StudentQuery, today: date) -> RiskRanking:
    snapshots = repo.student_snapshots(query, today)
    return rank_and_group(assess_dropout_risk(snapshot, today) for snapshot in snapshots)


@app.get("/api/v1/analytics/overview")
def get_dashboard_overview(
    actor: Actor = Depends(require_admin),
    repo: Repository = Depends(get_repository),
    today: date = Depends(get_today),
):
    """Admin dashboard with key program metrics."""
    overview = dashboard_overview(
        students=repo.find_students(StudentQuery(include_dropouts=True)),
        teachers=repo.list_teachers(),
        attendance=repo.list_attendance(),
        incentives=repo.list_incentives(),
        village_count=len(repo.list_villages()),
        squad_count=len(repo.list_squads()),
        today=today,
    )
    return {"success": True, "data": overview}


@app.get("/api/v1/analytics/attendance-trends")
def get_attendance_trends(
    days: int = Query(30, ge=1, le=365),
    village_id: Optional[str] = None,
    squad_id: Optional[str] = None,
    activity_type: Optional[str] = None,
    actor: Actor = Depends(require_staff),
    repo: Repository = Depends(get_repository),
    today: date = Depends(get_today),
):
    """Attendance over the trailing period, scoped to the caller's students."""
    start = today - timedelta(days=days)
    records = repo.list_attendance(teacher_id=scoped_teacher_id(actor), start=start, end=today)

    if village_id or squad_id:
        students = repo.find_students(
            StudentQuery(village_id=village_id, squad_id=squad_id, include_dropouts=True)
        )
        allowed = {s.id for s in students}
        records = [r for r in records if r.student_id in allowed]
    if activity_type:
        records = [r for r in records if r.activity_type == activity_type]

    return {"success": True, "data": attendance_trends(records, start, today)}


@app.get("/api/v1/analytics/dropout-risk", response_model=DropoutRiskResponse)
def get_dropout_risk(
    village_id: Optional[str] = None,
    squad_id: Optional[str] = None,
    actor: Actor = Depends(require_staff),
    repo: Repository = Depends(get_repository),
    today: date = Depends(get_today),
):
    """Students at medium or higher dropout risk, ranked and grouped."""
    query = StudentQuery(village_id=village_id, squad_id=squad_id, teacher_id=scoped_teacher_id(actor))
    ranking = _risk_ranking(repo, query, today)

    logger.info(
        "Dropout risk: %d students (%d critical, %d high, %d medium)",
        ranking.summary.total_students, ranking.summary.critical_count,
        ranking.summary.high_count, ranking.summary.medium_count
    )
    return DropoutRiskResponse(success=True, data=ranking)


@app.get("/api/v1/analytics/dropout-risk.csv")
def download_dropout_risk_csv(
    village_id: Optional[str] = None,
    squad_id: Optional[str] = None,
    actor: Actor = Depends(require_staff),
    repo: Repository = Depends(get_repository),
    today: date = Depends(get_today),
):
    """Download the at-risk list as CSV."""
    query = StudentQuery(village_id=village_id, squad_id=squad_id, teacher_id=scoped_teacher_id(actor))
    ranking = _risk_ranking(repo, query, today)

    output = StringIO()
    writer = csv.writer(output)
    writer.writerow([
        'Student ID',
        'Name',
        'Phone',
        'Village',
        'Squad',
        'Teacher',
        'Attendance 7d',
        'Attendance 30d',
        'Streak',
        'Points',
        'Risk Score',
        'Risk Level',
        'Risk Factors',
    ])
    for result in ranking.students:
        writer.writerow([
            result.student_id,
            result.name,
            result.phone or '',
            result.village or '',
            result.squad or '',
            result.teacher or '',
            result.attendance_last_7_days,
            result.attendance_last_30_days,
            result.current_streak,
            result.points,
            result.risk_score,
            result.risk_level,
            '; '.join(result.risk_factors),
        ])

    output.seek(0)
    return StreamingResponse(
        iter([output.getvalue()]),
        media_type="text/csv",
        headers={
            "Content-Disposition": f"attachment; filename=dropout_risk_{today.isoformat()}.csv"
        }
    )


@app.get("/api/v1/analytics/budget")
def get_budget_tracking(
    year: Optional[int] = None,
    month: Optional[int] = None,
    actor: Actor = Depends(require_admin),
    repo: Repository = Depends(get_repository),
    today: date = Depends(get_today),
):
    """Incentive spend and salary commitments for a month."""
    target_year = year or today.year
    target_month = month or today.month
    if not 1 <= target_month <= 12:
        raise HTTPException(status_code=400, detail="month must be between 1 and 12")

    budget = budget_tracking(repo.list_incentives(), repo.list_teachers(), target_year, target_month)
    return {"success": True, "data": budget}


@app.get("/api/v1/analytics/performance")
def get_performance_metrics(
    actor: Actor = Depends(require_admin),
    repo: Repository = Depends(get_repository),
    today: date = Depends(get_today),
):
    """Program growth, engagement and top teachers."""
    metrics = performance_metrics(
        students=repo.find_students(StudentQuery(include_dropouts=True)),
        teachers=repo.list_teachers(),
        challenges=repo.list_challenges(),
        today=today,
    )
    return {"success": True, "data": metrics}


# ---------------------------------------------------------------------------
# Attendance
# ---------------------------------------------------------------------------

@app.post("/api/v1/attendance", status_code=201)
def post_attendance(
    body: MarkAttendanceRequest,
    actor: Actor = Depends(require_staff),
    repo: Repository = Depends(get_repository),
    today: date = Depends(get_today),
):
    """Mark attendance for one student."""
    command = MarkAttendanceCommand(
        acting_teacher_id=acting_teacher_id(actor, body.teacher_id),
        student_ids=[body.student_id],
        **body.model_dump(exclude={'student_id', 'teacher_id'}),
    )
    record = mark_attendance(repo, command, today)
    return {"message": "Attendance marked successfully", "attendance": record}


@app.post("/api/v1/attendance/bulk", status_code=201)
def post_bulk_attendance(
    body: BulkAttendanceRequest,
    actor: Actor = Depends(require_staff),
    repo: Repository = Depends(get_repository),
    today: date = Depends(get_today),
):
    """Mark the same session for several students."""
    command = MarkAttendanceCommand(
        acting_teacher_id=acting_teacher_id(actor, body.teacher_id),
        **body.model_dump(exclude={'teacher_id'}),
    )
    result = mark_bulk_attendance(repo, command, today)
    return {"message": "Bulk attendance marked", **result.model_dump()}


@app.get("/api/v1/attendance/students/{student_id}")
def get_student_attendance(
    student_id: str,
    start_date: Optional[date] = None,
    end_date: Optional[date] = None,
    activity_type: Optional[str] = None,
    actor: Actor = Depends(resolve_actor),
    repo: Repository = Depends(get_repository),
):
    """Attendance history and totals for one student."""
    repo.get_student(student_id)
    records = repo.list_attendance(student_id=student_id, start=start_date, end=end_date)
    if activity_type:
        records = [r for r in records if r.activity_type == activity_type]

    return {"attendance": records, "stats": summarize_attendance(records)}


# ---------------------------------------------------------------------------
# Teachers
# ---------------------------------------------------------------------------

@app.post("/api/v1/teachers/{teacher_id}/performance")
def calculate_teacher_performance(
    teacher_id: str,
    actor: Actor = Depends(require_admin),
    repo: Repository = Depends(get_repository),
    today: date = Depends(get_today),
):
    """Recompute a teacher's performance score over the last 30 days."""
    teacher = repo.get_teacher(teacher_id)

    attendance_count = len(repo.list_attendance(teacher_id=teacher_id, start=today - timedelta(days=30)))
    assigned = repo.find_students(StudentQuery(teacher_id=teacher_id, include_dropouts=True))
    active = sum(1 for s in assigned if not s.is_dropout)

    performance = compute_teacher_performance(attendance_count, active, len(assigned))
    repo.save_teacher(teacher.model_copy(update={
        'performance_score': performance.score,
        'bonus_eligible': performance.bonus_eligible,
        'active_students_count': active,
    }))

    logger.info("Teacher %s scored %.1f (bonus eligible: %s)", teacher_id, performance.score, performance.bonus_eligible)
    return {"message": "Performance score calculated successfully", "performance": performance}


# ---------------------------------------------------------------------------
# Gamification
# ---------------------------------------------------------------------------

@app.get("/api/v1/gamification/leaderboard")
def get_leaderboard(
    limit: int = 50,
    village_id: Optional[str] = None,
    squad_id: Optional[str] = None,
    actor: Actor = Depends(resolve_actor),
    repo: Repository = Depends(get_repository),
):
    """Student and squad leaderboards."""
    students = repo.find_students(StudentQuery(village_id=village_id, squad_id=squad_id))
    village_names = {v.id: v.name for v in repo.list_villages()}
    board = build_leaderboard(students, repo.list_squads(village_id), village_names, limit=max(1, limit))
    return {"success": True, "data": board}


@app.get("/api/v1/gamification/students/{student_id}/challenges")
def get_student_challenges(
    student_id: str,
    actor: Actor = Depends(resolve_actor),
    repo: Repository = Depends(get_repository),
):
    """A student's challenges with completion stats."""
    repo.get_student(student_id)
    challenges = repo.list_challenges(student_id)
    return {"success": True, "data": {"challenges": challenges, "stats": challenge_stats(challenges)}}


@app.post("/api/v1/gamification/badges/award", status_code=201)
def post_award_badge(
    body: AwardBadgeRequest,
    actor: Actor = Depends(require_staff),
    repo: Repository = Depends(get_repository),
    today: date = Depends(get_today),
):
    """Award a badge and its points to a student."""
    ensure_assigned(actor, repo.get_student(body.student_id))
    student = award_badge(repo, body.student_id, body.badge_id, today)
    return {
        "success": True,
        "message": "Badge awarded successfully",
        "data": {"badges": student.badges, "gamification_points": student.gamification_points},
    }


@app.post("/api/v1/gamification/challenges/{challenge_id}/enroll", status_code=201)
def post_enroll_in_challenge(
    challenge_id: str,
    body: EnrollChallengeRequest,
    actor: Actor = Depends(resolve_actor),
    repo: Repository = Depends(get_repository),
    today: date = Depends(get_today),
):
    """Enroll a student in a challenge; students may only enroll themselves."""
    if actor.role == 'parent':
        raise AccessDeniedError("Parents cannot enroll students in challenges")
    if actor.role == 'student' and actor.student_id != body.student_id:
        raise AccessDeniedError("Access denied: Can only enroll yourself")
    ensure_assigned(actor, repo.get_student(body.student_id))

    enrollment = enroll_in_challenge(repo, body.student_id, challenge_id, today)
    return {"success": True, "message": "Enrolled in challenge successfully", "data": enrollment}


@app.post("/api/v1/gamification/challenges/{challenge_id}/complete")
def post_complete_challenge(
    challenge_id: str,
    body: CompleteChallengeRequest,
    actor: Actor = Depends(require_staff),
    repo: Repository = Depends(get_repository),
    today: date = Depends(get_today),
):
    """Complete a student's challenge and credit its points."""
    ensure_assigned(actor, repo.get_student(body.student_id))
    finished = complete_challenge(repo, body.student_id, challenge_id, today, progress=body.progress)
    return {"success": True, "message": "Challenge completed successfully", "data": finished}


# ---------------------------------------------------------------------------
# Assessments
# ---------------------------------------------------------------------------

@app.post("/api/v1/assessments", status_code=201)
def post_assessment(
    body: AssessmentCreateRequest,
    actor: Actor = Depends(require_staff),
    repo: Repository = Depends(get_repository),
):
    """Record an assessment; an admin may name the teacher or fall back to the assigned one."""
    assessment = record_assessment(repo, body, acting_teacher_id(actor, body.teacher_id))
    return {"message": "Assessment created successfully", "assessment": assessment}


@app.get("/api/v1/assessments/students/{student_id}/progress", response_model=StudentProgress)
def get_student_progress(
    student_id: str,
    metric: str = Query(..., min_length=1),
    start_date: Optional[date] = None,
    end_date: Optional[date] = None,
    actor: Actor = Depends(resolve_actor),
    repo: Repository = Depends(get_repository),
):
    """Progress of one metric over time for a student."""
    repo.get_student(student_id)
    assessments = repo.list_assessments(student_id, metric=metric, start=start_date, end=end_date)
    return student_progress(assessments, metric)


# ---------------------------------------------------------------------------
# Incentives
# ---------------------------------------------------------------------------

@app.get("/api/v1/incentives/students/{student_id}/milestones", response_model=MilestoneReport)
def get_milestone_eligibility(
    student_id: str,
    actor: Actor = Depends(resolve_actor),
    repo: Repository = Depends(get_repository),
):
    """Progress towards incentive milestones."""
    student = repo.get_student(student_id)
    return check_milestone_eligibility(student, repo.list_incentives(student_id))


@app.post("/api/v1/incentives", status_code=201)
def post_incentive(
    body: IncentiveCreateRequest,
    actor: Actor = Depends(require_staff),
    repo: Repository = Depends(get_repository),
    today: date = Depends(get_today),
):
    incentive = create_incentive(repo, body, today)
    return {"message": "Incentive created successfully", "incentive": incentive}


@app.post("/api/v1/incentives/{incentive_id}/approve")
def post_approve_incentive(
    incentive_id: str,
    body: ApproveIncentiveRequest,
    actor: Actor = Depends(require_admin),
    repo: Repository = Depends(get_repository),
    today: date = Depends(get_today),
):
    incentive = approve_incentive(repo, incentive_id, today, notes=body.notes)
    return {"message": "Incentive approved successfully", "incentive": incentive}


@app.post("/api/v1/incentives/{incentive_id}/reject")
def post_reject_incentive(
    incentive_id: str,
    body: ApproveIncentiveRequest,
    actor: Actor = Depends(require_admin),
    repo: Repository = Depends(get_repository),
):
    incentive = reject_incentive(repo, incentive_id, notes=body.notes)
    return {"message": "Incentive rejected", "incentive": incentive}


@app.post("/api/v1/incentives/{incentive_id}/disburse")
def post_disburse_incentive(
    incentive_id: str,
    body: DisburseIncentiveRequest,
    actor: Actor = Depends(require_admin),
    repo: Repository = Depends(get_repository),
    today: date = Depends(get_today),
):
    incentive = disburse_incentive(
        repo, incentive_id, today,
        method=body.disbursement_method,
        transaction_id=body.transaction_id,
        notes=body.notes,
    )
    return {"message": "Incentive disbursed successfully", "incentive": incentive}


# ---------------------------------------------------------------------------
# Outreach and roster import
# ---------------------------------------------------------------------------

@app.post("/api/v1/outreach-draft", response_model=OutreachDraftResponse)
def post_outreach_draft(
    body: OutreachDraftRequest,
    actor: Actor = Depends(require_staff),
    repo: Repository = Depends(get_repository),
    today: date = Depends(get_today),
):
    """Generate an outreach message draft for a student or their parent."""
    student = repo.get_student(body.student_id)
    ensure_assigned(actor, student)
    query = StudentQuery(include_dropouts=True, teacher_id=student.teacher_id)
    snapshot = next((s for s in repo.student_snapshots(query, today) if s.id == body.student_id), None)
    if snapshot is None:
        raise NotFoundError(f"Student {body.student_id} not found")

    draft = generate_outreach_draft(assess_dropout_risk(snapshot, today), audience=body.audience)
    return OutreachDraftResponse(**draft)


@app.post("/api/v1/roster/upload", response_model=RosterUploadResponse)
async def upload_roster(
    file: UploadFile = File(...),
    actor: Actor = Depends(require_admin),
    repo: Repository = Depends(get_repository),
):
    """Import students and their attendance history from a workbook or CSV."""
    file_bytes = await file.read()
    if len(file_bytes) > config.MAX_UPLOAD_SIZE:
        raise HTTPException(
            status_code=413,
            detail=f"File too large. Maximum size: {config.MAX_UPLOAD_SIZE_MB}MB"
        )

    filename = file.filename or ''
    if not filename.lower().endswith((".xlsx", ".csv")):
        raise HTTPException(
            status_code=400,
            detail="Invalid file type. Please upload an Excel (.xlsx) or CSV file"
        )

    students, attendance = parse_roster(file_bytes, filename)
    if not students:
        raise HTTPException(status_code=400, detail="No student records found in the uploaded file.")

    repo.load_roster(students, attendance)
    logger.info("Roster import: %d students, %d attendance records", len(students), len(attendance))

    return RosterUploadResponse(
        success=True,
        message=f"Successfully imported {len(students)} students",
        students_imported=len(students),
        attendance_imported=len(attendance),
    )


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=8000)
