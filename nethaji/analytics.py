"""Program-wide aggregation: dashboard counters, trends, budget and leaderboards."""

import calendar
import logging
from datetime import date, timedelta
from typing import Dict, Iterable, List

import numpy as np
import pandas as pd

from nethaji.models import (
    AttendanceRecord,
    Incentive,
    Squad,
    Student,
    StudentChallenge,
    Teacher,
)
from nethaji.risk import compute_rate

logger = logging.getLogger(__name__)

ATTENDANCE_COLUMNS = ['id', 'student_id', 'teacher_id', 'date', 'activity_type', 'hours']
INCENTIVE_COLUMNS = ['id', 'student_id', 'milestone_type', 'amount', 'approval_status', 'approved_date']
PAID_STATUSES = ('approved', 'disbursed')
TOP_N = 5


def month_bounds(year: int, month: int):
    """First and last calendar day of a month."""
    last_day = calendar.monthrange(year, month)[1]
    return date(year, month, 1), date(year, month, last_day)


def attendance_frame(records: Iterable[AttendanceRecord]) -> pd.DataFrame:
    """Attendance records as a DataFrame with a datetime64 'date' column."""
    df = pd.DataFrame(
        [r.model_dump(include=set(ATTENDANCE_COLUMNS)) for r in records],
        columns=ATTENDANCE_COLUMNS,
    )
    df['date'] = pd.to_datetime(df['date'])
    df['hours'] = df['hours'].astype(float)
    return df


def incentive_frame(incentives: Iterable[Incentive]) -> pd.DataFrame:
    df = pd.DataFrame(
        [i.model_dump(include=set(INCENTIVE_COLUMNS)) for i in incentives],
        columns=INCENTIVE_COLUMNS,
    )
    df['approved_date'] = pd.to_datetime(df['approved_date'])
    df['amount'] = df['amount'].astype(float)
    return df


def _activity_breakdown(df: pd.DataFrame) -> List[Dict]:
    if df.empty:
        return []
    grouped = df.groupby('activity_type').agg(count=('id', 'size'), total_hours=('hours', 'sum'))
    return [
        {'activity': activity, 'count': int(row['count']), 'total_hours': float(row['total_hours'])}
        for activity, row in grouped.iterrows()
    ]


def _between(series: pd.Series, start: date, end: date) -> pd.Series:
    return (series >= pd.Timestamp(start)) & (series <= pd.Timestamp(end))


def dashboard_overview(
    students: List[Student],
    teachers: List[Teacher],
    attendance: List[AttendanceRecord],
    incentives: List[Incentive],
    village_count: int,
    squad_count: int,
    today: date
) -> Dict:
    """Key program counters for the admin dashboard."""
    total_students = len(students)
    dropouts = sum(1 for s in students if s.is_dropout)
    active = total_students - dropouts

    month_start = today.replace(day=1)
    att = attendance_frame(attendance)
    today_count = int((att['date'] == pd.Timestamp(today)).sum())
    this_month = att[att['date'] >= pd.Timestamp(month_start)]

    inc = incentive_frame(incentives)
    paid = inc[inc['approval_status'].isin(PAID_STATUSES)]

    top = sorted((s for s in students if not s.is_dropout), key=lambda s: -s.gamification_points)[:TOP_N]

    return {
        'students': {
            'total': total_students,
            'active': active,
            'dropout': dropouts,
            'dropout_rate': compute_rate(dropouts, total_students),
        },
        'teachers': {
            'total': len(teachers),
            'active': sum(1 for t in teachers if t.is_active),
        },
        'attendance': {
            'today': today_count,
            'this_month': len(this_month),
            'rate': compute_rate(today_count, active),
        },
        'incentives': {
            'pending': int((inc['approval_status'] == 'pending').sum()),
            'approved': int((inc['approval_status'] == 'approved').sum()),
            'total_amount': float(paid['amount'].sum()),
        },
        'infrastructure': {
            'villages': village_count,
            'squads': squad_count,
        },
        'top_performers': [
            {'rank': idx + 1, 'name': s.name, 'points': s.gamification_points}
            for idx, s in enumerate(top)
        ],
        'activity_breakdown': _activity_breakdown(this_month),
    }


def attendance_trends(records: List[AttendanceRecord], start: date, end: date) -> Dict:
    """
    Daily, per-activity and per-weekday attendance between two days.

    Args:
        records: Attendance already filtered by the caller's scope
        start: First day of the period
        end: Last day of the period

    Returns:
        Dict with period, daily, by_activity, by_day_of_week and summary
    """
    df = attendance_frame(records)
    df = df[_between(df['date'], start, end)]

    daily: List[Dict] = []
    by_day_of_week: Dict[str, int] = {}
    if not df.empty:
        per_day = df.groupby('date').agg(count=('id', 'size'), total_hours=('hours', 'sum')).sort_index()
        daily = [
            {'date': day.date().isoformat(), 'count': int(row['count']), 'total_hours': float(row['total_hours'])}
            for day, row in per_day.iterrows()
        ]
        by_day_of_week = {
            name: int(count) for name, count in df['date'].dt.day_name().value_counts().items()
        }

    total_attendance = len(df)
    avg_daily = round(total_attendance / len(daily), 2) if daily else 0.0

    return {
        'period': {
            'start_date': start.isoformat(),
            'end_date': end.isoformat(),
            'days': (end - start).days,
        },
        'daily': daily,
        'by_activity': _activity_breakdown(df),
        'by_day_of_week': by_day_of_week,
        'summary': {
            'total_attendance': total_attendance,
            'avg_daily_attendance': avg_daily,
        },
    }


def budget_tracking(incentives: List[Incentive], teachers: List[Teacher], year: int, month: int) -> Dict:
    """Incentive spend and salary commitments for a month and its year."""
    period_start, period_end = month_bounds(year, month)
    year_start, year_end = date(year, 1, 1), date(year, 12, 31)

    inc = incentive_frame(incentives)
    paid = inc[inc['approval_status'].isin(PAID_STATUSES)]
    monthly = paid[_between(paid['approved_date'], period_start, period_end)]
    yearly = paid[_between(paid['approved_date'], year_start, year_end)]
    pending = inc[inc['approval_status'] == 'pending']

    active_teachers = [t for t in teachers if t.is_active]
    monthly_salaries = float(np.sum([t.monthly_salary for t in active_teachers]))
    yearly_salaries = monthly_salaries * 12

    monthly_incentives = float(monthly['amount'].sum())
    yearly_incentives = float(yearly['amount'].sum())

    by_type = []
    if not yearly.empty:
        grouped = yearly.groupby('milestone_type')['amount'].agg(['sum', 'count'])
        by_type = [
            {'type': milestone, 'amount': float(row['sum']), 'count': int(row['count'])}
            for milestone, row in grouped.iterrows()
        ]

    return {
        'period': {
            'month': month,
            'year': year,
            'start_date': period_start.isoformat(),
            'end_date': period_end.isoformat(),
        },
        'monthly': {
            'incentives': {'amount': monthly_incentives, 'count': len(monthly)},
            'salaries': {'amount': monthly_salaries, 'teacher_count': len(active_teachers)},
            'pending': {'amount': float(pending['amount'].sum()), 'count': len(pending)},
            'total': monthly_incentives + monthly_salaries,
        },
        'yearly': {
            'incentives': {'amount': yearly_incentives, 'count': len(yearly)},
            'salaries': {'amount': yearly_salaries, 'teacher_count': len(active_teachers)},
            'total': yearly_incentives + yearly_salaries,
        },
        'breakdown': {
            'incentives_by_type': by_type,
            'salary_by_type': {
                'full_time': sum(1 for t in active_teachers if t.employment_type == 'full_time'),
                'part_time': sum(1 for t in active_teachers if t.employment_type == 'part_time'),
            },
        },
    }


def performance_metrics(
    students: List[Student],
    teachers: List[Teacher],
    challenges: List[StudentChallenge],
    today: date
) -> Dict:
    """Student growth, engagement averages and the top teachers."""
    month_start, month_end = month_bounds(today.year, today.month)
    last_month_start = (month_start - timedelta(days=1)).replace(day=1)

    joined_this_month = sum(
        1 for s in students if s.enrolled_on and month_start <= s.enrolled_on <= month_end
    )
    joined_last_month = sum(
        1 for s in students if s.enrolled_on and last_month_start <= s.enrolled_on < month_start
    )
    dropouts_this_month = sum(
        1 for s in students
        if s.is_dropout and s.dropout_date and month_start <= s.dropout_date <= month_end
    )

    active = pd.DataFrame(
        [(s.gamification_points, s.streak_count) for s in students if not s.is_dropout],
        columns=['points', 'streak'],
    )
    avg_points = round(float(active['points'].mean()), 2) if not active.empty else 0.0
    avg_streak = round(float(active['streak'].mean()), 2) if not active.empty else 0.0

    badges_earned = sum(1 for s in students for b in s.badges if b.earned_on >= month_start)

    top_teachers = sorted(
        (t for t in teachers if t.is_active), key=lambda t: -t.performance_score
    )[:TOP_N]

    return {
        'student_growth': {
            'this_month': joined_this_month,
            'last_month': joined_last_month,
            'growth': compute_rate(joined_this_month - joined_last_month, joined_last_month),
        },
        'dropouts': {'this_month': dropouts_this_month},
        'engagement': {
            'avg_points': avg_points,
            'avg_streak': avg_streak,
            'badges_earned': badges_earned,
            'active_challenges': sum(1 for c in challenges if c.status == 'in_progress'),
        },
        'top_teachers': [
            {
                'rank': idx + 1,
                'name': t.name,
                'performance_score': t.performance_score,
                'active_students': t.active_students_count,
            }
            for idx, t in enumerate(top_teachers)
        ],
    }


def build_leaderboard(
    students: List[Student],
    squads: List[Squad],
    village_names: Dict[str, str],
    limit: int = 50
) -> Dict:
    """
    Rank active students by points, then level, then streak; rank squads by points.

    Squad average is points per active member, rounded half up.
    """
    active = [s for s in students if not s.is_dropout]
    squad_names = {sq.id: sq.name for sq in squads}

    rows = pd.DataFrame(
        [
            {
                'student_id': s.id,
                'name': s.name,
                'village': village_names.get(s.village_id) if s.village_id else None,
                'squad': squad_names.get(s.squad_id) if s.squad_id else None,
                'points': s.gamification_points,
                'level': s.level,
                'streak': s.streak_count,
                'badge_count': len(s.badges),
                'legendary_badges': sum(1 for b in s.badges if b.rarity == 'legendary'),
            }
            for s in active
        ],
        columns=['student_id', 'name', 'village', 'squad', 'points', 'level',
                 'streak', 'badge_count', 'legendary_badges'],
    )
    rows = rows.sort_values(['points', 'level', 'streak'], ascending=False, kind='stable').head(limit)
    rows = rows.astype(object).where(pd.notna(rows), None)

    leaderboard = [
        {'rank': idx + 1, **record}
        for idx, record in enumerate(rows.to_dict(orient='records'))
    ]

    members: Dict[str, int] = {}
    for s in active:
        if s.squad_id:
            members[s.squad_id] = members.get(s.squad_id, 0) + 1

    top_squads = sorted(squads, key=lambda sq: -sq.total_points)[:10]
    squad_board = []
    for idx, squad in enumerate(top_squads):
        count = members.get(squad.id, 0)
        squad_board.append({
            'rank': idx + 1,
            'squad_id': squad.id,
            'name': squad.name,
            'village': village_names.get(squad.village_id),
            'points': squad.total_points,
            'member_count': count,
            'avg_points_per_member': int(np.floor(squad.total_points / count + 0.5)) if count else 0,
        })

    return {'students': leaderboard, 'squads': squad_board}


def challenge_stats(challenges: List[StudentChallenge]) -> Dict:
    """Counts per challenge status, points earned and completion rate."""
    grouped: Dict[str, List[StudentChallenge]] = {'in_progress': [], 'completed': [], 'failed': []}
    for challenge in challenges:
        grouped[challenge.status].append(challenge)

    return {
        'total_challenges': len(challenges),
        'completed': len(grouped['completed']),
        'in_progress': len(grouped['in_progress']),
        'failed': len(grouped['failed']),
        'total_points_earned': sum(c.points_earned for c in challenges),
        'completion_rate': compute_rate(len(grouped['completed']), len(challenges)),
    }
