"""API tests for the FastAPI application."""

from datetime import date, timedelta

import pytest
from fastapi.testclient import TestClient

from nethaji.main import app, get_repository, get_today
from nethaji.models import AttendanceRecord, Badge, Challenge, Student, Teacher, Village
from nethaji.store import InMemoryRepository

TODAY = date(2026, 3, 31)

ADMIN = {'X-User-Role': 'admin'}
TEACHER_1 = {'X-User-Role': 'teacher', 'X-Teacher-Id': 't1'}
PARENT = {'X-User-Role': 'parent'}
STUDENT_A = {'X-User-Role': 'student', 'X-Student-Id': 'a'}


def seed(repo: InMemoryRepository):
    repo.add_village(Village(id='v1', name='Palayamkottai', latitude=8.7642, longitude=77.7619))
    repo.save_teacher(Teacher(id='t1', name='Ravi', village_id='v1'))
    repo.save_teacher(Teacher(id='t2', name='Lakshmi', village_id='v1'))
    repo.add_badge(Badge(id='badge-1', name='First Step', points_value=25))
    repo.add_challenge(Challenge(id='ch-1', title='Run 5k', points_reward=70))

    students = [
        Student(id='a', name='Asha', village_id='v1', teacher_id='t1'),
        Student(id='b', name='Bala', village_id='v1', teacher_id='t1', streak_count=10, gamification_points=500),
        Student(id='c', name='Chitra', village_id='v1', teacher_id='t2', streak_count=3, gamification_points=50),
        Student(id='d', name='Dev', village_id='v1', teacher_id='t2', is_dropout=True),
    ]
    attendance = [
        AttendanceRecord(id=f'b{n}', student_id='b', teacher_id='t1',
                         date=TODAY - timedelta(days=n), activity_type='sports', hours=1.0)
        for n in range(1, 11)
    ]
    attendance.append(AttendanceRecord(id='c1', student_id='c', teacher_id='t2',
                                       date=TODAY - timedelta(days=2), activity_type='chess', hours=1.0))
    repo.load_roster(students, attendance)


@pytest.fixture
def repo():
    repo = InMemoryRepository()
    seed(repo)
    return repo


@pytest.fixture
def client(repo):
    app.dependency_overrides[get_repository] = lambda: repo
    app.dependency_overrides[get_today] = lambda: TODAY
    yield TestClient(app)
    app.dependency_overrides.clear()


def test_health(client):
    response = client.get('/health')
    assert response.status_code == 200
    assert response.json()['status'] == 'ok'


def test_missing_role_is_unauthorized(client):
    response = client.get('/api/v1/analytics/dropout-risk')
    assert response.status_code == 401
    assert response.json()['success'] == False


def test_teacher_without_profile(client):
    response = client.get('/api/v1/analytics/dropout-risk', headers={'X-User-Role': 'teacher'})
    assert response.status_code == 404


def test_parent_cannot_view_dropout_risk(client):
    response = client.get('/api/v1/analytics/dropout-risk', headers=PARENT)
    assert response.status_code == 403
    assert response.json()['error'] == 'Access denied'


def test_dropout_risk_for_admin(client):
    """Dropouts are excluded and low-risk students are filtered out."""
    response = client.get('/api/v1/analytics/dropout-risk', headers=ADMIN)
    assert response.status_code == 200

    data = response.json()['data']
    assert data['summary'] == {
        'total_students': 3,
        'at_risk_count': 2,
        'critical_count': 1,
        'high_count': 1,
        'medium_count': 0,
    }
    assert [s['student_id'] for s in data['students']] == ['a', 'c']
    assert data['students'][0]['risk_score'] == 100
    assert data['students'][0]['teacher'] == 'Ravi'
    assert data['students'][1]['risk_score'] == 45
    assert data['students'][1]['risk_factors'] == [
        'Low attendance (< 8 days in 30 days)',
        'Low engagement (< 100 points)',
    ]
    assert [s['student_id'] for s in data['grouped']['high']] == ['c']


def test_dropout_risk_scoped_to_teacher(client):
    response = client.get('/api/v1/analytics/dropout-risk', headers=TEACHER_1)
    data = response.json()['data']

    assert data['summary']['total_students'] == 2
    assert [s['student_id'] for s in data['students']] == ['a']


def test_dropout_risk_csv(client):
    response = client.get('/api/v1/analytics/dropout-risk.csv', headers=ADMIN)
    assert response.status_code == 200
    assert response.headers['content-type'].startswith('text/csv')
    assert 'dropout_risk_2026-03-31.csv' in response.headers['content-disposition']

    lines = response.text.strip().splitlines()
    assert lines[0].startswith('Student ID,Name')
    assert len(lines) == 3
    assert lines[1].startswith('a,Asha')


def test_overview_requires_admin(client):
    assert client.get('/api/v1/analytics/overview', headers=TEACHER_1).status_code == 403

    response = client.get('/api/v1/analytics/overview', headers=ADMIN)
    assert response.status_code == 200
    data = response.json()['data']
    assert data['students']['total'] == 4
    assert data['students']['dropout'] == 1
    assert data['infrastructure']['villages'] == 1


def test_attendance_trends_for_teacher(client):
    response = client.get('/api/v1/analytics/attendance-trends?days=7', headers=TEACHER_1)
    assert response.status_code == 200
    summary = response.json()['data']['summary']
    assert summary['total_attendance'] == 7


def test_budget_rejects_bad_month(client):
    response = client.get('/api/v1/analytics/budget?year=2026&month=13', headers=ADMIN)
    assert response.status_code == 400


def test_mark_attendance(client, repo):
    payload = {'student_id': 'a', 'date': '2026-03-31', 'activity_type': 'yoga', 'hours': 1.5}

    response = client.post('/api/v1/attendance', json=payload, headers=TEACHER_1)
    assert response.status_code == 201
    assert response.json()['attendance']['teacher_id'] == 't1'
    assert repo.get_student('a').streak_count == 1

    duplicate = client.post('/api/v1/attendance', json=payload, headers=TEACHER_1)
    assert duplicate.status_code == 409
    assert duplicate.json()['error'] == 'Conflict'

    history = client.get('/api/v1/attendance/students/a', headers=PARENT).json()
    assert history['stats']['total_records'] == 1
    assert history['stats']['total_hours'] == 1.5


def test_mark_attendance_validation(client):
    payload = {'student_id': 'a', 'date': '2026-03-31', 'activity_type': 'yoga', 'hours': 10}
    response = client.post('/api/v1/attendance', json=payload, headers=TEACHER_1)
    assert response.status_code == 422
    assert response.json()['error'] == 'Validation error'


def test_mark_attendance_outside_geofence(client):
    payload = {
        'student_id': 'a', 'date': '2026-03-31', 'activity_type': 'yoga', 'hours': 1,
        'latitude': 9.0, 'longitude': 77.7619,
    }
    response = client.post('/api/v1/attendance', json=payload, headers=TEACHER_1)
    assert response.status_code == 400
    assert response.json()['error'] == 'Location verification failed'


def test_bulk_attendance_by_admin_for_teacher(client, repo):
    payload = {
        'student_ids': ['b', 'c'], 'date': '2026-03-31', 'activity_type': 'chess',
        'hours': 2, 'teacher_id': 't2',
    }
    response = client.post('/api/v1/attendance/bulk', json=payload, headers=ADMIN)
    assert response.status_code == 201

    body = response.json()
    assert body['summary'] == {'total': 2, 'successful': 2, 'failed': 0}
    assert all(r['teacher_id'] == 't2' for r in body['attendance'])
    assert repo.get_student('b').streak_count == 11


def test_bulk_attendance_unknown_student(client):
    payload = {'student_ids': ['b', 'zz'], 'date': '2026-03-31', 'activity_type': 'chess', 'hours': 2}
    response = client.post('/api/v1/attendance/bulk', json=payload, headers=TEACHER_1)
    assert response.status_code == 404


def test_teacher_performance(client, repo):
    response = client.post('/api/v1/teachers/t1/performance', headers=ADMIN)
    assert response.status_code == 200

    performance = response.json()['performance']
    assert performance['active_students'] == 2
    assert performance['total_attendance_logged'] == 10
    assert performance['score'] == pytest.approx(50.0)
    assert performance['bonus_eligible'] == False
    assert repo.get_teacher('t1').active_students_count == 2


def test_incentive_workflow(client, repo):
    created = client.post(
        '/api/v1/incentives',
        json={'student_id': 'b', 'milestone_type': '16_week_streak', 'amount': 5000, 'weeks_completed': 16},
        headers=TEACHER_1,
    )
    assert created.status_code == 201
    incentive_id = created.json()['incentive']['id']

    assert client.post(f'/api/v1/incentives/{incentive_id}/approve', json={}, headers=TEACHER_1).status_code == 403

    approved = client.post(f'/api/v1/incentives/{incentive_id}/approve', json={'notes': 'ok'}, headers=ADMIN)
    assert approved.json()['incentive']['approval_status'] == 'approved'
    assert repo.get_student('b').savings_balance == 5000.0

    disburse = {'disbursement_method': 'upi', 'transaction_id': 'TXN-9'}
    paid = client.post(f'/api/v1/incentives/{incentive_id}/disburse', json=disburse, headers=ADMIN)
    assert paid.json()['incentive']['approval_status'] == 'disbursed'

    again = client.post(f'/api/v1/incentives/{incentive_id}/disburse', json=disburse, headers=ADMIN)
    assert again.status_code == 400
    assert again.json()['error'] == 'Invalid status'


def test_milestones(client):
    response = client.get('/api/v1/incentives/students/b/milestones', headers=PARENT)
    assert response.status_code == 200
    milestone = response.json()['milestones']['16_week_streak']
    assert milestone['progress'] == 9
    assert milestone['eligible'] == False


def test_unknown_student_is_not_found(client):
    response = client.get('/api/v1/incentives/students/nobody/milestones', headers=PARENT)
    assert response.status_code == 404
    assert response.json()['error'] == 'Not found'


def test_leaderboard(client):
    response = client.get('/api/v1/gamification/leaderboard', headers=PARENT)
    assert response.status_code == 200
    students = response.json()['data']['students']
    assert [s['student_id'] for s in students] == ['b', 'c', 'a']


def test_outreach_draft(client):
    response = client.post('/api/v1/outreach-draft', json={'student_id': 'a'}, headers=TEACHER_1)
    assert response.status_code == 200
    draft = response.json()
    assert draft['subject'] == "Urgent: please contact us about Asha"
    assert "No attendance in last 7 days" in draft['body']


def test_roster_upload_csv(client, repo):
    csv = b"Student ID,Name,Village\n201,Esha,v1\n202,Farah,v1\n"
    response = client.post(
        '/api/v1/roster/upload',
        files={'file': ('roster.csv', csv, 'text/csv')},
        headers=ADMIN,
    )
    assert response.status_code == 200
    assert response.json()['students_imported'] == 2
    assert repo.get_student('202').name == 'Farah'


def test_roster_upload_rejects_other_types(client):
    response = client.post(
        '/api/v1/roster/upload',
        files={'file': ('roster.txt', b'hello', 'text/plain')},
        headers=ADMIN,
    )
    assert response.status_code == 400


def test_attendance_trends_days_is_bounded(client):
    assert client.get('/api/v1/analytics/attendance-trends?days=100000', headers=ADMIN).status_code == 422
    assert client.get('/api/v1/analytics/attendance-trends?days=0', headers=ADMIN).status_code == 422


def test_outreach_draft_limited_to_own_students(client):
    response = client.post('/api/v1/outreach-draft', json={'student_id': 'c'}, headers=TEACHER_1)
    assert response.status_code == 403

    assert client.post('/api/v1/outreach-draft', json={'student_id': 'c'}, headers=ADMIN).status_code == 200


def test_student_without_profile(client):
    response = client.get('/api/v1/gamification/leaderboard', headers={'X-User-Role': 'student'})
    assert response.status_code == 404


def test_award_badge(client, repo):
    response = client.post(
        '/api/v1/gamification/badges/award',
        json={'student_id': 'a', 'badge_id': 'badge-1'},
        headers=TEACHER_1,
    )
    assert response.status_code == 201
    assert response.json()['data']['gamification_points'] == 25

    again = client.post(
        '/api/v1/gamification/badges/award',
        json={'student_id': 'a', 'badge_id': 'badge-1'},
        headers=TEACHER_1,
    )
    assert again.status_code == 409
    assert repo.get_student('a').gamification_points == 25


def test_award_badge_to_other_teachers_student(client):
    response = client.post(
        '/api/v1/gamification/badges/award',
        json={'student_id': 'c', 'badge_id': 'badge-1'},
        headers=TEACHER_1,
    )
    assert response.status_code == 403


def test_challenge_enroll_and_complete(client, repo):
    """Completing a challenge moves the student's points."""
    enroll = client.post('/api/v1/gamification/challenges/ch-1/enroll', json={'student_id': 'a'}, headers=STUDENT_A)
    assert enroll.status_code == 201
    assert enroll.json()['data']['status'] == 'in_progress'

    complete = client.post(
        '/api/v1/gamification/challenges/ch-1/complete',
        json={'student_id': 'a', 'progress': 'done'},
        headers=TEACHER_1,
    )
    assert complete.status_code == 200
    assert complete.json()['data']['points_earned'] == 70
    assert repo.get_student('a').gamification_points == 70

    again = client.post('/api/v1/gamification/challenges/ch-1/complete', json={'student_id': 'a'}, headers=ADMIN)
    assert again.status_code == 400

    challenges = client.get('/api/v1/gamification/students/a/challenges', headers=PARENT).json()['data']
    assert challenges['stats']['completed'] == 1


def test_enroll_restrictions(client):
    other = client.post('/api/v1/gamification/challenges/ch-1/enroll', json={'student_id': 'b'}, headers=STUDENT_A)
    assert other.status_code == 403

    parent = client.post('/api/v1/gamification/challenges/ch-1/enroll', json={'student_id': 'a'}, headers=PARENT)
    assert parent.status_code == 403

    missing = client.post('/api/v1/gamification/challenges/nope/enroll', json={'student_id': 'a'}, headers=STUDENT_A)
    assert missing.status_code == 404


def test_assessment_progress(client):
    for day, value in (('2026-02-01', 15.5), ('2026-03-01', 14.5)):
        response = client.post('/api/v1/assessments', json={
            'student_id': 'a', 'assessment_date': day, 'category': 'physical',
            'metric': '100m sprint', 'value': value, 'unit': 'seconds',
        }, headers=TEACHER_1)
        assert response.status_code == 201
        assert response.json()['assessment']['teacher_id'] == 't1'

    progress = client.get('/api/v1/assessments/students/a/progress', params={'metric': '100m sprint'}, headers=PARENT)
    assert progress.status_code == 200
    trend = progress.json()['trend']
    assert trend == {'initial': 15.5, 'current': 14.5, 'change': -1.0, 'data_points': 2}

    assert client.get('/api/v1/assessments/students/a/progress', headers=PARENT).status_code == 422
    assert client.get('/api/v1/assessments/students/a/progress?metric=plank', headers=PARENT).status_code == 404
