# tests/conftest.py
"""
Shared fixtures: a temporary SQLite database per test, managers wired
together with a controllable clock, and a Flask app with its test client.
"""

from datetime import datetime, timedelta

import pytest

from lti_attendance import create_app
from lti_attendance.modules.database_manager import DatabaseManager
from lti_attendance.modules.roster_manager import RosterManager
from lti_attendance.modules.session_manager import SessionManager
from lti_attendance.modules.attendance_manager import AttendanceManager
from lti_attendance.modules.token_issuer import CheckinTokenIssuer
from lti_attendance.modules.checkin_reconciler import CheckinReconciler
from lti_attendance.modules.statistics_aggregator import StatisticsAggregator
from lti_attendance.modules.report_generator import ReportGenerator
from lti_attendance.modules.identity_manager import IdentityManager

LTI = 'https://purl.imsglobal.org/spec/lti/claim/'
INSTRUCTOR_ROLE = 'http://purl.imsglobal.org/vocab/lis/v2/membership#Instructor'
LEARNER_ROLE = 'http://purl.imsglobal.org/vocab/lis/v2/membership#Learner'

SESSION_START = datetime(2025, 3, 3, 9, 0)


class FakeClock:
    """Callable clock that tests move by hand."""

    def __init__(self, now):
        self.now = now

    def __call__(self):
        return self.now

    def advance(self, **kwargs):
        self.now = self.now + timedelta(**kwargs)


@pytest.fixture
def clock():
    return FakeClock(SESSION_START)


@pytest.fixture
def db(tmp_path):
    manager = DatabaseManager(tmp_path / 'attendance.db')
    yield manager
    manager.close_all_connections()


@pytest.fixture
def roster(db):
    return RosterManager(db)


@pytest.fixture
def sessions(db):
    return SessionManager(db)


@pytest.fixture
def attendance(db, roster, clock):
    return AttendanceManager(db, roster, clock=clock)


@pytest.fixture
def tokens(db, clock):
    return CheckinTokenIssuer(db, 'http://testserver', clock=clock)


@pytest.fixture
def reconciler(db, tokens, roster, attendance, clock):
    return CheckinReconciler(db, tokens, roster, attendance, clock=clock)


@pytest.fixture
def statistics(db, roster):
    return StatisticsAggregator(db, roster)


@pytest.fixture
def reports(db, attendance, statistics):
    return ReportGenerator(db, attendance, statistics,
                           institution_line='Test Academy, Main Street 1')


@pytest.fixture
def identity(roster, sessions):
    return IdentityManager(roster, sessions)


@pytest.fixture
def course(sessions):
    return sessions.get_or_create_course('ctx-101', 'Python Basics', 4711)


@pytest.fixture
def session_row(sessions, course):
    """09:00 - 12:45 session of the test course."""
    result = sessions.create_session('ctx-101', {
        'session_name': 'Week 1',
        'start_ts': '2025-03-03T09:00:00',
        'end_ts': '2025-03-03T12:45:00'
    }, created_by='teacher1')
    assert result['success']
    return result['session']


@pytest.fixture
def students(roster, course):
    """Three enrolled students."""
    rows = []
    for lms_user_id, name, email in [
        ('alice', 'Alice Example', 'alice@example.org'),
        ('bob', 'Bob Builder', 'bob@example.org'),
        ('carla', 'Carla Córdoba', 'carla@example.org'),
    ]:
        user = roster.upsert_user(lms_user_id, name, email)
        roster.enroll(course['id'], user['user_id'])
        rows.append(roster.get_user(lms_user_id))
    return rows


@pytest.fixture
def app(tmp_path, clock):
    application = create_app('testing', overrides={
        'DATABASE_PATH': tmp_path / 'app.db',
        'UPLOAD_FOLDER': tmp_path / 'uploads',
        'FORMBLATT_TEMPLATE_PATH': tmp_path / 'missing_formblatt.pdf'
    }, clock=clock)
    yield application
    application.extensions['lti_attendance']['db'].close_all_connections()


@pytest.fixture
def client(app):
    return app.test_client()


def launch_payload(user_login, name, roles, context_id='ctx-101', email=None):
    return {
        'sub': f'uuid-{user_login}',
        'name': name,
        'email': email or f'{user_login}@example.org',
        LTI + 'roles': roles,
        LTI + 'context': {'id': context_id, 'label': 'Python Basics'},
        LTI + 'custom': {'canvas_user_login_id': user_login, 'canvas_course_id': '4711'}
    }


@pytest.fixture
def instructor_client(app):
    test_client = app.test_client()
    response = test_client.post('/lti/launch', json=launch_payload(
        'teacher1', 'Tina Teacher', [INSTRUCTOR_ROLE]))
    assert response.status_code == 200
    return test_client


@pytest.fixture
def student_client(app):
    test_client = app.test_client()
    response = test_client.post('/lti/launch', json=launch_payload(
        'alice', 'Alice Example', [LEARNER_ROLE]))
    assert response.status_code == 200
    return test_client
