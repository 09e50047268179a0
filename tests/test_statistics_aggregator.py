import pytest

from lti_attendance.modules.statistics_aggregator import (
    attendance_rate, time_rate, to_hours, to_teaching_hours
)


@pytest.fixture
def second_session(sessions, course):
    return sessions.create_session('ctx-101', {
        'session_name': 'Week 2',
        'session_date': '2025-03-10',
        'start_time': '09:00',
        'end_time': '12:45'
    })['session']


def test_rate_helpers_handle_zero_denominators():
    assert attendance_rate(0, 0) == 0
    assert time_rate(120, 0) == 0
    assert attendance_rate(1, 3) == 33.3
    assert to_hours(225) == 3.75
    assert to_teaching_hours(225) == 5.0


def test_course_without_sessions(statistics, course, students):
    result = statistics.compute_course_stats(course['id'], 'alice')

    assert result['sessions'] == []
    assert result['stats']['total_sessions'] == 0
    assert result['stats']['attendance_rate'] == 0
    assert result['stats']['time_rate'] == 0


def test_student_stats(statistics, attendance, course, students, session_row, second_session):
    attendance.record_attendance(session_row['id'], 'alice', 'present',
                                 '2025-03-03T09:00', '2025-03-03T12:45', 0)
    attendance.record_attendance(second_session['id'], 'alice', 'absent')

    result = statistics.compute_course_stats(course['id'], 'alice')
    stats = result['stats']

    assert stats['total_sessions'] == 2
    assert stats['attended_sessions'] == 1
    assert stats['total_minutes'] == 225
    assert stats['total_hours'] == 3.75
    assert stats['expected_minutes'] == 450
    assert stats['attendance_rate'] == 50.0
    assert stats['time_rate'] == 50.0
    assert [row['session_name'] for row in result['sessions']] == ['Week 2', 'Week 1']
    assert result['sessions'][0]['status'] == 'absent'


def test_excused_sessions_count_as_not_attended(statistics, attendance, course, students, session_row):
    attendance.record_attendance(session_row['id'], 'bob', 'excused')

    stats = statistics.compute_course_stats(course['id'], 'bob')['stats']

    assert stats['attended_sessions'] == 0
    assert stats['total_minutes'] == 0


def test_course_matrix(statistics, attendance, course, students, session_row, second_session):
    attendance.record_attendance(session_row['id'], 'bob', 'late',
                                 '2025-03-03T09:30', '2025-03-03T12:45', 15)

    matrix = statistics.compute_course_matrix(course['id'])

    assert [session['session_name'] for session in matrix['sessions']] == ['Week 1', 'Week 2']
    rows = {row['lms_user_id']: row for row in matrix['students']}
    assert set(rows) == {'alice', 'bob', 'carla'}

    bob_cells = rows['bob']['session_attendance']
    assert bob_cells[0] == {'session_id': session_row['id'], 'status': 'late', 'net_minutes': 180}
    assert bob_cells[1]['status'] == 'not_recorded'
    assert rows['bob']['stats']['attendance_rate'] == 50.0
    assert rows['alice']['stats']['attended_sessions'] == 0


def test_matrix_to_dataframe(statistics, attendance, course, students, session_row):
    attendance.record_attendance(session_row['id'], 'carla', 'absent')

    frame = statistics.to_dataframe(statistics.compute_course_matrix(course['id']))

    assert list(frame.columns) == ['Name', 'Email', 'Week 1 (2025-03-03)',
                                   'Attendance rate (%)', 'Hours']
    assert len(frame) == 3
    carla = frame[frame['Name'] == 'Carla Córdoba'].iloc[0]
    assert carla['Week 1 (2025-03-03)'] == 'absent'
