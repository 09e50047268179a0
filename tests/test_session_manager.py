def test_create_from_date_and_times(sessions, course):
    result = sessions.create_session('ctx-101', {
        'session_name': '  Seminar A ',
        'session_type': 'seminar',
        'session_date': '2025-04-01',
        'start_time': '13:00',
        'end_time': '16:45',
        'location': 'Room 2'
    }, created_by='teacher1')

    assert result['success']
    session = result['session']
    assert session['session_name'] == 'Seminar A'
    assert session['start_ts'] == '2025-04-01T13:00:00'
    assert session['end_ts'] == '2025-04-01T16:45:00'
    assert session['expected_minutes'] == 225
    assert session['session_type'] == 'seminar'
    assert session['lms_course_id'] == 'ctx-101'


def test_create_creates_unknown_course(sessions):
    result = sessions.create_session('ctx-new', {
        'session_name': 'Kickoff',
        'start_ts': '2025-04-01T10:00',
        'end_ts': '2025-04-01T11:00'
    })

    assert result['success']
    assert sessions.get_course('ctx-new') is not None


def test_create_rejects_bad_window(sessions, course):
    reversed_window = sessions.create_session('ctx-101', {
        'session_name': 'Broken',
        'start_ts': '2025-04-01T12:00',
        'end_ts': '2025-04-01T12:00'
    })
    missing = sessions.create_session('ctx-101', {'session_name': 'No window'})
    malformed = sessions.create_session('ctx-101', {
        'session_name': 'Malformed',
        'session_date': '2025-04-01',
        'start_time': 'nine',
        'end_time': '10:00'
    })

    assert reversed_window['error_type'] == 'validation_error'
    assert missing['error_type'] == 'validation_error'
    assert malformed['error_type'] == 'validation_error'


def test_create_requires_name(sessions, course):
    result = sessions.create_session('ctx-101', {
        'start_ts': '2025-04-01T10:00',
        'end_ts': '2025-04-01T11:00'
    })

    assert result['error_type'] == 'validation_error'


def test_update_recomputes_expected_minutes(sessions, session_row):
    result = sessions.update_session(session_row['id'], {
        'session_name': 'Week 1 (short)',
        'end_ts': '2025-03-03T10:30:00'
    })

    assert result['success']
    assert result['session']['session_name'] == 'Week 1 (short)'
    assert result['session']['start_ts'] == '2025-03-03T09:00:00'
    assert result['session']['expected_minutes'] == 90


def test_update_without_fields(sessions, session_row):
    assert sessions.update_session(session_row['id'], {'unknown': 1})['error_type'] == 'validation_error'
    assert sessions.update_session(999, {'session_name': 'x'})['error_type'] == 'session_not_found'


def test_delete_cascades_to_records(db, sessions, attendance, students, session_row):
    attendance.record_attendance(session_row['id'], 'alice', 'absent')

    assert sessions.delete_session(session_row['id'])['success']
    assert sessions.delete_session(session_row['id'])['error_type'] == 'session_not_found'
    assert db.execute_query("SELECT COUNT(*) AS count FROM attendance_records",
                            fetch_all=False)['count'] == 0


def test_sessions_for_course_are_ordered(sessions, attendance, students, session_row):
    sessions.create_session('ctx-101', {
        'session_name': 'Week 0',
        'start_ts': '2025-02-24T09:00',
        'end_ts': '2025-02-24T12:45'
    })
    attendance.record_attendance(session_row['id'], 'alice', 'absent')

    listed = sessions.get_sessions_for_course('ctx-101')

    assert [row['session_name'] for row in listed] == ['Week 0', 'Week 1']
    assert listed[1]['recorded_count'] == 1
    assert sessions.get_sessions_for_course('ctx-unknown') == []
