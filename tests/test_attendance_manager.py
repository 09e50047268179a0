import pytest


def test_net_minutes_subtract_break(attendance, students, session_row):
    result = attendance.record_attendance(
        session_row['id'], 'alice', 'present',
        '2025-03-03T09:00', '2025-03-03T12:45', 15, 'full day', 'teacher1')

    assert result['success']
    record = result['record']
    assert record['minutes'] == 225
    assert record['break_minutes'] == 15
    assert record['net_minutes'] == 210
    assert record['recorded_by'] == 'teacher1'


def test_net_minutes_never_negative(attendance, students, session_row):
    result = attendance.record_attendance(
        session_row['id'], 'alice', 'partial',
        '2025-03-03T09:00', '2025-03-03T09:20', 30)

    assert result['record']['minutes'] == 20
    assert result['record']['net_minutes'] == 0


def test_attended_status_requires_window(attendance, students, session_row):
    missing = attendance.record_attendance(session_row['id'], 'alice', 'late', '2025-03-03T09:10', None)
    reversed_window = attendance.record_attendance(
        session_row['id'], 'alice', 'present', '2025-03-03T12:00', '2025-03-03T09:00')

    assert missing['error_type'] == 'validation_error'
    assert reversed_window['error_type'] == 'validation_error'
    assert attendance.get_record(session_row['id'], 'alice') is None


@pytest.mark.parametrize('status', ['absent', 'excused'])
def test_non_attended_status_has_no_minutes(attendance, students, session_row, status):
    result = attendance.record_attendance(
        session_row['id'], 'alice', status, '2025-03-03T09:00', '2025-03-03T12:45', 15)

    record = result['record']
    assert record['status'] == status
    assert record['present_from'] is None
    assert record['minutes'] == 0
    assert record['net_minutes'] == 0


def test_invalid_status_is_rejected(attendance, students, session_row):
    result = attendance.record_attendance(session_row['id'], 'alice', 'sleeping')

    assert result['error_type'] == 'validation_error'


def test_last_write_wins(db, attendance, students, session_row):
    attendance.record_attendance(session_row['id'], 'alice', 'absent')
    attendance.record_attendance(session_row['id'], 'alice', 'late',
                                 '2025-03-03T09:30', '2025-03-03T12:45', 0)

    records = db.execute_query("SELECT * FROM attendance_records WHERE lms_user_id = 'alice'")
    assert len(records) == 1
    assert records[0]['status'] == 'late'
    assert records[0]['net_minutes'] == 195


def test_insert_if_absent_keeps_first_record(db, attendance, students, session_row):
    entry = attendance.build_entry('present', '2025-03-03T09:00', '2025-03-03T12:45', 0)
    first = attendance.insert_if_absent(session_row['id'], 'alice', entry, 'first', 'self-checkin')
    late = attendance.build_entry('late', '2025-03-03T09:30', '2025-03-03T12:45', 0)
    second = attendance.insert_if_absent(session_row['id'], 'alice', late, 'second', 'self-checkin')

    assert first is not None
    assert second is None
    records = db.execute_query("SELECT * FROM attendance_records WHERE lms_user_id = 'alice'")
    assert len(records) == 1
    assert records[0]['status'] == 'present'
    assert records[0]['note'] == 'first'


def test_unknown_session_and_student(attendance, students, session_row):
    assert attendance.record_attendance(999, 'alice', 'absent')['error_type'] == 'session_not_found'
    assert attendance.record_attendance(session_row['id'], 'nobody', 'absent')['error_type'] == 'not_found'


def test_sis_prefix_is_stripped(attendance, students, session_row):
    attendance.record_attendance(session_row['id'], 'SK_alice', 'absent')

    assert attendance.get_record(session_row['id'], 'alice')['status'] == 'absent'


def test_bulk_mark_reports_partial_failure(attendance, students, session_row):
    result = attendance.bulk_mark(
        session_row['id'], ['alice', 'ghost', 'bob'], 'present',
        '2025-03-03T09:00', '2025-03-03T12:45', 15, 'teacher1')

    assert result['success'] is False
    assert result['saved'] == 2
    assert result['failed'] == 1
    assert result['errors'][0]['lms_user_id'] == 'ghost'
    assert attendance.get_record(session_row['id'], 'alice')['net_minutes'] == 210
    assert attendance.get_record(session_row['id'], 'bob')['net_minutes'] == 210


def test_bulk_mark_validates_before_writing(attendance, students, session_row):
    result = attendance.bulk_mark(session_row['id'], ['alice', 'bob'], 'present')

    assert result['error_type'] == 'validation_error'
    assert attendance.get_record(session_row['id'], 'alice') is None


def test_delete_record(attendance, students, session_row):
    record = attendance.record_attendance(session_row['id'], 'alice', 'absent')['record']

    assert attendance.delete_record(record['id'])['success']
    assert attendance.delete_record(record['id'])['error_type'] == 'not_found'


def test_session_listing_includes_unrecorded_and_outside_students(attendance, roster, students, session_row):
    roster.upsert_user('dora', 'Dora Drop-In')
    attendance.record_attendance(session_row['id'], 'bob', 'absent')
    attendance.record_attendance(session_row['id'], 'dora', 'excused')

    rows = {row['lms_user_id']: row for row in attendance.get_session_attendance(session_row['id'])}

    assert set(rows) == {'alice', 'bob', 'carla', 'dora'}
    assert rows['alice']['status'] is None
    assert rows['bob']['status'] == 'absent'
    assert rows['dora']['name'] == 'Dora Drop-In'


def test_attach_excuse_creates_student_record(attendance, students, session_row):
    result = attendance.attach_excuse(session_row['id'], 'alice', 'excuse-1.pdf')

    record = attendance.get_record(session_row['id'], 'alice')
    assert result['success']
    assert record['status'] == 'excused'
    assert record['recorded_by'] == 'student'
    assert record['excuse_filename'] == 'excuse-1.pdf'
    assert record['excuse_uploaded_at'] == '2025-03-03T09:00:00'
    assert attendance.can_access_excuse('excuse-1.pdf', 'alice')
    assert not attendance.can_access_excuse('excuse-1.pdf', 'bob')


def test_attach_excuse_keeps_origin_of_existing_record(attendance, students, session_row):
    attendance.record_attendance(session_row['id'], 'alice', 'present',
                                 '2025-03-03T09:00', '2025-03-03T12:45', 0, None, 'teacher1')

    attendance.attach_excuse(session_row['id'], 'alice', 'excuse-2.png')

    record = attendance.get_record(session_row['id'], 'alice')
    assert record['status'] == 'excused'
    assert record['recorded_by'] == 'teacher1'
    assert record['net_minutes'] == 0
