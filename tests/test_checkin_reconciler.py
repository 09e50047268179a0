import pytest


@pytest.fixture
def token(tokens, session_row):
    return tokens.issue(session_row['id'], 15, 'teacher1')['token']


def record_count(db, session_id):
    return db.execute_query(
        "SELECT COUNT(*) AS count FROM attendance_records WHERE session_id = ?",
        (session_id,), fetch_all=False)['count']


def test_checkin_within_grace_is_present(reconciler, attendance, students, session_row, token, clock):
    clock.advance(minutes=4)

    result = reconciler.submit(token, 'Alice Example')

    assert result['success']
    assert result['status'] == 'present'
    assert result['already_checked_in'] is False
    assert result['student_name'] == 'Alice Example'

    record = attendance.get_record(session_row['id'], 'alice')
    assert record['recorded_by'] == 'self-checkin'
    assert record['present_from'] == '2025-03-03T09:00:00'
    assert record['present_to'] == '2025-03-03T12:45:00'
    assert record['minutes'] == 225
    assert record['net_minutes'] == 225
    assert record['note'] == 'Self check-in via QR code at 09:04:00'


def test_checkin_at_grace_boundary_is_present(reconciler, students, token, clock):
    clock.advance(minutes=5)

    assert reconciler.submit(token, 'Alice Example')['status'] == 'present'


def test_checkin_after_grace_is_late(reconciler, students, token, clock):
    clock.advance(minutes=6)

    result = reconciler.submit(token, 'Bob Builder')

    assert result['success']
    assert result['status'] == 'late'


def test_checkin_is_recorded_exactly_once(db, reconciler, attendance, students, session_row, token, clock):
    clock.advance(minutes=1)
    first = reconciler.submit(token, 'Alice Example')
    clock.advance(minutes=10)
    second = reconciler.submit(token, 'alice example')

    assert first['already_checked_in'] is False
    assert second['success']
    assert second['already_checked_in'] is True
    assert second['status'] == 'present'
    assert record_count(db, session_row['id']) == 1
    assert attendance.get_record(session_row['id'], 'alice')['status'] == 'present'


def test_checkin_does_not_override_manual_record(reconciler, attendance, students, session_row, token):
    attendance.record_attendance(session_row['id'], 'alice', 'excused', recorded_by='teacher1')

    result = reconciler.submit(token, 'Alice Example')

    assert result['already_checked_in'] is True
    assert attendance.get_record(session_row['id'], 'alice')['status'] == 'excused'


def test_expired_token_is_rejected_and_deactivated(reconciler, tokens, students, token, clock):
    clock.advance(minutes=20)

    result = reconciler.submit(token, 'Alice Example')

    assert result['success'] is False
    assert result['error_type'] == 'token_expired'
    assert tokens.lookup(token) is None
    assert reconciler.submit(token, 'Alice Example')['error_type'] == 'token_invalid'


def test_unknown_token_is_invalid(reconciler, students):
    result = reconciler.submit('0' * 64, 'Alice Example')

    assert result['error_type'] == 'token_invalid'


def test_unregistered_name_writes_nothing(db, reconciler, students, session_row, token):
    result = reconciler.submit(token, 'Mallory Unknown')

    assert result['success'] is False
    assert result['error_type'] == 'not_registered'
    assert 'email' in result['error']
    assert record_count(db, session_row['id']) == 0


def test_name_match_ignores_case_and_whitespace(reconciler, students, token):
    result = reconciler.submit(token, '   cARLA córdoba  ')

    assert result['success']
    assert result['student_name'] == 'Carla Córdoba'


def test_email_resolves_when_name_does_not(reconciler, attendance, students, session_row, token):
    result = reconciler.submit(token, 'Bobby B.', ' BOB@example.org ')

    assert result['success']
    assert attendance.get_record(session_row['id'], 'bob') is not None


def test_ambiguous_name_needs_email(reconciler, roster, course, students, token):
    twin = roster.upsert_user('alice2', 'Alice Example', 'alice.two@example.org')
    roster.enroll(course['id'], twin['user_id'])

    assert reconciler.submit(token, 'Alice Example')['error_type'] == 'not_registered'

    result = reconciler.submit(token, 'Alice Example', 'alice.two@example.org')
    assert result['success']


def test_placeholder_identities_never_match(reconciler, roster, token):
    roster.upsert_user('checkin_42', 'Paul Placeholder')

    assert reconciler.submit(token, 'Paul Placeholder')['error_type'] == 'not_registered'


def test_instructors_never_match(reconciler, roster, token):
    roster.upsert_user('teacher1', 'Tina Teacher', role='instructor')

    assert reconciler.submit(token, 'Tina Teacher')['error_type'] == 'not_registered'


def test_missing_fields_are_validation_errors(reconciler, token):
    assert reconciler.submit(token, '   ')['error_type'] == 'validation_error'
    assert reconciler.submit('', 'Alice Example')['error_type'] == 'validation_error'


def test_course_roster_limits_matches(reconciler, roster, sessions, students, token):
    other_course = sessions.get_or_create_course('ctx-202', 'Other Course')
    outsider = roster.upsert_user('oscar', 'Oscar Outside')
    roster.enroll(other_course['id'], outsider['user_id'])

    assert reconciler.submit(token, 'Oscar Outside')['error_type'] == 'not_registered'


def test_grace_period_follows_system_setting(db, tokens, roster, attendance, students, token, clock):
    from lti_attendance.modules.checkin_reconciler import CheckinReconciler

    db.update_system_setting('late_grace_minutes', 10)
    lenient = CheckinReconciler(db, tokens, roster, attendance, clock=clock)
    clock.advance(minutes=8)

    assert lenient.late_grace_minutes == 10
    assert lenient.submit(token, 'Alice Example')['status'] == 'present'


def test_concurrent_record_wins_over_checkin(db, reconciler, attendance, students, session_row, token,
                                             monkeypatch):
    # The manual record lands between the existence check and the insert
    attendance.record_attendance(session_row['id'], 'alice', 'excused', recorded_by='teacher1')
    original_get_record = attendance.get_record
    calls = []

    def stale_get_record(session_id, lms_user_id):
        calls.append(lms_user_id)
        if len(calls) == 1:
            return None
        return original_get_record(session_id, lms_user_id)

    monkeypatch.setattr(attendance, 'get_record', stale_get_record)

    result = reconciler.submit(token, 'Alice Example')

    assert result['success']
    assert result['already_checked_in'] is True
    assert result['status'] == 'excused'
    assert len(calls) == 2
    assert record_count(db, session_row['id']) == 1
    assert original_get_record(session_row['id'], 'alice')['recorded_by'] == 'teacher1'


def test_non_text_fields_are_validation_errors(reconciler, students, token):
    assert reconciler.submit(token, 123)['error_type'] == 'validation_error'
    assert reconciler.submit(['x'], 'Alice Example')['error_type'] == 'validation_error'
    assert reconciler.submit(token, 'Alice Example', {'a': 1})['error_type'] == 'validation_error'
