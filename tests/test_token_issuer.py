import re


def active_token_count(db, session_id):
    row = db.execute_query(
        "SELECT COUNT(*) AS count FROM checkin_tokens WHERE session_id = ? AND is_active = 1",
        (session_id,), fetch_all=False)
    return row['count']


def test_issue_returns_token_url_and_qr(tokens, session_row):
    result = tokens.issue(session_row['id'], 15, 'teacher1')

    assert result['success']
    assert re.fullmatch(r'[0-9a-f]{64}', result['token'])
    assert result['expires_at'] == '2025-03-03T09:15:00'
    assert result['valid_minutes'] == 15
    assert result['checkin_url'] == f"http://testserver/checkin/{result['token']}"
    assert result['qr_code_data_url'].startswith('data:image/png;base64,')


def test_issue_uses_default_validity(tokens, session_row):
    result = tokens.issue(session_row['id'])

    assert result['success']
    assert result['valid_minutes'] == 15


def test_reissue_deactivates_previous_token(db, tokens, session_row):
    first = tokens.issue(session_row['id'], 15)
    second = tokens.issue(session_row['id'], 30)

    assert tokens.lookup(first['token']) is None
    assert tokens.lookup(second['token'])['session_id'] == session_row['id']
    assert active_token_count(db, session_row['id']) == 1


def test_issue_rejects_invalid_validity(tokens, session_row):
    for value in (0, -5, 'abc', '10', 2.5, True):
        result = tokens.issue(session_row['id'], value)
        assert result['success'] is False
        assert result['error_type'] == 'validation_error'


def test_issue_unknown_session(tokens):
    result = tokens.issue(999, 15)

    assert result['success'] is False
    assert result['error_type'] == 'session_not_found'


def test_status_reports_active_token(tokens, session_row):
    issued = tokens.issue(session_row['id'], 15)

    status = tokens.status(session_row['id'])

    assert status['active'] is True
    assert status['token'] == issued['token']
    assert status['checkin_url'].endswith(issued['token'])


def test_status_deactivates_expired_token(db, tokens, session_row, clock):
    issued = tokens.issue(session_row['id'], 15)
    clock.advance(minutes=15)

    status = tokens.status(session_row['id'])

    assert status == {'success': True, 'active': False, 'expired': True}
    assert tokens.lookup(issued['token']) is None
    assert active_token_count(db, session_row['id']) == 0


def test_status_without_token(tokens, session_row):
    assert tokens.status(session_row['id']) == {'success': True, 'active': False}


def test_revoke_is_idempotent(tokens, session_row):
    issued = tokens.issue(session_row['id'], 15)

    assert tokens.revoke(session_row['id'])['deactivated'] == 1
    assert tokens.revoke(session_row['id'])['deactivated'] == 0
    assert tokens.lookup(issued['token']) is None


def test_lookup_joins_session_and_course(tokens, session_row):
    issued = tokens.issue(session_row['id'], 15)

    row = tokens.lookup(issued['token'])

    assert row['session_name'] == 'Week 1'
    assert row['lms_course_id'] == 'ctx-101'
    assert row['start_ts'] == '2025-03-03T09:00:00'


def test_deleting_session_removes_tokens(db, tokens, sessions, session_row):
    issued = tokens.issue(session_row['id'], 15)

    sessions.delete_session(session_row['id'])

    assert tokens.lookup(issued['token']) is None
    assert db.execute_query("SELECT COUNT(*) AS count FROM checkin_tokens", fetch_all=False)['count'] == 0
