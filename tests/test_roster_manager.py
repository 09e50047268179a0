def test_identity_normalization(roster):
    assert roster.normalize_identity('SK_lerner01') == 'lerner01'
    assert roster.normalize_identity('  lerner01 ') == 'lerner01'
    assert roster.normalize_identity(None) == ''
    assert roster.is_placeholder('checkin_1234')
    assert not roster.is_placeholder('lerner01')


def test_upsert_is_keyed_by_identity(db, roster):
    first = roster.upsert_user('SK_lerner01', 'Lena Lerner', 'lena@example.org')
    second = roster.upsert_user('lerner01', 'Lena Lerner-Neu')

    assert first['user_id'] == second['user_id']
    user = roster.get_user('lerner01')
    assert user['name'] == 'Lena Lerner-Neu'
    assert user['email'] == 'lena@example.org'
    assert db.execute_query("SELECT COUNT(*) AS count FROM users", fetch_all=False)['count'] == 1


def test_upsert_requires_identity(roster):
    assert roster.upsert_user('  ', 'Nobody')['error_type'] == 'validation_error'


def test_enrollment_sync_prefers_login_id(roster, course):
    result = roster.sync_enrollments(course['id'], [
        {'user': {'id': 11, 'login_id': 'lerner01', 'sis_user_id': 'SK_other',
                  'name': 'Lena Lerner', 'email': 'lena@example.org'}},
        {'user': {'id': 12, 'sis_user_id': 'SK_lerner02', 'name': 'Max Muster'}},
        {'user': {'id': 13, 'name': 'Numeric Only'}},
        {'user': {'id': 14}},
    ])

    assert result['success']
    assert result['synced'] == 3
    assert result['skipped'] == 1
    identities = {row['lms_user_id'] for row in roster.get_course_roster(course['id'])}
    assert identities == {'lerner01', 'lerner02', '13'}


def test_csv_import(roster, course):
    content = '\ufefflms_user_id,name,email\nlerner01,Lena Lerner,lena@example.org\nlerner02,Max Muster,\n'

    result = roster.import_roster_csv(course['id'], content)

    assert result['success']
    assert result['synced'] == 2
    assert result['import_method'] == 'csv'
    assert roster.get_user('lerner02')['email'] is None
    assert roster.resolve_by_email('lerner02', course['id']) == []


def test_enrollment_sync_uses_login_id_as_email(roster, course):
    roster.sync_enrollments(course['id'], [{'user': {'id': 11, 'login_id': 'lena@example.org', 'name': 'Lena Lerner'}}])

    assert roster.get_user('lena@example.org')['email'] == 'lena@example.org'


def test_csv_import_reports_missing_columns(roster, course):
    result = roster.import_roster_csv(course['id'], 'lms_user_id,name\nlerner01,\n')

    assert result['error_type'] == 'validation_error'
    assert 'Row 2' in result['error']


def test_csv_import_without_rows(roster, course):
    assert roster.import_roster_csv(course['id'], 'lms_user_id,name\n')['error_type'] == 'validation_error'


def test_roster_falls_back_to_all_students(roster, sessions, students):
    empty_course = sessions.get_or_create_course('ctx-empty', 'Empty Course')
    roster.upsert_user('teacher1', 'Tina Teacher', role='instructor')
    roster.upsert_user('checkin_99', 'Pending Placeholder')

    names = [row['name'] for row in roster.get_course_roster(empty_course['id'])]

    assert names == ['Alice Example', 'Bob Builder', 'Carla Córdoba']


def test_course_roster_only_lists_enrolled_students(roster, sessions, course, students):
    roster.upsert_user('dora', 'Dora Drop-In')

    identities = [row['lms_user_id'] for row in roster.get_course_roster(course['id'])]

    assert identities == ['alice', 'bob', 'carla']


def test_resolve_by_email_ignores_case(roster, course, students):
    matches = roster.resolve_by_email('  ALICE@Example.org ', course['id'])

    assert [row['lms_user_id'] for row in matches] == ['alice']
    assert roster.resolve_by_email('', course['id']) == []


def test_profile_update(roster, students):
    result = roster.update_profile('alice', {
        'family_name': 'Example',
        'given_name': 'Alice',
        'birth_date': '2001-05-17',
        'street': 'Hauptstraße',
        'house_number': '12a',
        'postal_code': '10115',
        'city': 'Berlin'
    })

    assert result['success']
    assert result['profile']['postal_code'] == '10115'
    assert roster.get_profile('alice')['city'] == 'Berlin'


def test_profile_validation(roster, students):
    result = roster.update_profile('alice', {
        'family_name': 'x' * 101,
        'birth_date': '1850-01-01',
        'postal_code': '1234'
    })

    assert result['error_type'] == 'validation_error'
    assert len(result['errors']) == 3


def test_profile_of_unknown_user(roster):
    assert roster.update_profile('ghost', {'city': 'Berlin'})['error_type'] == 'not_found'
    assert roster.get_profile('ghost') is None
