import pytest
import requests

from lti_attendance.modules.lms_client import LMSClient


class FakeResponse:
    def __init__(self, payload, next_url=None, status_code=200):
        self.payload = payload
        self.status_code = status_code
        self.links = {'next': {'url': next_url}} if next_url else {}

    def json(self):
        return self.payload

    def raise_for_status(self):
        if self.status_code >= 400:
            raise requests.HTTPError(f"{self.status_code} Error")


class FakeSession:
    """Serves canned responses by URL and records every request."""

    def __init__(self, responses):
        self.responses = responses
        self.calls = []

    def get(self, url, headers=None, params=None, timeout=None):
        self.calls.append({'url': url, 'headers': headers, 'params': params})
        response = self.responses.get(url)
        if response is None:
            raise requests.ConnectionError(f"no route to {url}")
        return response


BASE = 'https://lms.example.org'


def make_client(responses, token='secret'):
    return LMSClient(BASE, token, session=FakeSession(responses))


def test_enrollments_follow_pagination():
    page_two = f'{BASE}/api/v1/courses/4711/enrollments?page=2'
    client = make_client({
        f'{BASE}/api/v1/courses/4711/enrollments': FakeResponse(
            [{'user': {'login_id': 'a'}}], next_url=page_two),
        page_two: FakeResponse([{'user': {'login_id': 'b'}}])
    })

    result = client.get_student_enrollments('4711~hashpart')

    assert result['success']
    assert [item['user']['login_id'] for item in result['enrollments']] == ['a', 'b']
    first_call, second_call = client.http.calls
    assert first_call['headers']['Authorization'] == 'Bearer secret'
    assert first_call['params']['type[]'] == 'StudentEnrollment'
    assert first_call['params']['per_page'] == 100
    assert second_call['params'] is None


def test_disabled_without_token():
    client = make_client({}, token=None)

    assert not client.enabled
    assert client.get_student_enrollments('4711')['error_type'] == 'lms_unavailable'
    assert client.get_assignment_progress('4711', 'alice') == {'total': 0, 'completed': 0}


@pytest.mark.parametrize('response', [FakeResponse([], status_code=500), None])
def test_enrollment_failures_are_reported(response):
    responses = {f'{BASE}/api/v1/courses/4711/enrollments': response} if response else {}
    client = make_client(responses)

    assert client.get_student_enrollments('4711')['error_type'] == 'lms_unavailable'


def test_assignment_progress():
    client = make_client({
        f'{BASE}/api/v1/courses/4711/assignments': FakeResponse([
            {'id': 1, 'published': True, 'submission_types': ['online_upload']},
            {'id': 2, 'published': True, 'submission_types': ['online_text_entry']},
            {'id': 3, 'published': True, 'submission_types': ['not_graded']},
            {'id': 4, 'published': False, 'submission_types': ['online_upload']},
        ]),
        f'{BASE}/api/v1/courses/4711/students/submissions': FakeResponse([
            {'assignment_id': 1, 'workflow_state': 'graded'},
            {'assignment_id': 2, 'workflow_state': 'unsubmitted'},
            {'assignment_id': 3, 'workflow_state': 'submitted'},
        ])
    })

    assert client.get_assignment_progress('4711', 'alice') == {'total': 2, 'completed': 1}


def test_assignment_progress_falls_back_on_error():
    client = make_client({
        f'{BASE}/api/v1/courses/4711/assignments': FakeResponse([], status_code=401)
    })

    assert client.get_assignment_progress('4711', 'alice') == {'total': 0, 'completed': 0}
