"""
LMS Client Module - LTI Attendance Tool

Thin client for the Canvas REST API. It fetches the active student
enrollments of a course for roster sync and the graded-assignment progress
of a student for Formblatt F.
"""

import logging
from typing import Dict, List, Any, Optional

import requests


class LMSClient:
    """
    Canvas REST API client authenticated with a bearer token.
    """

    COMPLETED_SUBMISSION_STATES = ('submitted', 'graded', 'pending_review')

    def __init__(self, base_url: str, api_token: Optional[str], timeout: int = 30,
                 page_size: int = 100, session: requests.Session = None):
        """
        Initialize the LMS client.

        Args:
            base_url (str): Canvas base URL
            api_token (str): API access token; the client is disabled without one
            timeout (int): Request timeout in seconds
            page_size (int): Items per page
            session (requests.Session): HTTP session to use
        """
        self.base_url = (base_url or '').rstrip('/')
        self.api_token = api_token
        self.timeout = timeout
        self.page_size = page_size
        self.http = session or requests.Session()
        self.logger = logging.getLogger(__name__)

    @property
    def enabled(self) -> bool:
        return bool(self.api_token and self.base_url)

    @staticmethod
    def numeric_course_id(course_id: Any) -> str:
        """``48923~BuX9jS`` -> ``48923``."""
        return str(course_id).split('~')[0]

    def _get_paginated(self, path: str, params: Dict[str, Any]) -> List[Dict[str, Any]]:
        """
        GET every page of a list endpoint, following ``Link: rel=next``.

        Raises:
            requests.RequestException: On transport or HTTP errors
        """
        headers = {
            'Authorization': f"Bearer {self.api_token}",
            'Accept': 'application/json'
        }
        url = f"{self.base_url}/api/v1{path}"
        params = dict(params, per_page=self.page_size)
        items = []

        while url:
            response = self.http.get(url, headers=headers, params=params, timeout=self.timeout)
            response.raise_for_status()
            items.extend(response.json())
            url = response.links.get('next', {}).get('url')
            params = None  # the next link carries the query

        return items

    def get_student_enrollments(self, course_id: Any) -> Dict[str, Any]:
        """
        Fetch the active student enrollments of a course.

        Args:
            course_id: Numeric course id (or LTI-style ``id~hash``)

        Returns:
            Dict[str, Any]: Result with ``enrollments`` on success
        """
        if not self.enabled:
            return {
                'success': False,
                'error': 'LMS API access is not configured',
                'error_type': 'lms_unavailable'
            }

        numeric_id = self.numeric_course_id(course_id)
        try:
            enrollments = self._get_paginated(
                f"/courses/{numeric_id}/enrollments",
                {'type[]': 'StudentEnrollment', 'state[]': 'active'}
            )
            self.logger.info(f"Fetched {len(enrollments)} enrollments for course {numeric_id}")
            return {
                'success': True,
                'enrollments': enrollments
            }

        except (requests.RequestException, ValueError) as e:
            self.logger.error(f"Enrollment fetch failed for course {numeric_id}: {str(e)}")
            return {
                'success': False,
                'error': 'Failed to fetch enrollments from the LMS',
                'error_type': 'lms_unavailable'
            }

    def get_assignment_progress(self, course_id: Any, lms_user_id: str) -> Dict[str, int]:
        """
        Count the graded assignments of a course and those a student completed.

        Falls back to zero counts when the API is unavailable.

        Args:
            course_id: Numeric course id
            lms_user_id (str): Student identity

        Returns:
            Dict[str, int]: ``total`` and ``completed``
        """
        progress = {'total': 0, 'completed': 0}
        if not self.enabled or not course_id:
            self.logger.warning("LMS API not configured or course id unknown, assignments counted as 0")
            return progress

        numeric_id = self.numeric_course_id(course_id)
        try:
            assignments = self._get_paginated(f"/courses/{numeric_id}/assignments",
                                              {'include[]': 'submission'})
            graded_ids = {
                assignment['id'] for assignment in assignments
                if assignment.get('published')
                and assignment.get('submission_types')
                and 'not_graded' not in assignment['submission_types']
            }
            progress['total'] = len(graded_ids)
            if not graded_ids:
                return progress

            submissions = self._get_paginated(
                f"/courses/{numeric_id}/students/submissions",
                {'student_ids[]': lms_user_id}
            )
            progress['completed'] = sum(
                1 for submission in submissions
                if submission.get('workflow_state') in self.COMPLETED_SUBMISSION_STATES
                and submission.get('assignment_id') in graded_ids
            )
            return progress

        except (requests.RequestException, ValueError) as e:
            self.logger.error(f"Assignment fetch failed for course {numeric_id}: {str(e)}")
            return {'total': 0, 'completed': 0}
