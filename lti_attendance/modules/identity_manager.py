"""
Identity Manager Module - LTI Attendance Tool

This module turns a verified LTI 1.3 claim set into the identity, role and
course context of the launching user. Signature verification of the
id_token happens in front of the tool; the claims arriving here are trusted.

Features:
- User identity extraction with fallbacks across claims
- Instructor role detection
- Persisting the launching user, course and enrollment
- Session guards for student and instructor routes
"""

from functools import wraps
from typing import Dict, List, Any, Optional
import logging

from flask import session, jsonify


LTI_CLAIM = 'https://purl.imsglobal.org/spec/lti/claim/'


def login_required(f):
    """Decorator to require an LTI launch for protected routes"""
    @wraps(f)
    def decorated_function(*args, **kwargs):
        if 'lms_user_id' not in session:
            return jsonify({'success': False, 'error': 'Not authenticated'}), 401
        return f(*args, **kwargs)
    return decorated_function


def instructor_required(f):
    """Decorator to require an instructor launch for protected routes"""
    @wraps(f)
    def decorated_function(*args, **kwargs):
        if 'lms_user_id' not in session:
            return jsonify({'success': False, 'error': 'Not authenticated'}), 401
        if not session.get('is_instructor'):
            return jsonify({'success': False, 'error': 'Instructor privileges required'}), 403
        return f(*args, **kwargs)
    return decorated_function


class IdentityManager:
    """
    Maps LTI launches to users and courses.
    """

    def __init__(self, roster_manager, session_manager,
                 instructor_markers=('Instructor', 'TeachingAssistant')):
        """
        Initialize the identity manager.

        Args:
            roster_manager: Roster manager storing users
            session_manager: Session manager storing courses
            instructor_markers (tuple): Role fragments that grant instructor rights
        """
        self.roster = roster_manager
        self.sessions = session_manager
        self.instructor_markers = tuple(instructor_markers)
        self.logger = logging.getLogger(__name__)

    def claims_from_launch(self, payload: Dict[str, Any]) -> Dict[str, Any]:
        """
        Extract the tool's view of a launch from the raw claim set.

        The user identity prefers the LMS login id, then the LIS person
        sourcedid, then the SIS id without prefix and finally ``sub``.

        Args:
            payload (Dict[str, Any]): Verified id_token claims

        Returns:
            Dict[str, Any]: user_id, user_name, user_email, roles, context, custom
        """
        custom = payload.get(LTI_CLAIM + 'custom') or {}
        lis = payload.get(LTI_CLAIM + 'lis') or {}

        user_id = (custom.get('canvas_user_login_id')
                   or lis.get('person_sourcedid')
                   or self.roster.normalize_identity(custom.get('canvas_user_sis_id'))
                   or payload.get('sub'))

        return {
            'user_id': self.roster.normalize_identity(user_id),
            'user_name': payload.get('name') or 'User',
            'user_email': payload.get('email'),
            'roles': payload.get(LTI_CLAIM + 'roles') or [],
            'context': payload.get(LTI_CLAIM + 'context') or {},
            'custom': custom
        }

    def is_instructor(self, roles: List[str]) -> bool:
        return any(marker in role for role in roles or [] for marker in self.instructor_markers)

    def register_launch(self, claims: Dict[str, Any]) -> Dict[str, Any]:
        """
        Persist the launching user and course.

        Students are also enrolled in the launch course.

        Args:
            claims (Dict[str, Any]): Result of ``claims_from_launch``

        Returns:
            Dict[str, Any]: Registration result with the course row
        """
        if not claims.get('user_id'):
            return {
                'success': False,
                'error': 'Launch carries no user identity',
                'error_type': 'validation_error'
            }

        instructor = self.is_instructor(claims['roles'])
        role = self.roster.ROLE_INSTRUCTOR if instructor else self.roster.ROLE_STUDENT

        user = self.roster.upsert_user(claims['user_id'], claims['user_name'],
                                       claims['user_email'], role)
        if not user['success']:
            return user

        course = None
        context = claims.get('context') or {}
        if context.get('id'):
            course = self.sessions.get_or_create_course(
                context['id'],
                context.get('label') or context.get('title') or 'Course',
                claims['custom'].get('canvas_course_id')
            )
            if course and not instructor:
                self.roster.enroll(course['id'], user['user_id'])

        self.logger.info(f"LTI launch: {claims['user_id']} as {role}"
                         f" in {context.get('id') or 'no context'}")

        return {
            'success': True,
            'user_id': user['user_id'],
            'is_instructor': instructor,
            'course': course
        }

    @staticmethod
    def establish_session(claims: Dict[str, Any], is_instructor: bool,
                          course: Optional[Dict[str, Any]]):
        """Store the launch in the signed session cookie."""
        session.clear()
        session.permanent = True
        session['lms_user_id'] = claims['user_id']
        session['user_name'] = claims['user_name']
        session['user_email'] = claims['user_email']
        session['is_instructor'] = is_instructor
        session['lms_course_id'] = course['lms_course_id'] if course else None
