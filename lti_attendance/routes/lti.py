"""LTI launch route and session introspection."""

import logging

from flask import Blueprint, request, jsonify, session

from lti_attendance import get_managers
from lti_attendance.modules.identity_manager import login_required
from lti_attendance.routes import json_result

lti_bp = Blueprint('lti', __name__)
logger = logging.getLogger(__name__)


@lti_bp.route('/lti/launch', methods=['POST'])
def launch():
    """
    Accept the verified claim set of an LTI 1.3 launch.

    The id_token is validated by the identity layer in front of the tool,
    which forwards its claims as JSON.
    """
    payload = request.get_json(silent=True)
    if not isinstance(payload, dict):
        return jsonify({'success': False, 'error': 'Claim set required'}), 400

    identity = get_managers()['identity']
    claims = identity.claims_from_launch(payload)
    result = identity.register_launch(claims)
    if not result['success']:
        return json_result(result)

    identity.establish_session(claims, result['is_instructor'], result['course'])

    return jsonify({
        'success': True,
        'userId': claims['user_id'],
        'userName': claims['user_name'],
        'isInstructor': result['is_instructor'],
        'courseId': session.get('lms_course_id'),
        'courseName': result['course']['course_name'] if result['course'] else None
    })


@lti_bp.route('/api/me')
@login_required
def me():
    """Identity of the current session"""
    return jsonify({
        'success': True,
        'userId': session['lms_user_id'],
        'userName': session.get('user_name'),
        'userEmail': session.get('user_email'),
        'isInstructor': bool(session.get('is_instructor')),
        'courseId': session.get('lms_course_id')
    })
