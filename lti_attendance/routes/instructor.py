"""Instructor API: check-in codes, sessions, attendance, roster and exports."""

import logging

from flask import Blueprint, request, jsonify, session

from lti_attendance import get_managers
from lti_attendance.modules.identity_manager import instructor_required
from lti_attendance.routes import json_result, send_document

instructor_bp = Blueprint('instructor', __name__)
logger = logging.getLogger(__name__)

SESSION_FIELDS = {
    'sessionName': 'session_name',
    'sessionType': 'session_type',
    'sessionDate': 'session_date',
    'startTime': 'start_time',
    'endTime': 'end_time',
    'startTs': 'start_ts',
    'endTs': 'end_ts',
    'plannedBreakMinutes': 'planned_break_minutes',
    'isOnline': 'is_online',
    'meetingUrl': 'meeting_url',
    'location': 'location',
    'isMandatory': 'is_mandatory',
    'description': 'description',
    'courseName': 'course_name'
}


def _session_data(data):
    return {field: data[key] for key, field in SESSION_FIELDS.items() if key in data}


def _lms_user_id(data, managers):
    """Identity from ``lmsUserId`` or the internal ``userId``."""
    if data.get('lmsUserId'):
        return data['lmsUserId']
    if data.get('userId') is not None:
        user = managers['roster'].get_user_by_id(data['userId'])
        return user['lms_user_id'] if user else None
    return None


def _sync_roster(managers, course):
    """Pull the course enrollments from the LMS into the roster."""
    fetched = managers['lms'].get_student_enrollments(
        course['lms_course_numeric_id'] or course['lms_course_id']
    )
    if not fetched['success']:
        return fetched
    return managers['roster'].sync_enrollments(course['id'], fetched['enrollments'])


# Check-in codes

@instructor_bp.route('/checkin/generate/<int:session_id>', methods=['POST'])
@instructor_required
def generate_checkin(session_id):
    """Issue a new check-in QR code for a session"""
    managers = get_managers()
    data = request.get_json(silent=True) or {}

    target = managers['sessions'].get_session(session_id)
    if target and managers['lms'].enabled:
        course = managers['sessions'].get_course_by_id(target['course_id'])
        sync = _sync_roster(managers, course)
        if not sync['success']:
            logger.warning(f"Roster sync before check-in failed for course {course['lms_course_id']}")

    result = managers['tokens'].issue(session_id, data.get('validMinutes'),
                                      session['lms_user_id'])
    return json_result(result)


@instructor_bp.route('/checkin/status/<int:session_id>')
@instructor_required
def checkin_status(session_id):
    """Active check-in code of a session"""
    return json_result(get_managers()['tokens'].status(session_id))


@instructor_bp.route('/checkin/deactivate/<int:session_id>', methods=['DELETE'])
@instructor_required
def deactivate_checkin(session_id):
    """Deactivate the check-in codes of a session"""
    return json_result(get_managers()['tokens'].revoke(session_id))


# Sessions

@instructor_bp.route('/sessions/<course_id>')
@instructor_required
def list_sessions(course_id):
    """Sessions of a course"""
    sessions = get_managers()['sessions'].get_sessions_for_course(course_id)
    return jsonify({'success': True, 'sessions': sessions})


@instructor_bp.route('/sessions', methods=['POST'])
@instructor_required
def create_session():
    """Create a session"""
    data = request.get_json(silent=True) or {}
    result = get_managers()['sessions'].create_session(
        data.get('courseId') or session.get('lms_course_id'),
        _session_data(data),
        session['lms_user_id']
    )
    return json_result(result, success_status=201)


@instructor_bp.route('/sessions/<int:session_id>', methods=['PUT'])
@instructor_required
def update_session(session_id):
    """Update a session"""
    data = request.get_json(silent=True) or {}
    return json_result(get_managers()['sessions'].update_session(session_id, _session_data(data)))


@instructor_bp.route('/sessions/<int:session_id>', methods=['DELETE'])
@instructor_required
def delete_session(session_id):
    """Delete a session with its records and check-in codes"""
    return json_result(get_managers()['sessions'].delete_session(session_id))


# Attendance

@instructor_bp.route('/attendance/session/<int:session_id>')
@instructor_required
def session_attendance(session_id):
    """Roster of a session with attendance records"""
    managers = get_managers()
    target = managers['sessions'].get_session(session_id)
    if not target:
        return jsonify({'success': False, 'error': 'Session not found'}), 404

    return jsonify({
        'success': True,
        'session': target,
        'students': managers['attendance'].get_session_attendance(session_id)
    })


@instructor_bp.route('/attendance', methods=['POST'])
@instructor_required
def record_attendance():
    """Record the attendance of one student"""
    managers = get_managers()
    data = request.get_json(silent=True) or {}

    lms_user_id = _lms_user_id(data, managers)
    if not data.get('sessionId') or not data.get('status'):
        return jsonify({'success': False, 'error': 'Missing required fields'}), 400
    if not lms_user_id:
        return jsonify({'success': False, 'error': 'Student not found'}), 404

    result = managers['attendance'].record_attendance(
        data['sessionId'],
        lms_user_id,
        data['status'],
        data.get('presentFrom'),
        data.get('presentTo'),
        data.get('breakMinutes', 0),
        data.get('notes') or data.get('note'),
        session['lms_user_id']
    )
    return json_result(result)


@instructor_bp.route('/attendance/bulk', methods=['POST'])
@instructor_required
def bulk_attendance():
    """Apply one status to several students"""
    managers = get_managers()
    data = request.get_json(silent=True) or {}

    if not data.get('sessionId') or not data.get('status'):
        return jsonify({'success': False, 'error': 'Missing required fields'}), 400

    identities = list(data.get('lmsUserIds') or [])
    for user_id in data.get('studentIds') or []:
        user = managers['roster'].get_user_by_id(user_id)
        identities.append(user['lms_user_id'] if user else str(user_id))

    result = managers['attendance'].bulk_mark(
        data['sessionId'],
        identities,
        data['status'],
        data.get('presentFrom'),
        data.get('presentTo'),
        data.get('breakMinutes', 0),
        session['lms_user_id']
    )
    return json_result(result)


@instructor_bp.route('/attendance/<int:record_id>', methods=['DELETE'])
@instructor_required
def delete_attendance(record_id):
    """Delete an attendance record"""
    return json_result(get_managers()['attendance'].delete_record(record_id))


# Course overview and roster

@instructor_bp.route('/course-overview/<course_id>')
@instructor_required
def course_overview(course_id):
    """Attendance matrix of a course"""
    managers = get_managers()
    course = managers['sessions'].get_or_create_course(course_id)
    if not course:
        return jsonify({'success': False, 'error': 'Course not found'}), 404

    matrix = managers['statistics'].compute_course_matrix(course['id'])
    return jsonify({
        'success': True,
        'course': {'id': course['id'], 'name': course['course_name']},
        'sessions': matrix['sessions'],
        'students': matrix['students']
    })


@instructor_bp.route('/roster/sync/<course_id>', methods=['POST'])
@instructor_required
def sync_roster(course_id):
    """Sync the roster of a course from the LMS"""
    managers = get_managers()
    course = managers['sessions'].get_course(course_id)
    if not course:
        return jsonify({'success': False, 'error': 'Course not found'}), 404
    return json_result(_sync_roster(managers, course))


@instructor_bp.route('/roster/import/<course_id>', methods=['POST'])
@instructor_required
def import_roster(course_id):
    """Import a roster CSV (upload field ``file`` or raw body)"""
    managers = get_managers()
    course = managers['sessions'].get_or_create_course(course_id)
    if not course:
        return jsonify({'success': False, 'error': 'Course not found'}), 404

    upload = request.files.get('file')
    if upload:
        content = upload.read().decode('utf-8-sig', errors='replace')
    else:
        content = request.get_data(as_text=True)

    if not content.strip():
        return jsonify({'success': False, 'error': 'No CSV content provided'}), 400

    return json_result(managers['roster'].import_roster_csv(course['id'], content))


# Exports

@instructor_bp.route('/export/excel/<int:session_id>')
@instructor_required
def export_excel(session_id):
    """Session attendance as Excel"""
    result = get_managers()['reports'].export_session_excel(session_id)
    if not result['success']:
        return json_result(result)
    return send_document(result)


@instructor_bp.route('/export/csv/<int:session_id>')
@instructor_required
def export_csv(session_id):
    """Session attendance as CSV"""
    result = get_managers()['reports'].export_session_csv(session_id)
    if not result['success']:
        return json_result(result)
    return send_document(result)
