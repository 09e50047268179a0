"""Student API: own statistics, certificates, excuses and profile."""

import os
import uuid
import logging

from flask import Blueprint, request, jsonify, session, current_app, send_from_directory
from werkzeug.utils import secure_filename

from lti_attendance import get_managers
from lti_attendance.modules.identity_manager import login_required
from lti_attendance.routes import json_result, send_document

student_bp = Blueprint('student', __name__)
logger = logging.getLogger(__name__)

PROFILE_FIELDS = {
    'familyName': 'family_name',
    'givenName': 'given_name',
    'birthDate': 'birth_date',
    'street': 'street',
    'houseNumber': 'house_number',
    'postalCode': 'postal_code',
    'city': 'city'
}


def allowed_excuse_file(filename):
    return ('.' in filename and
            filename.rsplit('.', 1)[1].lower() in current_app.config['ALLOWED_EXCUSE_EXTENSIONS'])


def _current_student(managers):
    return managers['roster'].get_profile(session['lms_user_id'])


@student_bp.route('/student/stats/<course_id>')
@login_required
def student_stats(course_id):
    """Attendance statistics of the current user in a course"""
    managers = get_managers()
    course = managers['sessions'].get_course(course_id)
    if not course or not managers['roster'].get_user(session['lms_user_id']):
        return jsonify({'success': True, 'stats': None, 'sessions': []})

    figures = managers['statistics'].compute_course_stats(course['id'], session['lms_user_id'])
    return jsonify({'success': True, 'stats': figures['stats'], 'sessions': figures['sessions']})


@student_bp.route('/certificate-pdf/<course_id>')
@login_required
def certificate_pdf(course_id):
    """Attendance certificate of the current user"""
    managers = get_managers()
    course = managers['sessions'].get_course(course_id)
    student = managers['roster'].get_user(session['lms_user_id'])
    if not course or not student:
        return jsonify({'success': False, 'error': 'Course or user not found'}), 404

    result = managers['reports'].generate_attendance_certificate(course, student)
    if not result['success']:
        return json_result(result)
    return send_document(result)


@student_bp.route('/bafoeg/formblatt-f/<course_id>')
@login_required
def formblatt_f(course_id):
    """Formblatt F of the current user"""
    managers = get_managers()
    course = managers['sessions'].get_course(course_id)
    student = managers['roster'].get_user(session['lms_user_id'])
    if not course or not student:
        return jsonify({'success': False, 'error': 'Course or user not found'}), 404

    assignments = managers['lms'].get_assignment_progress(
        course['lms_course_numeric_id'], student['lms_user_id']
    )
    result = managers['reports'].generate_formblatt_f(
        course, student, current_app.config['FORMBLATT_TEMPLATE_PATH'], assignments
    )
    if not result['success']:
        return json_result(result)
    return send_document(result)


@student_bp.route('/excuses/upload', methods=['POST'])
@login_required
def upload_excuse():
    """Upload an excuse document for a session"""
    managers = get_managers()
    session_id = request.form.get('sessionId', type=int)
    upload = request.files.get('excuse')

    if not upload or not upload.filename:
        return jsonify({'success': False, 'error': 'No file uploaded'}), 400
    if not session_id:
        return jsonify({'success': False, 'error': 'Session is required'}), 400
    if not allowed_excuse_file(upload.filename):
        return jsonify({'success': False, 'error': 'Only PDF, JPG and PNG files are allowed'}), 400
    if not managers['roster'].get_user(session['lms_user_id']):
        return jsonify({'success': False, 'error': 'User not found'}), 404

    extension = upload.filename.rsplit('.', 1)[1].lower()
    filename = secure_filename(f"excuse-{uuid.uuid4().hex}.{extension}")

    path = os.path.join(current_app.config['UPLOAD_FOLDER'], filename)
    upload.save(path)

    result = managers['attendance'].attach_excuse(session_id, session['lms_user_id'], filename)
    if not result['success']:
        os.remove(path)
    return json_result(result)


@student_bp.route('/excuses/<filename>')
@login_required
def get_excuse(filename):
    """Download an excuse document"""
    managers = get_managers()
    filename = secure_filename(filename)

    if not session.get('is_instructor') and \
            not managers['attendance'].can_access_excuse(filename, session['lms_user_id']):
        return jsonify({'success': False, 'error': 'File not found'}), 404

    upload_folder = str(current_app.config['UPLOAD_FOLDER'])
    if not os.path.exists(os.path.join(upload_folder, filename)):
        return jsonify({'success': False, 'error': 'File not found'}), 404

    return send_from_directory(upload_folder, filename)


@student_bp.route('/student/profile', methods=['GET'])
@login_required
def get_profile():
    """Personal data of the current user"""
    profile = _current_student(get_managers())
    if not profile:
        return jsonify({'success': False, 'error': 'User not found'}), 404

    return jsonify({
        'success': True,
        'profile': {key: profile.get(field) for key, field in PROFILE_FIELDS.items()}
    })


@student_bp.route('/student/profile', methods=['POST'])
@login_required
def save_profile():
    """Update the personal data of the current user"""
    data = request.get_json(silent=True) or {}
    profile_data = {field: str(data.get(key) or '').strip() or None
                    for key, field in PROFILE_FIELDS.items()}

    result = get_managers()['roster'].update_profile(session['lms_user_id'], profile_data)
    if result['success']:
        result['profile'] = {key: result['profile'].get(field) for key, field in PROFILE_FIELDS.items()}
    return json_result(result)
