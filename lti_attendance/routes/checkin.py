"""Public routes: QR self check-in page, submission and health check."""

from datetime import datetime
import logging

from flask import Blueprint, render_template, request, jsonify

from lti_attendance import get_managers
from lti_attendance.modules import get_module_info
from lti_attendance.modules.time_utils import parse_timestamp
from lti_attendance.routes import status_for

checkin_bp = Blueprint('checkin', __name__)
logger = logging.getLogger(__name__)


@checkin_bp.route('/checkin/<token>')
def checkin_page(token):
    """Check-in form for a scanned QR code"""
    managers = get_managers()
    token_row = managers['tokens'].lookup(token)

    if not token_row:
        return render_template(
            'checkin_error.html',
            title='Invalid check-in code',
            message='This check-in code is invalid or has been deactivated.'
        ), 404

    if managers['tokens'].is_expired(token_row):
        managers['tokens'].deactivate_token(token_row['token_id'])
        return render_template(
            'checkin_error.html',
            title='Check-in code expired',
            message='This check-in code has expired. Please ask your instructor for a new one.'
        ), 410

    start = parse_timestamp(token_row['start_ts'])
    end = parse_timestamp(token_row['end_ts'])
    return render_template(
        'checkin.html',
        token=token,
        session_name=token_row['session_name'],
        course_name=token_row['course_name'],
        session_date=start.strftime('%d.%m.%Y'),
        session_time=f"{start.strftime('%H:%M')} - {end.strftime('%H:%M')}",
        expires_at=parse_timestamp(token_row['expires_at']).strftime('%H:%M')
    )


@checkin_bp.route('/checkin/submit', methods=['POST'])
def checkin_submit():
    """Record a self check-in"""
    data = request.get_json(silent=True) if request.is_json else request.form
    if not isinstance(data, dict):
        data = {}

    result = get_managers()['checkin'].submit(
        data.get('token'),
        data.get('studentName'),
        data.get('studentEmail')
    )

    if result['success']:
        return jsonify({
            'success': True,
            'status': result['status'],
            'alreadyCheckedIn': result['already_checked_in'],
            'studentName': result['student_name'],
            'message': result['message']
        })

    return jsonify({
        'success': False,
        'error': result['error'],
        'errorType': result['error_type']
    }), status_for(result)


@checkin_bp.route('/health')
def health():
    """Health check"""
    managers = get_managers()
    try:
        managers['db'].execute_query("SELECT 1 AS ok", fetch_all=False)
        database_status = 'ok'
    except Exception as e:
        logger.error(f"Health check database error: {str(e)}")
        database_status = 'error'

    status_code = 200 if database_status == 'ok' else 503
    return jsonify({
        'status': 'ok' if status_code == 200 else 'degraded',
        'database': database_status,
        'modules': len(get_module_info()),
        'timestamp': datetime.now().isoformat()
    }), status_code
