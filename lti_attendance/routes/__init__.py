# LTI Attendance Tool - Routes Package
"""
HTTP routes of the LTI attendance tool, grouped into Blueprints.
"""

from flask import jsonify, send_file
import io

ERROR_STATUS = {
    'validation_error': 400,
    'not_registered': 403,
    'token_invalid': 404,
    'not_found': 404,
    'session_not_found': 404,
    'token_expired': 410,
    'lms_unavailable': 502,
    'template_missing': 500,
    'partial_failure': 500,
    'persistence_error': 500,
    'system_error': 500
}


def status_for(result):
    """HTTP status of a manager result dict."""
    if result.get('success'):
        return 200
    return ERROR_STATUS.get(result.get('error_type'), 500)


def json_result(result, success_status=200):
    """Serialize a manager result dict with the matching HTTP status."""
    status = success_status if result.get('success') else status_for(result)
    return jsonify(result), status


def send_document(result):
    """Send the bytes of a generated document as attachment."""
    return send_file(
        io.BytesIO(result['content']),
        mimetype=result['mimetype'],
        as_attachment=True,
        download_name=result['filename']
    )
