# LTI Attendance Tool - App Package
"""
Main application package for the LTI attendance tool.
This package contains the Flask application factory and all its modules.
"""

__version__ = "1.0.0"
__author__ = "LTI Attendance Team"
__description__ = "Attendance tracking for LMS courses with LTI launch and QR self check-in"

import os
import logging
from datetime import datetime
from pathlib import Path

from flask import Flask, jsonify, request

from config import init_config
from .modules.database_manager import DatabaseManager
from .modules.roster_manager import RosterManager
from .modules.session_manager import SessionManager
from .modules.attendance_manager import AttendanceManager
from .modules.token_issuer import CheckinTokenIssuer
from .modules.checkin_reconciler import CheckinReconciler
from .modules.statistics_aggregator import StatisticsAggregator
from .modules.report_generator import ReportGenerator
from .modules.identity_manager import IdentityManager
from .modules.lms_client import LMSClient

__all__ = [
    'create_app',
    'get_managers',
    'DatabaseManager',
    'RosterManager',
    'SessionManager',
    'AttendanceManager',
    'CheckinTokenIssuer',
    'CheckinReconciler',
    'StatisticsAggregator',
    'ReportGenerator',
    'IdentityManager',
    'LMSClient'
]

logger = logging.getLogger(__name__)


def build_managers(app, clock=datetime.now):
    """
    Initialize system components from the application configuration.

    Args:
        app (Flask): Configured application
        clock (Callable): Returns the current local time

    Returns:
        dict: Managers keyed by name
    """
    cfg = app.config

    db_manager = DatabaseManager(cfg['DATABASE_PATH'])
    # Configured values are authoritative for the settings the managers read
    db_manager.update_system_setting('late_grace_minutes', cfg['CHECKIN_LATE_GRACE_MINUTES'])
    db_manager.update_system_setting('default_token_valid_minutes', cfg['CHECKIN_DEFAULT_VALID_MINUTES'])

    roster_manager = RosterManager(db_manager, cfg['SIS_ID_PREFIX'], cfg['CHECKIN_PLACEHOLDER_PREFIX'])
    session_manager = SessionManager(db_manager)
    attendance_manager = AttendanceManager(db_manager, roster_manager, clock=clock)
    token_issuer = CheckinTokenIssuer(
        db_manager,
        cfg['PUBLIC_URL'],
        token_bytes=cfg['CHECKIN_TOKEN_BYTES'],
        default_valid_minutes=cfg['CHECKIN_DEFAULT_VALID_MINUTES'],
        qr_settings={
            'box_size': cfg['QR_CODE_BOX_SIZE'],
            'border': cfg['QR_CODE_BORDER'],
            'fill_color': cfg['QR_CODE_FILL_COLOR'],
            'back_color': cfg['QR_CODE_BACK_COLOR']
        },
        clock=clock
    )
    checkin_reconciler = CheckinReconciler(
        db_manager, token_issuer, roster_manager, attendance_manager,
        late_grace_minutes=cfg['CHECKIN_LATE_GRACE_MINUTES'], clock=clock
    )
    statistics_aggregator = StatisticsAggregator(db_manager, roster_manager)
    report_generator = ReportGenerator(
        db_manager, attendance_manager, statistics_aggregator,
        institution_line=cfg['INSTITUTION_LINE'],
        certificate_footer=cfg['CERTIFICATE_FOOTER']
    )
    identity_manager = IdentityManager(roster_manager, session_manager,
                                       cfg['INSTRUCTOR_ROLE_MARKERS'])
    lms_client = LMSClient(cfg['LMS_BASE_URL'], cfg['LMS_API_TOKEN'],
                           timeout=cfg['LMS_TIMEOUT'], page_size=cfg['LMS_PAGE_SIZE'])

    return {
        'db': db_manager,
        'roster': roster_manager,
        'sessions': session_manager,
        'attendance': attendance_manager,
        'tokens': token_issuer,
        'checkin': checkin_reconciler,
        'statistics': statistics_aggregator,
        'reports': report_generator,
        'identity': identity_manager,
        'lms': lms_client
    }


def get_managers():
    """Managers of the current application."""
    from flask import current_app
    return current_app.extensions['lti_attendance']


def create_app(config_name=None, overrides=None, clock=datetime.now):
    """
    Application factory.

    Args:
        config_name (str): development, testing or production
        overrides (dict): Configuration values applied after the config class
        clock (Callable): Returns the current local time

    Returns:
        Flask: Configured application
    """
    app = Flask(__name__)

    init_config(app, config_name)
    if overrides:
        app.config.update(overrides)

    # Create necessary directories
    Path(app.config['UPLOAD_FOLDER']).mkdir(parents=True, exist_ok=True)
    database_path = str(app.config['DATABASE_PATH'])
    if database_path != ':memory:' and os.path.dirname(database_path):
        os.makedirs(os.path.dirname(database_path), exist_ok=True)

    app.extensions['lti_attendance'] = build_managers(app, clock)

    from .routes.checkin import checkin_bp
    from .routes.lti import lti_bp
    from .routes.instructor import instructor_bp
    from .routes.student import student_bp

    app.register_blueprint(checkin_bp)
    app.register_blueprint(lti_bp)
    app.register_blueprint(instructor_bp, url_prefix='/api')
    app.register_blueprint(student_bp, url_prefix='/api')

    register_error_handlers(app)

    logger.info(f"LTI attendance tool initialized ({config_name or 'default'} configuration)")
    return app


def register_error_handlers(app):
    """JSON error responses for the API."""

    def wants_json():
        return request.path.startswith('/api') or request.is_json

    @app.errorhandler(404)
    def not_found(error):
        if wants_json():
            return jsonify({'success': False, 'error': 'Not found'}), 404
        return 'Not found', 404

    @app.errorhandler(405)
    def method_not_allowed(error):
        return jsonify({'success': False, 'error': 'Method not allowed'}), 405

    @app.errorhandler(413)
    def too_large(error):
        limit_mb = app.config['MAX_CONTENT_LENGTH'] // (1024 * 1024)
        return jsonify({'success': False, 'error': f'File too large (max. {limit_mb}MB)'}), 413

    @app.errorhandler(500)
    def internal_error(error):
        logger.error(f"Internal server error: {str(error)}")
        return jsonify({'success': False, 'error': 'Internal server error'}), 500
