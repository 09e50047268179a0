# LTI Attendance Tool - Modules Package
"""
Core business logic modules for the LTI attendance tool.
Contains the managers behind the instructor, student and check-in routes.
"""

__version__ = "1.0.0"
__description__ = "Core modules for LTI attendance tracking"

# Module descriptions
MODULES = {
    'database_manager': 'Database operations and schema management',
    'roster_manager': 'Course rosters, identity normalization and student profiles',
    'lms_client': 'LMS REST API access for enrollments and assignments',
    'session_manager': 'Courses and their meeting sessions',
    'attendance_manager': 'Attendance ledger and excuses',
    'token_issuer': 'Check-in token issue and QR code rendering',
    'checkin_reconciler': 'Self check-in validation and recording',
    'statistics_aggregator': 'Attendance statistics and course matrix',
    'report_generator': 'Excel, CSV and PDF document generation',
    'identity_manager': 'LTI launch identity and route guards',
    'time_utils': 'Timestamp parsing and minute arithmetic'
}


def get_module_info():
    """Get information about available modules"""
    return MODULES
