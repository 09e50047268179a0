"""
LTI Attendance Tool - Main Application

This module serves as the main entry point for the attendance tool.
It configures logging and creates the Flask application through the
factory in the ``lti_attendance`` package.

Features:
- LTI launch for instructors and students
- Session management and attendance recording
- QR code self check-in
- Statistics, certificates and Formblatt F
- Data export to Excel/CSV
"""

import os
import logging

from lti_attendance import create_app

# Configure logging
logging.basicConfig(
    level=os.environ.get('LOG_LEVEL', 'INFO'),
    format='%(asctime)s %(levelname)s: %(message)s [in %(pathname)s:%(lineno)d]'
)
logger = logging.getLogger(__name__)

app = create_app(os.environ.get('FLASK_ENV'))

if __name__ == '__main__':
    port = int(os.environ.get('PORT', 3001))
    logger.info(f"Starting LTI attendance tool on port {port}")

    # Run the application
    app.run(debug=app.config['DEBUG'], host='0.0.0.0', port=port)
