# LTI Attendance Tool Configuration

import os
import tempfile
from datetime import timedelta
from pathlib import Path

# Base directory
BASE_DIR = Path(__file__).parent.absolute()

class Config:
    """Base configuration class"""

    # Flask Configuration
    SECRET_KEY = os.environ.get('SECRET_KEY') or 'lti-attendance-secret-key'

    # Database Configuration
    DATABASE_PATH = BASE_DIR / 'database' / 'attendance.db'

    # Public base URL used to build check-in links
    PUBLIC_URL = os.environ.get('PUBLIC_URL') or 'http://localhost:3001'

    # Upload Configuration
    UPLOAD_FOLDER = BASE_DIR / 'uploads' / 'excuses'
    MAX_CONTENT_LENGTH = 5 * 1024 * 1024  # 5MB max excuse upload
    ALLOWED_EXCUSE_EXTENSIONS = {'pdf', 'jpg', 'jpeg', 'png'}

    # Check-in Configuration
    CHECKIN_TOKEN_BYTES = 32  # 256 bits
    CHECKIN_DEFAULT_VALID_MINUTES = 15
    CHECKIN_LATE_GRACE_MINUTES = 5
    CHECKIN_PLACEHOLDER_PREFIX = 'checkin_'

    # QR Code Configuration
    QR_CODE_BOX_SIZE = 10
    QR_CODE_BORDER = 2
    QR_CODE_FILL_COLOR = '#1e293b'
    QR_CODE_BACK_COLOR = '#ffffff'

    # Identity Configuration
    SIS_ID_PREFIX = os.environ.get('SIS_ID_PREFIX', 'SK_')
    INSTRUCTOR_ROLE_MARKERS = ('Instructor', 'TeachingAssistant')

    # LMS REST API Configuration
    LMS_BASE_URL = os.environ.get('LMS_BASE_URL') or 'https://canvas.instructure.com'
    LMS_API_TOKEN = os.environ.get('LMS_API_TOKEN')
    LMS_TIMEOUT = 30  # seconds
    LMS_PAGE_SIZE = 100

    # Session Configuration
    PERMANENT_SESSION_LIFETIME = timedelta(hours=24)
    SESSION_COOKIE_SECURE = False  # Set to True in production with HTTPS
    SESSION_COOKIE_HTTPONLY = True
    SESSION_COOKIE_SAMESITE = 'Lax'

    # Report Configuration
    FORMBLATT_TEMPLATE_PATH = BASE_DIR / 'assets' / 'formblatt_f.pdf'
    INSTITUTION_LINE = os.environ.get('INSTITUTION_LINE') or ''
    CERTIFICATE_FOOTER = os.environ.get('CERTIFICATE_FOOTER') or 'LTI Attendance Tool'

    # Logging Configuration
    LOG_LEVEL = os.environ.get('LOG_LEVEL') or 'INFO'
    LOG_FILE = BASE_DIR / 'logs' / 'attendance.log'
    LOG_MAX_BYTES = 10 * 1024 * 1024  # 10MB
    LOG_BACKUP_COUNT = 5

    # Development Configuration
    DEBUG = os.environ.get('DEBUG', 'False').lower() in ['true', 'on', '1']
    TESTING = False

    @classmethod
    def init_app(cls, app):
        """Initialize application configuration"""
        # Set Flask configuration
        app.config.update({
            key: getattr(cls, key) for key in dir(cls) if key.isupper()
        })


class DevelopmentConfig(Config):
    """Development configuration"""
    DEBUG = True
    TESTING = False

    DATABASE_PATH = BASE_DIR / 'database' / 'attendance_dev.db'

    # More verbose logging
    LOG_LEVEL = 'DEBUG'


class TestingConfig(Config):
    """Testing configuration"""
    TESTING = True
    DEBUG = True

    # File database, so connections opened by other threads see the schema
    DATABASE_PATH = Path(os.environ.get('TEST_DATABASE_PATH')
                         or Path(tempfile.gettempdir()) / 'lti_attendance_test.db')

    # Never reach a real LMS from tests
    LMS_API_TOKEN = None
    PUBLIC_URL = 'http://testserver'


class ProductionConfig(Config):
    """Production configuration"""
    DEBUG = False
    TESTING = False

    # Enhanced security for production
    SESSION_COOKIE_SECURE = True  # Requires HTTPS
    SESSION_COOKIE_SAMESITE = 'None'  # Tool runs inside the LMS iframe

    DATABASE_PATH = Path(os.environ.get('DATABASE_PATH') or BASE_DIR / 'database' / 'attendance_prod.db')

    # Production logging
    LOG_LEVEL = 'WARNING'

    @classmethod
    def init_app(cls, app):
        super().init_app(app)

        # Production-specific initialization
        import logging
        from logging.handlers import RotatingFileHandler

        # Setup file logging
        if not app.debug:
            Path(cls.LOG_FILE).parent.mkdir(parents=True, exist_ok=True)
            file_handler = RotatingFileHandler(
                cls.LOG_FILE,
                maxBytes=cls.LOG_MAX_BYTES,
                backupCount=cls.LOG_BACKUP_COUNT
            )
            file_handler.setFormatter(logging.Formatter(
                '%(asctime)s %(levelname)s: %(message)s [in %(pathname)s:%(lineno)d]'
            ))
            file_handler.setLevel(logging.INFO)
            app.logger.addHandler(file_handler)

            app.logger.setLevel(logging.INFO)
            app.logger.info('LTI Attendance Tool startup')


# Configuration dictionary
config = {
    'development': DevelopmentConfig,
    'testing': TestingConfig,
    'production': ProductionConfig,
    'default': DevelopmentConfig
}


# Environment-specific configurations
def get_config():
    """Get configuration based on environment variable"""
    return config.get(os.environ.get('FLASK_ENV', 'default'), DevelopmentConfig)


# Validation functions
def validate_config(app_config):
    """Validate configuration settings"""
    errors = []

    if not app_config.get('SECRET_KEY'):
        errors.append("SECRET_KEY must be set")

    if not app_config.get('PUBLIC_URL', '').startswith(('http://', 'https://')):
        errors.append(f"PUBLIC_URL must be an absolute http(s) URL: {app_config.get('PUBLIC_URL')}")

    if app_config.get('CHECKIN_DEFAULT_VALID_MINUTES', 0) <= 0:
        errors.append("CHECKIN_DEFAULT_VALID_MINUTES must be positive")

    if app_config.get('CHECKIN_TOKEN_BYTES', 0) < 16:
        errors.append("CHECKIN_TOKEN_BYTES must be at least 16")

    return errors


# Initialize configuration
def init_config(app, config_name=None):
    """Initialize application with configuration"""
    if config_name is None:
        config_name = os.environ.get('FLASK_ENV', 'default')

    config_class = config.get(config_name, DevelopmentConfig)
    config_class.init_app(app)

    # Validate configuration
    errors = validate_config(app.config)
    if errors:
        for error in errors:
            app.logger.error(f"Configuration error: {error}")
        raise RuntimeError("Configuration validation failed")

    return config_class
