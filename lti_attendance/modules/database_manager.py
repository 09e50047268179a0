"""
Database Manager Module - LTI Attendance Tool

This module handles all database operations for the attendance tool.
It provides the interface for managing SQLite database connections,
schema creation, data insertion, updates, and queries. Integrity rules that
must hold under concurrent requests live in the schema itself:

- one attendance record per (session, student identity)
- at most one active check-in token per session
- records and tokens are removed together with their session
"""

import sqlite3
import logging
from contextlib import contextmanager
import threading
import os


def normalize_text(value):
    """Trimmed, case-folded form used for roster name and email matching."""
    if value is None:
        return None
    return str(value).strip().casefold()


DEFAULT_SETTINGS = [
    ('late_grace_minutes', '5', 'Minutes after session start before a self check-in counts as late'),
    ('default_token_valid_minutes', '15', 'Default lifetime of a check-in QR code'),
]


class DatabaseManager:
    """
    Database management class for the attendance tool.
    Handles connection management, schema creation and data manipulation
    with error logging and transaction support.
    """

    def __init__(self, db_path):
        """
        Initialize the database manager with the specified database path.

        Args:
            db_path (str): Path to the SQLite database file, or ':memory:'
        """
        self.db_path = str(db_path)
        self.logger = logging.getLogger(__name__)
        self._local = threading.local()

        # Ensure database directory exists
        if self.db_path != ':memory:' and os.path.dirname(self.db_path):
            os.makedirs(os.path.dirname(self.db_path), exist_ok=True)

        # Initialize database schema if it doesn't exist
        self.initialize_database()

    @contextmanager
    def get_connection(self):
        """
        Context manager for database connections.
        Provides thread-local connections for thread safety.

        Yields:
            sqlite3.Connection: Database connection object
        """
        if not hasattr(self._local, 'connection'):
            self._local.connection = sqlite3.connect(
                self.db_path,
                check_same_thread=False,
                timeout=30.0
            )
            self._local.connection.row_factory = sqlite3.Row
            # Enable foreign key constraints (session cascade)
            self._local.connection.execute("PRAGMA foreign_keys = ON")
            # SQLite's LOWER() only folds ASCII; names need full Unicode folding
            self._local.connection.create_function(
                'normalize_text', 1, normalize_text, deterministic=True
            )

        try:
            yield self._local.connection
        except Exception as e:
            self._local.connection.rollback()
            self.logger.error(f"Database operation failed: {str(e)}")
            raise

    def initialize_database(self):
        """
        Create all necessary tables and default settings.
        This method is idempotent and can be called multiple times safely.
        """
        try:
            with self.get_connection() as conn:
                cursor = conn.cursor()

                # Courses known from LTI launches and session creation
                cursor.execute("""
                    CREATE TABLE IF NOT EXISTS courses (
                        id INTEGER PRIMARY KEY AUTOINCREMENT,
                        lms_course_id VARCHAR(255) UNIQUE NOT NULL,
                        course_name VARCHAR(255),
                        lms_course_numeric_id VARCHAR(50),
                        created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
                        updated_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
                    )
                """)

                # Roster entries (students and instructors), upserted only
                cursor.execute("""
                    CREATE TABLE IF NOT EXISTS users (
                        id INTEGER PRIMARY KEY AUTOINCREMENT,
                        lms_user_id VARCHAR(255) UNIQUE NOT NULL,
                        name VARCHAR(255) NOT NULL,
                        email VARCHAR(255),
                        role VARCHAR(20) DEFAULT 'student',
                        family_name VARCHAR(100),
                        given_name VARCHAR(100),
                        birth_date DATE,
                        street VARCHAR(100),
                        house_number VARCHAR(20),
                        postal_code VARCHAR(10),
                        city VARCHAR(100),
                        created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
                        updated_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
                    )
                """)

                cursor.execute("""
                    CREATE TABLE IF NOT EXISTS course_enrollments (
                        id INTEGER PRIMARY KEY AUTOINCREMENT,
                        course_id INTEGER NOT NULL,
                        user_id INTEGER NOT NULL,
                        created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
                        FOREIGN KEY (course_id) REFERENCES courses(id) ON DELETE CASCADE,
                        FOREIGN KEY (user_id) REFERENCES users(id),
                        UNIQUE(course_id, user_id)
                    )
                """)

                # Course meeting instances
                cursor.execute("""
                    CREATE TABLE IF NOT EXISTS sessions (
                        id INTEGER PRIMARY KEY AUTOINCREMENT,
                        course_id INTEGER NOT NULL,
                        session_name VARCHAR(255) NOT NULL,
                        session_type VARCHAR(50) DEFAULT 'regular',
                        start_ts TIMESTAMP NOT NULL,
                        end_ts TIMESTAMP NOT NULL,
                        expected_minutes INTEGER NOT NULL,
                        planned_break_minutes INTEGER DEFAULT 0,
                        is_online BOOLEAN DEFAULT 0,
                        meeting_url VARCHAR(500),
                        location VARCHAR(255),
                        is_mandatory BOOLEAN DEFAULT 1,
                        description TEXT,
                        created_by VARCHAR(255),
                        created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
                        updated_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
                        FOREIGN KEY (course_id) REFERENCES courses(id) ON DELETE CASCADE
                    )
                """)

                cursor.execute("""
                    CREATE TABLE IF NOT EXISTS checkin_tokens (
                        id INTEGER PRIMARY KEY AUTOINCREMENT,
                        session_id INTEGER NOT NULL,
                        token VARCHAR(128) UNIQUE NOT NULL,
                        expires_at TIMESTAMP NOT NULL,
                        is_active BOOLEAN DEFAULT 1,
                        created_by VARCHAR(255),
                        created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
                        FOREIGN KEY (session_id) REFERENCES sessions(id) ON DELETE CASCADE
                    )
                """)

                # One row per (session, identity); last write wins
                cursor.execute("""
                    CREATE TABLE IF NOT EXISTS attendance_records (
                        id INTEGER PRIMARY KEY AUTOINCREMENT,
                        session_id INTEGER NOT NULL,
                        lms_user_id VARCHAR(255) NOT NULL,
                        status VARCHAR(20) NOT NULL,
                        present_from TIMESTAMP,
                        present_to TIMESTAMP,
                        minutes INTEGER DEFAULT 0,
                        break_minutes INTEGER DEFAULT 0,
                        net_minutes INTEGER DEFAULT 0,
                        note TEXT,
                        recorded_by VARCHAR(255),
                        excuse_filename VARCHAR(255),
                        excuse_uploaded_at TIMESTAMP,
                        created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
                        updated_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
                        FOREIGN KEY (session_id) REFERENCES sessions(id) ON DELETE CASCADE,
                        UNIQUE(session_id, lms_user_id)
                    )
                """)

                cursor.execute("""
                    CREATE TABLE IF NOT EXISTS system_settings (
                        id INTEGER PRIMARY KEY AUTOINCREMENT,
                        setting_key VARCHAR(100) UNIQUE NOT NULL,
                        setting_value TEXT,
                        description TEXT,
                        updated_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
                    )
                """)

                # Create indexes for better performance
                cursor.execute("CREATE INDEX IF NOT EXISTS idx_sessions_course ON sessions(course_id, start_ts)")
                cursor.execute("CREATE INDEX IF NOT EXISTS idx_attendance_session ON attendance_records(session_id)")
                cursor.execute("CREATE INDEX IF NOT EXISTS idx_attendance_user ON attendance_records(lms_user_id)")
                cursor.execute("CREATE INDEX IF NOT EXISTS idx_users_role ON users(role)")
                # At most one active token per session
                cursor.execute("""
                    CREATE UNIQUE INDEX IF NOT EXISTS idx_tokens_one_active
                    ON checkin_tokens(session_id) WHERE is_active = 1
                """)

                conn.commit()

                self._insert_default_data(cursor)
                conn.commit()

                self.logger.info("Database initialized successfully")

        except Exception as e:
            self.logger.error(f"Failed to initialize database: {str(e)}")
            raise

    def _insert_default_data(self, cursor):
        """
        Insert default system settings that are not present yet.

        Args:
            cursor: Database cursor object
        """
        cursor.executemany("""
            INSERT OR IGNORE INTO system_settings (setting_key, setting_value, description)
            VALUES (?, ?, ?)
        """, DEFAULT_SETTINGS)

    def execute_query(self, query, params=None, fetch_all=True):
        """
        Execute a SELECT query and return results.

        Args:
            query (str): SQL query string
            params (tuple): Query parameters
            fetch_all (bool): Whether to fetch all results or just one

        Returns:
            list or dict: Query results
        """
        try:
            with self.get_connection() as conn:
                cursor = conn.cursor()

                if params:
                    cursor.execute(query, params)
                else:
                    cursor.execute(query)

                if fetch_all:
                    results = cursor.fetchall()
                    return [dict(row) for row in results]
                else:
                    result = cursor.fetchone()
                    return dict(result) if result else None

        except Exception as e:
            self.logger.error(f"Query execution failed: {str(e)}")
            raise

    def execute_update(self, query, params=None):
        """
        Execute an INSERT, UPDATE, or DELETE query.

        Args:
            query (str): SQL query string
            params (tuple): Query parameters

        Returns:
            int: Number of affected rows or last inserted row ID
        """
        try:
            with self.get_connection() as conn:
                cursor = conn.cursor()

                if params:
                    cursor.execute(query, params)
                else:
                    cursor.execute(query)

                conn.commit()

                # Return last inserted row ID for INSERT statements
                if query.strip().upper().startswith('INSERT'):
                    return cursor.lastrowid
                else:
                    return cursor.rowcount

        except Exception as e:
            self.logger.error(f"Update execution failed: {str(e)}")
            raise

    def execute_insert_if_absent(self, query, params):
        """
        Execute an ``INSERT ... ON CONFLICT DO NOTHING`` statement.

        Args:
            query (str): SQL insert with a conflict clause
            params (tuple): Query parameters

        Returns:
            int: Inserted row ID, or None when the row already existed
        """
        try:
            with self.get_connection() as conn:
                cursor = conn.cursor()
                cursor.execute(query, params)
                conn.commit()
                return cursor.lastrowid if cursor.rowcount == 1 else None

        except Exception as e:
            self.logger.error(f"Conditional insert failed: {str(e)}")
            raise

    @contextmanager
    def transaction(self):
        """
        Context manager for database transactions with automatic rollback on error.

        Yields:
            sqlite3.Connection: Database connection within transaction
        """
        with self.get_connection() as conn:
            try:
                yield conn
                conn.commit()
            except Exception as e:
                conn.rollback()
                self.logger.error(f"Transaction rolled back: {str(e)}")
                raise

    def get_system_setting(self, key, default_value=None):
        """
        Get a system setting value by key.

        Args:
            key (str): Setting key
            default_value: Default value if setting not found

        Returns:
            str: Setting value
        """
        try:
            result = self.execute_query(
                "SELECT setting_value FROM system_settings WHERE setting_key = ?",
                (key,),
                fetch_all=False
            )
            return result['setting_value'] if result else default_value

        except Exception as e:
            self.logger.error(f"Failed to get system setting {key}: {str(e)}")
            return default_value

    def update_system_setting(self, key, value, description=None):
        """
        Update or insert a system setting.

        Args:
            key (str): Setting key
            value (str): Setting value
            description (str): Setting description

        Returns:
            bool: Success status
        """
        try:
            self.execute_update("""
                INSERT INTO system_settings (setting_key, setting_value, description)
                VALUES (?, ?, ?)
                ON CONFLICT(setting_key) DO UPDATE SET
                    setting_value = excluded.setting_value,
                    description = COALESCE(excluded.description, system_settings.description),
                    updated_at = CURRENT_TIMESTAMP
            """, (key, str(value), description))
            return True

        except Exception as e:
            self.logger.error(f"Failed to update system setting {key}: {str(e)}")
            return False

    def close_all_connections(self):
        """Close the connection of the calling thread."""
        try:
            if hasattr(self._local, 'connection'):
                self._local.connection.close()
                del self._local.connection
        except Exception as e:
            self.logger.error(f"Error closing connections: {str(e)}")

    def __del__(self):
        """Cleanup when object is destroyed."""
        self.close_all_connections()
