"""
Session Manager Module - LTI Attendance Tool

This module handles courses and their meeting sessions. A course is known by
its LTI context id; sessions belong to exactly one course and carry the
planned time window from which the expected minutes are derived.

Features:
- Course upsert from launches and session creation
- Session creation, updates and deletion
- Session listing per course
- Expected minutes derived from the planned window
"""

from typing import Dict, List, Any, Optional
import logging

from lti_attendance.modules.time_utils import (
    parse_timestamp, format_timestamp, combine_date_time, minutes_between
)


class SessionManager:
    """
    Session registry for the attendance tool.
    Handles course records and the sessions held within them.
    """

    SESSION_TYPES = ['regular', 'lecture', 'seminar', 'exam', 'excursion', 'other']

    UPDATABLE_FIELDS = ['session_name', 'session_type', 'planned_break_minutes',
                        'is_online', 'meeting_url', 'location', 'is_mandatory',
                        'description']

    def __init__(self, database_manager):
        """
        Initialize the session manager with database connection.

        Args:
            database_manager: Database manager instance
        """
        self.db = database_manager
        self.logger = logging.getLogger(__name__)

        self.logger.info("Session manager initialized")

    def get_or_create_course(self, lms_course_id: str, course_name: str = None,
                             lms_course_numeric_id: Any = None) -> Optional[Dict[str, Any]]:
        """
        Get a course by LTI context id, creating or refreshing it.

        Args:
            lms_course_id (str): LTI context id
            course_name (str): Course title
            lms_course_numeric_id: Numeric course id used by the LMS REST API

        Returns:
            Dict[str, Any]: Course row or None on failure
        """
        if not lms_course_id:
            return None

        try:
            numeric_id = str(lms_course_numeric_id) if lms_course_numeric_id is not None else None
            self.db.execute_update(
                """INSERT INTO courses (lms_course_id, course_name, lms_course_numeric_id)
                   VALUES (?, ?, ?)
                   ON CONFLICT(lms_course_id) DO UPDATE SET
                       course_name = COALESCE(excluded.course_name, courses.course_name),
                       lms_course_numeric_id = COALESCE(excluded.lms_course_numeric_id,
                                                        courses.lms_course_numeric_id),
                       updated_at = CURRENT_TIMESTAMP""",
                (str(lms_course_id), course_name, numeric_id)
            )
            return self.get_course(lms_course_id)

        except Exception as e:
            self.logger.error(f"Course upsert failed for {lms_course_id}: {str(e)}")
            return None

    def get_course(self, lms_course_id: str) -> Optional[Dict[str, Any]]:
        return self.db.execute_query(
            "SELECT * FROM courses WHERE lms_course_id = ?",
            (str(lms_course_id),),
            fetch_all=False
        )

    def get_course_by_id(self, course_id: int) -> Optional[Dict[str, Any]]:
        return self.db.execute_query(
            "SELECT * FROM courses WHERE id = ?",
            (course_id,),
            fetch_all=False
        )

    def _resolve_window(self, session_data: Dict[str, Any]) -> tuple:
        """
        Resolve start and end of a session.

        Accepts ``start_ts``/``end_ts`` ISO timestamps or ``session_date`` with
        ``start_time``/``end_time``.

        Raises:
            ValueError: If the window is missing or malformed
        """
        if session_data.get('start_ts') or session_data.get('end_ts'):
            start = parse_timestamp(session_data.get('start_ts'))
            end = parse_timestamp(session_data.get('end_ts'))
        elif session_data.get('session_date'):
            start = combine_date_time(session_data['session_date'], session_data.get('start_time') or '')
            end = combine_date_time(session_data['session_date'], session_data.get('end_time') or '')
        else:
            start = end = None

        if start is None or end is None:
            raise ValueError('Start and end of the session are required')
        if end <= start:
            raise ValueError('Session end must be after its start')

        return start, end

    def create_session(self, lms_course_id: str, session_data: Dict[str, Any],
                       created_by: str = None) -> Dict[str, Any]:
        """
        Create a new session in a course.

        Args:
            lms_course_id (str): LTI context id of the course
            session_data (Dict[str, Any]): Session fields
            created_by (str): Identity of the creating instructor

        Returns:
            Dict[str, Any]: Creation result
        """
        try:
            session_name = (session_data.get('session_name') or '').strip()
            if not lms_course_id or not session_name:
                return {
                    'success': False,
                    'error': 'Course and session name are required',
                    'error_type': 'validation_error'
                }

            try:
                start, end = self._resolve_window(session_data)
                planned_break = int(session_data.get('planned_break_minutes') or 0)
            except (TypeError, ValueError) as e:
                return {
                    'success': False,
                    'error': str(e),
                    'error_type': 'validation_error'
                }

            if planned_break < 0:
                return {
                    'success': False,
                    'error': 'Planned break cannot be negative',
                    'error_type': 'validation_error'
                }

            session_type = session_data.get('session_type') or 'regular'
            if session_type not in self.SESSION_TYPES:
                session_type = 'regular'

            course = self.get_or_create_course(lms_course_id, session_data.get('course_name'))
            if not course:
                return {
                    'success': False,
                    'error': 'Failed to create session',
                    'error_type': 'persistence_error'
                }

            expected_minutes = minutes_between(start, end)

            session_id = self.db.execute_update(
                """INSERT INTO sessions (course_id, session_name, session_type, start_ts, end_ts,
                                         expected_minutes, planned_break_minutes, is_online,
                                         meeting_url, location, is_mandatory, description,
                                         created_by, created_at, updated_at)
                   VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, CURRENT_TIMESTAMP, CURRENT_TIMESTAMP)""",
                (course['id'], session_name, session_type, format_timestamp(start),
                 format_timestamp(end), expected_minutes, planned_break,
                 bool(session_data.get('is_online', False)), session_data.get('meeting_url'),
                 session_data.get('location'), bool(session_data.get('is_mandatory', True)),
                 session_data.get('description'), created_by)
            )

            self.logger.info(f"Session created: {session_name} in course {lms_course_id} (ID: {session_id})")

            return {
                'success': True,
                'session_id': session_id,
                'session': self.get_session(session_id),
                'message': 'Session created successfully'
            }

        except Exception as e:
            self.logger.error(f"Session creation failed for course {lms_course_id}: {str(e)}")
            return {
                'success': False,
                'error': 'Failed to create session',
                'error_type': 'persistence_error'
            }

    def update_session(self, session_id: int, session_data: Dict[str, Any]) -> Dict[str, Any]:
        """
        Update session information.

        Changing the window recomputes the expected minutes.

        Args:
            session_id (int): Session ID
            session_data (Dict[str, Any]): Updated session data

        Returns:
            Dict[str, Any]: Update result
        """
        try:
            existing_session = self.get_session(session_id)
            if not existing_session:
                return {
                    'success': False,
                    'error': 'Session not found',
                    'error_type': 'session_not_found'
                }

            update_fields = []
            params = []

            for field in self.UPDATABLE_FIELDS:
                if field in session_data:
                    value = session_data[field]
                    if field == 'session_name' and not (value or '').strip():
                        return {
                            'success': False,
                            'error': 'Session name cannot be empty',
                            'error_type': 'validation_error'
                        }
                    if field == 'session_type' and value not in self.SESSION_TYPES:
                        value = 'regular'
                    update_fields.append(f"{field} = ?")
                    params.append(value)

            window_keys = ('start_ts', 'end_ts', 'session_date', 'start_time', 'end_time')
            if any(key in session_data for key in window_keys):
                merged = {
                    'start_ts': session_data.get('start_ts') or existing_session['start_ts'],
                    'end_ts': session_data.get('end_ts') or existing_session['end_ts'],
                }
                if session_data.get('session_date'):
                    merged = session_data
                try:
                    start, end = self._resolve_window(merged)
                except (TypeError, ValueError) as e:
                    return {
                        'success': False,
                        'error': str(e),
                        'error_type': 'validation_error'
                    }
                update_fields.extend(['start_ts = ?', 'end_ts = ?', 'expected_minutes = ?'])
                params.extend([format_timestamp(start), format_timestamp(end),
                               minutes_between(start, end)])

            if not update_fields:
                return {
                    'success': False,
                    'error': 'No valid fields to update',
                    'error_type': 'validation_error'
                }

            update_fields.append("updated_at = CURRENT_TIMESTAMP")
            params.append(session_id)

            self.db.execute_update(
                f"UPDATE sessions SET {', '.join(update_fields)} WHERE id = ?",
                tuple(params)
            )

            self.logger.info(f"Session updated: {session_id}")

            return {
                'success': True,
                'session': self.get_session(session_id),
                'message': 'Session updated successfully'
            }

        except Exception as e:
            self.logger.error(f"Session update failed for {session_id}: {str(e)}")
            return {
                'success': False,
                'error': 'Failed to update session',
                'error_type': 'persistence_error'
            }

    def delete_session(self, session_id: int) -> Dict[str, Any]:
        """
        Delete a session together with its attendance records and tokens.

        Args:
            session_id (int): Session ID

        Returns:
            Dict[str, Any]: Deletion result
        """
        try:
            affected_rows = self.db.execute_update(
                "DELETE FROM sessions WHERE id = ?",
                (session_id,)
            )

            if affected_rows == 0:
                return {
                    'success': False,
                    'error': 'Session not found',
                    'error_type': 'session_not_found'
                }

            self.logger.info(f"Session deleted: {session_id}")
            return {
                'success': True,
                'message': 'Session deleted successfully'
            }

        except Exception as e:
            self.logger.error(f"Session deletion failed for {session_id}: {str(e)}")
            return {
                'success': False,
                'error': 'Failed to delete session',
                'error_type': 'persistence_error'
            }

    def get_session(self, session_id: int) -> Optional[Dict[str, Any]]:
        """
        Get a session joined with its course.

        Args:
            session_id (int): Session ID

        Returns:
            Dict[str, Any]: Session row or None
        """
        return self.db.execute_query(
            """SELECT s.*, c.lms_course_id, c.course_name
               FROM sessions s
               JOIN courses c ON c.id = s.course_id
               WHERE s.id = ?""",
            (session_id,),
            fetch_all=False
        )

    def get_sessions_for_course(self, lms_course_id: str) -> List[Dict[str, Any]]:
        """
        List the sessions of a course ordered by start.

        Args:
            lms_course_id (str): LTI context id of the course

        Returns:
            List[Dict[str, Any]]: Sessions with the number of recorded attendances
        """
        return self.db.execute_query(
            """SELECT s.*, c.lms_course_id, c.course_name,
                      (SELECT COUNT(*) FROM attendance_records ar
                       WHERE ar.session_id = s.id) AS recorded_count
               FROM sessions s
               JOIN courses c ON c.id = s.course_id
               WHERE c.lms_course_id = ?
               ORDER BY s.start_ts ASC""",
            (str(lms_course_id),)
        )

    def get_course_sessions_by_id(self, course_id: int) -> List[Dict[str, Any]]:
        return self.db.execute_query(
            "SELECT * FROM sessions WHERE course_id = ? ORDER BY start_ts ASC",
            (course_id,)
        )

    @staticmethod
    def session_window(session: Dict[str, Any]) -> tuple:
        """Start and end of a session row as datetimes."""
        return parse_timestamp(session['start_ts']), parse_timestamp(session['end_ts'])
