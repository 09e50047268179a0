"""
Check-In Reconciler Module - LTI Attendance Tool

This module processes unauthenticated self check-ins. A submission carries
the token from the QR code and the name (optionally the email) typed by the
student. The name is resolved against the roster by exact comparison after
trimming and case folding; there is no fuzzy matching. A student is written
into the ledger at most once per session.
"""

from datetime import datetime, timedelta
import logging
from typing import Dict, Any, Callable, Optional

from lti_attendance.modules.time_utils import parse_timestamp


class CheckinReconciler:
    """
    Validates check-in tokens and records self check-ins.
    """

    RECORDED_BY = 'self-checkin'

    def __init__(self, database_manager, token_issuer, roster_manager, attendance_manager,
                 late_grace_minutes: int = 5, clock: Callable[[], datetime] = datetime.now):
        """
        Initialize the reconciler.

        Args:
            database_manager: Database manager instance
            token_issuer: Check-in token issuer
            roster_manager: Roster used for identity resolution
            attendance_manager: Ledger receiving the records
            late_grace_minutes (int): Minutes after start before a check-in is late
            clock (Callable): Returns the current local time
        """
        self.db = database_manager
        self.tokens = token_issuer
        self.roster = roster_manager
        self.attendance = attendance_manager
        self.clock = clock
        self.logger = logging.getLogger(__name__)

        self.late_grace_minutes = late_grace_minutes
        self._load_system_settings()

    def _load_system_settings(self):
        """Load the late grace period from system settings."""
        try:
            grace = self.db.get_system_setting('late_grace_minutes', str(self.late_grace_minutes))
            self.late_grace_minutes = int(grace)
        except (TypeError, ValueError) as e:
            self.logger.error(f"Invalid late_grace_minutes setting: {str(e)}")

    def _failure(self, error: str, error_type: str) -> Dict[str, Any]:
        return {
            'success': False,
            'error': error,
            'error_type': error_type
        }

    def resolve_student(self, display_name: str, email: Optional[str],
                        course_id: int) -> Optional[Dict[str, Any]]:
        """
        Resolve a submission to exactly one genuine student.

        Name first; email only when the name does not identify a single
        student.

        Returns:
            Dict[str, Any]: Roster entry or None
        """
        matches = self.roster.resolve_by_name(display_name, course_id)
        if len(matches) == 1:
            return matches[0]

        if email:
            email_matches = self.roster.resolve_by_email(email, course_id)
            if len(email_matches) == 1:
                return email_matches[0]

        if len(matches) > 1:
            self.logger.warning(f"Ambiguous check-in name '{display_name}' "
                                f"({len(matches)} matches) in course {course_id}")
        return None

    def submit(self, token: str, display_name: str, email: str = None) -> Dict[str, Any]:
        """
        Process a self check-in submission.

        Args:
            token (str): Token from the QR code
            display_name (str): Name as typed by the student
            email (str): Optional email as typed by the student

        Returns:
            Dict[str, Any]: success, status, already_checked_in, student_name,
            message, error and error_type
        """
        if any(value is not None and not isinstance(value, str)
               for value in (token, display_name, email)):
            return self._failure('Token, name and email must be text', 'validation_error')

        token = (token or '').strip()
        display_name = (display_name or '').strip()
        email = (email or '').strip() or None

        if not token or not display_name:
            return self._failure('Token and name are required', 'validation_error')

        try:
            token_row = self.tokens.lookup(token)
            if not token_row:
                self.logger.warning("Check-in with unknown or inactive token")
                return self._failure('Invalid or deactivated check-in code', 'token_invalid')

            if self.tokens.is_expired(token_row):
                self.tokens.deactivate_token(token_row['token_id'])
                return self._failure('This check-in code has expired', 'token_expired')

            student = self.resolve_student(display_name, email, token_row['course_id'])
            if not student:
                self.logger.warning(f"Check-in rejected for unregistered name '{display_name}' "
                                    f"in session {token_row['session_id']}")
                message = 'Name not found in the course roster. Please check the spelling'
                if not email:
                    message += ' or also enter your email address'
                return self._failure(message + '.', 'not_registered')

            existing = self.attendance.get_record(token_row['session_id'], student['lms_user_id'])
            if existing:
                return self._already_checked_in(student, existing)

            now = self.clock()
            start = parse_timestamp(token_row['start_ts'])
            end = parse_timestamp(token_row['end_ts'])
            status = (self.attendance.STATUS_LATE
                      if now > start + timedelta(minutes=self.late_grace_minutes)
                      else self.attendance.STATUS_PRESENT)

            # Self check-in credits the planned session window
            entry = self.attendance.build_entry(status, start, end, 0)

            note = f"Self check-in via QR code at {now.strftime('%H:%M:%S')}"
            record_id = self.attendance.insert_if_absent(
                token_row['session_id'], student['lms_user_id'], entry, note, self.RECORDED_BY
            )

            if record_id is None:
                existing = self.attendance.get_record(token_row['session_id'], student['lms_user_id'])
                return self._already_checked_in(student, existing)

            self.logger.info(f"Self check-in: {student['lms_user_id']} in session "
                             f"{token_row['session_id']} as {status}")

            return {
                'success': True,
                'status': status,
                'already_checked_in': False,
                'student_name': student['name'],
                'message': f"Thank you {student['name']}, you are checked in"
                           + (' (late)' if status == self.attendance.STATUS_LATE else '') + '.'
            }

        except Exception as e:
            self.logger.error(f"Check-in failed: {str(e)}")
            return self._failure('Check-in could not be saved, please try again', 'persistence_error')

    def _already_checked_in(self, student: Dict[str, Any], record: Optional[Dict[str, Any]]) -> Dict[str, Any]:
        return {
            'success': True,
            'status': record['status'] if record else None,
            'already_checked_in': True,
            'student_name': student['name'],
            'message': f"{student['name']}, you are already checked in."
        }
