"""
Attendance Manager Module - LTI Attendance Tool

This module maintains the attendance ledger: one record per (session,
student identity). Manual entries overwrite the previous record, self
check-ins only ever insert. Gross, break and net minutes are derived on every
write and never accepted from callers.

Features:
- Manual attendance marking with time windows
- Bulk marking with per-student error reporting
- Atomic insert-if-absent for self check-in
- Session attendance listing against the course roster
- Excuse attachment
"""

from datetime import datetime
import logging
from typing import Dict, List, Optional, Any, Callable
from dataclasses import dataclass

from lti_attendance.modules.time_utils import parse_timestamp, format_timestamp, minutes_between


@dataclass
class AttendanceEntry:
    """Derived time figures of an attendance record."""
    status: str
    present_from: Optional[str]
    present_to: Optional[str]
    minutes: int
    break_minutes: int
    net_minutes: int


class AttendanceManager:
    """
    Attendance ledger for the attendance tool.
    Handles recording, listing and deletion of attendance records.
    """

    def __init__(self, database_manager, roster_manager,
                 clock: Callable[[], datetime] = datetime.now):
        """
        Initialize the attendance manager.

        Args:
            database_manager: Database manager instance
            roster_manager: Roster manager used for identity normalization and listings
            clock (Callable): Returns the current local time
        """
        self.db = database_manager
        self.roster = roster_manager
        self.clock = clock
        self.logger = logging.getLogger(__name__)

        # Attendance status constants
        self.STATUS_PRESENT = 'present'
        self.STATUS_LATE = 'late'
        self.STATUS_PARTIAL = 'partial'
        self.STATUS_ABSENT = 'absent'
        self.STATUS_EXCUSED = 'excused'

        self.VALID_STATUSES = [self.STATUS_PRESENT, self.STATUS_LATE, self.STATUS_PARTIAL,
                               self.STATUS_ABSENT, self.STATUS_EXCUSED]
        self.ATTENDED_STATUSES = [self.STATUS_PRESENT, self.STATUS_LATE, self.STATUS_PARTIAL]

    def build_entry(self, status: str, present_from: Any = None, present_to: Any = None,
                    break_minutes: Any = 0) -> AttendanceEntry:
        """
        Validate a status with its window and derive the minute figures.

        Args:
            status (str): Attendance status
            present_from: Start of presence (ISO string or datetime)
            present_to: End of presence (ISO string or datetime)
            break_minutes: Break taken within the window

        Returns:
            AttendanceEntry: Normalized entry

        Raises:
            ValueError: If the status or window is invalid
        """
        if status not in self.VALID_STATUSES:
            raise ValueError(f"Invalid status: {status}")

        if status not in self.ATTENDED_STATUSES:
            return AttendanceEntry(status, None, None, 0, 0, 0)

        start = parse_timestamp(present_from)
        end = parse_timestamp(present_to)
        if start is None or end is None:
            raise ValueError(f"Status '{status}' requires a time window (from/to)")
        if end <= start:
            raise ValueError('End of presence must be after its start')

        try:
            break_value = int(break_minutes or 0)
        except (TypeError, ValueError):
            raise ValueError('Break minutes must be a whole number')
        if break_value < 0:
            raise ValueError('Break minutes cannot be negative')

        minutes = minutes_between(start, end)
        return AttendanceEntry(
            status=status,
            present_from=format_timestamp(start),
            present_to=format_timestamp(end),
            minutes=minutes,
            break_minutes=break_value,
            net_minutes=max(0, minutes - break_value)
        )

    def _session_exists(self, session_id: int) -> bool:
        return bool(self.db.execute_query(
            "SELECT id FROM sessions WHERE id = ?", (session_id,), fetch_all=False
        ))

    def record_attendance(self, session_id: int, lms_user_id: str, status: str,
                          present_from: Any = None, present_to: Any = None,
                          break_minutes: Any = 0, note: str = None,
                          recorded_by: str = None) -> Dict[str, Any]:
        """
        Record (or overwrite) the attendance of a student in a session.

        Args:
            session_id (int): Session ID
            lms_user_id (str): Student identity
            status (str): present, late, partial, absent or excused
            present_from: Start of presence, required for attended statuses
            present_to: End of presence, required for attended statuses
            break_minutes: Break within the window
            note (str): Free-text note
            recorded_by (str): Identity of the recording instructor

        Returns:
            Dict[str, Any]: Recording result
        """
        try:
            entry = self.build_entry(status, present_from, present_to, break_minutes)
        except ValueError as e:
            return {
                'success': False,
                'error': str(e),
                'error_type': 'validation_error'
            }

        identity = self.roster.normalize_identity(lms_user_id)
        if not identity:
            return {
                'success': False,
                'error': 'Student identity is required',
                'error_type': 'validation_error'
            }

        try:
            if not self._session_exists(session_id):
                return {
                    'success': False,
                    'error': 'Session not found',
                    'error_type': 'session_not_found'
                }

            if not self.roster.get_user(identity):
                return {
                    'success': False,
                    'error': 'Student not found',
                    'error_type': 'not_found'
                }

            self.db.execute_update(
                """INSERT INTO attendance_records (session_id, lms_user_id, status, present_from,
                                                   present_to, minutes, break_minutes, net_minutes,
                                                   note, recorded_by, created_at, updated_at)
                   VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, CURRENT_TIMESTAMP, CURRENT_TIMESTAMP)
                   ON CONFLICT(session_id, lms_user_id) DO UPDATE SET
                       status = excluded.status,
                       present_from = excluded.present_from,
                       present_to = excluded.present_to,
                       minutes = excluded.minutes,
                       break_minutes = excluded.break_minutes,
                       net_minutes = excluded.net_minutes,
                       note = excluded.note,
                       recorded_by = excluded.recorded_by,
                       updated_at = CURRENT_TIMESTAMP""",
                (session_id, identity, entry.status, entry.present_from, entry.present_to,
                 entry.minutes, entry.break_minutes, entry.net_minutes, note, recorded_by)
            )

            self.logger.info(f"Attendance recorded: {identity} in session {session_id} "
                             f"as {entry.status} ({entry.net_minutes} net min)")

            return {
                'success': True,
                'record': self.get_record(session_id, identity),
                'message': 'Attendance saved'
            }

        except Exception as e:
            self.logger.error(f"Attendance recording failed for {identity} "
                              f"in session {session_id}: {str(e)}")
            return {
                'success': False,
                'error': 'Failed to save attendance',
                'error_type': 'persistence_error'
            }

    def bulk_mark(self, session_id: int, lms_user_ids: List[str], status: str,
                  present_from: Any = None, present_to: Any = None, break_minutes: Any = 0,
                  recorded_by: str = None) -> Dict[str, Any]:
        """
        Apply one status and window to many students.

        Each student is written on its own; earlier writes are kept when a
        later one fails.

        Args:
            session_id (int): Session ID
            lms_user_ids (List[str]): Student identities
            status (str): Status applied to everyone
            present_from: Start of presence
            present_to: End of presence
            break_minutes: Break within the window
            recorded_by (str): Identity of the recording instructor

        Returns:
            Dict[str, Any]: Counts of saved and failed writes with errors
        """
        if not lms_user_ids:
            return {
                'success': False,
                'error': 'No students selected',
                'error_type': 'validation_error'
            }

        try:
            self.build_entry(status, present_from, present_to, break_minutes)
        except ValueError as e:
            return {
                'success': False,
                'error': str(e),
                'error_type': 'validation_error'
            }

        if not self._session_exists(session_id):
            return {
                'success': False,
                'error': 'Session not found',
                'error_type': 'session_not_found'
            }

        results = {
            'success': True,
            'saved': 0,
            'failed': 0,
            'errors': []
        }

        for lms_user_id in lms_user_ids:
            result = self.record_attendance(session_id, lms_user_id, status, present_from,
                                            present_to, break_minutes, None, recorded_by)
            if result['success']:
                results['saved'] += 1
            else:
                results['failed'] += 1
                results['errors'].append({
                    'lms_user_id': lms_user_id,
                    'error': result['error']
                })

        if results['failed']:
            results['success'] = False
            results['error'] = f"{results['failed']} of {len(lms_user_ids)} entries failed"
            results['error_type'] = 'partial_failure'

        self.logger.info(f"Bulk attendance for session {session_id}: "
                         f"{results['saved']} saved, {results['failed']} failed")
        return results

    def insert_if_absent(self, session_id: int, lms_user_id: str, entry: AttendanceEntry,
                         note: str = None, recorded_by: str = None) -> Optional[int]:
        """
        Insert a record unless one exists for (session, identity).

        Args:
            session_id (int): Session ID
            lms_user_id (str): Normalized student identity
            entry (AttendanceEntry): Derived figures
            note (str): Note stored with the record
            recorded_by (str): Origin of the record

        Returns:
            int: New record ID, or None when a record already existed

        Raises:
            sqlite3.Error: On storage failure
        """
        return self.db.execute_insert_if_absent(
            """INSERT INTO attendance_records (session_id, lms_user_id, status, present_from,
                                               present_to, minutes, break_minutes, net_minutes,
                                               note, recorded_by, created_at, updated_at)
               VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, CURRENT_TIMESTAMP, CURRENT_TIMESTAMP)
               ON CONFLICT(session_id, lms_user_id) DO NOTHING""",
            (session_id, lms_user_id, entry.status, entry.present_from, entry.present_to,
             entry.minutes, entry.break_minutes, entry.net_minutes, note, recorded_by)
        )

    def delete_record(self, record_id: int) -> Dict[str, Any]:
        """
        Delete an attendance record.

        Args:
            record_id (int): Record ID

        Returns:
            Dict[str, Any]: Deletion result
        """
        try:
            affected_rows = self.db.execute_update(
                "DELETE FROM attendance_records WHERE id = ?",
                (record_id,)
            )
            if affected_rows == 0:
                return {
                    'success': False,
                    'error': 'Attendance record not found',
                    'error_type': 'not_found'
                }

            self.logger.info(f"Attendance record deleted: {record_id}")
            return {
                'success': True,
                'message': 'Attendance record deleted'
            }

        except Exception as e:
            self.logger.error(f"Attendance deletion failed for {record_id}: {str(e)}")
            return {
                'success': False,
                'error': 'Failed to delete attendance record',
                'error_type': 'persistence_error'
            }

    def get_record(self, session_id: int, lms_user_id: str) -> Optional[Dict[str, Any]]:
        return self.db.execute_query(
            "SELECT * FROM attendance_records WHERE session_id = ? AND lms_user_id = ?",
            (session_id, self.roster.normalize_identity(lms_user_id)),
            fetch_all=False
        )

    def get_session_attendance(self, session_id: int) -> List[Dict[str, Any]]:
        """
        List the roster of the session's course with their records.

        Students without a record appear with ``status`` None. Records of
        identities outside the roster (e.g. self check-ins of students not
        enrolled yet) are appended.

        Args:
            session_id (int): Session ID

        Returns:
            List[Dict[str, Any]]: One row per student
        """
        session = self.db.execute_query(
            "SELECT id, course_id FROM sessions WHERE id = ?",
            (session_id,),
            fetch_all=False
        )
        if not session:
            return []

        records = {
            record['lms_user_id']: record
            for record in self.db.execute_query(
                "SELECT * FROM attendance_records WHERE session_id = ?",
                (session_id,)
            )
        }

        rows = []
        for student in self.roster.get_course_roster(session['course_id']):
            record = records.pop(student['lms_user_id'], None)
            rows.append(self._listing_row(student, record))

        for lms_user_id, record in records.items():
            student = self.roster.get_user(lms_user_id) or {
                'id': None, 'lms_user_id': lms_user_id, 'name': lms_user_id, 'email': None
            }
            rows.append(self._listing_row(student, record))

        return rows

    def _listing_row(self, student: Dict[str, Any], record: Optional[Dict[str, Any]]) -> Dict[str, Any]:
        row = {
            'user_id': student.get('id'),
            'lms_user_id': student['lms_user_id'],
            'name': student.get('name'),
            'email': student.get('email'),
            'record_id': None,
            'status': None,
            'present_from': None,
            'present_to': None,
            'minutes': 0,
            'break_minutes': 0,
            'net_minutes': 0,
            'note': None,
            'recorded_by': None,
            'excuse_filename': None
        }
        if record:
            row.update({key: record[key] for key in row if key in record})
            row['record_id'] = record['id']
        return row

    def get_student_records(self, course_id: int, lms_user_id: str) -> List[Dict[str, Any]]:
        """All records of a student within a course, keyed by session."""
        return self.db.execute_query(
            """SELECT ar.* FROM attendance_records ar
               JOIN sessions s ON s.id = ar.session_id
               WHERE s.course_id = ? AND ar.lms_user_id = ?""",
            (course_id, self.roster.normalize_identity(lms_user_id))
        )

    def attach_excuse(self, session_id: int, lms_user_id: str, filename: str) -> Dict[str, Any]:
        """
        Attach an excuse document and mark the student excused.

        An existing record keeps its origin; a new one is attributed to the
        student.

        Args:
            session_id (int): Session ID
            lms_user_id (str): Student identity
            filename (str): Stored filename of the document

        Returns:
            Dict[str, Any]: Attachment result
        """
        identity = self.roster.normalize_identity(lms_user_id)

        try:
            if not self._session_exists(session_id):
                return {
                    'success': False,
                    'error': 'Session not found',
                    'error_type': 'session_not_found'
                }

            uploaded_at = format_timestamp(self.clock())
            self.db.execute_update(
                """INSERT INTO attendance_records (session_id, lms_user_id, status, minutes,
                                                   break_minutes, net_minutes, recorded_by,
                                                   excuse_filename, excuse_uploaded_at,
                                                   created_at, updated_at)
                   VALUES (?, ?, ?, 0, 0, 0, 'student', ?, ?, CURRENT_TIMESTAMP, CURRENT_TIMESTAMP)
                   ON CONFLICT(session_id, lms_user_id) DO UPDATE SET
                       status = excluded.status,
                       present_from = NULL,
                       present_to = NULL,
                       minutes = 0,
                       break_minutes = 0,
                       net_minutes = 0,
                       excuse_filename = excluded.excuse_filename,
                       excuse_uploaded_at = excluded.excuse_uploaded_at,
                       updated_at = CURRENT_TIMESTAMP""",
                (session_id, identity, self.STATUS_EXCUSED, filename, uploaded_at)
            )

            self.logger.info(f"Excuse attached for {identity} in session {session_id}: {filename}")
            return {
                'success': True,
                'filename': filename,
                'message': 'Excuse uploaded'
            }

        except Exception as e:
            self.logger.error(f"Excuse attachment failed for {identity} in session {session_id}: {str(e)}")
            return {
                'success': False,
                'error': 'Failed to save excuse',
                'error_type': 'persistence_error'
            }

    def can_access_excuse(self, filename: str, lms_user_id: str) -> bool:
        """Whether the given identity owns the excuse file."""
        record = self.db.execute_query(
            "SELECT id FROM attendance_records WHERE excuse_filename = ? AND lms_user_id = ?",
            (filename, self.roster.normalize_identity(lms_user_id)),
            fetch_all=False
        )
        return record is not None
