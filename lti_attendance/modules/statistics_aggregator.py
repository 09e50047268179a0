"""
Statistics Aggregator Module - LTI Attendance Tool

Derives per-student figures and the per-course attendance matrix from the
ledger. Nothing here is stored; every figure is computed on demand.
"""

import logging
from typing import Dict, List, Any

import pandas as pd


ATTENDED_STATUSES = ('present', 'late', 'partial')
NOT_RECORDED = 'not_recorded'
TEACHING_HOUR_MINUTES = 45


def attendance_rate(attended_sessions: int, total_sessions: int) -> float:
    if total_sessions <= 0:
        return 0
    return round(attended_sessions / total_sessions * 100, 1)


def time_rate(total_minutes: int, expected_minutes: int) -> float:
    if expected_minutes <= 0:
        return 0
    return round(total_minutes / expected_minutes * 100, 1)


def to_hours(minutes: int) -> float:
    return round((minutes or 0) / 60, 2)


def to_teaching_hours(minutes: int) -> float:
    """45-minute teaching hours, one decimal."""
    return round((minutes or 0) / TEACHING_HOUR_MINUTES, 1)


class StatisticsAggregator:
    """
    Computes attendance statistics for students and courses.
    """

    def __init__(self, database_manager, roster_manager):
        """
        Initialize the statistics aggregator.

        Args:
            database_manager: Database manager instance
            roster_manager: Roster manager supplying the course roster
        """
        self.db = database_manager
        self.roster = roster_manager
        self.logger = logging.getLogger(__name__)

    def summarize(self, sessions: List[Dict[str, Any]],
                  records_by_session: Dict[int, Dict[str, Any]]) -> Dict[str, Any]:
        """
        Summarize one student's records over a list of sessions.

        Args:
            sessions (List[Dict[str, Any]]): Sessions with ``id`` and ``expected_minutes``
            records_by_session (Dict[int, Dict[str, Any]]): The student's records by session ID

        Returns:
            Dict[str, Any]: Totals and rates
        """
        total_sessions = len(sessions)
        attended_sessions = 0
        total_minutes = 0
        expected_minutes = 0

        for session in sessions:
            expected_minutes += session.get('expected_minutes') or 0
            record = records_by_session.get(session['id'])
            if record and record['status'] in ATTENDED_STATUSES:
                attended_sessions += 1
                total_minutes += record.get('net_minutes') or 0

        return {
            'total_sessions': total_sessions,
            'attended_sessions': attended_sessions,
            'total_minutes': total_minutes,
            'total_hours': to_hours(total_minutes),
            'expected_minutes': expected_minutes,
            'attendance_rate': attendance_rate(attended_sessions, total_sessions),
            'time_rate': time_rate(total_minutes, expected_minutes)
        }

    def _course_sessions(self, course_id: int) -> List[Dict[str, Any]]:
        return self.db.execute_query(
            """SELECT id, session_name, session_type, start_ts, end_ts, expected_minutes
               FROM sessions WHERE course_id = ? ORDER BY start_ts ASC""",
            (course_id,)
        )

    def compute_course_stats(self, course_id: int, lms_user_id: str) -> Dict[str, Any]:
        """
        Statistics of one student in one course.

        Args:
            course_id (int): Internal course ID
            lms_user_id (str): Student identity

        Returns:
            Dict[str, Any]: ``stats`` totals and ``sessions`` rows, newest first
        """
        identity = self.roster.normalize_identity(lms_user_id)
        sessions = self._course_sessions(course_id)

        records = {
            record['session_id']: record
            for record in self.db.execute_query(
                """SELECT ar.* FROM attendance_records ar
                   JOIN sessions s ON s.id = ar.session_id
                   WHERE s.course_id = ? AND ar.lms_user_id = ?""",
                (course_id, identity)
            )
        }

        rows = []
        for session in reversed(sessions):
            record = records.get(session['id']) or {}
            rows.append({
                'session_id': session['id'],
                'session_name': session['session_name'],
                'session_type': session['session_type'],
                'start_ts': session['start_ts'],
                'end_ts': session['end_ts'],
                'expected_minutes': session['expected_minutes'],
                'status': record.get('status'),
                'present_from': record.get('present_from'),
                'present_to': record.get('present_to'),
                'net_minutes': record.get('net_minutes'),
                'note': record.get('note'),
                'excuse_filename': record.get('excuse_filename')
            })

        return {
            'stats': self.summarize(sessions, records),
            'sessions': rows
        }

    def compute_course_matrix(self, course_id: int) -> Dict[str, Any]:
        """
        Attendance matrix of a course: one row per roster student, one cell
        per session.

        Args:
            course_id (int): Internal course ID

        Returns:
            Dict[str, Any]: ``sessions`` and ``students`` with cells and stats
        """
        sessions = self._course_sessions(course_id)
        students = self.roster.get_course_roster(course_id)

        records = {}
        for record in self.db.execute_query(
                """SELECT ar.lms_user_id, ar.session_id, ar.status, ar.net_minutes
                   FROM attendance_records ar
                   JOIN sessions s ON s.id = ar.session_id
                   WHERE s.course_id = ?""",
                (course_id,)):
            records.setdefault(record['lms_user_id'], {})[record['session_id']] = record

        matrix_rows = []
        for student in students:
            student_records = records.get(student['lms_user_id'], {})
            cells = []
            for session in sessions:
                record = student_records.get(session['id'])
                cells.append({
                    'session_id': session['id'],
                    'status': record['status'] if record else NOT_RECORDED,
                    'net_minutes': record['net_minutes'] if record else None
                })

            matrix_rows.append({
                'user_id': student['id'],
                'lms_user_id': student['lms_user_id'],
                'name': student['name'],
                'email': student['email'],
                'session_attendance': cells,
                'stats': self.summarize(sessions, student_records)
            })

        self.logger.info(f"Course matrix computed for course {course_id}: "
                         f"{len(matrix_rows)} students, {len(sessions)} sessions")

        return {
            'sessions': sessions,
            'students': matrix_rows
        }

    def to_dataframe(self, matrix: Dict[str, Any]) -> pd.DataFrame:
        """
        Flatten a course matrix into a DataFrame for export.

        Args:
            matrix (Dict[str, Any]): Result of ``compute_course_matrix``

        Returns:
            pd.DataFrame: One row per student, one column per session plus totals
        """
        columns = [f"{session['session_name']} ({session['start_ts'][:10]})"
                   for session in matrix['sessions']]

        rows = []
        for student in matrix['students']:
            row = {'Name': student['name'], 'Email': student['email']}
            for column, cell in zip(columns, student['session_attendance']):
                row[column] = cell['status']
            row['Attendance rate (%)'] = student['stats']['attendance_rate']
            row['Hours'] = student['stats']['total_hours']
            rows.append(row)

        return pd.DataFrame(rows, columns=['Name', 'Email'] + columns
                            + ['Attendance rate (%)', 'Hours'])
