"""
Roster Manager Module - LTI Attendance Tool

This module maintains the roster of known users per course. Entries are keyed
by the external identity string supplied by the LMS and are only ever
upserted, never deleted. The roster is populated from LTI launches, from
enrollment syncs against the LMS REST API and from CSV imports.

Features:
- Identity normalization (SIS prefix stripping)
- User upsert and course enrollment
- Enrollment sync from LMS enrollment payloads
- CSV roster import
- Exact name/email resolution for self check-in
- Student profile data for regulatory forms
"""

from datetime import date, datetime
from typing import Dict, List, Any, Optional
import logging
import re
import csv
import io

from lti_attendance.modules.database_manager import normalize_text


class RosterManager:
    """
    Roster management for the attendance tool.
    Handles identity normalization, roster sync and roster lookups.
    """

    ROLE_STUDENT = 'student'
    ROLE_INSTRUCTOR = 'instructor'

    PROFILE_FIELDS = ['family_name', 'given_name', 'birth_date', 'street',
                      'house_number', 'postal_code', 'city']

    def __init__(self, database_manager, sis_prefix: str = 'SK_',
                 placeholder_prefix: str = 'checkin_'):
        """
        Initialize the roster manager with database connection.

        Args:
            database_manager: Database manager instance
            sis_prefix (str): Prefix stripped from SIS identities
            placeholder_prefix (str): Prefix of synthetic check-in identities
        """
        self.db = database_manager
        self.sis_prefix = sis_prefix or ''
        self.placeholder_prefix = placeholder_prefix
        self.logger = logging.getLogger(__name__)

        self.logger.info("Roster manager initialized")

    def normalize_identity(self, raw_identity: Any) -> str:
        """
        Normalize an external identity, e.g. ``SK_lerner01`` -> ``lerner01``.

        Args:
            raw_identity: Identity as delivered by the LMS

        Returns:
            str: Normalized identity (empty string if none)
        """
        identity = str(raw_identity or '').strip()
        if self.sis_prefix and identity.startswith(self.sis_prefix):
            identity = identity[len(self.sis_prefix):]
        return identity

    def is_placeholder(self, lms_user_id: str) -> bool:
        return bool(lms_user_id) and lms_user_id.startswith(self.placeholder_prefix)

    def _genuine_student_clause(self, alias: str = 'u') -> tuple:
        """SQL restriction to genuine (non-placeholder) students."""
        clause = (f"{alias}.role = ? AND substr({alias}.lms_user_id, 1, ?) <> ?")
        params = (self.ROLE_STUDENT, len(self.placeholder_prefix), self.placeholder_prefix)
        return clause, params

    def upsert_user(self, lms_user_id: str, name: str, email: Optional[str] = None,
                    role: str = 'student') -> Dict[str, Any]:
        """
        Create or update a roster user keyed by external identity.

        Args:
            lms_user_id (str): External identity (normalized here)
            name (str): Display name
            email (str): Email address
            role (str): student or instructor

        Returns:
            Dict[str, Any]: Upsert result with the internal user id
        """
        try:
            identity = self.normalize_identity(lms_user_id)
            if not identity:
                return {
                    'success': False,
                    'error': 'User identity is required',
                    'error_type': 'validation_error'
                }

            if role not in (self.ROLE_STUDENT, self.ROLE_INSTRUCTOR):
                role = self.ROLE_STUDENT

            display_name = (name or '').strip() or identity

            self.db.execute_update(
                """INSERT INTO users (lms_user_id, name, email, role, created_at, updated_at)
                   VALUES (?, ?, ?, ?, CURRENT_TIMESTAMP, CURRENT_TIMESTAMP)
                   ON CONFLICT(lms_user_id) DO UPDATE SET
                       name = excluded.name,
                       email = COALESCE(excluded.email, users.email),
                       role = excluded.role,
                       updated_at = CURRENT_TIMESTAMP""",
                (identity, display_name, (email or '').strip() or None, role)
            )

            user = self.get_user(identity)
            return {
                'success': True,
                'user_id': user['id'],
                'lms_user_id': identity
            }

        except Exception as e:
            self.logger.error(f"User upsert failed for {lms_user_id}: {str(e)}")
            return {
                'success': False,
                'error': 'Failed to save user',
                'error_type': 'persistence_error'
            }

    def enroll(self, course_id: int, user_id: int) -> bool:
        """
        Enroll a user in a course (idempotent).

        Args:
            course_id (int): Internal course ID
            user_id (int): Internal user ID

        Returns:
            bool: Success status
        """
        try:
            self.db.execute_update(
                """INSERT INTO course_enrollments (course_id, user_id)
                   VALUES (?, ?)
                   ON CONFLICT(course_id, user_id) DO NOTHING""",
                (course_id, user_id)
            )
            return True
        except Exception as e:
            self.logger.error(f"Enrollment failed for user {user_id} in course {course_id}: {str(e)}")
            return False

    def sync_enrollments(self, course_id: int, enrollments: List[Dict[str, Any]],
                         email_fallback: bool = True) -> Dict[str, Any]:
        """
        Upsert every student of an LMS enrollment listing into the roster.

        Each enrollment carries a ``user`` object with ``login_id``,
        ``sis_user_id``, ``integration_id``, ``id``, ``name`` and ``email``.
        The identity prefers the login id, then SIS id, integration id and
        finally the numeric LMS id. Without an email the login id is stored
        as email unless ``email_fallback`` is off.

        Args:
            course_id (int): Internal course ID
            enrollments (List[Dict[str, Any]]): Enrollment objects
            email_fallback (bool): Use the login id when no email is given

        Returns:
            Dict[str, Any]: Sync result
        """
        result = {
            'success': True,
            'synced': 0,
            'skipped': 0,
            'errors': []
        }

        for enrollment in enrollments or []:
            user = enrollment.get('user') or {}
            raw_identity = (user.get('login_id') or user.get('sis_user_id')
                            or user.get('integration_id') or user.get('id'))

            if raw_identity is None or not user.get('name'):
                result['skipped'] += 1
                continue

            upsert = self.upsert_user(
                str(raw_identity),
                user.get('name'),
                user.get('email') or (user.get('login_id') if email_fallback else None),
                self.ROLE_STUDENT
            )

            if upsert['success'] and self.enroll(course_id, upsert['user_id']):
                result['synced'] += 1
            else:
                result['errors'].append({
                    'identity': str(raw_identity),
                    'error': upsert.get('error', 'Enrollment failed')
                })

        if result['errors']:
            result['success'] = False

        self.logger.info(f"Enrollment sync for course {course_id}: {result['synced']} synced, "
                         f"{result['skipped']} skipped, {len(result['errors'])} failed")
        return result

    def import_roster_csv(self, course_id: int, csv_content: str) -> Dict[str, Any]:
        """
        Import students from CSV content.

        Expected columns: ``lms_user_id``, ``name``; optional ``email``.

        Args:
            course_id (int): Internal course ID
            csv_content (str): CSV content as string

        Returns:
            Dict[str, Any]: Import result
        """
        try:
            csv_reader = csv.DictReader(io.StringIO(csv_content.lstrip('\ufeff')))
            required_columns = ['lms_user_id', 'name']

            enrollments = []
            for row_num, row in enumerate(csv_reader, start=2):  # Row 1 is the header
                missing_columns = [col for col in required_columns
                                   if not (row.get(col) or '').strip()]
                if missing_columns:
                    return {
                        'success': False,
                        'error': f"Row {row_num}: Missing required columns: {', '.join(missing_columns)}",
                        'error_type': 'validation_error'
                    }

                enrollments.append({
                    'user': {
                        'login_id': row['lms_user_id'].strip(),
                        'name': row['name'].strip(),
                        'email': (row.get('email') or '').strip() or None
                    }
                })

            if not enrollments:
                return {
                    'success': False,
                    'error': 'No valid student data found in CSV',
                    'error_type': 'validation_error'
                }

            result = self.sync_enrollments(course_id, enrollments, email_fallback=False)
            result['import_method'] = 'csv'
            return result

        except csv.Error as e:
            self.logger.error(f"CSV import failed: {str(e)}")
            return {
                'success': False,
                'error': f'CSV import failed: {str(e)}',
                'error_type': 'validation_error'
            }

    def get_user(self, lms_user_id: str) -> Optional[Dict[str, Any]]:
        """
        Get a user by external identity.

        Args:
            lms_user_id (str): External identity (normalized here)

        Returns:
            Dict[str, Any]: User row or None
        """
        return self.db.execute_query(
            "SELECT * FROM users WHERE lms_user_id = ?",
            (self.normalize_identity(lms_user_id),),
            fetch_all=False
        )

    def get_user_by_id(self, user_id: int) -> Optional[Dict[str, Any]]:
        return self.db.execute_query(
            "SELECT * FROM users WHERE id = ?",
            (user_id,),
            fetch_all=False
        )

    def course_has_enrollments(self, course_id: int) -> bool:
        row = self.db.execute_query(
            "SELECT COUNT(*) AS count FROM course_enrollments WHERE course_id = ?",
            (course_id,),
            fetch_all=False
        )
        return bool(row and row['count'])

    def get_course_roster(self, course_id: Optional[int] = None) -> List[Dict[str, Any]]:
        """
        Get the genuine students of a course, ordered by name.

        Courses without any enrollment yet fall back to every known student.

        Args:
            course_id (int): Internal course ID

        Returns:
            List[Dict[str, Any]]: Roster rows
        """
        clause, params = self._genuine_student_clause('u')

        if course_id is not None and self.course_has_enrollments(course_id):
            return self.db.execute_query(
                f"""SELECT u.id, u.lms_user_id, u.name, u.email
                    FROM users u
                    JOIN course_enrollments ce ON ce.user_id = u.id
                    WHERE ce.course_id = ? AND {clause}
                    ORDER BY u.name COLLATE NOCASE""",
                (course_id,) + params
            )

        return self.db.execute_query(
            f"""SELECT u.id, u.lms_user_id, u.name, u.email
                FROM users u
                WHERE {clause}
                ORDER BY u.name COLLATE NOCASE""",
            params
        )

    def _resolve(self, column: str, value: str, course_id: Optional[int]) -> List[Dict[str, Any]]:
        clause, params = self._genuine_student_clause('u')
        lookup = normalize_text(value)

        if course_id is not None and self.course_has_enrollments(course_id):
            return self.db.execute_query(
                f"""SELECT u.id, u.lms_user_id, u.name, u.email
                    FROM users u
                    JOIN course_enrollments ce ON ce.user_id = u.id
                    WHERE ce.course_id = ? AND normalize_text(u.{column}) = ? AND {clause}""",
                (course_id, lookup) + params
            )

        return self.db.execute_query(
            f"""SELECT u.id, u.lms_user_id, u.name, u.email
                FROM users u
                WHERE normalize_text(u.{column}) = ? AND {clause}""",
            (lookup,) + params
        )

    def resolve_by_name(self, display_name: str, course_id: Optional[int] = None) -> List[Dict[str, Any]]:
        """
        Exact match of a display name, ignoring case and surrounding whitespace.

        Args:
            display_name (str): Name as typed by the student
            course_id (int): Restrict to this course's roster if it has one

        Returns:
            List[Dict[str, Any]]: Matching genuine students
        """
        if not display_name or not display_name.strip():
            return []
        return self._resolve('name', display_name, course_id)

    def resolve_by_email(self, email: str, course_id: Optional[int] = None) -> List[Dict[str, Any]]:
        """Exact match of an email address, ignoring case and surrounding whitespace."""
        if not email or not email.strip():
            return []
        return self._resolve('email', email, course_id)

    def get_profile(self, lms_user_id: str) -> Optional[Dict[str, Any]]:
        """
        Get the personal data a student keeps for regulatory forms.

        Args:
            lms_user_id (str): External identity

        Returns:
            Dict[str, Any]: Profile or None if the user is unknown
        """
        return self.db.execute_query(
            f"""SELECT lms_user_id, name, email, {', '.join(self.PROFILE_FIELDS)}
                FROM users WHERE lms_user_id = ?""",
            (self.normalize_identity(lms_user_id),),
            fetch_all=False
        )

    def update_profile(self, lms_user_id: str, profile_data: Dict[str, Any]) -> Dict[str, Any]:
        """
        Update the personal data of a student.

        Args:
            lms_user_id (str): External identity
            profile_data (Dict[str, Any]): Profile fields

        Returns:
            Dict[str, Any]: Update result
        """
        errors = self._validate_profile(profile_data)
        if errors:
            return {
                'success': False,
                'errors': errors,
                'error': '; '.join(errors),
                'error_type': 'validation_error'
            }

        try:
            values = [(profile_data.get(field) or None) for field in self.PROFILE_FIELDS]
            assignments = ', '.join(f"{field} = ?" for field in self.PROFILE_FIELDS)

            affected_rows = self.db.execute_update(
                f"""UPDATE users SET {assignments}, updated_at = CURRENT_TIMESTAMP
                    WHERE lms_user_id = ?""",
                tuple(values) + (self.normalize_identity(lms_user_id),)
            )

            if affected_rows == 0:
                return {
                    'success': False,
                    'error': 'User not found',
                    'error_type': 'not_found'
                }

            self.logger.info(f"Profile updated for {lms_user_id}")
            return {
                'success': True,
                'profile': self.get_profile(lms_user_id),
                'message': 'Profile saved'
            }

        except Exception as e:
            self.logger.error(f"Profile update failed for {lms_user_id}: {str(e)}")
            return {
                'success': False,
                'error': 'Failed to save profile',
                'error_type': 'persistence_error'
            }

    def _validate_profile(self, profile_data: Dict[str, Any]) -> List[str]:
        errors = []

        for field in ('family_name', 'given_name', 'street', 'city'):
            value = profile_data.get(field)
            if value and len(value) > 100:
                errors.append(f"{field} too long (max. 100 characters)")

        birth_date = profile_data.get('birth_date')
        if birth_date:
            try:
                parsed = date.fromisoformat(str(birth_date))
                if parsed.year < 1900 or parsed > datetime.now().date():
                    errors.append('Birth date is not plausible')
            except ValueError:
                errors.append('Invalid birth date')

        postal_code = profile_data.get('postal_code')
        if postal_code and not re.match(r'^\d{5}$', str(postal_code)):
            errors.append('Postal code must have 5 digits')

        return errors
