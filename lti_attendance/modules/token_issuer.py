"""
Check-In Token Issuer Module - LTI Attendance Tool

This module issues the short-lived tokens behind the self check-in QR codes.
A token binds one session; at most one token per session is active at a time.
Tokens are 256 bits of randomness rendered as hex and are never derived from
session data.

Features:
- Token issue with deactivation of the previous token
- Lazy deactivation of expired tokens on status queries
- Explicit revocation
- Check-in URL and QR PNG data URL rendering
"""

import qrcode
import io
import base64
import secrets
from datetime import datetime, timedelta
import logging
from typing import Optional, Dict, Any, Callable

from PIL import Image

from lti_attendance.modules.time_utils import parse_timestamp, format_timestamp


class CheckinTokenIssuer:
    """
    Issues, reports and revokes check-in tokens for sessions.
    """

    QR_IMAGE_WIDTH = 400

    def __init__(self, database_manager, public_url: str, token_bytes: int = 32,
                 default_valid_minutes: int = 15, qr_settings: Dict[str, Any] = None,
                 clock: Callable[[], datetime] = datetime.now):
        """
        Initialize the token issuer.

        Args:
            database_manager: Database manager instance
            public_url (str): Externally reachable base URL of the tool
            token_bytes (int): Random bytes per token
            default_valid_minutes (int): Lifetime used when none is given
            qr_settings (Dict[str, Any]): box_size, border, fill_color, back_color
            clock (Callable): Returns the current local time
        """
        self.db = database_manager
        self.public_url = public_url.rstrip('/')
        self.token_bytes = token_bytes
        self.default_valid_minutes = default_valid_minutes
        self.clock = clock
        self.logger = logging.getLogger(__name__)

        self.qr_settings = {
            'error_correction': qrcode.constants.ERROR_CORRECT_M,
            'box_size': 10,
            'border': 2,
            'fill_color': '#1e293b',
            'back_color': '#ffffff'
        }
        if qr_settings:
            self.qr_settings.update(qr_settings)

    def build_checkin_url(self, token: str) -> str:
        return f"{self.public_url}/checkin/{token}"

    def render_qr_data_url(self, data: str) -> str:
        """
        Render data as a PNG QR code and return it as a data URL.

        Args:
            data (str): Content to encode

        Returns:
            str: ``data:image/png;base64,...``
        """
        qr = qrcode.QRCode(
            version=None,
            error_correction=self.qr_settings['error_correction'],
            box_size=self.qr_settings['box_size'],
            border=self.qr_settings['border']
        )
        qr.add_data(data)
        qr.make(fit=True)

        img = qr.make_image(
            fill_color=self.qr_settings['fill_color'],
            back_color=self.qr_settings['back_color']
        ).convert('RGB')
        img = img.resize((self.QR_IMAGE_WIDTH, self.QR_IMAGE_WIDTH), Image.NEAREST)

        buffer = io.BytesIO()
        img.save(buffer, format='PNG')
        img_base64 = base64.b64encode(buffer.getvalue()).decode()
        return f"data:image/png;base64,{img_base64}"

    def _describe(self, token_row: Dict[str, Any]) -> Dict[str, Any]:
        checkin_url = self.build_checkin_url(token_row['token'])
        return {
            'token': token_row['token'],
            'expires_at': token_row['expires_at'],
            'checkin_url': checkin_url,
            'qr_code_data_url': self.render_qr_data_url(checkin_url)
        }

    def issue(self, session_id: int, valid_minutes: Any = None,
              created_by: str = None) -> Dict[str, Any]:
        """
        Issue a new token for a session, deactivating any active one.

        Args:
            session_id (int): Session ID
            valid_minutes: Lifetime in minutes (positive integer)
            created_by (str): Identity of the issuing instructor

        Returns:
            Dict[str, Any]: Token, expiry, check-in URL and QR data URL
        """
        if valid_minutes is None or valid_minutes == '':
            valid_minutes = self.default_valid_minutes
        if isinstance(valid_minutes, float) and valid_minutes.is_integer():
            valid_minutes = int(valid_minutes)
        if isinstance(valid_minutes, bool) or not isinstance(valid_minutes, int):
            valid_minutes = 0
        if valid_minutes <= 0:
            return {
                'success': False,
                'error': 'Validity must be a positive number of minutes',
                'error_type': 'validation_error'
            }

        try:
            session = self.db.execute_query(
                "SELECT id, session_name FROM sessions WHERE id = ?",
                (session_id,),
                fetch_all=False
            )
            if not session:
                return {
                    'success': False,
                    'error': 'Session not found',
                    'error_type': 'session_not_found'
                }

            token = secrets.token_hex(self.token_bytes)
            expires_at = format_timestamp(self.clock() + timedelta(minutes=valid_minutes))

            with self.db.transaction() as conn:
                conn.execute(
                    "UPDATE checkin_tokens SET is_active = 0 WHERE session_id = ? AND is_active = 1",
                    (session_id,)
                )
                conn.execute(
                    """INSERT INTO checkin_tokens (session_id, token, expires_at, is_active, created_by)
                       VALUES (?, ?, ?, 1, ?)""",
                    (session_id, token, expires_at, created_by)
                )

            self.logger.info(f"Check-in token issued for session {session_id}, "
                             f"valid {valid_minutes} min (by {created_by})")

            result = {
                'success': True,
                'session_id': session_id,
                'valid_minutes': valid_minutes
            }
            result.update(self._describe({'token': token, 'expires_at': expires_at}))
            return result

        except Exception as e:
            self.logger.error(f"Token issue failed for session {session_id}: {str(e)}")
            return {
                'success': False,
                'error': 'Failed to generate check-in code',
                'error_type': 'persistence_error'
            }

    def status(self, session_id: int) -> Dict[str, Any]:
        """
        Report the active token of a session.

        An expired active token is deactivated on the way.

        Args:
            session_id (int): Session ID

        Returns:
            Dict[str, Any]: ``active`` flag plus token details when active
        """
        token_row = self.db.execute_query(
            """SELECT * FROM checkin_tokens
               WHERE session_id = ? AND is_active = 1
               ORDER BY created_at DESC, id DESC LIMIT 1""",
            (session_id,),
            fetch_all=False
        )

        if not token_row:
            return {'success': True, 'active': False}

        if self.is_expired(token_row):
            self.deactivate_token(token_row['id'])
            return {'success': True, 'active': False, 'expired': True}

        result = {'success': True, 'active': True}
        result.update(self._describe(token_row))
        return result

    def revoke(self, session_id: int) -> Dict[str, Any]:
        """
        Deactivate all tokens of a session. Idempotent.

        Args:
            session_id (int): Session ID

        Returns:
            Dict[str, Any]: Number of tokens deactivated
        """
        try:
            deactivated = self.db.execute_update(
                "UPDATE checkin_tokens SET is_active = 0 WHERE session_id = ? AND is_active = 1",
                (session_id,)
            )
            self.logger.info(f"Check-in deactivated for session {session_id} ({deactivated} token(s))")
            return {
                'success': True,
                'deactivated': deactivated,
                'message': 'Check-in deactivated'
            }

        except Exception as e:
            self.logger.error(f"Token revocation failed for session {session_id}: {str(e)}")
            return {
                'success': False,
                'error': 'Failed to deactivate check-in',
                'error_type': 'persistence_error'
            }

    def lookup(self, token: str) -> Optional[Dict[str, Any]]:
        """
        Find an active token joined with its session and course.

        Expiry is not checked here.

        Args:
            token (str): Token string

        Returns:
            Dict[str, Any]: Token row with session fields, or None
        """
        if not token:
            return None
        return self.db.execute_query(
            """SELECT t.id AS token_id, t.token, t.expires_at, t.session_id,
                      s.session_name, s.start_ts, s.end_ts, s.course_id,
                      c.lms_course_id, c.course_name
               FROM checkin_tokens t
               JOIN sessions s ON s.id = t.session_id
               JOIN courses c ON c.id = s.course_id
               WHERE t.token = ? AND t.is_active = 1""",
            (token,),
            fetch_all=False
        )

    def is_expired(self, token_row: Dict[str, Any]) -> bool:
        return self.clock() >= parse_timestamp(token_row['expires_at'])

    def deactivate_token(self, token_id: int):
        self.db.execute_update(
            "UPDATE checkin_tokens SET is_active = 0 WHERE id = ?",
            (token_id,)
        )
        self.logger.info(f"Expired check-in token {token_id} deactivated")
