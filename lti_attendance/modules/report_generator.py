"""
Report Generator Module - LTI Attendance Tool

This module renders attendance data into documents: session attendance
lists as Excel or CSV, an attendance certificate as PDF and the BAföG
Formblatt F, filled into the official PDF form template. Documents are
built in memory and returned as bytes together with a download filename.

Features:
- Excel session export with status colouring and summary
- CSV session export (UTF-8 with BOM)
- Attendance certificate PDF
- Formblatt F form filling with 45-minute teaching hours
"""

import pandas as pd
import csv
import io
import os
import re
from datetime import datetime, date
from typing import Dict, List, Any, Optional
import logging

from openpyxl.styles import Font, PatternFill, Alignment
from reportlab.lib import colors
from reportlab.lib.pagesizes import A4
from reportlab.platypus import SimpleDocTemplate, Table, TableStyle, Paragraph, Spacer
from reportlab.lib.styles import getSampleStyleSheet, ParagraphStyle
from pypdf import PdfWriter

from lti_attendance.modules.statistics_aggregator import (
    ATTENDED_STATUSES, to_hours, to_teaching_hours
)
from lti_attendance.modules.time_utils import parse_timestamp


STATUS_LABELS = {
    'present': 'Anwesend',
    'late': 'Verspätet',
    'partial': 'Teilweise',
    'absent': 'Abwesend',
    'excused': 'Entschuldigt',
    None: 'Nicht erfasst'
}

STATUS_FILLS = {
    'present': 'FFD1FAE5',
    'late': 'FFFEF3C7',
    'partial': 'FFFCE7F3',
    'absent': 'FFFEE2E2',
    'excused': 'FFE0E7FF'
}

EXPORT_COLUMNS = ['Name', 'Email', 'Status', 'Von', 'Bis', 'Minuten',
                  'Pause (Min)', 'Netto (Min)', 'Stunden', 'Notizen']


def safe_filename_part(value: str) -> str:
    return re.sub(r'[\s/\\]+', '_', (value or '').strip())


def format_clock(value: Optional[str]) -> str:
    parsed = parse_timestamp(value)
    return parsed.strftime('%H:%M') if parsed else '-'


def format_german_date(value: Any, year_digits: int = 4) -> str:
    if not value:
        return ''
    if isinstance(value, str):
        value = parse_timestamp(value) if 'T' in value or ' ' in value else date.fromisoformat(value)
    return value.strftime('%d.%m.%Y' if year_digits == 4 else '%d.%m.%y')


class ReportGenerator:
    """
    Document generation for attendance data.
    Supports Excel, CSV and PDF outputs built in memory.
    """

    # Formblatt F text field numbers
    FORMBLATT_FIELDS = {
        'family_name': '2',
        'given_name': '4',
        'birth_date': '5',
        'street': '6',
        'house_number': '7',
        'postal_code': '9',
        'city': '10',
        'institution': '11',
        'period_from': '12',
        'period_to': '13',
        'course_name': '14',
        'hours_required': '15',
        'hours_attended': '16',
        'remote_period_from': '49',
        'remote_period_to': '50',
        'remote_course_name': '51',
        'remote_hours_required': '52',
        'remote_hours_attended': '53',
        'assignments_total': '54',
        'assignments_completed': '55'
    }

    def __init__(self, database_manager, attendance_manager, statistics_aggregator,
                 institution_line: str = '', certificate_footer: str = ''):
        """
        Initialize the report generator.

        Args:
            database_manager: Database manager instance
            attendance_manager: Ledger used for session listings
            statistics_aggregator: Aggregator used for student figures
            institution_line (str): Institution printed into Formblatt F
            certificate_footer (str): Footer line of certificates
        """
        self.db = database_manager
        self.attendance = attendance_manager
        self.statistics = statistics_aggregator
        self.institution_line = institution_line
        self.certificate_footer = certificate_footer
        self.logger = logging.getLogger(__name__)

    def _get_session(self, session_id: int) -> Optional[Dict[str, Any]]:
        return self.db.execute_query(
            """SELECT s.*, c.course_name, c.lms_course_id
               FROM sessions s JOIN courses c ON c.id = s.course_id
               WHERE s.id = ?""",
            (session_id,),
            fetch_all=False
        )

    def _session_export_rows(self, session_id: int) -> List[Dict[str, Any]]:
        rows = []
        for entry in self.attendance.get_session_attendance(session_id):
            net_minutes = entry['net_minutes'] or 0
            rows.append({
                'Name': entry['name'],
                'Email': entry['email'] or '-',
                'Status': STATUS_LABELS.get(entry['status'], entry['status']),
                'Von': format_clock(entry['present_from']),
                'Bis': format_clock(entry['present_to']),
                'Minuten': entry['minutes'] or '-',
                'Pause (Min)': entry['break_minutes'] or 0,
                'Netto (Min)': net_minutes or '-',
                'Stunden': f"{net_minutes / 60:.2f}" if net_minutes else '-',
                'Notizen': entry['note'] or '',
                '_status': entry['status'],
                '_net_minutes': net_minutes
            })
        return rows

    def _export_filename(self, session: Dict[str, Any], extension: str) -> str:
        return (f"Anwesenheit-{safe_filename_part(session['session_name'])}-"
                f"{session['start_ts'][:10]}.{extension}")

    @staticmethod
    def _summary(rows: List[Dict[str, Any]]) -> Dict[str, Any]:
        total_minutes = sum(row['_net_minutes'] for row in rows)
        return {
            'total_students': len(rows),
            'attended': sum(1 for row in rows if row['_status'] in ATTENDED_STATUSES),
            'total_hours': to_hours(total_minutes)
        }

    def export_session_excel(self, session_id: int) -> Dict[str, Any]:
        """
        Export the attendance list of a session as an Excel workbook.

        Args:
            session_id (int): Session ID

        Returns:
            Dict[str, Any]: ``content`` bytes, ``filename`` and ``mimetype``
        """
        try:
            session = self._get_session(session_id)
            if not session:
                return {
                    'success': False,
                    'error': 'Session not found',
                    'error_type': 'session_not_found'
                }

            rows = self._session_export_rows(session_id)
            summary = self._summary(rows)
            df = pd.DataFrame(rows, columns=EXPORT_COLUMNS)

            buffer = io.BytesIO()
            with pd.ExcelWriter(buffer, engine='openpyxl') as writer:
                df.to_excel(writer, sheet_name='Anwesenheit', index=False, startrow=3)
                worksheet = writer.sheets['Anwesenheit']

                session_date = format_german_date(session['start_ts'])
                worksheet['A1'] = 'Anwesenheitsliste'
                worksheet['A1'].font = Font(bold=True, size=16)
                worksheet['A2'] = f"{session['session_name']} - {session['course_name']} - {session_date}"
                worksheet.merge_cells('A1:J1')
                worksheet.merge_cells('A2:J2')
                worksheet['A1'].alignment = Alignment(horizontal='center')
                worksheet['A2'].alignment = Alignment(horizontal='center')

                header_fill = PatternFill('solid', fgColor='FF1E293B')
                for cell in worksheet[4]:
                    cell.font = Font(bold=True, color='FFFFFFFF')
                    cell.fill = header_fill

                for offset, row in enumerate(rows):
                    fill_color = STATUS_FILLS.get(row['_status'])
                    if fill_color:
                        for cell in worksheet[5 + offset]:
                            cell.fill = PatternFill('solid', fgColor=fill_color)

                widths = [25, 30, 15, 12, 12, 12, 12, 12, 10, 40]
                for column_cells, width in zip(worksheet.iter_cols(min_row=4, max_row=4), widths):
                    worksheet.column_dimensions[column_cells[0].column_letter].width = width

                summary_row = 5 + len(rows) + 1
                worksheet.cell(row=summary_row, column=1, value='Zusammenfassung:').font = Font(bold=True)
                worksheet.cell(row=summary_row + 1, column=1, value='Gesamt Studenten:')
                worksheet.cell(row=summary_row + 1, column=2, value=summary['total_students'])
                worksheet.cell(row=summary_row + 2, column=1, value='Anwesend:')
                worksheet.cell(row=summary_row + 2, column=2, value=summary['attended'])
                worksheet.cell(row=summary_row + 3, column=1, value='Gesamtstunden:')
                worksheet.cell(row=summary_row + 3, column=2, value=f"{summary['total_hours']:.2f}h")

            self.logger.info(f"Excel export generated for session {session_id} ({len(rows)} rows)")

            return {
                'success': True,
                'content': buffer.getvalue(),
                'filename': self._export_filename(session, 'xlsx'),
                'mimetype': 'application/vnd.openxmlformats-officedocument.spreadsheetml.sheet',
                'summary': summary
            }

        except Exception as e:
            self.logger.error(f"Excel export failed for session {session_id}: {str(e)}")
            return {
                'success': False,
                'error': 'Failed to export attendance',
                'error_type': 'system_error'
            }

    def export_session_csv(self, session_id: int) -> Dict[str, Any]:
        """
        Export the attendance list of a session as CSV with a byte order mark.

        Args:
            session_id (int): Session ID

        Returns:
            Dict[str, Any]: ``content`` bytes, ``filename`` and ``mimetype``
        """
        try:
            session = self._get_session(session_id)
            if not session:
                return {
                    'success': False,
                    'error': 'Session not found',
                    'error_type': 'session_not_found'
                }

            rows = self._session_export_rows(session_id)
            df = pd.DataFrame(rows, columns=['Name', 'Email', 'Status', 'Von', 'Bis',
                                             'Stunden', 'Notizen'])
            csv_text = df.to_csv(index=False, quoting=csv.QUOTE_ALL, lineterminator='\n')

            self.logger.info(f"CSV export generated for session {session_id} ({len(rows)} rows)")

            return {
                'success': True,
                'content': ('\ufeff' + csv_text).encode('utf-8'),
                'filename': self._export_filename(session, 'csv'),
                'mimetype': 'text/csv; charset=utf-8',
                'summary': self._summary(rows)
            }

        except Exception as e:
            self.logger.error(f"CSV export failed for session {session_id}: {str(e)}")
            return {
                'success': False,
                'error': 'Failed to export attendance',
                'error_type': 'system_error'
            }

    def generate_attendance_certificate(self, course: Dict[str, Any],
                                        student: Dict[str, Any]) -> Dict[str, Any]:
        """
        Generate an attendance certificate for a student in a course.

        Args:
            course (Dict[str, Any]): Course row
            student (Dict[str, Any]): User row

        Returns:
            Dict[str, Any]: PDF ``content`` bytes and ``filename``
        """
        try:
            figures = self.statistics.compute_course_stats(course['id'], student['lms_user_id'])
            stats = figures['stats']

            buffer = io.BytesIO()
            doc = SimpleDocTemplate(
                buffer, pagesize=A4,
                title='Anwesenheitsbescheinigung',
                author=self.certificate_footer,
                subject=f"Bescheinigung für {student['name']}"
            )
            elements = []
            styles = getSampleStyleSheet()

            title_style = ParagraphStyle(
                'CertificateTitle',
                parent=styles['Heading1'],
                fontSize=20,
                spaceAfter=6,
                alignment=1  # Center alignment
            )
            elements.append(Paragraph('Anwesenheitsbescheinigung', title_style))
            elements.append(Paragraph('für BAföG-Antrag', ParagraphStyle(
                'CertificateSubtitle', parent=styles['Normal'], alignment=1)))
            elements.append(Spacer(1, 24))

            info_data = [
                ['Teilnehmer:', student['name']],
                ['Kurs:', course.get('course_name') or ''],
                ['Gesamtstunden:', f"{stats['total_hours']:.2f}h"],
                ['Besuchte Sessions:', f"{stats['attended_sessions']} von {stats['total_sessions']}"],
                ['Anwesenheitsquote:', f"{stats['attendance_rate']}%"]
            ]
            info_table = Table(info_data, colWidths=[140, 330])
            info_table.setStyle(TableStyle([
                ('FONTNAME', (0, 0), (0, -1), 'Helvetica-Bold'),
                ('FONTSIZE', (0, 0), (-1, -1), 11),
                ('ALIGN', (0, 0), (-1, -1), 'LEFT'),
                ('BOTTOMPADDING', (0, 0), (-1, -1), 6)
            ]))
            elements.append(info_table)
            elements.append(Spacer(1, 20))

            elements.append(Paragraph('Detaillierte Anwesenheitsliste', styles['Heading2']))
            table_data = [['Datum', 'Session', 'Status', 'Stunden']]
            for row in reversed(figures['sessions']):
                table_data.append([
                    format_german_date(row['start_ts']),
                    row['session_name'][:40],
                    STATUS_LABELS.get(row['status'], row['status']),
                    f"{row['net_minutes'] / 60:.2f}h" if row['net_minutes'] else '-'
                ])

            data_table = Table(table_data, colWidths=[80, 220, 90, 80], repeatRows=1)
            data_table.setStyle(TableStyle([
                ('BACKGROUND', (0, 0), (-1, 0), colors.HexColor('#1e293b')),
                ('TEXTCOLOR', (0, 0), (-1, 0), colors.whitesmoke),
                ('FONTNAME', (0, 0), (-1, 0), 'Helvetica-Bold'),
                ('FONTSIZE', (0, 0), (-1, -1), 9),
                ('ALIGN', (0, 0), (-1, -1), 'LEFT'),
                ('BOTTOMPADDING', (0, 0), (-1, -1), 6),
                ('GRID', (0, 0), (-1, -1), 0.5, colors.grey)
            ]))
            elements.append(data_table)
            elements.append(Spacer(1, 30))

            elements.append(Paragraph(
                f"Diese Bescheinigung wurde automatisch erstellt am: "
                f"{datetime.now().strftime('%d.%m.%Y %H:%M')}", styles['Normal']))
            if self.certificate_footer:
                elements.append(Paragraph(self.certificate_footer, styles['Italic']))

            doc.build(elements)

            self.logger.info(f"Attendance certificate generated for {student['lms_user_id']} "
                             f"in course {course['id']}")

            return {
                'success': True,
                'content': buffer.getvalue(),
                'filename': f"BAfoeG-Bescheinigung-{safe_filename_part(student['name'])}.pdf",
                'mimetype': 'application/pdf'
            }

        except Exception as e:
            self.logger.error(f"Certificate generation failed: {str(e)}")
            return {
                'success': False,
                'error': 'Failed to generate certificate',
                'error_type': 'system_error'
            }

    def build_formblatt_values(self, course: Dict[str, Any], student: Dict[str, Any],
                               assignments: Dict[str, int] = None,
                               today: date = None) -> Dict[str, Any]:
        """
        Compute the Formblatt F field values of a student.

        Args:
            course (Dict[str, Any]): Course row
            student (Dict[str, Any]): User row including profile fields
            assignments (Dict[str, int]): ``total`` and ``completed`` graded assignments
            today (date): End of the reporting period

        Returns:
            Dict[str, Any]: Field values keyed by form field number, or None
            when the course has no sessions
        """
        figures = self.statistics.compute_course_stats(course['id'], student['lms_user_id'])
        if not figures['sessions']:
            return None

        stats = figures['stats']
        assignments = assignments or {'total': 0, 'completed': 0}
        first_start = figures['sessions'][-1]['start_ts']
        today = today or date.today()

        name_parts = (student.get('name') or '').split()
        family_name = student.get('family_name') or (name_parts[-1] if name_parts else '')
        given_name = student.get('given_name') or ' '.join(name_parts[:-1])

        period_from = format_german_date(first_start, year_digits=2)
        period_to = today.strftime('%d.%m.%y')
        hours_required = str(to_teaching_hours(stats['expected_minutes']))
        hours_attended = str(to_teaching_hours(stats['total_minutes']))

        values = {
            'family_name': family_name,
            'given_name': given_name,
            'birth_date': format_german_date(student.get('birth_date'), year_digits=2),
            'street': student.get('street') or '',
            'house_number': student.get('house_number') or '',
            'postal_code': student.get('postal_code') or '',
            'city': student.get('city') or '',
            'institution': self.institution_line,
            'period_from': period_from,
            'period_to': period_to,
            'course_name': course.get('course_name') or '',
            'hours_required': hours_required,
            'hours_attended': hours_attended,
            'remote_period_from': period_from,
            'remote_period_to': period_to,
            'remote_course_name': course.get('course_name') or '',
            'remote_hours_required': hours_required,
            'remote_hours_attended': hours_attended,
            'assignments_total': str(assignments.get('total', 0)),
            'assignments_completed': str(assignments.get('completed', 0))
        }

        return {self.FORMBLATT_FIELDS[key]: value for key, value in values.items()}

    def generate_formblatt_f(self, course: Dict[str, Any], student: Dict[str, Any],
                             template_path: str, assignments: Dict[str, int] = None) -> Dict[str, Any]:
        """
        Fill the Formblatt F template for a student.

        Args:
            course (Dict[str, Any]): Course row
            student (Dict[str, Any]): User row including profile fields
            template_path (str): Path of the form template PDF
            assignments (Dict[str, int]): Graded assignment counts from the LMS

        Returns:
            Dict[str, Any]: PDF ``content`` bytes and ``filename``
        """
        if not template_path or not os.path.exists(str(template_path)):
            self.logger.error(f"Formblatt F template not found: {template_path}")
            return {
                'success': False,
                'error': 'Formblatt F template not found. Place formblatt_f.pdf in the assets directory',
                'error_type': 'template_missing'
            }

        try:
            field_values = self.build_formblatt_values(course, student, assignments)
            if field_values is None:
                return {
                    'success': False,
                    'error': 'No sessions found for this course',
                    'error_type': 'not_found'
                }

            writer = PdfWriter(clone_from=str(template_path))
            available_fields = set((writer.get_fields() or {}).keys())
            writer.set_need_appearances_writer(True)

            for page in writer.pages:
                writer.update_page_form_field_values(page, field_values, auto_regenerate=False)

            fields_set = len(available_fields & set(field_values))
            if fields_set == 0:
                self.logger.warning("Formblatt F template has none of the expected text fields")

            buffer = io.BytesIO()
            writer.write(buffer)

            self.logger.info(f"Formblatt F generated for {student['lms_user_id']}: "
                             f"{fields_set} of {len(field_values)} fields filled")

            return {
                'success': True,
                'content': buffer.getvalue(),
                'filename': (f"BAfoeG-Formblatt-F-{safe_filename_part(student['name'])}-"
                             f"{date.today().isoformat()}.pdf"),
                'mimetype': 'application/pdf',
                'fields_set': fields_set
            }

        except Exception as e:
            self.logger.error(f"Formblatt F generation failed: {str(e)}")
            return {
                'success': False,
                'error': 'Failed to generate Formblatt F',
                'error_type': 'system_error'
            }
