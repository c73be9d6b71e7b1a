"""
Report output: CSV tables, an XLSX workbook, a JSON summary and email notification.
"""
import base64
import html
import logging
import os
import re
from datetime import datetime, timezone
from email.mime.application import MIMEApplication
from email.mime.multipart import MIMEMultipart
from email.mime.text import MIMEText
from typing import Any, Dict, Iterable, List, Optional, Sequence, Tuple

from openpyxl import Workbook
from openpyxl.styles import Alignment, Font, PatternFill
from openpyxl.utils import get_column_letter

from .constants import (
    ACTION_RESULTS_COLUMNS,
    GROUP_FINDINGS_COLUMNS,
    INACTIVE_USERS_COLUMNS,
    LICENSE_REPORT_COLUMNS,
    STEP_ASSIGN_LICENSE,
    STEP_REMOVE_LICENSE,
    STEP_SUSPEND,
    STEP_TRANSFER_FILES,
)
from .models import ActionResult, ClassifiedUser, GroupFinding, LicenseAssignment, User
from .utils import write_csv, write_json

logger = logging.getLogger(__name__)

# Sheet styling
HEADER_FILL = PatternFill(start_color="1F4E79", end_color="1F4E79", fill_type="solid")
HEADER_FONT = Font(name="Calibri", size=11, bold=True, color="FFFFFF")
MAX_COLUMN_WIDTH = 60
MAX_SHEET_TITLE = 31  # Excel limit


def format_login(dt: Optional[datetime]) -> str:
    """Human-readable login time; None means the user never signed in."""
    if dt is None:
        return "Never"
    return dt.astimezone(timezone.utc).strftime('%Y-%m-%d %H:%M UTC')


def _yes_no(value: bool) -> str:
    return "Yes" if value else "No"


# =============================================================================
# Row builders
# =============================================================================

def inactive_user_row(user: ClassifiedUser, target_sku: str) -> Dict[str, Any]:
    base = user.base
    return dict(zip(INACTIVE_USERS_COLUMNS, [
        base.full_name,
        base.email,
        base.org_unit_path,
        format_login(user.effective_last_login),
        user.login_source.value if user.login_source else "N/A",
        format_login(base.creation_time) if base.creation_time else "N/A",
        _yes_no(base.suspended),
        user.license_summary,
        _yes_no(user.has_sku(target_sku)),
        _yes_no(user.is_excluded),
        user.exclusion.reason if user.exclusion else "",
    ]))


def action_row(result: ActionResult) -> Dict[str, Any]:
    user = result.user
    return dict(zip(ACTION_RESULTS_COLUMNS, [
        user.base.full_name,
        user.email,
        user.base.org_unit_path,
        format_login(user.effective_last_login),
        user.license_summary,
        result.state.value,
        result.step_message(STEP_SUSPEND),
        result.step_message(STEP_REMOVE_LICENSE),
        result.step_message(STEP_ASSIGN_LICENSE),
        result.step_message(STEP_TRANSFER_FILES),
        result.new_licenses,
        result.error or "",
    ]))


def group_row(finding: GroupFinding) -> Dict[str, Any]:
    return dict(zip(GROUP_FINDINGS_COLUMNS, [
        finding.name,
        finding.email,
        finding.description,
        finding.direct_members_count,
        _yes_no(finding.has_owner),
        _yes_no(finding.has_manager),
        finding.missing_roles,
        _yes_no(finding.admin_created),
    ]))


def license_rows(user: User, assignments: Sequence[LicenseAssignment]) -> List[Dict[str, Any]]:
    """One row per license; users without a license get a single 'No licenses' row."""
    status = "SUSPENDED" if user.suspended else "ACTIVE"
    if not assignments:
        return [dict(zip(LICENSE_REPORT_COLUMNS, [user.email, user.full_name, status, "No licenses", ""]))]
    return [
        dict(zip(LICENSE_REPORT_COLUMNS, [user.email, user.full_name, status, a.sku_name, a.sku_id]))
        for a in assignments
    ]


def summarize_groups(findings: Iterable[GroupFinding], total: int) -> Dict[str, int]:
    findings = list(findings)
    return {
        'groups_scanned': total,
        'groups_with_issues': len(findings),
        'no_owner': sum(1 for f in findings if not f.has_owner),
        'no_manager': sum(1 for f in findings if not f.has_manager),
        'missing_both': sum(1 for f in findings if not f.has_owner and not f.has_manager),
    }


# =============================================================================
# Report Sink
# =============================================================================

def _slug(name: str) -> str:
    return re.sub(r'[^a-z0-9]+', '_', name.lower()).strip('_')


class ReportSink:
    """
    Collect the tables of one run and write them to the output directory.

    Every table is written immediately as CSV; save_workbook() then puts all
    of them into one XLSX file, one sheet per table.
    """

    def __init__(self, output_dir: str, run_id: str):
        self.output_dir = output_dir.rstrip('/') or '.'
        self.run_id = run_id
        self.tables: List[Tuple[str, List[str], List[Dict[str, Any]]]] = []
        self.files: List[str] = []
        os.makedirs(self.output_dir, exist_ok=True)

    def _path(self, name: str, extension: str) -> str:
        return os.path.join(self.output_dir, f"{_slug(name)}_{self.run_id}.{extension}")

    def write_table(self, name: str, columns: List[str], rows: List[Dict[str, Any]]) -> str:
        path = self._path(name, 'csv')
        write_csv(rows, path, fieldnames=columns)
        self.tables.append((name, columns, rows))
        self.files.append(path)
        logger.info(f"Wrote {len(rows)} rows to table '{name}'")
        return path

    def write_summary(self, data: Dict[str, Any]) -> str:
        path = self._path('summary', 'json')
        write_json(data, path)
        self.files.append(path)
        return path

    def save_workbook(self, title: str) -> Optional[str]:
        """Write every collected table to one XLSX file. Returns None when there is nothing to write."""
        if not self.tables:
            return None

        wb = Workbook()
        wb.remove(wb.active)
        used_titles = set()

        for name, columns, rows in self.tables:
            sheet_title = re.sub(r'[\[\]:*?/\\]', ' ', name)[:MAX_SHEET_TITLE]
            while sheet_title in used_titles:
                sheet_title = sheet_title[:MAX_SHEET_TITLE - 1] + "_"
            used_titles.add(sheet_title)
            ws = wb.create_sheet(title=sheet_title)
            _fill_sheet(ws, columns, rows)

        path = self._path(title, 'xlsx')
        wb.save(path)
        self.files.append(path)
        print(f"Wrote {path}")
        return path


def _fill_sheet(ws, columns: List[str], rows: List[Dict[str, Any]]) -> None:
    for col, header in enumerate(columns, 1):
        cell = ws.cell(row=1, column=col, value=header)
        cell.font = HEADER_FONT
        cell.fill = HEADER_FILL
        cell.alignment = Alignment(horizontal='center')

    for row_num, row in enumerate(rows, 2):
        for col, header in enumerate(columns, 1):
            ws.cell(row=row_num, column=col, value=row.get(header, ""))

    ws.freeze_panes = 'A2'

    for col, header in enumerate(columns, 1):
        longest = max([len(str(header))] + [len(str(r.get(header, ""))) for r in rows])
        ws.column_dimensions[get_column_letter(col)].width = min(longest + 2, MAX_COLUMN_WIDTH)


# =============================================================================
# Email Notification
# =============================================================================

def render_summary_text(title: str, summary: Dict[str, Any], files: Sequence[str] = ()) -> str:
    lines = [title, "=" * len(title), ""]
    for key, value in summary.items():
        lines.append(f"{key}: {value}")
    if files:
        lines.extend(["", "Report files:"])
        lines.extend(f"  {os.path.basename(path)}" for path in files)
    return "\n".join(lines)


def render_summary_html(title: str, summary: Dict[str, Any], files: Sequence[str] = ()) -> str:
    rows = "".join(
        f"<tr><td>{html.escape(str(k))}</td><td><b>{html.escape(str(v))}</b></td></tr>"
        for k, v in summary.items()
    )
    body = f"<h2>{html.escape(title)}</h2><table cellpadding='4'>{rows}</table>"
    if files:
        items = "".join(f"<li>{html.escape(os.path.basename(p))}</li>" for p in files)
        body += f"<p>Report files:</p><ul>{items}</ul>"
    return f"<html><body>{body}</body></html>"


class EmailNotifier:
    """
    Send a run summary through the Gmail API.

    Failures are logged and reported through the return value; a run never
    fails because the notification could not be sent.
    """

    def __init__(self, client, sender: Optional[str] = None):
        self.client = client
        self.sender = sender

    def build_message(self, recipients: Sequence[str], subject: str, summary: Dict[str, Any],
                      attachments: Sequence[str] = ()) -> str:
        message = MIMEMultipart('mixed')
        message['To'] = ", ".join(recipients)
        message['Subject'] = subject
        if self.sender:
            message['From'] = self.sender

        body = MIMEMultipart('alternative')
        body.attach(MIMEText(render_summary_text(subject, summary, attachments), 'plain'))
        body.attach(MIMEText(render_summary_html(subject, summary, attachments), 'html'))
        message.attach(body)

        for path in attachments:
            with open(path, 'rb') as f:
                part = MIMEApplication(f.read(), Name=os.path.basename(path))
            part['Content-Disposition'] = f'attachment; filename="{os.path.basename(path)}"'
            message.attach(part)

        return base64.urlsafe_b64encode(message.as_bytes()).decode()

    def notify(self, recipients: Sequence[str], subject: str, summary: Dict[str, Any],
               attachments: Sequence[str] = ()) -> bool:
        if not recipients:
            logger.warning("No notification recipients configured, skipping email")
            return False
        try:
            raw = self.build_message(recipients, subject, summary, attachments)
            self.client.send_message(raw, sender=self.sender)
        except Exception as e:
            logger.error(f"Failed to send notification: {e}")
            return False
        logger.info(f"Notification sent to {len(recipients)} recipient(s)")
        return True
