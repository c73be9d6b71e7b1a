#!/usr/bin/env python3
"""
Workspace Audit - Groups Without Owners or Managers

Checks every group for at least one OWNER and one MANAGER. Large domains do
not finish within one invocation, so work is split into time-boxed batches
with progress saved to a checkpoint file. Re-run (e.g. from cron) until the
final report is written; the checkpoint is then cleared for the next cycle.

Usage:
    python3 groups_audit.py
    python3 groups_audit.py --batch-size 200 --time-budget 240
    python3 groups_audit.py --status
    python3 groups_audit.py --reset
    python3 groups_audit.py --print-cron
"""
import argparse
import logging
import os
import sys
import time
from typing import Any, Callable, Dict, List, Optional

from googleapiclient.errors import HttpError

from gwsaudit.checkpoint import BatchCheckpointManager, JsonFileCheckpointStore
from gwsaudit.config import AuditConfig, ConfigError, build_audit_config, generate_sample_config, load_config
from gwsaudit.constants import GROUP_FINDINGS_COLUMNS, GROUP_PAGE_DELAY, ROLE_MANAGER, ROLE_OWNER
from gwsaudit.models import GroupFinding
from gwsaudit.report import EmailNotifier, ReportSink, group_row, summarize_groups
from gwsaudit.utils import generate_run_id, get_timestamp, print_summary_table, setup_logging
from gwsaudit.workspace import WorkspaceClient

logger = logging.getLogger(__name__)


# =============================================================================
# Group Checks
# =============================================================================

def list_all_groups(client, page_delay: float = GROUP_PAGE_DELAY,
                    sleep: Callable[[float], None] = time.sleep) -> List[Dict[str, Any]]:
    """
    Page through every group and keep the fields the audit needs.

    A provider error stops pagination; the groups collected so far are returned.
    """
    groups: List[Dict[str, Any]] = []
    page_token = None

    while True:
        try:
            response = client.list_groups(page_token=page_token)
        except HttpError as e:
            logger.warning(f"Error listing groups, returning partial results: {e}")
            break

        for group in response.get('groups', []):
            groups.append({
                'email': group.get('email', ''),
                'name': group.get('name', ''),
                'description': group.get('description') or 'N/A',
                'directMembersCount': int(group.get('directMembersCount') or 0),
                'adminCreated': bool(group.get('adminCreated', False)),
            })

        page_token = response.get('nextPageToken')
        if not page_token:
            break
        sleep(page_delay)

    logger.info(f"Found {len(groups)} groups")
    return groups


def group_has_role(client, group_email: str, role: str) -> bool:
    """True when at least one member of the group holds the role. Errors count as no."""
    page_token = None
    try:
        while True:
            response = client.list_members(group_email, roles=role, page_token=page_token)
            if any(m.get('role') == role for m in response.get('members', [])):
                return True
            page_token = response.get('nextPageToken')
            if not page_token:
                return False
    except HttpError as e:
        logger.warning(f"Could not list {role} members of {group_email}: {e}")
        return False


def check_group(client, group: Dict[str, Any]) -> Optional[GroupFinding]:
    """Return a finding when the group lacks an OWNER or a MANAGER, else None."""
    has_owner = group_has_role(client, group['email'], ROLE_OWNER)
    has_manager = group_has_role(client, group['email'], ROLE_MANAGER)
    if has_owner and has_manager:
        return None

    finding = GroupFinding(
        name=group.get('name', ''),
        email=group['email'],
        description=group.get('description') or 'N/A',
        direct_members_count=int(group.get('directMembersCount') or 0),
        admin_created=bool(group.get('adminCreated', False)),
        has_owner=has_owner,
        has_manager=has_manager,
    )
    logger.debug(f"Group {finding.email} is missing {finding.missing_roles}")
    return finding


def make_group_processor(client, delay: float,
                         sleep: Callable[[float], None] = time.sleep) -> Callable[[Dict[str, Any]], Optional[Dict]]:
    """Per-item callback for the batch manager: check one group, then pause."""
    def process(group: Dict[str, Any]) -> Optional[Dict]:
        finding = check_group(client, group)
        sleep(delay)
        return finding.to_dict() if finding else None
    return process


# =============================================================================
# Final Report
# =============================================================================

def make_report_writer(client, config: AuditConfig) -> Callable[[List[Dict], int], None]:
    """Callback run once every group has been checked."""
    def on_complete(results: List[Dict], total: int) -> None:
        findings = [GroupFinding.from_dict(r) for r in results]
        summary: Dict[str, Any] = {
            'run_id': generate_run_id(),
            'timestamp': get_timestamp(),
            **summarize_groups(findings, total),
        }

        sink = ReportSink(config.output, summary['run_id'])
        sink.write_table("Groups Missing Roles", GROUP_FINDINGS_COLUMNS, [group_row(f) for f in findings])
        sink.write_summary(summary)
        workbook = sink.save_workbook("Groups Audit Report")

        print_summary_table("Groups Audit", summary)

        if config.notify:
            notifier = EmailNotifier(client, sender=config.sender or config.admin_email)
            subject = config.subject or f"Groups audit: {len(findings)} of {total} groups missing an owner or manager"
            notifier.notify(list(config.recipients), subject, summary, [workbook] if workbook else [])
    return on_complete


def cron_line(config_path: Optional[str] = None, interval_minutes: int = 10) -> str:
    """Suggested crontab entry that re-invokes the audit until each cycle finishes."""
    script = os.path.abspath(__file__)
    workdir = os.path.dirname(script)
    config_arg = f" --config {os.path.abspath(config_path)}" if config_path else ""
    return (f"*/{interval_minutes} * * * * cd {workdir} && "
            f"{sys.executable} {script}{config_arg} >> groups_audit_cron.log 2>&1")


# =============================================================================
# Main
# =============================================================================

def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description='Workspace Audit - Groups Without Owners or Managers')
    parser.add_argument('--config', help='Path to YAML config file')
    parser.add_argument('--generate-config', action='store_true', help='Print a sample config file and exit')
    parser.add_argument('--admin-email', help='Super admin to impersonate (domain-wide delegation)')
    parser.add_argument('--credentials-file', help='Service account key file (default: application default credentials)')
    parser.add_argument('--customer', help='Customer ID (default: my_customer)')
    parser.add_argument('--output', help='Output directory for reports (default: .)')
    parser.add_argument('--log-level', help='Logging level (default: INFO)')
    parser.add_argument('--batch-size', type=int, help='Groups per invocation (default: 500)')
    parser.add_argument('--time-budget', type=float, help='Seconds per invocation before saving progress (default: 300)')
    parser.add_argument('--checkpoint-file', help='Checkpoint path (default: ./gws_groups_checkpoint.json)')
    parser.add_argument('--notify', action='store_true', default=None, help='Email the final report')
    parser.add_argument('--recipients', help='Comma-separated notification recipients')
    parser.add_argument('--sender', help='Mailbox the notification is sent from')
    parser.add_argument('--status', action='store_true', help='Show saved progress and exit')
    parser.add_argument('--reset', action='store_true', help='Clear saved progress and exit')
    parser.add_argument('--print-cron', action='store_true', help='Print a suggested crontab line and exit')
    return parser


def main():
    parser = build_parser()
    args = parser.parse_args()

    if args.generate_config:
        print(generate_sample_config())
        sys.exit(0)

    if args.print_cron:
        print(cron_line(args.config))
        sys.exit(0)

    try:
        config = build_audit_config(load_config(args))
    except (ConfigError, FileNotFoundError) as e:
        setup_logging(getattr(args, 'log_level', None) or 'INFO')
        logger.error(f"Configuration error: {e}")
        sys.exit(1)

    setup_logging(config.log_level, output_dir=config.output)

    manager = BatchCheckpointManager(
        JsonFileCheckpointStore(config.checkpoint_file),
        batch_size=config.batch_size,
        time_budget=config.time_budget,
    )

    if args.status:
        print_summary_table("Groups Audit Progress", manager.status())
        return

    if args.reset:
        manager.reset()
        print("Groups audit progress cleared.")
        return

    try:
        client = WorkspaceClient.from_config(config)

        outcome = manager.run_batch(
            fetch=lambda: list_all_groups(client),
            process=make_group_processor(client, config.group_delay),
            on_complete=make_report_writer(client, config),
        )

        if not outcome.complete:
            print(f"Checked groups {outcome.start + 1}-{outcome.next_index} of {outcome.total} "
                  f"({outcome.results_count} flagged so far). Run again to continue.")

    except Exception as e:
        logger.error(f"Groups audit failed: {e}", exc_info=True)
        sys.exit(1)


if __name__ == '__main__':
    main()
