#!/usr/bin/env python3
"""
Workspace Audit - Inactive Licensed Users

Finds users who have not signed in for N days, reports them, and optionally
suspends, archives or re-licenses those holding the target SKU.

Last login is resolved from the Reports API login events (180-day retention)
with the Directory lastLoginTime as fallback.

Usage:
    python3 inactive_users.py --admin-email admin@example.com
    python3 inactive_users.py --mode suspend_relicense --max-actions 25
    python3 inactive_users.py --mode archive --execute --config ./gws-audit.yaml
    python3 inactive_users.py --diagnose jane.doe@example.com
    python3 inactive_users.py --check-access --admin-email admin@example.com
    python3 inactive_users.py --generate-config > gws-audit.yaml
"""
import argparse
import logging
import sys
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, List, Optional

from googleapiclient.errors import HttpError

from gwsaudit.actions import ActionExecutor
from gwsaudit.activity import get_cutoff, get_query_window, resolve_login_activity
from gwsaudit.config import (
    AuditConfig,
    ConfigError,
    build_audit_config,
    generate_sample_config,
    load_config,
)
from gwsaudit.constants import (
    ACCESS_CHECK_COLUMNS,
    ACTION_MODES,
    ACTION_RESULTS_COLUMNS,
    INACTIVE_USERS_COLUMNS,
    MODE_REPORT,
    SECONDS_PER_HOUR,
)
from gwsaudit.diagnostics import STATUS_FAILED, check_api_access
from gwsaudit.directory import enumerate_inactive_users, list_all_users, select_action_candidates
from gwsaudit.licenses import build_license_index, format_license_summary, get_customer_id
from gwsaudit.models import ActionState, User, parse_timestamp
from gwsaudit.report import EmailNotifier, ReportSink, action_row, format_login, inactive_user_row
from gwsaudit.utils import generate_run_id, get_timestamp, print_summary_table, setup_logging, to_rfc3339
from gwsaudit.workspace import WorkspaceClient

logger = logging.getLogger(__name__)

# Directory and Reports logins further apart than this are worth a look
DIAGNOSE_DRIFT_HOURS = 24


# =============================================================================
# Audit Pipeline
# =============================================================================

def run_audit(client, config: AuditConfig, sink: ReportSink,
              now: Optional[datetime] = None) -> Dict[str, Any]:
    """
    Run the whole inactive-user pipeline once and return the run summary.

    Cutoff -> license index + login activity -> classification and exclusions
    -> actions -> report tables.
    """
    now = now or datetime.now(timezone.utc)
    cutoff = get_cutoff(config.inactivity_days, now)
    logger.info(f"Inactivity cutoff: {to_rfc3339(cutoff)} ({config.inactivity_days} days)")

    customer_id = get_customer_id(client)
    license_index = build_license_index(client, config.product_id, customer_id)
    login_activity = resolve_login_activity(client, cutoff, now, config.retention_days)

    users = list_all_users(client)
    inactive = enumerate_inactive_users(client, config, license_index, login_activity, cutoff, users=users)
    candidates = select_action_candidates(inactive, config)
    logger.info(f"{len(candidates)} inactive users hold the target license and are eligible for '{config.mode}'")

    results = ActionExecutor(client, config).execute(candidates)

    sink.write_table("All Inactive Users", INACTIVE_USERS_COLUMNS,
                     [inactive_user_row(u, config.target_sku) for u in inactive])
    if config.mode != MODE_REPORT:
        sink.write_table("Actions", ACTION_RESULTS_COLUMNS, [action_row(r) for r in results])

    summary = {
        'run_id': sink.run_id,
        'timestamp': get_timestamp(),
        'mode': config.mode,
        'dry_run': config.dry_run,
        'inactivity_days': config.inactivity_days,
        'cutoff': to_rfc3339(cutoff),
        'users_scanned': len(users),
        'inactive_users': len(inactive),
        'excluded': sum(1 for u in inactive if u.is_excluded),
        'never_logged_in': sum(1 for u in inactive if u.effective_last_login is None),
        'with_target_license': sum(1 for u in inactive if u.has_sku(config.target_sku)),
        'candidates': len(candidates),
        'processed': len(results),
        'succeeded': sum(1 for r in results if r.state == ActionState.SUCCEEDED),
        'simulated': sum(1 for r in results if r.state == ActionState.DRY_RUN_SIMULATED),
        'failed': sum(1 for r in results if r.state == ActionState.FAILED),
    }
    if config.mode != MODE_REPORT:
        summary['left_for_next_run'] = max(0, len(candidates) - config.max_actions)
    return summary


def finish_run(client, config: AuditConfig, sink: ReportSink, summary: Dict[str, Any],
               title: str, subject: str) -> None:
    """Write summary and workbook, then send the notification when enabled."""
    sink.write_summary(summary)
    workbook = sink.save_workbook(title)

    if config.notify:
        attachments: List[str] = [workbook] if workbook else []
        notifier = EmailNotifier(client, sender=config.sender or config.admin_email)
        notifier.notify(list(config.recipients), config.subject or subject, summary, attachments)


# =============================================================================
# Diagnostics
# =============================================================================

def diagnose_user(client, email: str, config: AuditConfig,
                  now: Optional[datetime] = None) -> Dict[str, Any]:
    """
    Compare the Directory lastLoginTime with the latest Reports login for one user.

    Useful when a user is reported inactive but says they sign in every day.
    """
    now = now or datetime.now(timezone.utc)
    cutoff = get_cutoff(config.inactivity_days, now)
    start, end = get_query_window(cutoff, now, config.retention_days)

    user = User.from_api(client.get_user(email))

    reports_login = None
    page_token = None
    while True:
        response = client.list_login_events(
            start_time=to_rfc3339(start),
            end_time=to_rfc3339(end),
            page_token=page_token,
            user_key=email,
        )
        for activity in response.get('items', []):
            login_time = parse_timestamp((activity.get('id') or {}).get('time'))
            if login_time and (reports_login is None or login_time > reports_login):
                reports_login = login_time
        page_token = response.get('nextPageToken')
        if not page_token:
            break

    result: Dict[str, Any] = {
        'email': user.email,
        'org_unit_path': user.org_unit_path,
        'suspended': user.suspended,
        'directory_last_login': format_login(user.last_login_time),
        'reports_last_login': format_login(reports_login),
        'query_window': f"{to_rfc3339(start)} .. {to_rfc3339(end)}",
    }

    logger.info(f"Directory lastLoginTime for {email}: {result['directory_last_login']}")
    logger.info(f"Latest Reports login for {email}: {result['reports_last_login']}")

    if user.last_login_time and reports_login:
        drift = abs(user.last_login_time - reports_login)
        result['difference_hours'] = round(drift.total_seconds() / SECONDS_PER_HOUR, 1)
        if drift > timedelta(hours=DIAGNOSE_DRIFT_HOURS):
            logger.warning(f"Login sources differ by {result['difference_hours']} hours for {email}")
        else:
            logger.info("Login sources agree")
    elif not reports_login:
        logger.info("No login events in the Reports window; the directory field decides")

    # Licenses, to explain why a user is or is not an action candidate
    customer_id = get_customer_id(client)
    assignments = build_license_index(client, config.product_id, customer_id).get(user.email.lower(), [])
    result['licenses'] = format_license_summary(assignments)
    result['license_sku_ids'] = ", ".join(a.sku_id for a in assignments)
    result['has_target_license'] = any(a.sku_id == config.target_sku for a in assignments)
    if assignments:
        logger.info(f"{email} holds {len(assignments)} {config.product_id} license(s): {result['licenses']}")
    else:
        logger.warning(f"No {config.product_id} licenses found for {email}")

    return result


def check_access(client, config: AuditConfig, sink: ReportSink) -> bool:
    """Run the API access self-check, write it as a table and return True when every API answered."""
    results = check_api_access(client, config.product_id)
    sink.write_table("API Access", ACCESS_CHECK_COLUMNS, results)
    for row in results:
        print(f"{row['Status']:<7} {row['API']:<22} {row['Detail']}")
    return not any(row['Status'] == STATUS_FAILED for row in results)


# =============================================================================
# Main
# =============================================================================

def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description='Workspace Audit - Inactive Licensed Users')
    parser.add_argument('--config', help='Path to YAML config file')
    parser.add_argument('--generate-config', action='store_true', help='Print a sample config file and exit')
    parser.add_argument('--admin-email', help='Super admin to impersonate (domain-wide delegation)')
    parser.add_argument('--credentials-file', help='Service account key file (default: application default credentials)')
    parser.add_argument('--customer', help='Customer ID (default: my_customer)')
    parser.add_argument('--output', help='Output directory for reports (default: .)')
    parser.add_argument('--log-level', help='Logging level (default: INFO)')
    parser.add_argument('--days', dest='inactivity_days', type=int,
                        help='Users with no login for this many days are inactive (default: 180)')
    parser.add_argument('--mode', choices=ACTION_MODES, help='Action to take (default: report)')
    parser.add_argument('--max-actions', type=int, help='Safety cap on users acted on per run (default: 50)')
    parser.add_argument('--product-id', help='License product ID (default: Google-Apps)')
    parser.add_argument('--target-sku', help='SKU audited and removed (default: 1010020020)')
    parser.add_argument('--replacement-sku', help='SKU assigned in suspend_relicense mode')
    parser.add_argument('--archive-sku', help='SKU assigned in archive mode')
    parser.add_argument('--assign-replacement', action='store_true', default=None,
                        help='Assign the replacement SKU after removing the target SKU')
    parser.add_argument('--transfer-files', action='store_true', default=None,
                        help="Transfer Drive files to the user's manager")
    parser.add_argument('--excluded-ous', help='Comma-separated OU path prefixes to never act on')
    parser.add_argument('--include-admins', dest='exclude_admins', action='store_false', default=None,
                        help='Allow actions on admins and delegated admins')
    parser.add_argument('--dry-run', dest='dry_run', action='store_true', default=None,
                        help='Simulate actions (default)')
    parser.add_argument('--execute', dest='dry_run', action='store_false',
                        help='Actually perform actions')
    parser.set_defaults(dry_run=None)
    parser.add_argument('--notify', action='store_true', default=None, help='Email the summary when done')
    parser.add_argument('--recipients', help='Comma-separated notification recipients')
    parser.add_argument('--sender', help='Mailbox the notification is sent from')
    parser.add_argument('--diagnose', metavar='EMAIL',
                        help='Compare login sources and list licenses for one user, then exit')
    parser.add_argument('--check-access', action='store_true',
                        help='Check that every Admin API used is reachable with the current credentials, then exit')
    return parser


def main():
    parser = build_parser()
    args = parser.parse_args()

    if args.generate_config:
        print(generate_sample_config())
        sys.exit(0)

    try:
        merged = load_config(args)
        config = build_audit_config(merged, check_skus=not args.check_access)
    except (ConfigError, FileNotFoundError) as e:
        setup_logging(getattr(args, 'log_level', None) or 'INFO')
        logger.error(f"Configuration error: {e}")
        sys.exit(1)

    setup_logging(config.log_level, output_dir=config.output)

    try:
        client = WorkspaceClient.from_config(config)

        if args.diagnose:
            result = diagnose_user(client, args.diagnose, config)
            print_summary_table(f"Login diagnostics: {args.diagnose}", result)
            return

        if args.check_access:
            sink = ReportSink(config.output, generate_run_id())
            if not check_access(client, config, sink):
                logger.error("Some Admin APIs are not reachable; check the delegated scopes")
                sys.exit(1)
            return

        if config.mode != MODE_REPORT:
            prefix = "DRY RUN - " if config.dry_run else ""
            logger.info(f"{prefix}Mode '{config.mode}', at most {config.max_actions} users")

        sink = ReportSink(config.output, generate_run_id())
        summary = run_audit(client, config, sink)
        finish_run(
            client, config, sink, summary,
            title="Inactive Users Report",
            subject=f"Inactive users audit: {summary['inactive_users']} inactive ({config.mode})",
        )

        print_summary_table("Inactive Users Audit", summary)

    except HttpError as e:
        logger.error(f"Workspace API request failed: {e}", exc_info=True)
        sys.exit(1)
    except Exception as e:
        logger.error(f"Audit failed: {e}", exc_info=True)
        sys.exit(1)


if __name__ == '__main__':
    main()
