#!/usr/bin/env python3
"""
Workspace Audit - All Users License Report

Lists every user with their status (ACTIVE/SUSPENDED) and every license they
hold. Licenses come from one paginated scan of the License Manager API rather
than a lookup per user.

Usage:
    python3 license_report.py
    python3 license_report.py --product-id Google-Apps --output ./reports
    python3 license_report.py --find-sku
"""
import argparse
import logging
import sys
from collections import Counter
from typing import Any, Dict, List

from gwsaudit.config import AuditConfig, ConfigError, build_audit_config, generate_sample_config, load_config
from gwsaudit.constants import LICENSE_REPORT_COLUMNS, SKU_FINDER_COLUMNS
from gwsaudit.directory import list_all_users
from gwsaudit.licenses import build_license_index, find_skus, get_customer_id
from gwsaudit.report import EmailNotifier, ReportSink, license_rows
from gwsaudit.utils import ProgressTracker, generate_run_id, get_timestamp, print_summary_table, setup_logging
from gwsaudit.workspace import WorkspaceClient

logger = logging.getLogger(__name__)


def run_license_report(client, config: AuditConfig, sink: ReportSink) -> Dict[str, Any]:
    customer_id = get_customer_id(client)
    license_index = build_license_index(client, config.product_id, customer_id)
    users = list_all_users(client)

    rows: List[Dict[str, Any]] = []
    sku_counts: Counter = Counter()

    with ProgressTracker("License report", total=len(users), flagged_label="Unlicensed") as tracker:
        for user in users:
            assignments = license_index.get(user.key, [])
            rows.extend(license_rows(user, assignments))
            sku_counts.update(a.sku_name for a in assignments)
            tracker.advance(flagged=not assignments)

    sink.write_table("All Users License Report", LICENSE_REPORT_COLUMNS, rows)

    summary: Dict[str, Any] = {
        'run_id': sink.run_id,
        'timestamp': get_timestamp(),
        'product_id': config.product_id,
        'total_users': len(users),
        'active': sum(1 for u in users if not u.suspended),
        'suspended': sum(1 for u in users if u.suspended),
        'licensed': sum(1 for u in users if license_index.get(u.key)),
        'unlicensed': sum(1 for u in users if not license_index.get(u.key)),
    }
    for sku_name, count in sorted(sku_counts.items()):
        summary[f"license: {sku_name}"] = count
    return summary


def sku_finder_row(entry: Dict[str, Any]) -> Dict[str, Any]:
    return {
        'SKU ID': entry['sku_id'],
        'SKU Name': entry['sku_name'],
        'Role': entry['role'],
        'Status': entry['status'],
        'Users': entry['users'],
        'Sample Users': ", ".join(entry['sample_users']),
    }


def run_sku_finder(client, config: AuditConfig, sink: ReportSink) -> List[Dict[str, Any]]:
    """Write and print the SKU ids of the tenant, for filling in the licenses section of the config."""
    customer_id = get_customer_id(client)
    license_index = build_license_index(client, config.product_id, customer_id)
    rows = [sku_finder_row(entry) for entry in find_skus(client, config, customer_id, license_index)]
    sink.write_table("SKU Finder", SKU_FINDER_COLUMNS, rows)

    print(f"\nSKUs for product {config.product_id}:")
    for row in rows:
        print(f"  {row['SKU ID']:<12} {row['SKU Name']:<34} {row['Status']:<18} {row['Users']!s:<6} {row['Role']}")
    return rows


def main():
    parser = argparse.ArgumentParser(description='Workspace Audit - All Users License Report')
    parser.add_argument('--config', help='Path to YAML config file')
    parser.add_argument('--generate-config', action='store_true', help='Print a sample config file and exit')
    parser.add_argument('--admin-email', help='Super admin to impersonate (domain-wide delegation)')
    parser.add_argument('--credentials-file', help='Service account key file (default: application default credentials)')
    parser.add_argument('--customer', help='Customer ID (default: my_customer)')
    parser.add_argument('--product-id', help='License product ID (default: Google-Apps)')
    parser.add_argument('--output', help='Output directory for reports (default: .)')
    parser.add_argument('--log-level', help='Logging level (default: INFO)')
    parser.add_argument('--notify', action='store_true', default=None, help='Email the summary when done')
    parser.add_argument('--recipients', help='Comma-separated notification recipients')
    parser.add_argument('--sender', help='Mailbox the notification is sent from')
    parser.add_argument('--find-sku', action='store_true',
                        help='List the SKU ids in use and check the configured and Cloud Identity SKUs, then exit')
    args = parser.parse_args()

    if args.generate_config:
        print(generate_sample_config())
        sys.exit(0)

    try:
        config = build_audit_config(load_config(args), check_skus=False)
    except (ConfigError, FileNotFoundError) as e:
        setup_logging(getattr(args, 'log_level', None) or 'INFO')
        logger.error(f"Configuration error: {e}")
        sys.exit(1)

    setup_logging(config.log_level, output_dir=config.output)

    try:
        client = WorkspaceClient.from_config(config)
        sink = ReportSink(config.output, generate_run_id())

        if args.find_sku:
            run_sku_finder(client, config, sink)
            return

        summary = run_license_report(client, config, sink)
        sink.write_summary(summary)
        workbook = sink.save_workbook("License Report")

        if config.notify:
            notifier = EmailNotifier(client, sender=config.sender or config.admin_email)
            subject = config.subject or f"License report: {summary['total_users']} users"
            notifier.notify(list(config.recipients), subject, summary, [workbook] if workbook else [])

        print_summary_table("All Users License Report", summary)

    except Exception as e:
        logger.error(f"License report failed: {e}", exc_info=True)
        sys.exit(1)


if __name__ == '__main__':
    main()
