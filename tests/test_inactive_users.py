"""
Tests for inactive_users.py (pipeline orchestration, diagnostics, CLI).
"""
import csv
import json
import os
import sys
from dataclasses import replace
from datetime import datetime, timedelta, timezone
from unittest.mock import patch

import pytest

# Add parent directory to path for imports
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))
sys.path.insert(0, os.path.dirname(os.path.abspath(__file__)))

import inactive_users
from fakes import FakeWorkspaceClient, api_user, license_item, login_event
from gwsaudit.config import AuditConfig
from gwsaudit.report import ReportSink

NOW = datetime(2026, 10, 1, 12, 0, 0, tzinfo=timezone.utc)
TARGET = '1010020020'


@pytest.fixture
def client():
    """Five users covering the reference scenarios."""
    users = [
        # A: recent Reports login, stale directory field
        api_user('a@example.com', last_login=NOW - timedelta(days=300)),
        # B: no Reports entry, directory login 400 days ago
        api_user('b@example.com', last_login=NOW - timedelta(days=400)),
        # C: never logged in anywhere
        api_user('c@example.com'),
        # D: delegated admin in an excluded OU
        api_user('d@example.com', is_delegated_admin=True, org_unit='/Legal'),
        # E: active by directory field only
        api_user('e@example.com', last_login=NOW - timedelta(days=3)),
    ]
    licenses = [license_item(u['primaryEmail'], TARGET) for u in users]
    events = [login_event('a@example.com', NOW - timedelta(days=5))]
    return FakeWorkspaceClient(users=users, licenses=licenses, login_events=events)


@pytest.fixture
def config(tmp_path):
    return AuditConfig(output=str(tmp_path), excluded_ou_paths=('/Legal',), action_delay=0)


def read_csv(path):
    with open(path) as f:
        return list(csv.DictReader(f))


class TestRunAudit:
    """Tests for run_audit."""

    def test_report_mode(self, client, config, tmp_path):
        sink = ReportSink(str(tmp_path), 'run1')

        summary = inactive_users.run_audit(client, config, sink, now=NOW)

        rows = read_csv(tmp_path / 'all_inactive_users_run1.csv')
        by_email = {r['Email']: r for r in rows}
        assert set(by_email) == {'b@example.com', 'c@example.com', 'd@example.com'}
        assert by_email['c@example.com']['Last Login Time'] == 'Never'
        assert by_email['d@example.com']['Exclusion Reason'] == 'Admin user'
        assert summary['users_scanned'] == 5
        assert summary['inactive_users'] == 3
        assert summary['excluded'] == 1
        assert summary['never_logged_in'] == 2
        assert summary['candidates'] == 2
        assert summary['processed'] == 0
        assert client.mutation_count == 0
        assert not (tmp_path / 'actions_run1.csv').exists()

    def test_suspend_dry_run(self, client, config, tmp_path):
        sink = ReportSink(str(tmp_path), 'run1')

        summary = inactive_users.run_audit(client, replace(config, mode='suspend'), sink, now=NOW)

        assert client.mutation_count == 0
        assert summary['simulated'] == 2
        actions = read_csv(tmp_path / 'actions_run1.csv')
        assert sorted(r['Email'] for r in actions) == ['b@example.com', 'c@example.com']
        assert all(r['Status'] == 'dry_run_simulated' for r in actions)

    def test_suspend_executes_within_cap(self, client, config, tmp_path):
        sink = ReportSink(str(tmp_path), 'run1')
        cfg = replace(config, mode='suspend', dry_run=False, max_actions=1)

        summary = inactive_users.run_audit(client, cfg, sink, now=NOW)

        assert summary['succeeded'] == 1
        assert summary['left_for_next_run'] == 1
        assert len(client.calls_to('update_user')) == 1

    def test_uses_resolved_customer_id_for_licenses(self, client, config, tmp_path):
        inactive_users.run_audit(client, config, ReportSink(str(tmp_path), 'run1'), now=NOW)

        assert client.calls_to('list_license_assignments')[0][2] == 'C0abc123'


class TestFinishRun:
    """Tests for finish_run."""

    def test_writes_workbook_and_notifies(self, client, config, tmp_path):
        sink = ReportSink(str(tmp_path), 'run1')
        cfg = replace(config, notify=True, recipients=('it@example.com',), admin_email='admin@example.com')
        summary = inactive_users.run_audit(client, cfg, sink, now=NOW)

        inactive_users.finish_run(client, cfg, sink, summary, "Inactive Users Report", "Audit")

        assert (tmp_path / 'inactive_users_report_run1.xlsx').exists()
        with open(tmp_path / 'summary_run1.json') as f:
            assert json.load(f)['inactive_users'] == 3
        raw, sender = client.calls_to('send_message')[0][1:]
        assert sender == 'admin@example.com'

    def test_no_notification_by_default(self, client, config, tmp_path):
        sink = ReportSink(str(tmp_path), 'run1')
        summary = inactive_users.run_audit(client, config, sink, now=NOW)

        inactive_users.finish_run(client, config, sink, summary, "Report", "Audit")

        assert client.calls_to('send_message') == []


class TestDiagnoseUser:
    """Tests for diagnose_user."""

    def test_reports_drift(self, config, caplog):
        client = FakeWorkspaceClient(
            users=[api_user('a@example.com', last_login=NOW - timedelta(days=10))],
            login_events=[
                login_event('a@example.com', NOW - timedelta(days=2)),
                login_event('other@example.com', NOW - timedelta(days=1)),
            ],
        )

        result = inactive_users.diagnose_user(client, 'a@example.com', config, now=NOW)

        assert result['difference_hours'] == 192.0
        assert result['reports_last_login'] == '2026-09-29 12:00 UTC'
        assert 'differ by' in caplog.text
        assert client.calls_to('list_login_events')[0][4] == 'a@example.com'

    def test_no_reports_entry(self, config):
        client = FakeWorkspaceClient(users=[api_user('a@example.com', last_login=NOW - timedelta(days=400))])

        result = inactive_users.diagnose_user(client, 'a@example.com', config, now=NOW)

        assert result['reports_last_login'] == 'Never'
        assert 'difference_hours' not in result

    def test_lists_user_licenses(self, config):
        client = FakeWorkspaceClient(
            users=[api_user('A@example.com')],
            licenses=[
                license_item('a@example.com', TARGET),
                license_item('a@example.com', '1010330003', sku_name='Google Vault'),
                license_item('b@example.com', TARGET),
            ],
        )

        result = inactive_users.diagnose_user(client, 'A@example.com', config, now=NOW)

        assert result['licenses'] == 'Enterprise Plus, Google Vault'
        assert result['license_sku_ids'] == '1010020020, 1010330003'
        assert result['has_target_license'] is True

    def test_user_without_licenses(self, config, caplog):
        client = FakeWorkspaceClient(users=[api_user('a@example.com')])

        result = inactive_users.diagnose_user(client, 'a@example.com', config, now=NOW)

        assert result['licenses'] == 'No licenses'
        assert result['has_target_license'] is False
        assert 'No Google-Apps licenses found' in caplog.text


class TestMain:
    """Tests for the CLI entry point."""

    def test_generate_config(self, capsys):
        with patch.object(sys, 'argv', ['inactive_users.py', '--generate-config']):
            with pytest.raises(SystemExit) as exc:
                inactive_users.main()

        assert exc.value.code == 0
        assert 'inactivity_days' in capsys.readouterr().out

    def test_invalid_config_exits_before_api_calls(self, tmp_path, monkeypatch):
        monkeypatch.chdir(tmp_path)
        argv = ['inactive_users.py', '--target-sku', 'REPLACE_WITH_SKU_ID', '--output', str(tmp_path)]
        with patch.object(sys, 'argv', argv), patch('inactive_users.WorkspaceClient') as client_cls:
            with pytest.raises(SystemExit) as exc:
                inactive_users.main()

        assert exc.value.code == 1
        client_cls.from_config.assert_not_called()

    def test_run_failure_exits_1(self, tmp_path, monkeypatch):
        monkeypatch.chdir(tmp_path)
        argv = ['inactive_users.py', '--output', str(tmp_path)]
        with patch.object(sys, 'argv', argv), patch('inactive_users.WorkspaceClient') as client_cls:
            client_cls.from_config.side_effect = RuntimeError("no credentials")
            with pytest.raises(SystemExit) as exc:
                inactive_users.main()

        assert exc.value.code == 1

    def test_execute_flag_turns_off_dry_run(self):
        args = inactive_users.build_parser().parse_args(['--execute', '--mode', 'suspend'])
        assert args.dry_run is False

    def test_dry_run_unset_by_default(self):
        args = inactive_users.build_parser().parse_args([])
        assert args.dry_run is None

    def test_full_run_with_fake_client(self, client, tmp_path, monkeypatch):
        monkeypatch.chdir(tmp_path)
        argv = ['inactive_users.py', '--output', str(tmp_path), '--excluded-ous', '/Legal']
        with patch.object(sys, 'argv', argv), patch('inactive_users.WorkspaceClient') as client_cls:
            client_cls.from_config.return_value = client
            inactive_users.main()

        assert any(name.startswith('all_inactive_users_') for name in os.listdir(tmp_path))
        assert client.mutation_count == 0

    def test_check_access_writes_table(self, client, tmp_path, monkeypatch, capsys):
        monkeypatch.chdir(tmp_path)
        argv = ['inactive_users.py', '--check-access', '--output', str(tmp_path)]
        with patch.object(sys, 'argv', argv), patch('inactive_users.WorkspaceClient') as client_cls:
            client_cls.from_config.return_value = client
            inactive_users.main()

        assert any(name.startswith('api_access_') for name in os.listdir(tmp_path))
        assert 'License Manager' in capsys.readouterr().out
        assert client.calls_to('list_users') != []
        assert client.mutation_count == 0

    def test_check_access_failure_exits_1(self, client, tmp_path, monkeypatch):
        monkeypatch.chdir(tmp_path)
        client.fail('list_groups')
        argv = ['inactive_users.py', '--check-access', '--output', str(tmp_path)]
        with patch.object(sys, 'argv', argv), patch('inactive_users.WorkspaceClient') as client_cls:
            client_cls.from_config.return_value = client
            with pytest.raises(SystemExit) as exc:
                inactive_users.main()

        assert exc.value.code == 1

    def test_check_access_accepts_placeholder_sku(self, client, tmp_path, monkeypatch):
        monkeypatch.chdir(tmp_path)
        argv = ['inactive_users.py', '--check-access', '--target-sku', 'REPLACE_WITH_SKU_ID', '--output', str(tmp_path)]
        with patch.object(sys, 'argv', argv), patch('inactive_users.WorkspaceClient') as client_cls:
            client_cls.from_config.return_value = client
            inactive_users.main()

        client_cls.from_config.assert_called_once()
