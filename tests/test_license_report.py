"""
Tests for license_report.py.
"""
import csv
import os
import sys
from unittest.mock import patch

import pytest

# Add parent directory to path for imports
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))
sys.path.insert(0, os.path.dirname(os.path.abspath(__file__)))

import license_report
from fakes import FakeWorkspaceClient, api_user, license_item, make_http_error
from gwsaudit.config import AuditConfig
from gwsaudit.report import ReportSink


@pytest.fixture
def client():
    users = [
        api_user('a@example.com', full_name='Alice'),
        api_user('b@example.com', suspended=True),
        api_user('c@example.com'),
    ]
    licenses = [
        license_item('A@example.com', '1010020020', 'Enterprise Plus'),
        license_item('a@example.com', '1010330003', 'Google Vault'),
        license_item('b@example.com', '1010020020', 'Enterprise Plus'),
    ]
    return FakeWorkspaceClient(users=users, licenses=licenses)


class TestRunLicenseReport:
    """Tests for run_license_report."""

    def test_rows_and_summary(self, client, tmp_path):
        sink = ReportSink(str(tmp_path), 'run1')

        summary = license_report.run_license_report(client, AuditConfig(output=str(tmp_path)), sink)

        with open(tmp_path / 'all_users_license_report_run1.csv') as f:
            rows = list(csv.DictReader(f))
        assert [(r['Email'], r['License Name']) for r in rows] == [
            ('a@example.com', 'Enterprise Plus'),
            ('a@example.com', 'Google Vault'),
            ('b@example.com', 'Enterprise Plus'),
            ('c@example.com', 'No licenses'),
        ]
        assert rows[2]['Status'] == 'SUSPENDED'
        assert summary['total_users'] == 3
        assert summary['active'] == 2
        assert summary['suspended'] == 1
        assert summary['licensed'] == 2
        assert summary['unlicensed'] == 1
        assert summary['license: Enterprise Plus'] == 2
        assert summary['license: Google Vault'] == 1

    def test_license_scan_failure_reports_users_as_unlicensed(self, client, tmp_path):
        client.fail('list_license_assignments', make_http_error(403))

        summary = license_report.run_license_report(client, AuditConfig(), ReportSink(str(tmp_path), 'run1'))

        assert summary['total_users'] == 3
        assert summary['unlicensed'] == 3

    def test_read_only(self, client, tmp_path):
        license_report.run_license_report(client, AuditConfig(), ReportSink(str(tmp_path), 'run1'))
        assert client.mutation_count == 0


class TestSkuFinder:
    """Tests for run_sku_finder."""

    def test_lists_assigned_and_checked_skus(self, client, tmp_path, capsys):
        sink = ReportSink(str(tmp_path), 'run1')

        rows = license_report.run_sku_finder(client, AuditConfig(), sink)

        assert rows[0]['SKU ID'] == '1010020020'
        assert rows[0]['Role'] == 'target'
        assert rows[0]['Sample Users'] == 'a@example.com, b@example.com'
        assert {r['SKU ID'] for r in rows} >= {'1010330003', '1010010001', '1010340001'}
        with open(tmp_path / 'sku_finder_run1.csv') as f:
            assert len(list(csv.DictReader(f))) == len(rows)
        assert 'SKUs for product Google-Apps' in capsys.readouterr().out

    def test_read_only(self, client, tmp_path):
        license_report.run_sku_finder(client, AuditConfig(), ReportSink(str(tmp_path), 'run1'))
        assert client.mutation_count == 0


class TestMain:
    """Tests for the CLI entry point."""

    def test_writes_reports(self, client, tmp_path, monkeypatch):
        monkeypatch.chdir(tmp_path)
        argv = ['license_report.py', '--output', str(tmp_path)]
        with patch.object(sys, 'argv', argv), patch('license_report.WorkspaceClient') as client_cls:
            client_cls.from_config.return_value = client
            license_report.main()

        names = os.listdir(tmp_path)
        assert any(n.startswith('all_users_license_report_') and n.endswith('.csv') for n in names)
        assert any(n.startswith('license_report_') and n.endswith('.xlsx') for n in names)
        assert any(n.startswith('summary_') for n in names)

    def test_failure_exits_1(self, tmp_path, monkeypatch):
        monkeypatch.chdir(tmp_path)
        argv = ['license_report.py', '--output', str(tmp_path)]
        with patch.object(sys, 'argv', argv), patch('license_report.WorkspaceClient') as client_cls:
            client_cls.from_config.side_effect = RuntimeError("no credentials")
            with pytest.raises(SystemExit) as exc:
                license_report.main()

        assert exc.value.code == 1

    def test_find_sku_skips_the_report(self, client, tmp_path, monkeypatch):
        monkeypatch.chdir(tmp_path)
        argv = ['license_report.py', '--find-sku', '--output', str(tmp_path)]
        with patch.object(sys, 'argv', argv), patch('license_report.WorkspaceClient') as client_cls:
            client_cls.from_config.return_value = client
            license_report.main()

        names = os.listdir(tmp_path)
        assert any(n.startswith('sku_finder_') for n in names)
        assert not any(n.startswith('all_users_license_report_') for n in names)
        assert client.calls_to('list_users') == []
