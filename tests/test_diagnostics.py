"""
Tests for gwsaudit/diagnostics.py (API access self-check).
"""
import os
import sys
from datetime import datetime, timedelta, timezone

import pytest
from google.auth.exceptions import RefreshError

# Add parent directory to path for imports
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))
sys.path.insert(0, os.path.dirname(os.path.abspath(__file__)))

from fakes import FakeWorkspaceClient, api_group, api_user, license_item, login_event, make_http_error
from gwsaudit.constants import SCOPE_LICENSING, SCOPE_REPORTS_AUDIT
from gwsaudit.diagnostics import STATUS_FAILED, STATUS_OK, check_api_access

NOW = datetime(2026, 10, 1, 12, 0, 0, tzinfo=timezone.utc)


@pytest.fixture
def client():
    return FakeWorkspaceClient(
        users=[api_user('a@example.com'), api_user('b@example.com')],
        licenses=[license_item('a@example.com', '1010020020')],
        login_events=[login_event('a@example.com', NOW - timedelta(hours=2))],
        groups=[api_group('team@example.com')],
    )


class TestCheckApiAccess:
    """Tests for check_api_access."""

    def test_all_apis_reachable(self, client, caplog):
        results = check_api_access(client, 'Google-Apps', now=NOW)

        assert len(results) == 6
        assert all(r['Status'] == STATUS_OK for r in results)
        details = {r['API']: r['Detail'] for r in results}
        assert details['Directory (customer)'] == 'Customer ID C0abc123'
        assert details['Directory (users)'] == 'Sample user a@example.com'
        assert details['License Manager'] == 'Sample license 1010020020'
        assert details['Reports (login)'] == 'Recent login events found'
        assert details['Directory (groups)'] == 'Sample group team@example.com'
        assert details['Data Transfer'] == '1 transferable applications'
        assert 'All API checks passed' in caplog.text

    def test_reads_are_minimal(self, client):
        check_api_access(client, 'Google-Apps', now=NOW)

        for method in ('list_users', 'list_license_assignments', 'list_login_events', 'list_groups'):
            assert len(client.calls_to(method)) == 1
        assert client.mutation_count == 0

    def test_login_window_is_last_day(self, client):
        check_api_access(client, 'Google-Apps', now=NOW)

        _, start, end, _, _ = client.calls_to('list_login_events')[0]
        assert start == '2026-09-30T12:00:00Z'
        assert end == '2026-10-01T12:00:00Z'

    def test_empty_tenant_still_passes(self):
        results = check_api_access(FakeWorkspaceClient(), 'Google-Apps', now=NOW)

        assert all(r['Status'] == STATUS_OK for r in results)
        assert results[2]['Detail'] == 'No Google-Apps assignments'

    def test_forbidden_api_is_reported_and_others_still_run(self, client, caplog):
        client.fail('list_license_assignments', make_http_error(403, "Not Authorized to access this resource/api"))

        results = check_api_access(client, 'Google-Apps', now=NOW)

        failed = [r for r in results if r['Status'] == STATUS_FAILED]
        assert len(failed) == 1
        assert failed[0]['Scope'] == SCOPE_LICENSING
        assert 'domain-wide delegation' in failed[0]['Detail']
        assert results[3]['Status'] == STATUS_OK
        assert '1 of 6 API checks failed' in caplog.text

    def test_other_http_errors_keep_status(self, client):
        client.fail('list_login_events', make_http_error(503, "Backend Error"))

        results = check_api_access(client, 'Google-Apps', now=NOW)

        reports = next(r for r in results if r['Scope'] == SCOPE_REPORTS_AUDIT)
        assert reports['Status'] == STATUS_FAILED
        assert reports['Detail'].startswith('HTTP 503')

    def test_rejected_credentials(self, client):
        client.fail('get_customer_id', RefreshError("unauthorized_client: Client is unauthorized"))

        results = check_api_access(client, 'Google-Apps', now=NOW)

        assert results[0]['Status'] == STATUS_FAILED
        assert results[0]['Detail'].startswith('Credentials rejected')
