"""
Tests for gwsaudit/directory.py and gwsaudit/models.py user parsing.

Covers:
- User.from_api field mapping and the never-logged-in sentinel
- list_all_users pagination and partial results
- get_exclusion precedence (admin before OU)
- enumerate_inactive_users classification and license attachment
- select_action_candidates filtering per mode
"""
import os
import sys
from dataclasses import replace
from datetime import datetime, timedelta, timezone

import pytest

# Add parent directory to path for imports
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))
sys.path.insert(0, os.path.dirname(os.path.abspath(__file__)))

from fakes import FakeWorkspaceClient, api_user, license_item, make_http_error
from gwsaudit.activity import get_cutoff
from gwsaudit.config import AuditConfig
from gwsaudit.directory import (
    enumerate_inactive_users,
    get_exclusion,
    list_all_users,
    select_action_candidates,
)
from gwsaudit.licenses import build_license_index
from gwsaudit.models import ClassifiedUser, Exclusion, LicenseAssignment, LoginSource, User

NOW = datetime(2026, 10, 1, 12, 0, 0, tzinfo=timezone.utc)
TARGET = '1010020020'
ARCHIVE = '1010340001'


@pytest.fixture
def config():
    return AuditConfig(excluded_ou_paths=('/Legal', '/Executives'), exclude_admins=True)


def target_license(email):
    return LicenseAssignment(email.lower(), TARGET, 'Enterprise Plus', 'Google-Apps')


def classified(email, inactive=True, suspended=False, licenses=None, exclusion=None):
    user = User.from_api(api_user(email, suspended=suspended))
    return ClassifiedUser(
        base=user,
        inactive=inactive,
        licenses=tuple(licenses if licenses is not None else [target_license(email)]),
        exclusion=exclusion,
    )


# =============================================================================
# User parsing
# =============================================================================

class TestUserFromApi:
    """Tests for User.from_api."""

    def test_maps_fields(self):
        user = User.from_api(api_user(
            'Jane.Doe@Example.com', last_login=NOW, user_id='1234', org_unit='/Sales',
            suspended=True, is_delegated_admin=True, manager='boss@example.com', full_name='Jane Doe',
        ))

        assert user.email == 'Jane.Doe@Example.com'
        assert user.key == 'jane.doe@example.com'
        assert user.user_id == '1234'
        assert user.full_name == 'Jane Doe'
        assert user.org_unit_path == '/Sales'
        assert user.suspended is True
        assert user.is_delegated_admin is True
        assert user.manager_email == 'boss@example.com'
        assert user.last_login_time == NOW

    def test_epoch_last_login_means_never(self):
        assert User.from_api(api_user('a@example.com')).last_login_time is None

    def test_missing_fields_have_defaults(self):
        user = User.from_api({'primaryEmail': 'a@example.com'})

        assert user.full_name == 'N/A'
        assert user.org_unit_path == '/'
        assert user.last_login_time is None
        assert user.manager_email is None

    def test_malformed_timestamps_read_as_missing(self, caplog):
        data = api_user('a@example.com')
        data['lastLoginTime'] = 'yesterday'
        data['creationTime'] = '2020-13-45T00:00:00.000Z'

        user = User.from_api(data)

        assert user.last_login_time is None
        assert user.creation_time is None
        assert 'malformed timestamp' in caplog.text


# =============================================================================
# Listing
# =============================================================================

class TestListAllUsers:
    """Tests for list_all_users."""

    def test_paginates(self):
        client = FakeWorkspaceClient(users=[api_user(f'u{i}@example.com') for i in range(7)], page_size=3)

        users = list_all_users(client)

        assert len(users) == 7
        assert len(client.calls_to('list_users')) == 3

    def test_error_returns_partial_list(self):
        client = FakeWorkspaceClient(users=[api_user(f'u{i}@example.com') for i in range(7)], page_size=3)
        client.fail('list_users', make_http_error(500), on_call=2)

        assert [u.email for u in list_all_users(client)] == ['u0@example.com', 'u1@example.com', 'u2@example.com']

    def test_bad_record_does_not_stop_listing(self):
        bad = api_user('u1@example.com')
        bad['lastLoginTime'] = 'not-a-date'
        client = FakeWorkspaceClient(users=[api_user('u0@example.com'), bad, api_user('u2@example.com')])

        users = list_all_users(client)

        assert [u.email for u in users] == ['u0@example.com', 'u1@example.com', 'u2@example.com']
        assert users[1].last_login_time is None


# =============================================================================
# Exclusion Rules
# =============================================================================

class TestGetExclusion:
    """Tests for get_exclusion."""

    def test_regular_user_not_excluded(self):
        user = User.from_api(api_user('a@example.com', org_unit='/Sales'))
        assert get_exclusion(user, True, ['/Legal']) is None

    def test_admin_excluded(self):
        user = User.from_api(api_user('a@example.com', is_admin=True))
        exclusion = get_exclusion(user, True, [])

        assert exclusion.reason == 'Admin user'
        assert exclusion.is_admin_rule

    def test_admin_not_excluded_when_disabled(self):
        user = User.from_api(api_user('a@example.com', is_admin=True))
        assert get_exclusion(user, False, []) is None

    def test_ou_prefix_matches_sub_ous(self):
        user = User.from_api(api_user('a@example.com', org_unit='/Legal/Hold'))
        exclusion = get_exclusion(user, True, ['/Legal'])

        assert exclusion.reason == 'In excluded OU: /Legal'
        assert not exclusion.is_admin_rule

    def test_first_matching_prefix_wins(self):
        user = User.from_api(api_user('a@example.com', org_unit='/Legal/Hold'))
        exclusion = get_exclusion(user, True, ['/Legal/Hold', '/Legal'])

        assert exclusion.reason == 'In excluded OU: /Legal/Hold'

    def test_admin_check_precedes_ou_check(self):
        # Delegated admin in an excluded OU reports the admin reason
        user = User.from_api(api_user('d@example.com', is_delegated_admin=True, org_unit='/Legal'))

        first = get_exclusion(user, True, ['/Legal'])
        second = get_exclusion(user, True, ['/Legal'])

        assert first.reason == 'Admin user'
        assert first == second


# =============================================================================
# Enumeration
# =============================================================================

class TestEnumerateInactiveUsers:
    """Tests for enumerate_inactive_users."""

    def test_returns_only_inactive_users_with_licenses_attached(self, config):
        cutoff = get_cutoff(180, NOW)
        client = FakeWorkspaceClient(users=[
            api_user('active@example.com', last_login=NOW - timedelta(days=10)),
            api_user('stale@example.com', last_login=NOW - timedelta(days=400)),
            api_user('never@example.com'),
        ])
        index = {'stale@example.com': [target_license('stale@example.com')]}

        result = enumerate_inactive_users(client, config, index, {}, cutoff)

        assert [u.email for u in result] == ['stale@example.com', 'never@example.com']
        assert result[0].license_summary == 'Enterprise Plus'
        assert result[0].login_source == LoginSource.DIRECTORY
        assert result[1].license_summary == 'No licenses'
        assert result[1].effective_last_login is None

    def test_reports_login_keeps_user_active(self, config):
        cutoff = get_cutoff(180, NOW)
        client = FakeWorkspaceClient(users=[api_user('a@example.com', last_login=NOW - timedelta(days=400))])

        result = enumerate_inactive_users(client, config, {}, {'a@example.com': NOW - timedelta(days=5)}, cutoff)

        assert result == []

    def test_excluded_users_are_retained(self, config):
        cutoff = get_cutoff(180, NOW)
        client = FakeWorkspaceClient(users=[api_user('legal@example.com', org_unit='/Legal')])

        result = enumerate_inactive_users(client, config, {}, {}, cutoff)

        assert len(result) == 1
        assert result[0].exclusion.reason == 'In excluded OU: /Legal'

    def test_uses_given_user_list(self, config):
        cutoff = get_cutoff(180, NOW)
        client = FakeWorkspaceClient()
        users = [User.from_api(api_user('x@example.com'))]

        result = enumerate_inactive_users(client, config, {}, {}, cutoff, users=users)

        assert len(result) == 1
        assert client.calls_to('list_users') == []

    def test_works_with_built_license_index(self, config):
        cutoff = get_cutoff(180, NOW)
        client = FakeWorkspaceClient(
            users=[api_user('Mixed.Case@example.com')],
            licenses=[license_item('mixed.case@example.com', TARGET)],
        )
        index = build_license_index(client, 'Google-Apps', 'C0abc123', sleep=lambda _s: None)

        result = enumerate_inactive_users(client, config, index, {}, cutoff)

        assert result[0].has_sku(TARGET)


# =============================================================================
# Candidate Selection
# =============================================================================

class TestSelectActionCandidates:
    """Tests for select_action_candidates."""

    def test_requires_target_sku(self, config):
        users = [classified('a@example.com'), classified('b@example.com', licenses=[])]

        assert [u.email for u in select_action_candidates(users, config)] == ['a@example.com']

    def test_skips_excluded(self, config):
        users = [classified('a@example.com', exclusion=Exclusion('admin', 'Admin user'))]

        assert select_action_candidates(users, config) == []

    def test_skips_active(self, config):
        assert select_action_candidates([classified('a@example.com', inactive=False)], config) == []

    @pytest.mark.parametrize("mode,expected", [
        ('suspend', []),
        ('suspend_relicense', []),
        ('archive', ['s@example.com']),
        ('report', ['s@example.com']),
    ])
    def test_already_suspended(self, config, mode, expected):
        users = [classified('s@example.com', suspended=True)]

        result = select_action_candidates(users, replace(config, mode=mode))

        assert [u.email for u in result] == expected

    def test_archive_skips_users_holding_archive_sku(self, config):
        archived = LicenseAssignment('a@example.com', ARCHIVE, 'Enterprise Plus - Archived User')
        users = [
            classified('a@example.com', licenses=[target_license('a@example.com'), archived]),
            classified('b@example.com'),
        ]

        result = select_action_candidates(users, replace(config, mode='archive'))

        assert [u.email for u in result] == ['b@example.com']
