"""
Directory user enumeration, exclusion rules and action candidate selection.
"""
import logging
from datetime import datetime
from typing import Dict, Iterable, List, Optional

from googleapiclient.errors import HttpError

from .activity import effective_last_login, is_inactive
from .constants import (
    EXCLUSION_ADMIN,
    EXCLUSION_ORG_UNIT,
    EXCLUSION_REASON_ADMIN,
    MODE_ARCHIVE,
    MODE_SUSPEND,
    MODE_SUSPEND_RELICENSE,
)
from .models import ClassifiedUser, Exclusion, LicenseAssignment, User

logger = logging.getLogger(__name__)


def list_all_users(client) -> List[User]:
    """
    Page through every Directory user.

    A provider error stops pagination and the users collected so far are
    returned.
    """
    users: List[User] = []
    page_token = None

    while True:
        try:
            response = client.list_users(page_token=page_token)
        except HttpError as e:
            logger.warning(f"Error listing users, returning partial results: {e}")
            break

        for item in response.get('users', []):
            users.append(User.from_api(item))

        page_token = response.get('nextPageToken')
        if not page_token:
            break

    logger.info(f"Found {len(users)} users in the directory")
    return users


def get_exclusion(user: User, exclude_admins: bool,
                  excluded_ou_paths: Iterable[str]) -> Optional[Exclusion]:
    """
    Return the single reason a user is protected from actions, or None.

    The admin rule is checked before the OU rule, and the first matching OU
    prefix wins, so the reported reason is deterministic.
    """
    if exclude_admins and (user.is_admin or user.is_delegated_admin):
        return Exclusion(rule=EXCLUSION_ADMIN, reason=EXCLUSION_REASON_ADMIN)

    ou_path = user.org_unit_path or "/"
    for prefix in excluded_ou_paths:
        if prefix and ou_path.startswith(prefix):
            return Exclusion(rule=EXCLUSION_ORG_UNIT, reason=f"In excluded OU: {prefix}")
    return None


def classify_user(user: User, config, license_index: Dict[str, List[LicenseAssignment]],
                  login_activity: Dict[str, datetime], cutoff: datetime) -> ClassifiedUser:
    last_login, source = effective_last_login(user, login_activity)
    return ClassifiedUser(
        base=user,
        inactive=is_inactive(user, login_activity, cutoff),
        effective_last_login=last_login,
        login_source=source,
        licenses=tuple(license_index.get(user.key, [])),
        exclusion=get_exclusion(user, config.exclude_admins, config.excluded_ou_paths),
    )


def enumerate_inactive_users(client, config, license_index: Dict[str, List[LicenseAssignment]],
                             login_activity: Dict[str, datetime], cutoff: datetime,
                             users: Optional[List[User]] = None) -> List[ClassifiedUser]:
    """
    Classify every directory user and return the inactive ones.

    Excluded users are kept in the result (with their exclusion attached) so
    the full report still lists them.
    """
    if users is None:
        users = list_all_users(client)

    inactive: List[ClassifiedUser] = []
    for user in users:
        classified = classify_user(user, config, license_index, login_activity, cutoff)
        if classified.inactive:
            inactive.append(classified)
            logger.debug(f"Inactive: {user.email} (last login {classified.effective_last_login})")

    excluded = sum(1 for u in inactive if u.is_excluded)
    logger.info(f"Found {len(inactive)} inactive users ({excluded} excluded) out of {len(users)}")
    return inactive


def select_action_candidates(classified: Iterable[ClassifiedUser], config) -> List[ClassifiedUser]:
    """Inactive, non-excluded users holding the target SKU who still need the configured action."""
    candidates = []
    for user in classified:
        if not user.inactive or user.is_excluded:
            continue
        if not user.has_sku(config.target_sku):
            continue
        if config.mode in (MODE_SUSPEND, MODE_SUSPEND_RELICENSE) and user.base.suspended:
            logger.debug(f"Skipping {user.email}: already suspended")
            continue
        if config.mode == MODE_ARCHIVE and user.has_sku(config.archive_sku):
            logger.debug(f"Skipping {user.email}: already holds the archive license")
            continue
        candidates.append(user)
    return candidates
