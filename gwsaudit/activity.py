"""
Login activity resolution and inactivity classification.

Two sources describe when a user last signed in:

- Reports API login activities: accurate, but only retained for 180 days.
- Directory lastLoginTime: always present on the user, but can lag behind.

The Reports entry takes precedence; the directory field is the fallback.
"""
import logging
import time
from datetime import datetime, timedelta, timezone
from typing import Callable, Dict, Optional, Tuple

from googleapiclient.errors import HttpError

from .constants import ACTIVITY_PAGE_DELAY, REPORTS_RETENTION_DAYS
from .models import LoginSource, User, parse_timestamp
from .utils import to_rfc3339

logger = logging.getLogger(__name__)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def get_cutoff(days: int, now: Optional[datetime] = None) -> datetime:
    """Return the instant `days` days before now. Logins at or after it count as recent."""
    now = now or _utcnow()
    return now - timedelta(days=days)


def get_query_window(cutoff: datetime, now: Optional[datetime] = None,
                     retention_days: int = REPORTS_RETENTION_DAYS) -> Tuple[datetime, datetime]:
    """Clamp the Reports query start to the retention horizon."""
    now = now or _utcnow()
    horizon = now - timedelta(days=retention_days)
    return max(cutoff, horizon), now


def resolve_login_activity(client, cutoff: datetime, now: Optional[datetime] = None,
                           retention_days: int = REPORTS_RETENTION_DAYS,
                           page_delay: float = ACTIVITY_PAGE_DELAY,
                           sleep: Callable[[float], None] = time.sleep) -> Dict[str, datetime]:
    """
    Build a map of lower-cased email to the most recent login in the query window.

    Pages through every login activity between max(cutoff, retention horizon)
    and now. A provider error stops pagination and the partial map is returned;
    users missing from it fall back to the directory field.

    Args:
        client: WorkspaceClient (or anything with list_login_events)
        cutoff: Inactivity cutoff
        now: Reference time (defaults to current UTC time)
        retention_days: How far back the Reports API keeps login events
        page_delay: Seconds to sleep between pages

    Returns:
        Dict mapping email -> aware UTC datetime of latest login
    """
    start, end = get_query_window(cutoff, now, retention_days)
    logger.info(f"Fetching login activity from {to_rfc3339(start)} to {to_rfc3339(end)}")

    last_login: Dict[str, datetime] = {}
    page_token = None
    pages = 0

    while True:
        try:
            response = client.list_login_events(
                start_time=to_rfc3339(start),
                end_time=to_rfc3339(end),
                page_token=page_token,
            )
        except HttpError as e:
            logger.warning(f"Error fetching login activity, returning partial results: {e}")
            break

        pages += 1
        for activity in response.get('items', []):
            email = (activity.get('actor') or {}).get('email')
            if not email:
                continue
            login_time = parse_timestamp((activity.get('id') or {}).get('time'))
            if login_time is None:
                continue
            key = email.lower()
            if key not in last_login or login_time > last_login[key]:
                last_login[key] = login_time

        page_token = response.get('nextPageToken')
        if not page_token:
            break
        sleep(page_delay)

    logger.info(f"Found login activity for {len(last_login)} users across {pages} page(s)")
    return last_login


def classify_activity(directory_last_login: Optional[datetime],
                      reports_last_login: Optional[datetime],
                      cutoff: datetime) -> bool:
    """
    Return True when a user is inactive.

    A Reports login at or after the cutoff makes the user active. Without one,
    the directory field decides. With neither, the user is inactive.
    """
    if reports_last_login is not None and reports_last_login >= cutoff:
        return False
    if directory_last_login is not None and directory_last_login >= cutoff:
        return False
    return True


def is_inactive(user: User, login_activity: Dict[str, datetime], cutoff: datetime) -> bool:
    return classify_activity(user.last_login_time, login_activity.get(user.key), cutoff)


def effective_last_login(user: User, login_activity: Dict[str, datetime]
                         ) -> Tuple[Optional[datetime], Optional[LoginSource]]:
    """Pick the login shown for a user: the Reports entry when present, else the directory field."""
    reports_login = login_activity.get(user.key)
    if reports_login is not None:
        return reports_login, LoginSource.REPORTS
    if user.last_login_time is not None:
        return user.last_login_time, LoginSource.DIRECTORY
    return None, None
