"""
API access self-check.

Makes one minimal read against every Admin SDK API the tools use and reports
which ones the credentials can reach. A 403 or a rejected token usually means
the scope is missing from the domain-wide delegation entry or the API is not
enabled in the Cloud project.
"""
import logging
from datetime import datetime, timedelta, timezone
from typing import Any, Callable, Dict, List, Optional, Tuple

from google.auth.exceptions import GoogleAuthError
from googleapiclient.errors import HttpError

from .constants import (
    DEFAULT_CUSTOMER,
    SCOPE_DATA_TRANSFER,
    SCOPE_DIRECTORY_CUSTOMER,
    SCOPE_DIRECTORY_GROUP,
    SCOPE_DIRECTORY_USER,
    SCOPE_LICENSING,
    SCOPE_REPORTS_AUDIT,
)
from .utils import to_rfc3339

logger = logging.getLogger(__name__)

STATUS_OK = "OK"
STATUS_FAILED = "FAILED"


def _describe_error(e: Exception) -> str:
    if isinstance(e, HttpError):
        status = getattr(e.resp, 'status', None)
        if status in (401, 403):
            return f"Not authorized (HTTP {status}): add the scope to domain-wide delegation and enable the API"
        return f"HTTP {status}: {e}"
    return f"Credentials rejected: {e}"


def _access_checks(client, product_id: str,
                   now: datetime) -> List[Tuple[str, str, Callable[[], str]]]:
    """(api, scope, call) triples; each call returns a short success detail."""
    day_ago = now - timedelta(days=1)

    def customer():
        return f"Customer ID {client.get_customer_id()}"

    def users():
        found = client.list_users(max_results=1).get('users', [])
        return f"Sample user {found[0].get('primaryEmail')}" if found else "No users returned"

    def licenses():
        found = client.list_license_assignments(product_id, DEFAULT_CUSTOMER, max_results=1).get('items', [])
        return f"Sample license {found[0].get('skuId')}" if found else f"No {product_id} assignments"

    def reports():
        found = client.list_login_events(to_rfc3339(day_ago), to_rfc3339(now), max_results=1).get('items', [])
        return "Recent login events found" if found else "No login events in the last day"

    def groups():
        found = client.list_groups(max_results=1).get('groups', [])
        return f"Sample group {found[0].get('email')}" if found else "No groups returned"

    def transfers():
        found = client.list_transfer_applications(max_results=10).get('applications', [])
        return f"{len(found)} transferable applications"

    return [
        ("Directory (customer)", SCOPE_DIRECTORY_CUSTOMER, customer),
        ("Directory (users)", SCOPE_DIRECTORY_USER, users),
        ("License Manager", SCOPE_LICENSING, licenses),
        ("Reports (login)", SCOPE_REPORTS_AUDIT, reports),
        ("Directory (groups)", SCOPE_DIRECTORY_GROUP, groups),
        ("Data Transfer", SCOPE_DATA_TRANSFER, transfers),
    ]


def check_api_access(client, product_id: str,
                     now: Optional[datetime] = None) -> List[Dict[str, Any]]:
    """Run every check; a failure is recorded on its row and the next check still runs."""
    now = now or datetime.now(timezone.utc)
    results = []

    for api, scope, call in _access_checks(client, product_id, now):
        try:
            detail = call()
            status = STATUS_OK
            logger.info(f"{api}: {detail}")
        except (HttpError, GoogleAuthError) as e:
            detail = _describe_error(e)
            status = STATUS_FAILED
            logger.warning(f"{api} failed: {e}")
        results.append({'API': api, 'Scope': scope, 'Status': status, 'Detail': detail})

    failed = sum(1 for r in results if r['Status'] == STATUS_FAILED)
    if failed:
        logger.warning(f"{failed} of {len(results)} API checks failed")
    else:
        logger.info("All API checks passed")
    return results
