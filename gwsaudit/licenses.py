"""
License Manager helpers: customer ID, SKU names, the per-user license index
and SKU discovery.
"""
import logging
import time
from typing import Any, Callable, Dict, Iterable, List

from googleapiclient.errors import HttpError

from .constants import (
    CLOUD_IDENTITY_SKU_CANDIDATES,
    DEFAULT_CUSTOMER,
    LICENSE_PAGE_DELAY,
    PLACEHOLDER_VALUES,
    SKU_ASSIGNED,
    SKU_CATALOG,
    SKU_SAMPLE_SIZE,
    SKU_UNASSIGNED,
    SKU_UNAVAILABLE,
)
from .models import LicenseAssignment

logger = logging.getLogger(__name__)


def get_sku_name(sku_id: str, product_id: str = "") -> str:
    """Friendly name for a SKU, falling back to the raw ID."""
    if product_id and sku_id in SKU_CATALOG.get(product_id, {}):
        return SKU_CATALOG[product_id][sku_id]
    for skus in SKU_CATALOG.values():
        if sku_id in skus:
            return skus[sku_id]
    return sku_id


def format_license_summary(assignments: Iterable[LicenseAssignment]) -> str:
    names = [a.sku_name for a in assignments]
    return ", ".join(names) if names else "No licenses"


def get_customer_id(client) -> str:
    """
    Resolve the customer ID used by the License Manager API.

    Falls back to the 'my_customer' alias when the lookup fails.
    """
    try:
        customer_id = client.get_customer_id()
        logger.info(f"Resolved customer ID: {customer_id}")
        return customer_id
    except (HttpError, KeyError) as e:
        logger.warning(f"Could not resolve customer ID, using '{DEFAULT_CUSTOMER}': {e}")
        return DEFAULT_CUSTOMER


def build_license_index(client, product_id: str, customer_id: str,
                        page_delay: float = LICENSE_PAGE_DELAY,
                        sleep: Callable[[float], None] = time.sleep) -> Dict[str, List[LicenseAssignment]]:
    """
    Map lower-cased user email to every license the user holds for a product.

    One paginated listForProduct scan replaces a per-user license lookup.
    A provider error stops pagination; the partial index is returned.
    """
    index: Dict[str, List[LicenseAssignment]] = {}
    page_token = None
    count = 0

    while True:
        try:
            response = client.list_license_assignments(
                product_id=product_id,
                customer_id=customer_id,
                page_token=page_token,
            )
        except HttpError as e:
            logger.warning(f"Error fetching license assignments, returning partial results: {e}")
            break

        for item in response.get('items', []):
            user_id = item.get('userId')
            sku_id = item.get('skuId')
            if not user_id or not sku_id:
                continue
            item_product = item.get('productId') or product_id
            assignment = LicenseAssignment(
                user_key=user_id.lower(),
                sku_id=sku_id,
                sku_name=item.get('skuName') or get_sku_name(sku_id, item_product),
                product_id=item_product,
            )
            index.setdefault(assignment.user_key, []).append(assignment)
            count += 1

        page_token = response.get('nextPageToken')
        if not page_token:
            break
        sleep(page_delay)

    logger.info(f"Indexed {count} license assignments for {len(index)} users")
    return index


# =============================================================================
# SKU Discovery
# =============================================================================

def summarize_skus(license_index: Dict[str, List[LicenseAssignment]]) -> List[Dict[str, Any]]:
    """One entry per SKU present in the index, most assigned first."""
    skus: Dict[str, Dict[str, Any]] = {}
    for user_key, assignments in license_index.items():
        for assignment in assignments:
            entry = skus.setdefault(assignment.sku_id, {
                'sku_id': assignment.sku_id,
                'sku_name': assignment.sku_name,
                'product_id': assignment.product_id,
                'users': 0,
                'sample_users': [],
            })
            entry['users'] += 1
            if len(entry['sample_users']) < SKU_SAMPLE_SIZE:
                entry['sample_users'].append(user_key)
    return sorted(skus.values(), key=lambda s: (-s['users'], s['sku_id']))


def check_sku(client, product_id: str, sku_id: str, customer_id: str,
              sample_size: int = SKU_SAMPLE_SIZE) -> Dict[str, Any]:
    """
    Ask the License Manager whether a SKU id exists for this customer.

    An error means the id is not valid (or not available) for the tenant,
    which is an answer rather than a failure, so it is logged at INFO.
    """
    sku_name = get_sku_name(sku_id, product_id)
    if sku_name == sku_id:
        sku_name = CLOUD_IDENTITY_SKU_CANDIDATES.get(sku_id, sku_id)
    result: Dict[str, Any] = {
        'sku_id': sku_id,
        'sku_name': sku_name,
        'product_id': product_id,
        'status': SKU_UNAVAILABLE,
        'users': '',
        'sample_users': [],
    }
    try:
        response = client.list_license_assignments_for_sku(
            product_id=product_id,
            sku_id=sku_id,
            customer_id=customer_id,
            max_results=sample_size,
        )
    except HttpError as e:
        logger.info(f"SKU {sku_id} is not available for product {product_id}: {e}")
        return result

    items = response.get('items', [])
    if not items:
        result['status'] = SKU_UNASSIGNED
        result['users'] = 0
        return result

    result['status'] = SKU_ASSIGNED
    result['sku_name'] = items[0].get('skuName') or result['sku_name']
    result['users'] = f"{len(items)}+" if response.get('nextPageToken') else len(items)
    result['sample_users'] = [i.get('userId', '') for i in items]
    return result


def _sku_role(sku_id: str, config) -> str:
    roles = []
    if sku_id == config.target_sku:
        roles.append("target")
    if sku_id == config.replacement_sku:
        roles.append("replacement")
    if sku_id == config.archive_sku:
        roles.append("archive")
    if sku_id in CLOUD_IDENTITY_SKU_CANDIDATES:
        roles.append("cloud identity candidate")
    return ", ".join(roles) or "in use"


def find_skus(client, config, customer_id: str,
              license_index: Dict[str, List[LicenseAssignment]]) -> List[Dict[str, Any]]:
    """
    List the SKUs assigned in the tenant, then check the configured SKU ids
    and the Cloud Identity candidates that nobody holds yet.

    Answers "which SKU id do I put in the config?" before any action runs.
    """
    found = summarize_skus(license_index)
    for entry in found:
        entry['status'] = SKU_ASSIGNED
        entry['role'] = _sku_role(entry['sku_id'], config)

    present = {entry['sku_id'] for entry in found}
    to_check = [config.target_sku, config.replacement_sku, config.archive_sku, *CLOUD_IDENTITY_SKU_CANDIDATES]
    checked = []
    for sku_id in dict.fromkeys(to_check):
        if sku_id in present or str(sku_id).strip() in PLACEHOLDER_VALUES:
            continue
        entry = check_sku(client, config.product_id, sku_id, customer_id)
        entry['role'] = _sku_role(sku_id, config)
        checked.append(entry)

    logger.info(f"{len(found)} SKUs assigned, {len(checked)} more SKU ids checked")
    return found + checked
