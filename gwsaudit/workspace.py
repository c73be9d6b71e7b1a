"""
Google Workspace Admin API client.

Thin wrapper over googleapiclient discovery resources. Every method makes a
single request and returns the raw response dict; pagination, rate limiting
and error policy live with the callers so each pipeline stage can decide
whether a failure ends its loop or is recorded on a user.

Authentication:
    - Service account key with domain-wide delegation, impersonating a super
      admin (credentials_file + admin_email)
    - Application default credentials (gcloud auth application-default login,
      Cloud Shell, Cloud Run)
"""
import logging
from typing import Any, Dict, List, Optional

import google.auth
from google.oauth2 import service_account
from googleapiclient.discovery import build

from .constants import (
    ACTIVITIES_PAGE_SIZE,
    DEFAULT_CUSTOMER,
    DEFAULT_SCOPES,
    GROUPS_PAGE_SIZE,
    LICENSES_PAGE_SIZE,
    MEMBERS_PAGE_SIZE,
    USERS_PAGE_SIZE,
)

logger = logging.getLogger(__name__)


def get_credentials(credentials_file: Optional[str] = None,
                    admin_email: Optional[str] = None,
                    scopes: Optional[List[str]] = None):
    """
    Get credentials for the Admin SDK.

    A service account key file is used when given, delegated to admin_email.
    Otherwise application default credentials are used.
    """
    scopes = scopes or DEFAULT_SCOPES
    if credentials_file:
        credentials = service_account.Credentials.from_service_account_file(
            credentials_file, scopes=scopes
        )
        if admin_email:
            credentials = credentials.with_subject(admin_email)
        logger.info(f"Using service account credentials from {credentials_file}")
        return credentials

    credentials, _project = google.auth.default(scopes=scopes)
    if admin_email and hasattr(credentials, 'with_subject'):
        credentials = credentials.with_subject(admin_email)
    logger.info("Using application default credentials")
    return credentials


class WorkspaceClient:
    """Directory, Reports, Licensing, Data Transfer and Gmail calls used by the audit tools."""

    def __init__(self, credentials, customer: str = DEFAULT_CUSTOMER):
        self.credentials = credentials
        self.customer = customer
        self._services: Dict[str, Any] = {}

    @classmethod
    def from_config(cls, config) -> "WorkspaceClient":
        credentials = get_credentials(config.credentials_file, config.admin_email)
        return cls(credentials, customer=config.customer)

    def _service(self, api: str, version: str, credentials=None):
        key = f"{api}:{version}"
        if credentials is not None:
            return build(api, version, credentials=credentials, cache_discovery=False)
        if key not in self._services:
            self._services[key] = build(api, version, credentials=self.credentials, cache_discovery=False)
        return self._services[key]

    @property
    def directory(self):
        return self._service('admin', 'directory_v1')

    @property
    def reports(self):
        return self._service('admin', 'reports_v1')

    @property
    def licensing(self):
        return self._service('licensing', 'v1')

    @property
    def datatransfer(self):
        return self._service('admin', 'datatransfer_v1')

    # =========================================================================
    # Directory
    # =========================================================================

    def list_users(self, page_token: Optional[str] = None,
                   max_results: int = USERS_PAGE_SIZE) -> Dict[str, Any]:
        return self.directory.users().list(
            customer=self.customer,
            maxResults=max_results,
            orderBy='email',
            projection='full',
            pageToken=page_token,
        ).execute()

    def get_user(self, user_key: str) -> Dict[str, Any]:
        return self.directory.users().get(userKey=user_key, projection='full').execute()

    def update_user(self, user_key: str, body: Dict[str, Any]) -> Dict[str, Any]:
        return self.directory.users().update(userKey=user_key, body=body).execute()

    def get_customer_id(self) -> str:
        """Resolve the immutable customer ID (e.g. C01abc23d) for the 'my_customer' alias."""
        customer = self.directory.customers().get(customerKey=DEFAULT_CUSTOMER).execute()
        return customer['id']

    def list_groups(self, page_token: Optional[str] = None,
                    max_results: int = GROUPS_PAGE_SIZE) -> Dict[str, Any]:
        return self.directory.groups().list(
            customer=self.customer,
            maxResults=max_results,
            pageToken=page_token,
        ).execute()

    def list_members(self, group_key: str, roles: Optional[str] = None,
                     page_token: Optional[str] = None,
                     max_results: int = MEMBERS_PAGE_SIZE) -> Dict[str, Any]:
        return self.directory.members().list(
            groupKey=group_key,
            roles=roles,
            maxResults=max_results,
            pageToken=page_token,
        ).execute()

    # =========================================================================
    # Licensing
    # =========================================================================

    def list_license_assignments(self, product_id: str, customer_id: str,
                                 page_token: Optional[str] = None,
                                 max_results: int = LICENSES_PAGE_SIZE) -> Dict[str, Any]:
        return self.licensing.licenseAssignments().listForProduct(
            productId=product_id,
            customerId=customer_id,
            maxResults=max_results,
            pageToken=page_token,
        ).execute()

    def list_license_assignments_for_sku(self, product_id: str, sku_id: str, customer_id: str,
                                         page_token: Optional[str] = None,
                                         max_results: int = LICENSES_PAGE_SIZE) -> Dict[str, Any]:
        return self.licensing.licenseAssignments().listForProductAndSku(
            productId=product_id,
            skuId=sku_id,
            customerId=customer_id,
            maxResults=max_results,
            pageToken=page_token,
        ).execute()

    def remove_license(self, product_id: str, sku_id: str, user_id: str) -> Dict[str, Any]:
        return self.licensing.licenseAssignments().delete(
            productId=product_id, skuId=sku_id, userId=user_id
        ).execute()

    def insert_license(self, product_id: str, sku_id: str, user_id: str) -> Dict[str, Any]:
        return self.licensing.licenseAssignments().insert(
            productId=product_id, skuId=sku_id, body={'userId': user_id}
        ).execute()

    # =========================================================================
    # Reports
    # =========================================================================

    def list_login_events(self, start_time: str, end_time: str,
                          page_token: Optional[str] = None,
                          user_key: str = 'all',
                          max_results: int = ACTIVITIES_PAGE_SIZE) -> Dict[str, Any]:
        return self.reports.activities().list(
            userKey=user_key,
            applicationName='login',
            startTime=start_time,
            endTime=end_time,
            maxResults=max_results,
            pageToken=page_token,
        ).execute()

    # =========================================================================
    # Data Transfer
    # =========================================================================

    def insert_transfer(self, old_owner_user_id: str, new_owner_user_id: str,
                        application_id: str,
                        params: Optional[List[Dict[str, Any]]] = None) -> Dict[str, Any]:
        body = {
            'oldOwnerUserId': old_owner_user_id,
            'newOwnerUserId': new_owner_user_id,
            'applicationDataTransfers': [{
                'applicationId': application_id,
                'applicationTransferParams': params or [],
            }],
        }
        return self.datatransfer.transfers().insert(body=body).execute()

    def list_transfer_applications(self, max_results: int = 10) -> Dict[str, Any]:
        return self.datatransfer.applications().list(maxResults=max_results).execute()

    # =========================================================================
    # Gmail
    # =========================================================================

    def send_message(self, raw: str, sender: Optional[str] = None) -> Dict[str, Any]:
        """Send a base64url-encoded RFC 2822 message, impersonating sender when possible."""
        credentials = None
        if sender and hasattr(self.credentials, 'with_subject'):
            credentials = self.credentials.with_subject(sender)
        gmail = self._service('gmail', 'v1', credentials=credentials)
        return gmail.users().messages().send(userId='me', body={'raw': raw}).execute()
