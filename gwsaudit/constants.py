"""
Constants for the Workspace inactivity audit tools.

This module defines all magic strings and numbers used across the codebase
to prevent typos, ensure consistency, and make maintenance easier.
"""

# =============================================================================
# Time Constants
# =============================================================================

SECONDS_PER_HOUR = 3600

# Reports API keeps login activity for 180 days
REPORTS_RETENTION_DAYS = 180

# Directory API reports this value for users who never signed in
NEVER_LOGGED_IN_SENTINEL = "1970-01-01T00:00:00.000Z"

# =============================================================================
# Default Configuration Values
# =============================================================================

DEFAULT_CUSTOMER = "my_customer"
DEFAULT_PRODUCT_ID = "Google-Apps"
DEFAULT_TARGET_SKU = "1010020020"  # Enterprise Plus
DEFAULT_REPLACEMENT_SKU = "1010010001"  # Cloud Identity Free
DEFAULT_ARCHIVE_SKU = "1010340001"  # Enterprise Plus - Archived User
DEFAULT_INACTIVITY_DAYS = 180
DEFAULT_MAX_ACTIONS = 50
DEFAULT_BATCH_SIZE = 500
DEFAULT_TIME_BUDGET_SECONDS = 300
DEFAULT_DRIVE_APPLICATION_ID = "55656082996"  # Drive and Docs

# Values left in sample configs that must be replaced before running
PLACEHOLDER_VALUES = frozenset({
    "",
    "REPLACE_WITH_ACTUAL_ARCHIVE_SKU_ID",
    "REPLACE_WITH_SKU_ID",
    "YOUR_SKU_ID_HERE",
})

# =============================================================================
# Page Sizes (provider limits)
# =============================================================================

USERS_PAGE_SIZE = 500
LICENSES_PAGE_SIZE = 1000
ACTIVITIES_PAGE_SIZE = 1000
GROUPS_PAGE_SIZE = 200
MEMBERS_PAGE_SIZE = 200

# =============================================================================
# Rate Limit Delays (seconds)
# =============================================================================

LICENSE_PAGE_DELAY = 0.1
ACTIVITY_PAGE_DELAY = 0.2
GROUP_PAGE_DELAY = 0.1
DEFAULT_GROUP_DELAY = 0.1
DEFAULT_ACTION_DELAY = 0.2

# =============================================================================
# Action Modes
# =============================================================================

MODE_REPORT = "report"
MODE_SUSPEND = "suspend"
MODE_ARCHIVE = "archive"
MODE_SUSPEND_RELICENSE = "suspend_relicense"

ACTION_MODES = (MODE_REPORT, MODE_SUSPEND, MODE_ARCHIVE, MODE_SUSPEND_RELICENSE)

# Action step names
STEP_SUSPEND = "suspend"
STEP_REMOVE_LICENSE = "remove_license"
STEP_ASSIGN_LICENSE = "assign_license"
STEP_TRANSFER_FILES = "transfer_files"

# =============================================================================
# Group Roles
# =============================================================================

ROLE_OWNER = "OWNER"
ROLE_MANAGER = "MANAGER"

# =============================================================================
# Exclusion Rules
# =============================================================================

EXCLUSION_ADMIN = "admin"
EXCLUSION_ORG_UNIT = "org_unit"
EXCLUSION_REASON_ADMIN = "Admin user"

# =============================================================================
# OAuth Scopes
# =============================================================================

SCOPE_DIRECTORY_USER = "https://www.googleapis.com/auth/admin.directory.user"
SCOPE_DIRECTORY_CUSTOMER = "https://www.googleapis.com/auth/admin.directory.customer.readonly"
SCOPE_DIRECTORY_GROUP = "https://www.googleapis.com/auth/admin.directory.group.readonly"
SCOPE_DIRECTORY_MEMBER = "https://www.googleapis.com/auth/admin.directory.group.member.readonly"
SCOPE_LICENSING = "https://www.googleapis.com/auth/apps.licensing"
SCOPE_REPORTS_AUDIT = "https://www.googleapis.com/auth/admin.reports.audit.readonly"
SCOPE_DATA_TRANSFER = "https://www.googleapis.com/auth/admin.datatransfer"
SCOPE_GMAIL_SEND = "https://www.googleapis.com/auth/gmail.send"

DEFAULT_SCOPES = [
    SCOPE_DIRECTORY_USER,
    SCOPE_DIRECTORY_CUSTOMER,
    SCOPE_DIRECTORY_GROUP,
    SCOPE_DIRECTORY_MEMBER,
    SCOPE_LICENSING,
    SCOPE_REPORTS_AUDIT,
    SCOPE_DATA_TRANSFER,
    SCOPE_GMAIL_SEND,
]

# =============================================================================
# SKU Catalog
# Source: https://developers.google.com/workspace/admin/licensing/v1/how-tos/products
# =============================================================================

SKU_CATALOG = {
    "Google-Apps": {
        "1010020020": "Enterprise Plus",
        "1010020028": "Enterprise Standard",
        "1010020027": "Business Starter",
        "1010020025": "Business Plus",
        "1010060003": "Enterprise Essentials",
        "1010060001": "Essentials Starter",
        "1010010001": "Cloud Identity Free",
        "1010050001": "Cloud Identity Premium",
        "1010310003": "Education Plus Legacy (Student)",
        "1010340001": "Enterprise Plus - Archived User",
    },
    "101031": {
        "1010310008": "Education Plus",
        "1010310002": "Education Standard",
    },
    "Google-Vault": {
        "1010330003": "Google Vault",
        "1010330004": "Google Vault - Former Employee",
    },
}

# SKU ids tried when looking for the Cloud Identity SKU of a tenant. Older
# tenants report some of these under alternate ids.
CLOUD_IDENTITY_SKU_CANDIDATES = {
    "1010010001": "Cloud Identity Free",
    "1010050001": "Cloud Identity Premium",
    "1010010002": "Cloud Identity Free (alternate)",
    "1010020034": "Cloud Identity Free (new)",
}

# Result of checking one SKU id against listForProductAndSku
SKU_ASSIGNED = "assigned"
SKU_UNASSIGNED = "no users assigned"
SKU_UNAVAILABLE = "not available"

# Users listed per SKU in the SKU finder
SKU_SAMPLE_SIZE = 3

# =============================================================================
# Report Columns
# =============================================================================

INACTIVE_USERS_COLUMNS = [
    "Name",
    "Email",
    "OU Path",
    "Last Login Time",
    "Login Source",
    "Creation Time",
    "Suspended",
    "Licenses",
    "Has Target License",
    "Excluded",
    "Exclusion Reason",
]

ACTION_RESULTS_COLUMNS = [
    "Name",
    "Email",
    "OU Path",
    "Last Login Time",
    "Original Licenses",
    "Status",
    "Suspension",
    "License Removal",
    "License Assignment",
    "File Transfer",
    "New Licenses",
    "Error",
]

GROUP_FINDINGS_COLUMNS = [
    "Group Name",
    "Group Email",
    "Description",
    "Member Count",
    "Has Owner?",
    "Has Manager?",
    "Missing Roles",
    "Admin Created",
]

LICENSE_REPORT_COLUMNS = [
    "Email",
    "Full Name",
    "Status",
    "License Name",
    "License SKU ID",
]

SKU_FINDER_COLUMNS = [
    "SKU ID",
    "SKU Name",
    "Role",
    "Status",
    "Users",
    "Sample Users",
]

ACCESS_CHECK_COLUMNS = [
    "API",
    "Scope",
    "Status",
    "Detail",
]
