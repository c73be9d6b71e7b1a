"""
Google Workspace inactivity audit shared library.
"""
# Import constants module for easy access
from . import constants
from .activity import (
    classify_activity,
    effective_last_login,
    get_cutoff,
    is_inactive,
    resolve_login_activity,
)
from .actions import ActionExecutor
from .checkpoint import (
    BatchCheckpointManager,
    BatchOutcome,
    CheckpointStore,
    JsonFileCheckpointStore,
    MemoryCheckpointStore,
)
from .config import AuditConfig, ConfigError, build_audit_config, load_config
from .constants import (
    ACTION_MODES,
    DEFAULT_INACTIVITY_DAYS,
    MODE_ARCHIVE,
    MODE_REPORT,
    MODE_SUSPEND,
    MODE_SUSPEND_RELICENSE,
    REPORTS_RETENTION_DAYS,
)
from .directory import (
    enumerate_inactive_users,
    get_exclusion,
    list_all_users,
    select_action_candidates,
)
from .diagnostics import check_api_access
from .licenses import build_license_index, find_skus, format_license_summary, get_customer_id, get_sku_name
from .models import (
    ActionResult,
    ActionState,
    ClassifiedUser,
    Exclusion,
    GroupFinding,
    LicenseAssignment,
    LoginSource,
    StepResult,
    User,
)
from .report import EmailNotifier, ReportSink, format_login
from .utils import generate_run_id, get_timestamp, setup_logging, write_csv, write_json
from .workspace import WorkspaceClient, get_credentials

__all__ = [
    # Constants
    'constants',
    'ACTION_MODES',
    'DEFAULT_INACTIVITY_DAYS',
    'MODE_ARCHIVE',
    'MODE_REPORT',
    'MODE_SUSPEND',
    'MODE_SUSPEND_RELICENSE',
    'REPORTS_RETENTION_DAYS',
    # Models
    'ActionResult',
    'ActionState',
    'ClassifiedUser',
    'Exclusion',
    'GroupFinding',
    'LicenseAssignment',
    'LoginSource',
    'StepResult',
    'User',
    # Config
    'AuditConfig',
    'ConfigError',
    'build_audit_config',
    'load_config',
    # Pipeline
    'get_cutoff',
    'resolve_login_activity',
    'classify_activity',
    'is_inactive',
    'effective_last_login',
    'build_license_index',
    'format_license_summary',
    'get_customer_id',
    'get_sku_name',
    'find_skus',
    'list_all_users',
    'get_exclusion',
    'enumerate_inactive_users',
    'select_action_candidates',
    'ActionExecutor',
    # Diagnostics
    'check_api_access',
    # Checkpointing
    'CheckpointStore',
    'JsonFileCheckpointStore',
    'MemoryCheckpointStore',
    'BatchCheckpointManager',
    'BatchOutcome',
    # Output
    'ReportSink',
    'EmailNotifier',
    'format_login',
    # Utils
    'generate_run_id',
    'get_timestamp',
    'setup_logging',
    'write_json',
    'write_csv',
    # Client
    'WorkspaceClient',
    'get_credentials',
]
