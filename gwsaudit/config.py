"""
Workspace Audit - Configuration Management

Supports loading configuration from:
1. YAML config file (--config)
2. Environment variables (GWS_*)
3. Command-line arguments (highest priority)

The merged settings are converted once into an immutable AuditConfig that is
passed explicitly to every component.

Config file example:
```yaml
admin_email: admin@example.com
credentials_file: ${GWS_CREDENTIALS_FILE}
inactivity_days: 180
dry_run: true

licenses:
  product_id: Google-Apps
  target_sku: "1010020020"

actions:
  mode: suspend_relicense
  max_actions: 50
  excluded_ou_paths:
    - /Legal
```
"""
import os
import re
import stat
import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Dict, Any, Optional, Tuple

import yaml

from .constants import (
    ACTION_MODES,
    DEFAULT_ACTION_DELAY,
    DEFAULT_ARCHIVE_SKU,
    DEFAULT_BATCH_SIZE,
    DEFAULT_CUSTOMER,
    DEFAULT_DRIVE_APPLICATION_ID,
    DEFAULT_GROUP_DELAY,
    DEFAULT_INACTIVITY_DAYS,
    DEFAULT_MAX_ACTIONS,
    DEFAULT_PRODUCT_ID,
    DEFAULT_REPLACEMENT_SKU,
    DEFAULT_TARGET_SKU,
    DEFAULT_TIME_BUDGET_SECONDS,
    MODE_ARCHIVE,
    MODE_REPORT,
    MODE_SUSPEND_RELICENSE,
    PLACEHOLDER_VALUES,
    REPORTS_RETENTION_DAYS,
)
from .utils import parse_recipients

logger = logging.getLogger(__name__)


# Default config file locations (checked in order)
DEFAULT_CONFIG_PATHS = [
    './gws-audit.yaml',
    './gws-audit.yml',
    '~/.gws-audit/config.yaml',
    '~/.gws-audit/config.yml',
]

# Mapping from config keys to env vars
ENV_VAR_MAPPING = {
    'output': 'GWS_OUTPUT',
    'log_level': 'GWS_LOG_LEVEL',
    'admin_email': 'GWS_ADMIN_EMAIL',
    'credentials_file': 'GWS_CREDENTIALS_FILE',
    'customer': 'GWS_CUSTOMER',
    'inactivity_days': 'GWS_INACTIVITY_DAYS',
    'dry_run': 'GWS_DRY_RUN',
    'licenses.product_id': 'GWS_PRODUCT_ID',
    'licenses.target_sku': 'GWS_TARGET_SKU',
    'licenses.replacement_sku': 'GWS_REPLACEMENT_SKU',
    'licenses.archive_sku': 'GWS_ARCHIVE_SKU',
    'actions.mode': 'GWS_MODE',
    'actions.max_actions': 'GWS_MAX_ACTIONS',
    'actions.excluded_ou_paths': 'GWS_EXCLUDED_OUS',
    'actions.exclude_admins': 'GWS_EXCLUDE_ADMINS',
    'groups.batch_size': 'GWS_BATCH_SIZE',
    'groups.time_budget': 'GWS_TIME_BUDGET',
    'groups.checkpoint_file': 'GWS_CHECKPOINT_FILE',
    'notify.enabled': 'GWS_NOTIFY',
    'notify.recipients': 'GWS_NOTIFY_RECIPIENTS',
    'notify.sender': 'GWS_NOTIFY_SENDER',
}

_LIST_KEYS = ('actions.excluded_ou_paths', 'notify.recipients')
_BOOL_KEYS = ('dry_run', 'actions.exclude_admins', 'notify.enabled')
_INT_DEFAULTS = {
    'inactivity_days': DEFAULT_INACTIVITY_DAYS,
    'actions.max_actions': DEFAULT_MAX_ACTIONS,
    'groups.batch_size': DEFAULT_BATCH_SIZE,
}


class ConfigError(Exception):
    """Invalid or incomplete configuration. Raised before any API call is made."""


def _to_bool(value: Any) -> bool:
    if isinstance(value, bool):
        return value
    return str(value).strip().lower() in ('true', '1', 'yes', 'on')


def _substitute_env_vars(value: Any) -> Any:
    """Substitute ${ENV_VAR} patterns in string values."""
    if isinstance(value, str):
        # Pattern: ${VAR_NAME} or ${VAR_NAME:-default}
        pattern = r'\$\{([^}:]+)(?::-([^}]*))?\}'

        def replace(match):
            var_name = match.group(1)
            default = match.group(2) or ''
            return os.environ.get(var_name, default)

        return re.sub(pattern, replace, value)
    elif isinstance(value, dict):
        return {k: _substitute_env_vars(v) for k, v in value.items()}
    elif isinstance(value, list):
        return [_substitute_env_vars(item) for item in value]
    return value


def _get_nested(data: Dict, key_path: str, default: Any = None) -> Any:
    """Get a nested value from a dict using dot notation."""
    keys = key_path.split('.')
    value = data
    for key in keys:
        if isinstance(value, dict) and key in value:
            value = value[key]
        else:
            return default
    return value


def _set_nested(data: Dict, key_path: str, value: Any) -> None:
    """Set a nested value in a dict using dot notation."""
    keys = key_path.split('.')
    for key in keys[:-1]:
        data = data.setdefault(key, {})
    data[keys[-1]] = value


def load_config_file(config_path: str) -> Dict[str, Any]:
    """Load configuration from a YAML file."""
    path = Path(config_path).expanduser()

    if not path.exists():
        raise FileNotFoundError(f"Config file not found: {config_path}")

    # Config may reference a service account key; warn on loose permissions
    file_mode = path.stat().st_mode
    if file_mode & (stat.S_IRWXG | stat.S_IRWXO):
        logger.warning(f"Config file {config_path} has loose permissions. "
                       f"Consider: chmod 600 {config_path}")

    logger.info(f"Loading config from {path}")

    with open(path) as f:
        config = yaml.safe_load(f) or {}

    return _substitute_env_vars(config)


def find_default_config() -> Optional[str]:
    """Find a config file in default locations."""
    for path in DEFAULT_CONFIG_PATHS:
        expanded = Path(path).expanduser()
        if expanded.exists():
            return str(expanded)
    return None


def load_env_config() -> Dict[str, Any]:
    """Load configuration from environment variables."""
    config: Dict[str, Any] = {}

    for config_key, env_var in ENV_VAR_MAPPING.items():
        value = os.environ.get(env_var)
        if value is None:
            continue
        if config_key in _LIST_KEYS:
            value = [v.strip() for v in value.split(',') if v.strip()]
        elif config_key in _BOOL_KEYS:
            value = _to_bool(value)
        _set_nested(config, config_key, value)

    return config


def merge_configs(*configs: Dict[str, Any]) -> Dict[str, Any]:
    """Merge multiple config dicts. Later configs override earlier ones."""
    result: Dict[str, Any] = {}

    for config in configs:
        for key, value in config.items():
            if isinstance(value, dict) and isinstance(result.get(key), dict):
                result[key] = merge_configs(result[key], value)
            elif value is not None:
                result[key] = value

    return result


def args_to_config(args) -> Dict[str, Any]:
    """Convert argparse args to config dict format."""
    config: Dict[str, Any] = {}

    # Map argparse attributes to config structure
    arg_mapping = {
        'output': 'output',
        'log_level': 'log_level',
        'admin_email': 'admin_email',
        'credentials_file': 'credentials_file',
        'customer': 'customer',
        'inactivity_days': 'inactivity_days',
        'dry_run': 'dry_run',
        'product_id': 'licenses.product_id',
        'target_sku': 'licenses.target_sku',
        'replacement_sku': 'licenses.replacement_sku',
        'archive_sku': 'licenses.archive_sku',
        'assign_replacement': 'licenses.assign_replacement',
        'mode': 'actions.mode',
        'max_actions': 'actions.max_actions',
        'excluded_ous': 'actions.excluded_ou_paths',
        'exclude_admins': 'actions.exclude_admins',
        'transfer_files': 'actions.transfer_files',
        'batch_size': 'groups.batch_size',
        'time_budget': 'groups.time_budget',
        'checkpoint_file': 'groups.checkpoint_file',
        'notify': 'notify.enabled',
        'recipients': 'notify.recipients',
        'sender': 'notify.sender',
    }

    for arg_name, config_key in arg_mapping.items():
        value = getattr(args, arg_name, None)
        if value is not None:
            if arg_name in ('excluded_ous', 'recipients') and isinstance(value, str):
                value = [v.strip() for v in value.split(',') if v.strip()]
            _set_nested(config, config_key, value)

    return config


def load_config(args) -> Dict[str, Any]:
    """
    Load configuration from all sources and merge them.

    Priority (highest to lowest):
    1. CLI arguments
    2. Config file (--config or default location)
    3. Environment variables

    Returns merged config dict.
    """
    configs = []

    env_config = load_env_config()
    if env_config:
        logger.debug("Loaded config from environment variables")
        configs.append(env_config)

    config_path = getattr(args, 'config', None)
    if config_path:
        configs.append(load_config_file(config_path))
    else:
        default_config = find_default_config()
        if default_config:
            logger.info(f"Found default config file: {default_config}")
            configs.append(load_config_file(default_config))

    configs.append(args_to_config(args))

    return merge_configs(*configs)


# =============================================================================
# Immutable Run Configuration
# =============================================================================

@dataclass(frozen=True)
class AuditConfig:
    """Validated settings for one run. Never mutated after construction."""
    # Connection
    admin_email: Optional[str] = None
    credentials_file: Optional[str] = None
    customer: str = DEFAULT_CUSTOMER

    # Classification
    inactivity_days: int = DEFAULT_INACTIVITY_DAYS
    retention_days: int = REPORTS_RETENTION_DAYS

    # Licenses
    product_id: str = DEFAULT_PRODUCT_ID
    target_sku: str = DEFAULT_TARGET_SKU
    replacement_sku: str = DEFAULT_REPLACEMENT_SKU
    archive_sku: str = DEFAULT_ARCHIVE_SKU
    assign_replacement: bool = False

    # Actions
    mode: str = MODE_REPORT
    dry_run: bool = True
    max_actions: int = DEFAULT_MAX_ACTIONS
    excluded_ou_paths: Tuple[str, ...] = ()
    exclude_admins: bool = True
    transfer_files: bool = False
    drive_application_id: str = DEFAULT_DRIVE_APPLICATION_ID
    action_delay: float = DEFAULT_ACTION_DELAY

    # Groups audit
    batch_size: int = DEFAULT_BATCH_SIZE
    time_budget: float = DEFAULT_TIME_BUDGET_SECONDS
    group_delay: float = DEFAULT_GROUP_DELAY
    checkpoint_file: str = './gws_groups_checkpoint.json'

    # Notification
    notify: bool = False
    recipients: Tuple[str, ...] = ()
    sender: Optional[str] = None
    subject: Optional[str] = None

    # Output
    output: str = '.'
    log_level: str = 'INFO'


def build_audit_config(merged: Dict[str, Any], check_skus: bool = True) -> AuditConfig:
    """
    Convert a merged config dict into a validated AuditConfig.

    check_skus=False accepts placeholder SKU ids, for the modes that help
    find the right ones.

    Raises:
        ConfigError: if a value is missing, a placeholder, or out of range
    """
    def get(key_path: str, default: Any) -> Any:
        value = _get_nested(merged, key_path)
        return default if value is None or value == '' else value

    try:
        ints = {key: int(get(key, default)) for key, default in _INT_DEFAULTS.items()}
        time_budget = float(get('groups.time_budget', DEFAULT_TIME_BUDGET_SECONDS))
        action_delay = float(get('actions.delay', DEFAULT_ACTION_DELAY))
        group_delay = float(get('groups.delay', DEFAULT_GROUP_DELAY))
    except (TypeError, ValueError) as e:
        raise ConfigError(f"Invalid numeric setting: {e}") from e

    excluded = get('actions.excluded_ou_paths', [])
    if isinstance(excluded, str):
        excluded = [v.strip() for v in excluded.split(',') if v.strip()]

    config = AuditConfig(
        admin_email=get('admin_email', None),
        credentials_file=get('credentials_file', None),
        customer=str(get('customer', DEFAULT_CUSTOMER)),
        inactivity_days=ints['inactivity_days'],
        product_id=str(get('licenses.product_id', DEFAULT_PRODUCT_ID)),
        target_sku=str(_get_nested(merged, 'licenses.target_sku', DEFAULT_TARGET_SKU)),
        replacement_sku=str(_get_nested(merged, 'licenses.replacement_sku', DEFAULT_REPLACEMENT_SKU)),
        archive_sku=str(_get_nested(merged, 'licenses.archive_sku', DEFAULT_ARCHIVE_SKU)),
        assign_replacement=_to_bool(get('licenses.assign_replacement', False)),
        mode=str(get('actions.mode', MODE_REPORT)).lower(),
        dry_run=_to_bool(get('dry_run', True)),
        max_actions=ints['actions.max_actions'],
        excluded_ou_paths=tuple(str(p) for p in excluded),
        exclude_admins=_to_bool(get('actions.exclude_admins', True)),
        transfer_files=_to_bool(get('actions.transfer_files', False)),
        drive_application_id=str(get('actions.drive_application_id', DEFAULT_DRIVE_APPLICATION_ID)),
        action_delay=action_delay,
        batch_size=ints['groups.batch_size'],
        time_budget=time_budget,
        group_delay=group_delay,
        checkpoint_file=str(get('groups.checkpoint_file', './gws_groups_checkpoint.json')),
        notify=_to_bool(get('notify.enabled', False)),
        recipients=tuple(parse_recipients(get('notify.recipients', []))),
        sender=get('notify.sender', None),
        subject=get('notify.subject', None),
        output=str(get('output', '.')),
        log_level=str(get('log_level', 'INFO')),
    )
    validate_config(config, check_skus=check_skus)
    return config


def _validate_skus(config: AuditConfig) -> None:
    if config.target_sku.strip() in PLACEHOLDER_VALUES:
        raise ConfigError("licenses.target_sku is not set. Update it with the SKU ID to audit.")
    if config.mode == MODE_ARCHIVE and config.archive_sku.strip() in PLACEHOLDER_VALUES:
        raise ConfigError("licenses.archive_sku must be set to your Archived User SKU ID before archiving.")
    if (config.mode == MODE_SUSPEND_RELICENSE and config.assign_replacement
            and config.replacement_sku.strip() in PLACEHOLDER_VALUES):
        raise ConfigError("licenses.replacement_sku must be set when assign_replacement is enabled.")


def validate_config(config: AuditConfig, check_skus: bool = True) -> None:
    """Fail fast on settings that would make a run unsafe or meaningless."""
    if config.mode not in ACTION_MODES:
        raise ConfigError(f"Unknown action mode '{config.mode}'. Choose one of: {', '.join(ACTION_MODES)}")
    if check_skus:
        _validate_skus(config)
    if config.inactivity_days <= 0:
        raise ConfigError("inactivity_days must be a positive number of days.")
    if config.max_actions <= 0:
        raise ConfigError("actions.max_actions must be positive.")
    if config.batch_size <= 0:
        raise ConfigError("groups.batch_size must be positive.")
    if config.time_budget <= 0:
        raise ConfigError("groups.time_budget must be positive.")
    if config.notify and not config.recipients:
        raise ConfigError("notify.enabled is set but notify.recipients is empty.")


def generate_sample_config() -> str:
    """Generate a sample config file content."""
    return '''# Workspace Inactivity Audit Configuration
#
# Environment variable substitution supported:
#   ${VAR_NAME}           - required env var
#   ${VAR_NAME:-default}  - env var with default value

# =============================================================================
# Common Settings
# =============================================================================

# Super admin to impersonate through domain-wide delegation
admin_email: ${GWS_ADMIN_EMAIL}

# Service account key file (leave empty to use application default credentials)
credentials_file: ${GWS_CREDENTIALS_FILE:-}

# Output directory for reports
output: "./reports"

# Logging level: DEBUG, INFO, WARNING, ERROR
log_level: INFO

# Users whose last login is older than this are inactive
inactivity_days: 180

# Simulate every action without calling a mutating API
dry_run: true


# =============================================================================
# Licenses
# =============================================================================
licenses:
  product_id: Google-Apps

  # SKU audited and removed (Enterprise Plus)
  target_sku: "1010020020"

  # Assigned after removal in suspend_relicense mode (Cloud Identity Free)
  replacement_sku: "1010010001"
  assign_replacement: false

  # Assigned in archive mode. Check your billing console for the right ID.
  archive_sku: "1010340001"


# =============================================================================
# Actions (inactive_users.py)
# =============================================================================
actions:
  # report | suspend | archive | suspend_relicense
  mode: report

  # Safety cap: at most this many users are acted on per run
  max_actions: 50

  # Users in these OUs (and their sub-OUs) are never acted on
  excluded_ou_paths:
    - "/LH - legal hold"

  exclude_admins: true

  # Transfer Drive files to the user's manager after suspension
  transfer_files: false


# =============================================================================
# Groups audit (groups_audit.py)
# =============================================================================
groups:
  batch_size: 500
  # Seconds per invocation before progress is saved
  time_budget: 300
  checkpoint_file: ./gws_groups_checkpoint.json


# =============================================================================
# Notification
# =============================================================================
notify:
  enabled: false
  recipients:
    - it-admins@example.com
  # Mailbox the report is sent from (defaults to admin_email)
  # sender: reports@example.com
'''
