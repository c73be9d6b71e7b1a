"""
Data models for the Workspace inactivity audit tools.
"""
import logging
from dataclasses import asdict, dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional, Tuple

from .constants import EXCLUSION_ADMIN, NEVER_LOGGED_IN_SENTINEL

logger = logging.getLogger(__name__)


def parse_timestamp(value: Optional[str]) -> Optional[datetime]:
    """
    Parse an RFC 3339 timestamp from the Admin APIs into an aware UTC datetime.

    Returns None for empty values and for the epoch sentinel the Directory API
    uses for users who never signed in. A malformed value is logged and read
    as None so one bad record cannot stop a scan.
    """
    if not value or value == NEVER_LOGGED_IN_SENTINEL:
        return None
    try:
        parsed = datetime.fromisoformat(str(value).replace("Z", "+00:00"))
    except ValueError:
        logger.warning(f"Ignoring malformed timestamp {value!r}")
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    parsed = parsed.astimezone(timezone.utc)
    if parsed.timestamp() == 0:
        return None
    return parsed


class LoginSource(str, Enum):
    """Where an effective last-login timestamp came from."""
    REPORTS = "reports"
    DIRECTORY = "directory"


class ActionState(str, Enum):
    """Lifecycle of one user's action: PENDING -> one terminal state."""
    PENDING = "pending"
    DRY_RUN_SIMULATED = "dry_run_simulated"
    SUCCEEDED = "succeeded"
    FAILED = "failed"


@dataclass(frozen=True)
class User:
    """
    Snapshot of a Directory user for one run.
    """
    email: str
    user_id: str = ""
    full_name: str = "N/A"
    org_unit_path: str = "/"
    creation_time: Optional[datetime] = None
    suspended: bool = False
    is_admin: bool = False
    is_delegated_admin: bool = False
    last_login_time: Optional[datetime] = None  # None: never seen by the directory
    manager_email: Optional[str] = None

    @property
    def key(self) -> str:
        """Case-insensitive comparison key."""
        return self.email.lower()

    @classmethod
    def from_api(cls, data: Dict[str, Any]) -> "User":
        """Build a User from a Directory API user resource."""
        name = data.get("name") or {}
        manager = None
        for relation in data.get("relations") or []:
            if relation.get("type") == "manager" and relation.get("value"):
                manager = relation["value"]
                break

        return cls(
            email=data.get("primaryEmail", ""),
            user_id=data.get("id", ""),
            full_name=name.get("fullName") or "N/A",
            org_unit_path=data.get("orgUnitPath") or "/",
            creation_time=parse_timestamp(data.get("creationTime")),
            suspended=bool(data.get("suspended", False)),
            is_admin=bool(data.get("isAdmin", False)),
            is_delegated_admin=bool(data.get("isDelegatedAdmin", False)),
            last_login_time=parse_timestamp(data.get("lastLoginTime")),
            manager_email=manager,
        )


@dataclass(frozen=True)
class LicenseAssignment:
    """One (user, SKU) license assignment."""
    user_key: str
    sku_id: str
    sku_name: str
    product_id: str = ""


@dataclass(frozen=True)
class Exclusion:
    """Why a user was kept out of the action pipeline."""
    rule: str  # "admin" or "org_unit"
    reason: str

    @property
    def is_admin_rule(self) -> bool:
        return self.rule == EXCLUSION_ADMIN


@dataclass(frozen=True)
class ClassifiedUser:
    """
    A directory user together with everything computed about it in one run.

    Built once by the user enumerator and threaded through the executor and
    report stages without being mutated.
    """
    base: User
    inactive: bool
    effective_last_login: Optional[datetime] = None
    login_source: Optional[LoginSource] = None
    licenses: Tuple[LicenseAssignment, ...] = ()
    exclusion: Optional[Exclusion] = None

    @property
    def email(self) -> str:
        return self.base.email

    @property
    def is_excluded(self) -> bool:
        return self.exclusion is not None

    @property
    def license_summary(self) -> str:
        if not self.licenses:
            return "No licenses"
        return ", ".join(a.sku_name for a in self.licenses)

    def has_sku(self, sku_id: str) -> bool:
        return any(a.sku_id == sku_id for a in self.licenses)


@dataclass
class StepResult:
    """Outcome of one step of a multi-step action."""
    name: str
    state: ActionState = ActionState.PENDING
    message: str = "Pending"


@dataclass
class ActionResult:
    """Per-user outcome of the action executor."""
    user: ClassifiedUser
    state: ActionState = ActionState.PENDING
    steps: List[StepResult] = field(default_factory=list)
    error: Optional[str] = None
    new_licenses: str = ""

    def step(self, name: str) -> Optional[StepResult]:
        for step in self.steps:
            if step.name == name:
                return step
        return None

    def step_message(self, name: str) -> str:
        step = self.step(name)
        return step.message if step else "N/A"


@dataclass
class GroupFinding:
    """A group missing an OWNER and/or a MANAGER."""
    name: str
    email: str
    description: str = "N/A"
    direct_members_count: int = 0
    admin_created: bool = False
    has_owner: bool = False
    has_manager: bool = False

    @property
    def missing_roles(self) -> str:
        missing = []
        if not self.has_owner:
            missing.append("OWNER")
        if not self.has_manager:
            missing.append("MANAGER")
        return ", ".join(missing)

    def to_dict(self) -> Dict:
        """Convert to dictionary for JSON serialization."""
        return asdict(self)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "GroupFinding":
        return cls(
            name=data.get("name", ""),
            email=data.get("email", ""),
            description=data.get("description") or "N/A",
            direct_members_count=int(data.get("direct_members_count") or 0),
            admin_created=bool(data.get("admin_created", False)),
            has_owner=bool(data.get("has_owner", False)),
            has_manager=bool(data.get("has_manager", False)),
        )
