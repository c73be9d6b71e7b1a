"""
Action executor: suspend, archive or re-license inactive users.

Safety rails:
- Candidates beyond max_actions are never touched and never reported.
- Dry-run makes zero mutating calls; every step is only described.
- A user's steps run in order and stop at the first failure.
"""
import logging
import time
from typing import Callable, List, Optional, Tuple

from .constants import (
    MODE_ARCHIVE,
    MODE_REPORT,
    MODE_SUSPEND,
    MODE_SUSPEND_RELICENSE,
    STEP_ASSIGN_LICENSE,
    STEP_REMOVE_LICENSE,
    STEP_SUSPEND,
    STEP_TRANSFER_FILES,
)
from .licenses import get_sku_name
from .models import ActionResult, ActionState, ClassifiedUser, StepResult

logger = logging.getLogger(__name__)

# Drive and Docs transfers cover both private and shared files
DRIVE_TRANSFER_PARAMS = [{'key': 'PRIVACY_LEVEL', 'value': ['PRIVATE', 'SHARED']}]

SKIPPED = "Skipped"
NO_MANAGER = "Skipped - No manager found"


class ActionExecutor:
    """
    Apply the configured action mode to a list of candidates.

    Usage:
        executor = ActionExecutor(client, config)
        results = executor.execute(candidates)
    """

    def __init__(self, client, config, sleep: Callable[[float], None] = time.sleep):
        self.client = client
        self.config = config
        self.sleep = sleep

    def plan(self) -> List[str]:
        """Ordered step names for the configured mode."""
        mode = self.config.mode
        if mode == MODE_SUSPEND:
            steps = [STEP_SUSPEND]
        elif mode == MODE_ARCHIVE:
            return [STEP_REMOVE_LICENSE, STEP_ASSIGN_LICENSE]
        elif mode == MODE_SUSPEND_RELICENSE:
            steps = [STEP_SUSPEND, STEP_REMOVE_LICENSE]
            if self.config.assign_replacement:
                steps.append(STEP_ASSIGN_LICENSE)
        else:
            return []
        if self.config.transfer_files:
            steps.append(STEP_TRANSFER_FILES)
        return steps

    def execute(self, candidates: List[ClassifiedUser]) -> List[ActionResult]:
        if self.config.mode == MODE_REPORT:
            logger.info("Report mode: no actions taken")
            return []

        if len(candidates) > self.config.max_actions:
            logger.warning(
                f"{len(candidates)} candidates exceed the safety cap of {self.config.max_actions}; "
                f"{len(candidates) - self.config.max_actions} will be left for a later run"
            )
        selected = candidates[:self.config.max_actions]

        prefix = "[DRY RUN] " if self.config.dry_run else ""
        logger.info(f"{prefix}Running '{self.config.mode}' on {len(selected)} users")

        results = [self._run_user(user) for user in selected]

        failed = sum(1 for r in results if r.state == ActionState.FAILED)
        if failed:
            logger.warning(f"{failed} of {len(results)} users failed")
        return results

    # =========================================================================
    # Per-user processing
    # =========================================================================

    def _run_user(self, user: ClassifiedUser) -> ActionResult:
        steps = self.plan()
        result = ActionResult(user=user, steps=[StepResult(name) for name in steps])
        result.new_licenses = self._projected_licenses(user, steps)

        if self.config.dry_run:
            for step in result.steps:
                step.state = ActionState.DRY_RUN_SIMULATED
                step.message = self._describe(step.name, user)
                logger.info(f"[DRY RUN] {user.email}: {step.message}")
            result.state = ActionState.DRY_RUN_SIMULATED
            return result

        for step in result.steps:
            if result.state == ActionState.FAILED:
                step.message = SKIPPED
                continue
            try:
                step.message = self._perform(step.name, user)
                step.state = ActionState.SUCCEEDED
            except Exception as e:
                step.state = ActionState.FAILED
                step.message = f"Failed: {e}"
                result.state = ActionState.FAILED
                result.error = f"{step.name}: {e}"
                logger.warning(f"Action {step.name} failed for {user.email}: {e}")

        if result.state != ActionState.FAILED:
            result.state = ActionState.SUCCEEDED
            logger.info(f"Processed {user.email}")
        else:
            result.new_licenses = user.license_summary
        return result

    def _projected_licenses(self, user: ClassifiedUser, steps: List[str]) -> str:
        names = [a.sku_name for a in user.licenses]
        if STEP_REMOVE_LICENSE in steps:
            names = [a.sku_name for a in user.licenses if a.sku_id != self.config.target_sku]
        if STEP_ASSIGN_LICENSE in steps:
            sku_id = self._assigned_sku()
            names.append(get_sku_name(sku_id, self.config.product_id))
        return ", ".join(names) if names else "No licenses"

    def _assigned_sku(self) -> str:
        if self.config.mode == MODE_ARCHIVE:
            return self.config.archive_sku
        return self.config.replacement_sku

    def _describe(self, step: str, user: ClassifiedUser) -> str:
        if step == STEP_SUSPEND:
            return "Would suspend user"
        if step == STEP_REMOVE_LICENSE:
            return f"Would remove {get_sku_name(self.config.target_sku, self.config.product_id)}"
        if step == STEP_ASSIGN_LICENSE:
            return f"Would assign {get_sku_name(self._assigned_sku(), self.config.product_id)}"
        if step == STEP_TRANSFER_FILES:
            manager = user.base.manager_email
            return f"Would transfer Drive files to {manager}" if manager else NO_MANAGER
        raise ValueError(f"Unknown action step: {step}")

    def _perform(self, step: str, user: ClassifiedUser) -> str:
        email = user.email
        product_id = self.config.product_id

        if step == STEP_SUSPEND:
            self.client.update_user(email, {'suspended': True})
            self.sleep(self.config.action_delay)
            return "Suspended"

        if step == STEP_REMOVE_LICENSE:
            sku_id = self.config.target_sku
            self.client.remove_license(product_id, sku_id, email)
            self.sleep(self.config.action_delay)
            return f"Removed {get_sku_name(sku_id, product_id)}"

        if step == STEP_ASSIGN_LICENSE:
            sku_id = self._assigned_sku()
            self.client.insert_license(product_id, sku_id, email)
            self.sleep(self.config.action_delay)
            return f"Assigned {get_sku_name(sku_id, product_id)}"

        if step == STEP_TRANSFER_FILES:
            return self._transfer_files(user)

        raise ValueError(f"Unknown action step: {step}")

    def _transfer_files(self, user: ClassifiedUser) -> str:
        manager_email = user.base.manager_email
        if not manager_email:
            logger.info(f"No manager found for {user.email}, skipping file transfer")
            return NO_MANAGER

        old_owner_id, new_owner_id = self._resolve_ids(user, manager_email)
        transfer = self.client.insert_transfer(
            old_owner_user_id=old_owner_id,
            new_owner_user_id=new_owner_id,
            application_id=self.config.drive_application_id,
            params=DRIVE_TRANSFER_PARAMS,
        )
        self.sleep(self.config.action_delay)
        transfer_id = transfer.get('id', 'unknown')
        return f"Transfer to {manager_email} started ({transfer_id})"

    def _resolve_ids(self, user: ClassifiedUser, manager_email: str) -> Tuple[str, str]:
        """Data Transfer needs numeric user IDs, not email addresses."""
        old_owner_id: Optional[str] = user.base.user_id or None
        if not old_owner_id:
            old_owner_id = self.client.get_user(user.email)['id']
        new_owner_id = self.client.get_user(manager_email)['id']
        return old_owner_id, new_owner_id
