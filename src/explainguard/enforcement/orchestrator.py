from __future__ import annotations

import logging
from datetime import timedelta
from typing import Any, Awaitable, Callable, Optional

from ..errors import PermissionDeniedError, StateStoreError
from ..interfaces import ModerationPlatform, Notifier, Scheduler
from ..services.api_wrapper import APIResult, PlatformCall
from .actions import ActionEngine
from .config_schema import EnforcementConfig
from .explanation import find_explanation
from .models import Evaluation, ExplanationResult, ItemSnapshot, Notification
from .records import EnforcementRepository
from .rule_engine import evaluate
from .safety import fail_open

log = logging.getLogger("explainguard.orchestrator")

CHECK_WARNING = "check_warning"
CHECK_REMOVAL = "check_removal"


class EscalationOrchestrator:
    """Drives each item through grace period, warning, removal and reinstatement.

    Every entry point resolves the configuration once, fetches a fresh
    snapshot and re-validates before acting, so a timer that fires after
    conditions changed is a no-op. Entry points never raise; lost
    permissions and unexpected failures surface as `core_error`.
    """

    def __init__(
        self,
        *,
        platform: ModerationPlatform,
        records: EnforcementRepository,
        scheduler: Scheduler,
        notifier: Notifier,
        config_provider: Callable[[], EnforcementConfig],
        calls: Optional[PlatformCall] = None,
    ) -> None:
        self.platform = platform
        self.records = records
        self.scheduler = scheduler
        self.notifier = notifier
        self.config_provider = config_provider
        self.calls = calls or PlatformCall()
        self.actions = ActionEngine(platform=platform, records=records, notifier=notifier, calls=self.calls)
        self._bot_username: Optional[str] = None

    # -------------------- plumbing --------------------

    async def _guarded(self, operation: str, item_id: str, fn: Callable[[], Awaitable[Any]]) -> Any:
        try:
            return await fn()
        except PermissionDeniedError as e:
            log.error("%s on %s abandoned: permission denied (%s)", operation, item_id, e)
            await self._core_error(item_id, f"{operation}: permission denied ({e})")
        except StateStoreError as e:
            log.warning("%s on %s abandoned: state store unavailable (%s)", operation, item_id, e)
        except Exception as e:
            log.exception("%s on %s failed", operation, item_id)
            await self._core_error(item_id, f"{operation} failed: {type(e).__name__}: {e}")
        return None

    async def _core_error(self, item_id: str, reason: str) -> None:
        await self.notifier.notify(Notification("core_error", item_id, "[core]", reason))

    def _ok(self, res: APIResult, operation: str, item_id: str) -> bool:
        if res.forbidden:
            raise PermissionDeniedError(f"{operation} forbidden for {item_id}")
        return res.success

    async def bot_username(self) -> Optional[str]:
        if self._bot_username is None:
            res = await self.calls.attempt("bot_username", self.platform.bot_username)
            if res.success and res.data:
                self._bot_username = str(res.data)
        return self._bot_username

    async def snapshot(self, item_id: str, config: EnforcementConfig) -> Optional[ItemSnapshot]:
        """Fetch item, annotations and (when needed) moderators; None means skip this pass."""

        res = await self.calls.attempt("get_item", self.platform.get_item, item_id, item_id=item_id)
        if not self._ok(res, "get_item", item_id):
            return None
        item = res.data
        if item is None:
            log.info("Item %s no longer exists", item_id)
            return None

        res = await self.calls.attempt("list_annotations", self.platform.list_annotations, item.id, item_id=item_id)
        if not self._ok(res, "list_annotations", item_id):
            return None
        annotations = tuple(res.data or ())

        moderators: frozenset[str] = frozenset()
        if config.moderator_override_enabled:
            res = await self.calls.attempt("list_moderators", self.platform.list_moderators, item_id=item_id)
            if not self._ok(res, "list_moderators", item_id):
                return None
            moderators = frozenset(res.data or ())

        return ItemSnapshot(item=item, annotations=annotations, moderators=moderators)

    async def _explanation(self, snap: ItemSnapshot, config: EnforcementConfig) -> ExplanationResult:
        return find_explanation(snap.item, snap.annotations, config, bot_username=await self.bot_username())

    async def _schedule(self, job: str, item_id: str, minutes: int) -> None:
        run_at = self.records.now() + timedelta(minutes=max(0, minutes))
        await self.scheduler.schedule(job, item_id, run_at)
        log.info("Scheduled %s for %s at %s", job, item_id, run_at.isoformat(timespec="seconds"))

    async def _handle_compliant(self, snap: ItemSnapshot, result: ExplanationResult, config: EnforcementConfig) -> None:
        item = snap.item
        record = await fail_open("compliant.load_record", lambda: self.records.load(item.id), None)
        if record is None:
            return
        if record.touched:
            done = await self.actions.reinstate(item, config, reason=result.reason)
        elif record.approved is None:
            done = await self.actions.record_compliance(item)
        else:
            done = False
        # Flag once, on the pass that settles the item.
        if done and result.flag_for_review:
            await self.actions.flag_for_review(item, result, config)

    # -------------------- intake --------------------

    async def on_item_submitted(self, item_id: str) -> Optional[Evaluation]:
        return await self._guarded("on_item_submitted", item_id, lambda: self._intake(item_id))

    async def _intake(self, item_id: str) -> Optional[Evaluation]:
        config = self.config_provider()
        # Unknown state counts as processed: never double-enforce.
        if await fail_open("intake.is_processed", lambda: self.records.is_processed(item_id), True):
            log.debug("Item %s already processed", item_id)
            return None

        snap = await self.snapshot(item_id, config)
        if snap is None:
            return None

        evaluation = await evaluate(snap, config, self.records)
        await self.records.mark_processed(item_id)
        if not evaluation.enforce:
            log.info("Item %s not enforced: %s", item_id, evaluation.reason)
            return evaluation

        log.info("Item %s requires an explanation: %s", item_id, evaluation.reason)
        await self._schedule(CHECK_WARNING, snap.item.id, config.grace_period_minutes)
        return evaluation

    # -------------------- timers --------------------

    async def check_warning(self, item_id: str) -> None:
        """Grace period expired."""
        await self._guarded(CHECK_WARNING, item_id, lambda: self._check_warning(item_id))

    async def _check_warning(self, item_id: str) -> None:
        config = self.config_provider()
        snap = await self.snapshot(item_id, config)
        if snap is None:
            return

        evaluation = await evaluate(snap, config, self.records)
        if not evaluation.enforce:
            log.info("Item %s no longer needs enforcement: %s", item_id, evaluation.reason)
            return

        result = await self._explanation(snap, config)
        if result.valid:
            await self._handle_compliant(snap, result, config)
            return

        warned = await self.actions.issue_warning(snap.item, config)
        if warned and config.enforcement_action == "remove":
            await self._schedule(CHECK_REMOVAL, snap.item.id, config.warning_period_minutes)

    async def check_removal(self, item_id: str) -> None:
        """Warning period expired."""
        await self._guarded(CHECK_REMOVAL, item_id, lambda: self._check_removal(item_id))

    async def _check_removal(self, item_id: str) -> None:
        config = self.config_provider()
        record = await fail_open("check_removal.load_record", lambda: self.records.load(item_id), None)
        if record is None:
            return
        if record.warned is None:
            log.warning("Item %s was never warned, skipping removal", item_id)
            return
        if record.removed is not None:
            log.debug("Item %s already removed by core", item_id)
            return

        snap = await self.snapshot(item_id, config)
        if snap is None:
            return

        evaluation = await evaluate(snap, config, self.records)
        if not evaluation.enforce:
            log.info("Item %s no longer needs enforcement: %s", item_id, evaluation.reason)
            return

        result = await self._explanation(snap, config)
        if result.valid:
            await self._handle_compliant(snap, result, config)
            return

        await self.actions.remove_item(snap.item, config)

    # -------------------- reinstatement checks --------------------

    async def check_for_explanation(self, item_id: str) -> bool:
        """Reinstate a tracked item once a valid explanation exists."""
        return bool(await self._guarded("check_for_explanation", item_id, lambda: self._check_for_explanation(item_id)))

    async def _check_for_explanation(self, item_id: str) -> bool:
        config = self.config_provider()
        if not config.auto_reinstate:
            return False
        record = await fail_open("check_for_explanation.load_record", lambda: self.records.load(item_id), None)
        if record is None or not record.touched:
            return False

        snap = await self.snapshot(item_id, config)
        if snap is None:
            return False

        result = await self._explanation(snap, config)
        if not result.valid:
            log.debug("Item %s still lacks a valid explanation: %s", item_id, result.reason)
            return False
        if not await self.actions.reinstate(snap.item, config, reason=result.reason):
            return False
        if result.flag_for_review:
            await self.actions.flag_for_review(snap.item, result, config)
        return True

    async def sweep(self) -> int:
        """Re-check every tracked item, bounded by `sweep_limit`. Returns how many were reinstated."""

        config = self.config_provider()
        ids = await fail_open("sweep.tracked_item_ids", lambda: self.records.tracked_item_ids(config.sweep_limit), [])
        reinstated = 0
        for item_id in ids:
            if await self.check_for_explanation(item_id):
                reinstated += 1
        log.info("Sweep checked %d tracked items, reinstated %d", len(ids), reinstated)
        return reinstated

    async def poll_new_items(self) -> int:
        """Backup intake from the newest items, for hosts with unreliable submit events."""

        config = self.config_provider()
        if not config.polling_enabled:
            log.debug("Polling disabled, skipping")
            return 0
        res = await self.calls.attempt("list_recent_items", self.platform.list_recent_items, config.polling_limit)
        if not res.success:
            if res.forbidden:
                await self._core_error("-", "poll_new_items: permission denied")
            return 0

        processed = 0
        for item in res.data or ():
            if await self.on_item_submitted(item.id) is not None:
                processed += 1
        log.info("Polling processed %d new items", processed)
        return processed
