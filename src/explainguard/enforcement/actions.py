from __future__ import annotations

import logging
from typing import Optional

from ..errors import PermissionDeniedError, StateStoreError
from ..interfaces import ModerationPlatform, Notifier
from ..services.api_wrapper import APIResult, PlatformCall
from .config_schema import EnforcementConfig
from .models import ContentItem, ExplanationResult, Mark, Notification, NotificationEvent
from .records import EnforcementRepository
from .templates import appeal_link, item_link, render

log = logging.getLogger("explainguard.actions")


class ActionEngine:
    """Executes the warn / remove / reinstate sub-flows.

    Every platform call is attempted once through `PlatformCall`. State is
    written before the matching annotation is posted, and every routine
    checks its target state first so re-entry is a no-op. A lost permission
    on the step that matters is raised as `PermissionDeniedError` for the
    entry point to report; everything else is logged and the flow carries on.
    """

    def __init__(
        self,
        *,
        platform: ModerationPlatform,
        records: EnforcementRepository,
        notifier: Notifier,
        calls: Optional[PlatformCall] = None,
    ) -> None:
        self.platform = platform
        self.records = records
        self.notifier = notifier
        self.calls = calls or PlatformCall()

    # -------------------- helpers --------------------

    async def _notify(self, event: NotificationEvent, item: ContentItem, reason: str, config: EnforcementConfig) -> None:
        await self.notifier.notify(
            Notification(
                event=event,
                item_id=item.id,
                author=item.author or "[deleted]",
                reason=reason,
                item_url=item_link(item.permalink, item.url),
                community=config.community_name,
            )
        )

    def _variables(self, item: ContentItem, config: EnforcementConfig) -> dict:
        url = item_link(item.permalink, item.url)
        return {
            "author": item.author or "[deleted]",
            "username": item.author or "[deleted]",
            "itemTitle": item.title,
            "itemUrl": url,
            "itemId": item.id,
            "graceMinutes": config.grace_period_minutes,
            "warningMinutes": config.warning_period_minutes,
            "appealLink": appeal_link(config.community_name, item.id, url),
        }

    async def _post(self, operation: str, item: ContentItem, text: str) -> Optional[str]:
        res = await self.calls.attempt(operation, self.platform.add_annotation, item.id, text, distinguish=True, item_id=item.id)
        return res.data if res.success else None

    async def _delete_annotation(self, mark: Optional[Mark], item_id: str) -> None:
        if mark is None or not mark.annotation_id:
            return
        res = await self.calls.attempt("delete_annotation", self.platform.delete_annotation, mark.annotation_id, item_id=item_id)
        if res.success or res.not_found:
            log.debug("Annotation %s on %s cleaned up", mark.annotation_id, item_id)

    # -------------------- warning --------------------

    async def issue_warning(self, item: ContentItem, config: EnforcementConfig) -> bool:
        """Warn the author once. Returns True only when a new warning was recorded."""

        try:
            if await self.records.get_warning(item.id) is not None:
                log.info("Item %s already warned, skipping", item.id)
                return False
            mark = await self.records.mark_warned(item.id)
        except StateStoreError as e:
            log.warning("State store unavailable, not warning %s: %s", item.id, e)
            return False

        if config.comment_on_warning:
            text = render(config.warning_template, **self._variables(item, config))
            annotation_id = await self._post("post_warning", item, text)
            if annotation_id:
                try:
                    await self.records.mark_warned(item.id, annotation_id, at=mark.at)
                except StateStoreError as e:
                    log.warning("Could not attach warning annotation %s to %s: %s", annotation_id, item.id, e)

        log.info("Warned author of %s", item.id)
        await self._notify("warning_issued", item, f"Missing explanation after {config.grace_period_minutes} minutes", config)
        return True

    # -------------------- removal --------------------

    async def remove_item(self, item: ContentItem, config: EnforcementConfig) -> bool:
        """Remove and/or report the item per `enforcement_action`.

        A failed removal falls back to a report. If neither lands, nothing is
        recorded and the caller sees False (or `PermissionDeniedError`).
        """

        try:
            if await self.records.get_removal(item.id) is not None:
                log.info("Item %s already removed by core, skipping", item.id)
                return False
            warning = await self.records.get_warning(item.id)
        except StateStoreError as e:
            log.warning("State store unavailable, not removing %s: %s", item.id, e)
            return False

        action = config.enforcement_action
        removed = False
        reported = False
        failures: list[APIResult] = []

        if action in ("remove", "both"):
            res = await self.calls.attempt("remove_item", self.platform.remove_item, item.id, item_id=item.id)
            if res.not_found:
                log.info("Item %s is gone, nothing to remove", item.id)
                return False
            removed = res.success
            if not removed:
                failures.append(res)
                log.info("Falling back to report for %s", item.id)

        if not removed or action in ("report", "both"):
            res = await self.calls.attempt(
                "report_item", self.platform.report_item, item.id, config.report_reason, item_id=item.id
            )
            reported = res.success
            if not reported:
                failures.append(res)

        if not removed and not reported:
            log.error("Neither removal nor report succeeded for %s; abandoning", item.id)
            if any(f.forbidden for f in failures):
                raise PermissionDeniedError(f"cannot remove or report {item.id}")
            return False

        mark = await self.records.mark_removed(item.id, visibility_removed=removed)

        if config.comment_on_removal:
            template = config.removal_template if removed else config.report_template
            text = render(template, action="removed" if removed else "reported", **self._variables(item, config))
            annotation_id = await self._post("post_removal", item, text)
            if annotation_id:
                try:
                    await self.records.mark_removed(item.id, annotation_id, visibility_removed=removed, at=mark.at)
                except StateStoreError as e:
                    log.warning("Could not attach removal annotation %s to %s: %s", annotation_id, item.id, e)

        if config.cleanup_warnings:
            await self._delete_annotation(warning, item.id)

        verb = "removed" if removed else "reported"
        log.info("Item %s %s for missing explanation", item.id, verb)
        await self._notify("item_removed", item, f"Item {verb} for missing explanation", config)
        return True

    # -------------------- reinstatement --------------------

    async def reinstate(self, item: ContentItem, config: EnforcementConfig, *, reason: str = "Valid explanation added") -> bool:
        """Reverse this engine's own warning/removal.

        Refuses items without a `warned` or `removed` record. When the
        visibility restore fails the records are left untouched so the next
        sweep retries.
        """

        try:
            record = await self.records.load(item.id)
        except StateStoreError as e:
            log.warning("State store unavailable, not reinstating %s: %s", item.id, e)
            return False

        if not record.touched:
            log.warning("Refusing to reinstate %s: no enforcement action on record", item.id)
            return False

        if record.removed is not None and record.removed.visibility_removed and item.removed:
            res = await self.calls.attempt("approve_item", self.platform.approve_item, item.id, item_id=item.id)
            if not res.success:
                if res.forbidden:
                    raise PermissionDeniedError(f"cannot restore visibility of {item.id}")
                log.warning("Visibility restore failed for %s; leaving records for the next pass", item.id)
                return False

        await self._delete_annotation(record.warned, item.id)
        await self._delete_annotation(record.removed, item.id)

        try:
            await self.records.clear_enforcement(item.id)
        except StateStoreError as e:
            log.error("Could not clear enforcement records for %s: %s", item.id, e)
        try:
            await self.records.mark_approved(item.id)
        except StateStoreError as e:
            log.error("Could not record approval of %s: %s", item.id, e)

        if config.comment_on_reinstatement:
            await self._post("post_reinstatement", item, render(config.reinstatement_template, **self._variables(item, config)))

        log.info("Reinstated %s: %s", item.id, reason)
        await self._notify("item_reinstated", item, reason, config)
        return True

    async def record_compliance(self, item: ContentItem) -> bool:
        """Compliant before any warning: only remember the approval."""
        try:
            await self.records.mark_approved(item.id)
        except StateStoreError as e:
            log.warning("Could not record compliance for %s: %s", item.id, e)
            return False
        log.info("Item %s compliant before warning", item.id)
        return True

    async def flag_for_review(self, item: ContentItem, result: ExplanationResult, config: EnforcementConfig) -> None:
        if result.annotation_id:
            await self.calls.attempt(
                "report_annotation", self.platform.report_annotation, result.annotation_id,
                config.review_report_reason, item_id=item.id,
            )
        else:
            await self.calls.attempt(
                "report_item", self.platform.report_item, item.id, config.review_report_reason, item_id=item.id
            )
        await self._notify("explanation_flagged_for_review", item, result.reason, config)
