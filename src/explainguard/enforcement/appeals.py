"""Appeals: authors asking, through the private moderator channel, for a
removed item to be reinstated.

The checks run in a fixed order and the "was this removed by us" check
comes before the explanation check, so a valid explanation can never undo
a removal a human moderator made for some other reason.
"""
from __future__ import annotations

import logging
from typing import Optional

from ..errors import PermissionDeniedError, TransientError
from .config_schema import EnforcementConfig
from .explanation import find_explanation
from .matching import any_keyword_present
from .models import AppealMessage, AppealOutcome, ContentItem, Notification
from .orchestrator import EscalationOrchestrator
from .templates import item_link, render

log = logging.getLogger("explainguard.appeals")

_ID_CHARS = "abcdefghijklmnopqrstuvwxyz0123456789"


def _read_id(text: str, start: int) -> str:
    end = start
    while end < len(text) and text[end].lower() in _ID_CHARS:
        end += 1
    return text[start:end]


def _after(text: str, marker: str) -> Optional[str]:
    lowered = text.lower()
    pos = lowered.find(marker)
    while pos != -1:
        found = _read_id(text, pos + len(marker))
        if found:
            return found.lower()
        pos = lowered.find(marker, pos + 1)
    return None


def _bare_id(text: str) -> Optional[str]:
    token = []
    for ch in text + " ":
        if ch.lower() in _ID_CHARS:
            token.append(ch)
            continue
        if 6 <= len(token) <= 7 and any(c.isdigit() for c in token):
            return "".join(token).lower()
        token = []
    return None


def extract_item_id(text: Optional[str]) -> Optional[str]:
    """Find an item reference: full link, then short link, then a bare id.

    A bare id is 6-7 alphanumerics with at least one digit; the first
    match of the first kind found wins.
    """
    if not text:
        return None
    return _after(text, "/comments/") or _after(text, "redd.it/") or _bare_id(text)


class AppealHandler:
    def __init__(self, orchestrator: EscalationOrchestrator) -> None:
        self.orchestrator = orchestrator
        self.platform = orchestrator.platform
        self.records = orchestrator.records
        self.actions = orchestrator.actions
        self.calls = orchestrator.calls

    def is_appeal(self, message: AppealMessage, config: EnforcementConfig) -> bool:
        if not config.appeals_enabled:
            return False
        if not config.appeal_subject_keywords:
            return True
        return any_keyword_present(message.subject or "", config.appeal_subject_keywords)

    async def _reply(self, message: AppealMessage, text: str, config: EnforcementConfig, *, archive: bool = False) -> None:
        await self.calls.attempt("reply_to_appeal", self.platform.reply_to_appeal, message.conversation_id, text)
        if archive and config.auto_archive_appeals:
            await self.calls.attempt("archive_appeal", self.platform.archive_appeal, message.conversation_id)

    async def handle(self, message: AppealMessage) -> AppealOutcome:
        config = self.orchestrator.config_provider()
        if not self.is_appeal(message, config):
            log.info("Message %s is not an appeal (subject %r)", message.conversation_id, message.subject)
            return AppealOutcome.IGNORED

        try:
            return await self._process(message, config)
        except Exception as e:
            log.exception("Appeal %s failed", message.conversation_id)
            await self._reply(message, config.appeal_message("appeal_error_message"), config)
            await self.orchestrator.notifier.notify(
                Notification(
                    "core_error",
                    extract_item_id(message.body) or "-",
                    message.sender or "[unknown]",
                    f"appeal failed: {type(e).__name__}: {e}",
                    community=config.community_name,
                )
            )
            return AppealOutcome.ERROR

    async def _fetch(self, item_id: str) -> Optional[ContentItem]:
        res = await self.calls.attempt("get_item", self.platform.get_item, item_id, item_id=item_id)
        if res.success:
            return res.data
        if res.not_found:
            return None
        if res.forbidden:
            raise PermissionDeniedError(f"cannot fetch {item_id}")
        raise TransientError(f"fetching {item_id} failed: {res.error}")

    async def _process(self, message: AppealMessage, config: EnforcementConfig) -> AppealOutcome:
        item_id = extract_item_id(message.body) or extract_item_id(message.subject)
        if item_id is None:
            await self._reply(message, config.appeal_message("appeal_no_item_id_message"), config)
            return AppealOutcome.NO_ITEM_ID

        item = await self._fetch(item_id)
        if item is None:
            await self._reply(message, render(config.appeal_message("appeal_not_found_message"), itemId=item_id), config)
            return AppealOutcome.ITEM_NOT_FOUND

        url = item_link(item.permalink, item.url)
        if not item.removed:
            text = render(config.appeal_message("appeal_already_approved_message"), itemId=item.id, itemUrl=url)
            await self._reply(message, text, config, archive=True)
            return AppealOutcome.ALREADY_APPROVED

        # Must stay ahead of the explanation check.
        removal = await self.records.get_removal(item.id)
        if removal is None or not removal.visibility_removed:
            log.warning("Appeal for %s refused: removal not made by this bot", item.id)
            await self._reply(message, config.appeal_message("appeal_not_core_removal_message"), config)
            return AppealOutcome.NOT_REMOVED_BY_CORE

        sender = (message.sender or "").lower()
        if not sender or not item.author or sender != item.author.lower():
            log.warning("Appeal for %s refused: sender %s is not the author", item.id, message.sender)
            await self._reply(message, config.appeal_message("appeal_not_author_message"), config)
            return AppealOutcome.NOT_AUTHOR

        res = await self.calls.attempt("list_annotations", self.platform.list_annotations, item.id, item_id=item.id)
        if not res.success:
            raise TransientError(f"listing annotations on {item.id} failed: {res.error}")
        result = find_explanation(item, res.data or (), config, bot_username=await self.orchestrator.bot_username())
        if not result.valid:
            text = render(
                config.appeal_message("appeal_no_explanation_message"),
                reason=result.reason,
                minLength=config.min_explanation_length,
            )
            await self._reply(message, text, config)
            return AppealOutcome.NO_VALID_EXPLANATION

        if not await self.actions.reinstate(item, config, reason="Reinstated via appeal"):
            raise TransientError(f"reinstatement of {item.id} did not complete")
        if result.flag_for_review:
            await self.actions.flag_for_review(item, result, config)

        text = render(config.appeal_message("appeal_success_message"), itemId=item.id, itemUrl=url)
        await self._reply(message, text, config, archive=True)
        log.info("Appeal for %s granted", item.id)
        return AppealOutcome.REINSTATED
