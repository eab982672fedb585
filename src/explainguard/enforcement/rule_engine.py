from __future__ import annotations

import logging
from datetime import datetime
from typing import Optional

from .config_schema import EnforcementConfig
from .matching import (
    any_keyword_present,
    contains_url,
    matches_any_pattern,
    matches_domain,
)
from .models import ContentItem, Evaluation, ItemSnapshot
from .records import RECENT_APPROVAL_WINDOW, EnforcementRepository
from .safety import fail_open

log = logging.getLogger("explainguard.rule_engine")


def _text_body(item: ContentItem) -> str:
    return item.body if item.is_text and item.body else ""


def _age_hours(item: ContentItem, now: datetime) -> float:
    return (now - item.created_at).total_seconds() / 3600.0


def check_exclusions(
    snapshot: ItemSnapshot,
    config: EnforcementConfig,
    *,
    now: datetime,
    removed_by_core: bool,
) -> Optional[Evaluation]:
    """Exclusion rules in fixed order; the first that matches wins."""

    item = snapshot.item
    author = (item.author or "").lower()

    if author and author in {a.lower() for a in config.allowlisted_authors}:
        return Evaluation(False, "Allowlisted author")

    if config.max_item_age_hours > 0:
        age = _age_hours(item, now)
        if age > config.max_item_age_hours:
            return Evaluation(False, f"Item too old ({age:.1f}h)")

    if config.max_popularity_score > 0 and item.score > config.max_popularity_score:
        return Evaluation(False, f"Popularity above ceiling ({item.score})")

    body = _text_body(item)
    if body:
        stripped = body.strip().lower()
        if any(stripped.startswith(p.lower()) for p in config.text_exclusion_prefixes):
            return Evaluation(False, "Text starts with exclusion phrase")
        if any_keyword_present(body, config.text_exclusion_contains):
            return Evaluation(False, "Text contains exclusion phrase")

    if item.url and matches_domain(item.url, config.excluded_domains):
        return Evaluation(False, "Link from excluded domain")

    if config.respect_moderator_approval and item.approved:
        return Evaluation(False, "Moderator approved")

    if config.respect_moderator_removal and item.removed and not removed_by_core:
        return Evaluation(False, "Moderator removed")

    if config.moderator_override_enabled and config.moderator_override_phrases:
        moderators = {m.lower() for m in snapshot.moderators}
        # Removed annotations count here; a reverted override still overrides.
        for annotation in snapshot.annotations:
            if not annotation.author or annotation.author.lower() not in moderators:
                continue
            if any_keyword_present(annotation.body, config.moderator_override_phrases):
                log.info("Moderator override on %s by %s", item.id, annotation.author)
                return Evaluation(False, "Moderator granted exception via comment")

    return None


def check_labels(item: ContentItem, config: EnforcementConfig) -> Optional[Evaluation]:
    """Excluded labels beat enforced labels; no label or no match falls through."""

    if not item.flair:
        return None
    label = item.flair.lower()
    if any(x.lower() in label for x in config.excluded_labels):
        return Evaluation(False, "Label excluded")
    if any(x.lower() in label for x in config.enforced_labels):
        return Evaluation(True, "Label enforced")
    return None


def check_type(item: ContentItem, config: EnforcementConfig) -> Evaluation:
    types = config.enforced_types

    if "image" in types and item.kind == "image":
        return Evaluation(True, "Image item")
    if "gallery" in types and item.kind == "gallery":
        return Evaluation(True, "Gallery item")
    if "video" in types and item.kind == "video":
        return Evaluation(True, "Video item")

    body = _text_body(item)
    if body:
        if "text_image" in types and matches_any_pattern(body, config.image_domains):
            return Evaluation(True, "Text item with image link")
        if "text_video" in types and matches_any_pattern(body, config.video_domains):
            return Evaluation(True, "Text item with video link")
        if "text_keywords" in types and any_keyword_present(body, config.enforcement_keywords):
            return Evaluation(True, "Text item with enforcement keyword")
        if "text_url" in types and contains_url(body):
            return Evaluation(True, "Text item with URL")

    if item.is_link and item.url:
        if "link_image" in types and matches_any_pattern(item.url, config.image_domains):
            return Evaluation(True, "Link to image")
        if "link_video" in types and matches_any_pattern(item.url, config.video_domains):
            return Evaluation(True, "Link to video")
        if "link_domains" in types and matches_domain(item.url, config.link_enforcement_domains):
            return Evaluation(True, "Link from enforced domain")
        if "link_all" in types:
            return Evaluation(True, "Link item (all links enforced)")

    return Evaluation(False, "Item type not enforced")


async def evaluate(
    snapshot: ItemSnapshot,
    config: EnforcementConfig,
    records: EnforcementRepository,
    *,
    now: Optional[datetime] = None,
) -> Evaluation:
    """Decide whether the item needs an explanation.

    Priority order (highest first):
    1. deleted author
    2. approved by this engine within the last 24 hours
    3. skip keyword in the text body
    4. exclusion rules
    5. label rules (override type rules)
    6. type rules

    Never raises. The only state touched is a read of this item's record;
    if the store is down the answer is "don't enforce".
    """

    item = snapshot.item
    now = now or records.now()

    if not item.author:
        return Evaluation(False, "Deleted author")

    record = await fail_open("evaluate.load_record", lambda: records.load(item.id), None)
    if record is None:
        return Evaluation(False, "State unavailable (fail open)")

    if record.approved is not None and now - record.approved.at < RECENT_APPROVAL_WINDOW:
        return Evaluation(False, "Recently approved (24h grace window)")

    try:
        body = _text_body(item)
        if body and any_keyword_present(body, config.skip_keywords):
            return Evaluation(False, "Contains skip keyword")

        excluded = check_exclusions(snapshot, config, now=now, removed_by_core=record.removed is not None)
        if excluded is not None:
            return excluded

        by_label = check_labels(item, config)
        if by_label is not None:
            return by_label

        return check_type(item, config)
    except Exception:
        log.exception("Rule evaluation failed for %s (fail open)", item.id)
        return Evaluation(False, "Validation error (fail open)")