from __future__ import annotations

import logging
from typing import Iterable, Optional

from .config_schema import EnforcementConfig
from .matching import contains_all, contains_one, ends_with_one, meets_minimum_length, starts_with_one
from .models import Annotation, ContentItem, ExplanationResult

log = logging.getLogger("explainguard.explanation")


def validate_text(text: Optional[str], config: EnforcementConfig) -> ExplanationResult:
    """Check one candidate explanation against the configured quality bars.

    Order: minimum length, contains-one, contains-all, starts-with, ends-with.
    Text that passes everything but is shorter than `flag_for_review_length`
    is valid and flagged for moderator review.
    """

    text = text or ""
    length = len(text.strip())
    min_length = max(0, int(config.min_explanation_length))

    if not meets_minimum_length(text, min_length):
        return ExplanationResult(False, False, f"Explanation too short ({length} < {min_length} chars)")

    if config.required_contains_one and not contains_one(text, config.required_contains_one):
        return ExplanationResult(
            False, False, "Explanation must contain at least one of: " + ", ".join(config.required_contains_one)
        )
    if config.required_contains_all and not contains_all(text, config.required_contains_all):
        return ExplanationResult(
            False, False, "Explanation must contain all of: " + ", ".join(config.required_contains_all)
        )
    if config.required_starts_with and not starts_with_one(text, config.required_starts_with):
        return ExplanationResult(
            False, False, "Explanation must start with one of: " + ", ".join(config.required_starts_with)
        )
    if config.required_ends_with and not ends_with_one(text, config.required_ends_with):
        return ExplanationResult(
            False, False, "Explanation must end with one of: " + ", ".join(config.required_ends_with)
        )

    review_length = int(config.flag_for_review_length)
    if review_length > min_length and length < review_length:
        return ExplanationResult(
            True,
            True,
            f"Valid but short explanation ({length} chars, review threshold {review_length})",
            text=text,
        )
    return ExplanationResult(True, False, "Valid explanation found", text=text)


def author_annotations(
    item: ContentItem,
    annotations: Iterable[Annotation],
    *,
    bot_username: Optional[str],
) -> list[Annotation]:
    """First-level, non-removed annotations written by the item's author, oldest first."""

    if not item.author:
        return []
    author = item.author.lower()
    bot = (bot_username or "").lower()
    out = [
        a
        for a in annotations
        if a.author
        and a.author.lower() == author
        and a.author.lower() != bot
        and a.is_first_level()
        and not a.removed
    ]
    out.sort(key=lambda a: a.created_at)
    return out


def find_explanation(
    item: ContentItem,
    annotations: Iterable[Annotation],
    config: EnforcementConfig,
    *,
    bot_username: Optional[str] = None,
) -> ExplanationResult:
    """Look for a valid explanation where the config says it may live.

    Returns the first valid candidate (body before annotations). When none
    is valid, the reason of the last candidate checked is returned since it
    is the most specific.
    """

    location = config.explanation_location
    failure = ExplanationResult(False, False, "No explanation found")

    if location in ("body", "either") and item.is_text and item.body.strip():
        result = validate_text(item.body, config)
        if result.valid:
            return result
        failure = ExplanationResult(False, False, f"Body: {result.reason}")

    if location in ("annotation", "either"):
        candidates = author_annotations(item, annotations, bot_username=bot_username)
        if not candidates and failure.reason == "No explanation found":
            failure = ExplanationResult(False, False, "No explanation comment by the author found")
        for annotation in candidates:
            result = validate_text(annotation.body, config)
            if result.valid:
                return ExplanationResult(
                    True,
                    result.flag_for_review,
                    result.reason,
                    annotation_id=annotation.id,
                    text=annotation.body,
                )
            failure = result

    log.debug("No valid explanation for %s: %s", item.id, failure.reason)
    return failure
