from __future__ import annotations

import json
from dataclasses import dataclass, field, fields
from typing import Any, Mapping

from .matching import parse_list
from .templates import (
    DEFAULT_APPEAL_MESSAGES,
    DEFAULT_REINSTATEMENT_TEMPLATE,
    DEFAULT_REMOVAL_TEMPLATE,
    DEFAULT_REPORT_REASON,
    DEFAULT_REPORT_TEMPLATE,
    DEFAULT_REVIEW_REPORT_REASON,
    DEFAULT_WARNING_TEMPLATE,
)


DEFAULT_CONFIG_VERSION = 1

ENFORCED_TYPES = frozenset(
    {
        "image",
        "gallery",
        "video",
        "text_image",
        "text_video",
        "text_keywords",
        "text_url",
        "link_image",
        "link_video",
        "link_domains",
        "link_all",
    }
)
ENFORCEMENT_ACTIONS = ("remove", "report", "both")
EXPLANATION_LOCATIONS = ("body", "annotation", "either")
NOTIFICATION_EVENTS = frozenset(
    {
        "warning_issued",
        "item_removed",
        "item_reinstated",
        "explanation_flagged_for_review",
        "core_error",
    }
)

DEFAULT_IMAGE_DOMAINS = (
    "i.redd.it",
    "i.imgur.com",
    "imgur.com",
    "preview.redd.it",
    "steamusercontent.com",
    "cdn.discordapp.com",
)
DEFAULT_VIDEO_DOMAINS = (
    "v.redd.it",
    "youtube.com",
    "youtu.be",
    "streamable.com",
    "vimeo.com",
    "twitch.tv",
)


@dataclass(frozen=True)
class EnforcementConfig:
    """Immutable enforcement settings, resolved once per invocation."""

    # Which items need an explanation
    enforced_types: frozenset[str] = frozenset({"image", "gallery", "text_image", "link_image"})
    image_domains: tuple[str, ...] = DEFAULT_IMAGE_DOMAINS
    video_domains: tuple[str, ...] = DEFAULT_VIDEO_DOMAINS
    link_enforcement_domains: tuple[str, ...] = ()
    enforcement_keywords: tuple[str, ...] = ()
    skip_keywords: tuple[str, ...] = ()

    # Exclusions
    allowlisted_authors: tuple[str, ...] = ()
    max_item_age_hours: float = 0
    max_popularity_score: int = 0
    text_exclusion_prefixes: tuple[str, ...] = ()
    text_exclusion_contains: tuple[str, ...] = ()
    excluded_domains: tuple[str, ...] = ()
    respect_moderator_approval: bool = True
    respect_moderator_removal: bool = True
    moderator_override_enabled: bool = False
    moderator_override_phrases: tuple[str, ...] = ()

    # Labels ("flair")
    enforced_labels: tuple[str, ...] = ()
    excluded_labels: tuple[str, ...] = ("comic", "art")

    # Explanation quality
    min_explanation_length: int = 50
    flag_for_review_length: int = 75
    required_contains_one: tuple[str, ...] = ()
    required_contains_all: tuple[str, ...] = ()
    required_starts_with: tuple[str, ...] = ()
    required_ends_with: tuple[str, ...] = ()
    explanation_location: str = "either"

    # Timing
    grace_period_minutes: int = 5
    warning_period_minutes: int = 10

    # Behavior
    enforcement_action: str = "remove"
    comment_on_warning: bool = True
    comment_on_removal: bool = True
    comment_on_reinstatement: bool = False
    cleanup_warnings: bool = True
    auto_reinstate: bool = True
    report_reason: str = DEFAULT_REPORT_REASON
    review_report_reason: str = DEFAULT_REVIEW_REPORT_REASON

    # Intake backstops
    polling_enabled: bool = False
    polling_limit: int = 100
    sweep_limit: int = 100

    # Appeals
    appeals_enabled: bool = True
    appeal_subject_keywords: tuple[str, ...] = ("rule 5", "r5", "explanation", "reinstate")
    auto_archive_appeals: bool = True

    # Notifications
    notification_events: frozenset[str] = frozenset({"item_removed", "item_reinstated"})
    discord_webhook_url: str = ""
    slack_webhook_url: str = ""

    # Templates
    community_name: str = ""
    warning_template: str = DEFAULT_WARNING_TEMPLATE
    removal_template: str = DEFAULT_REMOVAL_TEMPLATE
    report_template: str = DEFAULT_REPORT_TEMPLATE
    reinstatement_template: str = DEFAULT_REINSTATEMENT_TEMPLATE
    appeal_messages: Mapping[str, str] = field(default_factory=lambda: dict(DEFAULT_APPEAL_MESSAGES))

    def appeal_message(self, name: str) -> str:
        return self.appeal_messages.get(name) or DEFAULT_APPEAL_MESSAGES[name]


_DEFAULTS = EnforcementConfig()

_LIST_FIELDS = {
    f.name for f in fields(EnforcementConfig) if f.type in ("tuple[str, ...]",)
}
_SET_FIELDS = {"enforced_types", "notification_events"}
_BOOL_FIELDS = {f.name for f in fields(EnforcementConfig) if f.type == "bool"}
_INT_FIELDS = {f.name for f in fields(EnforcementConfig) if f.type == "int"}
_FLOAT_FIELDS = {f.name for f in fields(EnforcementConfig) if f.type == "float"}
_STR_FIELDS = {f.name for f in fields(EnforcementConfig) if f.type == "str"}


def _camel(name: str) -> str:
    head, *rest = name.split("_")
    return head + "".join(part.capitalize() for part in rest)


# camelCase spellings (`gracePeriodMinutes`) are accepted for every option.
OPTION_ALIASES = {_camel(f.name): f.name for f in fields(EnforcementConfig) if "_" in f.name}


def normalize_keys(doc: Mapping[str, Any]) -> dict[str, Any]:
    """Map camelCase option names onto field names; the snake_case key wins a clash."""
    out: dict[str, Any] = {}
    for key, value in doc.items():
        name = OPTION_ALIASES.get(key, key)
        if name != key and name in doc:
            continue
        out[name] = value
    return out


def default_config() -> dict[str, Any]:
    """Default enforcement document, as stored or shown to moderators.

    Lists are rendered as JSON lists; `resolve_config` also accepts
    newline- or comma-separated strings for every list option, and the
    camelCase spelling of every option name (see `OPTION_ALIASES`).
    """

    doc: dict[str, Any] = {"version": DEFAULT_CONFIG_VERSION}
    for f in fields(EnforcementConfig):
        value = getattr(_DEFAULTS, f.name)
        if isinstance(value, frozenset):
            value = sorted(value)
        elif isinstance(value, tuple):
            value = list(value)
        elif f.name == "appeal_messages":
            value = dict(value)
        doc[f.name] = value
    return doc


@dataclass(frozen=True)
class ValidationIssue:
    path: str
    message: str


def _is_jsonable(obj: Any) -> bool:
    try:
        json.dumps(obj)
        return True
    except (TypeError, ValueError):
        return False


def _is_list_like(value: Any) -> bool:
    return isinstance(value, str) or (
        isinstance(value, (list, tuple)) and all(isinstance(x, str) for x in value)
    )


def validate_config(doc: Mapping[str, Any]) -> list[ValidationIssue]:
    """Validate an enforcement document. Returns list of issues; empty means valid.

    Unknown keys are reported so typos in option names do not silently
    fall back to defaults.
    """

    if not isinstance(doc, Mapping):
        return [ValidationIssue(path="$", message="Config must be an object")]

    doc = normalize_keys(doc)
    issues: list[ValidationIssue] = []
    version = doc.get("version", DEFAULT_CONFIG_VERSION)
    if version != DEFAULT_CONFIG_VERSION:
        issues.append(ValidationIssue(path="$.version", message=f"Unsupported version (expected {DEFAULT_CONFIG_VERSION})"))

    known = {f.name for f in fields(EnforcementConfig)} | {"version"}
    for key in doc:
        if key not in known:
            issues.append(ValidationIssue(path=f"$.{key}", message="unknown option"))

    for key, value in doc.items():
        path = f"$.{key}"
        if key in _BOOL_FIELDS and not isinstance(value, bool):
            issues.append(ValidationIssue(path=path, message="must be boolean"))
        elif key in _INT_FIELDS | _FLOAT_FIELDS:
            if isinstance(value, bool) or not isinstance(value, (int, float)):
                issues.append(ValidationIssue(path=path, message="must be a number"))
            elif value < 0:
                issues.append(ValidationIssue(path=path, message="must be >= 0"))
        elif key in _LIST_FIELDS | _SET_FIELDS and not _is_list_like(value):
            issues.append(ValidationIssue(path=path, message="must be a list of strings or a separated string"))
        elif key in _STR_FIELDS and not isinstance(value, str):
            issues.append(ValidationIssue(path=path, message="must be a string"))

    types = doc.get("enforced_types")
    if _is_list_like(types):
        for t in parse_list(types):
            if t not in ENFORCED_TYPES:
                issues.append(ValidationIssue(path="$.enforced_types", message=f"unknown type {t!r}"))

    events = doc.get("notification_events")
    if _is_list_like(events):
        for e in parse_list(events):
            if e not in NOTIFICATION_EVENTS:
                issues.append(ValidationIssue(path="$.notification_events", message=f"unknown event {e!r}"))

    if doc.get("enforcement_action", "remove") not in ENFORCEMENT_ACTIONS:
        issues.append(ValidationIssue(path="$.enforcement_action", message=f"must be one of {', '.join(ENFORCEMENT_ACTIONS)}"))
    if doc.get("explanation_location", "either") not in EXPLANATION_LOCATIONS:
        issues.append(ValidationIssue(path="$.explanation_location", message=f"must be one of {', '.join(EXPLANATION_LOCATIONS)}"))

    messages = doc.get("appeal_messages")
    if messages is not None:
        if not isinstance(messages, Mapping) or not all(isinstance(v, str) for v in messages.values()):
            issues.append(ValidationIssue(path="$.appeal_messages", message="must be an object of strings"))
        else:
            for name in messages:
                if name not in DEFAULT_APPEAL_MESSAGES:
                    issues.append(ValidationIssue(path=f"$.appeal_messages.{name}", message="unknown message"))

    if not _is_jsonable(dict(doc)):
        issues.append(ValidationIssue(path="$", message="config must be JSON serializable"))
    return issues


def _coerce_bool(value: Any, default: bool) -> bool:
    if isinstance(value, bool):
        return value
    if isinstance(value, str):
        lowered = value.strip().lower()
        if lowered in {"1", "true", "yes", "y", "on"}:
            return True
        if lowered in {"0", "false", "no", "n", "off"}:
            return False
    return default


def _coerce_number(value: Any, default: float, cast: type) -> Any:
    if isinstance(value, bool):
        return default
    try:
        number = cast(value)
    except (TypeError, ValueError):
        return default
    return number if number >= 0 else default


def resolve_config(doc: Mapping[str, Any] | None) -> EnforcementConfig:
    """Build the immutable config from a key/value bag.

    Tolerant by contract: a malformed value falls back to its default
    instead of raising, so a bad settings edit can never crash a decision.
    """

    if not isinstance(doc, Mapping):
        return _DEFAULTS

    doc = normalize_keys(doc)
    values: dict[str, Any] = {}
    for f in fields(EnforcementConfig):
        if f.name not in doc:
            continue
        raw = doc[f.name]
        default = getattr(_DEFAULTS, f.name)
        if f.name in _SET_FIELDS:
            values[f.name] = frozenset(parse_list(raw)) if _is_list_like(raw) else default
        elif f.name in _LIST_FIELDS:
            values[f.name] = parse_list(raw) if _is_list_like(raw) else default
        elif f.name in _BOOL_FIELDS:
            values[f.name] = _coerce_bool(raw, default)
        elif f.name in _INT_FIELDS:
            values[f.name] = _coerce_number(raw, default, int)
        elif f.name in _FLOAT_FIELDS:
            values[f.name] = _coerce_number(raw, default, float)
        elif f.name == "appeal_messages":
            if isinstance(raw, Mapping):
                merged = dict(DEFAULT_APPEAL_MESSAGES)
                merged.update({k: v for k, v in raw.items() if isinstance(v, str) and v})
                values[f.name] = merged
        elif isinstance(raw, str):
            values[f.name] = raw

    if values.get("enforcement_action", _DEFAULTS.enforcement_action) not in ENFORCEMENT_ACTIONS:
        values["enforcement_action"] = _DEFAULTS.enforcement_action
    if values.get("explanation_location", _DEFAULTS.explanation_location) not in EXPLANATION_LOCATIONS:
        values["explanation_location"] = _DEFAULTS.explanation_location

    return EnforcementConfig(**values)
