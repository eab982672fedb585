from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Literal, Optional


ItemKind = Literal[
    "image",
    "gallery",
    "video",
    "text",
    "link",
]

EnforcedType = Literal[
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
]

EnforcementAction = Literal["remove", "report", "both"]

ExplanationLocation = Literal["body", "annotation", "either"]


@dataclass(frozen=True)
class ContentItem:
    """Read-only view of a submission as the host platform reports it."""

    id: str
    author: Optional[str]  # None: deleted account
    created_at: datetime
    kind: str
    title: str = ""
    body: str = ""
    url: str = ""
    permalink: str = ""
    score: int = 0
    approved: bool = False
    removed: bool = False
    flair: Optional[str] = None

    @property
    def is_text(self) -> bool:
        return self.kind == "text"

    @property
    def is_link(self) -> bool:
        return self.kind == "link" or (not self.is_text and bool(self.url))


@dataclass(frozen=True)
class Annotation:
    """A comment attached to a content item."""

    id: str
    item_id: str
    author: Optional[str]
    body: str
    created_at: datetime
    # None or the item id: first-level; otherwise the parent annotation id.
    parent_id: Optional[str] = None
    removed: bool = False
    distinguished: bool = False

    def is_first_level(self) -> bool:
        return self.parent_id is None or self.parent_id == self.item_id


@dataclass(frozen=True)
class ItemSnapshot:
    """Everything the rule engine may look at, fetched once per decision."""

    item: ContentItem
    annotations: tuple[Annotation, ...] = ()
    moderators: frozenset[str] = field(default_factory=frozenset)


@dataclass(frozen=True)
class Evaluation:
    enforce: bool
    reason: str


@dataclass(frozen=True)
class ExplanationResult:
    valid: bool
    flag_for_review: bool
    reason: str
    annotation_id: Optional[str] = None
    text: Optional[str] = None


@dataclass(frozen=True)
class Mark:
    """One namespaced record entry: when it was written and its bot annotation."""

    at: datetime
    annotation_id: Optional[str] = None


@dataclass(frozen=True)
class RemovalMark(Mark):
    # False when the item was only reported (removal failed or action=report).
    visibility_removed: bool = True


@dataclass(frozen=True)
class EnforcementRecord:
    item_id: str
    processed: bool = False
    warned: Optional[Mark] = None
    removed: Optional[RemovalMark] = None
    approved: Optional[Mark] = None

    @property
    def touched(self) -> bool:
        """True when this engine has a reversible action on record."""
        return self.warned is not None or self.removed is not None


@dataclass(frozen=True)
class AppealMessage:
    conversation_id: str
    sender: Optional[str]
    subject: str
    body: str


class AppealOutcome(str, Enum):
    IGNORED = "ignored"
    NO_ITEM_ID = "no_item_id"
    ITEM_NOT_FOUND = "item_not_found"
    ALREADY_APPROVED = "already_approved"
    NOT_REMOVED_BY_CORE = "not_removed_by_core"
    NOT_AUTHOR = "not_author"
    NO_VALID_EXPLANATION = "no_valid_explanation"
    REINSTATED = "reinstated"
    ERROR = "error"


NotificationEvent = Literal[
    "warning_issued",
    "item_removed",
    "item_reinstated",
    "explanation_flagged_for_review",
    "core_error",
]


@dataclass(frozen=True)
class Notification:
    event: NotificationEvent
    item_id: str
    author: str
    reason: str
    item_url: str = ""
    community: str = ""
