"""
Interface contracts for the collaborators the enforcement core drives.

The host platform (fetch / remove / approve / comment) and the timer
facility are external; the core only talks to them through these
protocols. Platform implementations signal failures with the exceptions in
`explainguard.errors` (`NotFoundError`, `PermissionDeniedError`,
`TransientError`).
"""

from __future__ import annotations

from abc import abstractmethod
from datetime import datetime
from typing import Optional, Protocol, Sequence, runtime_checkable

from .enforcement.models import Annotation, ContentItem, Notification


@runtime_checkable
class ModerationPlatform(Protocol):
    """Host platform content and moderation API."""

    @abstractmethod
    async def get_item(self, item_id: str) -> Optional[ContentItem]:
        """Fetch an item; None when it no longer exists."""
        ...

    @abstractmethod
    async def list_annotations(self, item_id: str) -> Sequence[Annotation]:
        """All annotations on the item, including removed ones."""
        ...

    @abstractmethod
    async def list_moderators(self) -> Sequence[str]:
        ...

    @abstractmethod
    async def bot_username(self) -> Optional[str]:
        ...

    @abstractmethod
    async def list_recent_items(self, limit: int) -> Sequence[ContentItem]:
        ...

    @abstractmethod
    async def add_annotation(self, item_id: str, text: str, *, distinguish: bool = True) -> str:
        """Post an annotation as the bot; returns the new annotation id."""
        ...

    @abstractmethod
    async def delete_annotation(self, annotation_id: str) -> None:
        ...

    @abstractmethod
    async def remove_item(self, item_id: str) -> None:
        ...

    @abstractmethod
    async def approve_item(self, item_id: str) -> None:
        ...

    @abstractmethod
    async def report_item(self, item_id: str, reason: str) -> None:
        ...

    @abstractmethod
    async def report_annotation(self, annotation_id: str, reason: str) -> None:
        ...

    @abstractmethod
    async def reply_to_appeal(self, conversation_id: str, text: str) -> None:
        ...

    @abstractmethod
    async def archive_appeal(self, conversation_id: str) -> None:
        ...


@runtime_checkable
class Scheduler(Protocol):
    """Fire-and-forget timers; there is no cancel, handlers re-validate instead."""

    @abstractmethod
    async def schedule(self, job: str, item_id: str, run_at: datetime) -> None:
        ...


@runtime_checkable
class Notifier(Protocol):
    @abstractmethod
    async def notify(self, notification: Notification) -> None:
        """Deliver an event. Must never raise."""
        ...


def validate_platform(platform: object) -> ModerationPlatform:
    """Validate and return ModerationPlatform interface."""
    if not isinstance(platform, ModerationPlatform):
        raise AttributeError(f"Object {platform!r} does not implement ModerationPlatform")
    return platform
