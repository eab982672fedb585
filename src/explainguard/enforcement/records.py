"""Enforcement records: one logical record per item, stored as independent keys.

    processed:{id}  dedup marker for intake
    warned:{id}     {"at": iso, "annotation_id": id|null}
    removed:{id}    {"at": iso, "annotation_id": id|null, "visibility_removed": bool}
    approved:{id}   {"at": iso, "annotation_id": null}

Each key expires on its own, so a partial failure leaves partial (but
individually valid) state behind rather than a half-written row.
"""
from __future__ import annotations

import json
import logging
from datetime import datetime, timedelta, timezone
from typing import Any, Optional

from ..errors import StateStoreError
from ..services.state_store import StateStore
from .models import EnforcementRecord, Mark, RemovalMark

log = logging.getLogger("explainguard.records")

HOUR = 60 * 60
DAY = 24 * HOUR

PROCESSED_TTL_SECONDS = 3 * DAY
WARNED_TTL_SECONDS = 3 * DAY
APPROVED_TTL_SECONDS = 7 * DAY
REMOVED_TTL_SECONDS = 30 * DAY

# Items approved by the engine are not re-enforced inside this window.
RECENT_APPROVAL_WINDOW = timedelta(hours=24)

PROCESSED = "processed"
WARNED = "warned"
REMOVED = "removed"
APPROVED = "approved"

_MAX_ID_LENGTH = 32

EPOCH = datetime(1970, 1, 1, tzinfo=timezone.utc)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def sanitize_item_id(item_id: str) -> str:
    """Validate an item id before it becomes part of a key.

    Accepts the bare id or a `t3_`-style fullname; returns the bare id.
    """
    raw = str(item_id or "").strip()
    if raw.startswith("t3_"):
        raw = raw[3:]
    if not raw or len(raw) > _MAX_ID_LENGTH or not all(c.isascii() and (c.isalnum() or c == "_") for c in raw):
        raise ValueError(f"invalid item id: {item_id!r}")
    return raw


def record_key(namespace: str, item_id: str) -> str:
    return f"{namespace}:{sanitize_item_id(item_id)}"


def _encode(at: datetime, annotation_id: Optional[str] = None, **extra: Any) -> str:
    payload: dict[str, Any] = {"at": at.astimezone(timezone.utc).isoformat(timespec="seconds"), "annotation_id": annotation_id}
    payload.update(extra)
    return json.dumps(payload, separators=(",", ":"))


def _decode(raw: Optional[str]) -> Optional[dict[str, Any]]:
    if raw is None:
        return None
    try:
        payload = json.loads(raw)
        at = datetime.fromisoformat(payload["at"])
    except (ValueError, KeyError, TypeError):
        # Unreadable but present: keep the "exists" meaning, date it to the epoch.
        log.warning("Unreadable record payload %r; treating as written at the epoch", raw)
        return {"at": EPOCH, "annotation_id": None}
    if at.tzinfo is None:
        at = at.replace(tzinfo=timezone.utc)
    payload["at"] = at
    return payload


class EnforcementRepository:
    """Typed access to the per-item enforcement keys.

    Store errors propagate as `StateStoreError`; callers decide whether to
    fail open.
    """

    def __init__(self, store: StateStore, clock=_utcnow) -> None:
        self.store = store
        self._clock = clock

    def now(self) -> datetime:
        return self._clock()

    # -------------------- processed --------------------

    async def is_processed(self, item_id: str) -> bool:
        return await self.store.get(record_key(PROCESSED, item_id)) is not None

    async def mark_processed(self, item_id: str) -> None:
        await self.store.set(record_key(PROCESSED, item_id), _encode(self.now()), PROCESSED_TTL_SECONDS)

    # -------------------- warned --------------------

    async def get_warning(self, item_id: str) -> Optional[Mark]:
        payload = _decode(await self.store.get(record_key(WARNED, item_id)))
        if payload is None:
            return None
        return Mark(at=payload["at"], annotation_id=payload.get("annotation_id"))

    async def mark_warned(self, item_id: str, annotation_id: Optional[str] = None, *, at: Optional[datetime] = None) -> Mark:
        mark = Mark(at=at or self.now(), annotation_id=annotation_id)
        await self.store.set(record_key(WARNED, item_id), _encode(mark.at, annotation_id), WARNED_TTL_SECONDS)
        return mark

    # -------------------- removed-by-core --------------------

    async def get_removal(self, item_id: str) -> Optional[RemovalMark]:
        payload = _decode(await self.store.get(record_key(REMOVED, item_id)))
        if payload is None:
            return None
        return RemovalMark(
            at=payload["at"],
            annotation_id=payload.get("annotation_id"),
            visibility_removed=bool(payload.get("visibility_removed", True)),
        )

    async def mark_removed(
        self,
        item_id: str,
        annotation_id: Optional[str] = None,
        *,
        visibility_removed: bool = True,
        at: Optional[datetime] = None,
    ) -> RemovalMark:
        mark = RemovalMark(at=at or self.now(), annotation_id=annotation_id, visibility_removed=visibility_removed)
        await self.store.set(
            record_key(REMOVED, item_id),
            _encode(mark.at, annotation_id, visibility_removed=visibility_removed),
            REMOVED_TTL_SECONDS,
        )
        return mark

    # -------------------- approved-by-core --------------------

    async def get_approval(self, item_id: str) -> Optional[Mark]:
        payload = _decode(await self.store.get(record_key(APPROVED, item_id)))
        if payload is None:
            return None
        return Mark(at=payload["at"])

    async def mark_approved(self, item_id: str) -> Mark:
        mark = Mark(at=self.now())
        await self.store.set(record_key(APPROVED, item_id), _encode(mark.at), APPROVED_TTL_SECONDS)
        return mark

    async def was_recently_approved(self, item_id: str) -> bool:
        approval = await self.get_approval(item_id)
        if approval is None:
            return False
        return self.now() - approval.at < RECENT_APPROVAL_WINDOW

    # -------------------- whole record --------------------

    async def load(self, item_id: str) -> EnforcementRecord:
        return EnforcementRecord(
            item_id=sanitize_item_id(item_id),
            processed=await self.is_processed(item_id),
            warned=await self.get_warning(item_id),
            removed=await self.get_removal(item_id),
            approved=await self.get_approval(item_id),
        )

    async def clear_enforcement(self, item_id: str) -> None:
        """Drop `warned` and `removed`; each delete is attempted even if the other fails."""
        failures: list[StateStoreError] = []
        for namespace in (WARNED, REMOVED):
            try:
                await self.store.delete(record_key(namespace, item_id))
            except StateStoreError as e:
                failures.append(e)
        if failures:
            raise failures[0]

    async def clear_all(self, item_id: str) -> None:
        """Manual override: forget everything about an item."""
        for namespace in (PROCESSED, WARNED, REMOVED, APPROVED):
            await self.store.delete(record_key(namespace, item_id))

    async def tracked_item_ids(self, limit: int) -> list[str]:
        """Ids currently carrying a `warned` or `removed` key, newest first, at most `limit`.

        An item's age is its latest mark; ties break on the id.
        """
        latest: dict[str, datetime] = {}
        for namespace in (WARNED, REMOVED):
            for key in await self.store.scan_prefix(f"{namespace}:"):
                payload = _decode(await self.store.get(key))
                if payload is None:
                    continue
                item_id = key.split(":", 1)[1]
                if item_id not in latest or payload["at"] > latest[item_id]:
                    latest[item_id] = payload["at"]
        ordered = sorted(sorted(latest), key=latest.__getitem__, reverse=True)
        return ordered[: max(0, int(limit))]
