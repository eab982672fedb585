from __future__ import annotations

import logging
from typing import Awaitable, Callable, TypeVar

from ..errors import StateStoreError

T = TypeVar("T")

log = logging.getLogger("explainguard.safety")


async def fail_open(operation: str, fn: Callable[[], Awaitable[T]], default: T) -> T:
    """Run a state read; on failure log it and return the safe default.

    "Safe" always means do-nothing: don't enforce, don't reinstate.
    """
    try:
        return await fn()
    except StateStoreError as e:
        log.warning("State store unavailable during %s, failing open: %s", operation, e)
        return default
    except Exception:
        log.exception("Unexpected failure during %s, failing open", operation)
        return default
