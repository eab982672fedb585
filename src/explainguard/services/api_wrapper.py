from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Dict, Optional

from ..errors import NotFoundError, PermissionDeniedError, PlatformError, TransientError

log = logging.getLogger("explainguard.api_wrapper")


@dataclass
class APIResult:
    """Outcome of one platform call."""
    success: bool
    data: Optional[Any] = None
    error: Optional[Exception] = None
    total_time: float = 0.0

    @property
    def not_found(self) -> bool:
        return isinstance(self.error, NotFoundError)

    @property
    def forbidden(self) -> bool:
        return isinstance(self.error, PermissionDeniedError)

    @property
    def transient(self) -> bool:
        return self.error is not None and not (self.not_found or self.forbidden)


class PlatformCall:
    """Single-attempt wrapper for host platform calls.

    There is no retry loop: a failed call is logged and reported back, and
    the next timer or sweep pass is the retry.
    """

    def __init__(self) -> None:
        self._error_counts: Dict[str, int] = {}

    def error_counts(self) -> Dict[str, int]:
        return dict(self._error_counts)

    def _log_error(self, operation: str, error: Exception, item_id: Optional[str]) -> None:
        error_key = f"{operation}:{type(error).__name__}"
        self._error_counts[error_key] = self._error_counts.get(error_key, 0) + 1

        # Expected operational errors - log as warnings, not errors
        if isinstance(error, NotFoundError):
            log.warning("Platform operation %s: target gone (item=%s): %s", operation, item_id, error)
            return
        if isinstance(error, PermissionDeniedError):
            log.error("Platform operation %s forbidden (item=%s): %s", operation, item_id, error)
            return
        if isinstance(error, TransientError):
            log.warning("Platform operation %s failed transiently (item=%s): %s", operation, item_id, error)
            return

        # Unexpected errors - stack trace for the first few, summary after that
        count = self._error_counts[error_key]
        if count <= 3:
            log.error("Platform operation %s failed unexpectedly (item=%s)", operation, item_id, exc_info=error)
        else:
            log.error(
                "Platform operation %s failed unexpectedly (count=%d, item=%s): %s",
                operation, count, item_id, error,
            )

    async def attempt(
        self,
        operation: str,
        func: Callable[..., Awaitable[Any]],
        *args: Any,
        item_id: Optional[str] = None,
        **kwargs: Any,
    ) -> APIResult:
        start_time = time.monotonic()
        try:
            result = await func(*args, **kwargs)
        except Exception as error:
            if not isinstance(error, PlatformError):
                # Unknown failures are retried by the next pass, same as transient ones.
                self._log_error(operation, error, item_id)
                return APIResult(success=False, error=TransientError(str(error) or type(error).__name__), total_time=time.monotonic() - start_time)
            self._log_error(operation, error, item_id)
            return APIResult(success=False, error=error, total_time=time.monotonic() - start_time)

        duration = time.monotonic() - start_time
        log.debug("Platform operation %s succeeded (duration=%.2fs) item=%s", operation, duration, item_id)
        return APIResult(success=True, data=result, total_time=duration)
