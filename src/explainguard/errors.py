from __future__ import annotations


class ExplainGuardError(Exception):
    """Base class for all errors raised by explain-guard."""


class StateStoreError(ExplainGuardError):
    """The key-value state store could not be reached or returned garbage."""


class PlatformError(ExplainGuardError):
    """A host platform call failed."""


class NotFoundError(PlatformError):
    """Item or annotation no longer exists (deleted concurrently)."""


class PermissionDeniedError(PlatformError):
    """The engine lost the elevated role it needs for moderation actions."""


class TransientError(PlatformError):
    """Network failure or rate limit; the next timer or sweep pass retries."""
