"""Error taxonomy surfaced by the engine.

Callers branch on ``kind`` (stable string) rather than on class names.
Fetch-level errors are recoverable inside a request: the engine moves on to
the next candidate. ``NoSourceAvailable`` and ``AllSourcesExhausted`` are
terminal and reach the caller.
"""

from typing import Any, Dict, List, Optional


class HybridHealthError(Exception):
    """Base class for all engine errors."""
    kind = "Error"


class CatalogError(HybridHealthError):
    """Raised when the source catalog cannot be loaded or is inconsistent."""
    kind = "CatalogError"


class NoSourceAvailable(HybridHealthError):
    """No descriptor serves the category, or every candidate is unavailable."""
    kind = "NoSourceAvailable"

    def __init__(self, category: str, message: Optional[str] = None):
        self.category = category
        super().__init__(message or f"No data sources available for category: {category}")


class AllSourcesExhausted(HybridHealthError):
    """Every candidate failed and the offline cache had nothing for the category."""
    kind = "AllSourcesExhausted"

    def __init__(self, category: str, attempts: Optional[List[Dict[str, Any]]] = None):
        self.category = category
        self.attempts = attempts or []
        super().__init__(
            f"Failed to fetch data for {category} from all available sources "
            f"({len(self.attempts)} attempted) and no offline copy exists"
        )


class FetchError(HybridHealthError):
    """A single source failed to deliver a payload."""
    kind = "FetchError"

    def __init__(self, source_id: str, message: str, original_error: Optional[Exception] = None):
        self.source_id = source_id
        self.message = message
        self.original_error = original_error
        super().__init__(f"{source_id}: {message}")


class AuthenticationFailed(FetchError):
    kind = "AuthenticationFailed"


class MissingCredential(AuthenticationFailed):
    kind = "MissingCredential"


class FetchTimeout(FetchError):
    kind = "Timeout"


class Unauthorized(FetchError):
    kind = "Unauthorized"


class Unreachable(FetchError):
    kind = "Unreachable"


class BadResponse(FetchError):
    kind = "BadResponse"


class FetchCancelled(FetchError):
    """The request no longer needed this fetch; the source was never contacted."""
    kind = "Cancelled"


class ValidationFailed(HybridHealthError):
    """Source answered but its data carried a high-severity issue."""
    kind = "ValidationFailed"

    def __init__(self, source_id: str, issues: Optional[List[Any]] = None):
        self.source_id = source_id
        self.issues = issues or []
        types = sorted({getattr(i, "type", str(i)) for i in self.issues})
        super().__init__(f"{source_id}: validation failed ({', '.join(types) or 'unknown'})")


class CacheError(HybridHealthError):
    """Offline cache read or write failed."""
    kind = "CacheError"
