"""Custom exception hierarchy."""

from typing import TYPE_CHECKING, Any, List, Optional

if TYPE_CHECKING:
    from coverage_engine.schemas.coverage import ValidationIssue


class AppError(Exception):
    """Base exception for application errors."""
    def __init__(self, message: str, original_error: Exception = None):
        super().__init__(message)
        self.original_error = original_error


class ConfigurationError(AppError):
    """Raised when configuration is invalid or missing."""
    pass


class ValidationError(AppError):
    """Raised when a write is rejected by the validation engine.

    The entity is left unchanged. ``issues`` holds every failing rule so the
    caller can show them to the user.
    """

    def __init__(self, message: str, issues: Optional[List["ValidationIssue"]] = None):
        super().__init__(message)
        self.issues = list(issues or [])

    @property
    def rules(self) -> List[str]:
        return [issue.rule for issue in self.issues]


class StoreError(AppError):
    """Base exception for record store failures."""
    pass


class TransientStoreError(StoreError):
    """Raised when the store is unavailable after all retry attempts."""
    pass


class ConcurrentModificationError(TransientStoreError):
    """Raised when a document changed underneath a transaction."""
    pass


class RecordNotFoundError(StoreError):
    """Raised when a path-addressed document does not exist."""

    def __init__(self, path: str):
        super().__init__(f"Document not found: {path}")
        self.path = path


class CoverageNotFoundError(RecordNotFoundError):
    """Raised when a coverage document does not exist."""
    pass


class CoverageFailed(AppError):
    """A single coverage could not be migrated; its batch was rolled back."""

    def __init__(self, product_id: str, coverage_id: str, message: str, original_error: Exception = None):
        super().__init__(message, original_error)
        self.product_id = product_id
        self.coverage_id = coverage_id


class FatalRunError(AppError):
    """The whole migration run was aborted.

    Coverages committed before the failure stay migrated; ``report`` holds
    what was done up to that point.
    """

    def __init__(self, message: str, report: Any = None, original_error: Exception = None):
        super().__init__(message, original_error)
        self.report = report


class RollbackNotConfirmedError(AppError):
    """Raised when a live rollback is requested without explicit confirmation."""
    pass


class RollbackUnsafeError(AppError):
    """Raised when a rollback would discard authored values the legacy arrays do not hold."""

    def __init__(self, message: str, limits: List[str] = None, deductibles: List[str] = None):
        super().__init__(message)
        self.limits = limits or []
        self.deductibles = deductibles or []
