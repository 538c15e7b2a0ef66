"""Error taxonomy shared by every component.

Each error carries a machine-readable ``kind`` and a human-readable
``remediation`` hint so callers can branch on the kind instead of matching
message strings.
"""

from enum import Enum
from typing import Any, Dict, List, Optional

from kaspa_aio.models.selection import ValidationIssue


class ErrorKind(str, Enum):
    """Closed set of error kinds."""
    VALIDATION = "validation"
    STORAGE = "storage"
    ENGINE = "engine"
    CONCURRENCY = "concurrency"


class KaspaAioError(Exception):
    """Base class for all errors raised by kaspa_aio."""

    kind: ErrorKind = ErrorKind.VALIDATION
    default_remediation = ""

    def __init__(
        self,
        message: str,
        remediation: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(message)
        self.message = message
        self.remediation = remediation or self.default_remediation
        self.details = details or {}

    def to_dict(self) -> Dict[str, Any]:
        """Serialize for API responses."""
        return {
            "error": self.message,
            "kind": self.kind.value,
            "remediation": self.remediation,
            "details": self.details,
        }


class ValidationFailed(KaspaAioError):
    """Selection or settings rejected before any mutation."""

    kind = ErrorKind.VALIDATION
    default_remediation = "Fix the reported fields or profile selection and retry"

    def __init__(self, message: str, issues: Optional[List[ValidationIssue]] = None, **kwargs):
        super().__init__(message, **kwargs)
        self.issues = list(issues or [])
        if self.issues and not kwargs.get("remediation"):
            hints = [issue.remediation for issue in self.issues if issue.remediation]
            if hints:
                self.remediation = "; ".join(hints)

    def to_dict(self) -> Dict[str, Any]:
        data = super().to_dict()
        data["details"] = dict(data["details"], issues=[i.model_dump() for i in self.issues])
        return data


class StorageError(KaspaAioError):
    """Backup, restore, or state file I/O failure."""

    kind = ErrorKind.STORAGE
    default_remediation = "Check free disk space and permissions of the installation directory"


class EngineError(KaspaAioError):
    """Container engine operation failed."""

    kind = ErrorKind.ENGINE
    default_remediation = "Check that the container engine is running and inspect the container logs"

    def __init__(self, message: str, container: Optional[str] = None, **kwargs):
        super().__init__(message, **kwargs)
        self.container = container
        if container:
            self.details.setdefault("container", container)


class ConcurrencyError(KaspaAioError):
    """Another reconfiguration is already in progress."""

    kind = ErrorKind.CONCURRENCY
    default_remediation = "Wait for the running reconfiguration to finish and retry"
