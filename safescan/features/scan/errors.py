"""
Scan error taxonomy.

Every failure that crosses a component boundary is a ``ScanError`` carrying a
stable machine-readable code. Details (logs, validation diagnostics) stay
server-side; ``public()`` is what callers outside the core get to see.
"""
import enum
from dataclasses import dataclass, field
from typing import Any, Dict


class ScanErrorCode(str, enum.Enum):
    VALIDATION_ERROR = "validation_error"
    INSUFFICIENT_CREDITS = "insufficient_credits"
    VERSION_CONFLICT = "version_conflict"
    INVALID_TRANSITION = "invalid_transition"
    NOT_FOUND = "not_found"
    FORBIDDEN = "forbidden"
    TIMEOUT = "timeout"
    CRASH = "crash"
    PARSE_ERROR = "parse_error"
    SANDBOX_ERROR = "sandbox_error"
    QUEUE_ERROR = "queue_error"
    DATABASE_ERROR = "database_error"
    ANALYSIS_ERROR = "analysis_error"
    CONFIG_ERROR = "config_error"


RETRYABLE_CODES = frozenset({
    ScanErrorCode.TIMEOUT,
    ScanErrorCode.CRASH,
    ScanErrorCode.SANDBOX_ERROR,
    ScanErrorCode.ANALYSIS_ERROR,
    ScanErrorCode.DATABASE_ERROR,
})


@dataclass(frozen=True)
class ScanError:
    code: ScanErrorCode
    message: str
    details: Dict[str, Any] = field(default_factory=dict)

    @property
    def retryable(self) -> bool:
        return self.code in RETRYABLE_CODES

    @property
    def is_timeout(self) -> bool:
        return self.code == ScanErrorCode.TIMEOUT

    def public(self) -> Dict[str, str]:
        return {"code": self.code.value, "message": self.message}

    def __str__(self) -> str:
        return f"{self.code.value}: {self.message}"


def insufficient_credits(required: int, available: int) -> ScanError:
    return ScanError(
        code=ScanErrorCode.INSUFFICIENT_CREDITS,
        message=f"Insufficient credits. Required: {required}, Available: {available}",
        details={"required": required, "available": available},
    )


def not_found(what: str, identifier: str) -> ScanError:
    return ScanError(code=ScanErrorCode.NOT_FOUND, message=f"{what} {identifier} not found")


def database_error(exc: Exception) -> ScanError:
    return ScanError(
        code=ScanErrorCode.DATABASE_ERROR,
        message="Database operation failed",
        details={"error": str(exc)},
    )


class ScanTaskError(Exception):
    """Raised at the queue-transport boundary so the broker sees a failed delivery."""

    def __init__(self, error: ScanError):
        super().__init__(str(error))
        self.error = error
