from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Optional


class ErrorKind(str, Enum):
    VALIDATION = "ValidationError"
    CONFLICT = "Conflict"
    FORBIDDEN = "Forbidden"
    NOT_FOUND = "NotFound"
    UNAUTHORIZED = "Unauthorized"
    ANCHORING_FAILED = "AnchoringFailed"
    REVOCATION_FAILED = "RevocationFailed"
    MINT_FAILED = "MintFailed"
    INCONSISTENT_STATE = "InconsistentState"


class CertAnchorError(Exception):
    kind = ErrorKind.INCONSISTENT_STATE

    def __init__(self, message: str, **details):
        super().__init__(message)
        self.message = message
        self.details = details


class ValidationError(CertAnchorError):
    kind = ErrorKind.VALIDATION


class Conflict(CertAnchorError):
    kind = ErrorKind.CONFLICT


class Forbidden(CertAnchorError):
    kind = ErrorKind.FORBIDDEN


class NotFound(CertAnchorError):
    kind = ErrorKind.NOT_FOUND


class Unauthorized(CertAnchorError):
    kind = ErrorKind.UNAUTHORIZED


class AnchoringFailed(CertAnchorError):
    kind = ErrorKind.ANCHORING_FAILED


class RevocationFailed(CertAnchorError):
    kind = ErrorKind.REVOCATION_FAILED


class MintFailed(CertAnchorError):
    kind = ErrorKind.MINT_FAILED


class InconsistentState(CertAnchorError):
    """Store and ledger disagree and compensation could not restore them."""
    kind = ErrorKind.INCONSISTENT_STATE


@dataclass
class Result:
    """Tagged outcome handed to callers of the public operations."""

    ok: bool
    value: Any = None
    error: Optional[ErrorKind] = None
    message: str = ""
    details: dict = field(default_factory=dict)

    @classmethod
    def success(cls, value=None) -> "Result":
        return cls(ok=True, value=value)

    @classmethod
    def failure(cls, exc: CertAnchorError) -> "Result":
        return cls(ok=False, error=exc.kind, message=exc.message, details=dict(exc.details))
