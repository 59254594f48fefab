from dataclasses import asdict, dataclass, fields
from datetime import datetime, timezone
from typing import Optional
from urllib.parse import quote

from .errors import ValidationError

ACTIVE = "Active"
REVOKED = "Revoked"

VALID = "Valid"
INVALID = "Invalid"
NOT_FOUND = "NotFound"
PENDING = "Pending"

REASON_REVOKED = "Revoked"
REASON_NOT_ANCHORED = "NotAnchored"
REASON_LEDGER_REVOKED = "LedgerRevoked"
REASON_ISSUER_MISMATCH = "IssuerMismatch"


def utcnow() -> str:
    return datetime.now(timezone.utc).isoformat(timespec="microseconds").replace("+00:00", "Z")


class _Record:
    def to_dict(self) -> dict:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: dict):
        names = {f.name for f in fields(cls)}
        return cls(**{k: v for k, v in data.items() if k in names})


@dataclass
class CertificateRecord(_Record):
    identifier: str
    student_name: str
    course_name: str
    institution: str
    institute_id: str
    year: int
    semester: int
    score: str
    public_key: str
    created_at: str = ""
    status: str = ACTIVE
    revoked_at: Optional[str] = None
    saga_id: Optional[str] = None

    @property
    def key(self) -> str:
        return certificate_key(self.institute_id, self.identifier)

    def public_view(self) -> dict:
        data = self.to_dict()
        data.pop("saga_id")
        return data


@dataclass
class AnchorEntry(_Record):
    hash: str
    institute_id: str
    institute_name: str
    anchored_at: str
    valid: bool = True


@dataclass
class InstituteRecord(_Record):
    institute_id: str
    institute_name: str
    credential_hash: str
    is_active: bool = True
    created_at: str = ""


@dataclass
class UniqueIdRecord(_Record):
    unique_id: str
    institute_id: str
    generated_at: str
    is_active: bool = True


@dataclass(frozen=True)
class Principal:
    institute_id: str
    institute_name: str


@dataclass
class SagaEntry(_Record):
    saga_id: str
    kind: str
    target_key: str
    step: str
    state: str
    identifier: Optional[str] = None
    institute_id: Optional[str] = None
    hash: Optional[str] = None
    tx_id: Optional[str] = None
    error: Optional[str] = None
    started_at: str = ""
    updated_at: str = ""


@dataclass
class IssueReceipt(_Record):
    identifier: str
    hash: str
    created_at: str


@dataclass
class RevokeReceipt(_Record):
    identifier: str
    hash: str
    revoked_at: str
    already_revoked: bool = False


@dataclass
class VerificationResult(_Record):
    verdict: str
    reason: Optional[str] = None
    certificate: Optional[dict] = None
    authoritative: bool = False
    hash: Optional[str] = None
    anchored_at: Optional[str] = None
    institute_name: Optional[str] = None

    @property
    def is_valid(self) -> bool:
        return self.verdict == VALID


def certificate_key(institute_id: str, identifier: str) -> str:
    # institute part is escaped so the first "/" always ends it
    return f"{quote(institute_id, safe='')}/{identifier}"


_REQUIRED = (
    "identifier", "student_name", "course_name", "institution",
    "institute_id", "year", "semester", "score", "public_key",
)


def _as_int(name, value):
    if isinstance(value, bool):
        raise ValidationError(f"{name} must be numeric", field=name)
    if isinstance(value, int):
        return value
    text = str(value).strip()
    if not (text.isascii() and text.isdigit()):
        raise ValidationError(f"{name} must be numeric", field=name)
    return int(text)


def validate_draft(draft: dict) -> CertificateRecord:
    if not isinstance(draft, dict):
        raise ValidationError("certificate draft must be an object")

    missing = [name for name in _REQUIRED if draft.get(name) is None or str(draft.get(name)).strip() == ""]
    if missing:
        raise ValidationError(f"Missing required fields: {', '.join(missing)}", fields=missing)

    return CertificateRecord(
        identifier=str(draft["identifier"]).strip(),
        student_name=str(draft["student_name"]).strip(),
        course_name=str(draft["course_name"]).strip(),
        institution=str(draft["institution"]).strip(),
        institute_id=str(draft["institute_id"]).strip(),
        year=_as_int("year", draft["year"]),
        semester=_as_int("semester", draft["semester"]),
        score=str(draft["score"]).strip(),
        public_key=str(draft["public_key"]).strip(),
    )
