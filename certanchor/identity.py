import json
import logging
from abc import ABC, abstractmethod

from cryptography.fernet import Fernet, InvalidToken

from .crypto_utils import credential_hash, verify_credential
from .errors import Conflict, NotFound, Unauthorized, ValidationError
from .models import InstituteRecord, Principal, utcnow
from .store import INSTITUTES, RecordExists, RecordNotFound, Store

logger = logging.getLogger(__name__)

MIN_SECRET_LENGTH = 8
INVALID_LOGIN = "Invalid institute ID or password"


class IdentityProvider(ABC):
    @abstractmethod
    def authenticate(self, institute_id: str, secret: str) -> str:
        """Return a session token or raise Unauthorized."""

    @abstractmethod
    def authorize(self, token: str) -> Principal:
        """Return the principal behind ``token`` or raise Unauthorized."""


class LocalIdentityProvider(IdentityProvider):
    """Institutes kept in the record store, sessions as Fernet tokens."""

    def __init__(self, store: Store, cipher: Fernet, session_ttl: int = 86400):
        self.store = store
        self.cipher = cipher
        self.session_ttl = session_ttl

    def register(self, institute_id: str, institute_name: str, secret: str) -> InstituteRecord:
        institute_id = str(institute_id or "").strip()
        institute_name = str(institute_name or "").strip()
        if not institute_id or not institute_name or not isinstance(secret, str) or not secret:
            raise ValidationError("Missing required fields: instituteId, instituteName, password")
        if len(secret) < MIN_SECRET_LENGTH:
            raise ValidationError(f"Password must be at least {MIN_SECRET_LENGTH} characters long")

        record = InstituteRecord(
            institute_id=institute_id,
            institute_name=institute_name,
            credential_hash=credential_hash(secret),
            created_at=utcnow(),
        )
        try:
            self.store.insert(INSTITUTES, institute_id, record.to_dict())
        except RecordExists:
            raise Conflict("Institute with this ID already exists", institute_id=institute_id) from None
        logger.info("institute registered", extra={"extra_fields": {"institute_id": institute_id}})
        return record

    def deactivate(self, institute_id: str) -> InstituteRecord:
        def flag(current):
            current["is_active"] = False
            return current

        try:
            return InstituteRecord.from_dict(self.store.update(INSTITUTES, institute_id, flag))
        except RecordNotFound:
            raise NotFound(f"Institute {institute_id} not found", institute_id=institute_id) from None

    def _load(self, institute_id):
        try:
            return InstituteRecord.from_dict(self.store.get(INSTITUTES, institute_id))
        except RecordNotFound:
            return None

    def authenticate(self, institute_id, secret):
        institute = self._load(institute_id or "")
        if institute is None or not verify_credential(str(secret or ""), institute.credential_hash):
            logger.warning("login rejected", extra={"extra_fields": {"institute_id": institute_id}})
            raise Unauthorized(INVALID_LOGIN)
        if not institute.is_active:
            logger.warning("login for deactivated institute", extra={"extra_fields": {"institute_id": institute_id}})
            raise Unauthorized("Institute account is deactivated")

        payload = json.dumps({
            "institute_id": institute.institute_id,
            "institute_name": institute.institute_name,
        })
        return self.cipher.encrypt(payload.encode("utf-8")).decode("ascii")

    def authorize(self, token):
        if not token:
            raise Unauthorized("No token provided")
        try:
            payload = json.loads(self.cipher.decrypt(token.encode("ascii"), ttl=self.session_ttl))
        except (InvalidToken, UnicodeEncodeError, ValueError):
            raise Unauthorized("Invalid or expired token") from None

        institute = self._load(payload.get("institute_id", ""))
        if institute is None or not institute.is_active:
            raise Unauthorized("Invalid or expired token")
        return Principal(institute_id=institute.institute_id, institute_name=institute.institute_name)
