import logging

from .blockchain import LedgerClient
from .crypto_utils import certificate_hash
from .errors import ValidationError
from .models import (
    ACTIVE,
    INVALID,
    NOT_FOUND,
    PENDING,
    REASON_ISSUER_MISMATCH,
    REASON_LEDGER_REVOKED,
    REASON_NOT_ANCHORED,
    REASON_REVOKED,
    REVOKED,
    VALID,
    CertificateRecord,
    VerificationResult,
)
from .saga import ISSUE, SagaLog
from .store import CERTIFICATES, Store

logger = logging.getLogger(__name__)


class VerificationEngine:
    """Answers whether a certificate is genuine and current.

    A ``Valid`` verdict needs the store and the ledger to agree independently:
    the record is active, the anchor at its hash is valid, and both name the
    same institute. Every disagreement gets its own reason instead of being
    resolved in favour of either side.
    """

    def __init__(self, store: Store, ledger: LedgerClient, sagas: SagaLog):
        self.store = store
        self.ledger = ledger
        self.sagas = sagas

    def _lookup(self, identifier, public_key):
        rows = self.store.find(CERTIFICATES, identifier=identifier, public_key=public_key)
        if not rows:
            return None
        # one institute per hash can hold an anchor; prefer a live record
        rows.sort(key=lambda row: (row["status"] != ACTIVE, row["created_at"]))
        return CertificateRecord.from_dict(rows[0])

    def verify(self, identifier: str, public_key: str) -> VerificationResult:
        identifier = (identifier or "").strip()
        public_key = (public_key or "").strip()
        if not identifier or not public_key:
            raise ValidationError("Missing required fields: certificateId, publicKey")

        record = self._lookup(identifier, public_key)
        if record is None:
            return VerificationResult(verdict=NOT_FOUND)

        anchor_hash = certificate_hash(identifier, public_key)
        if record.status == REVOKED:
            return VerificationResult(
                verdict=INVALID,
                reason=REASON_REVOKED,
                certificate=record.public_view(),
                authoritative=False,
                hash=anchor_hash,
            )

        anchor = self.ledger.query(anchor_hash)
        if anchor is None:
            if self.sagas.in_flight(record.key, ISSUE):
                return VerificationResult(verdict=PENDING, hash=anchor_hash)
            self._tamper_signal(record, anchor_hash, REASON_NOT_ANCHORED)
            return VerificationResult(verdict=INVALID, reason=REASON_NOT_ANCHORED, hash=anchor_hash)

        if not anchor.valid:
            self._tamper_signal(record, anchor_hash, REASON_LEDGER_REVOKED)
            return VerificationResult(
                verdict=INVALID,
                reason=REASON_LEDGER_REVOKED,
                hash=anchor_hash,
                anchored_at=anchor.anchored_at,
            )

        if anchor.institute_id != record.institute_id:
            self._tamper_signal(record, anchor_hash, REASON_ISSUER_MISMATCH)
            return VerificationResult(
                verdict=INVALID,
                reason=REASON_ISSUER_MISMATCH,
                hash=anchor_hash,
                anchored_at=anchor.anchored_at,
            )

        return VerificationResult(
            verdict=VALID,
            certificate=record.public_view(),
            authoritative=True,
            hash=anchor_hash,
            anchored_at=anchor.anchored_at,
            institute_name=anchor.institute_name,
        )

    def _tamper_signal(self, record, anchor_hash, reason):
        logger.warning(
            "store and ledger disagree on certificate %s: %s", record.identifier, reason,
            extra={"extra_fields": {
                "identifier": record.identifier,
                "institute_id": record.institute_id,
                "hash": anchor_hash,
                "reason": reason,
            }},
        )
