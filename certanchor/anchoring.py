"""
Issuance and revocation sagas.

Both sagas write the Record Store first and the ledger second. When the ledger
side fails, the store write is compensated; when the compensation fails too,
the saga is escalated to ``InconsistentState`` for manual reconciliation.
"""

import logging
from typing import List, Optional, Tuple

from .blockchain import LedgerClient, LedgerError, TxOutcome
from .crypto_utils import certificate_hash
from .errors import (
    AnchoringFailed,
    Conflict,
    Forbidden,
    InconsistentState,
    NotFound,
    RevocationFailed,
    ValidationError,
)
from .models import (
    ACTIVE,
    REVOKED,
    CertificateRecord,
    IssueReceipt,
    Principal,
    RevokeReceipt,
    SagaEntry,
    certificate_key,
    utcnow,
    validate_draft,
)
from .saga import (
    ANCHOR_SUBMITTED,
    ISSUE,
    RECORD_INSERTED,
    RECORD_REVOKED,
    REVOKE,
    REVOKE_SUBMITTED,
    SagaLog,
)
from .store import CERTIFICATES, RecordExists, RecordNotFound, Store, StoreError

logger = logging.getLogger(__name__)


class _AlreadyRevoked(Exception):
    def __init__(self, revoked_at):
        super().__init__(revoked_at)
        self.revoked_at = revoked_at


def settle(ledger: LedgerClient, tx_id: str, timeout: float) -> Optional[str]:
    """Wait for ``tx_id`` to reach finality; return a failure reason or None."""
    try:
        outcome = ledger.await_final(tx_id, timeout)
    except LedgerError as exc:
        return f"ledger error while awaiting finality: {exc}"
    if outcome is TxOutcome.CONFIRMED:
        return None
    if outcome is TxOutcome.TIMED_OUT:
        return f"transaction {tx_id} not final after {timeout}s"
    reason = ledger.failure_reason(tx_id)
    return f"transaction {tx_id} failed" + (f": {reason}" if reason else "")


def escalate(sagas: SagaLog, saga: SagaEntry, attempted: Tuple[str, str], ledger_error: str, compensation_error: Exception):
    message = (
        f"{saga.kind} saga {saga.saga_id} left store and ledger inconsistent: "
        f"{attempted[1]} failed after {attempted[0]} failed"
    )
    logger.critical(
        message,
        extra={"extra_fields": {
            "saga_id": saga.saga_id,
            "identifier": saga.identifier,
            "institute_id": saga.institute_id,
            "hash": saga.hash,
            "tx_id": saga.tx_id,
            "attempted": list(attempted),
            "ledger_error": ledger_error,
            "compensation_error": str(compensation_error),
        }},
    )
    try:
        sagas.inconsistent(saga, f"{ledger_error}; compensation failed: {compensation_error}")
    except StoreError:
        logger.exception("could not mark saga %s inconsistent", saga.saga_id)
    raise InconsistentState(
        message,
        saga_id=saga.saga_id,
        identifier=saga.identifier,
        hash=saga.hash,
        attempted=list(attempted),
    )


def mark(write, saga: SagaEntry, *args, **context) -> bool:
    """Write a saga marker whose loss only matters after a crash.

    A row left ``open`` by a failed write is settled by ``recover()``.
    """
    try:
        write(saga, *args, **context)
    except StoreError as exc:
        logger.error(
            "saga %s marker %s not written: %s", saga.saga_id, write.__name__, exc,
            extra={"extra_fields": {"saga_id": saga.saga_id, "identifier": saga.identifier}},
        )
        return False
    return True


class AnchoringCoordinator:
    def __init__(self, store: Store, ledger: LedgerClient, sagas: SagaLog, finality_timeout: float = 120.0):
        self.store = store
        self.ledger = ledger
        self.sagas = sagas
        self.finality_timeout = finality_timeout

    # ---------------- ISSUE ----------------
    def issue(self, draft: dict, principal: Principal) -> IssueReceipt:
        record = validate_draft(draft)
        if record.institute_id != principal.institute_id:
            raise Forbidden(
                "Certificate institute does not match the authenticated institute",
                identifier=record.identifier,
            )

        key = record.key
        if self.store.exists(CERTIFICATES, key):
            raise Conflict(f"Certificate {record.identifier} already exists", identifier=record.identifier)

        anchor_hash = certificate_hash(record.identifier, record.public_key)
        try:
            saga = self.sagas.begin(
                ISSUE, key,
                identifier=record.identifier,
                institute_id=record.institute_id,
                hash=anchor_hash,
            )
        except StoreError as exc:
            raise AnchoringFailed(f"Issuance could not be started: {exc}", identifier=record.identifier)

        record.created_at = utcnow()
        record.status = ACTIVE
        record.saga_id = saga.saga_id
        try:
            self.store.insert(CERTIFICATES, key, record.to_dict())
        except RecordExists:
            mark(self.sagas.aborted, saga, "identifier already exists")
            raise Conflict(f"Certificate {record.identifier} already exists", identifier=record.identifier)
        except StoreError as exc:
            mark(self.sagas.aborted, saga, f"store insert failed: {exc}")
            raise AnchoringFailed(f"Certificate could not be stored: {exc}", identifier=record.identifier)

        try:
            self.sagas.advance(saga, RECORD_INSERTED)
        except StoreError as exc:
            error = f"saga log write failed: {exc}"
        else:
            error = self._anchor(saga, anchor_hash, principal)
        if error is not None:
            self._compensate_issue(saga, error)

        mark(self.sagas.complete, saga)
        logger.info(
            "certificate %s issued", record.identifier,
            extra={"extra_fields": {"institute_id": record.institute_id, "hash": anchor_hash}},
        )
        return IssueReceipt(identifier=record.identifier, hash=anchor_hash, created_at=record.created_at)

    def _anchor(self, saga: SagaEntry, anchor_hash: str, principal: Principal) -> Optional[str]:
        existing = self.ledger.query(anchor_hash)
        if existing is not None:
            # left behind by an earlier attempt that timed out and finalized later
            if existing.valid and existing.institute_id == principal.institute_id:
                logger.info("adopting existing anchor %s", anchor_hash)
                return None
            return "hash is already anchored on the ledger"

        try:
            tx_id = self.ledger.submit_anchor(anchor_hash, {
                "institute_id": principal.institute_id,
                "institute_name": principal.institute_name,
            })
        except LedgerError as exc:
            return f"anchor submission failed: {exc}"
        mark(self.sagas.advance, saga, ANCHOR_SUBMITTED, tx_id=tx_id)
        return settle(self.ledger, tx_id, self.finality_timeout)

    def _compensate_issue(self, saga: SagaEntry, error: str):
        logger.warning(
            "anchoring failed, removing provisional certificate %s", saga.identifier,
            extra={"extra_fields": {"saga_id": saga.saga_id, "hash": saga.hash, "ledger_error": error}},
        )
        try:
            self._delete_own_record(saga)
        except StoreError as exc:
            escalate(self.sagas, saga, ("ledger anchor", "store delete"), error, exc)
        mark(self.sagas.compensated, saga, error)
        raise AnchoringFailed(
            f"Ledger anchoring failed: {error}",
            identifier=saga.identifier,
            hash=saga.hash,
        )

    def _delete_own_record(self, saga: SagaEntry) -> bool:
        try:
            current = self.store.get(CERTIFICATES, saga.target_key)
        except RecordNotFound:
            return False
        if current.get("saga_id") != saga.saga_id:
            return False
        try:
            self.store.delete(CERTIFICATES, saga.target_key)
        except RecordNotFound:
            return False
        return True

    # ---------------- REVOKE ----------------
    def _owned_record(self, identifier: str, principal: Principal) -> CertificateRecord:
        try:
            row = self.store.get(CERTIFICATES, certificate_key(principal.institute_id, identifier))
        except RecordNotFound:
            if self.store.find(CERTIFICATES, identifier=identifier):
                raise Forbidden(
                    "Certificate was issued by a different institute", identifier=identifier,
                ) from None
            raise NotFound(f"Certificate {identifier} not found", identifier=identifier) from None
        record = CertificateRecord.from_dict(row)
        if record.institute_id != principal.institute_id or record.identifier != identifier:
            raise Forbidden("Certificate was issued by a different institute", identifier=identifier)
        return record

    def revoke(self, identifier: str, principal: Principal) -> RevokeReceipt:
        identifier = (identifier or "").strip()
        if not identifier:
            raise ValidationError("Missing required field: identifier")

        record = self._owned_record(identifier, principal)
        anchor_hash = certificate_hash(record.identifier, record.public_key)
        if record.status == REVOKED:
            return RevokeReceipt(identifier, anchor_hash, record.revoked_at, already_revoked=True)

        try:
            saga = self.sagas.begin(
                REVOKE, record.key,
                identifier=identifier,
                institute_id=record.institute_id,
                hash=anchor_hash,
            )
        except StoreError as exc:
            raise RevocationFailed(f"Revocation could not be started: {exc}", identifier=identifier)
        revoked_at = utcnow()

        def flip(current):
            if current["status"] == REVOKED:
                raise _AlreadyRevoked(current["revoked_at"])
            current["status"] = REVOKED
            current["revoked_at"] = revoked_at
            return current

        try:
            self.store.update(CERTIFICATES, record.key, flip)
        except _AlreadyRevoked as exc:
            mark(self.sagas.aborted, saga, "already revoked")
            return RevokeReceipt(identifier, anchor_hash, exc.revoked_at, already_revoked=True)
        except RecordNotFound:
            mark(self.sagas.aborted, saga, "record vanished")
            raise NotFound(f"Certificate {identifier} not found", identifier=identifier) from None
        except StoreError as exc:
            mark(self.sagas.aborted, saga, f"store update failed: {exc}")
            raise RevocationFailed(f"Certificate could not be updated: {exc}", identifier=identifier)

        try:
            self.sagas.advance(saga, RECORD_REVOKED)
        except StoreError as exc:
            error = f"saga log write failed: {exc}"
        else:
            error = self._revoke_on_ledger(saga, anchor_hash, record.institute_id)
        if error is not None:
            self._compensate_revoke(saga, revoked_at, error)

        mark(self.sagas.complete, saga)
        logger.info(
            "certificate %s revoked", identifier,
            extra={"extra_fields": {"institute_id": record.institute_id, "hash": anchor_hash}},
        )
        return RevokeReceipt(identifier, anchor_hash, revoked_at)

    def _revoke_on_ledger(self, saga: SagaEntry, anchor_hash: str, institute_id: str) -> Optional[str]:
        existing = self.ledger.query(anchor_hash)
        if existing is not None and not existing.valid and existing.institute_id == institute_id:
            # revoked by an earlier attempt that timed out and finalized later
            logger.info("adopting existing revocation of %s", anchor_hash)
            return None

        try:
            tx_id = self.ledger.submit_revoke(anchor_hash)
        except LedgerError as exc:
            return f"revoke submission failed: {exc}"
        mark(self.sagas.advance, saga, REVOKE_SUBMITTED, tx_id=tx_id)
        return settle(self.ledger, tx_id, self.finality_timeout)

    def _restore_active(self, saga: SagaEntry, revoked_at: Optional[str]):
        def revert(current):
            if current["status"] == REVOKED and (revoked_at is None or current["revoked_at"] == revoked_at):
                current["status"] = ACTIVE
                current["revoked_at"] = None
            return current

        try:
            self.store.update(CERTIFICATES, saga.target_key, revert)
        except RecordNotFound:
            pass

    def _compensate_revoke(self, saga: SagaEntry, revoked_at: str, error: str):
        logger.warning(
            "ledger revoke failed, restoring certificate %s", saga.identifier,
            extra={"extra_fields": {"saga_id": saga.saga_id, "hash": saga.hash, "ledger_error": error}},
        )
        try:
            self._restore_active(saga, revoked_at)
        except StoreError as exc:
            escalate(self.sagas, saga, ("ledger revoke", "store revert"), error, exc)
        mark(self.sagas.compensated, saga, error)
        raise RevocationFailed(
            f"Ledger revocation failed: {error}",
            identifier=saga.identifier,
            hash=saga.hash,
        )

    # ---------------- RECOVERY ----------------
    def recover(self) -> List[SagaEntry]:
        resolved = []
        for saga in self.sagas.open_sagas(ISSUE):
            resolved.append(self._recover(saga, self._recover_issue))
        for saga in self.sagas.open_sagas(REVOKE):
            resolved.append(self._recover(saga, self._recover_revoke))
        return resolved

    def _recover(self, saga, handler):
        logger.info(
            "recovering open %s saga", saga.kind,
            extra={"extra_fields": {"saga_id": saga.saga_id, "step": saga.step, "identifier": saga.identifier}},
        )
        if saga.tx_id:
            error = settle(self.ledger, saga.tx_id, self.finality_timeout)
            if error is not None:
                logger.warning("pending transaction of saga %s: %s", saga.saga_id, error)
        try:
            handler(saga)
        except InconsistentState:
            # already logged and marked on the saga row
            pass
        return self.sagas.get(saga.saga_id)

    def _recover_issue(self, saga: SagaEntry):
        anchor = self.ledger.query(saga.hash)
        try:
            current = self.store.get(CERTIFICATES, saga.target_key)
        except RecordNotFound:
            current = None
        owned = current is not None and current.get("saga_id") == saga.saga_id

        if owned and anchor is not None and anchor.valid and anchor.institute_id == saga.institute_id:
            self.sagas.complete(saga)
            return

        error = "interrupted before the ledger anchor was confirmed"
        try:
            self._delete_own_record(saga)
        except StoreError as exc:
            escalate(self.sagas, saga, ("ledger anchor", "store delete"), error, exc)
        self.sagas.compensated(saga, error)

    def _recover_revoke(self, saga: SagaEntry):
        anchor = self.ledger.query(saga.hash)
        if anchor is not None and not anchor.valid:
            def finish(current):
                if current["status"] != REVOKED:
                    current["status"] = REVOKED
                    current["revoked_at"] = saga.updated_at
                return current

            try:
                self.store.update(CERTIFICATES, saga.target_key, finish)
            except RecordNotFound:
                pass
            except StoreError as exc:
                escalate(self.sagas, saga, ("ledger revoke", "store revoke"), "recovery", exc)
            self.sagas.complete(saga)
            return

        error = "interrupted before the ledger revoke was confirmed"
        try:
            self._restore_active(saga, None)
        except StoreError as exc:
            escalate(self.sagas, saga, ("ledger revoke", "store revert"), error, exc)
        self.sagas.compensated(saga, error)
