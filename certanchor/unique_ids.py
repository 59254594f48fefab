import logging
from typing import List

from .anchoring import escalate, mark, settle
from .blockchain import LedgerClient, LedgerError
from .crypto_utils import new_unique_id
from .errors import Conflict, InconsistentState, MintFailed
from .models import Principal, SagaEntry, UniqueIdRecord, utcnow
from .saga import ANCHOR_CONFIRMED, ANCHOR_SUBMITTED, MINT, SagaLog
from .store import UNIQUE_IDS, RecordExists, Store, StoreError

logger = logging.getLogger(__name__)


class UniqueIdCoordinator:
    def __init__(self, store: Store, ledger: LedgerClient, sagas: SagaLog, finality_timeout: float = 120.0):
        self.store = store
        self.ledger = ledger
        self.sagas = sagas
        self.finality_timeout = finality_timeout

    def mint(self, principal: Principal) -> UniqueIdRecord:
        unique_id = new_unique_id()
        if self.ledger.query(unique_id) is not None:
            raise Conflict(f"Unique ID {unique_id} is already bound on the ledger", unique_id=unique_id)

        try:
            saga = self.sagas.begin(MINT, unique_id, identifier=unique_id, institute_id=principal.institute_id)
        except StoreError as exc:
            raise MintFailed(f"Unique ID mint could not be started: {exc}", unique_id=unique_id)
        try:
            tx_id = self.ledger.submit_anchor(unique_id, {
                "institute_id": principal.institute_id,
                "institute_name": principal.institute_name,
            })
        except LedgerError as exc:
            error = f"binding submission failed: {exc}"
        else:
            mark(self.sagas.advance, saga, ANCHOR_SUBMITTED, tx_id=tx_id)
            error = settle(self.ledger, tx_id, self.finality_timeout)
        if error is not None:
            mark(self.sagas.aborted, saga, error)
            logger.warning(
                "unique id mint failed for %s", principal.institute_id,
                extra={"extra_fields": {"unique_id": unique_id, "ledger_error": error}},
            )
            raise MintFailed(f"Unique ID could not be anchored: {error}", unique_id=unique_id)
        mark(self.sagas.advance, saga, ANCHOR_CONFIRMED)

        record = UniqueIdRecord(unique_id=unique_id, institute_id=principal.institute_id, generated_at=utcnow())
        self._persist(saga, record)
        mark(self.sagas.complete, saga)
        logger.info(
            "unique id minted", extra={"extra_fields": {"unique_id": unique_id, "institute_id": principal.institute_id}},
        )
        return record

    def _persist(self, saga: SagaEntry, record: UniqueIdRecord):
        try:
            self.store.insert(UNIQUE_IDS, record.unique_id, record.to_dict())
        except RecordExists as exc:
            escalate(self.sagas, saga, ("ledger binding", "store insert"), "unique id collision", exc)
        except StoreError as exc:
            escalate(self.sagas, saga, ("ledger binding", "store insert"), "binding confirmed", exc)

    def list_for(self, principal: Principal) -> List[UniqueIdRecord]:
        rows = self.store.find(UNIQUE_IDS, institute_id=principal.institute_id)
        records = [UniqueIdRecord.from_dict(row) for row in rows]
        records.sort(key=lambda r: r.generated_at, reverse=True)
        return records

    def recover(self) -> List[SagaEntry]:
        resolved = []
        for saga in self.sagas.open_sagas(MINT):
            if saga.tx_id:
                settle(self.ledger, saga.tx_id, self.finality_timeout)
            anchor = self.ledger.query(saga.target_key)
            if anchor is not None and anchor.valid and anchor.institute_id == saga.institute_id:
                if not self.store.exists(UNIQUE_IDS, saga.target_key):
                    record = UniqueIdRecord(
                        unique_id=saga.target_key,
                        institute_id=saga.institute_id,
                        generated_at=anchor.anchored_at,
                    )
                    try:
                        self._persist(saga, record)
                    except InconsistentState:
                        resolved.append(self.sagas.get(saga.saga_id))
                        continue
                self.sagas.complete(saga)
            else:
                self.sagas.aborted(saga, "interrupted before the ledger binding was confirmed")
            resolved.append(self.sagas.get(saga.saga_id))
        return resolved
