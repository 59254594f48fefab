"""
Persisted step markers for the issuance, revocation and mint sagas.

A saga row is written before the first side effect and advanced after each
step, so a process that dies mid-saga leaves an ``open`` row behind that the
coordinators resolve on restart.
"""

import logging
from typing import List, Optional

from .crypto_utils import new_saga_id
from .models import SagaEntry, utcnow
from .store import SAGAS, Store

logger = logging.getLogger(__name__)

ISSUE = "issue"
REVOKE = "revoke"
MINT = "mint"

OPEN = "open"
COMPLETED = "completed"
COMPENSATED = "compensated"
ABORTED = "aborted"
INCONSISTENT = "inconsistent"

STARTED = "started"
RECORD_INSERTED = "record_inserted"
ANCHOR_SUBMITTED = "anchor_submitted"
ANCHOR_CONFIRMED = "anchor_confirmed"
RECORD_REVOKED = "record_revoked"
REVOKE_SUBMITTED = "revoke_submitted"


class SagaLog:
    def __init__(self, store: Store):
        self.store = store

    def begin(self, kind: str, target_key: str, **context) -> SagaEntry:
        now = utcnow()
        saga = SagaEntry(
            saga_id=new_saga_id(),
            kind=kind,
            target_key=target_key,
            step=STARTED,
            state=OPEN,
            started_at=now,
            updated_at=now,
            **context,
        )
        self.store.insert(SAGAS, saga.saga_id, saga.to_dict())
        logger.info(
            "saga %s started", kind,
            extra={"extra_fields": {"saga_id": saga.saga_id, "target": target_key}},
        )
        return saga

    def _write(self, saga: SagaEntry, **changes) -> SagaEntry:
        changes["updated_at"] = utcnow()

        def apply(record):
            record.update(changes)
            return record

        updated = self.store.update(SAGAS, saga.saga_id, apply)
        for name, value in changes.items():
            setattr(saga, name, value)
        logger.info(
            "saga %s -> %s/%s", saga.kind, updated["step"], updated["state"],
            extra={"extra_fields": {"saga_id": saga.saga_id, "target": saga.target_key}},
        )
        return saga

    def advance(self, saga: SagaEntry, step: str, **context) -> SagaEntry:
        return self._write(saga, step=step, **context)

    def complete(self, saga: SagaEntry) -> SagaEntry:
        return self._write(saga, state=COMPLETED)

    def compensated(self, saga: SagaEntry, error: str) -> SagaEntry:
        return self._write(saga, state=COMPENSATED, error=error)

    def aborted(self, saga: SagaEntry, error: str) -> SagaEntry:
        return self._write(saga, state=ABORTED, error=error)

    def inconsistent(self, saga: SagaEntry, error: str) -> SagaEntry:
        return self._write(saga, state=INCONSISTENT, error=error)

    def get(self, saga_id: str) -> SagaEntry:
        return SagaEntry.from_dict(self.store.get(SAGAS, saga_id))

    def open_sagas(self, kind: Optional[str] = None) -> List[SagaEntry]:
        filters = {"state": OPEN}
        if kind is not None:
            filters["kind"] = kind
        rows = self.store.find(SAGAS, **filters)
        return sorted((SagaEntry.from_dict(row) for row in rows), key=lambda s: s.started_at)

    def in_flight(self, target_key: str, kind: Optional[str] = None) -> bool:
        filters = {"state": OPEN, "target_key": target_key}
        if kind is not None:
            filters["kind"] = kind
        return bool(self.store.find(SAGAS, **filters))
