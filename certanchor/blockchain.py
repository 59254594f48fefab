import itertools
import logging
import threading
import time
from abc import ABC, abstractmethod
from enum import Enum
from typing import Dict, Optional

from .models import AnchorEntry, utcnow

logger = logging.getLogger(__name__)


class TxOutcome(str, Enum):
    CONFIRMED = "Confirmed"
    FAILED = "Failed"
    TIMED_OUT = "TimedOut"


class LedgerError(Exception):
    pass


class LedgerClient(ABC):
    @abstractmethod
    def submit_anchor(self, anchor_hash: str, metadata: dict) -> str:
        ...

    @abstractmethod
    def submit_revoke(self, anchor_hash: str) -> str:
        ...

    @abstractmethod
    def await_final(self, tx_id: str, timeout: float) -> TxOutcome:
        ...

    @abstractmethod
    def query(self, anchor_hash: str) -> Optional[AnchorEntry]:
        ...

    def failure_reason(self, tx_id: str) -> Optional[str]:
        return None


class InMemoryLedger(LedgerClient):
    """
    Append-only ledger kept in process memory.

    Transactions sit in a pending pool until ``confirmation_delay`` seconds
    have passed, then finalize on the next access. A delay of ``None`` means
    transactions are accepted but never reach finality.
    """

    def __init__(self, confirmation_delay: Optional[float] = 0.0, poll_interval: float = 0.01):
        self.confirmation_delay = confirmation_delay
        self.poll_interval = poll_interval
        self.reject_submissions = False
        self.anchors: Dict[str, AnchorEntry] = {}
        self._pending: Dict[str, dict] = {}
        self._outcomes: Dict[str, TxOutcome] = {}
        self._errors: Dict[str, str] = {}
        self._fail_budget = 0
        self._counter = itertools.count(1)
        self._lock = threading.RLock()

    # ---------------- FAULT HOOKS ----------------
    def fail_next(self, count: int = 1):
        with self._lock:
            self._fail_budget += count

    # ---------------- SUBMISSION ----------------
    def _submit(self, op, anchor_hash, metadata=None):
        if self.reject_submissions:
            raise LedgerError("ledger rejected the transaction")
        with self._lock:
            tx_id = f"0x{next(self._counter):064x}"
            fail = self._fail_budget > 0
            if fail:
                self._fail_budget -= 1
            ready_at = None
            if self.confirmation_delay is not None:
                ready_at = time.monotonic() + self.confirmation_delay
            self._pending[tx_id] = {
                "op": op,
                "hash": anchor_hash,
                "metadata": dict(metadata or {}),
                "ready_at": ready_at,
                "fail": fail,
            }
        logger.debug("submitted %s tx %s for %s", op, tx_id, anchor_hash)
        return tx_id

    def submit_anchor(self, anchor_hash, metadata):
        return self._submit("anchor", anchor_hash, metadata)

    def submit_revoke(self, anchor_hash):
        return self._submit("revoke", anchor_hash)

    # ---------------- FINALITY ----------------
    def _apply(self, tx):
        if tx["fail"]:
            return "transaction reverted"
        anchor_hash = tx["hash"]
        if tx["op"] == "anchor":
            if anchor_hash in self.anchors:
                return "Blockchain: anchor already exists"
            self.anchors[anchor_hash] = AnchorEntry(
                hash=anchor_hash,
                institute_id=tx["metadata"].get("institute_id", ""),
                institute_name=tx["metadata"].get("institute_name", ""),
                anchored_at=utcnow(),
                valid=True,
            )
            return None
        entry = self.anchors.get(anchor_hash)
        if entry is None:
            return "Blockchain: anchor does not exist"
        if not entry.valid:
            return "Blockchain: anchor already revoked"
        entry.valid = False
        return None

    def _settle(self):
        now = time.monotonic()
        ready = [
            tx_id for tx_id, tx in self._pending.items()
            if tx["ready_at"] is not None and tx["ready_at"] <= now
        ]
        for tx_id in sorted(ready):
            error = self._apply(self._pending.pop(tx_id))
            if error is None:
                self._outcomes[tx_id] = TxOutcome.CONFIRMED
            else:
                self._outcomes[tx_id] = TxOutcome.FAILED
                self._errors[tx_id] = error

    def await_final(self, tx_id, timeout):
        deadline = time.monotonic() + timeout
        while True:
            with self._lock:
                self._settle()
                outcome = self._outcomes.get(tx_id)
                if outcome is None and tx_id not in self._pending:
                    raise LedgerError(f"unknown transaction {tx_id}")
            if outcome is not None:
                return outcome
            remaining = deadline - time.monotonic()
            if remaining <= 0:
                return TxOutcome.TIMED_OUT
            time.sleep(min(self.poll_interval, remaining))

    def failure_reason(self, tx_id: str) -> Optional[str]:
        with self._lock:
            return self._errors.get(tx_id)

    def query(self, anchor_hash):
        with self._lock:
            self._settle()
            entry = self.anchors.get(anchor_hash)
            if entry is None:
                return None
            return AnchorEntry.from_dict(entry.to_dict())
