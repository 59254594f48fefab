import functools
import logging
from typing import Optional

from flask import Flask

from .anchoring import AnchoringCoordinator
from .blockchain import InMemoryLedger, LedgerClient
from .crypto_utils import certificate_hash
from .errors import CertAnchorError, InconsistentState, Result, ValidationError
from .models import Principal
from .saga import SagaLog
from .store import Store, create_store
from .unique_ids import UniqueIdCoordinator
from .verification import VerificationEngine

logger = logging.getLogger(__name__)


def tagged(operation):
    """Run ``operation`` and hand back a Result instead of raising."""

    @functools.wraps(operation)
    def wrapper(*args, **kwargs):
        try:
            return Result.success(operation(*args, **kwargs))
        except CertAnchorError as exc:
            return Result.failure(exc)
        except Exception as exc:
            logger.exception("unexpected failure in %s", operation.__name__)
            return Result.failure(InconsistentState(
                f"{operation.__name__} failed unexpectedly: {exc}",
                operation=operation.__name__,
            ))

    return wrapper


class CertificateAuthority:
    def __init__(self, store: Store, ledger: LedgerClient, finality_timeout: float = 120.0):
        self.store = store
        self.ledger = ledger
        self.sagas = SagaLog(store)
        self.anchoring = AnchoringCoordinator(store, ledger, self.sagas, finality_timeout)
        self.verifier = VerificationEngine(store, ledger, self.sagas)
        self.unique_ids = UniqueIdCoordinator(store, ledger, self.sagas, finality_timeout)

    @classmethod
    def from_settings(cls, settings, app: Optional[Flask] = None, ledger: Optional[LedgerClient] = None):
        store = create_store(settings, app)
        if ledger is None:
            ledger = InMemoryLedger(confirmation_delay=settings.confirmation_delay)
        return cls(store, ledger, settings.finality_timeout)

    @tagged
    def issue(self, draft: dict, principal: Principal):
        return self.anchoring.issue(draft, principal)

    @tagged
    def revoke(self, identifier: str, principal: Principal):
        return self.anchoring.revoke(identifier, principal)

    @tagged
    def verify(self, identifier: str, public_key: str):
        return self.verifier.verify(identifier, public_key)

    @tagged
    def mint(self, principal: Principal):
        return self.unique_ids.mint(principal)

    @tagged
    def list_mine(self, principal: Principal):
        return self.unique_ids.list_for(principal)

    @tagged
    def certificate_hash(self, identifier: str, public_key: str):
        if not identifier or not public_key:
            raise ValidationError("Missing required fields: certificateId, publicKey")
        return certificate_hash(identifier, public_key)

    @tagged
    def recover(self):
        resolved = self.anchoring.recover() + self.unique_ids.recover()
        if resolved:
            logger.info("resolved %d open sagas", len(resolved))
        return resolved
