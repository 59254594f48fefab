"""
Pytest configuration and fixtures for certanchor tests.
"""

import pytest

from certanchor.blockchain import InMemoryLedger
from certanchor.models import Principal
from certanchor.service import CertificateAuthority
from certanchor.store import CERTIFICATES, SAGAS, UNIQUE_IDS, FileStore, SqlStore, StoreError


class FlakyStore(FileStore):
    """File store whose writes can be made to fail after a number of successes."""

    def __init__(self, path):
        super().__init__(path)
        self.deletes_allowed = None
        self.certificate_updates_allowed = None
        self.unique_id_inserts_allowed = None
        self.saga_inserts_allowed = None
        self.saga_updates_allowed = None

    @staticmethod
    def _spend(budget):
        if budget is None:
            return None
        if budget <= 0:
            raise StoreError("disk unavailable")
        return budget - 1

    def delete(self, table, key):
        self.deletes_allowed = self._spend(self.deletes_allowed)
        super().delete(table, key)

    def update(self, table, key, mutator):
        if table == CERTIFICATES:
            self.certificate_updates_allowed = self._spend(self.certificate_updates_allowed)
        elif table == SAGAS:
            self.saga_updates_allowed = self._spend(self.saga_updates_allowed)
        return super().update(table, key, mutator)

    def insert(self, table, key, record):
        if table == UNIQUE_IDS:
            self.unique_id_inserts_allowed = self._spend(self.unique_id_inserts_allowed)
        elif table == SAGAS:
            self.saga_inserts_allowed = self._spend(self.saga_inserts_allowed)
        super().insert(table, key, record)


@pytest.fixture(params=["file", "sql"])
def store(request, tmp_path):
    """Both store backends; every test using this runs once per backend."""
    if request.param == "file":
        return FileStore(str(tmp_path / "store.json"))
    return SqlStore.from_uri(f"sqlite:///{tmp_path / 'store.db'}")


@pytest.fixture
def flaky_store(tmp_path):
    return FlakyStore(str(tmp_path / "flaky.json"))


@pytest.fixture
def ledger():
    return InMemoryLedger()


@pytest.fixture
def authority(store, ledger):
    return CertificateAuthority(store, ledger, finality_timeout=1.0)


@pytest.fixture
def i1():
    return Principal(institute_id="I1", institute_name="First Institute")


@pytest.fixture
def i2():
    return Principal(institute_id="I2", institute_name="Second Institute")


@pytest.fixture
def make_draft():
    def _make(identifier="S100", public_key="PK1", institute_id="I1", **overrides):
        draft = {
            "identifier": identifier,
            "student_name": "Asha Rao",
            "course_name": "B.Tech Computer Science",
            "institution": "First Institute",
            "institute_id": institute_id,
            "year": 2024,
            "semester": 8,
            "score": "8.9",
            "public_key": public_key,
        }
        draft.update(overrides)
        return draft

    return _make
