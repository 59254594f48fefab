from certanchor.crypto_utils import certificate_hash
from certanchor.errors import ErrorKind
from certanchor.models import (
    ACTIVE,
    INVALID,
    NOT_FOUND,
    PENDING,
    REASON_ISSUER_MISMATCH,
    REASON_LEDGER_REVOKED,
    REASON_NOT_ANCHORED,
    REASON_REVOKED,
    VALID,
    AnchorEntry,
    validate_draft,
)
from certanchor.saga import ISSUE
from certanchor.store import CERTIFICATES

HASH = certificate_hash("S100", "PK1")


def plant_record(store, make_draft, **overrides):
    """Write a certificate straight into the store, bypassing the saga."""
    record = validate_draft(make_draft(**overrides))
    record.created_at = "2024-06-01T00:00:00Z"
    store.insert(CERTIFICATES, record.key, record.to_dict())
    return record


def test_valid_certificate(authority, ledger, i1, make_draft):
    assert authority.issue(make_draft(), i1).ok

    verdict = authority.verify("S100", "PK1").value

    assert verdict.verdict == VALID
    assert verdict.is_valid
    assert verdict.authoritative
    assert verdict.hash == HASH
    assert verdict.anchored_at == ledger.query(HASH).anchored_at
    assert verdict.institute_name == "First Institute"
    assert verdict.certificate["student_name"] == "Asha Rao"
    assert "saga_id" not in verdict.certificate


def test_wrong_public_key_is_not_found(authority, i1, make_draft):
    assert authority.issue(make_draft(), i1).ok

    wrong_key = authority.verify("S100", "PK2").value
    unknown = authority.verify("S999", "PK1").value

    assert wrong_key.verdict == NOT_FOUND
    assert wrong_key.to_dict() == unknown.to_dict()


def test_revoked_in_store_is_not_authoritative(authority, i1, make_draft):
    assert authority.issue(make_draft(), i1).ok
    assert authority.revoke("S100", i1).ok

    verdict = authority.verify("S100", "PK1").value

    assert verdict.verdict == INVALID
    assert verdict.reason == REASON_REVOKED
    assert verdict.authoritative is False
    assert verdict.certificate["identifier"] == "S100"


def test_record_without_anchor_is_a_tamper_signal(authority, store, make_draft):
    plant_record(store, make_draft)

    verdict = authority.verify("S100", "PK1").value

    assert verdict.verdict == INVALID
    assert verdict.reason == REASON_NOT_ANCHORED
    assert verdict.certificate is None


def test_store_tampered_back_to_active(authority, store, ledger, i1, make_draft):
    assert authority.issue(make_draft(), i1).ok
    assert authority.revoke("S100", i1).ok

    def reactivate(record):
        record["status"] = ACTIVE
        record["revoked_at"] = None
        return record

    store.update(CERTIFICATES, "I1/S100", reactivate)

    verdict = authority.verify("S100", "PK1").value
    assert verdict.verdict == INVALID
    assert verdict.reason == REASON_LEDGER_REVOKED


def test_ledger_invalidated_separately(authority, ledger, i1, make_draft):
    assert authority.issue(make_draft(), i1).ok
    ledger.anchors[HASH].valid = False

    verdict = authority.verify("S100", "PK1").value

    assert verdict.verdict == INVALID
    assert verdict.reason == REASON_LEDGER_REVOKED


def test_anchor_from_another_institute(authority, store, ledger, make_draft):
    plant_record(store, make_draft)
    ledger.anchors[HASH] = AnchorEntry(
        hash=HASH, institute_id="I2", institute_name="Second Institute", anchored_at="2024-06-01T00:00:00Z",
    )

    verdict = authority.verify("S100", "PK1").value

    assert verdict.verdict == INVALID
    assert verdict.reason == REASON_ISSUER_MISMATCH


def test_in_flight_issuance_is_pending(authority, store, make_draft):
    record = plant_record(store, make_draft)
    authority.sagas.begin(ISSUE, record.key, identifier="S100", institute_id="I1", hash=HASH)

    verdict = authority.verify("S100", "PK1").value

    assert verdict.verdict == PENDING
    assert not verdict.is_valid


def test_missing_inputs_are_rejected(authority):
    assert authority.verify("", "PK1").error is ErrorKind.VALIDATION
    assert authority.verify("S100", None).error is ErrorKind.VALIDATION
