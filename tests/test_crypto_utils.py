import hashlib

import pytest

from certanchor.crypto_utils import (
    certificate_hash,
    credential_hash,
    get_cipher,
    new_unique_id,
    sha256_hash,
    verify_credential,
)


def test_certificate_hash_is_deterministic():
    assert certificate_hash("S100", "PK1") == certificate_hash("S100", "PK1")


def test_certificate_hash_distinguishes_pairs():
    pairs = [("S100", "PK1"), ("S101", "PK1"), ("S100", "PK2"), ("PK1", "S100"), ("S1", "00PK1")]
    digests = {certificate_hash(identifier, key) for identifier, key in pairs}
    assert len(digests) == len(pairs)


def test_certificate_hash_does_not_collide_on_separators():
    assert certificate_hash("a:b", "c") != certificate_hash("a", "b:c")
    assert certificate_hash('a","b', "c") != certificate_hash("a", 'b","c')


def test_certificate_hash_is_sha256_hex():
    digest = certificate_hash("S100", "PK1")
    assert len(digest) == 64
    assert digest == hashlib.sha256(b'["S100","PK1"]').hexdigest()


def test_sha256_hash_matches_hashlib():
    assert sha256_hash("hello") == hashlib.sha256(b"hello").hexdigest()


def test_credentials_are_salted_and_verified():
    first = credential_hash("correct horse")
    second = credential_hash("correct horse")
    assert first != second
    assert verify_credential("correct horse", first)
    assert verify_credential("correct horse", second)
    assert not verify_credential("wrong horse", first)


def test_cipher_round_trips_with_same_master_key():
    token = get_cipher(b"master").encrypt(b"payload")
    assert get_cipher(b"master").decrypt(token) == b"payload"


def test_unique_ids_are_distinct():
    ids = {new_unique_id() for _ in range(500)}
    assert len(ids) == 500
    assert all(uid.startswith("UID-") and len(uid) == 36 for uid in ids)


def test_credentials_use_scrypt():
    stored = credential_hash("correct horse", salt=bytes(16))
    scheme, salt, derived = stored.split("$")
    assert scheme == "scrypt"
    assert salt == "00" * 16
    assert len(derived) == 64
    assert stored == credential_hash("correct horse", salt=bytes(16))


@pytest.mark.parametrize("stored", [
    "",
    "no-separator",
    "scrypt$zz$00",
    "md5$00$00",
    hashlib.sha256(b"correct horse").hexdigest(),
])
def test_malformed_credentials_never_verify(stored):
    assert not verify_credential("correct horse", stored)
