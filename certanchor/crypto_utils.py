import base64
import hashlib
import json
import os
import uuid

from cryptography.exceptions import InvalidKey
from cryptography.fernet import Fernet
from cryptography.hazmat.primitives.kdf.scrypt import Scrypt

# ---------- HASHING ----------
def sha256_hash(data: str) -> str:
    return hashlib.sha256(data.encode("utf-8")).hexdigest()


def certificate_hash(identifier: str, public_key: str) -> str:
    """The only link between a store record and its ledger anchor."""
    canonical = json.dumps([identifier, public_key], separators=(",", ":"), ensure_ascii=False)
    return sha256_hash(canonical)

# ---------- CREDENTIALS ----------
SCRYPT_N = 2 ** 14


def _kdf(salt: bytes) -> Scrypt:
    return Scrypt(salt=salt, length=32, n=SCRYPT_N, r=8, p=1)


def credential_hash(secret: str, salt: bytes = None) -> str:
    salt = salt or os.urandom(16)
    derived = _kdf(salt).derive(secret.encode("utf-8"))
    return f"scrypt${salt.hex()}${derived.hex()}"


def verify_credential(secret: str, stored: str) -> bool:
    scheme, _, rest = stored.partition("$")
    salt, _, expected = rest.partition("$")
    if scheme != "scrypt" or not salt or not expected:
        return False
    try:
        _kdf(bytes.fromhex(salt)).verify(secret.encode("utf-8"), bytes.fromhex(expected))
    except (InvalidKey, ValueError):
        return False
    return True

# ---------- SYMMETRIC ENCRYPTION ----------
def get_cipher(master_key: bytes) -> Fernet:
    key = base64.urlsafe_b64encode(hashlib.sha256(master_key).digest())
    return Fernet(key)

# ---------- IDENTIFIERS ----------
def new_unique_id() -> str:
    return f"UID-{uuid.uuid4().hex.upper()}"


def new_saga_id() -> str:
    return uuid.uuid4().hex
