import pytest

from certanchor.crypto_utils import get_cipher
from certanchor.errors import Conflict, Unauthorized, ValidationError
from certanchor.identity import INVALID_LOGIN, LocalIdentityProvider
from certanchor.models import Principal
from certanchor.store import INSTITUTES


@pytest.fixture
def identity(store):
    provider = LocalIdentityProvider(store, get_cipher(b"test-master-key"))
    provider.register("I1", "First Institute", "s3cret-pass")
    return provider


def test_login_and_authorize(identity):
    token = identity.authenticate("I1", "s3cret-pass")
    assert identity.authorize(token) == Principal("I1", "First Institute")


def test_secret_is_not_stored_in_clear(identity, store):
    stored = store.get(INSTITUTES, "I1")
    assert "s3cret-pass" not in stored["credential_hash"]
    assert stored["is_active"] is True


@pytest.mark.parametrize("institute_id,secret", [
    ("I1", "wrong-pass"),
    ("I9", "s3cret-pass"),
    ("I1", ""),
    (None, None),
])
def test_bad_credentials_are_rejected(identity, institute_id, secret):
    with pytest.raises(Unauthorized) as err:
        identity.authenticate(institute_id, secret)
    assert err.value.message == INVALID_LOGIN


def test_deactivated_institute_cannot_log_in_or_use_old_tokens(identity):
    token = identity.authenticate("I1", "s3cret-pass")
    identity.deactivate("I1")

    with pytest.raises(Unauthorized, match="deactivated"):
        identity.authenticate("I1", "s3cret-pass")
    with pytest.raises(Unauthorized):
        identity.authorize(token)


@pytest.mark.parametrize("token", ["", "not-a-token", "gAAAAABtampered"])
def test_garbage_tokens_are_rejected(identity, token):
    with pytest.raises(Unauthorized):
        identity.authorize(token)


def test_token_from_another_key_is_rejected(identity, store):
    foreign = LocalIdentityProvider(store, get_cipher(b"other-key"))
    with pytest.raises(Unauthorized):
        identity.authorize(foreign.authenticate("I1", "s3cret-pass"))


def test_expired_token_is_rejected(store):
    provider = LocalIdentityProvider(store, get_cipher(b"k"), session_ttl=-1)
    provider.register("I1", "First Institute", "s3cret-pass")
    with pytest.raises(Unauthorized):
        provider.authorize(provider.authenticate("I1", "s3cret-pass"))


def test_registration_rules(identity):
    with pytest.raises(Conflict):
        identity.register("I1", "Again", "another-pass")
    with pytest.raises(ValidationError):
        identity.register("I2", "Second Institute", "short")
    with pytest.raises(ValidationError):
        identity.register("", "Nameless", "long-enough-pass")
