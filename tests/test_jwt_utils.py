import pytest

from conftest import TEST_SECRET, make_token, verify_test_token
from skycall.services.jwt_utils import IdentityError, verify_jwt


def test_valid_token_yields_identity():
    identity = verify_test_token(make_token("u-1", name="Alice"))

    assert identity.user_id == "u-1"
    assert identity.name == "Alice"


def test_username_claim_is_name_fallback():
    identity = verify_test_token(make_token("u-2", username="bob"))
    assert identity.name == "bob"


def test_claims_roundtrip():
    payload = verify_jwt(make_token("u-3"), key=TEST_SECRET, algorithm="HS256", audience="")
    assert payload["sub"] == "u-3" and "exp" in payload


@pytest.mark.parametrize("token, code", [
    (None, "MISSING_TOKEN"),
    ("", "MISSING_TOKEN"),
    ("not-a-jwt", "INVALID_TOKEN"),
    (make_token("u-1", secret="another-secret-that-is-long-enough!!"), "INVALID_TOKEN"),
    (make_token("u-1", expires_in=-60), "TOKEN_EXPIRED"),
])
def test_bad_tokens_are_refused(token, code):
    with pytest.raises(IdentityError) as exc:
        verify_test_token(token)
    assert exc.value.error_code == code
