import json

import pytest

from skycall.services.crypto_utils import (
    CryptoError, build_message, derive_aes_key, generate_ephemeral_key, seal, unseal
)


def test_both_sides_derive_the_same_key():
    server_priv, server_pub = generate_ephemeral_key()
    client_priv, client_pub = generate_ephemeral_key()

    server_key = derive_aes_key(server_priv, client_pub, salt=b"salt")
    client_key = derive_aes_key(client_priv, server_pub, salt=b"salt")

    assert server_key == client_key
    assert len(server_key) == 32


def test_sealed_frame_opens_with_same_key():
    key = b"\x01" * 32
    frame = seal(key, {"msg_type": "offer", "payload": {"to": "bob"}})

    assert "offer" not in frame
    assert unseal(key, json.loads(frame)) == {"msg_type": "offer", "payload": {"to": "bob"}}


def test_tampered_or_foreign_frame_is_refused():
    frame = json.loads(seal(b"\x01" * 32, {"msg_type": "ping"}))

    with pytest.raises(CryptoError):
        unseal(b"\x02" * 32, frame)
    with pytest.raises(CryptoError):
        unseal(b"\x01" * 32, {**frame, "tag": "%%%"})


def test_build_message_error_fields():
    ok = build_message("pong")
    assert ok["success"] is True and ok["payload"] == {} and "error_code" not in ok

    failed = build_message("failed", success=False, payload={"reason": "busy"}, error_code="BUSY")
    assert failed["error_code"] == "BUSY"
    assert failed["error_message"]
    assert failed["payload"] == {"reason": "busy"}
