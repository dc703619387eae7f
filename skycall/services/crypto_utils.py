# services/crypto_utils.py
"""
Channel encryption for signaling frames.

A connection starts with an X25519 key agreement; both sides derive a 256-bit
AES key with HKDF-SHA256 and exchange AES-GCM envelopes of the form
``{"nonce", "ciphertext", "tag"}`` (base64 strings) afterwards.
"""
import base64
import json
import logging
import os
import uuid
from datetime import datetime, timezone

from cryptography.hazmat.primitives import hashes, serialization
from cryptography.hazmat.primitives.asymmetric.x25519 import X25519PrivateKey, X25519PublicKey
from cryptography.hazmat.primitives.ciphers import Cipher, algorithms, modes
from cryptography.hazmat.primitives.kdf.hkdf import HKDF

logger = logging.getLogger(__name__)

HKDF_INFO = b"skycall signaling"
ENVELOPE_FIELDS = ("nonce", "ciphertext", "tag")


class CryptoError(Exception):
    """Key agreement, encryption or decryption failed."""


# ----- Key agreement -----

def generate_ephemeral_key():
    """
    Generate an ephemeral X25519 key pair.

    Returns:
        tuple:
            private_key (X25519PrivateKey): Generated private key.
            public_key (X25519PublicKey): Corresponding public key.
    """
    private_key = X25519PrivateKey.generate()
    return private_key, private_key.public_key()


def public_key_to_b64(public_key: X25519PublicKey) -> str:
    raw = public_key.public_bytes(
        encoding=serialization.Encoding.Raw,
        format=serialization.PublicFormat.Raw
    )
    return base64.b64encode(raw).decode()


def public_key_from_b64(value: str) -> X25519PublicKey:
    try:
        return X25519PublicKey.from_public_bytes(base64.b64decode(value))
    except (ValueError, TypeError) as e:
        raise CryptoError(f"Invalid public key: {e}") from e


def derive_aes_key(own_private_key: X25519PrivateKey, peer_public_key: X25519PublicKey,
                   salt: bytes, info: bytes = HKDF_INFO) -> bytes:
    """
    Compute the X25519 shared secret and derive a 32-byte AES key from it.

    Args:
        own_private_key (X25519PrivateKey): Local private key.
        peer_public_key (X25519PublicKey): Remote party's public key.
        salt (bytes): HKDF salt, chosen by the server per connection.
        info (bytes, optional): HKDF context info.

    Returns:
        bytes: 32-byte AES key.

    Raises:
        CryptoError: If the exchange or the derivation fails.
    """
    try:
        shared_secret = own_private_key.exchange(peer_public_key)
        hkdf = HKDF(algorithm=hashes.SHA256(), length=32, salt=salt, info=info)
        return hkdf.derive(shared_secret)
    except ValueError as e:
        raise CryptoError(f"Key derivation failed: {e}") from e


# ----- AES-GCM envelopes -----

def encrypt_message(aes_key: bytes, plaintext: bytes) -> dict:
    """
    Encrypt plaintext bytes using AES-GCM with a fresh 96-bit nonce.

    Returns:
        dict: ``nonce``, ``ciphertext`` and ``tag`` as bytes.
    """
    nonce = os.urandom(12)
    encryptor = Cipher(algorithms.AES(aes_key), modes.GCM(nonce)).encryptor()
    ciphertext = encryptor.update(plaintext) + encryptor.finalize()
    return {"nonce": nonce, "ciphertext": ciphertext, "tag": encryptor.tag}


def decrypt_message(aes_key: bytes, nonce: bytes, ciphertext: bytes, tag: bytes) -> bytes:
    """
    Decrypt and authenticate AES-GCM data.

    Raises:
        CryptoError: If the tag does not verify or the inputs are malformed.
    """
    try:
        decryptor = Cipher(algorithms.AES(aes_key), modes.GCM(nonce, tag)).decryptor()
        return decryptor.update(ciphertext) + decryptor.finalize()
    except Exception as e:
        raise CryptoError(f"Decryption failed: {e!r}") from e


def is_envelope(data) -> bool:
    return isinstance(data, dict) and all(k in data for k in ENVELOPE_FIELDS)


def seal(aes_key: bytes, message: dict) -> str:
    """Serialize ``message`` to JSON and wrap it in a base64 AES-GCM envelope."""
    encrypted = encrypt_message(aes_key, json.dumps(message).encode("utf-8"))
    return json.dumps({k: base64.b64encode(encrypted[k]).decode() for k in ENVELOPE_FIELDS})


def unseal(aes_key: bytes, envelope: dict) -> dict:
    """
    Open an envelope produced by ``seal`` and parse the JSON inside.

    Raises:
        CryptoError: If the envelope cannot be decoded or decrypted.
        ValueError: If the plaintext is not valid JSON.
    """
    try:
        parts = {k: base64.b64decode(envelope[k]) for k in ENVELOPE_FIELDS}
    except (ValueError, TypeError) as e:
        raise CryptoError(f"Malformed envelope: {e}") from e
    plain = decrypt_message(aes_key, parts["nonce"], parts["ciphertext"], parts["tag"])
    return json.loads(plain.decode("utf-8"))


# ----- Structured server messages -----

def build_message(msg_type, success=True, payload=None, error_code=None, error_message=None) -> dict:
    """
    Build the structured envelope every server frame uses.

    The message contains:
      - message_id: A new unique identifier for each frame.
      - timestamp: UTC creation time (ISO 8601).
      - msg_type: The type of message.
      - success: Boolean indicator of operation status.
      - error_code and error_message: Only present on failure.
      - payload: Operation-specific data.
    """
    message = {
        "message_id": str(uuid.uuid4()),
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "msg_type": msg_type,
        "success": success,
        "payload": payload if payload is not None else {},
    }
    if not success:
        message["error_code"] = error_code or "UNKNOWN_ERROR"
        message["error_message"] = error_message or "An unknown error occurred."
    return message


async def send_encrypted(websocket, message: dict, aes_key: bytes) -> bool:
    """
    Encrypt and send a structured message over a websocket.

    Send failures (typically a socket that is already closing) are logged,
    not raised: delivery to a peer is best-effort.

    Returns:
        bool: True if the frame was handed to the socket.
    """
    try:
        await websocket.send(seal(aes_key, message))
        return True
    except Exception as e:
        logger.error(f"Failed to send {message.get('msg_type')} frame: {e}")
        return False
