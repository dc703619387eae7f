# signaling/messages.py
"""
Message shapes exchanged with the signaling router.

Inbound messages are what a connection asks the relay to do; outbound
messages are what the relay hands to a connection handle for delivery.
Session descriptions, candidates and ``meta`` are opaque: they are checked
for presence only and forwarded exactly as received.
"""
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, Optional

from skycall.signaling.errors import MalformedMessage


class MessageKind(str, Enum):
    OFFER = "offer"
    ANSWER = "answer"
    REJECT = "reject"
    CANDIDATE = "candidate"
    END = "end"


# Outbound event names
INCOMING = "incoming"
ANSWERED = "answered"
REJECTED = "rejected"
FAILED = "failed"
CANDIDATE = "candidate"

# Required opaque field per kind, if any.
_BLOB_FIELDS = {
    MessageKind.OFFER: "sdp",
    MessageKind.ANSWER: "sdp",
    MessageKind.CANDIDATE: "candidate",
}


@dataclass(frozen=True)
class InboundMessage:
    """
    A validated control message from an attached connection.

    Attributes:
        kind (MessageKind): What the sender asks for.
        sender (str): Verified user id of the sending connection.
        to (str): User id the message is addressed to.
        handle: Connection handle the message arrived on.
        sender_name (str, optional): Display name attached at verification time.
        body (dict): Kind-specific fields (``sdp``, ``meta``, ``candidate``, ``reason``).
    """
    kind: MessageKind
    sender: str
    to: str
    handle: Any = field(repr=False, compare=False)
    sender_name: Optional[str] = None
    body: Dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class Outbound:
    """
    One event the router wants delivered to a specific connection handle.

    ``recipient`` is the user id the handle was resolved from at routing time.
    """
    recipient: str
    handle: Any = field(repr=False, compare=False)
    msg_type: str
    payload: Dict[str, Any] = field(default_factory=dict)
    success: bool = True
    error_code: Optional[str] = None
    error_message: Optional[str] = None


def normalize_user_id(value) -> str:
    """
    Turn a user identifier (string or integer) into its canonical string form.

    Raises:
        MalformedMessage: If the value is empty or not a string/integer.
    """
    if isinstance(value, bool) or not isinstance(value, (str, int)):
        raise MalformedMessage("user id must be a string or an integer")
    user_id = str(value).strip()
    if not user_id:
        raise MalformedMessage("user id must not be empty")
    return user_id


def parse_inbound(kind, sender: str, handle, payload, sender_name: str = None) -> InboundMessage:
    """
    Validate a raw payload dictionary and build an InboundMessage.

    Args:
        kind (MessageKind or str): Message kind.
        sender (str): Verified user id of the sender.
        handle: Connection handle the payload arrived on.
        payload (dict): Raw payload as decoded from the wire.
        sender_name (str, optional): Sender's display name.

    Returns:
        InboundMessage: The validated message.

    Raises:
        MalformedMessage: If the payload is not an object or a required field
            is missing or mistyped.
    """
    try:
        kind = MessageKind(kind)
    except ValueError:
        raise MalformedMessage(f"unknown message kind {kind!r}")
    if not isinstance(payload, dict):
        raise MalformedMessage("payload must be an object")
    if "to" not in payload:
        raise MalformedMessage(f"{kind.value} requires 'to'")
    to = normalize_user_id(payload["to"])

    body = {}
    blob_field = _BLOB_FIELDS.get(kind)
    if blob_field:
        if payload.get(blob_field) is None:
            raise MalformedMessage(f"{kind.value} requires '{blob_field}'")
        body[blob_field] = payload[blob_field]
    if kind is MessageKind.OFFER and payload.get("meta") is not None:
        body["meta"] = payload["meta"]
    if kind is MessageKind.REJECT and payload.get("reason") is not None:
        if not isinstance(payload["reason"], str):
            raise MalformedMessage("reject 'reason' must be a string")
        body["reason"] = payload["reason"]

    return InboundMessage(
        kind=kind,
        sender=sender,
        to=to,
        handle=handle,
        sender_name=sender_name,
        body=body,
    )
