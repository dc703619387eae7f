import pytest

from skycall.signaling.errors import MalformedMessage
from skycall.signaling.messages import MessageKind, normalize_user_id, parse_inbound


def test_parse_offer_keeps_opaque_fields():
    handle = object()
    msg = parse_inbound("offer", "alice", handle,
                        {"to": 42, "sdp": {"type": "offer"}, "meta": [1, 2], "extra": "ignored"},
                        sender_name="Alice")

    assert msg.kind is MessageKind.OFFER
    assert msg.to == "42"
    assert msg.handle is handle
    assert msg.body == {"sdp": {"type": "offer"}, "meta": [1, 2]}


@pytest.mark.parametrize("kind, payload", [
    ("offer", {"sdp": "x"}),
    ("offer", {"to": "bob"}),
    ("answer", {"to": "bob", "sdp": None}),
    ("candidate", {"to": "bob"}),
    ("reject", {"to": "bob", "reason": 5}),
    ("end", {"to": ""}),
    ("end", {"to": True}),
    ("end", ["bob"]),
    ("hangup", {"to": "bob"}),
])
def test_parse_rejects_malformed_payloads(kind, payload):
    with pytest.raises(MalformedMessage):
        parse_inbound(kind, "alice", object(), payload)


def test_normalize_user_id():
    assert normalize_user_id(7) == "7"
    assert normalize_user_id(" bob ") == "bob"
    with pytest.raises(MalformedMessage):
        normalize_user_id(None)
