# signaling/transitions.py
"""
Transition functions, one per inbound message kind.

Each function takes the relay state and a validated message, applies at most
one call-state transition and returns the outbound messages it produces
(zero or one forward). Destinations are resolved from the registry at the
moment of routing. Errors are raised, never sent: the router decides how a
failure reaches the sender.
"""
import logging
from dataclasses import dataclass
from typing import Callable, Dict, List, Optional, Tuple

from skycall.constants import (
    REASON_CALL_ENDED, REASON_PEER_DISCONNECTED, REASON_REJECTED, REASON_SUPERSEDED
)
from skycall.signaling.calls import CallStateTable
from skycall.signaling.errors import Unauthorized, Unreachable
from skycall.signaling.messages import (
    ANSWERED, CANDIDATE, INCOMING, REJECTED, InboundMessage, MessageKind, Outbound
)
from skycall.signaling.registry import ConnectionRegistry

logger = logging.getLogger(__name__)


@dataclass
class RelayState:
    """The two shared tables every transition reads and mutates."""
    registry: ConnectionRegistry
    calls: CallStateTable


def _resolve(state: RelayState, user_id: str):
    handle = state.registry.lookup(user_id)
    if handle is None:
        raise Unreachable(f"{user_id} is not connected")
    return handle


def route_offer(state: RelayState, msg: InboundMessage) -> List[Outbound]:
    """NONE -> RINGING; forwards ``incoming`` to the callee."""
    if msg.to == msg.sender:
        raise Unauthorized(f"{msg.sender} tried to call themselves")
    handle = _resolve(state, msg.to)

    offer = {"sdp": msg.body["sdp"]}
    if "meta" in msg.body:
        offer["meta"] = msg.body["meta"]
    state.calls.start(msg.sender, msg.to, offer=offer)

    payload = {"from": msg.sender, **offer}
    if msg.sender_name:
        payload["fromName"] = msg.sender_name
    return [Outbound(msg.to, handle, INCOMING, payload)]


def route_answer(state: RelayState, msg: InboundMessage) -> List[Outbound]:
    """RINGING -> NEGOTIATING; forwards ``answered`` to the caller."""
    handle = _resolve(state, msg.to)
    state.calls.accept(msg.sender, msg.to)
    return [Outbound(msg.to, handle, ANSWERED, {"from": msg.sender, "sdp": msg.body["sdp"]})]


def route_reject(state: RelayState, msg: InboundMessage) -> List[Outbound]:
    """Any live state -> TERMINATED; forwards ``rejected`` to the other party."""
    handle = _resolve(state, msg.to)
    state.calls.require(msg.sender, msg.to)
    reason = msg.body.get("reason") or REASON_REJECTED
    state.calls.terminate(msg.sender, msg.to, reason)
    return [Outbound(msg.to, handle, REJECTED, {"from": msg.sender, "reason": reason})]


def route_candidate(state: RelayState, msg: InboundMessage) -> List[Outbound]:
    """Relays a candidate unchanged. Dropped without error if the peer is gone."""
    handle = state.registry.lookup(msg.to)
    if handle is None:
        logger.debug(f"Dropping candidate from {msg.sender}: {msg.to} offline")
        return []
    state.calls.require(msg.sender, msg.to)
    payload = {"from": msg.sender, "candidate": msg.body["candidate"]}
    return [Outbound(msg.to, handle, CANDIDATE, payload)]


def route_end(state: RelayState, msg: InboundMessage) -> List[Outbound]:
    """Hang up. Allowed in any state; a second ``end`` is a silent no-op."""
    if state.calls.terminate(msg.sender, msg.to, REASON_CALL_ENDED) is None:
        return []
    handle = state.registry.lookup(msg.to)
    if handle is None:
        return []
    return [Outbound(msg.to, handle, REJECTED, {"from": msg.sender, "reason": REASON_CALL_ENDED})]


TRANSITIONS: Dict[MessageKind, Callable[[RelayState, InboundMessage], List[Outbound]]] = {
    MessageKind.OFFER: route_offer,
    MessageKind.ANSWER: route_answer,
    MessageKind.REJECT: route_reject,
    MessageKind.CANDIDATE: route_candidate,
    MessageKind.END: route_end,
}


# ----- Connection lifecycle -----

def _terminate_and_notify(state: RelayState, user_id: str, reason: str) -> List[Outbound]:
    call = state.calls.terminate_user(user_id, reason)
    if call is None:
        return []
    peer = call.peer_of(user_id)
    handle = state.registry.lookup(peer)
    if handle is None:
        return []
    return [Outbound(peer, handle, REJECTED, {"from": user_id, "reason": reason})]


def on_attach(state: RelayState, user_id: str, handle) -> Tuple[Optional[object], List[Outbound]]:
    """
    Register a verified connection.

    Returns:
        tuple:
            - the superseded handle, or None
            - notifications for the peer of any call the user was in
    """
    previous = state.registry.register(user_id, handle)
    if previous is None:
        return None, []
    return previous, _terminate_and_notify(state, user_id, REASON_SUPERSEDED)


def on_detach(state: RelayState, user_id: str, handle) -> List[Outbound]:
    """Unregister a closed connection; a stale handle changes nothing."""
    if not state.registry.unregister(user_id, handle):
        return []
    return _terminate_and_notify(state, user_id, REASON_PEER_DISCONNECTED)
