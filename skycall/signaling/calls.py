# signaling/calls.py
"""
Per-pair call records and the transitions allowed between their states.

The table is pure bookkeeping: it never looks up connections and never
sends anything. Illegal transitions raise a ``SignalingError`` subclass and
leave the table unchanged.
"""
import logging
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, Optional, Tuple

from skycall.signaling.errors import Busy, IllegalTransition

logger = logging.getLogger(__name__)


class CallState(str, Enum):
    NONE = "none"
    RINGING = "ringing"
    NEGOTIATING = "negotiating"
    # Equivalent to NEGOTIATING; the relay cannot tell trickling candidates
    # from flowing media.
    ACTIVE = "active"
    TERMINATED = "terminated"


#: States a stored record can be in.
LIVE_STATES = frozenset({CallState.RINGING, CallState.NEGOTIATING, CallState.ACTIVE})


def call_key(uid1: str, uid2: str) -> Tuple[str, str]:
    """
    Generate a consistent, order-independent key for a pair of user IDs.

    Args:
        uid1 (str): First user ID.
        uid2 (str): Second user ID.

    Returns:
        Tuple[str, str]: Sorted tuple of the two user IDs.
    """
    return tuple(sorted((uid1, uid2)))


@dataclass
class Call:
    """
    One negotiation attempt between exactly two users.

    Attributes:
        caller (str): User who sent the offer.
        callee (str): User the offer was addressed to.
        state (CallState): Current state.
        offer (dict, optional): Retained offer (``sdp`` and ``meta``), kept only
            while ringing so the answer step can still be completed.
        created_at (float): Creation time (epoch seconds).
        end_reason (str, optional): Why the call terminated, once it has.
    """
    caller: str
    callee: str
    state: CallState = CallState.RINGING
    offer: Optional[Dict[str, Any]] = None
    created_at: float = field(default_factory=time.time)
    end_reason: Optional[str] = None

    @property
    def key(self) -> Tuple[str, str]:
        return call_key(self.caller, self.callee)

    def peer_of(self, user_id: str) -> str:
        """Return the other party of the call."""
        if user_id == self.caller:
            return self.callee
        if user_id == self.callee:
            return self.caller
        raise ValueError(f"{user_id} is not a party to this call")


class CallStateTable:
    """
    Holds at most one live call per unordered user pair and at most one live
    call per user.

    Terminal records are evicted immediately, so a pair without a record is
    in state ``NONE``.
    """

    def __init__(self) -> None:
        self._calls: Dict[Tuple[str, str], Call] = {}
        self._by_user: Dict[str, Tuple[str, str]] = {}

    # ----- Reads -----

    def get(self, user_a: str, user_b: str) -> Optional[Call]:
        return self._calls.get(call_key(user_a, user_b))

    def state_of(self, user_a: str, user_b: str) -> CallState:
        call = self.get(user_a, user_b)
        return call.state if call else CallState.NONE

    def active_call_of(self, user_id: str) -> Optional[Call]:
        key = self._by_user.get(user_id)
        return self._calls.get(key) if key else None

    def __len__(self) -> int:
        return len(self._calls)

    # ----- Transitions -----

    def start(self, caller: str, callee: str, offer: Dict[str, Any] = None) -> Call:
        """
        NONE -> RINGING for the pair (caller, callee).

        Raises:
            Busy: If either party already takes part in a live call, including
                one with each other (the earlier offer keeps the slot).
        """
        for user_id in (caller, callee):
            if user_id in self._by_user:
                raise Busy(f"{user_id} already has an active call")

        call = Call(caller=caller, callee=callee, offer=offer)
        self._calls[call.key] = call
        self._by_user[caller] = call.key
        self._by_user[callee] = call.key
        logger.debug(f"Call {caller} -> {callee} ringing")
        return call

    def accept(self, callee: str, caller: str) -> Call:
        """
        RINGING -> NEGOTIATING, performed by the callee.

        The retained offer is released once the answer is in.

        Raises:
            IllegalTransition: If there is no ringing call for the pair, or the
                sender is the caller rather than the callee.
        """
        call = self.require(callee, caller)
        if call.state is not CallState.RINGING or call.callee != callee:
            raise IllegalTransition(
                f"{callee} cannot answer call in state {call.state.value}")
        call.state = CallState.NEGOTIATING
        call.offer = None
        logger.debug(f"Call {caller} -> {callee} negotiating")
        return call

    def require(self, sender: str, peer: str) -> Call:
        """
        Return the live call for the pair ``(sender, peer)``.

        Records are keyed by their two parties, so the sender of any message
        that finds one is always a party to it.

        Raises:
            IllegalTransition: If the pair has no record.
        """
        call = self.get(sender, peer)
        if call is None or call.state not in LIVE_STATES:
            raise IllegalTransition(f"no call between {sender} and {peer}")
        return call

    def terminate(self, user_a: str, user_b: str, reason: str) -> Optional[Call]:
        """
        Move the pair's call to TERMINATED and evict it.

        Returns:
            Call or None: The evicted record, or None if there was none.
        """
        call = self._calls.pop(call_key(user_a, user_b), None)
        if call is None:
            return None
        for user_id in (call.caller, call.callee):
            if self._by_user.get(user_id) == call.key:
                del self._by_user[user_id]
        call.state = CallState.TERMINATED
        call.end_reason = reason
        call.offer = None
        logger.debug(
            f"Call {call.caller} -> {call.callee} terminated ({reason})")
        return call

    def terminate_user(self, user_id: str, reason: str) -> Optional[Call]:
        """Terminate whatever live call ``user_id`` takes part in."""
        call = self.active_call_of(user_id)
        if call is None:
            return None
        return self.terminate(call.caller, call.callee, reason)
