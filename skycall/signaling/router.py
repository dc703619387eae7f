# signaling/router.py
import asyncio
import logging
from typing import List, Optional

from skycall.signaling.calls import CallStateTable
from skycall.signaling.errors import SignalingError, Unauthorized
from skycall.signaling.messages import FAILED, InboundMessage, Outbound
from skycall.signaling.registry import ConnectionRegistry
from skycall.signaling.transitions import TRANSITIONS, RelayState, on_attach, on_detach

logger = logging.getLogger(__name__)


class SignalingRouter:
    """
    Single serialization point for the connection registry and call table.

    Every inbound message, attach and detach is evaluated under one lock, and
    the resulting outbound messages are handed to their connection handles
    before the lock is released. Handles must implement a non-blocking
    ``deliver(outbound)``; the router never waits for the peer.
    """

    def __init__(self, registry: ConnectionRegistry = None, calls: CallStateTable = None):
        self.registry = registry if registry is not None else ConnectionRegistry()
        self.calls = calls if calls is not None else CallStateTable()
        self._state = RelayState(self.registry, self.calls)
        self._lock = asyncio.Lock()

    # ----- Serialized entry points -----

    async def submit(self, msg: InboundMessage) -> List[Outbound]:
        """
        Route one inbound message and deliver what it produces.

        Args:
            msg (InboundMessage): Validated message from an attached connection.

        Returns:
            list[Outbound]: The messages handed to connection handles.
        """
        async with self._lock:
            outbound = self.dispatch(msg)
            self._emit(outbound)
        return outbound

    async def attach(self, user_id: str, handle) -> Optional[object]:
        """
        Register ``handle`` as the live connection of ``user_id``.

        Returns:
            object or None: The superseded handle, which the caller should close.
        """
        async with self._lock:
            previous, outbound = on_attach(self._state, user_id, handle)
            self._emit(outbound)
        logger.info(f"User {user_id} attached ({len(self.registry)} online)")
        return previous

    async def detach(self, user_id: str, handle) -> List[Outbound]:
        """Unregister a closed connection and tear down its call."""
        async with self._lock:
            outbound = on_detach(self._state, user_id, handle)
            self._emit(outbound)
        logger.info(f"User {user_id} detached ({len(self.registry)} online)")
        return outbound

    # ----- Pure dispatch -----

    def dispatch(self, msg: InboundMessage) -> List[Outbound]:
        """
        Evaluate ``msg`` against the tables without delivering anything.

        Relay errors become a ``failed`` message for the sender, except for
        unauthorized messages, which are logged and dropped.
        """
        if not self.registry.is_current(msg.sender, msg.handle):
            logger.warning(
                f"Dropping {msg.kind.value} from stale connection of {msg.sender}")
            return []

        transition = TRANSITIONS[msg.kind]
        try:
            outbound = transition(self._state, msg)
        except Unauthorized as e:
            logger.warning(
                f"Protocol violation: {msg.kind.value} from {msg.sender} to {msg.to}: {e}")
            return []
        except SignalingError as e:
            logger.info(
                f"{msg.kind.value} from {msg.sender} to {msg.to} failed: {e.reason}")
            return [self._failure(msg, e)]

        for out in outbound:
            logger.debug(f"Relaying {out.msg_type} from {msg.sender} to {out.recipient}")
        return outbound

    @staticmethod
    def _failure(msg: InboundMessage, error: SignalingError) -> Outbound:
        return Outbound(
            recipient=msg.sender,
            handle=msg.handle,
            msg_type=FAILED,
            payload={"reason": error.reason, "to": msg.to},
            success=False,
            error_code=error.error_code,
            error_message=str(error),
        )

    @staticmethod
    def _emit(outbound: List[Outbound]) -> None:
        for out in outbound:
            out.handle.deliver(out)
