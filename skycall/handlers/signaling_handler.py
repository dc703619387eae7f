# handlers/signaling_handler.py
import logging

from skycall.signaling.errors import MalformedMessage
from skycall.signaling.messages import MessageKind, parse_inbound

logger = logging.getLogger(__name__)


class SignalingHandler:
    """
    Handles incoming signaling frames from an attached connection.

    Each handler validates the frame payload and submits it to the router;
    malformed frames are answered with an error frame for the same msg_type
    and never reach the call table.
    """

    def __init__(self, router):
        self.router = router

    async def handle_offer(self, connection, data):
        """
        Ask the relay to ring another user.

        Args:
            connection (ConnectionHandler): The sender's connection.
            data (dict): Parsed frame; ``payload`` holds ``to``, ``sdp`` and optional ``meta``.
        """
        return await self._route(connection, MessageKind.OFFER, data)

    async def handle_answer(self, connection, data):
        """Accept a ringing call; ``payload`` holds ``to`` (the caller) and ``sdp``."""
        return await self._route(connection, MessageKind.ANSWER, data)

    async def handle_reject(self, connection, data):
        """Decline or abort a call; ``payload`` holds ``to`` and an optional ``reason``."""
        return await self._route(connection, MessageKind.REJECT, data)

    async def handle_candidate(self, connection, data):
        return await self._route(connection, MessageKind.CANDIDATE, data)

    async def handle_end(self, connection, data):
        return await self._route(connection, MessageKind.END, data)

    async def _route(self, connection, kind: MessageKind, data: dict):
        try:
            msg = parse_inbound(
                kind,
                sender=connection.user_id,
                handle=connection,
                payload=data.get("payload", {}),
                sender_name=connection.identity.name,
            )
        except MalformedMessage as e:
            logger.warning(f"Malformed {kind.value} from {connection.user_id}: {e}")
            connection.send_message(
                kind.value,
                success=False,
                error_code=e.error_code,
                error_message=str(e),
            )
            return []

        if kind is MessageKind.CANDIDATE:
            logger.debug(f"Candidate from {msg.sender} to {msg.to}")
        else:
            logger.info(f"{kind.value.capitalize()} from {msg.sender} to {msg.to}")
        return await self.router.submit(msg)
