# handlers/connection.py

import asyncio
import base64
import json
import logging
import os
import time

import websockets

from skycall.constants import (
    AUTH_TIMEOUT, CLOSE_RATE_LIMITED, CLOSE_SUPERSEDED, CLOSE_UNAUTHORIZED,
    HEARTBEAT_INTERVAL, HEARTBEAT_TIMEOUT, OUTBOX_MAX_SIZE
)
from skycall.handlers.signaling_handler import SignalingHandler
from skycall.services.crypto_utils import (
    CryptoError, build_message, derive_aes_key, generate_ephemeral_key,
    is_envelope, public_key_from_b64, public_key_to_b64, send_encrypted, unseal
)
from skycall.services.jwt_utils import IdentityError, identity_from_token
from skycall.services.rate_limiter import RateLimiter
from skycall.signaling.router import SignalingRouter

# -----------------------------------------------------------------------------
# Configuration and Global Instances
# -----------------------------------------------------------------------------
logger = logging.getLogger(__name__)

ROUTER = SignalingRouter()
RATE_LIMITER = RateLimiter()

# Closing superseded connections runs in the background; keep the tasks referenced.
_background_tasks = set()


class ConnectionHandler:
    """
    Manages a single WebSocket connection: handshake, attach, heartbeat,
    decrypt/dispatch loop and cleanup.

    The instance is also the connection handle stored in the registry: the
    router hands it outbound messages through ``deliver``, which only queues
    them. A dedicated writer task sends the queue in order, so routing never
    waits on this socket.
    """

    def __init__(self, router: SignalingRouter, verify_identity=identity_from_token,
                 rate_limiter: RateLimiter = None,
                 auth_timeout: float = AUTH_TIMEOUT,
                 heartbeat_interval: float = HEARTBEAT_INTERVAL,
                 heartbeat_timeout: float = HEARTBEAT_TIMEOUT,
                 outbox_size: int = OUTBOX_MAX_SIZE):
        self.router = router
        self.verify_identity = verify_identity
        self.rate_limiter = rate_limiter if rate_limiter is not None else RATE_LIMITER
        self.auth_timeout = auth_timeout
        self.heartbeat_interval = heartbeat_interval
        self.heartbeat_timeout = heartbeat_timeout

        self.ws = None
        self.aes_key = None
        self.identity = None
        self.created_at = time.time()
        self.last_ping = time.monotonic()
        self._outbox: asyncio.Queue = asyncio.Queue(maxsize=outbox_size)
        self._closed = False

        signaling = SignalingHandler(router)
        # Mapping of message types to handler functions
        self.handlers = {
            "offer":     signaling.handle_offer,
            "answer":    signaling.handle_answer,
            "reject":    signaling.handle_reject,
            "candidate": signaling.handle_candidate,
            "end":       signaling.handle_end,
        }

    @property
    def user_id(self):
        return self.identity.user_id if self.identity else None

    def __repr__(self):
        return f"<ConnectionHandler user={self.user_id} created_at={self.created_at:.0f}>"

    async def handle_connection(self, ws):
        """
        Main entry point for handling a new WebSocket connection.

        Parameters:
            ws: The WebSocket connection instance.

        Returns:
            None
        """
        self.ws = ws
        ip = ws.remote_address[0] if ws.remote_address else None
        logger.info(f"New connection from {ip}")

        try:
            self.aes_key = await self._perform_handshake()
        except websockets.exceptions.ConnectionClosed:
            logger.info("Connection closed during handshake")
            return
        except (CryptoError, ValueError, KeyError, TypeError, AttributeError,
                asyncio.TimeoutError) as e:
            logger.error("Handshake failed", exc_info=e)
            await ws.send(json.dumps(build_message(
                "handshake", success=False, error_code="HANDSHAKE_FAILED",
                error_message="Handshake failed")))
            await ws.close()
            return

        try:
            self.identity = await self._authenticate()
        except websockets.exceptions.ConnectionClosed:
            logger.info("Connection closed before authentication")
            return
        except IdentityError as e:
            logger.info(f"Refusing connection from {ip}: {e.error_code}")
            await self._refuse(e.error_code, e.message)
            return

        writer = asyncio.create_task(self._writer())
        hb = asyncio.create_task(self._heartbeat())

        # The ack is queued before attaching so it precedes any routed event.
        self.send_message("authenticate", payload={
            "user_id": self.identity.user_id, "name": self.identity.name})
        previous = await self.router.attach(self.identity.user_id, self)
        if previous is not None:
            task = asyncio.create_task(
                previous.close(CLOSE_SUPERSEDED, "Superseded by a newer connection"))
            _background_tasks.add(task)
            task.add_done_callback(_background_tasks.discard)

        if ip is not None:
            self.rate_limiter.track(ip)
        try:
            async for raw in ws:
                if ip is not None and not self.rate_limiter.allow(ip):
                    logger.warning(f"Rate limit exceeded for {self.user_id} ({ip})")
                    await ws.close(code=CLOSE_RATE_LIMITED, reason="Rate limit exceeded")
                    break

                try:
                    data = self._decrypt_and_parse(raw)
                except (CryptoError, ValueError) as e:
                    logger.error("Decrypt/parse error", exc_info=e)
                    self.send_message("error", success=False, error_code="INVALID_FORMAT",
                                      error_message="Invalid message format")
                    continue

                if data.get("msg_type") == "ping":
                    self.last_ping = time.monotonic()
                    self.send_message("pong")
                    continue

                await self._dispatch(data)
        except websockets.exceptions.ConnectionClosedError:
            logger.info(f"Connection of {self.user_id} closed abruptly")
        finally:
            hb.cancel()
            await self._cleanup(ip)
            writer.cancel()

    async def _perform_handshake(self) -> bytes:
        """
        Perform an X25519 key agreement with the client.

        Sends the server public key and a random salt, waits for the client's
        public key and derives the AES key for the rest of the session.

        Returns:
            aes_key (bytes): The derived AES key.

        Raises:
            ValueError: If the client response is not a handshake frame.
        """
        priv, pub = generate_ephemeral_key()
        salt = base64.b64encode(os.urandom(16)).decode()

        await self.ws.send(json.dumps({
            "msg_type": "handshake",
            "payload": {"server_public_key": public_key_to_b64(pub), "salt": salt}
        }))

        data = json.loads(await asyncio.wait_for(self.ws.recv(), self.auth_timeout))
        if data.get("msg_type") != "handshake":
            raise ValueError(f"Invalid handshake response | {data.get('msg_type')}")
        client_pub = public_key_from_b64(data["payload"]["client_public_key"])
        return derive_aes_key(priv, client_pub, salt=salt.encode())

    async def _authenticate(self):
        """
        Wait for the ``authenticate`` frame and verify its bearer token.

        Returns:
            Identity: The verified identity.

        Raises:
            IdentityError: If the frame is missing, late, malformed or the
                token does not verify.
        """
        try:
            raw = await asyncio.wait_for(self.ws.recv(), self.auth_timeout)
        except asyncio.TimeoutError:
            raise IdentityError("AUTH_REQUIRED", "Authentication timed out.")
        try:
            data = self._decrypt_and_parse(raw)
        except (CryptoError, ValueError):
            raise IdentityError("AUTH_REQUIRED", "Invalid authentication frame.")
        if data.get("msg_type") != "authenticate":
            raise IdentityError("AUTH_REQUIRED", "Authenticate before sending other messages.")
        payload = data.get("payload") or {}
        token = payload.get("token") if isinstance(payload, dict) else None
        return self.verify_identity(token)

    async def _refuse(self, error_code: str, error_message: str):
        await send_encrypted(self.ws, build_message(
            "authenticate", success=False, error_code=error_code,
            error_message=error_message), self.aes_key)
        await self.ws.close(code=CLOSE_UNAUTHORIZED, reason="Unauthorized")

    async def _heartbeat(self):
        """
        Close the connection when the client stops sending pings.

        Returns:
            None
        """
        while True:
            await asyncio.sleep(self.heartbeat_interval)
            if time.monotonic() - self.last_ping > self.heartbeat_timeout:
                logger.warning(f"Heartbeat timeout for {self.user_id}, closing connection")
                await self.ws.close()
                break

    async def _writer(self):
        while True:
            message = await self._outbox.get()
            await send_encrypted(self.ws, message, self.aes_key)

    def _decrypt_and_parse(self, raw_message) -> dict:
        """
        Decrypt an incoming frame if it is an envelope, or parse it as plaintext JSON.

        Parameters:
            raw_message (str): The raw frame received over the WebSocket.

        Returns:
            data (dict): The parsed message.

        Raises:
            CryptoError: If an envelope fails to decrypt.
            ValueError: If the frame is not a JSON object.
        """
        data = json.loads(raw_message)
        if is_envelope(data):
            data = unseal(self.aes_key, data)
        if not isinstance(data, dict):
            raise ValueError("Frame is not a JSON object")
        return data

    async def _dispatch(self, data: dict):
        """
        Dispatch a parsed frame to the handler registered for its msg_type.

        Unknown types result in an error frame.
        """
        msg_type = data.get("msg_type")
        if not isinstance(msg_type, str):
            msg_type = None
        handler = self.handlers.get(msg_type)
        if handler:
            return await handler(self, data)

        logger.warning(f"Unknown msg_type from {self.user_id}: {msg_type}")
        self.send_message(msg_type or "error", success=False, error_code="UNKNOWN_MESSAGE_TYPE",
                          error_message="Unknown message type")

    # ----- Connection handle API used by the router -----

    def deliver(self, outbound) -> None:
        """Queue an outbound message from the router; never blocks, drops when the outbox is full."""
        self.send_message(
            outbound.msg_type,
            payload=outbound.payload,
            success=outbound.success,
            error_code=outbound.error_code,
            error_message=outbound.error_message,
        )

    def send_message(self, msg_type, payload=None, success=True, error_code=None, error_message=None):
        if self._closed:
            logger.debug(f"Dropping {msg_type} for closed connection of {self.user_id}")
            return
        try:
            self._outbox.put_nowait(build_message(
                msg_type, success=success, payload=payload,
                error_code=error_code, error_message=error_message))
        except asyncio.QueueFull:
            logger.warning(f"Outbox full for {self.user_id}, dropping {msg_type}")

    async def close(self, code: int = 1000, reason: str = ""):
        await self.ws.close(code=code, reason=reason)

    async def _cleanup(self, ip):
        """
        Detach from the router, then release this connection from the rate
        limiter.
        """
        self._closed = True
        await self.router.detach(self.identity.user_id, self)
        if ip is not None:
            self.rate_limiter.release(ip)


async def handle_connection(ws):
    """websockets server handler: one ConnectionHandler per connection."""
    await ConnectionHandler(ROUTER).handle_connection(ws)
