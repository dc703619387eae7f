import asyncio
import datetime
import functools
import json
import os
import sys

import jwt
import pytest
from websockets.exceptions import ConnectionClosedOK

# ──────────────────────────────────────────────────────────────────────────────
# Make sure the repository root is on sys.path so `import skycall` works
# without an editable install.
# ──────────────────────────────────────────────────────────────────────────────
ROOT = os.path.abspath(os.path.join(os.path.dirname(__file__), ".."))
if ROOT not in sys.path:
    sys.path.insert(0, ROOT)

# fmt: off
from skycall.handlers.connection import ConnectionHandler
from skycall.services.crypto_utils import (
    derive_aes_key, generate_ephemeral_key, is_envelope,
    public_key_from_b64, public_key_to_b64, seal, unseal
)
from skycall.services.jwt_utils import identity_from_token
from skycall.services.rate_limiter import RateLimiter
from skycall.signaling.messages import parse_inbound
from skycall.signaling.router import SignalingRouter
# fmt: on

TEST_SECRET = "test-secret-that-is-long-enough-for-hs256"
SDP = {"type": "offer", "sdp": "v=0\r\no=- 0 0 IN IP4 127.0.0.1\r\n"}


def make_token(sub, name=None, expires_in=300, secret=TEST_SECRET, **claims):
    now = datetime.datetime.now(datetime.timezone.utc)
    payload = {"sub": sub, "iat": now, "exp": now + datetime.timedelta(seconds=expires_in)}
    if name:
        payload["name"] = name
    payload.update(claims)
    return jwt.encode(payload, secret, algorithm="HS256")


verify_test_token = functools.partial(
    identity_from_token, key=TEST_SECRET, algorithm="HS256", audience="")


class FakeHandle:
    """Connection handle that records what the router delivers to it."""

    def __init__(self, user_id, name=None):
        self.user_id = user_id
        self.name = name
        self.received = []

    def deliver(self, outbound):
        self.received.append(outbound)

    def events(self, msg_type=None):
        return [(o.msg_type, o.payload) for o in self.received
                if msg_type is None or o.msg_type == msg_type]


def message(kind, handle, to, **body):
    """Build a validated inbound message sent on ``handle``."""
    return parse_inbound(kind, handle.user_id, handle, {"to": to, **body},
                         sender_name=handle.name)


@pytest.fixture
def router():
    return SignalingRouter()


@pytest.fixture
def online(router):
    """Attach a FakeHandle for a user and return it."""
    async def _online(user_id, name=None):
        handle = FakeHandle(user_id, name)
        await router.attach(user_id, handle)
        return handle
    return _online


class FakeClient:
    """
    In-memory websocket for ConnectionHandler tests.

    The server side sees the websockets API (send/recv/async iteration/close);
    the test drives the client side, which answers the key agreement
    automatically and then sends ``authenticate`` if a token was given.
    """

    def __init__(self, token=None, ip="127.0.0.1", handshake_reply=None):
        self.remote_address = (ip, 40000)
        self.token = token
        self.handshake_reply = handshake_reply
        self.frames = []
        self.close_code = None
        self.aes_key = None
        self._inbox = asyncio.Queue()
        self._priv, self._pub = generate_ephemeral_key()

    # ----- server-facing API -----

    async def send(self, raw):
        data = json.loads(raw)
        if "server_public_key" in data.get("payload", {}):
            self._complete_handshake(data["payload"])
            return
        if is_envelope(data):
            data = unseal(self.aes_key, data)
        self.frames.append(data)

    async def recv(self):
        raw = await self._inbox.get()
        if raw is None:
            self._inbox.put_nowait(None)
            raise ConnectionClosedOK(None, None)
        return raw

    def __aiter__(self):
        return self

    async def __anext__(self):
        raw = await self._inbox.get()
        if raw is None:
            self._inbox.put_nowait(None)
            raise StopAsyncIteration
        return raw

    async def close(self, code=1000, reason=""):
        if self.close_code is None:
            self.close_code = code
        self._inbox.put_nowait(None)

    # ----- test-facing API -----

    def _complete_handshake(self, payload):
        if self.handshake_reply is not None:
            self._inbox.put_nowait(json.dumps(self.handshake_reply))
            return
        server_pub = public_key_from_b64(payload["server_public_key"])
        self.aes_key = derive_aes_key(self._priv, server_pub, salt=payload["salt"].encode())
        self._inbox.put_nowait(json.dumps({
            "msg_type": "handshake",
            "payload": {"client_public_key": public_key_to_b64(self._pub)},
        }))
        if self.token is not None:
            self.send_frame("authenticate", {"token": self.token})

    def send_frame(self, msg_type, payload=None):
        self._inbox.put_nowait(seal(self.aes_key, {"msg_type": msg_type, "payload": payload or {}}))

    def send_raw(self, raw):
        self._inbox.put_nowait(raw)

    def disconnect(self):
        self._inbox.put_nowait(None)

    def of_type(self, msg_type):
        return [f for f in self.frames if f["msg_type"] == msg_type]

    async def wait_for(self, msg_type, count=1, timeout=2.0):
        async def _poll():
            while len(self.of_type(msg_type)) < count:
                await asyncio.sleep(0.005)
            return self.of_type(msg_type)
        return await asyncio.wait_for(_poll(), timeout)

    async def wait_closed(self, timeout=2.0):
        async def _poll():
            while self.close_code is None:
                await asyncio.sleep(0.005)
            return self.close_code
        return await asyncio.wait_for(_poll(), timeout)


@pytest.fixture
async def connect(router):
    """Run a ConnectionHandler for a FakeClient as a background task."""
    tasks = []

    def _connect(client, **kwargs):
        kwargs.setdefault("verify_identity", verify_test_token)
        kwargs.setdefault("rate_limiter", RateLimiter())
        kwargs.setdefault("auth_timeout", 1.0)
        kwargs.setdefault("heartbeat_interval", 60)
        kwargs.setdefault("heartbeat_timeout", 120)
        handler = ConnectionHandler(router, **kwargs)
        task = asyncio.create_task(handler.handle_connection(client))
        tasks.append((client, task))
        return handler, task

    yield _connect

    for client, task in tasks:
        if not task.done():
            client.disconnect()
            await asyncio.wait_for(task, 2.0)
