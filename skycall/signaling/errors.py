# signaling/errors.py
"""
Relay-level error taxonomy.

Every error is terminal for the single message that caused it. The router
turns ``Unreachable``, ``Busy`` and ``IllegalTransition`` into a ``failed``
event for the sender; ``Unauthorized`` is logged and dropped.
"""
from skycall.constants import REASON_BUSY, REASON_NO_SUCH_CALL, REASON_USER_OFFLINE


class SignalingError(Exception):
    """Base class for errors raised while evaluating a signaling message."""

    reason: str = "error"
    error_code: str = "SIGNALING_ERROR"

    def __init__(self, message: str = None):
        super().__init__(message or self.reason)


class Unreachable(SignalingError):
    """The destination user has no live connection."""

    reason = REASON_USER_OFFLINE
    error_code = "USER_OFFLINE"


class Busy(SignalingError):
    """One of the parties already takes part in another active call."""

    reason = REASON_BUSY
    error_code = "BUSY"


class IllegalTransition(SignalingError):
    """The message does not match the current call state of the pair."""

    reason = REASON_NO_SUCH_CALL
    error_code = "NO_SUCH_CALL"


class Unauthorized(SignalingError):
    """The sender may not send this message: a stale connection, or a call to oneself."""

    reason = "unauthorized"
    error_code = "UNAUTHORIZED"


class MalformedMessage(SignalingError):
    """A required field is missing or has the wrong type."""

    reason = "invalid message"
    error_code = "INVALID_MESSAGE"
