"""
Application-wide constants for the WebSocket transport, identity verification,
heartbeat, rate limiting and the signaling wire protocol.

Values that depend on the deployment are read from the environment (a local
``.env`` file is loaded first).
"""
import os

from dotenv import load_dotenv

load_dotenv()

# --- WebSocket Server ---
#: Interface the WebSocket server binds to.
WEBSOCKET_HOST: str = os.getenv("WEBSOCKET_HOST", "0.0.0.0")
#: Port the WebSocket server listens on.
WEBSOCKET_PORT: int = int(os.getenv("WEBSOCKET_PORT", "8765"))
#: Largest accepted frame, in bytes.
MAX_MESSAGE_SIZE: int = int(os.getenv("MAX_MESSAGE_SIZE", str(64 * 1024)))

# --- SSL Certificate Paths ---
#: Path to the server's SSL certificate file (PEM format). TLS is off when unset.
SSL_CERT_FILE: str = os.getenv("SSL_CERT_FILE", "")
#: Path to the server's SSL private key file (PEM format).
SSL_KEY_FILE: str = os.getenv("SSL_KEY_FILE", "")

# --- Identity Verification ---
#: Algorithm bearer tokens are signed with.
JWT_ALGORITHM: str = os.getenv("JWT_ALGORITHM", "HS256")
#: Shared secret for HMAC algorithms.
JWT_SECRET: str = os.getenv("JWT_SECRET", "")
#: PEM public key for RSA/EC algorithms.
JWT_PUBLIC_KEY: str = os.getenv("JWT_PUBLIC_KEY", "")
#: Expected ``aud`` claim, if any.
JWT_AUDIENCE: str = os.getenv("JWT_AUDIENCE", "")
#: Seconds a fresh connection has to send its ``authenticate`` frame.
AUTH_TIMEOUT: float = float(os.getenv("AUTH_TIMEOUT", "10"))

# --- WebSocket Heartbeat Configuration ---
#: Interval (in seconds) between heartbeat checks.
HEARTBEAT_INTERVAL: float = float(os.getenv("HEARTBEAT_INTERVAL", "10"))
#: Seconds without a client ping before the connection is closed.
HEARTBEAT_TIMEOUT: float = float(os.getenv("HEARTBEAT_TIMEOUT", "30"))

# --- Rate Limiting ---
#: Length of the sliding window in seconds.
RATE_LIMIT_WINDOW_SECONDS: float = float(os.getenv("RATE_LIMIT_WINDOW_SECONDS", "5"))
#: Frames allowed per window; candidates trickle in bursts so this is generous.
RATE_LIMIT_MAX_MESSAGES: int = int(os.getenv("RATE_LIMIT_MAX_MESSAGES", "120"))
#: Ban duration in seconds once the limit is exceeded.
RATE_LIMIT_BAN_SECONDS: float = float(os.getenv("RATE_LIMIT_BAN_SECONDS", "30"))

# --- Delivery ---
#: Frames queued per connection before further ones are dropped.
OUTBOX_MAX_SIZE: int = int(os.getenv("OUTBOX_MAX_SIZE", "256"))

# --- Logging ---
LOG_LEVEL: str = os.getenv("LOG_LEVEL", "INFO").upper()
LOG_DIR: str = os.getenv("LOG_DIR", "logs")

# --- Close Codes ---
CLOSE_SUPERSEDED: int = 4000
CLOSE_UNAUTHORIZED: int = 4001
CLOSE_RATE_LIMITED: int = 4008

# --- Relay Reasons ---
REASON_USER_OFFLINE: str = "user offline"
REASON_BUSY: str = "busy"
REASON_NO_SUCH_CALL: str = "no such call"
REASON_PEER_DISCONNECTED: str = "peer disconnected"
REASON_SUPERSEDED: str = "superseded"
REASON_CALL_ENDED: str = "call ended"
REASON_REJECTED: str = "rejected"
