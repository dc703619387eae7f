# skycall/app.py
import asyncio
import logging
import ssl

from websockets import serve

from skycall.constants import (
    MAX_MESSAGE_SIZE, SSL_CERT_FILE, SSL_KEY_FILE, WEBSOCKET_HOST, WEBSOCKET_PORT
)
from skycall.handlers.connection import handle_connection
from skycall.services.logging_utils import setup_logging

logger = logging.getLogger(__name__)


def build_ssl_context(certfile: str = SSL_CERT_FILE, keyfile: str = SSL_KEY_FILE):
    """
    Build a server-side TLS context, or return None when no certificate is configured.

    Parameters:
        certfile (str): Path to the PEM certificate.
        keyfile (str): Path to the PEM private key.

    Returns:
        ssl.SSLContext or None
    """
    if not certfile or not keyfile:
        return None
    ssl_ctx = ssl.create_default_context(ssl.Purpose.CLIENT_AUTH)
    ssl_ctx.load_cert_chain(certfile=certfile, keyfile=keyfile)
    return ssl_ctx


def main():
    """
    Entry point for starting the signaling relay.

    Configures logging, reads the bind address and TLS settings and serves
    until interrupted.
    """
    setup_logging()
    ssl_ctx = build_ssl_context()
    if ssl_ctx is None:
        logger.warning("SSL_CERT_FILE/SSL_KEY_FILE not set, serving without TLS")
    try:
        asyncio.run(start_server(WEBSOCKET_HOST, WEBSOCKET_PORT, ssl_ctx))
    except KeyboardInterrupt:
        logger.info("Shutting down")


async def start_server(host, port, ssl_ctx=None):
    """
    Asynchronously start the WebSocket server and run forever.

    Parameters:
        host (str): The host IP address or hostname to bind the server.
        port (int): The port number to listen on.
        ssl_ctx (ssl.SSLContext, optional): TLS context; plain ws:// when None.
    """
    async with serve(
            handle_connection,
            host=host,
            port=port,
            ssl=ssl_ctx,
            max_size=MAX_MESSAGE_SIZE,
    ):
        scheme = "wss" if ssl_ctx else "ws"
        logger.info(f"Signaling relay listening on {scheme}://{host}:{port}")
        await asyncio.Future()  # Run forever


if __name__ == "__main__":
    main()
