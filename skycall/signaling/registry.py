# signaling/registry.py
import logging
from typing import Dict, Optional

logger = logging.getLogger(__name__)


class ConnectionRegistry:
    """
    Maps a verified user id to the one live connection handle it is reachable on.

    Handles are opaque: the registry never inspects or mutates them, it only
    compares them by identity. The call-related side effects of registering
    and unregistering are applied by the router, which owns all I/O.
    """

    def __init__(self) -> None:
        self._connections: Dict[str, object] = {}

    def register(self, user_id: str, handle) -> Optional[object]:
        """
        Bind ``user_id`` to ``handle``; the new connection always wins.

        Args:
            user_id (str): Verified user id.
            handle: Connection handle owned by the transport layer.

        Returns:
            object or None: The handle that was evicted, if the user already
                had a different live connection.
        """
        previous = self._connections.get(user_id)
        self._connections[user_id] = handle
        if previous is handle:
            return None
        if previous is not None:
            logger.info(f"Connection for {user_id} superseded by a newer one")
        return previous

    def unregister(self, user_id: str, handle) -> bool:
        """
        Remove the binding, but only if ``handle`` is still the current one.

        A stale disconnect from an already superseded connection must not
        evict the user's newer connection.

        Returns:
            bool: True if the binding was removed.
        """
        if self._connections.get(user_id) is not handle:
            return False
        del self._connections[user_id]
        return True

    def lookup(self, user_id: str) -> Optional[object]:
        """Return the live handle for ``user_id``, or None if unreachable."""
        return self._connections.get(user_id)

    def is_current(self, user_id: str, handle) -> bool:
        return handle is not None and self._connections.get(user_id) is handle

    def __len__(self) -> int:
        return len(self._connections)
