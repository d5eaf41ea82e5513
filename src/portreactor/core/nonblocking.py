"""
Blocking-mode toggles for sockets.

A non-blocking socket returns immediately from accept()/recv()/send() with
BlockingIOError instead of suspending the caller. The reactor puts every
listener and every accepted client into this mode; handlers that want a
bounded blocking read can switch a client back temporarily.

Both toggles are idempotent: switching an already non-blocking socket to
non-blocking is a no-op that still succeeds.
"""

import logging
import socket

from ..errors import NonBlockingError


logger = logging.getLogger(__name__)


def set_nonblocking(sock: socket.socket) -> None:
    """
    Switch a socket to non-blocking mode.

    Raises:
        NonBlockingError: If the OS rejects the change (e.g. closed socket).
    """
    try:
        sock.setblocking(False)
    except OSError as e:
        logger.error(f"Failed to set socket non-blocking: {e}")
        raise NonBlockingError(f"set_nonblocking failed: {e}") from e


def set_blocking(sock: socket.socket) -> None:
    """
    Switch a socket back to blocking mode.

    Raises:
        NonBlockingError: If the OS rejects the change.
    """
    try:
        sock.setblocking(True)
    except OSError as e:
        logger.error(f"Failed to set socket blocking: {e}")
        raise NonBlockingError(f"set_blocking failed: {e}") from e


def is_nonblocking(sock: socket.socket) -> bool:
    """Check whether a socket is currently in non-blocking mode."""
    return not sock.getblocking()
