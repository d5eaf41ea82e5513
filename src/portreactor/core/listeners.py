"""
=============================================================================
LISTENER SET
=============================================================================

Creates one listening socket per registered port.

=============================================================================
LISTENER LIFECYCLE (per port)
=============================================================================

    1. socket()        Create a TCP socket                 phase "socket"
    2. setsockopt()    SO_REUSEADDR                        phase "socket"
    3. bind()          Wildcard address, registered port   phase "bind"
    4. setblocking()   Non-blocking: accept() never hangs  phase "nonblocking"
    5. listen()        Small backlog                       phase "listen"

                    ┌───────────────────────┐
                    │   PortRegistry        │
                    │   [9000, 9001, 9002]  │
                    └───────────┬───────────┘
                                │ open_listeners()
        ┌───────────────────────┼───────────────────────┐
        ▼                       ▼                       ▼
    ┌───────────┐         ┌───────────┐         ┌───────────┐
    │ Listener  │         │ Listener  │         │ Listener  │
    │ :9000     │         │ :9001     │         │ :9002     │
    └───────────┘         └───────────┘         └───────────┘
    Never sends or receives data. Only accept() is ever called on these.

=============================================================================
PARTIAL FAILURE
=============================================================================

If port 9001 fails to bind, the pass stops right there:

    :9000  created ✓   ──►  handed back in ListenerSetupError.opened
    :9001  bind ✗      ──►  this socket is closed here (never handed out)
    :9002  not tried

Listeners from earlier ports are NOT closed by open_listeners(). The caller
decides what to do with them; the reactor closes them in its termination
pass.

=============================================================================
SO_REUSEADDR
=============================================================================

Without it, restarting the reactor right after a shutdown fails with
"Address already in use" for as long as old connections sit in TIME_WAIT.

=============================================================================
"""

import socket
import logging
from typing import Iterable, List

from ..config import ReactorConfig
from ..errors import ListenerSetupError, NonBlockingError
from .nonblocking import set_nonblocking
from .registry import PortConfiguration, PortRegistry


logger = logging.getLogger(__name__)


def open_listener(entry: PortConfiguration, config: ReactorConfig) -> socket.socket:
    """
    Create, bind, and start listening on one socket.

    Args:
        entry: The port to open.
        config: Supplies host and backlog.

    Returns:
        A non-blocking listening socket.

    Raises:
        ListenerSetupError: With phase set to the step that failed. The
                            half-built socket is closed before raising.
    """
    port = entry.port
    sock = None

    try:
        sock = socket.socket(socket.AF_INET, socket.SOCK_STREAM)
        sock.setsockopt(socket.SOL_SOCKET, socket.SO_REUSEADDR, 1)
    except OSError as e:
        if sock is not None:
            sock.close()
        logger.error(f"Listener socket creation failed for port {port}: {e}")
        raise ListenerSetupError(
            f"socket() failed for port {port}: {e}", phase="socket", port=port
        ) from e

    try:
        try:
            sock.bind((config.host, port))
        except OSError as e:
            logger.error(f"Failed to bind to {config.host}:{port}: {e}")
            raise ListenerSetupError(
                f"bind() failed for port {port}: {e}", phase="bind", port=port
            ) from e

        try:
            set_nonblocking(sock)
        except NonBlockingError as e:
            raise ListenerSetupError(
                f"non-blocking switch failed for port {port}: {e}",
                phase="nonblocking",
                port=port,
            ) from e

        try:
            sock.listen(config.backlog)
        except OSError as e:
            logger.error(f"listen() failed on port {port}: {e}")
            raise ListenerSetupError(
                f"listen() failed for port {port}: {e}", phase="listen", port=port
            ) from e
    except ListenerSetupError:
        sock.close()
        raise

    logger.info(f"Listening on {config.host}:{sock.getsockname()[1]}")
    return sock


def open_listeners(
    registry: PortRegistry, config: ReactorConfig
) -> List[socket.socket]:
    """
    Open one listener per registry entry, in registration order.

    Returns:
        Listening sockets, index-aligned with the registry.

    Raises:
        ListenerSetupError: On the first failing port. error.opened holds
                            the listeners already created in this pass;
                            they are left open.
    """
    listeners: List[socket.socket] = []

    for entry in registry:
        try:
            listeners.append(open_listener(entry, config))
        except ListenerSetupError as e:
            e.opened = list(listeners)
            raise

    return listeners


def close_listeners(listeners: Iterable[socket.socket]) -> None:
    """Close every listener, ignoring ones that are already closed."""
    for sock in listeners:
        try:
            sock.close()
        except OSError:
            pass  # Already closed
