"""
=============================================================================
ECHO HANDLERS
=============================================================================

on_receive callbacks that send back what they read, optionally transformed.

    port 9000  ──"abc"──►  upper_echo  ──"ABC"──►  client
    port 9001  ──"abc"──►  echo        ──"abc"──►  client

The reactor only calls on_receive when the socket is readable, so a single
recv() never blocks. An empty read means the peer closed its side; the
handler answers CLOSE_CONNECTION and the reactor tears the client down.

=============================================================================
"""

import socket
import logging
from typing import Callable, Optional

from ..core.registry import Address, ReceiveVerdict


logger = logging.getLogger(__name__)


class EchoHandler:
    """
    Read what is available, reply with transform(data).

    Args:
        transform: bytes -> bytes applied before replying. None echoes as-is.
        buffer_size: Maximum bytes read per call.
    """

    def __init__(
        self,
        transform: Optional[Callable[[bytes], bytes]] = None,
        buffer_size: int = 4096,
    ):
        self.transform = transform
        self.buffer_size = buffer_size

    def __call__(self, sock: socket.socket, address: Address) -> ReceiveVerdict:
        try:
            data = sock.recv(self.buffer_size)
        except BlockingIOError:
            return ReceiveVerdict.KEEP_OPEN  # Spurious wakeup
        except OSError as e:
            logger.warning(f"Receive from {address} failed: {e}")
            return ReceiveVerdict.CLOSE_CONNECTION

        if not data:
            return ReceiveVerdict.CLOSE_CONNECTION

        reply = self.transform(data) if self.transform else data

        try:
            sock.sendall(reply)
        except OSError as e:
            logger.warning(f"Reply to {address} failed: {e}")
            return ReceiveVerdict.CLOSE_CONNECTION

        return ReceiveVerdict.KEEP_OPEN


echo = EchoHandler()
upper_echo = EchoHandler(transform=bytes.upper)
