"""
=============================================================================
BLOCKING TCP CLIENT HELPERS
=============================================================================

The other side of the wire: small helpers for talking to a reactor port
(or any TCP server) from scripts and tests.

    with TCPClient.connect("127.0.0.1", 9000, timeout=2.0) as client:
        reply = client.send_and_receive(b"abc")    # b"ABC"

=============================================================================
RECEIVE SEMANTICS
=============================================================================

    receive() returns                  Meaning
    ─────────────────                  ───────────────────────────────────
    b"..."  (non-empty)                Data arrived
    b""                                Peer closed; the client is now closed
    raises TimeoutError                Nothing arrived within the timeout

A reset connection (ECONNRESET) is reported the same way as an orderly
close: b"". Either way the conversation is over.

=============================================================================
"""

import socket
import logging
from typing import Optional, Tuple


logger = logging.getLogger(__name__)


class TCPClient:
    """
    A connected, blocking client socket.

    Attributes:
        socket: The underlying socket.
        address: (host, port) the client is connected to.
        buffer_size: Default receive size.
    """

    def __init__(
        self,
        sock: socket.socket,
        address: Tuple[str, int],
        buffer_size: int = 4096,
    ):
        self.socket = sock
        self.address = address
        self.buffer_size = buffer_size
        self._closed = False

    @classmethod
    def connect(
        cls,
        host: str,
        port: int,
        timeout: Optional[float] = None,
        buffer_size: int = 4096,
    ) -> "TCPClient":
        """
        Open a TCP connection.

        Args:
            host: Host name or IP address.
            port: Port number.
            timeout: Applied to the connect and to every later send/receive.

        Raises:
            ConnectionError: (or a subclass) if the server can't be reached.
            socket.gaierror: If the host name does not resolve.
        """
        try:
            sock = socket.create_connection((host, port), timeout=timeout)
        except socket.timeout as e:
            logger.error(f"Connecting to {host}:{port} timed out")
            raise ConnectionError(f"Timed out connecting to {host}:{port}") from e
        except ConnectionError as e:
            logger.error(f"Unable to connect to {host}:{port}: {e}")
            raise

        return cls(sock, (host, port), buffer_size=buffer_size)

    @property
    def closed(self) -> bool:
        return self._closed

    @property
    def local_address(self) -> Tuple[str, int]:
        return self.socket.getsockname()

    def send(self, data: bytes) -> None:
        """
        Send all of data.

        Raises:
            ConnectionError: If the peer is gone.
        """
        try:
            self.socket.sendall(data)
        except (BrokenPipeError, ConnectionResetError) as e:
            logger.warning(f"Sending to {self.address[0]}:{self.address[1]} failed: {e}")
            raise

    def receive(self, size: Optional[int] = None) -> bytes:
        """
        Receive up to size bytes.

        Returns:
            The data, or b"" if the peer closed (the client closes too).

        Raises:
            TimeoutError: If the socket timeout expires first.
        """
        try:
            data = self.socket.recv(size or self.buffer_size)
        except ConnectionResetError:
            data = b""
        except socket.timeout as e:
            raise TimeoutError(
                f"No data from {self.address[0]}:{self.address[1]}"
            ) from e

        if not data:
            self.close()
        return data

    def send_and_receive(self, data: bytes, size: Optional[int] = None) -> bytes:
        """Send data, then wait for one reply chunk."""
        self.send(data)
        return self.receive(size)

    def close(self) -> None:
        """Close the connection. Safe to call twice."""
        if self._closed:
            return
        try:
            self.socket.close()
        except OSError:
            pass
        self._closed = True

    def __enter__(self) -> "TCPClient":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()

    def __repr__(self) -> str:
        state = "closed" if self._closed else "open"
        return f"TCPClient({self.address[0]}:{self.address[1]}, {state})"


def connect(
    host: str, port: int, timeout: Optional[float] = None
) -> TCPClient:
    """Shortcut for TCPClient.connect()."""
    return TCPClient.connect(host, port, timeout=timeout)
