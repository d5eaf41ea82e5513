"""
=============================================================================
CONNECTION SLOTS
=============================================================================

Per-port bookkeeping, and everything that happens when one of a port's
sockets turns up in a readiness result.

=============================================================================
WHAT IS A SLOT?
=============================================================================

One slot exists per registered port. It tracks:

    ┌─────────────────────────────────────────────────────────────────────┐
    │                        ConnectionSlot :9000                         │
    ├─────────────────────────────────────────────────────────────────────┤
    │                                                                      │
    │   entry      PortConfiguration (port + callbacks)                   │
    │                                                                      │
    │   listener   Listening socket. Lives as long as the reactor,        │
    │              unless the OS reports an error on it; then it is       │
    │              closed and RETIRED (set to None) for good.             │
    │                                                                      │
    │   clients    Attached client connections. Under ClientPolicy.SINGLE │
    │              at most one; under MULTIPLE any number.                │
    │                                                                      │
    │   orphans    SINGLE policy only: clients displaced by a newer       │
    │              accept. Still open, never serviced again, closed       │
    │              when the reactor terminates.                           │
    │                                                                      │
    └─────────────────────────────────────────────────────────────────────┘

=============================================================================
THE FOUR DISPATCH CASES
=============================================================================

For every slot, the SlotManager checks its sockets against the readable set
and the error set produced by one readiness wait:

    ┌────┬──────────────────────┬──────────────────────────────────────────┐
    │ #  │ Condition            │ Action                                   │
    ├────┼──────────────────────┼──────────────────────────────────────────┤
    │ 1  │ listener readable    │ accept(), switch client non-blocking,    │
    │    │                      │ on_connect(). STOP_REACTOR closes the    │
    │    │                      │ client and stops the WHOLE reactor.      │
    │    │                      │ accept() failure is fatal (by default).  │
    ├────┼──────────────────────┼──────────────────────────────────────────┤
    │ 2  │ client readable      │ on_receive(). CLOSE_CONNECTION closes    │
    │    │                      │ THIS client only.                        │
    ├────┼──────────────────────┼──────────────────────────────────────────┤
    │ 3  │ listener in errors   │ read SO_ERROR, log, close, retire.       │
    │    │                      │ The port accepts no more clients.        │
    ├────┼──────────────────────┼──────────────────────────────────────────┤
    │ 4  │ client in errors     │ read SO_ERROR (0 = orderly peer close),  │
    │    │                      │ close, on_disconnect(), detach.          │
    └────┴──────────────────────┴──────────────────────────────────────────┘

Cases 2-4 are LOCAL: they never stop the reactor. One bad socket costs one
socket, and every other port keeps being served.

=============================================================================
"""

import errno
import os
import socket
import time
import uuid
import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Iterator, List, Optional, Set

from ..config import AcceptErrorPolicy, ClientPolicy, ReactorConfig
from ..errors import AcceptError, ErrorQueryError, NonBlockingError, ReactorStatus
from .nonblocking import set_nonblocking
from .registry import (
    Address,
    ConnectVerdict,
    PortConfiguration,
    ReceiveVerdict,
    coerce_verdict,
)


logger = logging.getLogger(__name__)


# accept() failures that say "try again later" rather than "this listener
# is broken". Only consulted under AcceptErrorPolicy.TOLERATE_TRANSIENT.
TRANSIENT_ACCEPT_ERRNOS = frozenset(
    code
    for code in (
        getattr(errno, "EAGAIN", None),
        getattr(errno, "EWOULDBLOCK", None),
        getattr(errno, "EINTR", None),
        getattr(errno, "ECONNABORTED", None),
        getattr(errno, "EPROTO", None),
        getattr(errno, "EMFILE", None),
        getattr(errno, "ENFILE", None),
        getattr(errno, "ENOBUFS", None),
        getattr(errno, "ENOMEM", None),
    )
    if code is not None
)


class ClientState(Enum):
    """Lifecycle of a tracked client."""

    ATTACHED = "attached"    # Serviced by the reactor
    ORPHANED = "orphaned"    # Displaced under the SINGLE policy, still open
    CLOSED = "closed"        # Socket released


@dataclass(eq=False)
class ClientConnection:
    """
    An accepted client socket and what we know about it.

    Attributes:
        socket: The client socket (non-blocking once attached).
        address: Peer (ip, port) tuple.
        port: Local port the client connected to.
        id: Short identifier used to tag log lines.
        state: Current lifecycle state.
        created_at: Timestamp of accept().
    """

    socket: socket.socket
    address: Address
    port: int = 0
    id: str = field(default_factory=lambda: str(uuid.uuid4())[:8])
    state: ClientState = ClientState.ATTACHED
    created_at: float = field(default_factory=time.time)

    @property
    def age(self) -> float:
        """Seconds since accept()."""
        return time.time() - self.created_at

    @property
    def closed(self) -> bool:
        return self.state is ClientState.CLOSED

    def close(self) -> None:
        """Shut down and release the socket. Safe to call twice."""
        if self.state is ClientState.CLOSED:
            return

        try:
            self.socket.shutdown(socket.SHUT_RDWR)
        except OSError:
            pass  # Peer already gone

        try:
            self.socket.close()
        except OSError:
            pass

        self.state = ClientState.CLOSED


@dataclass(eq=False)
class ConnectionSlot:
    """Bookkeeping for one registered port."""

    entry: PortConfiguration
    listener: Optional[socket.socket]
    clients: List[ClientConnection] = field(default_factory=list)
    orphans: List[ClientConnection] = field(default_factory=list)

    @property
    def port(self) -> int:
        """Registered port number (0 if the OS picked one)."""
        return self.entry.port

    @property
    def bound_port(self) -> Optional[int]:
        """Port the listener is actually bound to, None once retired."""
        if self.listener is None:
            return None
        return self.listener.getsockname()[1]

    @property
    def client(self) -> Optional[ClientConnection]:
        """Most recently attached client, if any."""
        return self.clients[-1] if self.clients else None

    @property
    def retired(self) -> bool:
        return self.listener is None

    def attach(
        self, client: ClientConnection, policy: ClientPolicy
    ) -> Optional[ClientConnection]:
        """
        Start tracking a client.

        Returns:
            The client displaced to the orphan list (SINGLE policy with a
            client already attached), otherwise None.
        """
        displaced = None
        if policy is ClientPolicy.SINGLE and self.clients:
            displaced = self.clients.pop()
            displaced.state = ClientState.ORPHANED
            self.orphans.append(displaced)
        self.clients.append(client)
        return displaced

    def detach(self, client: ClientConnection) -> None:
        if client in self.clients:
            self.clients.remove(client)

    def retire_listener(self) -> None:
        """Close the listener and never accept on this port again."""
        if self.listener is not None:
            try:
                self.listener.close()
            except OSError:
                pass
            self.listener = None


@dataclass
class ReactorState:
    """
    Everything the loop carries from one iteration to the next.

    Passed explicitly through the loop and the slot manager, so several
    reactors can run side by side in one process.
    """

    slots: List[ConnectionSlot]
    running: bool = True
    status: ReactorStatus = ReactorStatus.OK
    iterations: int = 0

    @property
    def terminated(self) -> bool:
        return not self.running

    def terminate(self, status: ReactorStatus = ReactorStatus.OK) -> None:
        """Move to TERMINATED. The first status recorded wins."""
        if self.running:
            self.running = False
            self.status = status

    def listeners(self) -> Iterator[socket.socket]:
        for slot in self.slots:
            if slot.listener is not None:
                yield slot.listener

    def clients(self) -> Iterator[ClientConnection]:
        for slot in self.slots:
            yield from slot.clients


class SlotManager:
    """
    Accept, dispatch, diagnose and tear down, one slot at a time.

    Stateless apart from its configuration: all mutable state lives in the
    ReactorState and ConnectionSlot objects handed to each call.
    """

    def __init__(self, config: ReactorConfig):
        self.config = config

    # =========================================================================
    # DISPATCH
    # =========================================================================

    def service(
        self,
        state: ReactorState,
        slot: ConnectionSlot,
        readable: Set[socket.socket],
        errored: Set[socket.socket],
    ) -> int:
        """
        Run the four dispatch cases for one slot.

        Args:
            state: Reactor state; terminate() is called on STOP_REACTOR.
            slot: The slot to service.
            readable: Sockets the readiness wait reported readable.
            errored: Sockets the readiness wait reported in the error set.

        Returns:
            Number of ready entries (readable + errored) consumed by this
            slot, so the caller can stop scanning once all are handled.

        Raises:
            AcceptError: accept() failed and the policy treats it as fatal.
            ErrorQueryError: SO_ERROR could not be read.
        """
        consumed = 0

        # Snapshot: case 1 may attach a client, cases 2/4 may detach one
        clients = list(slot.clients)
        listener = slot.listener

        if listener is not None and listener in readable:
            consumed += 1
            self._accept(state, slot)
            if state.terminated:
                return consumed

        for client in clients:
            if client.socket in readable:
                consumed += 1
                if client.state is ClientState.ATTACHED:
                    self._receive(slot, client)

        if listener is not None and listener in errored:
            consumed += 1
            self._retire_listener(slot)

        for client in clients:
            if client.socket in errored:
                consumed += 1
                if client.state is ClientState.ATTACHED:
                    self._client_error(slot, client)

        return consumed

    # ─────────────────────────────────────────────────────────────────────
    # CASE 1: LISTENER READABLE
    # ─────────────────────────────────────────────────────────────────────

    def _accept(self, state: ReactorState, slot: ConnectionSlot) -> None:
        try:
            client_socket, address = slot.listener.accept()
        except OSError as e:
            if (
                self.config.accept_errors is AcceptErrorPolicy.TOLERATE_TRANSIENT
                and e.errno in TRANSIENT_ACCEPT_ERRNOS
            ):
                logger.warning(f"Transient accept error on port {slot.bound_port}: {e}")
                return
            logger.error(f"Accept failed on port {slot.bound_port}: {e}")
            raise AcceptError(f"accept() failed on port {slot.bound_port}: {e}") from e

        client = ClientConnection(
            socket=client_socket,
            address=address,
            port=slot.bound_port,
        )

        try:
            set_nonblocking(client_socket)
        except NonBlockingError as e:
            logger.warning(f"[{client.id}] Dropping client {address}: {e}")
            client.close()
            return

        displaced = slot.attach(client, self.config.client_policy)
        if displaced is not None:
            logger.warning(
                f"[{displaced.id}] Port {client.port} holds one client; "
                f"{displaced.address} is orphaned by [{client.id}] {address}"
            )

        logger.debug(f"[{client.id}] Accepted {address} on port {client.port}")

        on_connect = slot.entry.on_connect
        if on_connect is None:
            return

        try:
            verdict = coerce_verdict(
                on_connect(client.socket, client.address),
                ConnectVerdict,
                ConnectVerdict.CONTINUE_SERVING,
            )
        except Exception as e:
            logger.exception(f"[{client.id}] on_connect failed: {e}")
            self.drop_client(slot, client)
            return

        if verdict is ConnectVerdict.STOP_REACTOR:
            logger.info(f"[{client.id}] on_connect on port {client.port} requested reactor stop")
            self.drop_client(slot, client)
            state.terminate(ReactorStatus.OK)

    # ─────────────────────────────────────────────────────────────────────
    # CASE 2: CLIENT READABLE
    # ─────────────────────────────────────────────────────────────────────

    def _receive(self, slot: ConnectionSlot, client: ClientConnection) -> None:
        try:
            verdict = coerce_verdict(
                slot.entry.on_receive(client.socket, client.address),
                ReceiveVerdict,
                ReceiveVerdict.KEEP_OPEN,
            )
        except Exception as e:
            logger.exception(f"[{client.id}] on_receive failed: {e}")
            verdict = ReceiveVerdict.CLOSE_CONNECTION

        if verdict is ReceiveVerdict.CLOSE_CONNECTION:
            logger.debug(f"[{client.id}] Closing {client.address} on request")
            self.drop_client(slot, client)

    # ─────────────────────────────────────────────────────────────────────
    # CASE 3: LISTENER IN ERROR SET
    # ─────────────────────────────────────────────────────────────────────

    def _retire_listener(self, slot: ConnectionSlot) -> None:
        port = slot.bound_port
        code = query_socket_error(slot.listener)
        logger.error(
            f"Listener on port {port} reported error {code} "
            f"({os.strerror(code) if code else 'no error code'}); retiring it"
        )
        slot.retire_listener()

    # ─────────────────────────────────────────────────────────────────────
    # CASE 4: CLIENT IN ERROR SET
    # ─────────────────────────────────────────────────────────────────────

    def _client_error(self, slot: ConnectionSlot, client: ClientConnection) -> None:
        code = query_socket_error(client.socket)
        if code == 0:
            logger.debug(f"[{client.id}] Peer {client.address} closed the connection")
        else:
            logger.warning(
                f"[{client.id}] Socket error on {client.address}: {os.strerror(code)}"
            )
        self.drop_client(slot, client)

    # =========================================================================
    # TEARDOWN
    # =========================================================================

    def drop_client(self, slot: ConnectionSlot, client: ClientConnection) -> None:
        """Close a client, tell the application, and free its place in the slot."""
        client.close()
        slot.detach(client)
        self._notify_disconnect(slot, client)

    def reap_closed(self, state: ReactorState) -> None:
        """
        Detach clients whose socket was closed behind our back.

        A callback may close the socket it was handed. Such a descriptor
        must not reach the readiness wait, which rejects fd -1.
        """
        for slot in state.slots:
            for client in list(slot.clients):
                if client.socket.fileno() == -1:
                    logger.debug(f"[{client.id}] Socket closed by callback")
                    client.state = ClientState.CLOSED
                    slot.detach(client)
                    self._notify_disconnect(slot, client)

    def close_all(self, state: ReactorState) -> None:
        """
        Termination pass: close every client, orphan and listener.

        on_disconnect runs for each attached client. Orphans are closed
        quietly; the application was already told nothing about them.
        """
        for slot in state.slots:
            for client in list(slot.clients):
                self.drop_client(slot, client)

            for orphan in slot.orphans:
                orphan.close()
            slot.orphans.clear()

            slot.retire_listener()

    def _notify_disconnect(self, slot: ConnectionSlot, client: ClientConnection) -> None:
        on_disconnect = slot.entry.on_disconnect
        if on_disconnect is None:
            return
        try:
            on_disconnect(client.socket, client.address)
        except Exception as e:
            logger.exception(f"[{client.id}] on_disconnect failed: {e}")


def query_socket_error(sock: socket.socket) -> int:
    """
    Read and clear the pending error on a socket (SO_ERROR).

    Returns:
        The errno value, 0 if there is none.

    Raises:
        ErrorQueryError: If getsockopt() itself fails.
    """
    try:
        return sock.getsockopt(socket.SOL_SOCKET, socket.SO_ERROR)
    except OSError as e:
        logger.error(f"Error query (SO_ERROR) failed: {e}")
        raise ErrorQueryError(f"getsockopt(SO_ERROR) failed: {e}") from e
