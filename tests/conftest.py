"""
pytest configuration and fixtures.
"""

import select
import socket
import threading
import time
from typing import Callable, Generator, List, Optional
import pytest

# Add src to path for imports
import sys
from pathlib import Path
sys.path.insert(0, str(Path(__file__).parent.parent / "src"))

from portreactor import ReactorConfig, ReactorStatus
from portreactor.core import PortConfiguration, Reactor
from portreactor.handlers import echo, stop_on_connect


@pytest.fixture
def reactor_config() -> ReactorConfig:
    """Loopback-only configuration with a short poll timeout."""
    return ReactorConfig(
        host="127.0.0.1",
        poll_timeout=0.05,
        log_level="WARNING",
    )


@pytest.fixture
def free_port() -> int:
    """Get a free port for testing."""
    with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as s:
        s.bind(('127.0.0.1', 0))
        return s.getsockname()[1]


@pytest.fixture
def high_descriptors() -> Generator[List[socket.socket], None, None]:
    """
    Hold enough open sockets that the next descriptor is above 1023,
    the FD_SETSIZE ceiling of select().
    """
    resource = pytest.importorskip("resource")
    soft, hard = resource.getrlimit(resource.RLIMIT_NOFILE)
    wanted = 2048

    if soft != resource.RLIM_INFINITY and soft < wanted:
        if hard != resource.RLIM_INFINITY and hard < wanted:
            pytest.skip(f"RLIMIT_NOFILE hard limit {hard} is below {wanted}")
        resource.setrlimit(resource.RLIMIT_NOFILE, (wanted, hard))

    fillers: List[socket.socket] = []
    try:
        while not fillers or fillers[-1].fileno() < 1100:
            fillers.append(socket.socket())
        yield fillers
    finally:
        for sock in fillers:
            sock.close()
        resource.setrlimit(resource.RLIMIT_NOFILE, (soft, hard))


def wait_for(predicate: Callable[[], bool], timeout: float = 2.0) -> bool:
    """Poll predicate until it is true or timeout expires."""
    deadline = time.time() + timeout
    while time.time() < deadline:
        if predicate():
            return True
        time.sleep(0.01)
    return predicate()


def wait_readable(sock: socket.socket, timeout: float = 2.0) -> bool:
    """Block until sock is readable."""
    poller = select.poll()
    poller.register(sock, select.POLLIN)
    return bool(poller.poll(timeout * 1000))


class ReactorThread:
    """
    Runs a Reactor in a background thread.

    Every port is registered as port 0 so the OS picks free ones. A control
    port whose on_connect returns STOP_REACTOR is appended so stop() can end
    the loop the only way a reactor can be ended: through a callback.
    """

    def __init__(self, entries: List[PortConfiguration], config: ReactorConfig):
        self.entries = list(entries)
        self.control_index = len(self.entries)
        self.entries.append(
            PortConfiguration(0, on_receive=echo, on_connect=stop_on_connect)
        )
        self.reactor = Reactor(self.entries, config)
        self.status: Optional[ReactorStatus] = None
        self._thread: Optional[threading.Thread] = None

    def _run(self):
        self.status = self.reactor.run()

    def start(self) -> "ReactorThread":
        """Open listeners here so the bound ports are known, then loop in a thread."""
        self.reactor.open()
        self.ports = list(self.reactor.bound_ports)
        self._thread = threading.Thread(target=self._run, daemon=True)
        self._thread.start()
        return self

    def port(self, index: int) -> int:
        return self.ports[index]

    @property
    def control_port(self) -> int:
        return self.ports[self.control_index]

    def is_alive(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def join(self, timeout: float = 5.0) -> Optional[ReactorStatus]:
        if self._thread is not None:
            self._thread.join(timeout)
        return self.status

    def stop(self) -> Optional[ReactorStatus]:
        """Connect to the control port and wait for the loop to finish."""
        if self.is_alive():
            try:
                with socket.create_connection(("127.0.0.1", self.control_port), timeout=2.0):
                    pass
            except OSError:
                pass  # Already terminated on its own
        return self.join()


@pytest.fixture
def run_reactor(reactor_config: ReactorConfig) -> Generator[Callable[..., ReactorThread], None, None]:
    """Factory starting reactors in background threads; stops them all at teardown."""
    started: List[ReactorThread] = []

    def start(entries: List[PortConfiguration], config: Optional[ReactorConfig] = None) -> ReactorThread:
        thread = ReactorThread(entries, config or reactor_config)
        started.append(thread.start())
        return thread

    yield start

    for thread in started:
        thread.stop()
