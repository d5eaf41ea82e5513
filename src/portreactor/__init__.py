"""
=============================================================================
PORTREACTOR - Single-Threaded Multi-Port TCP Reactor
=============================================================================

Serve any number of independently configured TCP ports from ONE thread,
with per-port callbacks for connect, receive and disconnect.

=============================================================================
PROJECT OVERVIEW
=============================================================================

    ┌─────────────────────────────────────────────────────────────────────┐
    │                      PORTREACTOR ARCHITECTURE                       │
    ├─────────────────────────────────────────────────────────────────────┤
    │                                                                      │
    │    PortRegistry        [:9000 upper_echo] [:9001 echo] [:9002 stop] │
    │         │                                                            │
    │         ▼                                                            │
    │    ListenerSet         socket → SO_REUSEADDR → bind → non-blocking  │
    │         │              → listen, once per port                       │
    │         ▼                                                            │
    │    Reactor Loop        build ReadinessSet → poll() → dispatch       │
    │         │                                                            │
    │         ▼                                                            │
    │    SlotManager         accept / on_receive / retire / drop          │
    │                                                                      │
    └─────────────────────────────────────────────────────────────────────┘

One thread, no locks. A failing socket costs that socket only; every other
port keeps being served.

=============================================================================
QUICK START
=============================================================================

    from portreactor import PortConfiguration, serve_ports
    from portreactor.handlers import echo, upper_echo, stop_on_connect

    status = serve_ports([
        PortConfiguration(9000, on_receive=upper_echo),
        PortConfiguration(9001, on_receive=echo),
        PortConfiguration(9099, on_receive=echo, on_connect=stop_on_connect),
    ])
    # status == 0 once someone connects to 9099

Or from the shell:

    python -m portreactor --port 9000 --port 9001 --handler upper

=============================================================================
"""

import logging

__version__ = "1.0.0"

from .config import ReactorConfig, ClientPolicy, AcceptErrorPolicy
from .errors import (
    ReactorStatus,
    ReactorError,
    ListenerSetupError,
    NonBlockingError,
    WaitError,
    AcceptError,
    ErrorQueryError,
)
from .core import (
    PortConfiguration,
    PortRegistry,
    ConnectVerdict,
    ReceiveVerdict,
    Reactor,
    serve_ports,
)


def configure_logging(level: str = "INFO") -> None:
    """Configure root logging the way the CLI does."""
    numeric = getattr(logging, level.upper(), logging.INFO)

    logging.basicConfig(
        level=numeric,
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )

    logging.getLogger("portreactor").setLevel(numeric)


__all__ = [
    "ReactorConfig",
    "ClientPolicy",
    "AcceptErrorPolicy",
    "ReactorStatus",
    "ReactorError",
    "ListenerSetupError",
    "NonBlockingError",
    "WaitError",
    "AcceptError",
    "ErrorQueryError",
    "PortConfiguration",
    "PortRegistry",
    "ConnectVerdict",
    "ReceiveVerdict",
    "Reactor",
    "serve_ports",
    "configure_logging",
    "__version__",
]
