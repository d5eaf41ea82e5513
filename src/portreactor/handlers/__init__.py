"""
=============================================================================
HANDLERS MODULE
=============================================================================

Ready-made callbacks for PortConfiguration.

    ┌─────────────────────────────────────────────────────────────────────┐
    │                  EVENT → CALLBACK → VERDICT                         │
    ├─────────────────────────────────────────────────────────────────────┤
    │                                                                      │
    │   connect      on_connect(sock, addr)     ──► ConnectVerdict        │
    │   readable     on_receive(sock, addr)     ──► ReceiveVerdict        │
    │   closed       on_disconnect(sock, addr)  ──► None                  │
    │                                                                      │
    └─────────────────────────────────────────────────────────────────────┘

Bundled:
    echo, upper_echo, EchoHandler    on_receive
    stop_on_connect, log_connect     on_connect
    log_disconnect                   on_disconnect

=============================================================================
"""

from .echo import EchoHandler, echo, upper_echo
from .lifecycle import stop_on_connect, log_connect, log_disconnect

__all__ = [
    "EchoHandler",
    "echo",
    "upper_echo",
    "stop_on_connect",
    "log_connect",
    "log_disconnect",
]
