"""
=============================================================================
REACTOR CONFIGURATION
=============================================================================

Centralized configuration for the multi-port reactor.

Port numbers and callbacks are NOT configuration in this sense: they are
application code and live in the PortRegistry. This module holds the
knobs that apply to every port at once.

=============================================================================
CONFIGURATION SOURCES
=============================================================================

    ┌─────────────────────────────────────────────────────────────────────┐
    │                    CONFIGURATION HIERARCHY                          │
    ├─────────────────────────────────────────────────────────────────────┤
    │                                                                      │
    │   Priority (highest to lowest):                                     │
    │                                                                      │
    │   1. Command-line arguments                                         │
    │      └── python -m portreactor --timeout 0.5                       │
    │                                                                      │
    │   2. Environment variables                                          │
    │      └── REACTOR_TIMEOUT=0.5 python -m portreactor                 │
    │      (ReactorConfig.from_env(); the CLI starts from it)            │
    │                                                                      │
    │   3. Default values (in this dataclass)                            │
    │                                                                      │
    └─────────────────────────────────────────────────────────────────────┘

=============================================================================
TWO POLICY SWITCHES
=============================================================================

CLIENT POLICY
─────────────
How many clients may one port's slot track at once?

    MULTIPLE (default)   Every accepted client is tracked and serviced.

    SINGLE               Legacy one-client slot. A second accept on the
                         same port displaces the tracked client: its socket
                         stays open but is never serviced again (it is
                         "orphaned") until the reactor terminates.

ACCEPT ERROR POLICY
───────────────────
What happens when accept() fails on a readable listener?

    FATAL (default)      The whole reactor terminates with ACCEPT_FAILED.

    TOLERATE_TRANSIENT   Errors that are known to be temporary (EAGAIN,
                         ECONNABORTED, EMFILE, ...) are logged and skipped.
                         Everything else is still fatal.

=============================================================================
"""

import os
from dataclasses import dataclass
from enum import Enum


class ClientPolicy(Enum):
    """Capacity of a connection slot."""

    SINGLE = "single"
    MULTIPLE = "multiple"


class AcceptErrorPolicy(Enum):
    """Whether transient accept() failures terminate the reactor."""

    FATAL = "fatal"
    TOLERATE_TRANSIENT = "tolerate-transient"


@dataclass
class ReactorConfig:
    """
    Configuration shared by every port the reactor serves.

    Development:
        ReactorConfig(host="127.0.0.1", poll_timeout=0.1, log_level="DEBUG")

    Legacy behaviour:
        ReactorConfig(client_policy=ClientPolicy.SINGLE)
    """

    # ─────────────────────────────────────────────────────────────────────
    # NETWORK SETTINGS
    # ─────────────────────────────────────────────────────────────────────

    host: str = "0.0.0.0"
    """
    Address every listener binds to.
    "0.0.0.0" is the wildcard address (all interfaces).
    """

    backlog: int = 4
    """
    listen() backlog. Kept small: a slot services few clients at a time.
    """

    poll_timeout: float = 1.0
    """
    Upper bound for one readiness wait, in seconds.
    A timeout just starts the next iteration; it never stops the reactor.
    Must be a number: an unbounded wait is rejected by validate().
    """

    buffer_size: int = 4096
    """
    Read size used by the bundled handlers the CLI builds.
    """

    # ─────────────────────────────────────────────────────────────────────
    # POLICIES
    # ─────────────────────────────────────────────────────────────────────

    client_policy: ClientPolicy = ClientPolicy.MULTIPLE
    accept_errors: AcceptErrorPolicy = AcceptErrorPolicy.FATAL

    # ─────────────────────────────────────────────────────────────────────
    # LOGGING
    # ─────────────────────────────────────────────────────────────────────

    log_level: str = "INFO"

    @classmethod
    def from_env(cls) -> "ReactorConfig":
        """
        Create configuration from environment variables.

        REACTOR_HOST            Bind address (default: 0.0.0.0)
        REACTOR_BACKLOG         listen() backlog (default: 4)
        REACTOR_TIMEOUT         Poll timeout in seconds (default: 1.0)
        REACTOR_BUFFER_SIZE     Handler read size in bytes (default: 4096)
        REACTOR_CLIENT_POLICY   "single" or "multiple" (default: multiple)
        REACTOR_ACCEPT_ERRORS   "fatal" or "tolerate-transient" (default: fatal)
        REACTOR_LOG_LEVEL       Logging level (default: INFO)
        """
        return cls(
            host=os.getenv("REACTOR_HOST", "0.0.0.0"),
            backlog=int(os.getenv("REACTOR_BACKLOG", "4")),
            poll_timeout=float(os.getenv("REACTOR_TIMEOUT", "1.0")),
            buffer_size=int(os.getenv("REACTOR_BUFFER_SIZE", "4096")),
            client_policy=ClientPolicy(os.getenv("REACTOR_CLIENT_POLICY", "multiple")),
            accept_errors=AcceptErrorPolicy(os.getenv("REACTOR_ACCEPT_ERRORS", "fatal")),
            log_level=os.getenv("REACTOR_LOG_LEVEL", "INFO"),
        )

    def validate(self) -> None:
        """Fail fast on nonsense values, before any socket is created."""
        if self.backlog < 1:
            raise ValueError(f"backlog must be >= 1, got {self.backlog}")

        if self.poll_timeout is None:
            raise ValueError("poll_timeout must be a number of seconds, got None")

        if self.poll_timeout < 0:
            raise ValueError(f"poll_timeout must be >= 0, got {self.poll_timeout}")

        if self.buffer_size < 1:
            raise ValueError(f"buffer_size must be >= 1, got {self.buffer_size}")

        if not isinstance(self.client_policy, ClientPolicy):
            raise ValueError(f"Invalid client_policy: {self.client_policy!r}")

        if not isinstance(self.accept_errors, AcceptErrorPolicy):
            raise ValueError(f"Invalid accept_errors: {self.accept_errors!r}")
