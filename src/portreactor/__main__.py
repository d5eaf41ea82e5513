"""
=============================================================================
PORTREACTOR CLI ENTRY POINT
=============================================================================

    # Uppercase echo on two ports
    python -m portreactor --port 9000 --port 9001 --handler upper

    # Plain echo, plus a control port that stops everything on connect
    python -m portreactor -p 9000 --stop-port 9099

    # Legacy one-client-per-port behaviour
    python -m portreactor -p 9000 --single-client

Settings come from REACTOR_* environment variables (see config.py);
flags given on the command line override them.

The process exits with the reactor's status code (0 = clean, negative =
failing phase, see ReactorStatus).

=============================================================================
"""

import argparse
import sys

from . import __version__, configure_logging
from .config import AcceptErrorPolicy, ClientPolicy, ReactorConfig
from .core import PortConfiguration, Reactor
from .handlers import EchoHandler, echo, stop_on_connect, log_connect, log_disconnect


# on_receive behaviours offered by --handler, as EchoHandler transforms
HANDLERS = {
    "echo": None,
    "upper": bytes.upper,
}


def build_handler(name: str, buffer_size: int) -> EchoHandler:
    """EchoHandler for --handler NAME, reading at most buffer_size bytes per call."""
    return EchoHandler(transform=HANDLERS[name], buffer_size=buffer_size)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="portreactor",
        description="Serve several TCP ports from one single-threaded reactor",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  python -m portreactor -p 9000 -p 9001 --handler upper
  python -m portreactor -p 9000 --stop-port 9099
  python -m portreactor -p 9000 --single-client --log-level DEBUG
        """,
    )

    # ─────────────────────────────────────────────────────────────────────
    # PORTS
    # ─────────────────────────────────────────────────────────────────────

    parser.add_argument(
        "--port", "-p",
        type=int,
        action="append",
        default=[],
        help="Port to serve (repeatable)",
    )

    parser.add_argument(
        "--handler",
        choices=sorted(HANDLERS),
        default="echo",
        help="on_receive behaviour for every --port (default: echo)",
    )

    parser.add_argument(
        "--stop-port",
        type=int,
        default=None,
        help="Extra port whose first connection stops the reactor",
    )

    # ─────────────────────────────────────────────────────────────────────
    # REACTOR SETTINGS
    # ─────────────────────────────────────────────────────────────────────

    parser.add_argument(
        "--host", "-H",
        default=None,
        help="Address to bind every listener to (default: 0.0.0.0)",
    )

    parser.add_argument(
        "--timeout", "-t",
        type=float,
        default=None,
        help="Readiness wait bound in seconds (default: 1.0)",
    )

    parser.add_argument(
        "--backlog",
        type=int,
        default=None,
        help="listen() backlog per port (default: 4)",
    )

    parser.add_argument(
        "--buffer-size",
        type=int,
        default=None,
        help="Bytes the echo handlers read per call (default: 4096)",
    )

    parser.add_argument(
        "--single-client",
        action="store_true",
        help="Track one client per port; a new client orphans the previous one",
    )

    parser.add_argument(
        "--tolerate-accept-errors",
        action="store_true",
        help="Skip transient accept() failures instead of stopping",
    )

    parser.add_argument(
        "--log-level", "-l",
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
        default=None,
        help="Logging level (default: INFO)",
    )

    parser.add_argument(
        "--version", "-v",
        action="version",
        version=f"portreactor {__version__}",
    )

    return parser


def build_config(args: argparse.Namespace) -> ReactorConfig:
    """
    Environment first (REACTOR_*), then any flag given on the command line.

    Raises:
        ValueError: If an environment variable cannot be parsed.
    """
    config = ReactorConfig.from_env()

    if args.host is not None:
        config.host = args.host
    if args.timeout is not None:
        config.poll_timeout = args.timeout
    if args.backlog is not None:
        config.backlog = args.backlog
    if args.buffer_size is not None:
        config.buffer_size = args.buffer_size
    if args.single_client:
        config.client_policy = ClientPolicy.SINGLE
    if args.tolerate_accept_errors:
        config.accept_errors = AcceptErrorPolicy.TOLERATE_TRANSIENT
    if args.log_level is not None:
        config.log_level = args.log_level

    return config


def main(argv=None) -> int:
    """Parse arguments, build the registry, run the reactor."""
    parser = build_parser()
    args = parser.parse_args(argv)

    if not args.port and args.stop_port is None:
        parser.error("at least one --port is required")

    try:
        config = build_config(args)
        config.validate()
    except ValueError as e:
        parser.error(str(e))

    configure_logging(config.log_level)

    on_receive = build_handler(args.handler, config.buffer_size)

    try:
        entries = [
            PortConfiguration(
                port,
                on_receive=on_receive,
                on_connect=log_connect,
                on_disconnect=log_disconnect,
            )
            for port in args.port
        ]

        if args.stop_port is not None:
            entries.append(
                PortConfiguration(args.stop_port, on_receive=echo, on_connect=stop_on_connect)
            )

        status = Reactor(entries, config).run()
    except KeyboardInterrupt:
        # The reactor already ran its close pass on the way out
        print("Interrupted", file=sys.stderr)
        return 0
    except ValueError as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1

    return int(status)


if __name__ == "__main__":
    sys.exit(main())
