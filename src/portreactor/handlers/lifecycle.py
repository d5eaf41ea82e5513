"""
on_connect / on_disconnect callbacks for common needs.
"""

import socket
import logging

from ..core.registry import Address, ConnectVerdict


logger = logging.getLogger(__name__)


def stop_on_connect(sock: socket.socket, address: Address) -> ConnectVerdict:
    """
    Stop the whole reactor as soon as anyone connects.

    Useful as a control port: connecting to it shuts every port down.
    """
    logger.info(f"Stop requested by {address}")
    return ConnectVerdict.STOP_REACTOR


def log_connect(sock: socket.socket, address: Address) -> ConnectVerdict:
    logger.info(f"Client {address} connected")
    return ConnectVerdict.CONTINUE_SERVING


def log_disconnect(sock: socket.socket, address: Address) -> None:
    logger.info(f"Client {address} disconnected")
