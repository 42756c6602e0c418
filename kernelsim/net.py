"""TCP servers, clients and connection handler threads."""

from __future__ import annotations

import logging
import socket
import threading
from typing import Callable

from kernelsim.protocol import receive_handshake


def start_server(ip: str, port: str | int) -> socket.socket:
    """Open a listening IPv4 TCP socket at ``ip``:``port``."""
    family, socktype, proto, _, address = socket.getaddrinfo(
        ip, port, socket.AF_INET, socket.SOCK_STREAM, 0, socket.AI_PASSIVE
    )[0]
    server = socket.socket(family, socktype, proto)
    try:
        server.setsockopt(socket.SOL_SOCKET, socket.SO_REUSEADDR, 1)
        server.bind(address)
        server.listen(socket.SOMAXCONN)
    except OSError:
        server.close()
        raise
    return server


def connect(ip: str, port: str | int) -> socket.socket:
    """Open a TCP connection to ``ip``:``port``."""
    family, socktype, proto, _, address = socket.getaddrinfo(
        ip, port, socket.AF_UNSPEC, socket.SOCK_STREAM
    )[0]
    client = socket.socket(family, socktype, proto)
    try:
        client.connect(address)
    except OSError:
        client.close()
        raise
    return client


def accept_client(server: socket.socket) -> socket.socket:
    """Wait for and return the next client connection."""
    conn, _ = server.accept()
    return conn


def close_connection(sock: socket.socket) -> None:
    sock.close()


def spawn_handler(handler: Callable[..., object], *args) -> threading.Thread:
    """Run ``handler(*args)`` in a detached daemon thread."""
    thread = threading.Thread(target=handler, args=args, daemon=True)
    thread.start()
    return thread


def serve_client(
    server: socket.socket,
    handler: Callable[[socket.socket], object],
    logger: logging.Logger,
    module_name: str,
) -> threading.Thread:
    """Accept one client, answer its handshake and hand it to ``handler``."""
    client = accept_client(server)
    logger.info("%s connected", module_name)
    receive_handshake(client, logger)
    return spawn_handler(handler, client)