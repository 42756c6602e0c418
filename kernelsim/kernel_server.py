"""The kernel's own server and its connections to memory, CPU and I/O devices."""

from __future__ import annotations

import socket
import struct
import threading

from kernelsim.kernel_io import serve_interface
from kernelsim.kernel_state import IoInterface, Kernel
from kernelsim.net import accept_client, connect, spawn_handler, start_server
from kernelsim.protocol import (
    ConnectionClosed,
    OpCode,
    receive_operation,
    receive_payload,
    send_handshake,
    send_packet,
)

_INT = struct.Struct("<i")
_MODULE_NAME = "KERNEL"


def start_kernel_server(kernel: Kernel) -> socket.socket:
    """Listen for I/O devices at the configured address."""
    ip, port = kernel.config.kernel_ip, kernel.config.listen_port
    try:
        server = start_server(ip, port)
    except OSError:
        kernel.debug_log.error("Could not start KERNEL server")
        raise
    kernel.server_socket = server
    kernel.debug_log.info("Server started! KERNEL listening on %s:%s", ip, port)
    return server


def _connect_to(kernel: Kernel, ip: str, port: str, target: str) -> socket.socket:
    try:
        sock = connect(ip, port)
    except OSError:
        kernel.debug_log.error("KERNEL could not connect to %s", target)
        raise
    kernel.debug_log.info("KERNEL connected to %s at %s:%s", target, ip, port)
    send_handshake(sock, _MODULE_NAME, kernel.debug_log)
    return sock


def connect_memory(kernel: Kernel) -> socket.socket:
    config = kernel.config
    kernel.memory_socket = _connect_to(kernel, config.memory_ip, config.memory_port, "MEMORY")
    return kernel.memory_socket


def connect_dispatch(kernel: Kernel) -> socket.socket:
    config = kernel.config
    kernel.dispatch_socket = _connect_to(
        kernel, config.cpu_ip, config.cpu_dispatch_port, "CPU DISPATCH"
    )
    return kernel.dispatch_socket


def connect_interrupt(kernel: Kernel) -> socket.socket:
    config = kernel.config
    kernel.interrupt_socket = _connect_to(
        kernel, config.cpu_ip, config.cpu_interrupt_port, "CPU INTERRUPT"
    )
    return kernel.interrupt_socket


def establish_connections(kernel: Kernel) -> None:
    """Connect to memory, then to the CPU's interrupt and dispatch ports."""
    connect_memory(kernel)
    connect_interrupt(kernel)
    connect_dispatch(kernel)


def receive_io_presentation(kernel: Kernel, sock: socket.socket) -> str:
    """Read a device's name and type, register it and return its name."""
    reader = receive_payload(sock)
    name = reader.read_string(reader.read_int())
    interface_type = reader.read_string(reader.read_int())
    kernel.debug_log.info(
        "Handshake succeeded: communication established with %s:%s", name, interface_type
    )
    register_interface(kernel, name, interface_type, sock)
    return name


def receive_io_handshake(kernel: Kernel, sock: socket.socket) -> str | None:
    """Answer a device's handshake; return its name, or None if rejected."""
    operation = receive_operation(sock)
    if operation == OpCode.HANDSHAKE:
        sock.sendall(_INT.pack(0))
        return receive_io_presentation(kernel, sock)
    sock.sendall(_INT.pack(-1))
    kernel.debug_log.error("Could not establish communication with the client")
    return None


def register_interface(
    kernel: Kernel, name: str, interface_type: str, sock: socket.socket
) -> IoInterface:
    """Record a connected device and start the thread that feeds it requests."""
    interface = IoInterface(name=name, interface_type=interface_type, sock=sock)
    with kernel.interfaces_lock:
        kernel.interfaces[name] = interface
    interface.worker = spawn_handler(process_requests, kernel, interface)
    return interface


def _is_registered(kernel: Kernel, interface: IoInterface) -> bool:
    with kernel.interfaces_lock:
        return kernel.interfaces.get(interface.name) is interface


def process_requests(kernel: Kernel, interface: IoInterface) -> None:
    """Send each blocked process's request to the device, one at a time.

    Returns once the device is no longer registered or its connection fails.
    """
    while True:
        interface.pending.acquire()
        if not _is_registered(kernel, interface):
            return
        interface.in_use.acquire()
        if not _is_registered(kernel, interface) or not len(interface.blocked):
            interface.in_use.release()
            return
        pid = interface.blocked[0].pid
        with kernel.io_requests_lock:
            request = kernel.io_requests[pid]
        try:
            send_packet(interface.sock, request.build_packet(request, pid))
        except OSError:
            return
        kernel.debug_log.info(
            "PID < %d > request sent to %s:%s", pid, interface.name, interface.interface_type
        )
        with kernel.io_requests_lock:
            kernel.io_requests.pop(pid, None)


def accept_interfaces(kernel: Kernel) -> None:
    """Accept I/O devices until the server socket closes."""
    server = kernel.server_socket
    if server is None:
        raise ConnectionError("kernel server is not started")
    while True:
        try:
            client = accept_client(server)
        except OSError:
            return
        kernel.debug_log.info("An I/O module connected")
        try:
            name = receive_io_handshake(kernel, client)
        except (ConnectionClosed, OSError, ValueError):
            kernel.debug_log.error("I/O module disconnected during the handshake")
            continue
        if name is not None:
            spawn_handler(serve_interface, kernel, name)


def wait_for_io_devices(kernel: Kernel) -> threading.Thread:
    """Accept I/O devices in a background thread."""
    return spawn_handler(accept_interfaces, kernel)