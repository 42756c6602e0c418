"""Requests the kernel sends to I/O devices and the notices it gets back."""

from __future__ import annotations

import socket

from kernelsim.kernel_queues import transfer
from kernelsim.kernel_state import IoInterface, IoRequest, Kernel, ProcessQueue
from kernelsim.protocol import (
    AccessData,
    ConnectionClosed,
    InstructionCode,
    OpCode,
    Packet,
    PayloadWriter,
    receive_operation,
    receive_payload,
)


def _add_addresses(writer: PayloadWriter, addresses: list[AccessData]) -> None:
    for address in addresses:
        writer.add_int(address.size)
        writer.add_int(address.physical_address)


def _add_file_name(writer: PayloadWriter, name: str) -> None:
    writer.add_int(len(name.encode()) + 1)
    writer.add_string(name)


def gen_sleep_packet(request: IoRequest, pid: int) -> Packet:
    writer = PayloadWriter().add_int(pid).add_int(request.work_units)
    return Packet(InstructionCode.IO_GEN_SLEEP, writer.getvalue())


def _transfer_packet(code: int, request: IoRequest, pid: int) -> Packet:
    writer = PayloadWriter()
    writer.add_int(pid).add_int(request.read_size).add_int(len(request.addresses))
    _add_addresses(writer, request.addresses)
    return Packet(code, writer.getvalue())


def stdin_read_packet(request: IoRequest, pid: int) -> Packet:
    return _transfer_packet(InstructionCode.IO_STDIN_READ, request, pid)


def stdout_write_packet(request: IoRequest, pid: int) -> Packet:
    return _transfer_packet(InstructionCode.IO_STDOUT_WRITE, request, pid)


def fs_create_delete_packet(request: IoRequest, pid: int) -> Packet:
    """Build a create or delete request; the operation code comes from the request."""
    writer = PayloadWriter().add_int(pid)
    _add_file_name(writer, request.file_name)
    return Packet(request.operation, writer.getvalue())


def fs_truncate_packet(request: IoRequest, pid: int) -> Packet:
    writer = PayloadWriter().add_int(pid)
    _add_file_name(writer, request.file_name)
    writer.add_int(request.size_register)
    return Packet(InstructionCode.IO_FS_TRUNCATE, writer.getvalue())


def fs_write_read_packet(request: IoRequest, pid: int) -> Packet:
    """Build a file write or read request; the operation code comes from the request."""
    writer = PayloadWriter().add_int(pid)
    _add_file_name(writer, request.file_name)
    writer.add_int(request.size_register)
    writer.add_int(request.pointer_register)
    writer.add_int(len(request.addresses))
    _add_addresses(writer, request.addresses)
    return Packet(request.operation, writer.getvalue())


def send_blocked_to_exit(kernel: Kernel, queue: ProcessQueue) -> None:
    """Move every process in ``queue`` to EXIT."""
    for pcb in list(queue):
        transfer(kernel, pcb.pid, queue, kernel.exit_queue)


def remove_interface(kernel: Kernel, name: str) -> IoInterface:
    """Forget a disconnected device and finish every process blocked on it."""
    with kernel.interfaces_lock:
        interface = kernel.interfaces.pop(name)
    send_blocked_to_exit(kernel, interface.blocked)
    if interface.sock is not None:
        interface.sock.close()
    return interface


def receive_notice(kernel: Kernel, name: str, sock: socket.socket) -> int:
    """Read a completion notice and return the finished process to a ready queue."""
    pid = receive_payload(sock).read_int()
    kernel.debug_log.info("Operation %s completed", name)
    with kernel.interfaces_lock:
        interface = kernel.interfaces[name]
    kernel.wait_if_paused()
    destination = kernel.ready_plus_queue if kernel.is_vrr() else kernel.ready_queue
    transfer(kernel, pid, interface.blocked, destination)
    return pid


def serve_interface(kernel: Kernel, name: str) -> None:
    """Handle messages from one device until it disconnects."""
    with kernel.interfaces_lock:
        interface = kernel.interfaces[name]
    sock = interface.sock
    while True:
        try:
            operation = receive_operation(sock)
            if operation == OpCode.OPERATION_COMPLETED:
                receive_notice(kernel, name, sock)
                if interface.in_use.locked():
                    interface.in_use.release()
            else:
                kernel.debug_log.warning("Unknown operation from I/O device")
        except ConnectionClosed:
            kernel.debug_log.error("%s disconnected", name)
            remove_interface(kernel, name)
            return