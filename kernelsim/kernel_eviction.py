"""Deciding what happens to a process when the CPU hands it back."""

from __future__ import annotations

from typing import Callable

from kernelsim.kernel_cpu import receive_context, send_context, send_interrupt
from kernelsim.kernel_io import (
    fs_create_delete_packet,
    fs_truncate_packet,
    fs_write_read_packet,
    gen_sleep_packet,
    stdin_read_packet,
    stdout_write_packet,
)
from kernelsim.kernel_queues import transfer
from kernelsim.kernel_resources import add_instance, remove_instance, resource_exists
from kernelsim.kernel_state import IoRequest, Kernel, Pcb, Resource
from kernelsim.protocol import AccessData, EvictionReason, InstructionCode, PayloadReader

_SUPPORTED = {
    "GENERICA": frozenset({InstructionCode.IO_GEN_SLEEP}),
    "STDIN": frozenset({InstructionCode.IO_STDIN_READ}),
    "STDOUT": frozenset({InstructionCode.IO_STDOUT_WRITE}),
    "DIALFS": frozenset(
        {
            InstructionCode.IO_FS_CREATE,
            InstructionCode.IO_FS_DELETE,
            InstructionCode.IO_FS_TRUNCATE,
            InstructionCode.IO_FS_READ,
        }
    ),
}


def supports_operation(instruction: int, interface_type: str) -> bool:
    """Tell whether a device of ``interface_type`` accepts ``instruction``."""
    return instruction in _SUPPORTED.get(interface_type, frozenset())


def validate_request(kernel: Kernel, interface_name: str, instruction: int) -> bool:
    """Tell whether ``interface_name`` is connected and accepts ``instruction``."""
    with kernel.interfaces_lock:
        interface = kernel.interfaces.get(interface_name)
    return interface is not None and supports_operation(instruction, interface.interface_type)


def read_addresses(reader: PayloadReader, count: int) -> list[AccessData]:
    """Read ``count`` (size, physical address) pairs."""
    return [AccessData(reader.read_int(), reader.read_int()) for _ in range(count)]


def _read_field(reader: PayloadReader) -> str:
    return reader.read_string(reader.read_int())


def _finish(kernel: Kernel, pcb: Pcb, reason: str) -> None:
    transfer(kernel, pcb.pid, kernel.exec_queue, kernel.exit_queue)
    kernel.log.info("Process < %d > finished - Reason: < %s >", pcb.pid, reason)


# ---------------------------------------------------------------- resources


def resource_wait(kernel: Kernel, pid: int, resource: Resource) -> bool:
    """Take one instance of ``resource`` for ``pid``.

    When none is free, the running process is blocked on the resource and
    the CPU is asked to evict it.  Returns whether an instance was taken.
    """
    with resource.lock:
        available = resource.instances > 0
        if available:
            resource.instances -= 1
    if available:
        add_instance(kernel, pid, resource)
        return True
    pcb = kernel.exec_queue.pop()
    resource.queue.push(pcb)
    kernel.blocking_resource = resource.name
    send_interrupt(kernel, EvictionReason.RESOURCE_REQUEST)
    return False


def resource_signal(kernel: Kernel, pid: int, resource: Resource) -> None:
    """Give back one instance held by ``pid``; the first waiter, if any, takes it."""
    waiting = next(iter(resource.queue), None)
    remove_instance(kernel, pid, resource)
    if waiting is None:
        return
    add_instance(kernel, waiting.pid, resource)
    with resource.lock:
        resource.instances -= 1
    transfer(kernel, waiting.pid, resource.queue, kernel.ready_queue)


def handle_resource(kernel: Kernel, pcb: Pcb, reader: PayloadReader, op_code: int) -> bool:
    """Serve a WAIT or SIGNAL and send the process back to the CPU.

    An unknown resource makes the kernel ask the CPU to evict the process.
    Always returns True: the CPU will hand the context back again.
    """
    name = _read_field(reader)
    if resource_exists(kernel, name):
        with kernel.resources_lock:
            resource = kernel.resources[name]
        if op_code == InstructionCode.SIGNAL:
            resource_signal(kernel, pcb.pid, resource)
        else:
            resource_wait(kernel, pcb.pid, resource)
    else:
        send_interrupt(kernel, EvictionReason.INVALID_RESOURCE)
    send_context(kernel, pcb)
    return True


# ---------------------------------------------------------------- I/O calls


def _read_gen_sleep(reader: PayloadReader, code: int) -> IoRequest:
    return IoRequest(gen_sleep_packet, work_units=reader.read_int())


def _read_console_transfer(reader: PayloadReader, code: int) -> IoRequest:
    read_size = reader.read_int()
    count = reader.read_int()
    builder = stdin_read_packet if code == InstructionCode.IO_STDIN_READ else stdout_write_packet
    return IoRequest(builder, read_size=read_size, addresses=read_addresses(reader, count))


def _read_create_delete(reader: PayloadReader, code: int) -> IoRequest:
    return IoRequest(fs_create_delete_packet, file_name=_read_field(reader), operation=code)


def _read_truncate(reader: PayloadReader, code: int) -> IoRequest:
    file_name = _read_field(reader)
    return IoRequest(fs_truncate_packet, file_name=file_name, size_register=reader.read_int())


def _read_write_read(reader: PayloadReader, code: int) -> IoRequest:
    file_name = _read_field(reader)
    size_register = reader.read_int()
    pointer_register = reader.read_int()
    count = reader.read_int()
    return IoRequest(
        fs_write_read_packet,
        file_name=file_name,
        size_register=size_register,
        pointer_register=pointer_register,
        addresses=read_addresses(reader, count),
        operation=code,
    )


# instruction -> (instruction the device is checked against, request reader)
_IO_CALLS: dict[int, tuple[int, Callable[[PayloadReader, int], IoRequest]]] = {
    InstructionCode.IO_GEN_SLEEP: (InstructionCode.IO_GEN_SLEEP, _read_gen_sleep),
    InstructionCode.IO_STDIN_READ: (InstructionCode.IO_STDIN_READ, _read_console_transfer),
    InstructionCode.IO_STDOUT_WRITE: (InstructionCode.IO_STDOUT_WRITE, _read_console_transfer),
    InstructionCode.IO_FS_CREATE: (InstructionCode.IO_FS_CREATE, _read_create_delete),
    InstructionCode.IO_FS_DELETE: (InstructionCode.IO_FS_DELETE, _read_create_delete),
    InstructionCode.IO_FS_TRUNCATE: (InstructionCode.IO_FS_TRUNCATE, _read_truncate),
    InstructionCode.IO_FS_WRITE: (InstructionCode.IO_FS_TRUNCATE, _read_write_read),
    InstructionCode.IO_FS_READ: (InstructionCode.IO_FS_TRUNCATE, _read_write_read),
}


def _block_on_interface(kernel: Kernel, pcb: Pcb, name: str, request: IoRequest) -> None:
    with kernel.io_requests_lock:
        kernel.io_requests[pcb.pid] = request
    with kernel.interfaces_lock:
        interface = kernel.interfaces[name]
    transfer(kernel, pcb.pid, kernel.exec_queue, interface.blocked)
    kernel.log.info("PID: < %d > - Blocked by: < %s >", pcb.pid, name)
    interface.pending.release()


def handle_io_call(kernel: Kernel, pcb: Pcb, reader: PayloadReader) -> bool:
    """Serve a system call; return True if the process went back to the CPU."""
    code = reader.read_int()
    if code in (InstructionCode.WAIT, InstructionCode.SIGNAL):
        return handle_resource(kernel, pcb, reader, code)
    entry = _IO_CALLS.get(code)
    if entry is None:
        return False
    checked_as, read_request = entry
    name = _read_field(reader)
    if not validate_request(kernel, name, checked_as):
        _finish(kernel, pcb, "INVALID_INTERFACE")
        return False
    _block_on_interface(kernel, pcb, name, read_request(reader, code))
    return False


# ---------------------------------------------------------------- evictions


def handle_eviction(kernel: Kernel, pcb: Pcb, reader: PayloadReader) -> bool:
    """Act on the reason the CPU evicted ``pcb``.

    Returns True if the process was sent back to the CPU and its context
    must be received again.
    """
    reason = reader.read_int()
    if reason == EvictionReason.END_OF_QUANTUM:
        kernel.log.info("PID: < %d > Evicted by end of Quantum", pcb.pid)
        transfer(kernel, pcb.pid, kernel.exec_queue, kernel.ready_queue)
    elif reason == EvictionReason.END_OF_PROCESS:
        _finish(kernel, pcb, "INTERRUPTED_BY_USER")
    elif reason == EvictionReason.IO_CALL:
        return handle_io_call(kernel, pcb, reader)
    elif reason == EvictionReason.INVALID_RESOURCE:
        _finish(kernel, pcb, "INVALID_RESOURCE")
    elif reason == EvictionReason.RESOURCE_REQUEST:
        blocking = kernel.blocking_resource
        kernel.blocking_resource = None
        kernel.log.info(
            "PID: <%d> - Previous State: < EXEC > - Current State: < BLOCKED >", pcb.pid
        )
        kernel.log.info("PID: <%d> - Blocked by: < %s >", pcb.pid, blocking)
    elif reason == EvictionReason.OUT_OF_MEMORY:
        _finish(kernel, pcb, "OUT OF MEMORY")
    elif reason == EvictionReason.EXIT:
        _finish(kernel, pcb, "SUCCESS")
    return False


def return_from_cpu(kernel: Kernel, pcb: Pcb) -> None:
    """Receive ``pcb``'s context from the CPU and act on it until it leaves the CPU."""
    while handle_eviction(kernel, pcb, receive_context(kernel, pcb)):
        pass