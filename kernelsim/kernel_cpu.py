"""Execution contexts and interrupts exchanged with the CPU."""

from __future__ import annotations

import socket
import struct
import time

from kernelsim.kernel_state import Kernel, Pcb
from kernelsim.protocol import (
    EvictionReason,
    OpCode,
    Packet,
    PayloadReader,
    PayloadWriter,
    receive_operation,
    receive_payload,
    send_packet,
)

_INT = struct.Struct("<i")


def _socket(sock: socket.socket | None, name: str) -> socket.socket:
    if sock is None:
        raise ConnectionError(f"kernel is not connected to CPU {name}")
    return sock


def context_packet(pcb: Pcb) -> Packet:
    """Serialize the process's pid, program counter and registers."""
    regs = pcb.registers
    writer = PayloadWriter()
    writer.add_int(pcb.pid)
    writer.add_uint32(pcb.pc)
    for value in (regs.ax, regs.bx, regs.cx, regs.dx):
        writer.add_uint8(value)
    for value in (regs.eax, regs.ebx, regs.ecx, regs.edx, regs.si, regs.di):
        writer.add_uint32(value)
    return Packet(OpCode.EXECUTION_CONTEXT, writer.getvalue())


def send_context(kernel: Kernel, pcb: Pcb) -> None:
    send_packet(_socket(kernel.dispatch_socket, "dispatch"), context_packet(pcb))
    kernel.debug_log.info("Sending execution context PID: < %d > to CPU.", pcb.pid)


def _stop_quantum(kernel: Kernel, pcb: Pcb) -> None:
    kernel.quantum_cancel.set()
    if kernel.is_vrr() and kernel.quantum_started_at is not None:
        elapsed_ms = int((time.monotonic() - kernel.quantum_started_at) * 1000)
        pcb.quantum = kernel.config.quantum - elapsed_ms


def receive_context(kernel: Kernel, pcb: Pcb) -> PayloadReader:
    """Read the context the CPU returns into ``pcb``.

    Returns a reader positioned at the eviction reason that follows it.
    Waits while scheduling is paused before returning.
    """
    sock = _socket(kernel.dispatch_socket, "dispatch")
    operation = receive_operation(sock)

    if kernel.uses_quantum() and not kernel.quantum_expired:
        _stop_quantum(kernel, pcb)

    if operation != OpCode.EXECUTION_CONTEXT:
        kernel.debug_log.error("Unexpected operation %d from CPU dispatch", operation)

    reader = receive_payload(sock)
    pcb.pid = reader.read_int()
    pcb.pc = reader.read_uint32()
    regs = pcb.registers
    regs.ax = reader.read_uint8()
    regs.bx = reader.read_uint8()
    regs.cx = reader.read_uint8()
    regs.dx = reader.read_uint8()
    regs.eax = reader.read_uint32()
    regs.ebx = reader.read_uint32()
    regs.ecx = reader.read_uint32()
    regs.edx = reader.read_uint32()
    regs.si = reader.read_uint32()
    regs.di = reader.read_uint32()

    kernel.debug_log.info("CPU returned the execution context of PID < %d >", pcb.pid)
    kernel.wait_if_paused()
    return reader


def send_interrupt(kernel: Kernel, reason: EvictionReason) -> None:
    """Ask the CPU to evict the running process for ``reason``."""
    _socket(kernel.interrupt_socket, "interrupt").sendall(_INT.pack(int(reason)))