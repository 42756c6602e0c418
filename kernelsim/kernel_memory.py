"""Messages the kernel exchanges with the memory module."""

from __future__ import annotations

from kernelsim.kernel_state import Kernel
from kernelsim.protocol import OpCode, Packet, PayloadReader, PayloadWriter, recv_exact, send_packet


def _memory_socket(kernel: Kernel):
    if kernel.memory_socket is None:
        raise ConnectionError("kernel is not connected to memory")
    return kernel.memory_socket


def process_path_packet(path: str, pid: int) -> Packet:
    """Build the request asking memory to load the program at ``path``."""
    writer = PayloadWriter()
    writer.add_int(pid)
    writer.add_int(len(path.encode()) + 1)
    writer.add_string(path)
    return Packet(OpCode.CREATE_PROCESS, writer.getvalue())


def send_process_path(kernel: Kernel, path: str, pid: int) -> None:
    send_packet(_memory_socket(kernel), process_path_packet(path, pid))


def finish_process(kernel: Kernel, pid: int) -> None:
    """Ask memory to release everything held by process ``pid``."""
    writer = PayloadWriter().add_int(pid)
    send_packet(_memory_socket(kernel), Packet(OpCode.DELETE_PROCESS, writer.getvalue()))


def receive_confirmation(kernel: Kernel, pid: int) -> bool:
    """Read memory's answer to a load; on failure send the process from NEW to EXIT."""
    answer = PayloadReader(recv_exact(_memory_socket(kernel), 4)).read_int()
    if answer == 0:
        kernel.terminate_in(kernel.new_queue, pid)
        return False
    return True