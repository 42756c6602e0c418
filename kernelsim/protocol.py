"""Wire format shared by the kernel and the modules it talks to.

Every message is a packet: a 32-bit operation code, a 32-bit payload size
and the payload itself.  Integers travel little-endian; strings travel as
their bytes followed by a NUL terminator.
"""

from __future__ import annotations

import enum
import logging
import socket
import struct
from dataclasses import dataclass

_INT = struct.Struct("<i")
_HEADER = struct.Struct("<ii")


class OpCode(enum.IntEnum):
    """Operation codes carried in a packet header."""

    HANDSHAKE = 1
    CREATE_PROCESS = 2
    DELETE_PROCESS = 3
    FETCH_INSTRUCTION = 4
    INSTRUCTION = 5
    EXECUTION_CONTEXT = 6
    OPERATION_COMPLETED = 7
    RESIZE = 8
    FETCH_FRAME = 9
    FRAME = 10
    READ = 11
    READ_VALUE = 12
    WRITE = 13


class EvictionReason(enum.IntEnum):
    """Why a process left the CPU."""

    # Requested by the kernel.
    END_OF_PROCESS = 0
    INVALID_RESOURCE = 1
    END_OF_QUANTUM = 2
    # Raised while the CPU executes.
    OUT_OF_MEMORY = 3
    IO_CALL = 4
    RESOURCE_REQUEST = 5
    EXIT = 6


class InstructionCode(enum.IntEnum):
    """Instructions of the simulated CPU."""

    SET = 0
    MOV_IN = 1
    MOV_OUT = 2
    SUM = 3
    SUB = 4
    JNZ = 5
    RESIZE = 6
    COPY_STRING = 7
    WAIT = 8
    SIGNAL = 9
    IO_GEN_SLEEP = 10
    IO_STDIN_READ = 11
    IO_STDOUT_WRITE = 12
    IO_FS_CREATE = 13
    IO_FS_DELETE = 14
    IO_FS_TRUNCATE = 15
    IO_FS_WRITE = 16
    IO_FS_READ = 17
    EXIT_OS = 18


@dataclass(frozen=True)
class AccessData:
    """A chunk of physical memory: how many bytes at which address."""

    size: int
    physical_address: int


class ConnectionClosed(ConnectionError):
    """The peer closed the connection before a full message arrived."""


class PayloadWriter:
    """Builds a packet payload field by field."""

    def __init__(self):
        self._data = bytearray()

    def _pack(self, fmt: str, value: int) -> "PayloadWriter":
        try:
            self._data += struct.pack(fmt, value)
        except struct.error as exc:
            raise ValueError(f"cannot encode {value!r}: {exc}") from exc
        return self

    def add_int(self, value: int) -> "PayloadWriter":
        return self._pack("<i", value)

    def add_uint8(self, value: int) -> "PayloadWriter":
        return self._pack("<B", value)

    def add_uint32(self, value: int) -> "PayloadWriter":
        return self._pack("<I", value)

    def add_string(self, text: str) -> "PayloadWriter":
        """Append the string's bytes and a NUL terminator."""
        self._data += text.encode() + b"\0"
        return self

    def add_bytes(self, data: bytes) -> "PayloadWriter":
        self._data += data
        return self

    def getvalue(self) -> bytes:
        return bytes(self._data)


class PayloadReader:
    """Reads payload fields in the order they were written."""

    def __init__(self, data: bytes):
        self._data = bytes(data)
        self._offset = 0

    def read_bytes(self, count: int) -> bytes:
        if count < 0 or count > self.remaining():
            raise ValueError(
                f"payload truncated: wanted {count} bytes, {self.remaining()} left"
            )
        chunk = self._data[self._offset:self._offset + count]
        self._offset += count
        return chunk

    def _unpack(self, fmt: str) -> int:
        raw = self.read_bytes(struct.calcsize(fmt))
        return struct.unpack(fmt, raw)[0]

    def read_int(self) -> int:
        return self._unpack("<i")

    def read_uint8(self) -> int:
        return self._unpack("<B")

    def read_uint32(self) -> int:
        return self._unpack("<I")

    def read_string(self, length: int) -> str:
        """Read a field of ``length`` bytes and return the text before its NUL."""
        raw = self.read_bytes(length)
        return raw.split(b"\0", 1)[0].decode()

    def remaining(self) -> int:
        return len(self._data) - self._offset


@dataclass
class Packet:
    """An operation code with its payload."""

    op_code: int
    payload: bytes = b""

    def serialize(self) -> bytes:
        return _HEADER.pack(int(self.op_code), len(self.payload)) + self.payload


def recv_exact(sock: socket.socket, size: int) -> bytes:
    """Receive exactly ``size`` bytes or raise ConnectionClosed."""
    buffer = bytearray()
    while len(buffer) < size:
        chunk = sock.recv(size - len(buffer))
        if not chunk:
            raise ConnectionClosed(
                f"connection closed after {len(buffer)} of {size} bytes"
            )
        buffer += chunk
    return bytes(buffer)


def _send_int(sock: socket.socket, value: int) -> None:
    sock.sendall(_INT.pack(value))


def _recv_int(sock: socket.socket) -> int:
    return _INT.unpack(recv_exact(sock, _INT.size))[0]


def send_packet(sock: socket.socket, packet: Packet) -> None:
    sock.sendall(packet.serialize())


def receive_operation(sock: socket.socket) -> int:
    """Read the next operation code; close the socket if the peer is gone."""
    try:
        return _recv_int(sock)
    except OSError as exc:
        sock.close()
        raise ConnectionClosed("peer disconnected") from exc


def receive_payload(sock: socket.socket) -> PayloadReader:
    """Read a size-prefixed payload and return a reader over it."""
    size = _recv_int(sock)
    if size < 0:
        raise ValueError(f"invalid payload size {size}")
    return PayloadReader(recv_exact(sock, size))


def send_presentation(sock: socket.socket, module_name: str) -> None:
    """Introduce this module to a server by name."""
    writer = PayloadWriter()
    writer.add_int(len(module_name.encode()) + 1)
    writer.add_string(module_name)
    send_packet(sock, Packet(OpCode.HANDSHAKE, writer.getvalue()))


def send_handshake(sock: socket.socket, module_name: str, logger: logging.Logger) -> bool:
    """Present ourselves and report whether the server accepted us."""
    send_presentation(sock, module_name)
    reply = _recv_int(sock)
    if reply == 0:
        logger.info("Handshake succeeded: connection with server established")
        return True
    logger.error("Handshake failed: no connection established with server")
    return False


def receive_handshake(sock: socket.socket, logger: logging.Logger) -> str | None:
    """Answer a client's handshake; return its module name, or None if rejected."""
    operation = receive_operation(sock)
    if operation == OpCode.HANDSHAKE:
        _send_int(sock, 0)
        return receive_presentation(sock, logger)
    _send_int(sock, -1)
    logger.error("Could not establish communication with the client")
    return None


def receive_presentation(sock: socket.socket, logger: logging.Logger) -> str:
    """Read a client's presentation payload and return its module name."""
    reader = receive_payload(sock)
    length = reader.read_int()
    module = reader.read_string(length)
    logger.info("Handshake succeeded: communication established with %s", module)
    return module