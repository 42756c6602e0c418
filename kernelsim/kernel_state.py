"""Kernel configuration, process control blocks, state queues and shared state."""

from __future__ import annotations

import enum
import logging
import socket
import threading
from dataclasses import dataclass, field
from typing import Callable, Iterator

from kernelsim.config import Config
from kernelsim.protocol import AccessData, Packet


class Algorithm(enum.IntEnum):
    """Short-term scheduling algorithms."""

    FIFO = 1
    RR = 2
    VRR = 3
    ERROR = 4


def parse_algorithm(name: str) -> Algorithm:
    """Map an algorithm name, in any case, to its value; unknown names give ERROR."""
    upper = name.upper()
    if upper in ("FIFO", "RR", "VRR"):
        return Algorithm[upper]
    return Algorithm.ERROR


@dataclass
class KernelConfig:
    """Settings the kernel reads from its configuration file."""

    kernel_ip: str
    listen_port: str
    memory_ip: str
    memory_port: str
    cpu_ip: str
    cpu_dispatch_port: str
    cpu_interrupt_port: str
    algorithm: str
    quantum: int
    resources: list[str]
    resource_instances: list[int]
    multiprogramming: int


def read_kernel_config(config: Config) -> KernelConfig:
    """Build the kernel settings from a parsed configuration."""
    return KernelConfig(
        kernel_ip=config.text("IP_KERNEL"),
        listen_port=config.text("PUERTO_ESCUCHA"),
        memory_ip=config.text("IP_MEMORIA"),
        memory_port=config.text("PUERTO_MEMORIA"),
        cpu_ip=config.text("IP_CPU"),
        cpu_dispatch_port=config.text("PUERTO_CPU_DISPATCH"),
        cpu_interrupt_port=config.text("PUERTO_CPU_INTERRUPT"),
        algorithm=config.text("ALGORITMO_PLANIFICACION"),
        quantum=config.integer("QUANTUM"),
        resources=config.array("RECURSOS"),
        resource_instances=[int(item) for item in config.array("INSTANCIAS_RECURSOS")],
        multiprogramming=config.integer("GRADO_MULTIPROGRAMACION"),
    )


@dataclass
class CpuRegisters:
    """General purpose registers of the simulated CPU."""

    ax: int = 0
    bx: int = 0
    cx: int = 0
    dx: int = 0
    eax: int = 0
    ebx: int = 0
    ecx: int = 0
    edx: int = 0
    si: int = 0
    di: int = 0


@dataclass
class Pcb:
    """Process control block."""

    pid: int
    path: str
    quantum: int
    pc: int = 0
    registers: CpuRegisters = field(default_factory=CpuRegisters)


@dataclass(eq=False)
class ProcessQueue:
    """A named, thread-safe queue of process control blocks."""

    name: str
    _items: list[Pcb] = field(default_factory=list, repr=False)
    lock: threading.RLock = field(default_factory=threading.RLock, repr=False)

    def push(self, pcb: Pcb) -> None:
        with self.lock:
            self._items.append(pcb)

    def pop(self) -> Pcb:
        """Remove and return the first process."""
        with self.lock:
            if not self._items:
                raise IndexError(f"queue {self.name} is empty")
            return self._items.pop(0)

    def take(self, pid: int) -> Pcb | None:
        """Remove and return the process with ``pid``, or None if absent."""
        with self.lock:
            for position, pcb in enumerate(self._items):
                if pcb.pid == pid:
                    return self._items.pop(position)
        return None

    def pids(self) -> list[int]:
        with self.lock:
            return [pcb.pid for pcb in self._items]

    def format_pids(self) -> str:
        """Render the pids as `` 1  2 `` for log lines."""
        return "".join(f" {pid} " for pid in self.pids())

    def __len__(self) -> int:
        with self.lock:
            return len(self._items)

    def __iter__(self) -> Iterator[Pcb]:
        with self.lock:
            return iter(list(self._items))

    def __getitem__(self, index: int) -> Pcb:
        with self.lock:
            return self._items[index]


@dataclass
class IoRequest:
    """A pending I/O operation for one process, with the packet it becomes."""

    build_packet: Callable[["IoRequest", int], Packet]
    work_units: int = 0
    read_size: int = 0
    addresses: list[AccessData] = field(default_factory=list)
    file_name: str = ""
    operation: int = 0
    size_register: int = 0
    pointer_register: int = 0


@dataclass(eq=False)
class IoInterface:
    """A connected I/O device and the processes blocked on it."""

    name: str
    interface_type: str
    sock: socket.socket | None = None
    blocked: ProcessQueue = field(default_factory=lambda: ProcessQueue("BLOCKED"))
    pending: threading.Semaphore = field(default_factory=lambda: threading.Semaphore(0))
    in_use: threading.Lock = field(default_factory=threading.Lock)
    worker: threading.Thread | None = None


@dataclass(eq=False)
class Resource:
    """A resource with free instances and a queue of waiting processes."""

    name: str
    instances: int
    queue: ProcessQueue = field(default_factory=lambda: ProcessQueue("BLOCKED"))
    lock: threading.Lock = field(default_factory=threading.Lock, repr=False)


@dataclass(frozen=True)
class UsedResource:
    """One instance of a resource held by a process."""

    pid: int
    name: str


def _resources_from_config(config: KernelConfig) -> dict[str, Resource]:
    if len(config.resources) != len(config.resource_instances):
        raise ValueError(
            f"{len(config.resources)} resources but "
            f"{len(config.resource_instances)} instance counts"
        )
    return {
        name: Resource(name, instances)
        for name, instances in zip(config.resources, config.resource_instances)
    }


class Kernel:
    """All state shared by the kernel's schedulers, console and connections."""

    def __init__(self, config: KernelConfig, log: logging.Logger, debug_log: logging.Logger):
        self.config = config
        self.log = log
        self.debug_log = debug_log

        self.server_socket: socket.socket | None = None
        self.memory_socket: socket.socket | None = None
        self.dispatch_socket: socket.socket | None = None
        self.interrupt_socket: socket.socket | None = None

        self.new_queue = ProcessQueue("NEW")
        self.ready_queue = ProcessQueue("READY")
        self.ready_plus_queue = ProcessQueue("READY +")
        self.exec_queue = ProcessQueue("EXEC")
        self.exit_queue = ProcessQueue("EXIT")
        self.finished_pids: list[int] = []

        self.interfaces: dict[str, IoInterface] = {}
        self.interfaces_lock = threading.Lock()
        self.io_requests: dict[int, IoRequest] = {}
        self.io_requests_lock = threading.Lock()

        self.resources = _resources_from_config(config)
        self.resources_lock = threading.Lock()
        self.used_resources: list[UsedResource] = []
        self.used_resources_lock = threading.RLock()
        self.blocking_resource: str | None = None

        self.process_ready = threading.Semaphore(0)
        self.process_loaded = threading.Semaphore(0)
        self.multiprogramming = threading.Semaphore(config.multiprogramming)
        self.exit_pending = threading.Semaphore(0)

        self.paused = False
        self.blocked_count = 0
        self._pause_lock = threading.Lock()
        self._resume_signal = threading.Semaphore(0)

        self._next_pid = 0
        self._pid_lock = threading.Lock()

        self.quantum_expired = False
        self.quantum_started_at: float | None = None
        self.quantum_cancel = threading.Event()

    def assign_pid(self) -> int:
        """Return a fresh process id."""
        with self._pid_lock:
            pid = self._next_pid
            self._next_pid += 1
            return pid

    def create_pcb(self, path: str) -> Pcb:
        """Create a control block with a fresh pid and the configured quantum."""
        return Pcb(pid=self.assign_pid(), path=path, quantum=self.config.quantum)

    def is_vrr(self) -> bool:
        return parse_algorithm(self.config.algorithm) is Algorithm.VRR

    def uses_quantum(self) -> bool:
        return parse_algorithm(self.config.algorithm) in (Algorithm.RR, Algorithm.VRR)

    def pause(self) -> bool:
        """Pause scheduling; return False if it was already paused."""
        with self._pause_lock:
            if self.paused:
                print("Scheduling is already paused")
                return False
            self.paused = True
            return True

    def resume(self) -> bool:
        """Resume scheduling and wake every thread held by the pause."""
        with self._pause_lock:
            if not self.paused:
                return False
            self.paused = False
            waiting = self.blocked_count
            self.blocked_count = 0
        if waiting:
            self._resume_signal.release(waiting)
        return True

    def wait_if_paused(self) -> None:
        """Block the calling thread while scheduling is paused."""
        with self._pause_lock:
            if not self.paused:
                return
            self.blocked_count += 1
        self._resume_signal.acquire()

    def terminate_in(self, queue: ProcessQueue, pid: int) -> bool:
        """Move process ``pid`` from ``queue`` to EXIT; return whether it was found."""
        pcb = queue.take(pid)
        if pcb is None:
            return False
        self.exit_queue.push(pcb)
        self.log.info(
            "PID: <%d> - Previous State: < %s > - Current State: < EXIT >", pid, queue.name
        )
        self.exit_pending.release()
        return True