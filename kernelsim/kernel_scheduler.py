"""Short- and long-term schedulers, quantum control and the exit-queue cleaner."""

from __future__ import annotations

import threading
import time

from kernelsim.kernel_cpu import send_context, send_interrupt
from kernelsim.kernel_eviction import return_from_cpu
from kernelsim.kernel_memory import finish_process, receive_confirmation, send_process_path
from kernelsim.kernel_queues import transfer
from kernelsim.kernel_resources import release_resources
from kernelsim.kernel_state import Algorithm, Kernel, Pcb, parse_algorithm
from kernelsim.net import spawn_handler
from kernelsim.protocol import EvictionReason


# ---------------------------------------------------------------- short term


def _pick_next(kernel: Kernel, algorithm: Algorithm) -> tuple[Pcb, str]:
    """Take the next process to run and the name of the queue it came from."""
    if algorithm is Algorithm.VRR and len(kernel.ready_plus_queue):
        return kernel.ready_plus_queue.pop(), kernel.ready_plus_queue.name
    pcb = kernel.ready_queue.pop()
    if algorithm is Algorithm.VRR:
        pcb.quantum = kernel.config.quantum
    return pcb, kernel.ready_queue.name


def dispatch_next(kernel: Kernel) -> Pcb | None:
    """Run the next ready process on the CPU until the CPU hands it back.

    Returns the dispatched process, or None when the configured algorithm
    is unknown and nothing is dispatched.
    """
    algorithm = parse_algorithm(kernel.config.algorithm)
    if algorithm is Algorithm.ERROR:
        return None

    pcb, origin = _pick_next(kernel, algorithm)
    kernel.exec_queue.push(pcb)
    kernel.log.info(
        "PID: <%d> - Previous State: < %s > - Current State: < EXEC >", pcb.pid, origin
    )

    if algorithm in (Algorithm.RR, Algorithm.VRR):
        kernel.quantum_expired = False
        kernel.quantum_started_at = None
        kernel.quantum_cancel.clear()
        send_context(kernel, pcb)
        spawn_handler(start_quantum, kernel, pcb.pid)
    else:
        send_context(kernel, pcb)

    return_from_cpu(kernel, pcb)
    return pcb


def short_term_scheduler(kernel: Kernel) -> None:
    """Dispatch a process each time one becomes ready."""
    kernel.debug_log.info("Scheduling algorithm: < %s >", kernel.config.algorithm)
    while True:
        kernel.process_ready.acquire()
        dispatch_next(kernel)


def start_quantum(kernel: Kernel, pid: int) -> bool:
    """Time the quantum of running process ``pid``.

    Asks the CPU to evict it when the quantum runs out.  Returns False if the
    quantum was cancelled first or the process is no longer running.
    """
    pcb = next((candidate for candidate in kernel.exec_queue if candidate.pid == pid), None)
    if pcb is None:
        return False
    kernel.debug_log.info("Process < %d > starts its Quantum", pid)
    kernel.quantum_started_at = time.monotonic()
    if kernel.quantum_cancel.wait(max(pcb.quantum, 0) / 1000):
        return False
    kernel.quantum_expired = True
    send_interrupt(kernel, EvictionReason.END_OF_QUANTUM)
    return True


# ---------------------------------------------------------------- long term


def admit_next(kernel: Kernel) -> bool:
    """Ask memory to load the first NEW process and move it to READY.

    Returns False if memory could not create it; the process then goes to EXIT.
    """
    pcb = kernel.new_queue[0]
    kernel.wait_if_paused()
    send_process_path(kernel, pcb.path, pcb.pid)
    if not receive_confirmation(kernel, pcb.pid):
        return False
    transfer(kernel, pcb.pid, kernel.new_queue, kernel.ready_queue)
    return True


def long_term_scheduler(kernel: Kernel) -> None:
    """Admit new processes while the multiprogramming level allows it.

    Stops when memory fails to create a process.
    """
    spawn_handler(clean_exit_queue, kernel)
    while True:
        kernel.process_loaded.acquire()
        kernel.multiprogramming.acquire()
        if not admit_next(kernel):
            kernel.debug_log.error("Could not create the process")
            return


def _clean_one(kernel: Kernel) -> int:
    pcb = kernel.exit_queue.pop()
    finish_process(kernel, pcb.pid)
    release_resources(kernel, pcb.pid)
    kernel.finished_pids.append(pcb.pid)
    kernel.multiprogramming.release()
    return pcb.pid


def clean_exit_queue(kernel: Kernel) -> None:
    """Release memory and resources of every process that reaches EXIT."""
    while True:
        kernel.exit_pending.acquire()
        _clean_one(kernel)


def start_scheduling(kernel: Kernel) -> tuple[threading.Thread, threading.Thread]:
    """Start the short- and long-term schedulers in background threads."""
    short_term = spawn_handler(short_term_scheduler, kernel)
    kernel.debug_log.info("Short-term scheduler started")
    long_term = spawn_handler(long_term_scheduler, kernel)
    kernel.debug_log.info("Long-term scheduler started")
    return short_term, long_term