"""Moving processes between state queues."""

from __future__ import annotations

from kernelsim.kernel_state import Kernel, ProcessQueue

_READY_NAMES = ("READY", "READY +")


def log_queue(kernel: Kernel, queue: ProcessQueue) -> None:
    """Log the pids currently in ``queue``."""
    kernel.log.info("Queue %s: [%s]", queue.name, queue.format_pids())


def transfer(kernel: Kernel, pid: int, origin: ProcessQueue, destination: ProcessQueue) -> None:
    """Move process ``pid`` from ``origin`` to ``destination`` and signal the schedulers."""
    pcb = origin.take(pid)
    if pcb is not None:
        destination.push(pcb)

    kernel.log.info(
        "PID: <%d> - Previous State: < %s > - Current State: < %s >",
        pid,
        origin.name,
        destination.name,
    )

    target = destination.name.upper()
    if target in _READY_NAMES:
        log_queue(kernel, kernel.ready_queue)
        if kernel.is_vrr():
            log_queue(kernel, kernel.ready_plus_queue)
        kernel.process_ready.release()

    if target == "EXIT":
        kernel.exit_pending.release()