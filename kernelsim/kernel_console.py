"""The kernel's interactive console and the script files it can run."""

from __future__ import annotations

import enum
from pathlib import Path
from typing import Callable

from kernelsim.kernel_cpu import send_interrupt
from kernelsim.kernel_resources import blocked_by_resources
from kernelsim.kernel_state import Kernel, Pcb, ProcessQueue
from kernelsim.protocol import EvictionReason

SCRIPT_DIR = Path("/home/utnso/c-comenta-pruebas")


class Command(enum.Enum):
    """Console commands, named as the user types them."""

    EJECUTAR_SCRIPT = "EJECUTAR_SCRIPT"
    INICIAR_PROCESO = "INICIAR_PROCESO"
    FINALIZAR_PROCESO = "FINALIZAR_PROCESO"
    DETENER_PLANIFICACION = "DETENER_PLANIFICACION"
    INICIAR_PLANIFICACION = "INICIAR_PLANIFICACION"
    MULTIPROGRAMACION = "MULTIPROGRAMACION"
    PROCESO_ESTADO = "PROCESO_ESTADO"
    UNKNOWN = ""


_BY_NAME = {command.value: command for command in Command if command is not Command.UNKNOWN}


def parse_command(name: str | None) -> Command:
    """Map a command name, in any case, to its command; unknown names give UNKNOWN."""
    if name is None:
        return Command.UNKNOWN
    return _BY_NAME.get(name.upper(), Command.UNKNOWN)


def split_command(line: str) -> list[str]:
    """Split a command line at every single space."""
    return line.split(" ")


# ---------------------------------------------------------------- commands


def create_process(kernel: Kernel, path: str) -> Pcb:
    """Create a process for the program at ``path`` and queue it in NEW."""
    pcb = kernel.create_pcb(path)
    kernel.new_queue.push(pcb)
    kernel.log.info("Process < %d > created in NEW", pcb.pid)
    kernel.process_loaded.release()
    return pcb


def is_running(kernel: Kernel, pid: int) -> bool:
    return any(pcb.pid == pid for pcb in kernel.exec_queue)


def extract_process(kernel: Kernel, pid: int) -> bool:
    """Finish process ``pid`` wherever it is.

    A running process is interrupted; one in NEW, READY or a resource queue
    goes straight to EXIT.  Scheduling is paused meanwhile and resumed after.
    Returns whether the process was found.
    """
    kernel.pause()
    try:
        if is_running(kernel, pid):
            send_interrupt(kernel, EvictionReason.END_OF_PROCESS)
            return True
        queues: list[ProcessQueue] = [kernel.new_queue, kernel.ready_queue]
        queues.extend(kernel.resources[name].queue for name in kernel.config.resources)
        return any(kernel.terminate_in(queue, pid) for queue in queues)
    finally:
        kernel.resume()


def update_multiprogramming(kernel: Kernel, value: int) -> None:
    """Change the multiprogramming level to ``value``.

    Lowering it waits until enough running slots are given back.
    """
    difference = value - kernel.config.multiprogramming
    if difference > 0:
        kernel.multiprogramming.release(difference)
    elif difference < 0:
        for _ in range(-difference):
            kernel.multiprogramming.acquire()
    else:
        print("The value entered equals the current one")
    kernel.config.multiprogramming = value
    kernel.debug_log.info("Multiprogramming level updated to: < %d >", value)


def _queue_lines(queue: ProcessQueue) -> list[str]:
    return [f"\t\tPID: {pcb.pid}" for pcb in queue]


def process_states(kernel: Kernel) -> str:
    """Describe the pids in every state queue and the finished processes."""
    lines = ["NEW queue: "]
    lines += _queue_lines(kernel.new_queue)
    lines.append("READY queue: ")
    lines += _queue_lines(kernel.ready_queue)
    if kernel.is_vrr():
        lines.append("READY + queue: ")
        lines += _queue_lines(kernel.ready_plus_queue)
    lines.append("EXECUTE queue: ")
    lines += _queue_lines(kernel.exec_queue)
    lines.append("BLOCKED queue: ")
    with kernel.interfaces_lock:
        interfaces = list(kernel.interfaces.values())
    for interface in interfaces:
        lines.append(f"\t{interface.name}:")
        lines += _queue_lines(interface.blocked)
    lines += [f"\t{name}: PID: {pid}" for name, pid in blocked_by_resources(kernel)]
    lines.append("EXIT queue: ")
    lines += _queue_lines(kernel.exit_queue)
    lines.append("Finished processes:" + "".join(f" {pid} " for pid in kernel.finished_pids))
    return "\n".join(lines)


def _argument(parts: list[str], command: Command) -> str:
    if len(parts) < 2:
        raise ValueError(f"{command.value} needs an argument")
    return parts[1]


def _int_argument(parts: list[str], command: Command) -> int:
    text = _argument(parts, command)
    try:
        return int(text)
    except ValueError:
        raise ValueError(f"{command.value} needs a number, got {text!r}") from None


def execute_command(kernel: Kernel, line: str, allow_script: bool = True) -> Command:
    """Run one console line and return the command it held.

    Scripts cannot start other scripts: with ``allow_script`` false,
    EJECUTAR_SCRIPT counts as unknown.  A missing or malformed argument
    raises ValueError.
    """
    parts = split_command(line)
    command = parse_command(parts[0])
    if command is Command.EJECUTAR_SCRIPT and not allow_script:
        command = Command.UNKNOWN

    if command is Command.EJECUTAR_SCRIPT:
        print("Executing command: EJECUTAR_SCRIPT")
        run_script(kernel, _argument(parts, command), SCRIPT_DIR)
    elif command is Command.INICIAR_PROCESO:
        create_process(kernel, _argument(parts, command))
    elif command is Command.FINALIZAR_PROCESO:
        extract_process(kernel, _int_argument(parts, command))
    elif command is Command.DETENER_PLANIFICACION:
        kernel.pause()
    elif command is Command.INICIAR_PLANIFICACION:
        kernel.resume()
    elif command is Command.MULTIPROGRAMACION:
        update_multiprogramming(kernel, _int_argument(parts, command))
    elif command is Command.PROCESO_ESTADO:
        print(process_states(kernel))
    else:
        print("The command you entered is not valid")
    return command


def run_script(kernel: Kernel, path: str | Path, base_dir: str | Path) -> list[Command]:
    """Run every line of the script at ``base_dir``/``path`` with scheduling paused."""
    script = Path(base_dir) / path
    with script.open() as handle:
        kernel.pause()
        try:
            executed = []
            for raw in handle:
                line = raw[:-1] if raw.endswith("\n") else raw
                try:
                    executed.append(execute_command(kernel, line, False))
                except ValueError as exc:
                    print(exc)
            return executed
        finally:
            kernel.resume()


def run_console(kernel: Kernel, input_fn: Callable[[str], str] | None = None) -> int:
    """Read and run commands until input ends; return how many lines were read."""
    read = input if input_fn is None else input_fn
    kernel.debug_log.info("Starting console...")
    count = 0
    while True:
        try:
            line = read("> ")
        except EOFError:
            return count
        count += 1
        try:
            execute_command(kernel, line, True)
        except (ValueError, OSError) as exc:
            print(exc)