import logging
import socket
import struct

import pytest

from kernelsim.kernel_console import (
    Command,
    create_process,
    execute_command,
    extract_process,
    is_running,
    parse_command,
    process_states,
    run_console,
    run_script,
    split_command,
    update_multiprogramming,
)
from kernelsim.kernel_state import IoInterface, Kernel, KernelConfig, Pcb
from kernelsim.protocol import EvictionReason


def make_kernel(algorithm="FIFO", multiprogramming=2):
    config = KernelConfig(
        kernel_ip="127.0.0.1",
        listen_port="0",
        memory_ip="127.0.0.1",
        memory_port="0",
        cpu_ip="127.0.0.1",
        cpu_dispatch_port="0",
        cpu_interrupt_port="0",
        algorithm=algorithm,
        quantum=2000,
        resources=["RA", "RB"],
        resource_instances=[1, 1],
        multiprogramming=multiprogramming,
    )
    log = logging.getLogger("test.console")
    return Kernel(config, log, log)


def drain(semaphore):
    count = 0
    while semaphore.acquire(blocking=False):
        count += 1
    return count


def test_parse_command_ignores_case():
    assert parse_command("iniciar_proceso") is Command.INICIAR_PROCESO
    assert parse_command("PROCESO_ESTADO") is Command.PROCESO_ESTADO
    assert parse_command("nope") is Command.UNKNOWN
    assert parse_command("") is Command.UNKNOWN
    assert parse_command(None) is Command.UNKNOWN


def test_split_command():
    assert split_command("INICIAR_PROCESO prog.txt") == ["INICIAR_PROCESO", "prog.txt"]
    assert split_command("") == [""]


def test_create_process_queues_in_new():
    kernel = make_kernel()
    first = create_process(kernel, "a.txt")
    second = create_process(kernel, "b.txt")
    assert kernel.new_queue.pids() == [first.pid, second.pid]
    assert first.pid != second.pid
    assert kernel.new_queue[0].path == "a.txt"
    assert drain(kernel.process_loaded) == 2


def test_is_running():
    kernel = make_kernel()
    kernel.exec_queue.push(Pcb(pid=7, path="x", quantum=1))
    assert is_running(kernel, 7)
    assert not is_running(kernel, 8)


def test_extract_process_from_new_goes_to_exit():
    kernel = make_kernel()
    pcb = create_process(kernel, "a.txt")
    assert extract_process(kernel, pcb.pid) is True
    assert kernel.new_queue.pids() == []
    assert kernel.exit_queue.pids() == [pcb.pid]
    assert drain(kernel.exit_pending) == 1
    assert kernel.paused is False


def test_extract_process_from_resource_queue():
    kernel = make_kernel()
    kernel.resources["RB"].queue.push(Pcb(pid=4, path="x", quantum=1))
    assert extract_process(kernel, 4) is True
    assert len(kernel.resources["RB"].queue) == 0
    assert kernel.exit_queue.pids() == [4]


def test_extract_missing_process():
    kernel = make_kernel()
    assert extract_process(kernel, 99) is False
    assert kernel.exit_queue.pids() == []


def test_extract_running_process_interrupts_cpu():
    kernel = make_kernel()
    ours, cpu = socket.socketpair()
    kernel.interrupt_socket = ours
    try:
        kernel.exec_queue.push(Pcb(pid=3, path="x", quantum=1))
        assert extract_process(kernel, 3) is True
        (reason,) = struct.unpack("<i", cpu.recv(4))
        assert reason == EvictionReason.END_OF_PROCESS
        assert kernel.exec_queue.pids() == [3]
    finally:
        ours.close()
        cpu.close()


def test_update_multiprogramming_raises_level():
    kernel = make_kernel(multiprogramming=1)
    update_multiprogramming(kernel, 3)
    assert kernel.config.multiprogramming == 3
    assert drain(kernel.multiprogramming) == 3


def test_update_multiprogramming_lowers_level():
    kernel = make_kernel(multiprogramming=3)
    update_multiprogramming(kernel, 1)
    assert kernel.config.multiprogramming == 1
    assert drain(kernel.multiprogramming) == 1


def test_process_states_lists_queues():
    kernel = make_kernel()
    create_process(kernel, "a.txt")
    kernel.resources["RA"].queue.push(Pcb(pid=5, path="x", quantum=1))
    interface = IoInterface(name="DISK", interface_type="DIALFS")
    interface.blocked.push(Pcb(pid=6, path="x", quantum=1))
    kernel.interfaces["DISK"] = interface
    kernel.finished_pids.append(9)
    text = process_states(kernel)
    lines = text.splitlines()
    assert lines[lines.index("NEW queue: ") + 1] == "\t\tPID: 0"
    assert "\tRA: PID: 5" in lines
    assert lines[lines.index("\tDISK:") + 1] == "\t\tPID: 6"
    assert lines[-1].endswith(" 9 ")
    assert "READY + queue: " not in lines


def test_process_states_shows_ready_plus_for_vrr():
    kernel = make_kernel(algorithm="VRR")
    assert "READY + queue: " in process_states(kernel).splitlines()


def test_execute_command_pause_and_resume():
    kernel = make_kernel()
    assert execute_command(kernel, "DETENER_PLANIFICACION", True) is Command.DETENER_PLANIFICACION
    assert kernel.paused is True
    assert execute_command(kernel, "iniciar_planificacion", True) is Command.INICIAR_PLANIFICACION
    assert kernel.paused is False


def test_execute_command_unknown():
    kernel = make_kernel()
    assert execute_command(kernel, "HOLA", True) is Command.UNKNOWN
    assert kernel.new_queue.pids() == []


def test_execute_command_rejects_bad_arguments():
    kernel = make_kernel()
    with pytest.raises(ValueError):
        execute_command(kernel, "MULTIPROGRAMACION x", True)
    with pytest.raises(ValueError):
        execute_command(kernel, "INICIAR_PROCESO", True)


def test_execute_command_prints_states(capsys):
    kernel = make_kernel()
    execute_command(kernel, "INICIAR_PROCESO p.txt", True)
    assert execute_command(kernel, "PROCESO_ESTADO", True) is Command.PROCESO_ESTADO
    assert process_states(kernel) in capsys.readouterr().out


def test_run_script(tmp_path):
    kernel = make_kernel()
    script = tmp_path / "script.txt"
    script.write_text("INICIAR_PROCESO a.txt\nINICIAR_PROCESO b.txt\nEJECUTAR_SCRIPT x\n")
    executed = run_script(kernel, "script.txt", tmp_path)
    assert executed == [Command.INICIAR_PROCESO, Command.INICIAR_PROCESO, Command.UNKNOWN]
    assert [pcb.path for pcb in kernel.new_queue] == ["a.txt", "b.txt"]
    assert kernel.paused is False


def test_execute_command_runs_script_by_absolute_path(tmp_path):
    kernel = make_kernel()
    script = tmp_path / "script.txt"
    script.write_text("INICIAR_PROCESO a.txt")
    assert execute_command(kernel, f"EJECUTAR_SCRIPT {script}", True) is Command.EJECUTAR_SCRIPT
    assert [pcb.path for pcb in kernel.new_queue] == ["a.txt"]


def test_run_script_missing_file(tmp_path):
    kernel = make_kernel()
    with pytest.raises(FileNotFoundError):
        run_script(kernel, "missing.txt", tmp_path)
    assert kernel.paused is False


def test_run_console_until_end_of_input():
    kernel = make_kernel()
    lines = iter(["INICIAR_PROCESO a.txt", "MULTIPROGRAMACION bad", "DETENER_PLANIFICACION"])

    def feed(prompt):
        try:
            return next(lines)
        except StopIteration:
            raise EOFError from None

    assert run_console(kernel, feed) == 3
    assert [pcb.path for pcb in kernel.new_queue] == ["a.txt"]
    assert kernel.paused is True