"""Entry point that starts the kernel."""

from __future__ import annotations

import logging
import sys
from pathlib import Path
from typing import Sequence

from kernelsim.config import config_path_from_args, create_logger, load_config
from kernelsim.kernel_console import run_console
from kernelsim.kernel_scheduler import start_scheduling
from kernelsim.kernel_server import establish_connections, start_kernel_server, wait_for_io_devices
from kernelsim.kernel_state import Kernel, read_kernel_config


def build_kernel(config_path: str | Path) -> Kernel:
    """Read the configuration at ``config_path`` and set up the kernel's state and logs."""
    log = create_logger("kernel_debug.log", "KERNEL", True, logging.DEBUG)
    debug_log = create_logger("kernel.log", "KERNEL", False, logging.DEBUG)
    config = read_kernel_config(load_config(config_path))
    return Kernel(config, log, debug_log)


def _close_sockets(kernel: Kernel) -> None:
    for sock in (
        kernel.server_socket,
        kernel.memory_socket,
        kernel.dispatch_socket,
        kernel.interrupt_socket,
    ):
        if sock is not None:
            sock.close()


def main(argv: Sequence[str] | None = None) -> int:
    """Start the kernel: server, connections, schedulers and console."""
    args = list(sys.argv[1:] if argv is None else argv)
    try:
        config_path = config_path_from_args(args)
        kernel = build_kernel(config_path)
    except (ValueError, KeyError, OSError) as exc:
        print(f"Error: {exc}", file=sys.stderr)
        return 1

    try:
        start_kernel_server(kernel)
        establish_connections(kernel)
        wait_for_io_devices(kernel)
        start_scheduling(kernel)
        run_console(kernel)
    except OSError as exc:
        print(f"Error: {exc}", file=sys.stderr)
        return 1
    finally:
        _close_sockets(kernel)
    return 0


if __name__ == "__main__":
    sys.exit(main())