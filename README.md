# kernelsim

kernelsim is the kernel of a small teaching operating system. It keeps process
control blocks in NEW, READY, EXEC, BLOCKED and EXIT queues. It schedules them
with FIFO, Round Robin (RR) or Virtual Round Robin (VRR), with a configurable
degree of multiprogramming. It tracks shared resources through WAIT and SIGNAL,
and it forwards I/O requests to connected I/O interfaces.

The kernel talks over TCP to three kinds of peer:

- a memory module, which loads a process's program and frees it when the process ends;
- a CPU, through a dispatch connection (execution contexts) and an interrupt connection;
- any number of I/O interfaces of type `GENERICA`, `STDIN`, `STDOUT` or `DIALFS`,
  which connect to the kernel's own listening port.

## What this package does not include

This package is the kernel alone. It has no memory module, no CPU and no I/O
interface programs. The kernel connects to memory and to both CPU ports when it
starts, and it stops with an error if any of those connections fails. You must
run those peers separately. They must use the wire format in `kernelsim.protocol`.

## Installation

```
pip install .
```

## Running

```
kernelsim path/to/kernel.config
```

The command takes the configuration file path as its first argument. On startup it:

1. starts listening for I/O interfaces on `IP_KERNEL:PUERTO_ESCUCHA`;
2. connects to memory, then to the CPU interrupt port, then to the CPU dispatch port, and sends each a `KERNEL` handshake;
3. starts accepting I/O interfaces in the background;
4. starts the short-term and long-term schedulers;
5. reads commands from the console until input ends.

If the path is missing or the configuration cannot be read, the command exits with status 1.

The kernel writes two log files in the current directory:

- `kernel_debug.log`, which is also echoed to standard output;
- `kernel.log`, which holds connection and scheduler details.

### Configuration

The configuration file holds `KEY=VALUE` lines. The kernel skips blank lines
and lines that start with `#`. Array values are written as `[a, b, c]`.

```
IP_KERNEL=127.0.0.1
PUERTO_ESCUCHA=8003
IP_MEMORIA=127.0.0.1
PUERTO_MEMORIA=8002
IP_CPU=127.0.0.1
PUERTO_CPU_DISPATCH=8006
PUERTO_CPU_INTERRUPT=8007
ALGORITMO_PLANIFICACION=VRR
QUANTUM=2000
RECURSOS=[RA,RB,RC]
INSTANCIAS_RECURSOS=[1,2,1]
GRADO_MULTIPROGRAMACION=10
```

Notes on the keys:

- `ALGORITMO_PLANIFICACION` is `FIFO`, `RR` or `VRR`, in any case. With any other value, nothing is dispatched.
- `QUANTUM` is in milliseconds.
- `RECURSOS` and `INSTANCIAS_RECURSOS` must have the same number of items.

## Console commands

Commands are read at the `> ` prompt and are not case-sensitive. Arguments are
separated by single spaces.

| Command | Effect |
| --- | --- |
| `INICIAR_PROCESO <path>` | create a process for the program at `<path>` and queue it in NEW |
| `FINALIZAR_PROCESO <pid>` | send the process to EXIT; a running process is interrupted |
| `DETENER_PLANIFICACION` | pause scheduling |
| `INICIAR_PLANIFICACION` | resume scheduling |
| `MULTIPROGRAMACION <n>` | change the degree of multiprogramming; lowering it waits for free slots |
| `PROCESO_ESTADO` | print the processes in each queue and the finished ones |
| `EJECUTAR_SCRIPT <path>` | run each line of a script file as a command |

`FINALIZAR_PROCESO` looks for the process in EXEC, NEW, READY and the resource
queues. It does not look in the queues of processes blocked on I/O.

`EJECUTAR_SCRIPT` resolves `<path>` under `/home/utnso/c-comenta-pruebas` and
pauses scheduling while the script runs. A script cannot start another script.

## Using it as a library

- `kernelsim.protocol` holds the wire format:
  - `Packet` is a 32-bit operation code, a 32-bit payload size and the payload, with integers little-endian.
  - `PayloadWriter` and `PayloadReader` build and read payloads.
  - `OpCode`, `EvictionReason` and `InstructionCode` hold the numeric codes.
  - `send_packet`, `receive_operation` and `receive_payload` move packets over sockets.
- `kernelsim.config` holds `parse_config`, `load_config` and `Config`.
- `kernelsim.kernel_state` holds `read_kernel_config` and `Kernel`. A `Kernel` keeps the queues (`new_queue`, `ready_queue`, `ready_plus_queue`, `exec_queue`, `exit_queue`), resources and connected interfaces.
- `kernelsim.kernel_console` has `execute_command(kernel, line)`, which runs one console line. It also has `run_script(kernel, path, base_dir)` and `process_states(kernel)`, which returns the text that `PROCESO_ESTADO` prints.
- `kernelsim.kernel_main.build_kernel(config_path)` reads a configuration and returns a ready `Kernel`.

```python
from kernelsim.kernel_main import build_kernel
from kernelsim.kernel_console import execute_command, process_states

kernel = build_kernel("kernel.config")
execute_command(kernel, "INICIAR_PROCESO programs/sample.txt")
print(process_states(kernel))
```