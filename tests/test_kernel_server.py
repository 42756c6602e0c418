import logging
import socket
import struct
import threading
import time

import pytest

from kernelsim.kernel_io import gen_sleep_packet
from kernelsim.kernel_server import (
    connect_dispatch,
    connect_interrupt,
    connect_memory,
    establish_connections,
    process_requests,
    receive_io_handshake,
    receive_io_presentation,
    register_interface,
    start_kernel_server,
    wait_for_io_devices,
)
from kernelsim.kernel_state import IoInterface, IoRequest, Kernel, KernelConfig
from kernelsim.net import accept_client, start_server
from kernelsim.protocol import OpCode, Packet, PayloadWriter, receive_handshake, recv_exact

LOGGER = logging.getLogger("kernelsim-server-test")


def _kernel(port="0"):
    config = KernelConfig(
        kernel_ip="127.0.0.1",
        listen_port="0",
        memory_ip="127.0.0.1",
        memory_port=port,
        cpu_ip="127.0.0.1",
        cpu_dispatch_port=port,
        cpu_interrupt_port=port,
        algorithm="FIFO",
        quantum=1000,
        resources=[],
        resource_instances=[],
        multiprogramming=1,
    )
    return Kernel(config, LOGGER, LOGGER)


def _pair():
    a, b = socket.socketpair()
    a.settimeout(5)
    b.settimeout(5)
    return a, b


def _wait_for(predicate, timeout=5.0):
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        if predicate():
            return True
        time.sleep(0.01)
    return predicate()


def _presentation_payload(name, kind):
    writer = PayloadWriter()
    writer.add_int(len(name) + 1).add_string(name)
    writer.add_int(len(kind) + 1).add_string(kind)
    return writer.getvalue()


def _fake_server(count):
    server = start_server("127.0.0.1", 0)
    names = []

    def accept_all():
        for _ in range(count):
            client = accept_client(server)
            client.settimeout(5)
            names.append(receive_handshake(client, LOGGER))

    thread = threading.Thread(target=accept_all, daemon=True)
    thread.start()
    return server, thread, names


def _unregister(kernel, interface):
    with kernel.interfaces_lock:
        kernel.interfaces.pop(interface.name, None)
    interface.pending.release()


def test_start_kernel_server_accepts_connections():
    kernel = _kernel()
    server = start_kernel_server(kernel)
    try:
        assert kernel.server_socket is server
        port = server.getsockname()[1]
        with socket.create_connection(("127.0.0.1", port), timeout=5) as client:
            assert client.getpeername()[1] == port
    finally:
        server.close()


def test_start_kernel_server_with_bad_address_raises():
    kernel = _kernel()
    kernel.config.kernel_ip = "256.0.0.1"
    with pytest.raises(OSError):
        start_kernel_server(kernel)
    assert kernel.server_socket is None


def test_connect_memory_presents_kernel():
    server, thread, names = _fake_server(1)
    try:
        kernel = _kernel(str(server.getsockname()[1]))
        sock = connect_memory(kernel)
        thread.join(timeout=5)
        assert kernel.memory_socket is sock
        assert names == ["KERNEL"]
    finally:
        server.close()


def test_connect_dispatch_and_interrupt_set_sockets():
    server, thread, names = _fake_server(2)
    try:
        kernel = _kernel(str(server.getsockname()[1]))
        dispatch = connect_dispatch(kernel)
        interrupt = connect_interrupt(kernel)
        thread.join(timeout=5)
        assert kernel.dispatch_socket is dispatch
        assert kernel.interrupt_socket is interrupt
        assert names == ["KERNEL", "KERNEL"]
    finally:
        server.close()


def test_establish_connections_opens_three_connections():
    server, thread, names = _fake_server(3)
    try:
        kernel = _kernel(str(server.getsockname()[1]))
        establish_connections(kernel)
        thread.join(timeout=5)
        sockets = {kernel.memory_socket, kernel.dispatch_socket, kernel.interrupt_socket}
        assert len(sockets) == 3
        assert names == ["KERNEL"] * 3
    finally:
        server.close()


def test_connect_to_closed_port_raises():
    probe = start_server("127.0.0.1", 0)
    port = probe.getsockname()[1]
    probe.close()
    kernel = _kernel(str(port))
    with pytest.raises(OSError):
        connect_memory(kernel)
    assert kernel.memory_socket is None


def test_receive_io_handshake_rejects_other_operations():
    kernel = _kernel()
    kernel_side, device_side = _pair()
    device_side.sendall(struct.pack("<i", OpCode.INSTRUCTION))
    assert receive_io_handshake(kernel, kernel_side) is None
    assert recv_exact(device_side, 4) == struct.pack("<i", -1)
    assert kernel.interfaces == {}


def test_receive_io_handshake_registers_device():
    kernel = _kernel()
    kernel_side, device_side = _pair()
    device_side.sendall(
        Packet(OpCode.HANDSHAKE, _presentation_payload("disk", "DIALFS")).serialize()
    )
    name = receive_io_handshake(kernel, kernel_side)
    try:
        assert name == "disk"
        assert recv_exact(device_side, 4) == struct.pack("<i", 0)
        assert kernel.interfaces["disk"].interface_type == "DIALFS"
    finally:
        _unregister(kernel, kernel.interfaces["disk"])


def test_receive_io_presentation_returns_name():
    kernel = _kernel()
    kernel_side, device_side = _pair()
    payload = _presentation_payload("keyboard", "STDIN")
    device_side.sendall(struct.pack("<i", len(payload)) + payload)
    name = receive_io_presentation(kernel, kernel_side)
    interface = kernel.interfaces[name]
    try:
        assert name == "keyboard"
        assert interface.sock is kernel_side
        assert interface.worker.is_alive()
    finally:
        _unregister(kernel, interface)


def test_register_interface_stores_device():
    kernel = _kernel()
    kernel_side, _ = _pair()
    interface = register_interface(kernel, "printer", "STDOUT", kernel_side)
    try:
        assert kernel.interfaces["printer"] is interface
        assert interface.name == "printer"
        assert interface.interface_type == "STDOUT"
    finally:
        _unregister(kernel, interface)
    interface.worker.join(timeout=5)
    assert not interface.worker.is_alive()


def test_process_requests_sends_pending_request():
    kernel = _kernel()
    kernel_side, device_side = _pair()
    interface = IoInterface(name="sleeper", interface_type="GENERICA", sock=kernel_side)
    kernel.interfaces["sleeper"] = interface
    pcb = kernel.create_pcb("prog")
    interface.blocked.push(pcb)
    request = IoRequest(gen_sleep_packet, work_units=4)
    kernel.io_requests[pcb.pid] = request
    interface.pending.release()

    worker = threading.Thread(target=process_requests, args=(kernel, interface), daemon=True)
    worker.start()

    expected = gen_sleep_packet(request, pcb.pid).serialize()
    assert recv_exact(device_side, len(expected)) == expected
    assert _wait_for(lambda: pcb.pid not in kernel.io_requests)
    assert interface.in_use.locked()

    _unregister(kernel, interface)
    worker.join(timeout=5)
    assert not worker.is_alive()