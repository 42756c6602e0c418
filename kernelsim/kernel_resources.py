"""Resources that processes acquire with WAIT and release with SIGNAL."""

from __future__ import annotations

from typing import Sequence

from kernelsim.kernel_queues import transfer
from kernelsim.kernel_state import Kernel, Resource, UsedResource


def build_resources(names: Sequence[str], instances: Sequence[int]) -> dict[str, Resource]:
    """Create one resource per name with its number of free instances."""
    if len(names) != len(instances):
        raise ValueError(f"{len(names)} resources but {len(instances)} instance counts")
    return {name: Resource(name, int(count)) for name, count in zip(names, instances)}


def resource_exists(kernel: Kernel, name: str) -> bool:
    with kernel.resources_lock:
        return name in kernel.resources


def add_instance(kernel: Kernel, pid: int, resource: Resource) -> None:
    """Record that process ``pid`` holds one instance of ``resource``."""
    with kernel.used_resources_lock:
        kernel.used_resources.append(UsedResource(pid, resource.name))


def remove_instance(kernel: Kernel, pid: int, resource: Resource) -> bool:
    """Give back one instance of ``resource`` held by ``pid``.

    The instance count grows even when no earlier WAIT was recorded.
    Returns whether a held instance was found.
    """
    found = False
    wanted = resource.name.upper()
    with kernel.used_resources_lock:
        for position, used in enumerate(kernel.used_resources):
            if used.pid == pid and used.name.upper() == wanted:
                del kernel.used_resources[position]
                found = True
                break
    with resource.lock:
        resource.instances += 1
    return found


def release_resources(kernel: Kernel, pid: int) -> None:
    """Release every instance held by ``pid``, handing each to a waiting process if any."""
    with kernel.used_resources_lock:
        held = [used for used in kernel.used_resources if used.pid == pid]
        kernel.used_resources = [used for used in kernel.used_resources if used.pid != pid]
        for used in held:
            resource = kernel.resources[used.name]
            if len(resource.queue):
                waiting = resource.queue[0]
                add_instance(kernel, waiting.pid, resource)
                transfer(kernel, waiting.pid, resource.queue, kernel.ready_queue)
            else:
                with resource.lock:
                    resource.instances += 1


def blocked_by_resources(kernel: Kernel) -> list[tuple[str, int]]:
    """List (resource name, pid) for every blocked process, in configuration order."""
    blocked = []
    for name in kernel.config.resources:
        resource = kernel.resources[name]
        blocked.extend((resource.name, pcb.pid) for pcb in resource.queue)
    return blocked