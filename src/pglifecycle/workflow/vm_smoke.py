"""VM smoke run: private subnet + virtual machine + SSH round trip."""

import asyncio
import time
from typing import Awaitable, Callable

from ..adapters.base import ResourceClient
from ..core.config import VmSmokeConfig
from ..core.policies import ssh_reachable, wait_for
from ..core.tracker import ResourceTracker
from ..utils.logging_utils import get_logger

logger = get_logger("workflow.vm_smoke")


async def run_vm_smoke(
    config: VmSmokeConfig,
    client: ResourceClient,
    *,
    clock: Callable[[], float] = time.monotonic,
    sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
) -> str:
    """Create a subnet and a VM on it, wait for SSH, run ``uptime``.

    Returns:
        The ``uptime`` output.
    """
    subnet, vm = config.subnet, config.vm

    async with ResourceTracker(client) as tracker:
        tracker.track(subnet, f"private subnet {subnet}")
        await client.create_subnet(subnet)

        tracker.track(vm, f"VM {vm}")
        await client.create_vm(
            vm,
            size=config.size,
            storage_size=config.storage,
            boot_image=config.boot_image,
            subnet=subnet.name,
            unix_user=config.unix_user,
            public_key=config.public_key,
        )

        await wait_for(ssh_reachable(client, vm), clock=clock, sleep=sleep)

        uptime = (await client.ssh(vm, "uptime")).strip()
        logger.info("%s: %s", vm, uptime)

        await tracker.release(vm)
        await tracker.release(subnet)

    return uptime
