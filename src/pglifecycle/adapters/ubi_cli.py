"""Resource client backed by the ``ubi`` command-line tool.

Each call runs ``ubi <kind> <location/name> <operation> [args...]`` as a
child process with ``UBI_TOKEN`` / ``UBI_URL`` in its environment, and maps
the result onto the adapter error taxonomy:

    exit 0                          -> stdout
    exit != 0, "not found"/404      -> ResourceNotFoundError (control-plane
                                       operations only)
    exit != 0, anything else        -> TransportError
    binary missing, OS error        -> TransportError
    no exit within command_timeout  -> TransportError (process killed)
"""

import asyncio
import logging
import os
import re
from typing import Dict, Optional

from ..core.errors import ResourceNotFoundError, TransportError
from ..core.resource import ResourceRef
from .base import ResourceClient

logger = logging.getLogger("pglifecycle.adapters.ubi_cli")

DEFAULT_COMMAND_TIMEOUT = 120.0

_NOT_FOUND = re.compile(r"not found|\b404\b|does not exist|no such", re.IGNORECASE)

# Output of these comes from inside the resource (SQL errors, remote shell),
# so "does not exist" there says nothing about the resource itself.
_IN_RESOURCE_OPERATIONS = ("psql", "ssh")


class UbiCliClient(ResourceClient):
    """Runs control-plane operations through the ``ubi`` executable.

    Args:
        token: API token exported as ``UBI_TOKEN``.
        url: API endpoint exported as ``UBI_URL``.
        binary: Path or name of the ``ubi`` executable.
        command_timeout: Per-call ceiling in seconds.
        env: Base environment for the child process (defaults to os.environ).
    """

    def __init__(
        self,
        token: str,
        url: str,
        binary: str = "ubi",
        command_timeout: float = DEFAULT_COMMAND_TIMEOUT,
        env: Optional[Dict[str, str]] = None,
    ):
        self.binary = binary
        self.command_timeout = command_timeout
        self._env = dict(os.environ if env is None else env)
        self._env["UBI_TOKEN"] = token
        self._env["UBI_URL"] = url

    async def invoke(self, ref: ResourceRef, operation: str, *args: str) -> str:
        argv = [self.binary, ref.kind, ref.path, operation, *args]
        logger.debug("Running: %s", " ".join(argv))

        try:
            process = await asyncio.create_subprocess_exec(
                *argv,
                stdin=asyncio.subprocess.DEVNULL,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
                env=self._env,
            )
        except OSError as e:
            raise TransportError(
                f"Cannot run {self.binary}: {e}", ref=ref, operation=operation
            ) from e

        try:
            stdout, stderr = await asyncio.wait_for(
                process.communicate(), timeout=self.command_timeout
            )
        except asyncio.TimeoutError:
            await _kill(process)
            raise TransportError(
                f"{self.binary} {operation} on {ref} timed out after "
                f"{self.command_timeout:.0f}s",
                ref=ref,
                operation=operation,
            )
        except asyncio.CancelledError:
            await _kill(process)
            raise

        out = stdout.decode("utf-8", errors="replace")
        err = stderr.decode("utf-8", errors="replace").strip()

        if process.returncode != 0:
            detail = err or out.strip() or f"exit status {process.returncode}"
            if operation not in _IN_RESOURCE_OPERATIONS and _NOT_FOUND.search(
                detail
            ):
                raise ResourceNotFoundError(
                    f"{ref} not found ({operation}): {detail}",
                    ref=ref,
                    operation=operation,
                    stderr=err,
                )
            raise TransportError(
                f"{self.binary} {operation} on {ref} failed: {detail}",
                ref=ref,
                operation=operation,
                stderr=err,
            )
        return out


async def _kill(process: asyncio.subprocess.Process) -> None:
    if process.returncode is not None:
        return
    try:
        process.kill()
    except ProcessLookupError:
        return
    await process.wait()
