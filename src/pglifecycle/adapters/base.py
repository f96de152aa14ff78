"""Resource client contract for the managed-service control plane.

Concrete clients implement a single :meth:`ResourceClient.invoke` that runs
one control-plane operation and returns its text output. Everything else,
including field reads and their failure classification, is built here on
top of ``invoke`` so that every client (the real CLI, test fakes) behaves
the same way.
"""

import logging
from abc import ABC, abstractmethod
from typing import List, Optional

from ..core.errors import ResourceNotFoundError, TransportError
from ..core.fields import (
    FIREWALL_RULES,
    FieldValue,
    extract_field,
    parse_firewall_rule_ids,
)
from ..core.resource import ResourceRef

logger = logging.getLogger("pglifecycle.adapters")


class ResourceClient(ABC):
    """Operations consumed from the control plane.

    ``invoke`` raises :class:`~pglifecycle.core.errors.AdapterError`
    subclasses and never retries. The only retry-safe mutating call is
    :meth:`destroy`, which can swallow not-found.
    """

    @abstractmethod
    async def invoke(self, ref: ResourceRef, operation: str, *args: str) -> str:
        """Run ``operation`` against ``ref`` and return its output."""

    # Reads

    async def show(self, ref: ResourceRef) -> str:
        return await self.invoke(ref, "show")

    async def show_field(self, ref: ResourceRef, field: str) -> str:
        return await self.invoke(ref, "show", "-f", field)

    async def get_field(
        self, ref: ResourceRef, field: str, missing_ok: bool = False
    ) -> FieldValue:
        """Read one field as a :class:`FieldValue`.

        Transport failures come back as an ``unavailable`` value so that a
        poll loop keeps going; the error text stays in ``detail``.

        Args:
            ref: Resource to read.
            field: Field name, e.g. ``state``.
            missing_ok: Treat a not-found resource as an absent value
                instead of raising (resource still being created).

        Raises:
            ResourceNotFoundError: If the resource does not exist and
                ``missing_ok`` is False.
        """
        try:
            output = await self.show_field(ref, field)
        except ResourceNotFoundError:
            if not missing_ok:
                raise
            return FieldValue.absent(field, f"{ref} not found")
        except TransportError as e:
            logger.debug("Reading %s of %s failed: %s", field, ref, e)
            return FieldValue.unavailable(field, str(e))
        return extract_field(output, field)

    async def show_upgrade_status(self, ref: ResourceRef) -> str:
        return await self.invoke(ref, "show-upgrade-status")

    async def firewall_rule_ids(self, ref: ResourceRef) -> List[str]:
        return parse_firewall_rule_ids(await self.show_field(ref, FIREWALL_RULES))

    async def psql(self, ref: ResourceRef, query: str) -> str:
        """Run a query through the control plane's proxied psql command."""
        return await self.invoke(ref, "psql", "-t", "-A", "-c", query)

    # Database mutations

    async def create_postgres(
        self, ref: ResourceRef, size: str, storage_size: int, version: str
    ) -> str:
        return await self.invoke(
            ref, "create", "-s", size, "-S", str(storage_size), "-v", str(version)
        )

    async def modify(self, ref: ResourceRef, size: str, storage_size: int) -> str:
        return await self.invoke(ref, "modify", "-s", size, "-S", str(storage_size))

    async def upgrade(self, ref: ResourceRef) -> str:
        return await self.invoke(ref, "upgrade")

    async def add_firewall_rule(self, ref: ResourceRef, cidr: str) -> str:
        return await self.invoke(ref, "add-firewall-rule", cidr)

    async def delete_firewall_rule(self, ref: ResourceRef, rule_id: str) -> str:
        return await self.invoke(ref, "delete-firewall-rule", rule_id)

    async def create_read_replica(self, ref: ResourceRef, name: str) -> ResourceRef:
        await self.invoke(ref, "create-read-replica", name)
        return ref.sibling(name)

    async def destroy(
        self, ref: ResourceRef, force: bool = True, missing_ok: bool = False
    ) -> bool:
        """Destroy ``ref``.

        Returns:
            True if a destroy was issued, False if the resource was already
            gone and ``missing_ok`` is set.
        """
        args = ("-f",) if force else ()
        try:
            await self.invoke(ref, "destroy", *args)
        except ResourceNotFoundError:
            if not missing_ok:
                raise
            logger.debug("%s already destroyed", ref)
            return False
        return True

    # Virtual machines and private subnets

    async def create_subnet(self, ref: ResourceRef) -> str:
        return await self.invoke(ref, "create")

    async def create_vm(
        self,
        ref: ResourceRef,
        size: str,
        storage_size: int,
        boot_image: str,
        subnet: Optional[str],
        unix_user: str,
        public_key: str,
    ) -> str:
        args = [
            f"--size={size}",
            f"--storage-size={storage_size}",
            f"--boot-image={boot_image}",
        ]
        if subnet:
            args.append(f"--private-subnet-id={subnet}")
        args.append(f"--unix-user={unix_user}")
        args.append(public_key)
        return await self.invoke(ref, "create", *args)

    async def ssh(self, ref: ResourceRef, *command: str) -> str:
        return await self.invoke(ref, "ssh", "--", *command)
