"""Tracking and guaranteed teardown of resources created during a run.

The tracker is the run's only shared mutable state: an ordered list of
resources the harness has asked the control plane to create. On every exit
path (success, failure, cancellation) the tracker walks the list in reverse
creation order and destroys each resource that has not already been
released, exactly once and best-effort.

Usage:
    async with ResourceTracker(client) as tracker:
        tracker.track(primary)                 # before the create call
        await client.create_postgres(primary, ...)
        tracker.track(replica)
        await client.create_read_replica(primary, replica.name)
        ...
        await tracker.release(replica)         # explicit destroy mid-run
    # primary destroyed here, even if the body raised or was cancelled
"""

import asyncio
import logging
from dataclasses import dataclass
from typing import TYPE_CHECKING, List, Optional

from .resource import ResourceRef

if TYPE_CHECKING:
    from ..adapters.base import ResourceClient

logger = logging.getLogger("pglifecycle.tracker")


@dataclass
class TrackedResource:
    """A resource the run created (or attempted to create)."""

    ref: ResourceRef
    label: str
    released: bool = False


class ResourceTracker:
    """Owns the identity of every created resource and its teardown.

    Resources are registered *before* their create call so that a create
    that fails halfway is still cleaned up; destroy treats not-found as
    already gone.
    """

    def __init__(self, client: "ResourceClient"):
        self.client = client
        self._resources: List[TrackedResource] = []

    @property
    def resources(self) -> List[TrackedResource]:
        return list(self._resources)

    def pending(self) -> List[TrackedResource]:
        """Unreleased resources in teardown (reverse creation) order."""
        return [r for r in reversed(self._resources) if not r.released]

    def track(self, ref: ResourceRef, label: Optional[str] = None) -> TrackedResource:
        """Register ``ref`` for teardown.

        Raises:
            ValueError: If ``ref`` is already tracked and not released.
        """
        for existing in self._resources:
            if existing.ref == ref and not existing.released:
                raise ValueError(f"{ref} is already tracked")
        entry = TrackedResource(ref=ref, label=label or str(ref))
        self._resources.append(entry)
        logger.debug("Tracking %s for teardown", entry.label)
        return entry

    def _find(self, ref: ResourceRef) -> Optional[TrackedResource]:
        for entry in reversed(self._resources):
            if entry.ref == ref and not entry.released:
                return entry
        return None

    async def release(self, ref: ResourceRef) -> None:
        """Destroy a tracked resource now, as a step of the workflow.

        Unlike teardown, failures propagate: an explicit destroy is part of
        what is being verified. The resource stays tracked if destroy fails.
        """
        entry = self._find(ref)
        if entry is None:
            raise ValueError(f"{ref} is not tracked")
        logger.info("Destroying %s", entry.label)
        await self.client.destroy(ref, force=True)
        entry.released = True

    async def teardown(self) -> None:
        """Destroy every unreleased resource, newest first.

        Each resource is attempted exactly once. Failures are logged and
        never raised so they cannot mask the error that ended the run.
        A cancellation arriving during teardown does not stop it: every
        pending destroy still runs to completion, then ``CancelledError``
        is raised.
        """
        pending = self.pending()
        if not pending:
            return
        logger.info("=== Cleaning up ===")
        interrupted = False
        for entry in pending:
            # Mark first so a second teardown never retries this resource.
            entry.released = True
            logger.info("Destroying %s (if exists)...", entry.label)
            if await self._destroy(entry):
                interrupted = True
        if interrupted:
            raise asyncio.CancelledError()

    async def _destroy(self, entry: TrackedResource) -> bool:
        """Run one destroy to completion; True if cancelled meanwhile."""
        destroy = asyncio.ensure_future(
            self.client.destroy(entry.ref, force=True, missing_ok=True)
        )
        interrupted = False
        while not destroy.done():
            try:
                await asyncio.shield(destroy)
            except asyncio.CancelledError:
                if destroy.cancelled():
                    break
                interrupted = True
                if not destroy.done():
                    logger.warning("Interrupted, still destroying %s...", entry.label)
            except Exception:
                break

        if destroy.cancelled():
            logger.warning("Destroy of %s was cancelled", entry.label)
        elif destroy.exception() is not None:
            logger.warning(
                "Failed to destroy %s: %s", entry.label, destroy.exception()
            )
        return interrupted

    async def __aenter__(self) -> "ResourceTracker":
        return self

    async def __aexit__(self, exc_type, exc, tb) -> bool:
        await self.teardown()
        return False
