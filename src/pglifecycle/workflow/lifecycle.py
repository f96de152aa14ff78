"""PostgreSQL lifecycle run.

Drives one database through creation, data I/O, firewall blocking and
restoration, vertical scaling, a major-version upgrade, read-replica
provisioning and replication checks. Every transition is followed by a
convergence wait and a row-count assertion. The primary and replica are
tracked from before their create calls and destroyed on every exit path.
"""

import asyncio
import time
from dataclasses import dataclass, field
from typing import Awaitable, Callable, List, Optional

from ..adapters.base import ResourceClient
from ..core.config import LifecycleConfig
from ..core.errors import AdapterError
from ..core.fields import STORAGE_SIZE_GIB, VM_SIZE
from ..core.policies import (
    ConvergencePolicy,
    assert_never_converges,
    backup_available,
    connectivity_reached,
    field_reached,
    row_count_reached,
    state_reached,
    version_reached,
    wait_for,
)
from ..core.poll import Converged
from ..core.resource import ResourceRef
from ..core.tracker import ResourceTracker
from ..core.verification import (
    AccessPath,
    SqlRunner,
    check_identifier,
    verify_row_count,
)
from ..utils.logging_utils import get_logger

logger = get_logger("workflow.lifecycle")

DIRECT = AccessPath.DIRECT
PROXIED = AccessPath.PROXIED

OPEN_CIDRS = ("0.0.0.0/0", "::/0")
INITIAL_ROWS = ("row_1", "row_2", "row_3")

BLOCKED_PROBE_TIMEOUT = 15.0
RESTORED_CONNECTIVITY_TIMEOUT = 120.0
SCALE_STORAGE_TIMEOUT = 300.0
REPLICA_CATCH_UP_TIMEOUT = 60.0
BULK_REPLICATION_TIMEOUT = 180.0


@dataclass
class LifecycleReport:
    """What a completed run did."""

    primary: ResourceRef
    replica: ResourceRef
    steps: List[str] = field(default_factory=list)
    final_row_count: Optional[int] = None
    started_at: float = field(default_factory=time.time)
    finished_at: Optional[float] = None

    @property
    def duration(self) -> Optional[float]:
        if self.finished_at is None:
            return None
        return self.finished_at - self.started_at


class LifecycleRun:
    """One lifecycle run against a live control plane.

    Args:
        config: Run configuration.
        client: Control-plane client.
        sql: SQL runner; built on ``client`` when omitted.
        clock: Monotonic clock handed to every poll.
        sleep: Async sleep used for polls and settle delays.
    """

    def __init__(
        self,
        config: LifecycleConfig,
        client: ResourceClient,
        sql: Optional[SqlRunner] = None,
        *,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        self.config = config
        self.client = client
        self.sql = sql or SqlRunner(client)
        self.table = check_identifier(config.table)
        self.primary = config.primary
        self.replica = config.replica
        self.expected_rows = 0
        self._clock = clock
        self._sleep = sleep
        self.report = LifecycleReport(primary=self.primary, replica=self.replica)

    # Helpers

    async def wait(self, policy: ConvergencePolicy) -> Converged:
        return await wait_for(policy, clock=self._clock, sleep=self._sleep)

    async def settle(self, seconds: float, reason: str) -> None:
        if seconds <= 0:
            return
        logger.info("Waiting %ds for %s...", int(seconds), reason)
        await self._sleep(seconds)

    async def insert(
        self, ref: ResourceRef, values, path: AccessPath = DIRECT
    ) -> None:
        rows = ", ".join(f"('{value}')" for value in values)
        await self.sql.execute(
            ref, f"INSERT INTO {self.table} (data) VALUES {rows};", path
        )
        self.expected_rows += len(values)

    async def verify_rows(
        self, ref: ResourceRef, path: AccessPath = DIRECT, expected: Optional[int] = None
    ) -> int:
        return await verify_row_count(
            self.sql,
            ref,
            self.expected_rows if expected is None else expected,
            access_path=path,
            table=self.table,
        )

    def _step(self, title: str) -> None:
        logger.info("")
        logger.info("=== %s ===", title)
        self.report.steps.append(title)

    # Run

    async def run(self) -> LifecycleReport:
        cfg = self.config
        logger.info("=== PostgreSQL Lifecycle Test ===")
        logger.info("URL: %s", cfg.control_plane.url)
        logger.info("Location: %s", cfg.location)
        logger.info("PG Name: %s", cfg.name)
        logger.info("Initial Version: %s", cfg.version)
        logger.info("Initial Size: %s", cfg.size)

        async with ResourceTracker(self.client) as tracker:
            await self.create_primary(tracker)
            await self.insert_initial_data()
            await self.test_firewall()
            await self.scale()
            await self.upgrade()
            await self.create_replica(tracker)
            await self.verify_replication()
            await self.destroy_replica(tracker)
            await self.final_verification()

        self.report.finished_at = time.time()
        self._log_summary()
        return self.report

    async def create_primary(self, tracker: ResourceTracker) -> None:
        cfg = self.config
        self._step("Step 1: Creating PostgreSQL database")
        tracker.track(self.primary, f"primary PG {self.primary}")
        await self.client.create_postgres(
            self.primary, cfg.size, cfg.storage, cfg.version
        )
        logger.info("PostgreSQL creation initiated.")

        await self.wait(state_reached(self.client, self.primary, "running"))
        await self.wait(connectivity_reached(self.sql, self.primary))

        logger.info("PostgreSQL Details:\n%s", await self.client.show(self.primary))

    async def insert_initial_data(self) -> None:
        self._step("Step 2: Inserting initial test data")
        await self.sql.execute(
            self.primary,
            f"CREATE TABLE {self.table} (id SERIAL PRIMARY KEY, data TEXT, "
            f"created_at TIMESTAMP DEFAULT NOW());",
        )
        await self.insert(self.primary, INITIAL_ROWS)
        await self.verify_rows(self.primary)

    async def test_firewall(self) -> None:
        cfg = self.config
        self._step("Step 3: Testing firewall rules")

        rule_ids = await self.client.firewall_rule_ids(self.primary)
        logger.info("Removing all existing firewall rules to test blocking...")
        for rule_id in rule_ids:
            logger.info("  Deleting rule: %s", rule_id)
            try:
                await self.client.delete_firewall_rule(self.primary, rule_id)
            except AdapterError as e:
                logger.warning("  Could not delete rule %s: %s", rule_id, e)

        await self.settle(cfg.firewall_settle, "firewall changes to apply")

        logger.info("Testing that connection is blocked...")
        await assert_never_converges(
            connectivity_reached(
                self.sql, self.primary, timeout=BLOCKED_PROBE_TIMEOUT
            ),
            clock=self._clock,
            sleep=self._sleep,
        )
        logger.info("  Connection blocked as expected!")

        logger.info("Restoring firewall rules...")
        for cidr in OPEN_CIDRS:
            await self.client.add_firewall_rule(self.primary, cidr)

        await self.settle(cfg.firewall_restore_settle, "firewall restoration")
        await self.wait(
            connectivity_reached(
                self.sql, self.primary, timeout=RESTORED_CONNECTIVITY_TIMEOUT
            )
        )

        logger.info("Verifying data integrity after firewall test (proxied)...")
        await self.verify_rows(self.primary, PROXIED)

    async def scale(self) -> None:
        cfg = self.config
        self._step(
            f"Step 4: Scaling PostgreSQL to {cfg.scaled_size} with "
            f"{cfg.scaled_storage}GB storage"
        )
        await self.insert(self.primary, ("pre_scale",), PROXIED)
        await self.verify_rows(self.primary, PROXIED)

        await self.client.modify(self.primary, cfg.scaled_size, cfg.scaled_storage)
        logger.info("Scaling initiated. Waiting for completion...")

        await self.wait(
            field_reached(self.client, self.primary, VM_SIZE, cfg.scaled_size)
        )
        await self.wait(
            field_reached(
                self.client,
                self.primary,
                STORAGE_SIZE_GIB,
                cfg.scaled_storage,
                timeout=SCALE_STORAGE_TIMEOUT,
            )
        )
        await self.wait(connectivity_reached(self.sql, self.primary))
        logger.info("Scaling complete.")

        logger.info("Verifying data after scaling (direct)...")
        await self.verify_rows(self.primary, DIRECT)

    async def upgrade(self) -> None:
        cfg = self.config
        self._step(
            f"Step 5: Upgrading PostgreSQL from {cfg.version} to {cfg.upgrade_version}"
        )
        await self.insert(self.primary, ("pre_upgrade",))
        await self.verify_rows(self.primary)

        await self.client.upgrade(self.primary)
        logger.info("Upgrade initiated. Waiting for completion...")

        await self.wait(
            version_reached(self.client, self.primary, cfg.upgrade_version)
        )
        await self.wait(connectivity_reached(self.sql, self.primary))
        logger.info("Upgrade complete.")

        logger.info("Verifying data after upgrade (proxied)...")
        await self.verify_rows(self.primary, PROXIED)

    async def create_replica(self, tracker: ResourceTracker) -> None:
        self._step("Step 6: Creating read replica")
        backup = await self.wait(backup_available(self.client, self.primary))
        logger.info("  Backup available (earliest restore: %s)", backup.value.raw)

        await self.insert(self.primary, ("pre_replica",))
        await self.verify_rows(self.primary)

        tracker.track(self.replica, f"read replica {self.replica}")
        await self.client.create_read_replica(self.primary, self.replica.name)
        logger.info("Read replica creation initiated.")

        await self.wait(
            state_reached(self.client, self.replica, "running", missing_ok=True)
        )
        await self.wait(connectivity_reached(self.sql, self.replica))

        logger.info("Read Replica Details:\n%s", await self.client.show(self.replica))

    async def verify_replication(self) -> None:
        cfg = self.config
        self._step("Step 7: Verifying data on read replica")

        await self.wait(
            row_count_reached(
                self.sql,
                self.replica,
                self.expected_rows,
                table=self.table,
                timeout=REPLICA_CATCH_UP_TIMEOUT,
            )
        )
        await self.verify_rows(self.replica)

        logger.info("Testing live replication with bulk data insert...")
        await self.sql.execute(
            self.primary,
            f"INSERT INTO {self.table} (data) SELECT 'bulk_' || i || '_' || "
            f"repeat('x', 1000) FROM generate_series(1, {cfg.bulk_rows}) AS i;",
            PROXIED,
        )
        self.expected_rows += cfg.bulk_rows
        logger.info("  Inserted %d bulk rows to force WAL flush", cfg.bulk_rows)

        await self.wait(
            row_count_reached(
                self.sql,
                self.replica,
                cfg.bulk_rows,
                access_path=PROXIED,
                table=self.table,
                where="data LIKE 'bulk_%'",
                timeout=BULK_REPLICATION_TIMEOUT,
            )
        )
        logger.info("  Live replication verified!")

    async def destroy_replica(self, tracker: ResourceTracker) -> None:
        self._step("Step 8: Destroying read replica")
        await tracker.release(self.replica)
        logger.info("Read replica destruction initiated.")
        await self.settle(self.config.replica_destroy_settle, "replica teardown")

    async def final_verification(self) -> None:
        self._step("Step 9: Final verification")
        self.report.final_row_count = await self.verify_rows(self.primary)

    def _log_summary(self) -> None:
        cfg = self.config
        logger.info("")
        logger.info("=== PostgreSQL Lifecycle Test Complete ===")
        logger.info("SUCCESS: All tests passed!")
        logger.info("  - Created PostgreSQL %s", cfg.version)
        logger.info("  - Tested firewall blocking and restoration")
        logger.info(
            "  - Scaled from %s/%sGB to %s/%sGB",
            cfg.size,
            cfg.storage,
            cfg.scaled_size,
            cfg.scaled_storage,
        )
        logger.info("  - Upgraded from %s to %s", cfg.version, cfg.upgrade_version)
        logger.info(
            "  - Created and verified read replica with %d-row bulk replication test",
            cfg.bulk_rows,
        )
        logger.info("  - Verified data integrity throughout")


async def run_lifecycle(
    config: LifecycleConfig,
    client: ResourceClient,
    sql: Optional[SqlRunner] = None,
    **options,
) -> LifecycleReport:
    """Run the full lifecycle. See :class:`LifecycleRun` for ``options``."""
    return await LifecycleRun(config, client, sql, **options).run()
