"""Query execution over two access paths and row-count assertions.

DIRECT opens an asyncpg session to the connection string published by the
control plane, bypassing it entirely. PROXIED sends the query through the
control plane's ``psql`` command. Running the same assertions over both
catches divergence between the service's network endpoint and its command
path.

Row-count checks are assertions, not waits: a mismatch raises
:class:`VerificationError` at once and is never retried. Waiting for a
count to be reached (replication catch-up) is a convergence policy, see
:func:`pglifecycle.core.policies.row_count_reached`.
"""

import asyncio
import logging
import re
from dataclasses import dataclass
from enum import Enum
from typing import TYPE_CHECKING, Any, Callable, Optional

import asyncpg

from .errors import MalformedResponseError, TransportError, VerificationError
from .fields import CONNECTION_STRING, FieldStatus
from .resource import ResourceRef

if TYPE_CHECKING:
    from ..adapters.base import ResourceClient

logger = logging.getLogger("pglifecycle.verification")

DEFAULT_TABLE = "lifecycle_test"
DEFAULT_CONNECT_TIMEOUT = 10.0
DEFAULT_COMMAND_TIMEOUT = 600.0

_IDENTIFIER = re.compile(r"^[A-Za-z_][A-Za-z0-9_]*$")

# Failures of a direct session that mean "could not talk to the database"
DIRECT_ERRORS = (
    OSError,
    asyncio.TimeoutError,
    asyncpg.PostgresError,
    asyncpg.InterfaceError,
)


class AccessPath(Enum):
    DIRECT = "direct"
    PROXIED = "proxied"


@dataclass(frozen=True)
class VerificationExpectation:
    """A single row-count assertion."""

    ref: ResourceRef
    expected_row_count: int
    access_path: AccessPath = AccessPath.DIRECT
    table: str = DEFAULT_TABLE
    where: Optional[str] = None


def check_identifier(name: str) -> str:
    """Return ``name`` if it is a plain SQL identifier, else raise ValueError."""
    if not _IDENTIFIER.match(name):
        raise ValueError(f"Invalid SQL identifier: {name!r}")
    return name


def count_query(table: str, where: Optional[str] = None) -> str:
    check_identifier(table)
    query = f"SELECT COUNT(*) FROM {table}"
    if where:
        query += f" WHERE {where}"
    return query + ";"


class SqlRunner:
    """Executes SQL against a database over either access path.

    Args:
        client: Resource client used for the connection-string read and the
            proxied path.
        connect_timeout: Seconds allowed to establish a direct session.
        command_timeout: Seconds allowed for one direct statement.
        connect: asyncpg-compatible connect coroutine, injectable for tests.
    """

    def __init__(
        self,
        client: "ResourceClient",
        connect_timeout: float = DEFAULT_CONNECT_TIMEOUT,
        command_timeout: float = DEFAULT_COMMAND_TIMEOUT,
        connect: Callable[..., Any] = asyncpg.connect,
    ):
        self.client = client
        self.connect_timeout = connect_timeout
        self.command_timeout = command_timeout
        self._connect = connect

    async def connection_string(self, ref: ResourceRef) -> str:
        """Read and clean the connection string of ``ref``.

        Re-read on every call; the endpoint can change across scaling and
        upgrades.
        """
        value = await self.client.get_field(ref, CONNECTION_STRING)
        descriptor = value.as_connection_descriptor()
        if descriptor is not None:
            return descriptor
        if value.status in (FieldStatus.PRESENT, FieldStatus.MALFORMED):
            raise MalformedResponseError(
                f"Unusable connection string for {ref}: {value.describe()}",
                ref=ref,
                operation="show",
            )
        raise TransportError(
            f"No connection string for {ref}: {value.describe()}",
            ref=ref,
            operation="show",
        )

    async def execute(
        self, ref: ResourceRef, query: str, path: AccessPath = AccessPath.DIRECT
    ) -> None:
        if path is AccessPath.PROXIED:
            await self.client.psql(ref, query)
            return
        await self._direct(ref, lambda conn: conn.execute(query))

    async def fetch_scalar(
        self, ref: ResourceRef, query: str, path: AccessPath = AccessPath.DIRECT
    ) -> Optional[str]:
        """Run ``query`` and return the first column of the first row as text."""
        if path is AccessPath.PROXIED:
            output = await self.client.psql(ref, query)
            lines = [line.strip() for line in output.splitlines() if line.strip()]
            return lines[0] if lines else None
        value = await self._direct(ref, lambda conn: conn.fetchval(query))
        return None if value is None else str(value)

    async def count_rows(
        self,
        ref: ResourceRef,
        table: str = DEFAULT_TABLE,
        path: AccessPath = AccessPath.DIRECT,
        where: Optional[str] = None,
    ) -> int:
        raw = await self.fetch_scalar(ref, count_query(table, where), path)
        try:
            return int(raw.strip())
        except (AttributeError, ValueError):
            raise MalformedResponseError(
                f"Count query on {ref} ({path.value}) returned {raw!r}",
                ref=ref,
                operation="psql" if path is AccessPath.PROXIED else None,
            )

    async def ping(self, ref: ResourceRef) -> None:
        """One ``SELECT 1`` round trip over the direct path."""
        await self._direct(ref, lambda conn: conn.fetchval("SELECT 1;"))

    async def _direct(self, ref: ResourceRef, action):
        dsn = await self.connection_string(ref)
        try:
            conn = await self._connect(
                dsn,
                timeout=self.connect_timeout,
                command_timeout=self.command_timeout,
            )
        except DIRECT_ERRORS as e:
            raise TransportError(
                f"Cannot connect to {ref}: {e}", ref=ref
            ) from e
        try:
            return await action(conn)
        except DIRECT_ERRORS as e:
            raise TransportError(f"Query on {ref} failed: {e}", ref=ref) from e
        finally:
            await self._close(ref, conn)

    async def _close(self, ref: ResourceRef, conn) -> None:
        # asyncpg aborts the connection when a graceful close fails
        try:
            await conn.close(timeout=self.connect_timeout)
        except DIRECT_ERRORS as e:
            logger.warning("Closing connection to %s failed: %r", ref, e)


async def verify(sql: SqlRunner, expectation: VerificationExpectation) -> int:
    """Assert an exact row count.

    Raises:
        VerificationError: On any mismatch. Never retried.
    """
    actual = await sql.count_rows(
        expectation.ref,
        table=expectation.table,
        path=expectation.access_path,
        where=expectation.where,
    )
    logger.info(
        "  Row count on %s (%s): %d (expected: %d)",
        expectation.ref,
        expectation.access_path.value,
        actual,
        expectation.expected_row_count,
    )
    if actual != expectation.expected_row_count:
        raise VerificationError(
            f"Row count mismatch on {expectation.ref} "
            f"({expectation.access_path.value}): expected "
            f"{expectation.expected_row_count}, got {actual}",
            expected=expectation.expected_row_count,
            actual=actual,
        )
    return actual


async def verify_row_count(
    sql: SqlRunner,
    ref: ResourceRef,
    expected: int,
    access_path: AccessPath = AccessPath.DIRECT,
    table: str = DEFAULT_TABLE,
) -> int:
    return await verify(
        sql, VerificationExpectation(ref, expected, access_path, table)
    )
