"""Convergence policies: domain waits expressed on the generic poll engine.

A policy pairs an ``observe`` coroutine with a :class:`PollSpec` and a
progress reporter. Policies never loop themselves; :func:`wait_for` hands
them to :func:`~pglifecycle.core.poll.poll` and turns a timeout into a
fatal :class:`PollTimeoutError`.

Transient failures (transport errors, refused connections, unparseable
counts) are folded into not-yet values inside ``observe``. A missing
resource is not transient unless the policy was built with
``missing_ok=True`` and propagates out of the wait.

Usage:
    await wait_for(state_reached(client, ref, "running"))
    await wait_for(field_reached(client, ref, STORAGE_SIZE_GIB, 128, timeout=300))
    await wait_for(connectivity_reached(sql, ref, timeout=120))
"""

import logging
from dataclasses import dataclass
from typing import TYPE_CHECKING, Optional

from .errors import (
    AdapterError,
    MalformedResponseError,
    PollTimeoutError,
    TransportError,
    VerificationError,
)
from .fields import (
    EARLIEST_RESTORE_TIME,
    STATE,
    VERSION,
    FieldValue,
    extract_field,
    normalize_target,
)
from .poll import (
    Converged,
    Observer,
    PollOutcome,
    PollProgress,
    PollSpec,
    Predicate,
    ProgressCallback,
    poll,
)
from .resource import ResourceRef
from .verification import DEFAULT_TABLE, AccessPath, SqlRunner

if TYPE_CHECKING:
    from ..adapters.base import ResourceClient

logger = logging.getLogger("pglifecycle.policies")

DEFAULT_INTERVAL = 15.0
STATE_TIMEOUT = 900.0
FIELD_TIMEOUT = 900.0
VERSION_TIMEOUT = 1800.0
CONNECTIVITY_TIMEOUT = 300.0
CONNECTIVITY_INTERVAL = 10.0
BACKUP_TIMEOUT = 600.0
ROW_COUNT_TIMEOUT = 60.0
ROW_COUNT_INTERVAL = 5.0
SSH_TIMEOUT = 120.0
SSH_INTERVAL = 2.0


@dataclass(frozen=True)
class ConvergencePolicy:
    """Everything the poll engine needs for one named wait."""

    description: str
    spec: PollSpec
    observe: Observer
    on_progress: Optional[ProgressCallback] = None


# Predicates


def equals_text(target: str) -> Predicate:
    def predicate(value: FieldValue) -> bool:
        return value.is_present and value.raw == target

    return predicate


def matches(target) -> Predicate:
    """Exact match, comparing numerically when the target is a number.

    A value that does not parse as a number never matches a numeric
    target; it may simply not be populated in numeric form yet.
    """
    number, text = normalize_target(target)
    if number is None:
        return equals_text(text)

    def predicate(value: FieldValue) -> bool:
        observed = value.as_number()
        return observed is not None and observed == number

    return predicate


def is_present(value: FieldValue) -> bool:
    return value.is_present


def _progress_logger(label: str) -> ProgressCallback:
    def report(progress: PollProgress) -> None:
        logger.info(
            "  %s: %s (waited %ds)",
            label,
            progress.value.describe(),
            int(progress.elapsed),
        )

    return report


# Running


async def run_policy(policy: ConvergencePolicy, **engine_options) -> PollOutcome:
    """Run ``policy`` on the poll engine and return the raw outcome.

    ``engine_options`` are passed to :func:`poll` (``clock``, ``sleep``).
    """
    logger.info("Waiting for %s...", policy.description)
    return await poll(policy.spec, policy.observe, policy.on_progress, **engine_options)


async def wait_for(policy: ConvergencePolicy, **engine_options) -> Converged:
    """Run ``policy`` and require convergence.

    Raises:
        PollTimeoutError: If the policy timed out.
    """
    outcome = await run_policy(policy, **engine_options)
    if not outcome.converged:
        logger.error(
            "%s: not reached within %ds", policy.description, int(policy.spec.timeout)
        )
        raise PollTimeoutError(policy.description, outcome)
    logger.info("  %s: %s - Ready!", policy.description, outcome.value.describe())
    return outcome


async def assert_never_converges(policy: ConvergencePolicy, **engine_options) -> None:
    """Require that ``policy`` times out.

    Used for negative checks such as "connections are blocked".

    Raises:
        VerificationError: If the policy converged.
    """
    outcome = await run_policy(policy, **engine_options)
    if outcome.converged:
        raise VerificationError(
            f"{policy.description} converged after {outcome.elapsed:.0f}s "
            f"but was expected not to",
            expected="timeout",
            actual=outcome.value.describe(),
        )
    logger.info(
        "  %s: not reached within %ds, as expected",
        policy.description,
        int(outcome.elapsed),
    )


# Field-based policies


def _field_observer(
    client: "ResourceClient", ref: ResourceRef, field: str, missing_ok: bool
) -> Observer:
    async def observe() -> FieldValue:
        return await client.get_field(ref, field, missing_ok=missing_ok)

    return observe


def state_reached(
    client: "ResourceClient",
    ref: ResourceRef,
    target_state: str,
    timeout: float = STATE_TIMEOUT,
    interval: float = DEFAULT_INTERVAL,
    missing_ok: bool = False,
) -> ConvergencePolicy:
    return ConvergencePolicy(
        description=f"{ref} to reach '{target_state}' state",
        spec=PollSpec(interval, timeout, equals_text(target_state)),
        observe=_field_observer(client, ref, STATE, missing_ok),
        on_progress=_progress_logger("State"),
    )


def field_reached(
    client: "ResourceClient",
    ref: ResourceRef,
    field: str,
    target_value,
    timeout: float = FIELD_TIMEOUT,
    interval: float = DEFAULT_INTERVAL,
) -> ConvergencePolicy:
    return ConvergencePolicy(
        description=f"{field} of {ref} to become '{target_value}'",
        spec=PollSpec(interval, timeout, matches(target_value)),
        observe=_field_observer(client, ref, field, False),
        on_progress=_progress_logger(field),
    )


def version_reached(
    client: "ResourceClient",
    ref: ResourceRef,
    target_version: str,
    timeout: float = VERSION_TIMEOUT,
    interval: float = DEFAULT_INTERVAL,
) -> ConvergencePolicy:
    """Wait for a major-version upgrade to land.

    Every non-converged read is followed by a ``show-upgrade-status`` read
    that is only logged.
    """
    target = str(target_version)
    predicate = equals_text(target)
    upgrade_status = {"value": "unknown"}

    async def observe() -> FieldValue:
        value = await client.get_field(ref, VERSION)
        if not predicate(value):
            upgrade_status["value"] = await _read_upgrade_status(client, ref)
        return value

    def report(progress: PollProgress) -> None:
        logger.info(
            "  Version: %s, Upgrade status: %s (waited %ds)",
            progress.value.describe(),
            upgrade_status["value"],
            int(progress.elapsed),
        )

    return ConvergencePolicy(
        description=f"{ref} upgrade to version {target}",
        spec=PollSpec(interval, timeout, predicate),
        observe=observe,
        on_progress=report,
    )


async def _read_upgrade_status(client: "ResourceClient", ref: ResourceRef) -> str:
    try:
        output = await client.show_upgrade_status(ref)
    except AdapterError as e:
        logger.debug("Upgrade status of %s unavailable: %s", ref, e)
        return "unknown"
    return extract_field(output, "status", ignore_case=True).as_str() or "unknown"


def backup_available(
    client: "ResourceClient",
    ref: ResourceRef,
    timeout: float = BACKUP_TIMEOUT,
    interval: float = DEFAULT_INTERVAL,
) -> ConvergencePolicy:
    return ConvergencePolicy(
        description=f"backup of {ref} to be available",
        spec=PollSpec(interval, timeout, is_present),
        observe=_field_observer(client, ref, EARLIEST_RESTORE_TIME, False),
        on_progress=_progress_logger("Earliest restore time"),
    )


# Active-check policies


def connectivity_reached(
    sql: SqlRunner,
    ref: ResourceRef,
    timeout: float = CONNECTIVITY_TIMEOUT,
    interval: float = CONNECTIVITY_INTERVAL,
) -> ConvergencePolicy:
    """Wait until a direct ``SELECT 1`` round trip succeeds.

    Refused or timed-out connections count as not yet.
    """

    async def observe() -> FieldValue:
        try:
            await sql.ping(ref)
        except (TransportError, MalformedResponseError) as e:
            return FieldValue.unavailable("connectivity", str(e))
        return FieldValue.of("connectivity", "accepting connections")

    return ConvergencePolicy(
        description=f"database connectivity to {ref}",
        spec=PollSpec(interval, timeout, is_present),
        observe=observe,
        on_progress=_progress_logger("Connectivity"),
    )


def row_count_reached(
    sql: SqlRunner,
    ref: ResourceRef,
    expected: int,
    access_path: AccessPath = AccessPath.DIRECT,
    table: str = DEFAULT_TABLE,
    where: Optional[str] = None,
    timeout: float = ROW_COUNT_TIMEOUT,
    interval: float = ROW_COUNT_INTERVAL,
) -> ConvergencePolicy:
    """Wait for a row count to be reached, e.g. replication catch-up."""

    async def observe() -> FieldValue:
        try:
            count = await sql.count_rows(ref, table=table, path=access_path, where=where)
        except (TransportError, MalformedResponseError) as e:
            return FieldValue.unavailable("row-count", str(e))
        return FieldValue.of("row-count", str(count))

    return ConvergencePolicy(
        description=f"{ref} to have {expected} rows ({access_path.value})",
        spec=PollSpec(interval, timeout, matches(expected)),
        observe=observe,
        on_progress=_progress_logger("Rows"),
    )


def ssh_reachable(
    client: "ResourceClient",
    vm_ref: ResourceRef,
    timeout: float = SSH_TIMEOUT,
    interval: float = SSH_INTERVAL,
) -> ConvergencePolicy:
    async def observe() -> FieldValue:
        try:
            output = await client.ssh(vm_ref, "echo", "SSH OK")
        except TransportError as e:
            return FieldValue.unavailable("ssh", str(e))
        return FieldValue.of("ssh", output.strip() or "ok")

    return ConvergencePolicy(
        description=f"SSH access to {vm_ref}",
        spec=PollSpec(interval, timeout, is_present),
        observe=observe,
        on_progress=_progress_logger("SSH"),
    )


__all__ = [
    "ConvergencePolicy",
    "equals_text",
    "matches",
    "is_present",
    "run_policy",
    "wait_for",
    "assert_never_converges",
    "state_reached",
    "field_reached",
    "version_reached",
    "backup_available",
    "connectivity_reached",
    "row_count_reached",
    "ssh_reachable",
]
