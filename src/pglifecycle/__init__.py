"""
pglifecycle - lifecycle verification harness for managed PostgreSQL.

Drives a database instance through creation, data I/O, firewall changes,
scaling, a major-version upgrade and read-replica provisioning against a
real control plane, asserting correctness at every transition.

Layout:
- core/poll.py: generic poll engine (observe until a predicate holds)
- core/policies.py: convergence policies built on the engine
- core/fields.py: tolerant ``key: value`` field extraction
- core/verification.py: row-count assertions over direct/proxied SQL paths
- core/tracker.py: guaranteed teardown of created resources
- adapters/: control-plane clients (the ``ubi`` CLI)
- workflow/: the lifecycle and VM smoke runs
"""

__version__ = "0.1.0"

from .adapters.base import ResourceClient
from .adapters.ubi_cli import UbiCliClient
from .core.config import ControlPlaneConfig, LifecycleConfig, VmSmokeConfig
from .core.errors import (
    AdapterError,
    ConfigurationError,
    LifecycleError,
    MalformedResponseError,
    PollTimeoutError,
    ResourceNotFoundError,
    TransportError,
    VerificationError,
)
from .core.fields import FieldStatus, FieldValue, extract_field
from .core.logging_config import (
    DEFAULT_SENSITIVE_PATTERNS,
    LoggingConfig,
    SensitiveMaskingFilter,
    mask_sensitive_values,
)
from .core.poll import Converged, PollSpec, TimedOut, poll
from .core.policies import (
    ConvergencePolicy,
    assert_never_converges,
    backup_available,
    connectivity_reached,
    field_reached,
    row_count_reached,
    ssh_reachable,
    state_reached,
    version_reached,
    wait_for,
)
from .core.resource import ResourceRef
from .core.tracker import ResourceTracker
from .core.verification import (
    AccessPath,
    SqlRunner,
    VerificationExpectation,
    verify_row_count,
)
from .utils.logging_utils import configure_logging, get_logger, restore_logging

__all__ = [
    "__version__",
    # Adapters
    "ResourceClient",
    "UbiCliClient",
    # Configuration
    "ControlPlaneConfig",
    "LifecycleConfig",
    "VmSmokeConfig",
    # Errors
    "LifecycleError",
    "ConfigurationError",
    "AdapterError",
    "TransportError",
    "ResourceNotFoundError",
    "MalformedResponseError",
    "PollTimeoutError",
    "VerificationError",
    # Fields
    "FieldStatus",
    "FieldValue",
    "extract_field",
    # Poll engine and policies
    "PollSpec",
    "Converged",
    "TimedOut",
    "poll",
    "ConvergencePolicy",
    "wait_for",
    "assert_never_converges",
    "state_reached",
    "field_reached",
    "version_reached",
    "connectivity_reached",
    "backup_available",
    "row_count_reached",
    "ssh_reachable",
    # Resources
    "ResourceRef",
    "ResourceTracker",
    # Verification
    "AccessPath",
    "SqlRunner",
    "VerificationExpectation",
    "verify_row_count",
    # Logging
    "LoggingConfig",
    "SensitiveMaskingFilter",
    "mask_sensitive_values",
    "DEFAULT_SENSITIVE_PATTERNS",
    "configure_logging",
    "restore_logging",
    "get_logger",
]
