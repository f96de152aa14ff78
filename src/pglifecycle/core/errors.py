"""Exception hierarchy for the lifecycle harness.

Adapter failures are classified so the poll loop can tell transient
unavailability apart from conditions that must abort the run:

    LifecycleError
    ├── ConfigurationError        missing required input at startup
    ├── AdapterError              control-plane CLI failures
    │   ├── TransportError        process failed, timed out or exited non-zero
    │   ├── ResourceNotFoundError the referenced resource does not exist
    │   └── MalformedResponseError output could not be interpreted
    ├── PollTimeoutError          a wait did not converge before its deadline
    └── VerificationError         a data or state assertion failed
"""

from typing import TYPE_CHECKING, Optional

if TYPE_CHECKING:
    from .poll import TimedOut
    from .resource import ResourceRef


class LifecycleError(Exception):
    """Base class for every failure raised by the harness."""


class ConfigurationError(LifecycleError):
    """A required configuration input is absent."""


class AdapterError(LifecycleError):
    """A call to the control-plane client failed.

    Attributes:
        ref: Resource the call targeted, if any.
        operation: CLI operation name (``show``, ``destroy``, ...).
        stderr: Captured error output, already stripped.
    """

    def __init__(
        self,
        message: str,
        ref: Optional["ResourceRef"] = None,
        operation: Optional[str] = None,
        stderr: str = "",
    ):
        super().__init__(message)
        self.ref = ref
        self.operation = operation
        self.stderr = stderr


class TransportError(AdapterError):
    """The CLI could not be run, timed out, or failed for an unclassified reason."""


class ResourceNotFoundError(AdapterError):
    """The control plane reports that the resource does not exist."""


class MalformedResponseError(AdapterError):
    """The CLI succeeded but its output could not be parsed."""


class PollTimeoutError(LifecycleError):
    """A convergence wait reached its deadline without the predicate holding."""

    def __init__(self, description: str, outcome: "TimedOut"):
        super().__init__(
            f"{description} did not converge within {outcome.elapsed:.0f}s "
            f"(last observed: {outcome.value.describe()})"
        )
        self.description = description
        self.outcome = outcome


class VerificationError(LifecycleError):
    """A correctness assertion failed. Never retried."""

    def __init__(self, message: str, expected=None, actual=None):
        super().__init__(message)
        self.expected = expected
        self.actual = actual


__all__ = [
    "LifecycleError",
    "ConfigurationError",
    "AdapterError",
    "TransportError",
    "ResourceNotFoundError",
    "MalformedResponseError",
    "PollTimeoutError",
    "VerificationError",
]
