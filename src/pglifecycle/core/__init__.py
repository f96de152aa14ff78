"""pglifecycle core: poll engine, policies, fields, verification, teardown."""

from .errors import (
    AdapterError,
    ConfigurationError,
    LifecycleError,
    MalformedResponseError,
    PollTimeoutError,
    ResourceNotFoundError,
    TransportError,
    VerificationError,
)
from .fields import FieldStatus, FieldValue, extract_field, parse_firewall_rule_ids
from .poll import Converged, PollProgress, PollSpec, TimedOut, poll
from .resource import ResourceRef
from .tracker import ResourceTracker, TrackedResource

__all__ = [
    "LifecycleError",
    "ConfigurationError",
    "AdapterError",
    "TransportError",
    "ResourceNotFoundError",
    "MalformedResponseError",
    "PollTimeoutError",
    "VerificationError",
    "FieldStatus",
    "FieldValue",
    "extract_field",
    "parse_firewall_rule_ids",
    "PollSpec",
    "PollProgress",
    "Converged",
    "TimedOut",
    "poll",
    "ResourceRef",
    "ResourceTracker",
    "TrackedResource",
]
