"""Resource references for the managed service."""

from dataclasses import dataclass
from typing import Optional

# CLI resource kinds understood by ``ubi``
POSTGRES = "pg"
VIRTUAL_MACHINE = "vm"
PRIVATE_SUBNET = "ps"

_KINDS = (POSTGRES, VIRTUAL_MACHINE, PRIVATE_SUBNET)


@dataclass(frozen=True)
class ResourceRef:
    """Location + name identifying one remote resource instance.

    Attributes:
        location: Region/location slug, e.g. ``eu-central-h1``.
        name: Resource name within the location.
        kind: CLI resource kind (``pg``, ``vm`` or ``ps``).
    """

    location: str
    name: str
    kind: str = POSTGRES

    def __post_init__(self) -> None:
        if not self.location or "/" in self.location:
            raise ValueError(f"Invalid location: {self.location!r}")
        if not self.name or "/" in self.name:
            raise ValueError(f"Invalid resource name: {self.name!r}")
        if self.kind not in _KINDS:
            raise ValueError(f"Unknown resource kind: {self.kind!r}")

    @classmethod
    def parse(cls, value: str, kind: str = POSTGRES) -> "ResourceRef":
        """Parse the CLI's ``location/name`` form."""
        location, sep, name = value.partition("/")
        if not sep:
            raise ValueError(f"Expected 'location/name', got {value!r}")
        return cls(location=location, name=name, kind=kind)

    def sibling(self, name: str, kind: Optional[str] = None) -> "ResourceRef":
        """Reference another resource in the same location."""
        return ResourceRef(self.location, name, kind or self.kind)

    @property
    def path(self) -> str:
        return f"{self.location}/{self.name}"

    def __str__(self) -> str:
        return self.path
