"""Run configuration loaded from environment variables.

Inputs are validated at startup. Anything unusable raises
:class:`ConfigurationError` before a resource is created.

Environment Variables:
    UBI_TOKEN: API token (required)
    UBI_URL: API endpoint (required)
    UBI_BIN: ``ubi`` executable (default: ubi)
    UBI_COMMAND_TIMEOUT: Per-command ceiling in seconds (default: 120)
    PG_LOCATION: Location slug (default: eu-central-h1)
    PG_NAME: Primary name (default: test-pg-<unix time>)
    PG_SIZE / PG_STORAGE / PG_VERSION: Initial sizing (standard-2 / 64 / 17)
    PG_SCALED_SIZE / PG_SCALED_STORAGE: Scaling target (standard-4 / 128)
    PG_UPGRADE_VERSION: Upgrade target (default: 18)
    PG_TABLE: Table used for row-count checks (default: lifecycle_test)
    PG_BULK_ROWS: Rows inserted for the replication test (default: 100000)
    PG_FIREWALL_SETTLE / PG_FIREWALL_RESTORE_SETTLE / PG_REPLICA_DESTROY_SETTLE:
        Fixed waits in seconds after firewall changes and replica destroy
        (30 / 15 / 10)

    VM smoke test:
    LOCATION, SUFFIX: Location and name suffix (both required)
    VM_SIZE / VM_STORAGE / VM_BOOT_IMAGE / VM_UNIX_USER:
        (standard-2 / 40 / ubuntu-noble / ubi)
    VM_PUBLIC_KEY_FILE: SSH public key (default: ~/.ssh/id_ed25519.pub)
"""

import os
import time
from dataclasses import dataclass, field
from pathlib import Path
from typing import Mapping, Optional

from .errors import ConfigurationError
from .resource import POSTGRES, PRIVATE_SUBNET, VIRTUAL_MACHINE, ResourceRef
from .verification import DEFAULT_TABLE, check_identifier


def _required(env: Mapping[str, str], name: str) -> str:
    value = env.get(name)
    if value is None or not value.strip():
        raise ConfigurationError(f"{name} environment variable must be set")
    return value.strip()


def _number(env: Mapping[str, str], name: str, default, kind=int):
    value = env.get(name)
    if value is None or not value.strip():
        return default
    try:
        return kind(value.strip())
    except ValueError:
        raise ConfigurationError(f"{name} must be a number, got {value!r}")


@dataclass
class ControlPlaneConfig:
    """How to reach the control plane."""

    token: str = field(repr=False)
    url: str
    binary: str = "ubi"
    command_timeout: float = 120.0

    @classmethod
    def from_env(cls, env: Optional[Mapping[str, str]] = None) -> "ControlPlaneConfig":
        env = os.environ if env is None else env
        return cls(
            token=_required(env, "UBI_TOKEN"),
            url=_required(env, "UBI_URL"),
            binary=env.get("UBI_BIN", "ubi"),
            command_timeout=_number(env, "UBI_COMMAND_TIMEOUT", 120.0, float),
        )


@dataclass
class LifecycleConfig:
    """Settings for the PostgreSQL lifecycle run."""

    control_plane: ControlPlaneConfig
    location: str = "eu-central-h1"
    name: str = field(default_factory=lambda: f"test-pg-{int(time.time())}")
    size: str = "standard-2"
    storage: int = 64
    version: str = "17"
    upgrade_version: str = "18"
    scaled_size: str = "standard-4"
    scaled_storage: int = 128
    table: str = DEFAULT_TABLE
    bulk_rows: int = 100000
    firewall_settle: float = 30.0
    firewall_restore_settle: float = 15.0
    replica_destroy_settle: float = 10.0

    @property
    def primary(self) -> ResourceRef:
        return ResourceRef(self.location, self.name, POSTGRES)

    @property
    def replica(self) -> ResourceRef:
        return self.primary.sibling(f"{self.name}-replica")

    def validate(self) -> "LifecycleConfig":
        """Check names that end up in resource paths and SQL.

        Called again after command-line overrides are applied.
        """
        try:
            self.replica
            check_identifier(self.table)
        except ValueError as e:
            raise ConfigurationError(str(e)) from e
        return self

    @classmethod
    def from_env(cls, env: Optional[Mapping[str, str]] = None) -> "LifecycleConfig":
        """Create configuration from environment variables.

        Raises:
            ConfigurationError: If UBI_TOKEN or UBI_URL is missing, a numeric
                input is not a number, or PG_NAME, PG_LOCATION or PG_TABLE
                cannot be used as a name.
        """
        env = os.environ if env is None else env
        defaults = cls.__dataclass_fields__
        name = env.get("PG_NAME") or f"test-pg-{int(time.time())}"
        config = cls(
            control_plane=ControlPlaneConfig.from_env(env),
            location=env.get("PG_LOCATION", defaults["location"].default),
            name=name,
            size=env.get("PG_SIZE", defaults["size"].default),
            storage=_number(env, "PG_STORAGE", defaults["storage"].default),
            version=env.get("PG_VERSION", defaults["version"].default),
            upgrade_version=env.get(
                "PG_UPGRADE_VERSION", defaults["upgrade_version"].default
            ),
            scaled_size=env.get("PG_SCALED_SIZE", defaults["scaled_size"].default),
            scaled_storage=_number(
                env, "PG_SCALED_STORAGE", defaults["scaled_storage"].default
            ),
            table=env.get("PG_TABLE", defaults["table"].default),
            bulk_rows=_number(env, "PG_BULK_ROWS", defaults["bulk_rows"].default),
            firewall_settle=_number(
                env, "PG_FIREWALL_SETTLE", defaults["firewall_settle"].default, float
            ),
            firewall_restore_settle=_number(
                env,
                "PG_FIREWALL_RESTORE_SETTLE",
                defaults["firewall_restore_settle"].default,
                float,
            ),
            replica_destroy_settle=_number(
                env,
                "PG_REPLICA_DESTROY_SETTLE",
                defaults["replica_destroy_settle"].default,
                float,
            ),
        )
        return config.validate()


@dataclass
class VmSmokeConfig:
    """Settings for the VM + private subnet smoke run."""

    control_plane: ControlPlaneConfig
    location: str
    suffix: str
    public_key: str = field(repr=False)
    size: str = "standard-2"
    storage: int = 40
    boot_image: str = "ubuntu-noble"
    unix_user: str = "ubi"

    @property
    def subnet(self) -> ResourceRef:
        return ResourceRef(self.location, f"subnet-{self.suffix}", PRIVATE_SUBNET)

    @property
    def vm(self) -> ResourceRef:
        return ResourceRef(self.location, f"vm-{self.suffix}", VIRTUAL_MACHINE)

    def validate(self) -> "VmSmokeConfig":
        try:
            self.subnet
            self.vm
        except ValueError as e:
            raise ConfigurationError(str(e)) from e
        return self

    @classmethod
    def from_env(cls, env: Optional[Mapping[str, str]] = None) -> "VmSmokeConfig":
        env = os.environ if env is None else env
        key_file = Path(
            env.get("VM_PUBLIC_KEY_FILE", "~/.ssh/id_ed25519.pub")
        ).expanduser()
        try:
            public_key = key_file.read_text().strip()
        except OSError as e:
            raise ConfigurationError(f"Cannot read public key {key_file}: {e}")
        if not public_key:
            raise ConfigurationError(f"Public key file {key_file} is empty")
        config = cls(
            control_plane=ControlPlaneConfig.from_env(env),
            location=_required(env, "LOCATION"),
            suffix=_required(env, "SUFFIX"),
            public_key=public_key,
            size=env.get("VM_SIZE", "standard-2"),
            storage=_number(env, "VM_STORAGE", 40),
            boot_image=env.get("VM_BOOT_IMAGE", "ubuntu-noble"),
            unix_user=env.get("VM_UNIX_USER", "ubi"),
        )
        return config.validate()
