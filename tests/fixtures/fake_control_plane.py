"""
In-memory control plane for unit tests.

FakeControlPlane implements ResourceClient.invoke by dispatching on the
operation name, so the field parsing, error classification and destroy
semantics under test are the real ones from ResourceClient. Asynchronous
transitions (provisioning, scaling, upgrades) are modelled as scripted
field values consumed one per read: the last value sticks.

FakeConnector stands in for asyncpg.connect. A database refuses
connections while its firewall has no rules.
"""

import re
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Tuple

import asyncpg

from pglifecycle.adapters.base import ResourceClient
from pglifecycle.core.errors import ResourceNotFoundError, TransportError
from pglifecycle.core.resource import ResourceRef


class FakeClock:
    """Monotonic clock advanced only by sleeps."""

    def __init__(self, start: float = 0.0):
        self.now = start
        self.sleeps: List[float] = []

    def __call__(self) -> float:
        return self.now

    async def sleep(self, seconds: float) -> None:
        self.sleeps.append(seconds)
        self.now += seconds

    @property
    def engine(self) -> dict:
        """Keyword arguments for poll()/wait_for()."""
        return {"clock": self, "sleep": self.sleep}


class FakeSqlError(Exception):
    pass


class FakeDatabase:
    """Understands just the statements the lifecycle run issues."""

    _VALUES = re.compile(r"\('([^']*)'\)")
    _SERIES = re.compile(r"generate_series\(\s*1\s*,\s*(\d+)\s*\)")
    _COUNT = re.compile(
        r"SELECT COUNT\(\*\) FROM (\w+)(?: WHERE data LIKE '([^%']*)%')?", re.I
    )

    def __init__(self, source: Optional["FakeDatabase"] = None):
        self.tables: Dict[str, List[str]] = {}
        # A replica reads the source's tables
        self.source = source
        self.statements: List[str] = []

    def _tables(self) -> Dict[str, List[str]]:
        return self.source._tables() if self.source else self.tables

    def run(self, query: str):
        self.statements.append(query)
        text = query.strip()
        upper = text.upper()
        if upper.startswith("SELECT 1"):
            return 1
        if upper.startswith("CREATE TABLE"):
            name = text.split()[2]
            self._tables()[name] = []
            return "CREATE TABLE"
        if upper.startswith("INSERT INTO"):
            name = text.split()[2]
            rows = self._table(name)
            series = self._SERIES.search(text)
            if series:
                count = int(series.group(1))
                rows.extend(f"bulk_{i}" for i in range(1, count + 1))
            else:
                count = len(self._VALUES.findall(text))
                rows.extend(self._VALUES.findall(text))
            return f"INSERT 0 {count}"
        match = self._COUNT.match(text)
        if match:
            rows = self._table(match.group(1))
            prefix = match.group(2)
            if prefix is None:
                return len(rows)
            return sum(1 for row in rows if row.startswith(prefix))
        raise FakeSqlError(f"unsupported statement: {query}")

    def _table(self, name: str) -> List[str]:
        tables = self._tables()
        if name not in tables:
            raise FakeSqlError(f'relation "{name}" does not exist')
        return tables[name]


@dataclass
class FakeResource:
    ref: ResourceRef
    fields: Dict[str, List[str]] = field(default_factory=dict)
    firewall: Dict[str, str] = field(default_factory=dict)
    database: FakeDatabase = field(default_factory=FakeDatabase)
    upgrade_status: List[str] = field(default_factory=lambda: ["running"])
    ssh_failures: int = 0

    def read(self, name: str) -> Optional[str]:
        values = self.fields.get(name)
        if not values:
            return None
        if len(values) > 1:
            return values.pop(0)
        return values[0]

    def script(self, name: str, *values: str) -> None:
        self.fields[name] = list(values)


class FakeControlPlane(ResourceClient):
    """ResourceClient whose backend is a dict of FakeResource."""

    def __init__(self, provisioning_reads: int = 2):
        self.resources: Dict[Tuple[str, str], FakeResource] = {}
        self.calls: List[Tuple[str, str, Tuple[str, ...]]] = []
        self.provisioning_reads = provisioning_reads
        self.failures: Dict[str, List[Exception]] = {}
        self._rule_seq = 0

    # Test helpers

    def get(self, ref: ResourceRef) -> FakeResource:
        return self.resources[(ref.kind, ref.path)]

    def exists(self, ref: ResourceRef) -> bool:
        return (ref.kind, ref.path) in self.resources

    def add(self, ref: ResourceRef, **fields: str) -> FakeResource:
        resource = FakeResource(ref=ref)
        for name, value in fields.items():
            resource.script(name.replace("_", "-"), value)
        self.resources[(ref.kind, ref.path)] = resource
        return resource

    def fail_next(self, operation: str, error: Exception) -> None:
        self.failures.setdefault(operation, []).append(error)

    def operations(self, ref: Optional[ResourceRef] = None) -> List[str]:
        return [
            op for path, op, _ in self.calls if ref is None or path == ref.path
        ]

    def _new_rule(self, cidr: str) -> str:
        self._rule_seq += 1
        return f"fr{self._rule_seq:04d}"

    def _pending(self) -> List[str]:
        return ["creating"] * self.provisioning_reads

    # ResourceClient

    async def invoke(self, ref: ResourceRef, operation: str, *args: str) -> str:
        self.calls.append((ref.path, operation, args))
        queued = self.failures.get(operation)
        if queued:
            raise queued.pop(0)

        key = (ref.kind, ref.path)
        if operation == "create":
            return self._create(ref, args)
        if key not in self.resources:
            raise ResourceNotFoundError(
                f"{ref} not found ({operation})", ref=ref, operation=operation
            )
        resource = self.resources[key]
        handler = getattr(self, "_op_" + operation.replace("-", "_"))
        return handler(resource, args)

    def _create(self, ref: ResourceRef, args) -> str:
        resource = FakeResource(ref=ref)
        if ref.kind == "pg":
            opts = dict(zip(args[::2], args[1::2]))
            resource.script("state", *self._pending(), "running")
            resource.script("vm-size", opts.get("-s", "standard-2"))
            resource.script("storage-size-gib", opts.get("-S", "64"))
            resource.script("version", opts.get("-v", "17"))
            resource.script("connection-string", self._dsn(ref))
            resource.script(
                "earliest-restore-time",
                *[""] * self.provisioning_reads,
                "2026-10-17T12:00:00Z",
            )
            resource.firewall = {
                self._new_rule("0.0.0.0/0"): "0.0.0.0/0",
                self._new_rule("::/0"): "::/0",
            }
        self.resources[(ref.kind, ref.path)] = resource
        return f"{ref} created\n"

    @staticmethod
    def _dsn(ref: ResourceRef) -> str:
        return (
            f"postgres://postgres:s3cret@{ref.name}.{ref.location}.pg.example.com"
            f":5432/postgres?sslmode=require&channel_binding=require"
        )

    def _op_show(self, resource: FakeResource, args) -> str:
        if args and args[0] == "-f":
            name = args[1]
            if name == "firewall-rules":
                lines = ["firewall-rules:"]
                for i, (rule_id, cidr) in enumerate(resource.firewall.items(), 1):
                    lines.append(f"  {i}: {rule_id}  {cidr}  5432")
                return "\n".join(lines) + "\n"
            value = resource.read(name)
            return f"{name}: {value if value is not None else ''}\n"
        lines = [f"id: {resource.ref.name}"]
        for name, values in resource.fields.items():
            lines.append(f"{name}: {values[-1] if values else ''}")
        return "\n".join(lines) + "\n"

    def _op_modify(self, resource: FakeResource, args) -> str:
        opts = dict(zip(args[::2], args[1::2]))
        current_size = resource.fields["vm-size"][-1]
        current_storage = resource.fields["storage-size-gib"][-1]
        resource.script(
            "vm-size", *[current_size] * self.provisioning_reads, opts["-s"]
        )
        # The API reports storage as a float once resized
        resource.script(
            "storage-size-gib",
            *[current_storage] * self.provisioning_reads,
            f"{float(opts['-S']):.1f}",
        )
        return "modified\n"

    def _op_upgrade(self, resource: FakeResource, args) -> str:
        current = resource.fields["version"][-1]
        resource.script(
            "version", *[current] * self.provisioning_reads, str(int(current) + 1)
        )
        resource.upgrade_status = ["upgrade-in-progress"]
        return "upgrade scheduled\n"

    def _op_show_upgrade_status(self, resource: FakeResource, args) -> str:
        return f"Status: {resource.upgrade_status[0]}\n"

    def _op_add_firewall_rule(self, resource: FakeResource, args) -> str:
        resource.firewall[self._new_rule(args[0])] = args[0]
        return "rule added\n"

    def _op_delete_firewall_rule(self, resource: FakeResource, args) -> str:
        if args[0] not in resource.firewall:
            raise ResourceNotFoundError(f"firewall rule {args[0]} not found")
        del resource.firewall[args[0]]
        return "rule deleted\n"

    def _op_create_read_replica(self, resource: FakeResource, args) -> str:
        replica_ref = resource.ref.sibling(args[0])
        replica = FakeResource(ref=replica_ref)
        replica.script("state", *self._pending(), "running")
        replica.script("connection-string", self._dsn(replica_ref))
        replica.script("version", resource.fields["version"][-1])
        replica.firewall = dict(resource.firewall)
        replica.database = FakeDatabase(source=resource.database)
        self.resources[(replica_ref.kind, replica_ref.path)] = replica
        return f"{replica_ref} created\n"

    def _op_destroy(self, resource: FakeResource, args) -> str:
        del self.resources[(resource.ref.kind, resource.ref.path)]
        return f"{resource.ref} destroyed\n"

    def _op_psql(self, resource: FakeResource, args) -> str:
        query = args[-1]
        try:
            result = resource.database.run(query)
        except FakeSqlError as e:
            raise TransportError(f"psql failed: {e}", ref=resource.ref)
        return f"{result}\n"

    def _op_ssh(self, resource: FakeResource, args) -> str:
        if resource.ssh_failures > 0:
            resource.ssh_failures -= 1
            raise TransportError("ssh: connect to host port 22: Connection refused")
        command = list(args[1:])
        if command[:1] == ["echo"]:
            return " ".join(command[1:]) + "\n"
        if command == ["uptime"]:
            return " 12:00:00 up 1 min,  0 users,  load average: 0.00\n"
        return "\n"


class FakeConnection:
    def __init__(self, database: FakeDatabase):
        self.database = database
        self.closed = False
        self.close_timeout = None

    async def execute(self, query: str):
        return self._run(query)

    async def fetchval(self, query: str):
        return self._run(query)

    def _run(self, query: str):
        try:
            return self.database.run(query)
        except FakeSqlError as e:
            raise asyncpg.InterfaceError(str(e))

    async def close(self, timeout=None) -> None:
        self.close_timeout = timeout
        self.closed = True


class FakeConnector:
    """asyncpg.connect replacement routed through FakeControlPlane."""

    def __init__(self, control_plane: FakeControlPlane):
        self.control_plane = control_plane
        self.attempts: List[str] = []
        self.connections: List[FakeConnection] = []

    async def __call__(self, dsn: str, **kwargs) -> FakeConnection:
        self.attempts.append(dsn)
        for resource in self.control_plane.resources.values():
            if resource.ref.kind != "pg":
                continue
            if f"//postgres:s3cret@{resource.ref.name}." not in dsn:
                continue
            if not resource.firewall:
                raise ConnectionRefusedError(111, "Connection refused")
            conn = FakeConnection(resource.database)
            self.connections.append(conn)
            return conn
        raise OSError(f"could not resolve host for {dsn}")
