"""
Unit tests for the ubi CLI adapter.

The child process is replaced with a fake so the tests check argv, the
child environment and exit-status classification without a ubi binary.
"""

import asyncio
from unittest.mock import AsyncMock, patch

import pytest

from pglifecycle.adapters.ubi_cli import UbiCliClient
from pglifecycle.core.errors import ResourceNotFoundError, TransportError
from pglifecycle.core.fields import FieldStatus
from pglifecycle.core.policies import row_count_reached, run_policy
from pglifecycle.core.resource import ResourceRef
from pglifecycle.core.verification import AccessPath, SqlRunner

SPAWN = "pglifecycle.adapters.ubi_cli.asyncio.create_subprocess_exec"


class FakeProcess:
    def __init__(self, returncode=0, stdout=b"", stderr=b"", hang=False):
        self._returncode = returncode
        self.returncode = None
        self.stdout = stdout
        self.stderr = stderr
        self.hang = hang
        self.killed = False

    async def communicate(self):
        if self.hang:
            await asyncio.sleep(3600)
        self.returncode = self._returncode
        return self.stdout, self.stderr

    def kill(self):
        self.killed = True
        self.returncode = -9

    async def wait(self):
        return self.returncode


@pytest.fixture
def client():
    return UbiCliClient(
        token="secret-token", url="https://api.example.com", env={"PATH": "/usr/bin"}
    )


@pytest.mark.unit
class TestUbiCliClient:
    @pytest.mark.asyncio
    async def test_argv_and_environment(self, client, primary_ref):
        spawn = AsyncMock(return_value=FakeProcess(stdout=b"state: running\n"))

        with patch(SPAWN, spawn):
            output = await client.show_field(primary_ref, "state")

        assert output == "state: running\n"
        args, kwargs = spawn.call_args
        assert args == ("ubi", "pg", "eu-central-h1/test-pg-1", "show", "-f", "state")
        assert kwargs["env"] == {
            "PATH": "/usr/bin",
            "UBI_TOKEN": "secret-token",
            "UBI_URL": "https://api.example.com",
        }
        assert kwargs["stdin"] == asyncio.subprocess.DEVNULL

    @pytest.mark.asyncio
    async def test_vm_create_arguments(self, client):
        vm = ResourceRef("eu-central-h1", "vm-abc", "vm")
        spawn = AsyncMock(return_value=FakeProcess())

        with patch(SPAWN, spawn):
            await client.create_vm(
                vm,
                size="standard-2",
                storage_size=40,
                boot_image="ubuntu-noble",
                subnet="subnet-abc",
                unix_user="ubi",
                public_key="ssh-ed25519 AAAA",
            )

        assert spawn.call_args[0] == (
            "ubi",
            "vm",
            "eu-central-h1/vm-abc",
            "create",
            "--size=standard-2",
            "--storage-size=40",
            "--boot-image=ubuntu-noble",
            "--private-subnet-id=subnet-abc",
            "--unix-user=ubi",
            "ssh-ed25519 AAAA",
        )

    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        "stderr",
        [b"Error: resource not found", b"HTTP 404", b"PostgreSQL does not exist"],
    )
    async def test_not_found_classification(self, client, primary_ref, stderr):
        spawn = AsyncMock(return_value=FakeProcess(returncode=1, stderr=stderr))

        with patch(SPAWN, spawn):
            with pytest.raises(ResourceNotFoundError) as exc_info:
                await client.show(primary_ref)

        assert exc_info.value.operation == "show"
        assert exc_info.value.ref == primary_ref

    @pytest.mark.asyncio
    async def test_other_failures_are_transport_errors(self, client, primary_ref):
        spawn = AsyncMock(
            return_value=FakeProcess(returncode=1, stderr=b"502 Bad Gateway\n")
        )

        with patch(SPAWN, spawn):
            with pytest.raises(TransportError) as exc_info:
                await client.show(primary_ref)

        assert exc_info.value.stderr == "502 Bad Gateway"

    @pytest.mark.asyncio
    async def test_sql_errors_are_not_resource_not_found(self, client, primary_ref):
        stderr = b'ERROR:  relation "lifecycle_test" does not exist\n'
        spawn = AsyncMock(return_value=FakeProcess(returncode=1, stderr=stderr))

        with patch(SPAWN, spawn):
            with pytest.raises(TransportError) as exc_info:
                await client.psql(primary_ref, "SELECT count(*) FROM lifecycle_test")

        assert not isinstance(exc_info.value, ResourceNotFoundError)
        assert exc_info.value.operation == "psql"

    @pytest.mark.asyncio
    async def test_proxied_row_count_keeps_polling_on_missing_table(
        self, client, primary_ref, fake_clock
    ):
        stderr = b'ERROR:  relation "lifecycle_test" does not exist\n'
        spawn = AsyncMock(return_value=FakeProcess(returncode=1, stderr=stderr))

        with patch(SPAWN, spawn):
            outcome = await run_policy(
                row_count_reached(
                    SqlRunner(client),
                    primary_ref,
                    1,
                    access_path=AccessPath.PROXIED,
                    timeout=20,
                    interval=10,
                ),
                **fake_clock.engine,
            )

        assert outcome.converged is False
        assert outcome.attempts > 1
        assert "does not exist" in outcome.value.detail

    @pytest.mark.asyncio
    async def test_missing_binary(self, client, primary_ref):
        spawn = AsyncMock(side_effect=FileNotFoundError("ubi"))

        with patch(SPAWN, spawn):
            with pytest.raises(TransportError, match="Cannot run ubi"):
                await client.show(primary_ref)

    @pytest.mark.asyncio
    async def test_timeout_kills_process(self, primary_ref):
        client = UbiCliClient(token="t", url="u", command_timeout=0.01, env={})
        process = FakeProcess(hang=True)

        with patch(SPAWN, AsyncMock(return_value=process)):
            with pytest.raises(TransportError, match="timed out"):
                await client.show(primary_ref)

        assert process.killed

    @pytest.mark.asyncio
    async def test_destroy_missing_ok(self, client, primary_ref):
        spawn = AsyncMock(return_value=FakeProcess(returncode=1, stderr=b"not found"))

        with patch(SPAWN, spawn):
            assert await client.destroy(primary_ref, missing_ok=True) is False
            with pytest.raises(ResourceNotFoundError):
                await client.destroy(primary_ref)

        assert spawn.call_args[0][-2:] == ("destroy", "-f")

    @pytest.mark.asyncio
    async def test_get_field_folds_transport_errors(self, client, primary_ref):
        spawn = AsyncMock(return_value=FakeProcess(returncode=2, stderr=b"timeout"))

        with patch(SPAWN, spawn):
            value = await client.get_field(primary_ref, "state")

        assert value.status is FieldStatus.UNAVAILABLE
        assert "timeout" in value.detail

    @pytest.mark.asyncio
    async def test_firewall_rule_ids(self, client, primary_ref):
        listing = b"firewall-rules:\n  1: fr1  0.0.0.0/0  5432\n  2: fr2  ::/0  5432\n"
        spawn = AsyncMock(return_value=FakeProcess(stdout=listing))

        with patch(SPAWN, spawn):
            assert await client.firewall_rule_ids(primary_ref) == ["fr1", "fr2"]
