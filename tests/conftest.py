"""Shared test fixtures for port-surgeon."""

import asyncio
import tempfile
from datetime import datetime, timezone
from pathlib import Path

import pytest

from port_surgeon.errors import BackendError
from port_surgeon.models import (
    ActionResult,
    ContainerAction,
    ContainerInfo,
    PortBinding,
    ProcessRecord,
    Protocol,
    Snapshot,
    SocketState,
)


@pytest.fixture
def tmp_db(tmp_path: Path) -> Path:
    """Create a temporary database path."""
    return tmp_path / "state.db"


@pytest.fixture
def short_tmp_path():
    """Create a short temporary path for Unix sockets.

    Unix socket paths are limited to ~104 characters and pytest's
    tmp_path is too long, so we use /tmp directly.
    """
    with tempfile.TemporaryDirectory(dir="/tmp", prefix="ps_") as tmpdir:
        yield Path(tmpdir)


def make_port(
    port: int = 8080,
    protocol: Protocol = Protocol.TCP,
    state: SocketState = SocketState.LISTENING,
    address: str = "0.0.0.0",
) -> PortBinding:
    """Create a PortBinding for testing."""
    return PortBinding(protocol=protocol, local_address=address, local_port=port, state=state)


def make_process(
    pid: int = 100,
    name: str = "node",
    ports: tuple[int, ...] | tuple[PortBinding, ...] = (8080,),
    user: str = "dev",
    memory_bytes: int = 1024,
    cpu_percent: float = 1.0,
    is_protected: bool = False,
    container: ContainerInfo | None = None,
    command_line: str | None = None,
) -> ProcessRecord:
    """Create a ProcessRecord for testing; int ports become listening TCP bindings."""
    bindings = tuple(make_port(p) if isinstance(p, int) else p for p in ports)
    first = bindings[0].local_port if bindings else 0
    return ProcessRecord(
        id=f"{pid}-{first}",
        pid=pid,
        name=name,
        user=user,
        command_line=command_line,
        memory_bytes=memory_bytes,
        cpu_percent=cpu_percent,
        is_protected=is_protected,
        ports=bindings,
        is_container_proxy=container is not None,
        container=container,
    )


def make_container(
    container_id: str = "abcdef0123456789abcdef",
    name: str = "web",
    image: str = "nginx:latest",
) -> ContainerInfo:
    """Create a ContainerInfo for testing."""
    return ContainerInfo(id=container_id, name=name, image=image, state="running")


def make_snapshot(*processes: ProcessRecord, listening: int | None = None) -> Snapshot:
    """Create a Snapshot holding the given processes."""
    return Snapshot(
        processes=tuple(processes),
        total_connections=sum(len(p.ports) for p in processes),
        listening_ports=len(processes) if listening is None else listening,
        backend_available=True,
        captured_at=datetime(2024, 1, 1, tzinfo=timezone.utc),
    )


class FakeBackend:
    """In-memory Backend that records every call.

    Set ``snapshot`` / ``kill_result`` / ``container_result`` for replies,
    or ``error`` to make every call raise it.
    """

    def __init__(self, snapshot: Snapshot | None = None) -> None:
        self.snapshot = snapshot if snapshot is not None else make_snapshot()
        self.port_results: dict[int, list[ProcessRecord]] = {}
        self.containers: list[ContainerInfo] = []
        self.kill_result = ActionResult(success=True, message="Process terminated")
        self.container_result = ActionResult(success=True, message="Container stopped")
        self.error: Exception | None = None
        self.delay = 0.0
        self.calls: list[tuple] = []

    async def _respond(self, call: tuple, value):
        self.calls.append(call)
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.error is not None:
            raise self.error
        return value

    def calls_to(self, command: str) -> list[tuple]:
        return [c for c in self.calls if c[0] == command]

    async def get_processes(self, show_all_connections: bool) -> Snapshot:
        return await self._respond(("get_processes", show_all_connections), self.snapshot)

    async def find_port(self, port: int) -> list[ProcessRecord]:
        return await self._respond(("find_port", port), self.port_results.get(port, []))

    async def kill_process(self, pid: int, force: bool) -> ActionResult:
        return await self._respond(("kill_process", pid, force), self.kill_result)

    async def container_action(self, container_id: str, action: ContainerAction) -> ActionResult:
        return await self._respond(
            ("container_action", container_id, action), self.container_result
        )

    async def get_containers(self) -> list[ContainerInfo]:
        return await self._respond(("get_containers",), self.containers)


@pytest.fixture
def backend() -> FakeBackend:
    return FakeBackend()


@pytest.fixture
def backend_error() -> BackendError:
    return BackendError("UNAVAILABLE", "Backend service is not running")
