"""Data model for process/port snapshots, actions and audit entries.

Wire payloads from the backend use camelCase keys; every model here reads
them with ``from_dict()`` and writes the same shape back with ``to_dict()``.
All records are frozen: a snapshot is only ever replaced, never patched.
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum

from port_surgeon.errors import ValidationError

MIN_PORT = 1
MAX_PORT = 65535


class Protocol(str, Enum):
    """Transport protocol of a socket binding."""

    TCP = "tcp"
    UDP = "udp"

    @classmethod
    def _missing_(cls, value: object) -> Protocol | None:
        if isinstance(value, str):
            lowered = value.lower()
            for member in cls:
                if member.value == lowered:
                    return member
        return None


class SocketState(str, Enum):
    """TCP/UDP connection lifecycle stage."""

    LISTENING = "LISTENING"
    ESTABLISHED = "ESTABLISHED"
    SYN_SENT = "SYN_SENT"
    SYN_RECEIVED = "SYN_RECEIVED"
    FIN_WAIT_1 = "FIN_WAIT_1"
    FIN_WAIT_2 = "FIN_WAIT_2"
    CLOSE_WAIT = "CLOSE_WAIT"
    CLOSING = "CLOSING"
    LAST_ACK = "LAST_ACK"
    TIME_WAIT = "TIME_WAIT"
    CLOSED = "CLOSED"
    UNKNOWN = "UNKNOWN"

    @classmethod
    def _missing_(cls, value: object) -> SocketState:
        if isinstance(value, str):
            upper = value.upper()
            for member in cls:
                if member.value == upper:
                    return member
        return cls.UNKNOWN


class ContainerRuntime(str, Enum):
    """Container engine that owns a container."""

    DOCKER = "docker"
    PODMAN = "podman"
    CONTAINERD = "containerd"
    UNKNOWN = "unknown"

    @classmethod
    def _missing_(cls, value: object) -> ContainerRuntime:
        if isinstance(value, str):
            lowered = value.lower()
            for member in cls:
                if member.value == lowered:
                    return member
        return cls.UNKNOWN


class ContainerAction(str, Enum):
    """Lifecycle action the backend can apply to a container."""

    STOP = "stop"
    KILL = "kill"
    REMOVE = "remove"
    RESTART = "restart"


class ActionKind(str, Enum):
    """Kind of mutating action recorded in the audit log."""

    GRACEFUL_TERMINATE = "graceful-terminate"
    FORCE_TERMINATE = "force-terminate"
    CONTAINER_STOP = "container-stop"
    CONTAINER_KILL = "container-kill"
    CONTAINER_REMOVE = "container-remove"
    CONTAINER_RESTART = "container-restart"

    @classmethod
    def for_termination(cls, force: bool) -> ActionKind:
        return cls.FORCE_TERMINATE if force else cls.GRACEFUL_TERMINATE

    @classmethod
    def for_container(cls, action: ContainerAction) -> ActionKind:
        return {
            ContainerAction.STOP: cls.CONTAINER_STOP,
            ContainerAction.KILL: cls.CONTAINER_KILL,
            ContainerAction.REMOVE: cls.CONTAINER_REMOVE,
            ContainerAction.RESTART: cls.CONTAINER_RESTART,
        }[action]


def validate_port(port: object) -> int:
    """Return ``port`` if it is an integer in 1-65535, else raise ValidationError."""
    if isinstance(port, bool) or not isinstance(port, int):
        raise ValidationError(f"Port must be an integer, got {port!r}")
    if not MIN_PORT <= port <= MAX_PORT:
        raise ValidationError(f"Port must be between {MIN_PORT} and {MAX_PORT}, got {port}")
    return port


_FRACTION = re.compile(r"\.(\d+)")


def parse_timestamp(value: object) -> datetime | None:
    """Parse a backend timestamp into an aware datetime.

    Accepts ISO-8601 strings (including a trailing ``Z`` and nanosecond
    fractions, which ``fromisoformat`` rejects) and epoch seconds.
    Naive values are taken as UTC.
    """
    if value is None:
        return None
    if isinstance(value, datetime):
        dt = value
    elif isinstance(value, (int, float)) and not isinstance(value, bool):
        return datetime.fromtimestamp(value, tz=timezone.utc)
    else:
        text = str(value).strip()
        if text.endswith(("Z", "z")):
            text = text[:-1] + "+00:00"
        match = _FRACTION.search(text)
        if match and len(match.group(1)) > 6:
            text = text[: match.start(1)] + match.group(1)[:6] + text[match.end(1) :]
        dt = datetime.fromisoformat(text)
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt


def _format_timestamp(value: datetime | None) -> str | None:
    return value.isoformat() if value is not None else None


@dataclass(frozen=True)
class PortBinding:
    """One socket-layer binding held by a process."""

    protocol: Protocol
    local_address: str
    local_port: int
    state: SocketState = SocketState.UNKNOWN
    remote_address: str | None = None
    remote_port: int | None = None

    def to_dict(self) -> dict:
        return {
            "protocol": self.protocol.value,
            "localAddress": self.local_address,
            "localPort": self.local_port,
            "remoteAddress": self.remote_address,
            "remotePort": self.remote_port,
            "state": self.state.value,
        }

    @classmethod
    def from_dict(cls, data: dict) -> PortBinding:
        remote_port = data.get("remotePort")
        return cls(
            protocol=Protocol(data["protocol"]),
            local_address=str(data.get("localAddress", "")),
            local_port=int(data["localPort"]),
            state=SocketState(data.get("state", SocketState.UNKNOWN.value)),
            remote_address=data.get("remoteAddress"),
            remote_port=int(remote_port) if remote_port is not None else None,
        )


@dataclass(frozen=True)
class ContainerPort:
    """Host-to-container port mapping."""

    host_port: int
    container_port: int
    protocol: Protocol = Protocol.TCP
    host_ip: str | None = None

    def to_dict(self) -> dict:
        return {
            "hostPort": self.host_port,
            "containerPort": self.container_port,
            "protocol": self.protocol.value,
            "hostIp": self.host_ip,
        }

    @classmethod
    def from_dict(cls, data: dict) -> ContainerPort:
        return cls(
            host_port=int(data["hostPort"]),
            container_port=int(data["containerPort"]),
            protocol=Protocol(data.get("protocol", Protocol.TCP.value)),
            host_ip=data.get("hostIp"),
        )


@dataclass(frozen=True)
class ContainerInfo:
    """Container whose workload a process proxies on the host."""

    id: str
    name: str
    image: str = ""
    status: str = ""
    state: str = ""
    runtime: ContainerRuntime = ContainerRuntime.UNKNOWN
    ports: tuple[ContainerPort, ...] = ()

    @property
    def short_id(self) -> str:
        """First 12 characters of the id, the way container engines print it."""
        return self.id[:12]

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "name": self.name,
            "image": self.image,
            "status": self.status,
            "state": self.state,
            "runtime": self.runtime.value,
            "ports": [p.to_dict() for p in self.ports],
        }

    @classmethod
    def from_dict(cls, data: dict) -> ContainerInfo:
        return cls(
            id=str(data["id"]),
            name=str(data.get("name", "")),
            image=str(data.get("image", "")),
            status=str(data.get("status", "")),
            state=str(data.get("state", "")),
            runtime=ContainerRuntime(data.get("runtime", ContainerRuntime.UNKNOWN.value)),
            ports=tuple(ContainerPort.from_dict(p) for p in data.get("ports") or ()),
        )


@dataclass(frozen=True)
class ProcessRecord:
    """One OS process holding zero or more ports at scan time.

    ``id`` is unique within a scan only; ``pid`` may be reused by the OS.
    """

    # ─────────────────────────────────────────────────────────────
    # Identity
    # ─────────────────────────────────────────────────────────────
    id: str
    pid: int

    # ─────────────────────────────────────────────────────────────
    # Attributes
    # ─────────────────────────────────────────────────────────────
    name: str
    user: str = "Unknown"
    executable_path: str | None = None
    command_line: str | None = None
    memory_bytes: int = 0
    cpu_percent: float = 0.0  # May exceed 100 on multi-core hosts
    start_time: datetime | None = None
    is_protected: bool = False  # Backend-flagged critical system process

    # ─────────────────────────────────────────────────────────────
    # Relationships
    # ─────────────────────────────────────────────────────────────
    ports: tuple[PortBinding, ...] = ()
    is_container_proxy: bool = False
    container: ContainerInfo | None = None

    @property
    def first_port(self) -> int | None:
        """Local port of the first binding, or None for a port-less process."""
        return self.ports[0].local_port if self.ports else None

    @property
    def local_ports(self) -> tuple[int, ...]:
        return tuple(p.local_port for p in self.ports)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "pid": self.pid,
            "name": self.name,
            "exePath": self.executable_path,
            "commandLine": self.command_line,
            "user": self.user,
            "memoryUsage": self.memory_bytes,
            "cpuUsage": self.cpu_percent,
            "startTime": _format_timestamp(self.start_time),
            "ports": [p.to_dict() for p in self.ports],
            "isDockerProxy": self.is_container_proxy,
            "container": self.container.to_dict() if self.container is not None else None,
            "isProtected": self.is_protected,
        }

    @classmethod
    def from_dict(cls, data: dict) -> ProcessRecord:
        pid = int(data["pid"])
        container = data.get("container")
        ports = tuple(PortBinding.from_dict(p) for p in data.get("ports") or ())
        return cls(
            id=str(data.get("id") or f"{pid}-{ports[0].local_port if ports else 0}"),
            pid=pid,
            name=str(data.get("name") or "Unknown"),
            user=str(data.get("user") or "Unknown"),
            executable_path=data.get("exePath"),
            command_line=data.get("commandLine"),
            memory_bytes=max(0, int(data.get("memoryUsage", 0))),
            cpu_percent=max(0.0, float(data.get("cpuUsage", 0.0))),
            start_time=parse_timestamp(data.get("startTime")),
            is_protected=bool(data.get("isProtected", False)),
            ports=ports,
            is_container_proxy=bool(data.get("isDockerProxy", False)),
            container=ContainerInfo.from_dict(container) if container else None,
        )


@dataclass(frozen=True)
class Snapshot:
    """Point-in-time result of one full backend scan."""

    processes: tuple[ProcessRecord, ...]
    total_connections: int
    listening_ports: int
    backend_available: bool
    captured_at: datetime

    def find_by_pid(self, pid: int) -> ProcessRecord | None:
        for process in self.processes:
            if process.pid == pid:
                return process
        return None

    def find_by_container(self, container_id: str) -> ProcessRecord | None:
        for process in self.processes:
            if process.container is not None and process.container.id == container_id:
                return process
        return None

    @property
    def pids(self) -> list[int]:
        return [p.pid for p in self.processes]

    def to_dict(self) -> dict:
        return {
            "processes": [p.to_dict() for p in self.processes],
            "totalConnections": self.total_connections,
            "listeningPorts": self.listening_ports,
            "dockerAvailable": self.backend_available,
            "lastUpdated": self.captured_at.isoformat(),
        }

    @classmethod
    def from_dict(cls, data: dict) -> Snapshot:
        captured_at = parse_timestamp(data.get("lastUpdated")) or datetime.now(timezone.utc)
        return cls(
            processes=tuple(ProcessRecord.from_dict(p) for p in data.get("processes") or ()),
            total_connections=int(data.get("totalConnections", 0)),
            listening_ports=int(data.get("listeningPorts", 0)),
            backend_available=bool(data.get("dockerAvailable", False)),
            captured_at=captured_at,
        )


@dataclass(frozen=True)
class ActionResult:
    """Outcome of a termination or container action."""

    success: bool
    message: str
    required_elevation: bool = False

    def to_dict(self) -> dict:
        return {
            "success": self.success,
            "message": self.message,
            "requiredElevation": self.required_elevation,
        }

    @classmethod
    def from_dict(cls, data: dict) -> ActionResult:
        return cls(
            success=bool(data["success"]),
            message=str(data.get("message", "")),
            required_elevation=bool(data.get("requiredElevation", False)),
        )

    @classmethod
    def failure(cls, message: str, required_elevation: bool = False) -> ActionResult:
        return cls(success=False, message=message, required_elevation=required_elevation)


@dataclass(frozen=True)
class AuditEntry:
    """Immutable record of one attempted mutating action."""

    id: str
    timestamp: datetime
    action_kind: ActionKind
    target_name: str
    pid: int
    succeeded: bool
    result_message: str
    port: int | None = None

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "timestamp": self.timestamp.isoformat(),
            "action": self.action_kind.value,
            "processName": self.target_name,
            "pid": self.pid,
            "port": self.port,
            "success": self.succeeded,
            "message": self.result_message,
        }
