"""Contract with the native enumeration/termination service, and its socket transport.

The service does the privileged work (socket table scans, process metadata,
kill, container engine calls). This module only defines what the client
needs from it and how requests travel.

Wire format, one JSON object per line over a Unix socket:

    -> {"id": 1, "command": "get_processes", "args": {"showAllConnections": false}}
    <- {"id": 1, "ok": true, "result": {...}}
    <- {"id": 1, "ok": false, "error": {"code": "...", "message": "...", "details": null}}

Each request uses its own connection, so concurrent requests never share
a stream.
"""

from __future__ import annotations

import asyncio
import itertools
import json
from collections.abc import Callable
from pathlib import Path
from typing import Any, Protocol, TypeVar

import structlog

from port_surgeon.errors import BackendError
from port_surgeon.models import (
    ActionResult,
    ContainerAction,
    ContainerInfo,
    ProcessRecord,
    Snapshot,
)

log = structlog.get_logger()

T = TypeVar("T")

# Full snapshots with command lines run well past asyncio's 64 KiB line default
MAX_RESPONSE_BYTES = 32 * 1024 * 1024


class Backend(Protocol):
    """Asynchronous request/response contract of the remote service.

    Every method raises ``BackendError`` on a backend fault.
    """

    async def get_processes(self, show_all_connections: bool) -> Snapshot: ...

    async def find_port(self, port: int) -> list[ProcessRecord]: ...

    async def kill_process(self, pid: int, force: bool) -> ActionResult: ...

    async def container_action(
        self, container_id: str, action: ContainerAction
    ) -> ActionResult: ...

    async def get_containers(self) -> list[ContainerInfo]: ...


def _decode(command: str, parse: Callable[[Any], T], payload: Any) -> T:
    """Apply a model parser, turning shape errors into BAD_RESPONSE."""
    try:
        return parse(payload)
    except (KeyError, TypeError, ValueError, AttributeError) as e:
        raise BackendError(
            "BAD_RESPONSE", f"Malformed {command} response", f"{type(e).__name__}: {e}"
        ) from e


def _decode_list(command: str, parse: Callable[[Any], T], payload: Any) -> list[T]:
    if not isinstance(payload, list):
        raise BackendError(
            "BAD_RESPONSE", f"Malformed {command} response", "expected a list"
        )
    return [_decode(command, parse, item) for item in payload]


class SocketBackend:
    """Backend reached over the service's Unix socket."""

    def __init__(
        self,
        socket_path: Path,
        request_timeout: float = 10.0,
        max_response_bytes: int = MAX_RESPONSE_BYTES,
    ) -> None:
        self.socket_path = socket_path
        self.request_timeout = request_timeout
        self.max_response_bytes = max_response_bytes
        self._ids = itertools.count(1)

    async def _call(self, command: str, args: dict[str, Any]) -> Any:
        """Send one request on a fresh connection and return its ``result``.

        Raises:
            BackendError: UNAVAILABLE, TIMEOUT, CONNECTION, BAD_RESPONSE, or
                whatever error the service itself reported
        """
        if not self.socket_path.exists():
            raise BackendError(
                "UNAVAILABLE", "Backend service is not running", str(self.socket_path)
            )
        try:
            reader, writer = await asyncio.open_unix_connection(
                str(self.socket_path), limit=self.max_response_bytes
            )
        except OSError as e:
            raise BackendError("UNAVAILABLE", f"Cannot connect to backend: {e}") from e

        request_id = next(self._ids)
        request = {"id": request_id, "command": command, "args": args}
        log.debug("backend_request", command=command, request_id=request_id)
        try:
            writer.write(json.dumps(request).encode() + b"\n")
            await writer.drain()
            line = await asyncio.wait_for(
                reader.readuntil(b"\n"), timeout=self.request_timeout
            )
        except asyncio.TimeoutError as e:
            raise BackendError(
                "TIMEOUT", f"Backend did not answer {command} within {self.request_timeout:g}s"
            ) from e
        except asyncio.IncompleteReadError as e:
            raise BackendError(
                "CONNECTION", "Connection closed by server", f"{len(e.partial)} bytes received"
            ) from e
        except asyncio.LimitOverrunError as e:
            raise BackendError(
                "BAD_RESPONSE",
                f"{command} response exceeds {self.max_response_bytes} bytes",
            ) from e
        except ConnectionError as e:
            raise BackendError("CONNECTION", f"Connection lost: {e}") from e
        finally:
            writer.close()
            try:
                await writer.wait_closed()
            except (ConnectionError, OSError):
                pass  # Peer already gone

        try:
            response = json.loads(line)
        except (json.JSONDecodeError, UnicodeDecodeError) as e:
            raise BackendError("BAD_RESPONSE", f"Invalid JSON from backend: {e}") from e

        if not isinstance(response, dict):
            raise BackendError("BAD_RESPONSE", "Backend response is not an object")
        if response.get("ok"):
            return response.get("result")
        raise BackendError.from_dict(response.get("error"))

    async def get_processes(self, show_all_connections: bool) -> Snapshot:
        result = await self._call(
            "get_processes", {"showAllConnections": show_all_connections}
        )
        return _decode("get_processes", Snapshot.from_dict, result)

    async def find_port(self, port: int) -> list[ProcessRecord]:
        result = await self._call("find_port", {"port": port})
        return _decode_list("find_port", ProcessRecord.from_dict, result)

    async def kill_process(self, pid: int, force: bool) -> ActionResult:
        result = await self._call("kill_process", {"pid": pid, "force": force})
        return _decode("kill_process", ActionResult.from_dict, result)

    async def container_action(self, container_id: str, action: ContainerAction) -> ActionResult:
        result = await self._call(
            "container_action", {"containerId": container_id, "action": action.value}
        )
        return _decode("container_action", ActionResult.from_dict, result)

    async def get_containers(self) -> list[ContainerInfo]:
        result = await self._call("get_containers", {})
        return _decode_list("get_containers", ContainerInfo.from_dict, result)
