"""Mutating operations against the backend: terminate processes, act on containers.

Every invocation follows the same protocol:

1. Resolve audit context (display name, first port) from the current
   snapshot. Best effort: the process may already be gone.
2. Pre-flight checks. Protected processes are refused here without
   contacting the backend, whatever the backend would have said.
3. Call the backend. Any fault becomes a failed ``ActionResult``; nothing
   is raised to the caller.
4. Record exactly one audit entry, success or failure.
5. On success, schedule one follow-up refresh after a settle delay.
"""

from __future__ import annotations

import asyncio
from collections.abc import Awaitable, Callable

import structlog

from port_surgeon.audit import AuditLog
from port_surgeon.backend import Backend
from port_surgeon.errors import ActionError, ValidationError
from port_surgeon.models import ActionKind, ActionResult, ContainerAction
from port_surgeon.store import SnapshotStore

log = structlog.get_logger()

UNKNOWN_TARGET = "Unknown"
PROTECTED_MESSAGE = "Operation Forbidden: Critical System Process"


def coerce_container_action(action: ContainerAction | str) -> ContainerAction:
    """Parse a container action name.

    Raises:
        ValidationError: If the name is not a known action
    """
    if isinstance(action, ContainerAction):
        return action
    try:
        return ContainerAction(str(action).lower())
    except ValueError as e:
        valid = [a.value for a in ContainerAction]
        raise ValidationError(f"Unknown container action: {action!r}. Valid: {valid}") from e


class ActionMediator:
    """Executes terminate/container actions with audit and post-action refresh."""

    def __init__(
        self,
        backend: Backend,
        store: SnapshotStore,
        audit: AuditLog,
        refresh: Callable[[], Awaitable[object]],
        process_settle_delay: float = 0.5,
        container_settle_delay: float = 1.0,
    ) -> None:
        self._backend = backend
        self._store = store
        self._audit = audit
        self._refresh = refresh
        self.process_settle_delay = process_settle_delay
        self.container_settle_delay = container_settle_delay
        self._refresh_tasks: set[asyncio.Task] = set()

    @property
    def pending_refreshes(self) -> frozenset[asyncio.Task]:
        """Follow-up refreshes scheduled but not yet finished."""
        return frozenset(self._refresh_tasks)

    async def terminate(self, pid: int, force: bool = False) -> ActionResult:
        """Terminate a process, gracefully or forcefully."""
        kind = ActionKind.for_termination(force)
        process = self._store.find_by_pid(pid)
        name = process.name if process is not None else UNKNOWN_TARGET
        port = process.first_port if process is not None else None

        if isinstance(pid, bool) or not isinstance(pid, int) or pid <= 0:
            result = ActionResult.failure(f"Invalid PID: {pid!r}")
        elif process is not None and process.is_protected:
            log.warning("termination_refused_protected", pid=pid, name=name)
            result = ActionResult.failure(PROTECTED_MESSAGE)
        else:
            result = await self._attempt(
                lambda: self._backend.kill_process(pid, force), "Failed to kill process"
            )

        self._finish(kind, name, pid, port, result, self.process_settle_delay)
        return result

    async def container_action(
        self, container_id: str, action: ContainerAction | str
    ) -> ActionResult:
        """Stop, kill, remove or restart a container.

        Raises:
            ValidationError: If ``action`` is not a known container action
                (rejected before anything is attempted or audited)
        """
        action = coerce_container_action(action)
        kind = ActionKind.for_container(action)
        process = self._store.find_by_container(container_id)
        if process is not None and process.container is not None:
            name = process.container.name
        else:
            name = container_id[:12] if isinstance(container_id, str) else UNKNOWN_TARGET
        pid = process.pid if process is not None else 0
        port = process.first_port if process is not None else None

        if not isinstance(container_id, str) or not container_id.strip():
            result = ActionResult.failure("Container id is required")
        else:
            result = await self._attempt(
                lambda: self._backend.container_action(container_id, action),
                "Failed to execute container action",
            )

        self._finish(kind, name, pid, port, result, self.container_settle_delay)
        return result

    async def _attempt(
        self, call: Callable[[], Awaitable[ActionResult]], fallback: str
    ) -> ActionResult:
        try:
            return await call()
        except Exception as e:
            error = ActionError.wrap(e)
            log.warning("action_failed", code=error.code, error=error.message)
            return ActionResult.failure(
                error.message or fallback, required_elevation=error.code == "ACCESS_DENIED"
            )

    def _finish(
        self,
        kind: ActionKind,
        name: str,
        pid: int,
        port: int | None,
        result: ActionResult,
        settle_delay: float,
    ) -> None:
        self._audit.record(
            action_kind=kind,
            target_name=name,
            pid=pid,
            succeeded=result.success,
            result_message=result.message,
            port=port,
        )
        log.info(
            "action_completed",
            action=kind.value,
            target=name,
            pid=pid,
            success=result.success,
            message=result.message,
        )
        if result.success:
            self._schedule_refresh(settle_delay)

    def _schedule_refresh(self, delay: float) -> None:
        task = asyncio.create_task(self._refresh_after(delay))
        self._refresh_tasks.add(task)
        task.add_done_callback(self._refresh_tasks.discard)

    async def _refresh_after(self, delay: float) -> None:
        await asyncio.sleep(delay)
        await self._refresh()

    async def aclose(self) -> None:
        """Cancel pending follow-up refreshes (shutdown only)."""
        tasks = list(self._refresh_tasks)
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)
