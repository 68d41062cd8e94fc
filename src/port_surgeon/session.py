"""Client session: the single state object the presentation layer talks to.

A ``Session`` is created once at startup with its backend, config and
favorites, handed to whatever needs it, and closed at shutdown. It owns
the snapshot store, selection, audit log, poll scheduler and action
mediator, plus the current filter and sort.
"""

from __future__ import annotations

from collections.abc import Callable
from types import TracebackType
from typing import Any

import structlog

from port_surgeon.audit import AuditLog
from port_surgeon.backend import Backend
from port_surgeon.config import Config
from port_surgeon.errors import FetchError
from port_surgeon.favorites import FavoritesRegistry
from port_surgeon.mediator import ActionMediator
from port_surgeon.models import (
    ActionResult,
    AuditEntry,
    ContainerAction,
    ContainerInfo,
    ProcessRecord,
    Snapshot,
    validate_port,
)
from port_surgeon.poller import PollScheduler
from port_surgeon.selection import SelectionTracker
from port_surgeon.store import SnapshotStore
from port_surgeon.view import FilterSpec, SortSpec, build_view

log = structlog.get_logger()


class Session:
    """Authoritative client state plus every command entry point."""

    def __init__(
        self,
        backend: Backend,
        config: Config | None = None,
        favorites: FavoritesRegistry | None = None,
    ) -> None:
        self.config = config or Config()
        self.backend = backend
        self.favorites = favorites if favorites is not None else FavoritesRegistry()
        self.store = SnapshotStore()
        self.selection = SelectionTracker()
        self.audit_log = AuditLog(max_entries=self.config.audit.max_entries)
        self.filter = FilterSpec(include_non_listening=self.config.polling.show_all_connections)
        self.sort = SortSpec(
            field=self.config.view.sort_field,  # type: ignore[arg-type]
            direction=self.config.view.sort_direction,  # type: ignore[arg-type]
        )
        self.last_error: FetchError | None = None
        self.on_snapshot: Callable[[Snapshot], None] | None = None
        self.on_error: Callable[[FetchError], None] | None = None
        self._in_flight = 0

        self.poller = PollScheduler(self.refresh, interval=self.config.polling.interval)
        self.mediator = ActionMediator(
            backend,
            self.store,
            self.audit_log,
            self.refresh,
            process_settle_delay=self.config.actions.process_settle_delay,
            container_settle_delay=self.config.actions.container_settle_delay,
        )

    async def __aenter__(self) -> Session:
        return self

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        tb: TracebackType | None,
    ) -> None:
        await self.aclose()

    # ─────────────────────────────────────────────────────────────
    # Read accessors
    # ─────────────────────────────────────────────────────────────

    @property
    def snapshot(self) -> Snapshot | None:
        """Latest snapshot, or None before the first successful fetch."""
        return self.store.current()

    @property
    def is_loading(self) -> bool:
        """Whether any fetch is in flight."""
        return self._in_flight > 0

    @property
    def audit_entries(self) -> list[AuditEntry]:
        return self.audit_log.entries

    def view(self) -> list[ProcessRecord]:
        """Filtered, sorted, favorite-pinned processes for display."""
        return build_view(self.snapshot, self.filter, self.sort, self.favorites)

    def selected_processes(self) -> list[ProcessRecord]:
        """Multi-selected pids that still have a process in the snapshot."""
        snapshot = self.snapshot
        if snapshot is None:
            return []
        return [p for p in snapshot.processes if self.selection.is_selected(p.pid)]

    # ─────────────────────────────────────────────────────────────
    # View state
    # ─────────────────────────────────────────────────────────────

    def set_filter(self, **changes: object) -> FilterSpec:
        """Partially update the filter (e.g. ``search_query="node"``).

        Raises:
            ValidationError: If a protocol or state value is unknown
        """
        self.filter = self.filter.update(**changes)
        return self.filter

    def set_sort(self, **changes: object) -> SortSpec:
        """Partially update the sort (``field`` and/or ``direction``)."""
        self.sort = self.sort.update(**changes)
        return self.sort

    def select_all(self) -> None:
        """Select every process in the snapshot, filtered out or not."""
        self.selection.select_all(self.snapshot)

    # ─────────────────────────────────────────────────────────────
    # Reconciliation
    # ─────────────────────────────────────────────────────────────

    async def refresh(self) -> bool:
        """Fetch a full snapshot and swap it in.

        On failure the previous snapshot stays in place, ``last_error`` is
        set and ``on_error`` fires. Nothing is raised, including from the
        callbacks, whose exceptions are logged.

        Returns:
            True if the snapshot was replaced
        """
        self._in_flight += 1
        try:
            snapshot = await self.backend.get_processes(self.filter.include_non_listening)
        except Exception as e:
            error = FetchError.wrap(e)
            self.last_error = error
            log.warning("fetch_failed", code=error.code, error=error.message)
            self._notify(self.on_error, error)
            return False
        finally:
            self._in_flight -= 1

        # No sequence guard: when fetches overlap, the last to complete wins
        self.store.replace(snapshot)
        self.last_error = None
        log.debug(
            "snapshot_replaced",
            processes=len(snapshot.processes),
            listening=snapshot.listening_ports,
        )
        self._notify(self.on_snapshot, snapshot)
        return True

    def _notify(self, callback: Callable[[Any], None] | None, value: object) -> None:
        if callback is None:
            return
        try:
            callback(value)
        except Exception:
            name = getattr(callback, "__name__", repr(callback))
            log.exception("session_callback_failed", callback=name)

    async def find_port(self, port: int) -> list[ProcessRecord]:
        """Processes currently bound to ``port`` (empty if none).

        Raises:
            ValidationError: If port is not an integer in 1-65535 (no remote call)
            FetchError: If the backend lookup fails
        """
        validate_port(port)
        try:
            return await self.backend.find_port(port)
        except Exception as e:
            raise FetchError.wrap(e) from e

    async def list_containers(self) -> list[ContainerInfo]:
        """All containers known to the backend's container runtime.

        Raises:
            FetchError: If the backend lookup fails
        """
        try:
            return await self.backend.get_containers()
        except Exception as e:
            raise FetchError.wrap(e) from e

    # ─────────────────────────────────────────────────────────────
    # Polling
    # ─────────────────────────────────────────────────────────────

    @property
    def is_polling(self) -> bool:
        return self.poller.is_polling

    @property
    def polling_interval(self) -> float:
        return self.poller.interval

    @polling_interval.setter
    def polling_interval(self, seconds: float) -> None:
        self.poller.interval = seconds

    def start_polling(self) -> None:
        self.poller.start()

    def stop_polling(self) -> None:
        self.poller.stop()

    # ─────────────────────────────────────────────────────────────
    # Mutations
    # ─────────────────────────────────────────────────────────────

    async def kill_process(self, pid: int, force: bool = False) -> ActionResult:
        """Terminate a process. Always returns a result, never raises a backend fault."""
        return await self.mediator.terminate(pid, force)

    async def container_action(
        self, container_id: str, action: ContainerAction | str
    ) -> ActionResult:
        """Act on a container. Always returns a result, never raises a backend fault."""
        return await self.mediator.container_action(container_id, action)

    async def aclose(self) -> None:
        """Stop polling and drop pending follow-up refreshes."""
        await self.poller.aclose()
        await self.mediator.aclose()
