"""Single and multi selection of processes by pid."""

from __future__ import annotations

from port_surgeon.models import Snapshot


class SelectionTracker:
    """Tracks the focused pid and the multi-selection set.

    Selection is decoupled from the snapshot: pids are never validated
    against it, and a pid whose process has gone away is simply inert.
    """

    def __init__(self) -> None:
        self.selected_pid: int | None = None
        self._selected: set[int] = set()

    @property
    def selected_pids(self) -> frozenset[int]:
        return frozenset(self._selected)

    def is_selected(self, pid: int) -> bool:
        return pid in self._selected

    def select(self, pid: int | None) -> None:
        """Focus a single pid (or nothing), replacing the previous focus."""
        self.selected_pid = pid

    def toggle(self, pid: int) -> None:
        """Add pid to the multi-selection, or remove it if already present."""
        if pid in self._selected:
            self._selected.remove(pid)
        else:
            self._selected.add(pid)

    def select_all(self, snapshot: Snapshot | None) -> None:
        """Select every pid in the full snapshot (not just the filtered view)."""
        self._selected = set(snapshot.pids) if snapshot is not None else set()

    def clear(self) -> None:
        """Empty the multi-selection."""
        self._selected.clear()
