"""Holder of the latest reconciled snapshot."""

from port_surgeon.models import ProcessRecord, Snapshot


class SnapshotStore:
    """Latest snapshot, replaced wholesale on every successful fetch.

    There is no merge-by-id: each backend scan is a full point-in-time
    enumeration, so readers never see a mix of two scan generations.
    """

    def __init__(self) -> None:
        self._snapshot: Snapshot | None = None

    def replace(self, snapshot: Snapshot) -> None:
        """Swap in a new snapshot unconditionally."""
        self._snapshot = snapshot

    def current(self) -> Snapshot | None:
        """Return the latest snapshot, or None before the first successful fetch."""
        return self._snapshot

    @property
    def initialized(self) -> bool:
        return self._snapshot is not None

    def find_by_pid(self, pid: int) -> ProcessRecord | None:
        if self._snapshot is None:
            return None
        return self._snapshot.find_by_pid(pid)

    def find_by_container(self, container_id: str) -> ProcessRecord | None:
        if self._snapshot is None:
            return None
        return self._snapshot.find_by_container(container_id)
