"""Bounded, newest-first record of every attempted mutating action.

Holds the 100 most recent entries by default; older entries fall off the
tail silently and are not archived.
"""

import uuid
from collections import deque
from datetime import datetime, timezone

from port_surgeon.models import ActionKind, AuditEntry

DEFAULT_MAX_ENTRIES = 100


class AuditLog:
    """Audit trail of terminate and container actions."""

    def __init__(self, max_entries: int = DEFAULT_MAX_ENTRIES) -> None:
        self._entries: deque[AuditEntry] = deque(maxlen=max_entries)

    def __len__(self) -> int:
        """Return number of entries in the log."""
        return len(self._entries)

    @property
    def capacity(self) -> int:
        """Return maximum number of entries the log retains."""
        return self._entries.maxlen or 0

    @property
    def entries(self) -> list[AuditEntry]:
        """Entries newest-first (returns a copy)."""
        return list(self._entries)

    def record(
        self,
        action_kind: ActionKind,
        target_name: str,
        pid: int,
        succeeded: bool,
        result_message: str,
        port: int | None = None,
    ) -> AuditEntry:
        """Create an entry and add it at the head of the log."""
        entry = AuditEntry(
            id=uuid.uuid4().hex,
            timestamp=datetime.now(timezone.utc),
            action_kind=action_kind,
            target_name=target_name,
            pid=pid,
            succeeded=succeeded,
            result_message=result_message,
            port=port,
        )
        # appendleft on a bounded deque evicts from the right (oldest)
        self._entries.appendleft(entry)
        return entry

    def clear(self) -> None:
        """Empty the log (operator-initiated only)."""
        self._entries.clear()
