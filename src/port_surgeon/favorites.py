"""Pinned ("favorite") ports, persisted write-through to client state."""

from __future__ import annotations

import json
from collections.abc import Iterator
from pathlib import Path

import structlog

from port_surgeon.models import MAX_PORT, MIN_PORT, validate_port
from port_surgeon.storage import get_state, open_state, set_state

log = structlog.get_logger()

FAVORITES_KEY = "favorite_ports"


def decode_ports(raw: str | None) -> tuple[list[int], str | None]:
    """Decode a stored favorites value.

    Returns the valid, deduplicated ports in stored order plus a reason
    string when anything had to be discarded. Never raises.
    """
    if raw is None:
        return [], None
    try:
        data = json.loads(raw)
    except (json.JSONDecodeError, TypeError) as e:
        return [], f"invalid JSON: {e}"
    if not isinstance(data, list):
        return [], f"expected a list, got {type(data).__name__}"

    ports: list[int] = []
    dropped = 0
    for item in data:
        if isinstance(item, bool) or not isinstance(item, int) or not MIN_PORT <= item <= MAX_PORT:
            dropped += 1
            continue
        if item not in ports:
            ports.append(item)
    reason = f"dropped {dropped} invalid entries" if dropped else None
    return ports, reason


class FavoritesRegistry:
    """Ordered, deduplicated set of pinned port numbers.

    Only explicit add/remove/toggle mutate it; each effective mutation
    persists the full list immediately when a database path is given.
    Without a path the registry lives in memory only.
    """

    def __init__(self, db_path: Path | None = None) -> None:
        self._db_path = db_path
        self._ports: list[int] = []
        if db_path is not None:
            self._ports = self._load()

    def _load(self) -> list[int]:
        assert self._db_path is not None
        with open_state(self._db_path) as conn:
            raw = get_state(conn, FAVORITES_KEY)
        ports, reason = decode_ports(raw)
        if reason is not None:
            log.warning("favorites_corrupt", reason=reason, kept=len(ports))
        return ports

    def _commit(self, ports: list[int]) -> None:
        """Write ports through to storage, then adopt them in memory."""
        if self._db_path is not None:
            with open_state(self._db_path) as conn:
                set_state(conn, FAVORITES_KEY, json.dumps(ports))
            log.debug("favorites_saved", count=len(ports))
        self._ports = ports

    def __contains__(self, port: object) -> bool:
        return port in self._ports

    def __iter__(self) -> Iterator[int]:
        return iter(list(self._ports))

    def __len__(self) -> int:
        return len(self._ports)

    @property
    def ports(self) -> tuple[int, ...]:
        """Pinned ports in insertion order."""
        return tuple(self._ports)

    def add(self, port: int) -> None:
        """Pin a port. Adding an already-pinned port changes nothing."""
        validate_port(port)
        if port in self._ports:
            return
        self._commit([*self._ports, port])

    def remove(self, port: int) -> None:
        """Unpin a port. Removing an absent port changes nothing."""
        validate_port(port)
        if port not in self._ports:
            return
        self._commit([p for p in self._ports if p != port])

    def toggle(self, port: int) -> bool:
        """Flip a port's pinned state.

        Returns:
            True if the port is pinned afterwards
        """
        if port in self._ports:
            self.remove(port)
            return False
        self.add(port)
        return True
