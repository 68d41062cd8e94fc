"""Filtered, sorted, favorite-pinned projection of a snapshot.

``build_view`` is a pure function of (snapshot, filter, sort, favorites).
It is recomputed on every read and never mutates its inputs; at the
expected scale (hundreds of processes) that is cheap.
"""

from __future__ import annotations

import locale
from collections.abc import Callable, Collection
from dataclasses import dataclass, replace
from typing import Literal

from port_surgeon.errors import ValidationError
from port_surgeon.models import ProcessRecord, Protocol, Snapshot, SocketState

ALL = "all"

SortField = Literal["pid", "name", "port", "memory", "cpu", "user"]
SortDirection = Literal["asc", "desc"]

SORT_FIELDS: tuple[str, ...] = ("pid", "name", "port", "memory", "cpu", "user")
SORT_DIRECTIONS: tuple[str, ...] = ("asc", "desc")


@dataclass(frozen=True)
class FilterSpec:
    """Which processes to show.

    ``include_non_listening`` is not applied here: it widens what the
    backend itself returns, so the session passes it to the fetch.
    """

    search_query: str = ""
    protocol: Protocol | Literal["all"] = ALL
    state: SocketState | Literal["all"] = ALL
    include_non_listening: bool = False

    def __post_init__(self) -> None:
        if self.protocol != ALL and not isinstance(self.protocol, Protocol):
            try:
                object.__setattr__(self, "protocol", Protocol(self.protocol))
            except ValueError as e:
                raise ValidationError(f"Unknown protocol filter: {self.protocol!r}") from e
        if self.state != ALL and not isinstance(self.state, SocketState):
            if not isinstance(self.state, str) or self.state.upper() not in SocketState.__members__:
                raise ValidationError(f"Unknown state filter: {self.state!r}")
            object.__setattr__(self, "state", SocketState(self.state.upper()))

    def update(self, **changes: object) -> FilterSpec:
        """Return a copy with the given fields replaced."""
        return replace(self, **changes)  # type: ignore[arg-type]


@dataclass(frozen=True)
class SortSpec:
    """Secondary ordering of the view (favorites always come first)."""

    field: SortField = "port"
    direction: SortDirection = "asc"

    def __post_init__(self) -> None:
        if self.field not in SORT_FIELDS:
            raise ValidationError(f"Unknown sort field: {self.field!r}. Valid: {SORT_FIELDS}")
        if self.direction not in SORT_DIRECTIONS:
            raise ValidationError(
                f"Unknown sort direction: {self.direction!r}. Valid: {SORT_DIRECTIONS}"
            )

    def update(self, **changes: object) -> SortSpec:
        """Return a copy with the given fields replaced."""
        return replace(self, **changes)  # type: ignore[arg-type]


def has_favorite_port(process: ProcessRecord, favorites: Collection[int]) -> bool:
    """Whether any of the process's bindings is on a pinned port."""
    return any(port.local_port in favorites for port in process.ports)


def matches_filter(process: ProcessRecord, filters: FilterSpec) -> bool:
    """Whether a process passes every active filter clause."""
    if filters.search_query:
        query = filters.search_query.lower()
        haystack = [process.name, str(process.pid), process.user]
        if process.command_line:
            haystack.append(process.command_line)
        if process.container is not None:
            haystack.append(process.container.name)
        haystack.extend(str(port) for port in process.local_ports)
        if not any(query in text.lower() for text in haystack):
            return False

    if filters.protocol != ALL and not any(p.protocol == filters.protocol for p in process.ports):
        return False

    if filters.state != ALL and not any(p.state == filters.state for p in process.ports):
        return False

    return True


def _collate(text: str) -> tuple[str, str]:
    """Locale collation key; case-folded first so case only breaks ties."""
    return locale.strxfrm(text.casefold()), locale.strxfrm(text)


def _sort_key(field: str) -> Callable[[ProcessRecord], object]:
    if field == "pid":
        return lambda p: p.pid
    if field == "memory":
        return lambda p: p.memory_bytes
    if field == "cpu":
        return lambda p: p.cpu_percent
    if field == "name":
        return lambda p: _collate(p.name)
    if field == "user":
        return lambda p: _collate(p.user)
    # Port-less processes sort as port 0
    return lambda p: p.first_port or 0


def build_view(
    snapshot: Snapshot | None,
    filter_spec: FilterSpec,
    sort_spec: SortSpec,
    favorites: Collection[int],
) -> list[ProcessRecord]:
    """Derive the display sequence for a snapshot.

    Favorited processes always precede the rest; the sort direction only
    flips the secondary key. Ties keep snapshot order.
    """
    if snapshot is None:
        return []

    pinned = frozenset(favorites)
    rows = [p for p in snapshot.processes if matches_filter(p, filter_spec)]
    # Both passes are stable, so the second keeps the first's order within each group
    rows.sort(key=_sort_key(sort_spec.field), reverse=sort_spec.direction == "desc")
    rows.sort(key=lambda p: not has_favorite_port(p, pinned))
    return rows
