"""CLI commands for port-surgeon."""

from __future__ import annotations

import asyncio
import locale
from collections.abc import Awaitable
from typing import TYPE_CHECKING, TypeVar

import click

from port_surgeon.models import ContainerAction
from port_surgeon.view import SORT_DIRECTIONS, SORT_FIELDS

if TYPE_CHECKING:
    from rich.table import Table

    from port_surgeon.backend import Backend
    from port_surgeon.config import Config
    from port_surgeon.errors import BackendError
    from port_surgeon.favorites import FavoritesRegistry
    from port_surgeon.models import ContainerInfo, ProcessRecord
    from port_surgeon.session import Session

T = TypeVar("T")

_STATES = (
    "all",
    "listening",
    "established",
    "syn_sent",
    "syn_received",
    "fin_wait_1",
    "fin_wait_2",
    "close_wait",
    "closing",
    "last_ack",
    "time_wait",
    "closed",
)


# ─────────────────────────────────────────────────────────────────────────────
# Helpers
# ─────────────────────────────────────────────────────────────────────────────


def _load_config() -> Config:
    """Load config, exiting with status 1 on a broken config file."""
    from port_surgeon.config import Config

    try:
        return Config.load()
    except ValueError as e:
        click.echo(f"Error: {e}", err=True)
        raise SystemExit(1) from e


def _make_backend(config: Config) -> Backend:
    from port_surgeon.backend import SocketBackend

    return SocketBackend(config.socket_path, request_timeout=config.backend.request_timeout)


def _make_session(config: Config) -> Session:
    from port_surgeon.favorites import FavoritesRegistry
    from port_surgeon.logging import configure
    from port_surgeon.session import Session

    configure(config)
    return Session(_make_backend(config), config, FavoritesRegistry(config.db_path))


def _run(coro: Awaitable[T]) -> T:
    return asyncio.run(coro)  # type: ignore[arg-type]


def _report_error(config: Config, err: BackendError) -> None:
    from port_surgeon.logging import Icon, backend_unavailable, error

    if err.code == "UNAVAILABLE":
        backend_unavailable(str(config.socket_path))
    else:
        error(f"{err.message} [dim]({err.code})[/]", Icon.FAIL)


def _process_table(processes: list[ProcessRecord], favorites: FavoritesRegistry) -> Table:
    from rich.table import Table

    from port_surgeon.formatting import format_bytes, format_cpu, state_name, truncate
    from port_surgeon.logging import Icon
    from port_surgeon.view import has_favorite_port

    table = Table(show_edge=False, pad_edge=False)
    table.add_column("", no_wrap=True)
    table.add_column("PID", justify="right")
    table.add_column("Name", no_wrap=True)
    table.add_column("Port", justify="right")
    table.add_column("Proto")
    table.add_column("State")
    table.add_column("User")
    table.add_column("Memory", justify="right")
    table.add_column("CPU", justify="right")

    for proc in processes:
        marks = ""
        if has_favorite_port(proc, favorites):
            marks += Icon.FAVORITE
        if proc.is_protected:
            marks += Icon.SHIELD
        name = truncate(proc.name, 24)
        if proc.container is not None:
            name += f" [dim]({truncate(proc.container.name, 16)})[/]"
        binding = proc.ports[0] if proc.ports else None
        table.add_row(
            marks,
            str(proc.pid),
            name,
            ", ".join(str(p) for p in proc.local_ports) or "-",
            binding.protocol.value.upper() if binding else "-",
            state_name(binding.state.value) if binding else "-",
            proc.user,
            format_bytes(proc.memory_bytes),
            format_cpu(proc.cpu_percent),
        )
    return table


def _print_processes(
    processes: list[ProcessRecord], favorites: FavoritesRegistry, fmt: str
) -> None:
    if fmt == "json":
        import json

        click.echo(json.dumps([p.to_dict() for p in processes], indent=2))
        return

    from rich.console import Console

    Console(highlight=False).print(_process_table(processes, favorites))


# ─────────────────────────────────────────────────────────────────────────────
# Commands
# ─────────────────────────────────────────────────────────────────────────────


@click.group()
@click.version_option(package_name="port-surgeon")
def main() -> None:
    """Find and terminate the processes holding network ports."""
    try:
        locale.setlocale(locale.LC_COLLATE, "")
    except locale.Error:
        pass  # Unsupported LANG; name sorting stays case-folded C order


@main.command("list")
@click.option("--all", "-a", "show_all", is_flag=True, help="Include non-listening connections")
@click.option("--search", "-s", default="", help="Match name, PID, user, command or port")
@click.option(
    "--protocol", "-p", type=click.Choice(["all", "tcp", "udp"], case_sensitive=False), default="all"
)
@click.option("--state", type=click.Choice(_STATES, case_sensitive=False), default="all")
@click.option("--sort", "sort_field", type=click.Choice(SORT_FIELDS), default=None)
@click.option("--direction", type=click.Choice(SORT_DIRECTIONS), default=None)
@click.option("--format", "-f", "fmt", type=click.Choice(["table", "json"]), default="table")
def list_processes(
    show_all: bool,
    search: str,
    protocol: str,
    state: str,
    sort_field: str | None,
    direction: str | None,
    fmt: str,
) -> None:
    """Show processes holding ports (favorites first)."""
    config = _load_config()
    session = _make_session(config)

    session.set_filter(
        search_query=search,
        protocol=protocol,
        state=state,
        include_non_listening=show_all or config.polling.show_all_connections,
    )
    if sort_field is not None:
        session.set_sort(field=sort_field)
    if direction is not None:
        session.set_sort(direction=direction)

    async def fetch() -> bool:
        async with session:
            return await session.refresh()

    if not _run(fetch()):
        assert session.last_error is not None
        _report_error(config, session.last_error)
        raise SystemExit(1)

    processes = session.view()
    if not processes and fmt == "table":
        click.echo("No matching processes.")
        return
    _print_processes(processes, session.favorites, fmt)


@main.command()
@click.option(
    "--interval",
    "-i",
    type=click.FloatRange(min=0, min_open=True),
    default=None,
    help="Seconds between refreshes (default from config)",
)
@click.option("--count", "-n", type=click.IntRange(min=1), default=None, help="Stop after N cycles")
@click.option("--all", "-a", "show_all", is_flag=True, help="Include non-listening connections")
def watch(interval: float | None, count: int | None, show_all: bool) -> None:
    """Poll the backend and print a summary line per refresh."""
    from port_surgeon.errors import FetchError
    from port_surgeon.logging import fetch_failed, polling_started, polling_stopped, snapshot_refreshed
    from port_surgeon.models import Snapshot

    config = _load_config()
    session = _make_session(config)
    if interval is not None:
        session.polling_interval = interval
    if show_all:
        session.set_filter(include_non_listening=True)

    async def run() -> None:
        done = asyncio.Event()
        cycles = 0

        def cycle_finished() -> None:
            nonlocal cycles
            cycles += 1
            if count is not None and cycles >= count:
                done.set()

        def on_snapshot(snapshot: Snapshot) -> None:
            snapshot_refreshed(
                len(snapshot.processes), snapshot.listening_ports, snapshot.total_connections
            )
            cycle_finished()

        def on_error(err: FetchError) -> None:
            if err.code == "UNAVAILABLE":
                _report_error(config, err)
            else:
                fetch_failed(err.message)
            cycle_finished()

        session.on_snapshot = on_snapshot
        session.on_error = on_error
        async with session:
            polling_started(session.polling_interval)
            session.start_polling()
            await done.wait()

    try:
        _run(run())
    except KeyboardInterrupt:
        pass
    polling_stopped()


@main.command()
@click.argument("port", type=int)
@click.option("--format", "-f", "fmt", type=click.Choice(["table", "json"]), default="table")
def find(port: int, fmt: str) -> None:
    """Show the processes bound to PORT."""
    from port_surgeon.errors import FetchError, ValidationError

    config = _load_config()
    session = _make_session(config)

    async def lookup() -> list[ProcessRecord]:
        async with session:
            return await session.find_port(port)

    try:
        processes = _run(lookup())
    except ValidationError as e:
        click.echo(f"Error: {e}", err=True)
        raise SystemExit(1) from e
    except FetchError as e:
        _report_error(config, e)
        raise SystemExit(1) from e

    if not processes and fmt == "table":
        click.echo(f"No process is using port {port}.")
        return
    _print_processes(processes, session.favorites, fmt)


@main.command()
@click.argument("pid", type=int)
@click.option("--force", is_flag=True, help="Kill immediately instead of asking to exit")
def kill(pid: int, force: bool) -> None:
    """Terminate process PID (gracefully unless --force)."""
    from port_surgeon.logging import action_result, warn

    config = _load_config()
    session = _make_session(config)

    async def terminate():
        async with session:
            # Best effort: resolves the audit name and the protected flag
            await session.refresh()
            return await session.kill_process(pid, force)

    result = _run(terminate())
    entry = session.audit_entries[0]
    action_result(entry.action_kind, entry.target_name, pid, result.success, result.message)
    if result.required_elevation:
        warn("Permission denied; retry with elevated privileges")
    if not result.success:
        raise SystemExit(1)


@main.command()
@click.argument("container_id")
@click.argument(
    "action", type=click.Choice([a.value for a in ContainerAction], case_sensitive=False)
)
def container(container_id: str, action: str) -> None:
    """Stop, kill, remove or restart container CONTAINER_ID."""
    from port_surgeon.logging import action_result

    config = _load_config()
    session = _make_session(config)

    async def act():
        async with session:
            await session.refresh()
            return await session.container_action(container_id, action)

    result = _run(act())
    entry = session.audit_entries[0]
    action_result(entry.action_kind, entry.target_name, entry.pid, result.success, result.message)
    if not result.success:
        raise SystemExit(1)


@main.command()
def containers() -> None:
    """List containers known to the container runtime."""
    from rich.console import Console
    from rich.table import Table

    from port_surgeon.errors import FetchError
    from port_surgeon.formatting import truncate

    config = _load_config()
    session = _make_session(config)

    async def fetch() -> list[ContainerInfo]:
        async with session:
            return await session.list_containers()

    try:
        found = _run(fetch())
    except FetchError as e:
        _report_error(config, e)
        raise SystemExit(1) from e

    if not found:
        click.echo("No containers found.")
        return

    table = Table(show_edge=False, pad_edge=False)
    for column in ("ID", "Name", "Image", "State", "Runtime", "Ports"):
        table.add_column(column)
    for info in found:
        ports = ", ".join(
            f"{p.host_port}->{p.container_port}/{p.protocol.value}" for p in info.ports
        )
        table.add_row(
            info.short_id,
            info.name,
            truncate(info.image, 32),
            info.state,
            info.runtime.value,
            ports or "-",
        )
    Console(highlight=False).print(table)


# ─────────────────────────────────────────────────────────────────────────────
# Favorites
# ─────────────────────────────────────────────────────────────────────────────


@main.group()
@click.pass_context
def favorites(ctx) -> None:
    """Manage pinned ports."""
    from port_surgeon.favorites import FavoritesRegistry

    config = _load_config()
    ctx.ensure_object(dict)
    ctx.obj["favorites"] = FavoritesRegistry(config.db_path)


@favorites.command("list")
@click.pass_context
def favorites_list(ctx) -> None:
    """Show pinned ports."""
    registry = ctx.obj["favorites"]
    if not len(registry):
        click.echo("No favorite ports.")
        return
    for port in registry:
        click.echo(port)


def _change_favorite(ctx, port: int, op: str) -> None:
    from port_surgeon.errors import ValidationError
    from port_surgeon.logging import favorite_toggled

    registry = ctx.obj["favorites"]
    try:
        if op == "toggle":
            pinned = registry.toggle(port)
        else:
            getattr(registry, op)(port)
            pinned = op == "add"
    except ValidationError as e:
        click.echo(f"Error: {e}", err=True)
        raise SystemExit(1) from e
    favorite_toggled(port, pinned)


@favorites.command("add")
@click.argument("port", type=int)
@click.pass_context
def favorites_add(ctx, port: int) -> None:
    """Pin PORT."""
    _change_favorite(ctx, port, "add")


@favorites.command("remove")
@click.argument("port", type=int)
@click.pass_context
def favorites_remove(ctx, port: int) -> None:
    """Unpin PORT."""
    _change_favorite(ctx, port, "remove")


@favorites.command("toggle")
@click.argument("port", type=int)
@click.pass_context
def favorites_toggle(ctx, port: int) -> None:
    """Pin PORT if unpinned, otherwise unpin it."""
    _change_favorite(ctx, port, "toggle")


# ─────────────────────────────────────────────────────────────────────────────
# Config
# ─────────────────────────────────────────────────────────────────────────────


@main.group()
def config() -> None:
    """Configuration management."""
    pass


@config.command("show")
def config_show() -> None:
    """Display current configuration."""
    cfg = _load_config()

    click.echo(f"Config file: {cfg.config_path}")
    click.echo(f"Exists: {cfg.config_path.exists()}")
    click.echo()
    click.echo("[polling]")
    click.echo(f"  interval = {cfg.polling.interval}")
    click.echo(f"  show_all_connections = {str(cfg.polling.show_all_connections).lower()}")
    click.echo()
    click.echo("[actions]")
    click.echo(f"  process_settle_delay = {cfg.actions.process_settle_delay}")
    click.echo(f"  container_settle_delay = {cfg.actions.container_settle_delay}")
    click.echo()
    click.echo("[audit]")
    click.echo(f"  max_entries = {cfg.audit.max_entries}")
    click.echo()
    click.echo("[backend]")
    click.echo(f"  request_timeout = {cfg.backend.request_timeout}")
    click.echo(f"  socket = {cfg.socket_path}")
    click.echo()
    click.echo("[view]")
    click.echo(f"  sort_field = {cfg.view.sort_field}")
    click.echo(f"  sort_direction = {cfg.view.sort_direction}")


@config.command("edit")
def config_edit() -> None:
    """Open config file in editor."""
    import os
    import subprocess

    from port_surgeon.logging import config_created

    cfg = _load_config()

    # Create config if it doesn't exist
    if not cfg.config_path.exists():
        cfg.save()
        config_created(str(cfg.config_path))

    editor = os.environ.get("EDITOR", "nano")
    subprocess.run([editor, str(cfg.config_path)])


@config.command("reset")
@click.confirmation_option(prompt="Reset config to defaults?")
def config_reset() -> None:
    """Reset configuration to defaults."""
    from port_surgeon.config import Config

    cfg = Config()
    cfg.save()
    click.echo(f"Config reset to defaults at {cfg.config_path}")
