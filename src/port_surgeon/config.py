"""Configuration system for port-surgeon."""

from dataclasses import dataclass, field, fields, is_dataclass
from pathlib import Path

import tomlkit

from port_surgeon.view import SORT_DIRECTIONS, SORT_FIELDS


@dataclass
class PollingConfig:
    """Reconciliation polling configuration."""

    interval: float = 2.0  # Seconds between the end of one fetch and the next
    show_all_connections: bool = False  # Include non-listening sockets in scans


@dataclass
class ActionsConfig:
    """Settle delays applied before the follow-up fetch after a successful action.

    Container engines take longer than the OS to reflect a stopped/removed
    state, so their delay is longer.
    """

    process_settle_delay: float = 0.5  # Seconds
    container_settle_delay: float = 1.0  # Seconds


@dataclass
class AuditConfig:
    """Audit log configuration."""

    max_entries: int = 100  # Oldest entries are discarded beyond this


@dataclass
class BackendConfig:
    """Backend transport configuration."""

    request_timeout: float = 10.0  # Seconds to wait for a backend response


@dataclass
class ViewConfig:
    """Initial sort order for the process view."""

    sort_field: str = "port"
    sort_direction: str = "asc"


@dataclass
class LoggingConfig:
    """Log file rotation."""

    log_max_bytes: int = 5 * 1024 * 1024  # Max log file size (5MB)
    log_backup_count: int = 3  # Number of backup log files to keep


def _dataclass_to_table(obj: object) -> tomlkit.items.Table:
    """Convert a dataclass instance to a tomlkit Table recursively."""
    table = tomlkit.table()
    for f in fields(obj):  # type: ignore[arg-type]
        value = getattr(obj, f.name)
        if is_dataclass(value) and not isinstance(value, type):
            table.add(f.name, _dataclass_to_table(value))
        else:
            table.add(f.name, value)
    return table


@dataclass
class Config:
    """Main configuration container."""

    polling: PollingConfig = field(default_factory=PollingConfig)
    actions: ActionsConfig = field(default_factory=ActionsConfig)
    audit: AuditConfig = field(default_factory=AuditConfig)
    backend: BackendConfig = field(default_factory=BackendConfig)
    view: ViewConfig = field(default_factory=ViewConfig)
    logging: LoggingConfig = field(default_factory=LoggingConfig)

    @property
    def config_dir(self) -> Path:
        """Configuration directory."""
        return Path.home() / ".config" / "port-surgeon"

    @property
    def config_path(self) -> Path:
        """Path to config file."""
        return self.config_dir / "config.toml"

    @property
    def data_dir(self) -> Path:
        """Data directory."""
        return Path.home() / ".local" / "share" / "port-surgeon"

    @property
    def state_dir(self) -> Path:
        """State directory for logs and other expendable persistent state."""
        return Path.home() / ".local" / "state" / "port-surgeon"

    @property
    def runtime_dir(self) -> Path:
        """Runtime directory for ephemeral files (backend socket).

        Stored in /tmp/ so it's cleared on reboot, avoiding stale sockets.
        """
        return Path("/tmp/port-surgeon")

    @property
    def db_path(self) -> Path:
        """Client state database path (favorites)."""
        return self.data_dir / "state.db"

    @property
    def log_path(self) -> Path:
        """Client log path."""
        return self.state_dir / "client.log"

    @property
    def socket_path(self) -> Path:
        """Unix socket path of the backend service."""
        return self.runtime_dir / "backend.sock"

    def save(self, path: Path | None = None) -> None:
        """Save config to TOML file."""
        path = path or self.config_path
        path.parent.mkdir(parents=True, exist_ok=True)

        doc = tomlkit.document()
        for name in ("polling", "actions", "audit", "backend", "view", "logging"):
            doc.add(name, _dataclass_to_table(getattr(self, name)))
            doc.add(tomlkit.nl())

        path.write_text(tomlkit.dumps(doc))

    @classmethod
    def load(cls, path: Path | None = None) -> "Config":
        """Load config from TOML file, returning defaults for missing values.

        All defaults come from the dataclass definitions - no hardcoded values here.
        """
        defaults = cls()
        path = path or defaults.config_path
        if not path.exists():
            return defaults

        try:
            with open(path) as f:
                data = tomlkit.load(f)
        except tomlkit.exceptions.TOMLKitError as e:
            raise ValueError(f"Failed to parse config file {path}: {e}") from e

        return cls(
            polling=_load_polling_config(data.get("polling", {})),
            actions=_load_actions_config(data.get("actions", {})),
            audit=_load_audit_config(data.get("audit", {})),
            backend=_load_backend_config(data.get("backend", {})),
            view=_load_view_config(data.get("view", {})),
            logging=_load_logging_config(data.get("logging", {})),
        )


def _load_polling_config(data: dict) -> PollingConfig:
    """Load polling config from TOML data."""
    defaults = PollingConfig()
    interval = data.get("interval", defaults.interval)
    if interval <= 0:
        raise ValueError(f"polling.interval must be > 0, got {interval}")
    return PollingConfig(
        interval=float(interval),
        show_all_connections=bool(
            data.get("show_all_connections", defaults.show_all_connections)
        ),
    )


def _load_actions_config(data: dict) -> ActionsConfig:
    """Load action settle delays from TOML data."""
    defaults = ActionsConfig()
    process_delay = data.get("process_settle_delay", defaults.process_settle_delay)
    container_delay = data.get("container_settle_delay", defaults.container_settle_delay)
    if process_delay < 0:
        raise ValueError(f"actions.process_settle_delay must be >= 0, got {process_delay}")
    if container_delay < 0:
        raise ValueError(f"actions.container_settle_delay must be >= 0, got {container_delay}")
    return ActionsConfig(
        process_settle_delay=float(process_delay),
        container_settle_delay=float(container_delay),
    )


def _load_audit_config(data: dict) -> AuditConfig:
    """Load audit config from TOML data."""
    d = AuditConfig()
    max_entries = data.get("max_entries", d.max_entries)
    if max_entries < 1:
        raise ValueError(f"audit.max_entries must be >= 1, got {max_entries}")
    return AuditConfig(max_entries=int(max_entries))


def _load_backend_config(data: dict) -> BackendConfig:
    """Load backend transport config from TOML data."""
    d = BackendConfig()
    timeout = data.get("request_timeout", d.request_timeout)
    if timeout <= 0:
        raise ValueError(f"backend.request_timeout must be > 0, got {timeout}")
    return BackendConfig(request_timeout=float(timeout))


def _load_view_config(data: dict) -> ViewConfig:
    """Load initial view ordering from TOML data."""
    d = ViewConfig()
    sort_field = data.get("sort_field", d.sort_field)
    sort_direction = data.get("sort_direction", d.sort_direction)
    if sort_field not in SORT_FIELDS:
        raise ValueError(f"Invalid view.sort_field: {sort_field!r}. Must be one of {SORT_FIELDS}")
    if sort_direction not in SORT_DIRECTIONS:
        raise ValueError(
            f"Invalid view.sort_direction: {sort_direction!r}. Must be one of {SORT_DIRECTIONS}"
        )
    return ViewConfig(sort_field=str(sort_field), sort_direction=str(sort_direction))


def _load_logging_config(data: dict) -> LoggingConfig:
    """Load log rotation config from TOML data."""
    d = LoggingConfig()
    return LoggingConfig(
        log_max_bytes=data.get("log_max_bytes", d.log_max_bytes),
        log_backup_count=data.get("log_backup_count", d.log_backup_count),
    )
