"""Centralized console logging with Rich formatting.

This module provides:
1. Icon vocabulary (Icon class namespace)
2. Level-based styling
3. Core log functions (log, info, warn, error)
4. Domain-specific helpers (fetch_failed, action_result, polling_started, etc.)
5. Structlog configuration (configure, get_structlog)

Console output uses Rich markup for colors. JSON file output via structlog
remains separate (machine-parseable, no colors).
"""

from __future__ import annotations

import logging
import logging.handlers
from datetime import datetime
from typing import TYPE_CHECKING

import structlog
from rich.console import Console

if TYPE_CHECKING:
    from port_surgeon.config import Config
    from port_surgeon.models import ActionKind

# Rich console for colorful human-readable output
_console = Console(highlight=False)


# ─────────────────────────────────────────────────────────────────────────────
# Icons
# ─────────────────────────────────────────────────────────────────────────────


class Icon:
    """Icon vocabulary for console output.

    Use via autocomplete: Icon.<TAB> to see all available icons.
    """

    OK = "[bold green]✓[/]"
    FAIL = "[bold red]✗[/]"
    REFRESH = "[cyan]↻[/]"
    FAVORITE = "[yellow]★[/]"
    SHIELD = "[bold yellow]🛡[/]"
    DISCONNECTED = "[red]⬤[/]"


# ─────────────────────────────────────────────────────────────────────────────
# Level Styles
# ─────────────────────────────────────────────────────────────────────────────

_LEVEL_STYLES = {
    "info": "[bright_blue]\\[info][/]",
    "warn": "[yellow]\\[warn][/]",
    "error": "[bold red]\\[err][/] ",
}


# ─────────────────────────────────────────────────────────────────────────────
# Core Functions
# ─────────────────────────────────────────────────────────────────────────────


def log(level: str, msg: str, icon: str = "") -> None:
    """Print a log message with timestamp and level.

    Args:
        level: Log level (info, warn, error)
        msg: Message to print (can include Rich markup)
        icon: Optional icon to show after level (e.g., Icon.OK)
    """
    ts = datetime.now().strftime("%H:%M:%S")
    lvl = _LEVEL_STYLES.get(level, f"[{level}]")
    icon_part = f" {icon}" if icon else ""
    _console.print(f"[dim]{ts}[/] {lvl}{icon_part} {msg}")


def info(msg: str, icon: str = "") -> None:
    """Log an info message."""
    log("info", msg, icon)


def warn(msg: str, icon: str = "") -> None:
    """Log a warning message."""
    log("warn", msg, icon)


def error(msg: str, icon: str = "") -> None:
    """Log an error message."""
    log("error", msg, icon)


# ─────────────────────────────────────────────────────────────────────────────
# Domain Helpers
# ─────────────────────────────────────────────────────────────────────────────


def polling_started(interval: float) -> None:
    """Log polling loop started."""
    info(f"Polling every [cyan]{interval:g}s[/]", Icon.REFRESH)


def polling_stopped() -> None:
    """Log polling loop stopped."""
    info("Polling stopped")


def snapshot_refreshed(process_count: int, listening: int, connections: int) -> None:
    """Log a successful reconciliation fetch."""
    info(
        f"[cyan]{process_count}[/] processes, [cyan]{listening}[/] listening "
        f"[dim]({connections} connections)[/]",
        Icon.REFRESH,
    )


def fetch_failed(message: str) -> None:
    """Log a failed reconciliation fetch (snapshot kept)."""
    warn(f"Refresh failed: {message} [dim](showing last snapshot)[/]", Icon.DISCONNECTED)


def backend_unavailable(path: str) -> None:
    """Log backend socket missing."""
    error(f"Backend not reachable at [cyan]{path}[/]", Icon.DISCONNECTED)


def action_result(kind: ActionKind, target: str, pid: int, success: bool, message: str) -> None:
    """Log the outcome of a terminate or container action."""
    target_display = target[:28] + ".." if len(target) > 28 else target
    if success:
        info(
            f"{kind.value} [cyan]{target_display}[/] [dim]({pid})[/]: {message}",
            Icon.OK,
        )
    else:
        error(
            f"{kind.value} [cyan]{target_display}[/] [dim]({pid})[/] failed: {message}",
            Icon.FAIL,
        )


def favorite_toggled(port: int, pinned: bool) -> None:
    """Log favorite port pinned or unpinned."""
    state = "pinned" if pinned else "unpinned"
    info(f"Port [cyan]{port}[/] {state}", Icon.FAVORITE)


def config_created(path: str) -> None:
    """Log config file created."""
    info(f"Created config at [cyan]{path}[/]")


# ─────────────────────────────────────────────────────────────────────────────
# Structlog Configuration
# ─────────────────────────────────────────────────────────────────────────────


def _add_source(source: str) -> structlog.types.Processor:
    """Create a processor that adds a source field to log events."""

    def processor(
        logger: structlog.types.WrappedLogger,
        method_name: str,
        event_dict: structlog.types.EventDict,
    ) -> structlog.types.EventDict:
        event_dict["source"] = source
        return event_dict

    return processor


def configure(config: Config, source: str = "client") -> None:
    """Configure structlog to write JSON Lines to the rotating client log.

    Uses local time to match snapshot timestamps shown in the console.

    Args:
        config: Application config with paths
        source: Value of the ``source`` field added to every event
    """
    # Ensure state directory exists for log file
    config.state_dir.mkdir(parents=True, exist_ok=True)

    file_handler = logging.handlers.RotatingFileHandler(
        config.log_path,
        maxBytes=config.logging.log_max_bytes,
        backupCount=config.logging.log_backup_count,
        encoding="utf-8",
    )
    file_handler.setLevel(logging.INFO)

    stdlib_root = logging.getLogger()
    stdlib_root.setLevel(logging.INFO)

    # Clear any existing handlers
    stdlib_root.handlers.clear()

    file_handler.setFormatter(
        structlog.stdlib.ProcessorFormatter(
            processor=structlog.processors.JSONRenderer(),
            foreign_pre_chain=[
                structlog.contextvars.merge_contextvars,
                structlog.processors.TimeStamper(fmt="iso", utc=False, key="ts"),
                structlog.processors.add_log_level,
                _add_source(source),
                structlog.processors.format_exc_info,
            ],
        )
    )
    stdlib_root.addHandler(file_handler)

    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.stdlib.filter_by_level,
            structlog.processors.TimeStamper(fmt="iso", utc=False, key="ts"),
            structlog.processors.add_log_level,
            _add_source(source),
            structlog.stdlib.PositionalArgumentsFormatter(),
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            structlog.stdlib.ProcessorFormatter.wrap_for_formatter,
        ],
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )


def get_structlog() -> structlog.stdlib.BoundLogger:
    """Get a structlog logger instance.

    Returns a logger for structured JSON file output. Use this for
    machine-parseable events that should go to the log file.

    For human-readable console output, use the log/info/warn/error
    functions or domain helpers instead.
    """
    return structlog.get_logger()
