"""Logging configuration for chanrelay.

Provides subsystem-level log file routing, credential scrubbing,
and structlog + stdlib integration.

Subsystem hierarchy (stdlib dotted names, structlog wraps them):
    root              → ConsoleHandler (terminal)
      └─ chanrelay    → RotatingFileHandler → chanrelay.log (combined)
           ├─ chanrelay.server    → RFH → server.log
           ├─ chanrelay.police    → RFH → police.log
           ├─ chanrelay.commands  → RFH → commands.log
           └─ chanrelay.security  → RFH → security.log
"""

import logging
import logging.handlers
import re
import sys
from pathlib import Path
from typing import Any, Dict, Iterable

import structlog

# Subsystem names; each gets its own RotatingFileHandler
SUBSYSTEMS = ("server", "police", "commands", "security")

# stdlib logger name prefix for hierarchy-based propagation
LOGGER_PREFIX = "chanrelay"

# ---------------------------------------------------------------------------
# Credential scrubbing
# ---------------------------------------------------------------------------

# "nick#password" as typed into a join frame
_NICK_PASSWORD_PATTERN = re.compile(r"([A-Za-z0-9_]{1,24})#\S+")

_REDACTED = "***REDACTED***"

# Configured secrets (salt, admin password), registered by setup_logging
_secrets: list = []


def register_secrets(values: Iterable[str]) -> None:
    """Replace the set of literal values that must never reach a log."""
    _secrets.clear()
    # Longest first so a secret containing another is fully masked
    _secrets.extend(sorted((v for v in values if v), key=len, reverse=True))


def _scrub_value(value: str) -> str:
    """Scrub join passwords and configured secrets from a string value."""
    for secret in _secrets:
        value = value.replace(secret, _REDACTED)
    return _NICK_PASSWORD_PATTERN.sub(r"\1#***", value)


def sanitize_secrets(
    logger: Any, method_name: str, event_dict: Dict[str, Any]
) -> Dict[str, Any]:
    """structlog processor that scrubs passwords from log events.

    Walks all string values in the event dict and masks the password
    half of ``nick#password`` strings as well as any registered
    configuration secret.
    """
    for key, value in event_dict.items():
        if isinstance(value, str):
            event_dict[key] = _scrub_value(value)
        elif isinstance(value, (list, tuple)):
            event_dict[key] = type(value)(
                _scrub_value(v) if isinstance(v, str) else v
                for v in value
            )
        elif isinstance(value, dict):
            event_dict[key] = {
                k: _scrub_value(v) if isinstance(v, str) else v
                for k, v in value.items()
            }
    return event_dict


# ---------------------------------------------------------------------------
# Logging setup
# ---------------------------------------------------------------------------

def _level(name: str, default: int) -> int:
    return getattr(logging, name.upper(), default) if name else default


def _rotating_handler(path: Path, level: int, formatter, max_bytes: int, backup_count: int):
    handler = logging.handlers.RotatingFileHandler(
        path, maxBytes=max_bytes, backupCount=backup_count, encoding="utf-8"
    )
    handler.setLevel(level)
    handler.setFormatter(formatter)
    return handler


def setup_logging(config=None) -> None:
    """Route relay logs to the console, a combined file and per-subsystem files.

    Called twice: once at startup with no config (default levels,
    loggers not cached) and again once the config has loaded, which
    also registers the configured salt and admin password for
    scrubbing. Every ``chanrelay.<subsystem>`` event lands in its own
    file, in ``chanrelay.log`` and on the console.
    """
    if config is not None:
        log_dir = config.log_dir
        root_level = _level(config.logging_level, logging.INFO)
        subsystem_levels = config.logging_subsystem_levels
        max_bytes = config.logging_max_file_size_mb * 1024 * 1024
        backup_count = config.logging_backup_count
        register_secrets([config.salt, config.password])
    else:
        log_dir = Path(__file__).parent.parent / "logs"
        root_level = logging.INFO
        subsystem_levels = {}
        max_bytes = 10 * 1024 * 1024
        backup_count = 5

    try:
        log_dir.mkdir(parents=True, exist_ok=True)
    except OSError as exc:
        print(
            f"WARNING: Cannot create log directory {log_dir}: {exc}. "
            "Logging to the console only.",
            file=sys.stderr,
        )
        log_dir = None

    file_formatter = structlog.stdlib.ProcessorFormatter(
        processors=[
            structlog.stdlib.add_logger_name,
            structlog.stdlib.add_log_level,
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.processors.format_exc_info,
            structlog.dev.ConsoleRenderer(colors=False),
        ],
    )

    root_logger = logging.getLogger()
    root_logger.setLevel(logging.DEBUG)
    root_logger.handlers.clear()
    console = logging.StreamHandler(sys.stdout)
    console.setLevel(root_level)
    console.setFormatter(logging.Formatter("%(asctime)s [%(levelname)s] %(message)s"))
    root_logger.addHandler(console)

    # (logger name, file name, level) for the combined log and each subsystem
    routes = [(LOGGER_PREFIX, "chanrelay.log", root_level)]
    for subsystem in SUBSYSTEMS:
        level = _level(subsystem_levels.get(subsystem, ""), root_level)
        routes.append((f"{LOGGER_PREFIX}.{subsystem}", f"{subsystem}.log", level))

    for name, filename, level in routes:
        route_logger = logging.getLogger(name)
        # The combined logger passes everything; its file handler filters
        route_logger.setLevel(logging.DEBUG if name == LOGGER_PREFIX else level)
        route_logger.handlers.clear()
        route_logger.propagate = True
        if log_dir is not None:
            route_logger.addHandler(
                _rotating_handler(log_dir / filename, level, file_formatter, max_bytes, backup_count)
            )

    structlog.configure(
        processors=[
            structlog.stdlib.filter_by_level,
            structlog.stdlib.add_logger_name,
            structlog.stdlib.add_log_level,
            structlog.stdlib.PositionalArgumentsFormatter(),
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            structlog.processors.UnicodeDecoder(),
            sanitize_secrets,
            structlog.dev.ConsoleRenderer(),
        ],
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=config is not None,
    )
