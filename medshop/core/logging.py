"""Loguru sinks and the ``key=value`` log helpers used across medshop.

Every helper binds its metadata onto the record as well as appending it to the
message, so the console stays readable and JSON shippers still get fields.
Audit events carry ``audit=True`` in ``extra`` and can be routed to their own
file with ``AUDIT_LOG_FILE_PATH``.
"""
from __future__ import annotations

import sys
from pathlib import Path
from typing import Any

from loguru import logger

from medshop.core.config import Settings, get_settings


LOG_FORMAT = "{time:YYYY-MM-DDTHH:mm:ss.SSSZ} | {level} | {message}\n{exception}"
AUDIT_FORMAT = "{time:YYYY-MM-DDTHH:mm:ss.SSSZ} | {extra[event_type]} | {message}"
AUDIT_FLAG = "audit"
LEVELS = ("TRACE", "DEBUG", "INFO", "SUCCESS", "WARNING", "ERROR", "CRITICAL")


def resolve_level(settings: Settings) -> str:
    """``LOG_LEVEL`` when it names a loguru level, else INFO in production and DEBUG elsewhere."""
    requested = (settings.log_level or "").strip().upper()
    if requested in LEVELS:
        return requested
    return "INFO" if settings.is_production else "DEBUG"


def is_audit_record(record: dict[str, Any]) -> bool:
    return record["extra"].get(AUDIT_FLAG) is True


def configure_logging(settings: Settings | None = None) -> None:
    settings = settings or get_settings()
    level = resolve_level(settings)

    logger.remove()
    logger.add(sink=sys.stdout, format=LOG_FORMAT, level=level)
    if settings.log_file_path:
        _add_file_sink(settings.log_file_path, format=LOG_FORMAT, level=level)
    if settings.audit_log_file_path:
        # Audit lines are kept whatever the console level is.
        _add_file_sink(
            settings.audit_log_file_path,
            format=AUDIT_FORMAT,
            level="INFO",
            filter=is_audit_record,
        )


def _add_file_sink(path: Path, **options: Any) -> None:
    path = path.expanduser()
    try:
        path.parent.mkdir(parents=True, exist_ok=True)
        logger.add(str(path), encoding="utf-8", enqueue=True, **options)
    except OSError as exc:
        logger.warning(f"LOG FILE DISABLED - path={path} error={exc}")


def _format_meta(meta: dict[str, Any]) -> str:
    return " ".join(f"{key}={meta[key]}" for key in sorted(meta))


def _emit(level: str, message: str, meta: dict[str, Any], **flags: Any) -> None:
    text = f"{message} | {_format_meta(meta)}" if meta else message
    # Loguru reports the caller of the public helper, not this function.
    logger.opt(depth=2).bind(**flags, **meta).log(level, text)


def log_debug(message: str, **meta) -> None:
    _emit("DEBUG", message, meta)


def log_info(message: str, **meta) -> None:
    _emit("INFO", message, meta)


def log_warning(message: str, **meta) -> None:
    _emit("WARNING", message, meta)


def log_error(message: str, **meta) -> None:
    _emit("ERROR", message, meta)


def log_audit_event(
    event_type: str,
    action: str,
    *,
    user_id: str | None = None,
    entity_type: str | None = None,
    entity_id: str | None = None,
    **extra_meta,
) -> None:
    """Record a stock, order or payment state change.

    The message reads ``{event_type} {action} | k=v ...`` with keys sorted, and
    the record is flagged for the audit sink.
    """
    meta: dict[str, Any] = {}
    if user_id is not None:
        meta["user_id"] = user_id
    if entity_type:
        meta["entity_type"] = entity_type
    if entity_id is not None:
        meta["entity_id"] = entity_id
    meta.update(extra_meta)
    _emit("INFO", f"{event_type} {action}", meta, audit=True, event_type=event_type)
