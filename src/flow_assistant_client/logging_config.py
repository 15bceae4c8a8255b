from __future__ import annotations

import sys
from collections.abc import Callable
from pathlib import Path
from typing import Any

from loguru import logger

DEFAULT_LOG_FILE = "flow_assistant.log"
POLLING_LOGGER_PREFIX = "flow_assistant_client.polling"

_CONSOLE_FORMAT = "<level>{level:<8}</level> | <cyan>{name}</cyan> - <level>{message}</level>"
_FILE_FORMAT = "{time:YYYY-MM-DD HH:mm:ss.SSS} | {level:<8} | {name}:{function}:{line} - {message}"


def _console_filter(show_polling: bool) -> Callable[[dict[str, Any]], bool]:
    warning_no = logger.level("WARNING").no

    def accept(record: dict[str, Any]) -> bool:
        if show_polling or not record["name"].startswith(POLLING_LOGGER_PREFIX):
            return True
        return record["level"].no >= warning_no

    return accept


def _add_console(options: dict[str, Any], level: str) -> str:
    show_polling = bool(options.get("show_polling", False))
    logger.add(sys.stderr, level=level, format=_CONSOLE_FORMAT, filter=_console_filter(show_polling))
    suffix = ", with polling" if show_polling else ""
    return f"console (stderr, {level}{suffix})"


def _add_file(options: dict[str, Any], level: str) -> str:
    path = Path(options.get("path", DEFAULT_LOG_FILE))
    path.parent.mkdir(parents=True, exist_ok=True)
    logger.add(
        str(path),
        level=level,
        format=_FILE_FORMAT,
        rotation=options.get("rotation", "10 MB"),
        retention=options.get("retention", 3),
    )
    return f"file ({path}, {level})"


_SINKS: dict[str, Callable[[dict[str, Any], str], str]] = {
    "console": _add_console,
    "file": _add_file,
}


def default_consumers(console_level: str = "WARNING") -> list[dict[str, Any]]:
    return [
        {"type": "console", "level": console_level},
        {"type": "file", "path": DEFAULT_LOG_FILE},
    ]


def setup_logging(
    level: str = "INFO",
    consumers: list[dict[str, Any]] | None = None,
    *,
    console_level: str = "WARNING",
) -> list[str]:
    """Replace all loguru sinks with the configured consumers.

    ``console_level`` only applies when ``consumers`` is None. Poll-cycle
    records stay off the console below WARNING so they do not interleave
    with the chat prompt; the file sink still receives them.
    Returns a description of each registered sink.
    """
    logger.remove()

    descriptions: list[str] = []
    for options in consumers if consumers is not None else default_consumers(console_level):
        sink_type = options.get("type", "")
        add_sink = _SINKS.get(sink_type)
        if add_sink is None:
            logger.warning(f"Unknown log consumer type: {sink_type!r}")
            continue
        descriptions.append(add_sink(options, options.get("level", level)))

    return descriptions
