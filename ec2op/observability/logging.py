"""Controller logging on top of loguru.

ec2op modules log through ``logger.bind(component=...)`` and narrow the
context further per pass (``resource``, ``instance_id``, ``worker``). The
package is silent until enabled.

``_setup_logging`` takes over loguru for a standalone controller: it removes
every installed sink, including ones added by an embedding application, and
installs ec2op's own. Applications that manage their own sinks skip it and
call ``logger.enable("ec2op")`` instead.

Console lines look like::

    12:04:31.207 | INFO     | reconciler [resource=default/web instance_id=i-0abc] - Instance i-0abc is running

Example:
    from ec2op.observability import LogConfig, _setup_logging, _teardown_logging

    handler_ids = _setup_logging(LogConfig(level="DEBUG", file=""))
    ...
    _teardown_logging(handler_ids)
"""

from __future__ import annotations

import sys
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Literal

from loguru import logger

type LogLevel = Literal["TRACE", "DEBUG", "INFO", "WARNING", "ERROR"]

_PACKAGE = "ec2op"
_CONTEXT_KEYS = ("resource", "instance_id", "worker")

logger.disable(_PACKAGE)


def _render_context(record: Any) -> None:
    """Patcher: precompute ``extra[_component]`` and ``extra[_ctx]`` for the formats."""
    extra = record["extra"]
    extra["_component"] = extra.get("component", record["name"])
    pairs = " ".join(f"{k}={extra[k]}" for k in _CONTEXT_KEYS if k in extra)
    extra["_ctx"] = f" [{pairs}]" if pairs else ""


CONSOLE_FORMAT = (
    "<green>{time:HH:mm:ss.SSS}</green> | "
    "<level>{level: <8}</level> | "
    "<cyan>{extra[_component]}</cyan><dim>{extra[_ctx]}</dim> - "
    "<level>{message}</level>"
)

FILE_FORMAT = (
    "{time:YYYY-MM-DD HH:mm:ss.SSS} | {level: <8} | {extra[_component]} | "
    "{name}:{function}:{line}{extra[_ctx]} - {message}"
)


@dataclass(frozen=True, slots=True)
class LogConfig:
    """``[logging]`` section.

    Attributes:
        level: Console threshold. The file sink always records DEBUG and up.
        file: Log file path. Empty disables the file sink.
        console: Log to stderr.
        rotation: loguru rotation policy for the file sink, e.g. "50 MB".
        retention: Rotated files to keep.
        serialize: Write the file sink as JSON lines instead of text.
    """

    level: LogLevel = "INFO"
    file: str = ".ec2op/ec2op.log"
    console: bool = True
    rotation: str = "50 MB"
    retention: int = 10
    serialize: bool = False


def _setup_logging(config: LogConfig) -> list[int]:
    """Install the configured sinks and return their handler ids."""
    logger.remove()
    logger.configure(patcher=_render_context)
    logger.enable(_PACKAGE)

    handler_ids: list[int] = []
    if config.console:
        handler_ids.append(logger.add(
            sys.stderr,
            level=config.level,
            format=CONSOLE_FORMAT,
            colorize=True,
            filter=_PACKAGE,
        ))

    if config.file:
        path = Path(config.file)
        path.parent.mkdir(parents=True, exist_ok=True)
        handler_ids.append(logger.add(
            path,
            level="DEBUG",
            format=FILE_FORMAT,
            filter=_PACKAGE,
            rotation=config.rotation,
            retention=config.retention,
            compression="zip",
            serialize=config.serialize,
            diagnose=False,
        ))
        logger.bind(component="logging").debug("File logging to {path}", path=path)

    return handler_ids


def _teardown_logging(handler_ids: list[int]) -> None:
    for hid in handler_ids:
        logger.remove(hid)
    logger.disable(_PACKAGE)
