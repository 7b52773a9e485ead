"""TOML-based controller configuration.

Loads ~/.ec2op/defaults.toml (global) and ec2op.toml (project), merges
them, and builds typed settings for the AWS client, the controller and
logging.

Example ec2op.toml::

    [aws]
    region = "eu-west-1"
    create_timeout = 240

    [controller]
    workers = 8
    on_describe_failure = "preserve"

    [logging]
    level = "DEBUG"
"""

from __future__ import annotations

import tomllib
from dataclasses import dataclass, field, fields
from pathlib import Path
from types import UnionType
from typing import Any, Literal, TypeAliasType, get_args, get_origin, get_type_hints

from ec2op.api.model import FINALIZER
from ec2op.core.exceptions import ConfigurationError
from ec2op.observability.logging import LogConfig
from ec2op.providers.aws.config import AWS

type RawConfig = dict[str, Any]
type DescribeFailurePolicy = Literal["recreate", "preserve"]

GLOBAL_CONFIG_PATH = Path.home() / ".ec2op" / "defaults.toml"
PROJECT_CONFIG_NAME = "ec2op.toml"
DESCRIBE_FAILURE_POLICIES: tuple[DescribeFailurePolicy, ...] = ("recreate", "preserve")


@dataclass(frozen=True, slots=True)
class ControllerSettings:
    """Reconciler and dispatcher settings.

    Args:
        workers: Concurrent reconciles across distinct resources.
        verify_delay: Seconds before re-verifying a freshly created instance.
        on_describe_failure: What a verification pass does when EC2 cannot be
            queried. "recreate" clears status like a missing instance;
            "preserve" keeps the instance id, marks the state Unknown and
            retries with backoff.
        base_delay: First backoff delay in seconds after a failed pass.
        max_delay: Backoff cap in seconds.
        finalizer: Finalizer token guarding remote cleanup.
    """

    workers: int = 4
    verify_delay: float = 1.0
    on_describe_failure: DescribeFailurePolicy = "recreate"
    base_delay: float = 0.5
    max_delay: float = 300.0
    finalizer: str = FINALIZER


@dataclass(frozen=True, slots=True)
class Settings:
    aws: AWS = field(default_factory=AWS)
    controller: ControllerSettings = field(default_factory=ControllerSettings)
    logging: LogConfig = field(default_factory=LogConfig)


def _deep_merge(base: RawConfig, override: RawConfig) -> RawConfig:
    result = dict(base)
    for key, value in override.items():
        if key in result and isinstance(result[key], dict) and isinstance(value, dict):
            result[key] = _deep_merge(result[key], value)
        else:
            result[key] = value
    return result


def _read_toml(path: Path) -> RawConfig:
    if not path.is_file():
        return {}
    try:
        with path.open("rb") as f:
            return tomllib.load(f)
    except tomllib.TOMLDecodeError as e:
        raise ConfigurationError(f"Invalid TOML in {path}: {e}") from e


def load_config(
    *,
    project_dir: Path | None = None,
    global_path: Path | None = None,
) -> RawConfig:
    global_cfg = _read_toml(global_path or GLOBAL_CONFIG_PATH)
    project_path = (project_dir or Path.cwd()) / PROJECT_CONFIG_NAME
    project_cfg = _read_toml(project_path)

    merged = _deep_merge(global_cfg, project_cfg)
    for section in ("aws", "controller", "logging"):
        merged.setdefault(section, {})
    return merged


def _conforms(value: Any, hint: Any) -> bool:
    """Whether a TOML value fits a settings field annotation."""
    if isinstance(hint, TypeAliasType):
        return _conforms(value, hint.__value__)
    if get_origin(hint) is Literal:
        return value in get_args(hint)
    if isinstance(hint, UnionType):
        return any(_conforms(value, arg) for arg in get_args(hint))
    if hint is type(None):
        return value is None
    # TOML booleans are ints to Python
    if isinstance(value, bool):
        return hint is bool
    if hint is float:
        return isinstance(value, int | float)
    return isinstance(value, hint)


def _expected(hint: Any) -> str:
    if isinstance(hint, TypeAliasType):
        return _expected(hint.__value__)
    if get_origin(hint) is Literal:
        return "one of " + ", ".join(map(str, get_args(hint)))
    if isinstance(hint, UnionType):
        return " or ".join(_expected(arg) for arg in get_args(hint) if arg is not type(None))
    return {bool: "a boolean", int: "an integer", float: "a number", str: "a string"}.get(
        hint, getattr(hint, "__name__", str(hint)),
    )


def _build_section[T](cls: type[T], section: str, raw: Any) -> T:
    if not isinstance(raw, dict):
        raise ConfigurationError(f"[{section}] must be a table, got {raw!r}")

    hints = get_type_hints(cls)
    known = {f.name for f in fields(cls)}  # type: ignore[arg-type]
    unknown = sorted(set(raw) - known)
    if unknown:
        raise ConfigurationError(
            f"Unknown key(s) in [{section}]: {', '.join(unknown)}. "
            f"Valid: {', '.join(sorted(known))}"
        )
    for key, value in raw.items():
        if not _conforms(value, hints[key]):
            raise ConfigurationError(
                f"[{section}] {key} must be {_expected(hints[key])}, got {value!r}"
            )
    return cls(**raw)


def _validate(settings: Settings) -> Settings:
    ctl = settings.controller
    if ctl.workers < 1:
        raise ConfigurationError("[controller] workers must be at least 1")
    if ctl.on_describe_failure not in DESCRIBE_FAILURE_POLICIES:
        raise ConfigurationError(
            f"[controller] on_describe_failure must be one of "
            f"{', '.join(DESCRIBE_FAILURE_POLICIES)}"
        )
    if ctl.verify_delay < 0:
        raise ConfigurationError("[controller] verify_delay must not be negative")
    if ctl.base_delay < 0 or ctl.max_delay < ctl.base_delay:
        raise ConfigurationError("[controller] requires 0 <= base_delay <= max_delay")
    if not ctl.finalizer:
        raise ConfigurationError("[controller] finalizer must not be empty")

    aws = settings.aws
    if not aws.region:
        raise ConfigurationError("[aws] region must not be empty")
    if aws.create_timeout <= 0 or aws.terminate_timeout <= 0:
        raise ConfigurationError("[aws] timeouts must be positive")
    if aws.poll_interval < 0 or aws.retry_base_delay < 0:
        raise ConfigurationError("[aws] poll_interval and retry_base_delay must not be negative")
    if aws.request_attempts < 1:
        raise ConfigurationError("[aws] request_attempts must be at least 1")

    if settings.logging.retention < 0:
        raise ConfigurationError("[logging] retention must not be negative")
    return settings


def load_settings(
    *,
    project_dir: Path | None = None,
    global_path: Path | None = None,
) -> Settings:
    config = load_config(project_dir=project_dir, global_path=global_path)
    return _validate(Settings(
        aws=_build_section(AWS, "aws", config["aws"]),
        controller=_build_section(ControllerSettings, "controller", config["controller"]),
        logging=_build_section(LogConfig, "logging", config["logging"]),
    ))


__all__ = [
    "ControllerSettings",
    "DescribeFailurePolicy",
    "Settings",
    "load_config",
    "load_settings",
]
