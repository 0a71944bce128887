from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
import tomllib
from typing import cast


@dataclass(frozen=True)
class RuntimeConfig:
    repo: str
    issue_number: int | None = None
    pull_request_number: int | None = None
    workflow_name: str | None = None
    run_url: str | None = None
    custom_job_types: frozenset[str] = frozenset()
    agent_login: str = "copilot"

    @property
    def owner(self) -> str:
        return self.repo.split("/", 1)[0]

    @property
    def name(self) -> str:
        return self.repo.split("/", 1)[1]


@dataclass(frozen=True)
class HandlerConfig:
    type: str
    max_count: int = 5
    title_prefix: str = ""
    labels: tuple[str, ...] = ()
    allowed_labels: tuple[str, ...] = ()
    assignees: tuple[str, ...] = ()
    footer: bool = True
    target_repo: str | None = None


@dataclass(frozen=True)
class AppConfig:
    runtime: RuntimeConfig
    handlers: tuple[HandlerConfig, ...]


class ConfigError(ValueError):
    pass


def load_config(path: Path) -> AppConfig:
    with path.open("rb") as fh:
        data = tomllib.load(fh)
    return parse_config(data)


def parse_config(data: dict[str, object]) -> AppConfig:
    runtime_data = _require_table(data, "runtime")
    handlers_data = _optional_table(data, "handlers") or {}

    runtime = RuntimeConfig(
        repo=_require_repo_slug(runtime_data, "repo"),
        issue_number=_optional_positive_int(runtime_data, "issue_number"),
        pull_request_number=_optional_positive_int(runtime_data, "pull_request_number"),
        workflow_name=_optional_str(runtime_data, "workflow_name"),
        run_url=_optional_str(runtime_data, "run_url"),
        custom_job_types=frozenset(
            _normalize_type_name(item) for item in _tuple_of_str(runtime_data, "custom_job_types")
        ),
        agent_login=_str_with_default(runtime_data, "agent_login", "copilot").strip().lower(),
    )

    handlers: list[HandlerConfig] = []
    seen: set[str] = set()
    for raw_type, raw_value in sorted(handlers_data.items()):
        handler_type = _normalize_type_name(raw_type)
        if handler_type in seen:
            raise ConfigError(f"Duplicate handler configuration for {handler_type!r}")
        seen.add(handler_type)
        handler_table = _require_sub_table(raw_value, table_name=f"[handlers.{raw_type}]")
        handlers.append(_parse_handler_config(handler_type, handler_table))

    overlap = seen & runtime.custom_job_types
    if overlap:
        raise ConfigError(
            "runtime.custom_job_types must not name configured handlers: "
            + ", ".join(sorted(overlap))
        )

    return AppConfig(runtime=runtime, handlers=tuple(handlers))


def _parse_handler_config(handler_type: str, data: dict[str, object]) -> HandlerConfig:
    max_count = _int_with_default(data, "max", 5)
    if max_count < 1:
        raise ConfigError(f"[handlers.{handler_type}] max must be >= 1")
    target_repo = _optional_str(data, "target_repo")
    if target_repo is not None:
        _validate_repo_slug(target_repo, key=f"[handlers.{handler_type}] target_repo")
    return HandlerConfig(
        type=handler_type,
        max_count=max_count,
        title_prefix=_str_or_empty(data, "title_prefix"),
        labels=_tuple_of_str(data, "labels"),
        allowed_labels=_tuple_of_str(data, "allowed_labels"),
        assignees=tuple(item.strip() for item in _tuple_of_str(data, "assignees") if item.strip()),
        footer=_bool_with_default(data, "footer", True),
        target_repo=target_repo,
    )


def _normalize_type_name(value: str) -> str:
    return value.strip().replace("-", "_")


def _require_table(data: dict[str, object], key: str) -> dict[str, object]:
    value = data.get(key)
    if not isinstance(value, dict):
        raise ConfigError(f"[{key}] is required and must be a TOML table")
    if not all(isinstance(item, str) for item in value.keys()):
        raise ConfigError(f"[{key}] must have string keys")
    return cast(dict[str, object], value)


def _optional_table(data: dict[str, object], key: str) -> dict[str, object] | None:
    value = data.get(key)
    if value is None:
        return None
    if not isinstance(value, dict):
        raise ConfigError(f"[{key}] must be a TOML table when provided")
    if not all(isinstance(item, str) for item in value.keys()):
        raise ConfigError(f"[{key}] must have string keys")
    return cast(dict[str, object], value)


def _require_sub_table(value: object, *, table_name: str) -> dict[str, object]:
    if not isinstance(value, dict):
        raise ConfigError(f"{table_name} must be a TOML table")
    if not all(isinstance(item, str) for item in value.keys()):
        raise ConfigError(f"{table_name} must have string keys")
    return cast(dict[str, object], value)


def _require_repo_slug(data: dict[str, object], key: str) -> str:
    value = data.get(key)
    if not isinstance(value, str) or not value:
        raise ConfigError(f"{key} is required and must be a non-empty string")
    _validate_repo_slug(value, key=key)
    return value


def _validate_repo_slug(value: str, *, key: str) -> None:
    parts = value.split("/")
    if len(parts) != 2 or not parts[0] or not parts[1]:
        raise ConfigError(f"{key} must be in 'owner/name' form, got {value!r}")


def _optional_str(data: dict[str, object], key: str) -> str | None:
    value = data.get(key)
    if value is None:
        return None
    if not isinstance(value, str) or not value:
        raise ConfigError(f"{key} must be a non-empty string if provided")
    return value


def _str_with_default(data: dict[str, object], key: str, default: str) -> str:
    value = data.get(key, default)
    if not isinstance(value, str) or not value:
        raise ConfigError(f"{key} must be a non-empty string")
    return value


def _str_or_empty(data: dict[str, object], key: str) -> str:
    value = data.get(key, "")
    if not isinstance(value, str):
        raise ConfigError(f"{key} must be a string")
    return value


def _int_with_default(data: dict[str, object], key: str, default: int) -> int:
    value = data.get(key, default)
    if isinstance(value, bool) or not isinstance(value, int):
        raise ConfigError(f"{key} must be an integer")
    return value


def _bool_with_default(data: dict[str, object], key: str, default: bool) -> bool:
    value = data.get(key, default)
    if not isinstance(value, bool):
        raise ConfigError(f"{key} must be a boolean")
    return value


def _tuple_of_str(data: dict[str, object], key: str) -> tuple[str, ...]:
    value = data.get(key, [])
    if not isinstance(value, list):
        raise ConfigError(f"{key} must be a list of strings")
    out: list[str] = []
    for item in value:
        if not isinstance(item, str):
            raise ConfigError(f"{key} must be a list of strings")
        out.append(item)
    return tuple(out)


def _optional_positive_int(data: dict[str, object], key: str) -> int | None:
    value = data.get(key)
    if value is None:
        return None
    if isinstance(value, bool) or not isinstance(value, int) or value < 1:
        raise ConfigError(f"{key} must be an integer >= 1 if provided")
    return value
