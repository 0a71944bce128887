from __future__ import annotations

from collections.abc import Mapping
import logging
from typing import Final, Literal, get_args

from safeoutputs.config import AppConfig, ConfigError
from safeoutputs.handlers import HANDLER_FACTORIES, Handler, HandlerContext
from safeoutputs.observability import log_event


LOGGER = logging.getLogger("safeoutputs.registry")

RequestType = Literal[
    "create_issue",
    "add_comment",
    "update_issue",
    "close_issue",
    "add_labels",
    "link_sub_issue",
    "create_pull_request_review_comment",
    "submit_pull_request_review",
    "create_project",
    "update_project",
    "missing_tool",
    "missing_data",
]
Classification = Literal["handled", "standalone", "collected", "custom", "unhandled"]

SUPPORTED_TYPES: Final[frozenset[str]] = frozenset(get_args(RequestType))
# Dispatched by separate steps of the same workflow, never by this process.
STANDALONE_TYPES: Final[frozenset[str]] = frozenset(
    {"assign_to_agent", "create_agent_session", "upload_asset", "noop"}
)
# Gathered into the run report whether or not a handler is configured for them.
COLLECTED_TYPES: Final[frozenset[str]] = frozenset({"missing_tool", "missing_data"})


class HandlerRegistry:
    def __init__(
        self,
        handlers: Mapping[str, Handler],
        *,
        custom_job_types: frozenset[str] = frozenset(),
    ) -> None:
        self._handlers = dict(handlers)
        self._custom_job_types = custom_job_types

    def get(self, request_type: str) -> Handler | None:
        return self._handlers.get(request_type)

    def classify(self, request_type: str) -> Classification:
        if request_type in self._handlers:
            return "handled"
        if request_type in STANDALONE_TYPES:
            return "standalone"
        if request_type in COLLECTED_TYPES:
            return "collected"
        if request_type in self._custom_job_types:
            return "custom"
        return "unhandled"

    def types(self) -> tuple[str, ...]:
        return tuple(sorted(self._handlers))


def build_registry(config: AppConfig, context: HandlerContext) -> HandlerRegistry:
    handlers: dict[str, Handler] = {}
    for handler_config in config.handlers:
        if handler_config.type in STANDALONE_TYPES:
            continue
        factory = HANDLER_FACTORIES.get(handler_config.type)
        if factory is None:
            raise ConfigError(
                f"[handlers.{handler_config.type}] is not a supported request type; "
                "expected one of: " + ", ".join(sorted(SUPPORTED_TYPES))
            )
        handlers[handler_config.type] = factory(handler_config, context)

    registry = HandlerRegistry(handlers, custom_job_types=config.runtime.custom_job_types)
    log_event(
        LOGGER,
        "registry_built",
        handler_types=registry.types(),
        custom_job_types=config.runtime.custom_job_types,
    )
    return registry
