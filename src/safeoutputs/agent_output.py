from __future__ import annotations

import json
import logging
from pathlib import Path
from typing import cast

from safeoutputs.models import Request, RunReport
from safeoutputs.observability import log_event
from safeoutputs.temporary_id import ResolutionTable, TemporaryIdError


LOGGER = logging.getLogger("safeoutputs.agent_output")


class AgentOutputError(ValueError):
    pass


def load_requests(path: Path) -> tuple[Request, ...]:
    """Read a batch as `{"items": [...]}`, a bare JSON list, or JSON Lines."""
    try:
        text = path.read_text(encoding="utf-8")
    except OSError as exc:
        raise AgentOutputError(f"Unable to read agent output {path}: {exc}") from exc

    raw_items = parse_requests_text(text, source=str(path))
    requests = tuple(Request.from_raw(index, item) for index, item in enumerate(raw_items))
    log_event(LOGGER, "agent_output_loaded", path=str(path), request_count=len(requests))
    return requests


def parse_requests_text(text: str, *, source: str = "<input>") -> list[dict[str, object]]:
    stripped = text.strip()
    if not stripped:
        return []
    try:
        document = json.loads(stripped)
    except json.JSONDecodeError:
        document = _parse_json_lines(stripped, source=source)

    if isinstance(document, dict):
        if "items" not in document:
            # A single JSON Lines entry parses as one object.
            document = [document]
        else:
            document = document["items"]
    if not isinstance(document, list):
        raise AgentOutputError(f"{source}: expected a list of requests or an object with 'items'")

    items: list[dict[str, object]] = []
    for index, item in enumerate(document):
        if not isinstance(item, dict) or not all(isinstance(key, str) for key in item):
            raise AgentOutputError(f"{source}: request {index} must be a JSON object")
        items.append(cast(dict[str, object], item))
    return items


def _parse_json_lines(text: str, *, source: str) -> list[object]:
    entries: list[object] = []
    for line_number, line in enumerate(text.splitlines(), start=1):
        if not line.strip():
            continue
        try:
            entries.append(json.loads(line))
        except json.JSONDecodeError as exc:
            raise AgentOutputError(f"{source}:{line_number}: invalid JSON: {exc.msg}") from exc
    return entries


def load_resolution_table(path: Path, *, default_scope: str) -> ResolutionTable:
    if not path.exists():
        log_event(LOGGER, "temporary_id_map_missing", path=str(path))
        return ResolutionTable()
    try:
        text = path.read_text(encoding="utf-8")
        data = json.loads(text) if text.strip() else {}
    except (OSError, json.JSONDecodeError) as exc:
        raise AgentOutputError(f"Unable to read temporary ID map {path}: {exc}") from exc
    if not isinstance(data, dict):
        raise AgentOutputError(f"{path}: temporary ID map must be a JSON object")
    try:
        table = ResolutionTable.from_json_dict(data, default_scope=default_scope)
    except TemporaryIdError as exc:
        raise AgentOutputError(f"{path}: {exc}") from exc
    log_event(LOGGER, "temporary_id_map_loaded", path=str(path), entry_count=len(table))
    return table


def write_report(path: Path, report: RunReport) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    text = json.dumps(report.to_json_dict(), indent=2, sort_keys=True)
    path.write_text(text + "\n", encoding="utf-8")
    log_event(LOGGER, "report_written", path=str(path))


def write_resolution_table(path: Path, report: RunReport) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    text = json.dumps(dict(report.resolution_table), indent=2, sort_keys=True)
    path.write_text(text + "\n", encoding="utf-8")
    log_event(
        LOGGER, "temporary_id_map_written", path=str(path), entry_count=len(report.resolution_table)
    )
