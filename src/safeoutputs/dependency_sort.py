"""Order a batch so producers of temporary IDs run before their consumers.

The ordering is a stable Kahn traversal:
- requests with no unmet in-batch dependency start eligible, in batch order;
- emitting a request makes its dependents eligible once all of their producers
  have been emitted; newly eligible requests are queued in batch order;
- a reference to an id that no request in the batch produces adds no edge, so
  ids carried in from an earlier run (or simply invalid) never hold a request back.

Requests on or behind a cycle are appended in batch order. Nothing here tries to
break the cycle: those requests defer at dispatch, fail their single retry and
are reported as deferred.
"""

from __future__ import annotations

from collections import deque
from collections.abc import Iterable, Mapping, Sequence
import logging
import re

from safeoutputs.models import Request
from safeoutputs.observability import log_event
from safeoutputs.temporary_id import TEMPORARY_ID_PATTERN, is_temporary_id, normalize


LOGGER = logging.getLogger("safeoutputs.dependency_sort")

_TEXT_FIELDS = ("body", "title", "description")
_ID_FIELDS = (
    "parent",
    "parent_issue_number",
    "sub_issue_number",
    "issue_number",
    "item_number",
    "discussion_number",
    "pull_request_number",
    "content_number",
    "project",
)
_URL_FIELDS = ("item_url",)
_ISSUE_URL_SUFFIX = re.compile(r"issues/(#?aw_[A-Za-z0-9]{3,8})\s*$", re.IGNORECASE)


def extract_references(payload: Mapping[str, object]) -> frozenset[str]:
    found: set[str] = set()
    _collect_references(payload, found)
    return frozenset(found)


def _collect_references(payload: Mapping[str, object], found: set[str]) -> None:
    for field in _TEXT_FIELDS:
        value = payload.get(field)
        if isinstance(value, str):
            found.update(match.group(1).lower() for match in TEMPORARY_ID_PATTERN.finditer(value))

    for field in _ID_FIELDS:
        value = payload.get(field)
        if value is not None and is_temporary_id(str(value)):
            found.add(normalize(str(value)))

    for field in _URL_FIELDS:
        value = payload.get(field)
        if not isinstance(value, str):
            continue
        url_match = _ISSUE_URL_SUFFIX.search(value)
        candidate = url_match.group(1) if url_match else value
        if is_temporary_id(candidate):
            found.add(normalize(candidate))

    items = payload.get("items")
    if isinstance(items, list):
        for item in items:
            if isinstance(item, dict):
                _collect_references(item, found)


def created_temporary_id(request: Request) -> str | None:
    if is_temporary_id(request.temporary_id):
        return normalize(request.temporary_id)
    return None


def _build_graph(
    requests: Sequence[Request],
) -> tuple[dict[int, list[int]], dict[int, int]]:
    producers: dict[str, int] = {}
    for index, request in enumerate(requests):
        created = created_temporary_id(request)
        if created is not None and created not in producers:
            producers[created] = index

    dependents: dict[int, list[int]] = {index: [] for index in range(len(requests))}
    in_degree: dict[int, int] = {index: 0 for index in range(len(requests))}
    for index, request in enumerate(requests):
        producer_indices = {
            producers[ref]
            for ref in extract_references(request.payload)
            if ref in producers and producers[ref] != index
        }
        for producer_index in sorted(producer_indices):
            dependents[producer_index].append(index)
            in_degree[index] += 1
    return dependents, in_degree


def _kahn_order(requests: Sequence[Request]) -> tuple[list[int], list[int]]:
    dependents, in_degree = _build_graph(requests)
    ready: deque[int] = deque(index for index in range(len(requests)) if in_degree[index] == 0)
    emitted: list[int] = []
    while ready:
        index = ready.popleft()
        emitted.append(index)
        newly_ready: list[int] = []
        for dependent in dependents[index]:
            in_degree[dependent] -= 1
            if in_degree[dependent] == 0:
                newly_ready.append(dependent)
        ready.extend(sorted(newly_ready))
    stuck = [index for index in range(len(requests)) if in_degree[index] > 0]
    return emitted, stuck


def sort_requests(requests: Iterable[Request]) -> list[Request]:
    ordered_input = list(requests)
    emitted, stuck = _kahn_order(ordered_input)
    if stuck:
        log_event(
            LOGGER,
            "dependency_cycle_detected",
            level=logging.WARNING,
            positions=[ordered_input[index].position for index in stuck],
        )
    ordered = [ordered_input[index] for index in emitted + stuck]

    moved = sum(
        1 for before, after in zip(ordered_input, ordered, strict=True) if before is not after
    )
    log_event(
        LOGGER,
        "batch_sorted",
        request_count=len(ordered),
        reordered_count=moved,
        cyclic_count=len(stuck),
    )
    return ordered


def find_cycles(requests: Iterable[Request]) -> tuple[int, ...]:
    """Return batch positions of requests that can never become eligible."""
    ordered_input = list(requests)
    _, stuck = _kahn_order(ordered_input)
    return tuple(ordered_input[index].position for index in stuck)
