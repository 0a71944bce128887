from __future__ import annotations

import argparse
import json
from pathlib import Path

from safeoutputs.agent_output import (
    load_requests,
    load_resolution_table,
    write_report,
    write_resolution_table,
)
from safeoutputs.config import AppConfig, load_config
from safeoutputs.dependency_sort import extract_references, find_cycles, sort_requests
from safeoutputs.dispatcher import dispatch_batch
from safeoutputs.github_gateway import GitHubGateway
from safeoutputs.handlers import (
    GitHubContentUpdater,
    HandlerContext,
    build_footer,
    review_submitter,
)
from safeoutputs.models import RunReport
from safeoutputs.observability import configure_logging
from safeoutputs.registry import build_registry
from safeoutputs.review_buffer import ReviewBuffer


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="safeoutputs")
    subparsers = parser.add_subparsers(dest="command", required=True)

    run_parser = subparsers.add_parser(
        "run", help="Dispatch an agent output batch against GitHub"
    )
    run_parser.add_argument("--config", type=Path, default=Path("safeoutputs.toml"))
    run_parser.add_argument(
        "--input", type=Path, required=True, help="Agent output (JSON, JSON list or JSON Lines)"
    )
    run_parser.add_argument(
        "--temporary-id-map",
        type=Path,
        default=None,
        help="Temporary ID map carried in from an earlier run; rewritten after this run",
    )
    run_parser.add_argument(
        "--report", type=Path, default=None, help="Write the full JSON report to this path"
    )
    run_parser.add_argument(
        "--json", action="store_true", help="Print the full report as JSON instead of a summary"
    )
    run_parser.add_argument(
        "-v",
        "--verbose",
        action="store_true",
        help="Enable verbose runtime logging to stderr",
    )

    plan_parser = subparsers.add_parser(
        "plan", help="Print the dispatch order of a batch without calling GitHub"
    )
    plan_parser.add_argument("--input", type=Path, required=True)
    plan_parser.add_argument(
        "-v",
        "--verbose",
        action="store_true",
        help="Enable verbose runtime logging to stderr",
    )
    return parser


def main() -> None:
    args = build_parser().parse_args()
    configure_logging(bool(getattr(args, "verbose", False)))

    if args.command == "run":
        config = load_config(args.config)
        report = _cmd_run(
            config,
            input_path=args.input,
            map_path=args.temporary_id_map,
            report_path=args.report,
            as_json=bool(args.json),
        )
        if report.count("error") > 0:
            raise SystemExit(1)
        return
    if args.command == "plan":
        _cmd_plan(args.input)
        return

    raise RuntimeError(f"Unknown command: {args.command}")


def _cmd_run(
    config: AppConfig,
    *,
    input_path: Path,
    map_path: Path | None,
    report_path: Path | None,
    as_json: bool,
) -> RunReport:
    runtime = config.runtime
    requests = load_requests(input_path)
    initial_table = None
    if map_path is not None:
        initial_table = load_resolution_table(map_path, default_scope=runtime.repo).view()

    gateway = GitHubGateway(runtime.owner, runtime.name)
    review_buffer = ReviewBuffer(review_submitter(gateway), footer=build_footer(runtime))
    context = HandlerContext(gateway=gateway, runtime=runtime, review_buffer=review_buffer)
    registry = build_registry(config, context)

    report = dispatch_batch(
        requests,
        registry=registry,
        updater=GitHubContentUpdater(gateway),
        review_buffer=review_buffer,
        initial_table=initial_table,
        default_scope=runtime.repo,
    )

    if map_path is not None:
        write_resolution_table(map_path, report)
    if report_path is not None:
        write_report(report_path, report)

    if as_json:
        print(json.dumps(report.to_json_dict(), indent=2, sort_keys=True))
        return report

    print(
        f"success={report.count('success')} error={report.count('error')} "
        f"deferred={report.count('deferred')} skipped={report.count('skipped')} "
        f"synthetic_updates={report.synthetic_update_count}"
    )
    for result in report.results:
        position = "-" if result.position is None else str(result.position)
        line = f"[{position}] {result.type} {result.status}"
        if result.error:
            line += f": {result.error}"
        print(line)
    for follow_up in report.follow_ups:
        print(f"follow_up={follow_up}")
    return report


def _cmd_plan(input_path: Path) -> None:
    requests = load_requests(input_path)
    cyclic = set(find_cycles(requests))
    for request in sort_requests(requests):
        references = sorted(extract_references(request.payload))
        parts = [f"[{request.position}]", request.type or "<missing type>"]
        if isinstance(request.temporary_id, str):
            parts.append(f"produces={request.temporary_id}")
        if references:
            parts.append("needs=" + ",".join(references))
        if request.position in cyclic:
            parts.append("cycle")
        print(" ".join(parts))
