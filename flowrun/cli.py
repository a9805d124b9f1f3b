"""
Command-line interface for flowrun.

Usage:
    flowrun run flow.json --prompts prompts/ --compositions compositions/
    flowrun run flow.json --stream
    flowrun validate flow.json
    flowrun estimate flow.json

Every command prints JSON on stdout; logs go to stderr. Exit code 1 means
the flow document could not be loaded or failed structural validation.
"""

import argparse
import asyncio
import json
import sys
from pathlib import Path
from typing import Any

from pydantic import ValidationError

from flowrun.config import RuntimeConfig
from flowrun.graph.edge import FlowGraph, StructuralError
from flowrun.graph.executor import FlowExecutor
from flowrun.graph.hybrid import compute_flow_complexity
from flowrun.graph.usage import estimate_cost_usd, estimate_latency_ms, estimate_token_usage
from flowrun.metadata.library import load_prompt_library
from flowrun.observability import configure_logging


def _emit(payload: Any) -> None:
    print(json.dumps(payload, indent=2, ensure_ascii=False, default=str))


def _load_graph(path: str) -> FlowGraph | None:
    try:
        with open(path, encoding="utf-8") as f:
            data = json.load(f)
    except (OSError, json.JSONDecodeError) as e:
        _emit({"valid": False, "errors": [f"Cannot read {path}: {e}"]})
        return None
    try:
        return FlowGraph.model_validate(data)
    except ValidationError as e:
        _emit(
            {
                "valid": False,
                "errors": [
                    f"{'.'.join(str(p) for p in err['loc'])}: {err['msg']}" for err in e.errors()
                ],
            }
        )
        return None


def cmd_run(args: argparse.Namespace) -> int:
    graph = _load_graph(args.flow)
    if graph is None:
        return 1

    config: RuntimeConfig = args.config
    prompts_dir = args.prompts or config.prompts_dir
    compositions_dir = args.compositions or config.compositions_dir
    library = load_prompt_library(prompts_dir, compositions_dir)
    executor = FlowExecutor(
        library=library,
        token_budget=config.token_budget,
        latency_budget_ms=config.latency_budget_ms,
    )

    async def _stream() -> None:
        async for event in executor.stream(graph):
            print(json.dumps(event.to_dict(), ensure_ascii=False, default=str), flush=True)

    try:
        if args.stream:
            asyncio.run(_stream())
        else:
            result = asyncio.run(executor.execute(graph))
            _emit(result.to_wire())
    except StructuralError as e:
        _emit({"valid": False, "errors": e.errors})
        return 1
    return 0


def cmd_validate(args: argparse.Namespace) -> int:
    graph = _load_graph(args.flow)
    if graph is None:
        return 1
    errors = graph.validate()
    warnings = [
        f"Edge '{edge.describe()}' points backwards in declaration order"
        for edge in graph.order_violations()
    ]
    _emit({"valid": not errors, "errors": errors, "warnings": warnings})
    return 1 if errors else 0


def cmd_estimate(args: argparse.Namespace) -> int:
    graph = _load_graph(args.flow)
    if graph is None:
        return 1
    usage = estimate_token_usage(graph)
    _emit(
        {
            "usage": usage.model_dump(by_alias=True),
            "latencyMs": estimate_latency_ms(usage),
            "costUsd": estimate_cost_usd(usage),
            "complexityScore": compute_flow_complexity(graph),
        }
    )
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="flowrun",
        description="flowrun - Execute declarative reasoning flows",
    )
    parser.add_argument("--log-level", default=None, help="Override the configured log level")
    parser.add_argument(
        "--log-format",
        choices=["auto", "json", "human"],
        default="auto",
        help="Log output format",
    )

    subparsers = parser.add_subparsers(dest="command", required=True)

    run_parser = subparsers.add_parser("run", help="Execute a flow and print the run record")
    run_parser.add_argument("flow", help="Path to a flow JSON document")
    run_parser.add_argument("--prompts", type=Path, default=None, help="Prompt template directory")
    run_parser.add_argument(
        "--compositions", type=Path, default=None, help="Composition directory"
    )
    run_parser.add_argument(
        "--stream", action="store_true", help="Print run events as JSON lines"
    )
    run_parser.set_defaults(func=cmd_run)

    validate_parser = subparsers.add_parser("validate", help="Check a flow's structure")
    validate_parser.add_argument("flow", help="Path to a flow JSON document")
    validate_parser.set_defaults(func=cmd_validate)

    estimate_parser = subparsers.add_parser(
        "estimate", help="Estimate tokens, latency, cost and complexity"
    )
    estimate_parser.add_argument("flow", help="Path to a flow JSON document")
    estimate_parser.set_defaults(func=cmd_estimate)

    return parser


def main(argv: list[str] | None = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)

    config = RuntimeConfig.load()
    configure_logging(level=args.log_level or config.log_level, format=args.log_format)
    args.config = config

    return args.func(args)


if __name__ == "__main__":
    sys.exit(main())
