"""
Command-line interface for wavegraph.

Usage:
    wavegraph demo --question "Explain chunking and why metadata matters in RAG."
    wavegraph demo --trace --trace-dir .wavegraph/traces
    wavegraph trace 20250101T120000_abc12345 --trace-dir .wavegraph/traces
"""

import argparse
import asyncio
import json
import sys
from pathlib import Path

DEFAULT_QUESTION = "Explain chunking and why metadata matters in RAG."


def _print_trace(events) -> None:
    for event in events:
        line = f"- {event.timestamp.isoformat()} [{event.node_name}] {event.phase.value}"
        if event.attempt:
            line += f" attempt={event.attempt}"
        if event.duration_ms is not None:
            line += f" {event.duration_ms}ms"
        if event.error:
            line += f" error={event.error}"
        if event.pending:
            line += f" pending={event.pending}"
        print(line)


def _positive_int(value: str) -> int:
    try:
        number = int(value)
    except ValueError:
        raise argparse.ArgumentTypeError(f"expected an integer, got {value!r}") from None
    if number < 1:
        raise argparse.ArgumentTypeError(f"must be at least 1, got {number}")
    return number


def cmd_demo(args: argparse.Namespace) -> int:
    from wavegraph.config import ExecutorConfig
    from wavegraph.demo import build_question_router_graph
    from wavegraph.graph import GraphExecutor
    from wavegraph.runtime import TraceStore

    graph = build_question_router_graph(Path(args.store) if args.store else None)
    config = (
        ExecutorConfig(max_steps=args.max_steps)
        if args.max_steps is not None
        else ExecutorConfig()
    )
    executor = GraphExecutor(graph, config=config)

    result = asyncio.run(executor.execute({"question": args.question}))

    print(json.dumps(result.state, indent=2, default=str))
    if args.trace:
        print("\nTrace:")
        _print_trace(result.trace)
    if args.trace_dir:
        store = TraceStore(args.trace_dir)
        path = asyncio.run(store.save_trace(result.run_id, result.trace, graph_id=graph.id))
        print(f"\nTrace saved to {path} (run {result.run_id})", file=sys.stderr)

    if not result.success:
        print(f"Run failed: {result.error}", file=sys.stderr)
        return 1
    if result.budget_exhausted:
        print("Run stopped: step budget exhausted", file=sys.stderr)
        return 2
    return 0


def cmd_trace(args: argparse.Namespace) -> int:
    from wavegraph.runtime import TraceStore

    store = TraceStore(args.trace_dir)
    trace = asyncio.run(store.load_trace(args.run_id))
    if trace is None:
        print(f"No trace found for run {args.run_id} in {args.trace_dir}", file=sys.stderr)
        return 1
    print(f"Run {trace.run_id} (graph: {trace.graph_id or 'unknown'})")
    _print_trace(trace.events)
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="wavegraph",
        description="wavegraph - run graph workflows in supersteps",
    )
    parser.add_argument("--log-level", default="WARNING", help="DEBUG, INFO, WARNING, ERROR")
    parser.add_argument(
        "--log-format",
        default="auto",
        choices=["auto", "json", "human"],
        help="Log output format",
    )

    subparsers = parser.add_subparsers(dest="command", required=True)

    demo = subparsers.add_parser("demo", help="Run the bundled question-routing workflow")
    demo.add_argument("--question", default=DEFAULT_QUESTION)
    demo.add_argument("--store", help='JSON file shaped {"records": [{"text": ...}]}')
    demo.add_argument(
        "--max-steps", type=_positive_int, default=None, help="Override the step budget"
    )
    demo.add_argument("--trace", action="store_true", help="Print the run trace")
    demo.add_argument("--trace-dir", help="Persist the trace under this directory")
    demo.set_defaults(func=cmd_demo)

    trace = subparsers.add_parser("trace", help="Print a persisted run trace")
    trace.add_argument("run_id")
    trace.add_argument("--trace-dir", required=True)
    trace.set_defaults(func=cmd_trace)

    return parser


def main(argv: list[str] | None = None) -> int:
    from wavegraph.observability import configure_logging

    parser = build_parser()
    args = parser.parse_args(argv)
    configure_logging(level=args.log_level, format=args.log_format)
    return args.func(args)


if __name__ == "__main__":
    sys.exit(main())
