import argparse
import json
import logging
import signal
import sys
import threading
from typing import Any

from smallscope.checker import check
from smallscope.config import CheckConfig
from smallscope.domain import Catalog, OverflowPolicy
from smallscope.errors import ConfigurationError
from smallscope.models import MODELS, build_model
from smallscope.report import format_report, format_trace, render_markdown, report_json
from smallscope.result import Err, Ok
from smallscope.search import Termination, TraceGenerator

EXIT_HOLDS = 0
EXIT_COUNTEREXAMPLE = 1
EXIT_CONFIG_ERROR = 2
EXIT_INCONCLUSIVE = 3
EXIT_INTERRUPTED = 130


def _config_from(args: argparse.Namespace) -> CheckConfig:
    match CheckConfig.from_env():
        case Ok(config):
            pass
        case Err(e):
            raise e
    return config.with_overrides(
        model=args.model,
        address_count=args.addresses,
        proposal_count=args.proposals,
        int_min=args.int_min,
        int_max=args.int_max,
        max_trace_length=args.max_length,
        overflow=OverflowPolicy(args.overflow) if args.overflow else None,
        invariants=tuple(args.invariant) if args.invariant else None,
        workers=getattr(args, "workers", None),
        max_steps=getattr(args, "max_steps", None),
        timeout=getattr(args, "timeout", None),
        symmetry=args.symmetry,
        strict_delegation=args.strict_delegation,
    )


def _cancel_on_interrupt(cancel: threading.Event) -> Any:
    """Route Ctrl-C to ``cancel`` so the checker can still report; returns the old handler."""
    if threading.current_thread() is not threading.main_thread():
        return None
    return signal.signal(signal.SIGINT, lambda signum, frame: cancel.set())


def handle_check(args: argparse.Namespace) -> int:
    """Run the checker and print one verdict per invariant.

    Ctrl-C cancels the search instead of killing it: the partial report is
    printed with the undecided invariants marked inconclusive.
    """
    config = _config_from(args)
    system = config.build_system()
    cancel = threading.Event()
    previous = _cancel_on_interrupt(cancel)
    try:
        report = check(system, config.invariants, config.search_options(cancel))
    finally:
        if previous is not None:
            signal.signal(signal.SIGINT, previous)

    match args.format:
        case "json":
            print(json.dumps(report_json(report), indent=2))
        case "markdown":
            print(render_markdown(report))
        case _:
            print(format_report(report))

    if cancel.is_set():
        print("\nOperation cancelled by user.", file=sys.stderr)
        return EXIT_INTERRUPTED
    if report.counterexamples:
        return EXIT_COUNTEREXAMPLE
    if report.inconclusive:
        return EXIT_INCONCLUSIVE
    return EXIT_HOLDS


def handle_list() -> int:
    """Print every model with its rules and invariants."""
    catalog = Catalog.from_scope(CheckConfig().scope)
    for name in sorted(MODELS):
        system = build_model(name, catalog)
        print(name)
        for rule in system.rules:
            params = ", ".join(f"{p.name}: {p.kind.value}" for p in rule.params)
            print(f"  rule {rule.name}({params})")
        for inv in system.invariants:
            print(f"  invariant {inv.name} — {inv.description}")
    return 0


def handle_traces(args: argparse.Namespace) -> int:
    """Enumerate completed traces, printing at most ``--limit`` of them."""
    config = _config_from(args)
    system = config.build_system()
    generator = TraceGenerator(system, symmetry=config.symmetry)
    total = 0
    stuck = 0
    for completed in generator.traces():
        total += 1
        if completed.termination is Termination.STUCK:
            stuck += 1
        if total <= args.limit:
            print(
                f"trace {total} ({completed.termination.value}, "
                f"{len(completed.trace)} snapshots)"
            )
            print("\n".join(format_trace(completed.trace)))
    print(f"{total} completed traces, {stuck} stuck")
    return 0


def _add_scope_arguments(p: argparse.ArgumentParser) -> None:
    p.add_argument("model", choices=sorted(MODELS), nargs="?", default=None,
                   help="Model to explore (default: SMALLSCOPE_MODEL or auction).")
    p.add_argument("--addresses", type=int, help="Number of address atoms.")
    p.add_argument("--proposals", type=int, help="Number of proposal atoms.")
    p.add_argument("--int-min", type=int, help="Smallest bounded integer.")
    p.add_argument("--int-max", type=int, help="Largest bounded integer.")
    p.add_argument("--max-length", type=int, help="Maximum snapshots per trace.")
    p.add_argument(
        "--overflow",
        choices=[o.value for o in OverflowPolicy],
        help="Bounded-integer overflow policy (default: reject).",
    )
    p.add_argument(
        "--invariant",
        action="append",
        metavar="NAME",
        help="Invariant to check; repeat for several (default: all).",
    )
    p.add_argument(
        "--symmetry",
        action=argparse.BooleanOptionalAction,
        default=None,
        help="Reduce the search up to permutations of addresses and proposals.",
    )
    p.add_argument(
        "--strict-delegation",
        action=argparse.BooleanOptionalAction,
        default=None,
        help="Ballot only: require voting rights on both ends of a delegation.",
    )


def main(argv: list[str] | None = None) -> int:
    parser = argparse.ArgumentParser(
        prog="smallscope",
        description="Bounded trace exploration and invariant checking for contract models",
    )
    parser.add_argument(
        "--log-level",
        default="WARNING",
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
        help="Logging level (default: WARNING).",
    )
    subparsers = parser.add_subparsers(dest="command", help="Available commands")

    # Command: check
    check_parser = subparsers.add_parser(
        "check", help="Check invariants over every trace within the scope."
    )
    _add_scope_arguments(check_parser)
    check_parser.add_argument("--workers", type=int, help="Parallel worker threads.")
    check_parser.add_argument("--max-steps", type=int, help="Step budget.")
    check_parser.add_argument("--timeout", type=float, help="Wall-clock budget in seconds.")
    check_parser.add_argument(
        "--format",
        choices=["text", "json", "markdown"],
        default="text",
        help="Report format (default: text).",
    )

    # Command: traces
    traces_parser = subparsers.add_parser(
        "traces", help="Enumerate the completed traces of a model."
    )
    _add_scope_arguments(traces_parser)
    traces_parser.add_argument(
        "--limit", type=int, default=10, help="Print at most this many traces."
    )

    # Command: list
    subparsers.add_parser("list", help="List models, rules and invariants.")

    args = parser.parse_args(argv)
    logging.basicConfig(
        level=getattr(logging, args.log_level),
        format="%(levelname)s %(name)s: %(message)s",
    )

    try:
        match args.command:
            case "check":
                return handle_check(args)
            case "traces":
                return handle_traces(args)
            case "list":
                return handle_list()
            case None:
                parser.print_help()
                return EXIT_CONFIG_ERROR
            case _:
                print(f"Unknown command: {args.command}", file=sys.stderr)
                parser.print_help()
                return EXIT_CONFIG_ERROR
    except ConfigurationError as e:
        print(f"Configuration error: {e}", file=sys.stderr)
        return EXIT_CONFIG_ERROR
    except KeyboardInterrupt:
        print("\nOperation cancelled by user.", file=sys.stderr)
        return EXIT_INTERRUPTED


if __name__ == "__main__":
    sys.exit(main())
