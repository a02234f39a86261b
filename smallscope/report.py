"""Rendering check reports: terminal text, JSON-ready dicts, Markdown."""

from __future__ import annotations

import os
from typing import Any

import jinja2

from .checker import CheckReport, CounterexampleFound, Holds, Inconclusive, Verdict
from .state import fingerprint
from .trace import Counterexample, Trace, format_binding

_TEMPLATE_DIR = os.path.join(os.path.dirname(__file__), "templates")
_ENV = jinja2.Environment(
    loader=jinja2.FileSystemLoader(_TEMPLATE_DIR),
    autoescape=False,
    trim_blocks=True,
    lstrip_blocks=True,
)


def _status(verdict: Verdict) -> str:
    match verdict:
        case Holds():
            return "HOLDS"
        case CounterexampleFound():
            return "COUNTEREXAMPLE"
        case Inconclusive():
            return "INCONCLUSIVE"


def trace_rows(trace: Trace[Any]) -> list[dict[str, Any]]:
    """One row per snapshot: step index, rule, binding and the snapshot itself."""
    return [
        {
            "index": i,
            "rule": rule,
            "binding": dict(binding),
            "state": state,
        }
        for i, (rule, binding, state) in enumerate(trace.as_rows())
    ]


def format_trace(trace: Trace[Any], indent: str = "    ") -> list[str]:
    lines = []
    for i, (rule, binding, state) in enumerate(trace.as_rows()):
        call = f"{rule}({format_binding(binding)})" if binding else rule
        lines.append(f"{indent}{i:>2}. {call}")
        lines.append(f"{indent}      {state}")
    return lines


def format_counterexample(cex: Counterexample[Any], indent: str = "    ") -> str:
    lines = []
    if cex.other is None:
        lines.extend(format_trace(cex.trace, indent))
    else:
        lines.append(f"{indent}ordering A:")
        lines.extend(format_trace(cex.trace, indent + "  "))
        lines.append(f"{indent}ordering B:")
        lines.extend(format_trace(cex.other, indent + "  "))
    return "\n".join(lines)


def format_report(report: CheckReport) -> str:
    """Human-readable report for terminal output."""
    lines = [f"{report.scope}"]
    for v in report.verdicts:
        match v:
            case Holds(vacuous=True):
                lines.append(
                    f"  ✓ {v.invariant}: HOLDS (vacuously, no action pairs fit the bound)"
                )
            case Holds():
                lines.append(f"  ✓ {v.invariant}: HOLDS")
            case CounterexampleFound(counterexample=cex):
                lines.append(
                    f"  × {v.invariant}: COUNTEREXAMPLE ({cex.length} snapshots)"
                )
                if cex.message:
                    lines.append(f"    expected: {cex.message}")
                lines.append(format_counterexample(cex))
            case Inconclusive():
                lines.append(f"  ? {v.invariant}: INCONCLUSIVE ({v.reason})")
    s = report.stats
    lines.append(
        f"  Explored {s.transitions} transitions, {s.completed} completed traces "
        f"({s.stuck} stuck), {s.pruned} pruned, {s.pairs} pairs compared, "
        f"in {report.elapsed:.2f}s"
    )
    return "\n".join(lines)


def _trace_json(trace: Trace[Any]) -> list[dict[str, Any]]:
    return [
        {
            "index": row["index"],
            "rule": row["rule"],
            "binding": {k: v for k, v in row["binding"].items()},
            "state": fingerprint(row["state"]),
        }
        for row in trace_rows(trace)
    ]


def report_json(report: CheckReport) -> dict[str, Any]:
    """Machine-readable report for pipeline integration."""
    verdicts: list[dict[str, Any]] = []
    for v in report.verdicts:
        entry: dict[str, Any] = {"invariant": v.invariant, "status": _status(v)}
        match v:
            case Holds():
                entry["scope"] = v.scope
                if v.vacuous:
                    entry["vacuous"] = True
            case CounterexampleFound(counterexample=cex):
                entry["length"] = cex.length
                entry["trace"] = _trace_json(cex.trace)
                if cex.other is not None:
                    entry["other"] = _trace_json(cex.other)
            case Inconclusive():
                entry["reason"] = v.reason
        verdicts.append(entry)
    return {
        "model": report.model,
        "scope": report.scope,
        "all_hold": report.all_hold,
        "elapsed": round(report.elapsed, 3),
        "stats": {
            "transitions": report.stats.transitions,
            "completed": report.stats.completed,
            "stuck": report.stats.stuck,
            "pruned": report.stats.pruned,
            "pairs": report.stats.pairs,
        },
        "verdicts": verdicts,
    }


def render_markdown(report: CheckReport) -> str:
    """Markdown report rendered from ``templates/report.md.j2``."""
    template = _ENV.get_template("report.md.j2")
    return template.render(
        report=report,
        verdicts=[(v, _status(v)) for v in report.verdicts],
        trace_rows=trace_rows,
        format_binding=lambda b: ", ".join(f"{k}={v}" for k, v in b.items()),
    )
