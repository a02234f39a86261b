"""Invariant shapes and their evaluation over traces.

Four shapes occur in the contract models:

- ``StateInvariant``      φ(s)            every snapshot
- ``BaselineInvariant``   φ(s₀, s)        every snapshot against the first one
- ``StepInvariant``       φ(s, s')        every consecutive pair
- ``CrossTraceInvariant`` φ(s·x·y, s·y·x) two orderings of a pair of actions
                                          taken from the same snapshot

The first three are checked incrementally: ``violation_at`` inspects only
the newest snapshot of a trace, since its prefixes were checked when they
were produced. ``evaluate_trace`` walks a whole trace for callers holding
traces produced elsewhere.
"""

from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass
from typing import Any

from .domain import Catalog
from .trace import Counterexample, Step, Trace


@dataclass(frozen=True)
class StateInvariant:
    name: str
    holds: Callable[[Any, Catalog], bool]
    description: str = ""


@dataclass(frozen=True)
class BaselineInvariant:
    name: str
    holds: Callable[[Any, Any, Catalog], bool]
    description: str = ""


@dataclass(frozen=True)
class StepInvariant:
    name: str
    holds: Callable[[Any, Any, Catalog], bool]
    description: str = ""


@dataclass(frozen=True)
class CrossTraceInvariant:
    """Compares the two snapshots reached by swapping a pair of actions.

    ``selects(state, first, second)`` picks which ordered pairs of admissible
    steps from ``state`` are compared; ``holds(a, b, catalog)`` relates the
    snapshot after ``first; second`` to the snapshot after ``second; first``.
    Pairs where either ordering is inadmissible are skipped.
    """

    name: str
    selects: Callable[[Any, Step[Any], Step[Any]], bool]
    holds: Callable[[Any, Any, Catalog], bool]
    description: str = ""


type Invariant = StateInvariant | BaselineInvariant | StepInvariant | CrossTraceInvariant

SINGLE_TRACE = (StateInvariant, BaselineInvariant, StepInvariant)


def violation_at(inv: Invariant, trace: Trace[Any], catalog: Catalog) -> bool:
    """True when the newest snapshot of ``trace`` violates a single-trace invariant."""
    match inv:
        case StateInvariant():
            return not inv.holds(trace.state, catalog)
        case BaselineInvariant():
            return not inv.holds(trace.first, trace.state, catalog)
        case StepInvariant():
            if trace.parent is None:
                return False
            return not inv.holds(trace.parent.state, trace.state, catalog)
        case CrossTraceInvariant():
            return False


def evaluate_trace(
    inv: Invariant, trace: Trace[Any], catalog: Catalog
) -> Counterexample[Any] | None:
    """Check every prefix of ``trace``; return the shortest violating prefix."""
    for node in trace.nodes():
        if violation_at(inv, node, catalog):
            return Counterexample(inv.name, node, message=inv.description)
    return None


def evaluate_pair(
    inv: CrossTraceInvariant, a: Trace[Any], b: Trace[Any], catalog: Catalog
) -> Counterexample[Any] | None:
    """Relate the final snapshots of two traces."""
    if inv.holds(a.state, b.state, catalog):
        return None
    return Counterexample(inv.name, a, other=b, message=inv.description)


def swapped_pairs(
    inv: CrossTraceInvariant,
    trace: Trace[Any],
    children: list[Trace[Any]],
    apply: Callable[[Any, str, Any], Any | None],
) -> list[tuple[Trace[Any], Trace[Any]]]:
    """Build ``(s·x·y, s·y·x)`` trace pairs for every selected step pair."""
    pairs: list[tuple[Trace[Any], Trace[Any]]] = []
    for x in children:
        for y in children:
            if x is y:
                continue
            assert x.step is not None and y.step is not None
            if not inv.selects(trace.state, x.step, y.step):
                continue
            xy = apply(x.state, y.step.rule, y.step.binding)
            yx = apply(y.state, x.step.rule, x.step.binding)
            if xy is None or yx is None:
                continue
            pairs.append(
                (
                    x.extend(Step(y.step.rule, y.step.binding, xy)),
                    y.extend(Step(x.step.rule, x.step.binding, yx)),
                )
            )
    return pairs
