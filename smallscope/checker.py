"""Invariant checking over every bounded trace of a model.

``check`` drives the trace generator in rounds of iterative deepening.
With ``workers > 1`` each initial snapshot is first expanded breadth-first
(``TraceGenerator.split``) until there are at least as many pending
branches as workers; every frontier branch then becomes one task on a
thread pool. Workers share exactly two things:

- ``_Findings``: the best counterexample per invariant, updated under a
  lock (replace-if-shorter, first writer wins on ties), plus the number
  of action pairs each cross-trace invariant compared;
- a stop event, set once every invariant of the round is decided or the
  budget runs out, and polled by each worker before every step.

Each invariant ends with one verdict:

  Holds(scope)                 no violation in the whole bounded space
  CounterexampleFound(cex)     shortest violating trace (or trace pair)
  Inconclusive(reason)         the budget ran out first

A cross-trace invariant whose bound never leaves room for a swapped pair
holds vacuously, and its ``Holds`` verdict says so.
"""

from __future__ import annotations

import concurrent.futures
import logging
import math
import threading
import time
from collections.abc import Sequence
from dataclasses import dataclass, field
from typing import Any

from .errors import SearchBudgetExceeded
from .invariants import (
    SINGLE_TRACE,
    CrossTraceInvariant,
    Invariant,
    evaluate_pair,
    swapped_pairs,
    violation_at,
)
from .search import Budget, Expand, SearchStats, TraceGenerator, Visit
from .system import TransitionSystem
from .trace import Counterexample, Trace

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Options and verdicts
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class SearchOptions:
    workers: int = 1
    max_steps: int | None = None
    timeout: float | None = None
    symmetry: bool = False
    dedupe: bool = True
    iterative_deepening: bool = True
    cancel: threading.Event | None = None


@dataclass(frozen=True)
class Holds:
    invariant: str
    scope: str
    vacuous: bool = False


@dataclass(frozen=True)
class CounterexampleFound:
    invariant: str
    counterexample: Counterexample[Any]


@dataclass(frozen=True)
class Inconclusive:
    invariant: str
    reason: str


type Verdict = Holds | CounterexampleFound | Inconclusive


@dataclass(frozen=True)
class CheckReport:
    model: str
    scope: str
    verdicts: tuple[Verdict, ...]
    stats: SearchStats
    elapsed: float

    def verdict(self, name: str) -> Verdict:
        for v in self.verdicts:
            if v.invariant == name:
                return v
        raise KeyError(name)

    @property
    def all_hold(self) -> bool:
        return all(isinstance(v, Holds) for v in self.verdicts)

    @property
    def counterexamples(self) -> tuple[CounterexampleFound, ...]:
        return tuple(v for v in self.verdicts if isinstance(v, CounterexampleFound))

    @property
    def inconclusive(self) -> tuple[Inconclusive, ...]:
        return tuple(v for v in self.verdicts if isinstance(v, Inconclusive))


# ---------------------------------------------------------------------------
# Shared findings
# ---------------------------------------------------------------------------


@dataclass
class _Findings:
    """Best counterexample per invariant; the only state shared by workers."""

    best: dict[str, Counterexample[Any]] = field(default_factory=dict)
    compared: dict[str, int] = field(default_factory=dict)
    active: frozenset[str] = frozenset()
    stop_when_decided: bool = True
    stop: threading.Event = field(default_factory=threading.Event)
    _lock: threading.Lock = field(default_factory=threading.Lock)

    def decided(self, name: str) -> bool:
        return name in self.best

    def wanted(self, name: str, length: int) -> bool:
        current = self.best.get(name)
        return current is None or length < current.length

    def count_pairs(self, name: str, n: int) -> None:
        with self._lock:
            self.compared[name] = self.compared.get(name, 0) + n

    def publish(self, cex: Counterexample[Any]) -> None:
        with self._lock:
            current = self.best.get(cex.invariant)
            if current is not None and current.length <= cex.length:
                return
            self.best[cex.invariant] = cex
            logger.info(
                "invariant '%s' violated by a trace of length %d", cex.invariant, cex.length
            )
            if self.stop_when_decided and self.active <= self.best.keys():
                self.stop.set()


# ---------------------------------------------------------------------------
# Units of work
# ---------------------------------------------------------------------------


def _callbacks(
    generator: TraceGenerator[Any],
    cap: int,
    invariants: Sequence[Invariant],
    findings: _Findings,
    stats: SearchStats,
) -> tuple[Visit | None, Expand | None]:
    """Build the ``visit`` / ``expand`` hooks that check ``invariants`` during a walk."""
    catalog = generator.system.catalog
    single = [inv for inv in invariants if isinstance(inv, SINGLE_TRACE)]
    cross = [inv for inv in invariants if isinstance(inv, CrossTraceInvariant)]

    def visit(trace: Trace[Any]) -> None:
        for inv in single:
            if not findings.wanted(inv.name, len(trace)):
                continue
            if violation_at(inv, trace, catalog):
                findings.publish(Counterexample(inv.name, trace, message=inv.description))

    def expand(trace: Trace[Any], children: list[Trace[Any]]) -> None:
        if len(trace) + 2 > cap:
            return
        for inv in cross:
            if not findings.wanted(inv.name, len(trace) + 2):
                continue
            pairs = swapped_pairs(inv, trace, children, generator.system.apply)
            if not pairs:
                continue
            compared = 0
            for a, b in pairs:
                compared += 1
                cex = evaluate_pair(inv, a, b, catalog)
                if cex is not None:
                    findings.publish(cex)
                    break
            stats.pairs += compared
            findings.count_pairs(inv.name, compared)

    return (visit if single else None), (expand if cross else None)


def _explore(
    generator: TraceGenerator[Any],
    trace: Trace[Any],
    cap: int,
    invariants: Sequence[Invariant],
    findings: _Findings,
    *,
    visit_root: bool = True,
) -> SearchStats:
    """Walk the subtree below ``trace``, checking ``invariants`` along the way."""
    stats = SearchStats()
    visit, expand = _callbacks(generator, cap, invariants, findings, stats)
    for _ in generator.walk(
        trace,
        cap,
        visit=visit,
        expand=expand,
        stop=findings.stop,
        stats=stats,
        visit_root=visit_root,
    ):
        pass
    return stats


def _split_roots(
    generator: TraceGenerator[Any],
    roots: list[Trace[Any]],
    cap: int,
    invariants: Sequence[Invariant],
    findings: _Findings,
    workers: int,
    stats: SearchStats,
) -> list[Trace[Any]]:
    """Frontier branches of every root, at least ``workers`` of them where the tree allows."""
    target = math.ceil(workers / len(roots)) if roots else 1
    visit, expand = _callbacks(generator, cap, invariants, findings, stats)
    units: list[Trace[Any]] = []
    for root in roots:
        units.extend(
            generator.split(
                root, cap, target, visit=visit, expand=expand, stop=findings.stop, stats=stats
            )
        )
    return units


def _run_round(
    generator: TraceGenerator[Any],
    roots: list[Trace[Any]],
    cap: int,
    invariants: Sequence[Invariant],
    findings: _Findings,
    workers: int,
) -> SearchStats:
    stats = SearchStats()
    if workers <= 1:
        for root in roots:
            if findings.stop.is_set():
                break
            stats.merge(_explore(generator, root, cap, invariants, findings))
        return stats

    units = _split_roots(generator, roots, cap, invariants, findings, workers, stats)
    logger.debug("round cap=%d split into %d task(s)", cap, len(units))
    with concurrent.futures.ThreadPoolExecutor(max_workers=workers) as pool:
        futures = [
            pool.submit(
                _explore, generator, unit, cap, invariants, findings, visit_root=False
            )
            for unit in units
        ]
        try:
            for fut in concurrent.futures.as_completed(futures):
                stats.merge(fut.result())
        except BaseException:
            # Budget exhaustion, a worker error or Ctrl-C: stop the other workers.
            findings.stop.set()
            for fut in futures:
                fut.cancel()
            raise
    return stats


# ---------------------------------------------------------------------------
# Entry point
# ---------------------------------------------------------------------------


def check(
    system: TransitionSystem[Any],
    invariants: Sequence[str] | None = None,
    options: SearchOptions | None = None,
) -> CheckReport:
    """Check the named invariants (all of them by default) within the system's scope."""
    options = options or SearchOptions()
    selected = system.select_invariants(invariants)
    scope = system.catalog.scope
    budget = Budget(options.max_steps, options.timeout, options.cancel)
    generator = TraceGenerator(
        system, dedupe=options.dedupe, symmetry=options.symmetry, budget=budget
    )
    findings = _Findings(stop_when_decided=options.iterative_deepening)
    stats = SearchStats()
    started = time.monotonic()
    inconclusive_reason: str | None = None

    roots = generator.roots()
    logger.info(
        "checking %s: %d invariant(s), %d initial snapshot(s), %s",
        system.name,
        len(selected),
        len(roots),
        scope.describe(),
    )
    try:
        for cap in generator.caps(options.iterative_deepening):
            pending = [inv for inv in selected if not findings.decided(inv.name)]
            if not pending:
                break
            findings.active = frozenset(inv.name for inv in pending)
            logger.info("round cap=%d, %d invariant(s) pending", cap, len(pending))
            stats.merge(
                _run_round(generator, roots, cap, pending, findings, options.workers)
            )
    except SearchBudgetExceeded as e:
        logger.warning("search stopped early: %s", e)
        inconclusive_reason = str(e)

    described = f"{system.name}: {scope.describe()}"
    if options.symmetry:
        described += ", symmetry reduced"
    verdicts: list[Verdict] = []
    for inv in selected:
        cex = findings.best.get(inv.name)
        if cex is not None:
            verdicts.append(CounterexampleFound(inv.name, cex))
        elif inconclusive_reason is not None:
            verdicts.append(Inconclusive(inv.name, inconclusive_reason))
        elif isinstance(inv, CrossTraceInvariant) and not findings.compared.get(inv.name):
            logger.warning(
                "invariant '%s' compared no action pairs within %d snapshots",
                inv.name,
                scope.max_trace_length,
            )
            verdicts.append(Holds(inv.name, described, vacuous=True))
        else:
            verdicts.append(Holds(inv.name, described))

    return CheckReport(
        model=system.name,
        scope=described,
        verdicts=tuple(verdicts),
        stats=stats,
        elapsed=time.monotonic() - started,
    )
