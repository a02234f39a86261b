"""Bounded trace generation.

Exploration is depth-first with an explicit stack of partial traces. A
branch stops growing when it holds ``cap`` snapshots (``Termination.BOUND``)
or when no (rule, binding) pair is admissible (``Termination.STUCK``, a
legitimate end state, not an error).

Iterative deepening re-runs the walk with caps 1, 2, …, L. Only the stack
of the current branch and its pending siblings is kept in memory, and a
property first violated under cap k is known to need exactly k snapshots.

``split`` expands the top of one subtree breadth-first so its frontier can
be handed to several workers as independent walks.

Two reductions are available, both off by default for ``traces()``:

- deduplication: a snapshot already expanded at the same or a shallower
  depth under the same initial snapshot is not expanded again;
- symmetry: snapshots are compared up to a permutation of address and
  proposal atoms, using the model's renaming function.

Both keep every reachable snapshot visited, so single-trace invariants are
checked just as often; they only skip re-expanding equivalent subtrees.
"""

from __future__ import annotations

import logging
import threading
import time
from collections.abc import Callable, Iterator, Sequence
from dataclasses import dataclass
from enum import Enum
from typing import Any

from .errors import SearchBudgetExceeded
from .state import fingerprint, renamings
from .system import TransitionSystem
from .trace import Trace

logger = logging.getLogger(__name__)


class Termination(Enum):
    BOUND = "bound"
    STUCK = "stuck"


@dataclass(frozen=True)
class CompletedTrace[S]:
    trace: Trace[S]
    termination: Termination


@dataclass
class SearchStats:
    """Counters for one walk; merged across workers and rounds."""

    transitions: int = 0
    completed: int = 0
    stuck: int = 0
    pruned: int = 0
    pairs: int = 0
    max_length: int = 0

    def merge(self, other: SearchStats) -> None:
        self.transitions += other.transitions
        self.completed += other.completed
        self.stuck += other.stuck
        self.pruned += other.pruned
        self.pairs += other.pairs
        self.max_length = max(self.max_length, other.max_length)


# ---------------------------------------------------------------------------
# Budget and cancellation
# ---------------------------------------------------------------------------


class Budget:
    """Step and wall-clock allowance shared by every worker of one run.

    ``charge`` is called once per trace extension, so an exhausted budget or
    a cancellation request stops the search within one step.
    """

    def __init__(
        self,
        max_steps: int | None = None,
        timeout: float | None = None,
        cancel: threading.Event | None = None,
    ) -> None:
        self.max_steps = max_steps
        self.timeout = timeout
        self.cancel = cancel if cancel is not None else threading.Event()
        self._deadline = None if timeout is None else time.monotonic() + timeout
        self._steps = 0
        self._lock = threading.Lock()

    @property
    def steps(self) -> int:
        return self._steps

    def charge(self) -> None:
        if self.cancel.is_set():
            raise SearchBudgetExceeded("search cancelled")
        with self._lock:
            self._steps += 1
            steps = self._steps
        if self.max_steps is not None and steps > self.max_steps:
            raise SearchBudgetExceeded(f"step budget of {self.max_steps} exhausted")
        if self._deadline is not None and time.monotonic() > self._deadline:
            raise SearchBudgetExceeded(f"time budget of {self.timeout:g}s exhausted")


# ---------------------------------------------------------------------------
# Generator
# ---------------------------------------------------------------------------

type Visit = Callable[[Trace[Any]], None]
type Expand = Callable[[Trace[Any], list[Trace[Any]]], None]


class TraceGenerator[S]:
    """Enumerates the traces of a transition system up to a length bound."""

    def __init__(
        self,
        system: TransitionSystem[S],
        *,
        dedupe: bool = False,
        symmetry: bool = False,
        budget: Budget | None = None,
    ) -> None:
        if symmetry and system.rename is None:
            logger.warning("model '%s' has no renaming; symmetry reduction disabled", system.name)
            symmetry = False
        self.system = system
        self.dedupe = dedupe or symmetry
        self.symmetry = symmetry
        self.budget = budget
        self._renamings = list(renamings(system.catalog)) if symmetry else []

    @property
    def max_length(self) -> int:
        return self.system.catalog.scope.max_trace_length

    def canonical(self, root: S, state: S) -> object:
        """Dedup key of ``state`` within the subtree rooted at ``root``."""
        if not self.symmetry:
            return state
        rename = self.system.rename
        assert rename is not None
        return min(
            (fingerprint(rename(root, r)), fingerprint(rename(state, r)))
            for r in self._renamings
        )

    def roots(self) -> list[Trace[S]]:
        """One trace per initial snapshot, up to symmetry when enabled."""
        out: list[Trace[S]] = []
        seen: set[object] = set()
        for state in self.system.initial_states():
            key = self.canonical(state, state)
            if key in seen:
                continue
            seen.add(key)
            out.append(Trace.start(state))
        return out

    def caps(self, deepening: bool = True) -> Sequence[int]:
        """Length caps of successive rounds: 1 … max_length, or just max_length."""
        if deepening:
            return range(1, self.max_length + 1)
        return (self.max_length,)

    def traces(self, max_length: int | None = None) -> Iterator[CompletedTrace[S]]:
        """Lazily yield every completed trace of at most ``max_length`` snapshots."""
        cap = self.max_length if max_length is None else max_length
        for root in self.roots():
            yield from self.walk(root, cap)

    def _children(
        self, trace: Trace[S], visit: Visit | None, stats: SearchStats
    ) -> list[Trace[S]]:
        children: list[Trace[S]] = []
        for step in self.system.successors(trace.state):
            if self.budget is not None:
                self.budget.charge()
            stats.transitions += 1
            child = trace.extend(step)
            if visit is not None:
                visit(child)
            children.append(child)
        return children

    def split(
        self,
        root: Trace[S],
        cap: int,
        target: int,
        *,
        visit: Visit | None = None,
        expand: Expand | None = None,
        stop: threading.Event | None = None,
        stats: SearchStats | None = None,
    ) -> list[Trace[S]]:
        """Expand ``root`` breadth-first until at least ``target`` branches are pending.

        Returns the frontier. Each frontier trace can be handed to ``walk``
        with ``visit_root=False`` as an independent unit of work: every
        snapshot above and on the frontier has already been visited here.
        Prefixes that get stuck before the frontier are counted in ``stats``.
        """
        stats = stats if stats is not None else SearchStats()
        if visit is not None:
            visit(root)
        frontier = [root]
        while frontier and len(frontier) < target and len(frontier[0]) < cap:
            if stop is not None and stop.is_set():
                return []
            deeper: list[Trace[S]] = []
            for trace in frontier:
                stats.max_length = max(stats.max_length, len(trace))
                children = self._children(trace, visit, stats)
                if not children:
                    stats.completed += 1
                    stats.stuck += 1
                    continue
                if expand is not None:
                    expand(trace, children)
                deeper.extend(children)
            frontier = deeper
        return frontier

    def walk(
        self,
        root: Trace[S],
        cap: int,
        *,
        visit: Visit | None = None,
        expand: Expand | None = None,
        stop: threading.Event | None = None,
        stats: SearchStats | None = None,
        visit_root: bool = True,
    ) -> Iterator[CompletedTrace[S]]:
        """Depth-first walk of the subtree below ``root``.

        ``visit`` sees every snapshot as it is produced (the root included
        unless ``visit_root`` is false), ``expand`` sees each expanded trace
        with its children. The walk returns early once ``stop`` is set.
        ``root`` may be a proper prefix produced by ``split``; deduplication
        keys stay anchored on the initial snapshot of the trace.
        """
        stats = stats if stats is not None else SearchStats()
        seen: dict[object, int] = {}
        if visit is not None and visit_root:
            visit(root)
        stack: list[Trace[S]] = [root]
        while stack:
            if stop is not None and stop.is_set():
                return
            trace = stack.pop()
            stats.max_length = max(stats.max_length, len(trace))
            if self.dedupe:
                key = self.canonical(trace.first, trace.state)
                best = seen.get(key)
                if best is not None and best <= len(trace):
                    stats.pruned += 1
                    continue
                seen[key] = len(trace)
            if len(trace) >= cap:
                stats.completed += 1
                yield CompletedTrace(trace, Termination.BOUND)
                continue
            children = self._children(trace, visit, stats)
            if not children:
                stats.completed += 1
                stats.stuck += 1
                yield CompletedTrace(trace, Termination.STUCK)
                continue
            if expand is not None:
                expand(trace, children)
            stack.extend(reversed(children))
