"""Traces: append-only histories of snapshots.

A trace is a chain of nodes. Each node holds one snapshot, the step that
produced it and a reference to its parent, so extending a trace never copies
or mutates the prefix and sibling branches share it structurally:

    root ── bid(A0, 2) ──> s1 ── tick ──> s2
                            └── withdraw(A1) ──> s2'

Positions are 0-based step indices; ``len(trace)`` counts snapshots.
"""

from __future__ import annotations

from collections.abc import Iterator, Mapping
from dataclasses import dataclass, field
from typing import Any

type Binding = tuple[tuple[str, Any], ...]


def format_binding(binding: Binding) -> str:
    return ", ".join(f"{name}={value}" for name, value in binding)


@dataclass(frozen=True)
class Step[S]:
    """One recorded rule application and the snapshot it produced."""

    rule: str
    binding: Binding
    state: S

    @property
    def params(self) -> Mapping[str, Any]:
        return dict(self.binding)

    def describe(self) -> str:
        return f"{self.rule}({format_binding(self.binding)})"


@dataclass(frozen=True, eq=False)
class Trace[S]:
    """A node in the search tree, read as the history leading to it."""

    state: S
    parent: Trace[S] | None = None
    step: Step[S] | None = None
    length: int = 1
    first: S = field(default=None, repr=False)  # type: ignore[assignment]

    def __post_init__(self) -> None:
        if self.parent is None:
            object.__setattr__(self, "first", self.state)

    @classmethod
    def start(cls, state: S) -> Trace[S]:
        return cls(state=state)

    def extend(self, step: Step[S]) -> Trace[S]:
        return Trace(
            state=step.state,
            parent=self,
            step=step,
            length=self.length + 1,
            first=self.first,
        )

    def __len__(self) -> int:
        return self.length

    @property
    def index(self) -> int:
        """Step index of the last snapshot."""
        return self.length - 1

    def nodes(self) -> list[Trace[S]]:
        """Every prefix of this trace, oldest first."""
        out: list[Trace[S]] = []
        node: Trace[S] | None = self
        while node is not None:
            out.append(node)
            node = node.parent
        out.reverse()
        return out

    def states(self) -> list[S]:
        return [n.state for n in self.nodes()]

    def steps(self) -> list[Step[S]]:
        return [n.step for n in self.nodes() if n.step is not None]

    def rules(self) -> list[str]:
        return [s.rule for s in self.steps()]

    def __iter__(self) -> Iterator[S]:
        return iter(self.states())

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, Trace):
            return NotImplemented
        return self.first == other.first and self.steps() == other.steps()

    def __hash__(self) -> int:
        return hash((self.first, tuple(self.steps())))

    def as_rows(self) -> list[tuple[str, Binding, S]]:
        """``(rule, binding, resulting snapshot)`` rows; the first row is the initial state."""
        rows: list[tuple[str, Binding, S]] = [("init", (), self.first)]
        rows.extend((s.rule, s.binding, s.state) for s in self.steps())
        return rows


@dataclass(frozen=True)
class Counterexample[S]:
    """A violating trace, or pair of traces for cross-trace invariants."""

    invariant: str
    trace: Trace[S]
    other: Trace[S] | None = None
    message: str = ""

    @property
    def length(self) -> int:
        if self.other is None:
            return len(self.trace)
        return max(len(self.trace), len(self.other))
