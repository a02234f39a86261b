"""Guarded, nondeterministic transition systems over a finite catalog.

A system is a set of initial snapshots plus a fixed list of named rules.
Each rule declares typed parameters; a binding assigns one catalog value to
each parameter. Firing a rule on a snapshot with a binding either yields
the successor snapshot or ``None`` when the guard fails:

    fire : Rule × State × Binding →? State

Existential choice of actors ("some sender, some value") is made explicit:
``successors`` enumerates every binding of every rule and keeps the ones
whose guard holds.
"""

from __future__ import annotations

import itertools
import logging
from collections.abc import Callable, Iterable, Iterator, Mapping, Sequence
from dataclasses import dataclass, field
from enum import Enum
from typing import TYPE_CHECKING, Any

from .domain import Catalog
from .errors import ArithmeticOverflow, ConfigurationError, GuardMismatch
from .state import Renaming
from .trace import Binding, Step, Trace, format_binding

if TYPE_CHECKING:
    from .invariants import Invariant

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Parameters
# ---------------------------------------------------------------------------


class ParamKind(Enum):
    ADDRESS = "address"
    PROPOSAL = "proposal"
    AMOUNT = "amount"


@dataclass(frozen=True)
class Param:
    """A named rule parameter drawn from one catalog set."""

    name: str
    kind: ParamKind

    def values(self, catalog: Catalog) -> tuple[Any, ...]:
        match self.kind:
            case ParamKind.ADDRESS:
                return catalog.addresses
            case ParamKind.PROPOSAL:
                return catalog.proposals
            case ParamKind.AMOUNT:
                return catalog.amounts


def require(condition: bool, rule: str, reason: str) -> None:
    """Raise ``GuardMismatch`` unless ``condition`` holds."""
    if not condition:
        raise GuardMismatch(rule, reason)


# ---------------------------------------------------------------------------
# Rules
# ---------------------------------------------------------------------------

type RuleBody[S] = Callable[[S, Catalog, Mapping[str, Any]], S]


@dataclass(frozen=True)
class Rule[S]:
    """A named guarded action.

    ``body`` returns the successor snapshot or raises ``GuardMismatch`` /
    ``ArithmeticOverflow``; ``fire`` turns both into ``None``.
    """

    name: str
    params: tuple[Param, ...]
    body: RuleBody[S]

    def bindings(self, catalog: Catalog) -> Iterator[Binding]:
        names = [p.name for p in self.params]
        for values in itertools.product(*(p.values(catalog) for p in self.params)):
            yield tuple(zip(names, values, strict=True))

    def fire(self, state: S, catalog: Catalog, binding: Binding) -> S | None:
        try:
            return self.body(state, catalog, dict(binding))
        except GuardMismatch as e:
            logger.debug("guard failed: %s", e)
            return None
        except ArithmeticOverflow as e:
            logger.debug("%s(%s) rejected: %s", self.name, format_binding(binding), e)
            return None


# ---------------------------------------------------------------------------
# Systems
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class TransitionSystem[S]:
    """A contract model instantiated over one catalog."""

    name: str
    catalog: Catalog
    initial: Callable[[Catalog], Iterable[S]]
    rules: tuple[Rule[S], ...]
    invariants: tuple[Invariant, ...] = ()
    rename: Callable[[S, Renaming], S] | None = None
    options: Mapping[str, Any] = field(default_factory=dict)

    def initial_states(self) -> Iterator[S]:
        return iter(self.initial(self.catalog))

    def get_rule(self, name: str) -> Rule[S]:
        for rule in self.rules:
            if rule.name == name:
                return rule
        raise ConfigurationError(f"Unknown rule '{name}' for model '{self.name}'")

    def successors(self, state: S) -> Iterator[Step[S]]:
        """Every admissible ``(rule, binding)`` pair and its resulting snapshot."""
        for rule in self.rules:
            for binding in rule.bindings(self.catalog):
                nxt = rule.fire(state, self.catalog, binding)
                if nxt is not None:
                    yield Step(rule.name, binding, nxt)

    def apply(self, state: S, rule: str, binding: Binding) -> S | None:
        return self.get_rule(rule).fire(state, self.catalog, binding)

    def replay(
        self,
        initial: S,
        steps: Sequence[tuple[str, Mapping[str, Any]]],
    ) -> Trace[S]:
        """Rebuild a trace from rule names and parameter values.

        Raises ``GuardMismatch`` naming the first step that is not admissible.
        """
        trace = Trace.start(initial)
        for i, (name, params) in enumerate(steps):
            rule = self.get_rule(name)
            binding: Binding = tuple((p.name, params[p.name]) for p in rule.params)
            nxt = rule.fire(trace.state, self.catalog, binding)
            if nxt is None:
                raise GuardMismatch(
                    name, f"step {i + 1} ({format_binding(binding)}) is not admissible"
                )
            trace = trace.extend(Step(name, binding, nxt))
        return trace

    def select_invariants(self, names: Sequence[str] | None = None) -> tuple[Invariant, ...]:
        """Look invariants up by name; ``None`` selects all of them."""
        if names is None:
            return self.invariants
        by_name = {inv.name: inv for inv in self.invariants}
        unknown = [n for n in names if n not in by_name]
        if unknown:
            raise ConfigurationError(
                f"Unknown invariant(s) for model '{self.name}': {', '.join(unknown)}. "
                f"Known: {', '.join(by_name)}"
            )
        return tuple(by_name[n] for n in names)
