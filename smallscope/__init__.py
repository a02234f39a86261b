"""smallscope: bounded trace exploration and invariant checking for guarded state machines."""

from .domain import Address, Catalog, OverflowPolicy, Proposal, Scope
from .errors import (
    ArithmeticOverflow,
    ConfigurationError,
    GuardMismatch,
    SearchBudgetExceeded,
    SmallscopeError,
)
from .state import FrozenMap, Renaming, fingerprint
from .trace import Binding, Counterexample, Step, Trace
from .system import Param, ParamKind, Rule, TransitionSystem, require
from .invariants import (
    BaselineInvariant,
    CrossTraceInvariant,
    Invariant,
    StateInvariant,
    StepInvariant,
    evaluate_pair,
    evaluate_trace,
)
from .search import Budget, CompletedTrace, SearchStats, Termination, TraceGenerator
from .checker import (
    CheckReport,
    CounterexampleFound,
    Holds,
    Inconclusive,
    SearchOptions,
    Verdict,
    check,
)
from .models import MODELS, build_model
from .result import Ok, Err, Result

__all__ = [
    # Domain
    "Address", "Catalog", "OverflowPolicy", "Proposal", "Scope",
    # Errors
    "ArithmeticOverflow", "ConfigurationError", "GuardMismatch",
    "SearchBudgetExceeded", "SmallscopeError",
    # State and traces
    "FrozenMap", "Renaming", "fingerprint",
    "Binding", "Counterexample", "Step", "Trace",
    # Systems
    "Param", "ParamKind", "Rule", "TransitionSystem", "require",
    # Invariants
    "BaselineInvariant", "CrossTraceInvariant", "Invariant", "StateInvariant",
    "StepInvariant", "evaluate_pair", "evaluate_trace",
    # Search and checking
    "Budget", "CompletedTrace", "SearchStats", "Termination", "TraceGenerator",
    "CheckReport", "CounterexampleFound", "Holds", "Inconclusive",
    "SearchOptions", "Verdict", "check",
    # Models
    "MODELS", "build_model",
    # Result
    "Ok", "Err", "Result",
]
