"""Error taxonomy for the checker.

Only ``ConfigurationError`` is meant to reach a caller as a failure.
``GuardMismatch`` and ``ArithmeticOverflow`` are raised inside rule bodies
and turned into "inadmissible" by ``Rule.fire``. ``SearchBudgetExceeded``
is turned into an ``Inconclusive`` verdict by the checker. Invariant
violations are never exceptions: they are ordinary results.
"""

from __future__ import annotations


class SmallscopeError(Exception):
    """Base class for every error raised by this package."""


class ConfigurationError(SmallscopeError):
    """Invalid bounds, unknown model or unknown invariant name."""


class GuardMismatch(SmallscopeError):
    """A rule's precondition does not hold for the given binding."""

    def __init__(self, rule: str, reason: str) -> None:
        super().__init__(f"{rule}: {reason}")
        self.rule = rule
        self.reason = reason


class ArithmeticOverflow(SmallscopeError):
    """A bounded-integer update left the configured range."""

    def __init__(self, value: int, low: int, high: int) -> None:
        super().__init__(f"{value} outside [{low}, {high}]")
        self.value = value
        self.low = low
        self.high = high


class SearchBudgetExceeded(SmallscopeError):
    """The step budget, the wall-clock budget or a cancellation request stopped the search."""
