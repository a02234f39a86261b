"""Domain catalog: the finite sets every model draws its values from.

A scope fixes the size of each carrier:

  Address   A0 … A(n-1)          opaque participant atoms
  Proposal  P0 … P(m-1)          opaque ballot options
  Int       [int_min, int_max]   bounded integers
  Step      0 … L-1              positions in a trace of at most L snapshots

Bounded-integer arithmetic goes through ``Catalog.bound`` so the overflow
policy is applied in exactly one place.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from enum import Enum
from typing import NewType

from .errors import ArithmeticOverflow, ConfigurationError

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Atoms
# ---------------------------------------------------------------------------

Address = NewType("Address", str)
Proposal = NewType("Proposal", str)


class OverflowPolicy(Enum):
    """What happens when an update leaves ``[int_min, int_max]``."""

    REJECT = "reject"
    SATURATE = "saturate"
    WRAP = "wrap"


# ---------------------------------------------------------------------------
# Scope
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class Scope:
    """Configured bounds for one verification run.

    The auction and ballot models also need 0 inside ``[int_min, int_max]``;
    they check it with ``Catalog.require_zero`` when built.
    """

    address_count: int = 2
    proposal_count: int = 2
    int_min: int = 0
    int_max: int = 3
    max_trace_length: int = 4
    overflow: OverflowPolicy = OverflowPolicy.REJECT

    def validate(self) -> None:
        """Raise ``ConfigurationError`` when the bounds are unusable."""
        if self.address_count < 0:
            raise ConfigurationError(
                f"address_count must be non-negative, got {self.address_count}"
            )
        if self.proposal_count < 0:
            raise ConfigurationError(
                f"proposal_count must be non-negative, got {self.proposal_count}"
            )
        if self.int_min > self.int_max:
            raise ConfigurationError(
                f"int_min ({self.int_min}) is greater than int_max ({self.int_max})"
            )
        if self.max_trace_length < 1:
            raise ConfigurationError(
                f"max_trace_length must be at least 1, got {self.max_trace_length}"
            )

    def describe(self) -> str:
        return (
            f"{self.address_count} addresses, {self.proposal_count} proposals, "
            f"ints [{self.int_min}, {self.int_max}], "
            f"traces up to {self.max_trace_length} snapshots, "
            f"overflow={self.overflow.value}"
        )


# ---------------------------------------------------------------------------
# Catalog
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class Catalog:
    """The enumerable sets produced from a validated ``Scope``."""

    scope: Scope
    addresses: tuple[Address, ...]
    proposals: tuple[Proposal, ...]
    ints: tuple[int, ...]
    steps: tuple[int, ...]

    @classmethod
    def from_scope(cls, scope: Scope) -> Catalog:
        scope.validate()
        return cls(
            scope=scope,
            addresses=tuple(Address(f"A{i}") for i in range(scope.address_count)),
            proposals=tuple(Proposal(f"P{i}") for i in range(scope.proposal_count)),
            ints=tuple(range(scope.int_min, scope.int_max + 1)),
            steps=tuple(range(scope.max_trace_length)),
        )

    @property
    def int_min(self) -> int:
        return self.scope.int_min

    @property
    def int_max(self) -> int:
        return self.scope.int_max

    def require_zero(self, model: str) -> None:
        """Both models start every balance, weight and tally at 0, so 0 must be in range."""
        if not self.int_min <= 0 <= self.int_max:
            raise ConfigurationError(
                f"{model} needs 0 within the integer range, got "
                f"[{self.int_min}, {self.int_max}]"
            )

    @property
    def amounts(self) -> tuple[int, ...]:
        """Strictly positive bounded integers (bid values, transfers)."""
        return tuple(v for v in self.ints if v > 0)

    @property
    def balances(self) -> tuple[int, ...]:
        """Non-negative bounded integers (free initial balances)."""
        return tuple(v for v in self.ints if v >= 0)

    @property
    def floor(self) -> int:
        """Smallest non-negative value of the integer domain."""
        return max(self.int_min, 0)

    @property
    def last_step(self) -> int:
        return self.steps[-1]

    def bound(self, value: int) -> int:
        """Bring ``value`` back into range according to the overflow policy.

        Raises ``ArithmeticOverflow`` under ``OverflowPolicy.REJECT``.
        """
        low, high = self.scope.int_min, self.scope.int_max
        if low <= value <= high:
            return value
        match self.scope.overflow:
            case OverflowPolicy.REJECT:
                raise ArithmeticOverflow(value, low, high)
            case OverflowPolicy.SATURATE:
                clamped = min(max(value, low), high)
                logger.debug("saturated %d to %d", value, clamped)
                return clamped
            case OverflowPolicy.WRAP:
                wrapped = low + (value - low) % (high - low + 1)
                logger.debug("wrapped %d to %d", value, wrapped)
                return wrapped

    def add(self, a: int, b: int) -> int:
        return self.bound(a + b)

    def sub(self, a: int, b: int) -> int:
        return self.bound(a - b)
