"""Open auction with deferred withdrawals.

State (one snapshot per step):

  beneficiary     Address              receives the winning bid
  auction_end     Step                 last step at which bids are refused
  highest_bidder  Address | None
  highest_bid     Int | None           set iff highest_bidder is set
  pending_returns Address → Int        outbid amounts awaiting withdrawal
  now             Step
  ended           Bool
  account         Address → Int        total: one balance per address

Rules:

  tick                 now' = now + 1
  bid(sender, value)   now < auction_end, value > highest_bid,
                       account[sender] ≥ value
  withdraw(sender)     pending_returns[sender] > 0
  auctionEnd           now ≥ auction_end, ¬ended, highest_bid set

An auction that never receives a bid can never end: ``auctionEnd`` stays
inadmissible and the trace simply runs to its bound.
"""

from __future__ import annotations

import itertools
from collections.abc import Iterator, Mapping
from dataclasses import dataclass, replace
from typing import Any

from ..domain import Address, Catalog
from ..invariants import BaselineInvariant, StateInvariant, StepInvariant
from ..state import FrozenMap, Renaming
from ..system import Param, ParamKind, Rule, TransitionSystem, require


@dataclass(frozen=True)
class AuctionState:
    beneficiary: Address
    auction_end: int
    highest_bidder: Address | None
    highest_bid: int | None
    pending_returns: FrozenMap[Address, int]
    now: int
    ended: bool
    account: FrozenMap[Address, int]

    def pending(self, a: Address) -> int:
        return self.pending_returns.get(a, 0)


def new_auction(
    catalog: Catalog,
    beneficiary: Address,
    auction_end: int,
    account: Mapping[Address, int],
) -> AuctionState:
    """The ``newAuction`` initial rule for one choice of balances."""
    return AuctionState(
        beneficiary=beneficiary,
        auction_end=auction_end,
        highest_bidder=None,
        highest_bid=None,
        pending_returns=FrozenMap(),
        now=catalog.steps[0],
        ended=False,
        account=FrozenMap({a: account.get(a, 0) for a in catalog.addresses}),
    )


def initial_states(catalog: Catalog) -> Iterator[AuctionState]:
    """Every beneficiary, deadline and assignment of non-negative balances."""
    for beneficiary in catalog.addresses:
        for auction_end in catalog.steps:
            for balances in itertools.product(catalog.balances, repeat=len(catalog.addresses)):
                yield new_auction(
                    catalog, beneficiary, auction_end, dict(zip(catalog.addresses, balances))
                )


# ---------------------------------------------------------------------------
# Rules
# ---------------------------------------------------------------------------


def _tick(a: AuctionState, catalog: Catalog, params: Mapping[str, Any]) -> AuctionState:
    require(a.now < catalog.last_step, "tick", "no next step")
    return replace(a, now=a.now + 1)


def _bid(a: AuctionState, catalog: Catalog, params: Mapping[str, Any]) -> AuctionState:
    sender: Address = params["sender"]
    value: int = params["value"]
    require(a.account[sender] >= value, "bid", "insufficient funds")
    require(a.now < a.auction_end, "bid", "bidding closed")
    current = a.highest_bid if a.highest_bid is not None else catalog.floor
    require(value > current, "bid", "bid not above highest bid")

    pending = a.pending_returns
    if a.highest_bidder is not None and a.highest_bid is not None:
        prev = a.highest_bidder
        pending = pending.set(prev, catalog.add(a.pending(prev), a.highest_bid))
    return replace(
        a,
        highest_bidder=sender,
        highest_bid=value,
        pending_returns=pending,
        account=a.account.set(sender, catalog.sub(a.account[sender], value)),
    )


def _withdraw(a: AuctionState, catalog: Catalog, params: Mapping[str, Any]) -> AuctionState:
    sender: Address = params["sender"]
    amount = a.pending(sender)
    require(amount > 0, "withdraw", "nothing to withdraw")
    return replace(
        a,
        account=a.account.set(sender, catalog.add(a.account[sender], amount)),
        pending_returns=a.pending_returns.set(sender, 0),
    )


def _auction_end(a: AuctionState, catalog: Catalog, params: Mapping[str, Any]) -> AuctionState:
    require(a.now >= a.auction_end, "auctionEnd", "deadline not reached")
    require(not a.ended, "auctionEnd", "already ended")
    require(a.highest_bid is not None, "auctionEnd", "no bid placed")
    assert a.highest_bid is not None
    ben = a.beneficiary
    return replace(
        a,
        ended=True,
        account=a.account.set(ben, catalog.add(a.account[ben], a.highest_bid)),
    )


RULES: tuple[Rule[AuctionState], ...] = (
    Rule("tick", (), _tick),
    Rule(
        "bid",
        (Param("sender", ParamKind.ADDRESS), Param("value", ParamKind.AMOUNT)),
        _bid,
    ),
    Rule("withdraw", (Param("sender", ParamKind.ADDRESS),), _withdraw),
    Rule("auctionEnd", (), _auction_end),
)


# ---------------------------------------------------------------------------
# Invariants
# ---------------------------------------------------------------------------


def _no_new_money(s0: AuctionState, s: AuctionState, catalog: Catalog) -> bool:
    return sum(s.account.values()) <= sum(s0.account.values())


def _beneficiary_settlement(s0: AuctionState, s: AuctionState, catalog: Catalog) -> bool:
    if not s.ended:
        return True
    ben = s.beneficiary
    if s.highest_bidder == ben:
        return s.account[ben] + s.pending(ben) == s0.account[ben]
    return s.account[ben] + s.pending(ben) == s0.account[ben] + (s.highest_bid or 0)


INVARIANTS = (
    BaselineInvariant(
        "noNewMoney",
        _no_new_money,
        "total account funds never exceed the initial total",
    ),
    BaselineInvariant(
        "beneficiarySettlement",
        _beneficiary_settlement,
        "after the auction ends the beneficiary holds exactly the winning bid on top of "
        "their initial balance",
    ),
    StateInvariant(
        "accountsNonNegative",
        lambda s, c: all(v >= 0 for v in s.account.values()),
        "every account balance is non-negative",
    ),
    StateInvariant(
        "pendingReturnsNonNegative",
        lambda s, c: all(v >= 0 for v in s.pending_returns.values()),
        "every pending return is non-negative",
    ),
    StateInvariant(
        "bidConsistency",
        lambda s, c: (s.highest_bid is None) == (s.highest_bidder is None),
        "highestBid is set iff highestBidder is set",
    ),
    StateInvariant(
        "endedRequiresBid",
        lambda s, c: not s.ended or s.highest_bidder is not None,
        "an ended auction has a highest bidder",
    ),
    StepInvariant(
        "endedIsFinal",
        lambda before, after, c: not before.ended or after.ended,
        "once ended, an auction stays ended",
    ),
)


def rename(a: AuctionState, r: Renaming) -> AuctionState:
    return replace(
        a,
        beneficiary=r.address(a.beneficiary),
        highest_bidder=r.optional_address(a.highest_bidder),
        pending_returns=r.keys(a.pending_returns),
        account=r.keys(a.account),
    )


def build(catalog: Catalog, **options: Any) -> TransitionSystem[AuctionState]:
    catalog.require_zero("auction")
    return TransitionSystem(
        name="auction",
        catalog=catalog,
        initial=initial_states,
        rules=RULES,
        invariants=INVARIANTS,
        rename=rename,
        options=options,
    )
