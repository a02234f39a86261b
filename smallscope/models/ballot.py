"""Ballot with delegation.

State:

  chairperson  Address
  voted        {Address}            voted directly or delegated
  vote         Address ⇀ Proposal
  delegate     Address ⇀ Address
  weight       Address ⇀ Int
  count        Proposal → Int       total: one tally per proposal

Rules:

  giveRightToVote(sender, voter)  sender = chairperson, voter ∉ voted,
                                  voter has no weight yet
  delegate(sender, to)            sender ∉ voted, sender not on the
                                  delegate chain starting at ``to``
  vote(sender, proposal)          sender ∉ voted, weight[sender] > 0

``delegate`` follows the chain from ``to`` to its final delegate, the
address on the chain with no outgoing edge. A chain that loops back on
itself has no final delegate, so delegating into it is inadmissible.

With ``strict_delegation`` the sender must hold a positive weight and the
final delegate must already have the right to vote.
"""

from __future__ import annotations

from collections.abc import Iterator, Mapping
from dataclasses import dataclass, replace
from typing import Any

from ..domain import Address, Catalog, Proposal
from ..errors import GuardMismatch
from ..invariants import CrossTraceInvariant, StateInvariant
from ..state import FrozenMap, Renaming
from ..system import Param, ParamKind, Rule, TransitionSystem, require
from ..trace import Step


@dataclass(frozen=True)
class BallotState:
    chairperson: Address
    voted: frozenset[Address]
    vote: FrozenMap[Address, Proposal]
    delegate: FrozenMap[Address, Address]
    weight: FrozenMap[Address, int]
    count: FrozenMap[Proposal, int]


def fresh_ballot(catalog: Catalog, chairperson: Address) -> BallotState:
    """The ``freshBallot`` initial rule."""
    return BallotState(
        chairperson=chairperson,
        voted=frozenset(),
        vote=FrozenMap(),
        delegate=FrozenMap(),
        weight=FrozenMap(),
        count=FrozenMap({p: 0 for p in catalog.proposals}),
    )


def initial_states(catalog: Catalog) -> Iterator[BallotState]:
    for chairperson in catalog.addresses:
        yield fresh_ballot(catalog, chairperson)


def delegate_chain(b: BallotState, start: Address) -> list[Address]:
    """Addresses reached from ``start`` by following ``delegate`` edges.

    Raises ``GuardMismatch`` if the chain loops.
    """
    chain = [start]
    seen = {start}
    current = start
    while current in b.delegate:
        current = b.delegate[current]
        if current in seen:
            raise GuardMismatch("delegate", f"delegation chain from {start} loops")
        seen.add(current)
        chain.append(current)
    return chain


def has_delegation_cycle(b: BallotState) -> bool:
    """True when some address reaches itself by following ``delegate`` edges."""
    for start in b.delegate:
        try:
            delegate_chain(b, start)
        except GuardMismatch:
            return True
    return False


# ---------------------------------------------------------------------------
# Rules
# ---------------------------------------------------------------------------


def _give_right_to_vote(
    b: BallotState, catalog: Catalog, params: Mapping[str, Any]
) -> BallotState:
    sender: Address = params["sender"]
    voter: Address = params["voter"]
    require(sender == b.chairperson, "giveRightToVote", "sender is not the chairperson")
    require(voter not in b.voted, "giveRightToVote", "voter already voted")
    require(voter not in b.weight, "giveRightToVote", "voter already has a weight")
    return replace(b, weight=b.weight.set(voter, catalog.bound(1)))


def _delegate(
    b: BallotState, catalog: Catalog, params: Mapping[str, Any], *, strict: bool
) -> BallotState:
    sender: Address = params["sender"]
    to: Address = params["to"]
    require(sender not in b.voted, "delegate", "sender already voted")
    chain = delegate_chain(b, to)
    require(sender not in chain, "delegate", "delegation would loop back to sender")
    final = chain[-1]
    sender_weight = b.weight.get(sender, 0)
    if strict:
        require(sender_weight > 0, "delegate", "sender has no right to vote")
        require(final in b.weight, "delegate", "final delegate has no right to vote")

    b2 = replace(
        b,
        voted=b.voted | {sender},
        delegate=b.delegate.set(sender, final),
    )
    if final in b.vote:
        chosen = b.vote[final]
        return replace(
            b2, count=b.count.set(chosen, catalog.add(b.count.get(chosen, 0), sender_weight))
        )
    return replace(
        b2, weight=b.weight.set(final, catalog.add(b.weight.get(final, 0), sender_weight))
    )


def _delegate_as_specified(
    b: BallotState, catalog: Catalog, params: Mapping[str, Any]
) -> BallotState:
    return _delegate(b, catalog, params, strict=False)


def _delegate_strict(
    b: BallotState, catalog: Catalog, params: Mapping[str, Any]
) -> BallotState:
    return _delegate(b, catalog, params, strict=True)


def _vote(b: BallotState, catalog: Catalog, params: Mapping[str, Any]) -> BallotState:
    sender: Address = params["sender"]
    proposal: Proposal = params["proposal"]
    require(sender not in b.voted, "vote", "sender already voted")
    weight = b.weight.get(sender, 0)
    require(weight > 0, "vote", "sender has no weight")
    return replace(
        b,
        voted=b.voted | {sender},
        vote=b.vote.set(sender, proposal),
        count=b.count.set(proposal, catalog.add(b.count.get(proposal, 0), weight)),
    )


def rules(strict_delegation: bool = False) -> tuple[Rule[BallotState], ...]:
    return (
        Rule(
            "giveRightToVote",
            (Param("sender", ParamKind.ADDRESS), Param("voter", ParamKind.ADDRESS)),
            _give_right_to_vote,
        ),
        Rule(
            "delegate",
            (Param("sender", ParamKind.ADDRESS), Param("to", ParamKind.ADDRESS)),
            _delegate_strict if strict_delegation else _delegate_as_specified,
        ),
        Rule(
            "vote",
            (Param("sender", ParamKind.ADDRESS), Param("proposal", ParamKind.PROPOSAL)),
            _vote,
        ),
    )


# ---------------------------------------------------------------------------
# Invariants
# ---------------------------------------------------------------------------


def _delegate_then_vote(
    b: BallotState, first: Step[BallotState], second: Step[BallotState]
) -> bool:
    """``first`` is a0 delegating to a1 and ``second`` is a1 voting.

    a0 is the chairperson and both addresses were given the right to vote.
    """
    if first.rule != "delegate" or second.rule != "vote":
        return False
    a0 = first.params["sender"]
    a1 = first.params["to"]
    return (
        second.params["sender"] == a1
        and a0 != a1
        and a0 == b.chairperson
        and a0 in b.weight
        and a1 in b.weight
    )


INVARIANTS = (
    StateInvariant(
        "weightConservation",
        lambda b, c: sum(b.count.values()) <= sum(b.weight.values()),
        "counted votes never exceed the total weight",
    ),
    StateInvariant(
        "noDoubleRole",
        lambda b, c: not (b.vote.keys() & b.delegate.keys()),
        "no address both voted and delegated",
    ),
    StateInvariant(
        "noLoopingDelegation",
        lambda b, c: not has_delegation_cycle(b),
        "no address reaches itself through delegate edges",
    ),
    StateInvariant(
        "votedRecorded",
        lambda b, c: (b.vote.keys() | b.delegate.keys()) <= b.voted,
        "every voter and delegator is marked as voted",
    ),
    CrossTraceInvariant(
        "delegateVoteOrder",
        _delegate_then_vote,
        lambda x, y, c: x.count == y.count,
        "delegating before or after the delegate votes yields the same tally",
    ),
)


def rename(b: BallotState, r: Renaming) -> BallotState:
    return replace(
        b,
        chairperson=r.address(b.chairperson),
        voted=frozenset(r.address(a) for a in b.voted),
        vote=FrozenMap((r.address(a), r.proposal(p)) for a, p in b.vote.items()),
        delegate=FrozenMap((r.address(a), r.address(t)) for a, t in b.delegate.items()),
        weight=r.keys(b.weight),
        count=FrozenMap((r.proposal(p), n) for p, n in b.count.items()),
    )


def build(
    catalog: Catalog, *, strict_delegation: bool = False, **options: Any
) -> TransitionSystem[BallotState]:
    catalog.require_zero("ballot")
    return TransitionSystem(
        name="ballot",
        catalog=catalog,
        initial=initial_states,
        rules=rules(strict_delegation),
        invariants=INVARIANTS,
        rename=rename,
        options={"strict_delegation": strict_delegation, **options},
    )
