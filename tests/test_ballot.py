import dataclasses
from collections.abc import Mapping
from typing import Any

import pytest

from smallscope.checker import CounterexampleFound, Holds, SearchOptions, check
from smallscope.domain import Address, Catalog, Proposal, Scope
from smallscope.errors import GuardMismatch
from smallscope.invariants import CrossTraceInvariant, evaluate_pair, evaluate_trace
from smallscope.models import build_model
from smallscope.models.ballot import (
    BallotState,
    delegate_chain,
    fresh_ballot,
    has_delegation_cycle,
)
from smallscope.search import Termination, TraceGenerator
from smallscope.state import FrozenMap
from smallscope.system import Rule, TransitionSystem
from smallscope.trace import Trace

A0, A1, A2 = Address("A0"), Address("A1"), Address("A2")
P0, P1 = Proposal("P0"), Proposal("P1")


def make_ballot(
    *,
    addresses: int = 2,
    proposals: int = 2,
    max_trace_length: int = 4,
    strict: bool = False,
) -> TransitionSystem[BallotState]:
    scope = Scope(
        address_count=addresses,
        proposal_count=proposals,
        int_min=0,
        int_max=3,
        max_trace_length=max_trace_length,
    )
    return build_model("ballot", Catalog.from_scope(scope), strict_delegation=strict)


def enfranchise(system: TransitionSystem[BallotState], *voters: Address) -> Trace[BallotState]:
    start = fresh_ballot(system.catalog, A0)
    return system.replay(
        start, [("giveRightToVote", {"sender": A0, "voter": v}) for v in voters]
    )


def test_simple_vote_scenario() -> None:
    system = make_ballot()
    start = fresh_ballot(system.catalog, A0)
    trace = system.replay(
        start,
        [
            ("giveRightToVote", {"sender": A0, "voter": A0}),
            ("vote", {"sender": A0, "proposal": P0}),
        ],
    )
    after_right, after_vote = trace.states()[1:]

    assert after_right.weight[A0] == 1
    assert after_vote.count[P0] == 1
    assert after_vote.count[P1] == 0
    assert sum(after_vote.count.values()) == 1 == sum(after_vote.weight.values())
    assert after_vote.vote[A0] == P0
    assert A0 in after_vote.voted

    for inv in system.invariants:
        assert evaluate_trace(inv, trace, system.catalog) is None


def test_only_chairperson_gives_rights_once() -> None:
    system = make_ballot()
    start = fresh_ballot(system.catalog, A0)
    assert system.apply(start, "giveRightToVote", (("sender", A1), ("voter", A1))) is None
    state = enfranchise(system, A1).state
    assert system.apply(state, "giveRightToVote", (("sender", A0), ("voter", A1))) is None


def test_vote_requires_weight_and_is_single_use() -> None:
    system = make_ballot()
    start = fresh_ballot(system.catalog, A0)
    assert system.apply(start, "vote", (("sender", A1), ("proposal", P0))) is None
    with pytest.raises(GuardMismatch, match="step 3"):
        system.replay(
            start,
            [
                ("giveRightToVote", {"sender": A0, "voter": A1}),
                ("vote", {"sender": A1, "proposal": P0}),
                ("vote", {"sender": A1, "proposal": P1}),
            ],
        )


def test_delegate_moves_weight_to_undecided_delegate() -> None:
    system = make_ballot()
    base = enfranchise(system, A0, A1)
    trace = system.replay(
        base.state,
        [
            ("delegate", {"sender": A0, "to": A1}),
            ("vote", {"sender": A1, "proposal": P1}),
        ],
    )
    after_delegate, after_vote = trace.states()[1:]
    assert after_delegate.weight[A1] == 2
    assert after_delegate.delegate[A0] == A1
    assert A0 in after_delegate.voted
    assert after_vote.count[P1] == 2


def test_delegate_to_voter_counts_immediately() -> None:
    system = make_ballot()
    base = enfranchise(system, A0, A1)
    trace = system.replay(
        base.state,
        [
            ("vote", {"sender": A1, "proposal": P0}),
            ("delegate", {"sender": A0, "to": A1}),
        ],
    )
    assert trace.state.count[P0] == 2
    assert trace.state.weight[A1] == 1


def test_delegation_follows_chain_to_final_delegate() -> None:
    system = make_ballot(addresses=3)
    base = enfranchise(system, A0, A1, A2)
    trace = system.replay(
        base.state,
        [
            ("delegate", {"sender": A1, "to": A2}),
            ("delegate", {"sender": A0, "to": A1}),
        ],
    )
    assert trace.state.delegate[A0] == A2
    assert trace.state.weight[A2] == 3
    assert delegate_chain(trace.state, A1) == [A1, A2]


def test_delegation_cannot_loop_back_to_sender() -> None:
    system = make_ballot(addresses=3)
    base = enfranchise(system, A0, A1, A2)
    assert system.apply(base.state, "delegate", (("sender", A0), ("to", A0))) is None
    after = system.replay(base.state, [("delegate", {"sender": A1, "to": A2})]).state
    assert system.apply(after, "delegate", (("sender", A2), ("to", A1))) is None


def test_preexisting_cycle_blocks_delegation_and_is_detected() -> None:
    system = make_ballot(addresses=3)
    looped = dataclasses.replace(
        fresh_ballot(system.catalog, A0),
        voted=frozenset([A1, A2]),
        delegate=FrozenMap({A1: A2, A2: A1}),
    )
    assert has_delegation_cycle(looped)
    assert system.apply(looped, "delegate", (("sender", A0), ("to", A1))) is None

    no_loops = next(i for i in system.invariants if i.name == "noLoopingDelegation")
    cex = evaluate_trace(no_loops, Trace.start(looped), system.catalog)
    assert cex is not None
    assert cex.invariant == "noLoopingDelegation"


def test_as_specified_delegation_allows_unenfranchised_parties() -> None:
    system = make_ballot()
    start = fresh_ballot(system.catalog, A0)
    state = system.apply(start, "delegate", (("sender", A1), ("to", A0)))
    assert state is not None
    assert state.weight[A0] == 0
    assert state.delegate[A1] == A0


def test_strict_delegation_requires_rights_on_both_ends() -> None:
    system = make_ballot(strict=True)
    start = fresh_ballot(system.catalog, A0)
    assert system.apply(start, "delegate", (("sender", A1), ("to", A0))) is None

    only_sender = enfranchise(system, A1).state
    assert system.apply(only_sender, "delegate", (("sender", A1), ("to", A0))) is None

    both = enfranchise(system, A0, A1).state
    state = system.apply(both, "delegate", (("sender", A1), ("to", A0)))
    assert state is not None
    assert state.weight[A0] == 2


def test_single_voter_ballot_gets_stuck() -> None:
    system = make_ballot(addresses=1, proposals=1, max_trace_length=5)
    completed = list(TraceGenerator(system).traces())
    assert len(completed) == 1
    assert completed[0].termination is Termination.STUCK
    assert completed[0].trace.rules() == ["giveRightToVote", "vote"]


@pytest.mark.parametrize("strict", [False, True])
def test_all_invariants_hold(strict: bool) -> None:
    system = make_ballot(strict=strict)
    report = check(system)
    assert report.all_hold, report.verdicts
    assert "delegateVoteOrder" in [v.invariant for v in report.verdicts]


def test_invariants_hold_with_three_addresses_under_symmetry() -> None:
    system = make_ballot(addresses=3, proposals=2, max_trace_length=4)
    report = check(system, options=SearchOptions(symmetry=True))
    assert all(isinstance(v, Holds) for v in report.verdicts)
    assert "symmetry reduced" in report.scope


def _order_invariant(system: TransitionSystem[BallotState]) -> CrossTraceInvariant:
    [inv] = system.select_invariants(["delegateVoteOrder"])
    assert isinstance(inv, CrossTraceInvariant)
    return inv


def test_delegate_and_vote_orderings_tally_alike() -> None:
    system = make_ballot(max_trace_length=5)
    base = enfranchise(system, A0, A1).state
    delegate = ("delegate", {"sender": A0, "to": A1})
    vote = ("vote", {"sender": A1, "proposal": P0})
    first = system.replay(base, [delegate, vote])
    second = system.replay(base, [vote, delegate])

    assert first.state.count[P0] == 2 == second.state.count[P0]
    assert evaluate_pair(_order_invariant(system), first, second, system.catalog) is None


def test_order_independence_needs_five_snapshots() -> None:
    # two rights plus the swapped pair: the earliest comparison ends at snapshot 5
    short = check(make_ballot(max_trace_length=4), ["delegateVoteOrder"])
    verdict = short.verdict("delegateVoteOrder")
    assert isinstance(verdict, Holds)
    assert verdict.vacuous
    assert short.stats.pairs == 0

    report = check(make_ballot(max_trace_length=5))
    assert report.all_hold, report.verdicts
    verdict = report.verdict("delegateVoteOrder")
    assert isinstance(verdict, Holds)
    assert not verdict.vacuous
    assert report.stats.pairs > 0


def _without_credit_to_voted_delegate(
    system: TransitionSystem[BallotState],
) -> TransitionSystem[BallotState]:
    """Delegation that forgets to add weight to a delegate who already voted."""
    original = system.get_rule("delegate")

    def body(b: BallotState, catalog: Catalog, params: Mapping[str, Any]) -> BallotState:
        after = original.body(b, catalog, params)
        if delegate_chain(b, params["to"])[-1] in b.vote:
            return dataclasses.replace(after, count=b.count)
        return after

    return dataclasses.replace(
        system,
        rules=tuple(
            Rule(r.name, r.params, body) if r.name == "delegate" else r
            for r in system.rules
        ),
    )


def test_lost_delegation_credit_breaks_order_independence() -> None:
    system = _without_credit_to_voted_delegate(make_ballot(max_trace_length=5))
    report = check(system, ["delegateVoteOrder"])
    verdict = report.verdict("delegateVoteOrder")
    assert isinstance(verdict, CounterexampleFound)
    cex = verdict.counterexample
    assert cex.length == 5
    assert cex.other is not None
    assert cex.trace.rules()[-2:] == ["delegate", "vote"]
    assert cex.other.rules()[-2:] == ["vote", "delegate"]
    assert cex.trace.state.count != cex.other.state.count
