import json

from smallscope.checker import CheckReport, CounterexampleFound, Holds, Inconclusive
from smallscope.domain import Address, Catalog, Scope
from smallscope.models import build_model
from smallscope.models.auction import new_auction
from smallscope.report import (
    format_counterexample,
    format_report,
    format_trace,
    render_markdown,
    report_json,
    trace_rows,
)
from smallscope.search import SearchStats
from smallscope.trace import Counterexample

A0, A1 = Address("A0"), Address("A1")


def _traces():
    system = build_model("auction", Catalog.from_scope(Scope(int_max=10)))
    start = new_auction(system.catalog, A0, 2, {A0: 5, A1: 5})
    bid_then_tick = system.replay(
        start, [("bid", {"sender": A1, "value": 2}), ("tick", {})]
    )
    tick_then_bid = system.replay(
        start, [("tick", {}), ("bid", {"sender": A1, "value": 2})]
    )
    return bid_then_tick, tick_then_bid


def _report() -> CheckReport:
    a, b = _traces()
    return CheckReport(
        model="auction",
        scope="auction: 2 addresses, ints [0, 10]",
        verdicts=(
            Holds("noNewMoney", "auction: 2 addresses"),
            Holds("orderIndependent", "auction: 2 addresses", vacuous=True),
            CounterexampleFound("single", Counterexample("single", a, message="never bid")),
            CounterexampleFound("pair", Counterexample("pair", a, other=b)),
            Inconclusive("late", "step budget of 10 exhausted"),
        ),
        stats=SearchStats(
            transitions=12, completed=3, stuck=1, pruned=2, pairs=4, max_length=3
        ),
        elapsed=0.25,
    )


def test_trace_rows_start_with_initial_state() -> None:
    trace, _ = _traces()
    rows = trace_rows(trace)
    assert [r["index"] for r in rows] == [0, 1, 2]
    assert [r["rule"] for r in rows] == ["init", "bid", "tick"]
    assert rows[1]["binding"] == {"sender": A1, "value": 2}
    assert rows[2]["state"] is trace.state


def test_format_trace() -> None:
    trace, _ = _traces()
    lines = format_trace(trace, indent="")
    assert lines[0] == " 0. init"
    assert lines[2] == " 1. bid(sender=A1, value=2)"
    assert lines[4] == " 2. tick"


def test_format_counterexample_labels_both_orderings() -> None:
    a, b = _traces()
    text = format_counterexample(Counterexample("pair", a, other=b))
    assert "ordering A:" in text
    assert "ordering B:" in text
    assert text.index("ordering A:") < text.index("ordering B:")


def test_format_report() -> None:
    text = format_report(_report())
    lines = text.splitlines()
    assert lines[0].startswith("auction: 2 addresses")
    assert "  ✓ noNewMoney: HOLDS" in lines
    assert "  ✓ orderIndependent: HOLDS (vacuously, no action pairs fit the bound)" in lines
    assert "  × single: COUNTEREXAMPLE (3 snapshots)" in lines
    assert "    expected: never bid" in lines
    assert "  ? late: INCONCLUSIVE (step budget of 10 exhausted)" in lines
    assert lines[-1] == (
        "  Explored 12 transitions, 3 completed traces (1 stuck), 2 pruned, "
        "4 pairs compared, in 0.25s"
    )


def test_report_json_is_serialisable() -> None:
    data = report_json(_report())
    json.dumps(data)
    assert data["all_hold"] is False
    assert data["stats"] == {
        "transitions": 12, "completed": 3, "stuck": 1, "pruned": 2, "pairs": 4,
    }
    vacuous, single, pair = data["verdicts"][1:4]
    assert vacuous["vacuous"] is True
    assert "vacuous" not in data["verdicts"][0]
    assert single["length"] == 3
    assert "other" not in single
    assert [r["rule"] for r in pair["other"]] == ["init", "tick", "bid"]
    assert data["verdicts"][4] == {
        "invariant": "late",
        "status": "INCONCLUSIVE",
        "reason": "step budget of 10 exhausted",
    }


def test_render_markdown() -> None:
    text = render_markdown(_report())
    assert text.startswith("# auction check report")
    assert "| `noNewMoney` | HOLDS |" in text
    assert "| `orderIndependent` | HOLDS (vacuous) |" in text
    assert "| `single` | COUNTEREXAMPLE |" in text
    assert "Expected: never bid" in text
    assert "### Swapped ordering" in text
    assert text.count("### Trace") == 2
    assert "| 1 | `bid` | sender=A1, value=2 |" in text
    assert "Inconclusive: step budget of 10 exhausted" in text
    assert (
        "12 transitions, 3 completed traces (1 stuck), 2 pruned, 4 pairs compared, 0.25s."
        in text
    )
