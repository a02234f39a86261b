import json
import os
import signal
from pathlib import Path

import pytest

from smallscope import cli
from smallscope.cli import (
    EXIT_CONFIG_ERROR,
    EXIT_COUNTEREXAMPLE,
    EXIT_HOLDS,
    EXIT_INCONCLUSIVE,
    EXIT_INTERRUPTED,
    main,
)


@pytest.fixture(autouse=True)
def clean_env(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    """Isolate each run from SMALLSCOPE_* variables and stray .env files."""
    environ = {k: v for k, v in os.environ.items() if not k.startswith("SMALLSCOPE_")}
    monkeypatch.setattr(os, "environ", environ)
    monkeypatch.chdir(tmp_path)


def test_list(capsys: pytest.CaptureFixture[str]) -> None:
    assert main(["list"]) == EXIT_HOLDS
    out = capsys.readouterr().out
    assert "auction\n" in out
    assert "ballot\n" in out
    assert "rule bid(sender: address, value: amount)" in out
    assert "invariant delegateVoteOrder" in out


def test_no_command_prints_help(capsys: pytest.CaptureFixture[str]) -> None:
    assert main([]) == EXIT_CONFIG_ERROR
    assert "usage: smallscope" in capsys.readouterr().out


def test_check_holds(capsys: pytest.CaptureFixture[str]) -> None:
    assert main(["check", "ballot", "--max-length", "3"]) == EXIT_HOLDS
    out = capsys.readouterr().out
    assert out.startswith("ballot: 2 addresses, 2 proposals")
    assert "✓ weightConservation: HOLDS" in out
    assert "Explored" in out


def test_check_counterexample(capsys: pytest.CaptureFixture[str]) -> None:
    code = main(
        [
            "check",
            "auction",
            "--int-max", "2",
            "--overflow", "saturate",
            "--invariant", "beneficiarySettlement",
        ]
    )
    assert code == EXIT_COUNTEREXAMPLE
    out = capsys.readouterr().out
    assert "× beneficiarySettlement: COUNTEREXAMPLE (4 snapshots)" in out
    assert "auctionEnd" in out


def test_check_inconclusive(capsys: pytest.CaptureFixture[str]) -> None:
    assert main(["check", "ballot", "--max-steps", "3"]) == EXIT_INCONCLUSIVE
    assert "INCONCLUSIVE (step budget of 3 exhausted)" in capsys.readouterr().out


def test_unknown_invariant_is_a_config_error(capsys: pytest.CaptureFixture[str]) -> None:
    assert main(["check", "ballot", "--invariant", "noSuchThing"]) == EXIT_CONFIG_ERROR
    assert "Configuration error" in capsys.readouterr().err


def test_invalid_scope_is_a_config_error(capsys: pytest.CaptureFixture[str]) -> None:
    assert main(["check", "auction", "--max-length", "0"]) == EXIT_CONFIG_ERROR
    assert "max_trace_length" in capsys.readouterr().err


def test_bad_environment_is_a_config_error(
    monkeypatch: pytest.MonkeyPatch, capsys: pytest.CaptureFixture[str]
) -> None:
    os.environ["SMALLSCOPE_WORKERS"] = "many"
    assert main(["check", "ballot"]) == EXIT_CONFIG_ERROR
    assert "SMALLSCOPE_WORKERS" in capsys.readouterr().err


def test_flags_override_environment(capsys: pytest.CaptureFixture[str]) -> None:
    os.environ["SMALLSCOPE_MODEL"] = "ballot"
    os.environ["SMALLSCOPE_MAX_TRACE_LENGTH"] = "9"
    assert main(["check", "--max-length", "3"]) == EXIT_HOLDS
    out = capsys.readouterr().out
    assert out.startswith("ballot:")
    assert "traces up to 3 snapshots" in out


def test_json_output(capsys: pytest.CaptureFixture[str]) -> None:
    code = main(
        [
            "check",
            "auction",
            "--int-max", "2",
            "--overflow", "saturate",
            "--invariant", "beneficiarySettlement",
            "--invariant", "noNewMoney",
            "--format", "json",
        ]
    )
    assert code == EXIT_COUNTEREXAMPLE
    data = json.loads(capsys.readouterr().out)
    assert data["model"] == "auction"
    assert data["all_hold"] is False
    by_name = {v["invariant"]: v for v in data["verdicts"]}
    assert by_name["noNewMoney"]["status"] == "HOLDS"
    settlement = by_name["beneficiarySettlement"]
    assert settlement["status"] == "COUNTEREXAMPLE"
    assert settlement["length"] == 4
    assert [row["rule"] for row in settlement["trace"]] == ["init", "bid", "tick", "auctionEnd"]


def test_markdown_output(capsys: pytest.CaptureFixture[str]) -> None:
    assert main(["check", "ballot", "--max-length", "3", "--format", "markdown"]) == EXIT_HOLDS
    out = capsys.readouterr().out
    assert out.startswith("# ballot check report")
    assert "| `weightConservation` | HOLDS |" in out


def test_traces_command(capsys: pytest.CaptureFixture[str]) -> None:
    code = main(
        ["traces", "ballot", "--addresses", "1", "--proposals", "1", "--max-length", "5"]
    )
    assert code == EXIT_HOLDS
    out = capsys.readouterr().out
    assert "trace 1 (stuck, 3 snapshots)" in out
    assert "giveRightToVote(sender=A0, voter=A0)" in out
    assert out.rstrip().endswith("1 completed traces, 1 stuck")


def test_traces_limit(capsys: pytest.CaptureFixture[str]) -> None:
    assert main(["traces", "ballot", "--max-length", "2", "--limit", "1"]) == EXIT_HOLDS
    out = capsys.readouterr().out
    assert "trace 1 " in out
    assert "trace 2 " not in out


def test_interrupt_cancels_and_still_reports(
    monkeypatch: pytest.MonkeyPatch, capsys: pytest.CaptureFixture[str]
) -> None:
    real_check = cli.check

    def interrupted_check(*args, **kwargs):
        signal.raise_signal(signal.SIGINT)
        return real_check(*args, **kwargs)

    before = signal.getsignal(signal.SIGINT)
    monkeypatch.setattr(cli, "check", interrupted_check)
    assert main(["check", "ballot"]) == EXIT_INTERRUPTED
    captured = capsys.readouterr()
    assert "INCONCLUSIVE (search cancelled)" in captured.out
    assert "Operation cancelled by user." in captured.err
    assert signal.getsignal(signal.SIGINT) is before


def test_range_without_zero_is_a_config_error(capsys: pytest.CaptureFixture[str]) -> None:
    assert main(["check", "auction", "--int-min", "1"]) == EXIT_CONFIG_ERROR
    assert "auction needs 0 within the integer range" in capsys.readouterr().err
