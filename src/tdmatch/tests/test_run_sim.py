from __future__ import annotations

import json

import pytest

from tdmatch.app.run_sim import main


def test_single_run_prints_json(capsys):
    code = main(["--json", "--seed", "5"])

    payload = json.loads(capsys.readouterr().out)
    assert code == (0 if payload["success"] else 1)
    assert payload["outcome"] in ("victory", "game_over")
    assert payload["buildings_placed"] >= 3


def test_max_ticks_exit_status(capsys):
    code = main(["--max-ticks", "3"])
    out = capsys.readouterr().out
    assert code == 1
    assert "SimulationAborted" in out


def test_progress_lines(capsys):
    main(["--max-ticks", "20", "--progress-every", "10"])
    lines = [line for line in capsys.readouterr().out.splitlines() if line.startswith("tick=")]
    assert [line.split()[0] for line in lines] == ["tick=0", "tick=10", "tick=20"]


def test_batch_summary(capsys):
    main(["--runs", "2", "--json", "--set", "simulation.starting_money=800"])
    summary = json.loads(capsys.readouterr().out)
    assert summary["runs"] == 2
    assert sum(summary["outcomes"].values()) == 2


def test_bad_override_exits_with_usage_error():
    with pytest.raises(SystemExit) as info:
        main(["--set", "simulation.nope=1"])
    assert info.value.code == 2
