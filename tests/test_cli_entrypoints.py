from __future__ import annotations

import json
import os

import pytest

from story_branch.cli import api as api_cli
from story_branch.cli import play


def test_play_without_choices_prints_opening_catalog(capsys: pytest.CaptureFixture[str]) -> None:
    assert play.main([]) == 0
    captured = capsys.readouterr()
    assert "The Resistance Leader's Sacrifice [war-sacrifice]" in captured.out
    assert "save-team [character-defining/major]" in captured.out
    assert "attempt-negotiation [escape-triggering/catastrophic]" in captured.out


def test_play_walks_choices_and_reports_turns(capsys: pytest.CaptureFixture[str]) -> None:
    assert play.main(["protect-intel", "analyze-intel"]) == 0
    captured = capsys.readouterr()
    assert "> protect-intel" in captured.out
    assert "episode 2 | premise 15% | derailment risk 3/10" in captured.out
    assert "quantum:" in captured.out
    assert "episode 3 | premise 15% | derailment risk 4/10" in captured.out


def test_play_json_summary_reports_derailment(capsys: pytest.CaptureFixture[str]) -> None:
    exit_code = play.main(["attempt-negotiation", "--escape-roll", "1.0", "--json"])
    payload = json.loads(capsys.readouterr().out)
    assert exit_code == 0
    assert payload["turns"][0]["derailed"] is True
    assert payload["turns"][0]["next_choices"] == ["diplomatic-mission"]
    assert payload["final"]["thematic_shift"] == "sacrifice of ego for peace"
    assert payload["final"]["episode"] == 2


def test_play_unknown_choice_returns_error_code(capsys: pytest.CaptureFixture[str]) -> None:
    assert play.main(["save-team", "protect-intel"]) == 2
    assert "not in the current catalog" in capsys.readouterr().err


def test_play_rejects_out_of_range_escape_roll() -> None:
    with pytest.raises(SystemExit) as raised:
        play.main(["--escape-roll", "1.5"])
    assert raised.value.code == 2


def test_api_cli_calls_uvicorn(monkeypatch: pytest.MonkeyPatch) -> None:
    calls: list[dict[str, object]] = []

    def fake_run(app: str, host: str, port: int, reload: bool) -> None:
        calls.append({"app": app, "host": host, "port": port, "reload": reload})

    monkeypatch.setattr("story_branch.cli.api.configure_runtime_logging", lambda: True)
    monkeypatch.setattr("story_branch.cli.api.uvicorn.run", fake_run)
    api_cli.main(["--host", "0.0.0.0", "--port", "9000", "--reload"])

    assert calls == [
        {
            "app": "story_branch.api.app:app",
            "host": "0.0.0.0",
            "port": 9000,
            "reload": True,
        }
    ]


def test_api_cli_sets_db_path_env(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.delenv("STORY_BRANCH_DB_PATH", raising=False)
    monkeypatch.setattr("story_branch.cli.api.configure_runtime_logging", lambda: True)
    monkeypatch.setattr("story_branch.cli.api.uvicorn.run", lambda *args, **kwargs: None)
    api_cli.main(["--db-path", "work/local/custom.db"])
    assert os.environ["STORY_BRANCH_DB_PATH"] == "work/local/custom.db"
