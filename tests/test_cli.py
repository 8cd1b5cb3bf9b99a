from __future__ import annotations

import json
import shutil
from pathlib import Path

import pytest
from typer.testing import CliRunner

from matrixverdict import cli
from matrixverdict.sources.testing_api import FetchResult
from matrixverdict.sources.status_batch import RemoteMatrixStatus
from matrixverdict.storage.matrix_store import load_matrix_map

runner = CliRunner()


@pytest.fixture(autouse=True)
def _workdir(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.chdir(tmp_path)
    for key in ("TESTING_PROJECT_ID", "TESTING_API_TOKEN", "TESTING_API_BASE_URL"):
        monkeypatch.setenv(key, "")
        monkeypatch.delenv(key)


def _init(run_path: Path, *ids: str) -> None:
    args = ["init", "--run-path", str(run_path)]
    for matrix_id in ids:
        args += ["--matrix-id", matrix_id]
    result = runner.invoke(cli.app, args)
    assert result.exit_code == 0, result.output


def _write_statuses(path: Path, matrices: list) -> Path:
    path.write_text(json.dumps(matrices), encoding="utf-8")
    return path


def _log_events(tmp_path: Path) -> list:
    events = []
    for log_file in (tmp_path / "logs").glob("run-*.jsonl"):
        events.extend(json.loads(line) for line in log_file.read_text(encoding="utf-8").splitlines())
    return events


def test_cli_importable() -> None:
    import matrixverdict.cli  # noqa: F401


def test_init_creates_pending_batch(tmp_path: Path) -> None:
    run_path = tmp_path / "run"
    _init(run_path, "m1", "m2")

    matrix_map = load_matrix_map(run_path)
    assert list(matrix_map.map) == ["m1", "m2"]
    assert {m.state for m in matrix_map.map.values()} == {"PENDING"}

    events = [e["event"] for e in _log_events(tmp_path)]
    assert "command_start" in events
    assert "run_summary" in events


def test_init_rejects_duplicate_ids(tmp_path: Path) -> None:
    result = runner.invoke(cli.app, ["init", "--run-path", str(tmp_path / "run"), "--matrix-id", "a", "--matrix-id", "a"])

    assert result.exit_code == 2


def test_merge_then_validate_failed_and_ignored(tmp_path: Path) -> None:
    run_path = tmp_path / "run"
    _init(run_path, "A", "B")
    statuses = _write_statuses(
        tmp_path / "round1.json",
        [
            {"testMatrixId": "A", "state": "FINISHED", "outcomeSummary": "SUCCESS"},
            {"testMatrixId": "B", "state": "FINISHED", "outcomeSummary": "FAILURE"},
            {"testMatrixId": "retried-shard", "state": "FINISHED", "outcomeSummary": "FAILURE"},
        ],
    )

    merged = runner.invoke(cli.app, ["merge", "--run-path", str(run_path), "--statuses", str(statuses)])
    assert merged.exit_code == 0, merged.output
    assert "updated 2" in merged.output
    assert "ignored 1" in merged.output

    failed = runner.invoke(cli.app, ["validate", "--run-path", str(run_path)])
    assert failed.exit_code == 1
    assert "B" in failed.output

    ignored = runner.invoke(cli.app, ["validate", "--run-path", str(run_path), "--ignore-failed"])
    assert ignored.exit_code == 0
    verdict = json.loads((run_path / "verdict.json").read_text(encoding="utf-8"))
    assert verdict["verdict"] == "failed"
    assert verdict["failed_ids"] == ["B"]
    assert verdict["exit_code"] == 0


def test_validate_canceled_exit_code(tmp_path: Path) -> None:
    run_path = tmp_path / "run"
    _init(run_path, "A")
    statuses = _write_statuses(tmp_path / "round.json", [{"testMatrixId": "A", "state": "CANCELLED"}])
    runner.invoke(cli.app, ["merge", "--run-path", str(run_path), "--statuses", str(statuses)])

    result = runner.invoke(cli.app, ["validate", "--run-path", str(run_path), "--ignore-failed"])

    assert result.exit_code == 19


def test_validate_unfinished_batch(tmp_path: Path) -> None:
    run_path = tmp_path / "run"
    _init(run_path, "A")

    result = runner.invoke(cli.app, ["validate", "--run-path", str(run_path)])

    assert result.exit_code == 10


def test_validate_missing_run_path(tmp_path: Path) -> None:
    result = runner.invoke(cli.app, ["validate", "--run-path", str(tmp_path / "nowhere")])

    assert result.exit_code == 2
    assert any(e["event"] == "matrix_map_load_failed" for e in _log_events(tmp_path))


def test_poll_requires_project(tmp_path: Path) -> None:
    run_path = tmp_path / "run"
    _init(run_path, "A")

    result = runner.invoke(cli.app, ["poll", "--run-path", str(run_path)])

    assert result.exit_code == 2


def test_poll_until_terminal(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    run_path = tmp_path / "run"
    _init(run_path, "A", "B")
    monkeypatch.setenv("TESTING_PROJECT_ID", "proj")

    rounds = {
        "A": ["RUNNING", "FINISHED"],
        "B": ["FINISHED"],
    }
    calls: list = []
    policies: list = []

    def _fake_fetch(*, matrix_id: str, policy, **_kwargs) -> FetchResult:
        calls.append(matrix_id)
        policies.append(policy)
        if matrix_id == "B" and len(calls) == 2:
            return FetchResult(matrix_id="B", status="error", message="boom", matrix=None, error_type="Timeout")
        state = rounds[matrix_id].pop(0) if len(rounds[matrix_id]) > 1 else rounds[matrix_id][0]
        outcome = "success" if state == "FINISHED" else None
        return FetchResult(
            matrix_id=matrix_id,
            status="ok",
            message="ok",
            matrix=RemoteMatrixStatus(matrix_id=matrix_id, state=state, outcome=outcome),
        )

    monkeypatch.setattr(cli, "fetch_matrix_status", _fake_fetch)
    monkeypatch.setattr(cli.time, "sleep", lambda *_: None)

    result = runner.invoke(cli.app, ["poll", "--run-path", str(run_path), "--max-rounds", "5", "--interval", "0"])

    assert result.exit_code == 0, result.output
    # round 1: A running, B fails to fetch; round 2: both finish; round 3 not needed
    assert calls == ["A", "B", "A", "B"]
    assert {(p.max_rounds, p.interval_s) for p in policies} == {(5, 0.0)}
    matrix_map = load_matrix_map(run_path)
    assert {m.state for m in matrix_map.map.values()} == {"FINISHED"}
    assert "FINISHED=2" in result.output
    assert any(e["event"] == "matrix_fetch_failed" for e in _log_events(tmp_path))

    validated = runner.invoke(cli.app, ["validate", "--run-path", str(run_path)])
    assert validated.exit_code == 0


def test_moved_run_path_is_used_for_merge_and_validate(tmp_path: Path) -> None:
    old_path = tmp_path / "old"
    _init(old_path, "A")
    new_path = tmp_path / "new"
    shutil.move(str(old_path), str(new_path))
    statuses = _write_statuses(
        tmp_path / "round.json", [{"testMatrixId": "A", "state": "FINISHED", "outcomeSummary": "SUCCESS"}]
    )

    merged = runner.invoke(cli.app, ["merge", "--run-path", str(new_path), "--statuses", str(statuses)])
    assert merged.exit_code == 0, merged.output

    validated = runner.invoke(cli.app, ["validate", "--run-path", str(new_path)])

    assert validated.exit_code == 0, validated.output
    assert not old_path.exists()
    assert (new_path / "verdict.json").exists()
    assert load_matrix_map(new_path).map["A"].state == "FINISHED"


def test_invalid_config_exits_with_usage_error(tmp_path: Path) -> None:
    cfg = tmp_path / "config.yaml"
    cfg.write_text("poll:\n  max_rounds: notanint\n", encoding="utf-8")

    result = runner.invoke(cli.app, ["--config", str(cfg), "validate", "--run-path", str(tmp_path / "run")])

    assert result.exit_code == 2
    assert "Cannot load configuration" in result.output
