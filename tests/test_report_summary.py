from __future__ import annotations

import json
from datetime import datetime, timezone
from pathlib import Path

from matrixverdict.matrix import MatrixMap, SavedMatrix, evaluate
from matrixverdict.report.summary import build_summary, format_verdict, write_summary_artifacts


def _batch(run_path: Path) -> MatrixMap:
    return MatrixMap(
        {
            "a": SavedMatrix(matrix_id="a", state="FINISHED", outcome="success"),
            "b": SavedMatrix(
                matrix_id="b", state="FINISHED", outcome="failure", web_link="https://console/results/b"
            ),
        },
        run_path=str(run_path),
    )


def test_build_summary_for_failed_batch(tmp_path: Path) -> None:
    matrix_map = _batch(tmp_path)

    summary = build_summary(matrix_map, evaluate(matrix_map))

    assert summary.kind == "failed"
    assert summary.exit_code == 1
    assert summary.failed_ids == ["b"]
    assert summary.state_counts == {"FINISHED": 2}
    assert summary.matrix_count == 2
    assert "https://console/results/b" in summary.message


def test_ignored_failures_still_listed(tmp_path: Path) -> None:
    matrix_map = _batch(tmp_path)

    verdict = evaluate(matrix_map, should_ignore=True)
    message = format_verdict(verdict)

    assert verdict.exit_code == 0
    assert "b: failure" in message
    assert "ignored" in message


def test_success_message() -> None:
    matrix_map = MatrixMap({"a": SavedMatrix(matrix_id="a", state="FINISHED", outcome="success")}, run_path="r")

    assert format_verdict(evaluate(matrix_map)) == "All matrices finished successfully."


def test_write_summary_artifacts(tmp_path: Path) -> None:
    matrix_map = _batch(tmp_path / "run")
    summary = build_summary(matrix_map, evaluate(matrix_map))

    paths = write_summary_artifacts(
        matrix_map=matrix_map, summary=summary, generated_at=datetime(2025, 3, 1, tzinfo=timezone.utc)
    )

    payload = json.loads(paths["json"].read_text(encoding="utf-8"))
    assert payload["verdict"] == "failed"
    assert payload["exit_code"] == 1
    assert payload["failed_ids"] == ["b"]
    assert [m["id"] for m in payload["matrices"]] == ["a", "b"]

    md = paths["markdown"].read_text(encoding="utf-8")
    assert "Verdict: **failed**" in md
    assert "b | FINISHED | failure" in md


def test_markdown_table_escapes_pipes_and_newlines(tmp_path: Path) -> None:
    matrix_map = MatrixMap(
        {
            "a": SavedMatrix(
                matrix_id="a", state="FINISHED", outcome="failure", outcome_details="2 failed | 1 flaky\nsee logs"
            ),
        },
        run_path=str(tmp_path),
    )
    summary = build_summary(matrix_map, evaluate(matrix_map))

    paths = write_summary_artifacts(
        matrix_map=matrix_map, summary=summary, generated_at=datetime(2025, 3, 1, tzinfo=timezone.utc)
    )

    rows = [line for line in paths["markdown"].read_text(encoding="utf-8").splitlines() if line.startswith("a |")]
    assert rows == ["a | FINISHED | failure | 2 failed \\| 1 flaky see logs"]
