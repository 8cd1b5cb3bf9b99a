from __future__ import annotations

import json
from dataclasses import dataclass
from datetime import datetime
from pathlib import Path
from typing import Dict, List

from matrixverdict.errors import FailedMatricesError, UnexpectedMatrixStateError
from matrixverdict.logging_utils import count_states
from matrixverdict.matrix.matrix_map import MatrixMap
from matrixverdict.matrix.validation import Verdict


@dataclass(frozen=True)
class VerdictSummary:
    run_path: str
    kind: str  # ok/canceled/infrastructure/incompatible/unexpected_state/failed
    exit_code: int
    message: str
    state_counts: Dict[str, int]
    failed_ids: List[str]
    matrix_count: int


def format_verdict(verdict: Verdict) -> str:
    """One-paragraph console message for a verdict."""

    error = verdict.error
    if error is None:
        return "All matrices finished successfully."

    if isinstance(error, FailedMatricesError):
        lines = [str(error)]
        for matrix in error.matrices:
            link = f" ({matrix.web_link})" if matrix.web_link else ""
            lines.append(f"  - {matrix.matrix_id}: {matrix.outcome}{link}")
        if error.ignore_failed:
            lines.append("Failures ignored (--ignore-failed): exiting with success.")
        return "\n".join(lines)

    if isinstance(error, UnexpectedMatrixStateError) and error.matrix.invalid_matrix_details:
        return f"{error} ({error.matrix.invalid_matrix_details})"

    return str(error)


def build_summary(matrix_map: MatrixMap, verdict: Verdict) -> VerdictSummary:
    failed_ids = [m.matrix_id for m in matrix_map.map.values() if m.is_failed()]

    return VerdictSummary(
        run_path=matrix_map.run_path,
        kind=verdict.kind,
        exit_code=verdict.exit_code,
        message=format_verdict(verdict),
        state_counts=count_states(matrix_map.map),
        failed_ids=failed_ids,
        matrix_count=len(matrix_map),
    )


def write_summary_artifacts(
    *,
    matrix_map: MatrixMap,
    summary: VerdictSummary,
    generated_at: datetime,
) -> Dict[str, Path]:
    run_path = Path(matrix_map.run_path)
    run_path.mkdir(parents=True, exist_ok=True)

    json_path = run_path / "verdict.json"
    md_path = run_path / "verdict.md"

    payload: Dict[str, object] = {
        "generated_at": generated_at.isoformat(),
        "run_path": summary.run_path,
        "verdict": summary.kind,
        "exit_code": summary.exit_code,
        "message": summary.message,
        "matrix_count": summary.matrix_count,
        "state_counts": summary.state_counts,
        "failed_ids": summary.failed_ids,
        "matrices": [
            {
                "id": m.matrix_id,
                "state": m.state,
                "outcome": m.outcome,
                "outcome_details": m.outcome_details,
                "web_link": m.web_link,
            }
            for m in matrix_map.map.values()
        ],
    }
    json_path.write_text(json.dumps(payload, indent=2, ensure_ascii=False), encoding="utf-8")

    md_path.write_text(_render_markdown(matrix_map=matrix_map, summary=summary, generated_at=generated_at), encoding="utf-8")

    return {"json": json_path, "markdown": md_path}


def _render_markdown(*, matrix_map: MatrixMap, summary: VerdictSummary, generated_at: datetime) -> str:
    lines: List[str] = []
    lines.append("# Test Matrix Verdict")
    lines.append("")
    lines.append(f"Generated at {generated_at.isoformat()}")
    lines.append("")
    lines.append(f"Verdict: **{summary.kind}** (exit code {summary.exit_code})")
    lines.append("")

    headers = ["Matrix", "State", "Outcome", "Details"]
    lines.append(" | ".join(headers))
    lines.append(" | ".join(["---"] * len(headers)))

    for m in matrix_map.map.values():
        cells = [m.matrix_id, m.state, m.outcome or "-", m.outcome_details or ""]
        lines.append(" | ".join(_table_cell(c) for c in cells))

    return "\n".join(lines) + "\n"


def _table_cell(value: str) -> str:
    return " ".join(value.split()).replace("|", "\\|")
