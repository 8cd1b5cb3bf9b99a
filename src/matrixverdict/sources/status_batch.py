from __future__ import annotations

import json
from pathlib import Path
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field, ValidationError

from matrixverdict.matrix.state import MatrixState, Outcome, normalize_outcome, normalize_state


class RemoteMatrixStatus(BaseModel):
    """One polled status record for one matrix.

    Not every poll round covers every tracked matrix, and most fields are
    optional because the service fills them in as the matrix progresses.
    """

    matrix_id: str
    state: MatrixState = Field(default="TEST_STATE_UNSPECIFIED")
    outcome: Optional[Outcome] = Field(default=None)
    outcome_details: Optional[str] = Field(default=None)

    web_link: Optional[str] = Field(default=None)
    gcs_path: Optional[str] = Field(default=None)
    invalid_matrix_details: Optional[str] = Field(default=None)
    billable_minutes: Optional[int] = Field(default=None)


def parse_test_matrix(payload: Dict[str, Any]) -> RemoteMatrixStatus:
    """Convert a TestMatrix JSON object into a RemoteMatrixStatus.

    Recognized keys:
      - testMatrixId (required)
      - state, outcomeSummary, invalidMatrixDetails
      - resultStorage.resultsUrl, resultStorage.googleCloudStorage.gcsPath
      - outcomeDetails, billableMinutes (tool-results enrichment, optional)

    Unknown states are normalized to TEST_STATE_UNSPECIFIED.
    """

    if not isinstance(payload, dict):
        raise ValueError("test matrix must be a JSON object")

    matrix_id = payload.get("testMatrixId")
    if not isinstance(matrix_id, str) or not matrix_id:
        raise ValueError("test matrix is missing testMatrixId")

    storage = payload.get("resultStorage")
    if not isinstance(storage, dict):
        storage = {}
    gcs = storage.get("googleCloudStorage")
    if not isinstance(gcs, dict):
        gcs = {}

    invalid_details = payload.get("invalidMatrixDetails")
    if invalid_details == "INVALID_MATRIX_DETAILS_UNSPECIFIED":
        invalid_details = None

    try:
        return RemoteMatrixStatus(
            matrix_id=matrix_id,
            state=normalize_state(payload.get("state")),
            outcome=normalize_outcome(payload.get("outcomeSummary")),
            outcome_details=payload.get("outcomeDetails") or None,
            web_link=storage.get("resultsUrl"),
            gcs_path=gcs.get("gcsPath"),
            invalid_matrix_details=invalid_details,
            billable_minutes=payload.get("billableMinutes"),
        )
    except ValidationError as exc:
        raise ValueError(f"Invalid test matrix {matrix_id}: {exc}") from exc


def load_status_batch(path: Path) -> List[RemoteMatrixStatus]:
    """Load a poll round from a JSON file.

    The file holds either a list of TestMatrix objects or a mapping with a
    `testMatrices` list (the shape of the service's list response).
    """

    if not path.exists():
        raise FileNotFoundError(str(path))

    raw = path.read_text(encoding="utf-8")
    parsed = json.loads(raw) if raw.strip() else []

    if isinstance(parsed, dict):
        parsed = parsed.get("testMatrices", [])
    if not isinstance(parsed, list):
        raise ValueError("status batch must be a JSON list of test matrices")

    return [parse_test_matrix(item) for item in parsed]
