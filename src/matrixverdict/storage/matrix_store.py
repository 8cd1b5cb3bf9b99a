from __future__ import annotations

import json
import os
from pathlib import Path
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field, ValidationError

from matrixverdict.matrix.matrix_map import MatrixMap
from matrixverdict.matrix.saved_matrix import SavedMatrix

MATRIX_FILE_NAME = "matrix_ids.json"


class MatrixMapFile(BaseModel):
    version: int = Field(default=1)
    # Where the batch was created; informational, loading binds to the directory read from.
    run_path: str
    updated_at: Optional[str] = Field(default=None)

    # Submission order is preserved; validation picks representatives in this order.
    matrices: List[SavedMatrix] = Field(default_factory=list)


def default_matrix_map_path(run_path: Path) -> Path:
    return run_path / MATRIX_FILE_NAME


def load_matrix_map(run_path: Path) -> MatrixMap:
    """Load the tracked batch stored in `run_path`.

    The returned map is bound to `run_path` itself, not to the run_path recorded
    in the file, so a moved or copied run directory keeps writing in place.
    """

    path = default_matrix_map_path(run_path)
    if not path.exists():
        raise FileNotFoundError(str(path))

    raw = path.read_text(encoding="utf-8")
    parsed = json.loads(raw) if raw.strip() else {}
    if not isinstance(parsed, dict):
        raise ValueError("matrix file must be a JSON object at the top level")

    try:
        stored = MatrixMapFile.model_validate(parsed)
    except ValidationError as exc:
        raise ValueError(f"Invalid matrix file: {exc}") from exc

    matrices: Dict[str, SavedMatrix] = {}
    for saved in stored.matrices:
        if saved.matrix_id in matrices:
            raise ValueError(f"Duplicate matrix id in matrix file: {saved.matrix_id}")
        matrices[saved.matrix_id] = saved

    return MatrixMap(matrices, run_path=str(run_path))


def save_matrix_map(matrix_map: MatrixMap, *, updated_at: Optional[str] = None) -> Path:
    """Atomically write the batch into its run path as stable JSON.

    Uses a temp file + os.replace to avoid partial writes.
    """

    run_path = Path(matrix_map.run_path)
    run_path.mkdir(parents=True, exist_ok=True)
    path = default_matrix_map_path(run_path)

    stored = MatrixMapFile(
        run_path=matrix_map.run_path,
        updated_at=updated_at,
        matrices=list(matrix_map.map.values()),
    )
    payload: Dict[str, Any] = stored.model_dump(mode="python")
    content = json.dumps(payload, ensure_ascii=False, sort_keys=True, indent=2) + "\n"

    tmp_path = path.with_suffix(path.suffix + ".tmp")
    tmp_path.write_text(content, encoding="utf-8")
    os.replace(tmp_path, path)

    return path
