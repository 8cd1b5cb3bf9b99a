"""Tracked matrix batch: records, the batch map and its merge/validate protocol."""

from matrixverdict.matrix.matrix_map import MatrixMap
from matrixverdict.matrix.saved_matrix import SavedMatrix
from matrixverdict.matrix.validation import (
    MergeResult,
    Verdict,
    evaluate,
    is_all_successful,
    update_matrix_map,
    validate,
)

__all__ = [
    "MatrixMap",
    "MergeResult",
    "SavedMatrix",
    "Verdict",
    "evaluate",
    "is_all_successful",
    "update_matrix_map",
    "validate",
]
