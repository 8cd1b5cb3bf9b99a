from __future__ import annotations

from types import MappingProxyType
from typing import Dict, Iterable, Mapping

from matrixverdict.matrix.saved_matrix import SavedMatrix


class MatrixMap:
    """All matrices of one submitted batch, keyed by matrix id.

    The key set is fixed at construction; `update` only replaces values.
    There is no locking: one driver at a time may call `update`.
    """

    def __init__(self, matrices: Mapping[str, SavedMatrix], run_path: str) -> None:
        for matrix_id, saved in matrices.items():
            if saved.matrix_id != matrix_id:
                raise ValueError(f"key {matrix_id} holds record for {saved.matrix_id}")

        self._matrices: Dict[str, SavedMatrix] = dict(matrices)
        self._run_path = run_path

    @classmethod
    def from_ids(cls, matrix_ids: Iterable[str], run_path: str) -> "MatrixMap":
        matrices: Dict[str, SavedMatrix] = {}
        for matrix_id in matrix_ids:
            if matrix_id in matrices:
                raise ValueError(f"Duplicate matrix id in batch: {matrix_id}")
            matrices[matrix_id] = SavedMatrix.pending(matrix_id)
        return cls(matrices, run_path)

    @property
    def run_path(self) -> str:
        return self._run_path

    @property
    def map(self) -> Mapping[str, SavedMatrix]:
        """Read-only live view of the tracked matrices."""

        return MappingProxyType(self._matrices)

    def update(self, matrix_id: str, saved_matrix: SavedMatrix) -> None:
        if matrix_id not in self._matrices:
            raise KeyError(matrix_id)
        if saved_matrix.matrix_id != matrix_id:
            raise ValueError(f"cannot store record for {saved_matrix.matrix_id} under {matrix_id}")
        self._matrices[matrix_id] = saved_matrix

    def __len__(self) -> int:
        return len(self._matrices)

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, MatrixMap):
            return NotImplemented
        return self._run_path == other._run_path and self._matrices == other._matrices

    def __repr__(self) -> str:
        return f"MatrixMap(run_path={self._run_path!r}, matrices={len(self._matrices)})"
