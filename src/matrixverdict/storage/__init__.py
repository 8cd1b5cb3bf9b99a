"""Persistence of the tracked batch inside its run path."""

from matrixverdict.storage.matrix_store import (
    MatrixMapFile,
    default_matrix_map_path,
    load_matrix_map,
    save_matrix_map,
)

__all__ = [
    "MatrixMapFile",
    "default_matrix_map_path",
    "load_matrix_map",
    "save_matrix_map",
]
