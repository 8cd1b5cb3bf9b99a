from __future__ import annotations

from typing import TYPE_CHECKING, List, Optional, Sequence

if TYPE_CHECKING:
    from matrixverdict.matrix.saved_matrix import SavedMatrix


class MatrixError(Exception):
    """Base class of the verdict taxonomy.

    Every subclass carries a string `kind` tag that callers can switch on and
    the process exit code the CLI uses for it.
    """

    kind: str = "error"
    exit_code: int = 1


class MatrixCanceledError(MatrixError):
    kind = "canceled"
    exit_code = 19

    def __init__(self, details: str = "") -> None:
        super().__init__(f"matrix canceled by user: {details}" if details else "matrix canceled by user")
        self.details = details


class InfrastructureError(MatrixError):
    kind = "infrastructure"
    exit_code = 20

    def __init__(self, details: str = "") -> None:
        super().__init__(
            f"test infrastructure error: {details}" if details else "test infrastructure error"
        )
        self.details = details


class IncompatibleTestDimensionError(MatrixError):
    """The selected device/OS/API combination is not supported by the service."""

    kind = "incompatible"
    exit_code = 18

    def __init__(self, details: str = "") -> None:
        super().__init__(
            f"incompatible test dimensions: {details}" if details else "incompatible test dimensions"
        )
        self.details = details


class UnexpectedMatrixStateError(MatrixError):
    kind = "unexpected_state"
    exit_code = 10

    def __init__(self, matrix: "SavedMatrix") -> None:
        super().__init__(f"matrix {matrix.matrix_id} ended in unexpected state {matrix.state}")
        self.matrix = matrix


class FailedMatricesError(MatrixError):
    kind = "failed"

    def __init__(self, matrices: Sequence["SavedMatrix"], ignore_failed: bool = False) -> None:
        ids = ", ".join(m.matrix_id for m in matrices)
        super().__init__(f"{len(matrices)} matrix(es) failed: {ids}")
        self.matrices: List["SavedMatrix"] = list(matrices)
        self.ignore_failed = ignore_failed

    @property
    def exit_code(self) -> int:  # type: ignore[override]
        return 0 if self.ignore_failed else 1


def exit_code_for(error: Optional[MatrixError]) -> int:
    """Process exit code for a verdict (None means success)."""

    if error is None:
        return 0
    return error.exit_code
