from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime
from typing import TYPE_CHECKING, Iterable, List, Optional

from matrixverdict.errors import (
    FailedMatricesError,
    IncompatibleTestDimensionError,
    InfrastructureError,
    MatrixCanceledError,
    MatrixError,
    UnexpectedMatrixStateError,
    exit_code_for,
)
from matrixverdict.matrix.matrix_map import MatrixMap

if TYPE_CHECKING:
    from matrixverdict.sources.status_batch import RemoteMatrixStatus

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class MergeResult:
    updated_entries: int
    ignored_ids: List[str]


@dataclass(frozen=True)
class Verdict:
    """Outcome of validating a batch: success when `error` is None."""

    error: Optional[MatrixError] = None

    @property
    def ok(self) -> bool:
        return self.error is None

    @property
    def kind(self) -> str:
        return "ok" if self.error is None else self.error.kind

    @property
    def exit_code(self) -> int:
        return exit_code_for(self.error)


def update_matrix_map(
    statuses: Iterable["RemoteMatrixStatus"],
    matrix_map: MatrixMap,
    *,
    now_utc: Optional[datetime] = None,
) -> MergeResult:
    """Merge one batch of polled statuses into `matrix_map`.

    Statuses for ids outside the batch (e.g. retried shards) are skipped and
    reported in `ignored_ids`.
    """

    updated_entries = 0
    ignored_ids: List[str] = []

    for status in statuses:
        current = matrix_map.map.get(status.matrix_id)
        if current is None:
            logger.debug("ignoring status for untracked matrix %s", status.matrix_id)
            ignored_ids.append(status.matrix_id)
            continue

        updated = current.update_with_status(status, now_utc=now_utc)
        if updated is not current:
            matrix_map.update(status.matrix_id, updated)
            updated_entries += 1

    return MergeResult(updated_entries=updated_entries, ignored_ids=ignored_ids)


def is_all_successful(matrix_map: MatrixMap) -> bool:
    return not any(m.is_failed() for m in matrix_map.map.values())


def evaluate(matrix_map: MatrixMap, should_ignore: bool = False) -> Verdict:
    """Classify the batch; the first matching rule wins.

    1. canceled by user           -> MatrixCanceledError
    2. infrastructure failure     -> InfrastructureError
    3. incompatible dimensions    -> IncompatibleTestDimensionError
    4. any state other than FINISHED -> UnexpectedMatrixStateError
    5. failed outcomes            -> FailedMatricesError (ignore_failed=should_ignore)

    Within a rule the representative matrix is the first one in submission order.
    """

    matrices = list(matrix_map.map.values())

    canceled = next((m for m in matrices if m.canceled_by_user()), None)
    if canceled is not None:
        return Verdict(MatrixCanceledError(canceled.outcome_details or ""))

    infra = next((m for m in matrices if m.infrastructure_fail()), None)
    if infra is not None:
        return Verdict(InfrastructureError(infra.outcome_details or ""))

    incompatible = next((m for m in matrices if m.incompatible_fail()), None)
    if incompatible is not None:
        return Verdict(IncompatibleTestDimensionError(incompatible.outcome_details or ""))

    unfinished = next((m for m in matrices if m.state != "FINISHED"), None)
    if unfinished is not None:
        return Verdict(UnexpectedMatrixStateError(unfinished))

    failed = [m for m in matrices if m.is_failed()]
    if failed:
        return Verdict(FailedMatricesError(failed, ignore_failed=should_ignore))

    return Verdict()


def validate(matrix_map: MatrixMap, should_ignore: bool = False) -> None:
    """Raise the taxonomy error for the batch, or return normally on success.

    Raises:
        MatrixCanceledError: at least one matrix was canceled by the user.
        InfrastructureError: at least one matrix hit a test infrastructure error.
        IncompatibleTestDimensionError: at least one matrix used an unsupported
            device/OS/API combination.
        UnexpectedMatrixStateError: at least one matrix is not FINISHED.
        FailedMatricesError: at least one matrix has failing tests; its
            `ignore_failed` flag carries `should_ignore`.
    """

    verdict = evaluate(matrix_map, should_ignore=should_ignore)
    if verdict.error is not None:
        raise verdict.error
