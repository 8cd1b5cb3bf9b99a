from __future__ import annotations

from datetime import datetime, timezone
from typing import TYPE_CHECKING, Any, Dict, Optional

from pydantic import BaseModel, ConfigDict, Field

from matrixverdict.matrix.state import (
    ABORTED_BY_USER_MESSAGE,
    FAILED_OUTCOMES,
    INCOMPATIBLE_DETAILS_MESSAGES,
    INCOMPATIBLE_STATES,
    INFRASTRUCTURE_FAILURE_MESSAGE,
    MatrixState,
    Outcome,
    is_terminal,
)

if TYPE_CHECKING:
    from matrixverdict.sources.status_batch import RemoteMatrixStatus


class SavedMatrix(BaseModel):
    """Last known state of one remote test matrix.

    Values are frozen: a fresher status produces a new SavedMatrix through
    `update_with_status`, the old value is never mutated.
    """

    model_config = ConfigDict(frozen=True)

    matrix_id: str
    state: MatrixState = Field(default="PENDING")
    outcome: Optional[Outcome] = Field(default=None)
    outcome_details: Optional[str] = Field(default=None)

    web_link: Optional[str] = Field(default=None)
    gcs_path: Optional[str] = Field(default=None)
    invalid_matrix_details: Optional[str] = Field(default=None)
    billable_minutes: Optional[int] = Field(default=None)

    # ISO timestamp of the last merge that changed this record.
    updated_at: Optional[str] = Field(default=None)

    @classmethod
    def pending(cls, matrix_id: str) -> "SavedMatrix":
        return cls(matrix_id=matrix_id, state="PENDING")

    def is_terminal(self) -> bool:
        return is_terminal(self.state)

    def is_failed(self) -> bool:
        return self.outcome in FAILED_OUTCOMES

    def canceled_by_user(self) -> bool:
        return self.state == "CANCELLED" or self.outcome_details == ABORTED_BY_USER_MESSAGE

    def infrastructure_fail(self) -> bool:
        return self.state == "ERROR" or self.outcome_details == INFRASTRUCTURE_FAILURE_MESSAGE

    def incompatible_fail(self) -> bool:
        if self.state in INCOMPATIBLE_STATES:
            return True
        return self.outcome == "skipped" and self.outcome_details in INCOMPATIBLE_DETAILS_MESSAGES

    def update_with_status(
        self,
        status: "RemoteMatrixStatus",
        *,
        now_utc: Optional[datetime] = None,
    ) -> "SavedMatrix":
        """Return a copy reflecting `status`.

        Merge rules:
        - a terminal state is never replaced by a non-terminal one;
        - missing/empty incoming fields keep the recorded value;
        - updated_at only moves when some other field actually changed, so
          merging the same status twice gives an equal record.
        """

        if status.matrix_id != self.matrix_id:
            raise ValueError(f"status for {status.matrix_id} cannot update matrix {self.matrix_id}")

        state = self.state
        if not (self.is_terminal() and not is_terminal(status.state)):
            state = status.state

        changes: Dict[str, Any] = {
            "state": state,
            "outcome": status.outcome or self.outcome,
            "outcome_details": status.outcome_details or self.outcome_details,
            "web_link": status.web_link or self.web_link,
            "gcs_path": status.gcs_path or self.gcs_path,
            "invalid_matrix_details": status.invalid_matrix_details or self.invalid_matrix_details,
            "billable_minutes": (
                status.billable_minutes if status.billable_minutes is not None else self.billable_minutes
            ),
        }

        if all(getattr(self, k) == v for k, v in changes.items()):
            return self

        ts = now_utc or datetime.now(timezone.utc)
        changes["updated_at"] = ts.isoformat()
        return self.model_copy(update=changes)
