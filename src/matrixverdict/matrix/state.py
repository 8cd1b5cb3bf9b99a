from __future__ import annotations

from typing import FrozenSet, Literal, Optional, get_args

MatrixState = Literal[
    "TEST_STATE_UNSPECIFIED",
    "VALIDATING",
    "PENDING",
    "RUNNING",
    "FINISHED",
    "ERROR",
    "UNSUPPORTED_ENVIRONMENT",
    "INCOMPATIBLE_ENVIRONMENT",
    "INCOMPATIBLE_ARCHITECTURE",
    "CANCELLED",
    "INVALID",
]

Outcome = Literal["success", "failure", "inconclusive", "skipped", "flaky"]

KNOWN_STATES: FrozenSet[str] = frozenset(get_args(MatrixState))
KNOWN_OUTCOMES: FrozenSet[str] = frozenset(get_args(Outcome))

# No further updates are expected once a matrix reaches one of these.
TERMINAL_STATES: FrozenSet[str] = frozenset(
    {
        "FINISHED",
        "ERROR",
        "UNSUPPORTED_ENVIRONMENT",
        "INCOMPATIBLE_ENVIRONMENT",
        "INCOMPATIBLE_ARCHITECTURE",
        "CANCELLED",
        "INVALID",
    }
)

INCOMPATIBLE_STATES: FrozenSet[str] = frozenset(
    {"UNSUPPORTED_ENVIRONMENT", "INCOMPATIBLE_ENVIRONMENT", "INCOMPATIBLE_ARCHITECTURE"}
)

FAILED_OUTCOMES: FrozenSet[str] = frozenset({"failure", "inconclusive", "skipped"})

ABORTED_BY_USER_MESSAGE = "Test run aborted by user"
INFRASTRUCTURE_FAILURE_MESSAGE = "Infrastructure failure"

INCOMPATIBLE_DETAILS_MESSAGES: FrozenSet[str] = frozenset(
    {
        "Incompatible device/OS combination",
        "App does not support the device architecture",
        "Incompatible API level for requested device",
        "App does not support the OS version",
    }
)


def normalize_state(raw: Optional[str]) -> MatrixState:
    """Map a state string reported by the service onto the known set.

    Unknown or missing values become TEST_STATE_UNSPECIFIED (non-terminal).
    """

    value = (raw or "").strip().upper()
    if value in KNOWN_STATES:
        return value  # type: ignore[return-value]
    return "TEST_STATE_UNSPECIFIED"


def normalize_outcome(raw: Optional[str]) -> Optional[Outcome]:
    value = (raw or "").strip().lower()
    if value in KNOWN_OUTCOMES:
        return value  # type: ignore[return-value]
    return None


def is_terminal(state: str) -> bool:
    return state in TERMINAL_STATES
