from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Dict, Optional

import requests

from matrixverdict.poll_policy import PollPolicy, call_with_backoff
from matrixverdict.sources.status_batch import RemoteMatrixStatus, parse_test_matrix

logger = logging.getLogger(__name__)

DEFAULT_BASE_URL = "https://testing.googleapis.com/v1"


@dataclass(frozen=True)
class FetchResult:
    matrix_id: str
    status: str  # ok/error/missing
    message: str
    matrix: Optional[RemoteMatrixStatus]
    error_type: Optional[str] = None
    error_message: Optional[str] = None


class RetryableHttpStatus(Exception):
    def __init__(self, status_code: int) -> None:
        super().__init__(f"retryable http status: {status_code}")
        self.status_code = status_code


def _should_retry(exc: Exception) -> bool:
    if isinstance(exc, RetryableHttpStatus):
        return True
    if isinstance(exc, (requests.Timeout, requests.ConnectionError)):
        return True
    return False


def fetch_matrix_status(
    *,
    matrix_id: str,
    project_id: str,
    api_token: Optional[str],
    base_url: str = DEFAULT_BASE_URL,
    policy: Optional[PollPolicy] = None,
) -> FetchResult:
    """Fetch the current TestMatrix for one matrix id.

    Endpoint: {base_url}/projects/{project_id}/testMatrices/{matrix_id}

    Never raises for transport problems: failures come back as status="error"
    with error_type/error_message set. Timeouts, connection errors and HTTP
    429/5xx are retried under the policy's backoff (defaults when omitted).
    """

    policy = policy or PollPolicy()
    url = f"{base_url.rstrip('/')}/projects/{project_id}/testMatrices/{matrix_id}"
    headers: Dict[str, str] = {"Accept": "application/json"}
    if api_token:
        headers["Authorization"] = f"Bearer {api_token}"

    retryable_status = {429, 500, 502, 503, 504}

    def _do_request() -> requests.Response:
        timeout = (min(5.0, policy.request_timeout_s), policy.request_timeout_s)
        resp = requests.get(url, headers=headers, timeout=timeout)

        if resp.status_code == 404:
            return resp

        if resp.status_code in retryable_status:
            raise RetryableHttpStatus(resp.status_code)

        resp.raise_for_status()
        return resp

    def _on_retry(attempt: int, exc: Exception, delay_s: float) -> None:
        logger.warning(
            "poll of matrix %s failed (attempt %d): %s; retrying in %.1fs", matrix_id, attempt, exc, delay_s
        )

    try:
        resp = call_with_backoff(
            _do_request,
            policy=policy,
            should_retry=_should_retry,
            on_retry=_on_retry,
        )
    except Exception as exc:
        return FetchResult(
            matrix_id=matrix_id,
            status="error",
            message=f"matrix request failed: {type(exc).__name__}: {exc}",
            matrix=None,
            error_type=type(exc).__name__,
            error_message=str(exc),
        )

    if resp.status_code == 404:
        return FetchResult(matrix_id=matrix_id, status="missing", message=f"matrix not found: {matrix_id}", matrix=None)

    try:
        payload = resp.json()
        matrix = parse_test_matrix(payload)
    except ValueError as exc:
        return FetchResult(
            matrix_id=matrix_id,
            status="error",
            message=f"invalid matrix payload: {exc}",
            matrix=None,
            error_type=type(exc).__name__,
            error_message=str(exc),
        )

    return FetchResult(matrix_id=matrix_id, status="ok", message="ok", matrix=matrix)
