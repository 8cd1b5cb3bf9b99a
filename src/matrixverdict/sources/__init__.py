"""Status sources: the test service client and status batch files."""

from matrixverdict.sources.status_batch import RemoteMatrixStatus, load_status_batch, parse_test_matrix
from matrixverdict.sources.testing_api import FetchResult, fetch_matrix_status

__all__ = [
    "FetchResult",
    "RemoteMatrixStatus",
    "fetch_matrix_status",
    "load_status_batch",
    "parse_test_matrix",
]
