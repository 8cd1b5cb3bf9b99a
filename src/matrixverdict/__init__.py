"""matrixverdict - track remote test matrices and turn them into one verdict.

This package merges polled matrix statuses (Firebase Test Lab style) into a
fixed batch, validates the batch against an ordered error taxonomy and maps
the result to a process exit code.
"""

__all__ = ["__version__"]

__version__ = "0.1.0"
