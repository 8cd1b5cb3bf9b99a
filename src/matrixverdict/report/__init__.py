"""Verdict reporting (console message, JSON and Markdown artifacts)."""

from matrixverdict.report.summary import VerdictSummary, build_summary, format_verdict, write_summary_artifacts

__all__ = ["VerdictSummary", "build_summary", "format_verdict", "write_summary_artifacts"]
