from __future__ import annotations

import time
from datetime import datetime, timezone
from pathlib import Path
from typing import List, Optional

import typer

from matrixverdict.config import Settings, load_settings
from matrixverdict.logging_utils import (
    JsonlLogger,
    RunContext,
    count_states,
    default_log_path,
    new_run_context,
    run_summary_event,
)
from matrixverdict.matrix import MatrixMap, MergeResult, evaluate, update_matrix_map
from matrixverdict.poll_policy import PollPolicy
from matrixverdict.report import build_summary, write_summary_artifacts
from matrixverdict.sources import RemoteMatrixStatus, fetch_matrix_status, load_status_batch
from matrixverdict.storage import load_matrix_map, save_matrix_map

app = typer.Typer(add_completion=False, help="Track remote test matrices and compute the run verdict")


@app.callback()
def main(
    ctx: typer.Context,
    config: Optional[Path] = typer.Option(
        None,
        "--config",
        exists=True,
        dir_okay=False,
        file_okay=True,
        readable=True,
        help="Path to YAML config (optional)",
    ),
) -> None:
    """Load settings and store them in Typer context."""

    try:
        settings = load_settings(config)
    except (FileNotFoundError, ValueError) as exc:
        typer.echo(f"Cannot load configuration: {exc}", err=True)
        raise typer.Exit(code=2)

    settings.paths.logs_dir.mkdir(parents=True, exist_ok=True)
    ctx.obj = {"settings": settings}


def _start(settings: Settings, command: str, **fields: object) -> tuple[RunContext, JsonlLogger]:
    run_ctx = new_run_context()
    logger = JsonlLogger(default_log_path(settings.paths.logs_dir, now_utc=run_ctx.started_at_utc))
    event = {"event": "command_start", "command": command, "run_id": run_ctx.run_id}
    event.update(fields)
    logger.log(event)
    return run_ctx, logger


def _load_or_exit(logger: JsonlLogger, run_ctx: RunContext, run_path: Path) -> MatrixMap:
    try:
        return load_matrix_map(run_path)
    except (FileNotFoundError, ValueError) as exc:
        logger.log(
            {
                "event": "matrix_map_load_failed",
                "run_id": run_ctx.run_id,
                "run_path": str(run_path),
                "error_type": type(exc).__name__,
                "error_message": str(exc),
            }
        )
        typer.echo(f"Cannot load matrices from {run_path}: {exc}", err=True)
        raise typer.Exit(code=2)


def _merge_and_save(
    *,
    logger: JsonlLogger,
    run_id: str,
    matrix_map: MatrixMap,
    statuses: List[RemoteMatrixStatus],
) -> MergeResult:
    now_utc = datetime.now(timezone.utc)
    merge_result = update_matrix_map(statuses, matrix_map, now_utc=now_utc)
    path = save_matrix_map(matrix_map, updated_at=now_utc.isoformat())

    event = {
        "event": "statuses_merged",
        "run_id": run_id,
        "path": str(path),
        "statuses": len(statuses),
        "updated_entries": merge_result.updated_entries,
        "state_counts": count_states(matrix_map.map),
    }
    if merge_result.ignored_ids:
        event["ignored_ids"] = merge_result.ignored_ids
    logger.log(event)

    return merge_result


@app.command()
def init(
    ctx: typer.Context,
    matrix_ids: List[str] = typer.Option(..., "--matrix-id", help="Submitted matrix id (repeatable)"),
    run_path: Optional[Path] = typer.Option(
        None, "--run-path", help="Directory for this batch. Defaults to results_dir/<UTC timestamp>."
    ),
) -> None:
    """Start tracking a batch of submitted matrices."""

    settings: Settings = ctx.obj["settings"]
    run_ctx, logger = _start(settings, "init", matrix_ids=matrix_ids)

    if run_path is None:
        run_path = settings.paths.results_dir / run_ctx.started_at_utc.strftime("%Y-%m-%d_%H-%M-%S")

    try:
        matrix_map = MatrixMap.from_ids(matrix_ids, run_path=str(run_path))
    except ValueError as exc:
        typer.echo(str(exc), err=True)
        raise typer.Exit(code=2)

    path = save_matrix_map(matrix_map, updated_at=run_ctx.started_at_utc.isoformat())
    logger.log({"event": "matrix_map_created", "run_id": run_ctx.run_id, "path": str(path), "matrices": len(matrix_map)})
    logger.log(run_summary_event(ctx=run_ctx, state_counts=count_states(matrix_map.map)))

    typer.echo(str(run_path))


@app.command()
def merge(
    ctx: typer.Context,
    run_path: Path = typer.Option(..., "--run-path", help="Directory of the tracked batch"),
    statuses_file: Path = typer.Option(
        ..., "--statuses", exists=True, dir_okay=False, readable=True, help="JSON file with polled test matrices"
    ),
) -> None:
    """Merge one poll round read from a JSON file."""

    settings: Settings = ctx.obj["settings"]
    run_ctx, logger = _start(settings, "merge", run_path=str(run_path), statuses_file=str(statuses_file))

    matrix_map = _load_or_exit(logger, run_ctx, run_path)

    try:
        statuses = load_status_batch(statuses_file)
    except ValueError as exc:
        typer.echo(f"Invalid status batch {statuses_file}: {exc}", err=True)
        raise typer.Exit(code=2)

    result = _merge_and_save(logger=logger, run_id=run_ctx.run_id, matrix_map=matrix_map, statuses=statuses)
    logger.log(run_summary_event(ctx=run_ctx, state_counts=count_states(matrix_map.map)))

    typer.echo(f"updated {result.updated_entries} matrix(es), ignored {len(result.ignored_ids)} status(es)")


@app.command()
def poll(
    ctx: typer.Context,
    run_path: Path = typer.Option(..., "--run-path", help="Directory of the tracked batch"),
    max_rounds: Optional[int] = typer.Option(None, "--max-rounds", help="Override poll.max_rounds"),
    interval_s: Optional[float] = typer.Option(None, "--interval", help="Override poll.interval_s (seconds)"),
) -> None:
    """Poll the test service until every matrix is terminal or rounds run out."""

    settings: Settings = ctx.obj["settings"]
    policy = PollPolicy.from_config(settings.poll, interval_s=interval_s, max_rounds=max_rounds)
    run_ctx, logger = _start(
        settings, "poll", run_path=str(run_path), max_rounds=policy.max_rounds, interval_s=policy.interval_s
    )

    if not settings.project_id:
        typer.echo("project_id is not configured (TESTING_PROJECT_ID or config file)", err=True)
        raise typer.Exit(code=2)

    matrix_map = _load_or_exit(logger, run_ctx, run_path)

    for round_no in range(1, policy.max_rounds + 1):
        pending = [m.matrix_id for m in matrix_map.map.values() if not m.is_terminal()]
        if not pending:
            break

        statuses: List[RemoteMatrixStatus] = []
        for matrix_id in pending:
            fetched = fetch_matrix_status(
                matrix_id=matrix_id,
                project_id=settings.project_id,
                api_token=settings.api_token,
                base_url=settings.api_base_url,
                policy=policy,
            )
            if fetched.matrix is not None:
                statuses.append(fetched.matrix)
            else:
                logger.log(
                    {
                        "event": "matrix_fetch_failed",
                        "run_id": run_ctx.run_id,
                        "round": round_no,
                        "matrix_id": matrix_id,
                        "status": fetched.status,
                        "message": fetched.message,
                        "error_type": fetched.error_type,
                    }
                )

        _merge_and_save(logger=logger, run_id=run_ctx.run_id, matrix_map=matrix_map, statuses=statuses)

        if round_no < policy.max_rounds and any(not m.is_terminal() for m in matrix_map.map.values()):
            time.sleep(policy.interval_s)

    state_counts = count_states(matrix_map.map)
    logger.log(run_summary_event(ctx=run_ctx, state_counts=state_counts))
    typer.echo(", ".join(f"{state}={count}" for state, count in state_counts.items()))


@app.command()
def validate(
    ctx: typer.Context,
    run_path: Path = typer.Option(..., "--run-path", help="Directory of the tracked batch"),
    ignore_failed: bool = typer.Option(
        False, "--ignore-failed", help="Exit with 0 when the only problem is failing tests"
    ),
) -> None:
    """Compute the verdict, write verdict.json/verdict.md and exit with its code."""

    settings: Settings = ctx.obj["settings"]
    should_ignore = ignore_failed or settings.ignore_failed
    run_ctx, logger = _start(settings, "validate", run_path=str(run_path), ignore_failed=should_ignore)

    matrix_map = _load_or_exit(logger, run_ctx, run_path)

    verdict = evaluate(matrix_map, should_ignore=should_ignore)
    summary = build_summary(matrix_map, verdict)
    artifacts = write_summary_artifacts(
        matrix_map=matrix_map, summary=summary, generated_at=datetime.now(timezone.utc)
    )

    logger.log(
        {
            "event": "verdict",
            "run_id": run_ctx.run_id,
            "verdict": summary.kind,
            "exit_code": summary.exit_code,
            "failed_ids": summary.failed_ids,
            "json_path": str(artifacts["json"]),
            "md_path": str(artifacts["markdown"]),
        }
    )
    logger.log(run_summary_event(ctx=run_ctx, state_counts=summary.state_counts))

    typer.echo(summary.message, err=not verdict.ok)
    if summary.exit_code != 0:
        raise typer.Exit(code=summary.exit_code)


if __name__ == "__main__":
    app()
