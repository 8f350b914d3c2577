"""CLI entrypoint (Typer).

- `codereview check <archive.zip>`: run one submission through the pipeline
  in-process and print the verdict
- `codereview serve`: start the API server
"""

from __future__ import annotations

import asyncio
import logging
from pathlib import Path
from typing import Optional

import typer

from codereview.config import Settings, get_settings
from codereview.database.store import Stores
from codereview.pipeline.artifacts import CHECKS_FILE, FEEDBACK_FILE, read_artifact
from codereview.pipeline.queue import JobQueue
from codereview.schemas import RunStatus


app = typer.Typer(help="Automated code review pipeline.")


def _configure_logging(verbose: bool) -> None:
    logging.basicConfig(
        level=logging.INFO if verbose else logging.WARNING,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )


async def _check(archive: Path, settings: Settings) -> int:
    stores = Stores.in_memory()
    queue = JobQueue(settings, stores)
    queue.start()
    try:
        submission = await queue.register_submission("cli", str(archive))
        enqueued = queue.enqueue(submission.id, "tests", submission.project_id)
        await queue.join()
    finally:
        await queue.stop()

    status = await queue.get_run_status(enqueued.run_id)
    run_id = enqueued.run_id
    typer.echo(f"Run {run_id}: {status.status.value if status else 'unknown'}")

    feedback = read_artifact(settings.artifacts_dir, run_id, FEEDBACK_FILE)
    if status is None or status.status != RunStatus.READY:
        error = feedback.get("error", {})
        typer.echo(f"Error: {error.get('type')}: {error.get('message')}", err=True)
        if error.get("suggestion"):
            typer.echo(f"Suggestion: {error['suggestion']}", err=True)
        return 1

    checks = read_artifact(settings.artifacts_dir, run_id, CHECKS_FILE)["staticCheck"]
    typer.echo(f"Verdict: {feedback['verdict']}")
    typer.echo(f"Score: {feedback['score']}/100")
    typer.echo(f"Tests: {checks['tests']['passed']} passed, {checks['tests']['failed']} failed")
    typer.echo(f"Lint findings: {len(checks['lint']['errors'])}")
    for line in feedback["requirements"]:
        typer.echo(f"  - {line}")
    typer.echo(f"Artifacts: {Path(settings.artifacts_dir) / run_id}")
    return 0


@app.command()
def check(
    archive: Path = typer.Argument(..., exists=True, dir_okay=False, help="ZIP archive to review"),
    work_dir: Optional[Path] = typer.Option(None, "--work-dir", help="Extraction root"),
    artifacts_dir: Optional[Path] = typer.Option(None, "--artifacts-dir", help="Artifact root"),
    pytest: Optional[bool] = typer.Option(None, "--pytest/--no-pytest", help="Run the test suite"),
    llm: Optional[bool] = typer.Option(None, "--llm/--no-llm", help="Run the AI review"),
    verbose: bool = typer.Option(False, "--verbose", "-v"),
):
    """Review one archive and print the verdict."""
    _configure_logging(verbose)

    overrides: dict = {}
    if work_dir is not None:
        overrides["work_dir"] = work_dir.expanduser().resolve()
    if artifacts_dir is not None:
        overrides["artifacts_dir"] = artifacts_dir.expanduser().resolve()
    if pytest is not None:
        overrides["enable_pytest"] = pytest
    if llm is not None:
        overrides["enable_llm"] = llm
    settings = get_settings().model_copy(update=overrides)

    exit_code = asyncio.run(_check(archive.resolve(), settings))
    raise typer.Exit(code=exit_code)


@app.command()
def serve(
    host: Optional[str] = typer.Option(None, "--host"),
    port: Optional[int] = typer.Option(None, "--port"),
    reload: bool = typer.Option(False, "--reload"),
):
    """Start the API server."""
    import uvicorn

    settings = get_settings()
    uvicorn.run(
        "codereview.api.main:app",
        host=host or settings.api_host,
        port=port or settings.api_port,
        reload=reload,
    )


if __name__ == "__main__":
    app()
