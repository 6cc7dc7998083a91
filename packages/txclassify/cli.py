"""Command-line interface for ``txclassify``.

Thin Typer wrappers around :class:`~txclassify.engine.ClassificationEngine`.
Environment variables (``DATABASE_URL``, ``OPENAI_API_KEY``, ``TXCLASSIFY_*``)
are loaded from a local ``.env`` with python-dotenv before any command runs.
Summaries are printed as JSON on stdout; logs go to stderr.
"""

from __future__ import annotations

import datetime as dt
from typing import Annotated

import typer
from dotenv import load_dotenv

from .cancellation import Cancellation
from .config import BatchOptions, EngineOptions, RerankOptions
from .errors import ClassificationError, RunCancelled
from .logging_setup import configure_logging

app = typer.Typer(add_completion=False, help="Classify bank transactions into categories.")


def _parse_date(value: str | None) -> dt.date | None:
    if value is None:
        return None
    try:
        return dt.date.fromisoformat(value)
    except ValueError as e:
        raise typer.BadParameter(f"expected YYYY-MM-DD, got {value!r}") from e


def _build_engine(database_url: str | None, *, interactive: bool):
    # Local imports keep `--help` fast and free of DB/SDK side effects.
    from .engine import ClassificationEngine
    from .openai_oracle import OpenAIRankingOracle
    from .review import AutoAcceptPrompter
    from .storage import SqlStorage
    from .term_ui import TerminalPrompter

    storage = SqlStorage(database_url, create_tables=True)
    prompter = TerminalPrompter() if interactive else AutoAcceptPrompter()
    return ClassificationEngine(
        storage, OpenAIRankingOracle(), prompter, options=EngineOptions.from_env()
    )


def _run(fn) -> None:
    cancellation = Cancellation()
    restore = cancellation.install_sigint_handler()
    try:
        summary = fn(cancellation)
    except RunCancelled as e:
        typer.echo(f"cancelled: {e}", err=True)
        raise typer.Exit(code=130) from e
    except ClassificationError as e:
        typer.echo(f"error: {e}", err=True)
        raise typer.Exit(code=1) from e
    finally:
        restore()
    typer.echo(summary.to_display())


DatabaseUrl = Annotated[
    str | None, typer.Option("--database-url", envvar="DATABASE_URL", help="SQLAlchemy URL")
]
FromDate = Annotated[
    str | None, typer.Option("--from", help="Only transactions on/after this date (YYYY-MM-DD)")
]
LogLevel = Annotated[str | None, typer.Option("--log-level", help="Logging level")]


@app.callback()
def _main() -> None:
    load_dotenv()


@app.command("classify")
def classify(
    database_url: DatabaseUrl = None,
    from_date: FromDate = None,
    interactive: Annotated[bool, typer.Option("--interactive/--no-interactive")] = True,
    log_level: LogLevel = None,
) -> None:
    """Classify merchant by merchant, reviewing as you go."""

    configure_logging(log_level)
    start = _parse_date(from_date)
    engine = _build_engine(database_url, interactive=interactive)
    _run(lambda c: engine.classify_transactions(start, cancellation=c))


@app.command("classify-batch")
def classify_batch(
    database_url: DatabaseUrl = None,
    from_date: FromDate = None,
    auto_accept_threshold: Annotated[float | None, typer.Option(min=0.0, max=1.0)] = None,
    batch_size: Annotated[int | None, typer.Option(min=1)] = None,
    parallel_workers: Annotated[int | None, typer.Option(min=1)] = None,
    skip_manual_review: Annotated[bool, typer.Option("--skip-manual-review")] = False,
    log_level: LogLevel = None,
) -> None:
    """Classify through the parallel scheduler, then review what remains."""

    configure_logging(log_level)
    start = _parse_date(from_date)
    options = BatchOptions.from_env(
        auto_accept_threshold=auto_accept_threshold,
        batch_size=batch_size,
        parallel_workers=parallel_workers,
        skip_manual_review=skip_manual_review or None,
    )
    engine = _build_engine(database_url, interactive=not options.skip_manual_review)
    _run(lambda c: engine.classify_transactions_batch(start, options, cancellation=c))


@app.command("rerank")
def rerank(
    database_url: DatabaseUrl = None,
    confidence_threshold: Annotated[float | None, typer.Option(min=0.0, max=1.0)] = None,
    auto_accept_threshold: Annotated[float | None, typer.Option(min=0.0, max=1.0)] = None,
    batch_size: Annotated[int | None, typer.Option(min=1)] = None,
    parallel_workers: Annotated[int | None, typer.Option(min=1)] = None,
    skip_manual_review: Annotated[bool, typer.Option("--skip-manual-review")] = False,
    log_level: LogLevel = None,
) -> None:
    """Re-rank classifications below a confidence threshold."""

    configure_logging(log_level)
    options = RerankOptions.from_env(
        confidence_threshold=confidence_threshold,
        auto_accept_threshold=auto_accept_threshold,
        batch_size=batch_size,
        parallel_workers=parallel_workers,
        skip_manual_review=skip_manual_review or None,
    )
    engine = _build_engine(database_url, interactive=not options.skip_manual_review)
    _run(lambda c: engine.rerank_low_confidence(options, cancellation=c))


def main() -> None:  # pragma: no cover - console entry point
    app()


__all__ = ["app", "main"]
