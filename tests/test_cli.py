import datetime as dt
import json

import pytest
from typer.testing import CliRunner

from txclassify import cli
from txclassify.errors import NoCategoriesError, RunCancelled
from txclassify.models import BatchClassificationSummary, RerankSummary

runner = CliRunner()


class FakeEngine:
    def __init__(self, raise_exc=None):
        self.calls = []
        self._raise = raise_exc

    def _done(self, name, *args, cancellation):
        assert cancellation is not None
        self.calls.append((name, args))
        if self._raise is not None:
            raise self._raise

    def classify_transactions(self, start, *, cancellation):
        self._done("classify", start, cancellation=cancellation)
        return BatchClassificationSummary(total_merchants=2, total_transactions=5)

    def classify_transactions_batch(self, start, options, *, cancellation):
        self._done("batch", start, options, cancellation=cancellation)
        return BatchClassificationSummary(total_merchants=3, auto_accepted_count=2)

    def rerank_low_confidence(self, options, *, cancellation):
        self._done("rerank", options, cancellation=cancellation)
        return RerankSummary(total_evaluated=4, improved_count=1)


@pytest.fixture
def fake(monkeypatch):
    state = {"engine": FakeEngine(), "built": [], "log_levels": []}
    monkeypatch.setattr(cli, "configure_logging", state["log_levels"].append)

    def build(database_url, *, interactive):
        state["built"].append((database_url, interactive))
        return state["engine"]

    monkeypatch.setattr(cli, "_build_engine", build)
    return state


def test_classify_prints_summary_json(fake):
    args = ["classify", "--from", "2024-03-01", "--no-interactive", "--log-level", "debug"]
    result = runner.invoke(cli.app, [*args, "--database-url", "sqlite://"])
    assert result.exit_code == 0, result.output
    assert json.loads(result.stdout)["total_transactions"] == 5
    assert fake["built"] == [("sqlite://", False)]
    assert fake["engine"].calls == [("classify", (dt.date(2024, 3, 1),))]
    assert fake["log_levels"] == ["debug"]


def test_classify_batch_passes_options(fake):
    result = runner.invoke(
        cli.app,
        [
            "classify-batch",
            "--batch-size",
            "3",
            "--parallel-workers",
            "4",
            "--auto-accept-threshold",
            "0.9",
            "--skip-manual-review",
        ],
    )
    assert result.exit_code == 0, result.output
    ((name, (start, options)),) = fake["engine"].calls
    assert name == "batch" and start is None
    assert (options.batch_size, options.parallel_workers, options.auto_accept_threshold) == (3, 4, 0.9)
    assert options.skip_manual_review is True
    # Skipping review means no terminal prompter.
    assert fake["built"][0][1] is False
    assert json.loads(result.stdout)["auto_accepted"]["merchants"] == 2


def test_unset_flags_fall_back_to_environment(fake, monkeypatch):
    monkeypatch.setenv("TXCLASSIFY_BATCH_SIZE", "7")
    monkeypatch.setenv("TXCLASSIFY_CONFIDENCE_THRESHOLD", "0.5")
    result = runner.invoke(cli.app, ["rerank"])
    assert result.exit_code == 0, result.output
    ((name, (options,)),) = fake["engine"].calls
    assert name == "rerank"
    assert (options.batch_size, options.confidence_threshold, options.skip_manual_review) == (
        7,
        0.5,
        False,
    )
    assert fake["built"][0][1] is True
    assert json.loads(result.stdout)["improved"] == 1


def test_cancelled_run_exits_130(fake):
    fake["engine"] = FakeEngine(raise_exc=RunCancelled("interrupted"))
    result = runner.invoke(cli.app, ["classify"])
    assert result.exit_code == 130
    assert "cancelled: interrupted" in result.output


def test_pipeline_error_exits_1(fake):
    fake["engine"] = FakeEngine(raise_exc=NoCategoriesError("no categories found"))
    result = runner.invoke(cli.app, ["classify-batch"])
    assert result.exit_code == 1
    assert "error: no categories found" in result.output


def test_invalid_date_is_a_usage_error(fake):
    result = runner.invoke(cli.app, ["classify", "--from", "03/01/2024"])
    assert result.exit_code == 2
    assert fake["built"] == []
