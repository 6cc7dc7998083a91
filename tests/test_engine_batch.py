"""Batch pipeline tests: scheduler fan-out, the confidence gate, persistence and review."""

import datetime as dt

import pytest

from txclassify.cancellation import Cancellation
from txclassify.config import BatchOptions
from txclassify.engine import ClassificationEngine
from txclassify.errors import NoCategoriesError, RunCancelled
from txclassify.models import (
    CategoryType,
    CheckPattern,
    ClassificationProgress,
    ClassificationStatus,
    Direction,
    Vendor,
)

from helpers.db import make_storage, txn
from helpers.oracle_stub import ScriptedPrompter, StubOracle, accept, by_merchant, choose

ONE_WORKER = BatchOptions(parallel_workers=1)


def _engine(storage, stub, prompter=None, options=None):
    return ClassificationEngine(storage, stub, prompter or ScriptedPrompter(), options=options)


def _seed(storage, *txns):
    storage.save_transactions(txns)
    return list(txns)


def _category_of(storage, txn_id):
    c = storage.get_classification(txn_id)
    return None if c is None else c.category


def test_rule_hits_are_saved_without_calling_the_oracle(storage, fast_options):
    storage.save_vendor(Vendor("Whole Foods", "Groceries", use_count=1))
    pattern = storage.create_check_pattern(
        CheckPattern("rent", "Rent", amount_min=1500.0, amount_max=1600.0)
    )
    _seed(
        storage,
        txn("wf1", "Whole Foods", 82.10, day=2),
        txn("wf2", "WHOLE FOODS", 45.00, day=9),
        txn("chk", "CHECK 1042", 1550.00, merchant="", type="CHECK", day=1),
    )
    stub = StubOracle()
    prompter = ScriptedPrompter()

    summary = _engine(storage, stub, prompter, fast_options).classify_transactions_batch(
        options=ONE_WORKER
    )

    assert stub.calls == []
    assert prompter.batch_calls == [] and prompter.single_calls == []
    assert (summary.total_merchants, summary.total_transactions) == (2, 3)
    assert (summary.auto_accepted_count, summary.auto_accepted_txns) == (2, 3)

    wf = storage.get_classification("wf1")
    assert (wf.category, wf.status, wf.confidence) == ("Groceries", ClassificationStatus.RULE, 1.0)
    assert _category_of(storage, "chk") == "Rent"
    assert storage.get_vendor("whole foods").use_count == 3
    assert storage.get_active_check_patterns()[0].id == pattern.id
    assert storage.get_active_check_patterns()[0].use_count == 1
    # Direction written back from the category type.
    assert storage.get_transactions(["wf1"])[0].direction is Direction.EXPENSE
    assert storage.get_latest_progress().is_empty


def test_below_threshold_goes_to_batch_review(storage, fast_options):
    _seed(storage, *(txn(f"sb{i}", "Starbucks", 4.5 + i, day=i + 1) for i in range(3)))
    stub = StubOracle(by_merchant({"Starbucks": [("Coffee Shops", 0.92), ("Restaurants", 0.3)]}))
    prompter = ScriptedPrompter()

    summary = _engine(storage, stub, prompter, fast_options).classify_transactions_batch()

    assert (summary.needs_review_count, summary.needs_review_txns) == (1, 3)
    assert summary.auto_accepted_count == 0
    (batch,) = prompter.batch_calls
    assert len(batch) == 3
    assert {p.similar_count for p in batch} == {2}
    assert batch[0].suggested_category == "Coffee Shops"
    assert batch[0].confidence == pytest.approx(0.92)
    assert [r.category for r in batch[0].rankings] == ["Coffee Shops", "Restaurants"]

    c = storage.get_classification("sb2")
    assert (c.category, c.status) == ("Coffee Shops", ClassificationStatus.AI)
    assert c.confidence == pytest.approx(0.92)
    # Accepting an AI suggestion in review does not create a vendor rule.
    assert storage.get_vendor("Starbucks") is None


def test_high_confidence_auto_accepts_and_learns_vendor(storage, fast_options):
    _seed(storage, txn("tj1", "Trader Joe's", 52.0), txn("tj2", "Trader Joe's", 61.0, day=4))
    stub = StubOracle(by_merchant({"Trader Joe's": [("Groceries", 0.97)]}))
    prompter = ScriptedPrompter()
    engine = _engine(storage, stub, prompter, fast_options)

    summary = engine.classify_transactions_batch()

    assert (summary.auto_accepted_count, summary.auto_accepted_txns) == (1, 2)
    assert prompter.batch_calls == []
    c = storage.get_classification("tj1")
    assert (c.category, c.status) == ("Groceries", ClassificationStatus.AI)
    vendor = storage.get_vendor("trader joe's")
    assert (vendor.category, vendor.use_count) == ("Groceries", 2)

    # The learned rule short-circuits the next run.
    _seed(storage, txn("tj3", "TRADER JOE'S", 12.0, day=20))
    calls_before = len(stub.calls)
    engine.classify_transactions_batch()
    assert len(stub.calls) == calls_before
    assert storage.get_classification("tj3").status is ClassificationStatus.RULE


def test_auto_accept_below_vendor_minimum_does_not_learn(storage, fast_options):
    _seed(storage, txn("m1", "Corner Market", 9.0))
    stub = StubOracle(by_merchant({"Corner Market": [("Groceries", 0.82)]}))
    summary = _engine(storage, stub, options=fast_options).classify_transactions_batch(
        options=BatchOptions(auto_accept_threshold=0.8)
    )
    assert summary.auto_accepted_count == 1
    assert _category_of(storage, "m1") == "Groceries"
    assert storage.get_vendor("Corner Market") is None


def test_skip_manual_review_saves_suggestions_but_never_creates_categories(storage, fast_options):
    _seed(storage, txn("sb1", "Starbucks", 4.5), txn("pc1", "Petco", 30.0, day=2))
    stub = StubOracle(
        by_merchant(
            {
                "Starbucks": [("Coffee Shops", 0.6)],
                "Petco": [("Pets", 0.9, True, "Pet supplies")],
            }
        )
    )
    prompter = ScriptedPrompter()

    summary = _engine(storage, stub, prompter, fast_options).classify_transactions_batch(
        options=BatchOptions(skip_manual_review=True)
    )

    assert summary.needs_review_count == 2
    assert prompter.batch_calls == [] and prompter.single_calls == []
    sb = storage.get_classification("sb1")
    assert (sb.category, sb.status) == ("Coffee Shops", ClassificationStatus.AI)
    assert sb.confidence == pytest.approx(0.6)
    assert storage.get_classification("pc1") is None
    assert "Pets" not in [c.name for c in storage.get_categories()]


def test_specific_transactions_skip_review_leaves_low_confidence_unsaved(storage, fast_options):
    txns = _seed(storage, txn("tj1", "Trader Joe's", 52.0), txn("sb1", "Starbucks", 4.5))
    stub = StubOracle(
        by_merchant({"Trader Joe's": [("Groceries", 0.97)], "Starbucks": [("Coffee Shops", 0.6)]})
    )

    summary = _engine(storage, stub, options=fast_options).classify_specific_transactions(
        txns, BatchOptions(skip_manual_review=True)
    )

    assert (summary.auto_accepted_count, summary.needs_review_count) == (1, 1)
    assert _category_of(storage, "tj1") == "Groceries"
    assert storage.get_classification("sb1") is None
    # No checkpoint is read or written for an explicit list.
    assert storage.get_latest_progress() is None


def test_specific_transactions_are_reviewed_when_not_skipping(storage, fast_options):
    txns = _seed(storage, txn("sb1", "Starbucks", 4.5))
    stub = StubOracle(by_merchant({"Starbucks": [("Coffee Shops", 0.6)]}))
    prompter = ScriptedPrompter(choose("Restaurants"))

    _engine(storage, stub, prompter, fast_options).classify_specific_transactions(txns)

    c = storage.get_classification("sb1")
    assert (c.category, c.status, c.confidence) == (
        "Restaurants",
        ClassificationStatus.USER_MODIFIED,
        1.0,
    )


def test_oracle_failure_is_isolated_to_its_flush(storage, fast_options):
    _seed(
        storage,
        txn("ok1", "Starbucks", 4.5),
        txn("bad1", "Broken Merchant", 9.0),
        txn("ok2", "Trader Joe's", 30.0),
    )
    stub = StubOracle(
        by_merchant({"Starbucks": [("Coffee Shops", 0.99)], "Trader Joe's": [("Groceries", 0.99)]}),
        fail_for=lambda reqs: any(r.merchant_name == "Broken Merchant" for r in reqs),
    )

    summary = _engine(storage, stub, options=fast_options).classify_transactions_batch(
        options=BatchOptions(batch_size=1, parallel_workers=2)
    )

    assert summary.failed_count == 1
    assert summary.auto_accepted_count == 2
    assert _category_of(storage, "ok1") == "Coffee Shops"
    assert _category_of(storage, "ok2") == "Groceries"
    assert storage.get_classification("bad1") is None


def test_no_categories_aborts_the_run(tmp_path, fast_options):
    empty = make_storage(tmp_path, categories=())
    _seed(empty, txn("t1", "Starbucks", 4.5))
    stub = StubOracle()
    engine = _engine(empty, stub, options=fast_options)

    with pytest.raises(NoCategoriesError):
        engine.classify_transactions_batch()
    with pytest.raises(NoCategoriesError):
        engine.classify_transactions()
    assert stub.calls == []


def test_nothing_to_classify_returns_empty_summary(storage, fast_options):
    stub = StubOracle()
    summary = _engine(storage, stub, options=fast_options).classify_transactions_batch()
    assert summary.total_merchants == 0
    assert stub.calls == []


def test_new_category_created_once_and_invisible_until_next_run(storage, fast_options):
    _seed(
        storage,
        txn("pc1", "Petco", 30.0),
        txn("pc2", "Petco", 45.0, day=3),
        txn("ch1", "Chewy", 60.0, day=2),
    )
    pets = [("Pets", 0.9, True, "Pet food and supplies")]
    stub = StubOracle(by_merchant({"Petco": pets, "Chewy": pets, "Petsmart": [("Pets", 0.97)]}))
    prompter = ScriptedPrompter(accept)
    engine = _engine(storage, stub, prompter, fast_options)

    summary = engine.classify_transactions_batch()

    assert summary.needs_review_count == 2
    # Both merchants were presented as new: the snapshot is fixed for the run.
    assert all(p.is_new_category for batch in prompter.batch_calls for p in batch)
    created = [c for c in storage.get_categories() if c.name == "Pets"]
    assert len(created) == 1
    assert (created[0].description, created[0].type) == ("Pet food and supplies", CategoryType.EXPENSE)
    for tid in ("pc1", "pc2", "ch1"):
        assert _category_of(storage, tid) == "Pets"

    # Next run sees the category and can auto-accept into it.
    _seed(storage, txn("ps1", "Petsmart", 22.0, day=10))
    prompter.batch_calls.clear()
    summary = engine.classify_transactions_batch()
    assert summary.auto_accepted_count == 1
    assert prompter.batch_calls == []
    assert _category_of(storage, "ps1") == "Pets"


def test_category_creation_failure_skips_the_merchant(storage, fast_options, monkeypatch):
    _seed(storage, txn("pc1", "Petco", 30.0), txn("sb1", "Starbucks", 4.5))
    stub = StubOracle(
        by_merchant(
            {"Petco": [("Pets", 0.9, True, "Pet supplies")], "Starbucks": [("Coffee Shops", 0.7)]}
        )
    )

    def refuse(*_a, **_k):
        raise RuntimeError("read-only")

    monkeypatch.setattr(storage, "create_category", refuse)
    summary = _engine(storage, stub, options=fast_options).classify_transactions_batch()

    assert summary.needs_review_count == 2
    assert storage.get_classification("pc1") is None
    assert _category_of(storage, "sb1") == "Coffee Shops"


def test_review_runs_lowest_confidence_first(storage, fast_options):
    _seed(
        storage,
        txn("h", "High", 1.0),
        txn("l", "Low", 1.0),
        txn("m", "Mid", 1.0),
    )
    stub = StubOracle(
        by_merchant(
            {"High": [("Shopping", 0.9)], "Low": [("Shopping", 0.3)], "Mid": [("Shopping", 0.7)]}
        )
    )
    prompter = ScriptedPrompter()
    _engine(storage, stub, prompter, fast_options).classify_transactions_batch()
    assert prompter.reviewed_merchants == ["Low", "Mid", "High"]


def test_user_override_of_confident_suggestion_learns_vendor(storage, fast_options):
    _seed(storage, txn("cs1", "Corner Store", 7.0), txn("kk1", "Kiosk", 3.0))
    stub = StubOracle(
        by_merchant({"Corner Store": [("Groceries", 0.9)], "Kiosk": [("Groceries", 0.6)]})
    )
    prompter = ScriptedPrompter(choose("Shopping"))

    _engine(storage, stub, prompter, fast_options).classify_transactions_batch()

    vendor = storage.get_vendor("Corner Store")
    assert (vendor.category, vendor.use_count) == ("Shopping", 1)
    assert storage.get_vendor("Kiosk") is None
    assert storage.get_classification("kk1").status is ClassificationStatus.USER_MODIFIED


def test_cancel_during_review_checkpoints_reviewed_merchants(storage, fast_options):
    _seed(storage, txn("low1", "Low", 1.0, day=1), txn("hi1", "High", 1.0, day=5))
    stub = StubOracle(by_merchant({"Low": [("Shopping", 0.3)], "High": [("Shopping", 0.6)]}))
    cancel = Cancellation()

    def cancel_then_accept(pending):
        cancel.cancel("user quit")
        return accept(pending)

    engine = _engine(storage, stub, ScriptedPrompter(cancel_then_accept), fast_options)
    with pytest.raises(RunCancelled):
        engine.classify_transactions_batch(cancellation=cancel)

    assert _category_of(storage, "low1") == "Shopping"
    assert storage.get_classification("hi1") is None
    progress = storage.get_latest_progress()
    assert (progress.last_processed_id, progress.total_processed) == ("low1", 1)


def test_run_with_nothing_to_do_clears_a_stale_checkpoint(storage, fast_options):
    storage.save_transactions([txn("old", "Starbucks", 4.5, day=1)])
    storage.save_progress(ClassificationProgress("x", dt.date(2024, 3, 20), 4))

    summary = _engine(storage, StubOracle(), options=fast_options).classify_transactions_batch()

    assert summary.total_transactions == 0
    assert storage.get_latest_progress().is_empty
    assert storage.get_classification("old") is None


def test_batch_resume_then_full_run_reaches_earlier_dated_merchants(storage, fast_options):
    _seed(
        storage,
        txn("a1", "Corner Store", 10.0, day=5),
        txn("a2", "Corner Store", 11.0, day=6),
        txn("b1", "Acme Rentals", 1500.0, day=1),
    )
    stub = StubOracle(
        by_merchant({"Corner Store": [("Shopping", 0.5)], "Acme Rentals": [("Rent", 0.6)]})
    )
    cancel = Cancellation()

    def cancel_then_accept(pending):
        cancel.cancel("user quit")
        return accept(pending)

    quitting = _engine(storage, stub, ScriptedPrompter(cancel_then_accept), fast_options)
    with pytest.raises(RunCancelled):
        quitting.classify_transactions_batch(options=ONE_WORKER, cancellation=cancel)
    assert storage.get_latest_progress().last_processed_id == "a2"

    engine = _engine(storage, stub, options=fast_options)
    assert engine.classify_transactions_batch(dt.date(2024, 1, 1), ONE_WORKER).total_transactions == 0
    assert storage.get_latest_progress().is_empty

    summary = engine.classify_transactions_batch(dt.date(2024, 1, 1), ONE_WORKER)
    assert summary.total_transactions == 1
    assert _category_of(storage, "b1") == "Rent"
