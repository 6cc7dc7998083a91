from txclassify.gate import (
    ConfidenceGate,
    GateDecision,
    has_high_variance,
    mark_new_against_snapshot,
)
from txclassify.models import BatchResult, CategoryRanking, MerchantKey
from txclassify.snapshot import CategorySnapshot

from helpers.db import DEFAULT_CATEGORIES, txn

SNAPSHOT = CategorySnapshot(DEFAULT_CATEGORIES)


def _result(suggestion, amounts=(5.0,)):
    return BatchResult(
        merchant=MerchantKey("m"),
        display_name="M",
        transactions=[txn(f"t{i}", "M", a) for i, a in enumerate(amounts)],
        suggestion=suggestion,
    )


def test_high_variance_needs_min_count_and_ratio():
    assert not has_high_variance([txn("a", "X", 1.0), txn("b", "X", 500.0)])
    spread = [txn(str(i), "X", a) for i, a in enumerate([5, 6, 7, 8, 200])]
    assert has_high_variance(spread)
    tight = [txn(str(i), "X", a) for i, a in enumerate([5, 6, 7, 8, 9])]
    assert not has_high_variance(tight)


def test_high_variance_uses_absolute_amounts_and_zero_minimum():
    mixed = [txn(str(i), "X", a) for i, a in enumerate([-5, 6, -7, 8, 9])]
    assert not has_high_variance(mixed)
    with_zero = [txn(str(i), "X", a) for i, a in enumerate([0, 6, 7, 8, 150])]
    assert has_high_variance(with_zero)
    small_with_zero = [txn(str(i), "X", a) for i, a in enumerate([0, 6, 7, 8, 90])]
    assert not has_high_variance(small_with_zero)


def test_mark_new_against_snapshot():
    missing = mark_new_against_snapshot(CategoryRanking("Pets", 0.9), SNAPSHOT)
    assert missing.is_new

    respelled = mark_new_against_snapshot(CategoryRanking("coffee shops", 0.9, is_new=True), SNAPSHOT)
    assert respelled == CategoryRanking("Coffee Shops", 0.9, is_new=False)

    same = CategoryRanking("Groceries", 0.9)
    assert mark_new_against_snapshot(same, SNAPSHOT) is same


def test_gate_auto_accepts_at_threshold():
    gate = ConfidenceGate(0.95)
    assert gate.decide(_result(CategoryRanking("Groceries", 0.95)), SNAPSHOT) is GateDecision.AUTO_ACCEPT
    assert gate.decide(_result(CategoryRanking("Groceries", 0.9499)), SNAPSHOT) is GateDecision.BATCH_REVIEW


def test_gate_never_auto_accepts_new_category():
    gate = ConfidenceGate(0.5)
    result = _result(CategoryRanking("Pets", 0.99))
    assert gate.decide(result, SNAPSHOT) is GateDecision.BATCH_REVIEW
    assert result.suggestion is not None and result.suggestion.is_new


def test_gate_routes_high_variance_to_individual_review():
    gate = ConfidenceGate(0.95)
    result = _result(CategoryRanking("Shopping", 0.6), amounts=(5, 6, 7, 8, 900))
    assert gate.decide(result, SNAPSHOT) is GateDecision.INDIVIDUAL_REVIEW


def test_gate_with_no_suggestion_reviews():
    assert ConfidenceGate().decide(_result(None), SNAPSHOT) is GateDecision.BATCH_REVIEW
