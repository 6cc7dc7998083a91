import contextlib
import io

import pytest
from prompt_toolkit import PromptSession
from prompt_toolkit.input import create_pipe_input
from prompt_toolkit.output import DummyOutput
from rich.console import Console

from txclassify.errors import ReviewCancelled
from txclassify.models import (
    CategoryRanking,
    CategoryRankings,
    ClassificationStatus,
    PendingClassification,
)
from txclassify.term_ui import (
    CREATE_SENTINEL,
    CreateCategoryRequest,
    TerminalPrompter,
    prompt_new_category,
    select_category_or_create,
    validate_category_name,
)

from helpers.db import DEFAULT_CATEGORIES, txn

NAMES = [c.name for c in DEFAULT_CATEGORIES]


@contextlib.contextmanager
def pipe_session():
    with create_pipe_input() as pipe:
        sess = PromptSession(input=pipe, output=DummyOutput())
        yield pipe, sess


def test_enter_accepts_default():
    with pipe_session() as (pipe, sess):
        pipe.send_text("\r")
        assert select_category_or_create(NAMES, default="Groceries", session=sess) == "Groceries"


def test_typed_exact_category_is_returned():
    with pipe_session() as (pipe, sess):
        # Ctrl-A, Ctrl-K clears the pre-filled default.
        pipe.send_text("\x01\x0bRestaurants\r")
        assert select_category_or_create(NAMES, default="Groceries", session=sess) == "Restaurants"


def test_enter_commits_prefix_completion():
    with pipe_session() as (pipe, sess):
        pipe.send_text("\x01\x0bRes\r")
        assert select_category_or_create(NAMES, default="Groceries", session=sess) == "Restaurants"


def test_tab_completes_prefix():
    with pipe_session() as (pipe, sess):
        pipe.send_text("\x01\x0bCof\t\r")
        assert select_category_or_create(NAMES, default="Groceries", session=sess) == "Coffee Shops"


def test_lowercase_name_returns_canonical_spelling():
    with pipe_session() as (pipe, sess):
        pipe.send_text("\x01\x0bcoffee shops\r")
        assert select_category_or_create(NAMES, default="Groceries", session=sess) == "Coffee Shops"


def test_unknown_name_requests_creation():
    with pipe_session() as (pipe, sess):
        pipe.send_text("\x01\x0bPets\r")
        result = select_category_or_create(NAMES, default="Groceries", session=sess)
    assert isinstance(result, CreateCategoryRequest)
    assert result.name == "Pets"


def test_create_sentinel_requests_unnamed_creation():
    with pipe_session() as (pipe, sess):
        pipe.send_text("\x01\x0b" + CREATE_SENTINEL + "\r")
        result = select_category_or_create(NAMES, default="Groceries", session=sess)
    assert isinstance(result, CreateCategoryRequest)
    assert result.name == ""


@pytest.mark.parametrize(
    ("name", "ok"),
    [
        ("Pets", True),
        ("  Home   & Garden ", True),
        ("Kids' Stuff (misc.)", True),
        ("", False),
        ("   ", False),
        ("x" * 65, False),
        ("Bad<name>", False),
    ],
)
def test_validate_category_name(name, ok):
    assert validate_category_name(name).ok is ok


def test_prompt_new_category_collects_name_and_description():
    with pipe_session() as (pipe, sess):
        pipe.send_text("Pets\r  Pet food and toys \r")
        assert prompt_new_category(session=sess) == ("Pets", "Pet food and toys")


def test_prompt_new_category_prefills_initial_name():
    with pipe_session() as (pipe, sess):
        pipe.send_text("\r\r")
        assert prompt_new_category(initial="Home  Office", session=sess) == ("Home Office", "")


def _pending(suggested="Coffee Shops", confidence=0.8, *, txn_id="t1", is_new=False, description=""):
    return PendingClassification(
        transaction=txn(txn_id, "Starbucks", 4.5),
        suggested_category=suggested,
        confidence=confidence,
        rankings=CategoryRankings(
            [CategoryRanking(suggested, confidence, is_new, description), CategoryRanking("Restaurants", 0.1)]
        ),
        all_categories=tuple(DEFAULT_CATEGORIES),
        is_new_category=is_new,
        category_description=description,
    )


@contextlib.contextmanager
def prompter_with(keys):
    out = io.StringIO()
    with pipe_session() as (pipe, sess):
        pipe.send_text(keys)
        yield TerminalPrompter(console=Console(file=out, width=100), session=sess), out


def test_accepting_the_suggestion_keeps_ai_status():
    with prompter_with("\r") as (prompter, out):
        c = prompter.confirm_classification(_pending())
    assert (c.category, c.status, c.confidence) == ("Coffee Shops", ClassificationStatus.AI, 0.8)
    assert c.create_category is None
    rendered = out.getvalue()
    assert "Starbucks" in rendered
    assert "Restaurants (10%)" in rendered


def test_choosing_another_category_is_a_user_override():
    with prompter_with("\x01\x0bGroceries\r") as (prompter, _):
        c = prompter.confirm_classification(_pending())
    assert (c.category, c.status, c.confidence) == (
        "Groceries",
        ClassificationStatus.USER_MODIFIED,
        1.0,
    )


def test_accepting_a_new_suggestion_requests_creation():
    with prompter_with("\r") as (prompter, _):
        c = prompter.confirm_classification(_pending("Pets", 0.9, is_new=True, description="Pet supplies"))
    assert (c.category, c.status, c.confidence) == ("Pets", ClassificationStatus.AI, 0.9)
    assert c.create_category.description == "Pet supplies"


def test_typing_an_unknown_name_walks_through_creation():
    with prompter_with("\x01\x0bHobbies\r\rModel trains\r") as (prompter, _):
        c = prompter.confirm_classification(_pending())
    assert (c.category, c.status, c.confidence) == ("Hobbies", ClassificationStatus.USER_MODIFIED, 1.0)
    assert c.create_category.description == "Model trains"


def test_ctrl_c_cancels_the_review():
    with prompter_with("\x03") as (prompter, _):
        with pytest.raises(ReviewCancelled):
            prompter.confirm_classification(_pending())


def test_batch_confirm_applies_one_answer_to_every_transaction():
    pendings = [_pending(txn_id="t1"), _pending(txn_id="t2")]
    with prompter_with("\x01\x0bGroceries\r") as (prompter, out):
        confirmations = prompter.batch_confirm_classifications(pendings)
    assert [c.transaction.id for c in confirmations] == ["t1", "t2"]
    assert {c.category for c in confirmations} == {"Groceries"}
    assert "2 transaction(s)" in out.getvalue()
