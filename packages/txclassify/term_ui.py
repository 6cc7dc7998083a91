"""Terminal prompter (prompt_toolkit input, rich output).

:class:`TerminalPrompter` renders the merchant under review with rich and
collects the user's category choice with a prompt_toolkit selector that
completes existing category names and treats any unknown name as a request
to create it. Ctrl-C or EOF aborts the whole review (:class:`ReviewCancelled`).
"""

from __future__ import annotations

import re
from collections.abc import Sequence
from dataclasses import dataclass

from prompt_toolkit import PromptSession
from prompt_toolkit.auto_suggest import AutoSuggest, Suggestion
from prompt_toolkit.completion import WordCompleter
from prompt_toolkit.key_binding import KeyBindings
from prompt_toolkit.styles import Style
from prompt_toolkit.validation import ValidationError, Validator
from rich.console import Console
from rich.table import Table

from .errors import ReviewCancelled
from .models import (
    ClassificationStatus,
    Confirmation,
    CreateCategoryIntent,
    PendingClassification,
    Transaction,
)

CREATE_SENTINEL = "+ Create new category..."

_ALLOWED_RE = re.compile(r"^[A-Za-z0-9 &\-/',.()]+$")


class ReviewSkipped(Exception):
    """The user backed out of creating a category; the merchant is skipped."""


@dataclass(frozen=True, slots=True)
class NameValidation:
    ok: bool
    reason: str | None = None


def validate_category_name(name: str, *, max_len: int = 64) -> NameValidation:
    s = " ".join(name.split())
    if not s:
        return NameValidation(False, "Name is required")
    if len(s) > max_len:
        return NameValidation(False, f"Name must be at most {max_len} characters")
    if not _ALLOWED_RE.match(s):
        return NameValidation(False, "Use letters, numbers, spaces and & - / ' , . ( )")
    return NameValidation(True)


class CreateCategoryRequest:
    """Selector result meaning "create this category" (name may be empty)."""

    __slots__ = ("name",)

    def __init__(self, name: str) -> None:
        self.name = name

    def __repr__(self) -> str:  # pragma: no cover - trivial repr
        return f"CreateCategoryRequest(name={self.name!r})"


class _SuggestOrCreate(AutoSuggest):
    def __init__(self, vocab: Sequence[str]) -> None:
        self._vocab = list(vocab)

    def get_suggestion(self, buffer, document):
        text = document.text
        if not text:
            return None
        lower = text.lower()
        for w in self._vocab:
            if w.lower() == lower:
                return None
        for w in self._vocab:
            if w.lower().startswith(lower):
                return Suggestion(w[len(text) :]) if len(w) > len(text) else None
        return Suggestion(f"  [Create '{text}'?]")


def _session(session: PromptSession | None, kb: KeyBindings) -> PromptSession:
    if session is None:
        return PromptSession(key_bindings=kb)
    return PromptSession(
        input=getattr(session, "input", None),
        output=getattr(session, "output", None),
        key_bindings=kb,
    )


def select_category_or_create(
    categories: Sequence[str],
    *,
    default: str,
    message: str = "Category (Enter to accept): ",
    session: PromptSession | None = None,
) -> str | CreateCategoryRequest:
    """Prompt for a category; unknown names come back as ``CreateCategoryRequest``.

    Enter on an empty buffer accepts ``default``. Tab completes the greyed
    prefix suggestion or opens the completion menu.
    """

    vocab = list(categories)
    canonical = {w.lower(): w for w in vocab}
    completer = WordCompleter(vocab + [CREATE_SENTINEL], ignore_case=True, match_middle=True)

    def _prefix_match(text: str) -> str | None:
        lower = text.lower()
        if not lower or lower in canonical:
            return None
        for w in vocab:
            if w.lower().startswith(lower):
                return w
        return None

    kb = KeyBindings()

    @kb.add("tab", eager=True)
    def _(event) -> None:  # pragma: no cover - integration path
        b = event.app.current_buffer
        cand = _prefix_match(b.document.text)
        if cand:
            b.insert_text(cand[len(b.document.text) :])
        elif b.complete_state is None:
            b.start_completion(select_first=True)
        else:
            b.complete_next()

    @kb.add("enter", eager=True)
    def _(event) -> None:  # pragma: no cover - integration path
        b = event.app.current_buffer
        cs = b.complete_state
        if cs is not None and cs.current_completion is not None:
            b.apply_completion(cs.current_completion)
        else:
            cand = _prefix_match(b.document.text)
            if cand:
                b.insert_text(cand[len(b.document.text) :])
        b.validate_and_handle()

    result = _session(session, kb).prompt(
        message,
        completer=completer,
        default=default,
        key_bindings=kb,
        auto_suggest=_SuggestOrCreate(vocab),
        style=Style.from_dict({"auto-suggestion": "fg:#888888"}),
    )
    result = " ".join(result.split()) or default
    if result == CREATE_SENTINEL:
        return CreateCategoryRequest("")
    existing = canonical.get(result.lower())
    if existing is None:
        return CreateCategoryRequest(result)
    return existing


def prompt_new_category(
    *,
    initial: str = "",
    session: PromptSession | None = None,
) -> tuple[str, str] | None:
    """Collect a new category's name and description; ``None`` when cancelled with Esc."""

    kb = KeyBindings()

    @kb.add("escape")
    def _(event) -> None:  # pragma: no cover - exercised indirectly
        event.app.exit(result=None)

    class _NameValidator(Validator):
        def validate(self, document) -> None:
            v = validate_category_name(document.text)
            if not v.ok:
                raise ValidationError(message=v.reason or "Invalid name")

    sess = _session(session, kb)
    name = sess.prompt(
        "New category name (Esc to cancel): ",
        default=initial,
        validator=_NameValidator(),
        validate_while_typing=False,
        key_bindings=kb,
    )
    if name is None:
        return None
    description = sess.prompt("Description (blank to generate): ", key_bindings=kb)
    if description is None:
        return None
    return " ".join(name.split()), description.strip()


def _fmt_amount(txn: Transaction) -> str:
    sign = "-" if txn.amount > 0 else "+"
    return f"{sign}${abs(txn.amount):,.2f}"


class TerminalPrompter:
    def __init__(
        self,
        *,
        console: Console | None = None,
        session: PromptSession | None = None,
    ) -> None:
        self._console = console or Console(stderr=True)
        self._session = session

    def _render(self, pendings: Sequence[PendingClassification]) -> None:
        head = pendings[0]
        txn = head.transaction
        title = txn.merchant_name or txn.name
        table = Table(title=f"{title} ({len(pendings)} transaction(s))", show_lines=False)
        table.add_column("Date")
        table.add_column("Description")
        table.add_column("Amount", justify="right")
        for p in pendings[:10]:
            t = p.transaction
            table.add_row(t.date.isoformat(), t.name, _fmt_amount(t))
        if len(pendings) > 10:
            table.add_row("…", f"{len(pendings) - 10} more", "")
        self._console.print(table)

        marker = r" \[new]" if head.is_new_category else ""
        self._console.print(
            f"Suggested: [bold]{head.suggested_category}[/bold]{marker} "
            f"({head.confidence:.0%})"
        )
        if head.category_description:
            self._console.print(f"  {head.category_description}")
        alternatives = [r for r in head.rankings.top_n(4) if r.category != head.suggested_category]
        if alternatives:
            self._console.print(
                "Also: " + ", ".join(f"{r.category} ({r.score:.0%})" for r in alternatives)
            )
        for pattern in head.check_patterns:
            self._console.print(f"Check pattern: {pattern.name} → {pattern.category}")

    def _ask(self, pending: PendingClassification) -> Confirmation:
        names = [c.name for c in pending.all_categories]
        try:
            choice = select_category_or_create(
                names, default=pending.suggested_category, session=self._session
            )
            if isinstance(choice, CreateCategoryRequest):
                if (
                    pending.is_new_category
                    and choice.name.casefold() == pending.suggested_category.casefold()
                ):
                    return Confirmation(
                        transaction=pending.transaction,
                        category=pending.suggested_category,
                        status=ClassificationStatus.AI,
                        confidence=pending.confidence,
                        create_category=CreateCategoryIntent(pending.category_description),
                    )
                created = prompt_new_category(initial=choice.name, session=self._session)
                if created is None:
                    raise ReviewSkipped("category creation cancelled")
                name, description = created
                return Confirmation(
                    transaction=pending.transaction,
                    category=name,
                    status=ClassificationStatus.USER_MODIFIED,
                    confidence=1.0,
                    create_category=CreateCategoryIntent(description),
                )
        except (KeyboardInterrupt, EOFError) as e:
            raise ReviewCancelled("review aborted by user") from e

        if choice.casefold() == pending.suggested_category.casefold():
            return Confirmation(
                transaction=pending.transaction,
                category=choice,
                status=ClassificationStatus.AI,
                confidence=pending.confidence,
            )
        return Confirmation(
            transaction=pending.transaction,
            category=choice,
            status=ClassificationStatus.USER_MODIFIED,
            confidence=1.0,
        )

    def confirm_classification(self, pending: PendingClassification) -> Confirmation:
        self._render([pending])
        return self._ask(pending)

    def batch_confirm_classifications(
        self, pendings: Sequence[PendingClassification]
    ) -> list[Confirmation]:
        if not pendings:
            return []
        self._render(pendings)
        decided = self._ask(pendings[0])
        return [
            Confirmation(
                transaction=p.transaction,
                category=decided.category,
                status=decided.status,
                confidence=decided.confidence,
                create_category=decided.create_category,
            )
            for p in pendings
        ]


__all__ = [
    "CREATE_SENTINEL",
    "CreateCategoryRequest",
    "ReviewSkipped",
    "TerminalPrompter",
    "prompt_new_category",
    "select_category_or_create",
    "validate_category_name",
]
