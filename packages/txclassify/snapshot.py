"""Per-run category snapshot.

A run loads the category list once and reads only that list afterwards:
new-category detection, direction filtering and the choices shown during
review all use the snapshot. Categories created mid-run are therefore
invisible to the rest of that run and show up from the next run on.
"""

from __future__ import annotations

from collections.abc import Iterable, Iterator, Sequence
from typing import TYPE_CHECKING

from .errors import NoCategoriesError
from .models import Category, category_key

if TYPE_CHECKING:
    from .storage import Storage


class CategorySnapshot(Sequence[Category]):
    __slots__ = ("_categories", "_by_name")

    def __init__(self, categories: Iterable[Category]) -> None:
        self._categories: tuple[Category, ...] = tuple(categories)
        self._by_name: dict[str, Category] = {category_key(c.name): c for c in self._categories}

    @classmethod
    def load(cls, storage: Storage) -> CategorySnapshot:
        """Load the snapshot; an empty category list aborts the run."""

        categories = storage.get_categories()
        if not categories:
            raise NoCategoriesError(
                "no categories found; create categories before classifying"
            )
        return cls(categories)

    def __getitem__(self, index):
        return self._categories[index]

    def __len__(self) -> int:
        return len(self._categories)

    def __iter__(self) -> Iterator[Category]:
        return iter(self._categories)

    def __contains__(self, item: object) -> bool:
        if isinstance(item, str):
            return category_key(item) in self._by_name
        return item in self._categories

    def contains(self, name: str) -> bool:
        return category_key(name) in self._by_name

    def get(self, name: str) -> Category | None:
        return self._by_name.get(category_key(name))

    @property
    def names(self) -> list[str]:
        return [c.name for c in self._categories]


__all__ = ["CategorySnapshot"]
