from __future__ import annotations

from dataclasses import dataclass, field
from typing import Callable, Collection, Iterable, Optional

from ledger_engine.models import Category


def collect_subtree_ids(
    category_id: str,
    children_of: Callable[[str], Iterable[str]],
    visited: Optional[set[str]] = None,
) -> set[str]:
    """Walk a category and every descendant, one lookup per node.

    ``children_of`` returns the direct child ids of a category; an unknown id
    simply has no children, so it resolves to ``{category_id}``.
    """
    if visited is None:
        visited = set()
    if category_id in visited:
        return set()
    visited.add(category_id)

    ids = {category_id}
    for child_id in children_of(category_id):
        ids |= collect_subtree_ids(child_id, children_of, visited)
    return ids


@dataclass
class CategoryHierarchy:
    """Parent/child index over a user's flat category list.

    Built once per request; descendant lists are memoized so each subtree is
    walked at most once.
    """

    categories: dict[str, Category]
    children_of: dict[str, list[str]]
    _descendants: dict[str, list[str]] = field(default_factory=dict, repr=False)

    @classmethod
    def build(
        cls,
        categories: Iterable[Category],
        roles: Optional[Collection[str]] = None,
    ) -> "CategoryHierarchy":
        selected = [
            category
            for category in categories
            if roles is None or category.role in roles
        ]
        by_id = {category.id: category for category in selected}
        children_of: dict[str, list[str]] = {category.id: [] for category in selected}
        for category in sorted(selected, key=_sibling_sort_key):
            if category.parent_id is not None and category.parent_id in children_of:
                children_of[category.parent_id].append(category.id)

        hierarchy = cls(categories=by_id, children_of=children_of)
        for category in selected:
            hierarchy.descendants(category.id)
        return hierarchy

    def children(self, category_id: str) -> list[str]:
        return list(self.children_of.get(category_id, []))

    def descendants(self, category_id: str) -> list[str]:
        """Ids of the category and all of its descendants, self first."""
        cached = self._descendants.get(category_id)
        if cached is not None:
            return cached
        if category_id not in self.children_of:
            return [category_id]

        # Mark before descending so a malformed parent cycle terminates.
        result = [category_id]
        self._descendants[category_id] = result
        for child_id in self.children_of[category_id]:
            for descendant in self.descendants(child_id):
                if descendant not in result:
                    result.append(descendant)
        return result

    def subtree_ids(self, category_id: str) -> set[str]:
        return set(self.descendants(category_id))

    def child_categories(self, category_id: str) -> list[Category]:
        return [self.categories[child_id] for child_id in self.children_of.get(category_id, [])]


def _sibling_sort_key(category: Category) -> tuple[int, str, str]:
    return (category.order, category.name, category.id)
