import unittest

from ledger_engine.category_tree import CategoryHierarchy, collect_subtree_ids
from ledger_engine.models import Category

CATEGORIES = [
    Category(id="assets", name="Assets", role="ASSET"),
    Category(id="cash", name="Cash", role="ASSET", parent_id="assets", order=2),
    Category(id="bank", name="Bank", role="ASSET", parent_id="assets", order=1),
    Category(id="checking", name="Checking", role="ASSET", parent_id="bank"),
    Category(id="brokerage", name="Brokerage", role="ASSET", parent_id="checking"),
    Category(id="loans", name="Loans", role="LIABILITY"),
    Category(id="salary", name="Salary", role="INCOME", parent_id="assets"),
]


class CollectSubtreeIdsTests(unittest.TestCase):
    def setUp(self) -> None:
        self.lookups: list[str] = []

        def children_of(category_id: str) -> list[str]:
            self.lookups.append(category_id)
            return [c.id for c in CATEGORIES if c.parent_id == category_id]

        self.children_of = children_of

    def test_includes_self_and_all_descendants(self) -> None:
        ids = collect_subtree_ids("bank", self.children_of)

        self.assertEqual(ids, {"bank", "checking", "brokerage"})

    def test_leaf_returns_only_itself(self) -> None:
        self.assertEqual(collect_subtree_ids("cash", self.children_of), {"cash"})

    def test_unknown_category_resolves_to_itself(self) -> None:
        self.assertEqual(collect_subtree_ids("missing", self.children_of), {"missing"})

    def test_cycle_terminates(self) -> None:
        edges = {"a": ["b"], "b": ["a"]}

        ids = collect_subtree_ids("a", lambda category_id: edges.get(category_id, []))

        self.assertEqual(ids, {"a", "b"})


class CategoryHierarchyTests(unittest.TestCase):
    def setUp(self) -> None:
        self.hierarchy = CategoryHierarchy.build(CATEGORIES)

    def test_children_are_sorted_by_order(self) -> None:
        self.assertEqual(self.hierarchy.children("assets"), ["salary", "bank", "cash"])

    def test_descendants_include_self_first(self) -> None:
        self.assertEqual(
            self.hierarchy.descendants("bank"),
            ["bank", "checking", "brokerage"],
        )

    def test_subtree_ids_of_root(self) -> None:
        self.assertEqual(
            self.hierarchy.subtree_ids("assets"),
            {"assets", "bank", "cash", "checking", "brokerage", "salary"},
        )

    def test_unknown_category_resolves_to_itself(self) -> None:
        self.assertEqual(self.hierarchy.subtree_ids("missing"), {"missing"})
        self.assertEqual(self.hierarchy.children("missing"), [])

    def test_role_filter_drops_foreign_categories(self) -> None:
        hierarchy = CategoryHierarchy.build(CATEGORIES, roles={"ASSET", "LIABILITY"})

        self.assertNotIn("salary", hierarchy.subtree_ids("assets"))
        self.assertEqual(
            [category.id for category in hierarchy.child_categories("assets")],
            ["bank", "cash"],
        )

    def test_matches_recursive_descent(self) -> None:
        def children_of(category_id: str) -> list[str]:
            return [c.id for c in CATEGORIES if c.parent_id == category_id]

        for category in CATEGORIES:
            self.assertEqual(
                self.hierarchy.subtree_ids(category.id),
                collect_subtree_ids(category.id, children_of),
            )


if __name__ == "__main__":
    unittest.main()
