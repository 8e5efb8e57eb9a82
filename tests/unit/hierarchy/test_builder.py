"""Unit tests for hierarchy/builder.py — tree assembly from flat folder listings."""

from unittest.mock import MagicMock

import pytest

from drive_merge.graph.client import GraphApiError, GraphAuthError
from drive_merge.graph.models import FolderRecord
from drive_merge.hierarchy.builder import HierarchyBuildError, HierarchyBuilder, build_tree

# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _record(id: str, name: str, parent: str | None = "root") -> FolderRecord:
    return FolderRecord(id=id, name=name, parent_ids=(parent,) if parent else ())


def _clients_tree() -> list[FolderRecord]:
    """Clients/Acme/2024 plus a sibling Archive folder."""
    return [
        _record("A", "Clients"),
        _record("B", "Acme", "A"),
        _record("C", "2024", "B"),
        _record("D", "Archive"),
    ]


# ---------------------------------------------------------------------------
# build_tree tests
# ---------------------------------------------------------------------------


class TestBuildTree:
    def test_nodes_roots_and_children(self) -> None:
        tree = build_tree(_clients_tree())

        assert set(tree.folder_map) == {"A", "B", "C", "D"}
        assert tree.root_ids == ("A", "D")
        assert tree.folder_map["A"].children == ("B",)
        assert tree.folder_map["C"].children == ()
        assert tree.total_folders == 4

    def test_levels_and_max_depth(self) -> None:
        tree = build_tree(_clients_tree())

        assert tree.folder_map["A"].level == 0
        assert tree.folder_map["B"].level == 1
        assert tree.folder_map["C"].level == 2
        assert tree.max_depth == 2

    def test_path_extends_parent_path(self) -> None:
        tree = build_tree(_clients_tree())

        for node in tree.folder_map.values():
            if node.parent_id is None:
                assert node.path == (node.name,)
            else:
                parent = tree.folder_map[node.parent_id]
                assert node.path == (*parent.path, node.name)
        assert tree.get_path("C") == ("Clients", "Acme", "2024")

    def test_child_listed_before_parent(self) -> None:
        records = [_record("C", "2024", "B"), _record("B", "Acme", "A"), _record("A", "Clients")]

        tree = build_tree(records)

        assert tree.get_path("C") == ("Clients", "Acme", "2024")
        assert tree.root_ids == ("A",)

    def test_names_are_trimmed(self) -> None:
        tree = build_tree([_record("A", "  Acme Corp \t")])

        assert tree.folder_map["A"].name == "Acme Corp"
        assert tree.folder_map["A"].path == ("Acme Corp",)

    def test_scope_id_marks_top_level(self) -> None:
        records = [_record("A", "Clients", "scope-1"), _record("B", "Acme", "A")]

        tree = build_tree(records, root_id="scope-1")

        assert tree.root_ids == ("A",)
        assert tree.folder_map["A"].parent_id is None
        assert tree.root_id == "scope-1"

    def test_record_without_parent_is_top_level(self) -> None:
        tree = build_tree([_record("A", "Loose", None)])

        assert tree.root_ids == ("A",)
        assert tree.folder_map["A"].level == 0

    def test_orphan_becomes_root_with_own_name_path(self) -> None:
        tree = build_tree([_record("A", "Clients"), _record("X", "Lost", "missing-parent")])

        orphan = tree.folder_map["X"]
        assert "X" in tree.root_ids
        assert orphan.parent_id == "missing-parent"
        assert orphan.path == ("Lost",)
        assert orphan.level == 0

    def test_cycle_terminates_and_is_flagged(self) -> None:
        records = [
            _record("A", "Alpha", "B"),
            _record("B", "Beta", "A"),
            _record("C", "Gamma"),
        ]

        tree = build_tree(records)

        assert tree.cyclic_ids == frozenset({"A", "B"})
        assert tree.folder_map["A"].level == 0
        assert tree.folder_map["A"].path == ()
        assert set(tree.root_ids) == {"A", "B", "C"}
        assert tree.folder_map["C"].path == ("Gamma",)

    def test_node_hanging_from_cycle_is_flagged(self) -> None:
        records = [
            _record("A", "Alpha", "B"),
            _record("B", "Beta", "A"),
            _record("D", "Delta", "A"),
        ]

        tree = build_tree(records)

        assert "D" in tree.cyclic_ids
        assert tree.folder_map["D"].path == ()

    def test_self_parent_is_cycle(self) -> None:
        tree = build_tree([_record("A", "Alpha", "A")])

        assert tree.cyclic_ids == frozenset({"A"})

    def test_empty_listing(self) -> None:
        tree = build_tree([])

        assert tree.total_folders == 0
        assert tree.root_ids == ()
        assert tree.max_depth == 0


# ---------------------------------------------------------------------------
# HierarchyTree helper tests
# ---------------------------------------------------------------------------


class TestHierarchyTree:
    def test_get_path_unknown_id(self) -> None:
        assert build_tree(_clients_tree()).get_path("nope") is None

    def test_subtree_relative_depth(self) -> None:
        tree = build_tree(_clients_tree())

        sub = tree.subtree("B")

        assert sub is not None
        assert set(sub.folder_map) == {"B", "C"}
        assert sub.root_ids == ("B",)
        assert sub.max_depth == 1

    def test_subtree_unknown_id(self) -> None:
        assert build_tree(_clients_tree()).subtree("nope") is None


# ---------------------------------------------------------------------------
# HierarchyBuilder tests
# ---------------------------------------------------------------------------


class TestHierarchyBuilder:
    def test_build_lists_scope_and_builds_tree(self) -> None:
        store = MagicMock()
        store.list_folders.return_value = [_record("A", "Clients", "scope-1")]

        tree = HierarchyBuilder(store).build("scope-1")

        store.list_folders.assert_called_once_with("scope-1")
        assert tree.root_ids == ("A",)

    def test_listing_failure_raises_build_error(self) -> None:
        store = MagicMock()
        store.list_folders.side_effect = GraphApiError(503, "Service unavailable")

        with pytest.raises(HierarchyBuildError) as exc_info:
            HierarchyBuilder(store).build("root")

        assert exc_info.value.scope_id == "root"
        assert "503" in exc_info.value.message

    def test_auth_failure_raises_build_error(self) -> None:
        store = MagicMock()
        store.list_folders.side_effect = GraphAuthError("Token acquisition failed")

        with pytest.raises(HierarchyBuildError):
            HierarchyBuilder(store).build()

    def test_each_build_reflects_current_listing(self) -> None:
        store = MagicMock()
        store.list_folders.side_effect = [
            [_record("A", "Acme"), _record("B", "Acme")],
            [_record("A", "Acme")],
        ]
        builder = HierarchyBuilder(store)

        assert builder.build().total_folders == 2
        assert builder.build().total_folders == 1
