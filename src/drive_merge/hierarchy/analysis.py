"""Hierarchy analysis — duplicate detection, validation, metrics and rendering."""

from __future__ import annotations

import json
import logging
import re
from collections import deque
from dataclasses import dataclass, field
from typing import TYPE_CHECKING

from drive_merge.hierarchy.models import DuplicateGroup, FolderNode

if TYPE_CHECKING:
    from drive_merge.hierarchy.models import HierarchyTree

logger = logging.getLogger(__name__)

# "Acme", "Acme (1)", "Acme (2)" share the base name "Acme"
PATTERN_DUPLICATE_RE = re.compile(r"^(.+?)(?: \((\d+)\))?$")

ROOT_PARENT_NAME = "root"


@dataclass
class HierarchyValidation:
    """Diagnostics for a built tree. Never used to repair anything."""

    errors: list[str] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)

    @property
    def is_valid(self) -> bool:
        return not self.errors


@dataclass
class TreeMetrics:
    """Shape statistics for a built tree."""

    depth_distribution: dict[int, int]
    min_branch_factor: int
    max_branch_factor: int
    average_branch_factor: float
    leaf_nodes: int
    tree_width: int


# ---------------------------------------------------------------------------
# Duplicate detection
# ---------------------------------------------------------------------------


def _parent_key(tree: HierarchyTree, node: FolderNode) -> str:
    return node.parent_id or tree.root_id


def _parent_name(tree: HierarchyTree, parent_id: str) -> str:
    parent = tree.folder_map.get(parent_id)
    return parent.name if parent else ROOT_PARENT_NAME


def _siblings_by_parent(tree: HierarchyTree) -> dict[str, list[FolderNode]]:
    by_parent: dict[str, list[FolderNode]] = {}
    for node in tree.folder_map.values():
        by_parent.setdefault(_parent_key(tree, node), []).append(node)
    return by_parent


def find_exact_duplicates(tree: HierarchyTree) -> list[DuplicateGroup]:
    """Group sibling folders that share exactly the same name.

    Ids within a group keep listing order.

    Args:
        tree: Built hierarchy tree.

    Returns:
        One DuplicateGroup per (parent, name) with at least two folders.
    """
    groups: list[DuplicateGroup] = []
    for parent_id, siblings in _siblings_by_parent(tree).items():
        by_name: dict[str, list[FolderNode]] = {}
        for node in siblings:
            by_name.setdefault(node.name, []).append(node)
        for name, nodes in by_name.items():
            if len(nodes) < 2:
                continue
            groups.append(
                DuplicateGroup(
                    folder_name=name,
                    folder_ids=tuple(n.id for n in nodes),
                    parent_id=parent_id,
                    parent_name=_parent_name(tree, parent_id),
                    folder_names={n.id: n.name for n in nodes},
                )
            )

    logger.info("[find_exact_duplicates] detected groups; group_count:%d", len(groups))
    return groups


def _suffix_rank(node: FolderNode) -> int:
    match = PATTERN_DUPLICATE_RE.match(node.name)
    if match is None or match.group(2) is None:
        return -1
    return int(match.group(2))


def find_pattern_duplicates(tree: HierarchyTree) -> list[DuplicateGroup]:
    """Group sibling folders whose names differ only by a " (N)" suffix.

    Groups in which every name is identical are left to
    ``find_exact_duplicates`` so the two result lists never share a group.
    Ids are ordered unsuffixed name first, then by ascending suffix, with
    ties kept in listing order.

    Args:
        tree: Built hierarchy tree.

    Returns:
        One DuplicateGroup per (parent, base name) with at least two folders.
    """
    groups: list[DuplicateGroup] = []
    for parent_id, siblings in _siblings_by_parent(tree).items():
        by_base: dict[str, list[FolderNode]] = {}
        for node in siblings:
            match = PATTERN_DUPLICATE_RE.match(node.name)
            if match is None:
                continue
            by_base.setdefault(match.group(1).strip(), []).append(node)
        for base_name, nodes in by_base.items():
            if len(nodes) < 2 or len({n.name for n in nodes}) < 2:
                continue
            ordered = sorted(nodes, key=_suffix_rank)
            groups.append(
                DuplicateGroup(
                    folder_name=base_name,
                    folder_ids=tuple(n.id for n in ordered),
                    parent_id=parent_id,
                    parent_name=_parent_name(tree, parent_id),
                    folder_names={n.id: n.name for n in ordered},
                )
            )

    logger.info("[find_pattern_duplicates] detected groups; group_count:%d", len(groups))
    return groups


# ---------------------------------------------------------------------------
# Validation
# ---------------------------------------------------------------------------


def find_orphan_folders(tree: HierarchyTree) -> list[FolderNode]:
    """Return folders whose parent id references a folder not in the tree."""
    return [
        node
        for node in tree.folder_map.values()
        if node.parent_id is not None
        and node.parent_id not in tree.folder_map
        and node.parent_id != tree.root_id
    ]


def validate_hierarchy(tree: HierarchyTree) -> HierarchyValidation:
    """Report structural problems in a tree without fixing them.

    Errors: cyclic parent chains and empty names. Warnings: orphaned
    folders and duplicate names within one parent.
    """
    result = HierarchyValidation()

    for folder_id in sorted(tree.cyclic_ids):
        node = tree.folder_map[folder_id]
        result.errors.append(f"Circular parent chain: {node.name} ({node.id})")

    for node in tree.folder_map.values():
        if not node.name:
            result.errors.append(f"Folder with empty name: {node.id}")

    for orphan in find_orphan_folders(tree):
        result.warnings.append(
            f"Orphan folder: {orphan.name} ({orphan.id}) - Missing parent: {orphan.parent_id}"
        )

    for group in find_exact_duplicates(tree):
        location = (
            "root level" if group.parent_id == tree.root_id else f"parent {group.parent_id}"
        )
        result.warnings.append(
            f'Duplicate folder name "{group.folder_name}" within {location}: '
            f"{', '.join(group.folder_ids)}"
        )

    for message in result.errors:
        logger.error("[validate_hierarchy] %s", message)
    for message in result.warnings:
        logger.warning("[validate_hierarchy] %s", message)
    return result


# ---------------------------------------------------------------------------
# Traversal and metrics
# ---------------------------------------------------------------------------


def traverse_breadth_first(tree: HierarchyTree) -> dict[int, list[FolderNode]]:
    """Group reachable nodes by level, visiting roots first."""
    by_level: dict[int, list[FolderNode]] = {}
    queue: deque[FolderNode] = deque(tree.roots)
    while queue:
        node = queue.popleft()
        by_level.setdefault(node.level, []).append(node)
        queue.extend(tree.children_of(node))
    return by_level


def calculate_tree_metrics(tree: HierarchyTree) -> TreeMetrics:
    """Compute depth distribution and branch factor statistics."""
    branch_factors = [len(node.children) for node in tree.folder_map.values()]
    depth_distribution = {
        level: len(nodes) for level, nodes in sorted(traverse_breadth_first(tree).items())
    }
    if not branch_factors:
        return TreeMetrics({}, 0, 0, 0.0, 0, 0)
    return TreeMetrics(
        depth_distribution=depth_distribution,
        min_branch_factor=min(branch_factors),
        max_branch_factor=max(branch_factors),
        average_branch_factor=sum(branch_factors) / len(branch_factors),
        leaf_nodes=sum(1 for count in branch_factors if count == 0),
        tree_width=max(depth_distribution.values(), default=0),
    )


# ---------------------------------------------------------------------------
# Rendering
# ---------------------------------------------------------------------------


def generate_tree_visualization(tree: HierarchyTree) -> str:
    """Render the tree as indented plain text with box-drawing connectors."""
    lines: list[str] = []

    def visit(node: FolderNode, prefix: str, is_last: bool) -> None:
        connector = "└── " if is_last else "├── "
        lines.append(f"{prefix}{connector}{node.name} (L{node.level})")
        child_prefix = prefix + ("    " if is_last else "│   ")
        children = tree.children_of(node)
        for index, child in enumerate(children):
            visit(child, child_prefix, index == len(children) - 1)

    roots = tree.roots
    for index, root in enumerate(roots):
        visit(root, "", index == len(roots) - 1)
    return "\n".join(lines)


def generate_nested_json(tree: HierarchyTree) -> str:
    """Render the tree as nested JSON objects."""

    def convert(node: FolderNode) -> dict[str, object]:
        return {
            "id": node.id,
            "name": node.name,
            "level": node.level,
            "path": list(node.path),
            "children": [convert(child) for child in tree.children_of(node)],
        }

    return json.dumps([convert(root) for root in tree.roots], indent=2)


def summarize_hierarchy(tree: HierarchyTree) -> str:
    """Produce the plain-text hierarchy analysis written alongside run reports."""
    metrics = calculate_tree_metrics(tree)
    validation = validate_hierarchy(tree)
    orphans = find_orphan_folders(tree)

    lines = [
        "=== HIERARCHY ANALYSIS ===",
        f"Total folders: {tree.total_folders}",
        f"Max depth: {tree.max_depth}",
        f"Root folders: {len(tree.root_ids)}",
        f"Average branch factor: {metrics.average_branch_factor:.2f}",
        f"Tree width: {metrics.tree_width}",
        f"Leaf nodes: {metrics.leaf_nodes}",
        "",
        "=== LEVEL DISTRIBUTION ===",
        *(f"Level {level}: {count} folders" for level, count in metrics.depth_distribution.items()),
        "",
        f"=== ORPHAN FOLDERS ({len(orphans)}) ===",
        *(f"- {o.name} ({o.id}) - Missing parent: {o.parent_id}" for o in orphans),
        "",
        "=== VALIDATION ===",
        f"Valid: {validation.is_valid}",
        f"Errors: {len(validation.errors)}",
        f"Warnings: {len(validation.warnings)}",
        *(f"- {message}" for message in validation.errors + validation.warnings),
        "",
        "=== TREE ===",
        generate_tree_visualization(tree),
        "",
    ]
    return "\n".join(lines)
