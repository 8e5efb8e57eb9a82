"""Data models for the in-memory folder hierarchy and duplicate groups."""

from __future__ import annotations

from dataclasses import dataclass, field


@dataclass(frozen=True)
class FolderNode:
    """One folder in a built hierarchy.

    Attributes:
        id: Remote item ID.
        name: Folder name, whitespace-trimmed.
        parent_id: Authoritative parent ID, or None when the folder sits
            directly under the scope root.
        level: Depth from the scope root (top-level folders are 0).
        path: Ancestor names plus own name, root to self. Empty when the
            parent chain could not be resolved.
        children: IDs of child folders, in listing order.
    """

    id: str
    name: str
    parent_id: str | None
    level: int
    path: tuple[str, ...]
    children: tuple[str, ...] = ()


@dataclass(frozen=True)
class HierarchyTree:
    """Snapshot of a folder hierarchy built from one remote listing.

    ``folder_map`` is the only structure that owns nodes; ``root_ids`` and
    each node's ``children`` are id-keyed views into it.
    """

    root_id: str
    root_ids: tuple[str, ...]
    folder_map: dict[str, FolderNode]
    max_depth: int
    cyclic_ids: frozenset[str] = frozenset()

    @property
    def roots(self) -> list[FolderNode]:
        """Top-level nodes in listing order."""
        return [self.folder_map[node_id] for node_id in self.root_ids]

    @property
    def total_folders(self) -> int:
        return len(self.folder_map)

    def children_of(self, node: FolderNode) -> list[FolderNode]:
        """Resolve a node's child ids to nodes."""
        return [self.folder_map[child_id] for child_id in node.children]

    def get_path(self, folder_id: str) -> tuple[str, ...] | None:
        """Return the path for ``folder_id``, or None if it is not in the tree."""
        node = self.folder_map.get(folder_id)
        return node.path if node else None

    def subtree(self, folder_id: str) -> HierarchyTree | None:
        """Return the subtree rooted at ``folder_id`` with depth relative to it."""
        root = self.folder_map.get(folder_id)
        if root is None:
            return None

        collected: dict[str, FolderNode] = {}
        stack = [root]
        while stack:
            node = stack.pop()
            collected[node.id] = node
            stack.extend(self.children_of(node))

        deepest = max(node.level for node in collected.values())
        return HierarchyTree(
            root_id=root.parent_id or self.root_id,
            root_ids=(root.id,),
            folder_map=collected,
            max_depth=deepest - root.level,
            cyclic_ids=self.cyclic_ids & frozenset(collected),
        )


@dataclass(frozen=True)
class DuplicateGroup:
    """Sibling folders judged to be one logical destination.

    ``folder_ids[0]`` is the merge survivor; the rest are merge sources.
    """

    folder_name: str
    folder_ids: tuple[str, ...]
    parent_id: str
    parent_name: str
    folder_names: dict[str, str] = field(default_factory=dict)

    @property
    def target_id(self) -> str:
        return self.folder_ids[0]

    @property
    def source_ids(self) -> tuple[str, ...]:
        return self.folder_ids[1:]

    @property
    def display_name(self) -> str:
        return f"{self.parent_name} / {self.folder_name}"

    def name_of(self, folder_id: str) -> str:
        """Return the original folder name for an id in this group."""
        return self.folder_names.get(folder_id, self.folder_name)
