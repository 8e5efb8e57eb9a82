"""Hierarchy builder — assembles a folder tree from a flat remote listing."""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Protocol

from drive_merge.graph.client import GraphApiError, GraphAuthError
from drive_merge.graph.models import ROOT_ID, FolderRecord
from drive_merge.hierarchy.models import FolderNode, HierarchyTree

if TYPE_CHECKING:
    from collections.abc import Iterable

logger = logging.getLogger(__name__)


class FolderLister(Protocol):
    def list_folders(self, scope_id: str = ROOT_ID) -> list[FolderRecord]: ...


class HierarchyBuildError(Exception):
    """Raised when the folder listing behind a tree build fails."""

    def __init__(self, scope_id: str, message: str) -> None:
        super().__init__(f"Failed to build hierarchy for scope {scope_id}: {message}")
        self.scope_id = scope_id
        self.message = message


def build_tree(records: Iterable[FolderRecord], root_id: str = ROOT_ID) -> HierarchyTree:
    """Build a HierarchyTree from folder records.

    Names are whitespace-trimmed. A folder whose first parent is missing,
    equal to ``root_id`` or equal to the "root" sentinel is top-level. A
    folder whose parent is not in the listing is kept as a top-level
    orphan. Folders on (or hanging from) a parent cycle are flagged in
    ``cyclic_ids`` and kept as top-level nodes with level 0 and an empty
    path.

    Args:
        records: Folder records from the remote store.
        root_id: Scope id that marks top-level folders.

    Returns:
        The assembled tree.
    """
    names: dict[str, str] = {}
    parents: dict[str, str | None] = {}
    for record in records:
        names[record.id] = record.name.strip()
        parent_id = record.parent_id
        parents[record.id] = None if parent_id in (None, root_id, ROOT_ID) else parent_id

    paths: dict[str, tuple[str, ...]] = {}
    cyclic: set[str] = set()

    def resolve(folder_id: str) -> None:
        chain: list[str] = []
        visited: set[str] = set()
        current: str | None = folder_id
        base: tuple[str, ...] = ()
        while current is not None:
            if current in paths:
                base = paths[current]
                break
            if current in cyclic or current in visited:
                logger.warning(
                    "[build_tree] cyclic parent chain; folder_id:%s;name:%s",
                    folder_id,
                    names[folder_id],
                )
                cyclic.update(chain)
                return
            visited.add(current)
            chain.append(current)
            parent_id = parents[current]
            current = parent_id if parent_id in names else None
        for node_id in reversed(chain):
            base = (*base, names[node_id])
            paths[node_id] = base

    for folder_id in names:
        if folder_id not in paths and folder_id not in cyclic:
            resolve(folder_id)

    children: dict[str, list[str]] = {folder_id: [] for folder_id in names}
    root_ids: list[str] = []
    for folder_id, parent_id in parents.items():
        if folder_id in cyclic or parent_id is None or parent_id not in names:
            root_ids.append(folder_id)
        else:
            children[parent_id].append(folder_id)

    folder_map: dict[str, FolderNode] = {}
    for folder_id, name in names.items():
        path = () if folder_id in cyclic else paths[folder_id]
        folder_map[folder_id] = FolderNode(
            id=folder_id,
            name=name,
            parent_id=parents[folder_id],
            level=max(len(path) - 1, 0),
            path=path,
            children=tuple(children[folder_id]),
        )

    max_depth = max((node.level for node in folder_map.values()), default=0)
    return HierarchyTree(
        root_id=root_id,
        root_ids=tuple(root_ids),
        folder_map=folder_map,
        max_depth=max_depth,
        cyclic_ids=frozenset(cyclic),
    )


class HierarchyBuilder:
    """Fetches all folders for a scope and builds a fresh tree."""

    def __init__(self, store: FolderLister) -> None:
        """Initialise the builder.

        Args:
            store: Remote store exposing a fully-paginated ``list_folders``.
        """
        self._store = store

    def build(self, scope_id: str = ROOT_ID) -> HierarchyTree:
        """Build the hierarchy tree for ``scope_id``.

        Raises:
            HierarchyBuildError: If the remote listing fails. No partial
                tree is ever returned.
        """
        try:
            records = self._store.list_folders(scope_id)
        except (GraphApiError, GraphAuthError) as exc:
            logger.error("[build] folder listing failed; scope_id:%s", scope_id)
            raise HierarchyBuildError(scope_id, str(exc)) from exc

        tree = build_tree(records, scope_id)
        logger.info(
            "[build] built hierarchy; scope_id:%s;folders:%d;roots:%d;max_depth:%d",
            scope_id,
            tree.total_folders,
            len(tree.root_ids),
            tree.max_depth,
        )
        return tree
