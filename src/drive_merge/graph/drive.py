"""Remote store client for a Graph drive: paginated listings and item mutations."""

from __future__ import annotations

import logging
import time
from collections import deque
from collections.abc import Callable
from typing import TYPE_CHECKING, Any, TypeVar

from drive_merge.graph.client import GRAPH_BASE_URL, GraphApiError, GraphClient
from drive_merge.graph.models import (
    CONFLICT_BEHAVIOR,
    FIELD_DELETED,
    FIELD_FOLDER,
    FIELD_ID,
    FIELD_NAME,
    FIELD_PARENT_REFERENCE,
    FIELD_PATH,
    FIELD_ROOT,
    ODATA_DELTA_LINK,
    ODATA_NEXT_LINK,
    ODATA_VALUE,
    ROOT_ID,
    DriveItem,
    FolderRecord,
)

if TYPE_CHECKING:
    from drive_merge.config import AppConfig

logger = logging.getLogger(__name__)

T = TypeVar("T")

DEFAULT_MAX_RETRIES = 3
DEFAULT_RETRY_DELAY = 1.0
MAX_RETRY_DELAY = 30.0


class DriveStore:
    """Paginated list / move / create / trash operations against one Graph drive.

    Every read goes straight to Graph. Listings feed verification and
    baseline counts, so nothing is cached between calls.
    """

    def __init__(
        self,
        graph_client: GraphClient,
        drive_id: str,
        max_retries: int = DEFAULT_MAX_RETRIES,
        retry_delay: float = DEFAULT_RETRY_DELAY,
    ) -> None:
        """Initialise the drive store.

        Args:
            graph_client: Authenticated GraphClient instance.
            drive_id: Graph drive ID of the document library.
            max_retries: Retries for transient Graph failures.
            retry_delay: Base delay in seconds for exponential backoff.
        """
        self._graph = graph_client
        self._drive_id = drive_id
        self._max_retries = max_retries
        self._retry_delay = retry_delay

    # ------------------------------------------------------------------
    # Listings
    # ------------------------------------------------------------------

    def fetch_all_pages(self, path: str) -> list[dict[str, Any]]:
        """Collect every item from a paginated Graph collection.

        Follows @odata.nextLink until the collection is exhausted, or until
        a delta page returns @odata.deltaLink.

        Args:
            path: Relative Graph path of the first page.

        Returns:
            Raw item dicts from all pages, in listing order.
        """
        items: list[dict[str, Any]] = []
        page_count = 0
        next_path: str | None = path
        while next_path is not None:
            current = next_path
            response = self._with_retry("fetch_all_pages", lambda: self._graph.get(current))
            page_count += 1
            items.extend(response.get(ODATA_VALUE, []))

            if ODATA_DELTA_LINK in response:
                next_path = None
            elif ODATA_NEXT_LINK in response:
                next_path = self._relative_path(response[ODATA_NEXT_LINK])
            else:
                next_path = None

            if page_count % 10 == 0:
                logger.info(
                    "[fetch_all_pages] progress; pages:%d;items:%d", page_count, len(items)
                )

        logger.info("[fetch_all_pages] finished; pages:%d;items:%d", page_count, len(items))
        return items

    def list_folders(self, scope_id: str = ROOT_ID) -> list[FolderRecord]:
        """Enumerate every folder below a scope.

        The drive root is listed through the delta endpoint. Any other scope
        is walked breadth-first through ``/children``, since OneDrive for
        Business and SharePoint only support delta on the drive root.

        Parent ids that point at the scope item are rewritten to ``scope_id``
        so callers can treat the id they passed in as the root sentinel.

        Args:
            scope_id: Item ID of the scope folder, or "root" for the drive root.

        Returns:
            FolderRecord snapshots in listing order.
        """
        if scope_id == ROOT_ID:
            records = self._list_root_folders()
        else:
            records = self._walk_folders(scope_id)

        logger.info(
            "[list_folders] listed folders; scope_id:%s;folder_count:%d", scope_id, len(records)
        )
        return records

    def list_children(self, parent_id: str) -> list[DriveItem]:
        """List every child (files and folders) of a folder.

        Args:
            parent_id: Item ID of the folder.

        Returns:
            DriveItem objects in listing order.
        """
        raw_items = self.fetch_all_pages(f"{self._item_path(parent_id)}/children")
        return [self._parse_drive_item(raw) for raw in raw_items]

    # ------------------------------------------------------------------
    # Mutations
    # ------------------------------------------------------------------

    def move_item(self, item_id: str, new_parent_id: str) -> DriveItem:
        """Move an item under a new parent folder."""
        path = self._item_path(item_id)
        body = {FIELD_PARENT_REFERENCE: {FIELD_ID: new_parent_id}}
        raw = self._with_retry("move_item", lambda: self._graph.patch(path, body))
        return self._parse_drive_item(raw)

    def rename_item(self, item_id: str, new_name: str) -> DriveItem:
        """Rename an item in place."""
        path = self._item_path(item_id)
        raw = self._with_retry(
            "rename_item", lambda: self._graph.patch(path, {FIELD_NAME: new_name})
        )
        return self._parse_drive_item(raw)

    def create_folder(self, name: str, parent_id: str) -> DriveItem:
        """Create a folder under ``parent_id``.

        Never retried: a retry after an ambiguous failure can create a
        duplicate folder.
        """
        body = {FIELD_NAME: name, FIELD_FOLDER: {}, CONFLICT_BEHAVIOR: "fail"}
        raw = self._graph.post(f"{self._item_path(parent_id)}/children", body)
        logger.info("[create_folder] created folder; name:%s;parent_id:%s", name, parent_id)
        return self._parse_drive_item(raw)

    def trash_item(self, item_id: str) -> None:
        """Soft-delete an item by moving it to the recycle bin."""
        path = self._item_path(item_id)
        self._with_retry("trash_item", lambda: self._graph.delete(path))
        logger.info("[trash_item] moved item to recycle bin; item_id:%s", item_id)

    def restore_item(self, item_id: str) -> DriveItem:
        """Restore a previously trashed item from the recycle bin."""
        path = f"{self._item_path(item_id)}/restore"
        raw = self._with_retry("restore_item", lambda: self._graph.post(path, {}))
        logger.info("[restore_item] restored item; item_id:%s", item_id)
        return self._parse_drive_item(raw)

    # ------------------------------------------------------------------
    # Private helpers
    # ------------------------------------------------------------------

    def _list_root_folders(self) -> list[FolderRecord]:
        root_path = self._item_path(ROOT_ID)
        root_raw = self._with_retry("list_folders", lambda: self._graph.get(root_path))
        root_item_id = root_raw.get(FIELD_ID, ROOT_ID)

        # Delta may report the same item more than once; the last report wins.
        latest: dict[str, dict[str, Any]] = {}
        for raw in self.fetch_all_pages(f"{root_path}/delta"):
            item_id = raw.get(FIELD_ID, "")
            if FIELD_DELETED in raw:
                latest.pop(item_id, None)
                continue
            latest[item_id] = raw

        records: list[FolderRecord] = []
        for item_id, raw in latest.items():
            if FIELD_FOLDER not in raw or FIELD_ROOT in raw or item_id == root_item_id:
                continue
            parent_id = raw.get(FIELD_PARENT_REFERENCE, {}).get(FIELD_ID)
            if parent_id == root_item_id:
                parent_id = ROOT_ID
            records.append(
                FolderRecord(
                    id=item_id,
                    name=raw.get(FIELD_NAME, ""),
                    parent_ids=(parent_id,) if parent_id else (),
                )
            )
        return records

    def _walk_folders(self, scope_id: str) -> list[FolderRecord]:
        records: list[FolderRecord] = []
        seen: set[str] = {scope_id}
        pending: deque[str] = deque([scope_id])
        while pending:
            parent_id = pending.popleft()
            for raw in self.fetch_all_pages(f"{self._item_path(parent_id)}/children"):
                item_id = raw.get(FIELD_ID, "")
                if FIELD_FOLDER not in raw or FIELD_DELETED in raw or item_id in seen:
                    continue
                seen.add(item_id)
                name = raw.get(FIELD_NAME, "")
                records.append(FolderRecord(id=item_id, name=name, parent_ids=(parent_id,)))
                pending.append(item_id)
        return records

    def _with_retry(self, operation: str, call: Callable[[], T]) -> T:
        """Run ``call``, retrying transient Graph failures with capped backoff."""
        attempt = 0
        while True:
            try:
                return call()
            except GraphApiError as exc:
                if not exc.is_transient or attempt >= self._max_retries:
                    raise
                delay = min(self._retry_delay * (2**attempt), MAX_RETRY_DELAY)
                attempt += 1
                logger.warning(
                    "[%s] transient Graph failure, retrying; status:%d;attempt:%d;delay:%.1f",
                    operation,
                    exc.status_code,
                    attempt,
                    delay,
                )
                time.sleep(delay)

    def _item_path(self, item_id: str) -> str:
        base = f"/drives/{self._drive_id}"
        if item_id == ROOT_ID:
            return f"{base}/root"
        return f"{base}/items/{item_id}"

    @staticmethod
    def _parse_drive_item(raw: dict) -> DriveItem:  # type: ignore[type-arg]
        """Map a raw Graph API item dict to a DriveItem dataclass."""
        parent_ref = raw.get(FIELD_PARENT_REFERENCE, {})
        return DriveItem(
            id=raw.get(FIELD_ID, ""),
            name=raw.get(FIELD_NAME, ""),
            parent_id=parent_ref.get(FIELD_ID, ""),
            parent_path=parent_ref.get(FIELD_PATH, ""),
            is_folder=FIELD_FOLDER in raw,
            is_deleted=FIELD_DELETED in raw,
        )

    @staticmethod
    def _relative_path(full_url: str) -> str:
        """Convert a full Graph API URL to a relative path for GraphClient.get()."""
        prefix = GRAPH_BASE_URL
        if full_url.startswith(prefix):
            return full_url[len(prefix) :]
        return full_url


def drive_store_from_config(graph_client: GraphClient, config: AppConfig) -> DriveStore:
    """Construct a DriveStore from application configuration.

    Args:
        graph_client: Authenticated GraphClient instance.
        config: Application configuration instance.

    Returns:
        Configured DriveStore instance.
    """
    return DriveStore(
        graph_client=graph_client,
        drive_id=config.drive_id,
        max_retries=config.max_retries,
        retry_delay=config.retry_delay,
    )
