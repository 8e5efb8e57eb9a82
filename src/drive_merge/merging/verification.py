"""Move verification — checks that a source folder's contents reached the target."""

from __future__ import annotations

import logging
from collections.abc import Sequence
from dataclasses import dataclass, field
from typing import Protocol

from drive_merge.graph.client import GraphApiError, GraphAuthError
from drive_merge.graph.models import DriveItem

logger = logging.getLogger(__name__)


class ChildLister(Protocol):
    def list_children(self, parent_id: str) -> list[DriveItem]: ...


class VerificationError(Exception):
    """Raised when a folder needed for verification cannot be listed."""

    def __init__(self, message: str, type: str) -> None:
        super().__init__(message)
        self.message = message
        self.type = type


@dataclass(frozen=True)
class ExpectedItem:
    """An item expected to be found in the target after a move."""

    id: str
    name: str


@dataclass
class MoveVerificationResult:
    """Outcome of one verification pass.

    Attributes:
        success: True only when every expected item is in the target, the
            target count matches the baseline (when one was given), and the
            source is empty.
        expected_item_count: Number of items expected to have moved.
        actual_item_count: Number of items currently in the target.
        missing_items: Names of expected items not found in the target.
        extra_items: Names of target items that were not expected to move.
        source_folder_empty: Whether the source folder lists no items.
        remaining_source_items: Names of items still in the source.
        errors: Human-readable descriptions of every failed check.
    """

    success: bool
    expected_item_count: int
    actual_item_count: int
    missing_items: list[str] = field(default_factory=list)
    extra_items: list[str] = field(default_factory=list)
    source_folder_empty: bool = True
    remaining_source_items: list[str] = field(default_factory=list)
    errors: list[str] = field(default_factory=list)


class VerificationService:
    """Re-lists source and target folders and compares them to expectations."""

    def __init__(self, store: ChildLister) -> None:
        self._store = store

    def verify_move(
        self,
        source_id: str,
        target_id: str,
        expected_items: Sequence[ExpectedItem | DriveItem],
        baseline_count: int | None = None,
    ) -> MoveVerificationResult:
        """Verify a completed move from ``source_id`` into ``target_id``.

        Both folders are listed fresh from the store. Pre-existing target items are
        reported in ``extra_items`` but do not by themselves fail the check.

        Args:
            source_id: Folder the items were moved out of.
            target_id: Folder the items were moved into.
            expected_items: Items that should now be in the target.
            baseline_count: Target item count captured before the move.

        Returns:
            MoveVerificationResult describing every check.

        Raises:
            VerificationError: If either folder cannot be listed.
        """
        target_items = self._list(target_id, "TARGET_LIST_ERROR")
        source_items = self._list(source_id, "SOURCE_LIST_ERROR")

        errors: list[str] = []
        expected_count = len(expected_items)
        actual_count = len(target_items)

        if baseline_count is not None:
            expected_total = baseline_count + expected_count
            if actual_count != expected_total:
                errors.append(
                    f"Item count mismatch: expected {expected_total} "
                    f"({baseline_count} original + {expected_count} moved), "
                    f"found {actual_count} in target folder"
                )

        target_ids = {item.id for item in target_items}
        missing: list[str] = []
        for expected in expected_items:
            if expected.id not in target_ids:
                missing.append(expected.name)
                errors.append(
                    f'Expected item "{expected.name}" (ID: {expected.id}) '
                    "not found in target folder"
                )

        expected_ids = {item.id for item in expected_items}
        extra = [item.name for item in target_items if item.id not in expected_ids]
        if extra and baseline_count is None:
            logger.info(
                "[verify_move] pre-existing items in target; target_id:%s;count:%d",
                target_id,
                len(extra),
            )

        remaining = [item.name for item in source_items]
        if remaining:
            errors.append(
                f"Source folder {source_id} still contains {len(remaining)} items: "
                f"{', '.join(remaining)}"
            )

        success = not errors
        logger.info(
            "[verify_move] verification complete; source_id:%s;target_id:%s;success:%s;"
            "moved:%d;target_total:%d;missing:%d;remaining:%d",
            source_id,
            target_id,
            success,
            expected_count,
            actual_count,
            len(missing),
            len(remaining),
        )
        return MoveVerificationResult(
            success=success,
            expected_item_count=expected_count,
            actual_item_count=actual_count,
            missing_items=missing,
            extra_items=extra,
            source_folder_empty=not remaining,
            remaining_source_items=remaining,
            errors=errors,
        )

    def _list(self, folder_id: str, error_type: str) -> list[DriveItem]:
        try:
            return self._store.list_children(folder_id)
        except (GraphApiError, GraphAuthError) as exc:
            raise VerificationError(
                f"Failed to list items in folder {folder_id}: {exc}", error_type
            ) from exc
