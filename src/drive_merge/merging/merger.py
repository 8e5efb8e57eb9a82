"""Folder merger — collapses one duplicate group into its survivor folder."""

from __future__ import annotations

import logging
import time
from concurrent.futures import ThreadPoolExecutor, wait
from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import TYPE_CHECKING

from drive_merge.graph.client import GraphApiError, GraphAuthError
from drive_merge.merging.rollback import OP_MOVE, OP_TRASH
from drive_merge.merging.verification import (
    MoveVerificationResult,
    VerificationError,
    VerificationService,
)

if TYPE_CHECKING:
    from collections.abc import Sequence

    from drive_merge.config import AppConfig
    from drive_merge.graph.drive import DriveStore
    from drive_merge.graph.models import DriveItem
    from drive_merge.hierarchy.models import DuplicateGroup
    from drive_merge.merging.rollback import RollbackJournal

logger = logging.getLogger(__name__)

DEFAULT_MOVE_WORKERS = 4
DEFAULT_VERIFY_MAX_ATTEMPTS = 3
DEFAULT_VERIFY_BASE_DELAY = 1.0
TRASH_TARGET = "trash"


class FolderMergerError(Exception):
    """Raised when one source folder cannot be merged and retired safely."""

    def __init__(
        self,
        message: str,
        type: str,
        source_id: str,
        target_id: str,
        missing_items_count: int | None = None,
        remaining_items_count: int | None = None,
        details: str | None = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.type = type
        self.source_id = source_id
        self.target_id = target_id
        self.missing_items_count = missing_items_count
        self.remaining_items_count = remaining_items_count
        self.details = details


@dataclass
class MergeResult:
    """Outcome of merging one source folder into its target."""

    source_folder_id: str
    target_folder_id: str
    source_folder_name: str
    target_folder_name: str
    files_moved: int = 0
    folders_moved: int = 0
    retired: bool = False
    errors: list[str] = field(default_factory=list)

    @property
    def success(self) -> bool:
        return not self.errors

    def to_dict(self) -> dict[str, object]:
        return {
            "source_folder_id": self.source_folder_id,
            "target_folder_id": self.target_folder_id,
            "source_folder_name": self.source_folder_name,
            "target_folder_name": self.target_folder_name,
            "files_moved": self.files_moved,
            "folders_moved": self.folders_moved,
            "retired": self.retired,
            "errors": list(self.errors),
            "success": self.success,
        }


class FolderMerger:
    """Moves every source folder's children into the survivor, verifies, then trashes."""

    def __init__(
        self,
        drive: DriveStore,
        journal: RollbackJournal,
        verification: VerificationService | None = None,
        move_workers: int = DEFAULT_MOVE_WORKERS,
        verify_max_attempts: int = DEFAULT_VERIFY_MAX_ATTEMPTS,
        verify_base_delay: float = DEFAULT_VERIFY_BASE_DELAY,
        limit_to_first_folder: bool = False,
        dry_run: bool = False,
    ) -> None:
        """Initialise the merger.

        Args:
            drive: Remote store used for listings and mutations.
            journal: Rollback journal that records every mutation.
            verification: Verification service (defaults to one on ``drive``).
            move_workers: Concurrent moves per source folder.
            verify_max_attempts: Verification attempts before failing a source.
            verify_base_delay: Base seconds for verification backoff.
            limit_to_first_folder: Only merge the first group and move only
                its first child.
            dry_run: Report what would move without mutating anything.
        """
        self._drive = drive
        self._journal = journal
        self._verification = verification or VerificationService(drive)
        self._move_workers = max(1, move_workers)
        self._verify_max_attempts = max(1, verify_max_attempts)
        self._verify_base_delay = verify_base_delay
        self._limit_to_first_folder = limit_to_first_folder
        self._dry_run = dry_run

    def merge_groups(
        self, groups: Sequence[DuplicateGroup], session_id: str
    ) -> list[MergeResult]:
        """Merge groups one after another.

        A failing source folder is recorded in its MergeResult and never
        stops the remaining sources or groups.

        Args:
            groups: Duplicate groups to merge, in order.
            session_id: Active rollback session to journal into.

        Returns:
            One MergeResult per source folder processed.
        """
        if self._limit_to_first_folder:
            groups = groups[:1]

        results: list[MergeResult] = []
        for index, group in enumerate(groups, start=1):
            logger.info(
                "[merge_groups] merging group %d/%d; group:%s;folders:%d",
                index,
                len(groups),
                group.display_name,
                len(group.folder_ids),
            )
            results.extend(self.merge_group(group, session_id))
        return results

    def merge_group(self, group: DuplicateGroup, session_id: str) -> list[MergeResult]:
        """Merge every source folder of one group into ``group.target_id``."""
        if len(group.folder_ids) < 2:
            return []

        source_ids = group.source_ids[:1] if self._limit_to_first_folder else group.source_ids
        results: list[MergeResult] = []
        for source_id in source_ids:
            result = MergeResult(
                source_folder_id=source_id,
                target_folder_id=group.target_id,
                source_folder_name=group.name_of(source_id),
                target_folder_name=group.name_of(group.target_id),
            )
            try:
                self.merge_source(group, source_id, session_id, result)
            except FolderMergerError as exc:
                logger.error(
                    "[merge_group] source folder merge failed; source_id:%s;target_id:%s;"
                    "type:%s;details:%s",
                    exc.source_id,
                    exc.target_id,
                    exc.type,
                    exc.details,
                )
                result.errors.append(exc.message)
            except VerificationError as exc:
                logger.error(
                    "[merge_group] verification listing failed; source_id:%s;type:%s",
                    source_id,
                    exc.type,
                )
                result.errors.append(exc.message)
            except (GraphApiError, GraphAuthError) as exc:
                logger.error(
                    "[merge_group] remote store failure; source_id:%s;target_id:%s;error:%s",
                    source_id,
                    group.target_id,
                    exc,
                )
                result.errors.append(str(exc))
            results.append(result)
        return results

    def merge_source(
        self,
        group: DuplicateGroup,
        source_id: str,
        session_id: str,
        result: MergeResult,
    ) -> None:
        """Move one source folder's children into the target, verify, then trash it.

        Raises:
            FolderMergerError: If any move fails after retries or the
                verification never succeeds. The source folder is left in
                place in both cases.
        """
        target_id = group.target_id
        source_items = self._drive.list_children(source_id)
        logger.info(
            "[merge_source] listed source folder; source_id:%s;item_count:%d",
            source_id,
            len(source_items),
        )

        if self._dry_run:
            result.files_moved = sum(1 for item in source_items if not item.is_folder)
            result.folders_moved = sum(1 for item in source_items if item.is_folder)
            logger.info(
                "[merge_source] dry run, nothing moved; source_id:%s;would_move:%d",
                source_id,
                len(source_items),
            )
            return

        baseline_count = len(self._drive.list_children(target_id))
        to_move = source_items[:1] if self._limit_to_first_folder else source_items

        self._move_all(to_move, source_id, target_id, session_id)
        result.files_moved = sum(1 for item in to_move if not item.is_folder)
        result.folders_moved = sum(1 for item in to_move if item.is_folder)

        verification = self._verify_with_backoff(source_id, target_id, to_move, baseline_count)
        if not verification.success:
            if self._limit_to_first_folder and not verification.missing_items:
                logger.info(
                    "[merge_source] limited run, leaving source in place; source_id:%s",
                    source_id,
                )
                return
            raise FolderMergerError(
                f"Move verification failed for source folder {source_id}",
                "VERIFICATION_FAILED",
                source_id=source_id,
                target_id=target_id,
                missing_items_count=len(verification.missing_items),
                remaining_items_count=len(verification.remaining_source_items),
                details=(
                    f"Missing items: [{', '.join(verification.missing_items)}], "
                    f"Remaining items: [{', '.join(verification.remaining_source_items)}]"
                ),
            )

        self._journal.log_operation(
            session_id,
            type=OP_TRASH,
            file_id=source_id,
            file_name=group.name_of(source_id),
            source_id=group.parent_id,
            target_id=TRASH_TARGET,
            metadata={
                "deletion_mode": "soft_trash",
                "deletion_date": datetime.now(tz=UTC).isoformat(),
                "merged_into": target_id,
            },
        )
        self._drive.trash_item(source_id)
        result.retired = True
        logger.info(
            "[merge_source] retired source folder; source_id:%s;target_id:%s",
            source_id,
            target_id,
        )

    # ------------------------------------------------------------------
    # Private helpers
    # ------------------------------------------------------------------

    def _move_all(
        self,
        items: Sequence[DriveItem],
        source_id: str,
        target_id: str,
        session_id: str,
    ) -> None:
        """Journal and dispatch every move, then wait for all of them to settle."""
        if not items:
            return

        with ThreadPoolExecutor(max_workers=self._move_workers) as pool:
            futures = {}
            for item in items:
                self._journal.log_operation(
                    session_id,
                    type=OP_MOVE,
                    file_id=item.id,
                    file_name=item.name,
                    source_id=source_id,
                    target_id=target_id,
                )
                futures[pool.submit(self._drive.move_item, item.id, target_id)] = item
            done, _ = wait(futures)

        failed = [futures[f] for f in done if f.exception() is not None]
        for item in failed:
            logger.error(
                "[_move_all] move failed; item_id:%s;name:%s;source_id:%s;target_id:%s",
                item.id,
                item.name,
                source_id,
                target_id,
            )
        if failed:
            raise FolderMergerError(
                f"{len(failed)} of {len(items)} moves failed for source folder {source_id}",
                "MOVE_FAILED",
                source_id=source_id,
                target_id=target_id,
                details=", ".join(item.name for item in failed),
            )
        logger.info(
            "[_move_all] moved items; source_id:%s;target_id:%s;count:%d",
            source_id,
            target_id,
            len(items),
        )

    def _verify_with_backoff(
        self,
        source_id: str,
        target_id: str,
        moved: Sequence[DriveItem],
        baseline_count: int,
    ) -> MoveVerificationResult:
        """Verify the move, retrying with exponential backoff to absorb listing lag."""
        result = self._verification.verify_move(source_id, target_id, moved, baseline_count)
        attempt = 1
        while not result.success and attempt < self._verify_max_attempts:
            delay = self._verify_base_delay * (2 ** (attempt - 1))
            logger.warning(
                "[_verify_with_backoff] verification failed, retrying; source_id:%s;"
                "attempt:%d;delay:%.1f",
                source_id,
                attempt,
                delay,
            )
            time.sleep(delay)
            result = self._verification.verify_move(source_id, target_id, moved, baseline_count)
            attempt += 1

        if not result.success:
            for error in result.errors:
                logger.error("[_verify_with_backoff] %s", error)
        return result


def folder_merger_from_config(
    drive: DriveStore, journal: RollbackJournal, config: AppConfig
) -> FolderMerger:
    """Construct a FolderMerger from application configuration.

    Args:
        drive: DriveStore used for listings and mutations.
        journal: RollbackJournal that records every mutation.
        config: Application configuration instance.

    Returns:
        Configured FolderMerger instance.
    """
    return FolderMerger(
        drive=drive,
        journal=journal,
        move_workers=config.move_workers,
        verify_max_attempts=config.verify_max_attempts,
        verify_base_delay=config.verify_base_delay,
        limit_to_first_folder=config.limit_to_first_folder,
    )
