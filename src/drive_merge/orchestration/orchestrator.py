"""Merge orchestrator — rebuild, detect and merge until no duplicates remain."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import TYPE_CHECKING

from azure.core.exceptions import AzureError

from drive_merge.graph.client import GraphApiError, GraphAuthError, graph_client_from_config
from drive_merge.graph.drive import drive_store_from_config
from drive_merge.graph.models import ROOT_ID
from drive_merge.hierarchy.analysis import (
    find_exact_duplicates,
    find_pattern_duplicates,
    summarize_hierarchy,
)
from drive_merge.hierarchy.builder import HierarchyBuildError, HierarchyBuilder
from drive_merge.merging.merger import folder_merger_from_config
from drive_merge.merging.reporting import (
    MergeReport,
    generate_report,
    log_summary,
    report_writer_from_config,
)
from drive_merge.merging.rollback import RollbackError, rollback_journal_from_config

if TYPE_CHECKING:
    from drive_merge.config import AppConfig
    from drive_merge.merging.merger import FolderMerger, MergeResult
    from drive_merge.merging.reporting import ReportWriter
    from drive_merge.merging.rollback import RollbackJournal

logger = logging.getLogger(__name__)

DEFAULT_MAX_ITERATIONS = 5

# Terminal states of the resolution loop
STATUS_RESOLVED = "resolved"
STATUS_STUCK = "stuck"
STATUS_EXHAUSTED = "exhausted"
STATUS_ABORTED = "aborted"
STATUS_LIMITED = "limited"


@dataclass
class ResolutionOutcome:
    """Result of one ``resolve_duplicates`` run."""

    status: str
    session_id: str
    iterations: int
    duplicates_remaining: int
    results: list[MergeResult] = field(default_factory=list)
    errors: list[str] = field(default_factory=list)
    report: MergeReport | None = None


class MergeOrchestrator:
    """Drives the fixed-point duplicate resolution loop for one scope."""

    def __init__(
        self,
        builder: HierarchyBuilder,
        merger: FolderMerger,
        journal: RollbackJournal,
        report_writer: ReportWriter | None = None,
        max_iterations: int = DEFAULT_MAX_ITERATIONS,
        limit_to_first_folder: bool = False,
    ) -> None:
        """Initialise the orchestrator.

        Args:
            builder: Builds a fresh hierarchy tree from the remote store.
            merger: Merges duplicate groups into their survivors.
            journal: Rollback journal; one session is opened per run.
            report_writer: Optional writer for the run report.
            max_iterations: Upper bound on loop iterations.
            limit_to_first_folder: Merge only the first group found, then stop.
        """
        self._builder = builder
        self._merger = merger
        self._journal = journal
        self._report_writer = report_writer
        self._max_iterations = max_iterations
        self._limit_to_first_folder = limit_to_first_folder

    def resolve_duplicates(self, scope_id: str = ROOT_ID) -> ResolutionOutcome:
        """Repeat rebuild → detect → merge until a terminal state is reached.

        Terminal states:
            resolved: no duplicates found (possibly on the first iteration).
            stuck: the duplicate count did not change since the last iteration.
            exhausted: ``max_iterations`` reached with duplicates remaining.
            limited: a limited run merged its single group.
            aborted: a tree rebuild, the journal or the remote store failed
                outside any single source folder.

        Pattern-style groups are merged first; exact-name groups are then
        detected on a freshly rebuilt tree and merged.

        Args:
            scope_id: Scope folder id, or "root" for the whole drive.

        Returns:
            ResolutionOutcome with the terminal status, results and report.
        """
        session = self._journal.create_session()
        results: list[MergeResult] = []
        errors: list[str] = []
        hierarchy_text: str | None = None
        groups_found = 0
        remaining = 0
        previous = -1
        iteration = 0
        status = STATUS_EXHAUSTED

        logger.info(
            "[resolve_duplicates] starting duplicate resolution; scope_id:%s;session_id:%s",
            scope_id,
            session.id,
        )
        try:
            while iteration < self._max_iterations:
                iteration += 1
                tree = self._builder.build(scope_id)
                pattern_groups = find_pattern_duplicates(tree)
                exact_groups = find_exact_duplicates(tree)
                total = len(pattern_groups) + len(exact_groups)
                remaining = total

                if iteration == 1:
                    groups_found = total
                    hierarchy_text = summarize_hierarchy(tree)

                logger.info(
                    "[resolve_duplicates] iteration %d; pattern_groups:%d;exact_groups:%d;total:%d",
                    iteration,
                    len(pattern_groups),
                    len(exact_groups),
                    total,
                )

                if total == 0:
                    logger.info(
                        "[resolve_duplicates] no duplicates remain; iterations:%d", iteration
                    )
                    status = STATUS_RESOLVED
                    break
                if total == previous:
                    logger.warning(
                        "[resolve_duplicates] no progress, stopping; duplicates:%d;iteration:%d",
                        total,
                        iteration,
                    )
                    status = STATUS_STUCK
                    break
                if iteration >= self._max_iterations:
                    logger.warning(
                        "[resolve_duplicates] reached maximum iterations; max:%d;duplicates:%d",
                        self._max_iterations,
                        total,
                    )
                    status = STATUS_EXHAUSTED
                    break
                previous = total

                if self._limit_to_first_folder:
                    first_group = (pattern_groups or exact_groups)[:1]
                    results.extend(self._merger.merge_groups(first_group, session.id))
                    status = STATUS_LIMITED
                    break

                results.extend(self._merger.merge_groups(pattern_groups, session.id))
                rebuilt = self._builder.build(scope_id)
                remaining_exact = find_exact_duplicates(rebuilt)
                if remaining_exact:
                    results.extend(self._merger.merge_groups(remaining_exact, session.id))
                logger.info("[resolve_duplicates] iteration %d complete", iteration)
        except HierarchyBuildError as exc:
            logger.error("[resolve_duplicates] tree rebuild failed; error:%s", exc)
            errors.append(str(exc))
            status = STATUS_ABORTED
        except RollbackError as exc:
            logger.error(
                "[resolve_duplicates] journal failure; type:%s;error:%s", exc.type, exc.message
            )
            errors.append(exc.message)
            status = STATUS_ABORTED
        except (GraphApiError, GraphAuthError) as exc:
            logger.error("[resolve_duplicates] remote store failure; error:%s", exc, exc_info=True)
            errors.append(str(exc))
            status = STATUS_ABORTED

        for result in results:
            for error in result.errors:
                errors.append(
                    f"{result.source_folder_name} -> {result.target_folder_name}: {error}"
                )

        self._finalize_session(session.id, errors)
        report = generate_report(
            status=status,
            session_id=session.id,
            iterations=iteration,
            groups_found=groups_found,
            groups_remaining=remaining,
            results=results,
            errors=errors,
        )
        log_summary(report)
        self._write_report(report, hierarchy_text)

        return ResolutionOutcome(
            status=status,
            session_id=session.id,
            iterations=iteration,
            duplicates_remaining=remaining,
            results=results,
            errors=errors,
            report=report,
        )

    def _finalize_session(self, session_id: str, errors: list[str]) -> None:
        try:
            if errors:
                self._journal.fail_session(session_id, "; ".join(errors))
            else:
                self._journal.complete_session(session_id)
        except RollbackError:
            logger.error(
                "[resolve_duplicates] could not finalize session; session_id:%s",
                session_id,
                exc_info=True,
            )

    def _write_report(self, report: MergeReport, hierarchy_text: str | None) -> None:
        if self._report_writer is None:
            return
        try:
            self._report_writer.write(report, hierarchy_text)
        except AzureError:
            logger.error(
                "[resolve_duplicates] report upload failed; session_id:%s",
                report.session_id,
                exc_info=True,
            )


def merge_orchestrator_from_config(config: AppConfig) -> MergeOrchestrator:
    """Construct a MergeOrchestrator from application configuration.

    Creates the GraphClient, DriveStore, journal, merger and report writer
    from the config, then wires them into a MergeOrchestrator.

    Args:
        config: Application configuration instance.

    Returns:
        Configured MergeOrchestrator instance.
    """
    client = graph_client_from_config(config)
    drive = drive_store_from_config(client, config)
    journal = rollback_journal_from_config(config, drive)
    return MergeOrchestrator(
        builder=HierarchyBuilder(drive),
        merger=folder_merger_from_config(drive, journal, config),
        journal=journal,
        report_writer=report_writer_from_config(config),
        max_iterations=config.max_iterations,
        limit_to_first_folder=config.limit_to_first_folder,
    )
