"""Merge run reports — JSON summary and hierarchy text, written to Azure Blob Storage."""

from __future__ import annotations

import contextlib
import json
import logging
from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import TYPE_CHECKING, Any

from azure.core.exceptions import ResourceExistsError
from azure.storage.blob import BlobServiceClient

if TYPE_CHECKING:
    from collections.abc import Sequence

    from drive_merge.config import AppConfig
    from drive_merge.merging.merger import MergeResult

logger = logging.getLogger(__name__)

DEFAULT_REPORT_CONTAINER = "drive-merge-state"
DEFAULT_REPORT_BLOB_PREFIX = "reports/"
REPORT_FILENAME = "merge-report.json"
HIERARCHY_FILENAME = "hierarchy.txt"


@dataclass
class MergeReport:
    """Summary of one duplicate-resolution run.

    Attributes:
        timestamp: ISO-8601 time the report was generated.
        status: Terminal state of the resolution loop.
        session_id: Rollback session that journaled the run.
        iterations: Loop iterations executed.
        groups_found: Duplicate groups detected on the first iteration.
        groups_remaining: Duplicate groups detected on the last iteration.
        results: Per-source-folder merge results.
        errors: Run-level and per-folder error messages.
    """

    timestamp: str
    status: str
    session_id: str
    iterations: int
    groups_found: int
    groups_remaining: int
    results: list[MergeResult] = field(default_factory=list)
    errors: list[str] = field(default_factory=list)

    @property
    def summary(self) -> dict[str, int]:
        return {
            "groups_found": self.groups_found,
            "groups_merged": len({r.target_folder_id for r in self.results if r.success}),
            "groups_remaining": self.groups_remaining,
            "successful_merges": sum(1 for r in self.results if r.success),
            "failed_merges": sum(1 for r in self.results if not r.success),
            "total_files_moved": sum(r.files_moved for r in self.results),
            "total_folders_moved": sum(r.folders_moved for r in self.results),
            "total_errors": len(self.errors),
        }

    def to_dict(self, include_details: bool = True) -> dict[str, Any]:
        return {
            "timestamp": self.timestamp,
            "status": self.status,
            "session_id": self.session_id,
            "iterations": self.iterations,
            "summary": self.summary,
            "errors": list(self.errors),
            "results": [r.to_dict() for r in self.results] if include_details else [],
        }

    def to_json(self, include_details: bool = True) -> str:
        return json.dumps(self.to_dict(include_details), indent=2)


def generate_report(
    status: str,
    session_id: str,
    iterations: int,
    groups_found: int,
    groups_remaining: int,
    results: Sequence[MergeResult],
    errors: Sequence[str],
) -> MergeReport:
    """Assemble a MergeReport stamped with the current time."""
    return MergeReport(
        timestamp=datetime.now(tz=UTC).isoformat(),
        status=status,
        session_id=session_id,
        iterations=iterations,
        groups_found=groups_found,
        groups_remaining=groups_remaining,
        results=list(results),
        errors=list(errors),
    )


def log_summary(report: MergeReport) -> None:
    """Log the report summary and each failed merge."""
    summary = report.summary
    logger.info(
        "[log_summary] merge report; status:%s;iterations:%d;groups_found:%d;"
        "successful:%d;failed:%d;files_moved:%d;folders_moved:%d;errors:%d",
        report.status,
        report.iterations,
        summary["groups_found"],
        summary["successful_merges"],
        summary["failed_merges"],
        summary["total_files_moved"],
        summary["total_folders_moved"],
        summary["total_errors"],
    )
    for result in report.results:
        if result.success:
            continue
        logger.warning(
            "[log_summary] failed merge; source:%s;target:%s;errors:%s",
            result.source_folder_name,
            result.target_folder_name,
            "; ".join(result.errors),
        )


class ReportWriter:
    """Uploads run reports to Azure Blob Storage under ``<prefix><session_id>/``."""

    def __init__(
        self,
        storage_connection_string: str,
        container: str = DEFAULT_REPORT_CONTAINER,
        blob_prefix: str = DEFAULT_REPORT_BLOB_PREFIX,
    ) -> None:
        """Initialise the report writer.

        Args:
            storage_connection_string: Azure Storage connection string.
            container: Blob container name for reports.
            blob_prefix: Prefix for report blob paths (e.g. "reports/").
        """
        self._blob_service = BlobServiceClient.from_connection_string(storage_connection_string)
        self._container = container
        self._blob_prefix = blob_prefix

    def write(self, report: MergeReport, hierarchy_text: str | None = None) -> list[str]:
        """Upload the JSON report and, when given, the hierarchy visualization.

        Returns:
            Blob paths written.
        """
        container_client = self._blob_service.get_container_client(self._container)
        with contextlib.suppress(ResourceExistsError):
            container_client.create_container()

        base = f"{self._blob_prefix}{report.session_id}/"
        uploads = [(f"{base}{REPORT_FILENAME}", report.to_json())]
        if hierarchy_text is not None:
            uploads.append((f"{base}{HIERARCHY_FILENAME}", hierarchy_text))

        written: list[str] = []
        for blob_path, content in uploads:
            blob_client = container_client.get_blob_client(blob_path)
            blob_client.upload_blob(content.encode("utf-8"), overwrite=True)
            written.append(blob_path)
            logger.info("[report_writer] uploaded report; blob:%s", blob_path)
        return written


def report_writer_from_config(config: AppConfig) -> ReportWriter:
    """Construct a ReportWriter from application configuration.

    Args:
        config: Application configuration instance.

    Returns:
        Configured ReportWriter instance.
    """
    return ReportWriter(
        storage_connection_string=config.storage_connection_string,
        container=config.state_container,
        blob_prefix=config.report_blob_prefix,
    )
