"""Application configuration loaded from environment variables."""

import os
from dataclasses import dataclass

_TRUTHY = frozenset({"1", "true", "yes", "on"})


@dataclass(frozen=True)
class AppConfig:
    """Centralized application configuration.

    Required fields have no defaults and will cause a KeyError at startup
    if the corresponding environment variable is missing. Domain constants
    have sensible defaults but can be overridden via environment variables.
    """

    # Required — no defaults, fail at startup if missing
    client_id: str
    client_secret: str
    tenant_id: str
    drive_id: str
    storage_connection_string: str

    # Domain constants — defaults provided, overridable via env
    scope_id: str = "root"
    state_container: str = "drive-merge-state"
    session_blob_prefix: str = "rollback-sessions/"
    report_blob_prefix: str = "reports/"
    max_iterations: int = 5
    limit_to_first_folder: bool = False
    move_workers: int = 4
    verify_max_attempts: int = 3
    verify_base_delay: float = 1.0
    max_retries: int = 3
    retry_delay: float = 1.0


def _env_flag(name: str, default: bool = False) -> bool:
    """Interpret an environment variable as a boolean flag."""
    raw = os.environ.get(name)
    if raw is None:
        return default
    return raw.strip().lower() in _TRUTHY


def load_config() -> AppConfig:
    """Construct an AppConfig from environment variables.

    Required environment variables:
        DM_CLIENT_ID: Azure AD application (client) ID.
        DM_CLIENT_SECRET: Azure AD application client secret.
        DM_TENANT_ID: Azure AD tenant ID.
        DM_DRIVE_ID: Graph drive ID of the document library to deduplicate.
        AzureWebJobsStorage: Azure Storage account connection string.

    Optional environment variables (with defaults):
        DM_SCOPE_ID: Item ID of the folder to scope the run to (default: root).
        DM_STATE_CONTAINER: Blob container for rollback sessions and reports.
        DM_SESSION_BLOB_PREFIX: Blob prefix for rollback session files.
        DM_REPORT_BLOB_PREFIX: Blob prefix for merge reports.
        DM_MAX_ITERATIONS: Upper bound on resolution iterations (default: 5).
        DM_LIMIT_TO_FIRST_FOLDER: Merge only the first group and child (default: false).
        DM_MOVE_WORKERS: Concurrent moves per source folder (default: 4).
        DM_VERIFY_MAX_ATTEMPTS: Verification attempts before giving up (default: 3).
        DM_VERIFY_BASE_DELAY: Base seconds for verification backoff (default: 1.0).
        DM_MAX_RETRIES: Retries for transient Graph failures (default: 3).
        DM_RETRY_DELAY: Base seconds for transient retry backoff (default: 1.0).

    Returns:
        Configured AppConfig instance.
    """
    return AppConfig(
        client_id=os.environ["DM_CLIENT_ID"],
        client_secret=os.environ["DM_CLIENT_SECRET"],
        tenant_id=os.environ["DM_TENANT_ID"],
        drive_id=os.environ["DM_DRIVE_ID"],
        storage_connection_string=os.environ["AzureWebJobsStorage"],  # noqa: SIM112
        scope_id=os.environ.get("DM_SCOPE_ID", "root"),
        state_container=os.environ.get("DM_STATE_CONTAINER", "drive-merge-state"),
        session_blob_prefix=os.environ.get("DM_SESSION_BLOB_PREFIX", "rollback-sessions/"),
        report_blob_prefix=os.environ.get("DM_REPORT_BLOB_PREFIX", "reports/"),
        max_iterations=int(os.environ.get("DM_MAX_ITERATIONS", "5")),
        limit_to_first_folder=_env_flag("DM_LIMIT_TO_FIRST_FOLDER"),
        move_workers=int(os.environ.get("DM_MOVE_WORKERS", "4")),
        verify_max_attempts=int(os.environ.get("DM_VERIFY_MAX_ATTEMPTS", "3")),
        verify_base_delay=float(os.environ.get("DM_VERIFY_BASE_DELAY", "1.0")),
        max_retries=int(os.environ.get("DM_MAX_RETRIES", "3")),
        retry_delay=float(os.environ.get("DM_RETRY_DELAY", "1.0")),
    )
