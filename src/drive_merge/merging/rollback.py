"""Rollback journal — append-only, persisted log of every mutating merge step."""

from __future__ import annotations

import contextlib
import json
import logging
import os
import threading
import time
import uuid
from dataclasses import dataclass, field
from datetime import UTC, datetime
from pathlib import Path
from typing import TYPE_CHECKING, Any, Protocol

from azure.core.exceptions import AzureError, ResourceExistsError, ResourceNotFoundError
from azure.storage.blob import BlobServiceClient

from drive_merge.graph.client import GraphApiError

if TYPE_CHECKING:
    from drive_merge.config import AppConfig
    from drive_merge.graph.drive import DriveStore

logger = logging.getLogger(__name__)

# Operation types
OP_MOVE = "move"
OP_TRASH = "trash"
OP_DELETE = "delete"
OP_RENAME = "rename"
OPERATION_TYPES = frozenset({OP_MOVE, OP_TRASH, OP_DELETE, OP_RENAME})

# Session statuses
STATUS_ACTIVE = "active"
STATUS_COMPLETED = "completed"
STATUS_FAILED = "failed"
STATUS_ROLLED_BACK = "rolled_back"
STATUS_PARTIALLY_ROLLED_BACK = "partially_rolled_back"
REVERSAL_STATUSES = frozenset({STATUS_ROLLED_BACK, STATUS_PARTIALLY_ROLLED_BACK})

# Metadata keys
META_CREATED = "created"
META_ORIGINAL_NAME = "original_name"

DEFAULT_SESSION_CONTAINER = "drive-merge-state"
DEFAULT_SESSION_BLOB_PREFIX = "rollback-sessions/"


class RollbackError(Exception):
    """Raised for journal, persistence and reversal failures."""

    def __init__(
        self,
        message: str,
        type: str,
        session_id: str | None = None,
        operation_id: str | None = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.type = type
        self.session_id = session_id
        self.operation_id = operation_id


class SessionNotFoundError(RollbackError):
    """Raised when a session id is neither in memory nor in durable storage."""

    def __init__(self, session_id: str) -> None:
        super().__init__(f"Session {session_id} not found", "SESSION_NOT_FOUND", session_id)


def _now() -> datetime:
    return datetime.now(tz=UTC)


def _new_id() -> str:
    return f"{int(time.time() * 1000)}-{uuid.uuid4().hex[:8]}"


@dataclass(frozen=True)
class RollbackOperation:
    """One journaled mutation. Created once, never modified."""

    id: str
    type: str
    file_id: str
    file_name: str
    source_id: str
    target_id: str
    timestamp: datetime
    metadata: dict[str, str] | None = None

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {
            "id": self.id,
            "type": self.type,
            "file_id": self.file_id,
            "file_name": self.file_name,
            "source_id": self.source_id,
            "target_id": self.target_id,
            "timestamp": self.timestamp.isoformat(),
        }
        if self.metadata:
            data["metadata"] = dict(self.metadata)
        return data

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> RollbackOperation:
        return cls(
            id=data["id"],
            type=data["type"],
            file_id=data["file_id"],
            file_name=data["file_name"],
            source_id=data["source_id"],
            target_id=data["target_id"],
            timestamp=datetime.fromisoformat(data["timestamp"]),
            metadata=data.get("metadata"),
        )


@dataclass
class RollbackSession:
    """The journal for one merge run.

    ``status`` moves from ``active`` to exactly one of ``completed`` or
    ``failed``; a later reversal moves it to ``rolled_back`` or
    ``partially_rolled_back``. ``operations`` and ``errors`` only grow.
    """

    id: str
    start_time: datetime
    status: str = STATUS_ACTIVE
    end_time: datetime | None = None
    operations: list[RollbackOperation] = field(default_factory=list)
    errors: list[str] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "start_time": self.start_time.isoformat(),
            "end_time": self.end_time.isoformat() if self.end_time else None,
            "status": self.status,
            "operations": [op.to_dict() for op in self.operations],
            "errors": list(self.errors),
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> RollbackSession:
        end_time = data.get("end_time")
        return cls(
            id=data["id"],
            start_time=datetime.fromisoformat(data["start_time"]),
            status=data["status"],
            end_time=datetime.fromisoformat(end_time) if end_time else None,
            operations=[RollbackOperation.from_dict(op) for op in data.get("operations", [])],
            errors=list(data.get("errors", [])),
        )


@dataclass
class RollbackResult:
    """Outcome of replaying a session in reverse."""

    success: bool
    total_operations: int
    successful_rollbacks: int
    failed_rollbacks: int
    errors: list[str]
    session: RollbackSession


# ---------------------------------------------------------------------------
# Durable storage
# ---------------------------------------------------------------------------


class SessionStore(Protocol):
    def save(self, session: RollbackSession) -> None: ...

    def load(self, session_id: str) -> RollbackSession: ...


class FileSessionStore:
    """Stores each session as ``rollback-session-<id>.json`` in a local directory."""

    def __init__(self, directory: str | Path) -> None:
        self._directory = Path(directory)

    def path_for(self, session_id: str) -> Path:
        return self._directory / f"rollback-session-{session_id}.json"

    def save(self, session: RollbackSession) -> None:
        """Rewrite the whole session file atomically."""
        path = self.path_for(session.id)
        tmp_path = path.with_suffix(".json.tmp")
        try:
            self._directory.mkdir(parents=True, exist_ok=True)
            tmp_path.write_text(json.dumps(session.to_dict(), indent=2), encoding="utf-8")
            os.replace(tmp_path, path)
        except OSError as exc:
            raise RollbackError(
                f"Failed to persist session {session.id}: {exc}",
                "PERSISTENCE_ERROR",
                session.id,
            ) from exc

    def load(self, session_id: str) -> RollbackSession:
        path = self.path_for(session_id)
        try:
            data = json.loads(path.read_text(encoding="utf-8"))
        except FileNotFoundError as exc:
            raise SessionNotFoundError(session_id) from exc
        except (OSError, ValueError) as exc:
            raise RollbackError(
                f"Failed to read session file for {session_id}: {exc}",
                "FILE_READ_ERROR",
                session_id,
            ) from exc
        return RollbackSession.from_dict(data)


class BlobSessionStore:
    """Stores each session as one JSON blob in Azure Blob Storage."""

    def __init__(
        self,
        storage_connection_string: str,
        container: str = DEFAULT_SESSION_CONTAINER,
        blob_prefix: str = DEFAULT_SESSION_BLOB_PREFIX,
    ) -> None:
        """Initialise the blob session store.

        Args:
            storage_connection_string: Azure Storage connection string.
            container: Blob container name for session storage.
            blob_prefix: Prefix for session blob paths (e.g. "rollback-sessions/").
        """
        self._blob_service = BlobServiceClient.from_connection_string(storage_connection_string)
        self._container = container
        self._blob_prefix = blob_prefix
        self._container_ready = False

    def blob_path(self, session_id: str) -> str:
        return f"{self._blob_prefix}{session_id}.json"

    def save(self, session: RollbackSession) -> None:
        """Upload the whole session, creating the container on first use."""
        container_client = self._blob_service.get_container_client(self._container)
        try:
            if not self._container_ready:
                with contextlib.suppress(ResourceExistsError):
                    container_client.create_container()
                self._container_ready = True
            blob_client = container_client.get_blob_client(self.blob_path(session.id))
            payload = json.dumps(session.to_dict(), indent=2).encode("utf-8")
            blob_client.upload_blob(payload, overwrite=True)
        except AzureError as exc:
            raise RollbackError(
                f"Failed to persist session {session.id}: {exc}",
                "PERSISTENCE_ERROR",
                session.id,
            ) from exc

    def load(self, session_id: str) -> RollbackSession:
        container_client = self._blob_service.get_container_client(self._container)
        blob_client = container_client.get_blob_client(self.blob_path(session_id))
        try:
            data = blob_client.download_blob().readall()
        except ResourceNotFoundError as exc:
            raise SessionNotFoundError(session_id) from exc
        except AzureError as exc:
            raise RollbackError(
                f"Failed to read session blob for {session_id}: {exc}",
                "FILE_READ_ERROR",
                session_id,
            ) from exc
        return RollbackSession.from_dict(json.loads(data.decode("utf-8")))


# ---------------------------------------------------------------------------
# Journal
# ---------------------------------------------------------------------------


class RollbackJournal:
    """Session-scoped operation journal with LIFO replay."""

    def __init__(
        self,
        store: SessionStore,
        drive: DriveStore | None = None,
        max_retries: int = 3,
        retry_delay: float = 1.0,
    ) -> None:
        """Initialise the journal.

        Args:
            store: Durable storage for sessions.
            drive: Remote store used to reverse operations. Only needed for
                ``execute_rollback``.
            max_retries: Retries per reversed operation.
            retry_delay: Base seconds between reversal retries (linear backoff).
        """
        self._store = store
        self._drive = drive
        self._max_retries = max_retries
        self._retry_delay = retry_delay
        self._sessions: dict[str, RollbackSession] = {}
        self._lock = threading.Lock()

    def create_session(self) -> RollbackSession:
        """Start and persist a new active session."""
        session = RollbackSession(id=_new_id(), start_time=_now())
        with self._lock:
            self._sessions[session.id] = session
            self._store.save(session)
        logger.info("[create_session] created rollback session; session_id:%s", session.id)
        return session

    def log_operation(
        self,
        session_id: str,
        type: str,
        file_id: str,
        file_name: str,
        source_id: str,
        target_id: str,
        metadata: dict[str, str] | None = None,
    ) -> RollbackOperation:
        """Append an operation and persist the full session before returning.

        Raises:
            SessionNotFoundError: If the session is not known to this journal.
            RollbackError: If the session is not active, the type is unknown,
                or persistence fails.
        """
        if type not in OPERATION_TYPES:
            raise RollbackError(
                f"Unknown operation type: {type}", "UNKNOWN_OPERATION", session_id
            )
        with self._lock:
            session = self._require_active(session_id)
            operation = RollbackOperation(
                id=_new_id(),
                type=type,
                file_id=file_id,
                file_name=file_name,
                source_id=source_id,
                target_id=target_id,
                timestamp=_now(),
                metadata=dict(metadata) if metadata else None,
            )
            session.operations.append(operation)
            self._store.save(session)
        logger.info(
            "[log_operation] logged operation; session_id:%s;type:%s;file_id:%s;name:%s",
            session_id,
            type,
            file_id,
            file_name,
        )
        return operation

    def complete_session(self, session_id: str) -> RollbackSession:
        """Mark an active session completed."""
        with self._lock:
            session = self._require_active(session_id)
            session.status = STATUS_COMPLETED
            session.end_time = _now()
            self._store.save(session)
        logger.info("[complete_session] completed rollback session; session_id:%s", session_id)
        return session

    def fail_session(self, session_id: str, error: str) -> RollbackSession:
        """Mark an active session failed and record the reason."""
        with self._lock:
            session = self._require_active(session_id)
            session.status = STATUS_FAILED
            session.end_time = _now()
            session.errors.append(error)
            self._store.save(session)
        logger.warning(
            "[fail_session] failed rollback session; session_id:%s;error:%s", session_id, error
        )
        return session

    def load_session(self, session_id: str) -> RollbackSession:
        """Rehydrate a session from durable storage.

        Raises:
            SessionNotFoundError: If no stored session has this id.
        """
        session = self._store.load(session_id)
        with self._lock:
            self._sessions[session_id] = session
        return session

    def get_session(self, session_id: str) -> RollbackSession | None:
        """Return a session from memory or storage, or None if unknown."""
        session = self._sessions.get(session_id)
        if session is not None:
            return session
        try:
            return self.load_session(session_id)
        except SessionNotFoundError:
            return None

    def list_sessions(self) -> list[RollbackSession]:
        """Return every session this journal has created or loaded."""
        return list(self._sessions.values())

    def execute_rollback(
        self, session_id: str, continue_on_error: bool = True
    ) -> RollbackResult:
        """Reverse a session's operations, newest first.

        ``delete`` entries fail immediately without retry. Other reversals
        are retried with linear backoff.

        Args:
            session_id: Session to reverse.
            continue_on_error: Keep reversing after a failed entry.

        Returns:
            RollbackResult with counts and the updated session.

        Raises:
            SessionNotFoundError: If the session is unknown.
            RollbackError: If no drive is configured or the session has
                already been rolled back.
        """
        drive = self._drive
        if drive is None:
            raise RollbackError(
                "Rollback requires a drive store", "DRIVE_NOT_CONFIGURED", session_id
            )
        session = self._sessions.get(session_id) or self.load_session(session_id)
        if session.status in REVERSAL_STATUSES:
            raise RollbackError(
                f"Session {session_id} has already been rolled back",
                "ALREADY_ROLLED_BACK",
                session_id,
            )

        total = len(session.operations)
        if total == 0:
            logger.info("[execute_rollback] no operations to roll back; session_id:%s", session_id)
            return RollbackResult(True, 0, 0, 0, [], session)

        logger.info(
            "[execute_rollback] rolling back session; session_id:%s;operations:%d",
            session_id,
            total,
        )
        succeeded = 0
        errors: list[str] = []
        for operation in reversed(list(session.operations)):
            try:
                self._reverse(drive, operation)
            except RollbackError as exc:
                message = f"Failed to rollback {operation.file_name}: {exc.message}"
                errors.append(message)
                logger.error("[execute_rollback] %s; operation_id:%s", message, operation.id)
                if not continue_on_error:
                    break
            else:
                succeeded += 1

        with self._lock:
            session.status = STATUS_PARTIALLY_ROLLED_BACK if errors else STATUS_ROLLED_BACK
            session.end_time = _now()
            session.errors.extend(errors)
            self._store.save(session)

        logger.info(
            "[execute_rollback] rollback complete; session_id:%s;succeeded:%d;total:%d",
            session_id,
            succeeded,
            total,
        )
        return RollbackResult(
            success=not errors,
            total_operations=total,
            successful_rollbacks=succeeded,
            failed_rollbacks=len(errors),
            errors=errors,
            session=session,
        )

    # ------------------------------------------------------------------
    # Private helpers
    # ------------------------------------------------------------------

    def _require_active(self, session_id: str) -> RollbackSession:
        session = self._sessions.get(session_id)
        if session is None:
            raise SessionNotFoundError(session_id)
        if session.status != STATUS_ACTIVE:
            raise RollbackError(
                f"Session {session_id} is {session.status}, not active",
                "INVALID_TRANSITION",
                session_id,
            )
        return session

    def _reverse(self, drive: DriveStore, operation: RollbackOperation) -> None:
        if operation.type == OP_DELETE:
            raise RollbackError(
                "Cannot rollback delete operations - items are permanently lost",
                "UNSUPPORTED_OPERATION",
                operation_id=operation.id,
            )

        attempt = 0
        while True:
            try:
                self._apply_reversal(drive, operation)
                return
            except GraphApiError as exc:
                if attempt >= self._max_retries:
                    raise RollbackError(
                        f"Failed to rollback operation {operation.id} after "
                        f"{self._max_retries} retries: {exc}",
                        "ROLLBACK_OPERATION_FAILED",
                        operation_id=operation.id,
                    ) from exc
                attempt += 1
                time.sleep(self._retry_delay * attempt)

    @staticmethod
    def _apply_reversal(drive: DriveStore, operation: RollbackOperation) -> None:
        metadata = operation.metadata or {}
        if operation.type == OP_MOVE:
            if metadata.get(META_CREATED) == "true":
                logger.info("[rollback] trashing created folder; item_id:%s", operation.file_id)
                drive.trash_item(operation.file_id)
            else:
                logger.info(
                    "[rollback] moving item back; item_id:%s;from:%s;to:%s",
                    operation.file_id,
                    operation.target_id,
                    operation.source_id,
                )
                drive.move_item(operation.file_id, operation.source_id)
        elif operation.type == OP_TRASH:
            logger.info("[rollback] restoring trashed item; item_id:%s", operation.file_id)
            drive.restore_item(operation.file_id)
        elif operation.type == OP_RENAME:
            original_name = metadata.get(META_ORIGINAL_NAME)
            if not original_name:
                raise RollbackError(
                    f"Rename of {operation.file_id} has no original name recorded",
                    "MISSING_METADATA",
                    operation_id=operation.id,
                )
            drive.rename_item(operation.file_id, original_name)
        else:
            raise RollbackError(
                f"Unknown operation type: {operation.type}",
                "UNKNOWN_OPERATION",
                operation_id=operation.id,
            )


def rollback_journal_from_config(
    config: AppConfig, drive: DriveStore | None = None
) -> RollbackJournal:
    """Construct a blob-backed RollbackJournal from application configuration.

    Args:
        config: Application configuration instance.
        drive: Optional DriveStore used to reverse operations.

    Returns:
        Configured RollbackJournal instance.
    """
    store = BlobSessionStore(
        storage_connection_string=config.storage_connection_string,
        container=config.state_container,
        blob_prefix=config.session_blob_prefix,
    )
    return RollbackJournal(
        store=store,
        drive=drive,
        max_retries=config.max_retries,
        retry_delay=config.retry_delay,
    )
