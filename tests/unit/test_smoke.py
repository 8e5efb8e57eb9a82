"""Smoke tests — validate the function app endpoints work end-to-end."""

import json
from unittest.mock import MagicMock, patch

import azure.functions as func

from drive_merge.merging.rollback import RollbackResult, RollbackSession, SessionNotFoundError
from drive_merge.orchestration.orchestrator import ResolutionOutcome

_TRIGGERS = "drive_merge.functions.http_trigger"


def _request(
    params: dict[str, str] | None = None, route: dict[str, str] | None = None
) -> MagicMock:
    req = MagicMock(spec=func.HttpRequest)
    req.params = params or {}
    req.route_params = route or {}
    return req


def test_health_check_returns_status() -> None:
    """Health endpoint returns ok status with version from the package."""
    from drive_merge.functions.http_trigger import health_check

    response = health_check(MagicMock(spec=func.HttpRequest))

    assert response.status_code == 200
    body = json.loads(response.get_body())
    assert body["status"] == "ok"
    assert body["version"] == "0.1.0"


def test_merge_trigger_runs_orchestrator_for_scope() -> None:
    """Merge endpoint runs resolution for the requested scope and returns the outcome."""
    from drive_merge.functions.http_trigger import merge_trigger

    mock_orchestrator = MagicMock()
    mock_orchestrator.resolve_duplicates.return_value = ResolutionOutcome(
        status="resolved", session_id="sess-1", iterations=2, duplicates_remaining=0
    )

    with (
        patch(f"{_TRIGGERS}.load_config", return_value=MagicMock(scope_id="root")),
        patch(
            f"{_TRIGGERS}.merge_orchestrator_from_config",
            return_value=mock_orchestrator,
        ),
    ):
        response = merge_trigger(_request(params={"scope_id": "scope-1"}))

    assert response.status_code == 200
    body = json.loads(response.get_body())
    assert body["status"] == "ok"
    assert body["outcome"] == "resolved"
    mock_orchestrator.resolve_duplicates.assert_called_once_with("scope-1")


def test_merge_trigger_defaults_to_configured_scope() -> None:
    from drive_merge.functions.http_trigger import merge_trigger

    mock_orchestrator = MagicMock()
    mock_orchestrator.resolve_duplicates.return_value = ResolutionOutcome(
        status="resolved", session_id="sess-1", iterations=1, duplicates_remaining=0
    )

    with (
        patch(f"{_TRIGGERS}.load_config", return_value=MagicMock(scope_id="configured")),
        patch(f"{_TRIGGERS}.merge_orchestrator_from_config", return_value=mock_orchestrator),
    ):
        merge_trigger(_request())

    mock_orchestrator.resolve_duplicates.assert_called_once_with("configured")


def test_merge_trigger_returns_500_on_failure() -> None:
    from drive_merge.functions.http_trigger import merge_trigger

    with patch(f"{_TRIGGERS}.load_config", side_effect=KeyError("DM_CLIENT_ID")):
        response = merge_trigger(_request())

    assert response.status_code == 500
    assert json.loads(response.get_body())["status"] == "error"


def test_rollback_trigger_reverses_session() -> None:
    from drive_merge.functions.http_trigger import rollback_trigger

    session = MagicMock(spec=RollbackSession)
    session.status = "rolled_back"
    mock_journal = MagicMock()
    mock_journal.execute_rollback.return_value = RollbackResult(
        success=True,
        total_operations=3,
        successful_rollbacks=3,
        failed_rollbacks=0,
        errors=[],
        session=session,
    )

    with (
        patch(f"{_TRIGGERS}.load_config"),
        patch(f"{_TRIGGERS}.graph_client_from_config"),
        patch(f"{_TRIGGERS}.drive_store_from_config"),
        patch(f"{_TRIGGERS}.rollback_journal_from_config", return_value=mock_journal),
    ):
        response = rollback_trigger(_request(route={"session_id": "sess-1"}))

    assert response.status_code == 200
    body = json.loads(response.get_body())
    assert body["session_status"] == "rolled_back"
    assert body["successful_rollbacks"] == 3
    mock_journal.execute_rollback.assert_called_once_with("sess-1")


def test_rollback_trigger_unknown_session_is_404() -> None:
    from drive_merge.functions.http_trigger import rollback_trigger

    mock_journal = MagicMock()
    mock_journal.execute_rollback.side_effect = SessionNotFoundError("missing")

    with (
        patch(f"{_TRIGGERS}.load_config"),
        patch(f"{_TRIGGERS}.graph_client_from_config"),
        patch(f"{_TRIGGERS}.drive_store_from_config"),
        patch(f"{_TRIGGERS}.rollback_journal_from_config", return_value=mock_journal),
    ):
        response = rollback_trigger(_request(route={"session_id": "missing"}))

    assert response.status_code == 404
