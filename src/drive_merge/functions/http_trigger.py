"""HTTP trigger blueprint — health check, merge run and rollback endpoints."""

import json
import logging
from typing import Any

import azure.functions as func

from drive_merge import __version__
from drive_merge.config import load_config
from drive_merge.graph.client import graph_client_from_config
from drive_merge.graph.drive import drive_store_from_config
from drive_merge.merging.rollback import SessionNotFoundError, rollback_journal_from_config
from drive_merge.orchestration.orchestrator import merge_orchestrator_from_config

logger = logging.getLogger(__name__)

bp = func.Blueprint()


def _json_response(payload: dict[str, Any], status_code: int = 200) -> func.HttpResponse:
    body = json.dumps(payload)
    return func.HttpResponse(body, status_code=status_code, mimetype="application/json")


def _error_response() -> func.HttpResponse:
    return _json_response({"status": "error", "message": "Internal server error"}, 500)


@bp.route(route="health", methods=["GET"], auth_level=func.AuthLevel.ANONYMOUS)
def health_check(req: func.HttpRequest) -> func.HttpResponse:
    """Health check endpoint. Returns service status and version."""
    logger.info("[health_check] health check requested")

    try:
        return _json_response({"status": "ok", "version": __version__})

    except Exception:
        logger.error("[health_check] health check failed", exc_info=True)
        return _error_response()


@bp.route(route="merge", methods=["POST"], auth_level=func.AuthLevel.FUNCTION)
def merge_trigger(req: func.HttpRequest) -> func.HttpResponse:
    """Run duplicate resolution for the configured scope.

    Requires a function key. An optional ``scope_id`` query parameter
    overrides the configured scope. Returns the run report.
    """
    logger.info("[merge_trigger] merge run requested")

    try:
        config = load_config()
        scope_id = req.params.get("scope_id") or config.scope_id
        orchestrator = merge_orchestrator_from_config(config)
        outcome = orchestrator.resolve_duplicates(scope_id)
        logger.info(
            "[merge_trigger] merge run finished; status:%s;session_id:%s;iterations:%d",
            outcome.status,
            outcome.session_id,
            outcome.iterations,
        )
        report = outcome.report.to_dict() if outcome.report else {}
        return _json_response({"status": "ok", "outcome": outcome.status, "report": report})

    except Exception:
        logger.error("[merge_trigger] merge run failed", exc_info=True)
        return _error_response()


@bp.route(route="rollback/{session_id}", methods=["POST"], auth_level=func.AuthLevel.FUNCTION)
def rollback_trigger(req: func.HttpRequest) -> func.HttpResponse:
    """Reverse every journaled operation of a merge session, newest first."""
    session_id = req.route_params.get("session_id", "")
    logger.info("[rollback_trigger] rollback requested; session_id:%s", session_id)

    try:
        config = load_config()
        drive = drive_store_from_config(graph_client_from_config(config), config)
        journal = rollback_journal_from_config(config, drive)
        result = journal.execute_rollback(session_id)
        return _json_response(
            {
                "status": "ok",
                "session_status": result.session.status,
                "total_operations": result.total_operations,
                "successful_rollbacks": result.successful_rollbacks,
                "failed_rollbacks": result.failed_rollbacks,
                "errors": result.errors,
            }
        )

    except SessionNotFoundError:
        logger.warning("[rollback_trigger] unknown session; session_id:%s", session_id)
        return _json_response({"status": "error", "message": "Session not found"}, 404)

    except Exception:
        logger.error("[rollback_trigger] rollback failed", exc_info=True)
        return _error_response()
