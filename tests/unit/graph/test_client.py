"""Unit tests for graph/client.py — MSAL auth and HTTP calls."""

import json
from io import BytesIO
from unittest.mock import MagicMock, patch
from urllib.error import HTTPError, URLError

import pytest

from drive_merge.graph.client import (
    REQUEST_TIMEOUT,
    GraphApiError,
    GraphAuthError,
    GraphClient,
)

# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _make_client() -> GraphClient:
    """Return a GraphClient with a mocked MSAL app."""
    with patch("drive_merge.graph.client.msal.ConfidentialClientApplication"):
        client = GraphClient(
            client_id="test-client-id",
            client_secret="test-secret",
            tenant_id="test-tenant-id",
        )
    return client


def _mock_token_success(client: GraphClient) -> None:
    """Configure the MSAL mock to return a valid token."""
    client._app.acquire_token_for_client.return_value = {  # type: ignore[attr-defined]
        "access_token": "fake-token-abc"
    }


def _mock_token_failure(client: GraphClient) -> None:
    """Configure the MSAL mock to simulate token acquisition failure."""
    client._app.acquire_token_for_client.return_value = {  # type: ignore[attr-defined]
        "error": "invalid_client",
        "error_description": "Client secret is wrong",
    }


def _mock_response(raw: bytes) -> MagicMock:
    response = MagicMock()
    response.read.return_value = raw
    response.__enter__ = lambda s: s
    response.__exit__ = MagicMock(return_value=False)
    return response


def _http_error(code: int, body: bytes, msg: str = "Error") -> HTTPError:
    return HTTPError(
        url="https://graph.microsoft.com/v1.0/path",
        code=code,
        msg=msg,
        hdrs=MagicMock(),  # type: ignore[arg-type]
        fp=BytesIO(body),
    )


# ---------------------------------------------------------------------------
# Constructor tests
# ---------------------------------------------------------------------------


class TestGraphClientInit:
    def test_msal_app_created_with_correct_authority(self) -> None:
        with patch("drive_merge.graph.client.msal.ConfidentialClientApplication") as mock_msal:
            GraphClient("cid", "csecret", "tid-001")
            mock_msal.assert_called_once_with(
                client_id="cid",
                client_credential="csecret",
                authority="https://login.microsoftonline.com/tid-001",
            )


# ---------------------------------------------------------------------------
# _acquire_token tests
# ---------------------------------------------------------------------------


class TestAcquireToken:
    def test_returns_token_on_success(self) -> None:
        client = _make_client()
        _mock_token_success(client)
        token = client._acquire_token()
        assert token == "fake-token-abc"

    def test_raises_auth_error_on_failure(self) -> None:
        client = _make_client()
        _mock_token_failure(client)
        with pytest.raises(GraphAuthError, match="invalid_client"):
            client._acquire_token()


# ---------------------------------------------------------------------------
# get() tests
# ---------------------------------------------------------------------------


class TestGraphClientGet:
    def test_get_constructs_correct_url_and_header(self) -> None:
        client = _make_client()
        _mock_token_success(client)

        response_data = {"value": [{"id": "item-1"}]}
        with patch("drive_merge.graph.client.urllib_request.urlopen") as mock_urlopen:
            mock_urlopen.return_value = _mock_response(json.dumps(response_data).encode())
            result = client.get("/drives/d1/root/delta")

        assert result == response_data
        req = mock_urlopen.call_args[0][0]
        assert req.full_url == "https://graph.microsoft.com/v1.0/drives/d1/root/delta"
        assert req.get_method() == "GET"
        assert req.get_header("Authorization") == "Bearer fake-token-abc"
        assert req.data is None

    def test_get_raises_graph_api_error_on_non_2xx(self) -> None:
        client = _make_client()
        _mock_token_success(client)

        error_body = json.dumps({"error": {"message": "Item not found"}}).encode()
        with (
            patch(
                "drive_merge.graph.client.urllib_request.urlopen",
                side_effect=_http_error(404, error_body, "Not Found"),
            ),
            pytest.raises(GraphApiError) as exc_info,
        ):
            client.get("/drives/d1/items/bad")

        assert exc_info.value.status_code == 404
        assert "Item not found" in exc_info.value.message
        assert not exc_info.value.is_transient

    def test_get_falls_back_to_reason_for_unparseable_error_body(self) -> None:
        client = _make_client()
        _mock_token_success(client)

        with (
            patch(
                "drive_merge.graph.client.urllib_request.urlopen",
                side_effect=_http_error(502, b"<html>gateway</html>", "Bad Gateway"),
            ),
            pytest.raises(GraphApiError) as exc_info,
        ):
            client.get("/drives/d1/root")

        assert exc_info.value.status_code == 502
        assert exc_info.value.message == "Bad Gateway"

    def test_get_raises_auth_error_when_token_fails(self) -> None:
        client = _make_client()
        _mock_token_failure(client)

        with pytest.raises(GraphAuthError):
            client.get("/drives/d1/root/delta")

    def test_get_passes_request_timeout(self) -> None:
        client = _make_client()
        _mock_token_success(client)

        with patch("drive_merge.graph.client.urllib_request.urlopen") as mock_urlopen:
            mock_urlopen.return_value = _mock_response(b"{}")
            client.get("/drives/d1/root")

        assert mock_urlopen.call_args.kwargs["timeout"] == REQUEST_TIMEOUT

    def test_connection_failure_raises_transient_graph_api_error(self) -> None:
        client = _make_client()
        _mock_token_success(client)

        with (
            patch(
                "drive_merge.graph.client.urllib_request.urlopen",
                side_effect=URLError("connection reset"),
            ),
            pytest.raises(GraphApiError) as exc_info,
        ):
            client.get("/drives/d1/root")

        assert exc_info.value.status_code == 0
        assert "connection reset" in exc_info.value.message
        assert exc_info.value.is_transient

    def test_read_timeout_raises_transient_graph_api_error(self) -> None:
        client = _make_client()
        _mock_token_success(client)

        with (
            patch(
                "drive_merge.graph.client.urllib_request.urlopen",
                side_effect=TimeoutError("timed out"),
            ),
            pytest.raises(GraphApiError) as exc_info,
        ):
            client.patch("/drives/d1/items/f1", {"name": "x"})

        assert exc_info.value.is_transient


# ---------------------------------------------------------------------------
# Mutating request tests
# ---------------------------------------------------------------------------


class TestGraphClientMutations:
    def test_patch_sends_json_body(self) -> None:
        client = _make_client()
        _mock_token_success(client)

        with patch("drive_merge.graph.client.urllib_request.urlopen") as mock_urlopen:
            mock_urlopen.return_value = _mock_response(b'{"id": "f1"}')
            result = client.patch("/drives/d1/items/f1", {"parentReference": {"id": "p2"}})

        assert result == {"id": "f1"}
        req = mock_urlopen.call_args[0][0]
        assert req.get_method() == "PATCH"
        assert req.get_header("Content-type") == "application/json"
        assert json.loads(req.data) == {"parentReference": {"id": "p2"}}

    def test_post_returns_empty_dict_for_empty_body(self) -> None:
        client = _make_client()
        _mock_token_success(client)

        with patch("drive_merge.graph.client.urllib_request.urlopen") as mock_urlopen:
            mock_urlopen.return_value = _mock_response(b"")
            result = client.post("/drives/d1/items/f1/restore", {})

        assert result == {}
        assert mock_urlopen.call_args[0][0].get_method() == "POST"

    def test_delete_sends_delete(self) -> None:
        client = _make_client()
        _mock_token_success(client)

        with patch("drive_merge.graph.client.urllib_request.urlopen") as mock_urlopen:
            mock_urlopen.return_value = _mock_response(b"")
            client.delete("/drives/d1/items/f1")

        req = mock_urlopen.call_args[0][0]
        assert req.get_method() == "DELETE"
        assert req.full_url == "https://graph.microsoft.com/v1.0/drives/d1/items/f1"

    def test_patch_raises_graph_api_error_on_conflict(self) -> None:
        client = _make_client()
        _mock_token_success(client)

        error_body = json.dumps({"error": {"message": "Name already exists"}}).encode()
        with (
            patch(
                "drive_merge.graph.client.urllib_request.urlopen",
                side_effect=_http_error(409, error_body, "Conflict"),
            ),
            pytest.raises(GraphApiError) as exc_info,
        ):
            client.patch("/drives/d1/items/f1", {"name": "x"})

        assert exc_info.value.status_code == 409
        assert "Name already exists" in exc_info.value.message


# ---------------------------------------------------------------------------
# GraphApiError tests
# ---------------------------------------------------------------------------


class TestGraphApiError:
    def test_status_code_and_message_stored(self) -> None:
        err = GraphApiError(403, "Access denied")
        assert err.status_code == 403
        assert err.message == "Access denied"

    def test_str_includes_status_code(self) -> None:
        err = GraphApiError(429, "Too many requests")
        assert "429" in str(err)

    @pytest.mark.parametrize("code", [0, 429, 500, 502, 503, 504])
    def test_network_throttling_and_server_errors_are_transient(self, code: int) -> None:
        assert GraphApiError(code, "x").is_transient

    @pytest.mark.parametrize("code", [400, 401, 403, 404, 409])
    def test_client_errors_are_not_transient(self, code: int) -> None:
        assert not GraphApiError(code, "x").is_transient
