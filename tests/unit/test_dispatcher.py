"""
Unit tests for the JSON-RPC dispatcher (api_compare/rpc/dispatcher.py)

Tests covering:
- Request envelope and bearer token header
- Success, JSON-RPC error, HTTP 4xx/5xx and malformed body mapping
- Retry only on transport failures, exponential backoff
- Cancellation of pending retries
"""

import threading
from unittest.mock import MagicMock, patch

import pytest
import requests

from api_compare.domain.node import NodeHandle, NodeRole
from api_compare.domain.outcome import PARSE_ERROR, OutcomeKind
from api_compare.rpc.dispatcher import RequestDispatcher
from tests.comparison.fake_node import FakeResponse

URL = "http://127.0.0.1:1234/rpc/v0"


@pytest.fixture
def handle():
    return NodeHandle(role=NodeRole.REFERENCE, base_url=URL, token="secret-token-value")


@pytest.fixture
def session():
    return MagicMock()


@pytest.fixture
def dispatcher(session):
    return RequestDispatcher(request_timeout=5.0, max_retries=2, retry_backoff=0.5, http_client=session)


def rpc_result(result):
    return FakeResponse(body={"jsonrpc": "2.0", "id": 1, "result": result})


def rpc_error(code, message="failed"):
    return FakeResponse(body={"jsonrpc": "2.0", "id": 1, "error": {"code": code, "message": message}})


class TestRequestEnvelope:
    """Tests for what goes on the wire."""

    def test_posts_json_rpc_envelope(self, dispatcher, session, handle):
        session.post.return_value = rpc_result({"Height": 1})

        dispatcher.call(handle, "Filecoin.ChainHead", [])

        args, kwargs = session.post.call_args
        assert args[0] == URL
        body = kwargs["json"]
        assert body["jsonrpc"] == "2.0"
        assert body["method"] == "Filecoin.ChainHead"
        assert body["params"] == []
        assert isinstance(body["id"], int)
        assert kwargs["timeout"] == 5.0

    def test_sends_bearer_token(self, dispatcher, session, handle):
        session.post.return_value = rpc_result(None)

        dispatcher.call(handle, "Filecoin.Version")

        headers = session.post.call_args.kwargs["headers"]
        assert headers["Authorization"] == "Bearer secret-token-value"
        assert headers["Content-Type"] == "application/json"

    def test_no_authorization_without_token(self, dispatcher, session):
        session.post.return_value = rpc_result(None)
        anonymous = NodeHandle(role=NodeRole.CANDIDATE, base_url=URL)

        dispatcher.call(anonymous, "Filecoin.Version")

        assert "Authorization" not in session.post.call_args.kwargs["headers"]

    def test_per_call_timeout_override(self, dispatcher, session, handle):
        session.post.return_value = rpc_result(None)

        dispatcher.call(handle, "Filecoin.StateListMiners", [[]], timeout=120.0)

        assert session.post.call_args.kwargs["timeout"] == 120.0

    def test_explicit_zero_timeout_is_not_replaced_by_default(self, dispatcher, session, handle):
        session.post.return_value = rpc_result(None)

        dispatcher.call(handle, "Filecoin.Version", timeout=0)

        assert session.post.call_args.kwargs["timeout"] == 0

    def test_request_ids_are_unique(self, dispatcher, session, handle):
        session.post.return_value = rpc_result(None)

        dispatcher.call(handle, "A")
        dispatcher.call(handle, "B")

        ids = [call.kwargs["json"]["id"] for call in session.post.call_args_list]
        assert ids[0] != ids[1]


class TestOutcomeMapping:
    """Tests for response classification."""

    def test_success(self, dispatcher, session, handle):
        session.post.return_value = rpc_result({"Height": 42})

        outcome = dispatcher.call(handle, "Filecoin.ChainHead")

        assert outcome.kind is OutcomeKind.SUCCESS
        assert outcome.payload == {"Height": 42}
        assert outcome.node == "reference"
        assert outcome.attempts == 1

    def test_null_result_is_success(self, dispatcher, session, handle):
        session.post.return_value = rpc_result(None)

        outcome = dispatcher.call(handle, "Filecoin.MpoolPending", [None])

        assert outcome.is_success
        assert outcome.payload is None

    @patch("api_compare.rpc.dispatcher.time.sleep")
    def test_json_rpc_error_is_not_retried(self, mock_sleep, dispatcher, session, handle):
        session.post.return_value = rpc_error(-32601, "method not found")

        outcome = dispatcher.call(handle, "Filecoin.Nope")

        assert outcome.kind is OutcomeKind.APPLICATION_ERROR
        assert outcome.error_code == -32601
        assert outcome.error_message == "method not found"
        assert session.post.call_count == 1
        mock_sleep.assert_not_called()

    @patch("api_compare.rpc.dispatcher.time.sleep")
    def test_json_rpc_error_with_500_status_is_application_error(
        self, mock_sleep, dispatcher, session, handle
    ):
        response = rpc_error(-32603, "internal")
        response.status_code = 500
        session.post.return_value = response

        outcome = dispatcher.call(handle, "Filecoin.StateCall")

        assert outcome.is_application_error
        assert outcome.error_code == -32603
        assert session.post.call_count == 1

    @patch("api_compare.rpc.dispatcher.time.sleep")
    def test_http_4xx_is_application_error(self, mock_sleep, dispatcher, session, handle):
        session.post.return_value = FakeResponse(status_code=401, text="unauthorized")

        outcome = dispatcher.call(handle, "Filecoin.WalletDefaultAddress")

        assert outcome.is_application_error
        assert outcome.error_code == 401
        assert session.post.call_count == 1

    @patch("api_compare.rpc.dispatcher.time.sleep")
    def test_malformed_2xx_is_parse_error(self, mock_sleep, dispatcher, session, handle):
        session.post.return_value = FakeResponse(status_code=200, text="<html>not json</html>")

        outcome = dispatcher.call(handle, "Filecoin.ChainHead")

        assert outcome.is_application_error
        assert outcome.error_code == PARSE_ERROR
        assert session.post.call_count == 1

    @patch("api_compare.rpc.dispatcher.time.sleep")
    def test_body_without_result_is_parse_error(self, mock_sleep, dispatcher, session, handle):
        session.post.return_value = FakeResponse(body={"jsonrpc": "2.0", "id": 1})

        outcome = dispatcher.call(handle, "Filecoin.ChainHead")

        assert outcome.error_code == PARSE_ERROR


class TestRetry:
    """Tests for transport retries."""

    @patch("api_compare.rpc.dispatcher.time.sleep")
    def test_connection_error_retried_then_succeeds(self, mock_sleep, dispatcher, session, handle):
        session.post.side_effect = [
            requests.ConnectionError("refused"),
            rpc_result({"Height": 7}),
        ]

        outcome = dispatcher.call(handle, "Filecoin.ChainHead")

        assert outcome.is_success
        assert outcome.attempts == 2
        mock_sleep.assert_called_once_with(0.5)

    @patch("api_compare.rpc.dispatcher.time.sleep")
    def test_exhausted_retries_give_transport_error(self, mock_sleep, dispatcher, session, handle):
        session.post.side_effect = requests.Timeout("read timed out")

        outcome = dispatcher.call(handle, "Filecoin.ChainHead")

        assert outcome.kind is OutcomeKind.TRANSPORT_ERROR
        assert outcome.attempts == 3
        assert "timed out" in outcome.error_message
        assert session.post.call_count == 3
        assert [c.args[0] for c in mock_sleep.call_args_list] == [0.5, 1.0]

    @patch("api_compare.rpc.dispatcher.time.sleep")
    def test_5xx_without_body_is_retried(self, mock_sleep, dispatcher, session, handle):
        session.post.side_effect = [
            FakeResponse(status_code=502, text="Bad Gateway"),
            rpc_result(1),
        ]

        outcome = dispatcher.call(handle, "Filecoin.ChainHead")

        assert outcome.is_success
        assert session.post.call_count == 2

    @patch("api_compare.rpc.dispatcher.time.sleep")
    def test_max_retries_override_zero(self, mock_sleep, dispatcher, session, handle):
        session.post.side_effect = requests.ConnectionError("refused")

        outcome = dispatcher.call(handle, "Filecoin.ChainHead", max_retries=0)

        assert outcome.is_transport_error
        assert session.post.call_count == 1
        mock_sleep.assert_not_called()

    @patch("api_compare.rpc.dispatcher.time.sleep")
    def test_cancel_stops_pending_retries(self, mock_sleep, session, handle):
        cancel_event = threading.Event()
        dispatcher = RequestDispatcher(max_retries=5, http_client=session, cancel_event=cancel_event)

        def refuse(*args, **kwargs):
            cancel_event.set()
            raise requests.ConnectionError("refused")

        session.post.side_effect = refuse

        outcome = dispatcher.call(handle, "Filecoin.ChainHead")

        assert outcome.is_transport_error
        assert session.post.call_count == 1
        mock_sleep.assert_not_called()


class TestSessions:
    """Tests for session management without an injected client."""

    def test_creates_and_closes_own_session(self, handle):
        dispatcher = RequestDispatcher()
        with patch("api_compare.rpc.dispatcher.requests.Session") as session_cls:
            session_cls.return_value.post.return_value = rpc_result(1)

            dispatcher.call(handle, "Filecoin.Version")
            dispatcher.call(handle, "Filecoin.Version")
            dispatcher.close()

        session_cls.assert_called_once()
        session_cls.return_value.close.assert_called_once()
