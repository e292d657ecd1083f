"""
JSON-RPC request dispatcher.

Issues one JSON-RPC 2.0 call to one node and turns whatever happens into a
CallOutcome. Only transport failures are retried; a well-formed error from
the node is returned immediately.
"""

import itertools
import threading
import time
from typing import Any, List, Optional

import requests

from api_compare.domain.node import NodeHandle
from api_compare.domain.outcome import INTERNAL_ERROR, PARSE_ERROR, CallOutcome
from api_compare.exceptions import ApplicationError, TransportError
from api_compare.utils.logger import StructuredLogger, get_logger

_request_ids = itertools.count(1)


class RequestDispatcher:
    """
    Sends JSON-RPC requests to node handles.

    Safe to share between worker threads: each thread gets its own
    requests.Session unless an http_client is injected.

    Attributes:
        request_timeout: Default per-request timeout in seconds
        max_retries: Retries after the first attempt for transport failures
        retry_backoff: First retry delay; doubles on every further retry
    """

    def __init__(
        self,
        request_timeout: float = 60.0,
        max_retries: int = 2,
        retry_backoff: float = 0.5,
        http_client: Optional[requests.Session] = None,
        cancel_event: Optional[threading.Event] = None,
        logger: Optional[StructuredLogger] = None,
    ) -> None:
        """
        Initialize the dispatcher.

        Args:
            request_timeout: Default timeout applied when a call sets none
            max_retries: Transport retries per call
            retry_backoff: Base delay between retries (exponential backoff)
            http_client: Optional requests-like session (useful for testing)
            cancel_event: When set, pending retries are abandoned
            logger: Optional structured logger instance
        """
        self.request_timeout = request_timeout
        self.max_retries = max_retries
        self.retry_backoff = retry_backoff
        self.http_client = http_client
        self.cancel_event = cancel_event or threading.Event()
        self.logger = logger or get_logger(__name__)

        self._local = threading.local()
        self._sessions: List[requests.Session] = []
        self._sessions_lock = threading.Lock()

    # ------------------------------------------------------------------ #
    # Public API
    # ------------------------------------------------------------------ #
    def call(
        self,
        handle: NodeHandle,
        method: str,
        params: Optional[List[Any]] = None,
        timeout: Optional[float] = None,
        max_retries: Optional[int] = None,
    ) -> CallOutcome:
        """
        Call ``method`` on ``handle`` and classify the response.

        Args:
            handle: Target node
            method: JSON-RPC method name
            params: Positional params
            timeout: Per-request timeout (defaults to request_timeout)
            max_retries: Override of the retry count (0 = single attempt)

        Returns:
            CallOutcome of kind SUCCESS, APPLICATION_ERROR or TRANSPORT_ERROR
        """
        timeout = self.request_timeout if timeout is None else timeout
        retries = self.max_retries if max_retries is None else max_retries
        context = {"node": handle.name, "method": method}

        start_time = time.monotonic()
        attempts = 0
        last_error = "cancelled before dispatch"

        for attempt in range(1, retries + 2):
            if self.cancel_event.is_set():
                break
            attempts = attempt
            try:
                result = self._send(handle, method, params or [], timeout)
                elapsed_ms = (time.monotonic() - start_time) * 1000
                self.logger.debug(
                    "RPC call succeeded",
                    operation="dispatch",
                    context={**context, "attempt": attempt, "elapsed_ms": round(elapsed_ms, 2)},
                )
                return CallOutcome.success(handle.name, result, attempts, elapsed_ms)

            except ApplicationError as e:
                elapsed_ms = (time.monotonic() - start_time) * 1000
                self.logger.debug(
                    "RPC call returned an error",
                    operation="dispatch",
                    context={**context, "attempt": attempt, "code": e.code},
                )
                return CallOutcome.application_error(
                    handle.name, e.code, e.message, attempts, elapsed_ms
                )

            except TransportError as e:
                last_error = str(e)
                if attempt > retries:
                    break
                delay = self.retry_backoff * (2 ** (attempt - 1))
                self.logger.warning(
                    "Retrying RPC call",
                    operation="dispatch",
                    context={**context, "attempt": attempt, "delay_seconds": delay},
                    error=last_error,
                )
                if self.cancel_event.is_set():
                    break
                time.sleep(delay)

        elapsed_ms = (time.monotonic() - start_time) * 1000
        self.logger.warning(
            "RPC call failed at transport level",
            operation="dispatch",
            context={**context, "attempts": attempts},
            error=last_error,
        )
        return CallOutcome.transport_error(handle.name, last_error, attempts, elapsed_ms)

    def cancel(self) -> None:
        """Abandon pending retries of every in-flight call."""
        self.cancel_event.set()

    def close(self) -> None:
        """Close sessions opened by this dispatcher."""
        with self._sessions_lock:
            for session in self._sessions:
                session.close()
            self._sessions.clear()

    # ------------------------------------------------------------------ #
    # Internal helpers
    # ------------------------------------------------------------------ #
    def _session(self):
        if self.http_client is not None:
            return self.http_client
        session = getattr(self._local, "session", None)
        if session is None:
            session = requests.Session()
            self._local.session = session
            with self._sessions_lock:
                self._sessions.append(session)
        return session

    def _send(self, handle: NodeHandle, method: str, params: List[Any], timeout: float) -> Any:
        """
        Perform a single HTTP round trip.

        Returns:
            The JSON-RPC ``result`` value

        Raises:
            TransportError: Connection failure, timeout, or 5xx without a JSON-RPC body
            ApplicationError: JSON-RPC error object, HTTP 4xx, or malformed 2xx body
        """
        payload = {
            "jsonrpc": "2.0",
            "id": next(_request_ids),
            "method": method,
            "params": params,
        }

        try:
            response = self._session().post(
                handle.base_url,
                json=payload,
                headers=handle.headers(),
                timeout=timeout,
            )
        except requests.Timeout as e:
            raise TransportError(f"Request timed out after {timeout:g}s") from e
        except requests.ConnectionError as e:
            raise TransportError(f"Connection error: {e}") from e
        except requests.RequestException as e:
            raise TransportError(f"Request failed: {e}") from e

        body = self._parse_body(response)

        if isinstance(body, dict) and body.get("error") is not None:
            raise self._application_error(body["error"])

        status = response.status_code
        if status >= 500:
            raise TransportError(f"HTTP {status}: {self._snippet(response)}", status_code=status)
        if status >= 400:
            raise ApplicationError(status, f"HTTP {status}: {self._snippet(response)}")

        if not isinstance(body, dict) or "result" not in body:
            raise ApplicationError(
                PARSE_ERROR, f"Malformed JSON-RPC response: {self._snippet(response)}"
            )
        return body["result"]

    @staticmethod
    def _parse_body(response) -> Any:
        try:
            return response.json()
        except ValueError:
            return None

    @staticmethod
    def _application_error(error: Any) -> ApplicationError:
        if isinstance(error, dict):
            code = error.get("code", INTERNAL_ERROR)
            if not isinstance(code, int) or isinstance(code, bool):
                code = INTERNAL_ERROR
            return ApplicationError(code, str(error.get("message", "")), error.get("data"))
        return ApplicationError(INTERNAL_ERROR, str(error))

    @staticmethod
    def _snippet(response, limit: int = 200) -> str:
        text = (getattr(response, "text", "") or "").strip()
        if not text:
            return getattr(response, "reason", "") or "<empty body>"
        return text if len(text) <= limit else f"{text[:limit]}..."
