"""Readiness gate: wait until both nodes answer the status query."""

from __future__ import annotations

import time
from concurrent.futures import ThreadPoolExecutor
from enum import Enum
from typing import Any, Callable, Dict, List, Optional

from api_compare.config.settings import DEFAULT_STATUS_METHOD
from api_compare.domain.node import NodeHandle, ReadinessState
from api_compare.domain.outcome import CallOutcome
from api_compare.exceptions import ReadinessTimeout
from api_compare.rpc.dispatcher import RequestDispatcher
from api_compare.utils.logger import get_logger, log_operation

logger = get_logger(__name__)


class ReadinessResult(Enum):
    """Outcome of waiting for one node."""

    READY = "READY"
    TIMED_OUT = "TIMED_OUT"


def chain_head_present(outcome: CallOutcome) -> bool:
    """Default health predicate: the status query returned a non-null result."""
    return outcome.is_success and outcome.payload is not None


class ReadinessChecker:
    """
    Polls a node with the status query until it succeeds or time runs out.

    Connection refused, timeouts, malformed bodies and application errors
    all mean "not ready yet". Each poll is a single attempt; the poll loop
    is the retry.
    """

    def __init__(
        self,
        dispatcher: RequestDispatcher,
        status_method: str = DEFAULT_STATUS_METHOD,
        status_params: Optional[List[Any]] = None,
        is_healthy: Callable[[CallOutcome], bool] = chain_head_present,
    ) -> None:
        self.dispatcher = dispatcher
        self.status_method = status_method
        self.status_params = status_params or []
        self.is_healthy = is_healthy

    def await_ready(
        self, handle: NodeHandle, timeout: float, poll_interval: float
    ) -> ReadinessResult:
        """
        Block until ``handle`` is ready or ``timeout`` seconds have elapsed.

        Moves the handle to READY or FAILED.
        """
        deadline = time.monotonic() + timeout
        polls = 0

        while True:
            polls += 1
            remaining = deadline - time.monotonic()
            outcome = self.dispatcher.call(
                handle,
                self.status_method,
                list(self.status_params),
                timeout=max(min(self.dispatcher.request_timeout, remaining), 0.1),
                max_retries=0,
            )
            if self.is_healthy(outcome):
                handle.readiness = ReadinessState.READY
                logger.info(
                    f"Node {handle.name} is ready",
                    operation="await_ready",
                    context={"node": handle.name, "polls": polls},
                )
                return ReadinessResult.READY

            logger.debug(
                f"Node {handle.name} not ready yet",
                operation="await_ready",
                context={"node": handle.name, "poll": polls, "status": outcome.status_label()},
            )

            remaining = deadline - time.monotonic()
            if remaining <= 0:
                break
            time.sleep(min(poll_interval, remaining))

        handle.readiness = ReadinessState.FAILED
        logger.error(
            f"Node {handle.name} not ready after {timeout:g}s",
            operation="await_ready",
            context={"node": handle.name, "polls": polls},
        )
        return ReadinessResult.TIMED_OUT

    @log_operation("await_ready")
    def ensure_ready(
        self, handles: List[NodeHandle], timeout: float, poll_interval: float
    ) -> Dict[str, ReadinessResult]:
        """
        Check every handle concurrently.

        Raises:
            ReadinessTimeout: Naming every node that never became ready
        """
        with ThreadPoolExecutor(
            max_workers=max(len(handles), 1), thread_name_prefix="readiness"
        ) as executor:
            futures = {
                handle.name: executor.submit(self.await_ready, handle, timeout, poll_interval)
                for handle in handles
            }
            results = {name: future.result() for name, future in futures.items()}

        failed = [name for name, result in results.items() if result is ReadinessResult.TIMED_OUT]
        if failed:
            raise ReadinessTimeout(failed, timeout)
        return results
