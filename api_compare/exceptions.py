"""
Exception hierarchy for the comparison harness.

Fatal errors (ReadinessTimeout, PolicyViolation) halt a run before any
comparison happens. Per-call errors (TransportError, ApplicationError) are
raised inside the dispatcher and converted into CallOutcome values, so they
never abort the scan of the catalog.
"""

from typing import Any, List, Optional


class HarnessError(Exception):
    """
    Base exception for all harness errors.
    """

    pass


class ReadinessTimeout(HarnessError):
    """
    Raised when one or more nodes never became queryable.

    Fatal to the run and reported distinctly from a mismatch.
    """

    def __init__(self, nodes: List[str], timeout: float) -> None:
        self.nodes = list(nodes)
        self.timeout = timeout
        super().__init__(
            f"Node(s) {', '.join(self.nodes)} not ready after {timeout:g}s"
        )


class TransportError(HarnessError):
    """
    Raised when a call fails below the JSON-RPC layer.

    Connection refused/reset, timeouts and gateway errors without a JSON-RPC
    body. Recoverable via retry; reported as a flake once retries are spent.
    """

    def __init__(self, message: str, status_code: Optional[int] = None) -> None:
        super().__init__(message)
        self.status_code = status_code


class ApplicationError(HarnessError):
    """
    Raised when a node answers with a well-formed error.

    Never retried: retrying would hide a real regression behind a flake.
    """

    def __init__(self, code: int, message: str, data: Any = None) -> None:
        super().__init__(f"[{code}] {message}")
        self.code = code
        self.message = message
        self.data = data


class PolicyViolation(HarnessError):
    """
    Raised when a catalog entry is malformed (unknown policy kind, bad params).

    Fatal at load time, before any dispatch.
    """

    pass


class TipsetUnavailable(HarnessError):
    """
    Raised when the shared tipset cannot be read from the reference node.

    Not fatal: cases that need the tipset are reported as skipped.
    """

    pass
