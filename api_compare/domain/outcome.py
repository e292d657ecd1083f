"""
Call outcome domain model.

One CallOutcome is produced per dispatched request: a success payload, a
well-formed application error, or a transport error after retries ran out.
"""

import json
from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, Optional

# JSON-RPC 2.0 reserved error codes
PARSE_ERROR = -32700
INVALID_REQUEST = -32600
METHOD_NOT_FOUND = -32601
INVALID_PARAMS = -32602
INTERNAL_ERROR = -32603

_ERROR_LABELS = {
    PARSE_ERROR: "ParseError",
    INVALID_REQUEST: "InvalidRequest",
    METHOD_NOT_FOUND: "MissingMethod",
    INVALID_PARAMS: "InvalidParams",
    INTERNAL_ERROR: "InternalServerError",
}


def error_label(code: Optional[int]) -> str:
    """
    Human label for a JSON-RPC error code.

    Unknown codes (node-specific or HTTP statuses) fall back to
    InternalServerError, matching how the node API tests report them.
    """
    if code is None:
        return "Unknown"
    return _ERROR_LABELS.get(code, "InternalServerError")


class OutcomeKind(Enum):
    """Kind of a single call outcome."""

    SUCCESS = "success"
    APPLICATION_ERROR = "application_error"
    TRANSPORT_ERROR = "transport_error"


@dataclass(frozen=True)
class CallOutcome:
    """
    Result of one dispatch to one node.

    Attributes:
        node: Name of the node the call went to
        kind: SUCCESS, APPLICATION_ERROR or TRANSPORT_ERROR
        payload: JSON-RPC result (SUCCESS only)
        error_code: JSON-RPC (or HTTP) error code (APPLICATION_ERROR only)
        error_message: Error text (application or transport)
        attempts: Number of attempts made, retries included
        elapsed_ms: Wall time spent across all attempts
    """

    node: str
    kind: OutcomeKind
    payload: Any = None
    error_code: Optional[int] = None
    error_message: Optional[str] = None
    attempts: int = 1
    elapsed_ms: float = 0.0

    @classmethod
    def success(cls, node: str, payload: Any, attempts: int = 1, elapsed_ms: float = 0.0):
        return cls(node=node, kind=OutcomeKind.SUCCESS, payload=payload,
                   attempts=attempts, elapsed_ms=elapsed_ms)

    @classmethod
    def application_error(
        cls, node: str, code: int, message: str, attempts: int = 1, elapsed_ms: float = 0.0
    ):
        return cls(node=node, kind=OutcomeKind.APPLICATION_ERROR, error_code=code,
                   error_message=message, attempts=attempts, elapsed_ms=elapsed_ms)

    @classmethod
    def transport_error(cls, node: str, message: str, attempts: int = 1, elapsed_ms: float = 0.0):
        return cls(node=node, kind=OutcomeKind.TRANSPORT_ERROR, error_message=message,
                   attempts=attempts, elapsed_ms=elapsed_ms)

    @property
    def is_success(self) -> bool:
        return self.kind is OutcomeKind.SUCCESS

    @property
    def is_application_error(self) -> bool:
        return self.kind is OutcomeKind.APPLICATION_ERROR

    @property
    def is_transport_error(self) -> bool:
        return self.kind is OutcomeKind.TRANSPORT_ERROR

    def status_label(self) -> str:
        """Short status used in result tables (Valid, MissingMethod, Transport...)."""
        if self.is_success:
            return "Valid"
        if self.is_application_error:
            return error_label(self.error_code)
        return "TransportError"

    def describe(self) -> str:
        """Verbatim rendering for diagnostics."""
        if self.is_success:
            return json.dumps(self.payload, sort_keys=True, default=str)
        if self.is_application_error:
            return f"error {self.error_code} ({error_label(self.error_code)}): {self.error_message}"
        return f"transport error after {self.attempts} attempt(s): {self.error_message}"

    def to_dict(self) -> Dict[str, Any]:
        data: Dict[str, Any] = {
            "node": self.node,
            "kind": self.kind.value,
            "attempts": self.attempts,
            "elapsed_ms": round(self.elapsed_ms, 2),
        }
        if self.is_success:
            data["payload"] = self.payload
        else:
            data["error_code"] = self.error_code
            data["error_message"] = self.error_message
        return data
