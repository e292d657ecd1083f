"""
Node handle domain model.

A NodeHandle wraps one running node endpoint for the duration of a run.
"""

from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, Optional

from api_compare.config.settings import NodeEndpoint


class NodeRole(Enum):
    """Which side of the comparison a node is on."""

    REFERENCE = "reference"
    CANDIDATE = "candidate"


class ReadinessState(Enum):
    """Readiness of a node. Only the ReadinessChecker moves a handle out of PENDING."""

    PENDING = "pending"
    READY = "ready"
    FAILED = "failed"


@dataclass
class NodeHandle:
    """
    Supervisory wrapper around one node RPC endpoint.

    Attributes:
        role: reference or candidate
        base_url: JSON-RPC URL (e.g. http://127.0.0.1:1234/rpc/v0)
        token: Optional bearer token
        readiness: Current readiness state
    """

    role: NodeRole
    base_url: str
    token: Optional[str] = None
    readiness: ReadinessState = ReadinessState.PENDING

    @classmethod
    def from_endpoint(cls, role: NodeRole, endpoint: NodeEndpoint) -> "NodeHandle":
        """Create a pending handle for a configured endpoint."""
        return cls(role=role, base_url=endpoint.url, token=endpoint.token)

    @property
    def name(self) -> str:
        return self.role.value

    @property
    def is_ready(self) -> bool:
        return self.readiness is ReadinessState.READY

    def headers(self) -> Dict[str, str]:
        """HTTP headers for a JSON-RPC request to this node."""
        headers = {"Content-Type": "application/json"}
        if self.token:
            headers["Authorization"] = f"Bearer {self.token}"
        return headers

    def to_dict(self) -> Dict[str, Any]:
        return {
            "name": self.name,
            "base_url": self.base_url,
            "has_token": bool(self.token),
            "readiness": self.readiness.value,
        }
