"""Domain models - node handles, call outcomes and verdicts."""

from .node import NodeHandle, NodeRole, ReadinessState
from .outcome import CallOutcome, OutcomeKind
from .verdict import Classification, Verdict

__all__ = [
    "NodeHandle",
    "NodeRole",
    "ReadinessState",
    "CallOutcome",
    "OutcomeKind",
    "Classification",
    "Verdict",
]
