"""Readiness gate and run orchestration."""

from .orchestrator import ComparisonRunOrchestrator
from .readiness import ReadinessChecker, ReadinessResult

__all__ = [
    "ComparisonRunOrchestrator",
    "ReadinessChecker",
    "ReadinessResult",
]
