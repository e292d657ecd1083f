"""
Verdict domain model.

One Verdict per TestCase: both call outcomes plus the classification.
"""

from dataclasses import dataclass
from enum import Enum
from typing import TYPE_CHECKING, Any, Dict, Optional

from api_compare.domain.outcome import CallOutcome

if TYPE_CHECKING:
    from api_compare.catalog.loader import TestCase


class Classification(Enum):
    """Result of comparing one case across both nodes."""

    MATCH = "match"
    SKIPPED = "skipped"
    FLAKE = "flake"
    MISMATCH = "mismatch"


@dataclass(frozen=True)
class Verdict:
    """
    Classified result of one test case.

    Outcomes are None only for cases that were never dispatched
    (skip marker, AlwaysSkip, fail-fast or run timeout).
    """

    case: "TestCase"
    reference: Optional[CallOutcome]
    candidate: Optional[CallOutcome]
    classification: Classification
    diagnostic: str = ""

    @classmethod
    def skipped(cls, case: "TestCase", reason: str) -> "Verdict":
        return cls(
            case=case,
            reference=None,
            candidate=None,
            classification=Classification.SKIPPED,
            diagnostic=reason,
        )

    @property
    def is_mismatch(self) -> bool:
        return self.classification is Classification.MISMATCH

    def to_dict(self) -> Dict[str, Any]:
        return {
            "case": self.case.to_dict(),
            "classification": self.classification.value,
            "diagnostic": self.diagnostic,
            "reference": self.reference.to_dict() if self.reference else None,
            "candidate": self.candidate.to_dict() if self.candidate else None,
        }
