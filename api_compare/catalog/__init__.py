"""Test catalog and equivalence policies."""

from .loader import FilterList, TestCase, TestCatalog, load_catalog, parse_catalog
from .policies import (
    AlwaysSkip,
    EquivalencePolicy,
    ExactMatch,
    IgnoreFields,
    NumericTolerance,
    PolicyResult,
    SetEquality,
    ShapeMatch,
    build_policy,
)

__all__ = [
    "FilterList",
    "TestCase",
    "TestCatalog",
    "load_catalog",
    "parse_catalog",
    "AlwaysSkip",
    "EquivalencePolicy",
    "ExactMatch",
    "IgnoreFields",
    "NumericTolerance",
    "PolicyResult",
    "SetEquality",
    "ShapeMatch",
    "build_policy",
]
