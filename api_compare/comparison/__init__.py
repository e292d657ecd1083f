"""Comparison engine, divergence classifier and reporter."""

from .classifier import classify
from .engine import ComparisonEngine
from .reporter import RunSummary, exit_code, render, summarize, write_report

__all__ = [
    "classify",
    "ComparisonEngine",
    "RunSummary",
    "exit_code",
    "render",
    "summarize",
    "write_report",
]
