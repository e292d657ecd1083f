"""Reporter - summarise verdicts, render the run report and decide the exit status."""

from __future__ import annotations

import json
import logging
from collections import Counter
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, Iterable, List, Optional, Tuple

from api_compare.domain.outcome import CallOutcome
from api_compare.domain.verdict import Classification, Verdict

logger = logging.getLogger(__name__)

EXIT_SUCCESS = 0
EXIT_MISMATCH = 1

TABLE_HEADER = ("RPC Method", "Reference", "Candidate", "Result")


@dataclass(frozen=True)
class RunSummary:
    """Counts per classification plus the ordered verdicts behind them."""

    total: int
    matched: int
    skipped: int
    flaked: int
    mismatched: int
    mismatches: Tuple[Verdict, ...]
    verdicts: Tuple[Verdict, ...]

    @property
    def passed(self) -> bool:
        return self.mismatched == 0

    def statistics(self) -> Dict[str, int]:
        return {
            "total": self.total,
            "matched": self.matched,
            "skipped": self.skipped,
            "flaked": self.flaked,
            "mismatched": self.mismatched,
        }


def summarize(verdicts: Iterable[Verdict]) -> RunSummary:
    """Build the run summary; verdict order is preserved."""
    ordered = tuple(verdicts)
    counts = Counter(verdict.classification for verdict in ordered)
    return RunSummary(
        total=len(ordered),
        matched=counts[Classification.MATCH],
        skipped=counts[Classification.SKIPPED],
        flaked=counts[Classification.FLAKE],
        mismatched=counts[Classification.MISMATCH],
        mismatches=tuple(verdict for verdict in ordered if verdict.is_mismatch),
        verdicts=ordered,
    )


def exit_code(summary: RunSummary, strict: bool = False) -> int:
    """Non-zero iff something mismatched, or (strict) something flaked."""
    if summary.mismatched > 0:
        return EXIT_MISMATCH
    if strict and summary.flaked > 0:
        return EXIT_MISMATCH
    return EXIT_SUCCESS


def _status(outcome: Optional[CallOutcome]) -> str:
    return outcome.status_label() if outcome is not None else "-"


def results_table(verdicts: Iterable[Verdict]) -> List[str]:
    """
    Markdown table of results grouped by identical rows.

    Rows are sorted by method; repeated rows collapse into ``Method (n)``.
    """
    grouped: Counter = Counter(
        (
            verdict.case.name,
            _status(verdict.reference),
            _status(verdict.candidate),
            verdict.classification.value,
        )
        for verdict in verdicts
    )

    rows = []
    for (name, reference, candidate, result), count in sorted(grouped.items()):
        label = f"{name} ({count})" if count > 1 else name
        rows.append((label, reference, candidate, result))

    widths = [
        max([len(TABLE_HEADER[column])] + [len(row[column]) for row in rows])
        for column in range(len(TABLE_HEADER))
    ]

    def line(cells) -> str:
        return "| " + " | ".join(cell.ljust(width) for cell, width in zip(cells, widths)) + " |"

    lines = [line(TABLE_HEADER), "|" + "|".join("-" * (width + 2) for width in widths) + "|"]
    lines.extend(line(row) for row in rows)
    return lines


def render_text(summary: RunSummary) -> str:
    md_lines = [
        "# API Comparison Report",
        f"**Generated:** {datetime.now(timezone.utc).isoformat()}",
        "",
        "## Summary",
        f"- **Total:** {summary.total}",
        f"- **Matched:** {summary.matched}",
        f"- **Skipped:** {summary.skipped}",
        f"- **Flaked:** {summary.flaked}",
        f"- **Mismatched:** {summary.mismatched}",
        f"- **Status:** {'PASS' if summary.passed else 'FAIL'}",
        "",
    ]

    if summary.verdicts:
        md_lines.append("## Results")
        md_lines.append("")
        md_lines.extend(results_table(summary.verdicts))
        md_lines.append("")

    if summary.mismatches:
        md_lines.append("## Mismatches")
        md_lines.append("")
        for verdict in summary.mismatches:
            md_lines.append(f"### {verdict.case.name}")
            md_lines.append(f"- **Method:** {verdict.case.method}")
            md_lines.append(f"- **Params:** {json.dumps(list(verdict.case.params), default=str)}")
            md_lines.append(f"- **Policy:** {verdict.case.policy.describe()}")
            md_lines.append("")
            md_lines.append("```")
            md_lines.append(verdict.diagnostic)
            md_lines.append("```")
            md_lines.append("")

    flakes = [verdict for verdict in summary.verdicts if verdict.classification is Classification.FLAKE]
    if flakes:
        md_lines.append("## Flakes")
        md_lines.append("")
        for verdict in flakes:
            md_lines.append(f"- **{verdict.case.name}**: {verdict.diagnostic.splitlines()[0]}")
        md_lines.append("")

    return "\n".join(md_lines)


def build_report(summary: RunSummary, metadata: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
    """Report artifact: metadata, statistics and every verdict."""
    return {
        "metadata": {
            "generated_at": datetime.now(timezone.utc).isoformat(),
            **(metadata or {}),
        },
        "statistics": summary.statistics(),
        "verdicts": [verdict.to_dict() for verdict in summary.verdicts],
    }


def render(summary: RunSummary, output_format: str = "text") -> str:
    """
    Render the summary for stdout.

    Raises:
        ValueError: If the output format is unknown
    """
    if output_format == "text":
        return render_text(summary)
    if output_format == "json":
        return json.dumps(build_report(summary), indent=2, default=str)
    raise ValueError(f"Unknown output format: {output_format}")


def write_report(
    summary: RunSummary, path: str | Path, metadata: Optional[Dict[str, Any]] = None
) -> Path:
    """Write the JSON report artifact and return its path."""
    report_path = Path(path)
    report_path.parent.mkdir(parents=True, exist_ok=True)
    report_path.write_text(
        json.dumps(build_report(summary, metadata), indent=2, default=str), encoding="utf-8"
    )
    logger.info("Wrote comparison report: %s", report_path)
    return report_path
