"""
Command-line entry point for the API comparison harness.

Usage:
  api-compare --reference /ip4/127.0.0.1/tcp/1234/http \\
              --candidate /ip4/127.0.0.1/tcp/2345/http [--strict] [--filter Chain]

Exit codes:
  0  all cases matched or were skipped (flakes allowed unless --strict)
  1  mismatches (or flakes with --strict)
  2  configuration error
  3  a node never became ready
  4  invalid catalog
"""

import argparse
import dataclasses
import logging
import sys
from typing import Any, Dict, Mapping, Optional, Sequence

from api_compare.comparison.reporter import exit_code, render
from api_compare.config.settings import (
    OUTPUT_FORMATS,
    ConfigurationError,
    HarnessConfig,
    RunIgnored,
    parse_api_info,
    setup_logging_redaction,
)
from api_compare.exceptions import PolicyViolation, ReadinessTimeout
from api_compare.utils.logger import get_console_handler
from api_compare.validation.orchestrator import ComparisonRunOrchestrator

EXIT_CONFIG_ERROR = 2
EXIT_READINESS_TIMEOUT = 3
EXIT_POLICY_VIOLATION = 4

PACKAGE_LOGGER = "api_compare"


def parse_args(argv: Optional[Sequence[str]] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        prog="api-compare",
        description="Compare the JSON-RPC responses of a reference node and a candidate node.",
    )
    parser.add_argument(
        "--reference",
        help="Reference node address: URL, multiaddr or TOKEN:multiaddr (env: REFERENCE_API_INFO).",
    )
    parser.add_argument(
        "--candidate",
        help="Candidate node address: URL, multiaddr or TOKEN:multiaddr (env: CANDIDATE_API_INFO).",
    )
    parser.add_argument("--reference-token", help="Bearer token for the reference node.")
    parser.add_argument("--candidate-token", help="Bearer token for the candidate node.")
    parser.add_argument("--catalog", dest="catalog_path", help="Path to the test catalog YAML.")
    parser.add_argument(
        "--run-timeout", type=float, help="Global run timeout in seconds (default: 1800)."
    )
    parser.add_argument(
        "--request-timeout", type=float, help="Per-request timeout in seconds (default: 60)."
    )
    parser.add_argument(
        "--readiness-timeout",
        type=float,
        help="How long to wait for both nodes to become ready, in seconds (default: 600).",
    )
    parser.add_argument(
        "--poll-interval", type=float, help="Readiness poll interval in seconds (default: 5)."
    )
    parser.add_argument(
        "--max-retries", type=int, help="Retries for transport failures per request (default: 2)."
    )
    parser.add_argument(
        "--strict",
        action="store_true",
        default=None,
        help="Fail the run on flakes as well as mismatches.",
    )
    parser.add_argument(
        "--output-format", choices=OUTPUT_FORMATS, help="Report format on stdout (default: text)."
    )
    parser.add_argument("--report-path", help="Also write the JSON report to this file.")
    parser.add_argument(
        "--filter", help="Only run methods whose name contains this string."
    )
    parser.add_argument(
        "--filter-file",
        help="File with one method per line; '!method' excludes, '#' starts a comment.",
    )
    parser.add_argument(
        "--run-ignored",
        choices=[mode.value for mode in RunIgnored],
        help="Treatment of cases marked ignored (default: default).",
    )
    parser.add_argument(
        "--fail-fast",
        action="store_true",
        default=None,
        help="Skip the remaining cases after the first mismatch.",
    )
    parser.add_argument(
        "--max-concurrent-requests",
        type=int,
        help="Maximum number of cases in flight (default: 8).",
    )
    parser.add_argument("--status-method", help="RPC method used as the readiness query.")
    parser.add_argument(
        "--snapshot-path", help="Fail early unless this snapshot path exists and is non-empty."
    )
    parser.add_argument(
        "--tipset-lag",
        type=int,
        help="Epochs behind the reference head for the shared tipset (default: 20).",
    )
    parser.add_argument(
        "--n-tipsets",
        type=int,
        help="Tipsets visited by cases marked each_tipset (default: 1).",
    )
    parser.add_argument("-v", "--verbose", action="store_true", help="Enable debug logging.")

    return parser.parse_args(argv)


def build_config(
    args: argparse.Namespace, environ: Optional[Mapping[str, str]] = None
) -> HarnessConfig:
    """
    Environment first, then command-line overrides.

    Raises:
        ConfigurationError: If an address or value cannot be parsed
    """
    config = HarnessConfig.from_env(environ)
    overrides: Dict[str, Any] = {}

    if args.reference or args.reference_token:
        overrides["reference"] = (
            parse_api_info(args.reference, token=args.reference_token)
            if args.reference
            else dataclasses.replace(config.reference, token=args.reference_token)
        )
    if args.candidate or args.candidate_token:
        overrides["candidate"] = (
            parse_api_info(args.candidate, token=args.candidate_token)
            if args.candidate
            else dataclasses.replace(config.candidate, token=args.candidate_token)
        )

    for name in (
        "catalog_path",
        "run_timeout",
        "request_timeout",
        "readiness_timeout",
        "poll_interval",
        "max_retries",
        "strict",
        "output_format",
        "report_path",
        "filter",
        "filter_file",
        "fail_fast",
        "max_concurrent_requests",
        "status_method",
        "snapshot_path",
        "tipset_lag",
        "n_tipsets",
    ):
        value = getattr(args, name)
        if value is not None:
            overrides[name] = value
    if args.run_ignored is not None:
        overrides["run_ignored"] = RunIgnored(args.run_ignored)

    return dataclasses.replace(config, **overrides)


def setup_logging(config: HarnessConfig, verbose: bool = False) -> None:
    """
    Route harness logs to stderr and redact node tokens.

    Structured loggers already share the console handler; plain module
    loggers get a text handler on the package logger.
    """
    package_logger = logging.getLogger(PACKAGE_LOGGER)
    package_logger.setLevel(logging.DEBUG if verbose else logging.INFO)

    text_handler = next(
        (handler for handler in package_logger.handlers if getattr(handler, "_api_compare", False)),
        None,
    )
    if text_handler is None:
        text_handler = logging.StreamHandler()
        text_handler.setFormatter(
            logging.Formatter("%(asctime)s - %(name)s - %(levelname)s - %(message)s")
        )
        text_handler._api_compare = True
        package_logger.addHandler(text_handler)
        package_logger.propagate = False

    setup_logging_redaction(config, [get_console_handler(), text_handler])


def main(argv: Optional[Sequence[str]] = None) -> int:
    args = parse_args(argv)

    try:
        config = build_config(args)
    except ConfigurationError as exc:
        print(f"[ERROR] {exc}", file=sys.stderr)
        return EXIT_CONFIG_ERROR

    setup_logging(config, verbose=args.verbose)

    try:
        summary = ComparisonRunOrchestrator(config).run()
    except ConfigurationError as exc:
        print(f"[ERROR] {exc}", file=sys.stderr)
        return EXIT_CONFIG_ERROR
    except FileNotFoundError as exc:
        print(f"[ERROR] {exc}", file=sys.stderr)
        return EXIT_CONFIG_ERROR
    except PolicyViolation as exc:
        print(f"[ERROR] Invalid catalog: {exc}", file=sys.stderr)
        return EXIT_POLICY_VIOLATION
    except ReadinessTimeout as exc:
        print(f"[ERROR] {exc}", file=sys.stderr)
        return EXIT_READINESS_TIMEOUT

    print(render(summary, config.output_format))
    return exit_code(summary, strict=config.strict)


if __name__ == "__main__":
    sys.exit(main())
