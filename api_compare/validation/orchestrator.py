"""
Comparison Run Orchestrator

Entry point for one differential run. Validates configuration, loads the
catalog, waits for both nodes, runs the comparison and summarises it.
Rendering and exit-code mapping stay with the caller.
"""

import logging
import time
from typing import Optional

import requests

from api_compare.catalog.loader import TestCatalog, load_catalog
from api_compare.catalog.tipset import TipsetResolver, bind_tipsets
from api_compare.comparison.engine import ComparisonEngine
from api_compare.comparison.reporter import RunSummary, summarize, write_report
from api_compare.config.settings import ConfigurationError, HarnessConfig, derive_protocol
from api_compare.domain.node import NodeHandle, NodeRole
from api_compare.rpc.dispatcher import RequestDispatcher
from api_compare.validation.readiness import ReadinessChecker


class ComparisonRunOrchestrator:
    """
    Orchestrates a complete run from configuration through summary.

    Responsibilities:
    - Validate configuration and the optional snapshot path
    - Load and filter the test catalog
    - Gate on readiness of both nodes
    - Bind the shared tipset into the cases that reference it
    - Run the comparison engine
    - Write the report artifact when requested
    """

    def __init__(
        self,
        config: HarnessConfig,
        http_client: Optional[requests.Session] = None,
        catalog: Optional[TestCatalog] = None,
    ):
        self.config = config
        self.http_client = http_client
        self.catalog = catalog
        self.logger = logging.getLogger(__name__)

        self.reference = NodeHandle.from_endpoint(NodeRole.REFERENCE, config.reference)
        self.candidate = NodeHandle.from_endpoint(NodeRole.CANDIDATE, config.candidate)

    def validate(self) -> None:
        """
        Raises:
            ConfigurationError: Listing every configuration problem found
        """
        errors = self.config.validate()
        if self.catalog is not None:
            # An injected catalog makes the catalog file irrelevant.
            errors = [error for error in errors if not error.startswith("catalog_path")]
        if errors:
            raise ConfigurationError("Invalid configuration: " + "; ".join(errors))

    def load_catalog(self) -> TestCatalog:
        if self.catalog is not None:
            return self.catalog
        return load_catalog(
            self.config.catalog_path,
            filter=self.config.filter,
            filter_file=self.config.filter_file,
            run_ignored=self.config.run_ignored,
        )

    def run(self) -> RunSummary:
        """
        Execute one run.

        Raises:
            ConfigurationError: If the configuration is invalid
            PolicyViolation: If the catalog is malformed
            ReadinessTimeout: If either node never became ready
        """
        self.validate()
        protocol = derive_protocol(self.config.reference, self.config.candidate)
        self.logger.info(
            f"Starting comparison run: {self.reference.base_url} (reference) "
            f"vs {self.candidate.base_url} (candidate) over {protocol}"
        )

        catalog = self.load_catalog()

        dispatcher = RequestDispatcher(
            request_timeout=self.config.request_timeout,
            max_retries=self.config.max_retries,
            retry_backoff=self.config.retry_backoff,
            http_client=self.http_client,
        )
        try:
            checker = ReadinessChecker(dispatcher, status_method=self.config.status_method)
            checker.ensure_ready(
                [self.reference, self.candidate],
                timeout=self.config.readiness_timeout,
                poll_interval=self.config.poll_interval,
            )
            catalog = bind_tipsets(
                catalog,
                TipsetResolver(
                    dispatcher,
                    lag=self.config.tipset_lag,
                    n_tipsets=self.config.n_tipsets,
                ),
                self.reference,
            )

            engine = ComparisonEngine(
                dispatcher,
                max_concurrent_requests=self.config.max_concurrent_requests,
                run_timeout=self.config.run_timeout,
                fail_fast=self.config.fail_fast,
            )
            start_time = time.monotonic()
            verdicts = engine.run(catalog, self.reference, self.candidate)
            duration_seconds = time.monotonic() - start_time
        finally:
            dispatcher.close()

        summary = summarize(verdicts)
        self.logger.info(
            f"Comparison run complete: {summary.matched} matched, {summary.skipped} skipped, "
            f"{summary.flaked} flaked, {summary.mismatched} mismatched "
            f"in {duration_seconds:.1f}s"
        )

        if self.config.report_path:
            write_report(
                summary,
                self.config.report_path,
                metadata={
                    "catalog": catalog.source,
                    "duration_seconds": round(duration_seconds, 3),
                    "config": self.config.to_dict(),
                },
            )

        return summary
