"""
Comparison engine.

Drives every catalog case against both nodes and collects one verdict per
case, in catalog order, regardless of which responses arrive first.
"""

import threading
import time
from concurrent.futures import Future, ThreadPoolExecutor, wait
from concurrent.futures import TimeoutError as FutureTimeoutError
from typing import List, Optional, Union

from api_compare.catalog.loader import TestCase, TestCatalog
from api_compare.catalog.policies import AlwaysSkip
from api_compare.comparison.classifier import classify
from api_compare.domain.node import NodeHandle
from api_compare.domain.verdict import Verdict
from api_compare.rpc.dispatcher import RequestDispatcher
from api_compare.utils.logger import get_logger

logger = get_logger(__name__)

TIMEOUT_REASON = "timeout"
FAIL_FAST_REASON = "fail-fast"


class ComparisonEngine:
    """
    Runs a catalog against a reference and a candidate node.

    Cases run in a pool of ``max_concurrent_requests`` workers; each case
    fans out to both nodes through a second pool twice that size, so no case
    ever waits on another case's requests.
    """

    def __init__(
        self,
        dispatcher: RequestDispatcher,
        max_concurrent_requests: int = 8,
        run_timeout: Optional[float] = None,
        fail_fast: bool = False,
    ) -> None:
        self.dispatcher = dispatcher
        self.max_concurrent_requests = max(1, max_concurrent_requests)
        self.run_timeout = run_timeout
        self.fail_fast = fail_fast
        self._aborted = threading.Event()
        self._abort_reason = TIMEOUT_REASON

    def run(
        self, catalog: TestCatalog, reference: NodeHandle, candidate: NodeHandle
    ) -> List[Verdict]:
        """
        Compare every case and return verdicts in catalog order.

        A run timeout marks every unfinished case skipped with reason
        ``timeout``; with fail_fast, every case after the first mismatch is
        skipped with reason ``fail-fast``.
        """
        deadline = time.monotonic() + self.run_timeout if self.run_timeout else None
        self._aborted.clear()
        logger.info(
            f"Comparing {len(catalog)} cases",
            operation="compare",
            context={
                "reference": reference.base_url,
                "candidate": candidate.base_url,
                "max_concurrent_requests": self.max_concurrent_requests,
            },
        )

        case_pool = ThreadPoolExecutor(
            max_workers=self.max_concurrent_requests, thread_name_prefix="case"
        )
        dispatch_pool = ThreadPoolExecutor(
            max_workers=self.max_concurrent_requests * 2, thread_name_prefix="dispatch"
        )

        pending: List[Union[Verdict, Future]] = []
        for case in catalog:
            if case.is_skipped:
                pending.append(Verdict.skipped(case, self._skip_reason(case)))
            else:
                pending.append(
                    case_pool.submit(self._run_case, dispatch_pool, case, reference, candidate)
                )

        verdicts: List[Verdict] = []
        aborted_reason: Optional[str] = None
        try:
            for case, item in zip(catalog, pending):
                if isinstance(item, Verdict):
                    verdict = item
                elif aborted_reason is not None:
                    verdict = self._abandon(case, item, aborted_reason)
                else:
                    try:
                        verdict = item.result(timeout=self._remaining(deadline))
                    except FutureTimeoutError:
                        aborted_reason = TIMEOUT_REASON
                        self._abort(aborted_reason, len(verdicts))
                        verdict = Verdict.skipped(case, TIMEOUT_REASON)

                verdicts.append(verdict)
                logger.debug(
                    f"{case.name}: {verdict.classification.value}",
                    operation="compare",
                    context={"method": case.method, "index": len(verdicts) - 1},
                )

                if self.fail_fast and aborted_reason is None and verdict.is_mismatch:
                    aborted_reason = FAIL_FAST_REASON
                    self._abort(aborted_reason, len(verdicts))
        finally:
            # Abandoned requests finish within their own request timeout.
            finished = aborted_reason is None
            case_pool.shutdown(wait=finished, cancel_futures=not finished)
            dispatch_pool.shutdown(wait=finished, cancel_futures=not finished)

        return verdicts

    def _run_case(
        self,
        dispatch_pool: ThreadPoolExecutor,
        case: TestCase,
        reference: NodeHandle,
        candidate: NodeHandle,
    ) -> Verdict:
        """
        Call both nodes concurrently, join on both, then classify.

        A case that starts after the run was aborted is skipped; the dispatch
        pool may already be shut down by then.
        """
        if self._aborted.is_set():
            return Verdict.skipped(case, self._abort_reason)
        futures: List[Future] = []
        try:
            for handle in (reference, candidate):
                futures.append(
                    dispatch_pool.submit(
                        self.dispatcher.call, handle, case.method, case.request_params(), case.timeout
                    )
                )
        except RuntimeError as e:
            for future in futures:
                future.cancel()
            logger.debug(
                f"{case.name}: not dispatched after abort",
                operation="compare",
                context={"method": case.method, "error": str(e)},
            )
            return Verdict.skipped(case, self._abort_reason)
        reference_future, candidate_future = futures
        wait(futures)

        reference_outcome = reference_future.result()
        candidate_outcome = candidate_future.result()
        classification, diagnostic = classify(reference_outcome, candidate_outcome, case.policy)
        return Verdict(
            case=case,
            reference=reference_outcome,
            candidate=candidate_outcome,
            classification=classification,
            diagnostic=diagnostic,
        )

    def _abort(self, reason: str, completed: int) -> None:
        self._abort_reason = reason
        self._aborted.set()
        logger.warning(
            "Aborting remaining cases",
            operation="compare",
            context={"reason": reason, "completed": completed},
        )
        if reason == TIMEOUT_REASON:
            self.dispatcher.cancel()

    @staticmethod
    def _abandon(case: TestCase, future: Future, reason: str) -> Verdict:
        """Verdict for a case after the run was aborted."""
        if reason == TIMEOUT_REASON and future.done() and not future.cancelled():
            return future.result()
        future.cancel()
        return Verdict.skipped(case, reason)

    @staticmethod
    def _skip_reason(case: TestCase) -> str:
        if case.skip_reason:
            return case.skip_reason
        if isinstance(case.policy, AlwaysSkip):
            return case.policy.reason
        return "skipped"

    @staticmethod
    def _remaining(deadline: Optional[float]) -> Optional[float]:
        if deadline is None:
            return None
        return max(deadline - time.monotonic(), 0.0)
