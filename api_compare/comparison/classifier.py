"""
Divergence classifier.

Maps a pair of call outcomes and the case's policy to one classification
plus a diagnostic string. The decision table:

    transport error on either side          -> FLAKE
    same application error code             -> MATCH
    different application error codes       -> MISMATCH
    application error vs success            -> MISMATCH
    success vs success                      -> policy.evaluate
"""

from typing import Tuple

from api_compare.catalog.policies import AlwaysSkip, EquivalencePolicy
from api_compare.domain.outcome import CallOutcome
from api_compare.domain.verdict import Classification


def _both(reference: CallOutcome, candidate: CallOutcome) -> str:
    return f"reference: {reference.describe()}\ncandidate: {candidate.describe()}"


def classify(
    reference: CallOutcome, candidate: CallOutcome, policy: EquivalencePolicy
) -> Tuple[Classification, str]:
    """
    Classify one case.

    Returns:
        Tuple of (classification, diagnostic)
    """
    if isinstance(policy, AlwaysSkip):
        return Classification.SKIPPED, policy.reason

    if reference.is_transport_error or candidate.is_transport_error:
        sides = [o.node for o in (reference, candidate) if o.is_transport_error]
        return Classification.FLAKE, f"transport failure on {', '.join(sides)}\n{_both(reference, candidate)}"

    if reference.is_application_error and candidate.is_application_error:
        if reference.error_code == candidate.error_code:
            return Classification.MATCH, ""
        return Classification.MISMATCH, f"error codes differ\n{_both(reference, candidate)}"

    if reference.is_application_error or candidate.is_application_error:
        failed = reference.node if reference.is_application_error else candidate.node
        return (
            Classification.MISMATCH,
            f"only {failed} returned an error\n{_both(reference, candidate)}",
        )

    result = policy.evaluate(reference.payload, candidate.payload)
    if result.skipped:
        return Classification.SKIPPED, result.detail
    if result.equivalent:
        return Classification.MATCH, ""

    lines = [f"payloads differ under {policy.describe()}"]
    lines.extend(f"  {difference.describe()}" for difference in result.differences)
    if result.detail:
        lines.append(f"  {result.detail}")
    lines.append(_both(reference, candidate))
    return Classification.MISMATCH, "\n".join(lines)
