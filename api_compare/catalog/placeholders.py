"""
Catalog parameter placeholders.

A param value that is exactly ``"{{ tipset.<field> }}"`` stands for a field
of the shared tipset both nodes are queried at. Substitution keeps the
JSON type of the resolved value, so ``{{ tipset.key }}`` becomes a list of
CIDs and ``{{ tipset.height }}`` an integer. Placeholders embedded in a
longer string are left alone.
"""

import re
from typing import Any, Dict, Set

PLACEHOLDER_PATTERN = re.compile(r"\{\{\s*([A-Za-z0-9_.]+)\s*\}\}")
TIPSET_PREFIX = "tipset."

TIPSET_FIELDS = frozenset(
    {"key", "height", "parents", "min_block_cid", "min_block_miner", "eth_block"}
)


def placeholder_names(raw_params: Any) -> Set[str]:
    """Every placeholder path referenced anywhere in ``raw_params``."""
    if isinstance(raw_params, dict):
        return set().union(*(placeholder_names(value) for value in raw_params.values()))
    if isinstance(raw_params, (list, tuple)):
        return set().union(*(placeholder_names(item) for item in raw_params))
    if isinstance(raw_params, str):
        match = PLACEHOLDER_PATTERN.fullmatch(raw_params.strip())
        if match:
            return {match.group(1)}
    return set()


def unknown_placeholders(raw_params: Any) -> Set[str]:
    """Referenced placeholders that do not name a tipset field."""
    return {
        name
        for name in placeholder_names(raw_params)
        if not name.startswith(TIPSET_PREFIX) or name[len(TIPSET_PREFIX):] not in TIPSET_FIELDS
    }


def resolve_placeholders(raw_params: Any, values: Dict[str, Any]) -> Any:
    """
    Replace placeholders with the matching entry of ``values``.

    ``values`` is keyed by full placeholder path (``tipset.key``); unknown
    placeholders are returned unchanged.
    """
    if isinstance(raw_params, dict):
        return {key: resolve_placeholders(value, values) for key, value in raw_params.items()}

    if isinstance(raw_params, (list, tuple)):
        return [resolve_placeholders(item, values) for item in raw_params]

    if isinstance(raw_params, str):
        match = PLACEHOLDER_PATTERN.fullmatch(raw_params.strip())
        if match and match.group(1) in values:
            return values[match.group(1)]
        return raw_params

    return raw_params
