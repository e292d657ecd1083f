"""
Shared tipset resolution.

Chain and state queries only agree when both nodes answer for the same
tipset, and the two heads are rarely identical. Before comparison the
reference node is asked for the tipset ``lag`` epochs behind its head;
that tipset (and, for ``each_tipset`` cases, its ``n_tipsets - 1``
ancestors) is substituted into every case whose params carry a
``{{ tipset.* }}`` placeholder.
"""

import base64
import binascii
import dataclasses
from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Tuple

from api_compare.catalog.loader import TestCase, TestCatalog
from api_compare.catalog.placeholders import TIPSET_PREFIX, resolve_placeholders
from api_compare.domain.node import NodeHandle
from api_compare.exceptions import TipsetUnavailable
from api_compare.rpc.dispatcher import RequestDispatcher
from api_compare.utils.logger import get_logger, log_operation

logger = get_logger(__name__)

CHAIN_HEAD_METHOD = "Filecoin.ChainHead"
TIPSET_BY_HEIGHT_METHOD = "Filecoin.ChainGetTipSetByHeight"
TIPSET_BY_KEY_METHOD = "Filecoin.ChainGetTipSet"


def _ticket_bytes(block: Dict[str, Any]) -> bytes:
    proof = (block.get("Ticket") or {}).get("VRFProof") or ""
    try:
        return base64.b64decode(proof)
    except (binascii.Error, ValueError):
        return proof.encode("utf-8")


@dataclass(frozen=True)
class SharedTipset:
    """
    The tipset every tipset-dependent case is evaluated at.

    Attributes:
        key: Tipset key, the block CIDs as ``{"/": cid}`` objects
        height: Epoch
        parents: Key of the parent tipset
        min_block_cid: CID of the block with the smallest ticket
        min_block_miner: Miner of that block
    """

    key: Tuple[Any, ...]
    height: int
    parents: Tuple[Any, ...]
    min_block_cid: Any
    min_block_miner: str

    @property
    def eth_block(self) -> str:
        """Height as an Eth block number quantity."""
        return hex(self.height)

    @classmethod
    def from_payload(cls, payload: Any) -> "SharedTipset":
        """
        Build from a ChainHead / ChainGetTipSet result.

        Raises:
            TipsetUnavailable: If the payload is not a tipset
        """
        try:
            cids = list(payload["Cids"])
            blocks = list(payload["Blocks"])
            height = int(payload["Height"])
        except (TypeError, KeyError, ValueError) as e:
            raise TipsetUnavailable(f"Malformed tipset payload: {e!r}") from e
        if not cids or len(cids) != len(blocks):
            raise TipsetUnavailable(
                f"Malformed tipset payload: {len(cids)} CIDs for {len(blocks)} blocks"
            )

        # Ties on the ticket go to the first block in key order.
        index = min(range(len(blocks)), key=lambda i: _ticket_bytes(blocks[i]))
        return cls(
            key=tuple(cids),
            height=height,
            parents=tuple(blocks[0].get("Parents") or ()),
            min_block_cid=cids[index],
            min_block_miner=blocks[index].get("Miner", ""),
        )

    def values(self) -> Dict[str, Any]:
        """Placeholder values keyed by full placeholder path."""
        return {
            f"{TIPSET_PREFIX}key": list(self.key),
            f"{TIPSET_PREFIX}height": self.height,
            f"{TIPSET_PREFIX}parents": list(self.parents),
            f"{TIPSET_PREFIX}min_block_cid": self.min_block_cid,
            f"{TIPSET_PREFIX}min_block_miner": self.min_block_miner,
            f"{TIPSET_PREFIX}eth_block": self.eth_block,
        }


class TipsetResolver:
    """
    Reads the shared tipsets from the reference node.

    The first tipset sits ``lag`` epochs behind the reference head; each
    following one is the parent of the previous, down to genesis.
    """

    def __init__(
        self,
        dispatcher: RequestDispatcher,
        lag: int = 20,
        n_tipsets: int = 1,
        timeout: Optional[float] = None,
    ) -> None:
        self.dispatcher = dispatcher
        self.lag = max(lag, 0)
        self.n_tipsets = max(n_tipsets, 1)
        self.timeout = timeout

    def _call(self, handle: NodeHandle, method: str, params: List[Any]) -> Any:
        outcome = self.dispatcher.call(handle, method, params, self.timeout)
        if not outcome.is_success:
            raise TipsetUnavailable(f"{method} on {handle.name}: {outcome.describe()}")
        return outcome.payload

    @log_operation("resolve_tipsets")
    def resolve(self, handle: NodeHandle) -> List[SharedTipset]:
        """
        Raises:
            TipsetUnavailable: If any of the chain queries fails
        """
        head = SharedTipset.from_payload(self._call(handle, CHAIN_HEAD_METHOD, []))
        height = max(head.height - self.lag, 0)
        tipsets = [
            SharedTipset.from_payload(self._call(handle, TIPSET_BY_HEIGHT_METHOD, [height, []]))
        ]
        while len(tipsets) < self.n_tipsets and tipsets[-1].parents:
            parent_key = list(tipsets[-1].parents)
            tipsets.append(
                SharedTipset.from_payload(self._call(handle, TIPSET_BY_KEY_METHOD, [parent_key]))
            )

        logger.info(
            f"Resolved {len(tipsets)} shared tipset(s)",
            operation="resolve_tipsets",
            context={
                "node": handle.name,
                "head": head.height,
                "heights": [tipset.height for tipset in tipsets],
            },
        )
        return tipsets


def needs_tipset(catalog: TestCatalog) -> bool:
    return any(case.uses_tipset and not case.is_skipped for case in catalog)


def _bind(case: TestCase, tipset: SharedTipset, label: str = "") -> TestCase:
    return dataclasses.replace(
        case,
        params=tuple(resolve_placeholders(list(case.params), tipset.values())),
        label=label or case.label,
    )


def expand_catalog(
    catalog: TestCatalog,
    tipsets: List[SharedTipset],
    unavailable: str = "no tipset resolved",
) -> TestCatalog:
    """
    Substitute the shared tipsets into every case that references one.

    ``each_tipset`` cases are repeated per tipset, labelled with the height;
    other cases use the first tipset. Without tipsets those cases are
    skipped with ``unavailable`` as the reason. Skipped cases and cases
    without placeholders pass through unchanged.
    """
    cases: List[TestCase] = []
    for case in catalog:
        if case.is_skipped or not case.uses_tipset:
            cases.append(case)
        elif not tipsets:
            cases.append(dataclasses.replace(case, skip_reason=f"tipset unavailable: {unavailable}"))
        elif case.each_tipset:
            cases.extend(_bind(case, tipset, f"{case.name} @{tipset.height}") for tipset in tipsets)
        else:
            cases.append(_bind(case, tipsets[0]))
    return TestCatalog(cases=tuple(cases), source=catalog.source)


def bind_tipsets(
    catalog: TestCatalog,
    resolver: TipsetResolver,
    handle: NodeHandle,
) -> TestCatalog:
    """
    Resolve the shared tipsets on ``handle`` and expand ``catalog`` with them.

    No chain query is made when no case needs a tipset. A resolution failure
    skips the tipset cases and leaves the rest of the run intact.
    """
    if not needs_tipset(catalog):
        return catalog
    try:
        tipsets = resolver.resolve(handle)
    except TipsetUnavailable as e:
        logger.warning(
            "Shared tipset unavailable, skipping tipset cases",
            operation="resolve_tipsets",
            context={"node": handle.name},
            error=str(e),
        )
        return expand_catalog(catalog, [], unavailable=str(e))
    return expand_catalog(catalog, tipsets)
