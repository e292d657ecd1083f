"""
In-process fake Filecoin nodes for harness tests.

FakeNodeNetwork stands in for a requests.Session: ``post`` routes each
JSON-RPC request to the FakeNode registered for the URL, which answers from
scripted replies. No sockets are opened.
"""

import json
import threading
import time
from dataclasses import dataclass
from typing import Any, Dict, List, Optional

METHOD_NOT_FOUND = -32601


class FakeResponse:
    """Minimal requests.Response look-alike."""

    def __init__(self, status_code: int = 200, body: Any = None, text: Optional[str] = None):
        self.status_code = status_code
        self._body = body
        if text is None:
            text = json.dumps(body) if body is not None else ""
        self.text = text
        self.reason = "OK" if status_code < 400 else "Error"

    def json(self) -> Any:
        if self._body is None:
            raise ValueError("No JSON object could be decoded")
        return self._body


@dataclass
class Reply:
    """
    One scripted answer.

    ``exception`` is raised from ``post``; ``text`` sends a raw body instead
    of a JSON-RPC envelope; ``error`` sends a JSON-RPC error object.
    """

    result: Any = None
    error: Optional[Dict[str, Any]] = None
    exception: Optional[Exception] = None
    status_code: int = 200
    text: Optional[str] = None
    delay: float = 0.0


class FakeNode:
    """A node answering JSON-RPC methods from scripted replies."""

    def __init__(self, name: str, url: str):
        self.name = name
        self.url = url
        self.calls: List[Dict[str, Any]] = []
        self._replies: Dict[str, List[Reply]] = {}
        self._lock = threading.Lock()

    def on(self, method: str, *replies: Reply) -> "FakeNode":
        """Script replies for a method; the last reply repeats."""
        self._replies[method] = list(replies)
        return self

    def returns(self, method: str, result: Any, delay: float = 0.0) -> "FakeNode":
        return self.on(method, Reply(result=result, delay=delay))

    def fails(self, method: str, code: int, message: str = "error") -> "FakeNode":
        return self.on(method, Reply(error={"code": code, "message": message}))

    def calls_to(self, method: str) -> int:
        with self._lock:
            return sum(1 for call in self.calls if call["payload"]["method"] == method)

    def _next_reply(self, method: str) -> Optional[Reply]:
        with self._lock:
            replies = self._replies.get(method)
            if not replies:
                return None
            return replies.pop(0) if len(replies) > 1 else replies[0]

    def handle(
        self,
        payload: Dict[str, Any],
        headers: Optional[Dict[str, str]],
        timeout: Optional[float] = None,
    ) -> FakeResponse:
        with self._lock:
            self.calls.append(
                {"payload": payload, "headers": dict(headers or {}), "timeout": timeout}
            )

        reply = self._next_reply(payload["method"])
        if reply is None:
            return FakeResponse(
                body={
                    "jsonrpc": "2.0",
                    "id": payload["id"],
                    "error": {"code": METHOD_NOT_FOUND, "message": "method not found"},
                }
            )

        if reply.delay:
            time.sleep(reply.delay)
        if reply.exception is not None:
            raise reply.exception
        if reply.text is not None:
            return FakeResponse(status_code=reply.status_code, text=reply.text)
        if reply.error is not None:
            return FakeResponse(
                status_code=reply.status_code,
                body={"jsonrpc": "2.0", "id": payload["id"], "error": reply.error},
            )
        return FakeResponse(
            status_code=reply.status_code,
            body={"jsonrpc": "2.0", "id": payload["id"], "result": reply.result},
        )


class FakeNodeNetwork:
    """requests.Session stand-in routing by URL."""

    def __init__(self, *nodes: FakeNode):
        self.nodes = {node.url: node for node in nodes}
        self.closed = False

    def post(self, url, json=None, headers=None, timeout=None, **kwargs):
        return self.nodes[url].handle(json, headers, timeout)

    def close(self) -> None:
        self.closed = True


REFERENCE_URL = "http://127.0.0.1:1234/rpc/v0"
CANDIDATE_URL = "http://127.0.0.1:2345/rpc/v0"

CHAIN_HEAD = {
    "Cids": [{"/": "bafy2bzacea3wsdh6y3a36tb3skempjoxqpuyompjbmfeyf34fi3uy6uue42v4"}],
    "Blocks": [{"Miner": "t01000", "Timestamp": 1700000000}],
    "Height": 100,
}


def node_pair() -> "tuple[FakeNode, FakeNode]":
    """Reference and candidate nodes that are ready and agree on the chain head."""
    reference = FakeNode("reference", REFERENCE_URL).returns("Filecoin.ChainHead", CHAIN_HEAD)
    candidate = FakeNode("candidate", CANDIDATE_URL).returns("Filecoin.ChainHead", CHAIN_HEAD)
    return reference, candidate


def make_tipset(height: int, miners=("t01000",), proofs=None) -> Dict[str, Any]:
    """
    ChainGetTipSet-shaped payload whose parent is the tipset at ``height - 1``.

    ``proofs`` are the base64 VRF proofs of the block tickets, one per miner.
    """
    proofs = proofs or ["AA=="] * len(miners)
    parents = [tipset_cid(height - 1, 0)] if height > 0 else []
    return {
        "Cids": [tipset_cid(height, index) for index in range(len(miners))],
        "Blocks": [
            {"Miner": miner, "Height": height, "Parents": parents, "Ticket": {"VRFProof": proof}}
            for miner, proof in zip(miners, proofs)
        ],
        "Height": height,
    }


def tipset_cid(height: int, index: int) -> Dict[str, str]:
    return {"/": f"bafy2bzace-{height}-{index}"}
