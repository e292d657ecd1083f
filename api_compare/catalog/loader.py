"""
Test catalog loader.

Loads the curated RPC battery from YAML, validates it against the bundled
JSON schema and turns every entry into an immutable TestCase with exactly
one equivalence policy. Method filters and the run-ignored mode are applied
here, so the engine only ever sees the cases it has to report.
"""

import json
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, Iterator, List, Optional, Tuple

import jsonschema
import yaml

from api_compare.catalog.placeholders import placeholder_names, unknown_placeholders
from api_compare.catalog.policies import AlwaysSkip, EquivalencePolicy, ExactMatch, build_policy
from api_compare.config.settings import RunIgnored
from api_compare.exceptions import PolicyViolation
from api_compare.utils.logger import get_logger, log_operation

logger = get_logger(__name__)

SCHEMA_PATH = Path(__file__).with_name("catalog.schema.json")


@dataclass(frozen=True)
class TestCase:
    """
    One RPC call to issue against both nodes.

    Attributes:
        method: JSON-RPC method name
        params: Ordered positional parameters
        policy: Equivalence policy applied to two successful payloads
        skip_reason: When set, the case is reported as skipped without dispatch
        timeout: Per-case request timeout override in seconds
        label: Display name (defaults to the method)
        each_tipset: Repeat the case once per resolved tipset
    """

    __test__ = False

    method: str
    params: Tuple[Any, ...] = ()
    policy: EquivalencePolicy = field(default_factory=ExactMatch)
    skip_reason: Optional[str] = None
    timeout: Optional[float] = None
    label: str = ""
    each_tipset: bool = False

    @property
    def name(self) -> str:
        return self.label or self.method

    @property
    def is_skipped(self) -> bool:
        return self.skip_reason is not None or isinstance(self.policy, AlwaysSkip)

    @property
    def uses_tipset(self) -> bool:
        """Whether the params reference the shared tipset."""
        return bool(placeholder_names(self.params))

    def request_params(self) -> List[Any]:
        """Params as sent on the wire (fresh list per call)."""
        return json.loads(json.dumps(list(self.params)))

    def to_dict(self) -> Dict[str, Any]:
        data: Dict[str, Any] = {
            "name": self.name,
            "method": self.method,
            "params": list(self.params),
            "policy": self.policy.to_dict(),
        }
        if self.skip_reason:
            data["skip_reason"] = self.skip_reason
        if self.timeout is not None:
            data["timeout"] = self.timeout
        return data


@dataclass
class FilterList:
    """
    Allow/reject list over method names.

    An empty allow list authorises everything; reject wins over allow.
    Matching is case-sensitive substring matching.
    """

    allowed: List[str] = field(default_factory=list)
    rejected: List[str] = field(default_factory=list)

    @classmethod
    def from_file(cls, path: str) -> "FilterList":
        """
        Read one entry per line. ``!entry`` rejects; blank lines and ``#`` comments are skipped.
        """
        filter_list = cls()
        with open(path, "r", encoding="utf-8") as f:
            for line in f:
                entry = line.strip()
                if not entry or entry.startswith("#"):
                    continue
                if entry.startswith("!"):
                    filter_list.reject(entry[1:])
                else:
                    filter_list.allow(entry)
        return filter_list

    def allow(self, entry: str) -> "FilterList":
        if entry:
            self.allowed.append(entry)
        return self

    def reject(self, entry: str) -> "FilterList":
        if entry:
            self.rejected.append(entry)
        return self

    def authorize(self, entry: str) -> bool:
        if any(rejected in entry for rejected in self.rejected):
            return False
        return not self.allowed or any(allowed in entry for allowed in self.allowed)


@dataclass(frozen=True)
class TestCatalog:
    """Ordered, immutable collection of test cases."""

    __test__ = False

    cases: Tuple[TestCase, ...] = ()
    source: str = ""

    def __iter__(self) -> Iterator[TestCase]:
        return iter(self.cases)

    def __len__(self) -> int:
        return len(self.cases)

    def methods(self) -> List[str]:
        return [case.method for case in self.cases]


def load_schema(schema_path: Path = SCHEMA_PATH) -> Dict[str, Any]:
    with open(schema_path, "r", encoding="utf-8") as f:
        return json.load(f)


def _select(ignored: bool, run_ignored: RunIgnored) -> bool:
    """Whether a case takes part in this run under the run-ignored mode."""
    if run_ignored is RunIgnored.IGNORED_ONLY:
        return ignored
    return True


def _parse_case(
    index: int, entry: Dict[str, Any], defaults: Dict[str, Any], run_ignored: RunIgnored
) -> TestCase:
    try:
        policy = build_policy(entry.get("policy", defaults.get("policy")))
    except PolicyViolation as e:
        raise PolicyViolation(f"Case [{index}] '{entry['method']}': {e}") from e

    params = entry.get("params", [])
    unknown = unknown_placeholders(params)
    if unknown:
        raise PolicyViolation(
            f"Case [{index}] '{entry['method']}': unknown placeholder(s) {', '.join(sorted(unknown))}"
        )
    each_tipset = entry.get("each_tipset", False)
    if each_tipset and not placeholder_names(params):
        raise PolicyViolation(
            f"Case [{index}] '{entry['method']}': each_tipset requires a tipset placeholder in params"
        )

    skip_reason = entry.get("skip")
    ignore_reason = entry.get("ignore")
    if ignore_reason and run_ignored is RunIgnored.DEFAULT and skip_reason is None:
        skip_reason = f"ignored: {ignore_reason}"

    return TestCase(
        method=entry["method"],
        params=tuple(params),
        policy=policy,
        skip_reason=skip_reason,
        timeout=entry.get("timeout", defaults.get("timeout")),
        label=entry.get("label", ""),
        each_tipset=each_tipset,
    )


def parse_catalog(
    document: Any,
    source: str = "<memory>",
    filter_list: Optional[FilterList] = None,
    run_ignored: RunIgnored = RunIgnored.DEFAULT,
) -> TestCatalog:
    """
    Validate an already-parsed catalog document and build the TestCatalog.

    Raises:
        PolicyViolation: If the document does not match the schema or a policy is invalid
    """
    if document is None:
        document = {"cases": []}

    try:
        jsonschema.validate(instance=document, schema=load_schema())
    except jsonschema.ValidationError as e:
        location = "/".join(str(part) for part in e.absolute_path) or "<root>"
        logger.error(
            "Catalog failed schema validation",
            operation="load_catalog",
            context={"source": source, "location": location},
            error=e.message,
        )
        raise PolicyViolation(f"Invalid catalog {source} at {location}: {e.message}") from e

    filter_list = filter_list or FilterList()
    defaults = document.get("defaults", {})

    cases: List[TestCase] = []
    filtered_out = 0
    for index, entry in enumerate(document["cases"]):
        if not filter_list.authorize(entry["method"]):
            filtered_out += 1
            continue
        if not _select(bool(entry.get("ignore")), run_ignored):
            continue
        cases.append(_parse_case(index, entry, defaults, run_ignored))

    logger.info(
        f"Loaded {len(cases)} test cases",
        operation="load_catalog",
        context={
            "source": source,
            "filtered_out": filtered_out,
            "run_ignored": run_ignored.value,
        },
    )
    return TestCatalog(cases=tuple(cases), source=source)


@log_operation("load_catalog")
def load_catalog(
    path: str,
    filter: str = "",
    filter_file: Optional[str] = None,
    run_ignored: RunIgnored = RunIgnored.DEFAULT,
) -> TestCatalog:
    """
    Load a catalog YAML file.

    Args:
        path: Path to the catalog YAML
        filter: Substring a method must contain to be run
        filter_file: Optional allow/reject list file
        run_ignored: Treatment of entries marked ``ignore``

    Raises:
        FileNotFoundError: If the catalog file does not exist
        PolicyViolation: If the YAML is malformed or fails validation
    """
    try:
        with open(path, "r", encoding="utf-8") as f:
            document = yaml.safe_load(f)
    except yaml.YAMLError as e:
        raise PolicyViolation(f"Invalid YAML in {path}: {e}") from e

    filter_list = FilterList.from_file(filter_file) if filter_file else FilterList()
    filter_list.allow(filter)

    return parse_catalog(document, source=str(path), filter_list=filter_list, run_ignored=run_ignored)
