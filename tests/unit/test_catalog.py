"""
Unit tests for the catalog loader (api_compare/catalog/loader.py)

Tests covering:
- YAML loading into ordered, immutable TestCases
- Schema validation and PolicyViolation on malformed entries
- Policy defaults, per-case timeout, skip markers
- Method filters and run-ignored modes
- The bundled default catalog
- Tipset placeholders and each_tipset validation
"""

from dataclasses import FrozenInstanceError
from pathlib import Path

import pytest
import yaml

from api_compare.catalog.loader import FilterList, TestCase, load_catalog, parse_catalog
from api_compare.catalog.policies import AlwaysSkip, ExactMatch, NumericTolerance, SetEquality
from api_compare.config.settings import RunIgnored
from api_compare.exceptions import PolicyViolation

PROJECT_ROOT = Path(__file__).resolve().parents[2]
DEFAULT_CATALOG = PROJECT_ROOT / "config" / "catalog.yaml"

CATALOG = {
    "cases": [
        {"method": "Filecoin.ChainHead", "policy": {"kind": "numeric_tolerance", "epsilon": 9, "fields": ["Height"]}},
        {"method": "Filecoin.StateMinerPower", "params": ["t01000", []], "timeout": 120},
        {"method": "Filecoin.MpoolPending", "params": [None], "policy": "set_equality"},
        {"method": "Filecoin.Discover", "ignore": "Not implemented yet"},
        {"method": "Filecoin.WalletDefaultAddress", "skip": "Requires write access"},
        {"method": "Filecoin.ChainNotify", "policy": {"kind": "always_skip", "reason": "websocket"}},
    ]
}


@pytest.fixture
def catalog_file(tmp_path):
    path = tmp_path / "catalog.yaml"
    path.write_text(yaml.safe_dump(CATALOG), encoding="utf-8")
    return path


class TestLoadCatalog:
    """Tests for load_catalog."""

    def test_cases_in_file_order(self, catalog_file):
        catalog = load_catalog(str(catalog_file))

        assert catalog.methods() == [
            "Filecoin.ChainHead",
            "Filecoin.StateMinerPower",
            "Filecoin.MpoolPending",
            "Filecoin.Discover",
            "Filecoin.WalletDefaultAddress",
            "Filecoin.ChainNotify",
        ]
        assert catalog.source == str(catalog_file)

    def test_policies_parsed(self, catalog_file):
        cases = list(load_catalog(str(catalog_file)))

        assert cases[0].policy == NumericTolerance(epsilon=9.0, fields=("Height",))
        assert cases[1].policy == ExactMatch()
        assert cases[2].policy == SetEquality()
        assert cases[5].policy == AlwaysSkip(reason="websocket")

    def test_params_and_timeout(self, catalog_file):
        case = list(load_catalog(str(catalog_file)))[1]

        assert case.params == ("t01000", [])
        assert case.request_params() == ["t01000", []]
        assert case.timeout == 120

    def test_skip_markers(self, catalog_file):
        cases = list(load_catalog(str(catalog_file)))

        assert cases[3].skip_reason == "ignored: Not implemented yet"
        assert cases[4].skip_reason == "Requires write access"
        assert cases[5].is_skipped
        assert not cases[0].is_skipped

    def test_test_case_is_immutable(self, catalog_file):
        case = list(load_catalog(str(catalog_file)))[0]
        with pytest.raises(FrozenInstanceError):
            case.method = "Filecoin.Other"

    def test_missing_file(self, tmp_path):
        with pytest.raises(FileNotFoundError):
            load_catalog(str(tmp_path / "nope.yaml"))

    def test_invalid_yaml(self, tmp_path):
        path = tmp_path / "broken.yaml"
        path.write_text("cases: [\n  - method: x\n", encoding="utf-8")
        with pytest.raises(PolicyViolation):
            load_catalog(str(path))

    def test_empty_file_is_empty_catalog(self, tmp_path):
        path = tmp_path / "empty.yaml"
        path.write_text("", encoding="utf-8")
        assert len(load_catalog(str(path))) == 0


class TestSchemaValidation:
    """Malformed entries are rejected before any dispatch."""

    def test_missing_method(self):
        with pytest.raises(PolicyViolation) as exc_info:
            parse_catalog({"cases": [{"params": []}]})
        assert "method" in str(exc_info.value)

    def test_unknown_case_key(self):
        with pytest.raises(PolicyViolation):
            parse_catalog({"cases": [{"method": "A", "polcy": "exact_match"}]})

    def test_params_must_be_list(self):
        with pytest.raises(PolicyViolation):
            parse_catalog({"cases": [{"method": "A", "params": "oops"}]})

    def test_unknown_policy_kind(self):
        with pytest.raises(PolicyViolation) as exc_info:
            parse_catalog({"cases": [{"method": "A", "policy": "approximately"}]})
        assert "approximately" in str(exc_info.value)

    def test_negative_epsilon(self):
        with pytest.raises(PolicyViolation):
            parse_catalog(
                {"cases": [{"method": "A", "policy": {"kind": "numeric_tolerance", "epsilon": -1}}]}
            )

    def test_non_positive_timeout(self):
        with pytest.raises(PolicyViolation):
            parse_catalog({"cases": [{"method": "A", "timeout": 0}]})

    def test_defaults_apply(self):
        catalog = parse_catalog(
            {
                "defaults": {"policy": "set_equality", "timeout": 30},
                "cases": [{"method": "A"}, {"method": "B", "policy": "exact_match"}],
            }
        )
        cases = list(catalog)
        assert cases[0].policy == SetEquality()
        assert cases[0].timeout == 30
        assert cases[1].policy == ExactMatch()


class TestFilters:
    """Tests for method filters."""

    def test_substring_filter(self, catalog_file):
        catalog = load_catalog(str(catalog_file), filter="Chain")
        assert catalog.methods() == ["Filecoin.ChainHead", "Filecoin.ChainNotify"]

    def test_filter_is_case_sensitive(self, catalog_file):
        assert len(load_catalog(str(catalog_file), filter="chain")) == 0

    def test_filter_file(self, catalog_file, tmp_path):
        filter_file = tmp_path / "filter.txt"
        filter_file.write_text(
            "# chain methods only\nFilecoin.Chain\n\n!ChainNotify\n", encoding="utf-8"
        )

        catalog = load_catalog(str(catalog_file), filter_file=str(filter_file))

        assert catalog.methods() == ["Filecoin.ChainHead"]

    def test_filter_list_reject_wins(self):
        filter_list = FilterList().allow("Chain").reject("ChainHead")
        assert filter_list.authorize("Filecoin.ChainGetGenesis")
        assert not filter_list.authorize("Filecoin.ChainHead")

    def test_empty_filter_list_authorises_everything(self):
        assert FilterList().authorize("anything")


class TestRunIgnored:
    """Tests for run-ignored modes."""

    def test_default_reports_ignored_as_skipped(self, catalog_file):
        catalog = load_catalog(str(catalog_file), run_ignored=RunIgnored.DEFAULT)
        discover = [case for case in catalog if case.method == "Filecoin.Discover"][0]
        assert discover.is_skipped

    def test_ignored_only(self, catalog_file):
        catalog = load_catalog(str(catalog_file), run_ignored=RunIgnored.IGNORED_ONLY)
        assert catalog.methods() == ["Filecoin.Discover"]
        assert not list(catalog)[0].is_skipped

    def test_all_drops_ignore_markers(self, catalog_file):
        catalog = load_catalog(str(catalog_file), run_ignored=RunIgnored.ALL)
        discover = [case for case in catalog if case.method == "Filecoin.Discover"][0]
        assert len(catalog) == 6
        assert not discover.is_skipped


class TestDefaultCatalog:
    """The bundled catalog must always load."""

    def test_default_catalog_loads(self):
        catalog = load_catalog(str(DEFAULT_CATALOG))
        assert "Filecoin.ChainHead" in catalog.methods()
        assert all(isinstance(case, TestCase) for case in catalog)

    def test_default_catalog_chain_head_policy(self):
        catalog = load_catalog(str(DEFAULT_CATALOG), filter="Filecoin.ChainHead")
        policy = list(catalog)[0].policy
        assert isinstance(policy, NumericTolerance)
        assert policy.fields == ("Height",)

    def test_default_catalog_eth_block_number_declares_root(self):
        catalog = load_catalog(str(DEFAULT_CATALOG), filter="Filecoin.EthBlockNumber")
        assert list(catalog)[0].policy.fields == (".",)

    def test_default_catalog_has_tipset_cases(self):
        cases = list(load_catalog(str(DEFAULT_CATALOG)))
        assert any(case.uses_tipset and not case.each_tipset for case in cases)
        assert any(case.each_tipset for case in cases)


class TestPlaceholders:
    """Tipset placeholders in params."""

    def test_placeholder_marks_case_as_tipset_bound(self):
        catalog = parse_catalog(
            {
                "cases": [
                    {"method": "Filecoin.StateGetActor", "params": ["t00", "{{ tipset.key }}"]},
                    {"method": "Filecoin.StateNetworkName"},
                ]
            }
        )
        first, second = list(catalog)
        assert first.uses_tipset
        assert first.params == ("t00", "{{ tipset.key }}")
        assert not second.uses_tipset

    def test_each_tipset_flag(self):
        catalog = parse_catalog(
            {"cases": [{"method": "Filecoin.ChainGetMessagesInTipset", "params": ["{{tipset.key}}"], "each_tipset": True}]}
        )
        assert list(catalog)[0].each_tipset

    def test_unknown_placeholder_rejected(self):
        with pytest.raises(PolicyViolation) as exc_info:
            parse_catalog({"cases": [{"method": "Filecoin.ChainGetTipSet", "params": ["{{ tipset.cids }}"]}]})
        assert "tipset.cids" in str(exc_info.value)

    def test_each_tipset_without_placeholder_rejected(self):
        with pytest.raises(PolicyViolation):
            parse_catalog({"cases": [{"method": "Filecoin.ChainHead", "each_tipset": True}]})

    def test_each_tipset_must_be_boolean(self):
        with pytest.raises(PolicyViolation):
            parse_catalog(
                {"cases": [{"method": "Filecoin.ChainGetTipSet", "params": ["{{ tipset.key }}"], "each_tipset": "yes"}]}
            )
