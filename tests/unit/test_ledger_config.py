"""Tests for ledger_config: YAML loading, override merging and the kernel bridge."""

import decimal
from decimal import Decimal

import pytest
import yaml

from ledger_config import get_ledger_config
from ledger_config.bridges import build_ledger_policy
from ledger_config.loader import deep_merge, load_yaml_file
from ledger_kernel.domain.ledger_policy import LedgerPolicy


@pytest.fixture
def write_yaml(tmp_path):
    def _write(text: str, name: str = "override.yaml"):
        path = tmp_path / name
        path.write_text(text)
        return path

    return _write


class TestDefaults:
    def test_defaults_match_kernel_policy(self):
        policy = build_ledger_policy(get_ledger_config())
        default = LedgerPolicy()
        assert policy.base_currency == default.base_currency
        assert policy.balance_tolerance == default.balance_tolerance
        assert policy.significance_threshold == default.significance_threshold
        assert dict(policy.entry_prefixes) == dict(default.entry_prefixes)
        assert policy.yearly_kinds == default.yearly_kinds
        assert dict(policy.account_class_names) == dict(default.account_class_names)

    def test_tolerance_is_decimal_not_float(self):
        config = get_ledger_config()
        assert isinstance(config.balance_tolerance, Decimal)
        assert config.balance_tolerance == Decimal("0.01")


class TestOverrides:
    def test_override_is_deep_merged(self, write_yaml):
        path = write_yaml(
            "base_currency: pln\n"
            "rounding_mode: ROUND_HALF_EVEN\n"
            "numbering:\n"
            "  sequence_width: 6\n"
        )
        config = get_ledger_config(path)
        policy = build_ledger_policy(config)

        assert policy.base_currency == "PLN"
        assert policy.rounding_mode == decimal.ROUND_HALF_EVEN
        assert policy.sequence_width == 6
        # untouched siblings survive the merge
        assert policy.prefix_for("standard") == "JE"
        assert len(config.source_files) == 2

    def test_float_tolerance_in_yaml_keeps_literal(self, write_yaml):
        config = get_ledger_config(write_yaml("balance_tolerance: 0.005\n"))
        assert config.balance_tolerance == Decimal("0.005")

    def test_unknown_entry_kind_rejected(self, write_yaml):
        path = write_yaml("numbering:\n  prefixes:\n    memo: MM\n")
        with pytest.raises(ValueError, match="unknown entry kinds"):
            get_ledger_config(path)

    def test_unknown_rounding_mode_rejected(self, write_yaml):
        with pytest.raises(ValueError, match="rounding_mode"):
            get_ledger_config(write_yaml("rounding_mode: BANKERS\n"))

    def test_negative_tolerance_rejected(self, write_yaml):
        with pytest.raises(ValueError, match="balance_tolerance"):
            get_ledger_config(write_yaml('balance_tolerance: "-1"\n'))

    def test_class_out_of_range_rejected(self, write_yaml):
        with pytest.raises(ValueError, match="account_class_names"):
            get_ledger_config(write_yaml("account_class_names:\n  12: Nope\n"))

    def test_malformed_yaml_raises_yaml_error(self, write_yaml):
        with pytest.raises(yaml.YAMLError):
            get_ledger_config(write_yaml("numbering: [unclosed\n"))

    def test_missing_override_file(self, tmp_path):
        with pytest.raises(FileNotFoundError):
            get_ledger_config(tmp_path / "absent.yaml")


class TestLoaderHelpers:
    def test_deep_merge_replaces_lists(self):
        merged = deep_merge({"a": {"b": [1, 2], "c": 1}}, {"a": {"b": [3]}})
        assert merged == {"a": {"b": [3], "c": 1}}

    def test_deep_merge_leaves_inputs_alone(self):
        base = {"a": {"b": 1}}
        deep_merge(base, {"a": {"b": 2}})
        assert base == {"a": {"b": 1}}

    def test_empty_file_is_empty_mapping(self, write_yaml):
        assert load_yaml_file(write_yaml("")) == {}

    def test_non_mapping_document_rejected(self, write_yaml):
        with pytest.raises(ValueError, match="mapping"):
            load_yaml_file(write_yaml("- just\n- a list\n"))
