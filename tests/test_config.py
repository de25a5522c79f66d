"""Tests for EconomyConfig."""

from holdsim.core.config import EconomyConfig


class TestConfigDefaults:
    def test_default_name_and_version(self):
        c = EconomyConfig()
        assert c.config_name == "default"
        assert c.engine_version == "engine-v1"

    def test_macro_bounds(self):
        c = EconomyConfig()
        assert c.bounds("macro", "interest_bounds") == (0.0, 0.5)
        assert c.bounds("macro", "inflation_bounds") == (-0.25, 1.0)
        assert c.bounds("macro", "wage_index_bounds") == (0.5, 5.0)

    def test_segment_rounds(self):
        assert EconomyConfig().segment_allocation["max_rounds"] == 4

    def test_tax_rate(self):
        assert EconomyConfig().finance["corporate_tax_rate"] == 0.19

    def test_sections_not_shared(self):
        a = EconomyConfig()
        b = EconomyConfig()
        a.finance["corporate_tax_rate"] = 0.5
        assert b.finance["corporate_tax_rate"] == 0.19


class TestSerialization:
    def test_to_dict_roundtrip(self):
        c = EconomyConfig(config_name="test")
        c2 = EconomyConfig.from_dict(c.to_dict())
        assert c2.config_name == "test"
        assert c2.to_dict() == c.to_dict()

    def test_to_json_roundtrip(self):
        c = EconomyConfig(config_name="json_test")
        c2 = EconomyConfig.from_json(c.to_json())
        assert c2.config_name == "json_test"
        assert c2.bounds("finance", "loan_rate_bounds") == (0.0, 0.18)

    def test_from_dict_merges_sections(self):
        c = EconomyConfig.from_dict({"finance": {"corporate_tax_rate": 0.25}})
        assert c.finance["corporate_tax_rate"] == 0.25
        assert c.finance["paid_off_epsilon"] == 0.0001

    def test_from_dict_ignores_unknown_keys(self):
        c = EconomyConfig.from_dict({"not_a_field": 1, "config_name": "x"})
        assert c.config_name == "x"

    def test_diff(self):
        a = EconomyConfig()
        b = EconomyConfig.from_dict({"sector": {"demand_smoothing": 0.5}})
        diffs = a.diff(b)
        assert list(diffs) == ["sector"]
        assert diffs["sector"][1]["demand_smoothing"] == 0.5

    def test_diff_empty_for_equal(self):
        assert EconomyConfig().diff(EconomyConfig()) == {}
