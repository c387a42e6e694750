"""
Tests for manual override rules
"""

import pandas as pd
import pytest

from communitysize.classify import as_category_column
from communitysize.config import DEFAULT_OVERRIDE_RULES, Category
from communitysize.errors import InvalidOverrideRule
from communitysize.overrides import (
    OverrideRule,
    apply_override_rules,
    apply_overrides,
    match_rule,
    override_counts,
    rule_from_dict,
    rules_from_records,
    validate_rules,
)

URBAN = frozenset({Category.LARGE_URBAN, Category.SMALL_URBAN})


@pytest.fixture
def canadian_rules():
    return rules_from_records(DEFAULT_OVERRIDE_RULES)


@pytest.fixture
def labelled_frame():
    """Cells with economic-region ids, subdivision names and base categories."""
    frame = pd.DataFrame(
        {
            "cell_id": [1, 2, 3, 4, 5, 6, 7],
            "ERUID": [4610, 4610, 4810, 4810, 4650, 3550, 5910],
            "CSDNAME": ["Ste. Anne", "Niverville", "Lethbridge", "Coaldale", "Headingley", "St. Catharines", "Vancouver"],
        }
    )
    frame["base_category"] = as_category_column(
        [
            Category.SMALL_URBAN,
            Category.RURAL_VILLAGE,
            Category.SMALL_URBAN,
            Category.SMALL_URBAN,
            Category.LARGE_URBAN,
            Category.SMALL_URBAN,
            Category.METROPOLIS,
        ]
    )
    return frame


class TestApplyOverrides:
    def test_region_and_category_conjunction(self):
        rule = OverrideRule("ERUID", "4610", Category.RURAL_TOWN, categories=URBAN)
        assert apply_overrides({"ERUID": 4610}, Category.SMALL_URBAN, [rule]) is Category.RURAL_TOWN
        assert apply_overrides({"ERUID": 4610}, Category.RURAL_VILLAGE, [rule]) is Category.RURAL_VILLAGE
        assert apply_overrides({"ERUID": 4660}, Category.SMALL_URBAN, [rule]) is Category.SMALL_URBAN

    def test_region_compared_as_text(self):
        rule = OverrideRule("ERUID", "4810", Category.LARGE_URBAN)
        assert rule.matches({"ERUID": 4810}, Category.SMALL_URBAN)
        assert rule.matches({"ERUID": 4810.0}, Category.SMALL_URBAN)
        assert rule.matches({"ERUID": "4810"}, Category.SMALL_URBAN)
        assert not rule.matches({"ERUID": None}, Category.SMALL_URBAN)
        assert not rule.matches({}, Category.SMALL_URBAN)

    def test_name_must_match_exactly(self):
        rule = OverrideRule("ERUID", "4850", Category.LARGE_URBAN, name="Red Deer")
        assert rule.matches({"ERUID": "4850", "CSDNAME": "Red Deer"}, Category.SMALL_URBAN)
        assert not rule.matches({"ERUID": "4850", "CSDNAME": "red deer"}, Category.SMALL_URBAN)
        assert not rule.matches({"ERUID": "4850"}, Category.SMALL_URBAN)

    def test_first_match_wins(self):
        rules = [
            OverrideRule("ERUID", "1", Category.RURAL_TOWN),
            OverrideRule("ERUID", "1", Category.METROPOLIS),
        ]
        assert apply_overrides({"ERUID": 1}, Category.RURAL_VILLAGE, rules) is Category.RURAL_TOWN
        assert match_rule({"ERUID": 1}, Category.RURAL_VILLAGE, rules) == 0

    def test_no_rules_keeps_base(self):
        assert apply_overrides({"ERUID": 1}, Category.METROPOLIS, []) is Category.METROPOLIS

    def test_applying_twice_equals_once(self, canadian_rules, labelled_frame):
        for record in labelled_frame.to_dict(orient="records"):
            base = Category.parse(record["base_category"])
            once = apply_overrides(record, base, canadian_rules)
            twice = apply_overrides(record, once, canadian_rules)
            assert once is twice


class TestApplyOverrideRules:
    def test_canadian_table(self, canadian_rules, labelled_frame):
        result = apply_override_rules(labelled_frame, canadian_rules)
        assert list(result["Category"].astype(str)) == [
            "Rural town",             # 4610 urban → rural town
            "Rural village",          # 4610 but already rural
            "Large urban community",  # Lethbridge
            "Small urban community",  # same region, other name
            "Rural village",          # Headingley
            "Large urban community",  # St. Catharines
            "Metropolis",             # no rule
        ]
        assert list(result["override_rule"]) == [0, -1, 2, -1, 4, 5, -1]
        assert override_counts(result) == {0: 1, 2: 1, 4: 1, 5: 1}

    def test_input_order_does_not_change_outcome(self, canadian_rules, labelled_frame):
        straight = apply_override_rules(labelled_frame, canadian_rules)
        shuffled = apply_override_rules(
            labelled_frame.sample(frac=1.0, random_state=7), canadian_rules
        )
        a = straight.set_index("cell_id")["Category"].astype(str)
        b = shuffled.set_index("cell_id")["Category"].astype(str)
        pd.testing.assert_series_equal(a, b.reindex(a.index))

    def test_unknown_cells_are_not_relabelled(self):
        frame = pd.DataFrame({"ERUID": ["4810"], "CSDNAME": ["Lethbridge"]})
        frame["base_category"] = as_category_column([Category.UNKNOWN])
        rules = [OverrideRule("ERUID", "4810", Category.LARGE_URBAN, name="Lethbridge")]
        kept = apply_override_rules(frame, rules)
        assert kept["Category"].astype(str).tolist() == ["Unknown"]
        relabelled = apply_override_rules(frame, rules, keep_unknown=False)
        assert relabelled["Category"].astype(str).tolist() == ["Large urban community"]

    def test_missing_field_never_matches(self, labelled_frame):
        rules = [OverrideRule("PRUID", "46", Category.RURAL_TOWN)]
        result = apply_override_rules(labelled_frame, rules)
        assert (result["override_rule"] == -1).all()

    def test_base_category_untouched(self, canadian_rules, labelled_frame):
        result = apply_override_rules(labelled_frame, canadian_rules)
        pd.testing.assert_series_equal(result["base_category"], labelled_frame["base_category"])


class TestRuleParsing:
    def test_default_table_parses(self, canadian_rules):
        assert len(canadian_rules) == 6
        assert canadian_rules[0].categories == URBAN
        assert canadian_rules[2].name == "Lethbridge"
        assert canadian_rules[2].name_field == "CSDNAME"

    def test_aliases_accepted(self):
        rule = rule_from_dict(
            {"region_field": "ERUID", "region_value": 1, "categories": "SmallUrban", "target": "RURAL_TOWN"}
        )
        assert rule.categories == frozenset({Category.SMALL_URBAN})
        assert rule.target is Category.RURAL_TOWN
        assert rule.region_value == "1"

    @pytest.mark.parametrize(
        "record",
        [
            {"region_field": "ERUID", "region_value": "1"},
            {"region_field": "", "region_value": "1", "target": "Rural town"},
            {"region_field": "ERUID", "target": "Rural town"},
            {"region_field": "ERUID", "region_value": "1", "target": "Hamlet"},
            {"region_field": "ERUID", "region_value": "1", "target": "Unknown"},
            {"region_field": "ERUID", "region_value": "1", "target": "Rural town", "categories": []},
            {"region_field": "ERUID", "region_value": "1", "target": "Rural town", "name": ""},
            {"region_field": "ERUID", "region_value": "1", "target": "Rural town", "when": "always"},
        ],
    )
    def test_malformed_rules_rejected(self, record):
        with pytest.raises(InvalidOverrideRule):
            rule_from_dict(record)

    def test_position_reported(self):
        with pytest.raises(InvalidOverrideRule, match="#1"):
            rules_from_records([DEFAULT_OVERRIDE_RULES[0], {"region_field": "ERUID"}])

    def test_validate_rejects_foreign_objects(self):
        with pytest.raises(InvalidOverrideRule):
            validate_rules([{"region_field": "ERUID"}])
