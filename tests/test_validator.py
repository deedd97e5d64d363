# tests/test_validator.py
"""
Tests for the semantic checks run between resolution and table building.
"""

import pytest

from feac.config import CompileOptions
from feac.errors import E, Severity
from tests.conftest import VARIATION_FEA


def codes(result):
    return [d.code for d in result.diagnostics]


class TestPlacement:

    @pytest.mark.parametrize("text", [
        "sub a by b;",
        "feature liga { sub f i by f_i; } liga;\nlanguagesystem DFLT dflt;",
        "feature liga { lookup L { script latn; sub f i by f_i; } L; } liga;",
        'feature liga { featureNames { name "x"; }; } liga;',
        "feature kern { parameters 10.0 0; } kern;",
        "feature aalt { sub f i by f_i; } aalt;",
        "feature liga { feature smcp; } liga;\nfeature smcp { sub a by a.sc; } smcp;",
    ])
    def test_misplaced(self, compile_fea, text):
        result = compile_fea(text)
        assert E.MISPLACED_STATEMENT in codes(result)
        assert not result.success

    def test_lookup_used_before_definition(self, compile_fea):
        result = compile_fea("feature liga { lookup L; } liga;\nlookup L { sub f i by f_i; } L;")
        assert codes(result) == [E.LOOKUP_NOT_YET_DEFINED]
        assert result.diagnostics[0].labels[0].message == "defined here"

    def test_mark_class_used_before_definition(self, compile_fea):
        result = compile_fea(
            "feature mark { pos base b <anchor 1 1> mark @TOP; } mark;\n"
            "markClass acutecomb <anchor 0 0> @TOP;"
        )
        assert codes(result) == [E.MARK_CLASS_NOT_YET_DEFINED]
        assert not result.success
        assert result.diagnostics[0].labels[0].message == "defined here"

    def test_mark_class_order_in_ligature_components(self, compile_fea):
        result = compile_fea(
            "feature mark { pos ligature f_i <anchor 100 500> mark @TOP "
            "ligComponent <anchor 300 500> mark @TOP; } mark;\n"
            "markClass acutecomb <anchor 0 0> @TOP;"
        )
        assert codes(result) == [E.MARK_CLASS_NOT_YET_DEFINED] * 2

    def test_subtable_outside_pair_positioning(self, compile_fea):
        result = compile_fea("feature liga { sub f i by f_i; subtable; sub f l by f_l; } liga;")
        assert codes(result) == [E.SUBTABLE_IGNORED]
        assert result.success


class TestRuleShapes:

    def test_single_substitution_sizes(self, compile_fea):
        result = compile_fea("feature smcp { sub [a b c] by [a.sc b.sc]; } smcp;")
        assert codes(result) == [E.INVALID_RULE]

    def test_marks_must_be_contiguous(self, compile_fea):
        result = compile_fea("feature calt { sub a' b c' by x; } calt;")
        assert codes(result) == [E.INVALID_RULE]

    def test_inline_replacement_and_lookup(self, compile_fea):
        result = compile_fea(
            "lookup L { sub a by b; } L;\nfeature calt { sub a' lookup L b by c; } calt;"
        )
        assert codes(result) == [E.INVALID_RULE]


class TestLookups:

    def test_mixed_types_in_named_lookup(self, compile_fea):
        result = compile_fea("lookup L { sub a by b; pos a 10; } L;")
        assert codes(result) == [E.MIXED_LOOKUP_TYPES]
        assert result.tables is None

    def test_single_promoted_into_multiple(self, compile_fea):
        result = compile_fea(
            "lookup L { sub a by b; sub f_i by f i; } L;\nfeature liga { lookup L; } liga;"
        )
        assert result.success, result.diagnostics

    def test_conflicting_rule(self, compile_fea):
        result = compile_fea("feature salt { sub a by b; sub a by c; } salt;")
        assert codes(result) == [E.CONFLICTING_RULE]
        assert result.diagnostics[0].severity is Severity.ERROR

    def test_duplicate_rule_is_warning(self, compile_fea):
        result = compile_fea("feature salt { sub a by b; sub a by b; } salt;")
        assert codes(result) == [E.DUPLICATE_RULE]
        assert result.success

    def test_duplicate_pair_keeps_first(self, compile_fea):
        result = compile_fea("feature kern { pos A B -50; pos A B -20; } kern;")
        assert codes(result) == [E.DUPLICATE_RULE]
        assert "first adjustment" in result.diagnostics[0].message
        (subtable,) = result.tables.gpos.subtables
        ((_, ((_, value1, _),)),) = subtable.pairs
        assert value1.x_advance == -50

    def test_unreachable_contextual_rule(self, compile_fea):
        result = compile_fea("feature calt { sub x a' by b; sub x a' by b; } calt;")
        assert codes(result) == [E.UNREACHABLE_RULE]
        assert result.success

    def test_mark_classes_sharing_glyph_in_one_lookup(self, compile_fea):
        result = compile_fea(
            "markClass acutecomb <anchor 0 0> @A;\n"
            "markClass acutecomb <anchor 0 0> @B;\n"
            "feature mark { pos base a <anchor 0 0> mark @A <anchor 0 0> mark @B; } mark;"
        )
        assert codes(result) == [E.MARK_CLASS_CONFLICT]
        assert len(result.diagnostics[0].labels) == 2

    def test_mark_classes_sharing_glyph_in_separate_lookups(self, compile_fea):
        result = compile_fea(
            "markClass acutecomb <anchor 0 0> @A;\n"
            "markClass acutecomb <anchor 0 0> @B;\n"
            "feature mark { pos base a <anchor 0 0> mark @A; } mark;\n"
            "feature abvm { pos base a <anchor 0 0> mark @B; } abvm;"
        )
        assert result.success, result.diagnostics

    def test_base_that_is_a_mark(self, compile_fea):
        result = compile_fea(
            "markClass acutecomb <anchor 0 0> @A;\n"
            "feature mark { pos base acutecomb <anchor 0 0> mark @A; } mark;"
        )
        assert codes(result) == [E.BASE_IS_MARK]
        assert result.success

    def test_duplicate_required_feature(self, compile_fea):
        result = compile_fea(
            "languagesystem latn dflt;\n"
            "feature ccmp { script latn; language TRK required; sub a by b; } ccmp;\n"
            "feature locl { script latn; language TRK required; sub b by c; } locl;"
        )
        assert codes(result) == [E.DUPLICATE_REQUIRED_FEATURE]


class TestConditionSets:

    def test_unknown_axis(self, compile_fea):
        result = compile_fea(VARIATION_FEA)
        assert codes(result) == [E.UNKNOWN_AXIS]
        assert "none configured" in result.diagnostics[0].message

    def test_known_axis(self, compile_fea, weight_options):
        result = compile_fea(VARIATION_FEA, options=weight_options)
        assert result.success, result.diagnostics

    def test_inverted_range(self, compile_fea, weight_options):
        result = compile_fea(
            "conditionset bad { wght 900 600; } bad;\n"
            "variation rvrn bad { sub a by a.alt; } rvrn;",
            options=weight_options,
        )
        assert codes(result) == [E.INVALID_CONDITION]


class TestOptions:

    def test_invalid_options_raise(self, compile_fea):
        from feac.errors import ConfigError

        with pytest.raises(ConfigError) as excinfo:
            compile_fea("", options=CompileOptions(max_include_depth=0))
        assert excinfo.value.problems == ["max_include_depth must be positive"]

    def test_axis_default_outside_range(self):
        options = CompileOptions.from_axes({"wght": (100, 1000, 900)})
        assert options.validate() == ["axis 'wght': default must lie between minimum and maximum"]
