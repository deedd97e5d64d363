# tests/test_resolver.py
"""
Tests for name resolution: symbol tables, glyph classes, ranges and
the resolved form of rules.
"""

from feac import ast as A
from feac.config import CompileOptions
from feac.errors import E, Severity
from feac.kinds import Kind
from feac.parser import parse
from feac.resolver import PairPosRule, SinglePosRule, SubstRule, resolve
from feac.sources import SourceMap
from tests.conftest import CYCLE_FEA, FORWARD_CLASS_FEA, LATIN_GLYPHS


def run(text, glyph_order=LATIN_GLYPHS, options=None):
    tree, diagnostics = parse(text)
    assert diagnostics == []
    sources = SourceMap()
    sources.add("<test>", text).tree = tree
    return resolve(A.SourceFile(tree.root), sources, glyph_order, options)


def gid(name):
    return LATIN_GLYPHS.index(name)


def only_rule(resolution):
    (rules,) = resolution.rules.values()
    (rule,) = rules
    return rule


class TestGlyphClasses:

    def test_forward_reference(self):
        resolution, diagnostics = run(FORWARD_CLASS_FEA)
        assert diagnostics == []
        rule = only_rule(resolution)
        assert isinstance(rule, SubstRule)
        assert rule.target == ((gid("f"),),)
        assert rule.target_is_class == (True,)

    def test_nested_classes_keep_order(self):
        resolution, _ = run("@A = [c a]; @B = [b @A];")
        assert resolution.symbols.classes["B"].value == (gid("b"), gid("c"), gid("a"))

    def test_cycle_is_reported_once(self):
        _, diagnostics = run(CYCLE_FEA, glyph_order=None)
        assert [d.code for d in diagnostics] == [E.CLASS_CYCLE]
        assert "@A -> @B -> @A" in diagnostics[0].message
        assert len(diagnostics[0].labels) == 2

    def test_depth_limit(self):
        text = "@C3 = [@C2]; @C2 = [@C1]; @C1 = [@C0]; @C0 = [a];"
        _, diagnostics = run(text, options=CompileOptions(max_class_depth=2))
        assert E.CLASS_TOO_DEEP in [d.code for d in diagnostics]

    def test_undefined_class_drops_rule(self):
        resolution, diagnostics = run("feature liga { sub @NOPE by a; } liga;")
        assert [d.code for d in diagnostics] == [E.UNDEFINED_CLASS]
        assert resolution.rules == {}
        assert len(resolution.dropped) == 1

    def test_empty_class_warns(self):
        _, diagnostics = run("@E = [];")
        assert [d.code for d in diagnostics] == [E.EMPTY_CLASS]
        assert diagnostics[0].severity is Severity.WARNING

    def test_mark_class_usable_as_glyph_class(self):
        resolution, diagnostics = run(
            "markClass [acutecomb gravecomb] <anchor 0 0> @TOP;\n"
            "feature ss01 { sub @TOP by a; } ss01;"
        )
        assert diagnostics == []
        assert only_rule(resolution).target == ((gid("acutecomb"), gid("gravecomb")),)


class TestGlyphs:

    def test_undefined_glyph(self):
        _, diagnostics = run("feature smcp { sub q by a; } smcp;")
        assert [d.code for d in diagnostics] == [E.UNDEFINED_GLYPH]
        assert "'q'" in diagnostics[0].message

    def test_implicit_glyph_map(self):
        resolution, diagnostics = run("feature smcp { sub b by a; } smcp;", glyph_order=None)
        assert diagnostics == []
        assert resolution.glyph_map.names == (".notdef", "b", "a")

    def test_explicit_range(self):
        resolution, _ = run("@R = [a.sc - c.sc];")
        assert resolution.symbols.classes["R"].value == (gid("a.sc"), gid("b.sc"), gid("c.sc"))

    def test_hyphenated_name_read_as_range(self):
        resolution, diagnostics = run("@R = [a-c];")
        assert diagnostics == []
        assert resolution.symbols.classes["R"].value == (gid("a"), gid("b"), gid("c"))

    def test_hyphenated_glyph_name_wins(self):
        glyphs = [".notdef", "a", "b", "c", "a-c"]
        resolution, _ = run("@R = [a-c];", glyph_order=glyphs)
        assert resolution.symbols.classes["R"].value == (4,)

    def test_ambiguous_hyphenated_name(self):
        glyphs = [".notdef", "a", "a-b", "b", "b-c", "c"]
        _, diagnostics = run("@R = [a-b-c];", glyph_order=glyphs)
        assert [d.code for d in diagnostics] == [E.AMBIGUOUS_RANGE]
        assert diagnostics[0].hint

    def test_invalid_range(self):
        _, diagnostics = run("@R = [a - a.sc];")
        assert [d.code for d in diagnostics] == [E.INVALID_RANGE]

    def test_cid_range(self):
        glyphs = [".notdef", "cid00010", "cid00011", "cid00012"]
        resolution, _ = run("@R = [\\10 - \\12];", glyph_order=glyphs)
        assert resolution.symbols.classes["R"].value == (1, 2, 3)


class TestDefinitions:

    def test_duplicate_class_last_wins(self):
        resolution, diagnostics = run("@A = [a]; @A = [b];")
        assert [d.code for d in diagnostics] == [E.DUPLICATE_DEFINITION]
        assert diagnostics[0].severity is Severity.WARNING
        assert diagnostics[0].labels[0].message == "previous definition here"
        assert resolution.symbols.classes["A"].value == (gid("b"),)

    def test_duplicate_severity_is_configurable(self):
        options = CompileOptions(duplicate_definition_severity=Severity.ERROR)
        _, diagnostics = run("@A = [a]; @A = [b];", options=options)
        assert diagnostics[0].severity is Severity.ERROR

    def test_duplicate_lookup_keeps_first(self):
        text = "lookup L { sub a by b; } L;\nlookup L { sub a by c; } L;"
        resolution, diagnostics = run(text)
        assert [d.code for d in diagnostics] == [E.DUPLICATE_LOOKUP]
        assert diagnostics[0].severity is Severity.ERROR
        assert resolution.symbols.lookups["L"].span.start < text.index("\n")

    def test_duplicate_language_system(self):
        resolution, diagnostics = run("languagesystem DFLT dflt;\nlanguagesystem DFLT dflt;")
        assert [d.code for d in diagnostics] == [E.DUPLICATE_LANGUAGE_SYSTEM]
        assert len(resolution.symbols.language_systems) == 1

    def test_glyph_in_mark_class_twice(self):
        resolution, diagnostics = run(
            "markClass acutecomb <anchor 0 0> @T;\nmarkClass acutecomb <anchor 10 0> @T;"
        )
        assert [d.code for d in diagnostics] == [E.MARK_CLASS_CONFLICT]
        assert resolution.symbols.mark_classes["T"].members[gid("acutecomb")].x == 0

    def test_named_anchor_and_value_record(self):
        resolution, diagnostics = run(
            "anchorDef 100 200 TOP;\nvalueRecordDef <1 2 3 4> V;\n"
            "feature kern { pos a <V>; pos cursive b <anchor TOP> <anchor NULL>; } kern;"
        )
        assert diagnostics == []
        single, cursive = sorted(
            (rules[0] for rules in resolution.rules.values()), key=lambda r: r.span
        )
        assert (single.value.x_placement, single.value.y_advance) == (1, 4)
        assert (cursive.entry.x, cursive.entry.y) == (100, 200)
        assert cursive.exit is None

    def test_undefined_anchor(self):
        _, diagnostics = run("feature curs { pos cursive a <anchor MISSING> <anchor NULL>; } curs;")
        assert [d.code for d in diagnostics] == [E.UNDEFINED_ANCHOR]


class TestReferences:

    def test_undefined_lookup(self):
        _, diagnostics = run("feature calt { sub a' lookup NOPE b; } calt;")
        assert [d.code for d in diagnostics] == [E.UNDEFINED_LOOKUP]

    def test_undefined_mark_class(self):
        _, diagnostics = run("feature mark { pos base a <anchor 0 0> mark @NONE; } mark;")
        assert [d.code for d in diagnostics] == [E.UNDEFINED_MARK_CLASS]

    def test_undefined_feature_in_aalt(self):
        _, diagnostics = run("feature aalt { feature salt; } aalt;")
        assert [d.code for d in diagnostics] == [E.UNDEFINED_FEATURE]

    def test_undefined_condition_set(self):
        _, diagnostics = run("variation rvrn heavy { sub a by a.alt; } rvrn;")
        assert [d.code for d in diagnostics] == [E.UNDEFINED_CONDITION_SET]


class TestResolvedRules:

    def test_advance_only_value(self):
        rule = only_rule(run("feature kern { pos a 10; } kern;")[0])
        assert isinstance(rule, SinglePosRule)
        assert rule.value.x_advance == 10

    def test_vertical_feature_uses_y_advance(self):
        rule = only_rule(run("feature vkrn { pos a 50; } vkrn;")[0])
        assert (rule.value.x_advance, rule.value.y_advance) == (0, 50)

    def test_pair_with_single_value_adjusts_first_glyph(self):
        rule = only_rule(run("feature kern { pos A B -50; } kern;")[0])
        assert isinstance(rule, PairPosRule)
        assert rule.value1.x_advance == -50
        assert rule.value2 is None
        assert not rule.is_class_pair

    def test_enumerated_class_pair_is_glyph_pairs(self):
        rule = only_rule(run("feature kern { enum pos [A B] C 10; } kern;")[0])
        assert rule.first_is_class
        assert not rule.is_class_pair

    def test_contextual_rule(self):
        rule = only_rule(run("feature calt { sub x a' z by b; } calt;")[0])
        assert rule.kind is Kind.GSUB_TYPE6
        assert rule.backtrack == ((gid("x"),),)
        assert rule.input == ((gid("a"),),)
        assert rule.lookahead == ((gid("z"),),)
        assert rule.has_replacement

    def test_resolution_is_repeatable(self):
        first = run(CYCLE_FEA, glyph_order=None)
        second = run(CYCLE_FEA, glyph_order=None)
        assert first[1] == second[1]
        assert first[0].glyph_map == second[0].glyph_map
