# tests/test_ast.py
"""
Tests for the typed views over syntax nodes.
"""

import pytest

from feac import ast as A
from feac.kinds import Kind
from feac.parser import parse
from feac.visitor import iter_statements, walk


def statements(text):
    tree, _ = parse(text)
    return list(A.SourceFile(tree.root).statements())


def first(text):
    return statements(text)[0]


class TestDefinitions:

    def test_language_system(self):
        stmt = first("languagesystem latn TRK;")
        assert isinstance(stmt, A.LanguageSystem)
        assert stmt.script.value == "latn"
        assert stmt.language.value == "TRK "

    def test_glyph_class_def(self):
        stmt = first("@LC = [a b c-e \\sub \\101];")
        assert isinstance(stmt, A.GlyphClassDef)
        assert stmt.name.name == "LC"
        items = stmt.value.items
        assert [type(i) for i in items] == [
            A.GlyphName, A.GlyphName, A.GlyphName, A.EscapedGlyph, A.Cid,
        ]
        assert items[3].name == "sub"
        assert items[4].name == "cid00101"

    def test_explicit_range(self):
        stmt = first("@R = [a - e];")
        rng = stmt.value.items[0]
        assert isinstance(rng, A.GlyphRange)
        assert (rng.start.name, rng.end.name) == ("a", "e")

    def test_mark_class(self):
        stmt = first("markClass [acutecomb gravecomb] <anchor 250 500> @TOP;")
        assert isinstance(stmt, A.MarkClassDef)
        assert stmt.class_name.name == "TOP"
        assert (stmt.anchor.x, stmt.anchor.y) == (250, 500)

    def test_anchor_def_with_contourpoint(self):
        stmt = first("anchorDef 120 -20 contourpoint 5 ANCHOR_1;")
        assert (stmt.x, stmt.y, stmt.contourpoint) == (120, -20, 5)
        assert stmt.name.value == "ANCHOR_1"

    def test_value_record_def(self):
        stmt = first("valueRecordDef <-10 0 -20 0> KERN_A;")
        assert stmt.value.numbers == [-10, 0, -20, 0]
        assert stmt.name.value == "KERN_A"

    def test_include_path(self):
        assert first("include( features/kern.fea );").path == "features/kern.fea"


class TestBlocks:

    def test_feature_block(self):
        stmt = first("feature liga useExtension { sub f i by f_i; } liga;")
        assert isinstance(stmt, A.FeatureBlock)
        assert stmt.tag.value == "liga"
        assert stmt.use_extension
        assert [s.kind for s in stmt.statements()] == [Kind.GSUB_TYPE4]

    def test_lookup_block(self):
        stmt = first("lookup SHARED { pos a 10; } SHARED;")
        assert stmt.label.value == "SHARED"
        assert not stmt.use_extension

    def test_language_flags(self):
        feature = first("feature liga { script latn; language TRK exclude_dflt required; } liga;")
        script, language = list(feature.statements())
        assert script.tag.value == "latn"
        assert language.tag.value == "TRK "
        assert not language.include_default
        assert language.required

    def test_lookupflag_named(self):
        feature = first("feature mark { lookupflag RightToLeft IgnoreMarks MarkAttachmentType @TOP; } mark;")
        flag = next(feature.statements())
        assert flag.bits == 0x0009
        assert isinstance(flag.mark_attachment, A.ClassName)
        assert flag.mark_filtering_set is None

    def test_lookupflag_number(self):
        feature = first("feature mark { lookupflag 8; } mark;")
        assert next(feature.statements()).bits == 8

    def test_condition_set(self):
        stmt = first("conditionset heavy { wght 600 900; wdth 75.5 100; } heavy;")
        assert stmt.label.value == "heavy"
        conditions = stmt.conditions
        assert [(c.tag.value, c.minimum, c.maximum) for c in conditions] == [
            ("wght", 600, 900), ("wdth", 75.5, 100),
        ]

    def test_variation_block(self):
        stmt = first("variation rvrn heavy { sub a by a.alt; } rvrn;")
        assert stmt.tag.value == "rvrn"
        assert stmt.condition_set.value == "heavy"


class TestFeatureParameters:

    def test_feature_names_defaults(self):
        feature = first('feature ss01 { featureNames { name "Alternate a"; name 1 "Alt"; }; } ss01;')
        names = next(feature.statements()).names
        assert [(n.platform_id, n.encoding_id, n.language_id, n.string) for n in names] == [
            (3, 1, 0x409, "Alternate a"),
            (1, 0, 0, "Alt"),
        ]

    def test_name_escapes(self):
        feature = first('feature ss01 { featureNames { name "caf\\00e9"; }; } ss01;')
        assert next(feature.statements()).names[0].string == "café"

    def test_cv_parameters(self):
        feature = first(
            "feature cv01 { cvParameters { "
            'FeatUILabelNameID { name "Alpha"; }; '
            "Character 0x61; Character 98; }; } cv01;"
        )
        params = next(feature.statements())
        assert [b.which for b in params.name_blocks] == [Kind.FEAT_UI_LABEL_NAME_ID_KW]
        assert params.characters == [0x61, 98]

    def test_size_parameters(self):
        feature = first("feature size { parameters 10.0 3 80 139; } size;")
        params = next(feature.statements())
        assert params.design_size == 10.0
        assert params.subfamily_id == 3
        assert params.range_start == pytest.approx(8.0)
        assert params.range_end == pytest.approx(13.9)


class TestRules:

    def test_single_substitution(self):
        rule = first("sub a by b;")
        assert isinstance(rule, A.GsubRule)
        assert rule.table == "GSUB"
        assert [g.name for g in rule.target] == ["a"]
        assert [g.name for g in rule.replacement] == ["b"]
        assert not rule.is_contextual

    def test_contextual_split(self):
        rule = first("sub [a b] c' d' lookup L1 e by x;")
        assert [i.glyphs.name for i in rule.input] == ["c", "d"]
        assert len(rule.backtrack) == 1
        assert [i.glyphs.name for i in rule.lookahead] == ["e"]
        assert [l.value for l in rule.input[1].lookups] == ["L1"]
        assert rule.marks_contiguous

    def test_non_contiguous_marks(self):
        assert not first("sub a' b c' by x;").marks_contiguous

    def test_deletion(self):
        rule = first("sub a' b by NULL;")
        assert rule.replacement_is_null

    def test_pair_position(self):
        rule = first("pos A <0 0 -50 0> B 10;")
        assert isinstance(rule, A.PairPosRule)
        assert rule.value1.numbers == [0, 0, -50, 0]
        assert rule.value2.numbers == [10]
        assert not rule.enumerated

    def test_anchor_devices(self):
        rule = first("pos cursive a <anchor 0 0 <device 11 -1, 12 -2> <device NULL>> <anchor NULL>;")
        assert rule.entry.devices[0].entries == ((11, -1), (12, -2))
        assert rule.entry.devices[1].is_null
        assert rule.exit.is_null

    def test_mark_ligature(self):
        rule = first(
            "pos ligature f_i <anchor 100 500> mark @TOP ligComponent <anchor 300 500> mark @TOP;"
        )
        assert rule.glyphs.name == "f_i"
        assert [len(c.anchor_marks) for c in rule.components] == [1, 1]
        assert rule.components[1].anchor_marks[0].mark_class.name == "TOP"

    def test_alternate_uses_from(self):
        assert first("sub a from [a.alt a.swsh];").uses_from
        assert not first("sub a by b;").uses_from

    def test_mark_to_mark(self):
        assert first("pos mark acutecomb <anchor 0 600> mark @TOP;").is_mark_to_mark
        assert not first("pos base a <anchor 0 500> mark @TOP;").is_mark_to_mark

    def test_rule_ancestors(self):
        (block,) = statements("feature liga { lookup L { sub f i by f_i; } L; } liga;")
        (lookup,) = block.statements()
        (rule,) = lookup.statements()
        kinds = [node.kind for node in rule.node.ancestors()]
        assert kinds[-1] is Kind.SOURCE_FILE
        assert Kind.LOOKUP_BLOCK in kinds
        assert Kind.FEATURE_BLOCK in kinds

    def test_ignore(self):
        rule = first("ignore sub a b', c b';")
        assert isinstance(rule, A.IgnoreRule)
        assert len(rule.contexts) == 2
        assert rule.is_contextual


class TestVisitor:

    def test_iter_statements_yields_direct_children(self):
        tree, _ = parse("@A = [a]; feature liga { lookup L { sub f i by f_i; } L; } liga;")
        kinds = [s.kind for s in iter_statements(A.SourceFile(tree.root))]
        assert kinds == [Kind.GLYPH_CLASS_DEF, Kind.FEATURE_BLOCK]

    def test_walk_is_preorder(self):
        tree, _ = parse("feature liga { lookup L { sub f i by f_i; } L; } liga;")
        kinds = [s.kind for s, _ in walk(A.SourceFile(tree.root))]
        assert kinds == [Kind.FEATURE_BLOCK, Kind.LOOKUP_BLOCK, Kind.GSUB_TYPE4]

    def test_walk_reports_enclosing_blocks(self):
        tree, _ = parse("feature liga { lookup L { sub f i by f_i; } L; } liga;")
        rule, parents = list(walk(A.SourceFile(tree.root)))[-1]
        assert rule.kind is Kind.GSUB_TYPE4
        assert [p.kind for p in parents] == [Kind.FEATURE_BLOCK, Kind.LOOKUP_BLOCK]

