# tests/test_backend.py
"""
Tests for table generation: lookup numbering, subtable encoding,
feature and script lists, feature variations and GDEF.
"""

import pytest

from feac import tables as T
from feac.config import CompileOptions
from feac.errors import E
from tests.conftest import (
    KERN_FEA,
    LATIN_GLYPHS,
    LIGA_FEA,
    MARK_FEA,
    SMCP_FEA,
    VARIATION_FEA,
)


def gid(name):
    return LATIN_GLYPHS.index(name)


def compiled(compile_fea, text, **kwargs):
    result = compile_fea(text, **kwargs)
    assert result.success, result.diagnostics
    return result.tables


class TestSubstitution:

    def test_small_caps(self, compile_fea):
        tables = compiled(compile_fea, SMCP_FEA)
        assert tables.tags == ["GSUB"]
        gsub = tables.gsub
        (lookup,) = gsub.lookups
        assert lookup.lookup_type == 1
        (subtable,) = gsub.lookup_subtables(0)
        assert subtable.format == 1
        assert subtable.delta == gid("a.sc") - gid("a")
        assert [f.tag for f in gsub.features] == ["smcp"]
        (script,) = gsub.scripts
        assert script.tag == "DFLT"
        assert script.default.feature_indices == (0,)
        assert script.default.required_feature is None

    def test_ligatures_shared_across_language_systems(self, compile_fea):
        gsub = compiled(compile_fea, LIGA_FEA).gsub
        assert len(gsub.features) == 1
        assert [s.tag for s in gsub.scripts] == ["DFLT", "latn"]
        assert all(s.default.feature_indices == (0,) for s in gsub.scripts)
        (subtable,) = gsub.subtables
        assert subtable.ligatures[0] == ((gid("f"), gid("f"), gid("i")), gid("f_f_i"))

    def test_lookups_in_creation_order(self, compile_fea):
        gsub = compiled(
            compile_fea,
            "feature smcp { sub a by a.sc; } smcp;\nfeature liga { sub f i by f_i; } liga;",
        ).gsub
        assert [lookup.lookup_type for lookup in gsub.lookups] == [1, 4]
        assert [(f.tag, f.lookups) for f in gsub.features] == [("liga", (1,)), ("smcp", (0,))]

    def test_single_promoted_to_multiple(self, compile_fea):
        gsub = compiled(
            compile_fea,
            "lookup L { sub a by b; sub f_i by f i; } L;\nfeature liga { lookup L; } liga;",
        ).gsub
        (subtable,) = gsub.subtables
        assert isinstance(subtable, T.MultipleSubst)
        assert dict(subtable.mapping) == {
            gid("a"): (gid("b"),),
            gid("f_i"): (gid("f"), gid("i")),
        }

    def test_contextual_with_named_lookup(self, compile_fea):
        gsub = compiled(
            compile_fea,
            "lookup SC { sub a by a.sc; } SC;\nfeature calt { sub x a' lookup SC; } calt;",
        ).gsub
        chain = gsub.lookup_subtables(1)[0]
        assert isinstance(chain, T.ChainContext)
        assert chain.backtrack == (T.Coverage((gid("x"),)),)
        assert chain.input == (T.Coverage((gid("a"),)),)
        assert chain.lookup_records == ((0, 0),)
        assert [f.lookups for f in gsub.features] == [(1,)]

    def test_inline_replacement_gets_its_own_lookup(self, compile_fea):
        gsub = compiled(compile_fea, "feature calt { sub x a' by a.alt; } calt;").gsub
        assert [lookup.lookup_type for lookup in gsub.lookups] == [6, 1]
        assert gsub.lookup_subtables(0)[0].lookup_records == ((0, 1),)
        assert gsub.features[0].lookups == (0,)

    def test_alternates(self, compile_fea):
        gsub = compiled(compile_fea, "feature salt { sub a from [a.alt a.swsh]; } salt;").gsub
        (subtable,) = gsub.subtables
        assert subtable.mapping == ((gid("a"), (gid("a.alt"), gid("a.swsh"))),)


class TestAalt:

    def test_aalt_lookups_come_first(self, compile_fea):
        gsub = compiled(
            compile_fea,
            "feature aalt { feature salt; feature smcp; } aalt;\n"
            "feature salt { sub a by a.alt; } salt;\n"
            "feature smcp { sub a by a.sc; sub b by b.sc; } smcp;",
        ).gsub
        assert [lookup.lookup_type for lookup in gsub.lookups] == [1, 3, 1, 1]
        single, alternate = gsub.lookup_subtables(0)[0], gsub.lookup_subtables(1)[0]
        assert single.mapping == ((gid("b"), gid("b.sc")),)
        assert alternate.mapping == ((gid("a"), (gid("a.alt"), gid("a.sc"))),)
        assert [(f.tag, f.lookups) for f in gsub.features] == [
            ("aalt", (0, 1)), ("salt", (2,)), ("smcp", (3,)),
        ]


class TestPositioning:

    def test_kerning(self, compile_fea):
        gpos = compiled(compile_fea, KERN_FEA).gpos
        (lookup,) = gpos.lookups
        assert lookup.lookup_type == 2
        subtables = gpos.lookup_subtables(0)
        assert len(subtables) == 2
        assert subtables[0].pairs == (
            (gid("A"), ((gid("B"), T.ValueRecord(x_advance=-50), None),)),
        )

    def test_zero_pair_value_is_kept(self, compile_fea):
        gpos = compiled(compile_fea, "feature kern { pos A B 0; } kern;").gpos
        assert gpos.subtables[0].value_format1 == 0x0004

    def test_mark_to_base(self, compile_fea):
        gpos = compiled(compile_fea, MARK_FEA).gpos
        (subtable,) = gpos.subtables
        assert isinstance(subtable, T.MarkBasePos)
        assert subtable.class_count == 2
        assert [(g, c) for g, c, _ in subtable.marks] == [
            (gid("acutecomb"), 0), (gid("gravecomb"), 0), (gid("dotbelowcomb"), 1),
        ]
        base_a = dict(subtable.bases)[gid("a")]
        assert base_a == (T.Anchor(250, 450), T.Anchor(250, 0))

    def test_mark_class_ids_follow_glyph_order(self, compile_fea):
        gpos = compiled(
            compile_fea,
            "markClass dotbelowcomb <anchor 0 0> @LOW;\n"
            "markClass acutecomb <anchor 0 0> @HIGH;\n"
            "feature mark { pos base a <anchor 0 -10> mark @LOW <anchor 0 500> mark @HIGH; } mark;",
        ).gpos
        (subtable,) = gpos.subtables
        assert dict((g, c) for g, c, _ in subtable.marks) == {
            gid("acutecomb"): 0, gid("dotbelowcomb"): 1,
        }
        assert dict(subtable.bases)[gid("a")] == (T.Anchor(0, 500), T.Anchor(0, -10))

    def test_mark_filtering_set(self, compile_fea):
        tables = compiled(
            compile_fea,
            "markClass acutecomb <anchor 0 0> @TOP;\n"
            "feature mark { lookupflag UseMarkFilteringSet [acutecomb]; "
            "pos base a <anchor 0 0> mark @TOP; } mark;",
        )
        (lookup,) = tables.gpos.lookups
        assert lookup.flag == 0x0010
        assert lookup.mark_filtering_set == 0
        assert tables.gdef.mark_glyph_sets == (T.Coverage((gid("acutecomb"),)),)
        assert tables.gdef.version == 0x00010002

    def test_mark_attachment_type(self, compile_fea):
        tables = compiled(
            compile_fea,
            "markClass [acutecomb gravecomb] <anchor 0 0> @TOP;\n"
            "feature mark { lookupflag MarkAttachmentType @TOP; "
            "pos base a <anchor 0 0> mark @TOP; } mark;",
        )
        assert tables.gpos.lookups[0].flag == 0x0100
        assert tables.gdef.mark_attach_classes.as_dict() == {
            gid("acutecomb"): 1, gid("gravecomb"): 1,
        }


class TestGdef:

    def test_inferred_classes(self, compile_fea):
        gdef = compiled(compile_fea, MARK_FEA).gdef
        assert gdef.glyph_classes.as_dict() == {
            gid("a"): 1, gid("e"): 1, gid("o"): 1,
            gid("acutecomb"): 3, gid("gravecomb"): 3, gid("dotbelowcomb"): 3,
        }

    def test_inference_can_be_disabled(self, compile_fea):
        tables = compiled(compile_fea, MARK_FEA, options=CompileOptions(infer_gdef_classes=False))
        assert tables.gdef is None

    def test_declared_table(self, compile_fea):
        tables = compiled(
            compile_fea,
            "table GDEF {\n"
            "    GlyphClassDef [a b], [f_i], [acutecomb], ;\n"
            "    LigatureCaretByPos f_i 300;\n"
            "    Attach a 2 1;\n"
            "} GDEF;\n",
        )
        assert tables.tags == ["GDEF"]
        gdef = tables.gdef
        assert gdef.glyph_classes.as_dict() == {
            gid("a"): 1, gid("b"): 1, gid("f_i"): 2, gid("acutecomb"): 3,
        }
        assert gdef.lig_carets == ((gid("f_i"), "pos", (300,)),)
        assert gdef.attach_points == ((gid("a"), (1, 2)),)

    def test_conflicting_declared_classes(self, compile_fea):
        result = compile_fea("table GDEF { GlyphClassDef [a], [a], , ; } GDEF;")
        assert [d.code for d in result.diagnostics] == [E.GDEF_CLASS_CONFLICT]
        assert not result.success
        assert result.tables.gdef is None


class TestFeatureParameters:

    def test_stylistic_set_names(self, compile_fea):
        tables = compiled(
            compile_fea,
            'feature ss01 { featureNames { name "Alternate a"; }; sub a by a.alt; } ss01;',
        )
        assert tables.names == (T.NameRecord(256, 3, 1, 0x409, "Alternate a"),)
        assert tables.gsub.features[0].params == T.StylisticSetParams(256)

    def test_first_name_id_is_configurable(self, compile_fea):
        tables = compiled(
            compile_fea,
            'feature ss01 { featureNames { name "A"; }; sub a by a.alt; } ss01;\n'
            'feature ss02 { featureNames { name "B"; }; sub a by a.swsh; } ss02;',
            options=CompileOptions(first_name_id=300),
        )
        assert [n.name_id for n in tables.names] == [300, 301]

    def test_character_variant(self, compile_fea):
        tables = compiled(
            compile_fea,
            'feature cv01 { cvParameters { FeatUILabelNameID { name "Alpha"; }; '
            "Character 0x61; }; sub a by a.alt; } cv01;",
        )
        params = tables.gsub.features[0].params
        assert params.label_name_id == 256
        assert params.characters == (0x61,)

    def test_size_feature(self, compile_fea):
        tables = compiled(
            compile_fea,
            'feature size { parameters 10.0 3 80 139; sizemenuname "Regular"; } size;',
        )
        assert tables.tags == ["GPOS"]
        (feature,) = tables.gpos.features
        assert feature.tag == "size"
        assert feature.lookups == ()
        assert feature.params.design_size == 10.0
        assert feature.params.subfamily_name_id == 256
        assert feature.params.range_end == pytest.approx(13.9)


class TestScripts:

    def test_required_feature(self, compile_fea):
        gsub = compiled(
            compile_fea,
            "languagesystem latn dflt;\n"
            "feature ccmp { script latn; language TRK required; sub a by b; } ccmp;",
        ).gsub
        (script,) = gsub.scripts
        assert script.default is None
        (langsys,) = script.languages
        assert langsys.tag == "TRK "
        assert langsys.required_feature == 0
        assert langsys.feature_indices == ()

    def test_language_inherits_default_lookups(self, compile_fea):
        gsub = compiled(
            compile_fea,
            "languagesystem latn dflt;\n"
            "feature locl { script latn; sub a by a.alt; language TRK; sub b by b.sc; } locl;",
        ).gsub
        assert [(f.tag, f.lookups) for f in gsub.features] == [("locl", (0,)), ("locl", (0, 1))]
        (script,) = gsub.scripts
        assert script.default.feature_indices == (0,)
        assert script.languages[0].feature_indices == (1,)

    def test_exclude_dflt(self, compile_fea):
        gsub = compiled(
            compile_fea,
            "languagesystem latn dflt;\n"
            "feature locl { script latn; sub a by a.alt; language TRK exclude_dflt; sub b by b.sc; } locl;",
        ).gsub
        assert [f.lookups for f in gsub.features] == [(0,), (1,)]


class TestFeatureVariations:

    def test_conditions_are_normalized(self, compile_fea, weight_options):
        gsub = compiled(compile_fea, VARIATION_FEA, options=weight_options).gsub
        (variation,) = gsub.feature_variations
        (condition,) = variation.conditions
        assert condition.axis_index == 0
        assert condition.minimum == pytest.approx(0.4)
        assert condition.maximum == pytest.approx(1.0)
        assert variation.substitutions == ((0, (0, 1)),)
        assert gsub.features[0].lookups == (0,)


class TestSharing:

    SHARED = (
        "lookup A { sub a by b; } A;\nlookup B { sub a by b; } B;\n"
        "feature ss01 { lookup A; } ss01;\nfeature ss02 { lookup B; } ss02;"
    )

    def test_equal_subtables_are_shared(self, compile_fea):
        gsub = compiled(compile_fea, self.SHARED).gsub
        assert len(gsub.subtables) == 1
        assert [lookup.subtables for lookup in gsub.lookups] == [(0,), (0,)]

    def test_shared_lookups_keep_their_behavior(self, compile_fea):
        lowered = compiled(compile_fea, self.SHARED).to_fonttools()["GSUB"].table
        features = {r.FeatureTag: r.Feature.LookupListIndex for r in lowered.FeatureList.FeatureRecord}
        assert features == {"ss01": [0], "ss02": [1]}
        for index in (0, 1):
            (subtable,) = lowered.LookupList.Lookup[index].SubTable
            assert subtable.mapping == {"a": "b"}

    def test_flags_stay_on_their_lookups(self, compile_fea):
        gsub = compiled(
            compile_fea,
            "lookup A { sub a by b; } A;\n"
            "lookup B { lookupflag IgnoreMarks; sub a by b; } B;\n"
            "feature ss01 { lookup A; } ss01;\nfeature ss02 { lookup B; } ss02;",
        ).gsub
        assert [lookup.flag for lookup in gsub.lookups] == [0, 0x0008]
        assert [lookup.subtables for lookup in gsub.lookups] == [(0,), (0,)]

    def test_equal_fields_of_different_types_are_not_shared(self, compile_fea):
        tables = compiled(
            compile_fea,
            "lookup A { sub a from [b c]; } A;\nlookup B { sub a by b c; } B;\n"
            "feature ss01 { lookup A; } ss01;\nfeature ss02 { lookup B; } ss02;",
        )
        gsub = tables.gsub
        assert [lookup.lookup_type for lookup in gsub.lookups] == [3, 2]
        assert len(gsub.subtables) == 2
        lowered = tables.to_fonttools()["GSUB"].table.LookupList.Lookup
        assert lowered[0].SubTable[0].alternates == {"a": ["b", "c"]}
        assert lowered[1].SubTable[0].mapping == {"a": ["b", "c"]}

    def test_sharing_can_be_disabled(self, compile_fea):
        options = CompileOptions(deduplicate_subtables=False)
        gsub = compiled(compile_fea, self.SHARED, options=options).gsub
        assert len(gsub.subtables) == 2


class TestBackendErrors:

    def test_value_out_of_range_withholds_table(self, compile_fea):
        result = compile_fea("feature kern { pos a 40000; } kern;\nfeature smcp { sub a by a.sc; } smcp;")
        assert [d.code for d in result.diagnostics] == [E.VALUE_OUT_OF_RANGE]
        assert not result.success
        assert result.tables.gpos is None
        assert result.tables.gsub is not None

    def test_many_to_many_substitution(self, compile_fea):
        result = compile_fea("feature liga { sub f i by f l; } liga;")
        assert [d.code for d in result.diagnostics] == [E.UNSUPPORTED_RULE]
        assert result.diagnostics[0].hint
        assert result.tables.gsub is None


class TestDeterminism:

    @pytest.mark.parametrize("text", [SMCP_FEA, LIGA_FEA, KERN_FEA, MARK_FEA])
    def test_same_input_same_tables(self, compile_fea, text):
        assert compile_fea(text).tables == compile_fea(text).tables
