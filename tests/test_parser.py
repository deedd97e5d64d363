# tests/test_parser.py
"""
Tests for the recovering parser and the lossless syntax tree.
"""

import random
import signal
from contextlib import contextmanager

import pytest
import sexpdata

from feac.cst import dump_sexp
from feac.errors import E, Severity
from feac.kinds import Kind
from feac.parser import parse
from tests.conftest import KERN_FEA, LIGA_FEA, MARK_FEA, SMCP_FEA, VARIATION_FEA


def top_kinds(text):
    tree, _ = parse(text)
    return [n.kind for n in tree.root.child_nodes()]


@contextmanager
def time_limit(seconds):
    """Fail the test instead of hanging when the parser stops advancing."""
    if not hasattr(signal, "setitimer"):
        yield
        return

    def _expired(signum, frame):
        raise TimeoutError(f"parse did not finish within {seconds}s")

    previous = signal.signal(signal.SIGALRM, _expired)
    signal.setitimer(signal.ITIMER_REAL, seconds)
    try:
        yield
    finally:
        signal.setitimer(signal.ITIMER_REAL, 0)
        signal.signal(signal.SIGALRM, previous)


def rule_kind(text):
    tree, diagnostics = parse(text)
    assert diagnostics == []
    return next(tree.root.child_nodes()).kind


class TestRoundTrip:

    @pytest.mark.parametrize("text", [
        SMCP_FEA, LIGA_FEA, KERN_FEA, MARK_FEA, VARIATION_FEA,
        "",
        "   # only trivia\n",
        "feature liga { sub f i by f_i; } lig",
        "feature { { { ;;; } @ \x01 \"open",
        "@A = [a b c-; lookup X { pos a <anchor 1> ; } Y;",
        "table GDEF { GlyphClassDef [a], , , ; } GDEF;\ntable head { FontRevision 1.1; } head;",
    ])
    def test_text_is_reproduced_exactly(self, text):
        tree, _ = parse(text)
        assert tree.text() == text

    def test_to_bytes_keeps_undecodable_bytes(self):
        raw = b"sub a by b; # \xff\xfe\n"
        tree, _ = parse(raw.decode("utf-8", "surrogateescape"))
        assert tree.to_bytes() == raw

    def test_root_is_last_node_and_children_come_first(self):
        tree, _ = parse(LIGA_FEA)
        assert tree.root.index == len(tree.nodes) - 1
        for index, data in enumerate(tree.nodes):
            for child in data.children:
                if child.is_node:
                    assert child.index < index

    def test_trailing_trivia_belongs_to_root(self):
        tree, _ = parse("sub a by b;\n\n# end\n")
        last = list(tree.root.children())[-1]
        assert last.kind is Kind.WHITESPACE

    @pytest.mark.parametrize("text", [
        "conditionset heavy { wght 700 900;\nfeature liga { sub a by b; } liga;",
        "conditionset heavy { lookup 1 2; } heavy;",
        'conditionset""{lookup',
        "table GDEF { feature liga; } GDEF;",
        "feature ss01 { featureNames { sub a by b; }; } ss01;",
    ])
    def test_malformed_blocks_terminate(self, text):
        with time_limit(2):
            tree, diagnostics = parse(text)
        assert tree.text() == text
        assert diagnostics

    @pytest.mark.parametrize("seed", range(4))
    def test_random_fragments(self, seed):
        rng = random.Random(seed)
        words = " ".join([SMCP_FEA, LIGA_FEA, KERN_FEA, MARK_FEA, VARIATION_FEA]).split()
        words += list("{}[]()<>;,'@\\-\"#=") + ["\n", "0x", "-12", "1.5"]
        for _ in range(100):
            text = " ".join(rng.choice(words) for _ in range(rng.randint(1, 40)))
            with time_limit(2):
                tree, _ = parse(text)
            assert tree.text() == text

    @pytest.mark.parametrize("source", [SMCP_FEA, LIGA_FEA, KERN_FEA, MARK_FEA, VARIATION_FEA])
    def test_mutated_fixtures(self, source):
        rng = random.Random(source)
        for _ in range(100):
            text = source
            for _ in range(rng.randint(1, 4)):
                start = rng.randrange(len(text))
                end = min(len(text), start + rng.randint(0, 12))
                if rng.random() < 0.5:
                    text = text[:start] + text[end:]
                else:
                    text = text[:start] + text[start:end] * 2 + text[end:]
            with time_limit(2):
                tree, _ = parse(text)
            assert tree.text() == text


class TestStatements:

    def test_top_level_kinds(self):
        assert top_kinds(SMCP_FEA) == [
            Kind.LANGUAGE_SYSTEM, Kind.GLYPH_CLASS_DEF, Kind.GLYPH_CLASS_DEF, Kind.FEATURE_BLOCK,
        ]

    def test_feature_reference_inside_aalt(self):
        tree, diagnostics = parse("feature aalt { feature salt; } aalt;")
        assert diagnostics == []
        block = next(tree.root.child_nodes())
        assert block.find_node(Kind.FEATURE_REF) is not None

    def test_lookup_block_and_reference(self):
        assert top_kinds("lookup L1 { sub a by b; } L1; feature liga { lookup L1; } liga;") == [
            Kind.LOOKUP_BLOCK, Kind.FEATURE_BLOCK,
        ]

    def test_unknown_table_is_kept_verbatim_with_warning(self):
        tree, diagnostics = parse("table head { FontRevision 1.1; } head;")
        assert [d.code for d in diagnostics] == [E.UNSUPPORTED_TABLE]
        assert diagnostics[0].severity is Severity.WARNING
        table = next(tree.root.child_nodes())
        assert table.find_node(Kind.TABLE_ENTRY) is not None

    def test_gdef_table(self):
        tree, diagnostics = parse(
            "table GDEF { GlyphClassDef [a b], [f_i], [acutecomb], ; "
            "LigatureCaretByPos f_i 300; Attach a 1 2; } GDEF;"
        )
        assert diagnostics == []
        kinds = [n.kind for n in next(tree.root.child_nodes()).child_nodes()]
        assert kinds == [Kind.GDEF_CLASS_DEF, Kind.GDEF_LIG_CARET_POS, Kind.GDEF_ATTACH]

    def test_conditionset_and_variation(self):
        assert top_kinds(VARIATION_FEA) == [
            Kind.LANGUAGE_SYSTEM, Kind.CONDITION_SET, Kind.FEATURE_BLOCK, Kind.VARIATION_BLOCK,
        ]

    def test_anonymous_block_body_is_opaque(self):
        tree, diagnostics = parse("anon sbit { 72 % {bad} ; } sbit;\nsub a by b;")
        assert diagnostics == []
        assert [n.kind for n in tree.root.child_nodes()][-1] is Kind.GSUB_TYPE1

    def test_include(self):
        tree, diagnostics = parse("include(../common/classes.fea);")
        assert diagnostics == []
        include = next(tree.root.child_nodes())
        assert include.kind is Kind.INCLUDE
        paths = [t.text for t in include.child_tokens() if t.kind is Kind.PATH]
        assert "".join(paths) == "../common/classes.fea"


class TestRuleClassification:

    @pytest.mark.parametrize("text, kind", [
        ("sub a by b;", Kind.GSUB_TYPE1),
        ("sub [a b] by [c d];", Kind.GSUB_TYPE1),
        ("sub f_i by f i;", Kind.GSUB_TYPE2),
        ("sub a from [a.alt a.swsh];", Kind.GSUB_TYPE3),
        ("sub f i by f_i;", Kind.GSUB_TYPE4),
        ("sub f i -> f_i;", Kind.GSUB_TYPE4),
        ("sub a' b by c;", Kind.GSUB_TYPE6),
        ("rsub a' b by c;", Kind.GSUB_TYPE8),
        ("ignore sub a b';", Kind.GSUB_IGNORE),
        ("pos a 10;", Kind.GPOS_TYPE1),
        ("pos a <10 0 20 0>;", Kind.GPOS_TYPE1),
        ("pos a b -50;", Kind.GPOS_TYPE2),
        ("enum pos @A b 10;", Kind.GPOS_TYPE2),
        ("pos cursive a <anchor 0 0> <anchor 100 0>;", Kind.GPOS_TYPE3),
        ("pos base a <anchor 250 450> mark @TOP;", Kind.GPOS_TYPE4),
        ("pos ligature f_i <anchor 100 500> mark @TOP ligComponent <anchor NULL>;", Kind.GPOS_TYPE5),
        ("pos mark acutecomb <anchor 250 700> mark @TOP;", Kind.GPOS_TYPE6),
        ("pos a' 10 b;", Kind.GPOS_TYPE8),
        ("ignore pos a' b;", Kind.GPOS_IGNORE),
    ])
    def test_kind(self, text, kind):
        assert rule_kind(text) is kind

    def test_ligature_components(self):
        tree, _ = parse("pos ligature f_i <anchor 100 500> mark @TOP ligComponent <anchor NULL>;")
        rule = next(tree.root.child_nodes())
        assert len(list(n for n in rule.child_nodes() if n.kind is Kind.LIG_COMPONENT)) == 2


class TestRecovery:

    def test_garbage_statement_is_skipped(self):
        tree, diagnostics = parse("foo bar; sub a by b;")
        assert [d.code for d in diagnostics] == [E.UNEXPECTED_TOKEN]
        kinds = [n.kind for n in tree.root.child_nodes()]
        assert kinds == [Kind.ERROR_NODE, Kind.GSUB_TYPE1]

    def test_missing_semicolon(self):
        tree, diagnostics = parse("sub a by b\nsub c by d;")
        assert [d.code for d in diagnostics] == [E.MISSING_TOKEN]
        assert [n.kind for n in tree.root.child_nodes()] == [Kind.GSUB_TYPE1, Kind.GSUB_TYPE1]

    def test_mismatched_closing_tag(self):
        _, diagnostics = parse("feature liga { sub f i by f_i; } lig;")
        assert [d.code for d in diagnostics] == [E.MISMATCHED_TAG]
        assert diagnostics[0].labels[0].message == "opened here"

    def test_unclosed_block(self):
        _, diagnostics = parse("feature liga { sub f i by f_i;")
        assert [d.code for d in diagnostics] == [E.UNBALANCED_DELIMITER]

    def test_unclosed_class(self):
        _, diagnostics = parse("@A = [a b;")
        assert E.UNBALANCED_DELIMITER in [d.code for d in diagnostics]

    def test_lexical_error_reported_once(self):
        _, diagnostics = parse('"abc')
        assert [d.code for d in diagnostics] == [E.UNTERMINATED_STRING]

    def test_error_flag_marks_enclosing_node(self):
        tree, _ = parse("languagesystem DFLT;")
        flagged = list(tree.error_nodes())
        assert [n.kind for n in flagged] == [Kind.LANGUAGE_SYSTEM]

    def test_long_tag(self):
        _, diagnostics = parse("languagesystem latin dflt;")
        assert [d.code for d in diagnostics] == [E.INVALID_TAG]

    def test_parse_is_repeatable(self):
        text = "feature { x ; } @ ; sub a by"
        first = parse(text)
        second = parse(text)
        assert first[0].debug_tree() == second[0].debug_tree()
        assert first[1] == second[1]


class TestSexpDump:

    def test_dump(self):
        tree, _ = parse("languagesystem DFLT dflt;")
        text = dump_sexp(tree)
        assert text.startswith("(SOURCE_FILE (LANGUAGE_SYSTEM")
        parsed = sexpdata.loads(text)
        assert parsed[0] == sexpdata.Symbol("SOURCE_FILE")

    def test_trivia_only_on_request(self):
        tree, _ = parse("sub a by b; # x")
        assert "COMMENT" not in dump_sexp(tree)
        assert "COMMENT" in dump_sexp(tree, include_trivia=True)
