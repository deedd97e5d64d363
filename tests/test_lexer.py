# tests/test_lexer.py
"""
Tests for the feature-file lexer: text → tokens with trivia.
"""

import pytest

from feac.kinds import Kind
from feac.lexer import Lexer, iter_significant, tokenize


def kinds(text):
    return [tok.kind for tok in iter_significant(text)]


class TestLosslessness:

    @pytest.mark.parametrize("text", [
        "",
        "feature liga { sub f i by f_i; } liga;",
        "# comment only",
        "sub a by b; # trailing\n\n",
        '"unterminated string',
        "0x @ \x01\x02 \\sub",
        "pos a <anchor 10 -20> mark @TOP;",
    ])
    def test_tokens_concatenate_to_input(self, text):
        assert "".join(tok.text for tok in tokenize(text)) == text

    def test_last_token_is_eof(self):
        tokens = list(tokenize("sub a by b;"))
        assert tokens[-1].kind is Kind.EOF
        assert tokens[-1].text == ""

    def test_eof_repeats(self):
        lexer = Lexer("a")
        lexer.next_token()
        assert lexer.next_token().kind is Kind.EOF
        assert lexer.next_token().kind is Kind.EOF

    def test_offsets_are_contiguous(self):
        tokens = list(tokenize("sub  a\tby b ;"))
        for previous, current in zip(tokens, tokens[1:]):
            assert previous.end == current.start


class TestTrivia:

    def test_whitespace_and_comments_are_trivia(self):
        tokens = list(tokenize("  # note\nsub"))
        assert [t.kind for t in tokens] == [Kind.WHITESPACE, Kind.COMMENT, Kind.WHITESPACE, Kind.SUB_KW, Kind.EOF]
        assert tokens[1].is_trivia()

    def test_comment_stops_at_newline(self):
        tokens = list(tokenize("# a\nb"))
        assert tokens[0].text == "# a"

    def test_significant_skips_trivia(self):
        assert kinds("sub # c\n a") == [Kind.SUB_KW, Kind.IDENT, Kind.EOF]


class TestLiterals:

    def test_numbers(self):
        assert kinds("12 0x1F 1.5") == [Kind.NUMBER, Kind.HEX, Kind.FLOAT, Kind.EOF]

    def test_negative_number_is_hyphen_and_number(self):
        assert kinds("-50") == [Kind.HYPHEN, Kind.NUMBER, Kind.EOF]

    def test_number_followed_by_dot_only(self):
        assert kinds("1.") == [Kind.NUMBER, Kind.IDENT, Kind.EOF]

    def test_string(self):
        tok = next(iter_significant('"hello world"'))
        assert tok.kind is Kind.STRING
        assert tok.text == '"hello world"'

    def test_named_class(self):
        tok = next(iter_significant("@LC_1"))
        assert tok.kind is Kind.NAMED_GLYPH_CLASS
        assert tok.text == "@LC_1"

    def test_literal_values_are_not_interpreted(self):
        tok = next(iter_significant("0x10"))
        assert tok.text == "0x10"


class TestIdentifiers:

    def test_keywords(self):
        assert kinds("feature lookup markClass") == [
            Kind.FEATURE_KW, Kind.LOOKUP_KW, Kind.MARK_CLASS_KW, Kind.EOF,
        ]

    def test_escaped_keyword_is_identifier(self):
        assert kinds("\\sub") == [Kind.BACKSLASH, Kind.IDENT, Kind.EOF]

    def test_hyphenated_name_is_one_identifier(self):
        tokens = list(iter_significant("a-z"))
        assert tokens[0].kind is Kind.IDENT
        assert tokens[0].text == "a-z"

    def test_arrow_splits_identifiers(self):
        assert kinds("a->b") == [Kind.IDENT, Kind.ARROW, Kind.IDENT, Kind.EOF]

    def test_dotted_glyph_name(self):
        tok = next(iter_significant("a.sc"))
        assert tok.kind is Kind.IDENT
        assert tok.text == "a.sc"


class TestErrorTokens:

    def test_unterminated_string(self):
        assert kinds('"abc') == [Kind.STRING_UNTERMINATED, Kind.EOF]

    def test_empty_hex(self):
        assert kinds("0x") == [Kind.HEX_EMPTY, Kind.EOF]

    def test_lone_at_sign(self):
        assert kinds("@ a") == [Kind.ERROR, Kind.IDENT, Kind.EOF]

    def test_control_characters(self):
        tokens = list(iter_significant("\x01\x02a"))
        assert tokens[0].kind is Kind.ERROR
        assert tokens[0].text == "\x01\x02"
        assert tokens[0].kind.is_lex_error()

    def test_errors_do_not_stop_scanning(self):
        assert kinds("\x01 sub") == [Kind.ERROR, Kind.SUB_KW, Kind.EOF]
