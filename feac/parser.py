"""feac/parser.py – recursive-descent parser producing a lossless CST.

Design principles
-----------------
* **One production per grammar rule.** Statement productions are plain
  functions taking the :class:`Parser`, registered in a keyword-keyed
  dispatch table by the ``@_register`` decorator.
* **Never abort.** On an unexpected token the parser reports one
  diagnostic, skips to the next statement boundary and wraps the skipped
  tokens in an ``ERROR_NODE``.  Errors inside a node also set the node's
  error flag.
* **Lossless.** Every token, trivia included, is pushed into the tree in
  source order, so ``tree.text()`` always equals the input.
* **Late classification.** Rule nodes are opened before their kind is
  known; the kind (``GSUB_TYPE4``, ``GPOS_TYPE2``, ...) is decided from the
  rule's shape when the node is finished.

Public API
----------
``parse(text, file_id=0, path="<input>") -> (SyntaxTree, diagnostics)``
"""

from __future__ import annotations

from collections import deque
from typing import Callable, Deque, Dict, List, Optional, Sequence, Tuple

from feac.cst import SyntaxTree, TreeBuilder
from feac.errors import (
    CompilerBug,
    Diagnostic,
    DiagnosticCollector,
    E,
    ErrorCode,
    Label,
    Span,
)
from feac.kinds import Kind, Token, TokenSet
from feac.lexer import Lexer

__all__ = ["Parser", "parse"]


# ═══════════════════════════════════════════════════════════════════════
#  Token sets
# ═══════════════════════════════════════════════════════════════════════

TOP_LEVEL_START = TokenSet([
    Kind.LANGUAGESYSTEM_KW, Kind.INCLUDE_KW, Kind.MARK_CLASS_KW,
    Kind.ANCHOR_DEF_KW, Kind.VALUE_RECORD_DEF_KW, Kind.LOOKUP_KW,
    Kind.FEATURE_KW, Kind.TABLE_KW, Kind.CONDITIONSET_KW, Kind.VARIATION_KW,
    Kind.ANON_KW, Kind.ANONYMOUS_KW, Kind.NAMED_GLYPH_CLASS,
])

STATEMENT_START = TOP_LEVEL_START | TokenSet([
    Kind.SUB_KW, Kind.SUBSTITUTE_KW, Kind.RSUB_KW, Kind.REVERSESUB_KW,
    Kind.POS_KW, Kind.POSITION_KW, Kind.ENUM_KW, Kind.ENUMERATE_KW,
    Kind.IGNORE_KW, Kind.SCRIPT_KW, Kind.LANGUAGE_KW, Kind.LOOKUPFLAG_KW,
    Kind.SUBTABLE_KW, Kind.FEATURE_NAMES_KW, Kind.CV_PARAMETERS_KW,
    Kind.PARAMETERS_KW, Kind.SIZEMENUNAME_KW, Kind.GLYPH_CLASS_DEF_KW,
    Kind.ATTACH_KW, Kind.LIG_CARET_BY_POS_KW, Kind.LIG_CARET_BY_INDEX_KW,
])

# where a broken statement stops being skipped
STATEMENT_RECOVERY = STATEMENT_START.add(Kind.SEMI, Kind.RBRACE)

GLYPH_START = TokenSet([
    Kind.IDENT, Kind.BACKSLASH, Kind.NAMED_GLYPH_CLASS, Kind.LSQUARE,
])

NUMBER_START = TokenSet([Kind.NUMBER, Kind.FLOAT, Kind.HYPHEN])

LOOKUP_FLAG_WORDS = TokenSet([
    Kind.RIGHT_TO_LEFT_KW, Kind.IGNORE_BASE_GLYPHS_KW,
    Kind.IGNORE_LIGATURES_KW, Kind.IGNORE_MARKS_KW,
])


# ═══════════════════════════════════════════════════════════════════════
#  Parser state
# ═══════════════════════════════════════════════════════════════════════

class Parser:
    """Token cursor, tree builder and diagnostic sink for one file."""

    def __init__(self, text: str, *, file_id: int = 0, path: str = "<input>") -> None:
        self.text = text
        self.file_id = file_id
        self.path = path
        self.diagnostics = DiagnosticCollector()
        self._lexer = Lexer(text)
        self._raw: Deque[Token] = deque()
        self._builder = TreeBuilder()
        self._last_error_at = -1

    # ── token access ────────────────────────────────────────────────────

    def _fetch(self) -> Token:
        token = self._lexer.next_token()
        if token.kind.is_lex_error():
            self._report_lex_error(token)
        self._raw.append(token)
        return token

    def nth(self, n: int) -> Token:
        """The *n*-th significant token ahead (0 is the current one)."""
        seen = -1
        i = 0
        while True:
            if i == len(self._raw):
                if self._raw and self._raw[-1].kind is Kind.EOF:
                    return self._raw[-1]
                self._fetch()
            token = self._raw[i]
            if not token.is_trivia():
                seen += 1
                if seen == n or token.kind is Kind.EOF:
                    return token
            i += 1

    @property
    def current(self) -> Kind:
        return self.nth(0).kind

    def nth_kind(self, n: int) -> Kind:
        return self.nth(n).kind

    def at(self, kind: Kind) -> bool:
        return self.nth(0).kind is kind

    def at_any(self, kinds: TokenSet) -> bool:
        return self.nth(0).kind in kinds

    def at_eof(self) -> bool:
        return self.at(Kind.EOF)

    @property
    def position(self) -> int:
        """Number of tokens pushed so far; used as a progress marker."""
        return len(self._builder.tokens)

    def current_span(self) -> Span:
        token = self.nth(0)
        return Span(self.file_id, token.start, token.end)

    def last_span(self) -> Span:
        """Span of the most recently consumed token."""
        token = self._builder.tokens[-1]
        return Span(self.file_id, token.start, token.end)

    def describe_current(self) -> str:
        token = self.nth(0)
        if token.kind is Kind.EOF:
            return "end of file"
        return f"'{token.text}'"

    # ── tree building ───────────────────────────────────────────────────

    def _flush_trivia(self) -> None:
        while True:
            if not self._raw:
                self._fetch()
            token = self._raw[0]
            if not token.is_trivia():
                return
            self._builder.token(self._raw.popleft())

    def start_node(self) -> None:
        self._flush_trivia()
        self._builder.start_node()

    def finish_node(self, kind: Kind) -> None:
        self._builder.finish_node(kind)

    def bump(self, remap: Optional[Kind] = None) -> Token:
        """Push the current significant token (and the trivia before it)."""
        self._flush_trivia()
        token = self._raw[0]
        if token.kind is Kind.EOF:
            raise CompilerBug("attempted to consume end of file")
        self._raw.popleft()
        if remap is not None:
            token = token.with_kind(remap)
        self._builder.token(token)
        return token

    def eat(self, kind: Kind, remap: Optional[Kind] = None) -> bool:
        if self.at(kind):
            self.bump(remap)
            return True
        return False

    def eat_any(self, kinds: TokenSet, remap: Optional[Kind] = None) -> bool:
        if self.at_any(kinds):
            self.bump(remap)
            return True
        return False

    def expect(self, kind: Kind, what: Optional[str] = None) -> bool:
        if self.eat(kind):
            return True
        self.error(
            f"expected {what or kind}, found {self.describe_current()}",
            E.MISSING_TOKEN,
        )
        return False

    def finish(self) -> Tuple[SyntaxTree, List[Diagnostic]]:
        # remaining trivia belongs to the root
        self._flush_trivia()
        if self._raw[0].kind is not Kind.EOF:
            raise CompilerBug("tokens left unconsumed at end of parse")
        tree = self._builder.finish(file_id=self.file_id, path=self.path)
        return tree, list(self.diagnostics)

    # ── diagnostics and recovery ────────────────────────────────────────

    def _report_lex_error(self, token: Token) -> None:
        span = Span(self.file_id, token.start, token.end)
        if token.kind is Kind.STRING_UNTERMINATED:
            self.diagnostics.report(E.UNTERMINATED_STRING, "unterminated string", span)
        elif token.kind is Kind.HEX_EMPTY:
            self.diagnostics.report(E.EMPTY_HEX_NUMBER, "hex number without digits", span)
        else:
            self.diagnostics.report(
                E.INVALID_CHARACTER, f"invalid character(s) {token.text!r}", span
            )

    def error(
        self,
        message: str,
        code: ErrorCode = E.UNEXPECTED_TOKEN,
        *,
        span: Optional[Span] = None,
        labels: Sequence[Label] = (),
    ) -> None:
        """Report a syntax error and flag the innermost open node.

        At most one diagnostic is recorded per token position, and none for
        a lexical error token (the lexer already reported it).
        """
        self._builder.mark_error()
        if span is None:
            if self.nth(0).kind.is_lex_error():
                return
            if self.position == self._last_error_at:
                return
            span = self.current_span()
        self._last_error_at = self.position
        self.diagnostics.report(code, message, span, labels=labels)

    def _at_recovery(self, recovery: TokenSet) -> bool:
        kind = self.current
        if kind is Kind.NAMED_GLYPH_CLASS:
            return kind in recovery and self.nth_kind(1) is Kind.EQ
        return kind in recovery

    def eat_until(self, recovery: TokenSet) -> None:
        """Wrap tokens up to the next recovery point in an error node."""
        if self.at_eof() or self._at_recovery(recovery):
            return
        self.start_node()
        while not self.at_eof() and not self._at_recovery(recovery):
            self.bump()
        self.finish_node(Kind.ERROR_NODE)

    def err_and_bump(self, message: str, code: ErrorCode = E.UNEXPECTED_TOKEN) -> None:
        """Report, then consume at least one token into an error node."""
        self.error(message, code)
        self.start_node()
        if not self.at_eof():
            self.bump()
        while not self.at_eof() and not self._at_recovery(STATEMENT_RECOVERY):
            self.bump()
        self.eat(Kind.SEMI)
        self.finish_node(Kind.ERROR_NODE)

    def expect_semi(self) -> None:
        """Close a statement, skipping garbage before the ';' if needed."""
        if self.eat(Kind.SEMI):
            return
        self.error(f"expected ';', found {self.describe_current()}", E.MISSING_TOKEN)
        self.eat_until(STATEMENT_RECOVERY)
        self.eat(Kind.SEMI)

    # ── contextual tokens ───────────────────────────────────────────────

    def expect_tag(self) -> Optional[Token]:
        """Consume an OpenType tag (identifier or short keyword) as TAG."""
        token = self.nth(0)
        if token.kind is Kind.IDENT or (token.kind.is_keyword() and len(token.text) <= 4):
            if len(token.text) > 4:
                self.error(
                    f"tag '{token.text}' is longer than four characters",
                    E.INVALID_TAG,
                    span=self.current_span(),
                )
            return self.bump(Kind.TAG)
        self.error(f"expected tag, found {self.describe_current()}", E.MISSING_TOKEN)
        return None

    def expect_label(self) -> Optional[Token]:
        if self.at(Kind.IDENT):
            return self.bump(Kind.LABEL)
        self.error(f"expected name, found {self.describe_current()}", E.MISSING_TOKEN)
        return None


# ═══════════════════════════════════════════════════════════════════════
#  Dispatch registry
# ═══════════════════════════════════════════════════════════════════════

# Maps a statement's leading keyword to its production.
_STATEMENT_DISPATCH: Dict[Kind, Callable[[Parser], None]] = {}


def _register(*kinds: Kind):
    """Decorator: register a statement production for *kinds*."""
    def deco(fn):
        for kind in kinds:
            _STATEMENT_DISPATCH[kind] = fn
        return fn
    return deco


def statement(p: Parser) -> None:
    """Parse one statement of any kind; always makes progress."""
    kind = p.current
    before = p.position
    if kind is Kind.NAMED_GLYPH_CLASS and p.nth_kind(1) is Kind.EQ:
        _glyph_class_def(p)
    elif kind is Kind.SEMI:
        # empty statement
        p.bump()
    elif kind in _STATEMENT_DISPATCH:
        _STATEMENT_DISPATCH[kind](p)
    else:
        p.err_and_bump(f"expected statement, found {p.describe_current()}")
    if p.position == before and not p.at_eof():
        p.err_and_bump(f"unexpected {p.describe_current()}")


def parse(
    text: str,
    *,
    file_id: int = 0,
    path: str = "<input>",
) -> Tuple[SyntaxTree, List[Diagnostic]]:
    """Parse *text* into a :class:`SyntaxTree` plus syntax diagnostics."""
    p = Parser(text, file_id=file_id, path=path)
    while not p.at_eof():
        statement(p)
    return p.finish()


# ═══════════════════════════════════════════════════════════════════════
#  Blocks
# ═══════════════════════════════════════════════════════════════════════

def _block_body(
    p: Parser,
    open_label: Optional[Token],
    closer: str,
    *,
    inner: Callable[[Parser], None] = statement,
) -> None:
    """``{ statements } closing-name ;`` for feature/lookup/table blocks.

    *closer* is ``"tag"`` or ``"label"`` and decides how the closing name
    is read.
    """
    if not p.at(Kind.LBRACE):
        p.error(f"expected '{{', found {p.describe_current()}", E.MISSING_TOKEN)
        p.eat_until(STATEMENT_RECOVERY.add(Kind.LBRACE))
        if not p.at(Kind.LBRACE):
            return
    lbrace = p.current_span()
    p.bump()
    while not p.at(Kind.RBRACE) and not p.at_eof():
        before = p.position
        inner(p)
        if p.position == before:
            p.err_and_bump(f"unexpected {p.describe_current()}")
    if p.at_eof():
        p.error(
            "unbalanced delimiter: '{' is never closed",
            E.UNBALANCED_DELIMITER,
            span=p.current_span(),
            labels=[Label(lbrace, "block opened here")],
        )
        return
    p.bump()
    _closing_name(p, open_label, closer)
    p.expect_semi()


def _closing_name(p: Parser, open_label: Optional[Token], closer: str) -> None:
    close_span = p.current_span()
    if closer == "tag":
        token = p.expect_tag()
    else:
        token = p.expect_label()
    if token is None or open_label is None:
        return
    if token.text != open_label.text:
        p.error(
            f"closing name '{token.text}' does not match '{open_label.text}'",
            E.MISMATCHED_TAG,
            span=close_span,
            labels=[Label(Span(p.file_id, open_label.start, open_label.end), "opened here")],
        )


@_register(Kind.FEATURE_KW)
def _feature(p: Parser) -> None:
    """``feature tag [useExtension] { ... } tag;`` or ``feature tag;`` (aalt)."""
    p.start_node()
    p.bump()
    tag = p.expect_tag()
    if p.at(Kind.SEMI):
        p.bump()
        p.finish_node(Kind.FEATURE_REF)
        return
    p.eat(Kind.USE_EXTENSION_KW)
    _block_body(p, tag, "tag")
    p.finish_node(Kind.FEATURE_BLOCK)


@_register(Kind.LOOKUP_KW)
def _lookup(p: Parser) -> None:
    """``lookup NAME [useExtension] { ... } NAME;`` or ``lookup NAME;``."""
    p.start_node()
    p.bump()
    label = p.expect_label()
    if p.at(Kind.SEMI):
        p.bump()
        p.finish_node(Kind.LOOKUP_REF)
        return
    p.eat(Kind.USE_EXTENSION_KW)
    _block_body(p, label, "label")
    p.finish_node(Kind.LOOKUP_BLOCK)


@_register(Kind.TABLE_KW)
def _table(p: Parser) -> None:
    p.start_node()
    p.bump()
    tag_span = p.current_span()
    tag = p.expect_tag()
    if tag is not None and tag.text == "GDEF":
        _block_body(p, tag, "tag", inner=_gdef_statement)
    else:
        if tag is not None:
            p.diagnostics.report(
                E.UNSUPPORTED_TABLE,
                f"table '{tag.text}' is not compiled and will be ignored",
                tag_span,
            )
        _block_body(p, tag, "tag", inner=_table_entry)
    p.finish_node(Kind.TABLE_BLOCK)


@_register(Kind.ANON_KW, Kind.ANONYMOUS_KW)
def _anon(p: Parser) -> None:
    """``anon tag { raw text } tag;`` – the body is kept verbatim."""
    p.start_node()
    p.bump()
    tag = p.expect_tag()
    if not p.expect(Kind.LBRACE):
        p.eat_until(STATEMENT_RECOVERY)
        p.finish_node(Kind.ANON_BLOCK)
        return
    lbrace = p.last_span()
    while not p.at_eof():
        if (
            p.at(Kind.RBRACE)
            and tag is not None
            and p.nth(1).text == tag.text
            and p.nth_kind(2) is Kind.SEMI
        ):
            break
        p.bump()
    if p.at_eof():
        p.error(
            "unbalanced delimiter: anonymous block is never closed",
            E.UNBALANCED_DELIMITER,
            span=p.current_span(),
            labels=[Label(lbrace, "block opened here")],
        )
    else:
        p.bump()
        p.expect_tag()
        p.expect_semi()
    p.finish_node(Kind.ANON_BLOCK)


@_register(Kind.CONDITIONSET_KW)
def _conditionset(p: Parser) -> None:
    """``conditionset NAME { axis min max; ... } NAME;``"""
    p.start_node()
    p.bump()
    label = p.expect_label()
    _block_body(p, label, "label", inner=_condition)
    p.finish_node(Kind.CONDITION_SET)


def _condition(p: Parser) -> None:
    if p.current in STATEMENT_START:
        p.error(f"expected axis tag, found {p.describe_current()}", E.MISSING_TOKEN)
        return
    if not p.at(Kind.IDENT) and not p.current.is_keyword():
        p.err_and_bump(f"expected axis tag, found {p.describe_current()}")
        return
    p.start_node()
    p.expect_tag()
    _signed_number(p)
    _signed_number(p)
    p.expect_semi()
    p.finish_node(Kind.CONDITION)


@_register(Kind.VARIATION_KW)
def _variation(p: Parser) -> None:
    """``variation tag CONDITIONSET { ... } tag;``"""
    p.start_node()
    p.bump()
    tag = p.expect_tag()
    p.expect_label()
    p.eat(Kind.USE_EXTENSION_KW)
    _block_body(p, tag, "tag")
    p.finish_node(Kind.VARIATION_BLOCK)


def _table_entry(p: Parser) -> None:
    """A statement of a table this compiler does not build; kept verbatim."""
    p.start_node()
    while not p.at_any(TokenSet([Kind.SEMI, Kind.RBRACE, Kind.EOF])):
        p.bump()
    p.eat(Kind.SEMI)
    p.finish_node(Kind.TABLE_ENTRY)


# ═══════════════════════════════════════════════════════════════════════
#  Top-level definitions
# ═══════════════════════════════════════════════════════════════════════

@_register(Kind.LANGUAGESYSTEM_KW)
def _languagesystem(p: Parser) -> None:
    p.start_node()
    p.bump()
    p.expect_tag()
    p.expect_tag()
    p.expect_semi()
    p.finish_node(Kind.LANGUAGE_SYSTEM)


@_register(Kind.INCLUDE_KW)
def _include(p: Parser) -> None:
    """``include(path);`` – the path is every token between the parens."""
    p.start_node()
    p.bump()
    if p.expect(Kind.LPAREN):
        if p.at(Kind.RPAREN):
            p.error("include path is empty", E.INVALID_STATEMENT)
        while not p.at_any(TokenSet([Kind.RPAREN, Kind.SEMI, Kind.EOF])):
            p.bump(Kind.PATH)
        p.expect(Kind.RPAREN)
    p.eat(Kind.SEMI)
    p.finish_node(Kind.INCLUDE)


def _glyph_class_def(p: Parser) -> None:
    """``@NAME = [glyphs] | @OTHER ;``"""
    p.start_node()
    p.bump()
    p.bump()  # '='
    if p.at(Kind.LSQUARE):
        _glyph_class_literal(p)
    elif p.at(Kind.NAMED_GLYPH_CLASS):
        p.bump()
    else:
        p.error(f"expected glyph class, found {p.describe_current()}", E.MISSING_TOKEN)
    p.expect_semi()
    p.finish_node(Kind.GLYPH_CLASS_DEF)


@_register(Kind.MARK_CLASS_KW)
def _mark_class(p: Parser) -> None:
    """``markClass glyphs <anchor ...> @NAME;``"""
    p.start_node()
    p.bump()
    if not _glyph_or_class(p):
        p.error(f"expected glyph or class, found {p.describe_current()}", E.MISSING_TOKEN)
    _anchor(p)
    p.expect(Kind.NAMED_GLYPH_CLASS, "mark class name")
    p.expect_semi()
    p.finish_node(Kind.MARK_CLASS_DEF)


@_register(Kind.ANCHOR_DEF_KW)
def _anchor_def(p: Parser) -> None:
    """``anchorDef x y [contourpoint n] NAME;``"""
    p.start_node()
    p.bump()
    _signed_number(p)
    _signed_number(p)
    if p.eat(Kind.CONTOURPOINT_KW):
        _signed_number(p)
    p.expect_label()
    p.expect_semi()
    p.finish_node(Kind.ANCHOR_DEF)


@_register(Kind.VALUE_RECORD_DEF_KW)
def _value_record_def(p: Parser) -> None:
    """``valueRecordDef <record> NAME;``"""
    p.start_node()
    p.bump()
    if not _value_record(p):
        p.error(f"expected value record, found {p.describe_current()}", E.MISSING_TOKEN)
    p.expect_label()
    p.expect_semi()
    p.finish_node(Kind.VALUE_RECORD_DEF)


# ═══════════════════════════════════════════════════════════════════════
#  Block statements
# ═══════════════════════════════════════════════════════════════════════

@_register(Kind.SCRIPT_KW)
def _script(p: Parser) -> None:
    p.start_node()
    p.bump()
    p.expect_tag()
    p.expect_semi()
    p.finish_node(Kind.SCRIPT)


@_register(Kind.LANGUAGE_KW)
def _language(p: Parser) -> None:
    """``language TAG [exclude_dflt|include_dflt] [required];``"""
    p.start_node()
    p.bump()
    p.expect_tag()
    p.eat_any(TokenSet([Kind.EXCLUDE_DFLT_KW, Kind.INCLUDE_DFLT_KW]))
    p.eat(Kind.REQUIRED_KW)
    p.expect_semi()
    p.finish_node(Kind.LANGUAGE)


@_register(Kind.LOOKUPFLAG_KW)
def _lookupflag(p: Parser) -> None:
    """``lookupflag NUMBER;`` or a list of named flags."""
    p.start_node()
    p.bump()
    if p.at(Kind.NUMBER):
        p.bump()
    else:
        seen = False
        while True:
            if p.eat_any(LOOKUP_FLAG_WORDS):
                seen = True
            elif p.at(Kind.MARK_ATTACHMENT_TYPE_KW) or p.at(Kind.USE_MARK_FILTERING_SET_KW):
                p.bump()
                if not _class_ref(p):
                    p.error(
                        f"expected glyph class, found {p.describe_current()}",
                        E.MISSING_TOKEN,
                    )
                seen = True
            else:
                break
        if not seen:
            p.error(
                f"expected lookup flag, found {p.describe_current()}",
                E.MISSING_TOKEN,
            )
    p.expect_semi()
    p.finish_node(Kind.LOOKUP_FLAG)


@_register(Kind.SUBTABLE_KW)
def _subtable(p: Parser) -> None:
    p.start_node()
    p.bump()
    p.expect_semi()
    p.finish_node(Kind.SUBTABLE)


@_register(Kind.PARAMETERS_KW)
def _parameters(p: Parser) -> None:
    """``parameters design subfamily [range_start range_end];`` (size)."""
    p.start_node()
    p.bump()
    count = 0
    while p.at_any(NUMBER_START):
        _signed_number(p)
        count += 1
    if count not in (2, 4):
        p.error("'parameters' takes two or four numbers", E.INVALID_STATEMENT)
    p.expect_semi()
    p.finish_node(Kind.SIZE_PARAMETERS)


@_register(Kind.SIZEMENUNAME_KW)
def _sizemenuname(p: Parser) -> None:
    p.start_node()
    p.bump()
    _name_ids_and_string(p)
    p.expect_semi()
    p.finish_node(Kind.SIZE_MENU_NAME)


@_register(Kind.FEATURE_NAMES_KW)
def _feature_names(p: Parser) -> None:
    """``featureNames { name ...; ... };``"""
    p.start_node()
    p.bump()
    _name_block(p)
    p.finish_node(Kind.FEATURE_NAMES)


def _name_block(p: Parser) -> None:
    if not p.expect(Kind.LBRACE):
        p.eat_until(STATEMENT_RECOVERY)
        p.eat(Kind.SEMI)
        return
    lbrace = p.last_span()
    while not p.at(Kind.RBRACE) and not p.at_eof():
        if p.at(Kind.NAME_KW):
            p.start_node()
            p.bump()
            _name_ids_and_string(p)
            p.expect_semi()
            p.finish_node(Kind.NAME_SPEC)
        else:
            p.err_and_bump(f"expected 'name', found {p.describe_current()}")
    if p.at_eof():
        p.error(
            "unbalanced delimiter: '{' is never closed",
            E.UNBALANCED_DELIMITER,
            span=p.current_span(),
            labels=[Label(lbrace, "block opened here")],
        )
        return
    p.bump()
    p.expect_semi()


def _name_ids_and_string(p: Parser) -> None:
    """``[platform [encoding language]] "string"``"""
    while p.at_any(TokenSet([Kind.NUMBER, Kind.HEX])):
        p.bump()
    if not p.eat(Kind.STRING) and not p.eat(Kind.STRING_UNTERMINATED):
        p.error(f"expected string, found {p.describe_current()}", E.MISSING_TOKEN)


_CV_NAME_BLOCKS = TokenSet([
    Kind.FEAT_UI_LABEL_NAME_ID_KW, Kind.FEAT_UI_TOOLTIP_TEXT_NAME_ID_KW,
    Kind.SAMPLE_TEXT_NAME_ID_KW, Kind.PARAM_UI_LABEL_NAME_ID_KW,
])


@_register(Kind.CV_PARAMETERS_KW)
def _cv_parameters(p: Parser) -> None:
    """``cvParameters { FeatUILabelNameID { name ...; }; Character 0x61; };``"""
    p.start_node()
    p.bump()
    if p.expect(Kind.LBRACE):
        lbrace = p.last_span()
        while not p.at(Kind.RBRACE) and not p.at_eof():
            if p.at_any(_CV_NAME_BLOCKS):
                p.start_node()
                p.bump()
                _name_block(p)
                p.finish_node(Kind.CV_NAME_BLOCK)
            elif p.at(Kind.CHARACTER_KW):
                p.start_node()
                p.bump()
                if not p.eat(Kind.HEX) and not p.eat(Kind.NUMBER):
                    p.error(f"expected number, found {p.describe_current()}", E.MISSING_TOKEN)
                p.expect_semi()
                p.finish_node(Kind.CV_CHARACTER)
            else:
                p.err_and_bump(f"unexpected {p.describe_current()} in cvParameters")
        if p.at_eof():
            p.error(
                "unbalanced delimiter: '{' is never closed",
                E.UNBALANCED_DELIMITER,
                span=p.current_span(),
                labels=[Label(lbrace, "block opened here")],
            )
        else:
            p.bump()
            p.expect_semi()
    p.finish_node(Kind.CV_PARAMETERS)


# ═══════════════════════════════════════════════════════════════════════
#  GDEF table statements
# ═══════════════════════════════════════════════════════════════════════

def _gdef_statement(p: Parser) -> None:
    kind = p.current
    if kind is Kind.GLYPH_CLASS_DEF_KW:
        p.start_node()
        p.bump()
        # four comma-separated, possibly empty, class slots
        for index in range(4):
            if p.at(Kind.LSQUARE):
                _glyph_class_literal(p)
            elif p.at(Kind.NAMED_GLYPH_CLASS):
                p.bump()
            if index < 3 and not p.expect(Kind.COMMA):
                break
        p.expect_semi()
        p.finish_node(Kind.GDEF_CLASS_DEF)
    elif kind in (Kind.ATTACH_KW, Kind.LIG_CARET_BY_POS_KW, Kind.LIG_CARET_BY_INDEX_KW):
        p.start_node()
        p.bump()
        if not _glyph_or_class(p):
            p.error(f"expected glyph or class, found {p.describe_current()}", E.MISSING_TOKEN)
        count = 0
        while p.at_any(NUMBER_START):
            _signed_number(p)
            count += 1
        if count == 0:
            p.error(f"expected number, found {p.describe_current()}", E.MISSING_TOKEN)
        p.expect_semi()
        p.finish_node({
            Kind.ATTACH_KW: Kind.GDEF_ATTACH,
            Kind.LIG_CARET_BY_POS_KW: Kind.GDEF_LIG_CARET_POS,
            Kind.LIG_CARET_BY_INDEX_KW: Kind.GDEF_LIG_CARET_INDEX,
        }[kind])
    else:
        p.err_and_bump(f"unexpected {p.describe_current()} in GDEF table")


# ═══════════════════════════════════════════════════════════════════════
#  Glyphs and classes
# ═══════════════════════════════════════════════════════════════════════

def _glyph(p: Parser) -> bool:
    """A single glyph: name, escaped name or CID."""
    if p.at(Kind.IDENT):
        p.bump(Kind.GLYPH_NAME)
        return True
    if p.at(Kind.BACKSLASH):
        p.start_node()
        p.bump()
        if p.at(Kind.NUMBER):
            p.bump()
            p.finish_node(Kind.CID)
        elif p.at(Kind.IDENT) or p.current.is_keyword():
            p.bump(Kind.GLYPH_NAME)
            p.finish_node(Kind.ESCAPED_GLYPH)
        else:
            p.error(
                f"expected glyph name or CID after '\\', found {p.describe_current()}",
                E.MISSING_TOKEN,
            )
            p.finish_node(Kind.ESCAPED_GLYPH)
        return True
    return False


def _glyph_or_class(p: Parser) -> bool:
    if p.at(Kind.LSQUARE):
        _glyph_class_literal(p)
        return True
    if p.at(Kind.NAMED_GLYPH_CLASS):
        p.bump()
        return True
    return _glyph(p)


def _class_ref(p: Parser) -> bool:
    """A named class or a class literal (lookupflag arguments)."""
    if p.at(Kind.LSQUARE):
        _glyph_class_literal(p)
        return True
    return p.eat(Kind.NAMED_GLYPH_CLASS)


def _glyph_class_literal(p: Parser) -> None:
    """``[ a b c-d @X \\10-\\20 ]``"""
    p.start_node()
    lsquare = p.current_span()
    p.bump()
    stop = TokenSet([Kind.RSQUARE, Kind.SEMI, Kind.RBRACE, Kind.EOF])
    while not p.at_any(stop):
        if p.at(Kind.NAMED_GLYPH_CLASS):
            p.bump()
        elif p.at(Kind.IDENT) or p.at(Kind.BACKSLASH):
            # an escaped glyph or CID spans two tokens
            width = 2 if p.at(Kind.BACKSLASH) else 1
            if p.nth_kind(width) is Kind.HYPHEN:
                p.start_node()
                _glyph(p)
                p.bump()
                if not _glyph(p):
                    p.error(
                        f"expected glyph after '-', found {p.describe_current()}",
                        E.MISSING_TOKEN,
                    )
                p.finish_node(Kind.GLYPH_RANGE)
            else:
                _glyph(p)
        else:
            _err_and_bump_one(p)
    if not p.eat(Kind.RSQUARE):
        p.error(
            f"unbalanced delimiter: expected ']', found {p.describe_current()}",
            E.UNBALANCED_DELIMITER,
            labels=[Label(lsquare, "class opened here")],
        )
    p.finish_node(Kind.GLYPH_CLASS)


def _err_and_bump_one(p: Parser) -> None:
    p.error(f"expected glyph or class, found {p.describe_current()}")
    p.start_node()
    p.bump()
    p.finish_node(Kind.ERROR_NODE)


# ═══════════════════════════════════════════════════════════════════════
#  Numbers, anchors, value records
# ═══════════════════════════════════════════════════════════════════════

def _signed_number(p: Parser) -> bool:
    if p.at(Kind.HYPHEN) and p.nth_kind(1) in (Kind.NUMBER, Kind.FLOAT):
        p.start_node()
        p.bump()
        p.bump()
        p.finish_node(Kind.SIGNED_NUMBER)
        return True
    if p.at(Kind.NUMBER) or p.at(Kind.FLOAT):
        p.start_node()
        p.bump()
        p.finish_node(Kind.SIGNED_NUMBER)
        return True
    p.error(f"expected number, found {p.describe_current()}", E.MISSING_TOKEN)
    return False


def _device(p: Parser) -> None:
    """``<device NULL>`` or ``<device size delta, size delta>``"""
    p.start_node()
    p.bump()  # '<'
    p.bump()  # 'device'
    if not p.eat(Kind.NULL_KW):
        while True:
            _signed_number(p)
            _signed_number(p)
            if not p.eat(Kind.COMMA):
                break
    p.expect(Kind.RANGLE)
    p.finish_node(Kind.DEVICE)


def _at_device(p: Parser) -> bool:
    return p.at(Kind.LANGLE) and p.nth_kind(1) is Kind.DEVICE_KW


def _anchor(p: Parser) -> bool:
    """``<anchor x y [contourpoint n] [<device> <device>]>`` / NULL / name."""
    if not (p.at(Kind.LANGLE) and p.nth_kind(1) is Kind.ANCHOR_KW):
        p.error(f"expected anchor, found {p.describe_current()}", E.MISSING_TOKEN)
        return False
    p.start_node()
    p.bump()
    p.bump()
    if p.eat(Kind.NULL_KW):
        pass
    elif p.at(Kind.IDENT):
        p.bump(Kind.LABEL)
    else:
        _signed_number(p)
        _signed_number(p)
        if p.eat(Kind.CONTOURPOINT_KW):
            _signed_number(p)
        while _at_device(p):
            _device(p)
    p.expect(Kind.RANGLE)
    p.finish_node(Kind.ANCHOR)
    return True


def _value_record(p: Parser) -> bool:
    """A bare advance number or ``< ... >``; returns False if none is here."""
    if p.at_any(NUMBER_START):
        p.start_node()
        _signed_number(p)
        p.finish_node(Kind.VALUE_RECORD)
        return True
    if not p.at(Kind.LANGLE) or p.nth_kind(1) in (Kind.ANCHOR_KW, Kind.DEVICE_KW):
        return False
    p.start_node()
    p.bump()
    if p.eat(Kind.NULL_KW):
        pass
    elif p.at(Kind.IDENT):
        p.bump(Kind.LABEL)
    else:
        count = 0
        while p.at_any(NUMBER_START):
            _signed_number(p)
            count += 1
        if count not in (1, 4):
            p.error(
                f"value record takes one or four numbers, found {count}",
                E.INVALID_STATEMENT,
            )
        while _at_device(p):
            _device(p)
    p.expect(Kind.RANGLE)
    p.finish_node(Kind.VALUE_RECORD)
    return True


# ═══════════════════════════════════════════════════════════════════════
#  Rules
# ═══════════════════════════════════════════════════════════════════════

class _Shape:
    """What a rule's sequence looked like, for classification."""

    __slots__ = ("items", "marked", "lookups", "values")

    def __init__(self) -> None:
        self.items = 0
        self.marked = 0
        self.lookups = 0
        self.values = 0


def _sequence_item(p: Parser, shape: _Shape, *, allow_value: bool) -> None:
    """``glyph-or-class ['] [lookup NAME]* [value-record]``"""
    p.start_node()
    _glyph_or_class(p)
    shape.items += 1
    if p.eat(Kind.SINGLE_QUOTE):
        shape.marked += 1
    while p.at(Kind.LOOKUP_KW):
        p.start_node()
        p.bump()
        p.expect_label()
        p.finish_node(Kind.LOOKUP_REF)
        shape.lookups += 1
    if allow_value and _value_record(p):
        shape.values += 1
    p.finish_node(Kind.SEQUENCE_ITEM)


def _sequence(p: Parser, shape: _Shape, *, allow_value: bool) -> None:
    while p.at_any(GLYPH_START):
        _sequence_item(p, shape, allow_value=allow_value)


def _replacement(p: Parser) -> int:
    """Glyphs after ``by``; returns how many, -1 for ``NULL``."""
    p.start_node()
    count = 0
    if p.eat(Kind.NULL_KW):
        count = -1
    else:
        while p.at_any(GLYPH_START):
            _glyph_or_class(p)
            count += 1
    p.finish_node(Kind.REPLACEMENT)
    return count


@_register(Kind.SUB_KW, Kind.SUBSTITUTE_KW, Kind.RSUB_KW, Kind.REVERSESUB_KW)
def _gsub(p: Parser) -> None:
    p.start_node()
    reverse = p.at(Kind.RSUB_KW) or p.at(Kind.REVERSESUB_KW)
    p.bump()
    shape = _Shape()
    _sequence(p, shape, allow_value=False)
    if shape.items == 0:
        p.error(f"expected glyph or class, found {p.describe_current()}", E.MISSING_TOKEN)

    separator: Optional[Kind] = None
    replaced = 0
    if p.at(Kind.BY_KW) or p.at(Kind.ARROW):
        separator = Kind.BY_KW
        p.bump()
        replaced = _replacement(p)
        if replaced == 0:
            p.error(f"expected replacement, found {p.describe_current()}", E.MISSING_TOKEN)
    elif p.at(Kind.FROM_KW):
        separator = Kind.FROM_KW
        p.bump()
        replaced = _replacement(p)
        if replaced != 1:
            p.error("'from' takes exactly one glyph class", E.INVALID_RULE_SYNTAX)

    contextual = shape.marked > 0 or shape.lookups > 0
    if reverse:
        kind = Kind.GSUB_TYPE8
    elif contextual:
        kind = Kind.GSUB_TYPE6
    elif separator is Kind.FROM_KW:
        kind = Kind.GSUB_TYPE3
    elif separator is Kind.BY_KW:
        if shape.items == 1 and replaced == 1:
            kind = Kind.GSUB_TYPE1
        elif shape.items == 1:
            kind = Kind.GSUB_TYPE2
        elif replaced == 1:
            kind = Kind.GSUB_TYPE4
        else:
            kind = Kind.GSUB_UNKNOWN
    else:
        kind = Kind.GSUB_UNKNOWN
        if shape.items:
            p.error(
                f"expected 'by' or 'from', found {p.describe_current()}",
                E.MISSING_TOKEN,
            )
    p.expect_semi()
    p.finish_node(kind)


@_register(Kind.POS_KW, Kind.POSITION_KW, Kind.ENUM_KW, Kind.ENUMERATE_KW)
def _gpos(p: Parser) -> None:
    p.start_node()
    enum = p.eat(Kind.ENUM_KW) or p.eat(Kind.ENUMERATE_KW)
    if not (p.eat(Kind.POS_KW) or p.eat(Kind.POSITION_KW)):
        p.error(f"expected 'pos', found {p.describe_current()}", E.MISSING_TOKEN)

    if p.at(Kind.CURSIVE_KW):
        p.bump()
        _glyph_or_class(p)
        _anchor(p)
        _anchor(p)
        kind = Kind.GPOS_TYPE3
    elif p.at(Kind.BASE_KW) or p.at(Kind.MARK_KW):
        kind = Kind.GPOS_TYPE4 if p.at(Kind.BASE_KW) else Kind.GPOS_TYPE6
        p.bump()
        _glyph_or_class(p)
        if not _anchor_marks(p):
            p.error(f"expected anchor, found {p.describe_current()}", E.MISSING_TOKEN)
    elif p.at(Kind.LIGATURE_KW):
        p.bump()
        _glyph_or_class(p)
        p.start_node()
        _anchor_marks(p)
        p.finish_node(Kind.LIG_COMPONENT)
        while p.eat(Kind.LIG_COMPONENT_KW):
            p.start_node()
            _anchor_marks(p)
            p.finish_node(Kind.LIG_COMPONENT)
        kind = Kind.GPOS_TYPE5
    else:
        shape = _Shape()
        _sequence(p, shape, allow_value=True)
        if shape.marked or shape.lookups:
            kind = Kind.GPOS_TYPE8
        elif shape.items == 1 and shape.values == 1 and not enum:
            kind = Kind.GPOS_TYPE1
        elif shape.items == 2 and shape.values >= 1:
            kind = Kind.GPOS_TYPE2
        else:
            kind = Kind.GPOS_UNKNOWN
            p.error(
                "positioning rule is not single, pair or contextual",
                E.INVALID_RULE_SYNTAX,
                span=None,
            )
    p.expect_semi()
    p.finish_node(kind)


def _anchor_marks(p: Parser) -> bool:
    """``<anchor> mark @CLASS`` repeated; ``<anchor NULL>`` stands alone."""
    found = False
    while p.at(Kind.LANGLE) and p.nth_kind(1) is Kind.ANCHOR_KW:
        found = True
        p.start_node()
        _anchor(p)
        if p.eat(Kind.MARK_KW):
            p.expect(Kind.NAMED_GLYPH_CLASS, "mark class name")
        p.finish_node(Kind.ANCHOR_MARK)
    return found


@_register(Kind.IGNORE_KW)
def _ignore(p: Parser) -> None:
    """``ignore sub|pos context [, context]*;``"""
    p.start_node()
    p.bump()
    if p.at(Kind.SUB_KW) or p.at(Kind.SUBSTITUTE_KW):
        kind = Kind.GSUB_IGNORE
    elif p.at(Kind.POS_KW) or p.at(Kind.POSITION_KW):
        kind = Kind.GPOS_IGNORE
    else:
        p.err_and_bump(f"expected 'sub' or 'pos' after 'ignore', found {p.describe_current()}")
        p.finish_node(Kind.GSUB_IGNORE)
        return
    p.bump()
    while True:
        p.start_node()
        shape = _Shape()
        _sequence(p, shape, allow_value=False)
        if shape.items == 0:
            p.error(f"expected glyph or class, found {p.describe_current()}", E.MISSING_TOKEN)
        p.finish_node(Kind.IGNORE_CONTEXT)
        if not p.eat(Kind.COMMA):
            break
    p.expect_semi()
    p.finish_node(kind)
