"""feac/kinds.py – token and syntax-node kinds.

One enum covers both the lexer's token kinds and the parser's node kinds,
so that a CST element can be described by a single ``kind`` attribute.
Enum values are the human-readable descriptions used in diagnostics
("expected ';', found 'feature'").

Token kinds fall into four groups:

* trivia (``WHITESPACE``, ``COMMENT``), never significant to the parser;
* lexical errors (``ERROR``, ``STRING_UNTERMINATED``, ``HEX_EMPTY``);
* punctuation, literals and keywords produced by the lexer;
* contextual kinds (``GLYPH_NAME``, ``TAG``, ``LABEL``, ``PATH``) that the
  parser assigns when it knows what an identifier means.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum, unique
from typing import Dict, FrozenSet, Iterable, Iterator


@unique
class Kind(Enum):
    # ── special ─────────────────────────────────────────────────────────
    EOF = "end of file"
    WHITESPACE = "whitespace"
    COMMENT = "comment"
    ERROR = "invalid character"
    STRING_UNTERMINATED = "unterminated string"
    HEX_EMPTY = "empty hex number"

    # ── literals ────────────────────────────────────────────────────────
    STRING = "string"
    NUMBER = "number"
    HEX = "hex number"
    FLOAT = "float"
    NAMED_GLYPH_CLASS = "glyph class name"
    IDENT = "identifier"

    # ── punctuation ─────────────────────────────────────────────────────
    BACKSLASH = "'\\'"
    HYPHEN = "'-'"
    ARROW = "'->'"
    EQ = "'='"
    SEMI = "';'"
    COMMA = "','"
    SINGLE_QUOTE = "\"'\""
    LBRACE = "'{'"
    RBRACE = "'}'"
    LSQUARE = "'['"
    RSQUARE = "']'"
    LPAREN = "'('"
    RPAREN = "')'"
    LANGLE = "'<'"
    RANGLE = "'>'"

    # ── contextual token kinds (assigned by the parser) ─────────────────
    GLYPH_NAME = "glyph name"
    TAG = "tag"
    LABEL = "label"
    PATH = "path"

    # ── keywords ────────────────────────────────────────────────────────
    ANCHOR_KW = "'anchor'"
    ANCHOR_DEF_KW = "'anchorDef'"
    ANON_KW = "'anon'"
    ANONYMOUS_KW = "'anonymous'"
    BY_KW = "'by'"
    CONTOURPOINT_KW = "'contourpoint'"
    CURSIVE_KW = "'cursive'"
    DEVICE_KW = "'device'"
    ENUM_KW = "'enum'"
    ENUMERATE_KW = "'enumerate'"
    EXCLUDE_DFLT_KW = "'exclude_dflt'"
    FEATURE_KW = "'feature'"
    FROM_KW = "'from'"
    IGNORE_KW = "'ignore'"
    IGNORE_BASE_GLYPHS_KW = "'IgnoreBaseGlyphs'"
    IGNORE_LIGATURES_KW = "'IgnoreLigatures'"
    IGNORE_MARKS_KW = "'IgnoreMarks'"
    INCLUDE_KW = "'include'"
    INCLUDE_DFLT_KW = "'include_dflt'"
    LANGUAGE_KW = "'language'"
    LANGUAGESYSTEM_KW = "'languagesystem'"
    LOOKUP_KW = "'lookup'"
    LOOKUPFLAG_KW = "'lookupflag'"
    MARK_KW = "'mark'"
    MARK_ATTACHMENT_TYPE_KW = "'MarkAttachmentType'"
    MARK_CLASS_KW = "'markClass'"
    NAME_KW = "'name'"
    NULL_KW = "'NULL'"
    PARAMETERS_KW = "'parameters'"
    POS_KW = "'pos'"
    POSITION_KW = "'position'"
    REQUIRED_KW = "'required'"
    REVERSESUB_KW = "'reversesub'"
    RSUB_KW = "'rsub'"
    RIGHT_TO_LEFT_KW = "'RightToLeft'"
    SCRIPT_KW = "'script'"
    SUB_KW = "'sub'"
    SUBSTITUTE_KW = "'substitute'"
    SUBTABLE_KW = "'subtable'"
    TABLE_KW = "'table'"
    USE_EXTENSION_KW = "'useExtension'"
    USE_MARK_FILTERING_SET_KW = "'UseMarkFilteringSet'"
    VALUE_RECORD_DEF_KW = "'valueRecordDef'"
    BASE_KW = "'base'"
    LIGATURE_KW = "'ligature'"
    LIG_COMPONENT_KW = "'ligComponent'"
    GLYPH_CLASS_DEF_KW = "'GlyphClassDef'"
    ATTACH_KW = "'Attach'"
    LIG_CARET_BY_POS_KW = "'LigatureCaretByPos'"
    LIG_CARET_BY_INDEX_KW = "'LigatureCaretByIndex'"
    FEATURE_NAMES_KW = "'featureNames'"
    SIZEMENUNAME_KW = "'sizemenuname'"
    CV_PARAMETERS_KW = "'cvParameters'"
    FEAT_UI_LABEL_NAME_ID_KW = "'FeatUILabelNameID'"
    FEAT_UI_TOOLTIP_TEXT_NAME_ID_KW = "'FeatUITooltipTextNameID'"
    SAMPLE_TEXT_NAME_ID_KW = "'SampleTextNameID'"
    PARAM_UI_LABEL_NAME_ID_KW = "'ParamUILabelNameID'"
    CHARACTER_KW = "'Character'"
    CONDITIONSET_KW = "'conditionset'"
    VARIATION_KW = "'variation'"

    # ── nodes ───────────────────────────────────────────────────────────
    SOURCE_FILE = "SourceFile"
    ERROR_NODE = "ErrorNode"
    LANGUAGE_SYSTEM = "LanguageSystem"
    INCLUDE = "Include"
    GLYPH_CLASS_DEF = "GlyphClassDef"
    MARK_CLASS_DEF = "MarkClassDef"
    ANCHOR_DEF = "AnchorDef"
    VALUE_RECORD_DEF = "ValueRecordDef"
    LOOKUP_BLOCK = "LookupBlock"
    FEATURE_BLOCK = "FeatureBlock"
    TABLE_BLOCK = "TableBlock"
    ANON_BLOCK = "AnonBlock"
    CONDITION_SET = "ConditionSet"
    CONDITION = "Condition"
    VARIATION_BLOCK = "VariationBlock"
    SCRIPT = "ScriptStatement"
    LANGUAGE = "LanguageStatement"
    LOOKUP_FLAG = "LookupFlag"
    LOOKUP_REF = "LookupRef"
    SUBTABLE = "SubtableBreak"
    FEATURE_REF = "FeatureRef"
    FEATURE_NAMES = "FeatureNames"
    NAME_SPEC = "NameSpec"
    CV_PARAMETERS = "CvParameters"
    CV_NAME_BLOCK = "CvNameBlock"
    CV_CHARACTER = "CvCharacter"
    SIZE_PARAMETERS = "SizeParameters"
    SIZE_MENU_NAME = "SizeMenuName"
    GDEF_CLASS_DEF = "GdefClassDef"
    GDEF_ATTACH = "GdefAttach"
    GDEF_LIG_CARET_POS = "GdefLigatureCaretByPos"
    GDEF_LIG_CARET_INDEX = "GdefLigatureCaretByIndex"
    TABLE_ENTRY = "TableEntry"

    GSUB_TYPE1 = "Gsub1"
    GSUB_TYPE2 = "Gsub2"
    GSUB_TYPE3 = "Gsub3"
    GSUB_TYPE4 = "Gsub4"
    GSUB_TYPE6 = "Gsub6"
    GSUB_TYPE8 = "Gsub8"
    GSUB_IGNORE = "GsubIgnore"
    GSUB_UNKNOWN = "GsubUnclassified"
    GPOS_TYPE1 = "Gpos1"
    GPOS_TYPE2 = "Gpos2"
    GPOS_TYPE3 = "Gpos3"
    GPOS_TYPE4 = "Gpos4"
    GPOS_TYPE5 = "Gpos5"
    GPOS_TYPE6 = "Gpos6"
    GPOS_TYPE8 = "Gpos8"
    GPOS_IGNORE = "GposIgnore"
    GPOS_UNKNOWN = "GposUnclassified"

    SEQUENCE_ITEM = "SequenceItem"
    REPLACEMENT = "Replacement"
    IGNORE_CONTEXT = "IgnoreContext"
    GLYPH_CLASS = "GlyphClass"
    GLYPH_RANGE = "GlyphRange"
    ESCAPED_GLYPH = "EscapedGlyph"
    CID = "Cid"
    ANCHOR = "Anchor"
    ANCHOR_MARK = "AnchorMark"
    LIG_COMPONENT = "LigComponent"
    VALUE_RECORD = "ValueRecord"
    DEVICE = "Device"
    SIGNED_NUMBER = "SignedNumber"

    # ── queries ─────────────────────────────────────────────────────────

    def is_trivia(self) -> bool:
        return self in TRIVIA

    def is_lex_error(self) -> bool:
        return self in LEX_ERRORS

    def is_keyword(self) -> bool:
        return self.name.endswith("_KW")

    def is_rule(self) -> bool:
        return self in RULES

    def __str__(self) -> str:
        return self.value


TRIVIA: FrozenSet[Kind] = frozenset({Kind.WHITESPACE, Kind.COMMENT})
LEX_ERRORS: FrozenSet[Kind] = frozenset(
    {Kind.ERROR, Kind.STRING_UNTERMINATED, Kind.HEX_EMPTY}
)

GSUB_RULES: FrozenSet[Kind] = frozenset({
    Kind.GSUB_TYPE1, Kind.GSUB_TYPE2, Kind.GSUB_TYPE3, Kind.GSUB_TYPE4,
    Kind.GSUB_TYPE6, Kind.GSUB_TYPE8, Kind.GSUB_IGNORE, Kind.GSUB_UNKNOWN,
})
GPOS_RULES: FrozenSet[Kind] = frozenset({
    Kind.GPOS_TYPE1, Kind.GPOS_TYPE2, Kind.GPOS_TYPE3, Kind.GPOS_TYPE4,
    Kind.GPOS_TYPE5, Kind.GPOS_TYPE6, Kind.GPOS_TYPE8, Kind.GPOS_IGNORE,
    Kind.GPOS_UNKNOWN,
})
RULES: FrozenSet[Kind] = GSUB_RULES | GPOS_RULES


KEYWORDS: Dict[str, Kind] = {
    member.value[1:-1]: member for member in Kind if member.name.endswith("_KW")
}


@dataclass(frozen=True, slots=True)
class Token:
    """An immutable lexeme: kind, exact source text and start offset."""

    kind: Kind
    text: str
    start: int

    @property
    def end(self) -> int:
        return self.start + len(self.text)

    def is_trivia(self) -> bool:
        return self.kind in TRIVIA

    def with_kind(self, kind: Kind) -> "Token":
        return Token(kind, self.text, self.start)


class TokenSet:
    """Immutable set of kinds, used for lookahead tests and recovery."""

    __slots__ = ("_kinds",)

    def __init__(self, kinds: Iterable[Kind]) -> None:
        self._kinds: FrozenSet[Kind] = frozenset(kinds)

    def __contains__(self, kind: object) -> bool:
        return kind in self._kinds

    def __iter__(self) -> Iterator[Kind]:
        return iter(self._kinds)

    def __or__(self, other: "TokenSet") -> "TokenSet":
        return TokenSet(self._kinds | other._kinds)

    def add(self, *kinds: Kind) -> "TokenSet":
        return TokenSet(self._kinds | frozenset(kinds))

    def __repr__(self) -> str:
        return f"TokenSet({sorted(k.name for k in self._kinds)})"
