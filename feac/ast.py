"""feac/ast.py – typed, lazy views over the concrete syntax tree.

An AST node here is not a separate allocation: every class wraps a
:class:`~feac.cst.NodeRef` (or, for leaf expressions, a
:class:`~feac.cst.TokenRef`) and finds its semantic children on demand,
skipping trivia and recovery nodes.  Accessors are ``cached_property``
so literal parsing (numbers, tags, escaped names, name strings) happens
once per view and only for what is actually queried.

Module layout
-------------
§1  Literal helpers
§2  Base classes and the kind → view registry
§3  Glyph expressions
§4  Numbers, anchors, value records
§5  Top-level statements and blocks
§6  Block statements, feature parameters, GDEF
§7  Rules
"""

from __future__ import annotations

from functools import cached_property
from typing import (
    ClassVar,
    Dict,
    Iterator,
    List,
    Optional,
    Tuple,
    Type,
    Union,
)

from feac.cst import NodeRef, TokenRef
from feac.errors import Span
from feac.kinds import GPOS_RULES, GSUB_RULES, Kind

__all__ = [
    "AstNode",
    "AstToken",
    "Block",
    "cast",
    "glyph_expr",
    "GlyphExpr",
    "GlyphName",
    "ClassName",
    "EscapedGlyph",
    "Cid",
    "GlyphRange",
    "GlyphClassLiteral",
    "SignedNumber",
    "Device",
    "Anchor",
    "ValueRecord",
    "SourceFile",
    "LanguageSystem",
    "Include",
    "GlyphClassDef",
    "MarkClassDef",
    "AnchorDef",
    "ValueRecordDef",
    "LookupBlock",
    "LookupRef",
    "FeatureBlock",
    "FeatureRef",
    "TableBlock",
    "AnonBlock",
    "ConditionSet",
    "Condition",
    "VariationBlock",
    "Script",
    "Language",
    "LookupFlag",
    "Subtable",
    "NameSpec",
    "FeatureNames",
    "CvParameters",
    "CvNameBlock",
    "SizeParameters",
    "SizeMenuName",
    "GdefClassDef",
    "GdefGlyphNumbers",
    "TableEntry",
    "SequenceItem",
    "Rule",
    "GsubRule",
    "IgnoreRule",
    "IgnoreContext",
    "SinglePosRule",
    "PairPosRule",
    "CursivePosRule",
    "MarkAttachRule",
    "MarkLigRule",
    "AnchorMark",
    "LigComponent",
    "ChainPosRule",
    "Tag",
    "Label",
    "is_rule",
]


# ════════════════════════════════════════════════════════════════════════
# §1  Literal helpers
# ════════════════════════════════════════════════════════════════════════

def number_value(token: TokenRef) -> Union[int, float]:
    """Value of a NUMBER, HEX or FLOAT token."""
    if token.kind is Kind.HEX:
        return int(token.text, 16)
    if token.kind is Kind.FLOAT:
        return float(token.text)
    return int(token.text)


def string_value(token: TokenRef) -> str:
    """Contents of a string token, without the quotes."""
    text = token.text
    if token.kind is Kind.STRING and len(text) >= 2:
        return text[1:-1]
    return text[1:]


def decode_name_string(raw: str, platform_id: int) -> str:
    """Expand FEA backslash escapes in a name string.

    Windows strings use ``\\XXXX`` (UTF-16 code unit), Macintosh strings
    ``\\XX`` (Mac Roman byte).
    """
    width = 4 if platform_id == 3 else 2
    out: List[str] = []
    i = 0
    while i < len(raw):
        ch = raw[i]
        chunk = raw[i + 1:i + 1 + width]
        if ch == "\\" and len(chunk) == width and all(c in "0123456789abcdefABCDEF" for c in chunk):
            value = int(chunk, 16)
            if width == 4:
                out.append(chr(value))
            else:
                out.append(bytes([value]).decode("mac_roman"))
            i += 1 + width
        else:
            out.append(ch)
            i += 1
    return "".join(out)


# ════════════════════════════════════════════════════════════════════════
# §2  Base classes and registry
# ════════════════════════════════════════════════════════════════════════

class AstNode:
    """Typed view over one CST node."""

    kinds: ClassVar[Tuple[Kind, ...]] = ()

    def __init__(self, node: NodeRef) -> None:
        self.node = node

    @property
    def kind(self) -> Kind:
        return self.node.kind

    @property
    def span(self) -> Span:
        return self.node.span

    @property
    def key(self) -> Tuple[int, int]:
        return self.node.key

    @property
    def has_error(self) -> bool:
        return self.node.has_error

    def text(self) -> str:
        return self.node.text()

    def _tokens(self, *kinds: Kind) -> List[TokenRef]:
        return [tok for tok in self.node.child_tokens() if tok.kind in kinds]

    def _nodes(self, *kinds: Kind) -> List[NodeRef]:
        return [n for n in self.node.child_nodes() if n.kind in kinds]

    def _has(self, kind: Kind) -> bool:
        return self.node.find_token(kind) is not None

    def __eq__(self, other: object) -> bool:
        return isinstance(other, AstNode) and other.node == self.node

    def __hash__(self) -> int:
        return hash(self.node)

    def __repr__(self) -> str:
        return f"{type(self).__name__}({self.node.start}..{self.node.end})"


class AstToken:
    """Typed view over one significant token."""

    is_class: ClassVar[bool] = False

    def __init__(self, token: TokenRef) -> None:
        self.token = token

    @property
    def span(self) -> Span:
        return self.token.span

    @property
    def text(self) -> str:
        return self.token.text

    def __eq__(self, other: object) -> bool:
        return isinstance(other, AstToken) and other.token == self.token

    def __hash__(self) -> int:
        return hash(self.token)

    def __repr__(self) -> str:
        return f"{type(self).__name__}({self.token.text!r})"


class Tag(AstToken):
    """An OpenType tag, space padded to four characters."""

    @property
    def value(self) -> str:
        return self.token.text.ljust(4)


class Label(AstToken):
    """A lookup, anchor, value record or condition set name."""

    @property
    def value(self) -> str:
        return self.token.text


_VIEWS: Dict[Kind, Type[AstNode]] = {}


def _view(*kinds: Kind):
    """Register an :class:`AstNode` subclass for *kinds*."""
    def deco(cls: Type[AstNode]) -> Type[AstNode]:
        cls.kinds = kinds
        for kind in kinds:
            _VIEWS[kind] = cls
        return cls
    return deco


def cast(node: NodeRef) -> Optional[AstNode]:
    """The typed view for *node*, or None for kinds without one."""
    cls = _VIEWS.get(node.kind)
    return cls(node) if cls is not None else None


def _first_tag(view: AstNode) -> Optional[Tag]:
    tok = view.node.find_token(Kind.TAG)
    return Tag(tok) if tok is not None else None


def _first_label(view: AstNode) -> Optional[Label]:
    tok = view.node.find_token(Kind.LABEL)
    return Label(tok) if tok is not None else None


# ════════════════════════════════════════════════════════════════════════
# §3  Glyph expressions
# ════════════════════════════════════════════════════════════════════════

class GlyphName(AstToken):
    """A bare glyph name."""

    @property
    def name(self) -> str:
        return self.token.text


class ClassName(AstToken):
    """``@NAME`` reference to a glyph class or mark class."""

    is_class = True

    @property
    def name(self) -> str:
        return self.token.text[1:]


@_view(Kind.ESCAPED_GLYPH)
class EscapedGlyph(AstNode):
    """``\\name`` – a glyph whose name collides with a keyword."""

    is_class = False

    @cached_property
    def name(self) -> str:
        tok = self.node.find_token(Kind.GLYPH_NAME)
        return tok.text if tok is not None else ""


@_view(Kind.CID)
class Cid(AstNode):
    """``\\123`` – a CID, named ``cid00123`` in the glyph map."""

    is_class = False

    @cached_property
    def cid(self) -> int:
        tok = self.node.find_token(Kind.NUMBER)
        return int(tok.text) if tok is not None else 0

    @property
    def name(self) -> str:
        return "cid%05d" % self.cid


@_view(Kind.GLYPH_RANGE)
class GlyphRange(AstNode):
    """``first - last`` inside a class literal."""

    is_class = True

    @cached_property
    def _ends(self) -> List["GlyphExpr"]:
        return [e for e in _glyph_exprs(self.node)]

    @property
    def start(self) -> Optional["GlyphExpr"]:
        return self._ends[0] if self._ends else None

    @property
    def end(self) -> Optional["GlyphExpr"]:
        return self._ends[1] if len(self._ends) > 1 else None


@_view(Kind.GLYPH_CLASS)
class GlyphClassLiteral(AstNode):
    """``[ ... ]``"""

    is_class = True

    @cached_property
    def items(self) -> List["GlyphExpr"]:
        return list(_glyph_exprs(self.node))


GlyphExpr = Union[GlyphName, ClassName, EscapedGlyph, Cid, GlyphRange, GlyphClassLiteral]


def glyph_expr(element: Union[NodeRef, TokenRef]) -> Optional[GlyphExpr]:
    """Turn a CST element into a glyph expression view, if it is one."""
    if isinstance(element, TokenRef):
        if element.kind is Kind.GLYPH_NAME:
            return GlyphName(element)
        if element.kind is Kind.NAMED_GLYPH_CLASS:
            return ClassName(element)
        return None
    if element.kind in (Kind.GLYPH_CLASS, Kind.ESCAPED_GLYPH, Kind.CID, Kind.GLYPH_RANGE):
        return cast(element)  # type: ignore[return-value]
    return None


def _glyph_exprs(node: NodeRef) -> Iterator[GlyphExpr]:
    for child in node.significant():
        expr = glyph_expr(child)
        if expr is not None:
            yield expr


# ════════════════════════════════════════════════════════════════════════
# §4  Numbers, anchors, value records
# ════════════════════════════════════════════════════════════════════════

@_view(Kind.SIGNED_NUMBER)
class SignedNumber(AstNode):

    @cached_property
    def value(self) -> Union[int, float]:
        tok = self.node.find_token(Kind.NUMBER, Kind.FLOAT)
        if tok is None:
            return 0
        value = number_value(tok)
        return -value if self._has(Kind.HYPHEN) else value


def _numbers(node: NodeRef) -> List[Union[int, float]]:
    return [SignedNumber(n).value for n in node.child_nodes() if n.kind is Kind.SIGNED_NUMBER]


@_view(Kind.DEVICE)
class Device(AstNode):
    """``<device NULL>`` or ``<device ppem delta, ...>``"""

    @property
    def is_null(self) -> bool:
        return self._has(Kind.NULL_KW)

    @cached_property
    def entries(self) -> Tuple[Tuple[int, int], ...]:
        values = [int(v) for v in _numbers(self.node)]
        return tuple(zip(values[0::2], values[1::2]))


@_view(Kind.ANCHOR)
class Anchor(AstNode):
    """``<anchor x y [contourpoint n] [devices]>``, ``<anchor NULL>`` or a name."""

    @property
    def is_null(self) -> bool:
        return self._has(Kind.NULL_KW)

    @cached_property
    def name(self) -> Optional[Label]:
        return _first_label(self)

    @cached_property
    def _values(self) -> List[Union[int, float]]:
        return _numbers(self.node)

    @property
    def x(self) -> int:
        return int(self._values[0]) if self._values else 0

    @property
    def y(self) -> int:
        return int(self._values[1]) if len(self._values) > 1 else 0

    @property
    def contourpoint(self) -> Optional[int]:
        if self._has(Kind.CONTOURPOINT_KW) and len(self._values) > 2:
            return int(self._values[2])
        return None

    @cached_property
    def devices(self) -> List[Device]:
        return [Device(n) for n in self._nodes(Kind.DEVICE)]


@_view(Kind.VALUE_RECORD)
class ValueRecord(AstNode):
    """A value record in any of its spellings.

    ``numbers`` has one element for the advance-only form and four for the
    full ``<xPla yPla xAdv yAdv>`` form.
    """

    @property
    def is_null(self) -> bool:
        return self._has(Kind.NULL_KW)

    @cached_property
    def name(self) -> Optional[Label]:
        return _first_label(self)

    @cached_property
    def numbers(self) -> List[int]:
        return [int(v) for v in _numbers(self.node)]

    @cached_property
    def devices(self) -> List[Device]:
        return [Device(n) for n in self._nodes(Kind.DEVICE)]


# ════════════════════════════════════════════════════════════════════════
# §5  Top-level statements and blocks
# ════════════════════════════════════════════════════════════════════════

class Block(AstNode):
    """A node whose child nodes are statements."""

    def statements(self) -> Iterator[AstNode]:
        for child in self.node.child_nodes():
            view = cast(child)
            if view is not None:
                yield view


@_view(Kind.SOURCE_FILE)
class SourceFile(Block):
    pass


@_view(Kind.LANGUAGE_SYSTEM)
class LanguageSystem(AstNode):

    @cached_property
    def _tags(self) -> List[Tag]:
        return [Tag(t) for t in self._tokens(Kind.TAG)]

    @property
    def script(self) -> Optional[Tag]:
        return self._tags[0] if self._tags else None

    @property
    def language(self) -> Optional[Tag]:
        return self._tags[1] if len(self._tags) > 1 else None


@_view(Kind.INCLUDE)
class Include(AstNode):

    @cached_property
    def path(self) -> str:
        """Everything between the parentheses, trimmed."""
        parts: List[str] = []
        inside = False
        for tok in self.node.iter_tokens():
            if tok.kind is Kind.LPAREN and not inside:
                inside = True
            elif tok.kind is Kind.RPAREN and inside:
                break
            elif inside:
                parts.append(tok.text)
        return "".join(parts).strip()


@_view(Kind.GLYPH_CLASS_DEF)
class GlyphClassDef(AstNode):
    """``@NAME = value;``"""

    @cached_property
    def name(self) -> Optional[ClassName]:
        tok = self.node.find_token(Kind.NAMED_GLYPH_CLASS)
        return ClassName(tok) if tok is not None else None

    @cached_property
    def value(self) -> Optional[GlyphExpr]:
        exprs = list(_glyph_exprs(self.node))
        return exprs[1] if len(exprs) > 1 else None


@_view(Kind.MARK_CLASS_DEF)
class MarkClassDef(AstNode):
    """``markClass glyphs <anchor> @CLASS;``"""

    @cached_property
    def _exprs(self) -> List[GlyphExpr]:
        return list(_glyph_exprs(self.node))

    @property
    def glyphs(self) -> Optional[GlyphExpr]:
        return self._exprs[0] if len(self._exprs) > 1 else None

    @property
    def class_name(self) -> Optional[ClassName]:
        last = self._exprs[-1] if self._exprs else None
        return last if isinstance(last, ClassName) and len(self._exprs) > 1 else None

    @cached_property
    def anchor(self) -> Optional[Anchor]:
        node = self.node.find_node(Kind.ANCHOR)
        return Anchor(node) if node is not None else None


@_view(Kind.ANCHOR_DEF)
class AnchorDef(AstNode):
    """``anchorDef x y [contourpoint n] NAME;``"""

    @cached_property
    def _values(self) -> List[int]:
        return [int(v) for v in _numbers(self.node)]

    @property
    def x(self) -> int:
        return self._values[0] if self._values else 0

    @property
    def y(self) -> int:
        return self._values[1] if len(self._values) > 1 else 0

    @property
    def contourpoint(self) -> Optional[int]:
        return self._values[2] if len(self._values) > 2 else None

    @cached_property
    def name(self) -> Optional[Label]:
        return _first_label(self)


@_view(Kind.VALUE_RECORD_DEF)
class ValueRecordDef(AstNode):

    @cached_property
    def value(self) -> Optional[ValueRecord]:
        node = self.node.find_node(Kind.VALUE_RECORD)
        return ValueRecord(node) if node is not None else None

    @cached_property
    def name(self) -> Optional[Label]:
        labels = self._tokens(Kind.LABEL)
        return Label(labels[-1]) if labels else None


@_view(Kind.LOOKUP_BLOCK)
class LookupBlock(Block):

    @cached_property
    def label(self) -> Optional[Label]:
        return _first_label(self)

    @property
    def use_extension(self) -> bool:
        return self._has(Kind.USE_EXTENSION_KW)


@_view(Kind.LOOKUP_REF)
class LookupRef(AstNode):
    """``lookup NAME;`` in a block, or ``lookup NAME`` inside a rule."""

    @cached_property
    def label(self) -> Optional[Label]:
        return _first_label(self)


@_view(Kind.FEATURE_BLOCK)
class FeatureBlock(Block):

    @cached_property
    def tag(self) -> Optional[Tag]:
        return _first_tag(self)

    @property
    def use_extension(self) -> bool:
        return self._has(Kind.USE_EXTENSION_KW)


@_view(Kind.FEATURE_REF)
class FeatureRef(AstNode):
    """``feature tag;`` inside ``aalt``."""

    @cached_property
    def tag(self) -> Optional[Tag]:
        return _first_tag(self)


@_view(Kind.TABLE_BLOCK)
class TableBlock(Block):

    @cached_property
    def tag(self) -> Optional[Tag]:
        return _first_tag(self)


@_view(Kind.ANON_BLOCK)
class AnonBlock(AstNode):

    @cached_property
    def tag(self) -> Optional[Tag]:
        return _first_tag(self)


@_view(Kind.CONDITION)
class Condition(AstNode):
    """``axis min max;``"""

    @cached_property
    def tag(self) -> Optional[Tag]:
        return _first_tag(self)

    @cached_property
    def _values(self) -> List[Union[int, float]]:
        return _numbers(self.node)

    @property
    def minimum(self) -> float:
        return float(self._values[0]) if self._values else 0.0

    @property
    def maximum(self) -> float:
        return float(self._values[1]) if len(self._values) > 1 else 0.0


@_view(Kind.CONDITION_SET)
class ConditionSet(AstNode):

    @cached_property
    def label(self) -> Optional[Label]:
        return _first_label(self)

    @cached_property
    def conditions(self) -> List[Condition]:
        return [Condition(n) for n in self._nodes(Kind.CONDITION)]


@_view(Kind.VARIATION_BLOCK)
class VariationBlock(Block):
    """``variation tag CONDITIONSET { ... } tag;``"""

    @cached_property
    def tag(self) -> Optional[Tag]:
        return _first_tag(self)

    @cached_property
    def condition_set(self) -> Optional[Label]:
        return _first_label(self)

    @property
    def use_extension(self) -> bool:
        return self._has(Kind.USE_EXTENSION_KW)


@_view(Kind.TABLE_ENTRY)
class TableEntry(AstNode):
    pass


# ════════════════════════════════════════════════════════════════════════
# §6  Block statements, feature parameters, GDEF
# ════════════════════════════════════════════════════════════════════════

@_view(Kind.SCRIPT)
class Script(AstNode):

    @cached_property
    def tag(self) -> Optional[Tag]:
        return _first_tag(self)


@_view(Kind.LANGUAGE)
class Language(AstNode):
    """``language TAG [exclude_dflt|include_dflt] [required];``"""

    @cached_property
    def tag(self) -> Optional[Tag]:
        return _first_tag(self)

    @property
    def include_default(self) -> bool:
        return not self._has(Kind.EXCLUDE_DFLT_KW)

    @property
    def required(self) -> bool:
        return self._has(Kind.REQUIRED_KW)


LOOKUP_FLAG_BITS: Dict[Kind, int] = {
    Kind.RIGHT_TO_LEFT_KW: 0x0001,
    Kind.IGNORE_BASE_GLYPHS_KW: 0x0002,
    Kind.IGNORE_LIGATURES_KW: 0x0004,
    Kind.IGNORE_MARKS_KW: 0x0008,
}


@_view(Kind.LOOKUP_FLAG)
class LookupFlag(AstNode):

    @cached_property
    def number(self) -> Optional[int]:
        tok = self.node.find_token(Kind.NUMBER)
        return int(tok.text) if tok is not None else None

    @cached_property
    def bits(self) -> int:
        """The low byte of the flag, without attachment/filtering parts."""
        if self.number is not None:
            return self.number
        value = 0
        for tok in self.node.child_tokens():
            value |= LOOKUP_FLAG_BITS.get(tok.kind, 0)
        return value

    def _class_after(self, keyword: Kind) -> Optional[GlyphExpr]:
        seen = False
        for child in self.node.significant():
            if isinstance(child, TokenRef) and child.kind is keyword:
                seen = True
            elif seen:
                return glyph_expr(child)
        return None

    @cached_property
    def mark_attachment(self) -> Optional[GlyphExpr]:
        return self._class_after(Kind.MARK_ATTACHMENT_TYPE_KW)

    @cached_property
    def mark_filtering_set(self) -> Optional[GlyphExpr]:
        return self._class_after(Kind.USE_MARK_FILTERING_SET_KW)


@_view(Kind.SUBTABLE)
class Subtable(AstNode):
    pass


@_view(Kind.NAME_SPEC)
class NameSpec(AstNode):
    """``[platform [encoding language]] "string"`` with FEA defaults."""

    @cached_property
    def _ids(self) -> List[int]:
        return [int(number_value(t)) for t in self._tokens(Kind.NUMBER, Kind.HEX)]

    @property
    def platform_id(self) -> int:
        return self._ids[0] if self._ids else 3

    @property
    def encoding_id(self) -> int:
        if len(self._ids) >= 3:
            return self._ids[1]
        return 1 if self.platform_id == 3 else 0

    @property
    def language_id(self) -> int:
        if len(self._ids) >= 3:
            return self._ids[2]
        return 0x409 if self.platform_id == 3 else 0

    @cached_property
    def string(self) -> str:
        tok = self.node.find_token(Kind.STRING, Kind.STRING_UNTERMINATED)
        if tok is None:
            return ""
        return decode_name_string(string_value(tok), self.platform_id)


@_view(Kind.FEATURE_NAMES)
class FeatureNames(AstNode):

    @cached_property
    def names(self) -> List[NameSpec]:
        return [NameSpec(n) for n in self._nodes(Kind.NAME_SPEC)]


@_view(Kind.CV_NAME_BLOCK)
class CvNameBlock(AstNode):
    """``FeatUILabelNameID { name ...; };`` and its siblings."""

    @property
    def which(self) -> Kind:
        for tok in self.node.child_tokens():
            return tok.kind
        return Kind.ERROR

    @cached_property
    def names(self) -> List[NameSpec]:
        return [NameSpec(n) for n in self._nodes(Kind.NAME_SPEC)]


@_view(Kind.CV_PARAMETERS)
class CvParameters(AstNode):

    @cached_property
    def name_blocks(self) -> List[CvNameBlock]:
        return [CvNameBlock(n) for n in self._nodes(Kind.CV_NAME_BLOCK)]

    @cached_property
    def characters(self) -> List[int]:
        result = []
        for node in self._nodes(Kind.CV_CHARACTER):
            tok = node.find_token(Kind.HEX, Kind.NUMBER)
            if tok is not None:
                result.append(int(number_value(tok)))
        return result


@_view(Kind.SIZE_PARAMETERS)
class SizeParameters(AstNode):
    """``parameters design subfamily [start end];`` – sizes in points."""

    @cached_property
    def values(self) -> List[float]:
        # integers are decipoints, decimals are points
        result = []
        for node in self._nodes(Kind.SIGNED_NUMBER):
            value = SignedNumber(node).value
            result.append(value / 10 if isinstance(value, int) else value)
        return result

    @property
    def design_size(self) -> float:
        return self.values[0] if self.values else 0.0

    @property
    def subfamily_id(self) -> int:
        return int(round(self.values[1] * 10)) if len(self.values) > 1 else 0

    @property
    def range_start(self) -> float:
        return self.values[2] if len(self.values) > 3 else 0.0

    @property
    def range_end(self) -> float:
        return self.values[3] if len(self.values) > 3 else 0.0


@_view(Kind.SIZE_MENU_NAME)
class SizeMenuName(NameSpec):
    pass


@_view(Kind.GDEF_CLASS_DEF)
class GdefClassDef(AstNode):
    """``GlyphClassDef bases, ligatures, marks, components;``"""

    @cached_property
    def _slots(self) -> List[Optional[GlyphExpr]]:
        slots: List[Optional[GlyphExpr]] = [None, None, None, None]
        index = 0
        for child in self.node.significant():
            if isinstance(child, TokenRef) and child.kind is Kind.COMMA:
                index += 1
                continue
            expr = glyph_expr(child)
            if expr is not None and index < 4:
                slots[index] = expr
        return slots

    @property
    def bases(self) -> Optional[GlyphExpr]:
        return self._slots[0]

    @property
    def ligatures(self) -> Optional[GlyphExpr]:
        return self._slots[1]

    @property
    def marks(self) -> Optional[GlyphExpr]:
        return self._slots[2]

    @property
    def components(self) -> Optional[GlyphExpr]:
        return self._slots[3]


@_view(Kind.GDEF_ATTACH, Kind.GDEF_LIG_CARET_POS, Kind.GDEF_LIG_CARET_INDEX)
class GdefGlyphNumbers(AstNode):
    """``Attach``, ``LigatureCaretByPos`` and ``LigatureCaretByIndex``."""

    @cached_property
    def glyphs(self) -> Optional[GlyphExpr]:
        for expr in _glyph_exprs(self.node):
            return expr
        return None

    @cached_property
    def values(self) -> List[int]:
        return [int(v) for v in _numbers(self.node)]


# ════════════════════════════════════════════════════════════════════════
# §7  Rules
# ════════════════════════════════════════════════════════════════════════

@_view(Kind.SEQUENCE_ITEM)
class SequenceItem(AstNode):
    """``glyphs ['] [lookup NAME]* [value]`` – one position of a rule."""

    @cached_property
    def glyphs(self) -> Optional[GlyphExpr]:
        for expr in _glyph_exprs(self.node):
            return expr
        return None

    @property
    def marked(self) -> bool:
        return self._has(Kind.SINGLE_QUOTE)

    @cached_property
    def lookups(self) -> List[Label]:
        result = []
        for node in self._nodes(Kind.LOOKUP_REF):
            label = LookupRef(node).label
            if label is not None:
                result.append(label)
        return result

    @cached_property
    def value_record(self) -> Optional[ValueRecord]:
        node = self.node.find_node(Kind.VALUE_RECORD)
        return ValueRecord(node) if node is not None else None


class _ItemSequence(AstNode):
    """Shared backtrack/input/lookahead split of a marked glyph sequence."""

    @cached_property
    def items(self) -> List[SequenceItem]:
        return [SequenceItem(n) for n in self._nodes(Kind.SEQUENCE_ITEM)]

    @cached_property
    def _marked_indices(self) -> List[int]:
        return [i for i, item in enumerate(self.items) if item.marked]

    @property
    def is_marked(self) -> bool:
        return bool(self._marked_indices)

    @property
    def marks_contiguous(self) -> bool:
        marked = self._marked_indices
        return not marked or marked[-1] - marked[0] + 1 == len(marked)

    @property
    def backtrack(self) -> List[SequenceItem]:
        marked = self._marked_indices
        return self.items[:marked[0]] if marked else []

    @property
    def input(self) -> List[SequenceItem]:
        marked = self._marked_indices
        if not marked:
            return list(self.items)
        return self.items[marked[0]:marked[-1] + 1]

    @property
    def lookahead(self) -> List[SequenceItem]:
        marked = self._marked_indices
        return self.items[marked[-1] + 1:] if marked else []


class Rule(_ItemSequence):
    """Base view for every substitution and positioning rule."""

    @property
    def table(self) -> str:
        return "GSUB" if self.kind in GSUB_RULES else "GPOS"

    @property
    def is_contextual(self) -> bool:
        return self.kind in (Kind.GSUB_TYPE6, Kind.GSUB_TYPE8, Kind.GPOS_TYPE8)


@_view(
    Kind.GSUB_TYPE1, Kind.GSUB_TYPE2, Kind.GSUB_TYPE3, Kind.GSUB_TYPE4,
    Kind.GSUB_TYPE6, Kind.GSUB_TYPE8, Kind.GSUB_UNKNOWN,
)
class GsubRule(Rule):
    """``sub target by|from replacement;`` and its contextual forms."""

    @property
    def target(self) -> List[Optional[GlyphExpr]]:
        return [item.glyphs for item in self.input]

    @cached_property
    def _replacement_node(self) -> Optional[NodeRef]:
        return self.node.find_node(Kind.REPLACEMENT)

    @cached_property
    def replacement(self) -> List[GlyphExpr]:
        node = self._replacement_node
        return list(_glyph_exprs(node)) if node is not None else []

    @property
    def has_replacement(self) -> bool:
        return self._replacement_node is not None

    @property
    def replacement_is_null(self) -> bool:
        node = self._replacement_node
        return node is not None and node.find_token(Kind.NULL_KW) is not None

    @property
    def uses_from(self) -> bool:
        return self._has(Kind.FROM_KW)


@_view(Kind.IGNORE_CONTEXT)
class IgnoreContext(_ItemSequence):
    pass


@_view(Kind.GSUB_IGNORE, Kind.GPOS_IGNORE)
class IgnoreRule(AstNode):
    """``ignore sub|pos context, ...;``"""

    is_contextual = True

    @property
    def table(self) -> str:
        return "GSUB" if self.kind is Kind.GSUB_IGNORE else "GPOS"

    @cached_property
    def contexts(self) -> List[IgnoreContext]:
        return [IgnoreContext(n) for n in self._nodes(Kind.IGNORE_CONTEXT)]


@_view(Kind.GPOS_TYPE1)
class SinglePosRule(Rule):

    @property
    def glyphs(self) -> Optional[GlyphExpr]:
        return self.items[0].glyphs if self.items else None

    @property
    def value_record(self) -> Optional[ValueRecord]:
        return self.items[0].value_record if self.items else None


@_view(Kind.GPOS_TYPE2)
class PairPosRule(Rule):
    """``[enum] pos first [v1] second v2;``"""

    @property
    def enumerated(self) -> bool:
        return self._has(Kind.ENUM_KW) or self._has(Kind.ENUMERATE_KW)

    @property
    def first(self) -> Optional[GlyphExpr]:
        return self.items[0].glyphs

    @property
    def second(self) -> Optional[GlyphExpr]:
        return self.items[1].glyphs

    @property
    def value1(self) -> Optional[ValueRecord]:
        return self.items[0].value_record

    @property
    def value2(self) -> Optional[ValueRecord]:
        return self.items[1].value_record


@_view(Kind.ANCHOR_MARK)
class AnchorMark(AstNode):
    """``<anchor ...> mark @CLASS`` (the class is absent for NULL anchors)."""

    @cached_property
    def anchor(self) -> Optional[Anchor]:
        node = self.node.find_node(Kind.ANCHOR)
        return Anchor(node) if node is not None else None

    @cached_property
    def mark_class(self) -> Optional[ClassName]:
        tok = self.node.find_token(Kind.NAMED_GLYPH_CLASS)
        return ClassName(tok) if tok is not None else None


@_view(Kind.LIG_COMPONENT)
class LigComponent(AstNode):

    @cached_property
    def anchor_marks(self) -> List[AnchorMark]:
        return [AnchorMark(n) for n in self._nodes(Kind.ANCHOR_MARK)]


class _AttachmentRule(Rule):

    @cached_property
    def glyphs(self) -> Optional[GlyphExpr]:
        for expr in _glyph_exprs(self.node):
            return expr
        return None


@_view(Kind.GPOS_TYPE3)
class CursivePosRule(_AttachmentRule):
    """``pos cursive glyphs <entry> <exit>;``"""

    @cached_property
    def _anchors(self) -> List[Anchor]:
        return [Anchor(n) for n in self._nodes(Kind.ANCHOR)]

    @property
    def entry(self) -> Optional[Anchor]:
        return self._anchors[0] if self._anchors else None

    @property
    def exit(self) -> Optional[Anchor]:
        return self._anchors[1] if len(self._anchors) > 1 else None


@_view(Kind.GPOS_TYPE4, Kind.GPOS_TYPE6)
class MarkAttachRule(_AttachmentRule):
    """``pos base|mark glyphs <anchor> mark @M ...;``"""

    @property
    def is_mark_to_mark(self) -> bool:
        return self.kind is Kind.GPOS_TYPE6

    @cached_property
    def anchor_marks(self) -> List[AnchorMark]:
        return [AnchorMark(n) for n in self._nodes(Kind.ANCHOR_MARK)]


@_view(Kind.GPOS_TYPE5)
class MarkLigRule(_AttachmentRule):
    """``pos ligature glyphs <anchor> mark @M ligComponent ...;``"""

    @cached_property
    def components(self) -> List[LigComponent]:
        return [LigComponent(n) for n in self._nodes(Kind.LIG_COMPONENT)]


@_view(Kind.GPOS_TYPE8, Kind.GPOS_UNKNOWN)
class ChainPosRule(Rule):
    pass


def is_rule(view: AstNode) -> bool:
    return view.kind in GSUB_RULES or view.kind in GPOS_RULES
