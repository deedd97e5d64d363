"""
feac/resolver.py
================

Name resolution for a parsed compilation.

Resolution runs in three steps over the statements of the root file
(with includes spliced in):

0. Without a glyph order, an implicit glyph map is built from every glyph
   name the source uses (``.notdef`` first, then source order).
1. Collect definitions: glyph classes, mark classes, anchors, value
   records, lookups, condition sets, language systems and feature tags.
   Redefinitions are reported with both spans; the last one wins.
2. Resolve references: every rule becomes one or more resolved-rule
   values over glyph ids, stored by the rule's node key.  A rule with an
   unresolvable reference is reported at the use site and dropped.

Glyph classes are resolved lazily with a visiting stack, so forward
references work and cycles terminate with a diagnostic naming the cycle.

Provides:
- ``resolve(root, sources, glyph_order=None, options=None)``
- ``Resolution`` – symbol tables, resolved rules and statements
- symbol and resolved-rule dataclasses
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import (
    Any,
    Dict,
    FrozenSet,
    Iterator,
    List,
    Optional,
    Sequence,
    Set,
    Tuple,
    Union,
)

from feac import ast as A
from feac import tables as T
from feac.config import CompileOptions
from feac.cst import NodeRef, TokenRef
from feac.errors import Diagnostic, DiagnosticCollector, E, Label, Span
from feac.glyphs import (
    GlyphClass,
    GlyphMap,
    GlyphRangeError,
    expand_cid_range,
    expand_range,
    hyphen_splits,
)
from feac.kinds import Kind
from feac.sources import SourceMap
from feac.visitor import walk

__all__ = [
    "resolve",
    "Resolution",
    "SymbolTable",
    "GlyphClassSymbol",
    "LookupSymbol",
    "MarkClassSymbol",
    "AnchorSymbol",
    "ValueRecordSymbol",
    "ConditionSetSymbol",
    "LanguageSystemSymbol",
    "ResolvedRule",
    "SubstRule",
    "ChainRule",
    "SinglePosRule",
    "PairPosRule",
    "CursiveRule",
    "MarkAttachRule",
    "MarkLigRule",
    "implicit_glyph_map",
    "VERTICAL_FEATURES",
]

logger = logging.getLogger(__name__)

NodeKey = Tuple[int, int]

VERTICAL_FEATURES = frozenset({"vkrn", "vpal", "vhal", "valt"})


# ═══════════════════════════════════════════════════════════════════════
#  Symbols
# ═══════════════════════════════════════════════════════════════════════

@dataclass
class GlyphClassSymbol:
    name: str
    span: Span
    definition: A.GlyphClassDef
    value: Optional[GlyphClass] = None


@dataclass
class LookupSymbol:
    name: str
    span: Span
    block: A.LookupBlock
    # position among all lookup blocks, in source order
    order: int = 0

    @property
    def use_extension(self) -> bool:
        return self.block.use_extension


@dataclass
class MarkClassSymbol:
    """A mark class; ``members`` keeps glyph → anchor in definition order."""

    name: str
    span: Span
    definitions: List[A.MarkClassDef] = field(default_factory=list)
    members: Dict[int, T.Anchor] = field(default_factory=dict)

    @property
    def glyphs(self) -> GlyphClass:
        return tuple(self.members)


@dataclass
class AnchorSymbol:
    name: str
    span: Span
    value: T.Anchor


@dataclass
class ValueRecordSymbol:
    name: str
    span: Span
    value: Optional[T.ValueRecord]


@dataclass
class ConditionSetSymbol:
    name: str
    span: Span
    # axis tag -> (minimum, maximum), user coordinates
    conditions: Dict[str, Tuple[float, float]]
    definition: A.ConditionSet


@dataclass(frozen=True)
class LanguageSystemSymbol:
    script: str
    language: str
    span: Span


@dataclass
class SymbolTable:
    classes: Dict[str, GlyphClassSymbol] = field(default_factory=dict)
    lookups: Dict[str, LookupSymbol] = field(default_factory=dict)
    mark_classes: Dict[str, MarkClassSymbol] = field(default_factory=dict)
    anchors: Dict[str, AnchorSymbol] = field(default_factory=dict)
    value_records: Dict[str, ValueRecordSymbol] = field(default_factory=dict)
    condition_sets: Dict[str, ConditionSetSymbol] = field(default_factory=dict)
    language_systems: List[LanguageSystemSymbol] = field(default_factory=list)
    feature_tags: Set[str] = field(default_factory=set)


# ═══════════════════════════════════════════════════════════════════════
#  Resolved rules
# ═══════════════════════════════════════════════════════════════════════

@dataclass(frozen=True)
class ResolvedRule:
    kind: Kind
    span: Span


@dataclass(frozen=True)
class SubstRule(ResolvedRule):
    """Non-contextual substitution (GSUB 1-4, and unclassified shapes).

    ``target`` and ``replacement`` hold one glyph class per position; for
    ``from`` rules the single replacement class lists the alternates.
    """

    target: Tuple[GlyphClass, ...]
    replacement: Tuple[GlyphClass, ...]
    target_is_class: Tuple[bool, ...]
    null: bool = False


@dataclass(frozen=True)
class ChainRule(ResolvedRule):
    """Contextual rule, ``ignore`` context or reverse chaining rule."""

    table: str
    backtrack: Tuple[GlyphClass, ...]
    input: Tuple[GlyphClass, ...]
    lookahead: Tuple[GlyphClass, ...]
    # per input position, the named lookups applied there
    lookups: Tuple[Tuple[str, ...], ...] = ()
    replacement: Tuple[GlyphClass, ...] = ()
    has_replacement: bool = False
    null: bool = False
    values: Tuple[Optional[T.ValueRecord], ...] = ()
    ignore: bool = False
    marks_contiguous: bool = True
    marked: bool = True

    @property
    def reverse(self) -> bool:
        return self.kind is Kind.GSUB_TYPE8


@dataclass(frozen=True)
class SinglePosRule(ResolvedRule):
    glyphs: GlyphClass
    value: T.ValueRecord


@dataclass(frozen=True)
class PairPosRule(ResolvedRule):
    first: GlyphClass
    second: GlyphClass
    value1: Optional[T.ValueRecord]
    value2: Optional[T.ValueRecord]
    first_is_class: bool
    second_is_class: bool
    enumerated: bool = False

    @property
    def is_class_pair(self) -> bool:
        return (self.first_is_class or self.second_is_class) and not self.enumerated


@dataclass(frozen=True)
class CursiveRule(ResolvedRule):
    glyphs: GlyphClass
    entry: Optional[T.Anchor]
    exit: Optional[T.Anchor]


@dataclass(frozen=True)
class MarkAttachRule(ResolvedRule):
    """``pos base`` and ``pos mark``; ``marks`` pairs anchors with mark classes."""

    bases: GlyphClass
    marks: Tuple[Tuple[Optional[T.Anchor], Optional[str]], ...]


@dataclass(frozen=True)
class MarkLigRule(ResolvedRule):
    ligatures: GlyphClass
    components: Tuple[Tuple[Tuple[Optional[T.Anchor], Optional[str]], ...], ...]


Resolved = Union[SubstRule, ChainRule, SinglePosRule, PairPosRule, CursiveRule, MarkAttachRule, MarkLigRule]


@dataclass
class Resolution:
    """Everything later stages need to know about names."""

    glyph_map: GlyphMap
    symbols: SymbolTable
    rules: Dict[NodeKey, Tuple[Resolved, ...]] = field(default_factory=dict)
    # resolved glyph classes of non-rule statements (lookupflag, GDEF)
    statements: Dict[NodeKey, Any] = field(default_factory=dict)
    dropped: Set[NodeKey] = field(default_factory=set)

    def rules_of(self, view: A.AstNode) -> Tuple[Resolved, ...]:
        return self.rules.get(view.key, ())

    def glyph_names(self, glyphs: Sequence[int]) -> List[str]:
        return [self.glyph_map.name(g) for g in glyphs]


# ═══════════════════════════════════════════════════════════════════════
#  Pass 0: implicit glyph map
# ═══════════════════════════════════════════════════════════════════════

def _glyph_names_in(node: NodeRef) -> Iterator[str]:
    for child in node.children():
        if isinstance(child, TokenRef):
            if child.kind is Kind.GLYPH_NAME:
                yield child.text
            continue
        if child.kind is Kind.ESCAPED_GLYPH:
            yield A.EscapedGlyph(child).name
        elif child.kind is Kind.CID:
            yield A.Cid(child).name
        elif child.kind is Kind.GLYPH_RANGE:
            yield from _range_names(A.GlyphRange(child))
        else:
            yield from _glyph_names_in(child)


def _range_names(view: A.GlyphRange) -> List[str]:
    start, end = view.start, view.end
    if isinstance(start, A.Cid) and isinstance(end, A.Cid):
        try:
            return ["cid%05d" % c for c in expand_cid_range(start.cid, end.cid)]
        except GlyphRangeError:
            return [start.name, end.name]
    names = [e.name for e in (start, end) if isinstance(e, (A.GlyphName, A.EscapedGlyph))]
    if len(names) == 2:
        try:
            return expand_range(names[0], names[1])
        except GlyphRangeError:
            pass
    return names


def implicit_glyph_map(sources: SourceMap) -> GlyphMap:
    """Glyph map of every name used, in file discovery then source order."""
    names: List[str] = []
    for source in sources:
        if source.tree is not None:
            names.extend(_glyph_names_in(source.tree.root))
    return GlyphMap.implicit(names)


# ═══════════════════════════════════════════════════════════════════════
#  Resolver
# ═══════════════════════════════════════════════════════════════════════

class _Resolver:

    def __init__(
        self,
        root: A.SourceFile,
        sources: SourceMap,
        glyph_map: Optional[GlyphMap],
        options: CompileOptions,
    ) -> None:
        self.root = root
        self.sources = sources
        self.options = options
        self.explicit_glyphs = glyph_map is not None
        self.glyph_map = glyph_map if glyph_map is not None else implicit_glyph_map(sources)
        self.diagnostics = DiagnosticCollector()
        self.symbols = SymbolTable()
        self.resolution = Resolution(self.glyph_map, self.symbols)
        self._visiting: List[str] = []
        self._reported_cycles: Set[FrozenSet[str]] = set()
        self._broken: Set[str] = set()
        self._failed = False

    def run(self) -> Resolution:
        statements = list(walk(self.root, self.sources))
        self._collect(statements)
        logger.debug(
            "collected %d classes, %d mark classes, %d lookups",
            len(self.symbols.classes),
            len(self.symbols.mark_classes),
            len(self.symbols.lookups),
        )
        self._resolve(statements)
        logger.debug(
            "resolved %d rules, dropped %d",
            len(self.resolution.rules),
            len(self.resolution.dropped),
        )
        return self.resolution

    # ── pass 1 ─────────────────────────────────────────────────────────

    def _duplicate(self, what: str, span: Span, previous: Span, *, always_error: bool = False) -> None:
        self.diagnostics.report(
            E.DUPLICATE_LOOKUP if always_error else E.DUPLICATE_DEFINITION,
            f"duplicate definition of {what}",
            span,
            severity=None if always_error else self.options.duplicate_definition_severity,
            labels=(Label(previous, "previous definition here"),),
        )

    def _collect(self, statements: Sequence[Tuple[A.AstNode, Tuple[A.AstNode, ...]]]) -> None:
        symbols = self.symbols
        lookup_count = 0
        for statement, _parents in statements:
            if isinstance(statement, A.GlyphClassDef) and statement.name is not None:
                name = statement.name.name
                previous = symbols.classes.get(name) or symbols.mark_classes.get(name)
                if previous is not None:
                    self._duplicate(f"glyph class '@{name}'", statement.name.span, previous.span)
                symbols.classes[name] = GlyphClassSymbol(name, statement.name.span, statement)
            elif isinstance(statement, A.MarkClassDef) and statement.class_name is not None:
                name = statement.class_name.name
                if name in symbols.classes:
                    self._duplicate(
                        f"glyph class '@{name}' as a mark class",
                        statement.class_name.span,
                        symbols.classes[name].span,
                    )
                mark_class = symbols.mark_classes.setdefault(
                    name, MarkClassSymbol(name, statement.class_name.span)
                )
                mark_class.definitions.append(statement)
            elif isinstance(statement, A.AnchorDef) and statement.name is not None:
                name = statement.name.value
                if name in symbols.anchors:
                    self._duplicate(f"anchor '{name}'", statement.name.span, symbols.anchors[name].span)
                value = T.Anchor(statement.x, statement.y, statement.contourpoint)
                symbols.anchors[name] = AnchorSymbol(name, statement.name.span, value)
            elif isinstance(statement, A.ValueRecordDef) and statement.name is not None:
                name = statement.name.value
                if name in symbols.value_records:
                    self._duplicate(
                        f"value record '{name}'", statement.name.span, symbols.value_records[name].span
                    )
                value = self._literal_value(statement.value, vertical=False)
                symbols.value_records[name] = ValueRecordSymbol(name, statement.name.span, value)
            elif isinstance(statement, A.LookupBlock) and statement.label is not None:
                name = statement.label.value
                if name in symbols.lookups:
                    self._duplicate(
                        f"lookup '{name}'",
                        statement.label.span,
                        symbols.lookups[name].span,
                        always_error=True,
                    )
                    continue
                symbols.lookups[name] = LookupSymbol(name, statement.label.span, statement, lookup_count)
                lookup_count += 1
            elif isinstance(statement, A.ConditionSet) and statement.label is not None:
                name = statement.label.value
                if name in symbols.condition_sets:
                    self._duplicate(
                        f"condition set '{name}'", statement.label.span, symbols.condition_sets[name].span
                    )
                conditions = {
                    c.tag.value.strip(): (c.minimum, c.maximum)
                    for c in statement.conditions
                    if c.tag is not None
                }
                symbols.condition_sets[name] = ConditionSetSymbol(
                    name, statement.label.span, conditions, statement
                )
            elif isinstance(statement, A.LanguageSystem):
                if statement.script is None or statement.language is None:
                    continue
                entry = LanguageSystemSymbol(
                    statement.script.value, statement.language.value, statement.span
                )
                for existing in symbols.language_systems:
                    if (existing.script, existing.language) == (entry.script, entry.language):
                        self.diagnostics.report(
                            E.DUPLICATE_LANGUAGE_SYSTEM,
                            f"duplicate languagesystem '{entry.script.strip()} {entry.language.strip()}'",
                            statement.span,
                            labels=(Label(existing.span, "first declared here"),),
                        )
                        break
                else:
                    symbols.language_systems.append(entry)
            elif isinstance(statement, A.FeatureBlock) and statement.tag is not None:
                symbols.feature_tags.add(statement.tag.value)

    # ── glyph expressions ──────────────────────────────────────────────

    def _fail(self, code, message: str, span: Span, **kwargs) -> None:
        self.diagnostics.report(code, message, span, **kwargs)
        self._failed = True

    def _glyph(self, name: str, span: Span) -> Optional[int]:
        gid = self.glyph_map.get(name)
        if gid is None:
            self._fail(E.UNDEFINED_GLYPH, f"glyph '{name}' is not in the glyph order", span)
        return gid

    def glyphs(self, expr: Optional[A.GlyphExpr], *, in_class: bool = False) -> GlyphClass:
        """Glyph ids of *expr*; errors are reported and yield no glyphs."""
        if expr is None:
            return ()
        if isinstance(expr, (A.GlyphName, A.EscapedGlyph)):
            gid = self.glyph_map.get(expr.name)
            if gid is not None:
                return (gid,)
            if in_class and isinstance(expr, A.GlyphName) and self.explicit_glyphs and "-" in expr.name:
                return self._hyphenated(expr)
            self._glyph(expr.name, expr.span)
            return ()
        if isinstance(expr, A.Cid):
            gid = self.glyph_map.cid(expr.cid)
            if gid is None:
                self._fail(E.UNDEFINED_GLYPH, f"CID {expr.cid} is not in the glyph order", expr.span)
                return ()
            return (gid,)
        if isinstance(expr, A.ClassName):
            return self._class_reference(expr)
        if isinstance(expr, A.GlyphRange):
            return self._range(expr)
        result: List[int] = []
        for item in expr.items:
            result.extend(self.glyphs(item, in_class=True))
        return tuple(result)

    def _hyphenated(self, expr: A.GlyphName) -> GlyphClass:
        splits = hyphen_splits(expr.name, self.glyph_map)
        if not splits:
            self._glyph(expr.name, expr.span)
            return ()
        if len(splits) > 1:
            readings = ", ".join(f"'{a} - {b}'" for a, b in splits)
            self._fail(
                E.AMBIGUOUS_RANGE,
                f"'{expr.name}' is not a glyph and can be read as several ranges: {readings}",
                expr.span,
                hint="put spaces around the hyphen of the intended range",
            )
            return ()
        start, end = splits[0]
        return self._named_range(start, end, expr.span)

    def _named_range(self, start: str, end: str, span: Span) -> GlyphClass:
        try:
            names = expand_range(start, end)
        except GlyphRangeError as exc:
            self._fail(E.INVALID_RANGE, str(exc), span)
            return ()
        result = []
        for name in names:
            gid = self._glyph(name, span)
            if gid is not None:
                result.append(gid)
        return tuple(result)

    def _range(self, expr: A.GlyphRange) -> GlyphClass:
        start, end = expr.start, expr.end
        if isinstance(start, A.Cid) and isinstance(end, A.Cid):
            try:
                cids = expand_cid_range(start.cid, end.cid)
            except GlyphRangeError as exc:
                self._fail(E.INVALID_RANGE, str(exc), expr.span)
                return ()
            result = []
            for cid in cids:
                gid = self.glyph_map.cid(cid)
                if gid is None:
                    self._fail(E.UNDEFINED_GLYPH, f"CID {cid} is not in the glyph order", expr.span)
                else:
                    result.append(gid)
            return tuple(result)
        if isinstance(start, (A.GlyphName, A.EscapedGlyph)) and isinstance(end, (A.GlyphName, A.EscapedGlyph)):
            return self._named_range(start.name, end.name, expr.span)
        self._fail(E.INVALID_RANGE, "range ends must both be glyph names or both CIDs", expr.span)
        return ()

    def _class_reference(self, expr: A.ClassName) -> GlyphClass:
        symbol = self.symbols.classes.get(expr.name)
        if symbol is not None:
            return self.class_value(symbol, expr.span)
        mark_class = self.symbols.mark_classes.get(expr.name)
        if mark_class is not None:
            return mark_class.glyphs
        self._fail(E.UNDEFINED_CLASS, f"undefined glyph class '@{expr.name}'", expr.span)
        return ()

    def class_value(self, symbol: GlyphClassSymbol, use: Span) -> GlyphClass:
        if symbol.value is not None:
            return symbol.value
        if symbol.name in self._visiting:
            cycle = self._visiting[self._visiting.index(symbol.name):] + [symbol.name]
            members = frozenset(cycle)
            if members not in self._reported_cycles:
                self._reported_cycles.add(members)
                labels = tuple(
                    Label(self.symbols.classes[name].span, f"'@{name}' defined here")
                    for name in cycle[:-1]
                )
                self.diagnostics.report(
                    E.CLASS_CYCLE,
                    "glyph class cycle: " + " -> ".join(f"@{name}" for name in cycle),
                    use,
                    labels=labels,
                )
            self._broken.update(cycle)
            return ()
        if len(self._visiting) >= self.options.max_class_depth:
            self.diagnostics.report(
                E.CLASS_TOO_DEEP,
                f"glyph class '@{symbol.name}' is nested deeper than "
                f"{self.options.max_class_depth} levels",
                use,
            )
            self._broken.add(symbol.name)
            symbol.value = ()
            return ()
        self._visiting.append(symbol.name)
        failed, self._failed = self._failed, False
        try:
            value = self.glyphs(symbol.definition.value, in_class=True)
        finally:
            self._visiting.pop()
            if self._failed:
                self._broken.add(symbol.name)
            self._failed = failed
        if symbol.value is None:
            symbol.value = value
        return symbol.value

    # ── anchors and value records ──────────────────────────────────────

    @staticmethod
    def _device(view: Optional[A.Device]) -> Optional[T.Device]:
        if view is None or view.is_null or not view.entries:
            return None
        return tuple(sorted(view.entries))

    def anchor(self, view: Optional[A.Anchor]) -> Optional[T.Anchor]:
        if view is None or view.is_null:
            return None
        if view.name is not None:
            symbol = self.symbols.anchors.get(view.name.value)
            if symbol is None:
                self._fail(E.UNDEFINED_ANCHOR, f"undefined anchor '{view.name.value}'", view.name.span)
                return None
            return symbol.value
        devices = view.devices
        return T.Anchor(
            view.x,
            view.y,
            view.contourpoint,
            self._device(devices[0]) if devices else None,
            self._device(devices[1]) if len(devices) > 1 else None,
        )

    def _literal_value(self, view: Optional[A.ValueRecord], *, vertical: bool) -> Optional[T.ValueRecord]:
        if view is None or view.is_null or view.name is not None:
            return None
        numbers = view.numbers
        if len(numbers) == 1:
            if vertical:
                return T.ValueRecord(y_advance=numbers[0])
            return T.ValueRecord(x_advance=numbers[0])
        numbers = (numbers + [0, 0, 0, 0])[:4]
        devices = [self._device(d) for d in view.devices] + [None] * 4
        return T.ValueRecord(
            numbers[0], numbers[1], numbers[2], numbers[3],
            devices[0], devices[1], devices[2], devices[3],
        )

    def value(self, view: Optional[A.ValueRecord], *, vertical: bool) -> Optional[T.ValueRecord]:
        if view is not None and view.name is not None and not view.is_null:
            symbol = self.symbols.value_records.get(view.name.value)
            if symbol is None:
                self._fail(
                    E.UNDEFINED_VALUE_RECORD,
                    f"undefined value record '{view.name.value}'",
                    view.name.span,
                )
                return None
            return symbol.value
        return self._literal_value(view, vertical=vertical)

    # ── pass 2 ─────────────────────────────────────────────────────────

    def _resolve(self, statements: Sequence[Tuple[A.AstNode, Tuple[A.AstNode, ...]]]) -> None:
        for symbol in list(self.symbols.classes.values()):
            self.class_value(symbol, symbol.span)
            if symbol.value == () and symbol.name not in self._broken:
                self.diagnostics.report(
                    E.EMPTY_CLASS, f"glyph class '@{symbol.name}' is empty", symbol.span
                )
        for mark_class in self.symbols.mark_classes.values():
            self._fill_mark_class(mark_class)

        for statement, parents in statements:
            feature = next((p for p in reversed(parents) if isinstance(p, A.FeatureBlock)), None)
            vertical = (
                feature is not None
                and feature.tag is not None
                and feature.tag.value in VERTICAL_FEATURES
            )
            self._failed = False
            if A.is_rule(statement):
                resolved = self._rule(statement, vertical)
                if self._failed:
                    self.resolution.dropped.add(statement.key)
                else:
                    self.resolution.rules[statement.key] = resolved
            else:
                self._statement(statement)

    def _fill_mark_class(self, mark_class: MarkClassSymbol) -> None:
        seen: Dict[int, Span] = {}
        for definition in mark_class.definitions:
            self._failed = False
            glyphs = self.glyphs(definition.glyphs)
            anchor = self.anchor(definition.anchor)
            if anchor is None and not self._failed:
                self._fail(E.INVALID_RULE, "mark class anchor must not be NULL", definition.span)
            if self._failed or anchor is None:
                continue
            for gid in glyphs:
                if gid in seen:
                    self.diagnostics.report(
                        E.MARK_CLASS_CONFLICT,
                        f"glyph '{self.glyph_map.name(gid)}' is already in mark class '@{mark_class.name}'",
                        definition.span,
                        labels=(Label(seen[gid], "first added here"),),
                    )
                    continue
                seen[gid] = definition.span
                mark_class.members[gid] = anchor

    def _statement(self, statement: A.AstNode) -> None:
        result = self.resolution.statements
        if isinstance(statement, A.LookupFlag):
            attach = statement.mark_attachment
            filtering = statement.mark_filtering_set
            result[statement.key] = (
                self.glyphs(attach) if attach is not None else None,
                self.glyphs(filtering) if filtering is not None else None,
            )
        elif isinstance(statement, A.GdefClassDef):
            result[statement.key] = tuple(
                self.glyphs(slot) if slot is not None else None
                for slot in (statement.bases, statement.ligatures, statement.marks, statement.components)
            )
        elif isinstance(statement, A.GdefGlyphNumbers):
            result[statement.key] = self.glyphs(statement.glyphs)
        elif isinstance(statement, A.LookupRef):
            self._lookup_name(statement.label)
        elif isinstance(statement, A.FeatureRef) and statement.tag is not None:
            if statement.tag.value not in self.symbols.feature_tags:
                self._fail(
                    E.UNDEFINED_FEATURE,
                    f"feature '{statement.tag.value.strip()}' is not defined",
                    statement.tag.span,
                )
        elif isinstance(statement, A.VariationBlock) and statement.condition_set is not None:
            name = statement.condition_set.value
            if name not in self.symbols.condition_sets:
                self._fail(
                    E.UNDEFINED_CONDITION_SET,
                    f"undefined condition set '{name}'",
                    statement.condition_set.span,
                )

    def _lookup_name(self, label: Optional[A.Label]) -> Optional[str]:
        if label is None:
            return None
        if label.value not in self.symbols.lookups:
            self._fail(E.UNDEFINED_LOOKUP, f"undefined lookup '{label.value}'", label.span)
            return None
        return label.value

    def _mark_class_name(self, expr: Optional[A.ClassName]) -> Optional[str]:
        if expr is None:
            return None
        if expr.name not in self.symbols.mark_classes:
            self._fail(E.UNDEFINED_MARK_CLASS, f"undefined mark class '@{expr.name}'", expr.span)
            return None
        return expr.name

    def _anchor_marks(self, items: Sequence[A.AnchorMark]) -> Tuple[Tuple[Optional[T.Anchor], Optional[str]], ...]:
        return tuple((self.anchor(item.anchor), self._mark_class_name(item.mark_class)) for item in items)

    def _classes(self, items: Sequence[A.SequenceItem]) -> Tuple[GlyphClass, ...]:
        return tuple(self.glyphs(item.glyphs) for item in items)

    def _rule(self, rule: A.AstNode, vertical: bool) -> Tuple[Resolved, ...]:
        kind = rule.kind
        span = rule.span
        if isinstance(rule, A.IgnoreRule):
            return tuple(
                ChainRule(
                    kind,
                    context.span,
                    rule.table,
                    self._classes(context.backtrack),
                    self._classes(context.input),
                    self._classes(context.lookahead),
                    ignore=True,
                    marks_contiguous=context.marks_contiguous,
                    marked=context.is_marked,
                )
                for context in rule.contexts
            )
        if isinstance(rule, A.GsubRule):
            replacement = tuple(self.glyphs(expr) for expr in rule.replacement)
            if kind in (Kind.GSUB_TYPE6, Kind.GSUB_TYPE8):
                return (ChainRule(
                    kind,
                    span,
                    "GSUB",
                    self._classes(rule.backtrack),
                    self._classes(rule.input),
                    self._classes(rule.lookahead),
                    lookups=tuple(
                        tuple(filter(None, (self._lookup_name(label) for label in item.lookups)))
                        for item in rule.input
                    ),
                    replacement=replacement,
                    has_replacement=rule.has_replacement,
                    null=rule.replacement_is_null,
                    marks_contiguous=rule.marks_contiguous,
                    marked=rule.is_marked,
                ),)
            return (SubstRule(
                kind,
                span,
                self._classes(rule.input),
                replacement,
                tuple(bool(expr is not None and expr.is_class) for expr in rule.target),
                rule.replacement_is_null,
            ),)
        if isinstance(rule, A.SinglePosRule):
            return (SinglePosRule(
                kind,
                span,
                self.glyphs(rule.glyphs),
                self.value(rule.value_record, vertical=vertical) or T.ValueRecord(),
            ),)
        if isinstance(rule, A.PairPosRule):
            if rule.value1 is None:
                # "pos a b 10;" adjusts the first glyph
                value1 = self.value(rule.value2, vertical=vertical)
                value2 = None
            else:
                value1 = self.value(rule.value1, vertical=vertical)
                value2 = self.value(rule.value2, vertical=vertical)
            first, second = rule.first, rule.second
            return (PairPosRule(
                kind,
                span,
                self.glyphs(first),
                self.glyphs(second),
                value1,
                value2,
                bool(first is not None and first.is_class),
                bool(second is not None and second.is_class),
                rule.enumerated,
            ),)
        if isinstance(rule, A.CursivePosRule):
            return (CursiveRule(
                kind, span, self.glyphs(rule.glyphs), self.anchor(rule.entry), self.anchor(rule.exit)
            ),)
        if isinstance(rule, A.MarkAttachRule):
            return (MarkAttachRule(
                kind, span, self.glyphs(rule.glyphs), self._anchor_marks(rule.anchor_marks)
            ),)
        if isinstance(rule, A.MarkLigRule):
            return (MarkLigRule(
                kind,
                span,
                self.glyphs(rule.glyphs),
                tuple(self._anchor_marks(c.anchor_marks) for c in rule.components),
            ),)
        if isinstance(rule, A.ChainPosRule):
            return (ChainRule(
                kind,
                span,
                "GPOS",
                self._classes(rule.backtrack),
                self._classes(rule.input),
                self._classes(rule.lookahead),
                lookups=tuple(
                    tuple(filter(None, (self._lookup_name(label) for label in item.lookups)))
                    for item in rule.input
                ),
                values=tuple(self.value(item.value_record, vertical=vertical) for item in rule.input),
                marks_contiguous=rule.marks_contiguous,
                marked=rule.is_marked,
            ),)
        return ()


def resolve(
    root: A.SourceFile,
    sources: SourceMap,
    glyph_order: Optional[Sequence[str]] = None,
    options: Optional[CompileOptions] = None,
) -> Tuple[Resolution, List[Diagnostic]]:
    """Resolve every name of the compilation rooted at *root*.

    Each call starts from fresh symbol tables, so resolving the same tree
    twice gives equal results and equal diagnostics.
    """
    glyph_map = GlyphMap(glyph_order) if glyph_order is not None else None
    resolver = _Resolver(root, sources, glyph_map, options or CompileOptions())
    resolution = resolver.run()
    return resolution, list(resolver.diagnostics)
