"""
feac/backend.py
===============

Table generation: turns the lookup plan into GSUB, GPOS and GDEF.

Provides:
- ``compile_tables(root, sources, resolution, plan, validation, options)``
  → ``(CompiledTables, diagnostics)``
- ``CompiledTables`` – the compiled model; ``to_fonttools()`` lowers it

Steps
-----
1. Number the lookups of each table: ``aalt`` lookups first, then the
   planned lookups in creation order.
2. Encode each lookup's rules into subtables (formats are picked by the
   pure functions of :mod:`feac.tables`) and store them in the table's
   subtable pool.  Equal subtables share one pool slot.
3. Build feature records, language systems and feature variations.
4. Build GDEF: glyph classes (declared or inferred), attachment points,
   ligature carets, mark attachment classes and mark glyph sets.

A rule the binary format cannot express is an error at the rule's span;
the table it belongs to is then withheld.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Dict, Iterator, List, Optional, Set, Tuple

from fontTools.varLib.models import normalizeValue

from feac import ast as A
from feac import otl
from feac import tables as T
from feac.config import CompileOptions
from feac.errors import CompilerBug, Diagnostic, DiagnosticCollector, E, Label, Span
from feac.glyphs import GlyphClass
from feac.kinds import Kind
from feac.lookups import FeatureKey, LookupPlan, PlannedLookup, PlannedRule, rule_entries
from feac.resolver import (
    ChainRule,
    ConditionSetSymbol,
    CursiveRule,
    MarkAttachRule,
    MarkLigRule,
    PairPosRule,
    Resolution,
    Resolved,
    SinglePosRule,
    SubstRule,
)
from feac.sources import SourceMap
from feac.validator import Validation
from feac.visitor import walk

__all__ = ["CompiledTables", "compile_tables"]

logger = logging.getLogger(__name__)

_LAYOUT_TAGS = ("GSUB", "GPOS")


@dataclass(frozen=True)
class CompiledTables:
    """The compiled tables of one feature file.

    A table is None when nothing was compiled into it, or when the
    backend reported an error for it.
    """

    glyph_order: Tuple[str, ...]
    gsub: Optional[T.LayoutTable] = None
    gpos: Optional[T.LayoutTable] = None
    gdef: Optional[T.GdefTable] = None
    names: Tuple[T.NameRecord, ...] = ()
    axes: Tuple[str, ...] = ()

    def _table(self, tag: str) -> Any:
        return {"GSUB": self.gsub, "GPOS": self.gpos, "GDEF": self.gdef}.get(tag)

    def __getitem__(self, tag: str) -> Any:
        table = self._table(tag)
        if table is None:
            raise KeyError(tag)
        return table

    def __contains__(self, tag: object) -> bool:
        return isinstance(tag, str) and self._table(tag) is not None

    @property
    def tags(self) -> List[str]:
        return [tag for tag in ("GDEF", "GPOS", "GSUB") if tag in self]

    def to_fonttools(self) -> Dict[str, Any]:
        """``{tag: fontTools table}`` for every compiled table (and ``name``)."""
        return otl.build_tables(self)


# ═══════════════════════════════════════════════════════════════════════
#  Per-table state
# ═══════════════════════════════════════════════════════════════════════

@dataclass
class _TableBuilder:
    tag: str
    deduplicate: bool
    lookups: List[T.Lookup] = field(default_factory=list)
    subtables: List[T.Subtable] = field(default_factory=list)
    pool: Dict[T.Subtable, int] = field(default_factory=dict)
    shared: int = 0
    failed: bool = False

    def add_subtable(self, subtable: T.Subtable) -> int:
        if self.deduplicate:
            index = self.pool.get(subtable)
            if index is not None:
                self.shared += 1
                return index
        index = len(self.subtables)
        self.subtables.append(subtable)
        self.pool.setdefault(subtable, index)
        return index


def _fits_int16(value: int) -> bool:
    return -0x8000 <= value <= 0x7FFF


def _coverages(classes: Tuple[GlyphClass, ...]) -> Tuple[T.Coverage, ...]:
    return tuple(T.Coverage.of(glyphs) for glyphs in classes)


# ═══════════════════════════════════════════════════════════════════════
#  Backend
# ═══════════════════════════════════════════════════════════════════════

class _Backend:

    def __init__(
        self,
        root: A.SourceFile,
        sources: SourceMap,
        resolution: Resolution,
        plan: LookupPlan,
        validation: Validation,
        options: CompileOptions,
    ) -> None:
        self.root = root
        self.sources = sources
        self.resolution = resolution
        self.plan = plan
        self.validation = validation
        self.options = options
        self.diagnostics = DiagnosticCollector()
        self.builders = {tag: _TableBuilder(tag, options.deduplicate_subtables) for tag in _LAYOUT_TAGS}
        # planned lookup index -> lookup index within its table
        self.indices: Dict[int, int] = {}
        self.aalt_count = 0
        self.attach_classes: Dict[GlyphClass, int] = {}
        self.attach_owner: Dict[int, int] = {}
        self.filtering_sets: Dict[GlyphClass, int] = {}
        self.gdef_failed = False
        self.names: List[T.NameRecord] = []
        self.next_name_id = options.first_name_id
        self.params: Dict[str, T.FeatureParams] = {}

    def run(self) -> CompiledTables:
        self._report_unsupported()
        gsub = self.builders["GSUB"]
        for lookup_type, subtable in self._aalt_subtables():
            gsub.lookups.append(T.Lookup(lookup_type, 0, (gsub.add_subtable(subtable),)))
        self.aalt_count = len(gsub.lookups)
        kept = self._number_lookups()
        for lookup in kept:
            self._build_lookup(lookup)
        self._feature_params()
        layout = {tag: self._layout_table(tag) for tag in _LAYOUT_TAGS}
        gdef = self._gdef()
        for builder in self.builders.values():
            logger.info(
                "%s: %d lookups, %d subtables",
                builder.tag,
                len(builder.lookups),
                len(builder.subtables),
            )
            if builder.shared:
                logger.debug("%s: %d subtables shared after deduplication", builder.tag, builder.shared)
        return CompiledTables(
            glyph_order=tuple(self.resolution.glyph_map.names),
            gsub=layout["GSUB"],
            gpos=layout["GPOS"],
            gdef=gdef,
            names=tuple(self.names),
            axes=tuple(self.options.axes),
        )

    # ── diagnostics ────────────────────────────────────────────────────

    def _error(self, table: str, code, message: str, span: Span, **kwargs) -> None:
        self.diagnostics.report(code, message, span, **kwargs)
        self.builders[table].failed = True

    def _report_unsupported(self) -> None:
        for planned in self.plan.unsupported:
            table = getattr(planned.view, "table", "GSUB")
            rule = planned.resolved[0] if planned.resolved else None
            if isinstance(rule, SubstRule):
                self._error(
                    table,
                    E.UNSUPPORTED_RULE,
                    f"substituting {len(rule.target)} glyphs by {len(rule.replacement)} glyphs "
                    "has no GSUB lookup type",
                    planned.span,
                    hint="split it into a ligature and a multiple substitution",
                )
            else:
                self._error(table, E.UNSUPPORTED_RULE, f"this rule has no {table} lookup type", planned.span)

    def _check_device(self, table: str, device: Optional[T.Device], span: Span) -> None:
        for size, delta in device or ():
            if not (0 <= size <= 0xFFFF and -128 <= delta <= 127):
                self._error(
                    table, E.VALUE_OUT_OF_RANGE, f"device entry <{size} {delta}> is out of range", span
                )
                return

    def _check_value(self, table: str, value: Optional[T.ValueRecord], span: Span) -> None:
        if value is None:
            return
        for name, number in value.fields().items():
            if isinstance(number, int):
                if not _fits_int16(number):
                    self._error(
                        table,
                        E.VALUE_OUT_OF_RANGE,
                        f"{name.replace('_', ' ')} {number} does not fit in 16 bits",
                        span,
                    )
            else:
                self._check_device(table, number, span)

    def _check_anchor(self, table: str, anchor: Optional[T.Anchor], span: Span) -> None:
        if anchor is None:
            return
        for coordinate in (anchor.x, anchor.y):
            if not _fits_int16(coordinate):
                self._error(
                    table, E.VALUE_OUT_OF_RANGE, f"anchor coordinate {coordinate} does not fit in 16 bits", span
                )
        if anchor.contourpoint is not None and not 0 <= anchor.contourpoint <= 0xFFFF:
            self._error(table, E.VALUE_OUT_OF_RANGE, f"contour point {anchor.contourpoint} is out of range", span)
        self._check_device(table, anchor.x_device, span)
        self._check_device(table, anchor.y_device, span)

    # ── lookup numbering ───────────────────────────────────────────────

    def _kept(self, lookup: PlannedLookup) -> bool:
        dropped = self.validation.dropped_lookups
        if lookup.index in dropped:
            return False
        return lookup.inline_parent is None or lookup.inline_parent not in dropped

    def _number_lookups(self) -> List[PlannedLookup]:
        counters = {"GSUB": self.aalt_count, "GPOS": 0}
        kept = []
        for lookup in self.plan.lookups:
            if not self._kept(lookup):
                continue
            self.indices[lookup.index] = counters[lookup.table]
            counters[lookup.table] += 1
            kept.append(lookup)
        return kept

    def _feature_lookups(self, tag: str) -> List[int]:
        """Planned lookups registered for feature *tag*, in first-use order."""
        result: List[int] = []
        for key, indices in self.plan.features.items():
            if key[2] == tag:
                result.extend(i for i in indices if i not in result)
        return result

    # ── aalt ───────────────────────────────────────────────────────────

    def _aalt_subtables(self) -> List[Tuple[int, T.Subtable]]:
        """Single and alternate substitutions of the ``aalt`` feature.

        Alternates are gathered from aalt's own rules first, then from the
        referenced features in the order they are referenced.  Glyphs with
        one alternate go to a single substitution, the rest to an
        alternate substitution.
        """
        aalt = self.plan.aalt
        if aalt is None:
            return []
        alternates: Dict[int, List[int]] = {}

        def add(glyph: int, values: Tuple[int, ...]) -> None:
            existing = alternates.setdefault(glyph, [])
            for value in values:
                if value not in existing:
                    existing.append(value)

        for planned in aalt.rules:
            for rule in planned.resolved:
                lookup_type = 1 if rule.kind is Kind.GSUB_TYPE1 else 3
                for glyph, value in rule_entries(rule, lookup_type):
                    add(glyph, (value,) if lookup_type == 1 else value)
        for reference in aalt.features:
            if reference.tag is None:
                continue
            for index in self._feature_lookups(reference.tag.value):
                lookup = self.plan.lookups[index]
                if lookup.table != "GSUB" or lookup.lookup_type not in (1, 3) or not self._kept(lookup):
                    continue
                for _, rule in self._rules(lookup):
                    for glyph, value in rule_entries(rule, lookup.lookup_type):
                        add(glyph, (value,) if lookup.lookup_type == 1 else value)

        single = {glyph: values[0] for glyph, values in alternates.items() if len(values) == 1}
        multiple = {glyph: values for glyph, values in alternates.items() if len(values) > 1}
        result: List[Tuple[int, T.Subtable]] = []
        if single:
            result.append((1, T.SingleSubst.of(single)))
        if multiple:
            result.append((3, T.AlternateSubst.of(multiple)))
        return result

    # ── lookups ────────────────────────────────────────────────────────

    @staticmethod
    def _rules(lookup: PlannedLookup) -> Iterator[Tuple[PlannedRule, Resolved]]:
        for planned in lookup.rules:
            for rule in planned.resolved:
                yield planned, rule

    def _build_lookup(self, lookup: PlannedLookup) -> None:
        builder = self.builders[lookup.table]
        if len(builder.lookups) != self.indices[lookup.index]:
            raise CompilerBug(f"{lookup.describe()} built out of order")
        encoders = {
            ("GSUB", 1): self._single_subst,
            ("GSUB", 2): self._multiple_subst,
            ("GSUB", 3): self._alternate_subst,
            ("GSUB", 4): self._ligature_subst,
            ("GSUB", 6): self._chain,
            ("GSUB", 8): self._reverse_chain,
            ("GPOS", 1): self._single_pos,
            ("GPOS", 2): self._pair_pos,
            ("GPOS", 3): self._cursive,
            ("GPOS", 4): self._mark_base,
            ("GPOS", 5): self._mark_lig,
            ("GPOS", 6): self._mark_mark,
            ("GPOS", 8): self._chain,
        }
        subtables = encoders[(lookup.table, lookup.lookup_type)](lookup)
        flag, filtering_set = self._flag(lookup)
        builder.lookups.append(T.Lookup(
            lookup.lookup_type,
            flag,
            tuple(builder.add_subtable(subtable) for subtable in subtables),
            filtering_set,
            lookup.use_extension,
            lookup.name,
        ))

    def _mapping(self, lookup: PlannedLookup) -> Dict[Any, Any]:
        mapping: Dict[Any, Any] = {}
        for _, rule in self._rules(lookup):
            for key, value in rule_entries(rule, lookup.lookup_type):
                mapping.setdefault(key, value)
        return mapping

    def _single_subst(self, lookup: PlannedLookup) -> List[T.Subtable]:
        mapping = self._mapping(lookup)
        return [T.SingleSubst.of(mapping)] if mapping else []

    def _multiple_subst(self, lookup: PlannedLookup) -> List[T.Subtable]:
        mapping = self._mapping(lookup)
        return [T.MultipleSubst.of(mapping)] if mapping else []

    def _alternate_subst(self, lookup: PlannedLookup) -> List[T.Subtable]:
        mapping = self._mapping(lookup)
        return [T.AlternateSubst.of(mapping)] if mapping else []

    def _ligature_subst(self, lookup: PlannedLookup) -> List[T.Subtable]:
        mapping = self._mapping(lookup)
        return [T.LigatureSubst.of(mapping)] if mapping else []

    def _named_index(self, name: str, lookup: PlannedLookup, span: Span) -> Optional[int]:
        planned_index = self.plan.named.get(name)
        if planned_index is None or planned_index not in self.indices:
            return None
        target = self.plan.lookups[planned_index]
        if target.table != lookup.table:
            self._error(
                lookup.table,
                E.UNSUPPORTED_RULE,
                f"lookup '{name}' is a {target.table} lookup and cannot be applied from {lookup.table}",
                span,
            )
            return None
        return self.indices[planned_index]

    def _chain(self, lookup: PlannedLookup) -> List[T.Subtable]:
        subtables: List[T.Subtable] = []
        for planned, rule in self._rules(lookup):
            if not isinstance(rule, ChainRule):
                continue
            records: List[Tuple[int, int]] = []
            for position, names in enumerate(rule.lookups):
                for name in names:
                    index = self._named_index(name, lookup, rule.span)
                    if index is not None:
                        records.append((position, index))
            for position, inline in sorted(planned.inline.items()):
                records.extend((position, self.indices[i]) for i in inline if i in self.indices)
            for value in rule.values:
                self._check_value(lookup.table, value, rule.span)
            subtables.append(T.ChainContext(
                _coverages(rule.backtrack),
                _coverages(rule.input),
                _coverages(rule.lookahead),
                tuple(records),
                lookup.table,
            ))
        return subtables

    def _reverse_chain(self, lookup: PlannedLookup) -> List[T.Subtable]:
        subtables: List[T.Subtable] = []
        for _, rule in self._rules(lookup):
            if not isinstance(rule, ChainRule) or not rule.input:
                continue
            glyphs = rule.input[0]
            replacement = rule.replacement[0] if rule.replacement else ()
            if len(replacement) == 1:
                mapping = {gid: replacement[0] for gid in glyphs}
            else:
                mapping = dict(zip(glyphs, replacement))
            if not mapping:
                continue
            subtables.append(T.ReverseChainSingleSubst(
                _coverages(rule.backtrack),
                _coverages(rule.lookahead),
                tuple(sorted(mapping.items())),
            ))
        return subtables

    def _single_pos(self, lookup: PlannedLookup) -> List[T.Subtable]:
        entries: Dict[int, T.ValueRecord] = {}
        for _, rule in self._rules(lookup):
            if isinstance(rule, SinglePosRule):
                self._check_value(lookup.table, rule.value, rule.span)
                for gid in rule.glyphs:
                    entries.setdefault(gid, rule.value)
        return [T.SinglePos.of(entries)] if entries else []

    def _pair_pos(self, lookup: PlannedLookup) -> List[T.Subtable]:
        glyph_pairs: Dict[Tuple[int, int], T.PairValue] = {}
        segments: List[List[T.ClassPair]] = [[]]
        for planned, rule in self._rules(lookup):
            if not isinstance(rule, PairPosRule):
                continue
            if planned.subtable_break and segments[-1]:
                segments.append([])
            value1 = T.with_kept_advance(rule.value1) if rule.value1 is not None else None
            value2 = T.with_kept_advance(rule.value2) if rule.value2 is not None else None
            self._check_value(lookup.table, value1, rule.span)
            self._check_value(lookup.table, value2, rule.span)
            if rule.is_class_pair:
                segments[-1].append((rule.first, rule.second, value1, value2))
                continue
            for first in rule.first:
                for second in rule.second:
                    glyph_pairs.setdefault((first, second), (value1, value2))
        groups = [group for segment in segments for group in T.group_class_pairs(segment)]
        return list(T.pair_pos_subtables(glyph_pairs, groups))

    def _cursive(self, lookup: PlannedLookup) -> List[T.Subtable]:
        entries: Dict[int, Tuple[Optional[T.Anchor], Optional[T.Anchor]]] = {}
        for _, rule in self._rules(lookup):
            if not isinstance(rule, CursiveRule):
                continue
            self._check_anchor(lookup.table, rule.entry, rule.span)
            self._check_anchor(lookup.table, rule.exit, rule.span)
            for gid in rule.glyphs:
                entries.setdefault(gid, (rule.entry, rule.exit))
        if not entries:
            return []
        return [T.CursivePos(tuple((gid, entry, exit) for gid, (entry, exit) in sorted(entries.items())))]

    # ── mark attachment ────────────────────────────────────────────────

    def _add_marks(self, marks: Dict[int, Tuple[str, T.Anchor]], name: str) -> None:
        for gid, anchor in self.resolution.symbols.mark_classes[name].members.items():
            marks.setdefault(gid, (name, anchor))

    @staticmethod
    def _class_ids(marks: Dict[int, Tuple[str, T.Anchor]]) -> Dict[str, int]:
        """Mark class numbers in order of each class's lowest glyph id."""
        ids: Dict[str, int] = {}
        for gid in sorted(marks):
            ids.setdefault(marks[gid][0], len(ids))
        return ids

    def _mark_records(self, marks: Dict[int, Tuple[str, T.Anchor]], ids: Dict[str, int]) -> Tuple[T.MarkRecord, ...]:
        return tuple((gid, ids[name], anchor) for gid, (name, anchor) in sorted(marks.items()))

    def _attachment(self, lookup: PlannedLookup) -> Tuple[
        Dict[int, Tuple[str, T.Anchor]], Dict[int, Dict[str, T.Anchor]]
    ]:
        marks: Dict[int, Tuple[str, T.Anchor]] = {}
        bases: Dict[int, Dict[str, T.Anchor]] = {}
        first_use: Dict[Tuple[int, str], Span] = {}
        for _, rule in self._rules(lookup):
            if not isinstance(rule, MarkAttachRule):
                continue
            for anchor, name in rule.marks:
                if name is None:
                    continue
                self._add_marks(marks, name)
                if anchor is None:
                    continue
                self._check_anchor(lookup.table, anchor, rule.span)
                for gid in rule.bases:
                    anchors = bases.setdefault(gid, {})
                    if name not in anchors:
                        anchors[name] = anchor
                        first_use[(gid, name)] = rule.span
                    elif anchors[name] != anchor:
                        self.diagnostics.report(
                            E.ANCHOR_CONFLICT,
                            f"'{self.resolution.glyph_map.name(gid)}' already has an anchor for "
                            f"'@{name}'; the first one is used",
                            rule.span,
                            labels=(Label(first_use[(gid, name)], "first anchor here"),),
                        )
        return marks, bases

    def _mark_base(self, lookup: PlannedLookup) -> List[T.Subtable]:
        return self._base_like(lookup, T.MarkBasePos)

    def _mark_mark(self, lookup: PlannedLookup) -> List[T.Subtable]:
        return self._base_like(lookup, T.MarkMarkPos)

    def _base_like(self, lookup: PlannedLookup, cls) -> List[T.Subtable]:
        marks, bases = self._attachment(lookup)
        if not marks:
            return []
        ids = self._class_ids(marks)
        base_records = tuple(
            (gid, tuple(anchors.get(name) for name in ids))
            for gid, anchors in sorted(bases.items())
        )
        return [cls(self._mark_records(marks, ids), base_records, len(ids))]

    def _mark_lig(self, lookup: PlannedLookup) -> List[T.Subtable]:
        marks: Dict[int, Tuple[str, T.Anchor]] = {}
        ligatures: Dict[int, List[Dict[str, T.Anchor]]] = {}
        for _, rule in self._rules(lookup):
            if not isinstance(rule, MarkLigRule):
                continue
            components: List[Dict[str, T.Anchor]] = []
            for component in rule.components:
                anchors: Dict[str, T.Anchor] = {}
                for anchor, name in component:
                    if name is None:
                        continue
                    self._add_marks(marks, name)
                    if anchor is not None:
                        self._check_anchor(lookup.table, anchor, rule.span)
                        anchors.setdefault(name, anchor)
                components.append(anchors)
            for gid in rule.ligatures:
                ligatures.setdefault(gid, components)
        if not marks:
            return []
        ids = self._class_ids(marks)
        records = tuple(
            (gid, tuple(tuple(component.get(name) for name in ids) for component in components))
            for gid, components in sorted(ligatures.items())
        )
        return [T.MarkLigPos(self._mark_records(marks, ids), records, len(ids))]

    # ── lookup flags ───────────────────────────────────────────────────

    def _flag(self, lookup: PlannedLookup) -> Tuple[int, Optional[int]]:
        spec = lookup.flag
        flag = spec.bits
        if spec.mark_attachment is not None:
            flag |= self._attach_class(spec.mark_attachment, lookup) << 8
        filtering_set = None
        if spec.mark_filtering_set is not None:
            key = tuple(sorted(set(spec.mark_filtering_set)))
            filtering_set = self.filtering_sets.setdefault(key, len(self.filtering_sets))
            flag |= 0x0010
        return flag, filtering_set

    def _attach_class(self, glyphs: GlyphClass, lookup: PlannedLookup) -> int:
        key = tuple(sorted(set(glyphs)))
        number = self.attach_classes.get(key)
        if number is not None:
            return number
        number = len(self.attach_classes) + 1
        if number > 0xFF:
            self._error(
                lookup.table, E.VALUE_OUT_OF_RANGE, "more than 255 mark attachment classes", lookup.span
            )
        clash = [gid for gid in key if gid in self.attach_owner]
        if clash:
            self.diagnostics.report(
                E.GDEF_CLASS_CONFLICT,
                f"'{' '.join(self.resolution.glyph_names(clash))}' is in more than one "
                "mark attachment class",
                lookup.span,
            )
            self.gdef_failed = True
        self.attach_classes[key] = number
        for gid in key:
            self.attach_owner.setdefault(gid, number)
        return number

    # ── feature parameters and names ───────────────────────────────────

    def _add_names(self, specs: List[A.NameSpec]) -> int:
        if not specs:
            return 0
        name_id = self.next_name_id
        self.next_name_id += 1
        for spec in specs:
            self._add_name(name_id, spec)
        return name_id

    def _add_name(self, name_id: int, spec: A.NameSpec) -> None:
        self.names.append(T.NameRecord(
            name_id, spec.platform_id, spec.encoding_id, spec.language_id, spec.string
        ))

    def _feature_params(self) -> None:
        size: Optional[A.SizeParameters] = None
        size_name_id = 0
        for tag, statement in self.plan.feature_params:
            if isinstance(statement, A.FeatureNames):
                if tag not in self.params:
                    self.params[tag] = T.StylisticSetParams(self._add_names(statement.names))
            elif isinstance(statement, A.CvParameters):
                if tag not in self.params:
                    self.params[tag] = self._cv_params(statement)
            elif isinstance(statement, A.SizeParameters):
                size = size or statement
            elif isinstance(statement, A.SizeMenuName):
                if not size_name_id:
                    size_name_id = self.next_name_id
                    self.next_name_id += 1
                self._add_name(size_name_id, statement)
        if size is not None:
            self.params["size"] = T.SizeParams(
                size.design_size, size.subfamily_id, size_name_id, size.range_start, size.range_end
            )

    def _cv_params(self, statement: A.CvParameters) -> T.CharacterVariantParams:
        ids: Dict[Kind, int] = {}
        for block in statement.name_blocks:
            if block.which is not Kind.PARAM_UI_LABEL_NAME_ID_KW and block.which not in ids:
                ids[block.which] = self._add_names(block.names)
        # parameter labels take consecutive ids
        params = [
            self._add_names(block.names)
            for block in statement.name_blocks
            if block.which is Kind.PARAM_UI_LABEL_NAME_ID_KW
        ]
        return T.CharacterVariantParams(
            ids.get(Kind.FEAT_UI_LABEL_NAME_ID_KW, 0),
            ids.get(Kind.FEAT_UI_TOOLTIP_TEXT_NAME_ID_KW, 0),
            ids.get(Kind.SAMPLE_TEXT_NAME_ID_KW, 0),
            len(params),
            params[0] if params else 0,
            tuple(statement.characters),
        )

    # ── features, scripts, variations ──────────────────────────────────

    def _table_indices(self, indices: List[int], tag: str) -> List[int]:
        return [
            self.indices[i] for i in indices
            if i in self.indices and self.plan.lookups[i].table == tag
        ]

    def _registrations(self, tag: str) -> Dict[FeatureKey, List[int]]:
        result = {key: self._table_indices(indices, tag) for key, indices in self.plan.features.items()}
        if tag == "GSUB" and self.aalt_count and self.plan.aalt is not None:
            for script, language in self.plan.aalt.language_systems:
                result[(script, language, "aalt")] = list(range(self.aalt_count))
        if tag == "GPOS" and "size" in self.params:
            for script, language in self.plan.language_systems:
                result.setdefault((script, language, "size"), [])
        return result

    def _variations(self, tag: str) -> Dict[str, Dict[FeatureKey, List[int]]]:
        result: Dict[str, Dict[FeatureKey, List[int]]] = {}
        # condition set definition order
        for name in self.resolution.symbols.condition_sets:
            per_key = self.plan.variations.get(name)
            if not per_key:
                continue
            lookups = {key: self._table_indices(indices, tag) for key, indices in per_key.items()}
            lookups = {key: indices for key, indices in lookups.items() if indices}
            if lookups:
                result[name] = lookups
        return result

    def _conditions(self, symbol: ConditionSetSymbol) -> Optional[Tuple[T.ConditionRange, ...]]:
        axes = list(self.options.axes)
        result = []
        for axis, (minimum, maximum) in symbol.conditions.items():
            if axis not in self.options.axes:
                return None
            triple = self.options.axes[axis].triple
            result.append(T.ConditionRange(
                axes.index(axis), normalizeValue(minimum, triple), normalizeValue(maximum, triple)
            ))
        return tuple(result)

    @staticmethod
    def _params_table(feature_tag: str) -> str:
        return "GPOS" if feature_tag == "size" else "GSUB"

    def _layout_table(self, tag: str) -> Optional[T.LayoutTable]:
        builder = self.builders[tag]
        registrations = self._registrations(tag)
        variations = self._variations(tag)
        for per_key in variations.values():
            for key in per_key:
                registrations.setdefault(key, [])
        varied = {key for per_key in variations.values() for key in per_key}

        records: Dict[FeatureKey, T.FeatureRecord] = {}
        for key, lookups in registrations.items():
            feature_tag = key[2]
            params = self.params.get(feature_tag) if self._params_table(feature_tag) == tag else None
            if not lookups and key not in varied and not (feature_tag == "size" and params is not None):
                continue
            records[key] = T.FeatureRecord(feature_tag, tuple(sorted(set(lookups))), params)

        def signature(key: FeatureKey) -> Tuple[Tuple[str, Tuple[int, ...]], ...]:
            return tuple(
                (name, tuple(sorted(set(per_key[key]))))
                for name, per_key in variations.items()
                if key in per_key
            )

        unique = sorted(
            {(record, signature(key)) for key, record in records.items()},
            key=lambda item: (item[0].tag, item[0].lookups, item[1]),
        )
        positions = {item: index for index, item in enumerate(unique)}
        features = tuple(record for record, _ in unique)
        feature_index = {key: positions[(record, signature(key))] for key, record in records.items()}

        scripts = self._scripts(tag, feature_index)
        feature_variations = []
        for name, per_key in variations.items():
            conditions = self._conditions(self.resolution.symbols.condition_sets[name])
            if conditions is None:
                continue
            substitutions: Dict[int, Set[int]] = {}
            for key, lookups in per_key.items():
                index = feature_index.get(key)
                if index is None:
                    continue
                substitutions.setdefault(index, set()).update(features[index].lookups, lookups)
            if substitutions:
                feature_variations.append(T.FeatureVariation(
                    conditions,
                    tuple((index, tuple(sorted(lookups))) for index, lookups in sorted(substitutions.items())),
                ))

        if builder.failed:
            logger.debug("%s withheld after backend errors", tag)
            return None
        if not builder.lookups and not features:
            return None
        return T.LayoutTable(
            tag,
            scripts,
            features,
            tuple(builder.lookups),
            tuple(builder.subtables),
            tuple(feature_variations),
        )

    def _scripts(self, tag: str, feature_index: Dict[FeatureKey, int]) -> Tuple[T.ScriptRecord, ...]:
        systems: Dict[Tuple[str, str], List[int]] = {}
        for (script, language, _), index in feature_index.items():
            systems.setdefault((script, language), []).append(index)
        scripts: Dict[str, Tuple[List[Optional[T.LangSys]], List[T.LangSys]]] = {}
        for (script, language), indices in sorted(systems.items()):
            required = None
            if (script, language) in self.plan.required:
                required_tag = self.plan.required[(script, language)][0]
                required = feature_index.get((script, language, required_tag))
            remaining = tuple(sorted(set(indices) - {required}))
            if not remaining and required is None:
                continue
            langsys = T.LangSys(language, remaining, required)
            default, languages = scripts.setdefault(script, ([None], []))
            if language == "dflt":
                default[0] = langsys
            else:
                languages.append(langsys)
        return tuple(
            T.ScriptRecord(script, default[0], tuple(sorted(languages, key=lambda ls: ls.tag)))
            for script, (default, languages) in sorted(scripts.items())
        )

    # ── GDEF ───────────────────────────────────────────────────────────

    def _inferred_classes(self) -> Dict[int, int]:
        classes: Dict[int, int] = {}
        for mark_class in self.resolution.symbols.mark_classes.values():
            for gid in mark_class.members:
                classes[gid] = 3
        gpos = self.builders["GPOS"]
        for lookup in gpos.lookups:
            for index in lookup.subtables:
                subtable = gpos.subtables[index]
                if isinstance(subtable, T.MarkBasePos):
                    for gid, _ in subtable.bases:
                        classes.setdefault(gid, 1)
                elif isinstance(subtable, T.MarkLigPos):
                    for gid, _ in subtable.ligatures:
                        classes.setdefault(gid, 2)
        return classes

    def _gdef(self) -> Optional[T.GdefTable]:
        classes: Dict[int, int] = {}
        declared = False
        attach: Dict[int, Set[int]] = {}
        carets: Dict[int, Tuple[str, Tuple[int, ...]]] = {}
        for statement, _ in walk(self.root, self.sources):
            if isinstance(statement, A.GdefClassDef):
                declared = True
                slots = self.resolution.statements.get(statement.key, (None, None, None, None))
                for number, glyphs in enumerate(slots, start=1):
                    for gid in glyphs or ():
                        previous = classes.setdefault(gid, number)
                        if previous != number:
                            self.diagnostics.report(
                                E.GDEF_CLASS_CONFLICT,
                                f"'{self.resolution.glyph_map.name(gid)}' is in more than one GDEF glyph class",
                                statement.span,
                            )
                            self.gdef_failed = True
            elif isinstance(statement, A.GdefGlyphNumbers):
                glyphs = self.resolution.statements.get(statement.key, ())
                if statement.kind is Kind.GDEF_ATTACH:
                    for gid in glyphs:
                        attach.setdefault(gid, set()).update(statement.values)
                else:
                    how = "pos" if statement.kind is Kind.GDEF_LIG_CARET_POS else "index"
                    for gid in glyphs:
                        carets.setdefault(gid, (how, tuple(sorted(statement.values))))
        if not declared and self.options.infer_gdef_classes:
            classes = self._inferred_classes()

        mark_sets = sorted(self.filtering_sets.items(), key=lambda item: item[1])
        gdef = T.GdefTable(
            glyph_classes=T.ClassDef.of(classes) if classes else None,
            attach_points=tuple((gid, tuple(sorted(points))) for gid, points in sorted(attach.items())),
            lig_carets=tuple((gid, how, values) for gid, (how, values) in sorted(carets.items())),
            mark_attach_classes=T.ClassDef.of(self.attach_owner) if self.attach_owner else None,
            mark_glyph_sets=tuple(T.Coverage(glyphs) for glyphs, _ in mark_sets),
        )
        if self.gdef_failed or gdef.is_empty():
            return None
        return gdef


def compile_tables(
    root: A.SourceFile,
    sources: SourceMap,
    resolution: Resolution,
    plan: LookupPlan,
    validation: Optional[Validation] = None,
    options: Optional[CompileOptions] = None,
) -> Tuple[CompiledTables, List[Diagnostic]]:
    """Build the layout tables of a resolved and validated compilation."""
    backend = _Backend(
        root, sources, resolution, plan, validation or Validation(), options or CompileOptions()
    )
    tables = backend.run()
    return tables, list(backend.diagnostics)
