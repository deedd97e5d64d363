"""feac/tables.py – in-memory layout table model and format selection.

Everything here is a frozen, hashable dataclass over glyph *ids*, so two
subtables that would serialize identically compare (and hash) equal.
The backend relies on that for subtable deduplication.

Format selection lives in pure functions of the rule data
(``coverage_format``, ``class_def_format``, ``single_subst_format``,
``single_pos_format``, ``pair_pos_subtables``): the same input always
yields the same formats, regardless of rule order within a subtable.

Module layout
-------------
§1  Values: devices, value records, anchors
§2  Coverage and class definitions
§3  GSUB subtables
§4  GPOS subtables
§5  Lookups, features, scripts and whole tables
"""

from __future__ import annotations

from dataclasses import dataclass, field, replace
from typing import (
    Dict,
    Iterable,
    List,
    Mapping,
    Optional,
    Sequence,
    Tuple,
    Union,
)

__all__ = [
    "Device",
    "ValueRecord",
    "Anchor",
    "Coverage",
    "ClassDef",
    "coverage_format",
    "class_def_format",
    "glyph_ranges",
    "build_class_def",
    "SingleSubst",
    "MultipleSubst",
    "AlternateSubst",
    "LigatureSubst",
    "ReverseChainSingleSubst",
    "ChainContext",
    "SinglePos",
    "PairPosFormat1",
    "PairPosFormat2",
    "CursivePos",
    "MarkBasePos",
    "MarkLigPos",
    "MarkMarkPos",
    "single_subst_format",
    "single_pos_format",
    "pair_pos_subtables",
    "Subtable",
    "Lookup",
    "LangSys",
    "ScriptRecord",
    "FeatureRecord",
    "SizeParams",
    "StylisticSetParams",
    "CharacterVariantParams",
    "ConditionRange",
    "FeatureVariation",
    "LayoutTable",
    "GdefTable",
    "NameRecord",
    "with_kept_advance",
]


# ════════════════════════════════════════════════════════════════════════
# §1  Values
# ════════════════════════════════════════════════════════════════════════

# (ppem size, delta) pairs in ascending size order
Device = Tuple[Tuple[int, int], ...]

_VALUE_FIELDS = (
    ("x_placement", 0x0001),
    ("y_placement", 0x0002),
    ("x_advance", 0x0004),
    ("y_advance", 0x0008),
    ("x_placement_device", 0x0010),
    ("y_placement_device", 0x0020),
    ("x_advance_device", 0x0040),
    ("y_advance_device", 0x0080),
)


@dataclass(frozen=True)
class ValueRecord:
    """A positioning adjustment; zero fields are not part of its format."""

    x_placement: int = 0
    y_placement: int = 0
    x_advance: int = 0
    y_advance: int = 0
    x_placement_device: Optional[Device] = None
    y_placement_device: Optional[Device] = None
    x_advance_device: Optional[Device] = None
    y_advance_device: Optional[Device] = None
    # keeps an all-zero advance in the format (pair adjustments "pos a b 0;")
    keep_x_advance: bool = field(default=False, compare=True)

    @property
    def value_format(self) -> int:
        fmt = 0
        for name, bit in _VALUE_FIELDS:
            if getattr(self, name):
                fmt |= bit
        if self.keep_x_advance:
            fmt |= 0x0004
        return fmt

    def is_empty(self) -> bool:
        return self.value_format == 0

    def fields(self) -> Dict[str, Union[int, Device]]:
        """Non-empty fields by name."""
        return {name: getattr(self, name) for name, _ in _VALUE_FIELDS if getattr(self, name)}


def value_record_size(value_format: int) -> int:
    return 2 * bin(value_format).count("1")


def union_format(values: Iterable[Optional[ValueRecord]]) -> int:
    fmt = 0
    for value in values:
        if value is not None:
            fmt |= value.value_format
    return fmt


@dataclass(frozen=True)
class Anchor:
    x: int
    y: int
    contourpoint: Optional[int] = None
    x_device: Optional[Device] = None
    y_device: Optional[Device] = None

    @property
    def format(self) -> int:
        if self.x_device or self.y_device:
            return 3
        if self.contourpoint is not None:
            return 2
        return 1


# ════════════════════════════════════════════════════════════════════════
# §2  Coverage and class definitions
# ════════════════════════════════════════════════════════════════════════

def glyph_ranges(glyphs: Sequence[int]) -> List[Tuple[int, int]]:
    """Runs of consecutive ids in sorted, unique *glyphs*."""
    ranges: List[Tuple[int, int]] = []
    for gid in glyphs:
        if ranges and ranges[-1][1] + 1 == gid:
            ranges[-1] = (ranges[-1][0], gid)
        else:
            ranges.append((gid, gid))
    return ranges


def coverage_format(glyphs: Sequence[int]) -> int:
    """1 (glyph array) unless range records are strictly smaller."""
    ordered = sorted(set(glyphs))
    size1 = 4 + 2 * len(ordered)
    size2 = 4 + 6 * len(glyph_ranges(ordered))
    return 2 if size2 < size1 else 1


@dataclass(frozen=True)
class Coverage:
    glyphs: Tuple[int, ...]

    @classmethod
    def of(cls, glyphs: Iterable[int]) -> "Coverage":
        return cls(tuple(sorted(set(glyphs))))

    @property
    def format(self) -> int:
        return coverage_format(self.glyphs)

    def index(self, gid: int) -> int:
        return self.glyphs.index(gid)

    def __contains__(self, gid: object) -> bool:
        return gid in self.glyphs


def class_def_format(classes: Mapping[int, int]) -> int:
    """1 (class array over the glyph span) unless ranges are strictly smaller."""
    entries = sorted((g, c) for g, c in classes.items() if c)
    if not entries:
        return 1
    span = entries[-1][0] - entries[0][0] + 1
    size1 = 6 + 2 * span
    runs = 0
    previous: Optional[Tuple[int, int]] = None
    for gid, cls in entries:
        if previous is None or previous[0] + 1 != gid or previous[1] != cls:
            runs += 1
        previous = (gid, cls)
    size2 = 4 + 6 * runs
    return 2 if size2 < size1 else 1


@dataclass(frozen=True)
class ClassDef:
    """Glyph → class; class 0 entries are implicit and never stored."""

    classes: Tuple[Tuple[int, int], ...]

    @classmethod
    def of(cls, mapping: Mapping[int, int]) -> "ClassDef":
        return cls(tuple(sorted((g, c) for g, c in mapping.items() if c)))

    @property
    def format(self) -> int:
        return class_def_format(dict(self.classes))

    def as_dict(self) -> Dict[int, int]:
        return dict(self.classes)


def build_class_def(
    glyph_sets: Sequence[Sequence[int]],
    *,
    use_class0: bool,
) -> Tuple[ClassDef, Dict[Tuple[int, ...], int]]:
    """Assign class numbers to disjoint glyph sets.

    Sets are ordered by descending size, then by their smallest glyph id,
    so numbering does not depend on input order.  With *use_class0* the
    first (largest) set becomes class 0.  Returns the class definition and
    the number of every set (keyed by its sorted tuple).
    """
    unique = sorted({tuple(sorted(set(s))) for s in glyph_sets}, key=lambda s: (-len(s), s))
    numbers: Dict[Tuple[int, ...], int] = {}
    mapping: Dict[int, int] = {}
    first = 0 if use_class0 else 1
    for index, glyphs in enumerate(unique):
        number = first + index
        numbers[glyphs] = number
        for gid in glyphs:
            mapping[gid] = number
    return ClassDef.of(mapping), numbers


# ════════════════════════════════════════════════════════════════════════
# §3  GSUB subtables
# ════════════════════════════════════════════════════════════════════════

def single_subst_format(mapping: Mapping[int, int]) -> int:
    """1 when every glyph moves by the same delta (mod 65536), else 2."""
    deltas = {(out - gid) % 0x10000 for gid, out in mapping.items()}
    return 1 if len(deltas) <= 1 else 2


@dataclass(frozen=True)
class SingleSubst:
    mapping: Tuple[Tuple[int, int], ...]

    lookup_type = 1

    @classmethod
    def of(cls, mapping: Mapping[int, int]) -> "SingleSubst":
        return cls(tuple(sorted(mapping.items())))

    @property
    def format(self) -> int:
        return single_subst_format(dict(self.mapping))

    @property
    def delta(self) -> int:
        if not self.mapping:
            return 0
        gid, out = self.mapping[0]
        delta = (out - gid) % 0x10000
        return delta - 0x10000 if delta >= 0x8000 else delta

    @property
    def coverage(self) -> Coverage:
        return Coverage.of(g for g, _ in self.mapping)


@dataclass(frozen=True)
class MultipleSubst:
    mapping: Tuple[Tuple[int, Tuple[int, ...]], ...]

    lookup_type = 2
    format = 1

    @classmethod
    def of(cls, mapping: Mapping[int, Sequence[int]]) -> "MultipleSubst":
        return cls(tuple(sorted((g, tuple(s)) for g, s in mapping.items())))


@dataclass(frozen=True)
class AlternateSubst:
    mapping: Tuple[Tuple[int, Tuple[int, ...]], ...]

    lookup_type = 3
    format = 1

    @classmethod
    def of(cls, mapping: Mapping[int, Sequence[int]]) -> "AlternateSubst":
        return cls(tuple(sorted((g, tuple(s)) for g, s in mapping.items())))


@dataclass(frozen=True)
class LigatureSubst:
    """Ligatures keyed by their full component sequence."""

    ligatures: Tuple[Tuple[Tuple[int, ...], int], ...]

    lookup_type = 4
    format = 1

    @classmethod
    def of(cls, ligatures: Mapping[Tuple[int, ...], int]) -> "LigatureSubst":
        # longest match first within one first glyph
        return cls(tuple(sorted(ligatures.items(), key=lambda kv: (kv[0][0], -len(kv[0]), kv[0]))))


@dataclass(frozen=True)
class ReverseChainSingleSubst:
    backtrack: Tuple[Coverage, ...]
    lookahead: Tuple[Coverage, ...]
    mapping: Tuple[Tuple[int, int], ...]

    lookup_type = 8
    format = 1

    @property
    def coverage(self) -> Coverage:
        return Coverage.of(g for g, _ in self.mapping)


@dataclass(frozen=True)
class ChainContext:
    """Chaining context, coverage based (format 3).

    ``backtrack`` is stored in text order; the binary form reverses it.
    ``lookup_records`` are ``(input position, lookup index)`` pairs.
    """

    backtrack: Tuple[Coverage, ...]
    input: Tuple[Coverage, ...]
    lookahead: Tuple[Coverage, ...]
    lookup_records: Tuple[Tuple[int, int], ...]
    table: str = "GSUB"

    format = 3

    @property
    def lookup_type(self) -> int:
        return 6 if self.table == "GSUB" else 8


# ════════════════════════════════════════════════════════════════════════
# §4  GPOS subtables
# ════════════════════════════════════════════════════════════════════════

def single_pos_format(entries: Mapping[int, ValueRecord]) -> int:
    """1 when all glyphs share one value record, else 2."""
    return 1 if len(set(entries.values())) <= 1 else 2


@dataclass(frozen=True)
class SinglePos:
    entries: Tuple[Tuple[int, ValueRecord], ...]

    lookup_type = 1

    @classmethod
    def of(cls, entries: Mapping[int, ValueRecord]) -> "SinglePos":
        return cls(tuple(sorted(entries.items())))

    @property
    def format(self) -> int:
        return single_pos_format(dict(self.entries))

    @property
    def value_format(self) -> int:
        return union_format(v for _, v in self.entries)


PairValue = Tuple[Optional[ValueRecord], Optional[ValueRecord]]


@dataclass(frozen=True)
class PairPosFormat1:
    """Glyph pairs: ``pairs[i] = (first, ((second, v1, v2), ...))``."""

    pairs: Tuple[Tuple[int, Tuple[Tuple[int, Optional[ValueRecord], Optional[ValueRecord]], ...]], ...]

    lookup_type = 2
    format = 1

    @classmethod
    def of(cls, pairs: Mapping[Tuple[int, int], PairValue]) -> "PairPosFormat1":
        by_first: Dict[int, List[Tuple[int, Optional[ValueRecord], Optional[ValueRecord]]]] = {}
        for (first, second), (v1, v2) in pairs.items():
            by_first.setdefault(first, []).append((second, v1, v2))
        return cls(tuple((first, tuple(sorted(records, key=lambda r: r[0])))
                         for first, records in sorted(by_first.items())))

    @property
    def value_format1(self) -> int:
        return union_format(r[1] for _, records in self.pairs for r in records)

    @property
    def value_format2(self) -> int:
        return union_format(r[2] for _, records in self.pairs for r in records)

    def size(self) -> int:
        record = 2 + value_record_size(self.value_format1) + value_record_size(self.value_format2)
        total = 10 + 2 * len(self.pairs)
        for _, records in self.pairs:
            total += 2 + record * len(records)
        return total + _coverage_size([first for first, _ in self.pairs])


@dataclass(frozen=True)
class PairPosFormat2:
    """Class pairs: ``matrix[c1][c2] = (v1, v2)``."""

    coverage: Coverage
    class_def1: ClassDef
    class_def2: ClassDef
    matrix: Tuple[Tuple[PairValue, ...], ...]

    lookup_type = 2
    format = 2

    @property
    def value_format1(self) -> int:
        return union_format(v1 for row in self.matrix for v1, _ in row)

    @property
    def value_format2(self) -> int:
        return union_format(v2 for row in self.matrix for _, v2 in row)

    def size(self) -> int:
        record = value_record_size(self.value_format1) + value_record_size(self.value_format2)
        cells = sum(len(row) for row in self.matrix)
        return (
            16
            + record * cells
            + _coverage_size(self.coverage.glyphs)
            + _class_def_size(self.class_def1)
            + _class_def_size(self.class_def2)
        )


def _coverage_size(glyphs: Sequence[int]) -> int:
    ordered = sorted(set(glyphs))
    return min(4 + 2 * len(ordered), 4 + 6 * len(glyph_ranges(ordered)))


def _class_def_size(class_def: ClassDef) -> int:
    entries = class_def.classes
    if not entries:
        return 6
    span = entries[-1][0] - entries[0][0] + 1
    runs = 0
    previous: Optional[Tuple[int, int]] = None
    for gid, cls in entries:
        if previous is None or previous[0] + 1 != gid or previous[1] != cls:
            runs += 1
        previous = (gid, cls)
    return min(6 + 2 * span, 4 + 6 * runs)


ClassPair = Tuple[Tuple[int, ...], Tuple[int, ...], Optional[ValueRecord], Optional[ValueRecord]]


def _class_pair_group(pairs: Sequence[ClassPair]) -> Union[PairPosFormat1, PairPosFormat2]:
    """Encode one group of non-conflicting class pairs, smallest form first.

    The expanded glyph-pair form wins ties.
    """
    firsts = [p[0] for p in pairs]
    seconds = [p[1] for p in pairs]
    class_def1, numbers1 = build_class_def(firsts, use_class0=True)
    class_def2, numbers2 = build_class_def(seconds, use_class0=False)
    class1_count = len(numbers1)
    class2_count = len(numbers2) + 1
    matrix: List[List[PairValue]] = [[(None, None)] * class2_count for _ in range(class1_count)]
    expanded: Dict[Tuple[int, int], PairValue] = {}
    for first, second, v1, v2 in pairs:
        c1 = numbers1[tuple(sorted(set(first)))]
        c2 = numbers2[tuple(sorted(set(second)))]
        if matrix[c1][c2] == (None, None):
            matrix[c1][c2] = (v1, v2)
        for g1 in first:
            for g2 in second:
                expanded.setdefault((g1, g2), (v1, v2))
    coverage = Coverage.of(g for f in firsts for g in f)
    format2 = PairPosFormat2(coverage, class_def1, class_def2, tuple(tuple(row) for row in matrix))
    format1 = PairPosFormat1.of(expanded)
    return format1 if format1.size() <= format2.size() else format2


def pair_pos_subtables(
    glyph_pairs: Mapping[Tuple[int, int], PairValue],
    class_pairs: Sequence[Sequence[ClassPair]],
) -> List[Union[PairPosFormat1, PairPosFormat2]]:
    """All subtables of one pair-positioning lookup.

    Glyph pairs go to a single format 1 subtable, first.  Each element of
    *class_pairs* is one group produced by :func:`group_class_pairs` (or an
    explicit ``subtable`` break).
    """
    result: List[Union[PairPosFormat1, PairPosFormat2]] = []
    if glyph_pairs:
        result.append(PairPosFormat1.of(glyph_pairs))
    for group in class_pairs:
        if group:
            result.append(_class_pair_group(group))
    return result


def group_class_pairs(pairs: Sequence[ClassPair]) -> List[List[ClassPair]]:
    """Split class pairs so every group's classes partition their glyphs.

    A new group starts when a first (or second) class overlaps a class
    already used in the current group without being identical to it.
    """
    groups: List[List[ClassPair]] = [[]]
    firsts: Dict[int, Tuple[int, ...]] = {}
    seconds: Dict[int, Tuple[int, ...]] = {}

    def fits(glyphs: Tuple[int, ...], owner: Dict[int, Tuple[int, ...]]) -> bool:
        return all(owner.get(g, glyphs) == glyphs for g in glyphs)

    for pair in pairs:
        first = tuple(sorted(set(pair[0])))
        second = tuple(sorted(set(pair[1])))
        if not (fits(first, firsts) and fits(second, seconds)):
            groups.append([])
            firsts = {}
            seconds = {}
        groups[-1].append(pair)
        for g in first:
            firsts[g] = first
        for g in second:
            seconds[g] = second
    return [g for g in groups if g]


@dataclass(frozen=True)
class CursivePos:
    entries: Tuple[Tuple[int, Optional[Anchor], Optional[Anchor]], ...]

    lookup_type = 3
    format = 1


MarkRecord = Tuple[int, int, Anchor]  # (mark glyph, class index, anchor)


@dataclass(frozen=True)
class MarkBasePos:
    marks: Tuple[MarkRecord, ...]
    bases: Tuple[Tuple[int, Tuple[Optional[Anchor], ...]], ...]
    class_count: int

    lookup_type = 4
    format = 1


@dataclass(frozen=True)
class MarkLigPos:
    marks: Tuple[MarkRecord, ...]
    # (ligature glyph, per component: per class anchor)
    ligatures: Tuple[Tuple[int, Tuple[Tuple[Optional[Anchor], ...], ...]], ...]
    class_count: int

    lookup_type = 5
    format = 1


@dataclass(frozen=True)
class MarkMarkPos:
    marks: Tuple[MarkRecord, ...]
    bases: Tuple[Tuple[int, Tuple[Optional[Anchor], ...]], ...]
    class_count: int

    lookup_type = 6
    format = 1


Subtable = Union[
    SingleSubst, MultipleSubst, AlternateSubst, LigatureSubst,
    ReverseChainSingleSubst, ChainContext, SinglePos, PairPosFormat1,
    PairPosFormat2, CursivePos, MarkBasePos, MarkLigPos, MarkMarkPos,
]


# ════════════════════════════════════════════════════════════════════════
# §5  Lookups, features, scripts and tables
# ════════════════════════════════════════════════════════════════════════

@dataclass(frozen=True)
class Lookup:
    """A lookup; ``subtables`` index the table's subtable pool."""

    lookup_type: int
    flag: int
    subtables: Tuple[int, ...]
    mark_filtering_set: Optional[int] = None
    use_extension: bool = False
    name: Optional[str] = field(default=None, compare=False)


@dataclass(frozen=True)
class LangSys:
    tag: str
    feature_indices: Tuple[int, ...]
    required_feature: Optional[int] = None


@dataclass(frozen=True)
class ScriptRecord:
    tag: str
    default: Optional[LangSys]
    languages: Tuple[LangSys, ...]


@dataclass(frozen=True)
class SizeParams:
    design_size: float
    subfamily_id: int
    subfamily_name_id: int
    range_start: float
    range_end: float


@dataclass(frozen=True)
class StylisticSetParams:
    ui_name_id: int


@dataclass(frozen=True)
class CharacterVariantParams:
    label_name_id: int
    tooltip_name_id: int
    sample_text_name_id: int
    num_named_parameters: int
    first_param_name_id: int
    characters: Tuple[int, ...]


FeatureParams = Union[SizeParams, StylisticSetParams, CharacterVariantParams]


@dataclass(frozen=True)
class FeatureRecord:
    tag: str
    lookups: Tuple[int, ...]
    params: Optional[FeatureParams] = None


@dataclass(frozen=True)
class ConditionRange:
    """Normalized ``[minimum, maximum]`` range on one fvar axis."""

    axis_index: int
    minimum: float
    maximum: float


@dataclass(frozen=True)
class FeatureVariation:
    conditions: Tuple[ConditionRange, ...]
    # (feature index, replacement lookup indices)
    substitutions: Tuple[Tuple[int, Tuple[int, ...]], ...]


@dataclass(frozen=True)
class LayoutTable:
    """A complete GSUB or GPOS table."""

    tag: str
    scripts: Tuple[ScriptRecord, ...]
    features: Tuple[FeatureRecord, ...]
    lookups: Tuple[Lookup, ...]
    subtables: Tuple[Subtable, ...]
    feature_variations: Tuple[FeatureVariation, ...] = ()

    def lookup_subtables(self, index: int) -> List[Subtable]:
        return [self.subtables[i] for i in self.lookups[index].subtables]


@dataclass(frozen=True)
class GdefTable:
    glyph_classes: Optional[ClassDef] = None
    attach_points: Tuple[Tuple[int, Tuple[int, ...]], ...] = ()
    # (ligature glyph, "pos" or "index", values)
    lig_carets: Tuple[Tuple[int, str, Tuple[int, ...]], ...] = ()
    mark_attach_classes: Optional[ClassDef] = None
    mark_glyph_sets: Tuple[Coverage, ...] = ()

    def is_empty(self) -> bool:
        return not (
            self.glyph_classes or self.attach_points or self.lig_carets
            or self.mark_attach_classes or self.mark_glyph_sets
        )

    @property
    def version(self) -> int:
        return 0x00010002 if self.mark_glyph_sets else 0x00010000


@dataclass(frozen=True)
class NameRecord:
    name_id: int
    platform_id: int
    encoding_id: int
    language_id: int
    string: str


def with_kept_advance(value: Optional[ValueRecord]) -> ValueRecord:
    """A pair adjustment's first value: empty becomes an explicit 0 advance."""
    if value is None or value.is_empty():
        return replace(value or ValueRecord(), keep_x_advance=True)
    return value
