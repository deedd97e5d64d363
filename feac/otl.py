"""
feac/otl.py
===========

Lowering of the compiled table model to fontTools objects.

Provides:
- ``build_tables(compiled)`` → ``{tag: fontTools table}``
- ``add_to_font(compiled, font)`` – install the tables into a ``TTFont``

Objects are built field by field from ``fontTools.ttLib.tables.otTables``
so the formats picked by :mod:`feac.tables` are the formats written.
Every pooled subtable becomes exactly one fontTools object; lookups that
share a pool slot share the object.
"""

from __future__ import annotations

import logging
from typing import Any, Dict, List, Optional, Sequence

from fontTools.otlLib.builder import buildAnchor, buildDevice
from fontTools.ttLib import TTFont, newTable
from fontTools.ttLib.tables import otTables

from feac import tables as T
from feac.errors import CompilerBug

__all__ = ["build_tables", "add_to_font"]

logger = logging.getLogger(__name__)

_VALUE_NAMES = {
    "x_placement": "XPlacement",
    "y_placement": "YPlacement",
    "x_advance": "XAdvance",
    "y_advance": "YAdvance",
    "x_placement_device": "XPlaDevice",
    "y_placement_device": "YPlaDevice",
    "x_advance_device": "XAdvDevice",
    "y_advance_device": "YAdvDevice",
}

_EXTENSION_TYPES = {"GSUB": 7, "GPOS": 9}


class _Lowering:
    """Converts one compilation's tables; glyph ids become names here."""

    def __init__(self, glyph_order: Sequence[str]) -> None:
        self.glyph_order = list(glyph_order)

    def name(self, gid: int) -> str:
        return self.glyph_order[gid]

    def names(self, glyphs: Sequence[int]) -> List[str]:
        return [self.glyph_order[gid] for gid in glyphs]

    # ── shared building blocks ──────────────────────────────────────────

    def coverage(self, coverage: T.Coverage) -> otTables.Coverage:
        result = otTables.Coverage()
        result.glyphs = self.names(coverage.glyphs)
        return result

    def coverage_of(self, glyphs: Sequence[int]) -> otTables.Coverage:
        return self.coverage(T.Coverage.of(glyphs))

    def class_def(self, class_def: T.ClassDef) -> otTables.ClassDef:
        result = otTables.ClassDef()
        result.classDefs = {self.name(gid): cls for gid, cls in class_def.classes}
        return result

    @staticmethod
    def device(device: Optional[T.Device]):
        return buildDevice(dict(device)) if device else None

    def value(self, value: Optional[T.ValueRecord]) -> Optional[otTables.ValueRecord]:
        if value is None:
            return None
        result = otTables.ValueRecord()
        for field_name, number in value.fields().items():
            if isinstance(number, tuple):
                setattr(result, _VALUE_NAMES[field_name], self.device(number))
            else:
                setattr(result, _VALUE_NAMES[field_name], number)
        if value.keep_x_advance and not value.x_advance:
            result.XAdvance = 0
        return result

    def anchor(self, anchor: Optional[T.Anchor]):
        if anchor is None:
            return None
        return buildAnchor(
            anchor.x,
            anchor.y,
            anchor.contourpoint,
            self.device(anchor.x_device),
            self.device(anchor.y_device),
        )

    # ── GSUB subtables ──────────────────────────────────────────────────

    def single_subst(self, subtable: T.SingleSubst) -> otTables.SingleSubst:
        result = otTables.SingleSubst()
        result.Format = subtable.format
        result.mapping = {self.name(a): self.name(b) for a, b in subtable.mapping}
        return result

    def multiple_subst(self, subtable: T.MultipleSubst) -> otTables.MultipleSubst:
        result = otTables.MultipleSubst()
        result.Format = 1
        result.mapping = {self.name(gid): self.names(sequence) for gid, sequence in subtable.mapping}
        return result

    def alternate_subst(self, subtable: T.AlternateSubst) -> otTables.AlternateSubst:
        result = otTables.AlternateSubst()
        result.Format = 1
        result.alternates = {self.name(gid): self.names(alts) for gid, alts in subtable.mapping}
        return result

    def ligature_subst(self, subtable: T.LigatureSubst) -> otTables.LigatureSubst:
        result = otTables.LigatureSubst()
        result.Format = 1
        result.ligatures = {}
        for components, glyph in subtable.ligatures:
            ligature = otTables.Ligature()
            ligature.LigGlyph = self.name(glyph)
            ligature.Component = self.names(components[1:])
            ligature.CompCount = len(components)
            result.ligatures.setdefault(self.name(components[0]), []).append(ligature)
        return result

    def reverse_chain(self, subtable: T.ReverseChainSingleSubst) -> otTables.ReverseChainSingleSubst:
        result = otTables.ReverseChainSingleSubst()
        result.Format = 1
        result.Coverage = self.coverage(subtable.coverage)
        # stored closest-first in the binary
        result.BacktrackCoverage = [self.coverage(c) for c in reversed(subtable.backtrack)]
        result.BacktrackGlyphCount = len(subtable.backtrack)
        result.LookAheadCoverage = [self.coverage(c) for c in subtable.lookahead]
        result.LookAheadGlyphCount = len(subtable.lookahead)
        result.Substitute = [self.name(out) for _, out in subtable.mapping]
        result.GlyphCount = len(subtable.mapping)
        return result

    def chain_context(self, subtable: T.ChainContext):
        if subtable.table == "GSUB":
            result = otTables.ChainContextSubst()
            record_class, records_attr, count_attr = otTables.SubstLookupRecord, "SubstLookupRecord", "SubstCount"
        else:
            result = otTables.ChainContextPos()
            record_class, records_attr, count_attr = otTables.PosLookupRecord, "PosLookupRecord", "PosCount"
        result.Format = 3
        result.BacktrackCoverage = [self.coverage(c) for c in reversed(subtable.backtrack)]
        result.BacktrackGlyphCount = len(subtable.backtrack)
        result.InputCoverage = [self.coverage(c) for c in subtable.input]
        result.InputGlyphCount = len(subtable.input)
        result.LookAheadCoverage = [self.coverage(c) for c in subtable.lookahead]
        result.LookAheadGlyphCount = len(subtable.lookahead)
        records = []
        for position, lookup_index in subtable.lookup_records:
            record = record_class()
            record.SequenceIndex = position
            record.LookupListIndex = lookup_index
            records.append(record)
        setattr(result, records_attr, records)
        setattr(result, count_attr, len(records))
        return result

    # ── GPOS subtables ──────────────────────────────────────────────────

    def single_pos(self, subtable: T.SinglePos) -> otTables.SinglePos:
        result = otTables.SinglePos()
        result.Format = subtable.format
        result.Coverage = self.coverage_of([gid for gid, _ in subtable.entries])
        result.ValueFormat = subtable.value_format
        if result.Format == 1:
            result.Value = self.value(subtable.entries[0][1])
        else:
            result.Value = [self.value(value) for _, value in subtable.entries]
            result.ValueCount = len(result.Value)
        return result

    def pair_pos_format1(self, subtable: T.PairPosFormat1) -> otTables.PairPos:
        result = otTables.PairPos()
        result.Format = 1
        result.Coverage = self.coverage_of([first for first, _ in subtable.pairs])
        result.ValueFormat1 = subtable.value_format1
        result.ValueFormat2 = subtable.value_format2
        result.PairSet = []
        for _, records in subtable.pairs:
            pair_set = otTables.PairSet()
            pair_set.PairValueRecord = []
            for second, value1, value2 in records:
                record = otTables.PairValueRecord()
                record.SecondGlyph = self.name(second)
                record.Value1 = self.value(value1 or T.ValueRecord()) if result.ValueFormat1 else None
                record.Value2 = self.value(value2 or T.ValueRecord()) if result.ValueFormat2 else None
                pair_set.PairValueRecord.append(record)
            pair_set.PairValueCount = len(pair_set.PairValueRecord)
            result.PairSet.append(pair_set)
        result.PairSetCount = len(result.PairSet)
        return result

    def pair_pos_format2(self, subtable: T.PairPosFormat2) -> otTables.PairPos:
        result = otTables.PairPos()
        result.Format = 2
        result.Coverage = self.coverage(subtable.coverage)
        result.ValueFormat1 = subtable.value_format1
        result.ValueFormat2 = subtable.value_format2
        result.ClassDef1 = self.class_def(subtable.class_def1)
        result.ClassDef2 = self.class_def(subtable.class_def2)
        result.Class1Count = len(subtable.matrix)
        result.Class2Count = len(subtable.matrix[0]) if subtable.matrix else 0
        result.Class1Record = []
        for row in subtable.matrix:
            class1_record = otTables.Class1Record()
            class1_record.Class2Record = []
            for value1, value2 in row:
                class2_record = otTables.Class2Record()
                class2_record.Value1 = self.value(value1 or T.ValueRecord()) if result.ValueFormat1 else None
                class2_record.Value2 = self.value(value2 or T.ValueRecord()) if result.ValueFormat2 else None
                class1_record.Class2Record.append(class2_record)
            result.Class1Record.append(class1_record)
        return result

    def cursive_pos(self, subtable: T.CursivePos) -> otTables.CursivePos:
        result = otTables.CursivePos()
        result.Format = 1
        result.Coverage = self.coverage_of([gid for gid, _, _ in subtable.entries])
        result.EntryExitRecord = []
        for _, entry, exit_ in subtable.entries:
            record = otTables.EntryExitRecord()
            record.EntryAnchor = self.anchor(entry)
            record.ExitAnchor = self.anchor(exit_)
            result.EntryExitRecord.append(record)
        result.EntryExitCount = len(result.EntryExitRecord)
        return result

    def mark_array(self, marks: Sequence[T.MarkRecord]) -> otTables.MarkArray:
        result = otTables.MarkArray()
        result.MarkRecord = []
        for _, cls, anchor in marks:
            record = otTables.MarkRecord()
            record.Class = cls
            record.MarkAnchor = self.anchor(anchor)
            result.MarkRecord.append(record)
        result.MarkCount = len(result.MarkRecord)
        return result

    def mark_base_pos(self, subtable: T.MarkBasePos) -> otTables.MarkBasePos:
        result = otTables.MarkBasePos()
        result.Format = 1
        result.MarkCoverage = self.coverage_of([gid for gid, _, _ in subtable.marks])
        result.BaseCoverage = self.coverage_of([gid for gid, _ in subtable.bases])
        result.ClassCount = subtable.class_count
        result.MarkArray = self.mark_array(subtable.marks)
        result.BaseArray = otTables.BaseArray()
        result.BaseArray.BaseRecord = []
        for _, anchors in subtable.bases:
            record = otTables.BaseRecord()
            record.BaseAnchor = [self.anchor(a) for a in anchors]
            result.BaseArray.BaseRecord.append(record)
        result.BaseArray.BaseCount = len(result.BaseArray.BaseRecord)
        return result

    def mark_mark_pos(self, subtable: T.MarkMarkPos) -> otTables.MarkMarkPos:
        result = otTables.MarkMarkPos()
        result.Format = 1
        result.Mark1Coverage = self.coverage_of([gid for gid, _, _ in subtable.marks])
        result.Mark2Coverage = self.coverage_of([gid for gid, _ in subtable.bases])
        result.ClassCount = subtable.class_count
        result.Mark1Array = self.mark_array(subtable.marks)
        result.Mark2Array = otTables.Mark2Array()
        result.Mark2Array.Mark2Record = []
        for _, anchors in subtable.bases:
            record = otTables.Mark2Record()
            record.Mark2Anchor = [self.anchor(a) for a in anchors]
            result.Mark2Array.Mark2Record.append(record)
        result.Mark2Array.Mark2Count = len(result.Mark2Array.Mark2Record)
        return result

    def mark_lig_pos(self, subtable: T.MarkLigPos) -> otTables.MarkLigPos:
        result = otTables.MarkLigPos()
        result.Format = 1
        result.MarkCoverage = self.coverage_of([gid for gid, _, _ in subtable.marks])
        result.LigatureCoverage = self.coverage_of([gid for gid, _ in subtable.ligatures])
        result.ClassCount = subtable.class_count
        result.MarkArray = self.mark_array(subtable.marks)
        result.LigatureArray = otTables.LigatureArray()
        result.LigatureArray.LigatureAttach = []
        for _, components in subtable.ligatures:
            attach = otTables.LigatureAttach()
            attach.ComponentRecord = []
            for anchors in components:
                record = otTables.ComponentRecord()
                record.LigatureAnchor = [self.anchor(a) for a in anchors]
                attach.ComponentRecord.append(record)
            attach.ComponentCount = len(attach.ComponentRecord)
            result.LigatureArray.LigatureAttach.append(attach)
        result.LigatureArray.LigatureCount = len(result.LigatureArray.LigatureAttach)
        return result

    def subtable(self, subtable: T.Subtable):
        lower = {
            T.SingleSubst: self.single_subst,
            T.MultipleSubst: self.multiple_subst,
            T.AlternateSubst: self.alternate_subst,
            T.LigatureSubst: self.ligature_subst,
            T.ReverseChainSingleSubst: self.reverse_chain,
            T.ChainContext: self.chain_context,
            T.SinglePos: self.single_pos,
            T.PairPosFormat1: self.pair_pos_format1,
            T.PairPosFormat2: self.pair_pos_format2,
            T.CursivePos: self.cursive_pos,
            T.MarkBasePos: self.mark_base_pos,
            T.MarkMarkPos: self.mark_mark_pos,
            T.MarkLigPos: self.mark_lig_pos,
        }.get(type(subtable))
        if lower is None:
            raise CompilerBug(f"no lowering for {type(subtable).__name__}")
        return lower(subtable)

    # ── whole tables ────────────────────────────────────────────────────

    @staticmethod
    def extension(tag: str, lookup_type: int, subtable) -> Any:
        result = otTables.ExtensionSubst() if tag == "GSUB" else otTables.ExtensionPos()
        result.Format = 1
        result.ExtensionLookupType = lookup_type
        result.ExtSubTable = subtable
        return result

    def lookup_list(self, table: T.LayoutTable) -> otTables.LookupList:
        objects: Dict[int, Any] = {}
        extensions: Dict[int, Any] = {}

        def shared(index: int) -> Any:
            if index not in objects:
                objects[index] = self.subtable(table.subtables[index])
            return objects[index]

        result = otTables.LookupList()
        result.Lookup = []
        for lookup in table.lookups:
            ot_lookup = otTables.Lookup()
            ot_lookup.LookupFlag = lookup.flag
            if lookup.use_extension:
                ot_lookup.LookupType = _EXTENSION_TYPES[table.tag]
                subtables = []
                for index in lookup.subtables:
                    if index not in extensions:
                        extensions[index] = self.extension(table.tag, lookup.lookup_type, shared(index))
                    subtables.append(extensions[index])
            else:
                ot_lookup.LookupType = lookup.lookup_type
                subtables = [shared(index) for index in lookup.subtables]
            ot_lookup.SubTable = subtables
            ot_lookup.SubTableCount = len(subtables)
            if lookup.mark_filtering_set is not None:
                ot_lookup.MarkFilteringSet = lookup.mark_filtering_set
            result.Lookup.append(ot_lookup)
        result.LookupCount = len(result.Lookup)
        logger.debug(
            "%s: lowered %d lookups with %d distinct subtables",
            table.tag,
            len(table.lookups),
            len(objects),
        )
        return result

    @staticmethod
    def langsys(langsys: T.LangSys) -> otTables.LangSys:
        result = otTables.LangSys()
        result.LookupOrder = None
        result.ReqFeatureIndex = 0xFFFF if langsys.required_feature is None else langsys.required_feature
        result.FeatureIndex = list(langsys.feature_indices)
        result.FeatureCount = len(result.FeatureIndex)
        return result

    def script_list(self, table: T.LayoutTable) -> otTables.ScriptList:
        result = otTables.ScriptList()
        result.ScriptRecord = []
        for script in table.scripts:
            record = otTables.ScriptRecord()
            record.ScriptTag = script.tag
            record.Script = otTables.Script()
            record.Script.DefaultLangSys = self.langsys(script.default) if script.default else None
            record.Script.LangSysRecord = []
            for langsys in script.languages:
                lang_record = otTables.LangSysRecord()
                lang_record.LangSysTag = langsys.tag
                lang_record.LangSys = self.langsys(langsys)
                record.Script.LangSysRecord.append(lang_record)
            record.Script.LangSysCount = len(record.Script.LangSysRecord)
            result.ScriptRecord.append(record)
        result.ScriptCount = len(result.ScriptRecord)
        return result

    @staticmethod
    def feature_params(params: Optional[T.FeatureParams]):
        if isinstance(params, T.SizeParams):
            result = otTables.FeatureParamsSize()
            result.DesignSize = params.design_size
            result.SubfamilyID = params.subfamily_id
            result.SubfamilyNameID = params.subfamily_name_id
            result.RangeStart = params.range_start
            result.RangeEnd = params.range_end
            return result
        if isinstance(params, T.StylisticSetParams):
            result = otTables.FeatureParamsStylisticSet()
            result.Version = 0
            result.UINameID = params.ui_name_id
            return result
        if isinstance(params, T.CharacterVariantParams):
            result = otTables.FeatureParamsCharacterVariants()
            result.Format = 0
            result.FeatUILabelNameID = params.label_name_id
            result.FeatUITooltipTextNameID = params.tooltip_name_id
            result.SampleTextNameID = params.sample_text_name_id
            result.NumNamedParameters = params.num_named_parameters
            result.FirstParamUILabelNameID = params.first_param_name_id
            result.Character = list(params.characters)
            result.CharCount = len(result.Character)
            return result
        return None

    @staticmethod
    def feature(lookups: Sequence[int], params=None) -> otTables.Feature:
        result = otTables.Feature()
        result.FeatureParams = params
        result.LookupListIndex = list(lookups)
        result.LookupCount = len(result.LookupListIndex)
        return result

    def feature_list(self, table: T.LayoutTable) -> otTables.FeatureList:
        result = otTables.FeatureList()
        result.FeatureRecord = []
        for feature in table.features:
            record = otTables.FeatureRecord()
            record.FeatureTag = feature.tag
            record.Feature = self.feature(feature.lookups, self.feature_params(feature.params))
            result.FeatureRecord.append(record)
        result.FeatureCount = len(result.FeatureRecord)
        return result

    def feature_variations(self, table: T.LayoutTable) -> Optional[otTables.FeatureVariations]:
        if not table.feature_variations:
            return None
        result = otTables.FeatureVariations()
        result.Version = 0x00010000
        result.FeatureVariationRecord = []
        for variation in table.feature_variations:
            record = otTables.FeatureVariationRecord()
            record.ConditionSet = otTables.ConditionSet()
            record.ConditionSet.ConditionTable = []
            for condition in variation.conditions:
                ot_condition = otTables.ConditionTable()
                ot_condition.Format = 1
                ot_condition.AxisIndex = condition.axis_index
                ot_condition.FilterRangeMinValue = condition.minimum
                ot_condition.FilterRangeMaxValue = condition.maximum
                record.ConditionSet.ConditionTable.append(ot_condition)
            record.ConditionSet.ConditionCount = len(record.ConditionSet.ConditionTable)
            record.FeatureTableSubstitution = otTables.FeatureTableSubstitution()
            record.FeatureTableSubstitution.Version = 0x00010000
            record.FeatureTableSubstitution.SubstitutionRecord = []
            for feature_index, lookups in variation.substitutions:
                substitution = otTables.FeatureTableSubstitutionRecord()
                substitution.FeatureIndex = feature_index
                substitution.Feature = self.feature(lookups)
                record.FeatureTableSubstitution.SubstitutionRecord.append(substitution)
            record.FeatureTableSubstitution.SubstitutionCount = len(
                record.FeatureTableSubstitution.SubstitutionRecord
            )
            result.FeatureVariationRecord.append(record)
        result.FeatureVariationCount = len(result.FeatureVariationRecord)
        return result

    def layout_table(self, table: T.LayoutTable):
        wrapper = newTable(table.tag)
        ot_table = otTables.GSUB() if table.tag == "GSUB" else otTables.GPOS()
        ot_table.ScriptList = self.script_list(table)
        ot_table.FeatureList = self.feature_list(table)
        ot_table.LookupList = self.lookup_list(table)
        ot_table.FeatureVariations = self.feature_variations(table)
        ot_table.Version = 0x00010001 if ot_table.FeatureVariations is not None else 0x00010000
        wrapper.table = ot_table
        return wrapper

    def gdef_table(self, gdef: T.GdefTable):
        wrapper = newTable("GDEF")
        ot_table = otTables.GDEF()
        ot_table.Version = gdef.version
        ot_table.GlyphClassDef = self.class_def(gdef.glyph_classes) if gdef.glyph_classes else None
        ot_table.AttachList = None
        if gdef.attach_points:
            attach_list = otTables.AttachList()
            attach_list.Coverage = self.coverage_of([gid for gid, _ in gdef.attach_points])
            attach_list.AttachPoint = []
            for _, points in gdef.attach_points:
                point = otTables.AttachPoint()
                point.PointIndex = list(points)
                point.PointCount = len(point.PointIndex)
                attach_list.AttachPoint.append(point)
            attach_list.GlyphCount = len(attach_list.AttachPoint)
            ot_table.AttachList = attach_list
        ot_table.LigCaretList = None
        if gdef.lig_carets:
            caret_list = otTables.LigCaretList()
            caret_list.Coverage = self.coverage_of([gid for gid, _, _ in gdef.lig_carets])
            caret_list.LigGlyph = []
            for _, how, values in gdef.lig_carets:
                lig_glyph = otTables.LigGlyph()
                lig_glyph.CaretValue = []
                for value in values:
                    caret = otTables.CaretValue()
                    if how == "pos":
                        caret.Format = 1
                        caret.Coordinate = value
                    else:
                        caret.Format = 2
                        caret.CaretValuePoint = value
                    lig_glyph.CaretValue.append(caret)
                lig_glyph.CaretCount = len(lig_glyph.CaretValue)
                caret_list.LigGlyph.append(lig_glyph)
            caret_list.LigGlyphCount = len(caret_list.LigGlyph)
            ot_table.LigCaretList = caret_list
        ot_table.MarkAttachClassDef = (
            self.class_def(gdef.mark_attach_classes) if gdef.mark_attach_classes else None
        )
        ot_table.MarkGlyphSetsDef = None
        if gdef.mark_glyph_sets:
            sets = otTables.MarkGlyphSetsDef()
            sets.MarkSetTableFormat = 1
            sets.Coverage = [self.coverage(c) for c in gdef.mark_glyph_sets]
            sets.MarkSetCount = len(sets.Coverage)
            ot_table.MarkGlyphSetsDef = sets
        wrapper.table = ot_table
        return wrapper

    @staticmethod
    def name_table(names: Sequence[T.NameRecord]):
        table = newTable("name")
        table.names = []
        for record in names:
            table.setName(
                record.string, record.name_id, record.platform_id, record.encoding_id, record.language_id
            )
        return table


def build_tables(compiled) -> Dict[str, Any]:
    """Lower a :class:`~feac.backend.CompiledTables` to fontTools tables."""
    lowering = _Lowering(compiled.glyph_order)
    result: Dict[str, Any] = {}
    if compiled.gdef is not None:
        result["GDEF"] = lowering.gdef_table(compiled.gdef)
    for table in (compiled.gpos, compiled.gsub):
        if table is not None:
            result[table.tag] = lowering.layout_table(table)
    if compiled.names:
        result["name"] = lowering.name_table(compiled.names)
    return result


def add_to_font(compiled, font: TTFont) -> List[str]:
    """Install the compiled tables into *font*; returns the tags written.

    The font's glyph order must start with the glyph order the tables were
    compiled against.  Feature names are added to an existing ``name``
    table instead of replacing it.
    """
    order = list(font.getGlyphOrder())
    if order[: len(compiled.glyph_order)] != list(compiled.glyph_order):
        raise ValueError("the font's glyph order does not match the compiled glyph order")
    written = []
    for tag, table in build_tables(compiled).items():
        if tag == "name" and "name" in font:
            for record in compiled.names:
                font["name"].setName(
                    record.string, record.name_id, record.platform_id, record.encoding_id, record.language_id
                )
        else:
            font[tag] = table
        written.append(tag)
    return written
