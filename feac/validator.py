"""
feac/validator.py
=================

Semantic checks that need resolved names and the lookup plan.

Provides:
- ``validate(root, sources, resolution, plan, options)`` → ``(Validation, diagnostics)``

Checks
------
* statement placement (rules outside blocks, ``script``/``language`` in
  lookup blocks, ``languagesystem`` after features, feature parameters
  outside their features, ``feature`` references outside ``aalt``)
* rule shapes (class sizes, single-glyph targets, marked contexts)
* lookup consistency: one rule shape and flag per named lookup; such a
  lookup is reported and dropped
* duplicate, conflicting and unreachable rules within one lookup
* mark classes sharing glyphs within one lookup; bases that are marks
* lookup and mark class references to definitions further down
* condition sets against the configured axes
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass, field, replace
from typing import Dict, Hashable, List, Optional, Sequence, Set, Tuple

from feac import ast as A
from feac.config import CompileOptions
from feac.errors import Diagnostic, DiagnosticCollector, E, Label, Span
from feac.kinds import Kind
from feac.lookups import (
    LOOKUP_TYPE_NAMES,
    LookupPlan,
    PlannedLookup,
    inline_substitution,
    rule_entries,
    rule_lookup_type,
)
from feac.resolver import (
    ChainRule,
    MarkAttachRule,
    MarkLigRule,
    Resolution,
    Resolved,
    SubstRule,
)
from feac.sources import SourceMap
from feac.visitor import walk

__all__ = ["Validation", "validate"]

logger = logging.getLogger(__name__)

_NOWHERE = Span(0, 0, 0)

_STYLISTIC_SET = re.compile(r"^ss(0[1-9]|1[0-9]|20)$")
_CHARACTER_VARIANT = re.compile(r"^cv(0[1-9]|[1-9][0-9])$")


@dataclass
class Validation:
    """Validator output: lookups that must not be built."""

    dropped_lookups: Set[int] = field(default_factory=set)


class _Validator:

    def __init__(
        self,
        root: A.SourceFile,
        sources: SourceMap,
        resolution: Resolution,
        plan: LookupPlan,
        options: CompileOptions,
    ) -> None:
        self.root = root
        self.sources = sources
        self.resolution = resolution
        self.plan = plan
        self.options = options
        self.diagnostics = DiagnosticCollector()
        self.result = Validation()

    def run(self) -> Validation:
        self._check_statements()
        for lookup in self.plan.lookups:
            self._check_lookup(lookup)
        self._check_subtables()
        self._check_required()
        self._check_condition_sets()
        logger.debug(
            "validation found %d problems, dropping %d lookups",
            len(self.diagnostics),
            len(self.result.dropped_lookups),
        )
        return self.result

    def _names(self, glyphs: Sequence[int]) -> str:
        return " ".join(self.resolution.glyph_names(glyphs))

    # ── placement and references ───────────────────────────────────────

    def _misplaced(self, statement: A.AstNode, message: str) -> None:
        self.diagnostics.report(E.MISPLACED_STATEMENT, message, statement.span)

    def _check_statements(self) -> None:
        defined_lookups: Set[str] = set()
        defined_marks: Set[str] = set()
        seen_feature = False
        for statement, parents in walk(self.root, self.sources):
            feature = next(
                (p for p in reversed(parents) if isinstance(p, (A.FeatureBlock, A.VariationBlock))),
                None,
            )
            tag = feature.tag.value if feature is not None and feature.tag is not None else None
            in_lookup = any(isinstance(p, A.LookupBlock) for p in parents)

            if A.is_rule(statement):
                if not parents:
                    self._misplaced(statement, "rules must be inside a feature or lookup block")
                elif tag == "aalt" and not in_lookup and statement.kind not in (Kind.GSUB_TYPE1, Kind.GSUB_TYPE3):
                    self._misplaced(
                        statement, "only single and alternate substitutions are allowed in 'aalt'"
                    )
                self._check_rule_lookups(statement, defined_lookups)
                self._check_rule_mark_classes(statement, defined_marks)
                for rule in self.resolution.rules_of(statement):
                    self._check_rule(rule)
            elif isinstance(statement, (A.Script, A.Language)):
                keyword = "script" if isinstance(statement, A.Script) else "language"
                if feature is None:
                    self._misplaced(statement, f"'{keyword}' must be inside a feature block")
                elif in_lookup:
                    self._misplaced(statement, f"'{keyword}' is not allowed inside a lookup block")
                elif tag in ("aalt", "size"):
                    self._misplaced(statement, f"'{keyword}' is not allowed in feature '{tag}'")
            elif isinstance(statement, (A.Subtable, A.LookupFlag)):
                if not parents:
                    keyword = "subtable" if isinstance(statement, A.Subtable) else "lookupflag"
                    self._misplaced(statement, f"'{keyword}' must be inside a feature or lookup block")
            elif isinstance(statement, A.LanguageSystem):
                if parents:
                    self._misplaced(statement, "'languagesystem' must be at the top level")
                elif seen_feature:
                    self._misplaced(statement, "'languagesystem' must come before the first feature")
            elif isinstance(statement, (A.FeatureBlock, A.VariationBlock)):
                seen_feature = True
                if parents:
                    self._misplaced(statement, "feature blocks cannot be nested")
            elif isinstance(statement, A.MarkClassDef):
                if statement.class_name is not None:
                    defined_marks.add(statement.class_name.name)
            elif isinstance(statement, A.LookupBlock):
                if in_lookup:
                    self._misplaced(statement, "lookup blocks cannot be nested")
                if tag == "aalt":
                    self._misplaced(statement, "lookup blocks are not allowed in 'aalt'")
                if statement.label is not None:
                    defined_lookups.add(statement.label.value)
            elif isinstance(statement, A.ConditionSet):
                if parents:
                    self._misplaced(statement, "'conditionset' must be at the top level")
            elif isinstance(statement, A.LookupRef):
                if feature is None or in_lookup:
                    self._misplaced(statement, "lookup references must be inside a feature block")
                self._check_lookup_order(statement.label, defined_lookups)
            elif isinstance(statement, A.FeatureRef):
                if tag != "aalt" or in_lookup:
                    self._misplaced(statement, "feature references are only allowed in 'aalt'")
            elif isinstance(statement, A.FeatureNames):
                if tag is None or not _STYLISTIC_SET.match(tag):
                    self._misplaced(statement, "'featureNames' is only allowed in stylistic set features")
            elif isinstance(statement, A.CvParameters):
                if tag is None or not _CHARACTER_VARIANT.match(tag):
                    self._misplaced(statement, "'cvParameters' is only allowed in character variant features")
            elif isinstance(statement, (A.SizeParameters, A.SizeMenuName)):
                if tag != "size":
                    self._misplaced(statement, "size parameters are only allowed in feature 'size'")

    def _check_lookup_order(self, label: Optional[A.Label], defined: Set[str]) -> None:
        if label is None:
            return
        symbol = self.resolution.symbols.lookups.get(label.value)
        if symbol is not None and label.value not in defined:
            self.diagnostics.report(
                E.LOOKUP_NOT_YET_DEFINED,
                f"lookup '{label.value}' is used before it is defined",
                label.span,
                labels=(Label(symbol.span, "defined here"),),
            )

    def _check_rule_lookups(self, statement: A.AstNode, defined: Set[str]) -> None:
        if not isinstance(statement, A.Rule):
            return
        for item in statement.items:
            for label in item.lookups:
                self._check_lookup_order(label, defined)

    def _check_rule_mark_classes(self, statement: A.AstNode, defined: Set[str]) -> None:
        if isinstance(statement, A.MarkAttachRule):
            marks = statement.anchor_marks
        elif isinstance(statement, A.MarkLigRule):
            marks = [m for component in statement.components for m in component.anchor_marks]
        else:
            return
        for mark in marks:
            name = mark.mark_class
            if name is None or name.name in defined:
                continue
            symbol = self.resolution.symbols.mark_classes.get(name.name)
            if symbol is not None:
                self.diagnostics.report(
                    E.MARK_CLASS_NOT_YET_DEFINED,
                    f"mark class '@{name.name}' is used before it is defined",
                    name.span,
                    labels=(Label(symbol.span, "defined here"),),
                )

    # ── rule shapes ────────────────────────────────────────────────────

    def _invalid(self, rule: Resolved, message: str) -> None:
        self.diagnostics.report(E.INVALID_RULE, message, rule.span)

    def _check_rule(self, rule: Resolved) -> None:
        if isinstance(rule, SubstRule):
            self._check_subst(rule)
        elif isinstance(rule, ChainRule):
            self._check_chain(rule)

    def _check_subst(self, rule: SubstRule) -> None:
        target = rule.target[0] if rule.target else ()
        if rule.kind is Kind.GSUB_TYPE1:
            replacement = rule.replacement[0] if rule.replacement else ()
            if len(replacement) != 1 and len(replacement) != len(target):
                self._invalid(
                    rule,
                    f"single substitution replaces {len(target)} glyphs by {len(replacement)}; "
                    "the replacement must be one glyph or a class of the same size",
                )
        elif rule.kind is Kind.GSUB_TYPE2:
            if len(target) != 1:
                self._invalid(rule, "the target of a multiple substitution must be a single glyph")
            elif any(len(r) != 1 for r in rule.replacement):
                self._invalid(rule, "the replacement of a multiple substitution must be a glyph sequence")
        elif rule.kind is Kind.GSUB_TYPE3:
            if len(target) != 1:
                self._invalid(rule, "the target of an alternate substitution must be a single glyph")
        elif rule.kind is Kind.GSUB_TYPE4:
            if not rule.replacement or len(rule.replacement[0]) != 1:
                self._invalid(rule, "a ligature substitution must produce a single glyph")

    def _check_chain(self, rule: ChainRule) -> None:
        if not rule.marks_contiguous:
            self._invalid(rule, "the marked glyphs of a contextual rule must be contiguous")
            return
        if rule.ignore:
            if not rule.marked:
                self._invalid(rule, "an ignore rule needs at least one marked glyph")
            return
        if rule.reverse:
            if len(rule.input) != 1:
                self._invalid(rule, "a reverse chaining rule needs exactly one marked glyph")
            elif any(rule.lookups):
                self._invalid(rule, "a reverse chaining rule cannot reference lookups")
            elif rule.has_replacement:
                replacement = rule.replacement[0] if len(rule.replacement) == 1 else ()
                if len(replacement) not in (1, len(rule.input[0])):
                    self._invalid(rule, "a reverse chaining rule needs one replacement glyph per input glyph")
            return
        if rule.has_replacement:
            if not rule.marked:
                self._invalid(rule, "an inline replacement needs marked input glyphs")
            elif any(rule.lookups):
                self._invalid(rule, "a rule cannot have both an inline replacement and lookup references")
            elif inline_substitution(rule) is None:
                self._invalid(rule, "an inline replacement must be a single, multiple or ligature substitution")
            elif len(rule.input) == 1 and len(rule.replacement) == 1:
                size, replacement = len(rule.input[0]), len(rule.replacement[0])
                if replacement not in (1, size):
                    self._invalid(rule, f"inline substitution replaces {size} glyphs by {replacement}")
            elif len(rule.input) == 1 and len(rule.input[0]) != 1 and not rule.null:
                self._invalid(rule, "the target of an inline multiple substitution must be a single glyph")
            elif len(rule.input) > 1 and len(rule.replacement[0]) != 1:
                self._invalid(rule, "an inline ligature substitution must produce a single glyph")
        for position, value in enumerate(rule.values):
            if value is not None and position < len(rule.lookups) and rule.lookups[position]:
                self._invalid(rule, "a position cannot have both a value record and lookup references")
                break

    # ── lookups ────────────────────────────────────────────────────────

    def _check_lookup(self, lookup: PlannedLookup) -> None:
        for planned in lookup.mixed:
            spec = rule_lookup_type(planned.view.kind)
            shape = LOOKUP_TYPE_NAMES.get(spec, "unknown") if spec else "unknown"
            self.diagnostics.report(
                E.MIXED_LOOKUP_TYPES,
                f"{shape} rule (or lookupflag) does not match {lookup.describe()}, "
                f"which holds {lookup.type_name} rules",
                planned.span,
                labels=(Label(lookup.span, "lookup's first rule"),),
            )
            self.result.dropped_lookups.add(lookup.index)
        if lookup.inline_parent is None:
            self._check_duplicates(lookup)
        if lookup.table == "GPOS" and lookup.lookup_type in (4, 5, 6):
            self._check_mark_classes(lookup)

    def _check_duplicates(self, lookup: PlannedLookup) -> None:
        seen: Dict[Hashable, Tuple[Hashable, Span]] = {}
        shapes: Dict[Resolved, Span] = {}
        pair_lookup = lookup.table == "GPOS" and lookup.lookup_type == 2
        for planned in lookup.rules:
            for rule in planned.resolved:
                entries = rule_entries(rule, lookup.lookup_type)
                if not entries:
                    key = replace(rule, span=_NOWHERE)
                    if key in shapes:
                        self.diagnostics.report(
                            E.UNREACHABLE_RULE,
                            f"rule repeats an earlier rule of {lookup.describe()} and is never applied",
                            rule.span,
                            labels=(Label(shapes[key], "earlier rule"),),
                        )
                    else:
                        shapes[key] = rule.span
                    continue
                reported = False
                for key, value in entries:
                    if key not in seen:
                        seen[key] = (value, rule.span)
                        continue
                    if reported:
                        continue
                    reported = True
                    previous_value, previous_span = seen[key]
                    what = self._names(key if isinstance(key, tuple) else (key,))
                    labels = (Label(previous_span, "first defined here"),)
                    if pair_lookup:
                        self.diagnostics.report(
                            E.DUPLICATE_RULE,
                            f"duplicate pair '{what}'; the first adjustment is used",
                            rule.span,
                            labels=labels,
                        )
                    elif previous_value == value:
                        self.diagnostics.report(
                            E.DUPLICATE_RULE, f"duplicate rule for '{what}'", rule.span, labels=labels
                        )
                    else:
                        self.diagnostics.report(
                            E.CONFLICTING_RULE,
                            f"'{what}' already has a different {lookup.type_name} in {lookup.describe()}",
                            rule.span,
                            labels=labels,
                        )

    def _check_mark_classes(self, lookup: PlannedLookup) -> None:
        symbols = self.resolution.symbols.mark_classes
        owner: Dict[int, str] = {}
        reported: Set[Tuple[str, str]] = set()
        all_marks: Set[int] = {g for mc in symbols.values() for g in mc.glyphs}
        for planned in lookup.rules:
            for rule in planned.resolved:
                if isinstance(rule, MarkAttachRule):
                    anchor_marks = list(rule.marks)
                    bases = rule.bases
                elif isinstance(rule, MarkLigRule):
                    anchor_marks = [m for component in rule.components for m in component]
                    bases = rule.ligatures
                else:
                    continue
                for _, name in anchor_marks:
                    if name is None:
                        continue
                    for gid in symbols[name].glyphs:
                        other = owner.setdefault(gid, name)
                        if other != name and (other, name) not in reported:
                            reported.add((other, name))
                            self.diagnostics.report(
                                E.MARK_CLASS_CONFLICT,
                                f"glyph '{self.resolution.glyph_map.name(gid)}' is in mark classes "
                                f"'@{other}' and '@{name}', both used by {lookup.describe()}",
                                rule.span,
                                labels=(
                                    Label(symbols[other].span, f"'@{other}' defined here"),
                                    Label(symbols[name].span, f"'@{name}' defined here"),
                                ),
                            )
                if rule.kind is not Kind.GPOS_TYPE6:
                    marks = [g for g in bases if g in all_marks]
                    if marks:
                        self.diagnostics.report(
                            E.BASE_IS_MARK,
                            f"'{self._names(marks)}' is used as a base but is also a mark",
                            rule.span,
                        )

    def _check_subtables(self) -> None:
        for statement, lookup in self.plan.subtables:
            if lookup is None or not (lookup.table == "GPOS" and lookup.lookup_type == 2):
                self.diagnostics.report(
                    E.SUBTABLE_IGNORED,
                    "'subtable' only has an effect in pair positioning lookups",
                    statement.span,
                )

    def _check_required(self) -> None:
        for statement, tag, span in self.plan.required_conflicts:
            self.diagnostics.report(
                E.DUPLICATE_REQUIRED_FEATURE,
                f"language already has '{tag.strip()}' as its required feature",
                statement.span,
                labels=(Label(span, "required here"),),
            )

    def _check_condition_sets(self) -> None:
        axes = self.options.axes
        for symbol in self.resolution.symbols.condition_sets.values():
            for condition in symbol.definition.conditions:
                if condition.tag is None:
                    continue
                axis = condition.tag.value.strip()
                if axis not in axes:
                    known = ", ".join(sorted(axes)) or "none configured"
                    self.diagnostics.report(
                        E.UNKNOWN_AXIS,
                        f"condition set '{symbol.name}' uses unknown axis '{axis}' (known axes: {known})",
                        condition.span,
                    )
                elif condition.minimum > condition.maximum:
                    self.diagnostics.report(
                        E.INVALID_CONDITION,
                        f"condition on '{axis}' has minimum {condition.minimum} above maximum {condition.maximum}",
                        condition.span,
                    )


def validate(
    root: A.SourceFile,
    sources: SourceMap,
    resolution: Resolution,
    plan: LookupPlan,
    options: Optional[CompileOptions] = None,
) -> Tuple[Validation, List[Diagnostic]]:
    validator = _Validator(root, sources, resolution, plan, options or CompileOptions())
    result = validator.run()
    return result, list(validator.diagnostics)
