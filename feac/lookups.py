"""feac/lookups.py – assembling rules into lookups.

FEA does not spell out lookups for the rules written directly in a
feature block: consecutive rules of one lookup type under one lookupflag
share an anonymous lookup, and a type or flag change starts the next one.
This module replays the statements in source order and produces a
:class:`LookupPlan`: the lookups in creation order, which language
systems of which feature (or feature variation) reference them, and the
side tables (``aalt``, feature parameters, required features) the
backend needs.  The validator uses the same plan, so "per lookup" checks
see exactly the lookups that will be built.

Contextual rules with inline replacements (``sub a' by b;``) or inline
values (``pos a' 10 b;``) get anonymous single/multiple/ligature (or
single positioning) lookups created right after the contextual lookup.
A rule is added to the first such lookup it does not conflict with.
"""

from __future__ import annotations

import itertools
import logging
from dataclasses import dataclass, field
from typing import Dict, Hashable, List, Optional, Tuple

from feac import ast as A
from feac.errors import Span
from feac.glyphs import GlyphClass
from feac.kinds import Kind
from feac.resolver import (
    ChainRule,
    PairPosRule,
    Resolution,
    Resolved,
    SinglePosRule,
    SubstRule,
)
from feac.sources import SourceMap
from feac.visitor import iter_statements

__all__ = [
    "FlagSpec",
    "PlannedRule",
    "PlannedLookup",
    "AaltPlan",
    "LookupPlan",
    "plan_lookups",
    "rule_lookup_type",
    "rule_entries",
    "inline_substitution",
]

logger = logging.getLogger(__name__)

LangSysKey = Tuple[str, str]
FeatureKey = Tuple[str, str, str]  # (script, language, feature tag)

_RULE_TYPES: Dict[Kind, Tuple[str, int]] = {
    Kind.GSUB_TYPE1: ("GSUB", 1),
    Kind.GSUB_TYPE2: ("GSUB", 2),
    Kind.GSUB_TYPE3: ("GSUB", 3),
    Kind.GSUB_TYPE4: ("GSUB", 4),
    Kind.GSUB_TYPE6: ("GSUB", 6),
    Kind.GSUB_IGNORE: ("GSUB", 6),
    Kind.GSUB_TYPE8: ("GSUB", 8),
    Kind.GPOS_TYPE1: ("GPOS", 1),
    Kind.GPOS_TYPE2: ("GPOS", 2),
    Kind.GPOS_TYPE3: ("GPOS", 3),
    Kind.GPOS_TYPE4: ("GPOS", 4),
    Kind.GPOS_TYPE5: ("GPOS", 5),
    Kind.GPOS_TYPE6: ("GPOS", 6),
    Kind.GPOS_TYPE8: ("GPOS", 8),
    Kind.GPOS_IGNORE: ("GPOS", 8),
}

LOOKUP_TYPE_NAMES: Dict[Tuple[str, int], str] = {
    ("GSUB", 1): "single substitution",
    ("GSUB", 2): "multiple substitution",
    ("GSUB", 3): "alternate substitution",
    ("GSUB", 4): "ligature substitution",
    ("GSUB", 6): "chaining contextual substitution",
    ("GSUB", 8): "reverse chaining substitution",
    ("GPOS", 1): "single positioning",
    ("GPOS", 2): "pair positioning",
    ("GPOS", 3): "cursive attachment",
    ("GPOS", 4): "mark-to-base attachment",
    ("GPOS", 5): "mark-to-ligature attachment",
    ("GPOS", 6): "mark-to-mark attachment",
    ("GPOS", 8): "chaining contextual positioning",
}


def rule_lookup_type(kind: Kind) -> Optional[Tuple[str, int]]:
    """``(table, lookup type)`` of a rule kind; None if unrepresentable."""
    return _RULE_TYPES.get(kind)


@dataclass(frozen=True)
class FlagSpec:
    """A lookupflag: low bits plus the glyphs of its two class operands."""

    bits: int = 0
    mark_attachment: Optional[GlyphClass] = None
    mark_filtering_set: Optional[GlyphClass] = None


_NO_FLAG = FlagSpec()


@dataclass
class PlannedRule:
    view: A.AstNode
    resolved: Tuple[Resolved, ...]
    subtable_break: bool = False
    # input position -> inline lookup indices (contextual rules only)
    inline: Dict[int, List[int]] = field(default_factory=dict)

    @property
    def span(self) -> Span:
        return self.view.span


@dataclass
class PlannedLookup:
    index: int
    table: str
    lookup_type: int
    flag: FlagSpec
    span: Span
    name: Optional[str] = None
    use_extension: bool = False
    rules: List[PlannedRule] = field(default_factory=list)
    # rules that do not fit the lookup's type or flag
    mixed: List[PlannedRule] = field(default_factory=list)
    inline_parent: Optional[int] = None
    inline_children: List[int] = field(default_factory=list)

    @property
    def type_name(self) -> str:
        return LOOKUP_TYPE_NAMES[(self.table, self.lookup_type)]

    def describe(self) -> str:
        return f"lookup '{self.name}'" if self.name else f"anonymous {self.type_name} lookup"


@dataclass
class AaltPlan:
    span: Span
    language_systems: List[LangSysKey]
    features: List[A.FeatureRef] = field(default_factory=list)
    rules: List[PlannedRule] = field(default_factory=list)


@dataclass
class LookupPlan:
    language_systems: List[LangSysKey]
    lookups: List[PlannedLookup] = field(default_factory=list)
    named: Dict[str, int] = field(default_factory=dict)
    features: Dict[FeatureKey, List[int]] = field(default_factory=dict)
    # condition set name -> registrations made inside variation blocks
    variations: Dict[str, Dict[FeatureKey, List[int]]] = field(default_factory=dict)
    required: Dict[LangSysKey, Tuple[str, Span]] = field(default_factory=dict)
    required_conflicts: List[Tuple[A.Language, str, Span]] = field(default_factory=list)
    aalt: Optional[AaltPlan] = None
    # (feature tag, statement) for featureNames, cvParameters, parameters, sizemenuname
    feature_params: List[Tuple[str, A.AstNode]] = field(default_factory=list)
    unsupported: List[PlannedRule] = field(default_factory=list)
    subtables: List[Tuple[A.Subtable, Optional[PlannedLookup]]] = field(default_factory=list)

    def feature_tags(self) -> List[str]:
        return sorted({key[2] for key in self.features})


# ═══════════════════════════════════════════════════════════════════════
#  Rule expansion
# ═══════════════════════════════════════════════════════════════════════

def _single_pairs(rule: SubstRule) -> List[Tuple[int, int]]:
    target = rule.target[0] if rule.target else ()
    replacement = rule.replacement[0] if rule.replacement else ()
    if len(replacement) == 1:
        return [(gid, replacement[0]) for gid in target]
    return list(zip(target, replacement))


def rule_entries(rule: Resolved, lookup_type: int) -> List[Tuple[Hashable, Hashable]]:
    """The ``(key, value)`` mapping entries a rule contributes to a lookup.

    Keys are glyph ids (ligature components for type 4, glyph pairs for
    pair positioning); rules without a mapping form (contextual, cursive,
    mark attachment, class pairs) contribute nothing.
    """
    if isinstance(rule, SubstRule):
        if rule.kind is Kind.GSUB_TYPE1 and lookup_type == 1:
            return list(_single_pairs(rule))
        if rule.kind is Kind.GSUB_TYPE1 and lookup_type == 2:
            return [(gid, (out,)) for gid, out in _single_pairs(rule)]
        if rule.kind is Kind.GSUB_TYPE2:
            sequence = () if rule.null else tuple(r[0] for r in rule.replacement if r)
            return [(gid, sequence) for gid in (rule.target[0] if rule.target else ())]
        if rule.kind is Kind.GSUB_TYPE3:
            alternates = rule.replacement[0] if rule.replacement else ()
            return [(gid, alternates) for gid in (rule.target[0] if rule.target else ())]
        if rule.kind is Kind.GSUB_TYPE4 and rule.replacement and rule.replacement[0]:
            ligature = rule.replacement[0][0]
            return [(components, ligature) for components in itertools.product(*rule.target)]
        return []
    if isinstance(rule, SinglePosRule):
        return [(gid, rule.value) for gid in rule.glyphs]
    if isinstance(rule, PairPosRule) and not rule.is_class_pair:
        return [
            ((g1, g2), (rule.value1, rule.value2))
            for g1 in rule.first
            for g2 in rule.second
        ]
    return []


def inline_substitution(chain: ChainRule) -> Optional[Tuple[int, SubstRule]]:
    """The lookup type and rule an inline contextual replacement stands for."""
    inputs = len(chain.input)
    outputs = len(chain.replacement)
    if not inputs:
        return None
    if chain.null:
        return 2, SubstRule(Kind.GSUB_TYPE2, chain.span, chain.input[:1], (), (False,), True)
    if inputs == 1 and outputs == 1:
        return 1, SubstRule(Kind.GSUB_TYPE1, chain.span, chain.input, chain.replacement, (True,))
    if inputs == 1 and outputs > 1:
        return 2, SubstRule(Kind.GSUB_TYPE2, chain.span, chain.input, chain.replacement, (False,))
    if inputs > 1 and outputs == 1:
        return 4, SubstRule(
            Kind.GSUB_TYPE4, chain.span, chain.input, chain.replacement, (False,) * inputs
        )
    return None


def _conflicts(lookup: PlannedLookup, rule: Resolved) -> bool:
    existing: Dict[Hashable, Hashable] = {}
    for planned in lookup.rules:
        for resolved in planned.resolved:
            existing.update(rule_entries(resolved, lookup.lookup_type))
    return any(key in existing and existing[key] != value
               for key, value in rule_entries(rule, lookup.lookup_type))


# ═══════════════════════════════════════════════════════════════════════
#  Planner
# ═══════════════════════════════════════════════════════════════════════

@dataclass
class _Context:
    """Where rules currently go: a feature block or a named lookup block."""

    tag: Optional[str] = None
    name: Optional[str] = None
    registrations: Optional[Dict[FeatureKey, List[int]]] = None
    language_systems: List[LangSysKey] = field(default_factory=list)
    script: str = "DFLT"
    flag: FlagSpec = _NO_FLAG
    current: Optional[PlannedLookup] = None
    pending_break: bool = False
    use_extension: bool = False
    aalt: bool = False


class _Planner:

    def __init__(self, resolution: Resolution, sources: SourceMap) -> None:
        self.resolution = resolution
        self.sources = sources
        systems = [(s.script, s.language) for s in resolution.symbols.language_systems]
        self.plan = LookupPlan(systems or [("DFLT", "dflt")])

    def run(self, root: A.SourceFile) -> LookupPlan:
        for statement in iter_statements(root, self.sources):
            if isinstance(statement, A.FeatureBlock) and statement.tag is not None:
                self._feature(statement, statement.tag.value, None)
            elif isinstance(statement, A.VariationBlock) and statement.tag is not None:
                name = statement.condition_set.value if statement.condition_set else None
                if name in self.resolution.symbols.condition_sets:
                    self._feature(statement, statement.tag.value, name)
            elif isinstance(statement, A.LookupBlock):
                self._lookup_block(statement, None)
        logger.debug(
            "planned %d lookups for %d feature registrations",
            len(self.plan.lookups),
            len(self.plan.features),
        )
        return self.plan

    # ── blocks ─────────────────────────────────────────────────────────

    def _feature(self, block: A.Block, tag: str, condition_set: Optional[str]) -> None:
        if condition_set is None:
            registrations = self.plan.features
        else:
            registrations = self.plan.variations.setdefault(condition_set, {})
        ctx = _Context(
            tag=tag,
            registrations=registrations,
            language_systems=list(self.plan.language_systems),
            use_extension=getattr(block, "use_extension", False),
        )
        if tag == "aalt" and condition_set is None:
            ctx.aalt = True
            ctx.registrations = None
            if self.plan.aalt is None:
                self.plan.aalt = AaltPlan(block.span, list(self.plan.language_systems))
        for statement in iter_statements(block, self.sources):
            self._statement(ctx, statement)

    def _lookup_block(self, block: A.LookupBlock, outer: Optional[_Context]) -> None:
        if block.label is None:
            return
        name = block.label.value
        symbol = self.resolution.symbols.lookups.get(name)
        if symbol is None or symbol.block != block:
            return
        ctx = _Context(name=name, use_extension=block.use_extension)
        for statement in iter_statements(block, self.sources):
            self._statement(ctx, statement)
        if outer is not None and ctx.current is not None:
            self._register(outer, ctx.current.index)
            outer.current = None

    def _statement(self, ctx: _Context, statement: A.AstNode) -> None:
        if A.is_rule(statement):
            self._rule(ctx, statement)
        elif isinstance(statement, A.LookupFlag):
            ctx.flag = self._flag(statement)
            if ctx.name is None:
                ctx.current = None
        elif isinstance(statement, A.Subtable):
            ctx.pending_break = True
            self.plan.subtables.append((statement, ctx.current))
        elif isinstance(statement, A.LookupBlock):
            self._lookup_block(statement, ctx if ctx.tag is not None else None)
        elif ctx.tag is None:
            return
        elif isinstance(statement, A.Script) and statement.tag is not None:
            ctx.script = statement.tag.value
            ctx.language_systems = [(ctx.script, "dflt")]
            ctx.flag = _NO_FLAG
            ctx.current = None
        elif isinstance(statement, A.Language) and statement.tag is not None:
            self._language(ctx, statement)
        elif isinstance(statement, A.LookupRef) and statement.label is not None:
            index = self.plan.named.get(statement.label.value)
            if index is not None:
                self._register(ctx, index)
        elif isinstance(statement, A.FeatureRef) and ctx.aalt and self.plan.aalt is not None:
            self.plan.aalt.features.append(statement)
        elif isinstance(statement, (A.FeatureNames, A.CvParameters, A.SizeParameters, A.SizeMenuName)):
            self.plan.feature_params.append((ctx.tag, statement))

    def _language(self, ctx: _Context, statement: A.Language) -> None:
        language = statement.tag.value
        ctx.current = None
        ctx.language_systems = [(ctx.script, language)]
        if ctx.registrations is None:
            return
        key = (ctx.script, language, ctx.tag)
        base = ctx.registrations.get((ctx.script, "dflt", ctx.tag))
        if (language == "dflt" or statement.include_default) and base:
            ctx.registrations[key] = list(base)
        else:
            ctx.registrations[key] = []
        if statement.required:
            system = (ctx.script, language)
            if system in self.plan.required:
                self.plan.required_conflicts.append((statement, *self.plan.required[system]))
            else:
                self.plan.required[system] = (ctx.tag, statement.span)

    def _flag(self, statement: A.LookupFlag) -> FlagSpec:
        attach, filtering = self.resolution.statements.get(statement.key, (None, None))
        return FlagSpec(statement.bits, attach or None, filtering or None)

    def _register(self, ctx: _Context, index: int) -> None:
        if ctx.registrations is None or ctx.tag is None:
            return
        for script, language in ctx.language_systems:
            lookups = ctx.registrations.setdefault((script, language, ctx.tag), [])
            if index not in lookups:
                lookups.append(index)

    # ── rules ──────────────────────────────────────────────────────────

    def _new_lookup(self, ctx: _Context, table: str, lookup_type: int, span: Span) -> PlannedLookup:
        lookup = PlannedLookup(
            index=len(self.plan.lookups),
            table=table,
            lookup_type=lookup_type,
            flag=ctx.flag,
            span=span,
            name=ctx.name,
            use_extension=ctx.use_extension,
        )
        self.plan.lookups.append(lookup)
        return lookup

    def _rule(self, ctx: _Context, view: A.AstNode) -> None:
        resolved = self.resolution.rules.get(view.key)
        if resolved is None or (ctx.tag is None and ctx.name is None):
            return
        planned = PlannedRule(view, resolved, ctx.pending_break)
        ctx.pending_break = False
        spec = rule_lookup_type(view.kind)
        if spec is None:
            self.plan.unsupported.append(planned)
            return
        if ctx.aalt:
            if spec in (("GSUB", 1), ("GSUB", 3)) and self.plan.aalt is not None:
                self.plan.aalt.rules.append(planned)
            return
        table, lookup_type = spec
        lookup = ctx.current
        if ctx.name is not None:
            if lookup is None:
                lookup = self._new_lookup(ctx, table, lookup_type, view.span)
                self.plan.named[ctx.name] = lookup.index
            else:
                merged = _merge_types(lookup, table, lookup_type)
                if merged is None or lookup.flag != ctx.flag:
                    lookup.mixed.append(planned)
                    return
                lookup.lookup_type = merged
        elif lookup is None or lookup.flag != ctx.flag or not _accepts(lookup, table, lookup_type):
            lookup = self._new_lookup(ctx, table, lookup_type, view.span)
            self._register(ctx, lookup.index)
        lookup.rules.append(planned)
        ctx.current = lookup
        self._inline(lookup, planned)

    def _inline(self, parent: PlannedLookup, planned: PlannedRule) -> None:
        for chain in planned.resolved:
            if not isinstance(chain, ChainRule) or chain.ignore or chain.reverse:
                continue
            if chain.table == "GSUB" and chain.has_replacement:
                inline = inline_substitution(chain)
                if inline is not None:
                    lookup_type, rule = inline
                    index = self._inline_lookup(parent, "GSUB", lookup_type, rule, planned.view)
                    planned.inline.setdefault(0, []).append(index)
            elif chain.table == "GPOS":
                for position, value in enumerate(chain.values):
                    if value is None:
                        continue
                    rule = SinglePosRule(Kind.GPOS_TYPE1, chain.span, chain.input[position], value)
                    index = self._inline_lookup(parent, "GPOS", 1, rule, planned.view)
                    planned.inline.setdefault(position, []).append(index)

    def _inline_lookup(
        self,
        parent: PlannedLookup,
        table: str,
        lookup_type: int,
        rule: Resolved,
        view: A.AstNode,
    ) -> int:
        for index in parent.inline_children:
            candidate = self.plan.lookups[index]
            if candidate.lookup_type == lookup_type and not _conflicts(candidate, rule):
                break
        else:
            candidate = PlannedLookup(
                index=len(self.plan.lookups),
                table=table,
                lookup_type=lookup_type,
                flag=parent.flag,
                span=view.span,
                use_extension=parent.use_extension,
                inline_parent=parent.index,
            )
            self.plan.lookups.append(candidate)
            parent.inline_children.append(candidate.index)
        candidate.rules.append(PlannedRule(view, (rule,)))
        return candidate.index


def _merge_types(lookup: PlannedLookup, table: str, lookup_type: int) -> Optional[int]:
    if lookup.table != table:
        return None
    if lookup.lookup_type == lookup_type:
        return lookup_type
    # single substitutions are promoted into multiple substitution lookups
    if table == "GSUB" and {lookup.lookup_type, lookup_type} == {1, 2}:
        return 2
    return None


def _accepts(lookup: PlannedLookup, table: str, lookup_type: int) -> bool:
    if lookup.table != table:
        return False
    return lookup.lookup_type == lookup_type or (
        table == "GSUB" and lookup.lookup_type == 2 and lookup_type == 1
    )


def plan_lookups(root: A.SourceFile, sources: SourceMap, resolution: Resolution) -> LookupPlan:
    """Replay the compilation's statements and assemble its lookups."""
    return _Planner(resolution, sources).run(root)
