"""
feac/pipeline.py
================

The compilation driver.

Provides:
- ``parse_source(text, path=...)``   → :class:`ParseResult`
- ``compile_source(text, ...)``      → :class:`CompilationResult`

Stages run in order: parse (with include expansion), resolve, plan and
validate, backend.  Each stage's diagnostics are appended to the
compilation's collector in source order once the stage is done; a stage
that produced an ERROR stops the pipeline after it.  Warnings never do.

Input may be ``str`` or ``bytes``.  Bytes are decoded as UTF-8 with the
``surrogateescape`` handler so invalid sequences survive the round trip
(``tree.to_bytes()`` gives back the exact input).
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Sequence, Tuple, Union

from feac import ast as A
from feac.backend import CompiledTables, compile_tables
from feac.config import CompileOptions
from feac.cst import SyntaxTree
from feac.errors import Diagnostic, DiagnosticCollector, Severity
from feac.lookups import plan_lookups
from feac.parser import parse
from feac.resolver import resolve
from feac.sources import IncludeResolver, SourceFile, SourceMap, expand_includes
from feac.validator import validate

__all__ = ["ParseResult", "CompilationResult", "parse_source", "compile_source", "decode_source"]

logger = logging.getLogger(__name__)

Source = Union[str, bytes]


def decode_source(text: Source) -> str:
    if isinstance(text, bytes):
        return text.decode("utf-8", "surrogateescape")
    return text


@dataclass(frozen=True)
class ParseResult:
    """A single file's syntax tree and its lexical/syntax diagnostics."""

    tree: SyntaxTree
    diagnostics: Tuple[Diagnostic, ...]
    sources: SourceMap

    @property
    def success(self) -> bool:
        return not any(d.is_fatal() for d in self.diagnostics)

    def text(self) -> str:
        return self.tree.text()

    def to_bytes(self) -> bytes:
        return self.tree.to_bytes()


@dataclass(frozen=True)
class CompilationResult:
    """Outcome of :func:`compile_source`.

    ``tables`` is ``None`` when the pipeline stopped before the backend.
    After the backend ran it holds every table that compiled cleanly, even
    when ``success`` is false because another table was withheld.
    """

    success: bool
    tables: Optional[CompiledTables]
    diagnostics: Tuple[Diagnostic, ...]
    sources: SourceMap
    tree: SyntaxTree

    @property
    def errors(self) -> List[Diagnostic]:
        return [d for d in self.diagnostics if d.severity is Severity.ERROR]

    @property
    def warnings(self) -> List[Diagnostic]:
        return [d for d in self.diagnostics if d.severity is Severity.WARNING]

    def to_fonttools(self) -> Dict[str, Any]:
        if self.tables is None:
            return {}
        return self.tables.to_fonttools()


def parse_source(text: Source, path: str = "<input>") -> ParseResult:
    """Parse one file without following its includes."""
    sources = SourceMap()
    source = sources.add(path, decode_source(text))
    tree, diagnostics = parse(source.text, file_id=source.file_id, path=path)
    source.tree = tree
    return ParseResult(tree, tuple(sorted(diagnostics, key=lambda d: d.span)), sources)


def _parse_stage(
    sources: SourceMap,
    root: SourceFile,
    include_resolver: Optional[IncludeResolver],
    options: CompileOptions,
) -> List[Diagnostic]:
    stage = DiagnosticCollector()

    def parse_file(source: SourceFile) -> None:
        tree, diagnostics = parse(source.text, file_id=source.file_id, path=source.path)
        source.tree = tree
        stage.extend(diagnostics)

    parse_file(root)
    expand_includes(
        sources, root, parse_file, include_resolver, stage,
        max_depth=options.max_include_depth,
    )
    return list(stage)


def compile_source(
    text: Source,
    *,
    path: str = "<input>",
    glyph_order: Optional[Sequence[str]] = None,
    options: Optional[CompileOptions] = None,
    include_resolver: Optional[IncludeResolver] = None,
) -> CompilationResult:
    """Compile FEA source to layout tables.

    Without *glyph_order* every glyph name the source uses is accepted and
    numbered in order of first appearance.  Raises
    :class:`~feac.errors.ConfigError` for invalid *options*; problems in
    the source are only ever reported as diagnostics.
    """
    options = options or CompileOptions()
    options.check()

    collector = DiagnosticCollector()
    sources = SourceMap()
    root_source = sources.add(path, decode_source(text))

    def finish(tables: Optional[CompiledTables] = None) -> CompilationResult:
        return CompilationResult(
            success=tables is not None and not collector.has_fatal(),
            tables=tables,
            diagnostics=collector.diagnostics,
            sources=sources,
            tree=root_source.tree,
        )

    def stage_done(name: str, diagnostics: List[Diagnostic]) -> bool:
        collector.extend_in_source_order(diagnostics, key=sources.order_key)
        logger.debug("%s: %d diagnostic(s)", name, len(diagnostics))
        if collector.has_fatal():
            logger.debug("stopping after %s: %d error(s)", name, len(collector.errors))
            return False
        return True

    logger.debug("parsing %s", path)
    if not stage_done("parse", _parse_stage(sources, root_source, include_resolver, options)):
        return finish()
    root = A.SourceFile(root_source.tree.root)

    logger.debug("resolving %d file(s)", len(sources))
    resolution, diagnostics = resolve(root, sources, glyph_order, options)
    if not stage_done("resolve", diagnostics):
        return finish()

    plan = plan_lookups(root, sources, resolution)
    validation, diagnostics = validate(root, sources, resolution, plan, options)
    if not stage_done("validate", diagnostics):
        return finish()

    tables, diagnostics = compile_tables(root, sources, resolution, plan, validation, options)
    stage_done("backend", diagnostics)
    return finish(tables)
