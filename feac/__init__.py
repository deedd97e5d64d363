"""feac — an OpenType feature file compiler.

Compiles Adobe feature file (``.fea``) source to GSUB, GPOS and GDEF
layout tables, including FeatureVariations.

Submodules
----------
lexer, parser, cst
    Tokens with trivia, recursive-descent parser with error recovery,
    lossless arena syntax tree (``tree.text()`` is the exact input).

ast, visitor
    Typed lazy views over syntax nodes and statement walkers that splice
    included files in place.

sources
    Per-compilation file registry, line/column mapping, include
    expansion through a resolver callback.

resolver, lookups, validator
    Symbol tables and glyph resolution, lookup planning, semantic checks.

tables, backend, otl
    Hashable table model with deterministic format selection, table
    assembly with subtable sharing, lowering to fontTools objects.

errors, config
    Diagnostics with stable ``FEA-NNNN`` codes; compilation options.

pipeline, main
    The stage-gated driver and the ``python -m feac`` command line.

Usage
-----
Library::

    from feac import compile_source

    result = compile_source(text, glyph_order=font.getGlyphOrder())
    if result.success:
        for tag, table in result.to_fonttools().items():
            font[tag] = table

Command line::

    python -m feac compile features.fea --font MyFont.ttf -o Out.ttf
"""

__version__ = "0.1.0"

from feac.config import AxisInfo, CompileOptions
from feac.errors import (
    CompilerBug,
    ConfigError,
    Diagnostic,
    DiagnosticCollector,
    E,
    FeacError,
    IncludeNotFound,
    Severity,
    Span,
    format_diagnostics,
)
from feac.pipeline import CompilationResult, ParseResult, compile_source, parse_source
from feac.sources import DictIncludeResolver, FileSystemIncludeResolver

__all__ = [
    "__version__",
    "AxisInfo",
    "CompileOptions",
    "CompilerBug",
    "ConfigError",
    "Diagnostic",
    "DiagnosticCollector",
    "E",
    "FeacError",
    "IncludeNotFound",
    "Severity",
    "Span",
    "format_diagnostics",
    "CompilationResult",
    "ParseResult",
    "compile_source",
    "parse_source",
    "DictIncludeResolver",
    "FileSystemIncludeResolver",
]
