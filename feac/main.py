#!/usr/bin/env python3
"""feac/main.py — command-line front end for the feature compiler.

Usage examples
--------------
    # Parse a feature file and print its syntax tree as an S-expression
    python -m feac parse font.fea

    # Check a feature file against a font's glyph order, print diagnostics
    python -m feac check font.fea --font MyFont.ttf

    # Compile and write the layout tables as TTX
    python -m feac compile font.fea --glyphs glyphs.txt -o layout.ttx

    # Compile straight into a copy of a font
    python -m feac compile font.fea --font MyFont.ttf -o MyFont-fea.ttf

Exit codes
----------
    0   Success (no ERROR diagnostics).
    1   One or more diagnostics with severity ERROR were emitted.
    2   Infrastructure failure (unreadable file, bad option, etc.).

The module doubles as ``python -m feac`` via ``feac/__main__.py``.
"""

from __future__ import annotations

import argparse
import json
import logging
import sys
from pathlib import Path
from typing import Dict, List, Optional, Sequence, TextIO, Tuple

from fontTools.ttLib import TTFont, TTLibError

from feac import __version__
from feac.config import AxisInfo, CompileOptions
from feac.cst import dump_sexp
from feac.errors import ConfigError, Diagnostic, Severity
from feac.otl import add_to_font
from feac.pipeline import compile_source, parse_source
from feac.sources import FileSystemIncludeResolver, SourceMap

_log = logging.getLogger("feac")

EXIT_OK: int = 0
EXIT_ERROR: int = 1
EXIT_INFRA: int = 2


# ===========================================================================
# Utility helpers
# ===========================================================================

def _configure_logging(verbosity: int) -> None:
    """Set up the ``feac`` logger: 0 → WARNING, 1 → INFO, 2+ → DEBUG."""
    level = logging.WARNING
    if verbosity == 1:
        level = logging.INFO
    elif verbosity >= 2:
        level = logging.DEBUG

    handler = logging.StreamHandler(sys.stderr)
    handler.setFormatter(
        logging.Formatter(
            fmt="%(asctime)s [%(levelname)-5.5s] %(name)s: %(message)s",
            datefmt="%H:%M:%S",
        )
    )
    root = logging.getLogger("feac")
    root.setLevel(level)
    for old in list(root.handlers):
        root.removeHandler(old)
    root.addHandler(handler)


def _resolve_path(raw: str, label: str = "file") -> Path:
    """Resolve *raw* to an absolute ``Path``, raising on missing files."""
    p = Path(raw).expanduser().resolve()
    if not p.exists():
        _log.error("%s not found: %s", label, p)
        raise SystemExit(EXIT_INFRA)
    return p


def _open_output(dest: Optional[str]) -> TextIO:
    """*dest* ``None`` or ``"-"`` → ``sys.stdout``; otherwise open the path."""
    if dest is None or dest == "-":
        return sys.stdout
    p = Path(dest).expanduser().resolve()
    p.parent.mkdir(parents=True, exist_ok=True)
    return open(p, "w", encoding="utf-8")


def _emit_diagnostics(
    diagnostics: Sequence[Diagnostic],
    sources: SourceMap,
    fmt: str,
    stream: TextIO,
) -> int:
    """Write *diagnostics* to *stream*; returns the ERROR count."""
    error_count = 0
    for diag in diagnostics:
        if diag.severity is Severity.ERROR:
            error_count += 1
        if fmt == "json":
            stream.write(json.dumps(diag.to_dict(sources)) + "\n")
        else:
            stream.write(diag.to_gcc_format(sources) + "\n")
    if fmt == "summary":
        stream.write(f"\n--- {len(diagnostics)} diagnostic(s), "
                     f"{error_count} error(s) ---\n")
    return error_count


def _read_source(raw: str) -> Tuple[Path, bytes]:
    path = _resolve_path(raw, "feature file")
    try:
        return path, path.read_bytes()
    except OSError as exc:
        _log.error("cannot read %s: %s", path, exc)
        raise SystemExit(EXIT_INFRA)


def _load_font(raw: str) -> TTFont:
    path = _resolve_path(raw, "font")
    try:
        return TTFont(str(path))
    except (OSError, TTLibError) as exc:
        _log.error("cannot open font %s: %s", path, exc)
        raise SystemExit(EXIT_INFRA)


def _read_glyph_list(raw: str) -> List[str]:
    """One glyph name per line; blank lines and ``#`` comments are skipped."""
    path = _resolve_path(raw, "glyph list")
    names = []
    with open(path, encoding="utf-8") as fh:
        for line in fh:
            line = line.split("#", 1)[0].strip()
            if line:
                names.append(line)
    return names


def _parse_axis(raw: str) -> Tuple[str, AxisInfo]:
    """``wght=100:400:900`` → ``("wght", AxisInfo(100, 400, 900))``."""
    tag, sep, values = raw.partition("=")
    parts = values.split(":")
    if not sep or len(parts) != 3:
        raise argparse.ArgumentTypeError(f"expected TAG=MIN:DEFAULT:MAX, got {raw!r}")
    try:
        minimum, default, maximum = (float(p) for p in parts)
    except ValueError:
        raise argparse.ArgumentTypeError(f"axis values must be numbers: {raw!r}")
    return tag, AxisInfo(minimum, default, maximum)


def _font_axes(font: TTFont) -> Dict[str, AxisInfo]:
    if "fvar" not in font:
        return {}
    return {
        axis.axisTag: AxisInfo(axis.minValue, axis.defaultValue, axis.maxValue)
        for axis in font["fvar"].axes
    }


def _options(args: argparse.Namespace, font: Optional[TTFont]) -> CompileOptions:
    axes = _font_axes(font) if font is not None else {}
    axes.update(dict(args.axis or ()))
    options = CompileOptions(
        axes=axes,
        infer_gdef_classes=not args.no_gdef_inference,
        deduplicate_subtables=not args.no_dedup,
    )
    if args.duplicates_are_errors:
        options.duplicate_definition_severity = Severity.ERROR
    return options


def _compile(args: argparse.Namespace):
    path, data = _read_source(args.fea_file)
    font = _load_font(args.font) if args.font else None
    if font is not None:
        glyph_order = font.getGlyphOrder()
    elif args.glyphs:
        glyph_order = _read_glyph_list(args.glyphs)
    else:
        glyph_order = None
    options = _options(args, font)
    _log.info("Compiling %s", path)
    try:
        result = compile_source(
            data,
            path=str(path),
            glyph_order=glyph_order,
            options=options,
            include_resolver=FileSystemIncludeResolver(args.include_dir or str(path.parent)),
        )
    except ConfigError as exc:
        for problem in exc.problems:
            _log.error("invalid option: %s", problem)
        raise SystemExit(EXIT_INFRA)
    return result, font


# ===========================================================================
# Sub-command implementations
# ===========================================================================

def cmd_parse(args: argparse.Namespace) -> int:
    """Parse one file; print the CST (sexp) or the re-serialized text."""
    path, data = _read_source(args.fea_file)
    result = parse_source(data, path=str(path))
    out = _open_output(args.output)
    try:
        if args.format == "text":
            out.write(result.text())
        else:
            out.write(dump_sexp(result.tree, include_trivia=args.trivia) + "\n")
    finally:
        if out is not sys.stdout:
            out.close()
    error_count = _emit_diagnostics(result.diagnostics, result.sources, "gcc", sys.stderr)
    return EXIT_ERROR if error_count > 0 else EXIT_OK


def cmd_check(args: argparse.Namespace) -> int:
    """Run the whole pipeline and report diagnostics only."""
    result, _ = _compile(args)
    out = _open_output(args.output)
    try:
        error_count = _emit_diagnostics(result.diagnostics, result.sources, args.format, out)
    finally:
        if out is not sys.stdout:
            out.close()
    if result.tables is not None:
        _log.info("tables: %s", ", ".join(result.tables.tags) or "none")
    return EXIT_ERROR if error_count > 0 else EXIT_OK


def cmd_compile(args: argparse.Namespace) -> int:
    """Compile; write TTX, or a font binary when ``--font`` is given."""
    result, font = _compile(args)
    error_count = _emit_diagnostics(result.diagnostics, result.sources, args.format, sys.stderr)
    if not result.success:
        return EXIT_ERROR if error_count > 0 else EXIT_INFRA

    compiled = result.tables
    if font is not None:
        if not args.output:
            _log.error("--output is required when compiling into a font")
            return EXIT_INFRA
        written = add_to_font(compiled, font)
        font.save(args.output)
        _log.info("wrote %s to %s", ", ".join(written), args.output)
        return EXIT_OK

    ttx = TTFont()
    ttx.setGlyphOrder(list(compiled.glyph_order))
    tables = compiled.to_fonttools()
    for tag, table in tables.items():
        ttx[tag] = table
    out = _open_output(args.output)
    try:
        ttx.saveXML(out, tables=sorted(tables))
    finally:
        if out is not sys.stdout:
            out.close()
    return EXIT_OK


# ===========================================================================
# Argument parser
# ===========================================================================

def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="feac",
        description="Compile OpenType feature files to GSUB, GPOS and GDEF.",
    )
    parser.add_argument(
        "--version",
        action="version",
        version=f"%(prog)s {__version__}",
    )
    parser.add_argument(
        "-v", "--verbose",
        action="count",
        default=0,
        help="Increase verbosity (-v info, -vv debug).",
    )

    subparsers = parser.add_subparsers(
        dest="command",
        title="commands",
        metavar="<command>",
    )

    def _add_compile_args(p: argparse.ArgumentParser) -> None:
        p.add_argument("fea_file", metavar="FEA", help="Feature file (.fea).")
        glyphs = p.add_mutually_exclusive_group()
        glyphs.add_argument(
            "--font",
            metavar="FONT",
            default=None,
            help="Take the glyph order (and fvar axes) from this font.",
        )
        glyphs.add_argument(
            "--glyphs",
            metavar="FILE",
            default=None,
            help="Glyph order file, one name per line.",
        )
        p.add_argument(
            "--axis",
            metavar="TAG=MIN:DEF:MAX",
            type=_parse_axis,
            action="append",
            help="Declare a variation axis (repeatable).",
        )
        p.add_argument(
            "-I", "--include-dir",
            metavar="DIR",
            default=None,
            help="Directory for relative includes (default: the file's directory).",
        )
        p.add_argument(
            "-f", "--format",
            choices=["json", "gcc", "summary"],
            default="gcc",
            help="Diagnostic format (default: gcc).",
        )
        g = p.add_argument_group("compilation tuning")
        g.add_argument(
            "--no-gdef-inference",
            action="store_true",
            help="Do not infer GDEF glyph classes when the source has none.",
        )
        g.add_argument(
            "--no-dedup",
            action="store_true",
            help="Do not share identical subtables.",
        )
        g.add_argument(
            "--duplicates-are-errors",
            action="store_true",
            help="Report duplicate definitions as errors instead of warnings.",
        )

    # --- parse -------------------------------------------------------------
    p_parse = subparsers.add_parser(
        "parse",
        help="Parse a feature file and print its syntax tree.",
    )
    p_parse.add_argument("fea_file", metavar="FEA", help="Feature file (.fea).")
    p_parse.add_argument(
        "--format",
        choices=["sexp", "text"],
        default="sexp",
        help="sexp: the syntax tree; text: the re-serialized source.",
    )
    p_parse.add_argument(
        "--trivia",
        action="store_true",
        help="Include whitespace and comment tokens in the S-expression.",
    )
    p_parse.add_argument(
        "-o", "--output",
        default=None,
        metavar="FILE",
        help='Output file ("-" or omit for stdout).',
    )
    p_parse.set_defaults(func=cmd_parse)

    # --- check -------------------------------------------------------------
    p_check = subparsers.add_parser(
        "check",
        help="Compile without writing anything; print diagnostics.",
    )
    _add_compile_args(p_check)
    p_check.add_argument(
        "-o", "--output",
        default=None,
        metavar="FILE",
        help='Diagnostics file ("-" or omit for stdout).',
    )
    p_check.set_defaults(func=cmd_check)

    # --- compile -----------------------------------------------------------
    p_compile = subparsers.add_parser(
        "compile",
        help="Compile a feature file to layout tables.",
        description=(
            "Without --font the tables are written as TTX; with --font "
            "they are added to the font, which is saved to --output."
        ),
    )
    _add_compile_args(p_compile)
    p_compile.add_argument(
        "-o", "--output",
        default=None,
        metavar="FILE",
        help='Output path ("-" or omit for stdout with TTX).',
    )
    p_compile.set_defaults(func=cmd_compile)

    return parser


# ===========================================================================
# Main entry point
# ===========================================================================

def main(argv: Optional[Sequence[str]] = None) -> int:
    """Run the CLI; returns the exit code."""
    parser = _build_parser()
    args = parser.parse_args(argv)

    _configure_logging(args.verbose)

    if not hasattr(args, "func"):
        parser.print_help(sys.stderr)
        return EXIT_INFRA

    try:
        return args.func(args)
    except KeyboardInterrupt:
        _log.info("Interrupted by user.")
        return 130
    except SystemExit as exc:
        return exc.code if isinstance(exc.code, int) else EXIT_INFRA
    except Exception as exc:
        _log.error("Unhandled exception: %s", exc, exc_info=True)
        return EXIT_INFRA


if __name__ == "__main__":
    raise SystemExit(main())
