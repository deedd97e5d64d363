"""feac/sources.py – source registry and include expansion.

A compilation may span several files: the root text plus everything it
pulls in with ``include(...)``.  :class:`SourceMap` gives every file a
small integer id in discovery order (the root is 0), keeps its text for
line/column mapping, and records which syntax tree each ``include``
statement expands to.

File access is not done here.  Includes are fetched through a resolver
callable ``resolver(name, including_path) -> (resolved_path, text)`` that
raises :class:`~feac.errors.IncludeNotFound`; :class:`DictIncludeResolver`
and :class:`FileSystemIncludeResolver` are the two stock resolvers.
"""

from __future__ import annotations

import bisect
import logging
import os
from dataclasses import dataclass, field
from functools import cached_property
from typing import Callable, Dict, Iterator, List, Mapping, Optional, Tuple

from feac import ast
from feac.cst import SyntaxTree
from feac.errors import (
    CompilerBug,
    DiagnosticCollector,
    E,
    IncludeNotFound,
    Span,
)
from feac.kinds import Kind

__all__ = [
    "IncludeResolver",
    "SourceFile",
    "SourceMap",
    "DictIncludeResolver",
    "FileSystemIncludeResolver",
    "expand_includes",
]

logger = logging.getLogger(__name__)

IncludeResolver = Callable[[str, Optional[str]], Tuple[str, str]]


@dataclass
class SourceFile:
    """One file of a compilation."""

    file_id: int
    path: str
    text: str
    tree: Optional[SyntaxTree] = None
    # the include statement this file was spliced in at; None for the root
    included_at: Optional[Span] = None

    @cached_property
    def _line_starts(self) -> List[int]:
        starts = [0]
        for index, ch in enumerate(self.text):
            if ch == "\n":
                starts.append(index + 1)
        return starts

    def line_col(self, offset: int) -> Tuple[int, int]:
        """1-based line and column of *offset*."""
        line = bisect.bisect_right(self._line_starts, offset) - 1
        return line + 1, offset - self._line_starts[line] + 1

    def line_text(self, offset: int) -> str:
        line, _ = self.line_col(offset)
        start = self._line_starts[line - 1]
        end = self.text.find("\n", start)
        return self.text[start:] if end == -1 else self.text[start:end]


@dataclass
class SourceMap:
    """All files of one compilation, indexed by file id."""

    files: List[SourceFile] = field(default_factory=list)
    # (file id, include node index) -> the included file's tree
    includes: Dict[Tuple[int, int], SyntaxTree] = field(default_factory=dict)

    def add(self, path: str, text: str) -> SourceFile:
        source = SourceFile(len(self.files), path, text)
        self.files.append(source)
        return source

    def __getitem__(self, file_id: int) -> SourceFile:
        if not 0 <= file_id < len(self.files):
            raise CompilerBug(f"unknown file id {file_id}")
        return self.files[file_id]

    def __iter__(self) -> Iterator[SourceFile]:
        return iter(self.files)

    def __len__(self) -> int:
        return len(self.files)

    @property
    def root(self) -> SourceFile:
        return self[0]

    # ── LocationResolver ────────────────────────────────────────────────

    def path(self, file_id: int) -> str:
        return self[file_id].path

    def line_col(self, span: Span) -> Tuple[int, int]:
        return self[span.file_id].line_col(span.start)

    def line_text(self, span: Span) -> str:
        return self[span.file_id].line_text(span.start)

    def included_tree(self, include: ast.Include) -> Optional[SyntaxTree]:
        return self.includes.get(include.key)

    def order_key(self, span: Span) -> Tuple[int, ...]:
        """Sort key that places *span* at the point its file is included.

        The key is the chain of offsets from the root file down to *span*,
        so a diagnostic in an included file sorts right after the
        ``include`` statement that pulled the file in.
        """
        offsets = [span.start]
        source = self[span.file_id]
        while source.included_at is not None:
            offsets.append(source.included_at.start)
            source = self[source.included_at.file_id]
        return tuple(reversed(offsets))


# ═══════════════════════════════════════════════════════════════════════
#  Include expansion
# ═══════════════════════════════════════════════════════════════════════

def _include_nodes(tree: SyntaxTree) -> Iterator[ast.Include]:
    for node in tree.root.descendants():
        if node.kind is Kind.INCLUDE:
            yield ast.Include(node)


def expand_includes(
    sources: SourceMap,
    source: SourceFile,
    parse: Callable[[SourceFile], None],
    resolver: Optional[IncludeResolver],
    diagnostics: DiagnosticCollector,
    *,
    max_depth: int,
    _chain: Tuple[str, ...] = (),
) -> None:
    """Load every file included by *source*, recursively.

    *parse* is called for each newly registered file and must set its
    ``tree``.  Cycles and nesting beyond *max_depth* are diagnosed at the
    ``include`` statement and not followed.
    """
    if source.tree is None:
        raise CompilerBug(f"{source.path} was not parsed before include expansion")
    chain = _chain + (source.path,)
    for include in _include_nodes(source.tree):
        name = include.path
        if not name:
            continue
        if len(chain) > max_depth:
            diagnostics.report(
                E.INCLUDE_TOO_DEEP,
                f"includes nested deeper than {max_depth} levels",
                include.span,
            )
            continue
        if resolver is None:
            diagnostics.report(
                E.INCLUDE_NOT_FOUND,
                f"cannot resolve include '{name}': no include resolver configured",
                include.span,
            )
            continue
        try:
            resolved, text = resolver(name, source.path)
        except IncludeNotFound as exc:
            diagnostics.report(E.INCLUDE_NOT_FOUND, str(exc), include.span)
            continue
        if resolved in chain:
            cycle = " -> ".join(chain[chain.index(resolved):] + (resolved,))
            diagnostics.report(
                E.INCLUDE_CYCLE,
                f"include cycle: {cycle}",
                include.span,
            )
            continue
        logger.debug("including %s from %s", resolved, source.path)
        child = sources.add(resolved, text)
        child.included_at = include.span
        parse(child)
        if child.tree is None:
            raise CompilerBug(f"parse callback did not produce a tree for {resolved}")
        sources.includes[include.key] = child.tree
        expand_includes(
            sources, child, parse, resolver, diagnostics,
            max_depth=max_depth, _chain=chain,
        )


# ═══════════════════════════════════════════════════════════════════════
#  Stock resolvers
# ═══════════════════════════════════════════════════════════════════════

class DictIncludeResolver:
    """Serve includes from an in-memory ``{name: text}`` mapping."""

    def __init__(self, files: Mapping[str, str]) -> None:
        self.files = dict(files)

    def __call__(self, name: str, including_path: Optional[str] = None) -> Tuple[str, str]:
        if name not in self.files:
            raise IncludeNotFound(name, "not in the provided sources")
        return name, self.files[name]


class FileSystemIncludeResolver:
    """Read includes from disk.

    Relative names are looked up next to the including file first, then
    under *root* (default: the current directory).  Files are decoded as
    UTF-8, with undecodable bytes kept via ``surrogateescape``.
    """

    def __init__(self, root: Optional[str] = None) -> None:
        self.root = root

    def candidates(self, name: str, including_path: Optional[str]) -> List[str]:
        if os.path.isabs(name):
            return [name]
        result = []
        if including_path and os.path.dirname(including_path):
            result.append(os.path.join(os.path.dirname(including_path), name))
        result.append(os.path.join(self.root or os.getcwd(), name))
        return result

    def __call__(self, name: str, including_path: Optional[str] = None) -> Tuple[str, str]:
        for candidate in self.candidates(name, including_path):
            if os.path.isfile(candidate):
                try:
                    with open(candidate, "rb") as fh:
                        data = fh.read()
                except OSError as exc:
                    raise IncludeNotFound(name, exc.strerror or str(exc)) from exc
                return os.path.normpath(candidate), data.decode("utf-8", "surrogateescape")
        raise IncludeNotFound(name, "no such file")
