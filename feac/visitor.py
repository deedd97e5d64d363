"""
feac/visitor.py
===============

Traversal helpers for the typed AST.

Provides:
- ``iter_statements`` – the statements of a block, with ``include``
  statements replaced by the statements of the included file
- ``walk`` – every statement of a compilation, depth first
"""

from __future__ import annotations

from typing import Iterator, Optional, Tuple

from feac import ast as A
from feac.sources import SourceMap

__all__ = ["iter_statements", "walk"]


def iter_statements(block: A.AstNode, sources: Optional[SourceMap] = None) -> Iterator[A.AstNode]:
    """Direct statements of *block*; includes are spliced in place.

    Without *sources* (or for an include that failed to load) the
    ``Include`` view itself is yielded.
    """
    if not isinstance(block, A.Block):
        return
    for statement in block.statements():
        if isinstance(statement, A.Include) and sources is not None:
            tree = sources.included_tree(statement)
            if tree is not None:
                yield from iter_statements(A.SourceFile(tree.root), sources)
                continue
        yield statement


def walk(block: A.AstNode, sources: Optional[SourceMap] = None) -> Iterator[Tuple[A.AstNode, Tuple[A.AstNode, ...]]]:
    """Every statement below *block* with its enclosing blocks, preorder."""
    stack = [(iter(list(iter_statements(block, sources))), (block,))]
    while stack:
        statements, parents = stack[-1]
        statement = next(statements, None)
        if statement is None:
            stack.pop()
            continue
        yield statement, parents[1:]
        if isinstance(statement, A.Block):
            stack.append((iter(list(iter_statements(statement, sources))), parents + (statement,)))
