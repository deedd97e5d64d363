"""feac/cst.py – lossless concrete syntax tree.

The tree is an append-only arena owned by one parse:

* ``tokens`` holds every token of the file in source order, trivia and
  error tokens included;
* ``nodes`` holds :class:`NodeData` records.  A node is appended when the
  parser *finishes* it, so all of its children have smaller indices than
  the node itself and the root is always the last node.  Cycles cannot be
  represented.

Children are :class:`Element` references (``is_node``, ``index``) rather
than object pointers.  :class:`NodeRef` and :class:`TokenRef` are cheap
``(tree, index)`` handles for navigation; parent navigation uses an index
map that is built once, on first use.

Concatenating the leaves of the root reproduces the input exactly, for any
input: see :meth:`SyntaxTree.text`.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from functools import cached_property
from typing import Iterator, List, NamedTuple, Optional, Sequence, Tuple, Union

import sexpdata

from feac.errors import CompilerBug, Span
from feac.kinds import Kind, Token

__all__ = [
    "Element",
    "NodeData",
    "SyntaxTree",
    "NodeRef",
    "TokenRef",
    "TreeBuilder",
    "to_sexp",
    "dump_sexp",
]


class Element(NamedTuple):
    """A child reference: a node index or a token index."""

    is_node: bool
    index: int


@dataclass(frozen=True, slots=True)
class NodeData:
    kind: Kind
    children: Tuple[Element, ...]
    start: int
    end: int
    error: bool = False


class SyntaxTree:
    """The arena for one source file."""

    def __init__(
        self,
        tokens: Sequence[Token],
        nodes: Sequence[NodeData],
        *,
        file_id: int = 0,
        path: str = "<input>",
    ) -> None:
        if not nodes:
            raise CompilerBug("syntax tree without a root node")
        self.tokens: Tuple[Token, ...] = tuple(tokens)
        self.nodes: Tuple[NodeData, ...] = tuple(nodes)
        self.file_id = file_id
        self.path = path

    @property
    def root(self) -> "NodeRef":
        return NodeRef(self, len(self.nodes) - 1)

    def node(self, index: int) -> "NodeRef":
        if not 0 <= index < len(self.nodes):
            raise CompilerBug(f"node index {index} out of range")
        return NodeRef(self, index)

    def token(self, index: int) -> "TokenRef":
        if not 0 <= index < len(self.tokens):
            raise CompilerBug(f"token index {index} out of range")
        return TokenRef(self, index)

    def element(self, element: Element) -> Union["NodeRef", "TokenRef"]:
        return self.node(element.index) if element.is_node else self.token(element.index)

    def text(self) -> str:
        """Re-serialize the tree; equal to the parsed source."""
        return "".join(tok.text for tok in self.root.iter_tokens())

    def to_bytes(self) -> bytes:
        """Re-serialize to the original bytes (see ``parse_source``)."""
        return self.text().encode("utf-8", "surrogateescape")

    @cached_property
    def _parents(self) -> Tuple[List[int], List[int]]:
        node_parents = [-1] * len(self.nodes)
        token_parents = [-1] * len(self.tokens)
        for index, data in enumerate(self.nodes):
            for child in data.children:
                if child.is_node:
                    node_parents[child.index] = index
                else:
                    token_parents[child.index] = index
        return node_parents, token_parents

    def parent_of(self, element: Union["NodeRef", "TokenRef"]) -> Optional["NodeRef"]:
        node_parents, token_parents = self._parents
        table = node_parents if isinstance(element, NodeRef) else token_parents
        parent = table[element.index]
        return None if parent < 0 else NodeRef(self, parent)

    def error_nodes(self) -> Iterator["NodeRef"]:
        for index, data in enumerate(self.nodes):
            if data.error or data.kind is Kind.ERROR_NODE:
                yield NodeRef(self, index)

    def debug_tree(self) -> str:
        """Indented one-element-per-line dump, for tests and the CLI."""
        lines: List[str] = []

        def visit(element: Union[NodeRef, TokenRef], depth: int) -> None:
            pad = "  " * depth
            if isinstance(element, TokenRef):
                lines.append(f"{pad}{element.kind.name}@{element.start} {element.text!r}")
                return
            flag = " !" if element.data.error else ""
            lines.append(f"{pad}{element.kind.name}@{element.start}..{element.end}{flag}")
            for child in element.children():
                visit(child, depth + 1)

        visit(self.root, 0)
        return "\n".join(lines)

    def __repr__(self) -> str:
        return f"SyntaxTree({self.path!r}, {len(self.nodes)} nodes, {len(self.tokens)} tokens)"


@dataclass(frozen=True)
class NodeRef:
    """Handle on one node of a :class:`SyntaxTree`."""

    tree: SyntaxTree = field(repr=False)
    index: int

    @property
    def data(self) -> NodeData:
        return self.tree.nodes[self.index]

    @property
    def kind(self) -> Kind:
        return self.data.kind

    @property
    def start(self) -> int:
        return self.data.start

    @property
    def end(self) -> int:
        return self.data.end

    @property
    def span(self) -> Span:
        return Span(self.tree.file_id, self.data.start, self.data.end)

    @property
    def key(self) -> Tuple[int, int]:
        """(file id, node index): stable identity across passes."""
        return (self.tree.file_id, self.index)

    @property
    def has_error(self) -> bool:
        return self.data.error

    def children(self) -> Iterator[Union["NodeRef", "TokenRef"]]:
        for child in self.data.children:
            yield self.tree.element(child)

    def child_nodes(self) -> Iterator["NodeRef"]:
        for child in self.data.children:
            if child.is_node:
                yield NodeRef(self.tree, child.index)

    def child_tokens(self) -> Iterator["TokenRef"]:
        """Direct, significant child tokens."""
        for child in self.data.children:
            if not child.is_node:
                tok = TokenRef(self.tree, child.index)
                if not tok.is_trivia:
                    yield tok

    def significant(self) -> Iterator[Union["NodeRef", "TokenRef"]]:
        """Direct children without trivia and recovery nodes."""
        for child in self.children():
            if isinstance(child, TokenRef):
                if not child.is_trivia:
                    yield child
            elif child.kind is not Kind.ERROR_NODE:
                yield child

    def iter_tokens(self) -> Iterator["TokenRef"]:
        """All leaf tokens below this node, in source order."""
        stack: List[Element] = list(reversed(self.data.children))
        tree = self.tree
        while stack:
            element = stack.pop()
            if element.is_node:
                stack.extend(reversed(tree.nodes[element.index].children))
            else:
                yield TokenRef(tree, element.index)

    def descendants(self) -> Iterator["NodeRef"]:
        """Nodes below this one in preorder (self excluded)."""
        stack = list(reversed(list(self.child_nodes())))
        while stack:
            node = stack.pop()
            yield node
            stack.extend(reversed(list(node.child_nodes())))

    def find_token(self, *kinds: Kind) -> Optional["TokenRef"]:
        for tok in self.child_tokens():
            if tok.kind in kinds:
                return tok
        return None

    def find_node(self, *kinds: Kind) -> Optional["NodeRef"]:
        for node in self.child_nodes():
            if node.kind in kinds:
                return node
        return None

    def text(self) -> str:
        return "".join(tok.text for tok in self.iter_tokens())

    def parent(self) -> Optional["NodeRef"]:
        return self.tree.parent_of(self)

    def ancestors(self) -> Iterator["NodeRef"]:
        node = self.parent()
        while node is not None:
            yield node
            node = node.parent()

    def __repr__(self) -> str:
        return f"NodeRef({self.kind.name}@{self.start}..{self.end})"


@dataclass(frozen=True)
class TokenRef:
    """Handle on one token of a :class:`SyntaxTree`."""

    tree: SyntaxTree = field(repr=False)
    index: int

    @property
    def token(self) -> Token:
        return self.tree.tokens[self.index]

    @property
    def kind(self) -> Kind:
        return self.token.kind

    @property
    def text(self) -> str:
        return self.token.text

    @property
    def start(self) -> int:
        return self.token.start

    @property
    def end(self) -> int:
        return self.token.end

    @property
    def span(self) -> Span:
        return Span(self.tree.file_id, self.token.start, self.token.end)

    @property
    def is_trivia(self) -> bool:
        return self.token.is_trivia()

    def parent(self) -> Optional[NodeRef]:
        return self.tree.parent_of(self)

    def __repr__(self) -> str:
        return f"TokenRef({self.kind.name} {self.text!r}@{self.start})"


class TreeBuilder:
    """Accumulates tokens and nodes while the parser runs.

    ``start_node`` opens a node whose kind is only decided by
    ``finish_node``; the parser relies on this to classify rules after
    seeing all of their parts.
    """

    def __init__(self) -> None:
        self.tokens: List[Token] = []
        self.nodes: List[NodeData] = []
        self._open: List[List[Element]] = [[]]
        self._error_flags: List[bool] = [False]
        self._offset = 0

    @property
    def depth(self) -> int:
        return len(self._open) - 1

    def start_node(self) -> int:
        self._open.append([])
        self._error_flags.append(False)
        return self.depth

    def token(self, token: Token) -> None:
        if token.start != self._offset:
            raise CompilerBug(
                f"token at {token.start} pushed out of order (expected {self._offset})"
            )
        self._open[-1].append(Element(False, len(self.tokens)))
        self.tokens.append(token)
        self._offset = token.end

    def mark_error(self) -> None:
        self._error_flags[-1] = True

    def finish_node(self, kind: Kind) -> int:
        if len(self._open) < 2:
            raise CompilerBug("finish_node without a matching start_node")
        children = tuple(self._open.pop())
        error = self._error_flags.pop()
        start, end = self._extent(children)
        index = len(self.nodes)
        self.nodes.append(NodeData(kind, children, start, end, error))
        self._open[-1].append(Element(True, index))
        return index

    def finish(self, *, file_id: int = 0, path: str = "<input>") -> SyntaxTree:
        """Wrap everything pushed so far in the ``SOURCE_FILE`` root."""
        if len(self._open) != 1:
            raise CompilerBug(f"{len(self._open) - 1} node(s) left open at end of parse")
        children = tuple(self._open[0])
        start, end = self._extent(children)
        self.nodes.append(NodeData(Kind.SOURCE_FILE, children, start, end, self._error_flags[0]))
        return SyntaxTree(self.tokens, self.nodes, file_id=file_id, path=path)

    def _extent(self, children: Tuple[Element, ...]) -> Tuple[int, int]:
        if not children:
            return self._offset, self._offset
        first, last = children[0], children[-1]
        start = self.nodes[first.index].start if first.is_node else self.tokens[first.index].start
        end = self.nodes[last.index].end if last.is_node else self.tokens[last.index].end
        return start, end


# ═══════════════════════════════════════════════════════════════════════
#  S-expression dump
# ═══════════════════════════════════════════════════════════════════════

def to_sexp(node: NodeRef, *, include_trivia: bool = False) -> list:
    """Nested-list form of *node*: ``[Symbol(KIND), child...]``.

    Tokens become ``[Symbol(KIND), text]``.
    """
    result: list = [sexpdata.Symbol(node.kind.name)]
    for child in node.children():
        if isinstance(child, TokenRef):
            if child.is_trivia and not include_trivia:
                continue
            result.append([sexpdata.Symbol(child.kind.name), child.text])
        else:
            result.append(to_sexp(child, include_trivia=include_trivia))
    return result


def dump_sexp(tree: SyntaxTree, *, include_trivia: bool = False) -> str:
    """Render the CST as an S-expression string."""
    return sexpdata.dumps(to_sexp(tree.root, include_trivia=include_trivia))
