"""feac/glyphs.py – glyph map, glyph classes and range expansion."""

from __future__ import annotations

import os
import re
from typing import Dict, Iterable, Iterator, List, Optional, Sequence, Tuple

__all__ = [
    "GlyphMap",
    "GlyphClass",
    "GlyphRangeError",
    "cid_name",
    "expand_range",
    "expand_cid_range",
    "hyphen_splits",
]

# Ordered glyph ids; duplicates are kept (FEA classes are sequences).
GlyphClass = Tuple[int, ...]


def cid_name(cid: int) -> str:
    return "cid%05d" % cid


class GlyphRangeError(ValueError):
    """A glyph range whose ends do not form a valid pattern."""


class GlyphMap:
    """Ordered glyph names and their ids.

    >>> gm = GlyphMap([".notdef", "a", "b"])
    >>> gm.id("b")
    2
    """

    def __init__(self, names: Iterable[str]) -> None:
        self._names: List[str] = []
        self._ids: Dict[str, int] = {}
        for name in names:
            if name in self._ids:
                raise ValueError(f"duplicate glyph name {name!r} in glyph order")
            self._ids[name] = len(self._names)
            self._names.append(name)

    @classmethod
    def implicit(cls, names: Iterable[str]) -> "GlyphMap":
        """A glyph map made of the names used, ``.notdef`` first."""
        ordered: Dict[str, None] = {".notdef": None}
        for name in names:
            ordered.setdefault(name, None)
        return cls(ordered)

    @property
    def names(self) -> Sequence[str]:
        return tuple(self._names)

    def __len__(self) -> int:
        return len(self._names)

    def __contains__(self, name: object) -> bool:
        return name in self._ids

    def __iter__(self) -> Iterator[str]:
        return iter(self._names)

    def __eq__(self, other: object) -> bool:
        return isinstance(other, GlyphMap) and other._names == self._names

    __hash__ = None  # type: ignore[assignment]

    def id(self, name: str) -> int:
        return self._ids[name]

    def get(self, name: str) -> Optional[int]:
        return self._ids.get(name)

    def name(self, gid: int) -> str:
        return self._names[gid]

    def cid(self, cid: int) -> Optional[int]:
        return self._ids.get(cid_name(cid))


_UPPER = re.compile(r"^[A-Z]$")
_LOWER = re.compile(r"^[a-z]$")
_DIGITS = re.compile(r"^[0-9]{1,3}$")


def expand_range(start: str, end: str) -> List[str]:
    """Names of the range ``start - end`` by the FEA naming pattern.

    The ends must have the same length and differ in one run: either a
    single letter of the same case (``a.sc - d.sc``) or a decimal number of
    up to three digits (``x01 - x12``).
    """
    if len(start) != len(end):
        raise GlyphRangeError(f'"{start}" and "{end}" should have the same length')
    prefix = os.path.commonprefix([start, end])
    suffix = os.path.commonprefix([start[::-1], end[::-1]])[::-1]
    # the differing part must not be consumed by both
    if len(prefix) + len(suffix) > len(start):
        suffix = suffix[len(prefix) + len(suffix) - len(start):]
    first = start[len(prefix):len(start) - len(suffix)]
    last = end[len(prefix):len(end) - len(suffix)]
    if first >= last:
        raise GlyphRangeError(f'start of range "{start}" must be smaller than its end "{end}"')
    if (_UPPER.match(first) and _UPPER.match(last)) or (_LOWER.match(first) and _LOWER.match(last)):
        return [f"{prefix}{chr(c)}{suffix}" for c in range(ord(first), ord(last) + 1)]
    if _DIGITS.match(first) and _DIGITS.match(last):
        width = len(first)
        return [
            f"{prefix}{str(n).zfill(width)}{suffix}"
            for n in range(int(first), int(last) + 1)
        ]
    raise GlyphRangeError(f'"{start}" - "{end}" is not a letter or number range')


def expand_cid_range(start: int, end: int) -> List[int]:
    if start >= end:
        raise GlyphRangeError(f"start of CID range {start} must be smaller than its end {end}")
    return list(range(start, end + 1))


def hyphen_splits(name: str, glyph_map: GlyphMap) -> List[Tuple[str, str]]:
    """Every way of reading *name* as ``start-end`` of two known glyphs."""
    splits = []
    for index, ch in enumerate(name):
        if ch == "-" and 0 < index < len(name) - 1:
            start, end = name[:index], name[index + 1:]
            if start in glyph_map and end in glyph_map:
                splits.append((start, end))
    return splits
