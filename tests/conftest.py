# tests/conftest.py
"""
Shared fixtures and feature-file sources for the feac test suite.
"""

import pytest

from feac.config import CompileOptions
from feac.pipeline import compile_source


LATIN_GLYPHS = [
    ".notdef", "space",
    "a", "b", "c", "d", "e", "f", "g", "i", "l", "n", "o", "s", "t", "x", "z",
    "A", "B", "C",
    "a.sc", "b.sc", "c.sc", "a.alt", "a.swsh",
    "f_i", "f_l", "f_f_i",
    "acutecomb", "gravecomb", "dotbelowcomb",
    "one", "two",
]


SMCP_FEA = """\
languagesystem DFLT dflt;
@LC = [a b c];
@SC = [a.sc b.sc c.sc];
feature smcp {
    sub @LC by @SC;
} smcp;
"""

LIGA_FEA = """\
languagesystem DFLT dflt;
languagesystem latn dflt;
feature liga {
    sub f f i by f_f_i;
    sub f i by f_i;
    sub f l by f_l;
} liga;
"""

KERN_FEA = """\
languagesystem DFLT dflt;
@ROUND = [o c];
@STRAIGHT = [l i];
feature kern {
    pos A B -50;
    pos @ROUND @STRAIGHT -20;
    pos @STRAIGHT @ROUND -10;
} kern;
"""

MARK_FEA = """\
languagesystem DFLT dflt;
markClass [acutecomb gravecomb] <anchor 250 500> @TOP;
markClass dotbelowcomb <anchor 250 -50> @BOTTOM;
feature mark {
    pos base [a e o] <anchor 250 450> mark @TOP <anchor 250 0> mark @BOTTOM;
} mark;
"""

CYCLE_FEA = """\
@A = [@B a];
@B = [@A b];
"""

FORWARD_CLASS_FEA = """\
feature liga {
    sub @X by f_i;
} liga;
@X = [f];
"""

VARIATION_FEA = """\
languagesystem DFLT dflt;
conditionset heavy {
    wght 600 900;
} heavy;
feature rvrn {
    sub a by a.alt;
} rvrn;
variation rvrn heavy {
    sub a by a.swsh;
} rvrn;
"""


@pytest.fixture
def glyphs():
    return list(LATIN_GLYPHS)


@pytest.fixture
def compile_fea(glyphs):
    """Compile *text* against the Latin test glyph set."""

    def _compile(text, **kwargs):
        kwargs.setdefault("glyph_order", glyphs)
        return compile_source(text, **kwargs)

    return _compile


@pytest.fixture
def weight_options():
    return CompileOptions.from_axes({"wght": (100, 400, 900)})
