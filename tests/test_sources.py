# tests/test_sources.py
"""
Tests for the source registry, include expansion and the stock resolvers.
"""

import pytest

from feac.config import CompileOptions
from feac.errors import E, IncludeNotFound, Span
from feac.pipeline import compile_source
from feac.sources import (
    DictIncludeResolver,
    FileSystemIncludeResolver,
    SourceFile,
    SourceMap,
)


CLASSES_FEA = """\
@LC = [a b c];
@SC = [a.sc b.sc c.sc];
"""


class TestSourceFile:

    def test_line_col_is_one_based(self):
        source = SourceFile(0, "x.fea", "ab\ncd\n")
        assert source.line_col(0) == (1, 1)
        assert source.line_col(3) == (2, 1)
        assert source.line_col(4) == (2, 2)

    def test_line_text(self):
        source = SourceFile(0, "x.fea", "first\nsecond\nthird")
        assert source.line_text(8) == "second"
        assert source.line_text(14) == "third"

    def test_ids_follow_discovery_order(self):
        sources = SourceMap()
        root = sources.add("main.fea", "")
        child = sources.add("child.fea", "")
        assert (root.file_id, child.file_id) == (0, 1)
        assert sources.root is root
        assert sources.path(1) == "child.fea"
        assert len(sources) == 2

    def test_order_key_follows_include_point(self):
        sources = SourceMap()
        sources.add("main.fea", "x" * 40)
        child = sources.add("child.fea", "y" * 20)
        child.included_at = Span(0, 10, 25)
        grandchild = sources.add("grandchild.fea", "z" * 5)
        grandchild.included_at = Span(1, 4, 8)
        assert sources.order_key(Span(0, 30, 31)) == (30,)
        assert sources.order_key(Span(1, 3, 5)) == (10, 3)
        assert sources.order_key(Span(2, 1, 2)) == (10, 4, 1)
        assert sources.order_key(Span(1, 3, 5)) < sources.order_key(Span(0, 30, 31))


class TestDictIncludeResolver:

    def test_known_name(self):
        resolver = DictIncludeResolver({"a.fea": "sub a by b;"})
        assert resolver("a.fea", "main.fea") == ("a.fea", "sub a by b;")

    def test_unknown_name_raises(self):
        resolver = DictIncludeResolver({})
        with pytest.raises(IncludeNotFound) as excinfo:
            resolver("missing.fea", None)
        assert excinfo.value.name == "missing.fea"


class TestFileSystemIncludeResolver:

    def test_relative_to_including_file(self, tmp_path):
        features = tmp_path / "features"
        features.mkdir()
        (features / "kern.fea").write_text("pos A B -50;", encoding="utf-8")
        resolver = FileSystemIncludeResolver(root=str(tmp_path))
        path, text = resolver("kern.fea", str(features / "main.fea"))
        assert path.endswith("kern.fea")
        assert text == "pos A B -50;"

    def test_falls_back_to_root(self, tmp_path):
        (tmp_path / "classes.fea").write_text(CLASSES_FEA, encoding="utf-8")
        resolver = FileSystemIncludeResolver(root=str(tmp_path))
        _, text = resolver("classes.fea", "main.fea")
        assert text == CLASSES_FEA

    def test_undecodable_bytes_survive(self, tmp_path):
        (tmp_path / "raw.fea").write_bytes(b"# \xff\n")
        resolver = FileSystemIncludeResolver(root=str(tmp_path))
        _, text = resolver("raw.fea", None)
        assert text.encode("utf-8", "surrogateescape") == b"# \xff\n"

    def test_missing_file(self, tmp_path):
        resolver = FileSystemIncludeResolver(root=str(tmp_path))
        with pytest.raises(IncludeNotFound):
            resolver("nope.fea", None)


class TestIncludeExpansion:

    def test_included_definitions_are_visible(self, compile_fea):
        result = compile_fea(
            "include(classes.fea);\nfeature smcp { sub @LC by @SC; } smcp;",
            include_resolver=DictIncludeResolver({"classes.fea": CLASSES_FEA}),
        )
        assert result.success, result.diagnostics
        assert [s.path for s in result.sources] == ["<input>", "classes.fea"]
        assert result.tables.gsub is not None

    def test_root_tree_is_unchanged_by_includes(self, compile_fea):
        text = "include(classes.fea);\nfeature smcp { sub @LC by @SC; } smcp;"
        result = compile_fea(
            text, include_resolver=DictIncludeResolver({"classes.fea": CLASSES_FEA})
        )
        assert result.tree.text() == text

    def test_diagnostics_point_into_included_file(self, compile_fea):
        result = compile_fea(
            "include(bad.fea);",
            include_resolver=DictIncludeResolver({"bad.fea": "@X = [nosuchglyph];"}),
        )
        assert not result.success
        diag = result.errors[0]
        assert diag.code == E.UNDEFINED_GLYPH
        assert diag.span.file_id == 1
        assert result.sources.path(diag.span.file_id) == "bad.fea"

    def test_included_diagnostics_sort_at_the_include(self, compile_fea):
        result = compile_fea(
            "@A = [q1];\ninclude(bad.fea);\n@B = [q2];",
            include_resolver=DictIncludeResolver({"bad.fea": "@X = [nosuchglyph];"}),
        )
        assert [d.code for d in result.errors] == [E.UNDEFINED_GLYPH] * 3
        assert [d.span.file_id for d in result.errors] == [0, 1, 0]

    def test_missing_include(self, compile_fea):
        result = compile_fea("include(missing.fea);", include_resolver=DictIncludeResolver({}))
        assert [d.code for d in result.diagnostics] == [E.INCLUDE_NOT_FOUND]
        assert result.tables is None

    def test_no_resolver_configured(self, compile_fea):
        result = compile_fea("include(any.fea);")
        assert [d.code for d in result.diagnostics] == [E.INCLUDE_NOT_FOUND]

    def test_include_cycle(self, compile_fea):
        resolver = DictIncludeResolver({
            "a.fea": "include(b.fea);",
            "b.fea": "include(a.fea);",
        })
        result = compile_fea("include(a.fea);", include_resolver=resolver)
        assert [d.code for d in result.diagnostics] == [E.INCLUDE_CYCLE]
        assert "a.fea -> b.fea -> a.fea" in result.diagnostics[0].message
        assert result.diagnostics[0].span.file_id == 2

    def test_self_include(self, compile_fea):
        resolver = DictIncludeResolver({"self.fea": "include(self.fea);"})
        result = compile_fea("include(self.fea);", path="self.fea", include_resolver=resolver)
        assert [d.code for d in result.diagnostics] == [E.INCLUDE_CYCLE]

    def test_depth_limit(self, compile_fea):
        resolver = DictIncludeResolver({
            "1.fea": "include(2.fea);",
            "2.fea": "include(3.fea);",
            "3.fea": "",
        })
        result = compile_fea(
            "include(1.fea);",
            include_resolver=resolver,
            options=CompileOptions(max_include_depth=2),
        )
        assert [d.code for d in result.diagnostics] == [E.INCLUDE_TOO_DEEP]
        assert [s.path for s in result.sources] == ["<input>", "1.fea", "2.fea"]

    def test_same_file_included_twice(self, compile_fea):
        resolver = DictIncludeResolver({"sub.fea": "sub a by b;"})
        result = compile_fea(
            "feature ss01 { include(sub.fea); } ss01;\nfeature ss02 { include(sub.fea); } ss02;",
            include_resolver=resolver,
        )
        assert result.success, result.diagnostics
        assert len(result.sources) == 3
