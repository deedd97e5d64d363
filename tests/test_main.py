# tests/test_main.py
"""
Tests for the command-line front end: sub-commands, output formats and
exit codes.
"""

import json

import pytest
import sexpdata
from fontTools.fontBuilder import FontBuilder
from fontTools.pens.ttGlyphPen import TTGlyphPen
from fontTools.ttLib import TTFont

from feac.main import EXIT_ERROR, EXIT_INFRA, EXIT_OK, main
from tests.conftest import LATIN_GLYPHS, SMCP_FEA, VARIATION_FEA


@pytest.fixture
def fea(tmp_path):
    """Write *text* to a feature file and return its path as a string."""

    def _write(text, name="font.fea"):
        path = tmp_path / name
        path.write_text(text, encoding="utf-8")
        return str(path)

    return _write


@pytest.fixture
def glyph_list(tmp_path):
    path = tmp_path / "glyphs.txt"
    path.write_text("# test glyphs\n" + "\n".join(LATIN_GLYPHS) + "\n", encoding="utf-8")
    return str(path)


@pytest.fixture
def font_file(tmp_path):
    glyph = TTGlyphPen(None).glyph()
    builder = FontBuilder(1000, isTTF=True)
    builder.setupGlyphOrder(list(LATIN_GLYPHS))
    builder.setupCharacterMap({0x61: "a", 0x62: "b", 0x63: "c"})
    builder.setupGlyf({name: glyph for name in LATIN_GLYPHS})
    builder.setupHorizontalMetrics({name: (500, 0) for name in LATIN_GLYPHS})
    builder.setupHorizontalHeader(ascent=800, descent=-200)
    builder.setupNameTable({"familyName": "Feac Test", "styleName": "Regular"})
    builder.setupOS2()
    builder.setupPost()
    path = tmp_path / "test.ttf"
    builder.save(str(path))
    return str(path)


class TestParseCommand:

    def test_sexp_output(self, fea, capsys):
        assert main(["parse", fea(SMCP_FEA)]) == EXIT_OK
        parsed = sexpdata.loads(capsys.readouterr().out)
        assert parsed[0] == sexpdata.Symbol("SOURCE_FILE")

    def test_text_output_round_trips(self, fea, capsys):
        assert main(["parse", "--format", "text", fea(SMCP_FEA)]) == EXIT_OK
        assert capsys.readouterr().out == SMCP_FEA

    def test_syntax_error(self, fea, capsys):
        assert main(["parse", fea("feature liga { sub f i by ; } liga;")]) == EXIT_ERROR
        assert "error:" in capsys.readouterr().err

    def test_missing_file(self, tmp_path):
        assert main(["parse", str(tmp_path / "missing.fea")]) == EXIT_INFRA


class TestCheckCommand:

    def test_clean_file(self, fea, glyph_list, capsys):
        assert main(["check", fea(SMCP_FEA), "--glyphs", glyph_list]) == EXIT_OK
        assert capsys.readouterr().out == ""

    def test_gcc_format(self, fea, glyph_list, capsys):
        path = fea("feature smcp { sub q by a; } smcp;\n")
        assert main(["check", path, "--glyphs", glyph_list]) == EXIT_ERROR
        first = capsys.readouterr().out.splitlines()[0]
        assert ":1:20: error:" in first
        assert first.endswith("[FEA-3000]")

    def test_json_format(self, fea, glyph_list, capsys):
        path = fea("feature smcp { sub q by a; } smcp;\n")
        assert main(["check", path, "--glyphs", glyph_list, "-f", "json"]) == EXIT_ERROR
        (line,) = capsys.readouterr().out.splitlines()
        record = json.loads(line)
        assert record["code"] == "FEA-3000"
        assert record["severity"] == "error"

    def test_warnings_do_not_fail(self, fea, glyph_list):
        path = fea("@A = [a];\n@A = [b];\n")
        assert main(["check", path, "--glyphs", glyph_list]) == EXIT_OK

    def test_duplicates_as_errors(self, fea, glyph_list):
        path = fea("@A = [a];\n@A = [b];\n")
        assert main(["check", path, "--glyphs", glyph_list, "--duplicates-are-errors"]) == EXIT_ERROR

    def test_axis_option(self, fea, glyph_list):
        path = fea(VARIATION_FEA)
        assert main(["check", path, "--glyphs", glyph_list]) == EXIT_ERROR
        assert main(["check", path, "--glyphs", glyph_list, "--axis", "wght=100:400:900"]) == EXIT_OK

    def test_invalid_axis_option(self, fea, glyph_list):
        path = fea(VARIATION_FEA)
        code = main(["check", path, "--glyphs", glyph_list, "--axis", "wght=900:400:100"])
        assert code == EXIT_INFRA

    def test_includes_relative_to_file(self, fea, glyph_list):
        fea("@LC = [a b c];\n@SC = [a.sc b.sc c.sc];\n", name="classes.fea")
        path = fea("include(classes.fea);\nfeature smcp { sub @LC by @SC; } smcp;\n")
        assert main(["check", path, "--glyphs", glyph_list]) == EXIT_OK


class TestCompileCommand:

    def test_ttx_output(self, fea, glyph_list, tmp_path):
        output = tmp_path / "out.ttx"
        code = main(["compile", fea(SMCP_FEA), "--glyphs", glyph_list, "-o", str(output)])
        assert code == EXIT_OK
        text = output.read_text(encoding="utf-8")
        assert "<GSUB>" in text
        assert 'value="smcp"' in text

    def test_errors_write_nothing(self, fea, glyph_list, tmp_path):
        output = tmp_path / "out.ttx"
        path = fea("feature smcp { sub q by a; } smcp;\n")
        assert main(["compile", path, "--glyphs", glyph_list, "-o", str(output)]) == EXIT_ERROR
        assert not output.exists()

    def test_into_font(self, fea, font_file, tmp_path):
        output = tmp_path / "out.ttf"
        assert main(["compile", fea(SMCP_FEA), "--font", font_file, "-o", str(output)]) == EXIT_OK
        font = TTFont(str(output))
        assert "GSUB" in font
        assert font["GSUB"].table.FeatureList.FeatureRecord[0].FeatureTag == "smcp"

    def test_into_font_needs_output(self, fea, font_file):
        assert main(["compile", fea(SMCP_FEA), "--font", font_file]) == EXIT_INFRA

    def test_unreadable_font(self, fea, tmp_path):
        bogus = tmp_path / "bogus.ttf"
        bogus.write_bytes(b"not a font")
        assert main(["compile", fea(SMCP_FEA), "--font", str(bogus)]) == EXIT_INFRA


class TestArguments:

    def test_no_command(self):
        assert main([]) == EXIT_INFRA

    def test_bad_axis_syntax(self, fea):
        with pytest.raises(SystemExit):
            main(["check", fea(SMCP_FEA), "--axis", "wght"])
