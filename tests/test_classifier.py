"""Tests for source classification and the file heuristics behind it."""

from polyscan.classifier import SourceClassifier
from polyscan.core import Config, FileSkipped, SkipReason, SourceFile
from polyscan.utils.file_utils import (
    count_lines_of_code, decode_content, guess_header_language, is_binary_content,
    language_from_shebang, truncate_text
)


class TestSkipReasons:
    """Entries that must never reach a parser."""

    def test_vendored_directory(self, config):
        """Anything below node_modules is vendored."""
        result = SourceClassifier(config).classify("node_modules/lib/index.js", b"eval(x)\n")
        assert isinstance(result, FileSkipped)
        assert result.reason == SkipReason.VENDORED

    def test_vendored_pattern(self, config):
        """Minified bundles are matched by name."""
        result = SourceClassifier(config).classify("static/app.min.js", b"var a=1;\n")
        assert result.reason == SkipReason.VENDORED

    def test_binary_extension(self, config):
        result = SourceClassifier(config).classify("assets/logo.png", b"\x89PNG\r\n")
        assert result.reason == SkipReason.BINARY

    def test_binary_content(self, config):
        """Null bytes mark content as binary whatever the extension says."""
        result = SourceClassifier(config).classify("data.py", b"\x00\x01\x02\x03")
        assert result.reason == SkipReason.BINARY

    def test_markdown_is_not_code(self, config):
        result = SourceClassifier(config).classify("README.md", b"# Title\n")
        assert result.reason == SkipReason.NOT_CODE

    def test_unknown_extension_is_not_code(self, config):
        result = SourceClassifier(config).classify("notes.xyz", b"hello\n")
        assert result.reason == SkipReason.NOT_CODE

    def test_qt_translation_catalog(self, config):
        """A .ts file holding Qt Linguist XML is not TypeScript."""
        data = b'<?xml version="1.0" encoding="utf-8"?>\n<!DOCTYPE TS>\n<TS version="2.1"></TS>\n'
        result = SourceClassifier(config).classify("i18n/app_de.ts", data)
        assert result.reason == SkipReason.NOT_CODE

    def test_disabled_language(self):
        config = Config(overrides={'languages': {'go': {'enabled': False}}})
        result = SourceClassifier(config).classify("main.go", b"package main\n")
        assert result.reason == SkipReason.LANGUAGE_DISABLED

    def test_minified_source(self, config):
        data = ("var a=" + "1+" * 400 + "1;\n").encode('utf-8')
        result = SourceClassifier(config).classify("app.js", data)
        assert result.reason == SkipReason.MINIFIED

    def test_oversized_fixture(self, config):
        data = b"x = 1\n" * 20000
        result = SourceClassifier(config).classify("tests/fixtures/big.py", data)
        assert result.reason == SkipReason.FIXTURE_SIZE


class TestLanguageDetection:
    """Language resolution for entries that are analyzed."""

    def test_extension(self, config):
        result = SourceClassifier(config).classify("src/app.py", b"print('hi')\n")
        assert isinstance(result, SourceFile)
        assert result.language == "python"
        assert result.partial is False

    def test_typescript_source(self, config):
        result = SourceClassifier(config).classify("src/index.ts", b"const a: number = 1;\n")
        assert result.language == "typescript"

    def test_shebang_without_extension(self, config):
        result = SourceClassifier(config).classify("bin/tool", b"#!/usr/bin/env python3\nprint(1)\n")
        assert result.language == "python"

    def test_header_with_cpp_markers(self, config):
        data = b"namespace app {\nclass Widget {\npublic:\n  virtual ~Widget();\n};\n}\n"
        result = SourceClassifier(config).classify("include/widget.h", data)
        assert result.language == "cpp"

    def test_header_with_c_markers(self, config):
        data = b"#include <stdio.h>\ntypedef struct point { int x; } point;\n"
        result = SourceClassifier(config).classify("include/point.h", data)
        assert result.language == "c"

    def test_oversized_file_is_truncated(self):
        config = Config(overrides={'analysis': {'max_file_size_kb': 1}})
        data = b"value = 'abc'\n" * 200
        result = SourceClassifier(config).classify("big.py", data)
        assert isinstance(result, SourceFile)
        assert result.partial is True
        assert result.size == len(data)
        assert len(result.text) <= 1024
        assert result.text.endswith("\n")

    def test_multibyte_file_truncated_by_bytes(self):
        """The ceiling counts encoded bytes, not characters."""
        config = Config(overrides={'analysis': {'max_file_size_kb': 1}})
        data = "name = 'żółć'\n".encode('utf-8') * 100
        result = SourceClassifier(config).classify("pl.py", data)
        assert result.partial is True
        kept = result.text.encode('utf-8')
        assert len(kept) <= 1024
        assert kept == data[:len(kept)]
        assert result.text.endswith("\n")


class TestFileUtils:
    """Heuristics in utils.file_utils."""

    def test_empty_content_is_text(self):
        assert is_binary_content(b"") is False

    def test_decode_latin1_fallback(self):
        text, encoding = decode_content("café = 1\n".encode('latin-1'))
        assert "caf" in text
        assert encoding != 'utf-8'

    def test_decode_strips_bom(self):
        text, encoding = decode_content(b"\xef\xbb\xbfx = 1\n")
        assert text == "x = 1\n"
        assert encoding == 'utf-8'

    def test_shebang_variants(self):
        assert language_from_shebang("#!/bin/bash") == "shell"
        assert language_from_shebang("#!/usr/bin/env node") == "javascript"
        assert language_from_shebang("#!/usr/bin/python2.7") == "python"
        assert language_from_shebang("print('no shebang')") is None

    def test_header_tie_defaults_to_c(self):
        assert guess_header_language("int add(int a, int b);\n") == "c"

    def test_truncate_keeps_whole_lines(self):
        assert truncate_text("aaa\nbbb\nccc\n", 9) == "aaa\nbbb\n"
        assert truncate_text("short", 100) == "short"

    def test_truncate_never_splits_a_character(self):
        assert truncate_text("żółć", 5) == "żó"
        assert truncate_text("ab\nżółć\n", 6) == "ab\n"

    def test_count_lines_skips_comments(self):
        text = "# comment\n\nx = 1\n\"\"\"\ndocstring\n\"\"\"\ny = 2\n"
        assert count_lines_of_code(text, "python") == 2
        js = "// comment\n/* block\n still */\nlet a = 1;\n"
        assert count_lines_of_code(js, "javascript") == 1
