"""Shared fixtures for the polyscan test suite."""

from typing import Callable, Tuple

import pytest

from polyscan.core import Config, LanguageRegistry, SecurityAnalyzer, SourceFile
from polyscan.language_modules.cst import ParseResult
from polyscan.rules.rule_table import RuleTable, load_rule_table


@pytest.fixture(scope="session")
def rule_table() -> RuleTable:
    """The packaged rule table, loaded once per session."""
    return load_rule_table()


@pytest.fixture(scope="session")
def registry() -> LanguageRegistry:
    registry = LanguageRegistry()
    registry.discover_adapters()
    return registry


@pytest.fixture
def config() -> Config:
    return Config()


@pytest.fixture
def analyzer(config: Config, rule_table: RuleTable) -> SecurityAnalyzer:
    return SecurityAnalyzer(config, rule_table=rule_table)


@pytest.fixture
def make_source() -> Callable[..., SourceFile]:
    """Build a SourceFile directly, bypassing classification."""
    def _make(path: str, text: str, language: str) -> SourceFile:
        return SourceFile(path=path, language=language, text=text, size=len(text.encode('utf-8')))
    return _make


@pytest.fixture
def parse(registry: LanguageRegistry, make_source) -> Callable[..., Tuple[SourceFile, ParseResult]]:
    """Parse text with the adapter registered for ``language``."""
    def _parse(text: str, language: str = 'python', path: str = '') -> Tuple[SourceFile, ParseResult]:
        extensions = {'python': 'py', 'javascript': 'js', 'typescript': 'ts', 'java': 'java',
                      'go': 'go', 'php': 'php'}
        source = make_source(path or f"sample.{extensions.get(language, 'txt')}", text, language)
        return source, registry.get_adapter(language).parse(source)
    return _parse


