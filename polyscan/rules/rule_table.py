# =============================================================================
# Polyscan Multi-Language Static Analysis Engine
# =============================================================================
#
# Author: Keith Pachulski
# Company: Red Cell Security, LLC
# Email: keith@redcellsecurity.org
# Website: www.redcellsecurity.org
#
# Copyright (c) 2025 Keith Pachulski. All rights reserved.
#
# License: This software is licensed under the MIT License.
#          You are free to use, modify, and distribute this software
#          in accordance with the terms of the license.
#
# Purpose: This module loads the versioned YAML rule table (structural rules plus taint
#          sources, sinks, sanitizers and propagators), validates every entry, compiles the
#          Jinja2 finding templates and exposes the result as frozen values shared by workers.
#
# DISCLAIMER: This software is provided "as-is," without warranty of any kind,
#             express or implied, including but not limited to the warranties
#             of merchantability, fitness for a particular purpose, and non-infringement.
#             In no event shall the authors or copyright holders be liable for any claim,
#             damages, or other liability, whether in an action of contract, tort, or otherwise,
#             arising from, out of, or in connection with the software or the use or other dealings
#             in the software.
#
# =============================================================================

import re
import logging
from fnmatch import fnmatchcase
from pathlib import Path
from dataclasses import dataclass, field
from typing import Any, Dict, FrozenSet, Iterable, List, Optional, Pattern, Tuple

import yaml
from jinja2 import BaseLoader, Environment, Template, TemplateSyntaxError

from polyscan.core import RuleCategory, Severity
from polyscan.language_modules.cst import CstNode, NodeKind
from polyscan.rules.owasp_rules import (
    VALID_OWASP_CODES, default_classification, default_references, normalize_cwe,
    owasp_code, owasp_label
)

logger = logging.getLogger(__name__)

DEFAULT_RULE_FILE = Path(__file__).with_name('default_rules.yaml')

ANY_LANGUAGE = '*'

# Axes that walk the tree relative to the previous step's node
STRUCTURAL_AXES = {'self', 'child', 'descendant', 'parent', 'ancestor'}
# Axes that select children by the slot they occupy
ROLE_AXES = {'arg', 'kwarg', 'callee', 'target', 'value', 'object', 'index', 'left',
             'right', 'test', 'body', 'orelse', 'iter', 'part'}
VALID_AXES = STRUCTURAL_AXES | ROLE_AXES

CONTEXT_KEYS = {'literal', 'identifier', 'concatenation', 'call', 'member', 'other'}

DEFAULT_STEP_DEPTH = 3
DEFAULT_MESSAGE = "{{ title }}"
DEFAULT_SUMMARY = ("{{ title }} in {{ file }} at line {{ line }}."
                   "{% if description %} {{ description }}{% endif %}")
DEFAULT_REMEDIATION = "Review this code and apply the appropriate security control."

_TEMPLATES = Environment(loader=BaseLoader(), autoescape=False)


class RuleTableInvalid(Exception):
    """Raised when a rule table fails validation. Carries every error found."""

    def __init__(self, errors: List[str], source: str = ""):
        self.errors = list(errors)
        self.source = source
        where = f" ({source})" if source else ""
        preview = "; ".join(self.errors[:5])
        more = f" (+{len(self.errors) - 5} more)" if len(self.errors) > 5 else ""
        super().__init__(f"Invalid rule table{where}: {preview}{more}")


def attr_text(value: Any) -> Optional[str]:
    """Render a node attribute for glob and regex matching."""
    if value is None:
        return None
    if isinstance(value, bool):
        return 'true' if value else 'false'
    if isinstance(value, (list, tuple)):
        return ','.join(str(item) for item in value)
    return str(value)


def callee_matches(patterns: Iterable[str], callee: str) -> bool:
    """Whole-path glob match used for call and assignment patterns."""
    return bool(callee) and any(fnmatchcase(callee, pattern) for pattern in patterns)


def path_matches(patterns: Iterable[str], path: str) -> bool:
    """
    Segment-prefix match: ``req.query`` matches ``req.query.id`` and
    ``$_GET`` matches ``$_GET[]``, but ``req.q`` does not match ``req.query``.
    """
    if not path:
        return False
    segments = path.replace('[]', '.[]').split('.')
    for pattern in patterns:
        wanted = pattern.split('.')
        if len(wanted) <= len(segments) and all(
                fnmatchcase(segment, glob) for segment, glob in zip(segments, wanted)):
            return True
    return False


def _applies(languages: FrozenSet[str], language: str) -> bool:
    return ANY_LANGUAGE in languages or language in languages


# =============================================================================
# RULE MODEL
# =============================================================================

@dataclass(frozen=True)
class FindingTemplates:
    """Compiled Jinja2 templates rendered by the aggregator for every finding."""
    message: Template
    summary: Template
    description: Template
    example_fix: Template
    effort: Optional[str] = None
    priority: Optional[int] = None


@dataclass(frozen=True)
class PatternStep:
    """One step of a structural predicate."""
    axis: str = 'self'
    kinds: FrozenSet[NodeKind] = frozenset()
    not_kinds: FrozenSet[NodeKind] = frozenset()
    depth: int = DEFAULT_STEP_DEPTH
    index: Optional[int] = None
    keyword: Tuple[str, ...] = ()
    attrs: Tuple[Tuple[str, Tuple[str, ...]], ...] = ()
    regex: Tuple[Tuple[str, Pattern], ...] = ()
    subject: bool = False
    absent: bool = False

    @property
    def constraint_count(self) -> int:
        return (bool(self.kinds) + bool(self.not_kinds) + (self.index is not None)
                + bool(self.keyword) + len(self.attrs) + len(self.regex) + int(self.absent))

    def matches(self, node: CstNode) -> bool:
        if self.kinds and node.kind not in self.kinds:
            return False
        if node.kind in self.not_kinds:
            return False
        for name, globs in self.attrs:
            value = attr_text(node.attr(name))
            if value is None or not any(fnmatchcase(value, glob) for glob in globs):
                return False
        for name, pattern in self.regex:
            value = attr_text(node.attr(name))
            if value is None or not pattern.search(value):
                return False
        return True


@dataclass(frozen=True)
class Rule:
    """A declarative structural rule."""
    id: str
    title: str
    description: str
    languages: FrozenSet[str]
    steps: Tuple[PatternStep, ...]
    category: RuleCategory
    issue_type: str
    severity: Severity
    confidence: int
    min_confidence: int
    adjustments: Tuple[Tuple[str, int], ...]
    cwe: str
    owasp: str
    priority: int
    templates: FindingTemplates
    references: Tuple[str, ...] = ()
    tags: Tuple[str, ...] = ()

    @property
    def specificity(self) -> int:
        return len(self.steps) + sum(step.constraint_count for step in self.steps)

    @property
    def anchor_kinds(self) -> FrozenSet[NodeKind]:
        return self.steps[0].kinds

    def applies_to(self, language: str) -> bool:
        return _applies(self.languages, language)

    def adjustment(self, context: str) -> int:
        return dict(self.adjustments).get(context, 0)


# =============================================================================
# TAINT MODEL
# =============================================================================

@dataclass(frozen=True)
class TaintSource:
    """Where untrusted data enters: member paths (``req.query``) or callees (``input``)."""
    id: str
    languages: FrozenSet[str]
    kind: str
    patterns: Tuple[str, ...]
    label: str = ""

    def applies_to(self, language: str) -> bool:
        return _applies(self.languages, language)

    def matches(self, path: str, is_call: bool = False) -> bool:
        if self.kind == 'call':
            return is_call and callee_matches(self.patterns, path)
        return path_matches(self.patterns, path)


@dataclass(frozen=True)
class TaintSink:
    """A call argument position or assignment target that must not receive tainted data."""
    id: str
    title: str
    description: str
    languages: FrozenSet[str]
    kind: str
    patterns: Tuple[str, ...]
    args: Optional[Tuple[int, ...]]
    keywords: Tuple[str, ...]
    require_keywords: Tuple[Tuple[str, Tuple[str, ...]], ...]
    category: RuleCategory
    issue_type: str
    severity: Severity
    confidence: int
    cwe: str
    owasp: str
    templates: FindingTemplates
    references: Tuple[str, ...] = ()
    tags: Tuple[str, ...] = ()

    def applies_to(self, language: str) -> bool:
        return _applies(self.languages, language)

    def matches(self, path: str) -> bool:
        return callee_matches(self.patterns, path)

    def watches_argument(self, position: int) -> bool:
        return self.args is None or position in self.args


@dataclass(frozen=True)
class Sanitizer:
    id: str
    languages: FrozenSet[str]
    patterns: Tuple[str, ...]

    def applies_to(self, language: str) -> bool:
        return _applies(self.languages, language)

    def matches(self, callee: str) -> bool:
        return callee_matches(self.patterns, callee)


@dataclass(frozen=True)
class Propagator:
    """Calls whose result carries the taint of their receiver and arguments."""
    id: str
    languages: FrozenSet[str]
    patterns: Tuple[str, ...]
    mutates_receiver: bool = False

    def applies_to(self, language: str) -> bool:
        return _applies(self.languages, language)

    def matches(self, callee: str) -> bool:
        return callee_matches(self.patterns, callee)


@dataclass(frozen=True)
class LanguageTaint:
    """The taint patterns that apply to one language."""
    sources: Tuple[TaintSource, ...] = ()
    sinks: Tuple[TaintSink, ...] = ()
    sanitizers: Tuple[Sanitizer, ...] = ()
    propagators: Tuple[Propagator, ...] = ()

    @property
    def call_sinks(self) -> Tuple[TaintSink, ...]:
        return tuple(sink for sink in self.sinks if sink.kind == 'call')

    @property
    def assignment_sinks(self) -> Tuple[TaintSink, ...]:
        return tuple(sink for sink in self.sinks if sink.kind == 'assignment')

    @property
    def is_empty(self) -> bool:
        return not self.sources or not self.sinks


@dataclass(frozen=True)
class TaintTable:
    sources: Tuple[TaintSource, ...] = ()
    sinks: Tuple[TaintSink, ...] = ()
    sanitizers: Tuple[Sanitizer, ...] = ()
    propagators: Tuple[Propagator, ...] = ()
    _views: Dict[str, LanguageTaint] = field(default_factory=dict, init=False, repr=False, compare=False)

    def __post_init__(self):
        languages = set()
        for entry in self.sources + self.sinks + self.sanitizers + self.propagators:
            languages.update(entry.languages)
        languages.discard(ANY_LANGUAGE)
        for language in languages:
            self._views[language] = self._build_view(language)

    def for_language(self, language: str) -> LanguageTaint:
        view = self._views.get(language)
        return view if view is not None else self._build_view(language)

    def _build_view(self, language: str) -> LanguageTaint:
        return LanguageTaint(
            sources=tuple(item for item in self.sources if item.applies_to(language)),
            sinks=tuple(item for item in self.sinks if item.applies_to(language)),
            sanitizers=tuple(item for item in self.sanitizers if item.applies_to(language)),
            propagators=tuple(item for item in self.propagators if item.applies_to(language))
        )


@dataclass(frozen=True)
class RuleTable:
    """The loaded, validated and immutable rule set shared by all workers."""
    version: str
    rules: Tuple[Rule, ...]
    taint: TaintTable
    origins: Tuple[str, ...] = ()
    _by_language: Dict[str, Tuple[Rule, ...]] = field(default_factory=dict, init=False,
                                                      repr=False, compare=False)

    def __post_init__(self):
        languages = set()
        for rule in self.rules:
            languages.update(rule.languages)
        languages.discard(ANY_LANGUAGE)
        for language in languages:
            self._by_language[language] = self._select(language)

    def rules_for(self, language: str) -> Tuple[Rule, ...]:
        """Rules applicable to ``language``, most specific first."""
        rules = self._by_language.get(language)
        return rules if rules is not None else self._select(language)

    def get_rule(self, rule_id: str) -> Optional[Rule]:
        for rule in self.rules:
            if rule.id == rule_id:
                return rule
        return None

    def _select(self, language: str) -> Tuple[Rule, ...]:
        return tuple(rule for rule in self.rules if rule.applies_to(language))


# =============================================================================
# VALIDATION
# =============================================================================

class RuleValidator:
    """
    Validates raw rule table entries and builds the frozen model from them.

    Every problem is collected rather than raised so a broken table reports
    all of its errors at once.
    """

    REQUIRED_RULE_FIELDS = ('id', 'title', 'languages', 'category', 'severity', 'pattern')
    REQUIRED_SINK_FIELDS = ('id', 'languages', 'kind', 'patterns', 'category', 'severity')
    REQUIRED_SOURCE_FIELDS = ('id', 'languages', 'patterns')

    VALID_SEVERITIES = {'low', 'medium', 'high', 'critical'}
    VALID_OWASP_CATEGORIES = VALID_OWASP_CODES
    VALID_SOURCE_KINDS = {'member', 'call'}
    VALID_SINK_KINDS = {'call', 'assignment'}
    VALID_EFFORTS = {'Low', 'Medium', 'High'}

    RULE_ID_PATTERN = re.compile(r'^[A-Za-z0-9][A-Za-z0-9_.-]{0,63}$')

    def __init__(self):
        self.validation_errors: List[str] = []

    def error(self, where: str, message: str) -> None:
        self.validation_errors.append(f"{where}: {message}")

    def build_rule(self, raw: Any, where: str) -> Optional[Rule]:
        """
        Validate one rule entry.

        Args:
            raw: Mapping loaded from YAML
            where: Location used to prefix error messages

        Returns:
            Rule or None when the entry has errors
        """
        if not isinstance(raw, dict):
            self.error(where, "rule must be a mapping")
            return None

        before = len(self.validation_errors)
        self._check_required_fields(raw, self.REQUIRED_RULE_FIELDS, where)
        rule_id = self._validate_rule_id(raw.get('id'), where)
        where = f"{where} [{rule_id}]" if rule_id else where

        severity = self._parse_severity(raw.get('severity'), where)
        category = self._parse_category(raw.get('category'), where)
        languages = self._parse_languages(raw.get('languages'), where)
        confidence = self._parse_confidence(raw.get('confidence', 60), 'confidence', where)
        min_confidence = self._parse_confidence(raw.get('min_confidence', 0), 'min_confidence', where)
        priority = self._parse_priority(raw.get('priority', 3), where)
        adjustments = self._parse_adjustments(raw.get('adjust', {}), where)
        steps = self._parse_steps(raw.get('pattern'), where) if 'pattern' in raw else ()
        owasp, cwe = self._classification(raw, category, where)
        templates = self._compile_templates(raw, where)

        if len(self.validation_errors) > before:
            return None

        title = str(raw['title'])
        return Rule(
            id=rule_id,
            title=title,
            description=str(raw.get('description', '')).strip(),
            languages=languages,
            steps=steps,
            category=category,
            issue_type=str(raw.get('issue_type') or title),
            severity=severity,
            confidence=confidence,
            min_confidence=min_confidence,
            adjustments=adjustments,
            cwe=cwe,
            owasp=owasp,
            priority=priority,
            templates=templates,
            references=self._references(raw, owasp, cwe),
            tags=tuple(str(tag) for tag in raw.get('tags', []) or [])
        )

    def build_source(self, raw: Any, where: str) -> Optional[TaintSource]:
        if not isinstance(raw, dict):
            self.error(where, "taint source must be a mapping")
            return None
        before = len(self.validation_errors)
        self._check_required_fields(raw, self.REQUIRED_SOURCE_FIELDS, where)
        source_id = self._validate_rule_id(raw.get('id'), where)
        kind = str(raw.get('kind', 'member'))
        if kind not in self.VALID_SOURCE_KINDS:
            self.error(where, f"invalid source kind: {kind}. Must be one of {sorted(self.VALID_SOURCE_KINDS)}")
        languages = self._parse_languages(raw.get('languages'), where)
        patterns = self._parse_patterns(raw.get('patterns'), where)
        if len(self.validation_errors) > before:
            return None
        return TaintSource(id=source_id, languages=languages, kind=kind, patterns=patterns,
                           label=str(raw.get('label') or source_id))

    def build_sink(self, raw: Any, where: str) -> Optional[TaintSink]:
        if not isinstance(raw, dict):
            self.error(where, "taint sink must be a mapping")
            return None
        before = len(self.validation_errors)
        self._check_required_fields(raw, self.REQUIRED_SINK_FIELDS, where)
        sink_id = self._validate_rule_id(raw.get('id'), where)
        where = f"{where} [{sink_id}]" if sink_id else where

        kind = str(raw.get('kind', 'call'))
        if kind not in self.VALID_SINK_KINDS:
            self.error(where, f"invalid sink kind: {kind}. Must be one of {sorted(self.VALID_SINK_KINDS)}")
        languages = self._parse_languages(raw.get('languages'), where)
        patterns = self._parse_patterns(raw.get('patterns'), where)
        severity = self._parse_severity(raw.get('severity'), where)
        category = self._parse_category(raw.get('category'), where)
        confidence = self._parse_confidence(raw.get('confidence', 80), 'confidence', where)
        args = self._parse_positions(raw.get('args', [0]), where)
        require_keywords = self._parse_require_keywords(raw.get('require_keywords', {}), where)
        owasp, cwe = self._classification(raw, category, where)
        templates = self._compile_templates(raw, where)
        if len(self.validation_errors) > before:
            return None

        title = str(raw.get('title') or raw.get('issue_type') or sink_id)
        return TaintSink(
            id=sink_id,
            title=title,
            description=str(raw.get('description', '')).strip(),
            languages=languages,
            kind=kind,
            patterns=patterns,
            args=args,
            keywords=tuple(str(name) for name in raw.get('keywords', []) or []),
            require_keywords=require_keywords,
            category=category,
            issue_type=str(raw.get('issue_type') or title),
            severity=severity,
            confidence=confidence,
            cwe=cwe,
            owasp=owasp,
            templates=templates,
            references=self._references(raw, owasp, cwe),
            tags=tuple(str(tag) for tag in raw.get('tags', []) or [])
        )

    def build_sanitizer(self, raw: Any, where: str) -> Optional[Sanitizer]:
        if not isinstance(raw, dict):
            self.error(where, "sanitizer must be a mapping")
            return None
        before = len(self.validation_errors)
        self._check_required_fields(raw, self.REQUIRED_SOURCE_FIELDS, where)
        sanitizer_id = self._validate_rule_id(raw.get('id'), where)
        languages = self._parse_languages(raw.get('languages'), where)
        patterns = self._parse_patterns(raw.get('patterns'), where)
        if len(self.validation_errors) > before:
            return None
        return Sanitizer(id=sanitizer_id, languages=languages, patterns=patterns)

    def build_propagator(self, raw: Any, where: str) -> Optional[Propagator]:
        if not isinstance(raw, dict):
            self.error(where, "propagator must be a mapping")
            return None
        before = len(self.validation_errors)
        self._check_required_fields(raw, self.REQUIRED_SOURCE_FIELDS, where)
        propagator_id = self._validate_rule_id(raw.get('id'), where)
        languages = self._parse_languages(raw.get('languages'), where)
        patterns = self._parse_patterns(raw.get('patterns'), where)
        if len(self.validation_errors) > before:
            return None
        return Propagator(id=propagator_id, languages=languages, patterns=patterns,
                          mutates_receiver=bool(raw.get('mutates_receiver', False)))

    # -------------------------------------------------------------------------
    # field parsers
    # -------------------------------------------------------------------------

    def _check_required_fields(self, raw: Dict[str, Any], required: Iterable[str], where: str) -> None:
        """Check that all required fields are present."""
        for name in required:
            if raw.get(name) in (None, '', [], {}):
                self.error(where, f"missing required field: {name}")

    def _validate_rule_id(self, rule_id: Any, where: str) -> str:
        """Validate rule ID format."""
        if rule_id is None:
            return ""
        if not isinstance(rule_id, str) or not rule_id.strip():
            self.error(where, "id must be a non-empty string")
            return ""
        if not self.RULE_ID_PATTERN.match(rule_id):
            self.error(where, f"invalid id {rule_id!r}: use letters, digits, '.', '-' and '_' (max 64)")
        return rule_id

    def _parse_severity(self, value: Any, where: str) -> Severity:
        if value is not None and str(value).lower() not in self.VALID_SEVERITIES:
            self.error(where, f"invalid severity: {value}. Must be one of {sorted(self.VALID_SEVERITIES)}")
            return Severity.LOW
        return Severity.from_name(value) if value is not None else Severity.LOW

    def _parse_category(self, value: Any, where: str) -> RuleCategory:
        if value is None:
            return RuleCategory.MISCONFIGURATION
        try:
            return RuleCategory.from_name(value)
        except ValueError:
            valid = [category.value for category in RuleCategory]
            self.error(where, f"invalid category: {value}. Must be one of {valid}")
            return RuleCategory.MISCONFIGURATION

    def _parse_languages(self, value: Any, where: str) -> FrozenSet[str]:
        if isinstance(value, str):
            value = [value]
        if not isinstance(value, (list, tuple)) or not value:
            if value is not None:
                self.error(where, "languages must be a non-empty list")
            return frozenset()
        return frozenset(str(language).lower() for language in value)

    def _parse_confidence(self, value: Any, name: str, where: str) -> int:
        if isinstance(value, bool) or not isinstance(value, int) or not 0 <= value <= 100:
            self.error(where, f"{name} must be an integer between 0 and 100, got {value!r}")
            return 0
        return value

    def _parse_priority(self, value: Any, where: str) -> int:
        if isinstance(value, bool) or not isinstance(value, int) or not 1 <= value <= 5:
            self.error(where, f"priority must be an integer between 1 and 5, got {value!r}")
            return 3
        return value

    def _parse_adjustments(self, value: Any, where: str) -> Tuple[Tuple[str, int], ...]:
        if not isinstance(value, dict):
            self.error(where, "adjust must be a mapping of context to integer")
            return ()
        adjustments = []
        for context, delta in value.items():
            if context not in CONTEXT_KEYS:
                self.error(where, f"invalid adjust context: {context}. Must be one of {sorted(CONTEXT_KEYS)}")
            elif isinstance(delta, bool) or not isinstance(delta, int):
                self.error(where, f"adjustment for {context} must be an integer")
            else:
                adjustments.append((context, delta))
        return tuple(adjustments)

    def _parse_patterns(self, value: Any, where: str) -> Tuple[str, ...]:
        if isinstance(value, str):
            value = [value]
        if not isinstance(value, (list, tuple)) or not all(isinstance(item, str) and item for item in value):
            if value is not None:
                self.error(where, "patterns must be a list of non-empty strings")
            return ()
        return tuple(value)

    def _parse_positions(self, value: Any, where: str) -> Optional[Tuple[int, ...]]:
        if value in ('*', 'all', None):
            return None
        if isinstance(value, int) and not isinstance(value, bool):
            value = [value]
        if not isinstance(value, (list, tuple)) or not all(
                isinstance(item, int) and not isinstance(item, bool) and item >= 0 for item in value):
            self.error(where, "args must be '*' or a list of non-negative argument positions")
            return ()
        return tuple(value)

    def _parse_require_keywords(self, value: Any, where: str) -> Tuple[Tuple[str, Tuple[str, ...]], ...]:
        if not isinstance(value, dict):
            self.error(where, "require_keywords must be a mapping")
            return ()
        return tuple((str(name), self._globs(globs)) for name, globs in value.items())

    def _parse_kinds(self, value: Any, where: str) -> FrozenSet[NodeKind]:
        if value is None:
            return frozenset()
        names = [value] if isinstance(value, str) else value
        kinds = set()
        for name in names if isinstance(names, (list, tuple)) else [names]:
            try:
                kinds.add(NodeKind.from_name(str(name)))
            except ValueError:
                self.error(where, f"unknown node kind: {name}")
        return frozenset(kinds)

    @staticmethod
    def _globs(value: Any) -> Tuple[str, ...]:
        if isinstance(value, (list, tuple)):
            return tuple(attr_text(item) for item in value)
        return (attr_text(value),)

    def _parse_steps(self, value: Any, where: str) -> Tuple[PatternStep, ...]:
        if not isinstance(value, list) or not value:
            self.error(where, "pattern must be a non-empty list of steps")
            return ()
        steps = [self._parse_step(raw, position, f"{where} step {position + 1}")
                 for position, raw in enumerate(value)]
        steps = [step for step in steps if step is not None]
        if steps and steps[0].axis != 'self':
            self.error(where, "the first pattern step must use axis 'self'")
        if steps and steps[0].absent:
            self.error(where, "the first pattern step cannot be absent")
        return tuple(steps)

    def _parse_step(self, raw: Any, position: int, where: str) -> Optional[PatternStep]:
        if not isinstance(raw, dict):
            self.error(where, "step must be a mapping")
            return None
        unknown = set(raw) - {'axis', 'kind', 'not_kind', 'depth', 'index', 'keyword',
                              'attrs', 'regex', 'subject', 'absent'}
        if unknown:
            self.error(where, f"unknown step fields: {sorted(unknown)}")

        axis = str(raw.get('axis', 'self' if position == 0 else 'child'))
        if axis not in VALID_AXES:
            self.error(where, f"invalid axis: {axis}. Must be one of {sorted(VALID_AXES)}")

        depth = raw.get('depth', DEFAULT_STEP_DEPTH)
        if isinstance(depth, bool) or not isinstance(depth, int) or depth < 1:
            self.error(where, f"depth must be a positive integer, got {depth!r}")
            depth = DEFAULT_STEP_DEPTH

        index = raw.get('index')
        if index is not None and (isinstance(index, bool) or not isinstance(index, int) or index < 0):
            self.error(where, f"index must be a non-negative integer, got {index!r}")
            index = None

        attrs = raw.get('attrs', {}) or {}
        if not isinstance(attrs, dict):
            self.error(where, "attrs must be a mapping of attribute to glob(s)")
            attrs = {}

        regex = []
        regex_raw = raw.get('regex', {}) or {}
        if not isinstance(regex_raw, dict):
            self.error(where, "regex must be a mapping of attribute to pattern")
            regex_raw = {}
        for name, expression in regex_raw.items():
            try:
                regex.append((str(name), re.compile(str(expression))))
            except re.error as e:
                self.error(where, f"invalid regex for {name}: {e}")

        keyword = raw.get('keyword')
        return PatternStep(
            axis=axis,
            kinds=self._parse_kinds(raw.get('kind'), where),
            not_kinds=self._parse_kinds(raw.get('not_kind'), where),
            depth=depth,
            index=index,
            keyword=self._globs(keyword) if keyword is not None else (),
            attrs=tuple((str(name), self._globs(globs)) for name, globs in attrs.items()),
            regex=tuple(regex),
            subject=bool(raw.get('subject', False)),
            absent=bool(raw.get('absent', False))
        )

    def _classification(self, raw: Dict[str, Any], category: RuleCategory, where: str) -> Tuple[str, str]:
        defaults = default_classification(category)
        owasp = defaults['owasp']
        if raw.get('owasp') is not None:
            code = owasp_code(raw['owasp'])
            if code not in self.VALID_OWASP_CATEGORIES:
                self.error(where, f"invalid OWASP category: {raw['owasp']}. "
                                  f"Must be one of {sorted(self.VALID_OWASP_CATEGORIES)}")
            else:
                owasp = owasp_label(code)
        cwe = defaults['cwe']
        if raw.get('cwe') is not None:
            cwe = normalize_cwe(raw['cwe'])
            if cwe is None:
                self.error(where, f"invalid CWE id: {raw['cwe']}")
                cwe = ""
        return owasp, cwe

    @staticmethod
    def _references(raw: Dict[str, Any], owasp: str, cwe: str) -> Tuple[str, ...]:
        references = [str(ref) for ref in raw.get('references', []) or []]
        for reference in default_references(owasp, cwe):
            if reference not in references:
                references.append(reference)
        return tuple(references)

    def _compile_templates(self, raw: Dict[str, Any], where: str) -> Optional[FindingTemplates]:
        remediation = raw.get('remediation') or {}
        if isinstance(remediation, str):
            remediation = {'description': remediation}
        if not isinstance(remediation, dict):
            self.error(where, "remediation must be a string or a mapping")
            remediation = {}

        effort = remediation.get('effort')
        if effort is not None and effort not in self.VALID_EFFORTS:
            self.error(where, f"invalid remediation effort: {effort}. Must be one of {sorted(self.VALID_EFFORTS)}")
        priority = remediation.get('priority')
        if priority is not None:
            priority = self._parse_priority(priority, where)

        sources = {
            'message': raw.get('message') or DEFAULT_MESSAGE,
            'summary': raw.get('summary') or DEFAULT_SUMMARY,
            'description': remediation.get('description') or DEFAULT_REMEDIATION,
            'example_fix': remediation.get('example') or ""
        }
        compiled = {}
        for name, text in sources.items():
            try:
                compiled[name] = _TEMPLATES.from_string(str(text))
            except TemplateSyntaxError as e:
                self.error(where, f"template error in {name} (line {e.lineno}): {e.message}")
        if len(compiled) != len(sources):
            return None
        return FindingTemplates(effort=effort, priority=priority, **compiled)


# =============================================================================
# LOADING
# =============================================================================

def compile_finding_templates(message: str, description: str, example_fix: str = "",
                              summary: Optional[str] = None) -> FindingTemplates:
    """Compile templates for detectors that do not come from the rule table."""
    validator = RuleValidator()
    raw = {
        'message': message,
        'summary': summary,
        'remediation': {'description': description, 'example': example_fix}
    }
    templates = validator._compile_templates(raw, 'builtin')
    if templates is None:
        raise RuleTableInvalid(validator.validation_errors, 'builtin')
    return templates


def _read_rule_document(path: Path) -> Dict[str, Any]:
    try:
        with open(path, 'r', encoding='utf-8') as f:
            data = yaml.safe_load(f)
    except FileNotFoundError:
        raise RuleTableInvalid([f"rule file not found: {path}"], str(path))
    except yaml.YAMLError as e:
        raise RuleTableInvalid([f"YAML error: {e}"], str(path))

    if data is None:
        return {}
    if not isinstance(data, dict):
        raise RuleTableInvalid(["top level of a rule file must be a mapping"], str(path))
    return data


def load_rule_table(rule_file: Optional[str] = None,
                    disabled_rules: Iterable[str] = (),
                    include_defaults: bool = True) -> RuleTable:
    """
    Load the packaged rule table, optionally overlaid with a user file.

    User rules and taint entries replace packaged ones with the same id and
    are appended otherwise.

    Args:
        rule_file: Optional path to a user YAML rule file
        disabled_rules: Rule ids removed after merging
        include_defaults: Load the packaged table first

    Returns:
        RuleTable: The validated table

    Raises:
        RuleTableInvalid: If any document fails validation
    """
    documents = []
    if include_defaults:
        documents.append((str(DEFAULT_RULE_FILE), _read_rule_document(DEFAULT_RULE_FILE)))
    if rule_file:
        documents.append((str(rule_file), _read_rule_document(Path(rule_file))))
    return build_rule_table(documents, disabled_rules)


def build_rule_table(documents: List[Tuple[str, Dict[str, Any]]],
                     disabled_rules: Iterable[str] = ()) -> RuleTable:
    """Merge already-parsed rule documents in order and validate the result."""
    validator = RuleValidator()
    version = "0"
    raw_rules: Dict[str, Tuple[str, Any]] = {}
    raw_taint: Dict[str, Dict[str, Tuple[str, Any]]] = {
        'sources': {}, 'sinks': {}, 'sanitizers': {}, 'propagators': {}
    }

    for origin, document in documents:
        name = Path(origin).name
        if 'version' in document:
            version = str(document['version'])

        rules = document.get('rules', []) or []
        if not isinstance(rules, list):
            validator.error(name, "'rules' must be a list")
            rules = []
        seen = set()
        for position, raw in enumerate(rules):
            rule_id = raw.get('id') if isinstance(raw, dict) else None
            key = rule_id if isinstance(rule_id, str) else f"#{position}"
            if key in seen:
                validator.error(f"{name} rule {position + 1}", f"duplicate rule id: {key}")
            seen.add(key)
            raw_rules[key] = (f"{name} rule {position + 1}", raw)

        taint = document.get('taint', {}) or {}
        if not isinstance(taint, dict):
            validator.error(name, "'taint' must be a mapping")
            taint = {}
        for section in raw_taint:
            entries = taint.get(section, []) or []
            if not isinstance(entries, list):
                validator.error(name, f"'taint.{section}' must be a list")
                continue
            for position, raw in enumerate(entries):
                entry_id = raw.get('id') if isinstance(raw, dict) else None
                key = entry_id if isinstance(entry_id, str) else f"#{position}"
                raw_taint[section][key] = (f"{name} taint.{section} {position + 1}", raw)

    rules = [validator.build_rule(raw, where) for where, raw in raw_rules.values()]
    sources = [validator.build_source(raw, where) for where, raw in raw_taint['sources'].values()]
    sinks = [validator.build_sink(raw, where) for where, raw in raw_taint['sinks'].values()]
    sanitizers = [validator.build_sanitizer(raw, where) for where, raw in raw_taint['sanitizers'].values()]
    propagators = [validator.build_propagator(raw, where) for where, raw in raw_taint['propagators'].values()]

    if validator.validation_errors:
        for message in validator.validation_errors:
            logger.error(f"Rule table error: {message}")
        raise RuleTableInvalid(validator.validation_errors, ", ".join(origin for origin, _ in documents))

    disabled = set(disabled_rules or ())
    kept = [rule for rule in rules if rule.id not in disabled]
    if len(kept) != len(rules):
        logger.info(f"Disabled {len(rules) - len(kept)} rule(s): {', '.join(sorted(disabled))}")
    kept.sort(key=lambda rule: (-rule.specificity, rule.priority, rule.id))

    table = RuleTable(
        version=version,
        rules=tuple(kept),
        taint=TaintTable(
            sources=tuple(sources),
            sinks=tuple(sink for sink in sinks if sink.id not in disabled),
            sanitizers=tuple(sanitizers),
            propagators=tuple(propagators)
        ),
        origins=tuple(origin for origin, _ in documents)
    )
    logger.debug(f"Loaded rule table v{table.version}: {len(table.rules)} rules, "
                 f"{len(table.taint.sources)} sources, {len(table.taint.sinks)} sinks")
    return table
