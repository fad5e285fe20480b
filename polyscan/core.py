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
# Purpose: This script is part of the Polyscan static analysis engine, which ingests
#          an extracted archive of source files written in several languages and
#          produces a scored, deduplicated list of security findings mapped to
#          OWASP Top 10 and CWE. It holds the data models, the configuration layer,
#          the language adapter registry and the analysis orchestrator.
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

import os
import re
import copy
import time
import bisect
import inspect
import logging
import importlib
import threading
import yaml
from pathlib import Path
from typing import List, Dict, Any, Optional, Tuple, Type, Iterable
from dataclasses import dataclass, field
from enum import Enum
from concurrent.futures import ThreadPoolExecutor, as_completed
from abc import ABC, abstractmethod

from polyscan.language_modules.cst import ParseResult, ParseDegraded

logger = logging.getLogger(__name__)

# =============================================================================
# ENUMERATIONS
# =============================================================================

class Severity(Enum):
    """Finding severity levels, ordered from most to least severe."""
    CRITICAL = "Critical"
    HIGH = "High"
    MEDIUM = "Medium"
    LOW = "Low"

    @property
    def rank(self) -> int:
        return _SEVERITY_RANKS[self]

    def boost(self) -> 'Severity':
        """Return the next level up, capped at Critical."""
        for severity, rank in _SEVERITY_RANKS.items():
            if rank == min(self.rank + 1, 4):
                return severity
        return self

    @classmethod
    def from_name(cls, name: str) -> 'Severity':
        for severity in cls:
            if severity.value.lower() == str(name).lower():
                return severity
        raise ValueError(f"Invalid severity: {name}")


_SEVERITY_RANKS = {
    Severity.LOW: 1,
    Severity.MEDIUM: 2,
    Severity.HIGH: 3,
    Severity.CRITICAL: 4
}


class Detector(Enum):
    """The three independent evidence sources merged by the aggregator."""
    AST = "AST"
    DATAFLOW = "DataFlow"
    SECRET = "Secret"


class RuleCategory(Enum):
    """Vulnerability classes a rule or sink can belong to."""
    INJECTION = "Injection"
    XSS = "XSS"
    SECRET = "Secret"
    CRYPTO = "Crypto"
    DESERIALIZATION = "Deserialization"
    PATH_TRAVERSAL = "PathTraversal"
    MISCONFIGURATION = "Misconfiguration"

    @classmethod
    def from_name(cls, name: str) -> 'RuleCategory':
        for category in cls:
            if category.value.lower() == str(name).lower():
                return category
        raise ValueError(f"Invalid rule category: {name}")


class SkipReason:
    """Reasons recorded on FileSkipped."""
    BINARY = "binary"
    NOT_CODE = "not_code"
    VENDORED = "vendored"
    MINIFIED = "minified"
    FIXTURE_SIZE = "fixture_size"
    BYTE_BUDGET = "byte_budget"
    TIMEOUT = "timeout"
    ERROR = "error"
    LANGUAGE_DISABLED = "language_disabled"

# =============================================================================
# EXCEPTIONS
# =============================================================================

class AnalysisCancelled(Exception):
    """Raised when a run is cancelled; partial results are discarded."""


class FileTimeout(Exception):
    """Raised inside a file task when its wall-clock budget is exhausted."""

# =============================================================================
# DATA MODELS
# =============================================================================

class LineIndex:
    """Offset to line/column lookup for a decoded source text."""

    def __init__(self, text: str):
        self._starts = [0] + [match.end() for match in re.finditer('\n', text)]
        self._length = len(text)

    @property
    def line_count(self) -> int:
        return len(self._starts)

    def position(self, offset: int) -> Tuple[int, int]:
        """Return the 1-based line and 0-based column of a character offset."""
        offset = max(0, min(offset, self._length))
        line_idx = bisect.bisect_right(self._starts, offset) - 1
        return line_idx + 1, offset - self._starts[line_idx]

    def line_start(self, line: int) -> int:
        line = max(1, min(line, len(self._starts)))
        return self._starts[line - 1]


@dataclass(frozen=True)
class SourceFile:
    """A classified, decoded source file. Immutable once created."""
    path: str
    language: str
    text: str
    size: int
    encoding: str = "utf-8"
    partial: bool = False
    line_index: LineIndex = field(init=False, repr=False, compare=False)
    lines: Tuple[str, ...] = field(init=False, repr=False, compare=False)

    def __post_init__(self):
        object.__setattr__(self, 'line_index', LineIndex(self.text))
        object.__setattr__(self, 'lines', tuple(self.text.splitlines()))

    @property
    def line_count(self) -> int:
        return len(self.lines)

    def line_text(self, line_number: int) -> str:
        """Get a specific line by number (1-based)."""
        if 1 <= line_number <= len(self.lines):
            return self.lines[line_number - 1]
        return ""

    def position(self, offset: int) -> Tuple[int, int]:
        return self.line_index.position(offset)

    def snippet(self, line_number: int, context_lines: int = 2) -> str:
        """Numbered excerpt around a line, the target line marked with '>'."""
        if not self.lines:
            return ""
        start = max(1, line_number - context_lines)
        end = min(len(self.lines), line_number + context_lines)
        width = len(str(end))
        rendered = []
        for number in range(start, end + 1):
            marker = '>' if number == line_number else ' '
            rendered.append(f"{marker} {number:>{width}} | {self.lines[number - 1]}")
        return '\n'.join(rendered)


@dataclass(frozen=True)
class Remediation:
    """Remediation guidance attached to a finding."""
    description: str
    example_fix: str = ""
    effort: str = "Medium"
    priority: int = 3

    def to_dict(self) -> Dict[str, Any]:
        return {
            'description': self.description,
            'fixExample': self.example_fix,
            'effort': self.effort,
            'priority': self.priority
        }


@dataclass
class CandidateFinding:
    """
    A detector result before aggregation.

    Detectors fill in location, classification and the template context;
    the aggregator applies floors, deduplicates and renders the final Finding.
    """
    detector: Detector
    rule_id: str
    title: str
    category: str
    rule_category: RuleCategory
    severity: Severity
    confidence: int
    line: int
    column: int = 0
    end_line: int = 0
    end_column: int = 0
    cwe: str = ""
    owasp: str = ""
    message: str = ""
    templates: Any = None
    context: Dict[str, Any] = field(default_factory=dict)
    references: Tuple[str, ...] = ()
    tags: Tuple[str, ...] = ()
    trace: Tuple[str, ...] = ()


@dataclass(frozen=True)
class Finding:
    """One reported issue. Maps to ``SecurityIssue`` at the output boundary."""
    id: str
    file: str
    line: int
    column: int
    end_line: int
    end_column: int
    detector: Detector
    rule_id: str
    title: str
    category: str
    rule_category: RuleCategory
    severity: Severity
    confidence: int
    cwe: str
    owasp: str
    message: str
    summary: str
    code_snippet: str
    remediation: Remediation
    cvss_score: float
    risk_rating: str
    language: str = ""
    references: Tuple[str, ...] = ()
    tags: Tuple[str, ...] = ()
    trace: Tuple[str, ...] = ()

    def to_dict(self) -> Dict[str, Any]:
        """Boundary representation using the SecurityIssue field names."""
        return {
            'id': self.id,
            'filename': self.file,
            'line': self.line,
            'column': self.column,
            'endLine': self.end_line,
            'endColumn': self.end_column,
            'tool': self.detector.value,
            'ruleId': self.rule_id,
            'type': self.title,
            'category': self.category,
            'ruleCategory': self.rule_category.value,
            'severity': self.severity.value,
            'confidence': self.confidence,
            'cweId': self.cwe,
            'owaspCategory': self.owasp,
            'message': self.message,
            'naturalLanguageDescription': self.summary,
            'codeSnippet': self.code_snippet,
            'recommendation': self.remediation.description,
            'remediation': self.remediation.to_dict(),
            'cvssScore': self.cvss_score,
            'riskRating': self.risk_rating,
            'language': self.language,
            'references': list(self.references),
            'tags': list(self.tags),
            'trace': list(self.trace)
        }


@dataclass(frozen=True)
class FileSkipped:
    """A file that produced no analysis. Recorded, never fatal."""
    path: str
    reason: str
    detail: str = ""

    def to_dict(self) -> Dict[str, Any]:
        return {'path': self.path, 'reason': self.reason, 'detail': self.detail}


@dataclass(frozen=True)
class FileMetrics:
    """Measurements for one analyzed file. Wall-clock duration does not take part in equality."""
    path: str
    language: str
    lines_of_code: int
    critical_issues: int = 0
    high_issues: int = 0
    medium_issues: int = 0
    low_issues: int = 0
    partial: bool = False
    degraded: bool = False
    analysis_duration: float = field(default=0.0, compare=False)

    @property
    def total_issues(self) -> int:
        return self.critical_issues + self.high_issues + self.medium_issues + self.low_issues

    def to_dict(self) -> Dict[str, Any]:
        return {
            'path': self.path,
            'language': self.language,
            'linesOfCode': self.lines_of_code,
            'criticalIssues': self.critical_issues,
            'highIssues': self.high_issues,
            'mediumIssues': self.medium_issues,
            'lowIssues': self.low_issues,
            'partial': self.partial,
            'degraded': self.degraded,
            'analysisDuration': round(self.analysis_duration, 4)
        }


@dataclass(frozen=True)
class LanguageMetrics:
    """Per-language totals over the analyzed files."""
    language: str
    files: int
    lines_of_code: int
    issues: int
    percentage: float

    def to_dict(self) -> Dict[str, Any]:
        return {
            'language': self.language,
            'files': self.files,
            'linesOfCode': self.lines_of_code,
            'issues': self.issues,
            'percentage': self.percentage
        }


class FileAnalysisResult:
    """Per-file outcome collected by the worker pool."""

    def __init__(self, path: str, language: str):
        self.path = path
        self.language = language
        self.findings: List[Finding] = []
        self.analysis_duration: float = 0.0
        self.lines_of_code: int = 0
        self.partial: bool = False
        self.degraded: Optional[ParseDegraded] = None
        self.skipped: Optional[FileSkipped] = None

    @property
    def was_analyzed(self) -> bool:
        return self.skipped is None

    def has_findings(self) -> bool:
        return len(self.findings) > 0

    def to_metrics(self) -> FileMetrics:
        counts = {severity: 0 for severity in Severity}
        for finding in self.findings:
            counts[finding.severity] += 1
        return FileMetrics(
            path=self.path,
            language=self.language,
            lines_of_code=self.lines_of_code,
            critical_issues=counts[Severity.CRITICAL],
            high_issues=counts[Severity.HIGH],
            medium_issues=counts[Severity.MEDIUM],
            low_issues=counts[Severity.LOW],
            partial=self.partial,
            degraded=self.degraded is not None,
            analysis_duration=self.analysis_duration
        )


@dataclass(frozen=True)
class AnalysisResults:
    """
    The complete, immutable result of one orchestrator run.

    Findings are ordered by severity (descending), then file, then line.
    File metrics are ordered by path and language totals by lines of code.
    ``analysis_time`` is excluded from equality so two runs over identical
    input compare equal.
    """
    issues: Tuple[Finding, ...]
    critical_issues: int
    high_issues: int
    medium_issues: int
    low_issues: int
    security_score: float
    quality_score: float
    vulnerability_density: float
    lines_analyzed: int
    files_analyzed: int
    skipped_files: Tuple[FileSkipped, ...] = ()
    degraded_files: Tuple[ParseDegraded, ...] = ()
    file_metrics: Tuple[FileMetrics, ...] = ()
    languages: Tuple[LanguageMetrics, ...] = ()
    technical_debt_hours: float = 0.0
    maintainability_index: int = 100
    quality_grade: str = "A+"
    analysis_time: str = field(default="0.00s", compare=False)

    @property
    def total_files(self) -> int:
        return self.files_analyzed

    @property
    def primary_language(self) -> str:
        return self.languages[0].language if self.languages else ""

    @property
    def technical_debt(self) -> str:
        return f"{self.technical_debt_hours:g} hours"

    def get_vulnerabilities_by_severity(self) -> Dict[str, int]:
        """Get finding counts keyed by severity name."""
        return {
            'critical': self.critical_issues,
            'high': self.high_issues,
            'medium': self.medium_issues,
            'low': self.low_issues
        }

    def issues_by_detector(self, detector: Detector) -> List[Finding]:
        return [issue for issue in self.issues if issue.detector is detector]

    def to_dict(self) -> Dict[str, Any]:
        return {
            'issues': [issue.to_dict() for issue in self.issues],
            'totalFiles': self.total_files,
            'analysisTime': self.analysis_time,
            'summary': {
                'criticalIssues': self.critical_issues,
                'highIssues': self.high_issues,
                'mediumIssues': self.medium_issues,
                'lowIssues': self.low_issues,
                'securityScore': self.security_score,
                'qualityScore': self.quality_score,
                'linesAnalyzed': self.lines_analyzed,
                'filesAnalyzed': self.files_analyzed
            },
            'metrics': {
                'vulnerabilityDensity': self.vulnerability_density,
                'technicalDebt': self.technical_debt,
                'technicalDebtHours': self.technical_debt_hours,
                'maintainabilityIndex': self.maintainability_index,
                'qualityGrade': self.quality_grade
            },
            'languageDetection': {
                'primaryLanguage': self.primary_language,
                'allLanguages': [language.to_dict() for language in self.languages]
            },
            'fileMetrics': [metrics.to_dict() for metrics in self.file_metrics],
            'skippedFiles': [skipped.to_dict() for skipped in self.skipped_files],
            'degradedFiles': [degraded.to_dict() for degraded in self.degraded_files]
        }

# =============================================================================
# EXECUTION CONTROL
# =============================================================================

class CancellationToken:
    """Cooperative cancellation signal shared with the orchestrator."""

    def __init__(self):
        self._event = threading.Event()

    def cancel(self) -> None:
        self._event.set()

    @property
    def is_cancelled(self) -> bool:
        return self._event.is_set()


class Deadline:
    """Per-file wall-clock budget checked cooperatively by the engines."""

    def __init__(self, seconds: Optional[float]):
        self.seconds = seconds
        self._expires = time.monotonic() + seconds if seconds else None

    @property
    def expired(self) -> bool:
        return self._expires is not None and time.monotonic() > self._expires

    def check(self) -> None:
        if self.expired:
            raise FileTimeout(f"Exceeded per-file budget of {self.seconds}s")

# =============================================================================
# CONFIGURATION
# =============================================================================

class Config:
    """Configuration management for the analysis engine."""

    # Default configuration values
    DEFAULT_CONFIG = {
        'analysis': {
            'min_severity': 'low',
            'min_confidence': 30,
            'max_file_size_kb': 1024,
            'timeout_per_file_seconds': 30,
            'max_workers': 8,
            'byte_budget_mb': 200,
            'fixture_size_cap_kb': 64,
            'max_ast_depth': 150,
            'snippet_context_lines': 2,
            'max_call_depth': 3
        },
        'detectors': {
            'ast': {'enabled': True, 'min_confidence': 35},
            'dataflow': {'enabled': True, 'min_confidence': 40},
            'secret': {'enabled': True, 'min_confidence': 35}
        },
        'exclusions': {
            'vendored_dirs': [
                'node_modules',
                'bower_components',
                'vendor',
                'third_party',
                'site-packages',
                'dist',
                'build',
                '.git',
                '.svn',
                '__pycache__',
                'venv',
                '.venv'
            ],
            'vendored_patterns': [
                '*.min.js',
                '*-min.js',
                '*.bundle.js',
                '*.min.css'
            ],
            'fixture_dirs': [
                'fixtures',
                '__fixtures__',
                'testdata',
                'test-data'
            ],
            'minified_line_length': 500
        },
        'languages': {
            'python': {'enabled': True},
            'javascript': {'enabled': True},
            'typescript': {'enabled': True},
            'java': {'enabled': True},
            'go': {'enabled': True},
            'php': {'enabled': True},
            'c': {'enabled': True},
            'cpp': {'enabled': True},
            'csharp': {'enabled': True},
            'ruby': {'enabled': True},
            'rust': {'enabled': True},
            'kotlin': {'enabled': True},
            'swift': {'enabled': True},
            'scala': {'enabled': True},
            'perl': {'enabled': True},
            'shell': {'enabled': True},
            'powershell': {'enabled': True},
            'sql': {'enabled': True}
        },
        'secrets': {
            'entropy_threshold': 4.0,
            'min_length': 20,
            'max_length': 200
        },
        'rules': {
            'rule_file': None,
            'disabled_rules': []
        },
        'scoring': {
            'security': {
                'weights': {'critical': 10.0, 'high': 5.0, 'medium': 2.0, 'low': 0.5},
                'curve': [[0, 100], [2, 90], [10, 70], [40, 40], [120, 15]]
            },
            'quality': {
                'weights': {'critical': 4.0, 'high': 3.0, 'medium': 2.0, 'low': 1.0},
                'curve': [[0, 100], [5, 90], [25, 70], [80, 45], [200, 20]]
            },
            'cvss': {
                'severity_base': {'critical': 9.0, 'high': 7.0, 'medium': 5.0, 'low': 3.0},
                'category_bonus': {
                    'Injection': 1.0,
                    'XSS': 0.5,
                    'Secret': 0.5,
                    'Deserialization': 1.0,
                    'PathTraversal': 0.5,
                    'Crypto': 0.0,
                    'Misconfiguration': 0.0
                },
                'detector_bonus': {'AST': 0.0, 'DataFlow': 0.5, 'Secret': 0.0}
            },
            'technical_debt': {
                'hours': {'critical': 12.0, 'high': 6.0, 'medium': 3.0, 'low': 1.0},
                'file_issue_allowance': 5,
                'excess_issue_hours': 0.5
            },
            'maintainability': {
                'density_factor': 8.0,
                'severity_ratio_penalty': {'critical': 10.0, 'high': 7.5, 'medium': 0.0, 'low': 0.0}
            },
            'quality_grades': [
                [90, 'A+'], [85, 'A'], [80, 'A-'], [75, 'B+'], [70, 'B'], [65, 'B-'],
                [60, 'C+'], [55, 'C'], [50, 'C-'], [40, 'D'], [0, 'F']
            ],
            'taint_hop_penalty': 10
        }
    }

    SEVERITY_LEVELS = ['low', 'medium', 'high', 'critical']
    DETECTORS = ['ast', 'dataflow', 'secret']

    def __init__(self, config_path: Optional[str] = None, overrides: Optional[Dict[str, Any]] = None):
        """Initialize configuration."""
        self._config = self._load_default_config()

        if config_path:
            self._load_config_file(config_path)

        if overrides:
            self._merge_config(overrides)

        self._validate_config()

    def _load_default_config(self) -> Dict[str, Any]:
        """Fresh copy of DEFAULT_CONFIG."""
        return copy.deepcopy(self.DEFAULT_CONFIG)

    def _load_config_file(self, config_path: str) -> None:
        """Load configuration from YAML file."""
        config_file = Path(config_path)

        if not config_file.exists():
            raise FileNotFoundError(f"Configuration file not found: {config_path}")

        try:
            with open(config_file, 'r', encoding='utf-8') as f:
                user_config = yaml.safe_load(f)
        except yaml.YAMLError as e:
            raise ValueError(f"Invalid YAML in config file {config_path}: {str(e)}") from e

        if user_config:
            if not isinstance(user_config, dict):
                raise ValueError(f"Config file {config_path} must contain a mapping")
            self._merge_config(user_config)
            logger.info(f"Loaded configuration from: {config_path}")

    def _merge_config(self, user_config: Dict[str, Any]) -> None:
        """Merge user configuration with defaults."""
        def merge_dicts(base_dict: Dict, update_dict: Dict) -> Dict:
            """Recursively merge dictionaries."""
            for key, value in update_dict.items():
                if key in base_dict and isinstance(base_dict[key], dict) and isinstance(value, dict):
                    merge_dicts(base_dict[key], value)
                else:
                    base_dict[key] = copy.deepcopy(value)
            return base_dict

        merge_dicts(self._config, user_config)

    def _validate_config(self) -> None:
        """Validate configuration values."""
        min_severity = self.get_min_severity()
        if min_severity not in self.SEVERITY_LEVELS:
            raise ValueError(f"Invalid min_severity: {min_severity}. "
                             f"Must be one of: {', '.join(self.SEVERITY_LEVELS)}")

        self._require_confidence('analysis.min_confidence', self.get_min_confidence())
        for detector in self.DETECTORS:
            self._require_confidence(f"detectors.{detector}.min_confidence",
                                     self._config['detectors'][detector]['min_confidence'])

        for key, value in (('max_file_size_kb', self.get_max_file_size_bytes()),
                           ('timeout_per_file_seconds', self.get_timeout_per_file()),
                           ('max_workers', self.get_max_workers()),
                           ('byte_budget_mb', self.get_byte_budget()),
                           ('max_ast_depth', self.get_max_ast_depth())):
            if not isinstance(value, (int, float)) or isinstance(value, bool) or value <= 0:
                raise ValueError(f"Invalid {key}: {value}. Must be a positive number.")

        for name in ('security', 'quality'):
            self._validate_curve(name, self.get_score_curve(name))
            weights = self.get_score_weights(name)
            for level in self.SEVERITY_LEVELS:
                weight = weights.get(level)
                if not isinstance(weight, (int, float)) or weight < 0:
                    raise ValueError(f"Invalid scoring.{name}.weights.{level}: {weight}")

        debt = self.get_technical_debt_table()
        penalties = self.get_maintainability_factors()['severity_ratio_penalty']
        for key, table in (('technical_debt.hours', debt['hours']),
                           ('maintainability.severity_ratio_penalty', penalties)):
            for level in self.SEVERITY_LEVELS:
                value = table.get(level)
                if not isinstance(value, (int, float)) or value < 0:
                    raise ValueError(f"Invalid scoring.{key}.{level}: {value}")

        self._validate_grades(self._config['scoring']['quality_grades'])

        logger.debug("Configuration validation passed")

    @staticmethod
    def _validate_grades(grades: List[List[Any]]) -> None:
        """Grade thresholds must be strictly descending and end at 0."""
        if not isinstance(grades, list) or not grades:
            raise ValueError("Invalid scoring.quality_grades: needs at least one grade")
        previous = None
        for entry in grades:
            if not isinstance(entry, (list, tuple)) or len(entry) != 2:
                raise ValueError(f"Invalid scoring.quality_grades entry: {entry}")
            threshold = entry[0]
            if previous is not None and threshold >= previous:
                raise ValueError("scoring.quality_grades thresholds must be strictly descending")
            previous = threshold
        if previous != 0:
            raise ValueError("scoring.quality_grades must end with a threshold of 0")

    @staticmethod
    def _require_confidence(key: str, value: Any) -> None:
        if not isinstance(value, (int, float)) or isinstance(value, bool) or not 0 <= value <= 100:
            raise ValueError(f"Invalid {key}: {value}. Must be between 0 and 100.")

    @staticmethod
    def _validate_curve(name: str, curve: List[List[float]]) -> None:
        """Score curves must start at (0, 100] and be strictly decreasing."""
        if not isinstance(curve, list) or len(curve) < 2:
            raise ValueError(f"Invalid scoring.{name}.curve: needs at least two points")
        previous_x, previous_y = None, None
        for point in curve:
            if not isinstance(point, (list, tuple)) or len(point) != 2:
                raise ValueError(f"Invalid scoring.{name}.curve point: {point}")
            x, y = point
            if previous_x is None:
                if x != 0 or not 0 < y <= 100:
                    raise ValueError(f"scoring.{name}.curve must start at density 0 with a score in (0, 100]")
            elif x <= previous_x or y >= previous_y or y <= 0:
                raise ValueError(f"scoring.{name}.curve must be strictly decreasing with positive scores")
            previous_x, previous_y = x, y

    # Getter methods for configuration values
    def get_min_severity(self) -> str:
        """Get minimum severity level for reporting."""
        return self._config['analysis']['min_severity']

    def set_min_severity(self, severity: str) -> None:
        """Set minimum severity level for reporting."""
        if severity not in self.SEVERITY_LEVELS:
            raise ValueError(f"Invalid severity: {severity}")
        self._config['analysis']['min_severity'] = severity

    def get_min_confidence(self) -> int:
        """Global confidence floor applied before aggregation."""
        return self._config['analysis']['min_confidence']

    def get_detector_floor(self, detector: Detector) -> int:
        """Effective floor for a detector family: never below the global floor."""
        detector_config = self._config['detectors'][detector.name.lower()]
        return max(self.get_min_confidence(), detector_config.get('min_confidence', 0))

    def is_detector_enabled(self, detector: Detector) -> bool:
        return self._config['detectors'][detector.name.lower()].get('enabled', True)

    def get_max_file_size_bytes(self) -> int:
        """Size ceiling above which files are truncated."""
        return int(self._config['analysis']['max_file_size_kb'] * 1024)

    def get_fixture_size_cap_bytes(self) -> int:
        return int(self._config['analysis']['fixture_size_cap_kb'] * 1024)

    def get_timeout_per_file(self) -> float:
        """Per-file wall-clock budget in seconds."""
        return self._config['analysis']['timeout_per_file_seconds']

    def get_max_workers(self) -> int:
        return self._config['analysis']['max_workers']

    def set_max_workers(self, workers: int) -> None:
        if workers <= 0:
            raise ValueError(f"Invalid max_workers: {workers}")
        self._config['analysis']['max_workers'] = workers

    def get_byte_budget(self) -> int:
        """Total byte budget for one run."""
        return int(self._config['analysis']['byte_budget_mb'] * 1024 * 1024)

    def get_max_ast_depth(self) -> int:
        return self._config['analysis']['max_ast_depth']

    def get_snippet_context_lines(self) -> int:
        return self._config['analysis']['snippet_context_lines']

    def get_max_call_depth(self) -> int:
        return self._config['analysis']['max_call_depth']

    def get_vendored_dirs(self) -> List[str]:
        return list(self._config['exclusions']['vendored_dirs'])

    def get_vendored_patterns(self) -> List[str]:
        return list(self._config['exclusions']['vendored_patterns'])

    def set_exclusions(self, patterns: List[str]) -> None:
        """Extend the vendored path globs."""
        self._config['exclusions']['vendored_patterns'].extend(patterns)

    def get_fixture_dirs(self) -> List[str]:
        return list(self._config['exclusions']['fixture_dirs'])

    def get_minified_line_length(self) -> int:
        return self._config['exclusions']['minified_line_length']

    def get_supported_languages(self) -> List[str]:
        """Get list of enabled languages."""
        return [
            lang for lang, lang_config in self._config['languages'].items()
            if lang_config.get('enabled', False)
        ]

    def is_language_enabled(self, language: str) -> bool:
        """Whether files of this language are analyzed."""
        return self._config['languages'].get(language, {}).get('enabled', False)

    def get_secret_settings(self) -> Dict[str, Any]:
        return dict(self._config['secrets'])

    def get_rule_file(self) -> Optional[str]:
        return self._config['rules'].get('rule_file')

    def set_rule_file(self, path: str) -> None:
        self._config['rules']['rule_file'] = path

    def get_disabled_rules(self) -> List[str]:
        return list(self._config['rules'].get('disabled_rules') or [])

    def get_score_weights(self, name: str) -> Dict[str, float]:
        return self._config['scoring'][name]['weights']

    def get_score_curve(self, name: str) -> List[List[float]]:
        return self._config['scoring'][name]['curve']

    def get_cvss_table(self) -> Dict[str, Dict[str, float]]:
        return self._config['scoring']['cvss']

    def get_taint_hop_penalty(self) -> int:
        return self._config['scoring']['taint_hop_penalty']

    def get_technical_debt_table(self) -> Dict[str, Any]:
        return self._config['scoring']['technical_debt']

    def get_maintainability_factors(self) -> Dict[str, Any]:
        return self._config['scoring']['maintainability']

    def get_quality_grades(self) -> List[Tuple[float, str]]:
        """Grade thresholds, highest first. Scores below every threshold get the last grade."""
        return [(threshold, grade) for threshold, grade in self._config['scoring']['quality_grades']]

    def get_severity_order(self) -> Dict[str, int]:
        """Get severity levels with numeric ordering."""
        return {
            'low': 1,
            'medium': 2,
            'high': 3,
            'critical': 4
        }

    def meets_severity_threshold(self, severity: Severity) -> bool:
        """Check if a severity level meets the minimum threshold."""
        min_severity_num = self.get_severity_order().get(self.get_min_severity(), 1)
        return severity.rank >= min_severity_num

    def to_dict(self) -> Dict[str, Any]:
        """Deep copy of the effective configuration."""
        return copy.deepcopy(self._config)

# =============================================================================
# LANGUAGE ADAPTER BASE CLASS
# =============================================================================

class LanguageAdapter(ABC):
    """
    Capability interface implemented once per supported grammar.

    The orchestrator only ever calls ``parse``; it never sees grammar types.
    """

    DEFAULT_MAX_DEPTH = 150

    def __init__(self, max_depth: int = DEFAULT_MAX_DEPTH):
        self.max_depth = max_depth

    @property
    @abstractmethod
    def language_names(self) -> List[str]:
        """Return the language tags this adapter parses."""
        pass

    @property
    @abstractmethod
    def file_extensions(self) -> List[str]:
        """Return list of file extensions this adapter is associated with."""
        pass

    @abstractmethod
    def parse(self, source: SourceFile) -> ParseResult:
        """Convert source text into a normalized tree, degrading instead of failing."""
        pass

# =============================================================================
# LANGUAGE REGISTRY
# =============================================================================

class LanguageRegistry:
    """Registry for language adapters discovered under ``language_modules``."""

    PACKAGE = 'polyscan.language_modules'
    FALLBACK_LANGUAGE = 'text'

    def __init__(self, max_depth: int = LanguageAdapter.DEFAULT_MAX_DEPTH):
        self._adapters: Dict[str, LanguageAdapter] = {}
        self._max_depth = max_depth
        self._module_path = Path(__file__).parent / 'language_modules'

    def register_adapter(self, adapter_class: Type[LanguageAdapter]) -> None:
        """Register a language adapter class."""
        if not issubclass(adapter_class, LanguageAdapter):
            raise ValueError(f"Adapter must inherit from LanguageAdapter: {adapter_class}")

        adapter = adapter_class(max_depth=self._max_depth)
        for language in adapter.language_names:
            self._adapters[language] = adapter
        logger.debug(f"Registered adapter {adapter_class.__name__} for: {', '.join(adapter.language_names)}")

    def get_adapter(self, language: str) -> Optional[LanguageAdapter]:
        """Get the adapter for a language, falling back to the grammar-less adapter."""
        return self._adapters.get(language) or self._adapters.get(self.FALLBACK_LANGUAGE)

    def get_supported_languages(self) -> List[str]:
        """Languages with a registered adapter."""
        return sorted(self._adapters.keys())

    def discover_adapters(self) -> None:
        """Automatically discover and load language adapter modules."""
        if not self._module_path.exists():
            logger.debug(f"Module path does not exist: {self._module_path}")
            return

        for lang_dir in sorted(self._module_path.iterdir()):
            if lang_dir.is_dir() and not lang_dir.name.startswith('_'):
                self._load_language_module(lang_dir.name)

    def _load_language_module(self, language: str) -> None:
        """Load a specific language adapter module."""
        module_name = f"{self.PACKAGE}.{language}.adapter"
        try:
            module = importlib.import_module(module_name)
        except ImportError as e:
            logger.warning(f"Could not import {module_name}: {str(e)}")
            return

        for attr_name in dir(module):
            attr = getattr(module, attr_name)
            if (isinstance(attr, type) and
                    issubclass(attr, LanguageAdapter) and
                    attr.__module__ == module.__name__ and
                    not inspect.isabstract(attr)):
                self.register_adapter(attr)
                logger.debug(f"Loaded adapter from {module_name}")
                break
        else:
            logger.warning(f"No adapter class found in {module_name}")

    def get_file_extensions_map(self) -> Dict[str, str]:
        """Get mapping of file extensions to languages."""
        extension_map = {}
        for language, adapter in self._adapters.items():
            for ext in adapter.file_extensions:
                extension_map.setdefault(ext, language)
        return extension_map

# =============================================================================
# MAIN SECURITY ANALYZER
# =============================================================================

class SecurityAnalyzer:
    """Main analysis orchestrator."""

    def __init__(self, config: Optional[Config] = None, rule_table: Any = None):
        """
        Initialize the analyzer. Rule tables load here, before any file is
        touched, so an invalid table aborts the run up front.

        Args:
            config: Engine configuration (defaults when omitted)
            rule_table: Pre-loaded RuleTable to share across analyzers
        """
        from polyscan.classifier import SourceClassifier
        from polyscan.rules.rule_table import load_rule_table
        from polyscan.rules.rule_engine import RuleEngine
        from polyscan.dataflow.taint_engine import TaintEngine
        from polyscan.secret_scanner import SecretScanner
        from polyscan.aggregator import FindingAggregator

        self.config = config or Config()
        self.registry = LanguageRegistry(max_depth=self.config.get_max_ast_depth())
        self.registry.discover_adapters()

        if rule_table is None:
            rule_table = load_rule_table(self.config.get_rule_file(),
                                         disabled_rules=self.config.get_disabled_rules())
        self.rule_table = rule_table

        self.classifier = SourceClassifier(self.config)
        self.rule_engine = RuleEngine(self.rule_table)
        self.taint_engine = TaintEngine(self.rule_table.taint, self.config)
        self.secret_scanner = SecretScanner(self.config)
        self.aggregator = FindingAggregator(self.config)

        logger.info(f"SecurityAnalyzer initialized with {len(self.rule_table.rules)} rules "
                    f"for languages: {', '.join(self.registry.get_supported_languages())}")

    def analyze_entries(self,
                        entries: Iterable[Tuple[str, bytes]],
                        byte_budget: Optional[int] = None,
                        cancel_token: Optional[CancellationToken] = None) -> AnalysisResults:
        """
        Analyze an ordered collection of ``(relative_path, content)`` pairs.

        Args:
            entries: Archive entries in input order
            byte_budget: Total bytes to analyze; later entries past it are skipped
            cancel_token: Cooperative cancellation signal

        Returns:
            AnalysisResults: Results for every file that could be analyzed

        Raises:
            AnalysisCancelled: The token was cancelled before the run finished
        """
        start_time = time.monotonic()
        budget = byte_budget if byte_budget is not None else self.config.get_byte_budget()

        accepted: List[Tuple[str, bytes]] = []
        skipped: List[FileSkipped] = []
        consumed = 0
        for path, data in entries:
            if consumed + len(data) > budget:
                skipped.append(FileSkipped(path, SkipReason.BYTE_BUDGET,
                                           f"{consumed + len(data)} bytes exceeds budget of {budget}"))
                continue
            consumed += len(data)
            accepted.append((path, data))

        logger.info(f"Starting analysis of {len(accepted)} entries ({consumed} bytes)")

        file_results = self._analyze_files(accepted, cancel_token)
        if cancel_token is not None and cancel_token.is_cancelled:
            raise AnalysisCancelled("Analysis cancelled; results discarded")

        findings: List[Finding] = []
        degraded: List[ParseDegraded] = []
        file_metrics: List[FileMetrics] = []
        lines_analyzed = 0
        files_analyzed = 0
        for result in file_results:
            if not result.was_analyzed:
                skipped.append(result.skipped)
                continue
            files_analyzed += 1
            lines_analyzed += result.lines_of_code
            findings.extend(result.findings)
            file_metrics.append(result.to_metrics())
            if result.degraded is not None:
                degraded.append(result.degraded)

        elapsed = time.monotonic() - start_time
        results = self.aggregator.build_results(
            findings,
            files_analyzed=files_analyzed,
            lines_analyzed=lines_analyzed,
            skipped_files=skipped,
            degraded_files=degraded,
            file_metrics=file_metrics,
            analysis_time=f"{elapsed:.2f}s"
        )

        logger.info(f"Analysis complete: {files_analyzed} files analyzed, "
                    f"{len(skipped)} skipped, {len(results.issues)} issues found")
        logger.info(f"Severity breakdown: {results.get_vulnerabilities_by_severity()}")
        return results

    def analyze_path(self, target_path: Path,
                     cancel_token: Optional[CancellationToken] = None) -> AnalysisResults:
        """Read a file or directory into archive entries and analyze them."""
        target_path = Path(target_path)
        if not target_path.exists():
            raise FileNotFoundError(f"Target path does not exist: {target_path}")

        entries = []
        if target_path.is_file():
            entries.append((target_path.name, target_path.read_bytes()))
        else:
            excluded_dirs = set(self.config.get_vendored_dirs())
            for root, dirs, filenames in os.walk(target_path):
                dirs[:] = sorted(d for d in dirs if d not in excluded_dirs)
                for filename in sorted(filenames):
                    file_path = Path(root) / filename
                    try:
                        data = file_path.read_bytes()
                    except OSError as e:
                        logger.warning(f"Could not read {file_path}: {str(e)}")
                        continue
                    entries.append((file_path.relative_to(target_path).as_posix(), data))

        logger.debug(f"Collected {len(entries)} entries from {target_path}")
        return self.analyze_entries(entries, cancel_token=cancel_token)

    def _analyze_files(self, entries: List[Tuple[str, bytes]],
                       cancel_token: Optional[CancellationToken]) -> List[FileAnalysisResult]:
        """Analyze entries in parallel, one task per file."""
        results: List[FileAnalysisResult] = []
        if not entries:
            return results

        max_workers = max(1, min(len(entries), os.cpu_count() or 1, self.config.get_max_workers()))
        logger.debug(f"Starting parallel analysis with {max_workers} workers")

        executor = ThreadPoolExecutor(max_workers=max_workers)
        try:
            future_to_path = {
                executor.submit(self._analyze_single_file, path, data, cancel_token): path
                for path, data in entries
            }

            for future in as_completed(future_to_path):
                if cancel_token is not None and cancel_token.is_cancelled:
                    logger.info("Cancellation requested, abandoning remaining files")
                    break
                result = future.result()
                if result is not None:
                    results.append(result)
        finally:
            executor.shutdown(wait=True, cancel_futures=True)

        return results

    def _analyze_single_file(self, path: str, data: bytes,
                             cancel_token: Optional[CancellationToken]) -> Optional[FileAnalysisResult]:
        """
        Run the full per-file pipeline. Every failure is converted into a
        FileSkipped record at this boundary.
        """
        if cancel_token is not None and cancel_token.is_cancelled:
            return None

        start_time = time.monotonic()
        result = FileAnalysisResult(path, "unknown")
        deadline = Deadline(self.config.get_timeout_per_file())

        try:
            classified = self.classifier.classify(path, data)
            if isinstance(classified, FileSkipped):
                logger.debug(f"Skipping {path}: {classified.reason}")
                result.skipped = classified
                return result

            source = classified
            result.language = source.language
            result.partial = source.partial
            result.lines_of_code = self.classifier.count_lines_of_code(source)

            adapter = self.registry.get_adapter(source.language)
            if adapter is None:
                result.skipped = FileSkipped(path, SkipReason.LANGUAGE_DISABLED,
                                             f"No adapter available for {source.language}")
                return result

            parsed = adapter.parse(source)
            result.degraded = parsed.degraded
            if parsed.degraded is not None:
                logger.debug(f"Degraded parse for {path}: {parsed.degraded.reason}")
            deadline.check()

            candidates: List[CandidateFinding] = []
            if self.config.is_detector_enabled(Detector.AST):
                candidates.extend(self.rule_engine.evaluate(source, parsed.tree, deadline))
            if self.config.is_detector_enabled(Detector.DATAFLOW):
                candidates.extend(self.taint_engine.analyze(source, parsed.tree, deadline))
            if self.config.is_detector_enabled(Detector.SECRET):
                tree = None if parsed.is_degraded else parsed.tree
                candidates.extend(self.secret_scanner.scan(source, tree, deadline))

            findings = self.aggregator.aggregate_file(source, candidates)
            result.findings = [
                finding for finding in findings
                if self.config.meets_severity_threshold(finding.severity)
            ]

            if result.has_findings():
                logger.info(f"Found {len(result.findings)} issues in: {path}")
            else:
                logger.debug(f"No issues found in: {path}")
            return result

        except FileTimeout as e:
            logger.warning(f"Timed out analyzing {path}: {str(e)}")
            result.skipped = FileSkipped(path, SkipReason.TIMEOUT, str(e))
            return result

        except Exception as e:
            logger.error(f"Error analyzing file {path}: {str(e)}")
            result.skipped = FileSkipped(path, SkipReason.ERROR, str(e))
            return result

        finally:
            result.analysis_duration = time.monotonic() - start_time

    def get_supported_languages(self) -> List[str]:
        """Get list of supported programming languages."""
        return self.registry.get_supported_languages()

    def get_analysis_statistics(self) -> Dict[str, Any]:
        """Summary of the loaded rule table, adapters and thresholds."""
        return {
            'rule_table_version': self.rule_table.version,
            'total_rules': len(self.rule_table.rules),
            'taint_sources': len(self.rule_table.taint.sources),
            'taint_sinks': len(self.rule_table.taint.sinks),
            'supported_languages': self.registry.get_supported_languages(),
            'enabled_languages': self.config.get_supported_languages(),
            'supported_extensions': sorted(self.registry.get_file_extensions_map().keys()),
            'min_severity': self.config.get_min_severity(),
            'min_confidence': self.config.get_min_confidence()
        }
