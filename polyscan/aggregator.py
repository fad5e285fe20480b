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
# Purpose: This module implements the finding aggregator: confidence floors, per-detector
#          deduplication, CVSS-like scoring, Jinja2 remediation rendering, stable finding
#          ids and the project-level security and quality scores.
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

import hashlib
import logging
from collections import Counter
from typing import Any, Dict, Iterable, List, Optional, Tuple

from jinja2 import TemplateError

from polyscan.core import (
    AnalysisResults, CandidateFinding, Config, Detector, FileMetrics, FileSkipped, Finding,
    LanguageMetrics, Remediation, Severity, SourceFile
)
from polyscan.language_modules.cst import ParseDegraded
from polyscan.rules.rule_table import DEFAULT_REMEDIATION, FindingTemplates, compile_finding_templates

logger = logging.getLogger(__name__)

# Default remediation effort and priority when a template leaves them open
SEVERITY_EFFORT = {
    Severity.CRITICAL: "Medium",
    Severity.HIGH: "Medium",
    Severity.MEDIUM: "Low",
    Severity.LOW: "Low"
}

SEVERITY_PRIORITY = {
    Severity.CRITICAL: 1,
    Severity.HIGH: 2,
    Severity.MEDIUM: 3,
    Severity.LOW: 4
}


class AggregationInvariantViolation(Exception):
    """Raised when merged results are internally inconsistent. A programming error."""


def finding_id(file: str, line: int, rule_id: str) -> str:
    """Stable identifier: the same file, line and rule always yield the same id."""
    return hashlib.sha256(f"{file}:{line}:{rule_id}".encode('utf-8')).hexdigest()[:16]


def risk_rating(severity: Severity, confidence: int) -> str:
    if severity is Severity.CRITICAL and confidence > 80:
        return "Critical"
    if severity.rank >= Severity.HIGH.rank and confidence > 70:
        return "High"
    if severity.rank >= Severity.MEDIUM.rank and confidence > 60:
        return "Medium"
    return "Low"


def score_from_curve(curve: List[List[float]], density: float) -> float:
    """
    Evaluate a piecewise-linear score curve.

    Points are ``[weighted findings per 1000 lines, score]`` with x increasing
    and scores strictly decreasing. Past the last point the score decays
    hyperbolically, so the result keeps decreasing without reaching zero.
    """
    if density <= curve[0][0]:
        return float(curve[0][1])
    for (x0, y0), (x1, y1) in zip(curve, curve[1:]):
        if density <= x1:
            return y0 + (y1 - y0) * (density - x0) / (x1 - x0)
    last_x, last_y = curve[-1]
    return last_y * last_x / density


class FindingAggregator:
    """
    Turns detector candidates into reported findings.

    Per file: confidence floors, deduplication within each detector family,
    CVSS-like scoring, template rendering and stable ids. Per run: ordering,
    severity counts and the project scores.
    """

    def __init__(self, config: Optional[Config] = None):
        self.config = config or Config()
        self.global_floor = self.config.get_min_confidence()
        self.floors = {detector: self.config.get_detector_floor(detector) for detector in Detector}
        self.cvss = self.config.get_cvss_table()
        self.context_lines = self.config.get_snippet_context_lines()
        self.fallback_templates = compile_finding_templates("{{ title }}", DEFAULT_REMEDIATION)

    def floor(self, detector: Detector) -> int:
        return max(self.global_floor, self.floors[detector])

    # -------------------------------------------------------------------------
    # per file
    # -------------------------------------------------------------------------

    def aggregate_file(self, source: SourceFile, candidates: Iterable[CandidateFinding]) -> List[Finding]:
        """
        Filter, deduplicate and render the candidates of one file.

        Args:
            source: The file the candidates were produced for
            candidates: Candidates from every detector

        Returns:
            List[Finding]: Findings ordered by line, column and rule id
        """
        kept = [candidate for candidate in candidates if candidate.confidence >= self.floor(candidate.detector)]
        unique = self.deduplicate(kept)
        findings = [self.build_finding(source, candidate) for candidate in unique]
        findings.sort(key=lambda f: (f.line, f.column, f.rule_id))
        return findings

    @staticmethod
    def deduplicate(candidates: Iterable[CandidateFinding]) -> List[CandidateFinding]:
        """
        Keep one candidate per ``(detector, line, category)``.

        The survivor has the highest confidence; ties go to the higher
        severity, then to the lexically smaller rule id. Candidates from
        different detectors are never merged.
        """
        groups: Dict[Tuple[Detector, int, str], List[CandidateFinding]] = {}
        for candidate in candidates:
            groups.setdefault((candidate.detector, candidate.line, candidate.category), []).append(candidate)
        return [
            min(group, key=lambda c: (-c.confidence, -c.severity.rank, c.rule_id))
            for group in groups.values()
        ]

    def cvss_score(self, candidate: CandidateFinding) -> float:
        """Severity base plus category and detector bonuses, scaled by confidence."""
        base = self.cvss['severity_base'].get(candidate.severity.value.lower(), 0.0)
        base += self.cvss['category_bonus'].get(candidate.rule_category.value, 0.0)
        base += self.cvss['detector_bonus'].get(candidate.detector.value, 0.0)
        scaled = base * (0.7 + 0.3 * candidate.confidence / 100)
        return round(min(10.0, max(0.0, scaled)), 1)

    def build_finding(self, source: SourceFile, candidate: CandidateFinding) -> Finding:
        snippet = source.snippet(candidate.line, self.context_lines)
        context = self._template_context(source, candidate, snippet)
        templates: FindingTemplates = candidate.templates or self.fallback_templates

        message = self._render(templates.message, context, candidate.message or candidate.title)
        summary = self._render(templates.summary, context, message)
        remediation = Remediation(
            description=self._render(templates.description, context, DEFAULT_REMEDIATION),
            example_fix=self._render(templates.example_fix, context, ""),
            effort=templates.effort or SEVERITY_EFFORT[candidate.severity],
            priority=templates.priority or SEVERITY_PRIORITY[candidate.severity]
        )

        return Finding(
            id=finding_id(source.path, candidate.line, candidate.rule_id),
            file=source.path,
            line=candidate.line,
            column=candidate.column,
            end_line=candidate.end_line or candidate.line,
            end_column=candidate.end_column,
            detector=candidate.detector,
            rule_id=candidate.rule_id,
            title=candidate.title,
            category=candidate.category,
            rule_category=candidate.rule_category,
            severity=candidate.severity,
            confidence=candidate.confidence,
            cwe=candidate.cwe,
            owasp=candidate.owasp,
            message=message,
            summary=summary,
            code_snippet=snippet,
            remediation=remediation,
            cvss_score=self.cvss_score(candidate),
            risk_rating=risk_rating(candidate.severity, candidate.confidence),
            language=source.language,
            references=tuple(candidate.references),
            tags=tuple(candidate.tags),
            trace=tuple(candidate.trace)
        )

    @staticmethod
    def _template_context(source: SourceFile, candidate: CandidateFinding, snippet: str) -> Dict[str, Any]:
        context = dict(candidate.context)
        context.setdefault('title', candidate.title)
        context.setdefault('source', "")
        context.setdefault('sink', "")
        context.update({
            'snippet': snippet,
            'line': candidate.line,
            'column': candidate.column,
            'file': source.path,
            'language': source.language,
            'severity': candidate.severity.value,
            'confidence': candidate.confidence,
            'category': candidate.category,
            'rule_id': candidate.rule_id,
            'cwe': candidate.cwe,
            'owasp': candidate.owasp
        })
        return context

    @staticmethod
    def _render(template, context: Dict[str, Any], fallback: str) -> str:
        if template is None:
            return fallback
        try:
            rendered = template.render(**context).strip()
        except TemplateError as e:
            logger.warning(f"Template rendering failed for {context.get('rule_id')}: {str(e)}")
            return fallback
        return rendered or fallback

    # -------------------------------------------------------------------------
    # per run
    # -------------------------------------------------------------------------

    def build_results(self, findings: Iterable[Finding], files_analyzed: int, lines_analyzed: int,
                      skipped_files: Iterable[FileSkipped] = (),
                      degraded_files: Iterable[ParseDegraded] = (),
                      file_metrics: Iterable[FileMetrics] = (),
                      analysis_time: str = "0.00s") -> AnalysisResults:
        """
        Merge per-file findings into the final ordered, scored result.

        Raises:
            AggregationInvariantViolation: Severity counts, file metrics or confidences are inconsistent
        """
        issues = tuple(sorted(findings, key=lambda f: (-f.severity.rank, f.file, f.line, f.column, f.rule_id)))
        counts = Counter(issue.severity for issue in issues)

        for issue in issues:
            if not self.floor(issue.detector) <= issue.confidence <= 100:
                raise AggregationInvariantViolation(
                    f"Finding {issue.id} has confidence {issue.confidence} outside "
                    f"[{self.floor(issue.detector)}, 100]")

        critical = counts.get(Severity.CRITICAL, 0)
        high = counts.get(Severity.HIGH, 0)
        medium = counts.get(Severity.MEDIUM, 0)
        low = counts.get(Severity.LOW, 0)
        if critical + high + medium + low != len(issues):
            raise AggregationInvariantViolation(
                f"Severity counts ({critical}+{high}+{medium}+{low}) do not match {len(issues)} issues")

        skipped = tuple(sorted(skipped_files, key=lambda s: s.path))
        degraded = tuple(sorted(degraded_files, key=lambda d: d.path))
        per_file = tuple(sorted(file_metrics, key=lambda m: m.path))
        if per_file and sum(metrics.total_issues for metrics in per_file) != len(issues):
            raise AggregationInvariantViolation(
                f"File metrics count {sum(m.total_issues for m in per_file)} issues, results hold {len(issues)}")

        quality_score = self.project_score('quality', counts, lines_analyzed)

        return AnalysisResults(
            issues=issues,
            critical_issues=critical,
            high_issues=high,
            medium_issues=medium,
            low_issues=low,
            security_score=self.project_score('security', counts, lines_analyzed),
            quality_score=quality_score,
            vulnerability_density=round(len(issues) * 1000 / lines_analyzed, 2) if lines_analyzed else 0.0,
            lines_analyzed=lines_analyzed,
            files_analyzed=files_analyzed,
            skipped_files=skipped,
            degraded_files=degraded,
            file_metrics=per_file,
            languages=self.language_breakdown(per_file),
            technical_debt_hours=self.technical_debt_hours(issues),
            maintainability_index=self.maintainability_index(counts, len(issues), lines_analyzed),
            quality_grade=self.quality_grade(quality_score),
            analysis_time=analysis_time
        )

    def weighted_density(self, name: str, counts: Dict[Severity, int], lines_analyzed: int) -> float:
        """Weighted severity count per 1000 analyzed lines."""
        weights = self.config.get_score_weights(name)
        weighted = sum(weights.get(severity.value.lower(), 0.0) * count for severity, count in counts.items())
        return weighted * 1000 / max(lines_analyzed, 1)

    def project_score(self, name: str, counts: Dict[Severity, int], lines_analyzed: int) -> float:
        density = self.weighted_density(name, counts, lines_analyzed)
        return round(score_from_curve(self.config.get_score_curve(name), density), 2)

    def technical_debt_hours(self, issues: Iterable[Finding]) -> float:
        """
        Estimated remediation effort in hours.

        Every finding costs the hours configured for its severity. Files
        holding more findings than the allowance cost extra per excess finding.
        """
        table = self.config.get_technical_debt_table()
        hours = table['hours']
        per_file: Counter = Counter()
        total = 0.0
        for issue in issues:
            total += hours.get(issue.severity.value.lower(), 0.0)
            per_file[issue.file] += 1
        allowance = table['file_issue_allowance']
        for count in per_file.values():
            if count > allowance:
                total += (count - allowance) * table['excess_issue_hours']
        return round(total, 2)

    def maintainability_index(self, counts: Dict[Severity, int], total: int, lines_analyzed: int) -> int:
        """0-100 index lowered by finding density and by the share of severe findings."""
        if not total or not lines_analyzed:
            return 100
        factors = self.config.get_maintainability_factors()
        density = total * 1000 / lines_analyzed
        penalties = factors['severity_ratio_penalty']
        ratio_penalty = sum(penalties.get(severity.value.lower(), 0.0) * count / total
                            for severity, count in counts.items())
        index = 100 - density * factors['density_factor'] - ratio_penalty
        return int(round(max(0.0, min(100.0, index))))

    def quality_grade(self, quality_score: float) -> str:
        grades = self.config.get_quality_grades()
        for threshold, grade in grades:
            if quality_score >= threshold:
                return grade
        return grades[-1][1]

    @staticmethod
    def language_breakdown(file_metrics: Iterable[FileMetrics]) -> Tuple[LanguageMetrics, ...]:
        """Per-language totals, largest share of analyzed lines first."""
        files: Counter = Counter()
        lines: Counter = Counter()
        issues: Counter = Counter()
        for metrics in file_metrics:
            files[metrics.language] += 1
            lines[metrics.language] += metrics.lines_of_code
            issues[metrics.language] += metrics.total_issues
        total_lines = sum(lines.values())
        breakdown = [
            LanguageMetrics(
                language=language,
                files=files[language],
                lines_of_code=lines[language],
                issues=issues[language],
                percentage=round(lines[language] * 100 / total_lines, 1) if total_lines else 0.0
            )
            for language in files
        ]
        breakdown.sort(key=lambda m: (-m.lines_of_code, -m.files, m.language))
        return tuple(breakdown)
