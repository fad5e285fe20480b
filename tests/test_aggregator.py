"""Tests for finding aggregation, scoring and result invariants."""

from dataclasses import replace

import pytest

from polyscan.aggregator import (
    AggregationInvariantViolation, FindingAggregator, finding_id, risk_rating, score_from_curve
)
from polyscan.core import (
    CandidateFinding, Config, Detector, FileMetrics, RuleCategory, Severity, SourceFile
)


@pytest.fixture
def aggregator(config):
    return FindingAggregator(config)


@pytest.fixture
def source():
    text = "import os\nuser = input()\nos.system(user)\nprint('done')\n"
    return SourceFile(path="app.py", language="python", text=text, size=len(text))


def candidate(**overrides):
    values = dict(
        detector=Detector.AST,
        rule_id="PY-CMDI-OS",
        title="Command Injection",
        category="Command Injection",
        rule_category=RuleCategory.INJECTION,
        severity=Severity.HIGH,
        confidence=70,
        line=3,
        cwe="CWE-78",
        owasp="A03:2021 - Injection",
    )
    values.update(overrides)
    return CandidateFinding(**values)


class TestDeduplication:
    def test_highest_confidence_wins(self, aggregator):
        kept = aggregator.deduplicate([
            candidate(rule_id="A", confidence=60),
            candidate(rule_id="B", confidence=80),
        ])
        assert [c.rule_id for c in kept] == ["B"]

    def test_tie_broken_by_severity_then_rule_id(self, aggregator):
        kept = aggregator.deduplicate([
            candidate(rule_id="B", severity=Severity.MEDIUM),
            candidate(rule_id="C", severity=Severity.HIGH),
            candidate(rule_id="A", severity=Severity.HIGH),
        ])
        assert [c.rule_id for c in kept] == ["A"]

    def test_detectors_never_merged(self, aggregator):
        kept = aggregator.deduplicate([
            candidate(detector=Detector.AST),
            candidate(detector=Detector.DATAFLOW, rule_id="TAINT-command-python"),
        ])
        assert len(kept) == 2

    def test_categories_kept_apart(self, aggregator):
        kept = aggregator.deduplicate([
            candidate(),
            candidate(rule_id="CRED-KWARG", category="Hardcoded Credentials",
                      rule_category=RuleCategory.SECRET),
        ])
        assert len(kept) == 2


class TestFindings:
    def test_floor_applied_per_detector(self, aggregator, source):
        findings = aggregator.aggregate_file(source, [
            candidate(confidence=34),
            candidate(detector=Detector.SECRET, rule_id="SECRET-X", category="Secret Detection",
                      confidence=36, line=2),
        ])
        assert [f.rule_id for f in findings] == ["SECRET-X"]

    def test_stable_ids(self, aggregator, source):
        first = aggregator.aggregate_file(source, [candidate()])[0]
        second = aggregator.aggregate_file(source, [candidate()])[0]
        assert first.id == second.id == finding_id("app.py", 3, "PY-CMDI-OS")
        assert len(first.id) == 16
        assert finding_id("app.py", 4, "PY-CMDI-OS") != first.id

    def test_fallback_templates(self, aggregator, source):
        finding = aggregator.aggregate_file(source, [candidate()])[0]
        assert finding.message == "Command Injection"
        assert finding.remediation.priority == 2
        assert finding.remediation.effort == "Medium"
        assert "> 3 | os.system(user)" in finding.code_snippet

    def test_cvss(self, aggregator):
        # 7.0 base + 1.0 injection + 0.5 dataflow, scaled by 0.7 + 0.3 * 0.85
        assert aggregator.cvss_score(candidate(detector=Detector.DATAFLOW, confidence=85)) == 8.1
        assert aggregator.cvss_score(candidate(detector=Detector.DATAFLOW, severity=Severity.CRITICAL,
                                               confidence=100)) == 10.0

    def test_risk_rating(self):
        assert risk_rating(Severity.CRITICAL, 90) == "Critical"
        assert risk_rating(Severity.CRITICAL, 75) == "High"
        assert risk_rating(Severity.MEDIUM, 65) == "Medium"
        assert risk_rating(Severity.HIGH, 40) == "Low"


class TestResults:
    def test_ordering_and_counts(self, aggregator, source):
        findings = aggregator.aggregate_file(source, [
            candidate(severity=Severity.MEDIUM, line=2, category="Other"),
            candidate(severity=Severity.CRITICAL, line=4),
            candidate(severity=Severity.HIGH, line=3),
        ])
        results = aggregator.build_results(findings, files_analyzed=1, lines_analyzed=4)
        assert [f.severity for f in results.issues] == [Severity.CRITICAL, Severity.HIGH, Severity.MEDIUM]
        assert (results.critical_issues, results.high_issues, results.medium_issues,
                results.low_issues) == (1, 1, 1, 0)
        assert results.vulnerability_density == 750.0

    def test_empty_run_scores_perfect(self, aggregator):
        results = aggregator.build_results([], files_analyzed=0, lines_analyzed=0)
        assert results.security_score == 100.0
        assert results.quality_score == 100.0
        assert results.issues == ()

    def test_confidence_outside_range_is_rejected(self, aggregator, source):
        finding = aggregator.aggregate_file(source, [candidate()])[0]
        with pytest.raises(AggregationInvariantViolation):
            aggregator.build_results([replace(finding, confidence=10)], files_analyzed=1, lines_analyzed=4)

    def test_to_dict_boundary_names(self, aggregator, source):
        findings = aggregator.aggregate_file(source, [candidate()])
        data = aggregator.build_results(findings, files_analyzed=1, lines_analyzed=4).to_dict()
        assert data['totalFiles'] == 1
        assert data['summary']['highIssues'] == 1
        issue = data['issues'][0]
        assert issue['tool'] == "AST"
        assert issue['cweId'] == "CWE-78"
        assert issue['severity'] == "High"


class TestScores:
    def test_curve_strictly_decreasing(self, config):
        curve = config.get_score_curve('security')
        scores = [score_from_curve(curve, density) for density in (0, 1, 5, 20, 100, 500, 5000)]
        assert scores[0] == 100
        assert all(later < earlier for earlier, later in zip(scores, scores[1:]))
        assert scores[-1] > 0

    def test_more_critical_findings_lower_the_score(self, aggregator):
        one = aggregator.project_score('security', {Severity.CRITICAL: 1}, 1000)
        two = aggregator.project_score('security', {Severity.CRITICAL: 2}, 1000)
        assert two < one < 100

    def test_curve_is_configurable(self):
        config = Config(overrides={'scoring': {'security': {'curve': [[0, 100], [1, 10]]}}})
        score = FindingAggregator(config).project_score('security', {Severity.LOW: 1}, 1000)
        assert score == pytest.approx(55.0)

    def test_invalid_curve_rejected(self):
        with pytest.raises(ValueError):
            Config(overrides={'scoring': {'security': {'curve': [[0, 100], [5, 100]]}}})


class TestProjectMetrics:
    """Technical debt, maintainability, grades and per-file records."""

    def findings(self, aggregator, source):
        return aggregator.aggregate_file(source, [
            candidate(severity=Severity.MEDIUM, line=2, category="Other"),
            candidate(severity=Severity.CRITICAL, line=4),
            candidate(severity=Severity.HIGH, line=3),
        ])

    def test_technical_debt_per_severity(self, aggregator, source):
        results = aggregator.build_results(self.findings(aggregator, source), files_analyzed=1,
                                           lines_analyzed=4)
        # 12 + 6 + 3 hours
        assert results.technical_debt_hours == 21.0
        assert results.to_dict()['metrics']['technicalDebt'] == "21 hours"

    def test_crowded_file_adds_debt(self, source):
        config = Config(overrides={'scoring': {'technical_debt': {'file_issue_allowance': 1}}})
        aggregator = FindingAggregator(config)
        results = aggregator.build_results(self.findings(aggregator, source), files_analyzed=1,
                                           lines_analyzed=4)
        assert results.technical_debt_hours == 22.0

    def test_maintainability_index(self, aggregator):
        assert aggregator.maintainability_index({}, 0, 0) == 100
        # density 1 per kloc costs 8, an all-critical share costs 10
        assert aggregator.maintainability_index({Severity.CRITICAL: 1}, 1, 1000) == 82
        assert aggregator.maintainability_index({Severity.LOW: 1}, 1, 1000) == 92
        assert aggregator.maintainability_index({Severity.CRITICAL: 50}, 50, 100) == 0

    def test_quality_grade(self, aggregator):
        assert aggregator.quality_grade(100.0) == "A+"
        assert aggregator.quality_grade(87.0) == "A"
        assert aggregator.quality_grade(72.5) == "B"
        assert aggregator.quality_grade(10.0) == "F"

    def test_grades_are_configurable(self):
        config = Config(overrides={'scoring': {'quality_grades': [[50, 'pass'], [0, 'fail']]}})
        aggregator = FindingAggregator(config)
        assert aggregator.quality_grade(60.0) == "pass"
        assert aggregator.quality_grade(49.9) == "fail"

    def test_invalid_tables_rejected(self):
        with pytest.raises(ValueError):
            Config(overrides={'scoring': {'quality_grades': [[50, 'pass'], [70, 'great'], [0, 'fail']]}})
        with pytest.raises(ValueError):
            Config(overrides={'scoring': {'quality_grades': [[50, 'pass']]}})
        with pytest.raises(ValueError):
            Config(overrides={'scoring': {'technical_debt': {'hours': {'critical': -1}}}})

    def test_language_breakdown(self, aggregator):
        metrics = [
            FileMetrics("b.py", "python", 10),
            FileMetrics("a.py", "python", 30, critical_issues=1),
            FileMetrics("web/c.js", "javascript", 60),
        ]
        breakdown = aggregator.language_breakdown(metrics)
        assert [(m.language, m.files, m.lines_of_code, m.issues, m.percentage) for m in breakdown] == [
            ("javascript", 1, 60, 0, 60.0),
            ("python", 2, 40, 1, 40.0),
        ]

    def test_file_metrics_sorted_and_checked(self, aggregator, source):
        findings = aggregator.aggregate_file(source, [candidate()])
        metrics = [FileMetrics("b.py", "python", 3), FileMetrics("app.py", "python", 4, high_issues=1)]
        results = aggregator.build_results(findings, files_analyzed=2, lines_analyzed=7, file_metrics=metrics)
        assert [m.path for m in results.file_metrics] == ["app.py", "b.py"]
        assert results.primary_language == "python"
        assert results.to_dict()['fileMetrics'][0]['highIssues'] == 1

        with pytest.raises(AggregationInvariantViolation):
            aggregator.build_results(findings, files_analyzed=1, lines_analyzed=3,
                                     file_metrics=[FileMetrics("b.py", "python", 3)])

    def test_duration_ignored_in_equality(self):
        assert FileMetrics("a.py", "python", 3, analysis_duration=0.1) == \
            FileMetrics("a.py", "python", 3, analysis_duration=2.5)
