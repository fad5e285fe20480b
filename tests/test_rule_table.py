"""Tests for rule table loading, validation and merging."""

import pytest

from polyscan.core import RuleCategory, Severity
from polyscan.rules.rule_table import (
    RuleTableInvalid, build_rule_table, load_rule_table, path_matches
)


def rule(**overrides):
    """A minimal valid rule entry."""
    raw = {
        'id': 'TEST-EVAL',
        'title': 'Eval Use',
        'languages': ['python'],
        'category': 'Injection',
        'severity': 'high',
        'pattern': [{'kind': 'CallExpr', 'attrs': {'callee': 'eval'}}],
    }
    raw.update(overrides)
    return raw


class TestPackagedTable:
    """The rule table shipped with the package."""

    def test_loads(self, rule_table):
        assert rule_table.version == "2025.1"
        assert rule_table.get_rule("SQLI-CONCAT") is not None
        assert len(rule_table.taint.sources) > 0
        assert len(rule_table.taint.sinks) > 0

    def test_rules_for_language(self, rule_table):
        python_rules = {r.id for r in rule_table.rules_for("python")}
        assert "PY-CMDI-OS" in python_rules
        assert "JS-XSS-INNERHTML" not in python_rules
        # wildcard rules apply everywhere
        assert "CRED-ASSIGN" in python_rules

    def test_classification_defaults(self, rule_table):
        sqli = rule_table.get_rule("SQLI-CONCAT")
        assert sqli.cwe == "CWE-89"
        assert sqli.owasp.startswith("A03")
        assert sqli.severity is Severity.HIGH
        assert sqli.category is RuleCategory.INJECTION

    def test_disabled_rules(self):
        table = load_rule_table(disabled_rules=["SQLI-CONCAT"])
        assert table.get_rule("SQLI-CONCAT") is None

    def test_language_views(self, rule_table):
        view = rule_table.taint.for_language("javascript")
        assert any(sink.id == "xss-dom-assignment" for sink in view.assignment_sinks)
        assert not rule_table.taint.for_language("cobol").sinks


class TestValidation:
    """Broken tables are rejected with every error reported."""

    def test_valid_minimal_rule(self):
        table = build_rule_table([("test.yaml", {'rules': [rule()]})])
        built = table.get_rule("TEST-EVAL")
        assert built.confidence == 60
        assert built.templates is not None

    def test_invalid_severity(self):
        with pytest.raises(RuleTableInvalid) as excinfo:
            build_rule_table([("test.yaml", {'rules': [rule(severity='urgent')]})])
        assert any("invalid severity" in error for error in excinfo.value.errors)

    def test_missing_fields(self):
        raw = rule()
        del raw['title']
        with pytest.raises(RuleTableInvalid) as excinfo:
            build_rule_table([("test.yaml", {'rules': [raw]})])
        assert any("missing required field: title" in error for error in excinfo.value.errors)

    def test_duplicate_ids(self):
        with pytest.raises(RuleTableInvalid) as excinfo:
            build_rule_table([("test.yaml", {'rules': [rule(), rule()]})])
        assert any("duplicate rule id" in error for error in excinfo.value.errors)

    def test_bad_template(self):
        with pytest.raises(RuleTableInvalid) as excinfo:
            build_rule_table([("test.yaml", {'rules': [rule(message="{{ unclosed")]})])
        assert any("template error" in error for error in excinfo.value.errors)

    def test_bad_regex_and_axis_reported_together(self):
        pattern = [
            {'kind': 'CallExpr', 'regex': {'callee': '(['}},
            {'axis': 'sideways'},
        ]
        with pytest.raises(RuleTableInvalid) as excinfo:
            build_rule_table([("test.yaml", {'rules': [rule(pattern=pattern)]})])
        errors = excinfo.value.errors
        assert any("invalid regex" in error for error in errors)
        assert any("invalid axis" in error for error in errors)

    def test_first_step_must_be_self(self):
        with pytest.raises(RuleTableInvalid):
            build_rule_table([("test.yaml", {'rules': [rule(pattern=[{'axis': 'child', 'kind': 'CallExpr'}])]})])

    def test_confidence_out_of_range(self):
        with pytest.raises(RuleTableInvalid):
            build_rule_table([("test.yaml", {'rules': [rule(confidence=150)]})])

    def test_invalid_sink_kind(self):
        taint = {'sinks': [{'id': 'bad', 'languages': ['python'], 'kind': 'teleport',
                            'patterns': ['x'], 'category': 'Injection', 'severity': 'high'}]}
        with pytest.raises(RuleTableInvalid):
            build_rule_table([("test.yaml", {'taint': taint})])

    def test_missing_rule_file(self, tmp_path):
        with pytest.raises(RuleTableInvalid):
            load_rule_table(str(tmp_path / "absent.yaml"))

    def test_malformed_yaml(self, tmp_path):
        path = tmp_path / "rules.yaml"
        path.write_text("rules: [unclosed\n")
        with pytest.raises(RuleTableInvalid):
            load_rule_table(str(path))


class TestOverlay:
    """User rule files layered on top of the packaged table."""

    def test_user_rule_replaces_packaged(self, tmp_path):
        path = tmp_path / "rules.yaml"
        path.write_text(
            "rules:\n"
            "  - id: SQLI-CONCAT\n"
            "    title: Custom SQL\n"
            "    languages: [python]\n"
            "    category: Injection\n"
            "    severity: critical\n"
            "    pattern:\n"
            "      - kind: CallExpr\n"
            "        attrs: {callee: '*.execute'}\n"
        )
        table = load_rule_table(str(path))
        replaced = table.get_rule("SQLI-CONCAT")
        assert replaced.title == "Custom SQL"
        assert replaced.severity is Severity.CRITICAL
        assert table.get_rule("PY-CMDI-OS") is not None

    def test_user_rule_is_appended(self, tmp_path, rule_table):
        path = tmp_path / "rules.yaml"
        path.write_text(
            "rules:\n"
            "  - id: TEAM-NO-PRINT\n"
            "    title: Print Call\n"
            "    languages: [python]\n"
            "    category: Misconfiguration\n"
            "    severity: low\n"
            "    pattern:\n"
            "      - kind: CallExpr\n"
            "        attrs: {callee: print}\n"
        )
        table = load_rule_table(str(path))
        assert len(table.rules) == len(rule_table.rules) + 1


class TestPathMatching:
    def test_segment_prefix(self):
        assert path_matches(["req.query"], "req.query.id")
        assert path_matches(["req.query"], "req.query")
        assert not path_matches(["req.q"], "req.query")
        assert path_matches(["$_GET"], "$_GET[]")
