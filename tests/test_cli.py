"""Tests for the command line interface."""

import json

import pytest

from polyscan.cli import create_parser, main, positive_int

VULNERABLE = (
    'def search():\n'
    '    user_id = request.args.get("id")\n'
    '    cursor.execute("SELECT * FROM users WHERE id = " + user_id)\n'
)


@pytest.fixture
def project(tmp_path):
    (tmp_path / "app.py").write_text(VULNERABLE)
    return tmp_path


class TestArguments:
    def test_defaults(self, project):
        args = create_parser().parse_args([str(project)])
        assert args.format == 'text'
        assert args.severity is None
        assert args.target == project

    def test_missing_path_rejected(self, tmp_path):
        with pytest.raises(SystemExit):
            main([str(tmp_path / "absent")])

    def test_target_required(self):
        with pytest.raises(SystemExit):
            main([])

    def test_verbose_and_quiet_conflict(self, project):
        with pytest.raises(SystemExit):
            main([str(project), '--verbose', '--quiet'])

    def test_positive_int(self):
        assert positive_int("4") == 4
        with pytest.raises(Exception):
            positive_int("0")


class TestAnalysis:
    def test_json_output(self, project, capsys):
        assert main([str(project), '--format', 'json', '--quiet']) == 1
        data = json.loads(capsys.readouterr().out)
        assert data['totalFiles'] == 1
        assert any(issue['ruleId'] == "TAINT-sql-query" for issue in data['issues'])

    def test_text_output(self, project, capsys):
        assert main([str(project), '--quiet']) == 1
        out = capsys.readouterr().out
        assert "[CRITICAL] app.py:3" in out
        assert "Files analyzed: 1" in out
        assert "Technical debt: " in out
        assert "Languages: python 100.0%" in out

    def test_clean_project(self, tmp_path, capsys):
        (tmp_path / "ok.py").write_text("def add(a, b):\n    return a + b\n")
        assert main([str(tmp_path), '--format', 'json', '--quiet']) == 0
        assert json.loads(capsys.readouterr().out)['issues'] == []

    def test_severity_filter(self, project, capsys):
        main([str(project), '--format', 'json', '--severity', 'critical', '--quiet'])
        data = json.loads(capsys.readouterr().out)
        assert {issue['severity'] for issue in data['issues']} == {"Critical"}

    def test_invalid_rule_file(self, project, tmp_path):
        rules = tmp_path / "rules.yaml"
        rules.write_text("rules:\n  - id: BROKEN\n    severity: urgent\n")
        assert main([str(project), '--rules', str(rules), '--quiet']) == 2

    def test_invalid_config_file(self, project, tmp_path):
        config = tmp_path / "polyscan.yaml"
        config.write_text("analysis:\n  min_severity: extreme\n")
        assert main([str(project), '--config', str(config), '--quiet']) == 2


class TestListings:
    def test_list_rules(self, capsys):
        assert main(['--list-rules']) == 0
        out = capsys.readouterr().out
        assert "SQLI-CONCAT" in out
        assert "Rule table version 2025.1" in out

    def test_list_languages(self, capsys):
        assert main(['--list-languages']) == 0
        out = capsys.readouterr().out
        assert "python" in out
        assert "javascript" in out
