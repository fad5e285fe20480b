"""Tests for structural rule evaluation."""

import pytest

from polyscan.aggregator import FindingAggregator
from polyscan.core import Detector, Severity
from polyscan.rules.rule_engine import RuleEngine
from polyscan.rules.rule_table import build_rule_table


@pytest.fixture
def engine(rule_table):
    return RuleEngine(rule_table)


def candidates_for(engine, parse, text, language='python'):
    source, result = parse(text, language=language)
    return source, engine.evaluate(source, result.tree)


class TestSqlRules:
    def test_concatenated_query(self, engine, parse):
        _, found = candidates_for(engine, parse,
                                  'cursor.execute("SELECT * FROM users WHERE id = " + uid)\n')
        sqli = [c for c in found if c.rule_id == "SQLI-CONCAT"]
        assert len(sqli) == 1
        assert sqli[0].detector is Detector.AST
        assert sqli[0].severity is Severity.HIGH
        assert sqli[0].confidence == 75
        assert sqli[0].line == 1

    def test_constant_query_is_dropped(self, engine, parse):
        """Concatenating two constants lowers confidence below the rule minimum."""
        _, found = candidates_for(engine, parse,
                                  'cursor.execute("SELECT * FROM t " + "WHERE id = 1")\n')
        assert not [c for c in found if c.rule_id == "SQLI-CONCAT"]

    def test_parameterized_query_is_clean(self, engine, parse):
        _, found = candidates_for(engine, parse,
                                  'cursor.execute("SELECT * FROM t WHERE id = %s", (uid,))\n')
        assert not [c for c in found if c.rule_category.value == "Injection"]


class TestXssRules:
    def test_inner_html_identifier(self, engine, parse):
        _, found = candidates_for(engine, parse, "el.innerHTML = msg;\n", language="javascript")
        xss = [c for c in found if c.rule_id == "JS-XSS-INNERHTML"]
        assert len(xss) == 1
        assert xss[0].severity is Severity.MEDIUM
        assert xss[0].confidence == 50

    def test_inner_html_literal_falls_below_floor(self, engine, parse, config):
        source, found = candidates_for(engine, parse, 'el.innerHTML = "<b>hi</b>";\n',
                                       language="javascript")
        xss = [c for c in found if c.rule_id == "JS-XSS-INNERHTML"]
        assert xss and xss[0].confidence == 30
        assert FindingAggregator(config).aggregate_file(source, xss) == []


class TestAbsentStep:
    def test_weak_hash_reported(self, engine, parse):
        _, found = candidates_for(engine, parse, "digest = hashlib.md5(data).hexdigest()\n")
        assert [c for c in found if c.rule_id == "PY-CRYPTO-WEAK-HASH"]

    def test_weak_hash_not_for_security(self, engine, parse):
        _, found = candidates_for(engine, parse,
                                  "digest = hashlib.md5(data, usedforsecurity=False).hexdigest()\n")
        assert not [c for c in found if c.rule_id == "PY-CRYPTO-WEAK-HASH"]


class TestDeduplicationAcrossCategories:
    def test_two_categories_on_one_line(self, engine, parse, config):
        """Different vulnerability classes on the same line are both kept."""
        source, found = candidates_for(
            engine, parse,
            'cursor.execute("SELECT * FROM t WHERE id=" + uid, password="hunter22")\n')
        findings = FindingAggregator(config).aggregate_file(source, found)
        rule_ids = {f.rule_id for f in findings if f.detector is Detector.AST}
        assert rule_ids == {"SQLI-CONCAT", "CRED-KWARG"}


class TestCustomRules:
    """Axes exercised through a hand-built table."""

    @pytest.fixture
    def custom_engine(self):
        table = build_rule_table([("custom.yaml", {'rules': [{
            'id': 'EVAL-IN-FUNCTION',
            'title': 'Eval inside a function',
            'languages': ['python'],
            'category': 'Injection',
            'severity': 'medium',
            'confidence': 70,
            'message': 'eval called inside {{ file }}',
            'pattern': [
                {'kind': 'CallExpr', 'attrs': {'callee': 'eval'}},
                {'axis': 'ancestor', 'kind': 'FunctionDecl', 'depth': 5},
            ],
        }]})])
        return RuleEngine(table)

    def test_ancestor_axis(self, custom_engine, parse):
        _, found = candidates_for(custom_engine, parse, "eval(a)\n\ndef run(x):\n    return eval(x)\n")
        assert [c.line for c in found] == [4]

    def test_message_template_rendered(self, custom_engine, parse, config):
        source, found = candidates_for(custom_engine, parse, "def run(x):\n    eval(x)\n")
        finding = FindingAggregator(config).aggregate_file(source, found)[0]
        assert finding.message == "eval called inside sample.py"
        assert finding.code_snippet.splitlines()[-1].startswith(">")

    def test_other_language_ignored(self, custom_engine, parse):
        _, found = candidates_for(custom_engine, parse, "function f(x) { eval(x); }\n",
                                  language="javascript")
        assert found == []
