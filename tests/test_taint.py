"""Tests for the intra-file taint engine."""

import pytest

from polyscan.core import Config, Detector, Severity
from polyscan.dataflow.taint_engine import (
    CLEAN, UNKNOWN, Scope, TaintEngine, TaintKind, TaintState, join
)


@pytest.fixture
def engine(rule_table, config):
    return TaintEngine(rule_table.taint, config)


def flows(engine, parse, text, language='python'):
    source, result = parse(text, language=language)
    return engine.analyze(source, result.tree)


TAINTED = TaintState(TaintKind.TAINTED, 'test', 'test data')


class TestLattice:
    def test_join_prefers_tainted(self):
        assert join(CLEAN, UNKNOWN, TAINTED) is TAINTED
        assert join(CLEAN, UNKNOWN).kind is TaintKind.UNKNOWN
        assert join(CLEAN, CLEAN).kind is TaintKind.CLEAN
        assert join().kind is TaintKind.CLEAN

    def test_extend_ignores_clean(self):
        assert CLEAN.extend('assignment', 3, 'x') is CLEAN
        extended = TAINTED.extend('assignment', 3, 'x')
        assert extended.edges[-1].describe() == "assignment:x@3"

    def test_scope_merge(self):
        scope = Scope("f")
        left, right = scope.fork(), scope.fork()
        left.bind("a", TAINTED)
        right.bind("b", UNKNOWN)
        scope.merge(left, right)
        assert scope.lookup("a").is_tainted
        assert scope.lookup("b").kind is TaintKind.UNKNOWN

    def test_scope_lookup_reaches_parent(self):
        parent = Scope("<program>")
        parent.bind("config", TAINTED)
        child = Scope("f@1:0", parent)
        assert child.lookup("config") is TAINTED
        assert child.lookup("missing") is None


class TestPythonFlows:
    def test_request_to_query(self, engine, parse):
        found = flows(engine, parse,
                      'def search():\n'
                      '    user_id = request.args.get("id")\n'
                      '    query = "SELECT * FROM users WHERE id = " + user_id\n'
                      '    cursor.execute(query)\n')
        assert len(found) == 1
        finding = found[0]
        assert finding.detector is Detector.DATAFLOW
        assert finding.rule_id == "TAINT-sql-query"
        assert finding.severity is Severity.CRITICAL
        assert finding.confidence == 85
        assert finding.line == 4
        assert "taint" in finding.tags
        assert finding.trace[0].startswith("source:request.args.get@2")
        assert finding.trace[-1] == "sink:cursor.execute@4"
        assert "HTTP request data" in finding.message

    def test_sanitizer_clears_taint(self, engine, parse):
        found = flows(engine, parse,
                      'def search():\n'
                      '    user_id = int(request.args.get("id"))\n'
                      '    cursor.execute("SELECT * FROM t WHERE id = " + str(user_id))\n')
        assert found == []

    def test_reassignment_kills_taint(self, engine, parse):
        found = flows(engine, parse,
                      'def search():\n'
                      '    name = request.args["name"]\n'
                      '    name = "guest"\n'
                      '    os.system("echo " + name)\n')
        assert found == []

    def test_branch_may_taint(self, engine, parse):
        found = flows(engine, parse,
                      'def run(flag):\n'
                      '    cmd = "ls"\n'
                      '    if flag:\n'
                      '        cmd = request.form["cmd"]\n'
                      '    os.system(cmd)\n')
        assert [f.rule_id for f in found] == ["TAINT-command-python"]

    def test_loop_mutation_propagates(self, engine, parse):
        found = flows(engine, parse,
                      'def search():\n'
                      '    items = []\n'
                      '    for value in request.args.getlist("ids"):\n'
                      '        items.append(value)\n'
                      '    cursor.execute("SELECT * FROM t WHERE id IN (" + ",".join(items) + ")")\n')
        assert [f.rule_id for f in found] == ["TAINT-sql-query"]
        assert found[0].line == 5

    def test_interprocedural_flow_costs_a_hop(self, engine, parse):
        found = flows(engine, parse,
                      'def run_query(q):\n'
                      '    cursor.execute(q)\n'
                      '\n'
                      'def handler():\n'
                      '    uid = request.args.get("id")\n'
                      '    run_query("SELECT * FROM t WHERE id = " + uid)\n')
        assert len(found) == 1
        assert found[0].line == 2
        assert found[0].confidence == 75
        assert any(step.startswith("argument:run_query") for step in found[0].trace)

    def test_return_value_carries_taint(self, engine, parse):
        found = flows(engine, parse,
                      'def read_name():\n'
                      '    return request.args.get("name")\n'
                      '\n'
                      'def handler():\n'
                      '    os.system("echo " + read_name())\n')
        assert [f.rule_id for f in found] == ["TAINT-command-python"]
        assert found[0].confidence == 85

    def test_recursion_terminates(self, engine, parse):
        found = flows(engine, parse,
                      'def walk(x):\n'
                      '    return walk(x)\n'
                      '\n'
                      'def handler():\n'
                      '    os.system(walk(request.args["p"]))\n')
        assert found == []

    def test_call_depth_limit(self, rule_table, parse):
        engine = TaintEngine(rule_table.taint, Config(overrides={'analysis': {'max_call_depth': 1}}))
        found = flows(engine, parse,
                      'def inner(q):\n'
                      '    cursor.execute(q)\n'
                      '\n'
                      'def outer(q):\n'
                      '    inner(q)\n'
                      '\n'
                      'def handler():\n'
                      '    outer(request.args["q"])\n')
        assert found == []

    def test_subprocess_requires_shell(self, engine, parse):
        text = ('def handler():\n'
                '    cmd = request.args["cmd"]\n'
                '    subprocess.run(cmd, shell={shell})\n')
        assert [f.rule_id for f in flows(engine, parse, text.format(shell="True"))] == \
            ["TAINT-command-subprocess-shell"]
        assert flows(engine, parse, text.format(shell="False")) == []

    def test_module_level_flow(self, engine, parse):
        found = flows(engine, parse, 'import sys\nos.system(sys.argv[1])\n')
        assert [f.rule_id for f in found] == ["TAINT-command-python"]


class TestJavaScriptFlows:
    def test_express_query_to_sql(self, engine, parse):
        found = flows(engine, parse,
                      'const id = req.query.id;\n'
                      'db.query("SELECT * FROM t WHERE id=" + id);\n',
                      language="javascript")
        assert len(found) == 1
        assert found[0].rule_id == "TAINT-sql-query"
        assert found[0].severity is Severity.CRITICAL
        assert found[0].line == 2

    def test_location_hash_to_inner_html(self, engine, parse):
        found = flows(engine, parse, 'el.innerHTML = location.hash;\n', language="javascript")
        assert len(found) == 1
        assert found[0].rule_id == "TAINT-xss-dom-assignment"
        assert found[0].severity is Severity.HIGH
        assert found[0].confidence == 85

    def test_untainted_inner_html(self, engine, parse):
        assert flows(engine, parse, 'el.innerHTML = msg;\n', language="javascript") == []

    def test_sanitized_value(self, engine, parse):
        found = flows(engine, parse,
                      'const page = parseInt(req.query.page);\n'
                      'db.query("SELECT * FROM t LIMIT " + page);\n',
                      language="javascript")
        assert found == []


class TestSanitizerNames:
    """Project helpers named like sanitizers clear taint in every language."""

    def test_javascript_sanitize_helper(self, engine, parse):
        found = flows(engine, parse,
                      'function sanitizeInput(x) { return x.replace(/</g, ""); }\n'
                      'const v = sanitizeInput(req.query.q);\n'
                      'db.query("SELECT " + v);\n',
                      language="javascript")
        assert found == []

    def test_python_sanitize_helper(self, engine, parse):
        found = flows(engine, parse,
                      'def sanitize_input(x):\n'
                      '    return x.strip()\n'
                      '\n'
                      'def search():\n'
                      '    value = sanitize_input(request.args["q"])\n'
                      '    cursor.execute("SELECT " + value)\n')
        assert found == []

    def test_parameterize_method(self, engine, parse):
        found = flows(engine, parse,
                      'def search():\n'
                      '    cursor.execute(db.parameterize("SELECT " + request.args["q"]))\n')
        assert found == []

    def test_other_helpers_still_followed(self, engine, parse):
        found = flows(engine, parse,
                      'def tidy(x):\n'
                      '    return x.strip()\n'
                      '\n'
                      'def search():\n'
                      '    value = tidy(request.args["q"])\n'
                      '    cursor.execute("SELECT " + value)\n')
        assert [f.rule_id for f in found] == ["TAINT-sql-query"]

    def test_escape_html_in_php(self, engine, parse):
        found = flows(engine, parse, "<?php\necho escapeHtml($_GET['name']);\n", language="php")
        assert found == []


class TestJavaFlows:
    def test_servlet_parameter_to_query(self, engine, parse):
        found = flows(engine, parse,
                      'class Search {\n'
                      '    void find(HttpServletRequest request, Statement stmt) throws Exception {\n'
                      '        String id = request.getParameter("id");\n'
                      '        stmt.executeQuery("SELECT * FROM users WHERE id = " + id);\n'
                      '    }\n'
                      '}\n',
                      language="java")
        assert [f.rule_id for f in found] == ["TAINT-sql-query"]
        assert found[0].severity is Severity.CRITICAL
        assert found[0].line == 4
        assert found[0].trace[0].startswith("source:request.getParameter@3")

    def test_parsed_integer_is_clean(self, engine, parse):
        found = flows(engine, parse,
                      'class Search {\n'
                      '    void find(HttpServletRequest request, Statement stmt) throws Exception {\n'
                      '        int id = Integer.parseInt(request.getParameter("id"));\n'
                      '        stmt.executeQuery("SELECT * FROM users WHERE id = " + id);\n'
                      '    }\n'
                      '}\n',
                      language="java")
        assert found == []


class TestGoFlows:
    def test_query_value_to_db_query(self, engine, parse):
        found = flows(engine, parse,
                      'package main\n'
                      '\n'
                      'func handler(w http.ResponseWriter, r *http.Request) {\n'
                      '\tid := r.URL.Query().Get("id")\n'
                      '\tdb.Query("SELECT * FROM users WHERE id = " + id)\n'
                      '}\n',
                      language="go")
        assert [f.rule_id for f in found] == ["TAINT-sql-query"]
        assert found[0].severity is Severity.CRITICAL
        assert found[0].line == 5

    def test_atoi_is_clean(self, engine, parse):
        found = flows(engine, parse,
                      'package main\n'
                      '\n'
                      'func handler(w http.ResponseWriter, r *http.Request) {\n'
                      '\tid, _ := strconv.Atoi(r.FormValue("id"))\n'
                      '\tdb.Query(fmt.Sprint("SELECT * FROM users WHERE id = ", id))\n'
                      '}\n',
                      language="go")
        assert found == []


class TestPhpFlows:
    def test_superglobal_to_mysqli(self, engine, parse):
        found = flows(engine, parse,
                      "<?php\n"
                      "$id = $_GET['id'];\n"
                      "mysqli_query($conn, \"SELECT * FROM users WHERE id = \" . $id);\n",
                      language="php")
        assert [f.rule_id for f in found] == ["TAINT-sql-php"]
        assert found[0].severity is Severity.CRITICAL
        assert found[0].line == 3

    def test_superglobal_to_system(self, engine, parse):
        found = flows(engine, parse, "<?php\nsystem('ping ' . $_POST['host']);\n", language="php")
        assert [f.rule_id for f in found] == ["TAINT-command-exec"]

    def test_cast_is_clean(self, engine, parse):
        found = flows(engine, parse,
                      "<?php\n"
                      "$id = (int) $_GET['id'];\n"
                      "mysqli_query($conn, \"SELECT * FROM users WHERE id = \" . $id);\n",
                      language="php")
        assert found == []


class TestTypeScriptFlows:
    def test_template_query(self, engine, parse):
        found = flows(engine, parse,
                      'function find(req: Request) {\n'
                      '  const id: string = req.query.id as string;\n'
                      '  db.query(`SELECT * FROM users WHERE id = ${id}`);\n'
                      '}\n',
                      language="typescript")
        assert [f.rule_id for f in found] == ["TAINT-sql-query"]
        assert found[0].severity is Severity.CRITICAL
        assert found[0].line == 3


class TestLanguagesWithoutTaint:
    def test_text_language(self, engine, parse):
        assert flows(engine, parse, "system(params[:cmd])\n", language="ruby") == []
