"""Tests for the language adapters and the normalized tree."""

from polyscan.language_modules.cst import NodeKind, Span, count_degraded, dotted_path, make_node


def find(tree, kind, **attrs):
    """All nodes of ``kind`` whose attributes match ``attrs``."""
    return [
        node for node in tree.walk()
        if node.kind is kind and all(node.attr(name) == value for name, value in attrs.items())
    ]


class TestPythonAdapter:
    """stdlib ast backed conversion."""

    def test_call_with_keywords(self, parse):
        _, result = parse('cursor.execute("SELECT 1" + q, timeout=5)\n')
        assert result.degraded is None
        call = find(result.tree, NodeKind.CALL_EXPR, callee="cursor.execute")[0]
        assert call.attr('name') == "execute"
        assert [arg.kind for arg in call.arguments] == [NodeKind.BINARY_EXPR]
        timeout = call.keyword("timeout")
        assert timeout.kind is NodeKind.LITERAL
        assert timeout.attr('value') == "5"

    def test_string_subscript_becomes_member_path(self, parse):
        _, result = parse('uid = request.args["id"]\n')
        assignment = find(result.tree, NodeKind.ASSIGNMENT)[0]
        assert assignment.attr('target') == "uid"
        assert dotted_path(assignment.child('value')) == "request.args.id"

    def test_function_params_and_body(self, parse):
        _, result = parse("def handler(self, name, *rest, **extra):\n    return name\n")
        function = find(result.tree, NodeKind.FUNCTION_DECL)[0]
        assert function.attr('name') == "handler"
        assert function.attr('params') == ("self", "name", "rest", "extra")
        assert find(function, NodeKind.RETURN)

    def test_fstring_is_template(self, parse):
        _, result = parse('query = f"SELECT * FROM t WHERE id = {uid}"\n')
        template = find(result.tree, NodeKind.TEMPLATE_LITERAL)[0]
        assert template.attr('value') == "SELECT * FROM t WHERE id = "
        assert [part.attr('name') for part in template.children_with_role('part')] == ["uid"]

    def test_spans_are_one_based_lines(self, parse):
        _, result = parse("x = 1\n\nos.system(cmd)\n")
        call = find(result.tree, NodeKind.CALL_EXPR)[0]
        assert call.span.start_line == 3
        assert call.span.start_column == 0

    def test_malformed_input_degrades(self, parse):
        """Unparsable text still yields a tree with an error region."""
        _, result = parse("{{{malformed syntax###\n")
        assert result.tree.kind is NodeKind.PROGRAM
        assert result.is_degraded
        assert result.degraded.reason == "error"
        assert result.degraded.first_error_line == 1

    def test_recovery_keeps_valid_statements(self, parse):
        _, result = parse("x = eval(data)\ndef broken(:\n    pass\n")
        assert result.is_degraded
        assert result.degraded.first_error_line == 2
        assert find(result.tree, NodeKind.CALL_EXPR, callee="eval")


class TestJavaScriptAdapter:
    """tree-sitter backed conversion."""

    def test_declaration_and_member_access(self, parse):
        _, result = parse("const id = req.query.id;\n", language="javascript")
        assert result.degraded is None
        assignment = find(result.tree, NodeKind.ASSIGNMENT, target="id")[0]
        assert assignment.attr('declaration') is True
        assert dotted_path(assignment.child('value')) == "req.query.id"

    def test_call_arguments(self, parse):
        _, result = parse('db.query("SELECT * FROM t WHERE id=" + id);\n', language="javascript")
        call = find(result.tree, NodeKind.CALL_EXPR, callee="db.query")[0]
        binary = call.arguments[0]
        assert binary.kind is NodeKind.BINARY_EXPR
        assert binary.attr('operator') == "+"
        literal = binary.child('left')
        assert literal.attr('value') == "SELECT * FROM t WHERE id="

    def test_template_literal_parts(self, parse):
        _, result = parse("const q = `SELECT ${name}`;\n", language="javascript")
        template = find(result.tree, NodeKind.TEMPLATE_LITERAL)[0]
        assert [part.attr('name') for part in template.children_with_role('part')] == ["name"]

    def test_property_assignment_target(self, parse):
        _, result = parse("el.innerHTML = msg;\n", language="javascript")
        assert find(result.tree, NodeKind.ASSIGNMENT, target="el.innerHTML")


JAVA_DAO = (
    'class UserDao {\n'
    '    void find(HttpServletRequest request, Statement stmt) {\n'
    '        String id = request.getParameter("id");\n'
    '        this.last = id;\n'
    '        stmt.executeQuery("SELECT * FROM users WHERE id = " + id);\n'
    '    }\n'
    '}\n'
)


class TestJavaAdapter:
    def test_method_params(self, parse):
        _, result = parse(JAVA_DAO, language="java")
        assert result.degraded is None
        method = find(result.tree, NodeKind.FUNCTION_DECL)[0]
        assert method.attr('name') == "find"
        assert method.attr('params') == ("request", "stmt")

    def test_local_declaration(self, parse):
        _, result = parse(JAVA_DAO, language="java")
        assignment = find(result.tree, NodeKind.ASSIGNMENT, target="id")[0]
        assert assignment.attr('declaration') is True
        call = assignment.child('value')
        assert call.attr('callee') == "request.getParameter"
        assert call.attr('name') == "getParameter"

    def test_field_access_target(self, parse):
        _, result = parse(JAVA_DAO, language="java")
        assert find(result.tree, NodeKind.ASSIGNMENT, target="this.last")

    def test_invocation_arguments(self, parse):
        _, result = parse(JAVA_DAO, language="java")
        call = find(result.tree, NodeKind.CALL_EXPR, callee="stmt.executeQuery")[0]
        binary = call.arguments[0]
        assert binary.attr('operator') == "+"
        assert binary.child('left').attr('value') == "SELECT * FROM users WHERE id = "
        assert call.span.start_line == 5

    def test_constructor_call(self, parse):
        _, result = parse('class A { void run(String cmd) { new ProcessBuilder(cmd).start(); } }\n',
                          language="java")
        assert find(result.tree, NodeKind.CALL_EXPR, callee="ProcessBuilder", constructor=True)

    def test_malformed_input_degrades(self, parse):
        _, result = parse("{{{malformed syntax###\n", language="java")
        assert result.tree.kind is NodeKind.PROGRAM
        assert result.is_degraded


GO_HANDLER = (
    'package main\n'
    '\n'
    'func handler(w http.ResponseWriter, r *http.Request) {\n'
    '\tid := r.URL.Query().Get("id")\n'
    '\trows, err := db.Query("SELECT * FROM users WHERE id = " + id)\n'
    '}\n'
)


class TestGoAdapter:
    def test_function_params(self, parse):
        _, result = parse(GO_HANDLER, language="go")
        assert result.degraded is None
        function = find(result.tree, NodeKind.FUNCTION_DECL)[0]
        assert function.attr('name') == "handler"
        assert function.attr('params') == ("w", "r")

    def test_short_declaration_and_chained_call(self, parse):
        _, result = parse(GO_HANDLER, language="go")
        assignment = find(result.tree, NodeKind.ASSIGNMENT, target="id")[0]
        assert assignment.attr('declaration') is True
        assert assignment.child('value').attr('callee') == "r.URL.Query().Get"

    def test_multiple_targets_share_the_call(self, parse):
        _, result = parse(GO_HANDLER, language="go")
        call = find(result.tree, NodeKind.CALL_EXPR, callee="db.Query")[0]
        assert call.arguments[0].kind is NodeKind.BINARY_EXPR
        assert call.span.start_line == 5

    def test_selector_is_member_path(self, parse):
        _, result = parse('package main\n\nvar host = r.URL.Host\n', language="go")
        assignment = find(result.tree, NodeKind.ASSIGNMENT, target="host")[0]
        assert dotted_path(assignment.child('value')) == "r.URL.Host"

    def test_malformed_input_degrades(self, parse):
        _, result = parse("{{{malformed syntax###\n", language="go")
        assert result.is_degraded


class TestPhpAdapter:
    def test_superglobal_subscript_is_member_path(self, parse):
        _, result = parse("<?php\n$id = $_GET['id'];\n", language="php")
        assert result.degraded is None
        assignment = find(result.tree, NodeKind.ASSIGNMENT, target="$id")[0]
        assert dotted_path(assignment.child('value')) == "$_GET.id"

    def test_function_and_method_calls(self, parse):
        _, result = parse("<?php\nmysqli_query($conn, $sql);\n$rows = $pdo->query($sql);\n",
                          language="php")
        call = find(result.tree, NodeKind.CALL_EXPR, callee="mysqli_query")[0]
        assert [arg.attr('name') for arg in call.arguments] == ["$conn", "$sql"]
        assert find(result.tree, NodeKind.CALL_EXPR, callee="$pdo.query")

    def test_echo_is_a_call(self, parse):
        _, result = parse("<?php\necho $name;\n", language="php")
        echo = find(result.tree, NodeKind.CALL_EXPR, callee="echo")[0]
        assert echo.arguments[0].attr('name') == "$name"

    def test_interpolated_string_is_template(self, parse):
        _, result = parse('<?php\n$greeting = "Hello $name";\n', language="php")
        template = find(result.tree, NodeKind.TEMPLATE_LITERAL)[0]
        assert [part.attr('name') for part in template.children_with_role('part')] == ["$name"]
        assert template.attr('value').startswith("Hello")

    def test_int_cast_becomes_intval(self, parse):
        _, result = parse("<?php\n$page = (int) $_GET['page'];\n", language="php")
        assert find(result.tree, NodeKind.CALL_EXPR, callee="intval")

    def test_function_params(self, parse):
        _, result = parse("<?php\nfunction show($title, $body) { return $title; }\n", language="php")
        function = find(result.tree, NodeKind.FUNCTION_DECL)[0]
        assert function.attr('name') == "show"
        assert function.attr('params') == ("$title", "$body")


TS_HANDLER = (
    'function find(req: Request, limit: number) {\n'
    '  const id: string = req.query.id as string;\n'
    '  db.query(`SELECT * FROM users WHERE id = ${id}`);\n'
    '}\n'
)


class TestTypeScriptAdapter:
    """The JavaScript catalog with type syntax stripped."""

    def test_typed_params(self, parse):
        _, result = parse(TS_HANDLER, language="typescript")
        assert result.degraded is None
        function = find(result.tree, NodeKind.FUNCTION_DECL)[0]
        assert function.attr('params') == ("req", "limit")

    def test_as_expression_is_transparent(self, parse):
        _, result = parse(TS_HANDLER, language="typescript")
        assignment = find(result.tree, NodeKind.ASSIGNMENT, target="id")[0]
        assert assignment.attr('declaration') is True
        assert dotted_path(assignment.child('value')) == "req.query.id"

    def test_template_argument(self, parse):
        _, result = parse(TS_HANDLER, language="typescript")
        call = find(result.tree, NodeKind.CALL_EXPR, callee="db.query")[0]
        template = call.arguments[0]
        assert template.kind is NodeKind.TEMPLATE_LITERAL
        assert [part.attr('name') for part in template.children_with_role('part')] == ["id"]

    def test_non_null_assertion(self, parse):
        _, result = parse("el.innerHTML = params.get('q')!;\n", language="typescript")
        assignment = find(result.tree, NodeKind.ASSIGNMENT, target="el.innerHTML")[0]
        assert assignment.child('value').attr('callee') == "params.get"


class TestFallbacks:
    """Languages without a grammar and registry lookups."""

    def test_text_adapter_marks_no_grammar(self, parse):
        _, result = parse("puts 'hello'\n", language="ruby", path="app.rb")
        assert result.is_degraded
        assert result.degraded.reason == "no_grammar"

    def test_unknown_language_falls_back(self, registry):
        assert registry.get_adapter("cobol") is registry.get_adapter("text")

    def test_registered_languages(self, registry):
        languages = registry.get_supported_languages()
        for language in ("python", "javascript", "typescript", "java", "go", "php"):
            assert language in languages


class TestCstHelpers:
    def test_count_degraded_ignores_unsupported(self):
        span = Span.point(1)
        tree = make_node(NodeKind.PROGRAM, span, [
            make_node(NodeKind.UNKNOWN, span, reason="unsupported"),
            make_node(NodeKind.UNKNOWN, Span.point(4), reason="error"),
        ])
        assert count_degraded(tree) == (1, 4)

    def test_make_node_drops_missing_children(self):
        node = make_node(NodeKind.BLOCK, Span.point(1), [None, make_node(NodeKind.RETURN, Span.point(1))])
        assert len(node.children) == 1
