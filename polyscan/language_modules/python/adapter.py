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
# Purpose: This module implements the Python language adapter on top of the standard
#          library ast module, with per-statement recovery when a file does not parse.
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

import ast
import logging
from typing import List, Optional, Tuple

from polyscan.core import SourceFile
from polyscan.language_modules.base_adapter import (
    BaseAdapter, program_node, block_node, identifier_node, string_node, literal_node,
    unknown_node, call_node, member_node, assignment_node, binary_node, template_node,
    conditional_node, loop_node, return_node, function_node, import_node, with_role
)
from polyscan.language_modules.cst import (
    CstNode, Span, UNKNOWN_ERROR, UNKNOWN_DEPTH_LIMIT
)

logger = logging.getLogger(__name__)

OPERATORS = {
    ast.Add: '+', ast.Sub: '-', ast.Mult: '*', ast.Div: '/', ast.FloorDiv: '//',
    ast.Mod: '%', ast.Pow: '**', ast.LShift: '<<', ast.RShift: '>>',
    ast.BitOr: '|', ast.BitXor: '^', ast.BitAnd: '&', ast.MatMult: '@',
    ast.And: 'and', ast.Or: 'or',
    ast.Eq: '==', ast.NotEq: '!=', ast.Lt: '<', ast.LtE: '<=', ast.Gt: '>', ast.GtE: '>=',
    ast.Is: 'is', ast.IsNot: 'is not', ast.In: 'in', ast.NotIn: 'not in'
}

# Statements that carry nothing the detectors can use
DROPPED = (ast.Pass, ast.Break, ast.Continue, ast.Global, ast.Nonlocal)

# Lines that continue the previous top-level statement
CONTINUATION_PREFIXES = ('else', 'elif', 'except', 'finally', ')', ']', '}', '#')


class PythonConverter:
    """Converts a stdlib ``ast`` tree into the normalized CST."""

    def __init__(self, max_depth: int):
        self.max_depth = max_depth

    @staticmethod
    def span(node: ast.AST) -> Span:
        line = getattr(node, 'lineno', 1)
        column = getattr(node, 'col_offset', 0)
        end_line = getattr(node, 'end_lineno', None) or line
        end_column = getattr(node, 'end_col_offset', None)
        return Span(line, column, end_line, column if end_column is None else end_column)

    def convert_module(self, module: ast.Module, span: Span) -> CstNode:
        return program_node(span, self.convert_body(module.body, 1))

    def convert_body(self, statements: List[ast.stmt], depth: int) -> List[CstNode]:
        converted = (self.convert(statement, depth) for statement in statements)
        return [node for node in converted if node is not None]

    def body_block(self, statements: List[ast.stmt], depth: int, role: str = "") -> Optional[CstNode]:
        if not statements:
            return None
        first, last = statements[0], statements[-1]
        span = Span(first.lineno, first.col_offset,
                    getattr(last, 'end_lineno', None) or last.lineno,
                    getattr(last, 'end_col_offset', None) or 0)
        return block_node(span, self.convert_body(statements, depth), role)

    def convert(self, node: Optional[ast.AST], depth: int, role: str = "") -> Optional[CstNode]:
        if node is None or isinstance(node, DROPPED):
            return None
        if depth > self.max_depth:
            return unknown_node(self.span(node), type(node).__name__, UNKNOWN_DEPTH_LIMIT, role=role)
        handler = getattr(self, f"convert_{type(node).__name__}", None)
        if handler is not None:
            return handler(node, depth + 1, role)
        return self.generic(node, depth + 1, role)

    def generic(self, node: ast.AST, depth: int, role: str = "") -> CstNode:
        children = []
        for child in ast.iter_child_nodes(node):
            if isinstance(child, (ast.expr_context, ast.operator, ast.boolop, ast.cmpop, ast.unaryop)):
                continue
            converted = self.convert(child, depth)
            if converted is not None:
                children.append(converted)
        return unknown_node(self.span(node), type(node).__name__, children=children, role=role)

    # -- declarations ----------------------------------------------------

    def convert_FunctionDef(self, node, depth, role=""):
        args = node.args
        params = [arg.arg for arg in args.posonlyargs + args.args]
        if args.vararg:
            params.append(args.vararg.arg)
        params.extend(arg.arg for arg in args.kwonlyargs)
        if args.kwarg:
            params.append(args.kwarg.arg)
        return function_node(self.span(node), node.name, params,
                             self.body_block(node.body, depth), role)

    convert_AsyncFunctionDef = convert_FunctionDef

    def convert_Lambda(self, node, depth, role=""):
        params = [arg.arg for arg in node.args.posonlyargs + node.args.args]
        span = self.span(node)
        body = return_node(self.span(node.body), self.convert(node.body, depth))
        return function_node(span, "", params, block_node(span, [body]), role)

    def convert_ClassDef(self, node, depth, role=""):
        return unknown_node(self.span(node), 'ClassDef',
                            children=self.convert_body(node.body, depth), role=role)

    def convert_Import(self, node, depth, role=""):
        names = [alias.name for alias in node.names]
        return import_node(self.span(node), names[0] if names else "", names, role)

    def convert_ImportFrom(self, node, depth, role=""):
        names = [alias.name for alias in node.names]
        return import_node(self.span(node), node.module or "", names, role)

    # -- statements ------------------------------------------------------

    def convert_Expr(self, node, depth, role=""):
        return self.convert(node.value, depth, role)

    def convert_Assign(self, node, depth, role=""):
        span = self.span(node)
        assignments = []
        for target in node.targets:
            if isinstance(target, (ast.Tuple, ast.List)) and isinstance(node.value, (ast.Tuple, ast.List)) \
                    and len(target.elts) == len(node.value.elts):
                for element, value in zip(target.elts, node.value.elts):
                    assignments.append(assignment_node(span, self.convert(element, depth),
                                                       self.convert(value, depth)))
            else:
                assignments.append(assignment_node(span, self.convert(target, depth),
                                                   self.convert(node.value, depth)))
        if len(assignments) == 1:
            return with_role(assignments[0], role)
        return block_node(span, assignments, role)

    def convert_AugAssign(self, node, depth, role=""):
        operator = OPERATORS.get(type(node.op), '') + '='
        return assignment_node(self.span(node), self.convert(node.target, depth),
                               self.convert(node.value, depth), operator=operator, role=role)

    def convert_AnnAssign(self, node, depth, role=""):
        return assignment_node(self.span(node), self.convert(node.target, depth),
                               self.convert(node.value, depth), declaration=True, role=role)

    def convert_NamedExpr(self, node, depth, role=""):
        return assignment_node(self.span(node), self.convert(node.target, depth),
                               self.convert(node.value, depth), operator=':=', role=role)

    def convert_If(self, node, depth, role=""):
        return conditional_node(self.span(node), self.convert(node.test, depth),
                                self.body_block(node.body, depth),
                                self.body_block(node.orelse, depth), role)

    def convert_For(self, node, depth, role=""):
        return loop_node(self.span(node), self.body_block(node.body + node.orelse, depth),
                         target=self.convert(node.target, depth),
                         iterable=self.convert(node.iter, depth), role=role)

    convert_AsyncFor = convert_For

    def convert_While(self, node, depth, role=""):
        return loop_node(self.span(node), self.body_block(node.body + node.orelse, depth),
                         test=self.convert(node.test, depth), role=role)

    def convert_Return(self, node, depth, role=""):
        return return_node(self.span(node), self.convert(node.value, depth), role)

    def convert_With(self, node, depth, role=""):
        span = self.span(node)
        statements = []
        for item in node.items:
            context = self.convert(item.context_expr, depth)
            if item.optional_vars is not None:
                statements.append(assignment_node(self.span(item.context_expr),
                                                  self.convert(item.optional_vars, depth), context))
            elif context is not None:
                statements.append(context)
        statements.extend(self.convert_body(node.body, depth))
        return block_node(span, statements, role)

    convert_AsyncWith = convert_With

    def convert_Try(self, node, depth, role=""):
        statements = self.convert_body(node.body, depth)
        for handler in node.handlers:
            block = self.body_block(handler.body, depth)
            if block is not None:
                statements.append(block)
        for extra in (node.orelse, node.finalbody):
            block = self.body_block(extra, depth)
            if block is not None:
                statements.append(block)
        return block_node(self.span(node), statements, role)

    convert_TryStar = convert_Try

    # -- expressions -----------------------------------------------------

    def convert_Call(self, node, depth, role=""):
        args = [self.convert(arg.value if isinstance(arg, ast.Starred) else arg, depth)
                for arg in node.args]
        kwargs = [(keyword.arg or '**', self.convert(keyword.value, depth))
                  for keyword in node.keywords]
        return call_node(self.span(node), self.convert(node.func, depth), args, kwargs, role)

    def convert_Attribute(self, node, depth, role=""):
        return member_node(self.span(node), self.convert(node.value, depth), node.attr, role=role)

    def convert_Subscript(self, node, depth, role=""):
        index = node.slice
        if isinstance(index, ast.Constant) and isinstance(index.value, str):
            return member_node(self.span(node), self.convert(node.value, depth), index.value,
                               computed=True, role=role)
        return member_node(self.span(node), self.convert(node.value, depth), "",
                           computed=True, index=self.convert(index, depth), role=role)

    def convert_BinOp(self, node, depth, role=""):
        return binary_node(self.span(node), self.convert(node.left, depth),
                           OPERATORS.get(type(node.op), ''), self.convert(node.right, depth), role)

    def convert_BoolOp(self, node, depth, role=""):
        operator = OPERATORS.get(type(node.op), '')
        result = self.convert(node.values[0], depth)
        for value in node.values[1:]:
            result = binary_node(self.span(node), result, operator, self.convert(value, depth))
        return with_role(result, role)

    def convert_Compare(self, node, depth, role=""):
        result = self.convert(node.left, depth)
        for op, comparator in zip(node.ops, node.comparators):
            result = binary_node(self.span(node), result, OPERATORS.get(type(op), ''),
                                 self.convert(comparator, depth))
        return with_role(result, role)

    def convert_JoinedStr(self, node, depth, role=""):
        static_parts = []
        parts = []
        for value in node.values:
            if isinstance(value, ast.Constant) and isinstance(value.value, str):
                static_parts.append(value.value)
            elif isinstance(value, ast.FormattedValue):
                parts.append(self.convert(value.value, depth))
        return template_node(self.span(node), ''.join(static_parts), parts, role)

    def convert_Constant(self, node, depth, role=""):
        if isinstance(node.value, str):
            return string_node(self.span(node), node.value, role)
        if isinstance(node.value, bytes):
            return string_node(self.span(node), node.value.decode('latin-1'), role)
        return literal_node(self.span(node), repr(node.value), role)

    def convert_Name(self, node, depth, role=""):
        return identifier_node(self.span(node), node.id, role)

    def convert_IfExp(self, node, depth, role=""):
        return conditional_node(self.span(node), self.convert(node.test, depth),
                                self.convert(node.body, depth), self.convert(node.orelse, depth),
                                role, expression=True)

    def convert_Await(self, node, depth, role=""):
        return self.convert(node.value, depth, role)

    def convert_Starred(self, node, depth, role=""):
        return self.convert(node.value, depth, role)

    def convert_Dict(self, node, depth, role=""):
        children = []
        for key, value in zip(node.keys, node.values):
            converted = self.convert(value, depth)
            if isinstance(key, ast.Constant) and isinstance(key.value, str):
                children.append(assignment_node(self.span(key), string_node(self.span(key), key.value),
                                                converted, field=True, target_path=key.value))
            else:
                children.append(converted)
        return unknown_node(self.span(node), 'Dict', children=children, role=role)


class PythonAdapter(BaseAdapter):
    """Python adapter backed by the standard library ``ast`` module."""

    @property
    def language_names(self) -> List[str]:
        return ['python']

    @property
    def file_extensions(self) -> List[str]:
        return ['.py', '.pyw']

    def build_tree(self, source: SourceFile) -> CstNode:
        converter = PythonConverter(self.max_depth)
        whole = Span(1, 0, max(1, source.line_count), 0)
        try:
            module = ast.parse(source.text, filename=source.path)
            return converter.convert_module(module, whole)
        except (SyntaxError, ValueError, RecursionError) as e:
            logger.debug(f"Python parse failed for {source.path}: {str(e)}; recovering per statement")

        statements = []
        for start_line, chunk in split_top_level(source.text):
            end_line = start_line + chunk.count('\n')
            try:
                module = ast.parse(chunk)
                ast.increment_lineno(module, start_line - 1)
                statements.extend(converter.convert_body(module.body, 1))
            except (SyntaxError, ValueError, RecursionError):
                statements.append(unknown_node(Span(start_line, 0, end_line, 0), 'chunk', UNKNOWN_ERROR))
        return program_node(whole, statements)


def split_top_level(text: str) -> List[Tuple[int, str]]:
    """
    Split source into top-level statements so each can be parsed alone.

    A chunk starts at any non-indented line that does not continue the
    previous statement (``else``, ``except``, closing brackets) and does not
    follow a decorator.
    """
    chunks: List[Tuple[int, List[str]]] = []
    previous = ""
    for number, line in enumerate(text.split('\n'), start=1):
        starts_chunk = (
            bool(line) and not line[0].isspace()
            and not line.startswith(CONTINUATION_PREFIXES)
            and not previous.startswith('@')
        )
        if starts_chunk or not chunks:
            chunks.append((number, [line]))
        else:
            chunks[-1][1].append(line)
        if line.strip():
            previous = line
    return [(start, '\n'.join(lines)) for start, lines in chunks]
