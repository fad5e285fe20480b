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
# Purpose: This module implements the Go language adapter using the tree-sitter-go
#          grammar.
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

import logging
from typing import List, Optional

import tree_sitter_go as tsgo
from tree_sitter import Language, Node

from polyscan.core import SourceFile
from polyscan.language_modules.base_adapter import (
    call_node, member_node, assignment_node, loop_node, function_node, import_node,
    block_node, unknown_node, conditional_node, strip_quotes, with_role
)
from polyscan.language_modules.cst import CstNode, NodeKind
from polyscan.language_modules.treesitter_adapter import TreeSitterAdapter, TreeSitterConverter

logger = logging.getLogger(__name__)

GO_LANG = Language(tsgo.language())


class GoConverter(TreeSitterConverter):
    """tree-sitter-go node catalog."""

    HANDLERS = {
        'block': 'block',
        'statement_list': 'block',
        'function_declaration': 'function',
        'method_declaration': 'function',
        'func_literal': 'function',
        'call_expression': 'call',
        'type_conversion_expression': 'type_conversion',
        'selector_expression': 'selector',
        'index_expression': 'index',
        'short_var_declaration': 'multi_assignment',
        'assignment_statement': 'multi_assignment',
        'var_spec': 'var_spec',
        'const_spec': 'var_spec',
        'var_declaration': 'block',
        'const_declaration': 'block',
        'binary_expression': 'binary',
        'interpreted_string_literal': 'string',
        'raw_string_literal': 'string',
        'if_statement': 'if_statement',
        'for_statement': 'for_loop',
        'return_statement': 'returns',
        'import_declaration': 'imports',
        'keyed_element': 'keyed_element',
        'expression_case': 'block',
        'default_case': 'block',
    }

    TRANSPARENT = TreeSitterConverter.TRANSPARENT | {
        'go_statement', 'defer_statement', 'literal_element'
    }
    SKIPPED = TreeSitterConverter.SKIPPED | {
        'package_clause', 'type_identifier', 'pointer_type', 'qualified_type', 'slice_type',
        'map_type', 'array_type', 'function_type', 'interface_type', 'struct_type',
        'type_declaration', 'parameter_list'
    }
    LITERALS = {'int_literal', 'float_literal', 'imaginary_literal', 'rune_literal',
                'true', 'false', 'nil', 'iota'}
    IDENTIFIERS = {'identifier', 'field_identifier', 'package_identifier'}

    def function(self, node: Node, depth: int, role: str = "") -> CstNode:
        params = []
        receiver = node.child_by_field_name('receiver')
        if receiver is not None:
            params.extend(self.param_names(receiver))
        params.extend(self.param_names(node.child_by_field_name('parameters')))
        name = self.text(node.child_by_field_name('name'))
        return function_node(self.span(node), name, params, self.field(node, 'body', depth), role)

    def param_names(self, params: Optional[Node]) -> List[str]:
        names = []
        if params is None:
            return names
        for param in params.named_children:
            names.extend(self.text(name) for name in param.children_by_field_name('name'))
        return names

    def call(self, node: Node, depth: int, role: str = "") -> CstNode:
        function = node.child_by_field_name('function')
        args = self.arguments(node.child_by_field_name('arguments'), depth)
        if function is not None and function.type in self.SKIPPED:
            # []byte(x) parsed as a call on a type
            return call_node(self.span(node), None, args, role=role, callee_path=self.text(function))
        return call_node(self.span(node), self.convert(function, depth), args, role=role)

    def type_conversion(self, node: Node, depth: int, role: str = "") -> CstNode:
        operand = self.field(node, 'operand', depth)
        return call_node(self.span(node), None, [operand], role=role,
                         callee_path=self.text(node.child_by_field_name('type')))

    def selector(self, node: Node, depth: int, role: str = "") -> CstNode:
        return member_node(self.span(node), self.field(node, 'operand', depth),
                           self.text(node.child_by_field_name('field')), role=role)

    def index(self, node: Node, depth: int, role: str = "") -> CstNode:
        obj = self.field(node, 'operand', depth)
        index = self.field(node, 'index', depth)
        if index is not None and index.kind is NodeKind.STRING_LITERAL:
            return member_node(self.span(node), obj, index.attr('value', ''), computed=True, role=role)
        return member_node(self.span(node), obj, "", computed=True, index=index, role=role)

    def multi_assignment(self, node: Node, depth: int, role: str = "") -> CstNode:
        left = self.named(node.child_by_field_name('left'))
        right = self.named(node.child_by_field_name('right'))
        operator_node = node.child_by_field_name('operator')
        operator = self.text(operator_node) if operator_node is not None else ":="
        declaration = node.type == 'short_var_declaration'
        span = self.span(node)

        if len(left) == len(right):
            pairs = [assignment_node(span, self.convert(target, depth), self.convert(value, depth),
                                     operator=operator, declaration=declaration)
                     for target, value in zip(left, right)]
            if len(pairs) == 1:
                return with_role(pairs[0], role)
            return block_node(span, pairs, role)

        # rows, err := db.Query(...): every target receives the call result
        targets = unknown_node(span, 'expression_list', children=self.convert_all(left, depth))
        values = self.convert_all(right, depth)
        value = values[0] if len(values) == 1 else unknown_node(span, 'expression_list', children=values)
        return assignment_node(span, targets, value, operator=operator,
                               declaration=declaration, role=role, target_path="")

    def var_spec(self, node: Node, depth: int, role: str = "") -> CstNode:
        names = node.children_by_field_name('name')
        value_list = node.child_by_field_name('value')
        values = self.named(value_list) if value_list is not None else []
        span = self.span(node)
        if len(names) == 1:
            value = self.convert(values[0], depth) if values else None
            return assignment_node(span, self.convert(names[0], depth), value,
                                   declaration=True, role=role)
        pairs = []
        for position, name in enumerate(names):
            value = self.convert(values[position], depth) if position < len(values) else None
            pairs.append(assignment_node(span, self.convert(name, depth), value, declaration=True))
        return block_node(span, pairs, role)

    def if_statement(self, node: Node, depth: int, role: str = "") -> CstNode:
        conditional = conditional_node(self.span(node),
                                       self.field(node, 'condition', depth),
                                       self.field(node, 'consequence', depth),
                                       self.field(node, 'alternative', depth))
        initializer = self.field(node, 'initializer', depth)
        if initializer is None:
            return with_role(conditional, role)
        return block_node(self.span(node), [initializer, conditional], role)

    def for_loop(self, node: Node, depth: int, role: str = "") -> CstNode:
        body = self.field(node, 'body', depth)
        for child in self.named(node):
            if child.type == 'range_clause':
                return loop_node(self.span(node), body,
                                 target=self.field(child, 'left', depth),
                                 iterable=self.field(child, 'right', depth), role=role)
            if child.type == 'for_clause':
                header = [self.field(child, name, depth) for name in ('initializer', 'update')]
                if any(header):
                    body = block_node(self.span(node), [*header, body])
                return loop_node(self.span(node), body,
                                 test=self.field(child, 'condition', depth), role=role)
        condition = [c for c in self.named(node) if c.type != 'block']
        test = self.convert(condition[0], depth) if condition else None
        return loop_node(self.span(node), body, test=test, role=role)

    def imports(self, node: Node, depth: int, role: str = "") -> CstNode:
        paths = []
        stack = [node]
        while stack:
            current = stack.pop()
            if current.type == 'import_spec':
                paths.append(strip_quotes(self.text(current.child_by_field_name('path'))))
            else:
                stack.extend(current.named_children)
        paths.sort()
        return import_node(self.span(node), paths[0] if paths else "", paths, role)

    def keyed_element(self, node: Node, depth: int, role: str = "") -> CstNode:
        children = self.named(node)
        key = self.convert(children[0], depth) if children else None
        value = self.convert(children[1], depth) if len(children) > 1 else None
        target_path = (key.attr('name') or key.attr('value') or "") if key is not None else ""
        return assignment_node(self.span(node), key, value, field=True, role=role,
                               target_path=target_path)


class GoAdapter(TreeSitterAdapter):
    """Go adapter."""

    converter_class = GoConverter

    @property
    def language_names(self) -> List[str]:
        return ['go']

    @property
    def file_extensions(self) -> List[str]:
        return ['.go']

    def get_language(self, source: SourceFile) -> Language:
        return GO_LANG
