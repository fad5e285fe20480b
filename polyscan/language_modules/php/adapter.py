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
# Purpose: This module implements the PHP language adapter using the tree-sitter-php
#          grammar, normalizing object and static member access to dotted paths.
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

import tree_sitter_php as tsphp
from tree_sitter import Language, Node

from polyscan.core import SourceFile
from polyscan.language_modules.base_adapter import (
    call_node, member_node, assignment_node, loop_node, function_node, import_node,
    block_node, identifier_node, string_node, template_node, conditional_node,
    unknown_node, strip_quotes, with_role, return_node
)
from polyscan.language_modules.cst import CstNode, NodeKind
from polyscan.language_modules.treesitter_adapter import TreeSitterAdapter, TreeSitterConverter

logger = logging.getLogger(__name__)

PHP_LANG = Language(tsphp.language_php())

# Language constructs that behave like calls
CONSTRUCT_CALLS = {
    'echo_statement': 'echo',
    'print_intrinsic': 'print',
    'include_expression': 'include',
    'include_once_expression': 'include_once',
    'require_expression': 'require',
    'require_once_expression': 'require_once',
    'exit_statement': 'exit',
    'unset_statement': 'unset',
}

CAST_FUNCTIONS = {
    'int': 'intval', 'integer': 'intval',
    'float': 'floatval', 'double': 'floatval', 'real': 'floatval',
    'bool': 'boolval', 'boolean': 'boolval',
}

INTERPOLATED_TYPES = {
    'variable_name', 'member_access_expression', 'subscript_expression',
    'dynamic_variable_name', 'function_call_expression', 'member_call_expression'
}


class PhpConverter(TreeSitterConverter):
    """tree-sitter-php node catalog. Object and static access normalize to dotted paths."""

    HANDLERS = dict({
        'compound_statement': 'block',
        'declaration_list': 'block',
        'colon_block': 'block',
        'function_definition': 'function',
        'method_declaration': 'function',
        'anonymous_function': 'function',
        'anonymous_function_creation_expression': 'function',
        'arrow_function': 'function',
        'function_call_expression': 'function_call',
        'member_call_expression': 'member_call',
        'nullsafe_member_call_expression': 'member_call',
        'scoped_call_expression': 'scoped_call',
        'object_creation_expression': 'object_creation',
        'assignment_expression': 'assignment',
        'reference_assignment_expression': 'assignment',
        'augmented_assignment_expression': 'assignment',
        'binary_expression': 'binary',
        'string': 'string',
        'encapsed_string': 'encapsed_string',
        'heredoc': 'encapsed_string',
        'nowdoc': 'string',
        'shell_command_expression': 'shell_command',
        'variable_name': 'variable',
        'member_access_expression': 'member_access',
        'nullsafe_member_access_expression': 'member_access',
        'class_constant_access_expression': 'class_constant',
        'scoped_property_access_expression': 'class_constant',
        'subscript_expression': 'subscript',
        'if_statement': 'if_statement',
        'else_if_clause': 'else_if',
        'conditional_expression': 'conditional_expression',
        'foreach_statement': 'foreach',
        'for_statement': 'for_loop',
        'while_statement': 'while_loop',
        'do_statement': 'while_loop',
        'return_statement': 'returns',
        'namespace_use_declaration': 'use_declaration',
        'array_element_initializer': 'array_element',
        'cast_expression': 'cast',
        'argument': 'argument',
    }, **{construct: 'construct_call' for construct in CONSTRUCT_CALLS})

    TRANSPARENT = TreeSitterConverter.TRANSPARENT | {'else_clause', 'text_interpolation_expression'}
    SKIPPED = TreeSitterConverter.SKIPPED | {
        'php_tag', 'text_interpolation', 'text', 'namespace_definition', 'attribute_list',
        'visibility_modifier', 'static_modifier', 'final_modifier', 'abstract_modifier',
        'readonly_modifier', 'primitive_type', 'named_type', 'optional_type', 'union_type',
        'declare_statement'
    }
    LITERALS = {'integer', 'float', 'boolean', 'null'}
    IDENTIFIERS = {'name', 'qualified_name'}

    def function(self, node: Node, depth: int, role: str = "") -> CstNode:
        params = []
        for param in self.named(node.child_by_field_name('parameters')):
            name = param.child_by_field_name('name')
            if name is not None:
                params.append(self.text(name))
        body = self.field(node, 'body', depth)
        if body is not None and body.kind is not NodeKind.BLOCK:
            body = block_node(body.span, [return_node(body.span, body)])
        return function_node(self.span(node), self.text(node.child_by_field_name('name')),
                             params, body, role)

    def argument(self, node: Node, depth: int, role: str = "") -> Optional[CstNode]:
        # named arguments keep only their value
        values = self.named(node)
        return self.convert(values[-1], depth, role) if values else None

    def function_call(self, node: Node, depth: int, role: str = "") -> CstNode:
        callee = self.field(node, 'function', depth)
        args = self.arguments(node.child_by_field_name('arguments'), depth)
        return call_node(self.span(node), callee, args, role=role)

    def member_call(self, node: Node, depth: int, role: str = "") -> CstNode:
        obj = self.field(node, 'object', depth)
        name = self.text(node.child_by_field_name('name'))
        callee = member_node(self.span(node), obj, name)
        args = self.arguments(node.child_by_field_name('arguments'), depth)
        return call_node(self.span(node), callee, args, role=role)

    def scoped_call(self, node: Node, depth: int, role: str = "") -> CstNode:
        scope = self.field(node, 'scope', depth)
        name = self.text(node.child_by_field_name('name'))
        callee = member_node(self.span(node), scope, name)
        args = self.arguments(node.child_by_field_name('arguments'), depth)
        return call_node(self.span(node), callee, args, role=role)

    def object_creation(self, node: Node, depth: int, role: str = "") -> CstNode:
        class_name = ""
        args: List[CstNode] = []
        for child in self.named(node):
            if child.type in ('name', 'qualified_name') and not class_name:
                class_name = self.text(child).lstrip('\\')
            elif child.type == 'arguments':
                args = self.arguments(child, depth)
        return call_node(self.span(node), None, args, role=role, constructor=True,
                         callee_path=class_name)

    def construct_call(self, node: Node, depth: int, role: str = "") -> CstNode:
        args = self.convert_all(self.named(node), depth)
        return call_node(self.span(node), None, args, role=role,
                         callee_path=CONSTRUCT_CALLS[node.type])

    def shell_command(self, node: Node, depth: int, role: str = "") -> CstNode:
        command = self.encapsed_string(node, depth)
        return call_node(self.span(node), None, [command], role=role, callee_path='shell_exec')

    def assignment(self, node: Node, depth: int, role: str = "") -> CstNode:
        operator = node.child_by_field_name('operator')
        return assignment_node(self.span(node), self.field(node, 'left', depth),
                               self.field(node, 'right', depth),
                               operator=self.text(operator) if operator is not None else "=",
                               role=role)

    def string(self, node: Node, depth: int, role: str = "") -> CstNode:
        return string_node(self.span(node), self._static_text(node), role)

    def encapsed_string(self, node: Node, depth: int, role: str = "") -> CstNode:
        parts = [self.convert(child, depth) for child in node.named_children
                 if child.type in INTERPOLATED_TYPES]
        parts = [part for part in parts if part is not None]
        if not parts:
            return string_node(self.span(node), self._static_text(node), role)
        return template_node(self.span(node), self._static_text(node), parts, role)

    def _static_text(self, node: Node) -> str:
        fragments = [self.text(child) for child in node.named_children
                     if child.type in ('string_content', 'string_value', 'escape_sequence',
                                       'heredoc_body', 'nowdoc_body')]
        if fragments:
            return ''.join(fragments)
        if node.named_children:
            return ""
        return strip_quotes(self.text(node))

    def variable(self, node: Node, depth: int, role: str = "") -> CstNode:
        return identifier_node(self.span(node), self.text(node), role)

    def member_access(self, node: Node, depth: int, role: str = "") -> CstNode:
        return member_node(self.span(node), self.field(node, 'object', depth),
                           self.text(node.child_by_field_name('name')), role=role)

    def class_constant(self, node: Node, depth: int, role: str = "") -> CstNode:
        children = self.named(node)
        if len(children) < 2:
            return self.unknown(node, depth, role)
        return member_node(self.span(node), self.convert(children[0], depth),
                           self.text(children[-1]), role=role)

    def subscript(self, node: Node, depth: int, role: str = "") -> CstNode:
        children = self.named(node)
        obj = self.convert(children[0], depth) if children else None
        index = self.convert(children[1], depth) if len(children) > 1 else None
        if index is not None and index.kind is NodeKind.STRING_LITERAL:
            return member_node(self.span(node), obj, index.attr('value', ''), computed=True, role=role)
        return member_node(self.span(node), obj, "", computed=True, index=index, role=role)

    def if_statement(self, node: Node, depth: int, role: str = "") -> CstNode:
        alternatives = [self.convert(child, depth) for child in node.children_by_field_name('alternative')]
        alternatives = [alt for alt in alternatives if alt is not None]
        orelse = None
        if len(alternatives) == 1:
            orelse = alternatives[0]
        elif alternatives:
            orelse = block_node(self.span(node), alternatives)
        return conditional_node(self.span(node), self.field(node, 'condition', depth),
                                self.field(node, 'body', depth), orelse, role)

    def else_if(self, node: Node, depth: int, role: str = "") -> CstNode:
        return conditional_node(self.span(node), self.field(node, 'condition', depth),
                                self.field(node, 'body', depth), None, role)

    def conditional_expression(self, node: Node, depth: int, role: str = "") -> CstNode:
        return conditional_node(self.span(node), self.field(node, 'condition', depth),
                                self.field(node, 'body', depth),
                                self.field(node, 'alternative', depth), role, expression=True)

    def foreach(self, node: Node, depth: int, role: str = "") -> CstNode:
        children = self.named(node)
        body = self.field(node, 'body', depth)
        iterable = self.convert(children[0], depth) if children else None
        target = None
        if len(children) > 2:
            value = children[1]
            if value.type == 'pair':
                pair = self.named(value)
                target = unknown_node(self.span(value), 'pair', children=self.convert_all(pair, depth))
            else:
                target = self.convert(value, depth)
        return loop_node(self.span(node), body, target=target, iterable=iterable, role=role)

    def for_loop(self, node: Node, depth: int, role: str = "") -> CstNode:
        body = self.field(node, 'body', depth)
        header = [self.field(node, name, depth) for name in ('initialize', 'update')]
        if any(header):
            body = block_node(self.span(node), [*header, body])
        return loop_node(self.span(node), body, test=self.field(node, 'condition', depth), role=role)

    def use_declaration(self, node: Node, depth: int, role: str = "") -> CstNode:
        names = []
        stack = [node]
        while stack:
            current = stack.pop()
            if current.type == 'qualified_name':
                names.append(self.text(current).lstrip('\\'))
            else:
                stack.extend(current.named_children)
        names.sort()
        return import_node(self.span(node), names[0] if names else "", names, role)

    def array_element(self, node: Node, depth: int, role: str = "") -> Optional[CstNode]:
        children = self.named(node)
        if len(children) < 2:
            return self.convert(children[0], depth, role) if children else None
        key = self.convert(children[0], depth)
        target_path = (key.attr('value') or key.attr('name') or "") if key is not None else ""
        return assignment_node(self.span(node), key, self.convert(children[1], depth),
                               field=True, role=role, target_path=target_path)

    def cast(self, node: Node, depth: int, role: str = "") -> Optional[CstNode]:
        cast_type = self.text(node.child_by_field_name('type')).strip('() ').lower()
        value = self.field(node, 'value', depth)
        function = CAST_FUNCTIONS.get(cast_type)
        if function is None:
            return with_role(value, role)
        return call_node(self.span(node), None, [value], role=role, callee_path=function)


class PhpAdapter(TreeSitterAdapter):
    """PHP adapter using the grammar that handles mixed HTML and PHP."""

    converter_class = PhpConverter

    @property
    def language_names(self) -> List[str]:
        return ['php']

    @property
    def file_extensions(self) -> List[str]:
        return ['.php', '.phtml', '.php3', '.php4', '.php5', '.inc']

    def get_language(self, source: SourceFile) -> Language:
        return PHP_LANG
