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
# Purpose: This module implements the Java language adapter using the tree-sitter-java
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
import re
from typing import List, Optional

import tree_sitter_java as tsjava
from tree_sitter import Language, Node

from polyscan.core import SourceFile
from polyscan.language_modules.base_adapter import (
    call_node, member_node, assignment_node, loop_node, function_node, import_node,
    block_node, with_role, return_node, identifier_node
)
from polyscan.language_modules.cst import CstNode, NodeKind
from polyscan.language_modules.treesitter_adapter import TreeSitterAdapter, TreeSitterConverter

logger = logging.getLogger(__name__)

JAVA_LANG = Language(tsjava.language())

GENERIC_ARGS = re.compile(r'<.*>$')


class JavaConverter(TreeSitterConverter):
    """tree-sitter-java node catalog."""

    HANDLERS = {
        'block': 'block',
        'class_body': 'block',
        'interface_body': 'block',
        'enum_body': 'block',
        'constructor_body': 'block',
        'method_declaration': 'method',
        'constructor_declaration': 'method',
        'lambda_expression': 'lambda_function',
        'method_invocation': 'invocation',
        'object_creation_expression': 'object_creation',
        'local_variable_declaration': 'variable_declaration',
        'field_declaration': 'field_declaration',
        'variable_declarator': 'declarator',
        'assignment_expression': 'assignment',
        'binary_expression': 'binary',
        'string_literal': 'string',
        'text_block': 'string',
        'field_access': 'field_access',
        'array_access': 'array_access',
        'if_statement': 'if_statement',
        'ternary_expression': 'ternary',
        'for_statement': 'for_loop',
        'enhanced_for_statement': 'enhanced_for',
        'while_statement': 'while_loop',
        'do_statement': 'while_loop',
        'return_statement': 'returns',
        'import_declaration': 'import_declaration',
        'cast_expression': 'cast',
    }

    TRANSPARENT = TreeSitterConverter.TRANSPARENT | {'element_value_pair'}
    SKIPPED = TreeSitterConverter.SKIPPED | {
        'modifiers', 'marker_annotation', 'annotation', 'package_declaration',
        'type_identifier', 'generic_type', 'integral_type', 'floating_point_type',
        'boolean_type', 'void_type', 'array_type', 'scoped_type_identifier',
        'type_parameters', 'throws', 'superclass', 'super_interfaces', 'dimensions'
    }
    LITERALS = {
        'decimal_integer_literal', 'hex_integer_literal', 'octal_integer_literal',
        'binary_integer_literal', 'decimal_floating_point_literal', 'true', 'false',
        'null_literal', 'character_literal'
    }
    IDENTIFIERS = {'identifier', 'this', 'super'}

    def method(self, node: Node, depth: int, role: str = "") -> CstNode:
        params = self.param_names(node.child_by_field_name('parameters'))
        return function_node(self.span(node), self.text(node.child_by_field_name('name')),
                             params, self.field(node, 'body', depth), role)

    def lambda_function(self, node: Node, depth: int, role: str = "") -> CstNode:
        params_node = node.child_by_field_name('parameters')
        if params_node is not None and params_node.type == 'identifier':
            params = [self.text(params_node)]
        else:
            params = self.param_names(params_node)
        body = self.field(node, 'body', depth)
        if body is not None and body.kind is not NodeKind.BLOCK:
            body = block_node(body.span, [return_node(body.span, body)])
        return function_node(self.span(node), "", params, body, role)

    def param_names(self, params: Optional[Node]) -> List[str]:
        names = []
        for param in self.named(params):
            if param.type == 'identifier':
                names.append(self.text(param))
                continue
            name = param.child_by_field_name('name')
            if name is None:
                # spread_parameter: the declarator holds the name
                for child in param.named_children:
                    if child.type == 'variable_declarator':
                        name = child.child_by_field_name('name')
            if name is not None:
                names.append(self.text(name))
        return names

    def invocation(self, node: Node, depth: int, role: str = "") -> CstNode:
        obj = self.field(node, 'object', depth)
        name = self.text(node.child_by_field_name('name'))
        args = self.arguments(node.child_by_field_name('arguments'), depth)
        if obj is not None:
            callee = member_node(self.span(node), obj, name)
        else:
            callee = identifier_node(self.span(node.child_by_field_name('name')), name)
        return call_node(self.span(node), callee, args, role=role)

    def object_creation(self, node: Node, depth: int, role: str = "") -> CstNode:
        type_name = GENERIC_ARGS.sub('', self.text(node.child_by_field_name('type')))
        args = self.arguments(node.child_by_field_name('arguments'), depth)
        return call_node(self.span(node), None, args, role=role, constructor=True,
                         callee_path=type_name)

    def variable_declaration(self, node: Node, depth: int, role: str = "") -> Optional[CstNode]:
        declarators = [self.convert(child, depth) for child in node.children_by_field_name('declarator')]
        declarators = [d for d in declarators if d is not None]
        if len(declarators) == 1:
            return with_role(declarators[0], role)
        return block_node(self.span(node), declarators, role)

    def field_declaration(self, node: Node, depth: int, role: str = "") -> Optional[CstNode]:
        converted = self.variable_declaration(node, depth, role)
        if converted is not None and converted.kind is NodeKind.ASSIGNMENT:
            return assignment_node(converted.span, converted.child('target'), converted.child('value'),
                                   declaration=True, field=True, role=role)
        return converted

    def declarator(self, node: Node, depth: int, role: str = "") -> CstNode:
        return assignment_node(self.span(node), self.field(node, 'name', depth),
                               self.field(node, 'value', depth), declaration=True, role=role)

    def assignment(self, node: Node, depth: int, role: str = "") -> CstNode:
        operator = node.child_by_field_name('operator')
        return assignment_node(self.span(node), self.field(node, 'left', depth),
                               self.field(node, 'right', depth),
                               operator=self.text(operator) if operator is not None else "=",
                               role=role)

    def field_access(self, node: Node, depth: int, role: str = "") -> CstNode:
        return member_node(self.span(node), self.field(node, 'object', depth),
                           self.text(node.child_by_field_name('field')), role=role)

    def array_access(self, node: Node, depth: int, role: str = "") -> CstNode:
        return member_node(self.span(node), self.field(node, 'array', depth), "",
                           computed=True, index=self.field(node, 'index', depth), role=role)

    def for_loop(self, node: Node, depth: int, role: str = "") -> CstNode:
        header = [self.convert(child, depth) for child in node.children_by_field_name('init')]
        header.extend(self.convert(child, depth) for child in node.children_by_field_name('update'))
        body = self.field(node, 'body', depth)
        if any(header):
            body = block_node(self.span(node), [*header, body])
        return loop_node(self.span(node), body, test=self.field(node, 'condition', depth), role=role)

    def enhanced_for(self, node: Node, depth: int, role: str = "") -> CstNode:
        return loop_node(self.span(node), self.field(node, 'body', depth),
                         target=self.field(node, 'name', depth),
                         iterable=self.field(node, 'value', depth), role=role)

    def import_declaration(self, node: Node, depth: int, role: str = "") -> CstNode:
        names = [self.text(child) for child in node.named_children
                 if child.type in ('scoped_identifier', 'identifier')]
        module = names[0] if names else ""
        return import_node(self.span(node), module, [module.rsplit('.', 1)[-1]] if module else [], role)

    def cast(self, node: Node, depth: int, role: str = "") -> Optional[CstNode]:
        return self.field(node, 'value', depth, role)


class JavaAdapter(TreeSitterAdapter):
    """Java adapter."""

    converter_class = JavaConverter

    @property
    def language_names(self) -> List[str]:
        return ['java']

    @property
    def file_extensions(self) -> List[str]:
        return ['.java']

    def get_language(self, source: SourceFile) -> Language:
        return JAVA_LANG
