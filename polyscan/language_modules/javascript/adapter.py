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
# Purpose: This module implements the JavaScript and JSX language adapter using the
#          tree-sitter-javascript grammar.
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

import tree_sitter_javascript as tsjs
from tree_sitter import Language, Node

from polyscan.core import SourceFile
from polyscan.language_modules.base_adapter import (
    call_node, member_node, assignment_node, template_node, loop_node, return_node,
    function_node, import_node, block_node, identifier_node, unknown_node, strip_quotes,
    with_role
)
from polyscan.language_modules.cst import CstNode, NodeKind
from polyscan.language_modules.treesitter_adapter import TreeSitterAdapter, TreeSitterConverter

logger = logging.getLogger(__name__)

JS_LANG = Language(tsjs.language())


class JavaScriptConverter(TreeSitterConverter):
    """tree-sitter-javascript node catalog."""

    HANDLERS = {
        'program': 'block',
        'statement_block': 'block',
        'class_body': 'block',
        'lexical_declaration': 'declaration',
        'variable_declaration': 'declaration',
        'variable_declarator': 'declarator',
        'function_declaration': 'function',
        'generator_function_declaration': 'function',
        'function_expression': 'function',
        'function': 'function',
        'generator_function': 'function',
        'arrow_function': 'function',
        'method_definition': 'function',
        'call_expression': 'call',
        'new_expression': 'new_call',
        'assignment_expression': 'assignment',
        'augmented_assignment_expression': 'assignment',
        'field_definition': 'field_definition',
        'public_field_definition': 'field_definition',
        'binary_expression': 'binary',
        'string': 'string',
        'template_string': 'template',
        'member_expression': 'member',
        'subscript_expression': 'subscript',
        'if_statement': 'if_statement',
        'ternary_expression': 'ternary',
        'for_statement': 'for_loop',
        'for_in_statement': 'for_in_loop',
        'while_statement': 'while_loop',
        'do_statement': 'while_loop',
        'return_statement': 'returns',
        'import_statement': 'import_statement',
        'pair': 'pair',
        'pair_pattern': 'pair_pattern',
        'assignment_pattern': 'assignment_pattern',
        'jsx_attribute': 'jsx_attribute',
    }

    TRANSPARENT = TreeSitterConverter.TRANSPARENT | {
        'await_expression', 'else_clause', 'jsx_expression', 'spread_element',
        'export_statement', 'sequence_expression', 'decorator'
    }
    SKIPPED = TreeSitterConverter.SKIPPED | {'hash_bang_line', 'empty_statement', 'regex'}
    LITERALS = {'number', 'true', 'false', 'null', 'undefined'}
    IDENTIFIERS = {
        'identifier', 'property_identifier', 'shorthand_property_identifier',
        'shorthand_property_identifier_pattern', 'private_property_identifier',
        'this', 'super', 'statement_identifier'
    }

    def declaration(self, node: Node, depth: int, role: str = "") -> Optional[CstNode]:
        declarators = self.convert_all(self.named(node), depth)
        if len(declarators) == 1:
            return with_role(declarators[0], role)
        return block_node(self.span(node), declarators, role)

    def declarator(self, node: Node, depth: int, role: str = "") -> CstNode:
        return assignment_node(self.span(node), self.field(node, 'name', depth),
                               self.field(node, 'value', depth), declaration=True, role=role)

    def function(self, node: Node, depth: int, role: str = "") -> CstNode:
        name_node = node.child_by_field_name('name')
        params = self.param_names(node.child_by_field_name('parameters')
                                  or node.child_by_field_name('parameter'))
        body = node.child_by_field_name('body')
        converted_body = self.convert(body, depth)
        if body is not None and body.type != 'statement_block' and converted_body is not None:
            # expression-bodied arrow function
            converted_body = block_node(converted_body.span,
                                        [return_node(converted_body.span, converted_body)])
        return function_node(self.span(node), self.text(name_node), params, converted_body, role)

    def param_names(self, params: Optional[Node]) -> List[str]:
        if params is None:
            return []
        if params.type in self.IDENTIFIERS:
            return [self.text(params)]
        names = []
        for param in self.named(params):
            names.extend(self._pattern_names(param))
        return names

    def _pattern_names(self, node: Node) -> List[str]:
        if node.type in self.IDENTIFIERS:
            return [self.text(node)]
        pattern = (node.child_by_field_name('pattern') or node.child_by_field_name('left')
                   or node.child_by_field_name('name'))
        if pattern is not None:
            return self._pattern_names(pattern)
        names = []
        for child in self.named(node):
            if child.type in self.IDENTIFIERS or child.type.endswith('pattern'):
                names.extend(self._pattern_names(child))
        return names

    def call(self, node: Node, depth: int, role: str = "") -> CstNode:
        callee = self.field(node, 'function', depth)
        arguments = node.child_by_field_name('arguments')
        if arguments is not None and arguments.type == 'template_string':
            # tagged template: sql`...`
            args = [self.convert(arguments, depth)]
        else:
            args = self.arguments(arguments, depth)
        return call_node(self.span(node), callee, args, role=role)

    def new_call(self, node: Node, depth: int, role: str = "") -> CstNode:
        callee = self.field(node, 'constructor', depth)
        args = self.arguments(node.child_by_field_name('arguments'), depth)
        return call_node(self.span(node), callee, args, role=role, constructor=True)

    def assignment(self, node: Node, depth: int, role: str = "") -> CstNode:
        operator = node.child_by_field_name('operator')
        return assignment_node(self.span(node), self.field(node, 'left', depth),
                               self.field(node, 'right', depth),
                               operator=self.text(operator) if operator is not None else "=",
                               role=role)

    def field_definition(self, node: Node, depth: int, role: str = "") -> CstNode:
        target = self.field(node, 'property', depth) or self.field(node, 'name', depth)
        return assignment_node(self.span(node), target, self.field(node, 'value', depth),
                               declaration=True, field=True, role=role)

    def template(self, node: Node, depth: int, role: str = "") -> CstNode:
        static_parts = []
        parts = []
        for child in node.named_children:
            if child.type == 'template_substitution':
                parts.extend(self.convert_all(self.named(child), depth))
            elif child.type in ('string_fragment', 'escape_sequence'):
                static_parts.append(self.text(child))
        if not static_parts:
            # grammars without string_fragment children
            static_text = strip_quotes(self.text(node))
            for child in node.named_children:
                static_text = static_text.replace(self.text(child), '')
            static_parts.append(static_text)
        return template_node(self.span(node), ''.join(static_parts), parts, role)

    def member(self, node: Node, depth: int, role: str = "") -> CstNode:
        obj = self.field(node, 'object', depth)
        prop = node.child_by_field_name('property')
        return member_node(self.span(node), obj, self.text(prop), role=role)

    def subscript(self, node: Node, depth: int, role: str = "") -> CstNode:
        obj = self.field(node, 'object', depth)
        index = self.field(node, 'index', depth)
        if index is not None and index.kind is NodeKind.STRING_LITERAL:
            return member_node(self.span(node), obj, index.attr('value', ''), computed=True, role=role)
        return member_node(self.span(node), obj, "", computed=True, index=index, role=role)

    def for_loop(self, node: Node, depth: int, role: str = "") -> CstNode:
        header = [self.field(node, name, depth) for name in ('initializer', 'increment')]
        body = self.field(node, 'body', depth)
        if any(header):
            body = block_node(self.span(node), [*header, body])
        return loop_node(self.span(node), body, test=self.field(node, 'condition', depth), role=role)

    def for_in_loop(self, node: Node, depth: int, role: str = "") -> CstNode:
        return loop_node(self.span(node), self.field(node, 'body', depth),
                         target=self.field(node, 'left', depth),
                         iterable=self.field(node, 'right', depth), role=role)

    def import_statement(self, node: Node, depth: int, role: str = "") -> CstNode:
        source = node.child_by_field_name('source')
        names = []
        for child in node.named_children:
            if child.type == 'import_clause':
                names.extend(self.text(ident) for ident in self._identifiers_below(child))
        return import_node(self.span(node), strip_quotes(self.text(source)), names, role)

    def _identifiers_below(self, node: Node) -> List[Node]:
        found = []
        stack = [node]
        while stack:
            current = stack.pop()
            if current.type == 'identifier':
                found.append(current)
            stack.extend(current.named_children)
        return found

    def pair(self, node: Node, depth: int, role: str = "") -> CstNode:
        key = node.child_by_field_name('key')
        key_text = strip_quotes(self.text(key))
        return assignment_node(self.span(node), identifier_node(self.span(key), key_text),
                               self.field(node, 'value', depth), field=True, role=role)

    def pair_pattern(self, node: Node, depth: int, role: str = "") -> Optional[CstNode]:
        # { id: userId } binds userId
        return self.field(node, 'value', depth, role)

    def assignment_pattern(self, node: Node, depth: int, role: str = "") -> CstNode:
        return assignment_node(self.span(node), self.field(node, 'left', depth),
                               self.field(node, 'right', depth), role=role)

    def jsx_attribute(self, node: Node, depth: int, role: str = "") -> CstNode:
        children = self.named(node)
        if not children:
            return unknown_node(self.span(node), node.type, role=role)
        name = children[0]
        value = self.convert(children[1], depth) if len(children) > 1 else None
        return assignment_node(self.span(node), identifier_node(self.span(name), self.text(name)),
                               value, field=True, role=role)


class JavaScriptAdapter(TreeSitterAdapter):
    """JavaScript and JSX adapter."""

    converter_class = JavaScriptConverter

    @property
    def language_names(self) -> List[str]:
        return ['javascript']

    @property
    def file_extensions(self) -> List[str]:
        return ['.js', '.jsx', '.mjs', '.cjs']

    def get_language(self, source: SourceFile) -> Language:
        return JS_LANG
