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
# Purpose: This module holds the mapping-driven converter that turns tree-sitter parse
#          trees into normalized CST nodes, preserving error regions as Unknown nodes
#          instead of discarding them.
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
from abc import abstractmethod
from typing import Dict, List, Optional, Set

from tree_sitter import Language, Parser, Node

from polyscan.core import SourceFile
from .base_adapter import (
    BaseAdapter, program_node, block_node, identifier_node, string_node, literal_node,
    unknown_node, binary_node, conditional_node, loop_node, return_node, strip_quotes
)
from .cst import CstNode, Span, UNKNOWN_ERROR, UNKNOWN_MISSING, UNKNOWN_DEPTH_LIMIT

logger = logging.getLogger(__name__)


class TreeSitterConverter:
    """
    Mapping-driven conversion from a tree-sitter tree to CstNode.

    ``HANDLERS`` maps grammar node types to converter method names. Types in
    ``TRANSPARENT`` collapse into their first named child, types in
    ``SKIPPED`` vanish, everything else becomes an ``Unknown`` node that
    keeps its converted children.
    """

    HANDLERS: Dict[str, str] = {}
    TRANSPARENT: Set[str] = {'parenthesized_expression', 'expression_statement'}
    SKIPPED: Set[str] = {'comment', 'line_comment', 'block_comment'}
    LITERALS: Set[str] = set()
    IDENTIFIERS: Set[str] = {'identifier'}

    def __init__(self, source_bytes: bytes, max_depth: int):
        self.source_bytes = source_bytes
        self.max_depth = max_depth

    # -- helpers ---------------------------------------------------------

    def text(self, node: Optional[Node]) -> str:
        if node is None:
            return ""
        return self.source_bytes[node.start_byte:node.end_byte].decode('utf-8', errors='replace')

    @staticmethod
    def span(node: Node) -> Span:
        return Span(node.start_point[0] + 1, node.start_point[1],
                    node.end_point[0] + 1, node.end_point[1])

    def named(self, node: Optional[Node]) -> List[Node]:
        if node is None:
            return []
        return [child for child in node.named_children if child.type not in self.SKIPPED]

    def convert_all(self, nodes: List[Node], depth: int, role: str = "") -> List[CstNode]:
        converted = (self.convert(child, depth, role) for child in nodes)
        return [node for node in converted if node is not None]

    def field(self, node: Node, name: str, depth: int, role: str = "") -> Optional[CstNode]:
        child = node.child_by_field_name(name)
        return self.convert(child, depth, role) if child is not None else None

    # -- dispatch --------------------------------------------------------

    def convert_root(self, root: Node) -> CstNode:
        return program_node(self.span(root), self.convert_all(self.named(root), 1))

    def convert(self, node: Optional[Node], depth: int, role: str = "") -> Optional[CstNode]:
        if node is None or node.type in self.SKIPPED:
            return None
        span = self.span(node)
        if node.is_missing:
            return unknown_node(span, node.type, UNKNOWN_MISSING, role=role)
        if node.type == 'ERROR':
            return unknown_node(span, 'ERROR', UNKNOWN_ERROR,
                                self.convert_all(self.named(node), depth + 1), role=role)
        if depth > self.max_depth:
            return unknown_node(span, node.type, UNKNOWN_DEPTH_LIMIT, role=role)

        if node.type in self.TRANSPARENT:
            children = self.named(node)
            if not children:
                return None
            return self.convert(children[0], depth + 1, role)
        if node.type in self.IDENTIFIERS:
            return identifier_node(span, self.text(node), role)
        if node.type in self.LITERALS:
            return literal_node(span, self.text(node), role)

        handler = self.HANDLERS.get(node.type)
        if handler is not None:
            return getattr(self, handler)(node, depth + 1, role)
        return self.unknown(node, depth + 1, role)

    def unknown(self, node: Node, depth: int, role: str = "") -> CstNode:
        return unknown_node(self.span(node), node.type,
                            children=self.convert_all(self.named(node), depth), role=role)

    def block(self, node: Node, depth: int, role: str = "") -> CstNode:
        return block_node(self.span(node), self.convert_all(self.named(node), depth), role)

    def string(self, node: Node, depth: int, role: str = "") -> CstNode:
        return string_node(self.span(node), strip_quotes(self.text(node)), role)

    def binary(self, node: Node, depth: int, role: str = "") -> CstNode:
        operator = node.child_by_field_name('operator')
        return binary_node(self.span(node),
                           self.field(node, 'left', depth),
                           self.text(operator) if operator is not None else "",
                           self.field(node, 'right', depth),
                           role)

    def returns(self, node: Node, depth: int, role: str = "") -> CstNode:
        values = self.convert_all(self.named(node), depth)
        value = values[0] if len(values) == 1 else (
            unknown_node(self.span(node), 'expression_list', children=values) if values else None)
        return return_node(self.span(node), value, role)

    def if_statement(self, node: Node, depth: int, role: str = "") -> CstNode:
        return conditional_node(self.span(node),
                                self.field(node, 'condition', depth),
                                self.field(node, 'consequence', depth),
                                self.field(node, 'alternative', depth),
                                role)

    def ternary(self, node: Node, depth: int, role: str = "") -> CstNode:
        return conditional_node(self.span(node),
                                self.field(node, 'condition', depth),
                                self.field(node, 'consequence', depth),
                                self.field(node, 'alternative', depth),
                                role, expression=True)

    def while_loop(self, node: Node, depth: int, role: str = "") -> CstNode:
        return loop_node(self.span(node), self.field(node, 'body', depth),
                         test=self.field(node, 'condition', depth), role=role)

    def arguments(self, node: Optional[Node], depth: int) -> List[CstNode]:
        return self.convert_all(self.named(node), depth)


class TreeSitterAdapter(BaseAdapter):
    """Adapter base for grammars served by tree-sitter."""

    converter_class = TreeSitterConverter

    @abstractmethod
    def get_language(self, source: SourceFile) -> Language:
        """Return the compiled grammar for this source file."""
        pass

    def build_tree(self, source: SourceFile) -> CstNode:
        source_bytes = source.text.encode('utf-8')
        # Parser objects are not shared between threads
        parser = Parser(self.get_language(source))
        tree = parser.parse(source_bytes)
        converter = self.converter_class(source_bytes, self.max_depth)
        return converter.convert_root(tree.root_node)

