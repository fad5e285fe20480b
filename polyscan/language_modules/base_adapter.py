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
# Purpose: This module provides the shared parse flow for every language adapter and
#          the builder functions that create normalized CST nodes, so each grammar
#          converter only decides which node maps to which kind.
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
from typing import List, Optional, Sequence, Tuple

from polyscan.core import LanguageAdapter, SourceFile
from .cst import (
    CstNode, NodeKind, Span, ParseDegraded, ParseResult, make_node, count_degraded,
    dotted_path, member_path, UNRESOLVED_SEGMENT, UNKNOWN_UNSUPPORTED
)

logger = logging.getLogger(__name__)


class BaseAdapter(LanguageAdapter):
    """
    Common parse flow for every adapter.

    Subclasses only build the tree; this class derives the degraded marker
    from the Unknown nodes the build left behind, so a tree is always
    returned and parse failures never escape as exceptions.
    """

    @abstractmethod
    def build_tree(self, source: SourceFile) -> CstNode:
        """Convert the source into a Program node."""
        pass

    def parse(self, source: SourceFile) -> ParseResult:
        tree = self.build_tree(source)
        error_count, first_line = count_degraded(tree)
        if not error_count:
            return ParseResult(tree)

        reason = self._degraded_reason(tree)
        logger.debug(f"{source.path}: {error_count} degraded region(s), first at line {first_line}")
        return ParseResult(tree, ParseDegraded(
            path=source.path,
            language=source.language,
            reason=reason,
            error_count=error_count,
            first_error_line=first_line
        ))

    @staticmethod
    def _degraded_reason(tree: CstNode) -> str:
        for node in tree.walk():
            reason = node.attr('reason')
            if node.is_unknown and reason and reason != UNKNOWN_UNSUPPORTED:
                return reason
        return UNKNOWN_UNSUPPORTED


# =============================================================================
# NODE BUILDERS
# =============================================================================

def program_node(span: Span, statements: Sequence[Optional[CstNode]]) -> CstNode:
    return make_node(NodeKind.PROGRAM, span, statements)


def block_node(span: Span, statements: Sequence[Optional[CstNode]], role: str = "") -> CstNode:
    return make_node(NodeKind.BLOCK, span, statements, role=role)


def identifier_node(span: Span, name: str, role: str = "") -> CstNode:
    return make_node(NodeKind.IDENTIFIER, span, role=role, name=name)


def string_node(span: Span, value: str, role: str = "") -> CstNode:
    return make_node(NodeKind.STRING_LITERAL, span, role=role, value=value)


def literal_node(span: Span, text: str, role: str = "") -> CstNode:
    return make_node(NodeKind.LITERAL, span, role=role, value=text)


def unknown_node(span: Span, grammar_type: str, reason: str = UNKNOWN_UNSUPPORTED,
                 children: Sequence[Optional[CstNode]] = (), role: str = "") -> CstNode:
    return make_node(NodeKind.UNKNOWN, span, children, role=role,
                     grammar_type=grammar_type, reason=reason)


def with_role(node: Optional[CstNode], role: str) -> Optional[CstNode]:
    """Return ``node`` re-slotted under a new role."""
    if node is None or node.role == role:
        return node
    return CstNode(kind=node.kind, span=node.span, children=node.children,
                   attrs=node.attrs, role=role)


def call_node(span: Span, callee: Optional[CstNode], args: Sequence[Optional[CstNode]],
              kwargs: Sequence[Tuple[str, Optional[CstNode]]] = (), role: str = "",
              constructor: bool = False, callee_path: Optional[str] = None) -> CstNode:
    """
    Build a CallExpr.

    Args:
        span: Location of the whole call
        callee: Converted callee expression, if any
        args: Converted positional arguments
        kwargs: ``(name, node)`` pairs for keyword arguments
        role: Slot in the parent
        constructor: True for ``new X()`` style calls
        callee_path: Explicit dotted callee when the grammar does not expose one node

    Returns:
        CstNode: The call node
    """
    if callee_path is None:
        callee_path = dotted_path(callee) if callee is not None else ""
    if callee_path == UNRESOLVED_SEGMENT:
        callee_path = ""
    children = [with_role(callee, "callee")]
    children.extend(with_role(arg, "arg") for arg in args)
    children.extend(with_role(value, f"kwarg:{name}") for name, value in kwargs)
    name = callee_path.rsplit(".", 1)[-1] if callee_path else ""
    return make_node(NodeKind.CALL_EXPR, span, children, role=role,
                     callee=callee_path, name=name, constructor=constructor)


def member_node(span: Span, obj: Optional[CstNode], prop: str, computed: bool = False,
                index: Optional[CstNode] = None, role: str = "") -> CstNode:
    path = member_path(obj, prop, computed)
    children = [with_role(obj, "object"), with_role(index, "index")]
    return make_node(NodeKind.MEMBER_ACCESS, span, children, role=role,
                     path=path, property=prop, computed=computed)


def assignment_node(span: Span, target: Optional[CstNode], value: Optional[CstNode],
                    operator: str = "=", declaration: bool = False, field: bool = False,
                    role: str = "", target_path: Optional[str] = None) -> CstNode:
    if target_path is None:
        target_path = dotted_path(target) if target is not None else ""
    return make_node(NodeKind.ASSIGNMENT, span,
                     [with_role(target, "target"), with_role(value, "value")],
                     role=role, target=target_path, operator=operator,
                     declaration=declaration, field=field)


def binary_node(span: Span, left: Optional[CstNode], operator: str,
                right: Optional[CstNode], role: str = "") -> CstNode:
    return make_node(NodeKind.BINARY_EXPR, span,
                     [with_role(left, "left"), with_role(right, "right")],
                     role=role, operator=operator)


def template_node(span: Span, static_text: str, parts: Sequence[Optional[CstNode]],
                  role: str = "") -> CstNode:
    return make_node(NodeKind.TEMPLATE_LITERAL, span,
                     [with_role(part, "part") for part in parts],
                     role=role, value=static_text)


def conditional_node(span: Span, test: Optional[CstNode], body: Optional[CstNode],
                     orelse: Optional[CstNode] = None, role: str = "",
                     expression: bool = False) -> CstNode:
    return make_node(NodeKind.CONDITIONAL, span,
                     [with_role(test, "test"), with_role(body, "body"), with_role(orelse, "orelse")],
                     role=role, expression=expression)


def loop_node(span: Span, body: Optional[CstNode], target: Optional[CstNode] = None,
              iterable: Optional[CstNode] = None, test: Optional[CstNode] = None,
              role: str = "") -> CstNode:
    return make_node(NodeKind.LOOP, span,
                     [with_role(target, "target"), with_role(iterable, "iter"),
                      with_role(test, "test"), with_role(body, "body")],
                     role=role)


def return_node(span: Span, value: Optional[CstNode], role: str = "") -> CstNode:
    return make_node(NodeKind.RETURN, span, [with_role(value, "value")], role=role)


def function_node(span: Span, name: str, params: Sequence[str], body: Optional[CstNode],
                  role: str = "") -> CstNode:
    return make_node(NodeKind.FUNCTION_DECL, span, [with_role(body, "body")], role=role,
                     name=name, params=tuple(p for p in params if p))


def import_node(span: Span, module: str, names: Sequence[str] = (), role: str = "") -> CstNode:
    return make_node(NodeKind.IMPORT, span, role=role, module=module, names=tuple(names))


def strip_quotes(text: str) -> str:
    """Drop matching string delimiters (quotes, backticks, triple quotes)."""
    for quote in ('"""', "'''", '"', "'", '`'):
        if len(text) >= 2 * len(quote) and text.startswith(quote) and text.endswith(quote):
            return text[len(quote):-len(quote)]
    return text

