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
# Purpose: This module defines the normalized Concrete Syntax Tree shared by every
#          language adapter. Rule matching, taint propagation and literal scanning
#          all operate on these nodes, never on grammar-specific parser output.
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

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, Iterator, List, Optional, Tuple


class NodeKind(Enum):
    """Language-agnostic node kinds."""
    PROGRAM = "Program"
    FUNCTION_DECL = "FunctionDecl"
    CALL_EXPR = "CallExpr"
    ASSIGNMENT = "Assignment"
    BINARY_EXPR = "BinaryExpr"
    STRING_LITERAL = "StringLiteral"
    IDENTIFIER = "Identifier"
    MEMBER_ACCESS = "MemberAccess"
    CONDITIONAL = "Conditional"
    IMPORT = "Import"
    TEMPLATE_LITERAL = "TemplateLiteral"
    BLOCK = "Block"
    LOOP = "Loop"
    RETURN = "Return"
    LITERAL = "Literal"
    UNKNOWN = "Unknown"

    @classmethod
    def from_name(cls, name: str) -> 'NodeKind':
        """Resolve a kind from its display name (``CallExpr``) or enum name."""
        for kind in cls:
            if kind.value == name or kind.name == name.upper():
                return kind
        raise ValueError(f"Unknown node kind: {name}")


# Reasons attached to Unknown nodes
UNKNOWN_UNSUPPORTED = "unsupported"
UNKNOWN_ERROR = "error"
UNKNOWN_MISSING = "missing"
UNKNOWN_DEPTH_LIMIT = "depth_limit"
UNKNOWN_NO_GRAMMAR = "no_grammar"

DEGRADING_REASONS = {UNKNOWN_ERROR, UNKNOWN_MISSING, UNKNOWN_DEPTH_LIMIT, UNKNOWN_NO_GRAMMAR}

# Path segment used when part of a dotted path cannot be resolved statically
UNRESOLVED_SEGMENT = "?"


@dataclass(frozen=True)
class Span:
    """Source span. Lines are 1-based, columns 0-based."""
    start_line: int
    start_column: int
    end_line: int
    end_column: int

    @classmethod
    def point(cls, line: int, column: int = 0) -> 'Span':
        return cls(line, column, line, column)


@dataclass(frozen=True, eq=False)
class CstNode:
    """
    A single normalized syntax node.

    Children are ordered and each child records the slot it occupies in its
    parent through ``role`` (``callee``, ``arg``, ``kwarg:<name>``, ``target``,
    ``value``, ``left``, ``right``, ``object``, ``index``, ``test``, ``body``,
    ``orelse``, ``iter``, ``part``...). The tree is strict: nodes never point
    back at their parents.
    """
    kind: NodeKind
    span: Span
    children: Tuple['CstNode', ...] = ()
    attrs: Dict[str, Any] = field(default_factory=dict)
    role: str = ""

    @property
    def line(self) -> int:
        return self.span.start_line

    @property
    def column(self) -> int:
        return self.span.start_column

    @property
    def is_unknown(self) -> bool:
        return self.kind is NodeKind.UNKNOWN

    def attr(self, name: str, default: Any = None) -> Any:
        return self.attrs.get(name, default)

    def child(self, role: str) -> Optional['CstNode']:
        """Return the first child occupying ``role``."""
        for node in self.children:
            if node.role == role:
                return node
        return None

    def children_with_role(self, role: str) -> List['CstNode']:
        return [node for node in self.children if node.role == role]

    @property
    def arguments(self) -> List['CstNode']:
        """Positional arguments of a call."""
        return self.children_with_role("arg")

    def keyword(self, name: str) -> Optional['CstNode']:
        """Keyword argument of a call, if present."""
        return self.child(f"kwarg:{name}")

    def keywords(self) -> Dict[str, 'CstNode']:
        return {
            node.role.split(":", 1)[1]: node
            for node in self.children
            if node.role.startswith("kwarg:")
        }

    def walk(self) -> Iterator['CstNode']:
        """Pre-order traversal without recursion."""
        stack = [self]
        while stack:
            node = stack.pop()
            yield node
            stack.extend(reversed(node.children))

    def descendants(self, max_depth: Optional[int] = None) -> Iterator[Tuple['CstNode', int]]:
        """Yield ``(node, depth)`` pairs below this node, nearest first."""
        frontier = [(child, 1) for child in self.children]
        while frontier:
            next_frontier = []
            for node, depth in frontier:
                yield node, depth
                if max_depth is None or depth < max_depth:
                    next_frontier.extend((child, depth + 1) for child in node.children)
            frontier = next_frontier

    def __repr__(self) -> str:
        return f"CstNode({self.kind.value}@{self.span.start_line}:{self.span.start_column}, attrs={self.attrs})"


@dataclass(frozen=True)
class ParseDegraded:
    """Diagnostic marker for a file whose tree contains unparsable regions."""
    path: str
    language: str
    reason: str
    error_count: int = 1
    first_error_line: int = 0

    def to_dict(self) -> Dict[str, Any]:
        return {
            'path': self.path,
            'language': self.language,
            'reason': self.reason,
            'errorCount': self.error_count,
            'firstErrorLine': self.first_error_line
        }


@dataclass(frozen=True)
class ParseResult:
    """Output of ``LanguageAdapter.parse``: always a tree, optionally degraded."""
    tree: CstNode
    degraded: Optional[ParseDegraded] = None

    @property
    def is_degraded(self) -> bool:
        return self.degraded is not None


def make_node(kind: NodeKind, span: Span, children=(), role: str = "", **attrs) -> CstNode:
    """Build a node, dropping ``None`` children produced by skipped constructs."""
    return CstNode(
        kind=kind,
        span=span,
        children=tuple(child for child in children if child is not None),
        attrs=attrs,
        role=role
    )


def dotted_path(node: Optional[CstNode]) -> str:
    """
    Render the access path of an expression (``req.query.id``, ``db.query``).

    Calls render as ``callee()`` so chained receivers stay distinguishable,
    anything else renders as ``?``.
    """
    if node is None:
        return ""
    if node.kind is NodeKind.IDENTIFIER:
        return node.attr('name', '')
    if node.kind is NodeKind.MEMBER_ACCESS:
        return node.attr('path', '')
    if node.kind is NodeKind.CALL_EXPR:
        callee = node.attr('callee', '')
        return f"{callee}()" if callee else UNRESOLVED_SEGMENT
    return UNRESOLVED_SEGMENT


def member_path(object_node: Optional[CstNode], prop: str, computed: bool = False) -> str:
    """Join an object path and a property the way MemberAccess paths are stored."""
    base = dotted_path(object_node) or UNRESOLVED_SEGMENT
    if computed and not prop:
        return f"{base}[]"
    return f"{base}.{prop}" if prop else base


def identifiers_in(node: Optional[CstNode]) -> List[str]:
    """Collect identifier names bound by a (possibly destructuring) target."""
    if node is None:
        return []
    if node.kind is NodeKind.IDENTIFIER:
        return [node.attr('name', '')]
    names = []
    for child in node.children:
        if child.kind is NodeKind.IDENTIFIER:
            names.append(child.attr('name', ''))
        elif child.kind in (NodeKind.UNKNOWN, NodeKind.ASSIGNMENT):
            # default values inside patterns: bind the target side only
            target = child.child('target') if child.kind is NodeKind.ASSIGNMENT else child
            names.extend(identifiers_in(target))
    return [name for name in names if name]


def count_degraded(tree: CstNode) -> Tuple[int, int]:
    """Return ``(degraded node count, first degraded line)`` for a tree."""
    count = 0
    first_line = 0
    for node in tree.walk():
        if node.kind is NodeKind.UNKNOWN and node.attr('reason') in DEGRADING_REASONS:
            count += 1
            if not first_line or node.line < first_line:
                first_line = node.line
    return count, first_line


def string_literals(tree: CstNode) -> Iterator[Tuple[CstNode, Optional[CstNode]]]:
    """Yield ``(literal, parent)`` for every StringLiteral in the tree."""
    stack: List[Tuple[CstNode, Optional[CstNode]]] = [(tree, None)]
    while stack:
        node, parent = stack.pop()
        if node.kind is NodeKind.STRING_LITERAL:
            yield node, parent
        stack.extend((child, node) for child in reversed(node.children))
