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
# Purpose: This module implements the structural rule engine: a single iterative pass over
#          the normalized tree that evaluates the declarative rule predicates and produces
#          AST detector candidates with context-adjusted confidence.
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
from fnmatch import fnmatchcase
from typing import Dict, Iterator, List, Optional, Sequence, Tuple

from polyscan.core import CandidateFinding, Deadline, Detector, SourceFile
from polyscan.language_modules.cst import CstNode, NodeKind
from polyscan.rules.rule_table import PatternStep, Rule, RuleTable

logger = logging.getLogger(__name__)

# Nodes visited between two deadline checks
DEADLINE_INTERVAL = 256

LITERAL_KINDS = (NodeKind.STRING_LITERAL, NodeKind.LITERAL)

Ancestors = Tuple[CstNode, ...]


def subject_context(node: CstNode) -> str:
    """Classify the node that drives confidence adjustments."""
    if node.kind in LITERAL_KINDS:
        return 'literal'
    if node.kind is NodeKind.TEMPLATE_LITERAL:
        return 'concatenation' if node.children_with_role('part') else 'literal'
    if node.kind is NodeKind.BINARY_EXPR:
        leaves = [child for child, _ in node.descendants() if not child.children]
        if leaves and all(leaf.kind in LITERAL_KINDS for leaf in leaves):
            return 'literal'
        return 'concatenation'
    if node.kind is NodeKind.IDENTIFIER:
        return 'identifier'
    if node.kind is NodeKind.MEMBER_ACCESS:
        return 'member'
    if node.kind is NodeKind.CALL_EXPR:
        return 'call'
    return 'other'


def node_text(source: SourceFile, node: CstNode, limit: int = 160) -> str:
    """Source text covered by a node, cut at ``limit`` characters."""
    span = node.span
    start = source.line_index.line_start(span.start_line) + span.start_column
    end = source.line_index.line_start(span.end_line) + span.end_column
    if end <= start:
        return source.line_text(span.start_line).strip()[:limit]
    text = source.text[start:min(end, start + limit)]
    return text if end - start <= limit else text + "..."


class RuleEngine:
    """
    Evaluates the structural rules of a rule table against a normalized tree.

    A single iterative depth-first pass visits every node once; at each node
    the rules whose first step accepts the node's kind are tried. Each rule
    yields at most one candidate per anchor node.
    """

    def __init__(self, rule_table: RuleTable):
        self.rule_table = rule_table

    def evaluate(self, source: SourceFile, tree: CstNode,
                 deadline: Optional[Deadline] = None) -> List[CandidateFinding]:
        """
        Run every rule applicable to the file's language.

        Args:
            source: The classified source file
            tree: Root of its normalized tree
            deadline: Per-file wall-clock budget, checked periodically

        Returns:
            List[CandidateFinding]: AST detector candidates
        """
        rules = self.rule_table.rules_for(source.language)
        if not rules:
            return []

        by_kind: Dict[NodeKind, List[Rule]] = {}
        any_kind: List[Rule] = []
        for rule in rules:
            if rule.anchor_kinds:
                for kind in rule.anchor_kinds:
                    by_kind.setdefault(kind, []).append(rule)
            else:
                any_kind.append(rule)

        candidates = []
        visited = 0
        stack: List[Tuple[CstNode, Ancestors]] = [(tree, ())]
        while stack:
            node, ancestors = stack.pop()
            visited += 1
            if deadline is not None and visited % DEADLINE_INTERVAL == 0:
                deadline.check()

            for rule in by_kind.get(node.kind, []) + any_kind:
                matched = self.match(rule, node, ancestors)
                if matched is not None:
                    candidate = self._build_candidate(rule, source, node, matched)
                    if candidate is not None:
                        candidates.append(candidate)

            if node.children:
                child_ancestors = ancestors + (node,)
                stack.extend((child, child_ancestors) for child in reversed(node.children))

        logger.debug(f"Rule engine: {len(candidates)} candidates from {len(rules)} rules "
                     f"over {visited} nodes in {source.path}")
        return candidates

    def match(self, rule: Rule, anchor: CstNode, ancestors: Ancestors = ()) -> Optional[List[CstNode]]:
        """Return the nodes bound by each step of the first successful match, or None."""
        first = rule.steps[0]
        if not first.matches(anchor):
            return None
        return self._match_steps(rule.steps, 1, anchor, ancestors, [anchor])

    def _match_steps(self, steps: Sequence[PatternStep], position: int, node: CstNode,
                     ancestors: Ancestors, bound: List[CstNode]) -> Optional[List[CstNode]]:
        if position == len(steps):
            return bound
        step = steps[position]

        if step.absent:
            for candidate, _ in self._axis(step, node, ancestors):
                if step.matches(candidate):
                    return None
            return self._match_steps(steps, position + 1, node, ancestors, bound + [node])

        for candidate, candidate_ancestors in self._axis(step, node, ancestors):
            if step.matches(candidate):
                result = self._match_steps(steps, position + 1, candidate, candidate_ancestors,
                                           bound + [candidate])
                if result is not None:
                    return result
        return None

    @staticmethod
    def _axis(step: PatternStep, node: CstNode, ancestors: Ancestors) -> Iterator[Tuple[CstNode, Ancestors]]:
        """Candidate nodes reachable from ``node`` along the step's axis."""
        axis = step.axis
        below = ancestors + (node,)

        if axis == 'self':
            yield node, ancestors
        elif axis == 'child':
            for child in node.children:
                yield child, below
        elif axis == 'descendant':
            frontier = [(child, below) for child in node.children]
            depth = 1
            while frontier and depth <= step.depth:
                next_frontier = []
                for child, path in frontier:
                    yield child, path
                    child_path = path + (child,)
                    next_frontier.extend((grandchild, child_path) for grandchild in child.children)
                frontier = next_frontier
                depth += 1
        elif axis == 'parent':
            if ancestors:
                yield ancestors[-1], ancestors[:-1]
        elif axis == 'ancestor':
            for distance in range(1, min(step.depth, len(ancestors)) + 1):
                yield ancestors[-distance], ancestors[:-distance]
        elif axis == 'arg':
            arguments = node.arguments
            if step.index is not None:
                arguments = arguments[step.index:step.index + 1]
            for argument in arguments:
                yield argument, below
        elif axis == 'kwarg':
            for name, argument in node.keywords().items():
                if not step.keyword or any(fnmatchcase(name, glob) for glob in step.keyword):
                    yield argument, below
        else:
            for child in node.children_with_role(axis):
                yield child, below

    def _build_candidate(self, rule: Rule, source: SourceFile, anchor: CstNode,
                         matched: List[CstNode]) -> Optional[CandidateFinding]:
        subject = matched[-1]
        for step, node in zip(rule.steps, matched):
            if step.subject:
                subject = node

        context = subject_context(subject)
        confidence = max(0, min(100, rule.confidence + rule.adjustment(context)))
        if confidence < rule.min_confidence:
            logger.debug(f"{rule.id} at {source.path}:{anchor.line} dropped "
                         f"(confidence {confidence} < {rule.min_confidence})")
            return None

        span = anchor.span
        return CandidateFinding(
            detector=Detector.AST,
            rule_id=rule.id,
            title=rule.title,
            category=rule.issue_type,
            rule_category=rule.category,
            severity=rule.severity,
            confidence=confidence,
            line=span.start_line,
            column=span.start_column,
            end_line=span.end_line,
            end_column=span.end_column,
            cwe=rule.cwe,
            owasp=rule.owasp,
            message=rule.title,
            templates=rule.templates,
            context={
                'title': rule.title,
                'description': rule.description,
                'subject': node_text(source, subject),
                'subject_context': context,
                'callee': anchor.attr('callee', ''),
                'target': anchor.attr('target', ''),
                'source': '',
                'sink': anchor.attr('callee', '') or anchor.attr('target', '')
            },
            references=rule.references,
            tags=rule.tags
        )
