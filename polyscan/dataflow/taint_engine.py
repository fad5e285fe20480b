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
# Purpose: This module implements the flow-sensitive taint engine: it tracks untrusted data
#          from configured sources through assignments, concatenation and same-file calls
#          into sinks, and reports DataFlow detector candidates with a propagation trace.
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
from collections import deque
from fnmatch import fnmatchcase
from dataclasses import dataclass, field
from enum import Enum
from typing import Deque, Dict, List, Optional, Set, Tuple

from polyscan.core import CandidateFinding, Config, Deadline, Detector, SourceFile
from polyscan.language_modules.cst import CstNode, NodeKind, UNRESOLVED_SEGMENT, dotted_path, identifiers_in
from polyscan.rules.rule_table import (
    LanguageTaint, Propagator, TaintSink, TaintSource, TaintTable, attr_text
)

logger = logging.getLogger(__name__)

# Operators whose result carries no data from their operands
COMPARISON_OPERATORS = {
    '==', '===', '!=', '!==', '<', '>', '<=', '>=', '<>', '<=>',
    'in', 'not in', 'is', 'is not', 'instanceof', 'not'
}

# Receivers that address the enclosing object inside a method
SELF_RECEIVERS = {'self', 'cls', 'this', '$this', 'static', 'parent'}

MAX_TRACE_EDGES = 16


class TaintKind(Enum):
    """Abstract value of an expression."""
    CLEAN = "clean"
    TAINTED = "tainted"
    UNKNOWN = "unknown"


@dataclass(frozen=True)
class TaintEdge:
    """One propagation step recorded on a tainted value."""
    kind: str
    line: int
    detail: str = ""

    def describe(self) -> str:
        return f"{self.kind}:{self.detail}@{self.line}" if self.detail else f"{self.kind}@{self.line}"


@dataclass(frozen=True)
class TaintState:
    kind: TaintKind
    source_id: str = ""
    label: str = ""
    edges: Tuple[TaintEdge, ...] = ()

    @property
    def is_tainted(self) -> bool:
        return self.kind is TaintKind.TAINTED

    @property
    def origin(self) -> str:
        """Human readable description of where the value came from."""
        if self.edges and self.edges[0].detail:
            return f"{self.label} from {self.edges[0].detail}"
        return self.label

    def extend(self, kind: str, line: int, detail: str = "") -> 'TaintState':
        if not self.is_tainted or len(self.edges) >= MAX_TRACE_EDGES:
            return self
        return TaintState(self.kind, self.source_id, self.label,
                          self.edges + (TaintEdge(kind, line, detail),))

    @classmethod
    def from_source(cls, source: TaintSource, line: int, path: str) -> 'TaintState':
        return cls(TaintKind.TAINTED, source.id, source.label, (TaintEdge('source', line, path),))


CLEAN = TaintState(TaintKind.CLEAN)
UNKNOWN = TaintState(TaintKind.UNKNOWN)


def join(*states: TaintState) -> TaintState:
    """May-join: any Tainted input wins, then Unknown, then Clean."""
    result = CLEAN
    for state in states:
        if state.is_tainted:
            return state
        if state.kind is TaintKind.UNKNOWN:
            result = UNKNOWN
    return result


class Scope:
    """Side table of binding states for one function (or the program) scope."""

    def __init__(self, scope_id: str, parent: Optional['Scope'] = None,
                 table: Optional[Dict[Tuple[str, str], TaintState]] = None):
        self.scope_id = scope_id
        self.parent = parent
        self.table: Dict[Tuple[str, str], TaintState] = table if table is not None else {}

    def lookup(self, name: str) -> Optional[TaintState]:
        state = self.table.get((self.scope_id, name))
        if state is None and self.parent is not None:
            return self.parent.lookup(name)
        return state

    def bind(self, name: str, state: TaintState) -> None:
        self.table[(self.scope_id, name)] = state

    def fork(self) -> 'Scope':
        return Scope(self.scope_id, self.parent, dict(self.table))

    def merge(self, *branches: 'Scope') -> None:
        """Replace this table with the join of the branch tables."""
        keys = set()
        for branch in branches:
            keys.update(branch.table)
        for key in keys:
            self.table[key] = join(*(branch.table.get(key, CLEAN) for branch in branches))


@dataclass
class _Frame:
    """Per-invocation state: call depth, collected returns, analysis mode."""
    hops: int = 0
    standalone: bool = True
    returns: List[TaintState] = field(default_factory=list)


def function_scope_id(node: CstNode) -> str:
    name = node.attr('name') or '<anonymous>'
    return f"{name}@{node.line}:{node.column}"


class _FileAnalysis:
    """Taint analysis of one file. Not shared between threads."""

    def __init__(self, engine: 'TaintEngine', source: SourceFile, tree: CstNode,
                 view: LanguageTaint, deadline: Optional[Deadline]):
        self.source = source
        self.tree = tree
        self.view = view
        self.deadline = deadline
        self.hop_penalty = engine.hop_penalty
        self.max_call_depth = engine.max_call_depth

        self.functions = self._collect_functions(tree)
        self.program = Scope("<program>")
        self.pending: Deque[Tuple[CstNode, Scope]] = deque()
        self.scheduled: Set[int] = set()
        self.active: List[int] = []
        self.summaries: Dict[Tuple[int, Tuple[TaintKind, ...]], TaintState] = {}
        self.findings: Dict[Tuple[str, int, int], CandidateFinding] = {}

        self._handlers = {
            NodeKind.PROGRAM: self.visit_block,
            NodeKind.BLOCK: self.visit_block,
            NodeKind.FUNCTION_DECL: self.visit_function,
            NodeKind.CALL_EXPR: self.visit_call,
            NodeKind.ASSIGNMENT: self.visit_assignment,
            NodeKind.BINARY_EXPR: self.visit_binary,
            NodeKind.IDENTIFIER: self.visit_identifier,
            NodeKind.MEMBER_ACCESS: self.visit_member,
            NodeKind.CONDITIONAL: self.visit_conditional,
            NodeKind.TEMPLATE_LITERAL: self.visit_template,
            NodeKind.LOOP: self.visit_loop,
            NodeKind.RETURN: self.visit_return,
            NodeKind.UNKNOWN: self.visit_unknown
        }

    def run(self) -> List[CandidateFinding]:
        self.visit(self.tree, self.program, _Frame())
        while self.pending:
            function, parent = self.pending.popleft()
            self.run_function(function, parent, [], _Frame(hops=0, standalone=True))
        return sorted(self.findings.values(), key=lambda c: (c.line, c.column, c.rule_id))

    @staticmethod
    def _collect_functions(tree: CstNode) -> Dict[str, CstNode]:
        """Same-file functions callable by name, first declaration wins."""
        functions: Dict[str, CstNode] = {}
        for node in tree.walk():
            if node.kind is NodeKind.FUNCTION_DECL and node.attr('name'):
                functions.setdefault(node.attr('name'), node)
            elif node.kind is NodeKind.ASSIGNMENT:
                value = node.child('value')
                target = node.attr('target', '')
                if value is not None and value.kind is NodeKind.FUNCTION_DECL and target:
                    functions.setdefault(target.rsplit('.', 1)[-1], value)
        return functions

    # -------------------------------------------------------------------------
    # functions
    # -------------------------------------------------------------------------

    def run_function(self, function: CstNode, parent: Scope, arguments: List[TaintState],
                     frame: _Frame) -> TaintState:
        scope = Scope(function_scope_id(function), parent)
        for position, name in enumerate(function.attr('params', ())):
            scope.bind(name, arguments[position] if position < len(arguments) else CLEAN)
        body = function.child('body')
        if body is not None:
            self.visit(body, scope, frame)
        return join(*frame.returns) if frame.returns else CLEAN

    def call_local(self, function: CstNode, arguments: List[TaintState], frame: _Frame,
                   line: int) -> TaintState:
        """Return state of a same-file function under the given argument states."""
        if frame.hops >= self.max_call_depth:
            return UNKNOWN
        key = (id(function), tuple(state.kind for state in arguments))
        if key in self.summaries:
            return self.summaries[key]
        if id(function) in self.active:
            return UNKNOWN

        name = function.attr('name') or '<anonymous>'
        entry = [state.extend('argument', line, name) for state in arguments]
        self.active.append(id(function))
        try:
            result = self.run_function(function, self.program, entry,
                                       _Frame(hops=frame.hops + 1, standalone=False))
        finally:
            self.active.pop()

        result = result.extend('return', line, name)
        self.summaries[key] = result
        return result

    def resolve_local(self, callee: str) -> Tuple[Optional[CstNode], int]:
        """Find a same-file function for a callee and the argument offset for ``self``."""
        if not callee:
            return None, 0
        if callee in self.functions:
            return self.functions[callee], 0
        receiver, _, name = callee.rpartition('.')
        if receiver in SELF_RECEIVERS and name in self.functions:
            function = self.functions[name]
            params = function.attr('params', ())
            return function, 1 if params and params[0] in ('self', 'cls') else 0
        return None, 0

    # -------------------------------------------------------------------------
    # visitors
    # -------------------------------------------------------------------------

    def visit(self, node: CstNode, scope: Scope, frame: _Frame) -> TaintState:
        handler = self._handlers.get(node.kind)
        if handler is None:
            return CLEAN
        return handler(node, scope, frame)

    def visit_block(self, node: CstNode, scope: Scope, frame: _Frame) -> TaintState:
        for statement in node.children:
            if self.deadline is not None:
                self.deadline.check()
            self.visit(statement, scope, frame)
        return CLEAN

    def visit_unknown(self, node: CstNode, scope: Scope, frame: _Frame) -> TaintState:
        return join(*(self.visit(child, scope, frame) for child in node.children))

    def visit_function(self, node: CstNode, scope: Scope, frame: _Frame) -> TaintState:
        if frame.standalone and id(node) not in self.scheduled:
            self.scheduled.add(id(node))
            self.pending.append((node, scope))
        return CLEAN

    def visit_identifier(self, node: CstNode, scope: Scope, frame: _Frame) -> TaintState:
        name = node.attr('name', '')
        source = self.match_source(name)
        if source is not None:
            return TaintState.from_source(source, node.line, name)
        state = scope.lookup(name)
        return state if state is not None else CLEAN

    def visit_member(self, node: CstNode, scope: Scope, frame: _Frame) -> TaintState:
        obj = node.child('object')
        index = node.child('index')
        object_state = self.visit(obj, scope, frame) if obj is not None else CLEAN
        if index is not None:
            self.visit(index, scope, frame)

        path = node.attr('path', '')
        source = self.match_source(path)
        if source is not None:
            return TaintState.from_source(source, node.line, path)
        if path and UNRESOLVED_SEGMENT not in path:
            bound = scope.lookup(path)
            if bound is not None:
                return bound
        return object_state

    def visit_binary(self, node: CstNode, scope: Scope, frame: _Frame) -> TaintState:
        states = [self.visit(child, scope, frame) for child in node.children]
        operator = node.attr('operator', '')
        if operator in COMPARISON_OPERATORS:
            return CLEAN
        return join(*states).extend('concatenation', node.line, operator)

    def visit_template(self, node: CstNode, scope: Scope, frame: _Frame) -> TaintState:
        states = [self.visit(part, scope, frame) for part in node.children]
        return join(*states).extend('interpolation', node.line)

    def visit_conditional(self, node: CstNode, scope: Scope, frame: _Frame) -> TaintState:
        test = node.child('test')
        if test is not None:
            self.visit(test, scope, frame)

        body = node.child('body')
        orelse = node.child('orelse')
        then_scope = scope.fork()
        then_state = self.visit(body, then_scope, frame) if body is not None else CLEAN
        else_scope = scope.fork()
        else_state = self.visit(orelse, else_scope, frame) if orelse is not None else CLEAN
        scope.merge(then_scope, else_scope)

        if node.attr('expression'):
            return join(then_state, else_state)
        return CLEAN

    def visit_loop(self, node: CstNode, scope: Scope, frame: _Frame) -> TaintState:
        iterable = node.child('iter')
        iter_state = self.visit(iterable, scope, frame) if iterable is not None else CLEAN

        before = scope.fork()
        body_scope = scope.fork()
        target = node.child('target')
        if target is not None:
            self.bind_target(target, dotted_path(target), iter_state.extend('loop', node.line),
                             body_scope)
        test = node.child('test')
        if test is not None:
            self.visit(test, body_scope, frame)
        body = node.child('body')
        if body is not None:
            self.visit(body, body_scope, frame)
        scope.merge(before, body_scope)
        return CLEAN

    def visit_return(self, node: CstNode, scope: Scope, frame: _Frame) -> TaintState:
        value = node.child('value')
        state = self.visit(value, scope, frame) if value is not None else CLEAN
        frame.returns.append(state)
        return CLEAN

    def visit_assignment(self, node: CstNode, scope: Scope, frame: _Frame) -> TaintState:
        value = node.child('value')
        state = self.visit(value, scope, frame) if value is not None else CLEAN
        target_path = node.attr('target', '')

        if node.attr('field'):
            self.check_assignment_sinks(node, target_path, state, frame)
            return state

        if node.attr('operator', '=') not in ('=', ':='):
            previous = scope.lookup(target_path) if target_path else None
            state = join(previous or CLEAN, state)
        state = state.extend('assignment', node.line, target_path)

        self.check_assignment_sinks(node, target_path, state, frame)
        target = node.child('target')
        if target is not None:
            self.bind_target(target, target_path, state, scope)
        return state

    def bind_target(self, target: CstNode, path: str, state: TaintState, scope: Scope) -> None:
        if target.kind is NodeKind.IDENTIFIER:
            scope.bind(target.attr('name', ''), state)
        elif target.kind is NodeKind.MEMBER_ACCESS:
            if path and UNRESOLVED_SEGMENT not in path:
                scope.bind(path, state)
        else:
            for name in identifiers_in(target):
                scope.bind(name, state)

    def visit_call(self, node: CstNode, scope: Scope, frame: _Frame) -> TaintState:
        callee = node.attr('callee', '')
        callee_node = node.child('callee')

        receiver_state = CLEAN
        if callee_node is not None:
            if callee_node.kind is NodeKind.MEMBER_ACCESS:
                obj = callee_node.child('object')
                if obj is not None:
                    receiver_state = self.visit(obj, scope, frame)
            elif callee_node.kind is not NodeKind.IDENTIFIER:
                receiver_state = self.visit(callee_node, scope, frame)

        argument_states = [self.visit(argument, scope, frame) for argument in node.arguments]
        keywords = node.keywords()
        keyword_states = {name: self.visit(value, scope, frame) for name, value in keywords.items()}

        self.check_call_sinks(node, callee, argument_states, keyword_states, keywords, frame)

        if not callee:
            return join(receiver_state, *argument_states) if receiver_state.is_tainted else UNKNOWN
        if self.match_sanitizer(callee):
            return CLEAN

        source = self.match_source(callee, is_call=True)
        if source is not None:
            return TaintState.from_source(source, node.line, callee)

        function, offset = self.resolve_local(callee)
        if function is not None:
            return self.call_local(function, [CLEAN] * offset + argument_states, frame, node.line)

        propagator = self.match_propagator(callee)
        if propagator is not None:
            result = join(receiver_state, *argument_states, *keyword_states.values())
            result = result.extend('argument', node.line, callee)
            if propagator.mutates_receiver and result.is_tainted and callee_node is not None:
                obj = callee_node.child('object')
                if obj is not None and obj.kind in (NodeKind.IDENTIFIER, NodeKind.MEMBER_ACCESS):
                    self.bind_target(obj, dotted_path(obj), result, scope)
            return result

        return UNKNOWN

    # -------------------------------------------------------------------------
    # pattern lookups
    # -------------------------------------------------------------------------

    def match_source(self, path: str, is_call: bool = False) -> Optional[TaintSource]:
        if not path:
            return None
        for source in self.view.sources:
            if source.matches(path, is_call):
                return source
        return None

    def match_sanitizer(self, callee: str) -> bool:
        return any(sanitizer.matches(callee) for sanitizer in self.view.sanitizers)

    def match_propagator(self, callee: str) -> Optional[Propagator]:
        for propagator in self.view.propagators:
            if propagator.matches(callee):
                return propagator
        return None

    # -------------------------------------------------------------------------
    # sinks
    # -------------------------------------------------------------------------

    def check_call_sinks(self, node: CstNode, callee: str, argument_states: List[TaintState],
                         keyword_states: Dict[str, TaintState], keywords: Dict[str, CstNode],
                         frame: _Frame) -> None:
        for sink in self.view.call_sinks:
            if not sink.matches(callee) or not self._keywords_satisfied(sink, keywords):
                continue
            tainted = next((state for position, state in enumerate(argument_states)
                            if state.is_tainted and sink.watches_argument(position)), None)
            if tainted is None:
                tainted = next((keyword_states[name] for name in sink.keywords
                                if name in keyword_states and keyword_states[name].is_tainted), None)
            if tainted is not None:
                self.emit(sink, node, callee, tainted, frame)

    def check_assignment_sinks(self, node: CstNode, target: str, state: TaintState,
                               frame: _Frame) -> None:
        if not state.is_tainted or not target:
            return
        for sink in self.view.assignment_sinks:
            if sink.matches(target):
                self.emit(sink, node, target, state, frame)

    @staticmethod
    def _keywords_satisfied(sink: TaintSink, keywords: Dict[str, CstNode]) -> bool:
        for name, globs in sink.require_keywords:
            argument = keywords.get(name)
            value = attr_text(argument.attr('value', argument.attr('name'))) if argument is not None else None
            if value is None or not any(fnmatchcase(value, glob) for glob in globs):
                return False
        return True

    def emit(self, sink: TaintSink, node: CstNode, sink_name: str, state: TaintState,
             frame: _Frame) -> None:
        confidence = max(0, sink.confidence - self.hop_penalty * frame.hops)
        key = (sink.id, node.line, node.column)
        existing = self.findings.get(key)
        if existing is not None and existing.confidence >= confidence:
            return

        trace = tuple(edge.describe() for edge in state.edges) + (f"sink:{sink_name}@{node.line}",)
        span = node.span
        self.findings[key] = CandidateFinding(
            detector=Detector.DATAFLOW,
            rule_id=f"TAINT-{sink.id}",
            title=sink.title,
            category=sink.issue_type,
            rule_category=sink.category,
            severity=sink.severity.boost(),
            confidence=confidence,
            line=span.start_line,
            column=span.start_column,
            end_line=span.end_line,
            end_column=span.end_column,
            cwe=sink.cwe,
            owasp=sink.owasp,
            message=f"{state.origin} flows into {sink_name}",
            templates=sink.templates,
            context={
                'title': sink.title,
                'description': sink.description,
                'source': state.origin,
                'source_id': state.source_id,
                'sink': sink_name,
                'callee': sink_name,
                'target': sink_name,
                'hops': frame.hops
            },
            references=sink.references,
            tags=sink.tags + ('taint',),
            trace=trace
        )


class TaintEngine:
    """
    Intra-file, flow-sensitive taint tracking over the normalized tree.

    Every function scope is analyzed on its own with clean parameters; calls
    to same-file functions are followed with the caller's argument states up
    to ``analysis.max_call_depth`` hops, each hop lowering the confidence of
    the resulting finding by ``scoring.taint_hop_penalty``.
    """

    def __init__(self, taint_table: TaintTable, config: Optional[Config] = None):
        self.taint_table = taint_table
        config = config or Config()
        self.max_call_depth = config.get_max_call_depth()
        self.hop_penalty = config.get_taint_hop_penalty()

    def analyze(self, source: SourceFile, tree: CstNode,
                deadline: Optional[Deadline] = None) -> List[CandidateFinding]:
        """
        Track untrusted data from sources to sinks within one file.

        Args:
            source: The classified source file
            tree: Root of its normalized tree
            deadline: Per-file wall-clock budget, checked per statement

        Returns:
            List[CandidateFinding]: DataFlow detector candidates
        """
        view = self.taint_table.for_language(source.language)
        if view.is_empty:
            return []

        findings = _FileAnalysis(self, source, tree, view, deadline).run()
        if findings:
            logger.debug(f"Taint engine: {len(findings)} flows in {source.path}")
        return findings
