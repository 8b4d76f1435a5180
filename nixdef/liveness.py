"""Liveness check of names: unused bindings, unused `with` and unnecessary `rec`.

The check aims to be:

- Applicable: removing all reported items keeps the meaning of the code.
- Closed: an unused binding has no references, or each of its references lies
  inside some other reported unused binding.
- Self-contained: warnings inside a sub-expression do not depend on whether
  that sub-expression is itself reachable from the root.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Hashable, Iterator

from .base import TextRange
from .diagnostic import Diagnostic, DiagnosticKind
from .module import (
    ExprId,
    Lambda,
    LetIn,
    Module,
    ModuleSourceMap,
    NameId,
    RecAttrset,
    Reference,
    ValueKind,
    With,
)
from .nameres import Definition, NameResolution, WithExprs


def _as_range(value: object) -> TextRange | None:
    if callable(value):
        value = value()
    return value if isinstance(value, TextRange) else None


def _node_range(node: Hashable) -> TextRange:
    """The text range of a source node: a TextRange, or an object carrying one."""
    if isinstance(node, TextRange):
        return node
    for attr in ("text_range", "range"):
        rng = _as_range(getattr(node, attr, None))
        if rng is not None:
            return rng
    raise TypeError(f"source node {node!r} has no text range")


def _token_range(node: Hashable, attr: str) -> TextRange | None:
    """The range of a token of a node, if the node records it."""
    if isinstance(node, TextRange):
        return None
    return _as_range(getattr(node, attr, None))


def _expr_node(source_map: ModuleSourceMap, expr_id: ExprId) -> Hashable:
    node = source_map.node_for_expr(expr_id)
    if node is None:
        raise KeyError(f"no source node for expression {expr_id}")
    return node


@dataclass(frozen=True)
class LivenessCheckResult:
    """Unused names, unused `with` expressions and unnecessary `rec` attrsets."""

    names: tuple[NameId, ...] = ()
    withs: tuple[ExprId, ...] = ()
    rec_attrsets: tuple[ExprId, ...] = ()

    def to_diagnostics(self, source_map: ModuleSourceMap) -> Iterator[Diagnostic]:
        """Diagnostics for every finding, located through the source map.

        A `with` node may record `with_token` and `semicolon_token` ranges, and an
        attrset node a `rec_token` range; without them the diagnostic is an empty
        range at the start of the node.
        """
        for name_id in self.names:
            for node in source_map.nodes_for_name(name_id):
                yield Diagnostic(_node_range(node), DiagnosticKind.UNUSED_BINDING)

        for expr_id in self.withs:
            node = _expr_node(source_map, expr_id)
            start = _token_range(node, "with_token")
            end = _token_range(node, "semicolon_token")
            if start is not None and end is not None:
                header = start.cover(end)
            else:
                header = TextRange.empty(_node_range(node).start)
            yield Diagnostic(header, DiagnosticKind.UNUSED_WITH)

        for expr_id in self.rec_attrsets:
            node = _expr_node(source_map, expr_id)
            rng = _token_range(node, "rec_token")
            if rng is None:
                rng = TextRange.empty(_node_range(node).start)
            yield Diagnostic(rng, DiagnosticKind.UNUSED_REC)


def liveness_check(module: Module, name_res: NameResolution) -> LivenessCheckResult:
    """Find unused bindings, `with` expressions and `rec` attrsets of a module."""
    # Unused let-bindings are eagerly collected into this.
    unused_defs: list[NameId] = []
    visited_defs: set[NameId] = set()
    visited_def_rhs: set[ExprId] = set()
    visited_withs: set[ExprId] = set()
    stack: list[ExprId] = [module.entry_expr]

    while stack:
        # Fresh in every round, otherwise the whole check turns quadratic.
        discovered_let_rhs: dict[NameId, ExprId] = {}

        # Traverse all expressions reachable from the roots.
        while stack:
            expr_id = stack.pop()
            expr = module.expr(expr_id)
            if isinstance(expr, Reference):
                res = name_res.get(expr_id)
                if isinstance(res, Definition):
                    visited_defs.add(res.name)
                    rhs = discovered_let_rhs.pop(res.name, None)
                    # Deduplicate shared inherit-from expressions.
                    if rhs is not None and rhs not in visited_def_rhs:
                        visited_def_rhs.add(rhs)
                        stack.append(rhs)
                elif isinstance(res, WithExprs):
                    visited_withs.update(res.exprs)
            elif isinstance(expr, LetIn):
                bindings = expr.bindings
                for name_id, value in bindings.statics:
                    if value.kind is ValueKind.INHERIT_FROM:
                        rhs = bindings.inherit_froms[value.index]
                    else:
                        rhs = value.index
                    discovered_let_rhs[name_id] = rhs
                stack.append(expr.body)
            else:
                stack.extend(expr.child_exprs())

        # Unreferenced let-bindings are unused; keep traversing inside them
        # as if they were reachable.
        unused_defs.extend(discovered_let_rhs)
        stack.extend(discovered_let_rhs.values())

    # Parameters, `with`s and `rec`s only referenced from unused let-bindings are
    # deliberately not reported: those may come from unfinished code.
    unused_withs: list[ExprId] = []
    unused_recs: list[ExprId] = []
    for expr_id, expr in module.exprs():
        if isinstance(expr, Lambda):
            if expr.param is not None and expr.pat is not None and expr.param not in visited_defs:
                unused_defs.append(expr.param)
        elif isinstance(expr, With):
            if expr_id not in visited_withs:
                unused_withs.append(expr_id)
        elif isinstance(expr, RecAttrset):
            if all(name_id not in visited_defs for name_id, _ in expr.bindings.statics):
                unused_recs.append(expr_id)

    return LivenessCheckResult(tuple(unused_defs), tuple(unused_withs), tuple(unused_recs))