"""Lexical scopes, name resolution and reverse name references of a module."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Iterator, Mapping, Union

from .base import TextRange
from .builtins import Builtin
from .diagnostic import Diagnostic, DiagnosticKind
from .module import (
    Attrset,
    Bindings,
    ExprId,
    Lambda,
    LetAttrset,
    LetIn,
    Module,
    ModuleSourceMap,
    NameId,
    RecAttrset,
    Reference,
    ValueKind,
    With,
)

ScopeId = int


@dataclass(frozen=True)
class Definition:
    """A reference to a name defined in the module."""

    name: NameId


@dataclass(frozen=True)
class BuiltinRef:
    """A reference to a global builtin value."""

    name: str


@dataclass(frozen=True)
class WithExprs:
    """An attribute of one of some `with` expressions, from innermost to outermost."""

    exprs: tuple[ExprId, ...]

    def __post_init__(self) -> None:
        object.__setattr__(self, "exprs", tuple(self.exprs))
        if not self.exprs:
            raise ValueError("WithExprs must name at least one `with` expression")


ResolveResult = Union[Definition, BuiltinRef, WithExprs]


@dataclass(frozen=True, eq=True)
class ScopeData:
    """One scope: either a set of definitions or the body of a `with`."""

    parent: ScopeId | None
    definitions: dict[str, NameId] | None = None
    with_expr: ExprId | None = None

    def __post_init__(self) -> None:
        if (self.definitions is None) == (self.with_expr is None):
            raise ValueError("a scope holds either definitions or a `with` expression")

    __hash__ = None  # type: ignore[assignment]

    def as_definitions(self) -> dict[str, NameId] | None:
        return self.definitions

    def as_with(self) -> ExprId | None:
        return self.with_expr


class ModuleScopes:
    """The scope tree of a module and the scope each expression lives in."""

    def __init__(self) -> None:
        self._scopes: list[ScopeData] = []
        self._scope_by_expr: dict[ExprId, ScopeId] = {}

    @classmethod
    def build(cls, module: Module) -> ModuleScopes:
        this = cls()
        root = this._alloc(ScopeData(None, definitions={}))
        this._traverse(module, module.entry_expr, root)
        return this

    def _alloc(self, data: ScopeData) -> ScopeId:
        self._scopes.append(data)
        return len(self._scopes) - 1

    def scope_for_expr(self, expr_id: ExprId) -> ScopeId | None:
        return self._scope_by_expr.get(expr_id)

    def scope(self, scope_id: ScopeId) -> ScopeData:
        return self._scopes[scope_id]

    def ancestors(self, scope_id: ScopeId) -> Iterator[ScopeData]:
        """The scope itself, then each enclosing scope up to the root."""
        current: ScopeId | None = scope_id
        while current is not None:
            data = self._scopes[current]
            yield data
            current = data.parent

    def resolve_name(
        self, expr_id: ExprId, name: str, builtins: Mapping[str, Builtin] | None = None
    ) -> ResolveResult | None:
        """Resolve `name` as seen from the scope of an expression."""
        scope = self.scope_for_expr(expr_id)
        if scope is None:
            return None
        # 1. Local definitions.
        for data in self.ancestors(scope):
            defs = data.as_definitions()
            if defs is not None and name in defs:
                return Definition(defs[name])
        # 2. Global builtin names.
        builtin = builtins.get(name) if builtins else None
        if builtin is not None and builtin.is_global:
            return BuiltinRef(name)
        # 3. Enclosing `with` expressions.
        withs = tuple(
            w for data in self.ancestors(scope) if (w := data.as_with()) is not None
        )
        if withs:
            return WithExprs(withs)
        return None

    def _traverse(self, module: Module, entry: ExprId, root: ScopeId) -> None:
        stack: list[tuple[ExprId, ScopeId]] = [(entry, root)]
        while stack:
            expr_id, scope = stack.pop()
            self._scope_by_expr[expr_id] = scope
            expr = module.expr(expr_id)
            tasks: list[tuple[ExprId, ScopeId]]
            if isinstance(expr, Lambda):
                defs: dict[str, NameId] = {}
                if expr.param is not None:
                    defs[module.name(expr.param).text] = expr.param
                if expr.pat is not None:
                    for name_id, _ in expr.pat.fields:
                        if name_id is not None:
                            defs[module.name(name_id).text] = name_id
                inner = self._alloc(ScopeData(scope, definitions=defs)) if defs else scope
                tasks = [(child, inner) for child in expr.child_exprs()]
            elif isinstance(expr, With):
                inner = self._alloc(ScopeData(scope, with_expr=expr_id))
                tasks = [(expr.env, scope), (expr.body, inner)]
            elif isinstance(expr, (Attrset, RecAttrset, LetAttrset)):
                tasks, _ = self._bindings_tasks(module, expr.bindings, scope)
            elif isinstance(expr, LetIn):
                tasks, inner = self._bindings_tasks(module, expr.bindings, scope)
                tasks.append((expr.body, inner))
            else:
                tasks = [(child, scope) for child in expr.child_exprs()]
            stack.extend(reversed(tasks))

    def _bindings_tasks(
        self, module: Module, bindings: Bindings, scope: ScopeId
    ) -> tuple[list[tuple[ExprId, ScopeId]], ScopeId]:
        defs: dict[str, NameId] = {}
        tasks: list[tuple[ExprId, ScopeId]] = []
        for name_id, value in bindings.statics:
            name = module.name(name_id)
            if name.kind.is_definition():
                defs[name.text] = name_id
            # Inherited attributes are resolved in the outer scope.
            if value.kind is ValueKind.INHERIT:
                if not isinstance(module.expr(value.index), Reference):
                    raise ValueError(
                        f"inherited binding {name.text!r} must be a reference expression"
                    )
                tasks.append((value.index, scope))

        inner = self._alloc(ScopeData(scope, definitions=defs)) if defs else scope
        tasks.extend(
            (value.index, inner)
            for _, value in bindings.statics
            if value.kind is ValueKind.EXPR
        )
        tasks.extend((expr_id, inner) for expr_id in bindings.inherit_froms)
        for key, value in bindings.dynamics:
            tasks.append((key, inner))
            tasks.append((value, inner))
        return tasks, inner


def _node_range(node: object) -> TextRange | None:
    if isinstance(node, TextRange):
        return node
    text_range = getattr(node, "text_range", None)
    if callable(text_range):
        text_range = text_range()
    if isinstance(text_range, TextRange):
        return text_range
    rng = getattr(node, "range", None)
    return rng if isinstance(rng, TextRange) else None


class NameResolution:
    """The resolution of every name reference in a module."""

    def __init__(
        self,
        resolve_map: dict[ExprId, ResolveResult | None],
        inherited_builtins: frozenset[NameId],
        builtin_names: frozenset[str],
    ) -> None:
        # A None value marks an unresolved name.
        self._resolve_map = resolve_map
        # Names from the common pattern `inherit (builtins) ...`.
        self._inherited_builtins = inherited_builtins
        self._builtin_names = builtin_names

    @classmethod
    def build(
        cls,
        module: Module,
        scopes: ModuleScopes,
        builtins: Mapping[str, Builtin] | None = None,
    ) -> NameResolution:
        builtins = builtins or {}
        resolve_map = {
            expr_id: scopes.resolve_name(expr_id, expr.name, builtins)
            for expr_id, expr in module.exprs()
            if isinstance(expr, Reference)
        }

        inherited: set[NameId] = set()
        for _, expr in module.exprs():
            # Only recursive binding groups are considered.
            if not isinstance(expr, (LetIn, LetAttrset, RecAttrset)):
                continue
            bindings = expr.bindings
            for name_id, value in bindings.statics:
                if value.kind is not ValueKind.INHERIT_FROM:
                    continue
                from_expr = bindings.inherit_froms[value.index]
                if (
                    resolve_map.get(from_expr) == BuiltinRef("builtins")
                    and module.name(name_id).text in builtins
                ):
                    inherited.add(name_id)

        return cls(resolve_map, frozenset(inherited), frozenset(builtins))

    def get(self, expr_id: ExprId) -> ResolveResult | None:
        return self._resolve_map.get(expr_id)

    def items(self) -> Iterator[tuple[ExprId, ResolveResult]]:
        """Every resolved reference with its result."""
        for expr_id, res in self._resolve_map.items():
            if res is not None:
                yield expr_id, res

    def is_inherited_builtin(self, name_id: NameId) -> bool:
        return name_id in self._inherited_builtins

    def check_builtin(self, expr_id: ExprId, module: Module) -> str | None:
        """The builtin an expression refers to, seeing through common aliasing."""
        res = self.get(expr_id)
        if isinstance(res, BuiltinRef):
            return res.name
        if isinstance(res, Definition):
            if res.name in self._inherited_builtins:
                return module.name(res.name).text
            return None
        if isinstance(res, WithExprs):
            innermost = module.expr(res.exprs[0])
            target = module.expr(expr_id)
            if (
                isinstance(innermost, With)
                and self.get(innermost.env) == BuiltinRef("builtins")
                and isinstance(target, Reference)
                and target.name in self._builtin_names
            ):
                return target.name
        return None

    def to_diagnostics(self, source_map: ModuleSourceMap) -> Iterator[Diagnostic]:
        """An undefined-name diagnostic for each unresolved reference with a source."""
        for expr_id, res in sorted(self._resolve_map.items(), key=lambda item: item[0]):
            if res is not None:
                continue
            node = source_map.node_for_expr(expr_id)
            if node is None:
                continue
            rng = _node_range(node)
            if rng is None:
                continue
            yield Diagnostic(rng, DiagnosticKind.UNDEFINED_NAME)


class NameReference:
    """Reverse name resolution: where each definition and `with` is referenced."""

    def __init__(self) -> None:
        self._def_refs: dict[NameId, list[ExprId]] = {}
        self._with_refs: dict[ExprId, list[ExprId]] = {}

    @classmethod
    def build(cls, name_res: NameResolution) -> NameReference:
        this = cls()
        for expr_id, res in name_res.items():
            if isinstance(res, Definition):
                this._def_refs.setdefault(res.name, []).append(expr_id)
            elif isinstance(res, WithExprs):
                for with_expr in res.exprs:
                    this._with_refs.setdefault(with_expr, []).append(expr_id)
        return this

    def name_references(self, name_id: NameId) -> tuple[ExprId, ...] | None:
        refs = self._def_refs.get(name_id)
        return None if refs is None else tuple(refs)

    def with_references(self, with_expr: ExprId) -> tuple[ExprId, ...] | None:
        refs = self._with_refs.get(with_expr)
        return None if refs is None else tuple(refs)