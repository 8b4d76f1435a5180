"""The lowered form of a Nix file, its source map, and queries across modules."""

from __future__ import annotations

from collections import defaultdict
from dataclasses import dataclass, field
from enum import Enum
from typing import Hashable, Iterator, Union

from .base import FileId, SourceDatabase, SourceRootId, VfsPath
from .diagnostic import Diagnostic
from .path import PathData
from .path import resolve_path as _resolve_path

ExprId = int
NameId = int
Attrpath = tuple

DEFAULT_IMPORT_FILE = "default.nix"


class NameKind(Enum):
    LET_IN = "let_in"
    PLAIN_ATTRSET = "plain_attrset"
    REC_ATTRSET = "rec_attrset"
    PARAM = "param"
    PAT_FIELD = "pat_field"

    def is_definition(self) -> bool:
        return self is not NameKind.PLAIN_ATTRSET


@dataclass(frozen=True)
class Name:
    text: str
    kind: NameKind


@dataclass(frozen=True)
class Pat:
    fields: tuple[tuple[NameId | None, ExprId | None], ...] = ()
    ellipsis: bool = False

    def __post_init__(self) -> None:
        object.__setattr__(self, "fields", tuple(self.fields))


class ValueKind(Enum):
    EXPR = "expr"
    INHERIT = "inherit"
    INHERIT_FROM = "inherit_from"


@dataclass(frozen=True)
class BindingValue:
    """The right side of a binding: an expression, or an index into `inherit_froms`."""

    kind: ValueKind
    index: int

    @classmethod
    def expr(cls, expr_id: ExprId) -> BindingValue:
        return cls(ValueKind.EXPR, expr_id)

    @classmethod
    def inherit(cls, expr_id: ExprId) -> BindingValue:
        return cls(ValueKind.INHERIT, expr_id)

    @classmethod
    def inherit_from(cls, index: int) -> BindingValue:
        return cls(ValueKind.INHERIT_FROM, index)


@dataclass(frozen=True)
class Bindings:
    statics: tuple[tuple[NameId, BindingValue], ...] = ()
    inherit_froms: tuple[ExprId, ...] = ()
    dynamics: tuple[tuple[ExprId, ExprId], ...] = ()

    def __post_init__(self) -> None:
        object.__setattr__(self, "statics", tuple(self.statics))
        object.__setattr__(self, "inherit_froms", tuple(self.inherit_froms))
        object.__setattr__(self, "dynamics", tuple(self.dynamics))

    def child_exprs(self) -> Iterator[ExprId]:
        for _, value in self.statics:
            if value.kind is not ValueKind.INHERIT_FROM:
                yield value.index
        yield from self.inherit_froms
        for key, value in self.dynamics:
            yield key
            yield value

    def get(self, name: str, module: Module) -> BindingValue | None:
        """The value bound statically to `name`, if any."""
        return next(
            (value for name_id, value in self.statics if module.name(name_id).text == name),
            None,
        )


@dataclass(frozen=True)
class Missing:
    def child_exprs(self) -> Iterator[ExprId]:
        return iter(())


@dataclass(frozen=True)
class Reference:
    name: str

    def child_exprs(self) -> Iterator[ExprId]:
        return iter(())


@dataclass(frozen=True)
class LiteralExpr:
    """An int, float, string or path literal."""

    value: int | float | str | PathData

    def child_exprs(self) -> Iterator[ExprId]:
        return iter(())


@dataclass(frozen=True)
class Lambda:
    param: NameId | None
    pat: Pat | None
    body: ExprId

    def child_exprs(self) -> Iterator[ExprId]:
        if self.pat is not None:
            yield from (default for _, default in self.pat.fields if default is not None)
        yield self.body


@dataclass(frozen=True)
class With:
    env: ExprId
    body: ExprId

    def child_exprs(self) -> Iterator[ExprId]:
        yield self.env
        yield self.body


@dataclass(frozen=True)
class Assert:
    cond: ExprId
    body: ExprId

    def child_exprs(self) -> Iterator[ExprId]:
        yield self.cond
        yield self.body


@dataclass(frozen=True)
class IfThenElse:
    cond: ExprId
    then_body: ExprId
    else_body: ExprId

    def child_exprs(self) -> Iterator[ExprId]:
        yield self.cond
        yield self.then_body
        yield self.else_body


@dataclass(frozen=True)
class Binary:
    op: str | None
    lhs: ExprId
    rhs: ExprId

    def child_exprs(self) -> Iterator[ExprId]:
        yield self.lhs
        yield self.rhs


@dataclass(frozen=True)
class Apply:
    func: ExprId
    arg: ExprId

    def child_exprs(self) -> Iterator[ExprId]:
        yield self.func
        yield self.arg


@dataclass(frozen=True)
class Unary:
    op: str | None
    arg: ExprId

    def child_exprs(self) -> Iterator[ExprId]:
        yield self.arg


@dataclass(frozen=True)
class HasAttr:
    set: ExprId
    attrpath: tuple[ExprId, ...]

    def child_exprs(self) -> Iterator[ExprId]:
        yield self.set
        yield from self.attrpath


@dataclass(frozen=True)
class Select:
    set: ExprId
    attrpath: tuple[ExprId, ...]
    default_expr: ExprId | None = None

    def child_exprs(self) -> Iterator[ExprId]:
        yield self.set
        yield from self.attrpath
        if self.default_expr is not None:
            yield self.default_expr


@dataclass(frozen=True)
class StringInterpolation:
    parts: tuple[ExprId, ...]

    def child_exprs(self) -> Iterator[ExprId]:
        return iter(self.parts)


@dataclass(frozen=True)
class PathInterpolation:
    parts: tuple[ExprId, ...]

    def child_exprs(self) -> Iterator[ExprId]:
        return iter(self.parts)


@dataclass(frozen=True)
class ListExpr:
    elements: tuple[ExprId, ...]

    def child_exprs(self) -> Iterator[ExprId]:
        return iter(self.elements)


@dataclass(frozen=True)
class LetIn:
    bindings: Bindings
    body: ExprId

    def child_exprs(self) -> Iterator[ExprId]:
        yield from self.bindings.child_exprs()
        yield self.body


@dataclass(frozen=True)
class Attrset:
    bindings: Bindings

    def child_exprs(self) -> Iterator[ExprId]:
        return self.bindings.child_exprs()


@dataclass(frozen=True)
class LetAttrset:
    bindings: Bindings

    def child_exprs(self) -> Iterator[ExprId]:
        return self.bindings.child_exprs()


@dataclass(frozen=True)
class RecAttrset:
    bindings: Bindings

    def child_exprs(self) -> Iterator[ExprId]:
        return self.bindings.child_exprs()


Expr = Union[
    Missing,
    Reference,
    LiteralExpr,
    Lambda,
    With,
    Assert,
    IfThenElse,
    Binary,
    Apply,
    Unary,
    HasAttr,
    Select,
    StringInterpolation,
    PathInterpolation,
    ListExpr,
    LetIn,
    Attrset,
    LetAttrset,
    RecAttrset,
]


@dataclass
class Module:
    """The expressions and names of one file, addressed by their ids."""

    _exprs: list[Expr] = field(default_factory=list)
    _names: list[Name] = field(default_factory=list)
    entry_expr: ExprId = 0

    def alloc_expr(self, expr: Expr) -> ExprId:
        self._exprs.append(expr)
        return len(self._exprs) - 1

    def alloc_name(self, text: str, kind: NameKind) -> NameId:
        self._names.append(Name(text, kind))
        return len(self._names) - 1

    def expr(self, expr_id: ExprId) -> Expr:
        return self._exprs[expr_id]

    def name(self, name_id: NameId) -> Name:
        return self._names[name_id]

    def exprs(self) -> Iterator[tuple[ExprId, Expr]]:
        return enumerate(self._exprs)

    def names(self) -> Iterator[tuple[NameId, Name]]:
        return enumerate(self._names)


class ModuleSourceMap:
    """Links expressions and names with the syntax nodes they come from."""

    def __init__(self) -> None:
        self._expr_map: dict[Hashable, ExprId] = {}
        self._expr_map_rev: dict[ExprId, Hashable] = {}
        self._name_map: dict[Hashable, NameId] = {}
        self._name_map_rev: dict[NameId, list[Hashable]] = {}
        self._diagnostics: list[Diagnostic] = []

    def insert_expr(self, expr_id: ExprId, node: Hashable) -> None:
        self._expr_map[node] = expr_id
        self._expr_map_rev[expr_id] = node

    def insert_name(self, name_id: NameId, node: Hashable) -> None:
        """Record one more node defining the name; the first one stays first."""
        self._name_map[node] = name_id
        self._name_map_rev.setdefault(name_id, []).append(node)

    def expr_for_node(self, node: Hashable) -> ExprId | None:
        return self._expr_map.get(node)

    def node_for_expr(self, expr_id: ExprId) -> Hashable | None:
        return self._expr_map_rev.get(expr_id)

    def name_for_node(self, node: Hashable) -> NameId | None:
        return self._name_map.get(node)

    def nodes_for_name(self, name_id: NameId) -> Iterator[Hashable]:
        return iter(list(self._name_map_rev.get(name_id, ())))

    def add_diagnostic(self, diag: Diagnostic) -> None:
        self._diagnostics.append(diag)

    def diagnostics(self) -> list[Diagnostic]:
        return list(self._diagnostics)


@dataclass(frozen=True)
class UnknownModule:
    """A file whose role is unknown or ambiguous."""


@dataclass(frozen=True)
class FlakeNix:
    """The flake definition `flake.nix`."""

    # Inputs defined in the top-level `inputs`.
    explicit_inputs: dict[str, NameId] = field(default_factory=dict)
    # Inputs named in the pattern parameter of `outputs`, excluding `self`.
    param_inputs: dict[str, NameId] = field(default_factory=dict)


ModuleKind = Union[UnknownModule, FlakeNix]


class DefDatabase(SourceDatabase):
    """The input database plus lowered modules and the queries built on them."""

    def __init__(self) -> None:
        super().__init__()
        self._modules: dict[FileId, tuple[Module, ModuleSourceMap]] = {}

    def set_module(
        self, file_id: FileId, module: Module, source_map: ModuleSourceMap | None = None
    ) -> None:
        self._modules[file_id] = (module, source_map or ModuleSourceMap())

    def _module_entry(self, file_id: FileId) -> tuple[Module, ModuleSourceMap]:
        try:
            return self._modules[file_id]
        except KeyError:
            raise KeyError(f"no module set for file {file_id}") from None

    def module(self, file_id: FileId) -> Module:
        return self._module_entry(file_id)[0]

    def source_map(self, file_id: FileId) -> ModuleSourceMap:
        return self._module_entry(file_id)[1]

    def module_kind(self, file_id: FileId) -> ModuleKind:
        flake_info = self.source_root_flake_info(self.file_source_root(file_id))
        if flake_info is None or flake_info.flake_file != file_id:
            return UnknownModule()

        module = self.module(file_id)
        explicit_inputs: dict[str, NameId] = {}
        param_inputs: dict[str, NameId] = {}
        entry = module.expr(module.entry_expr)
        if isinstance(entry, Attrset):
            for name_id, value in entry.bindings.statics:
                if value.kind is not ValueKind.EXPR:
                    continue
                value_expr = module.expr(value.index)
                text = module.name(name_id).text
                if text == "inputs" and isinstance(value_expr, Attrset):
                    explicit_inputs = {
                        module.name(input_id).text: input_id
                        for input_id, _ in value_expr.bindings.statics
                    }
                elif (
                    text == "outputs"
                    and isinstance(value_expr, Lambda)
                    and value_expr.pat is not None
                ):
                    param_inputs = {
                        module.name(field_id).text: field_id
                        for field_id, _ in value_expr.pat.fields
                        if field_id is not None and module.name(field_id).text != "self"
                    }
        return FlakeNix(explicit_inputs, param_inputs)

    def resolve_path(self, data: PathData) -> VfsPath | None:
        return _resolve_path(self, data)

    def module_references(self, file_id: FileId) -> frozenset[FileId]:
        """Files of the same source root that path literals in this file point to."""
        source_root = self.source_root(self.file_source_root(file_id))
        refs = set()
        for _, expr in self.module(file_id).exprs():
            if not (isinstance(expr, LiteralExpr) and isinstance(expr.value, PathData)):
                continue
            vpath = self.resolve_path(expr.value)
            if vpath is None:
                continue
            target = source_root.file_for_path(vpath)
            if target is None:
                default = vpath.join(DEFAULT_IMPORT_FILE)
                if default is not None:
                    target = source_root.file_for_path(default)
            if target is not None:
                refs.add(target)
        return frozenset(refs)

    def source_root_referrer_graph(self, sid: SourceRootId) -> dict[FileId, tuple[FileId, ...]]:
        """For each referenced file, the sorted files that reference it."""
        graph: dict[FileId, list[FileId]] = defaultdict(list)
        for file, _ in self.source_root(sid).files():
            for target in self.module_references(file):
                graph[target].append(file)
        return {target: tuple(sorted(referrers)) for target, referrers in graph.items()}

    def module_referrers(self, file_id: FileId) -> tuple[FileId, ...]:
        graph = self.source_root_referrer_graph(self.file_source_root(file_id))
        return graph.get(file_id, ())

    def source_root_closure(self, sid: SourceRootId) -> frozenset[FileId]:
        """Files reachable by references from the source root's entry."""
        entry = self.source_root(sid).entry
        if entry is None:
            return frozenset()
        closure = {entry}
        queue = [entry]
        while queue:
            for target in self.module_references(queue.pop()):
                if target not in closure:
                    closure.add(target)
                    queue.append(target)
        return frozenset(closure)