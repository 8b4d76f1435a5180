# nixdef

`nixdef` is the semantic layer of a Nix language analyser. It holds a
lowered representation of Nix files (expressions and names addressed by
integer ids), a database of file contents and source roots, name resolution
over lexical scopes, and a liveness check that reports unused bindings,
unused `with` expressions and unnecessary `rec` attribute sets.

It has no runtime dependencies.

## Installing

```
pip install .
```

Running the tests needs the `test` extra:

```
pip install ".[test]"
pytest
```

## Modules

- `nixdef.base`: `TextRange`, `VfsPath` (a filesystem path or a virtual
  identifier), `FileSet`, `SourceRoot`, `FlakeGraph` and `FlakeInfo`,
  `InFile`, `FilePos`, `FileRange`, the `SourceDatabase` that stores file
  contents, source roots and the flake graph, and `Change`, which batches
  such updates and applies them to a database with `Change.apply(db)`.
- `nixdef.diagnostic`: `Diagnostic`, `DiagnosticKind` and `Severity`.
  A diagnostic has a stable `code()` (`undefined_name`, `unused_binding`,
  ...), a `severity()`, a `message()`, `is_unnecessary()` /
  `is_deprecated()` flags, notes added with `with_note`, and a compact
  `debug_display()` such as `4..5: UnusedBinding`.
- `nixdef.builtins`: `Builtin` and `BuiltinKind`. `load_builtins()` runs an
  installed `nix` executable to list the builtin names, probes each one in
  parallel to see which are global, and reads their documentation through
  `nix __dump-builtins`. Failures raise `NixCommandError`.
- `nixdef.path`: `PathAnchor` (relative to a file, absolute, home or a
  search path), `PathData.normalize`, which folds `.` and `..` segments of a
  path literal, and `resolve_path`, which maps a relative path to a
  `VfsPath` next to the file it appears in.
- `nixdef.module`: the lowered `Module` and its expression classes
  (`Reference`, `LiteralExpr`, `Lambda`, `With`, `LetIn`, `Attrset`,
  `RecAttrset`, ...), `Bindings` and `BindingValue`, `ModuleSourceMap`, and
  `DefDatabase`, which adds modules to a `SourceDatabase` and answers
  `module_references`, `source_root_referrer_graph`, `module_referrers`,
  `source_root_closure` and `module_kind` (recognising `flake.nix` and its
  inputs).
- `nixdef.nameres`: `ModuleScopes`, `NameResolution` (results are
  `Definition`, `BuiltinRef` or `WithExprs`) and `NameReference` for the
  reverse lookup.
- `nixdef.liveness`: `liveness_check`, producing a `LivenessCheckResult`
  whose `to_diagnostics(source_map)` yields diagnostics.

## Example

Normalizing a path literal:

```python
from nixdef.path import PathAnchor, PathData

data = PathData.normalize(PathAnchor.home(), "/../a/../../.b/./c")
print(data.supers, data.relative_path)  # 2 .b/c
```

Checking `let a = 1; in 2` for unused bindings, with the module built by
hand:

```python
from nixdef.base import TextRange
from nixdef.liveness import liveness_check
from nixdef.module import (
    BindingValue, Bindings, LetIn, LiteralExpr, Module, ModuleSourceMap, NameKind,
)
from nixdef.nameres import ModuleScopes, NameResolution

module = Module()
one = module.alloc_expr(LiteralExpr(1))
two = module.alloc_expr(LiteralExpr(2))
a = module.alloc_name("a", NameKind.LET_IN)
module.entry_expr = module.alloc_expr(
    LetIn(Bindings(statics=((a, BindingValue.expr(one)),)), two)
)

source_map = ModuleSourceMap()
source_map.insert_name(a, TextRange(4, 5))

name_res = NameResolution.build(module, ModuleScopes.build(module))
result = liveness_check(module, name_res)
for diag in result.to_diagnostics(source_map):
    print(diag.debug_display())  # 4..5: UnusedBinding
```

Source-map nodes may be any hashable value; a `TextRange`, or an object with
a `text_range` or `range` giving one, lets diagnostics be located. A `with`
node may also carry `with_token` and `semicolon_token` ranges, and an
attrset node a `rec_token` range, to narrow the reported range.

Builtins come from the local Nix installation:

```python
from nixdef.builtins import load_builtins

builtins = load_builtins()
print(builtins["attrNames"].summary)  # `builtins.attrNames set`
```

Pass the result to `NameResolution.build(module, scopes, builtins)` so that
global builtins resolve and `inherit (builtins) ...` aliases are tracked.

## What it does not do

- It does not parse Nix source text. Modules, their expressions and their
  source maps are built by the caller with `Module.alloc_expr`,
  `Module.alloc_name` and the `ModuleSourceMap.insert_*` methods, and stored
  with `DefDatabase.set_module`.
- It has no command-line program and no language-server front end; it is a
  library only.
- Results are computed on each call; nothing is cached between queries.