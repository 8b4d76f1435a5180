import pytest

from nixdef.base import TextRange
from nixdef.builtins import Builtin, BuiltinKind
from nixdef.diagnostic import DiagnosticKind
from nixdef.module import (
    Apply,
    Attrset,
    Binary,
    BindingValue,
    Bindings,
    Lambda,
    LetIn,
    LiteralExpr,
    Module,
    ModuleSourceMap,
    NameKind,
    Pat,
    RecAttrset,
    Reference,
    With,
)
from nixdef.nameres import (
    BuiltinRef,
    Definition,
    ModuleScopes,
    NameReference,
    NameResolution,
    ScopeData,
    WithExprs,
)

BUILTINS = {
    "true": Builtin(BuiltinKind.CONST, True, "`builtins.true`", None),
    "false": Builtin(BuiltinKind.CONST, True, "`builtins.false`", None),
    "null": Builtin(BuiltinKind.CONST, True, "`builtins.null`", None),
    "builtins": Builtin(BuiltinKind.ATTRSET, True, "`builtins.builtins`", None),
    "tryEval": Builtin(BuiltinKind.FUNCTION, False, "`builtins.tryEval e`", None),
}


def _resolve(module):
    return NameResolution.build(module, ModuleScopes.build(module), BUILTINS)


def _let(m, bindings, body):
    return m.alloc_expr(LetIn(Bindings(statics=bindings), body))


def _defs_of(scopes, expr_id):
    """Definition-name sets or `with` ids of each ancestor scope, innermost first."""
    out = []
    for data in scopes.ancestors(scopes.scope_for_expr(expr_id)):
        defs = data.as_definitions()
        out.append(set(defs) if defs is not None else ("with", data.as_with()))
    return out


def test_top_level_reference_is_undefined():
    m = Module()
    a = m.alloc_expr(Reference("a"))
    m.entry_expr = a
    scopes = ModuleScopes.build(m)
    assert _defs_of(scopes, a) == [set()]
    assert _resolve(m).get(a) is None


def test_lambda_param_with_pattern():
    # `{} @ y: y`
    m = Module()
    y = m.alloc_name("y", NameKind.PARAM)
    body = m.alloc_expr(Reference("y"))
    m.entry_expr = m.alloc_expr(Lambda(y, Pat(), body))
    assert _resolve(m).get(body) == Definition(y)


def test_lambda_pattern_scope():
    # `a: { a, b ? c, ... }@d: y: a`
    m = Module()
    outer_a = m.alloc_name("a", NameKind.PARAM)
    field_a = m.alloc_name("a", NameKind.PAT_FIELD)
    field_b = m.alloc_name("b", NameKind.PAT_FIELD)
    d = m.alloc_name("d", NameKind.PARAM)
    c = m.alloc_expr(Reference("c"))
    y = m.alloc_name("y", NameKind.PARAM)
    body_a = m.alloc_expr(Reference("a"))
    inner = m.alloc_expr(Lambda(y, None, body_a))
    mid = m.alloc_expr(
        Lambda(d, Pat(((field_a, None), (field_b, c)), ellipsis=True), inner)
    )
    m.entry_expr = m.alloc_expr(Lambda(outer_a, None, mid))
    scopes = ModuleScopes.build(m)
    assert _defs_of(scopes, c) == [{"a", "b", "d"}, {"a"}, set()]
    res = _resolve(m)
    assert res.get(body_a) == Definition(field_a)
    assert res.get(c) is None


def _with_chain():
    # `a: with b; c: with c; a`
    m = Module()
    a = m.alloc_name("a", NameKind.PARAM)
    b = m.alloc_expr(Reference("b"))
    c_name = m.alloc_name("c", NameKind.PARAM)
    c_ref = m.alloc_expr(Reference("c"))
    body = m.alloc_expr(Reference("a"))
    inner_with = m.alloc_expr(With(c_ref, body))
    lam_c = m.alloc_expr(Lambda(c_name, None, inner_with))
    outer_with = m.alloc_expr(With(b, lam_c))
    m.entry_expr = m.alloc_expr(Lambda(a, None, outer_with))
    return m, a, c_name, c_ref, body, inner_with, outer_with


def test_with_scopes():
    m, _, _, c_ref, body, inner_with, outer_with = _with_chain()
    scopes = ModuleScopes.build(m)
    assert _defs_of(scopes, body) == [
        ("with", inner_with),
        {"c"},
        ("with", outer_with),
        {"a"},
        set(),
    ]
    # The environment of a `with` is outside its own scope.
    assert _defs_of(scopes, c_ref) == [{"c"}, ("with", outer_with), {"a"}, set()]


def test_definition_wins_over_with():
    m, a, c_name, c_ref, body, _, _ = _with_chain()
    res = _resolve(m)
    assert res.get(body) == Definition(a)
    assert res.get(c_ref) == Definition(c_name)


def test_with_exprs_innermost_first():
    # `x: with a; with b; y`
    m = Module()
    x = m.alloc_name("x", NameKind.PARAM)
    env_a = m.alloc_expr(Reference("a"))
    env_b = m.alloc_expr(Reference("b"))
    y = m.alloc_expr(Reference("y"))
    inner = m.alloc_expr(With(env_b, y))
    outer = m.alloc_expr(With(env_a, inner))
    m.entry_expr = m.alloc_expr(Lambda(x, None, outer))
    res = _resolve(m)
    assert res.get(y) == WithExprs((inner, outer))
    assert res.get(env_b) == WithExprs((outer,))
    assert res.get(env_a) is None


def test_plain_attrset_makes_no_scope():
    # `a: { inherit a; b = c: a; e = 1; inherit (a) f; }`
    m = Module()
    pa = m.alloc_name("a", NameKind.PARAM)
    inh = m.alloc_expr(Reference("a"))
    n_a = m.alloc_name("a", NameKind.PLAIN_ATTRSET)
    c = m.alloc_name("c", NameKind.PARAM)
    body = m.alloc_expr(Reference("a"))
    lam = m.alloc_expr(Lambda(c, None, body))
    n_b = m.alloc_name("b", NameKind.PLAIN_ATTRSET)
    one = m.alloc_expr(LiteralExpr(1))
    n_e = m.alloc_name("e", NameKind.PLAIN_ATTRSET)
    from_a = m.alloc_expr(Reference("a"))
    n_f = m.alloc_name("f", NameKind.PLAIN_ATTRSET)
    bindings = Bindings(
        statics=(
            (n_a, BindingValue.inherit(inh)),
            (n_b, BindingValue.expr(lam)),
            (n_e, BindingValue.expr(one)),
            (n_f, BindingValue.inherit_from(0)),
        ),
        inherit_froms=(from_a,),
    )
    attrs = m.alloc_expr(Attrset(bindings))
    m.entry_expr = m.alloc_expr(Lambda(pa, None, attrs))
    scopes = ModuleScopes.build(m)
    assert _defs_of(scopes, body) == [{"c"}, {"a"}, set()]
    assert _defs_of(scopes, from_a) == [{"a"}, set()]
    res = _resolve(m)
    assert res.get(body) == Definition(pa)
    assert res.get(inh) == Definition(pa)


def test_rec_attrset_scope_and_inherit_in_outer_scope():
    # `a: rec { inherit a; b = c: a; e = 1; inherit (a) f; }`
    m = Module()
    pa = m.alloc_name("a", NameKind.PARAM)
    inh = m.alloc_expr(Reference("a"))
    n_a = m.alloc_name("a", NameKind.REC_ATTRSET)
    c = m.alloc_name("c", NameKind.PARAM)
    body = m.alloc_expr(Reference("a"))
    lam = m.alloc_expr(Lambda(c, None, body))
    n_b = m.alloc_name("b", NameKind.REC_ATTRSET)
    one = m.alloc_expr(LiteralExpr(1))
    n_e = m.alloc_name("e", NameKind.REC_ATTRSET)
    from_a = m.alloc_expr(Reference("a"))
    n_f = m.alloc_name("f", NameKind.REC_ATTRSET)
    bindings = Bindings(
        statics=(
            (n_a, BindingValue.inherit(inh)),
            (n_b, BindingValue.expr(lam)),
            (n_e, BindingValue.expr(one)),
            (n_f, BindingValue.inherit_from(0)),
        ),
        inherit_froms=(from_a,),
    )
    attrs = m.alloc_expr(RecAttrset(bindings))
    m.entry_expr = m.alloc_expr(Lambda(pa, None, attrs))
    scopes = ModuleScopes.build(m)
    assert _defs_of(scopes, body) == [{"c"}, {"a", "b", "e", "f"}, {"a"}, set()]
    assert _defs_of(scopes, from_a) == [{"a", "b", "e", "f"}, {"a"}, set()]
    assert _defs_of(scopes, inh) == [{"a"}, set()]
    res = _resolve(m)
    assert res.get(body) == Definition(n_a)
    assert res.get(inh) == Definition(pa)
    assert res.get(from_a) == Definition(n_a)


@pytest.mark.parametrize("rec", [False, True])
def test_dynamic_attr_key(rec):
    # `let a = 1; in { ${a} = a; a = 2; }` and the `rec` variant.
    m = Module()
    let_a = m.alloc_name("a", NameKind.LET_IN)
    one = m.alloc_expr(LiteralExpr(1))
    key = m.alloc_expr(Reference("a"))
    val = m.alloc_expr(Reference("a"))
    kind = NameKind.REC_ATTRSET if rec else NameKind.PLAIN_ATTRSET
    set_a = m.alloc_name("a", kind)
    two = m.alloc_expr(LiteralExpr(2))
    bindings = Bindings(statics=((set_a, BindingValue.expr(two)),), dynamics=((key, val),))
    attrs = m.alloc_expr(RecAttrset(bindings) if rec else Attrset(bindings))
    m.entry_expr = _let(m, ((let_a, BindingValue.expr(one)),), attrs)
    res = _resolve(m)
    expected = Definition(set_a) if rec else Definition(let_a)
    assert res.get(key) == expected
    assert res.get(val) == expected


def test_shadowing_and_inherit():
    # `let a = 1; b = 2; in let a = 2; inherit b; in a + b`
    m = Module()
    outer_a = m.alloc_name("a", NameKind.LET_IN)
    outer_b = m.alloc_name("b", NameKind.LET_IN)
    one = m.alloc_expr(LiteralExpr(1))
    two = m.alloc_expr(LiteralExpr(2))
    inner_a = m.alloc_name("a", NameKind.LET_IN)
    two_again = m.alloc_expr(LiteralExpr(2))
    inh_b = m.alloc_expr(Reference("b"))
    inner_b = m.alloc_name("b", NameKind.LET_IN)
    ref_a = m.alloc_expr(Reference("a"))
    ref_b = m.alloc_expr(Reference("b"))
    body = m.alloc_expr(Binary("+", ref_a, ref_b))
    inner = _let(
        m,
        ((inner_a, BindingValue.expr(two_again)), (inner_b, BindingValue.inherit(inh_b))),
        body,
    )
    m.entry_expr = _let(
        m, ((outer_a, BindingValue.expr(one)), (outer_b, BindingValue.expr(two))), inner
    )
    scopes = ModuleScopes.build(m)
    assert _defs_of(scopes, ref_a) == [{"a", "b"}, {"a", "b"}, set()]
    res = _resolve(m)
    assert res.get(ref_a) == Definition(inner_a)
    assert res.get(ref_b) == Definition(inner_b)
    assert res.get(inh_b) == Definition(outer_b)


def test_let_binding_refers_to_itself():
    # `let a = 1; in let a = a; in a`
    m = Module()
    outer_a = m.alloc_name("a", NameKind.LET_IN)
    one = m.alloc_expr(LiteralExpr(1))
    inner_a = m.alloc_name("a", NameKind.LET_IN)
    rhs = m.alloc_expr(Reference("a"))
    body = m.alloc_expr(Reference("a"))
    inner = _let(m, ((inner_a, BindingValue.expr(rhs)),), body)
    m.entry_expr = _let(m, ((outer_a, BindingValue.expr(one)),), inner)
    res = _resolve(m)
    assert res.get(rhs) == Definition(inner_a)
    assert res.get(body) == Definition(inner_a)


def _builtin_module():
    # `let true = 1; in with x; true + false + falsie`
    m = Module()
    sm = ModuleSourceMap()
    true_name = m.alloc_name("true", NameKind.LET_IN)
    one = m.alloc_expr(LiteralExpr(1))
    x = m.alloc_expr(Reference("x"))
    sm.insert_expr(x, TextRange(24, 25))
    t = m.alloc_expr(Reference("true"))
    f = m.alloc_expr(Reference("false"))
    fs = m.alloc_expr(Reference("falsie"))
    sm.insert_expr(fs, TextRange(43, 49))
    add1 = m.alloc_expr(Binary("+", t, f))
    add2 = m.alloc_expr(Binary("+", add1, fs))
    w = m.alloc_expr(With(x, add2))
    m.entry_expr = _let(m, ((true_name, BindingValue.expr(one)),), w)
    return m, sm, true_name, x, t, f, fs, w


def test_builtin_resolution_order():
    m, _, true_name, x, t, f, fs, w = _builtin_module()
    res = _resolve(m)
    assert res.get(t) == Definition(true_name)
    assert res.get(f) == BuiltinRef("false")
    assert res.get(fs) == WithExprs((w,))
    assert res.get(x) is None


def test_resolve_name_without_builtins_table():
    m, _, _, x, _, f, _, w = _builtin_module()
    scopes = ModuleScopes.build(m)
    assert scopes.resolve_name(f, "false") == WithExprs((w,))
    assert scopes.resolve_name(x, "false") is None
    # Non-global builtins are not visible as bare names.
    assert scopes.resolve_name(x, "tryEval", BUILTINS) is None
    assert scopes.resolve_name(x, "null", BUILTINS) == BuiltinRef("null")


def test_undefined_name_diagnostics():
    m, sm, *_ = _builtin_module()
    diags = list(_resolve(m).to_diagnostics(sm))
    assert [(d.range, d.kind) for d in diags] == [
        (TextRange(24, 25), DiagnosticKind.UNDEFINED_NAME)
    ]


def _inherit_builtins(name):
    # `let inherit (builtins) <name>; in <name>`
    m = Module()
    from_expr = m.alloc_expr(Reference("builtins"))
    n = m.alloc_name(name, NameKind.LET_IN)
    body = m.alloc_expr(Reference(name))
    m.entry_expr = m.alloc_expr(
        LetIn(
            Bindings(statics=((n, BindingValue.inherit_from(0)),), inherit_froms=(from_expr,)),
            body,
        )
    )
    return m, n, body


def test_check_builtin_alias():
    m, n, body = _inherit_builtins("tryEval")
    res = _resolve(m)
    assert res.check_builtin(body, m) == "tryEval"
    assert res.is_inherited_builtin(n)

    m, n, body = _inherit_builtins("not_exist")
    res = _resolve(m)
    assert res.check_builtin(body, m) is None
    assert not res.is_inherited_builtin(n)


def _with_builtins(builtins_inner, name):
    m = Module()
    empty = m.alloc_expr(Attrset(Bindings()))
    b = m.alloc_expr(Reference("builtins"))
    ref = m.alloc_expr(Reference(name))
    if builtins_inner:
        # `with { }; with builtins; <name>`
        inner = m.alloc_expr(With(b, ref))
        m.entry_expr = m.alloc_expr(With(empty, inner))
    else:
        # `with builtins; with { }; <name>`
        inner = m.alloc_expr(With(empty, ref))
        m.entry_expr = m.alloc_expr(With(b, inner))
    return m, ref


def test_check_builtin_with():
    m, ref = _with_builtins(True, "tryEval")
    assert _resolve(m).check_builtin(ref, m) == "tryEval"
    m, ref = _with_builtins(False, "tryEval")
    assert _resolve(m).check_builtin(ref, m) is None
    m, ref = _with_builtins(True, "not_exist")
    assert _resolve(m).check_builtin(ref, m) is None


def test_check_builtin_direct_global():
    m = Module()
    t = m.alloc_expr(Reference("true"))
    m.entry_expr = t
    assert _resolve(m).check_builtin(t, m) == "true"


def test_name_references():
    # `let a = 1; u = 2; in with x; f a a y`
    m = Module()
    a = m.alloc_name("a", NameKind.LET_IN)
    u = m.alloc_name("u", NameKind.LET_IN)
    one = m.alloc_expr(LiteralExpr(1))
    two = m.alloc_expr(LiteralExpr(2))
    x = m.alloc_expr(Reference("x"))
    f = m.alloc_expr(Reference("f"))
    r1 = m.alloc_expr(Reference("a"))
    r2 = m.alloc_expr(Reference("a"))
    y = m.alloc_expr(Reference("y"))
    app = m.alloc_expr(Apply(m.alloc_expr(Apply(m.alloc_expr(Apply(f, r1)), r2)), y))
    w = m.alloc_expr(With(x, app))
    m.entry_expr = _let(m, ((a, BindingValue.expr(one)), (u, BindingValue.expr(two))), w)
    res = _resolve(m)
    refs = NameReference.build(res)
    assert refs.name_references(a) == (r1, r2)
    assert refs.name_references(u) is None
    assert refs.with_references(w) == (f, y)
    assert refs.with_references(x) is None
    assert dict(res.items()) == {
        f: WithExprs((w,)),
        r1: Definition(a),
        r2: Definition(a),
        y: WithExprs((w,)),
    }


def test_inherit_must_be_reference():
    m = Module()
    one = m.alloc_expr(LiteralExpr(1))
    n = m.alloc_name("a", NameKind.PLAIN_ATTRSET)
    m.entry_expr = m.alloc_expr(Attrset(Bindings(statics=((n, BindingValue.inherit(one)),))))
    with pytest.raises(ValueError):
        ModuleScopes.build(m)


def test_invalid_results_rejected():
    with pytest.raises(ValueError):
        WithExprs(())
    with pytest.raises(ValueError):
        ScopeData(None)
    with pytest.raises(ValueError):
        ScopeData(None, definitions={}, with_expr=3)


def test_scope_data_accessors():
    data = ScopeData(2, with_expr=0)
    assert data.as_with() == 0
    assert data.as_definitions() is None
    m = Module()
    m.entry_expr = m.alloc_expr(Reference("a"))
    scopes = ModuleScopes.build(m)
    assert scopes.scope(scopes.scope_for_expr(m.entry_expr)) == ScopeData(None, definitions={})
    assert scopes.scope_for_expr(99) is None