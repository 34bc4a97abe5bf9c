from __future__ import annotations

import pytest
from llvmlite import binding as llvm
from llvmlite import ir

from kscope.ast import BinaryOp, Function, Number, Prototype, Variable
from kscope.codegen import CodeGenerator
from kscope.errors import (
    ArityMismatchError,
    DetachedExpressionError,
    InvalidOperatorError,
    RedefinitionError,
    UnhandledNodeError,
    UnknownCalleeError,
    UnknownVariableError,
)
from kscope.parser import parse_program


def _gen(generator: CodeGenerator, source: str):
    return [generator.generate(stmt) for stmt in parse_program(source).statements]


def test_function_signature_is_all_doubles(generator):
    (fn,) = _gen(generator, "def add(a b) a+b")
    assert isinstance(fn, ir.Function)
    assert [a.name for a in fn.args] == ["a", "b"]
    assert str(fn.function_type) == "double (double, double)"
    assert not fn.is_declaration


def test_less_than_yields_a_double(generator):
    (fn,) = _gen(generator, "def lt(a b) a < b")
    ops = [(i.opname, getattr(i, "op", None)) for i in fn.blocks[0].instructions]
    assert ("fcmp", "ult") in ops
    assert ops[-2][0] == "uitofp"


def test_if_merges_both_branches_with_phi(generator):
    """Each branch contributes one incoming edge from the block it ended in."""
    (fn,) = _gen(generator, "def pick(c) if c then 1 else 2")
    assert [b.name for b in fn.blocks] == ["entry", "then", "else", "ifcont"]
    phis = [i for i in fn.blocks[-1].instructions if isinstance(i, ir.PhiInstr)]
    assert len(phis) == 1
    assert [blk.name for _, blk in phis[0].incomings] == ["then", "else"]


def test_nested_if_records_inner_continuation_as_predecessor(generator):
    (fn,) = _gen(generator, "def nest(a b) if a then (if b then 1 else 2) else 3")
    merge = next(b for b in fn.blocks if b.name == "ifcont")
    outer_phi = [i for i in merge.instructions if isinstance(i, ir.PhiInstr)][0]
    preds = [blk.name for _, blk in outer_phi.incomings]
    assert preds[0] == "ifcont.1"
    assert preds[1] == "else"


def test_for_loop_shape(generator):
    (fn,) = _gen(generator, "def count(n) for i = 0, i < n in i")
    assert [b.name for b in fn.blocks] == ["entry", "loop", "afterloop"]
    loop = fn.blocks[1]
    (phi,) = [i for i in loop.instructions if isinstance(i, ir.PhiInstr)]
    assert phi.name == "i"
    assert [blk.name for _, blk in phi.incomings] == ["entry", "loop"]
    assert any(i.name == "nextvar" and i.opname == "fadd" for i in loop.instructions)
    ret = fn.blocks[-1].terminator
    assert isinstance(ret.return_value, ir.Constant)
    assert ret.return_value.constant == 0.0


def test_loop_variable_does_not_leak_out_of_loop(generator):
    with pytest.raises(UnknownVariableError, match="unknown variable 'i'"):
        _gen(generator, "def leak(n) (for i = 0, i < n in 0) + i")


def test_unknown_variable(generator):
    with pytest.raises(UnknownVariableError, match="1:12: unknown variable 'y'"):
        _gen(generator, "def f(x) x+y")


def test_failed_definition_is_erased_and_can_be_retried(generator):
    """A body that fails to generate leaves no function behind."""
    with pytest.raises(UnknownVariableError):
        _gen(generator, "def f(x) y")
    assert "f" not in generator.module.globals
    (fn,) = _gen(generator, "def f(x) x")
    assert fn.name == "f"
    assert not fn.is_declaration


def test_failed_definition_keeps_prior_declaration(generator):
    _gen(generator, "extern g(x)")
    with pytest.raises(UnknownVariableError):
        _gen(generator, "def g(x) y")
    fn = generator.module.globals["g"]
    assert fn.is_declaration
    _gen(generator, "def g(x) x")
    assert not generator.module.globals["g"].is_declaration


def test_definition_after_extern_is_allowed(generator):
    _, fn = _gen(generator, "extern foo(x)\ndef foo(x) x")
    assert not fn.is_declaration


def test_second_body_is_a_redefinition(generator):
    _gen(generator, "def foo(x) x")
    with pytest.raises(RedefinitionError, match="'foo' cannot be redefined"):
        _gen(generator, "def foo(x) x")


def test_redeclaring_with_other_arity_is_rejected(generator):
    _gen(generator, "extern foo(x)")
    _gen(generator, "extern foo(y)")
    with pytest.raises(RedefinitionError):
        _gen(generator, "extern foo(x y)")
    with pytest.raises(RedefinitionError):
        _gen(generator, "def foo(x y) x")


def test_arity_mismatch(generator):
    with pytest.raises(ArityMismatchError, match="'zero' takes 0 argument"):
        _gen(generator, "def zero() 0\ndef bad() zero(1)")
    assert "bad" not in generator.module.globals


def test_unknown_callee(generator):
    with pytest.raises(UnknownCalleeError, match="unknown function 'nope'"):
        _gen(generator, "def bad() nope()")


def test_invalid_operator_is_internal():
    generator = CodeGenerator()
    node = Function(Prototype("div", ("a", "b")), BinaryOp("/", Variable("a"), Variable("b")))
    with pytest.raises(InvalidOperatorError):
        generator.generate(node)
    assert "div" not in generator.module.globals


def test_unhandled_node():
    with pytest.raises(UnhandledNodeError, match="unhandled node str"):
        CodeGenerator().generate("1")


def test_release_carries_signatures_forward(generator):
    """The next unit gets body-less copies of every external function."""
    _gen(generator, "extern sin(x)\ndef twice(a) a*2")
    generator.generate(Function(Prototype("__anon_expr"), Number(1.0)))
    finished = generator.release_module()

    assert {fn.name for fn in finished.functions} == {"sin", "twice", "__anon_expr"}
    carried = {fn.name: fn for fn in generator.module.functions}
    assert set(carried) == {"sin", "twice"}
    assert all(fn.is_declaration for fn in carried.values())
    assert [a.name for a in carried["twice"].args] == ["a"]
    assert generator.module.name != finished.name


def test_modules_carry_host_target(generator):
    assert generator.module.triple
    assert generator.module.data_layout


def test_generate_program_emits_statements_in_order(generator):
    values = generator.generate_program(parse_program("extern cosh(x)\ndef pa(x) cosh(x)\ndef pb(x) pa(x)*2"))
    assert [v.name for v in values] == ["cosh", "pa", "pb"]
    assert [fn.name for fn in generator.module.functions] == ["cosh", "pa", "pb"]


def test_bare_expression_has_no_function_to_live_in(generator):
    with pytest.raises(DetachedExpressionError, match="1:2: expression outside a function body"):
        generator.generate_program(parse_program("1+2"))
    assert list(generator.module.functions) == []


def test_expression_after_definition_leaves_definition_intact(generator):
    """The builder does not stay parked at the end of the last function."""
    with pytest.raises(DetachedExpressionError):
        generator.generate_program(parse_program("def pf(x) x\n1+2"))
    assert generator.builder is None
    (fn,) = generator.module.functions
    assert [len(b.instructions) for b in fn.blocks] == [1]
    llvm.parse_assembly(str(generator.module)).verify()
