from __future__ import annotations

from llvmlite import ir

from kscope.scope import Scope

DOUBLE = ir.DoubleType()


def test_shadow_then_restore_puts_outer_binding_back():
    outer, inner = ir.Constant(DOUBLE, 1.0), ir.Constant(DOUBLE, 2.0)
    scope = Scope()
    scope.bind("i", outer)
    saved = scope.shadow("i", inner)
    assert scope.lookup("i") is inner
    scope.restore(saved)
    assert scope.lookup("i") is outer


def test_restore_erases_name_that_was_unbound():
    scope = Scope()
    scope.restore(scope.shadow("i", ir.Constant(DOUBLE, 0.0)))
    assert not scope.has("i")
    assert scope.lookup("i") is None


def test_shadow_records_whether_name_was_bound():
    scope = Scope()
    assert scope.shadow("i", ir.Constant(DOUBLE, 0.0)).existed is False
    assert scope.shadow("i", ir.Constant(DOUBLE, 1.0)).existed is True
    scope.clear()
    assert not scope.has("i")
