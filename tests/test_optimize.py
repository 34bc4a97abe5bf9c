from __future__ import annotations

import pytest
from llvmlite import binding as llvm

from kscope.optimize import Optimizer
from kscope.parser import parse_program


def _binding_module(generator, source: str) -> llvm.ModuleRef:
    generator.generate_program(parse_program(source))
    mod = llvm.parse_assembly(str(generator.release_module()))
    mod.verify()
    return mod


@pytest.mark.parametrize("level", [1, 2, 3])
def test_pipeline_runs_at_every_level(generator, level):
    """Optimized modules still verify and keep their external definitions."""
    mod = _binding_module(generator, "def opoly(x) (x+1)*(x+1) - x*x")
    Optimizer(level=level).run(mod)
    mod.verify()
    fn = mod.get_function("opoly")
    assert not fn.is_declaration


def test_level_zero_leaves_module_untouched(generator):
    mod = _binding_module(generator, "def ozero(x) x*1")
    before = str(mod)
    optimizer = Optimizer(level=0)
    assert not optimizer.enabled
    optimizer.run(mod)
    assert str(mod) == before
