from __future__ import annotations

import io
import itertools

import pytest

pytest.importorskip("llvmlite")

from kscope.codegen import CodeGenerator
from kscope.jit import JitManager
from kscope.optimize import Optimizer
from kscope.repl import ANON_EXPR, Options, Session
from kscope.runtime import Runtime

# The process symbol table is global; builtins registered by different tests need distinct names.
_builtin_ids = itertools.count()


@pytest.fixture
def runtime() -> Runtime:
    return Runtime(stream=io.StringIO())


@pytest.fixture
def recorder(runtime: Runtime):
    """Register a fresh one-argument builtin that appends its argument to a list."""
    seen: list[float] = []
    name = f"record{next(_builtin_ids)}"

    def record(x: float) -> float:
        seen.append(x)
        return 0.0

    runtime.register(name, record)
    return name, seen


@pytest.fixture
def generator() -> CodeGenerator:
    return CodeGenerator(transient=(ANON_EXPR,))


@pytest.fixture
def jit(runtime: Runtime):
    with JitManager(runtime=runtime, optimizer=Optimizer(level=0)) as manager:
        yield manager


@pytest.fixture
def session(runtime: Runtime):
    with Session(Options(opt_level=2), runtime=runtime, out=io.StringIO(), err=io.StringIO()) as s:
        yield s
