"""AST → LLVM IR (llvmlite.ir), one translation unit at a time.

Every value is a double. The generator owns the current `ir.Module`, the
builder whose position is the current insertion point, and the scope map for
the function being generated. `if` and `for` are lowered by hand into basic
blocks joined by phi nodes; both re-read `builder.block` after generating a
sub-expression because nested control flow moves the insertion point.
"""

from __future__ import annotations

import itertools
import logging
from typing import Iterable, List, Optional, Sequence

from llvmlite import binding as llvm  # type: ignore
from llvmlite import ir  # type: ignore

from .ast import BinaryOp, Call, Expr, For, Function, If, Number, Program, Prototype, Variable
from .errors import (
    ArityMismatchError,
    BackendError,
    DetachedExpressionError,
    InvalidOperatorError,
    RedefinitionError,
    UnhandledNodeError,
    UnknownCalleeError,
    UnknownVariableError,
)
from .scope import Scope
from .target import host_data_layout, host_triple

logger = logging.getLogger(__name__)

DOUBLE = ir.DoubleType()
ZERO = ir.Constant(DOUBLE, 0.0)
ONE = ir.Constant(DOUBLE, 1.0)


class CodeGenerator:
    def __init__(self, module_prefix: str = "kscope", transient: Iterable[str] = ()) -> None:
        self._module_prefix = module_prefix
        self._module_ids = itertools.count()
        # Names never carried into the next unit (e.g. the REPL's anonymous expression).
        self.transient = frozenset(transient)
        self.module = self._new_module()
        self.builder: Optional[ir.IRBuilder] = None
        self.scope = Scope()

    # --- translation units -----------------------------------------------

    def _new_module(self) -> ir.Module:
        module = ir.Module(name=f"{self._module_prefix}_{next(self._module_ids)}")
        module.triple = host_triple()
        module.data_layout = host_data_layout()
        return module

    def release_module(self) -> ir.Module:
        """Hand back the current unit and open a new one.

        Every externally visible function of the retired unit is re-declared
        (signature only) in the new unit so later code can call bodies that
        live in already committed units.
        """
        finished = self.module
        self.module = self._new_module()
        for fn in finished.functions:
            if fn.linkage not in ("", "external") or fn.name in self.transient:
                continue
            self._declare(fn.name, [arg.name for arg in fn.args])
        logger.debug(
            "released %s; carried %d signature(s) into %s",
            finished.name,
            len(self.module.functions),
            self.module.name,
        )
        return finished

    # --- dispatch ---------------------------------------------------------

    def generate(self, node) -> ir.Value:
        if isinstance(node, Expr) and self.builder is None:
            raise DetachedExpressionError("expression outside a function body", node.loc)
        if isinstance(node, Number):
            return self._gen_number(node)
        if isinstance(node, Variable):
            return self._gen_variable(node)
        if isinstance(node, BinaryOp):
            return self._gen_binary(node)
        if isinstance(node, Call):
            return self._gen_call(node)
        if isinstance(node, If):
            return self._gen_if(node)
        if isinstance(node, For):
            return self._gen_for(node)
        if isinstance(node, Prototype):
            return self._gen_prototype(node)
        if isinstance(node, Function):
            return self._gen_function(node)
        raise UnhandledNodeError(f"unhandled node {type(node).__name__}", getattr(node, "loc", None))

    def generate_program(self, program: Program) -> List[ir.Value]:
        """Generate every statement in order.

        Bare expressions are rejected; the driver wraps them in a function first.
        """
        return [self.generate(stmt) for stmt in program.statements]

    # --- expressions ------------------------------------------------------

    def _gen_number(self, node: Number) -> ir.Value:
        return ir.Constant(DOUBLE, node.value)

    def _gen_variable(self, node: Variable) -> ir.Value:
        value = self.scope.lookup(node.name)
        if value is None:
            raise UnknownVariableError(f"unknown variable '{node.name}'", node.loc)
        return value

    def _gen_binary(self, node: BinaryOp) -> ir.Value:
        lhs = self.generate(node.lhs)
        rhs = self.generate(node.rhs)
        op = node.op
        if op == "+":
            return self.builder.fadd(lhs, rhs, name="addtmp")
        if op == "-":
            return self.builder.fsub(lhs, rhs, name="subtmp")
        if op == "*":
            return self.builder.fmul(lhs, rhs, name="multmp")
        if op == "<":
            cmp = self.builder.fcmp_unordered("<", lhs, rhs, name="cmptmp")
            return self.builder.uitofp(cmp, DOUBLE, name="booltmp")
        raise InvalidOperatorError(f"invalid binary operator '{op}'", node.loc)

    def _gen_call(self, node: Call) -> ir.Value:
        callee = self.module.globals.get(node.callee)
        if not isinstance(callee, ir.Function):
            raise UnknownCalleeError(f"unknown function '{node.callee}'", node.loc)
        if len(callee.args) != len(node.args):
            raise ArityMismatchError(
                f"'{node.callee}' takes {len(callee.args)} argument(s), got {len(node.args)}",
                node.loc,
            )
        args = [self.generate(arg) for arg in node.args]
        return self.builder.call(callee, args, name="calltmp")

    def _gen_if(self, node: If) -> ir.Value:
        cond = self.generate(node.condition)
        cond_bool = self.builder.fcmp_ordered("!=", cond, ZERO, name="ifcond")

        fn = self.builder.function
        then_bb = fn.append_basic_block("then")
        else_bb = fn.append_basic_block("else")
        merge_bb = fn.append_basic_block("ifcont")
        self.builder.cbranch(cond_bool, then_bb, else_bb)

        self.builder.position_at_end(then_bb)
        then_val = self.generate(node.then)
        then_end = self.builder.block
        self.builder.branch(merge_bb)

        self.builder.position_at_end(else_bb)
        else_val = self.generate(node.else_)
        else_end = self.builder.block
        self.builder.branch(merge_bb)

        self.builder.position_at_end(merge_bb)
        phi = self.builder.phi(DOUBLE, name="iftmp")
        phi.add_incoming(then_val, then_end)
        phi.add_incoming(else_val, else_end)
        return phi

    def _gen_for(self, node: For) -> ir.Value:
        start = self.generate(node.start)
        preheader = self.builder.block

        fn = self.builder.function
        loop_bb = fn.append_basic_block("loop")
        self.builder.branch(loop_bb)
        self.builder.position_at_end(loop_bb)

        var = self.builder.phi(DOUBLE, name=node.var)
        var.add_incoming(start, preheader)
        saved = self.scope.shadow(node.var, var)

        self.generate(node.body)
        step = self.generate(node.step) if node.step is not None else ONE
        next_var = self.builder.fadd(var, step, name="nextvar")

        # The exit test sees the advanced value: `for i = 1, i < n` runs i = 1 .. n-1.
        self.scope.bind(node.var, next_var)
        end = self.generate(node.end)
        end_cond = self.builder.fcmp_ordered("!=", end, ZERO, name="loopcond")

        loop_end = self.builder.block
        after_bb = fn.append_basic_block("afterloop")
        self.builder.cbranch(end_cond, loop_bb, after_bb)
        self.builder.position_at_end(after_bb)
        var.add_incoming(next_var, loop_end)

        self.scope.restore(saved)
        return ZERO

    # --- functions --------------------------------------------------------

    def _declare(self, name: str, params: Sequence[str]) -> ir.Function:
        fn_ty = ir.FunctionType(DOUBLE, [DOUBLE] * len(params))
        fn = ir.Function(self.module, fn_ty, name=name)
        for arg, param in zip(fn.args, params):
            arg.name = param
        return fn

    def _gen_prototype(self, node: Prototype) -> ir.Function:
        existing = self.module.globals.get(node.name)
        if isinstance(existing, ir.Function):
            if len(existing.args) != len(node.params):
                raise RedefinitionError(
                    f"'{node.name}' redeclared with {len(node.params)} parameter(s), "
                    f"previously {len(existing.args)}",
                    node.loc,
                )
            return existing
        return self._declare(node.name, node.params)

    def _gen_function(self, node: Function) -> ir.Function:
        proto = node.proto
        fn = self.module.globals.get(proto.name)
        created = fn is None
        if created:
            fn = self._gen_prototype(proto)
        elif not fn.is_declaration:
            raise RedefinitionError(f"function '{proto.name}' cannot be redefined", node.loc or proto.loc)
        elif len(fn.args) != len(proto.params):
            raise RedefinitionError(
                f"'{proto.name}' defined with {len(proto.params)} parameter(s), "
                f"declared with {len(fn.args)}",
                node.loc or proto.loc,
            )

        self.scope.clear()
        try:
            self.builder = ir.IRBuilder(fn.append_basic_block("entry"))
            for param, arg in zip(proto.params, fn.args):
                self.scope.bind(param, arg)
            self.builder.ret(self.generate(node.body))
            self._verify(fn)
        except Exception:
            self._rollback(fn, created)
            raise
        finally:
            self.scope.clear()
            self.builder = None
        logger.debug("generated function %s in %s", fn.name, self.module.name)
        return fn

    def _verify(self, fn: ir.Function) -> None:
        try:
            llvm.parse_assembly(str(self.module)).verify()
        except RuntimeError as e:
            raise BackendError(f"verification of '{fn.name}' failed: {e}") from e

    def _rollback(self, fn: ir.Function, created: bool) -> None:
        if not created:
            # Back to the signature-only declaration it was before this definition.
            fn.blocks = []
            return
        del self.module.globals[fn.name]
        # llvmlite.ir has no erase. Module.scope is a NameScope whose _useset holds every
        # registered global name; ir.Function registers without deduplication and raises
        # DuplicatedNameError on a name still in it.
        self.module.scope._useset.discard(fn.name)
        logger.debug("erased partial function %s", fn.name)
