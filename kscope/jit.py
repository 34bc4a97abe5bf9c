"""Incremental module manager over llvmlite's MCJIT.

Each committed translation unit gets its own execution engine, so a unit can
be unlinked on its own. Units are kept in commit order; symbol lookup walks
them newest first so a later definition shadows an earlier one. Calls from a
new unit into older ones are linked by publishing the current resolution of
each called declaration to LLVM's process symbol table right before the new
engine is finalized.
"""

from __future__ import annotations

import itertools
import logging
from dataclasses import dataclass, field
from typing import Dict, FrozenSet, List, Optional, Set

from llvmlite import binding as llvm  # type: ignore
from llvmlite import ir  # type: ignore

from .errors import BackendError, SymbolNotFoundError, UnknownHandleError
from .optimize import Optimizer
from .runtime import Runtime
from .target import create_target_machine, ensure_native

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ModuleHandle:
    id: int
    name: str = field(default="", compare=False)

    def __str__(self) -> str:
        return f"#{self.id} ({self.name})" if self.name else f"#{self.id}"


@dataclass
class _Committed:
    handle: ModuleHandle
    engine: llvm.ExecutionEngine
    exported: FrozenSet[str]


def called_declarations(unit: ir.Module) -> Set[str]:
    """Names of body-less functions that some body in `unit` calls."""
    declared = {fn.name for fn in unit.functions if fn.is_declaration}
    called: Set[str] = set()
    for fn in unit.functions:
        for block in fn.blocks:
            for instr in block.instructions:
                if isinstance(instr, ir.CallInstr) and instr.callee.name in declared:
                    called.add(instr.callee.name)
    return called


class JitManager:
    def __init__(self, runtime: Optional[Runtime] = None, optimizer: Optional[Optimizer] = None) -> None:
        ensure_native()
        self.runtime = runtime
        self.optimizer = optimizer if optimizer is not None else Optimizer()
        self._modules: List[_Committed] = []
        self._ids = itertools.count(1)
        # What the process table held for a name before this manager first published it.
        self._process: Dict[str, Optional[int]] = {}

    def __enter__(self) -> "JitManager":
        return self

    def __exit__(self, *exc) -> None:
        self.close()

    def __len__(self) -> int:
        return len(self._modules)

    @property
    def handles(self) -> List[ModuleHandle]:
        return [committed.handle for committed in self._modules]

    def add_module(self, unit: ir.Module) -> ModuleHandle:
        resolved: Dict[str, int] = {}
        for name in sorted(called_declarations(unit)):
            address = self.find_symbol(name)
            if address is None:
                raise SymbolNotFoundError(f"unresolved external function '{name}' in {unit.name}")
            resolved[name] = address

        try:
            mod = llvm.parse_assembly(str(unit))
            mod.verify()
        except RuntimeError as e:
            raise BackendError(f"cannot compile {unit.name}: {e}") from e
        self.optimizer.run(mod)
        exported = frozenset(
            fn.name
            for fn in mod.functions
            if not fn.is_declaration and fn.linkage == llvm.Linkage.external
        )

        for name, address in resolved.items():
            self._publish(name, address)
            logger.debug("linked %s -> %#x for %s", name, address, unit.name)

        engine = llvm.create_mcjit_compiler(mod, create_target_machine())
        engine.finalize_object()

        handle = ModuleHandle(id=next(self._ids), name=unit.name)
        self._modules.append(_Committed(handle=handle, engine=engine, exported=exported))
        logger.debug("committed %s exporting %s", handle, sorted(exported))
        return handle

    def remove_module(self, handle: ModuleHandle) -> None:
        for idx, committed in enumerate(self._modules):
            if committed.handle == handle:
                del self._modules[idx]
                committed.engine.close()
                logger.debug("removed %s", handle)
                return
        raise UnknownHandleError(f"unknown module handle {handle}")

    def find_symbol(self, name: str) -> Optional[int]:
        """Address of `name`, newest committed module first, then the process."""
        for committed in reversed(self._modules):
            if name not in committed.exported:
                continue
            address = committed.engine.get_function_address(name)
            if address:
                return address
        return self._find_in_process(name)

    def _find_in_process(self, name: str) -> Optional[int]:
        if self.runtime is not None:
            address = self.runtime.lookup(name)
            if address is not None:
                return address
        if name in self._process:
            return self._process[name]
        return llvm.address_of_symbol(name)

    def _publish(self, name: str, address: int) -> None:
        if name not in self._process:
            self._process[name] = llvm.address_of_symbol(name)
        llvm.add_symbol(name, address)

    def close(self) -> None:
        while self._modules:
            self._modules.pop().engine.close()
