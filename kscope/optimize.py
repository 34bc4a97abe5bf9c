"""Post-verification optimization of a translation unit.

Runs llvmlite's new-pass-manager default pipeline (instruction combining,
reassociation, GVN, CFG simplification among others) over a parsed module.
Results are observably identical to the unoptimized module.
"""

from __future__ import annotations

import logging

from llvmlite import binding as llvm  # type: ignore

from .target import create_target_machine

logger = logging.getLogger(__name__)


class Optimizer:
    def __init__(self, level: int = 2) -> None:
        if not 0 <= level <= 3:
            raise ValueError(f"optimization level must be 0-3, got {level}")
        self.level = level
        self._tm = create_target_machine(opt=level) if level else None

    @property
    def enabled(self) -> bool:
        return self.level > 0

    def run(self, module: llvm.ModuleRef) -> None:
        if not self.enabled:
            return
        pto = llvm.PipelineTuningOptions(speed_level=self.level)
        pb = llvm.create_pass_builder(self._tm, pto)
        pm = pb.getModulePassManager()
        pm.run(module, pb)
        logger.debug("optimized %s at O%d", module.name, self.level)
