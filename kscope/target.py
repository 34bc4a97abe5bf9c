from __future__ import annotations

import ctypes.util
import logging
from typing import Optional

from llvmlite import binding as llvm  # type: ignore

logger = logging.getLogger(__name__)

# Host libraries whose symbols `extern` declarations may bind to.
HOST_LIBRARIES = ("c", "m")

# Initialized on first use by ensure_native()
_TARGET: Optional[llvm.Target] = None
_DATA_LAYOUT: Optional[str] = None


def ensure_native() -> llvm.Target:
    """Initialize the host target and make the C and math libraries searchable."""
    global _TARGET, _DATA_LAYOUT
    if _TARGET is None:
        llvm.initialize_native_target()
        llvm.initialize_native_asmprinter()
        _load_host_libraries()
        _TARGET = llvm.Target.from_default_triple()
        _DATA_LAYOUT = str(_TARGET.create_target_machine().target_data)
    return _TARGET


def _load_host_libraries() -> None:
    # LLVM's symbol search only covers libraries loaded into it explicitly.
    for name in HOST_LIBRARIES:
        path = ctypes.util.find_library(name)
        if path is None:
            logger.warning("host library %r not found; its functions cannot be declared extern", name)
            continue
        llvm.load_library_permanently(path)
        logger.debug("loaded host library %s", path)


def create_target_machine(opt: int = 2) -> llvm.TargetMachine:
    """A fresh host target machine; an MCJIT engine takes ownership of the one it is given."""
    return ensure_native().create_target_machine(opt=opt, reloc="default", codemodel="jitdefault")


def host_triple() -> str:
    ensure_native()
    return llvm.get_default_triple()


def host_data_layout() -> str:
    ensure_native()
    assert _DATA_LAYOUT is not None
    return _DATA_LAYOUT
