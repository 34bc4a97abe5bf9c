"""Host functions exposed to JIT-compiled code.

Each builtin is a Python callable over doubles wrapped in a `ctypes`
callback and published to LLVM's process symbol table, so an `extern`
declaration of the same name links against it.
"""

from __future__ import annotations

import ctypes
import logging
import sys
from dataclasses import dataclass
from typing import Callable, Dict, List, Optional, TextIO

from llvmlite import binding as llvm  # type: ignore

logger = logging.getLogger(__name__)

# Compiled code keeps raw addresses; callbacks must outlive every engine.
_KEEPALIVE: List[object] = []


@dataclass(frozen=True)
class Builtin:
    name: str
    arity: int
    address: int


class Runtime:
    def __init__(self, stream: Optional[TextIO] = None) -> None:
        # None means "sys.stderr at call time", so redirected streams are honoured.
        self._stream = stream
        self.builtins: Dict[str, Builtin] = {}
        self.register("putchard", self._putchard)
        self.register("printd", self._printd)

    @property
    def stream(self) -> TextIO:
        return self._stream if self._stream is not None else sys.stderr

    def register(self, name: str, fn: Callable[..., float], arity: int = 1) -> Builtin:
        proto = ctypes.CFUNCTYPE(ctypes.c_double, *([ctypes.c_double] * arity))
        callback = proto(lambda *args: float(fn(*args)))
        _KEEPALIVE.append(callback)
        address = ctypes.cast(callback, ctypes.c_void_p).value
        llvm.add_symbol(name, address)
        builtin = Builtin(name=name, arity=arity, address=address)
        self.builtins[name] = builtin
        logger.debug("registered builtin %s/%d at %#x", name, arity, address)
        return builtin

    def lookup(self, name: str) -> Optional[int]:
        builtin = self.builtins.get(name)
        return builtin.address if builtin is not None else None

    def _putchard(self, x: float) -> float:
        self.stream.write(chr(int(x)))
        self.stream.flush()
        return 0.0

    def _printd(self, x: float) -> float:
        print(f"{x:g}", file=self.stream, flush=True)
        return 0.0
