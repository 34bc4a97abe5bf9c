#!/usr/bin/env python3
"""Read, compile, run, print.

Each top-level statement is parsed, lowered into the generator's current
unit and then, depending on its kind:

  - `def`     → committed to the JIT (the unit is released and linked);
  - `extern`  → declared in the current unit only;
  - an expression → wrapped in a zero-argument `__anon_expr`, committed,
    called once, and its unit removed again whatever the outcome.
"""

from __future__ import annotations

import argparse
import ctypes
import logging
import os
import sys
from dataclasses import dataclass
from pathlib import Path
from typing import Iterable, Iterator, Optional, TextIO

from .ast import Expr, Function, Prototype, TopLevel
from .codegen import CodeGenerator
from .errors import InternalError, KscopeError, LexError, ParseError, SymbolNotFoundError
from .jit import JitManager
from .lexer import Lexer
from .optimize import Optimizer
from .parser import Parser
from .runtime import Runtime

logger = logging.getLogger(__name__)

ANON_EXPR = "__anon_expr"
OPT_LEVEL_ENV = "KSCOPE_OPT_LEVEL"
DEFAULT_PROMPT = "ready> "


@dataclass(frozen=True)
class Options:
    opt_level: int = 2
    dump_ir: bool = False
    prompt: str = ""


def default_opt_level() -> int:
    raw = os.environ.get(OPT_LEVEL_ENV)
    if raw is None:
        return 2
    try:
        level = int(raw)
    except ValueError:
        raise ValueError(f"{OPT_LEVEL_ENV} must be an integer 0-3, got {raw!r}") from None
    if not 0 <= level <= 3:
        raise ValueError(f"{OPT_LEVEL_ENV} must be an integer 0-3, got {raw!r}")
    return level


class Session:
    def __init__(
        self,
        options: Optional[Options] = None,
        runtime: Optional[Runtime] = None,
        out: Optional[TextIO] = None,
        err: Optional[TextIO] = None,
    ) -> None:
        self.options = options or Options()
        self.runtime = runtime or Runtime()
        self.generator = CodeGenerator(transient=(ANON_EXPR,))
        self.jit = JitManager(runtime=self.runtime, optimizer=Optimizer(self.options.opt_level))
        self._out = out
        self._err = err

    @property
    def out(self) -> TextIO:
        return self._out if self._out is not None else sys.stdout

    @property
    def err(self) -> TextIO:
        return self._err if self._err is not None else sys.stderr

    def close(self) -> None:
        self.jit.close()

    def __enter__(self) -> "Session":
        return self

    def __exit__(self, *exc) -> None:
        self.close()

    def handle(self, stmt: TopLevel) -> Optional[float]:
        """Process one statement; returns the value of a bare expression."""
        if isinstance(stmt, Function):
            self._dump(self.generator.generate(stmt))
            self.jit.add_module(self.generator.release_module())
            return None
        if isinstance(stmt, Prototype):
            self._dump(self.generator.generate(stmt))
            return None
        return self.evaluate(stmt)

    def evaluate(self, expr: Expr) -> float:
        wrapper = Function(proto=Prototype(name=ANON_EXPR, loc=expr.loc), body=expr, loc=expr.loc)
        self._dump(self.generator.generate(wrapper))
        handle = self.jit.add_module(self.generator.release_module())
        try:
            address = self.jit.find_symbol(ANON_EXPR)
            if address is None:
                raise SymbolNotFoundError(f"function '{ANON_EXPR}' not found after commit")
            return ctypes.CFUNCTYPE(ctypes.c_double)(address)()
        finally:
            self.jit.remove_module(handle)

    def run(self, lines: Iterable[str]) -> int:
        """Process every statement in `lines`; returns the number that failed."""
        parser = Parser(Lexer(lines))
        failures = 0
        resync = False
        while True:
            try:
                if resync:
                    resync = False
                    parser.synchronize()
                if parser.at_eof():
                    return failures
                if parser.current.is_char(";"):
                    parser.advance()
                    continue
                result = self.handle(parser.parse_top_level())
                if result is not None:
                    print(f"Evaluated to {result:g}", file=self.out, flush=True)
            except (LexError, ParseError) as e:
                failures += 1
                self._report(e)
                resync = True
            except KscopeError as e:
                failures += 1
                self._report(e)

    def _report(self, e: KscopeError) -> None:
        prefix = "internal error" if isinstance(e, InternalError) else "error"
        print(f"{prefix}: {e}", file=self.err, flush=True)
        logger.debug("statement failed", exc_info=e)

    def _dump(self, fn) -> None:
        if self.options.dump_ir:
            print(fn, file=self.err)


def _prompted(stream: TextIO, prompt: str, echo: TextIO) -> Iterator[str]:
    while True:
        echo.write(prompt)
        echo.flush()
        line = stream.readline()
        if not line:
            return
        yield line


def main(argv: list[str] | None = None) -> int:
    ap = argparse.ArgumentParser(
        prog="kscope",
        description="kscope: JIT-compile and evaluate a small expression language",
    )
    ap.add_argument("source", nargs="?", type=Path, help="Source file (default: standard input)")
    ap.add_argument(
        "-O",
        "--opt-level",
        type=int,
        choices=[0, 1, 2, 3],
        default=None,
        help=f"Optimization level for committed code (default: ${OPT_LEVEL_ENV} or 2)",
    )
    ap.add_argument("--dump-ir", action="store_true", help="Print the IR of every generated function to stderr")
    ap.add_argument("-v", "--verbose", action="store_true", help="Log pipeline events to stderr")
    ap.add_argument(
        "--prompt",
        default=None,
        help=f"Prompt shown before each input line (default: {DEFAULT_PROMPT!r} on a terminal, none otherwise)",
    )
    args = ap.parse_args(argv)

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.WARNING,
        format="%(levelname)s %(name)s: %(message)s",
        stream=sys.stderr,
    )

    opt_level = args.opt_level
    if opt_level is None:
        try:
            opt_level = default_opt_level()
        except ValueError as e:
            ap.error(str(e))
    prompt = args.prompt
    if prompt is None:
        prompt = DEFAULT_PROMPT if args.source is None and sys.stdin.isatty() else ""
    options = Options(opt_level=opt_level, dump_ir=args.dump_ir, prompt=prompt)

    with Session(options) as session:
        if args.source is not None:
            with args.source.open() as f:
                failures = session.run(f)
        elif options.prompt:
            failures = session.run(_prompted(sys.stdin, options.prompt, sys.stderr))
        else:
            failures = session.run(sys.stdin)
    return 1 if failures else 0


if __name__ == "__main__":
    raise SystemExit(main())
