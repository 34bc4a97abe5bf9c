"""Exception hierarchy shared by the lexer, parser, code generator and JIT.

Every user-facing failure derives from `KscopeError`. `InternalError` marks
conditions that are unreachable from parsed input (compiler bugs or backend
rejections); the REPL reports them separately but through the same channel.
"""

from __future__ import annotations

from typing import Optional

from .ast import Located


class KscopeError(Exception):
    def __init__(self, message: str, loc: Optional[Located] = None) -> None:
        super().__init__(message)
        self.message = message
        self.loc = loc

    def __str__(self) -> str:
        if self.loc is None:
            return self.message
        return f"{self.loc.line}:{self.loc.column}: {self.message}"


class LexError(KscopeError):
    pass


class ParseError(KscopeError):
    """Expected one token, saw another."""

    def __init__(self, expected: str, got: str, loc: Optional[Located] = None) -> None:
        super().__init__(f"expected {expected}, got {got}", loc)
        self.expected = expected
        self.got = got


class CodegenError(KscopeError):
    pass


class UnknownVariableError(CodegenError):
    pass


class UnknownCalleeError(CodegenError):
    pass


class ArityMismatchError(CodegenError):
    pass


class RedefinitionError(CodegenError):
    pass


class DetachedExpressionError(CodegenError):
    """An expression generated with no function body to emit it into."""


class InternalError(KscopeError):
    pass


class InvalidOperatorError(InternalError):
    pass


class UnhandledNodeError(InternalError):
    pass


class BackendError(InternalError):
    pass


class JitError(KscopeError):
    pass


class UnknownHandleError(JitError):
    pass


class SymbolNotFoundError(JitError):
    pass
