"""kscope: a small expression language compiled to native code through LLVM."""

from .errors import KscopeError
from .parser import parse_expression, parse_program
from .repl import Options, Session, main

__all__ = ["KscopeError", "Options", "Session", "main", "parse_expression", "parse_program"]
