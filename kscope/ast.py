from __future__ import annotations

from dataclasses import dataclass, field
from typing import Optional, Tuple, Union


@dataclass(frozen=True)
class Located:
    line: int
    column: int


class Expr:
    loc: Optional[Located]


@dataclass(frozen=True)
class Number(Expr):
    value: float
    loc: Optional[Located] = field(default=None, compare=False, repr=False)


@dataclass(frozen=True)
class Variable(Expr):
    name: str
    loc: Optional[Located] = field(default=None, compare=False, repr=False)


@dataclass(frozen=True)
class BinaryOp(Expr):
    op: str
    lhs: Expr
    rhs: Expr
    loc: Optional[Located] = field(default=None, compare=False, repr=False)


@dataclass(frozen=True)
class Call(Expr):
    callee: str
    args: Tuple[Expr, ...] = ()
    loc: Optional[Located] = field(default=None, compare=False, repr=False)


@dataclass(frozen=True)
class If(Expr):
    condition: Expr
    then: Expr
    else_: Expr
    loc: Optional[Located] = field(default=None, compare=False, repr=False)


@dataclass(frozen=True)
class For(Expr):
    var: str
    start: Expr
    end: Expr
    step: Optional[Expr]
    body: Expr
    loc: Optional[Located] = field(default=None, compare=False, repr=False)


@dataclass(frozen=True)
class Prototype:
    name: str
    params: Tuple[str, ...] = ()
    loc: Optional[Located] = field(default=None, compare=False, repr=False)


@dataclass(frozen=True)
class Function:
    proto: Prototype
    body: Expr
    loc: Optional[Located] = field(default=None, compare=False, repr=False)


TopLevel = Union[Function, Prototype, Expr]


@dataclass(frozen=True)
class Program:
    statements: Tuple[TopLevel, ...] = ()
