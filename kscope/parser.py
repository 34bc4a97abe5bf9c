"""Recursive-descent parser with operator-precedence climbing.

Grammar (one token of lookahead):

    program      := { toplevel | ';' }*
    toplevel     := 'def' prototype expression
                  | 'extern' prototype
                  | expression
    prototype    := identifier '(' identifier* ')'
    expression   := primary binop_rhs
    binop_rhs    := ( binop primary )*
    primary      := number
                  | identifier
                  | identifier '(' ( expression ( ',' expression )* )? ')'
                  | '(' expression ')'
                  | 'if' expression 'then' expression 'else' expression
                  | 'for' identifier '=' expression ',' expression
                        ( ',' expression )? 'in' expression
"""

from __future__ import annotations

import logging
from typing import Iterable, List, Optional

from .ast import (
    BinaryOp,
    Call,
    Expr,
    For,
    Function,
    If,
    Number,
    Program,
    Prototype,
    TopLevel,
    Variable,
)
from .errors import ParseError
from .lexer import Lexer, Token, TokenKind

logger = logging.getLogger(__name__)

BINOP_PRECEDENCE = {
    "<": 10,
    "+": 20,
    "-": 20,
    "*": 40,
}


class Parser:
    def __init__(self, lexer: Lexer) -> None:
        self._lexer = lexer
        self._current: Optional[Token] = None

    @classmethod
    def from_text(cls, text: str) -> "Parser":
        return cls(Lexer.from_text(text))

    @classmethod
    def from_lines(cls, lines: Iterable[str]) -> "Parser":
        return cls(Lexer(lines))

    # --- token plumbing ---------------------------------------------------

    @property
    def current(self) -> Token:
        # Read lazily: a lexing failure leaves no token behind, the next access retries.
        if self._current is None:
            self._current = self._lexer.next_token()
        return self._current

    def at_eof(self) -> bool:
        return self.current.kind is TokenKind.EOF

    def advance(self) -> Token:
        tok = self.current
        self._current = None
        self._current = self._lexer.next_token()
        return tok

    def expect(self, expected: Token) -> Token:
        """Consume `expected` or fail with a mismatch naming both tokens."""
        if self.current != expected:
            raise ParseError(str(expected), str(self.current), self.current.loc)
        return self.advance()

    def synchronize(self) -> None:
        """Discard tokens through the next ';' (or up to end of input)."""
        while not self.at_eof():
            if self.advance().is_char(";"):
                return

    # --- statements -------------------------------------------------------

    def parse_program(self) -> Program:
        statements: List[TopLevel] = []
        while not self.at_eof():
            if self.current.is_char(";"):
                self.advance()
                continue
            statements.append(self.parse_top_level())
        return Program(statements=tuple(statements))

    def parse_top_level(self) -> TopLevel:
        if self.current.is_keyword("def"):
            result: TopLevel = self.parse_definition()
            logger.debug("parsed function %s", result.proto.name)
        elif self.current.is_keyword("extern"):
            result = self.parse_extern()
            logger.debug("parsed extern %s", result.name)
        else:
            result = self.parse_expression()
            logger.debug("parsed expression")
        return result

    def parse_definition(self) -> Function:
        loc = self.expect(Token.keyword("def")).loc
        proto = self.parse_prototype()
        body = self.parse_expression()
        return Function(proto=proto, body=body, loc=loc)

    def parse_extern(self) -> Prototype:
        self.expect(Token.keyword("extern"))
        return self.parse_prototype()

    def parse_prototype(self) -> Prototype:
        loc = self.current.loc
        name = self.parse_identifier()
        self.expect(Token.char("("))
        params: List[str] = []
        while self.current.kind is TokenKind.IDENTIFIER:
            params.append(self.parse_identifier())
        self.expect(Token.char(")"))
        return Prototype(name=name, params=tuple(params), loc=loc)

    def parse_identifier(self) -> str:
        if self.current.kind is not TokenKind.IDENTIFIER:
            raise ParseError("identifier", str(self.current), self.current.loc)
        return self.advance().value

    # --- expressions ------------------------------------------------------

    def parse_expression(self) -> Expr:
        lhs = self.parse_primary()
        return self.parse_binop_rhs(lhs, 0)

    def parse_binop_rhs(self, lhs: Expr, min_precedence: int) -> Expr:
        while True:
            precedence = self._current_precedence()
            if precedence < min_precedence:
                return lhs
            op_tok = self.advance()
            rhs = self.parse_primary()
            # A tighter operator after rhs takes rhs as its own lhs first.
            if precedence < self._current_precedence():
                rhs = self.parse_binop_rhs(rhs, precedence + 1)
            lhs = BinaryOp(op=op_tok.value, lhs=lhs, rhs=rhs, loc=op_tok.loc)

    def parse_primary(self) -> Expr:
        tok = self.current
        if tok.kind is TokenKind.NUMBER:
            self.advance()
            return Number(value=tok.value, loc=tok.loc)
        if tok.kind is TokenKind.IDENTIFIER:
            return self.parse_identifier_expr()
        if tok.is_keyword("if"):
            return self.parse_if()
        if tok.is_keyword("for"):
            return self.parse_for()
        if tok.is_char("("):
            return self.parse_paren_expr()
        raise ParseError("expression", str(tok), tok.loc)

    def parse_identifier_expr(self) -> Expr:
        loc = self.current.loc
        name = self.parse_identifier()
        if not self.current.is_char("("):
            return Variable(name=name, loc=loc)
        return Call(callee=name, args=self.parse_call_args(), loc=loc)

    def parse_call_args(self) -> tuple:
        self.expect(Token.char("("))
        args: List[Expr] = []
        while not self.current.is_char(")"):
            args.append(self.parse_expression())
            if self.current.is_char(")"):
                break
            self.expect(Token.char(","))
        self.expect(Token.char(")"))
        return tuple(args)

    def parse_paren_expr(self) -> Expr:
        self.expect(Token.char("("))
        expr = self.parse_expression()
        self.expect(Token.char(")"))
        return expr

    def parse_if(self) -> If:
        loc = self.expect(Token.keyword("if")).loc
        condition = self.parse_expression()
        self.expect(Token.keyword("then"))
        then = self.parse_expression()
        self.expect(Token.keyword("else"))
        else_ = self.parse_expression()
        return If(condition=condition, then=then, else_=else_, loc=loc)

    def parse_for(self) -> For:
        loc = self.expect(Token.keyword("for")).loc
        var = self.parse_identifier()
        self.expect(Token.char("="))
        start = self.parse_expression()
        self.expect(Token.char(","))
        end = self.parse_expression()
        step: Optional[Expr] = None
        if self.current.is_char(","):
            self.advance()
            step = self.parse_expression()
        self.expect(Token.keyword("in"))
        body = self.parse_expression()
        return For(var=var, start=start, end=end, step=step, body=body, loc=loc)

    def _current_precedence(self) -> int:
        if self.current.kind is not TokenKind.CHAR:
            return -1
        return BINOP_PRECEDENCE.get(self.current.value, -1)


def parse_program(source: str) -> Program:
    return Parser.from_text(source).parse_program()


def parse_expression(source: str) -> Expr:
    return Parser.from_text(source).parse_expression()
