from __future__ import annotations

from pathlib import Path
from typing import List, Optional

from lark import Lark, Token, Transformer
from lark.exceptions import UnexpectedInput
from lark.visitors import v_args

from . import ast
from .errors import ParseError, format_error


_GRAMMAR_PATH = Path(__file__).with_name("grammar.lark")


def _build_parser() -> Lark:
    grammar_text = _GRAMMAR_PATH.read_text(encoding="utf-8")
    return Lark(
        grammar_text,
        start="program",
        parser="lalr",
        maybe_placeholders=False,
        propagate_positions=True,
    )


_PARSER = _build_parser()


def parse_program(source: str, filename: str | None = None) -> ast.Program:
    try:
        tree = _PARSER.parse(source)
    except UnexpectedInput as exc:
        span = ast.Span(exc.line, exc.column, exc.line, exc.column)
        message = format_error(
            "Syntax error", span=span, source=source, filename=filename
        )
        raise ParseError(message) from exc
    program = _ToAst().transform(tree)
    return ast.Program(
        items=program.items,
        source=source,
        filename=filename,
        span=program.span,
    )


def _span(meta) -> Optional[ast.Span]:
    if getattr(meta, "empty", True):
        return None
    return ast.Span(meta.line, meta.column, meta.end_line, meta.end_column)


# fractional values stay float so validation can reject them
def _integral(value: float) -> int | float:
    if value.is_integer():
        return int(value)
    return value


def _split_clause(clause: ast.Expr) -> tuple[Optional[ast.CallExpr], Optional[ast.Expr]]:
    if isinstance(clause, ast.CallExpr):
        return clause, None
    return None, clause


@v_args(meta=True)
class _ToAst(Transformer):
    def program(self, meta, items: List[ast.Stmt]) -> ast.Program:
        return ast.Program(items, span=_span(meta))

    def stmt(self, meta, items: List[ast.Stmt]) -> ast.Stmt:
        return items[0]

    def dense_decl(self, meta, items: List[object]) -> ast.DenseDecl:
        name = items[0]
        shape = None
        if len(items) > 2:
            shape = items[1]
        init, value = _split_clause(items[-1])
        return ast.DenseDecl(name, shape, init=init, value=value, span=_span(meta))

    def sparse_decl(self, meta, items: List[object]) -> ast.SparseDecl:
        name, shape, rows, clause = items
        init, value = _split_clause(clause)
        return ast.SparseDecl(name, shape, rows, init=init, value=value, span=_span(meta))

    def step_stmt(self, meta, items: List[object]) -> ast.StepStmt:
        optimizer = items[0]
        param_name = items[1]
        grad_name = items[2]
        out_name = items[3] if len(items) > 3 else None
        return ast.StepStmt(optimizer, param_name, grad_name, out_name, span=_span(meta))

    def print_stmt(self, meta, items: List[str]) -> ast.PrintStmt:
        return ast.PrintStmt(items[0], span=_span(meta))

    def shape_spec(self, meta, items: List[float]) -> List[int | float]:
        return [_integral(value) for value in items]

    def row_list(self, meta, items: List[float]) -> List[int | float]:
        return [_integral(value) for value in items]

    def init_clause(self, meta, items: List[ast.CallExpr]) -> ast.CallExpr:
        return items[0]

    def bare_init(self, meta, items: List[str]) -> ast.CallExpr:
        return ast.CallExpr(items[0], [], span=_span(meta))

    def value_clause(self, meta, items: List[ast.Expr]) -> ast.Expr:
        return items[0]

    def into_clause(self, meta, items: List[str]) -> str:
        return items[0]

    def number(self, meta, items: List[float]) -> ast.Number:
        return ast.Number(float(items[0]), span=_span(meta))

    def list_literal(self, meta, items: List[ast.Expr]) -> ast.ListLiteral:
        return ast.ListLiteral(items, span=_span(meta))

    def name(self, meta, items: List[str]) -> ast.Name:
        return ast.Name(items[0], span=_span(meta))

    def call_expr(self, meta, items: List[object]) -> ast.CallExpr:
        func = items[0]
        args = items[1] if len(items) > 1 else []
        return ast.CallExpr(func, args, span=_span(meta))

    def arg_list(self, meta, items: List[ast.CallArg]) -> List[ast.CallArg]:
        return items

    def arg_pos(self, meta, items: List[ast.Expr]) -> ast.CallArg:
        return ast.CallArg(None, items[0], span=_span(meta))

    def arg_kw(self, meta, items: List[object]) -> ast.CallArg:
        name = items[0]
        value = items[1]
        return ast.CallArg(name, value, span=_span(meta))

    def IDENT(self, token: Token) -> str:
        return str(token)

    def SIGNED_NUMBER(self, token: Token) -> float:
        return float(token)
