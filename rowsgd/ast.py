from __future__ import annotations

from dataclasses import dataclass
from typing import Optional, Sequence


@dataclass(frozen=True)
class Span:
    line: int
    column: int
    end_line: int
    end_column: int


# ---- Statements ----


class Stmt:
    pass


@dataclass(frozen=True)
class DenseDecl(Stmt):
    name: str
    shape: Optional[Sequence[int]]
    init: Optional["CallExpr"] = None
    value: Optional["Expr"] = None
    span: Optional[Span] = None


@dataclass(frozen=True)
class SparseDecl(Stmt):
    name: str
    shape: Sequence[int]  # [height, width]
    rows: Sequence[int]
    init: Optional["CallExpr"] = None
    value: Optional["Expr"] = None
    span: Optional[Span] = None


@dataclass(frozen=True)
class StepStmt(Stmt):
    optimizer: "CallExpr"
    param_name: str
    grad_name: str
    out_name: Optional[str] = None
    span: Optional[Span] = None


@dataclass(frozen=True)
class PrintStmt(Stmt):
    name: str
    span: Optional[Span] = None


# ---- Expressions ----


class Expr:
    pass


@dataclass(frozen=True)
class Number(Expr):
    value: float
    span: Optional[Span] = None


@dataclass(frozen=True)
class ListLiteral(Expr):
    items: Sequence[Expr]
    span: Optional[Span] = None


@dataclass(frozen=True)
class Name(Expr):
    value: str
    span: Optional[Span] = None


@dataclass(frozen=True)
class CallExpr(Expr):
    func: str
    args: Sequence["CallArg"]
    span: Optional[Span] = None


@dataclass(frozen=True)
class CallArg:
    name: Optional[str]
    value: Expr
    span: Optional[Span] = None


@dataclass(frozen=True)
class Program:
    items: Sequence[Stmt]
    source: Optional[str] = None
    filename: Optional[str] = None
    span: Optional[Span] = None
