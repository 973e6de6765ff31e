from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import List, Optional, Sequence

import numpy as np

from . import ast
from .errors import RuntimeError as RowSGDRuntimeError, format_error
from .validate import validate_program
from .runtime.optim import SGD, OptimizerError
from .runtime.params import ParamError, ParamStore
from .runtime.values import DenseTensor, SparseRows, Tensor, TensorError

logger = logging.getLogger(__name__)


class InterpreterError(RowSGDRuntimeError):
    def __init__(self, message: str, formatted: bool = False) -> None:
        self.formatted = formatted
        super().__init__(message)


@dataclass
class ExecContext:
    outputs: List[str] = field(default_factory=list)
    steps: int = 0


class Interpreter:
    def __init__(self, program: ast.Program, precision: int = 4, seed: Optional[int] = 0) -> None:
        validate_program(program, source=program.source, filename=program.filename)
        self.program = program
        self.precision = precision
        self.params = ParamStore(seed=seed)

    def run_program(self) -> ExecContext:
        ctx = ExecContext()
        for item in self.program.items:
            self._exec_stmt(item, ctx)
        return ctx

    def tensor(self, name: str) -> Tensor:
        return self.params.get(name).value

    def _exec_stmt(self, stmt: ast.Stmt, ctx: ExecContext) -> None:
        if isinstance(stmt, ast.DenseDecl):
            self._exec_dense_decl(stmt)
            return
        if isinstance(stmt, ast.SparseDecl):
            self._exec_sparse_decl(stmt)
            return
        if isinstance(stmt, ast.StepStmt):
            self._exec_step(stmt, ctx)
            return
        if isinstance(stmt, ast.PrintStmt):
            text = self._format_tensor(stmt.name, self._lookup(stmt.name, node=stmt))
            ctx.outputs.append(text)
            return
        raise InterpreterError(f"Unsupported statement '{type(stmt).__name__}'")

    def _exec_dense_decl(self, decl: ast.DenseDecl) -> None:
        try:
            if decl.init is not None:
                init_fn = self._resolve_init(decl.init)
                self.params.add_dense(decl.name, decl.shape, init=init_fn)
                return
            data = self._eval_literal(decl.value)
            if decl.shape is not None:
                data = _reshape_literal(data, tuple(decl.shape), decl.name)
            self.params.put(decl.name, DenseTensor(data))
        except (ParamError, TensorError, ValueError) as exc:
            raise self._error(str(exc), node=decl) from exc

    def _exec_sparse_decl(self, decl: ast.SparseDecl) -> None:
        height, width = decl.shape
        try:
            if decl.init is not None:
                init_fn = self._resolve_init(decl.init)
                self.params.add_sparse(decl.name, height, width, decl.rows, init=init_fn)
                return
            data = self._eval_literal(decl.value)
            value = _reshape_literal(data, (len(decl.rows), width), decl.name)
            self.params.put(decl.name, SparseRows(rows=decl.rows, value=value, height=height))
        except (ParamError, TensorError, ValueError) as exc:
            raise self._error(str(exc), node=decl) from exc

    def _exec_step(self, stmt: ast.StepStmt, ctx: ExecContext) -> None:
        optimizer = self._eval_optimizer(stmt.optimizer)
        param = self._lookup(stmt.param_name, node=stmt)
        grad = self._lookup(stmt.grad_name, node=stmt)
        param_out = None
        if stmt.out_name is not None:
            param_out = self._lookup(stmt.out_name, node=stmt)
        logger.info(
            "step %s using %s%s",
            stmt.param_name,
            stmt.grad_name,
            f" into {stmt.out_name}" if stmt.out_name else "",
        )
        try:
            optimizer.apply(param, grad, param_out=param_out)
        except OptimizerError as exc:
            raise self._error(str(exc), node=stmt) from exc
        ctx.steps += 1

    def _eval_optimizer(self, call: ast.CallExpr) -> SGD:
        if call.func != "SGD":
            raise self._error(f"Unknown optimizer '{call.func}'", node=call)
        if sum(arg.name in (None, "lr") for arg in call.args) > 1:
            raise self._error("SGD lr given more than once", node=call)
        lr = None
        for arg in call.args:
            if arg.name not in (None, "lr"):
                raise self._error(f"Unknown SGD argument '{arg.name}'", node=arg)
            if isinstance(arg.value, ast.Number):
                lr = arg.value.value
            elif isinstance(arg.value, ast.Name):
                tensor = self._lookup(arg.value.value, node=arg.value)
                if not isinstance(tensor, DenseTensor):
                    raise self._error("SGD lr must be a dense tensor or a number", node=arg.value)
                lr = tensor
            else:
                raise self._error("SGD lr must be a dense tensor or a number", node=arg.value)
        if lr is None:
            raise self._error("SGD requires lr", node=call)
        return SGD(lr=lr)

    def _resolve_init(self, call: ast.CallExpr):
        args = []
        for arg in call.args:
            if arg.name is not None or not isinstance(arg.value, ast.Number):
                raise self._error("Initializer args must be numeric literals", node=arg)
            args.append(arg.value.value)
        try:
            return self.params.resolve_init(call.func, args)
        except ParamError as exc:
            raise self._error(str(exc), node=call) from exc

    def _eval_literal(self, expr: Optional[ast.Expr]) -> np.ndarray:
        if isinstance(expr, ast.Number):
            return np.array(expr.value, dtype=float)
        if isinstance(expr, ast.ListLiteral):
            items = [self._eval_literal(item) for item in expr.items]
            if not items:
                return np.zeros((0,), dtype=float)
            try:
                return np.stack(items)
            except ValueError as exc:
                raise self._error(f"Ragged list literal: {exc}", node=expr) from exc
        raise self._error("Unsupported literal", node=expr)

    def _lookup(self, name: str, node: object) -> Tensor:
        try:
            return self.params.get(name).value
        except ParamError as exc:
            raise self._error(str(exc), node=node) from exc

    def _format_tensor(self, name: str, tensor: Tensor) -> str:
        if isinstance(tensor, SparseRows):
            value = np.array2string(tensor.value, precision=self.precision, separator=",")
            return f"{name} rows={list(tensor.rows)} height={tensor.height} value={value}"
        data = tensor.as_array()
        if data.shape == ():
            return f"{name} = {float(data):.{self.precision}g}"
        return f"{name} = {np.array2string(data, precision=self.precision, separator=',')}"

    def _error(self, message: str, *, node: Optional[object] = None) -> InterpreterError:
        span = getattr(node, "span", None) if node is not None else None
        formatted = format_error(
            message,
            span=span,
            source=self.program.source,
            filename=self.program.filename,
        )
        return InterpreterError(formatted, formatted=True)


def _reshape_literal(data: np.ndarray, shape: Sequence[int], name: str) -> np.ndarray:
    expected = int(np.prod(shape, dtype=np.int64))
    if data.size != expected:
        raise ValueError(
            f"Literal for '{name}' has {data.size} value(s), expected {expected} for shape {tuple(shape)}"
        )
    return data.reshape(shape)
