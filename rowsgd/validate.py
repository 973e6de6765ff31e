from __future__ import annotations

from dataclasses import dataclass
from typing import Dict, List, Optional, Sequence

from . import ast
from .errors import SemanticError, format_error


@dataclass(frozen=True)
class ValidationIssue:
    message: str
    context: Optional[str] = None
    span: Optional[ast.Span] = None


class ValidationError(SemanticError):
    def __init__(
        self,
        issues: Sequence[ValidationIssue],
        source: Optional[str] = None,
        filename: Optional[str] = None,
    ) -> None:
        self.issues = list(issues)
        self.source = source
        self.filename = filename
        super().__init__(
            "\n".join(
                _format_issue(issue, source=source, filename=filename)
                for issue in self.issues
            )
        )


def validate_program(
    program: ast.Program, source: Optional[str] = None, filename: Optional[str] = None
) -> None:
    if source is None:
        source = getattr(program, "source", None)
    if filename is None:
        filename = getattr(program, "filename", None)
    validator = _Validator()
    validator.validate_program(program)
    if validator.issues:
        raise ValidationError(validator.issues, source=source, filename=filename)


def _format_issue(
    issue: ValidationIssue, source: Optional[str], filename: Optional[str]
) -> str:
    return format_error(
        issue.message,
        span=issue.span,
        source=source,
        filename=filename,
        context=issue.context,
    )


class _Validator:
    def __init__(self) -> None:
        self.issues: List[ValidationIssue] = []
        # name -> "dense" | "sparse"
        self._declared: Dict[str, str] = {}

    def validate_program(self, program: ast.Program) -> None:
        for item in program.items:
            if isinstance(item, ast.Stmt):
                self._validate_stmt(item)
            else:
                self._error("Unknown top-level item", type(item).__name__, node=item)

    def _validate_stmt(self, stmt: ast.Stmt) -> None:
        if isinstance(stmt, ast.DenseDecl):
            self._validate_dense_decl(stmt)
        elif isinstance(stmt, ast.SparseDecl):
            self._validate_sparse_decl(stmt)
        elif isinstance(stmt, ast.StepStmt):
            self._validate_step_stmt(stmt)
        elif isinstance(stmt, ast.PrintStmt):
            self._require_declared(stmt.name, "print", node=stmt)
        else:
            self._error("Unknown statement", type(stmt).__name__, node=stmt)

    def _validate_dense_decl(self, decl: ast.DenseDecl) -> None:
        if decl.init is not None and decl.shape is None:
            self._error(
                f"Dense tensor '{decl.name}' needs a shape to use an initializer",
                "dense",
                node=decl,
            )
        self._validate_shape(decl.name, decl.shape, node=decl)
        self._register(decl.name, "dense", node=decl)

    def _validate_sparse_decl(self, decl: ast.SparseDecl) -> None:
        if len(decl.shape) != 2:
            self._error(
                f"Sparse tensor '{decl.name}' shape must be [height, width], got {list(decl.shape)}",
                "sparse",
                node=decl,
            )
        self._validate_shape(decl.name, decl.shape, node=decl)
        if not all(isinstance(row, int) for row in decl.rows):
            self._error(f"Row ids of '{decl.name}' must be integers", "sparse", node=decl)
        self._register(decl.name, "sparse", node=decl)

    def _validate_shape(
        self, name: str, shape: Optional[Sequence[int]], node: ast.Stmt
    ) -> None:
        if shape is None:
            return
        if not all(isinstance(dim, int) for dim in shape):
            self._error(f"Shape of '{name}' has a non-integer dimension", "shape", node=node)
        if any(dim < 0 for dim in shape):
            self._error(f"Shape of '{name}' has a negative dimension", "shape", node=node)

    def _validate_step_stmt(self, stmt: ast.StepStmt) -> None:
        call = stmt.optimizer
        if call.func != "SGD":
            self._error(f"Unknown optimizer '{call.func}'", "step", node=call)
        elif not call.args:
            self._error("SGD requires lr", "step", node=call)
        elif sum(arg.name in (None, "lr") for arg in call.args) > 1:
            self._error("SGD lr given more than once", "step", node=call)
        for arg in call.args:
            if arg.name not in (None, "lr"):
                self._error(f"Unknown SGD argument '{arg.name}'", "step", node=arg)
            if isinstance(arg.value, ast.Name):
                kind = self._require_declared(arg.value.value, "lr", node=arg.value)
                if kind == "sparse":
                    self._error(
                        f"Learning rate '{arg.value.value}' must be a dense tensor",
                        "lr",
                        node=arg.value,
                    )
        self._require_declared(stmt.param_name, "step param", node=stmt)
        self._require_declared(stmt.grad_name, "step grad", node=stmt)
        if stmt.out_name is not None:
            self._require_declared(stmt.out_name, "step into", node=stmt)

    def _register(self, name: str, kind: str, node: ast.Stmt) -> None:
        existing = self._declared.get(name)
        if existing is not None:
            self._error(f"Duplicate tensor '{name}' (already declared as {existing})", kind, node=node)
            return
        self._declared[name] = kind

    def _require_declared(self, name: str, context: str, node: object) -> Optional[str]:
        kind = self._declared.get(name)
        if kind is None:
            self._error(f"Unknown tensor '{name}'", context, node=node)
        return kind

    def _error(self, message: str, context: Optional[str], node: object) -> None:
        span = getattr(node, "span", None)
        self.issues.append(ValidationIssue(message, context=context, span=span))
