from __future__ import annotations

from typing import Optional

from .ast import Span


class RowSGDError(Exception):
    pass


class ParseError(RowSGDError):
    pass


class SemanticError(RowSGDError):
    pass


class RuntimeError(RowSGDError):
    pass


def format_error(
    message: str,
    *,
    span: Optional[Span] = None,
    source: Optional[str] = None,
    filename: Optional[str] = None,
    context: Optional[str] = None,
) -> str:
    if context:
        message = f"{message} ({context})"
    hint = _hint_for_message(message)
    if span is None:
        return _with_hint(message, hint)

    location = f"line {span.line}, col {span.column}"
    if filename:
        location = f"{filename}:{span.line}:{span.column}"
    header = f"{location}: {message}"
    if not source:
        return _with_hint(header, hint)

    lines = source.splitlines()
    if span.line - 1 >= len(lines) or span.line <= 0:
        return header
    line_text = lines[span.line - 1]
    caret = " " * max(span.column - 1, 0) + "^"
    body = f"{header}\n  {line_text}\n  {caret}"
    return _with_hint(body, hint)


def _with_hint(message: str, hint: Optional[str]) -> str:
    if not hint:
        return message
    return f"{message}\n  Hint: {hint}"


def _hint_for_message(message: str) -> Optional[str]:
    msg = message.lower()
    if "in-place update" in msg:
        return "sparse updates write into the param itself; drop the 'into' clause."
    if "gradient storage kind must match" in msg:
        return "a sparse param can only be stepped with a sparse grad."
    if "height" in msg and "dims[0]" in msg:
        return "the sparse grad's height must equal the dense param's first dimension."
    if "row width" in msg:
        return "declare the grad with the same number of columns as the param."
    if "not present in the sparse param" in msg:
        return "list the row id in the param's 'rows [...]' before stepping it."
    if "unknown tensor" in msg or "unknown param" in msg:
        return "declare it with 'dense' or 'sparse' before using it."
    if "step expects an optimizer call" in msg or "sgd requires lr" in msg:
        return "use: step SGD(lr=0.1) W using g;"
    if "unexpected" in msg and "syntax error" in msg:
        return "check missing tokens like ';' or ']' near the caret."
    return None
