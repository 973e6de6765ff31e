from __future__ import annotations

import argparse
import logging
import sys
from pathlib import Path
from typing import Optional

from .errors import RowSGDError
from .interpreter import Interpreter, InterpreterError
from .parser import parse_program


def main(argv: Optional[list[str]] = None) -> int:
    parser = argparse.ArgumentParser(description="Run an SGD update script.")
    parser.add_argument("file", help="Path to a .sgd file")
    parser.add_argument(
        "--precision",
        type=int,
        default=4,
        help="Digits shown when printing tensors (default: 4)",
    )
    parser.add_argument(
        "--log-level",
        default="WARNING",
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
        help="Logging level (default: WARNING)",
    )
    args = parser.parse_args(argv)
    logging.basicConfig(
        level=getattr(logging, args.log_level),
        format="%(levelname)s %(name)s: %(message)s",
    )

    try:
        if not args.file.endswith(".sgd"):
            raise ValueError("Expected a .sgd file")
        source = Path(args.file).read_text(encoding="utf-8")
        program = parse_program(source, filename=args.file)
        interpreter = Interpreter(program, precision=args.precision)
        ctx = interpreter.run_program()
        for text in ctx.outputs:
            print(text)
        return 0
    except (OSError, InterpreterError, RowSGDError, ValueError) as exc:
        print(f"Error:\n{exc}", file=sys.stderr)
        return 1


if __name__ == "__main__":
    raise SystemExit(main())
