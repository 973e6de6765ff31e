from __future__ import annotations

from dataclasses import dataclass
from typing import Sequence

import numpy as np


@dataclass(frozen=True)
class SgdAttr:
    param_height: int
    param_width: int
    grad_height: int
    grad_width: int
    selected_rows_size: int


def contiguous_attr(size: int) -> SgdAttr:
    # one row covering the whole buffer
    return SgdAttr(1, size, 1, size, 1)


def sgd_kernel(
    lr: float,
    param: np.ndarray,
    grad: np.ndarray,
    rows: Sequence[int] | np.ndarray,
    out: np.ndarray,
    attr: SgdAttr,
) -> None:
    """Compute ``out[rows[k], :] = param[rows[k], :] - lr * grad[k, :]``.

    ``param`` and ``out`` are viewed as ``[param_height, param_width]`` and
    ``grad`` as ``[grad_height, grad_width]``. ``out`` may be ``param``; with
    repeated row ids and an aliased output each occurrence decrements again.
    """
    if attr.param_width != attr.grad_width:
        raise ValueError(
            f"Kernel width mismatch: param_width={attr.param_width}, grad_width={attr.grad_width}"
        )
    row_ids = np.asarray(rows, dtype=np.int64)[: attr.selected_rows_size]
    param_2d = param.reshape(attr.param_height, attr.param_width)
    grad_2d = grad.reshape(attr.grad_height, attr.grad_width)
    # out must be contiguous so that this is a view, not a copy
    out_2d = out.reshape(attr.param_height, attr.param_width)

    if np.unique(row_ids).size == row_ids.size:
        out_2d[row_ids] = param_2d[row_ids] - lr * grad_2d[: row_ids.size]
        return
    for k, row in enumerate(row_ids):
        np.subtract(param_2d[row], lr * grad_2d[k], out=out_2d[row])
