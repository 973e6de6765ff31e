from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Optional

import numpy as np

from .kernel import SgdAttr, contiguous_attr, sgd_kernel
from .values import DenseTensor, SparseRows, Tensor

logger = logging.getLogger(__name__)


class OptimizerError(Exception):
    pass


class ShapeMismatch(OptimizerError):
    pass


class InvariantViolation(OptimizerError):
    pass


class UnsupportedVariant(OptimizerError):
    pass


LearningRate = DenseTensor | float


class Optimizer:
    def apply(self, param: Tensor, grad: Tensor, param_out: Optional[Tensor] = None) -> Tensor:
        raise NotImplementedError


@dataclass(frozen=True)
class SGD(Optimizer):
    lr: LearningRate

    def apply(self, param: Tensor, grad: Tensor, param_out: Optional[Tensor] = None) -> Tensor:
        return sgd_update(param, grad, self.lr, param_out=param_out)


def sgd_update(
    param: Tensor,
    grad: Tensor,
    learning_rate: LearningRate,
    param_out: Optional[Tensor] = None,
) -> Tensor:
    """Apply one plain SGD step and return the updated parameter.

    ``param_out`` defaults to ``param`` (in-place update). A separate output is
    only allowed when both operands are dense; every path with a sparse operand
    writes into ``param`` itself.
    """
    if param_out is None:
        param_out = param
    lr = _learning_rate_value(learning_rate)

    if isinstance(param, DenseTensor):
        if isinstance(grad, DenseTensor):
            _dense_by_dense(lr, param, grad, param_out)
        elif isinstance(grad, SparseRows):
            _dense_by_sparse(lr, param, grad, param_out)
        else:
            raise UnsupportedVariant(
                "Unsupported storage kind of grad in SGD. Expected DenseTensor or "
                f"SparseRows, but received {type(grad).__name__}"
            )
    elif isinstance(param, SparseRows):
        if not isinstance(grad, SparseRows):
            raise InvariantViolation(
                "gradient storage kind must match parameter storage kind when parameter "
                f"is sparse, but received {type(grad).__name__}"
            )
        _sparse_by_sparse(lr, param, grad, param_out)
    else:
        raise UnsupportedVariant(
            "Unsupported storage kind of param in SGD. Expected DenseTensor or "
            f"SparseRows, but received {type(param).__name__}"
        )
    return param_out


def _learning_rate_value(learning_rate: LearningRate) -> float:
    if isinstance(learning_rate, DenseTensor):
        if learning_rate.numel != 1:
            raise ShapeMismatch(
                f"Learning rate must hold a single element, but has numel {learning_rate.numel}"
            )
        return float(learning_rate.data.reshape(-1)[0])
    if isinstance(learning_rate, (bool, np.bool_)) or not isinstance(
        learning_rate, (int, float, np.integer, np.floating)
    ):
        raise UnsupportedVariant(
            f"Learning rate must be a DenseTensor or a real number, got {type(learning_rate).__name__}"
        )
    return float(learning_rate)


def _dense_by_dense(lr: float, param: DenseTensor, grad: DenseTensor, param_out: Tensor) -> None:
    if not isinstance(param_out, DenseTensor):
        raise UnsupportedVariant(
            f"Output of a dense SGD update must be a DenseTensor, got {type(param_out).__name__}"
        )
    size = param_out.numel
    if param.numel != size:
        raise ShapeMismatch(
            "Param's numel should be equal with ParamOut's numel. "
            f"But received Param's numel = [{param.numel}], ParamOut's numel = [{size}]"
        )
    if grad.numel != size:
        raise ShapeMismatch(
            "Grad's numel should be equal with ParamOut's numel. "
            f"But received Grad's numel = [{grad.numel}], ParamOut's numel = [{size}]"
        )
    attr = contiguous_attr(size)
    logger.debug("sgd dense<-dense: %s, in_place=%s", attr, param_out is param)
    sgd_kernel(lr, param.data, grad.data, [0], param_out.data, attr)


def _dense_by_sparse(lr: float, param: DenseTensor, grad: SparseRows, param_out: Tensor) -> None:
    if param_out is not param:
        raise InvariantViolation(
            "ParamOut must be the same tensor as Param when Grad is SparseRows (in-place update)"
        )
    if not grad.rows:
        logger.debug("sgd dense<-sparse: empty grad rows, skipping update")
        return
    out_dims = param.dims
    if not out_dims:
        raise ShapeMismatch("A zero-dimensional Param cannot take a SparseRows Grad")
    if grad.height != out_dims[0]:
        raise ShapeMismatch(
            "Grad's height should be equal with ParamOut's dims[0]. "
            f"But received Grad's height [{grad.height}] and ParamOut's dims [{out_dims[0]}]"
        )
    param_height = out_dims[0]
    grad_height = len(grad.rows)
    attr = SgdAttr(
        param_height=param_height,
        param_width=param.numel // param_height if param_height else 0,
        grad_height=grad_height,  # present rows, not grad.height
        grad_width=grad.numel // grad_height,
        selected_rows_size=grad_height,
    )
    if attr.grad_width != attr.param_width:
        raise ShapeMismatch(
            "Grad row width should be equal with ParamOut row width. "
            f"But received grad row width [{attr.grad_width}] and param row width "
            f"[{attr.param_width}]"
        )
    for row in grad.rows:
        if row < 0 or row >= param_height:
            raise InvariantViolation(
                f"Grad row id {row} is out of range for ParamOut height {param_height}"
            )
    logger.debug("sgd dense<-sparse: %s", attr)
    sgd_kernel(lr, param.data, grad.value, grad.rows, param.data, attr)


def _sparse_by_sparse(lr: float, param: SparseRows, grad: SparseRows, param_out: Tensor) -> None:
    if param_out is not param:
        raise InvariantViolation(
            "ParamOut must be the same tensor as Param when Param is SparseRows (in-place update)"
        )
    if not grad.rows:
        logger.debug("sgd sparse<-sparse: empty grad rows, skipping update")
        return
    if param.width != grad.width:
        raise ShapeMismatch(
            "Param row should have the same width as Grad row. "
            f"But received param row width [{param.width}] and grad row width [{grad.width}]"
        )
    logger.debug(
        "sgd sparse<-sparse: %d grad row(s), width=%d", len(grad.rows), grad.width
    )
    out_value = param_out.value
    for i, row in enumerate(grad.rows):
        # rows earlier in the loop stay updated if a later lookup fails
        id_index = param_out.auto_grown_index(row, auto_grow=False)
        if id_index < 0:
            raise InvariantViolation(
                f"Row id {row} is not present in the sparse Param (id_index={id_index})"
            )
        out_value[id_index] -= lr * grad.value[i]
