import logging

import numpy as np
import pytest

from rowsgd.runtime.optim import (
    SGD,
    InvariantViolation,
    OptimizerError,
    ShapeMismatch,
    UnsupportedVariant,
    sgd_update,
)
from rowsgd.runtime.values import DenseTensor, SparseRows


def test_dense_by_dense_in_place():
    param = DenseTensor(np.array([1.0, 2.0, 3.0]))
    grad = DenseTensor(np.array([0.1, 0.2, 0.3]))

    out = sgd_update(param, grad, 0.5)

    assert out is param
    assert np.allclose(param.data, np.array([0.95, 1.9, 2.85]))


def test_dense_by_dense_separate_output():
    param = DenseTensor(np.array([1.0, 2.0, 3.0]))
    grad = DenseTensor(np.array([0.1, 0.2, 0.3]))
    out = DenseTensor(np.full(3, 99.0))

    result = sgd_update(param, grad, 0.5, param_out=out)

    assert result is out
    assert np.allclose(out.data, np.array([0.95, 1.9, 2.85]))
    assert np.allclose(param.data, np.array([1.0, 2.0, 3.0]))


def test_dense_by_dense_matches_whether_aliased_or_not():
    rng = np.random.default_rng(3)
    values = rng.normal(size=(4, 5))
    grads = rng.normal(size=(4, 5))

    aliased = DenseTensor(values.copy())
    sgd_update(aliased, DenseTensor(grads), 0.01)
    separate = DenseTensor(np.zeros((4, 5)))
    sgd_update(DenseTensor(values.copy()), DenseTensor(grads), 0.01, param_out=separate)

    assert np.allclose(aliased.data, values - 0.01 * grads)
    assert np.array_equal(aliased.data, separate.data)


def test_dense_by_dense_only_numel_has_to_agree():
    param = DenseTensor(np.ones((2, 3)))
    grad = DenseTensor(np.arange(6.0))

    sgd_update(param, grad, 1.0)

    assert param.shape == (2, 3)
    assert np.allclose(param.data, 1.0 - np.arange(6.0).reshape(2, 3))


def test_dense_by_dense_numel_mismatch_leaves_param():
    param = DenseTensor(np.array([1.0, 2.0]))
    grad = DenseTensor(np.array([1.0, 2.0, 3.0]))

    with pytest.raises(ShapeMismatch) as excinfo:
        sgd_update(param, grad, 0.1)

    assert "Grad's numel" in str(excinfo.value)
    assert np.array_equal(param.data, np.array([1.0, 2.0]))


def test_dense_by_dense_output_numel_mismatch():
    param = DenseTensor(np.array([1.0, 2.0]))
    grad = DenseTensor(np.array([1.0, 2.0]))
    out = DenseTensor(np.zeros(3))

    with pytest.raises(ShapeMismatch):
        sgd_update(param, grad, 0.1, param_out=out)
    assert np.array_equal(out.data, np.zeros(3))


def test_dense_by_sparse_touches_only_named_rows():
    param = DenseTensor(np.zeros((4, 2)))
    grad = SparseRows(rows=[2], value=np.array([[1.0, 1.0]]), height=4)

    sgd_update(param, grad, 1.0)

    expected = np.zeros((4, 2))
    expected[2] = [-1.0, -1.0]
    assert np.array_equal(param.data, expected)


def test_dense_by_sparse_duplicates_apply_once_per_occurrence():
    param = DenseTensor(np.ones((3, 2)))
    grad = SparseRows(
        rows=[1, 0, 1],
        value=np.array([[1.0, 2.0], [0.5, 0.5], [3.0, 4.0]]),
        height=3,
    )

    sgd_update(param, grad, 0.5)

    assert np.allclose(param.data[0], [0.75, 0.75])
    assert np.allclose(param.data[1], [1.0 - 0.5 - 1.5, 1.0 - 1.0 - 2.0])
    assert np.allclose(param.data[2], [1.0, 1.0])


def test_dense_by_sparse_requires_in_place():
    param = DenseTensor(np.zeros((2, 2)))
    out = DenseTensor(np.zeros((2, 2)))
    grad = SparseRows(rows=[0], value=np.array([[1.0, 1.0]]), height=2)

    with pytest.raises(InvariantViolation):
        sgd_update(param, grad, 1.0, param_out=out)
    assert np.array_equal(param.data, np.zeros((2, 2)))
    assert np.array_equal(out.data, np.zeros((2, 2)))


def test_dense_by_sparse_empty_rows_is_noop():
    param = DenseTensor(np.arange(6.0).reshape(3, 2))
    grad = SparseRows.empty(height=7, width=5)

    out = sgd_update(param, grad, 1.0)

    assert out is param
    assert np.array_equal(param.data, np.arange(6.0).reshape(3, 2))


def test_dense_by_sparse_height_mismatch():
    param = DenseTensor(np.zeros((4, 2)))
    grad = SparseRows(rows=[1], value=np.array([[1.0, 1.0]]), height=5)

    with pytest.raises(ShapeMismatch) as excinfo:
        sgd_update(param, grad, 1.0)

    assert "height" in str(excinfo.value)
    assert np.array_equal(param.data, np.zeros((4, 2)))


def test_dense_by_sparse_width_mismatch():
    param = DenseTensor(np.zeros((4, 2)))
    grad = SparseRows(rows=[1], value=np.array([[1.0, 1.0, 1.0]]), height=4)

    with pytest.raises(ShapeMismatch) as excinfo:
        sgd_update(param, grad, 1.0)

    assert "row width" in str(excinfo.value)
    assert np.array_equal(param.data, np.zeros((4, 2)))


def test_dense_by_sparse_zero_dim_param():
    param = DenseTensor(np.array(1.0))
    grad = SparseRows(rows=[0], value=np.array([[1.0]]), height=1)

    with pytest.raises(ShapeMismatch):
        sgd_update(param, grad, 1.0)


def test_dense_by_sparse_row_out_of_range_after_construction():
    param = DenseTensor(np.zeros((2, 2)))
    grad = SparseRows(rows=[0, 1], value=np.ones((2, 2)), height=2)
    grad.rows[1] = 5

    with pytest.raises(InvariantViolation):
        sgd_update(param, grad, 1.0)
    assert np.array_equal(param.data, np.zeros((2, 2)))


def test_sparse_by_sparse_updates_mapped_row():
    param = SparseRows(rows=[5], value=np.array([[2.0, 2.0]]), height=10)
    grad = SparseRows(rows=[5], value=np.array([[0.5, 0.5]]), height=10)

    out = sgd_update(param, grad, 1.0)

    assert out is param
    assert np.allclose(param.value, np.array([[1.5, 1.5]]))
    assert param.rows == [5]


def test_sparse_by_sparse_duplicates_accumulate():
    param = SparseRows(rows=[3, 1], value=np.zeros((2, 2)), height=4)
    grad = SparseRows(rows=[1, 1, 3], value=np.array([[1.0, 1.0], [2.0, 2.0], [4.0, 4.0]]), height=4)

    sgd_update(param, grad, 0.5)

    assert np.allclose(param.value[0], [-2.0, -2.0])
    assert np.allclose(param.value[1], [-1.5, -1.5])


def test_sparse_by_sparse_empty_rows_is_noop():
    param = SparseRows(rows=[0, 2], value=np.array([[1.0], [2.0]]), height=3)
    grad = SparseRows.empty(height=3, width=4)

    out = sgd_update(param, grad, 1.0)

    assert out is param
    assert np.array_equal(param.value, np.array([[1.0], [2.0]]))
    assert param.rows == [0, 2]


def test_sparse_by_sparse_width_mismatch():
    param = SparseRows(rows=[0], value=np.array([[1.0, 1.0]]), height=2)
    grad = SparseRows(rows=[0], value=np.array([[1.0, 1.0, 1.0]]), height=2)

    with pytest.raises(ShapeMismatch):
        sgd_update(param, grad, 1.0)
    assert np.array_equal(param.value, np.array([[1.0, 1.0]]))


def test_sparse_by_sparse_missing_row_keeps_earlier_updates():
    param = SparseRows(rows=[5], value=np.array([[2.0, 2.0]]), height=10)
    grad = SparseRows(rows=[5, 7], value=np.array([[1.0, 1.0], [1.0, 1.0]]), height=10)

    with pytest.raises(InvariantViolation) as excinfo:
        sgd_update(param, grad, 1.0)

    assert "not present" in str(excinfo.value)
    assert np.allclose(param.value, np.array([[1.0, 1.0]]))
    assert param.rows == [5]


def test_sparse_by_sparse_requires_in_place():
    param = SparseRows(rows=[0], value=np.array([[1.0]]), height=1)
    other = SparseRows(rows=[0], value=np.array([[1.0]]), height=1)
    grad = SparseRows(rows=[0], value=np.array([[1.0]]), height=1)

    with pytest.raises(InvariantViolation):
        sgd_update(param, grad, 1.0, param_out=other)
    assert np.array_equal(param.value, np.array([[1.0]]))
    assert np.array_equal(other.value, np.array([[1.0]]))


def test_sparse_param_rejects_dense_grad():
    param = SparseRows(rows=[0], value=np.array([[1.0]]), height=1)
    grad = DenseTensor(np.array([[1.0]]))

    with pytest.raises(InvariantViolation) as excinfo:
        sgd_update(param, grad, 1.0)

    assert "storage kind must match" in str(excinfo.value)


def test_unsupported_grad_kind():
    param = DenseTensor(np.zeros(2))

    with pytest.raises(UnsupportedVariant) as excinfo:
        sgd_update(param, np.ones(2), 1.0)

    assert "ndarray" in str(excinfo.value)


def test_unsupported_param_kind():
    with pytest.raises(UnsupportedVariant) as excinfo:
        sgd_update([1.0, 2.0], DenseTensor(np.ones(2)), 1.0)

    assert "list" in str(excinfo.value)


def test_learning_rate_tensor():
    param = DenseTensor(np.array([1.0, 1.0]))
    grad = DenseTensor(np.array([2.0, 4.0]))

    sgd_update(param, grad, DenseTensor(np.array([0.25])))

    assert np.allclose(param.data, [0.5, 0.0])


def test_learning_rate_must_have_one_element():
    param = DenseTensor(np.array([1.0, 1.0]))
    grad = DenseTensor(np.array([2.0, 4.0]))

    with pytest.raises(ShapeMismatch):
        sgd_update(param, grad, DenseTensor(np.array([0.1, 0.2])))
    with pytest.raises(UnsupportedVariant):
        sgd_update(param, grad, "0.1")
    assert np.array_equal(param.data, [1.0, 1.0])


def test_sgd_front_and_error_hierarchy():
    param = DenseTensor(np.array([1.0, -2.0]))
    SGD(lr=0.1).apply(param, DenseTensor(np.array([0.5, -1.0])))
    assert np.allclose(param.data, np.array([0.95, -1.9]))

    try:
        SGD(lr=0.1).apply(param, DenseTensor(np.array([1.0, 2.0, 3.0])))
    except OptimizerError as exc:
        assert isinstance(exc, ShapeMismatch)
    else:
        raise AssertionError("Expected OptimizerError for numel mismatch")


def test_empty_rows_skip_is_logged(caplog):
    param = SparseRows(rows=[0], value=np.array([[1.0]]), height=1)

    with caplog.at_level(logging.DEBUG, logger="rowsgd.runtime.optim"):
        sgd_update(param, SparseRows.empty(height=1, width=1), 1.0)

    assert "empty grad rows" in caplog.text
