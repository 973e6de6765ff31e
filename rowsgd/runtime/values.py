from __future__ import annotations

import enum
from dataclasses import dataclass, field
from typing import Any, Dict, Sequence, Tuple

import numpy as np


class TensorError(Exception):
    pass


class StorageKind(enum.Enum):
    DENSE = "dense"
    SPARSE_ROWS = "sparse_rows"


def _as_buffer(data: Any) -> np.ndarray:
    array = np.asarray(data)
    if not np.issubdtype(array.dtype, np.floating):
        array = array.astype(np.float64)
    if not array.flags["C_CONTIGUOUS"]:
        array = array.copy(order="C")
    return array


@dataclass(eq=False)
class DenseTensor:
    """Fully materialized buffer. Identity is what aliasing means."""

    data: Any

    def __post_init__(self) -> None:
        self.data = _as_buffer(self.data)

    @property
    def kind(self) -> StorageKind:
        return StorageKind.DENSE

    @property
    def shape(self) -> Tuple[int, ...]:
        return self.data.shape

    @property
    def dims(self) -> Tuple[int, ...]:
        return self.data.shape

    @property
    def numel(self) -> int:
        return int(self.data.size)

    def as_array(self) -> np.ndarray:
        return self.data


@dataclass(eq=False)
class SparseRows:
    """Logical ``[height, width]`` matrix holding only its present rows.

    ``value[k]`` is the content of logical row ``rows[k]``. Gradients may repeat
    a row id; the lookup map keeps the first physical row seen for each id, so
    a parameter grown through :meth:`auto_grown_index` stays injective.
    """

    rows: Sequence[int]
    value: Any
    height: int
    _index: Dict[int, int] = field(default_factory=dict, init=False, repr=False)

    def __post_init__(self) -> None:
        self.rows = [int(row) for row in self.rows]
        value = _as_buffer(self.value)
        if value.ndim != 2:
            raise TensorError(f"SparseRows value must be 2-D, got shape {value.shape}")
        if value.shape[0] != len(self.rows):
            raise TensorError(
                f"SparseRows value has {value.shape[0]} row(s) but {len(self.rows)} row id(s)"
            )
        self.value = value
        self.height = int(self.height)
        if self.height < 0:
            raise TensorError(f"SparseRows height must be non-negative, got {self.height}")
        for offset, row in enumerate(self.rows):
            self._check_row(row)
            self._index.setdefault(row, offset)

    @classmethod
    def empty(cls, height: int, width: int, dtype: Any = np.float64) -> "SparseRows":
        return cls(rows=[], value=np.zeros((0, width), dtype=dtype), height=height)

    @property
    def kind(self) -> StorageKind:
        return StorageKind.SPARSE_ROWS

    @property
    def width(self) -> int:
        return int(self.value.shape[1])

    @property
    def shape(self) -> Tuple[int, int]:
        return (self.height, self.width)

    @property
    def numel(self) -> int:
        return int(self.value.size)

    def lookup(self, row: int) -> int:
        return self._index.get(int(row), -1)

    def auto_grown_index(self, row: int, auto_grow: bool = False) -> int:
        """Physical offset of logical ``row``.

        Returns -1 on a miss unless ``auto_grow`` is set, in which case a zero
        row is appended for it.
        """
        row = int(row)
        offset = self._index.get(row)
        if offset is not None:
            return offset
        if not auto_grow:
            return -1
        self._check_row(row)
        offset = len(self.rows)
        grown = np.zeros((offset + 1, self.width), dtype=self.value.dtype)
        grown[:offset] = self.value
        self.value = grown
        self.rows.append(row)
        self._index[row] = offset
        return offset

    def to_dense(self) -> np.ndarray:
        dense = np.zeros((self.height, self.width), dtype=self.value.dtype)
        if self.rows:
            np.add.at(dense, np.asarray(self.rows, dtype=np.int64), self.value)
        return dense

    def _check_row(self, row: int) -> None:
        if row < 0 or row >= self.height:
            raise TensorError(f"Row id {row} is out of range for height {self.height}")


Tensor = DenseTensor | SparseRows
