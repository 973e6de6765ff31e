from __future__ import annotations

from dataclasses import dataclass
from typing import Callable, Dict, Iterable, Optional, Sequence, Tuple

import numpy as np

from .values import DenseTensor, SparseRows, Tensor, TensorError


class ParamError(Exception):
    pass


InitFn = Callable[[Tuple[int, ...], np.random.Generator], np.ndarray | float]


@dataclass
class Param:
    name: str
    value: Tensor

    @property
    def shape(self) -> Tuple[int, ...]:
        return tuple(self.value.shape)


def init_zeros(shape: Tuple[int, ...], rng: np.random.Generator) -> np.ndarray | float:
    if not shape:
        return 0.0
    return np.zeros(shape, dtype=float)


def init_ones(shape: Tuple[int, ...], rng: np.random.Generator) -> np.ndarray | float:
    return init_fill(shape, rng, value=1.0)


def init_fill(
    shape: Tuple[int, ...], rng: np.random.Generator, value: float = 0.0
) -> np.ndarray | float:
    if not shape:
        return float(value)
    return np.full(shape, value, dtype=float)


def init_normal(
    shape: Tuple[int, ...], rng: np.random.Generator, mean: float = 0.0, std: float = 1.0
) -> np.ndarray | float:
    if not shape:
        return float(rng.normal(loc=mean, scale=std))
    return rng.normal(loc=mean, scale=std, size=shape)


# declaration → ParamStore.add_dense/add_sparse(...) → NumPy data from init → tensor stored by name.
class ParamStore:
    def __init__(self, rng: Optional[np.random.Generator] = None, seed: Optional[int] = None) -> None:
        self._params: Dict[str, Param] = {}
        if rng is not None and seed is not None:
            raise ParamError("Pass either rng or seed, not both")
        self._rng = rng or np.random.default_rng(seed)

    def add_dense(self, name: str, shape: Optional[Sequence[int]], init: InitFn) -> Param:
        shape_tuple = _shape_tuple(shape)
        data = init(shape_tuple, self._rng)
        return self.put(name, DenseTensor(np.array(data, dtype=float)))

    def add_sparse(
        self,
        name: str,
        height: int,
        width: int,
        rows: Sequence[int],
        init: InitFn,
    ) -> Param:
        if width < 0:
            raise ParamError(f"Sparse param '{name}' width must be non-negative, got {width}")
        # repeated ids are kept as listed; a gradient applies each occurrence
        row_list = [int(row) for row in rows]
        value = np.zeros((len(row_list), width), dtype=float)
        value[...] = init(value.shape, self._rng)
        try:
            tensor = SparseRows(rows=row_list, value=value, height=height)
        except TensorError as exc:
            raise ParamError(f"Sparse param '{name}': {exc}") from exc
        return self.put(name, tensor)

    def put(self, name: str, tensor: Tensor) -> Param:
        if name in self._params:
            raise ParamError(f"Param '{name}' already exists")
        param = Param(name=name, value=tensor)
        self._params[name] = param
        return param

    def get(self, name: str) -> Param:
        try:
            return self._params[name]
        except KeyError as exc:
            raise ParamError(f"Unknown param '{name}'") from exc

    def items(self) -> Iterable[tuple[str, Param]]:
        return self._params.items()

    def resolve_init(self, name: str, args: Sequence[float]) -> InitFn:
        if name == "zeros":
            return init_zeros
        if name == "ones":
            return init_ones
        if name == "fill":
            if len(args) != 1:
                raise ParamError("Initializer 'fill' expects exactly one value")
            value = args[0]

            def _fill(shape: Tuple[int, ...], rng: np.random.Generator) -> np.ndarray | float:
                return init_fill(shape, rng, value=value)

            return _fill
        if name == "normal":
            mean = args[0] if len(args) > 0 else 0.0
            std = args[1] if len(args) > 1 else 1.0

            def _fn(shape: Tuple[int, ...], rng: np.random.Generator) -> np.ndarray | float:
                return init_normal(shape, rng, mean=mean, std=std)

            return _fn
        raise ParamError(f"Unknown initializer '{name}'")


def _shape_tuple(shape: Optional[Sequence[int]]) -> Tuple[int, ...]:
    if not shape:
        return ()
    return tuple(int(dim) for dim in shape)
