"""Whitened linear systems produced by hybrid factor linearization."""
from dataclasses import dataclass
from typing import Dict, Iterable, List, Sequence

import numpy as np


@dataclass
class LinearSystem:
    """Whitened Jacobian blocks per continuous key plus the whitened residual.

    The cost at the linearization point is 0.5 * ||residual||^2 and the
    first-order model is residual + sum_k blocks[k] @ delta_k.
    """
    keys: List[int]
    blocks: Dict[int, np.ndarray]
    residual: np.ndarray

    @property
    def rows(self) -> int:
        return int(self.residual.shape[0])

    def error(self) -> float:
        return 0.5 * float(self.residual @ self.residual)

    def jacobian(self, key: int, dim: int) -> np.ndarray:
        block = self.blocks.get(key)
        if block is None:
            return np.zeros((self.rows, dim))
        return block

    @classmethod
    def from_factor(cls, factor, values, key_dims: Dict[int, int]) -> "LinearSystem":
        """Linearize a gtsam nonlinear factor and split its Jacobian by key."""
        gaussian = factor.linearize(values)
        A, b = gaussian.jacobian()
        A = np.atleast_2d(np.asarray(A, dtype=float))
        b = np.asarray(b, dtype=float).reshape(-1)
        keys = [int(k) for k in gaussian.keys()]
        blocks: Dict[int, np.ndarray] = {}
        col = 0
        for k in keys:
            d = key_dims[k]
            blocks[k] = A[:, col:col + d].copy()
            col += d
        return cls(keys, blocks, -b)

    def scaled(self, weight: float) -> "LinearSystem":
        return LinearSystem(list(self.keys),
                            {k: weight * v for k, v in self.blocks.items()},
                            weight * self.residual)

    def padded(self, rows: int) -> "LinearSystem":
        """Append zero rows up to `rows`; the cost is unchanged."""
        extra = rows - self.rows
        if extra < 0:
            raise ValueError(f"Cannot pad a {self.rows}-row system down to {rows} rows")
        if extra == 0:
            return self
        blocks = {k: np.vstack([v, np.zeros((extra, v.shape[1]))]) for k, v in self.blocks.items()}
        return LinearSystem(list(self.keys), blocks, np.concatenate([self.residual, np.zeros(extra)]))

    @staticmethod
    def stack(systems: Sequence["LinearSystem"], keys: Iterable[int],
              key_dims: Dict[int, int]) -> "LinearSystem":
        """Stack systems vertically over `keys`, zero-filling absent blocks."""
        keys = list(keys)
        if not systems:
            return LinearSystem(keys, {k: np.zeros((0, key_dims[k])) for k in keys}, np.zeros(0))
        blocks = {k: np.vstack([s.jacobian(k, key_dims[k]) for s in systems]) for k in keys}
        residual = np.concatenate([s.residual for s in systems])
        return LinearSystem(keys, blocks, residual)
