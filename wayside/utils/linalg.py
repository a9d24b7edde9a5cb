"""
Small dense linear algebra for the LinUCB layer.

Matrices are tiny (d=10), so inversion uses an explicit Gauss-Jordan
elimination with partial pivoting instead of an iterative solver. Near-zero
pivots are replaced by PIVOT_FLOOR so a degenerate design matrix still yields
a finite inverse.
"""

from typing import List, Sequence

import numpy as np

PIVOT_FLOOR = 1e-9


def invert_matrix(matrix: np.ndarray) -> np.ndarray:
    """Gauss-Jordan inverse of a square matrix with partial pivoting."""
    a = np.nan_to_num(np.asarray(matrix, dtype=float))
    n = a.shape[0]
    if a.shape != (n, n):
        raise ValueError(f"Expected a square matrix, got shape {a.shape}")
    aug = np.hstack([a, np.eye(n)])

    for col in range(n):
        pivot = col + int(np.argmax(np.abs(aug[col:, col])))
        if abs(aug[pivot, col]) < PIVOT_FLOOR:
            aug[pivot, col] = PIVOT_FLOOR
        if pivot != col:
            aug[[col, pivot]] = aug[[pivot, col]]

        aug[col] = aug[col] / aug[col, col]
        for row in range(n):
            if row == col:
                continue
            factor = aug[row, col]
            if factor:
                aug[row] -= factor * aug[col]

    return aug[:, n:]


def min_max_normalize(values: Sequence[float], fallback: float = 0.5) -> List[float]:
    """Scale values into [0, 1]; a degenerate (flat) batch maps to fallback."""
    if len(values) == 0:
        return []
    arr = np.nan_to_num(np.asarray(values, dtype=float))
    low, high = float(arr.min()), float(arr.max())
    if abs(high - low) < PIVOT_FLOOR:
        return [fallback] * len(arr)
    return ((arr - low) / (high - low)).tolist()
