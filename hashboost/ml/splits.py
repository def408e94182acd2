"""
Seeded train/test splitting and contiguous k-fold slicing.

Every shuffle goes through ``numpy.random.default_rng(seed)``, so the same
records and seed always give the same split and the same folds.

K-fold layout
-------------
Folds are contiguous slices of the (already shuffled) dataset::

    fold_size = n // n_folds
    fold i tests rows [i * fold_size, (i + 1) * fold_size)
    the last fold also takes the remainder rows

Training rows for a fold are everything outside its test slice.
"""

from __future__ import annotations

import math
from dataclasses import dataclass
from typing import Sequence, TypeVar

import numpy as np

from hashboost.exceptions import ValidationError

T = TypeVar("T")


@dataclass(frozen=True)
class DataSplit:
    train: list
    test: list


@dataclass(frozen=True)
class Fold:
    """One cross-validation fold.

    Attributes:
        index:      Zero-based fold number.
        test_start: First test row (inclusive).
        test_end:   Last test row (exclusive).
    """

    index: int
    test_start: int
    test_end: int

    def split(self, records: Sequence[T]) -> tuple[list[T], list[T]]:
        """Return ``(train, test)`` rows of ``records`` for this fold."""
        test = list(records[self.test_start:self.test_end])
        train = list(records[:self.test_start]) + list(records[self.test_end:])
        return train, test


def shuffled(records: Sequence[T], seed: int) -> list[T]:
    """Return a new list with ``records`` permuted by a seeded generator."""
    rng = np.random.default_rng(seed)
    order = rng.permutation(len(records))
    return [records[i] for i in order]


def train_test_split(
    records: Sequence[T],
    test_ratio: float = 0.2,
    shuffle: bool = True,
    seed: int = 42,
) -> DataSplit:
    """Split at ``floor(n * (1 - test_ratio))`` after an optional seeded shuffle.

    Raises:
        ValidationError: ``test_ratio`` outside ``[0, 1)``.
    """
    if not 0.0 <= test_ratio < 1.0:
        raise ValidationError(f"test_ratio must be in [0, 1), got {test_ratio}")
    rows = shuffled(records, seed) if shuffle else list(records)
    cut = math.floor(len(rows) * (1.0 - test_ratio))
    return DataSplit(train=rows[:cut], test=rows[cut:])


def kfold_slices(n: int, n_folds: int) -> list[Fold]:
    """Contiguous folds over ``n`` rows; the last fold absorbs the remainder.

    Raises:
        ValidationError: ``n_folds < 2`` or more folds than rows.
    """
    if n_folds < 2:
        raise ValidationError(f"n_folds must be >= 2, got {n_folds}")
    if n_folds > n:
        raise ValidationError(f"Cannot make {n_folds} folds from {n} rows")

    size = n // n_folds
    return [
        Fold(
            index=i,
            test_start=i * size,
            test_end=n if i == n_folds - 1 else (i + 1) * size,
        )
        for i in range(n_folds)
    ]
