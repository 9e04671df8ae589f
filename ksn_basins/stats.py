"""
Basin wide reductions that exclude no-data
"""

from dataclasses import dataclass
from types import MappingProxyType
from typing import NamedTuple

import numpy as np


class Stats(NamedTuple):
    mean: float
    se: float
    std: float
    min: float
    max: float


def reduce_values(values):
    """
    Mean, standard error, standard deviation, minimum and maximum of the
    finite entries of values.

    The standard deviation uses n - 1 degrees of freedom and is 0 for a single
    value; every field is NaN when no finite value remains.
    """
    values = np.asarray(getattr(values, "values", values), dtype=np.float64).ravel()
    values = values[np.isfinite(values)]
    n = values.size
    if n == 0:
        return Stats(np.nan, np.nan, np.nan, np.nan, np.nan)
    std = float(np.std(values, ddof=1)) if n > 1 else 0.0
    return Stats(
        mean=float(np.mean(values)),
        se=std / np.sqrt(n),
        std=std,
        min=float(np.min(values)),
        max=float(np.max(values)),
    )


@dataclass(frozen=True)
class CategoricalSummary:
    """Histogram of class codes inside a basin.

    counts and fractions map class code to cell count and to fraction of the
    classified cells, names maps class code to a readable label.
    """

    majority: float
    counts: MappingProxyType
    fractions: MappingProxyType
    names: MappingProxyType

    def percentages(self):
        return {self.names[code]: 100 * f for code, f in self.fractions.items()}

    def __reduce__(self):
        # MappingProxyType cannot be pickled
        return (
            _rebuild_summary,
            (self.majority, dict(self.counts), dict(self.fractions), dict(self.names)),
        )


def _rebuild_summary(majority, counts, fractions, names):
    return CategoricalSummary(
        majority=majority,
        counts=MappingProxyType(counts),
        fractions=MappingProxyType(fractions),
        names=MappingProxyType(names),
    )


def categorical_summary(grid, categories=None):
    """Majority class and per class counts / fractions of a categorical grid."""
    values = np.asarray(getattr(grid, "values", grid), dtype=np.float64).ravel()
    values = values[np.isfinite(values)]
    codes, counts = np.unique(values, return_counts=True)
    categories = categories or {}
    code_list = [_as_code(c) for c in codes]
    if categories:
        # report every known class, absent ones with a zero count
        code_list = sorted(set(code_list) | set(categories))
    count_map = dict(zip((_as_code(c) for c in codes), (int(n) for n in counts)))
    total = int(counts.sum())

    full_counts = {code: count_map.get(code, 0) for code in code_list}
    fractions = {
        code: (n / total if total else np.nan) for code, n in full_counts.items()
    }
    names = {code: str(categories.get(code, code)) for code in code_list}
    majority = _as_code(codes[np.argmax(counts)]) if total else np.nan
    return CategoricalSummary(
        majority=majority,
        counts=MappingProxyType(full_counts),
        fractions=MappingProxyType(fractions),
        names=MappingProxyType(names),
    )


def _as_code(value):
    value = float(value)
    return int(value) if value.is_integer() else value
