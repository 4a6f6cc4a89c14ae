# columns.py - typed column views for MICE (v0.1)

"""Column variants used by the chained-equation sampler.

Every column of the incomplete table is wrapped once, at setup, into a
``NumericColumn``, a ``CategoricalColumn`` or an ``OtherColumn``. The variants
share one capability interface, so the initializer and the sampler never
branch on pandas dtypes:

- ``observed_values()``  observed entries, in row order
- ``missing_mask``       boolean mask, True where the value is unknown
- ``draw_fallback()``    cold-start draws used when nothing is observed
- ``draw_marginal()``    bootstrap from observed values, else ``draw_fallback``
- ``complete()``         the full column with one copy's imputations filled in
- ``design()``           predictor encoding (float matrix, one-hot for categoricals)
- ``response()``         numeric regression target for predictive mean matching
- ``trace_values()``     numeric view of imputed values for convergence traces
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import ClassVar, Hashable, List, Union

import numpy as np
import pandas as pd
from scipy import linalg

from .exceptions import MiceConfigurationError


@dataclass
class _BaseColumn:
    name: Hashable
    values: np.ndarray
    missing_mask: np.ndarray

    kind: ClassVar[str] = "other"
    dtype: ClassVar[object] = object

    @property
    def n_missing(self) -> int:
        return int(self.missing_mask.sum())

    @property
    def n_observed(self) -> int:
        return int((~self.missing_mask).sum())

    def observed_values(self) -> np.ndarray:
        return self.values[~self.missing_mask]

    def empty_imputations(self, m: int) -> np.ndarray:
        return np.empty((self.n_missing, m), dtype=self.dtype)

    def draw_fallback(self, rng: np.random.Generator, size: int) -> np.ndarray:
        raise MiceConfigurationError(
            f"Column '{self.name}' has an unsupported dtype and cannot be imputed."
        )

    def draw_marginal(self, rng: np.random.Generator, size: int) -> np.ndarray:
        """Bootstrap ``size`` observed values; cold-start draws if none exist."""
        observed = self.observed_values()
        if len(observed) > 0:
            return observed[rng.integers(0, len(observed), size=size)]
        return self.draw_fallback(rng, size)

    def complete(self, imputed: np.ndarray) -> np.ndarray:
        out = self.values.copy()
        out[self.missing_mask] = imputed
        return out

    def design(self, values: np.ndarray) -> np.ndarray:
        raise MiceConfigurationError(
            f"Column '{self.name}' has an unsupported dtype and cannot be used as a predictor."
        )

    def response(self, y: np.ndarray, X: np.ndarray) -> np.ndarray:
        raise MiceConfigurationError(
            f"Column '{self.name}' has an unsupported dtype and cannot be imputed."
        )

    def trace_values(self, imputed: np.ndarray) -> np.ndarray:
        raise MiceConfigurationError(
            f"Column '{self.name}' has an unsupported dtype and cannot be traced."
        )


@dataclass
class NumericColumn(_BaseColumn):
    kind: ClassVar[str] = "numeric"
    dtype: ClassVar[object] = float

    def draw_fallback(self, rng: np.random.Generator, size: int) -> np.ndarray:
        return rng.standard_normal(size)

    def design(self, values: np.ndarray) -> np.ndarray:
        return np.asarray(values, dtype=float).reshape(-1, 1)

    def response(self, y: np.ndarray, X: np.ndarray) -> np.ndarray:
        return np.asarray(y, dtype=float)

    def trace_values(self, imputed: np.ndarray) -> np.ndarray:
        return np.asarray(imputed, dtype=float)


@dataclass
class CategoricalColumn(_BaseColumn):
    levels: List[object] = None

    kind: ClassVar[str] = "categorical"
    dtype: ClassVar[object] = object

    def __post_init__(self):
        if self.levels is None:
            self.levels = []

    def draw_fallback(self, rng: np.random.Generator, size: int) -> np.ndarray:
        if len(self.levels) == 0:
            raise MiceConfigurationError(
                f"Column '{self.name}' has no observed values and declares no levels; "
                "declare its categories with a CategoricalDtype or set its method to ''."
            )
        levels = np.asarray(self.levels, dtype=object)
        return levels[rng.integers(0, len(levels), size=size)]

    def codes(self, values: np.ndarray) -> np.ndarray:
        """Position of each value in ``levels`` (NaN for unknown values)."""
        lookup = {level: i for i, level in enumerate(self.levels)}
        return np.array([lookup.get(v, np.nan) for v in values], dtype=float)

    def design(self, values: np.ndarray) -> np.ndarray:
        # One indicator per declared level; the sampler picks the reference
        # among the levels present on the training rows.
        levels = np.asarray(self.levels, dtype=object)
        vals = np.asarray(values, dtype=object)
        return (vals[:, None] == levels[None, :]).astype(float)

    def response(self, y: np.ndarray, X: np.ndarray) -> np.ndarray:
        """Quantify observed levels as optimal scores.

        The scores are the leading canonical variate between the level dummies
        and the predictors, so levels that the predictors separate well end up
        far apart on the score scale. Predictive mean matching then runs on the
        scores and donates observed levels.
        """
        y = np.asarray(y, dtype=object)
        present = [lv for lv in self.levels if np.any(y == lv)]
        if len(present) < 2 or X.shape[1] == 0:
            return np.zeros(len(y))

        Y = (y[:, None] == np.asarray(present[1:], dtype=object)[None, :]).astype(float)
        Yc = Y - Y.mean(axis=0)
        Xc = X - X.mean(axis=0)

        coef, *_ = np.linalg.lstsq(Xc, Yc, rcond=None)
        A = Yc.T @ (Xc @ coef)
        A = (A + A.T) / 2.0
        B = Yc.T @ Yc + np.eye(Yc.shape[1]) * 1e-8
        _, vecs = linalg.eigh(A, B)

        scores = Yc @ vecs[:, -1]
        sd = float(scores.std())
        if sd > 0:
            scores = (scores - scores.mean()) / sd
        return scores

    def trace_values(self, imputed: np.ndarray) -> np.ndarray:
        return self.codes(imputed)


@dataclass
class OtherColumn(_BaseColumn):
    """Dates, intervals and other dtypes: usable only as untouched columns."""


Column = Union[NumericColumn, CategoricalColumn, OtherColumn]


def _sorted_levels(observed: np.ndarray) -> List[object]:
    uniq = list(pd.unique(observed))
    try:
        return sorted(uniq)
    except TypeError:
        # mixed types: keep order of appearance
        return uniq


def make_column(series: pd.Series) -> Column:
    """Wrap a pandas column into its typed variant."""
    mask = series.isna().to_numpy()
    dtype = series.dtype

    if isinstance(dtype, pd.CategoricalDtype):
        values = series.astype(object).to_numpy(dtype=object)
        return CategoricalColumn(series.name, values, mask, levels=list(dtype.categories))

    if (
        pd.api.types.is_bool_dtype(dtype)
        or pd.api.types.is_object_dtype(dtype)
        or pd.api.types.is_string_dtype(dtype)
    ):
        values = series.astype(object).to_numpy(dtype=object)
        return CategoricalColumn(series.name, values, mask, levels=_sorted_levels(values[~mask]))

    if pd.api.types.is_numeric_dtype(dtype):
        values = series.to_numpy(dtype=float, na_value=np.nan)
        return NumericColumn(series.name, values, mask)

    return OtherColumn(series.name, series.to_numpy(dtype=object), mask)
