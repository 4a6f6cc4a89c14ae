# mids.py - multiply imputed dataset (v0.1)

from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, Hashable, List, Union

import joblib
import numpy as np
import pandas as pd


def _assign_imputed(df: pd.DataFrame, col: Hashable, mask: np.ndarray, values: np.ndarray) -> None:
    """Write imputed values into ``df[col]`` at ``mask`` with dtype safety."""
    if not mask.any():
        return
    tgt_dtype = df[col].dtype
    vals = np.asarray(values)

    if isinstance(tgt_dtype, pd.CategoricalDtype):
        # imputed values are always declared categories
        df.loc[mask, col] = vals.astype(object)
    elif pd.api.types.is_integer_dtype(tgt_dtype):
        v = pd.to_numeric(pd.Series(vals), errors="coerce")
        if np.allclose(v, np.round(v)):
            df.loc[mask, col] = v.round().astype(tgt_dtype).values
        else:
            # cold-start draws are not integral
            df[col] = df[col].astype("float64")
            df.loc[mask, col] = v.values
    elif pd.api.types.is_float_dtype(tgt_dtype):
        df.loc[mask, col] = pd.to_numeric(pd.Series(vals), errors="coerce").astype("float64").values
    else:
        df.loc[mask, col] = vals.astype(object)


@dataclass
class Mids:
    """
    A multiply imputed dataset.

    The data originally supplied are stored as ``data``.

    The imputed values are stored in ``imputations``: one array per visited
    column, shape (rows missing in that column, m), one column per imputation.

    ``methods``, ``predictor_matrix`` and ``visit_sequence`` are the run
    configuration; they never change when the chain is resumed.

    ``iter`` is the number of completed iterations. ``mean_traces`` and
    ``var_traces`` hold, per visited column, an (iter, m) array with the mean
    and variance of the imputed values after each iteration.

    ``logged_events`` lists non-fatal problems met while sampling.

    ``seed`` and ``rng_states`` let ``resume`` continue the same random
    streams, one per imputation.
    """

    data: pd.DataFrame
    imputations: Dict[Hashable, np.ndarray]
    m: int
    methods: pd.Series
    predictor_matrix: pd.DataFrame
    visit_sequence: List[Hashable]
    iter: int
    mean_traces: Dict[Hashable, np.ndarray]
    var_traces: Dict[Hashable, np.ndarray]
    logged_events: List[str] = field(default_factory=list)
    seed: Any = None
    rng_states: List[Dict[str, Any]] = field(default_factory=list)
    donors: int = 5
    ridge: float = 1e-5

    def __repr__(self) -> str:
        return (
            f"Mids(m={self.m}, iter={self.iter}, shape={self.data.shape}, "
            f"visit_sequence={self.visit_sequence}, logged_events={len(self.logged_events)})"
        )

    def complete(self, action: Union[int, str] = 0):
        """
        Completed data.

        Args:
            action: imputation index in ``0..m-1`` for one DataFrame, ``"all"``
                for a list of m DataFrames, or ``"long"`` for all imputations
                stacked with ``.imp`` (imputation index) and ``.id`` (row label)
                columns.
        """
        if action == "all":
            return [self._complete_one(j) for j in range(self.m)]
        if action == "long":
            frames = []
            for j in range(self.m):
                df = self._complete_one(j)
                df.insert(0, ".id", self.data.index)
                df.insert(0, ".imp", j)
                frames.append(df)
            return pd.concat(frames, ignore_index=True)
        if isinstance(action, (int, np.integer)) and not isinstance(action, bool) and 0 <= action < self.m:
            return self._complete_one(int(action))
        raise ValueError(f"action must be an imputation index in [0, {self.m}), 'all' or 'long'; got {action!r}")

    def _complete_one(self, j: int) -> pd.DataFrame:
        out = self.data.copy()
        for var, imp in self.imputations.items():
            mask = out[var].isna().to_numpy()
            _assign_imputed(out, var, mask, imp[:, j])
        return out

    def trace_frame(self, kind: str = "mean") -> pd.DataFrame:
        """Traces as a tidy frame: iteration (1-based), variable, imputation, value."""
        if kind == "mean":
            traces = self.mean_traces
        elif kind == "var":
            traces = self.var_traces
        else:
            raise ValueError(f"kind must be 'mean' or 'var'; got {kind!r}")

        rows = []
        for var in self.visit_sequence:
            arr = traces[var]
            for t in range(arr.shape[0]):
                for j in range(arr.shape[1]):
                    rows.append({"iteration": t + 1, "variable": var, "imputation": j, "value": float(arr[t, j])})
        return pd.DataFrame(rows, columns=["iteration", "variable", "imputation", "value"])

    def save(self, path: Union[str, Path]) -> None:
        """Persist every field verbatim with joblib."""
        joblib.dump(self, path)


def load_mids(path: Union[str, Path]) -> Mids:
    obj = joblib.load(path)
    if not isinstance(obj, Mids):
        raise TypeError(f"{path} does not contain a Mids object (found {type(obj).__name__}).")
    return obj
