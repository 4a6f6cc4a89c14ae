# helpers.py - setup helpers for MICE (v0.1)
# Methods, predictor matrix, visit sequence, initial imputations and traces.

from __future__ import annotations

import logging
from typing import Dict, Hashable, List, Mapping, Sequence, Tuple, Union

import numpy as np
import pandas as pd

from .columns import Column
from .exceptions import MiceConfigurationError

logger = logging.getLogger(__name__)

SUPPORTED_METHODS = ("pmm", "")

MethodsLike = Union[pd.Series, Mapping[Hashable, str], Sequence[str]]
PredictorMatrixLike = Union[pd.DataFrame, np.ndarray, Sequence[Sequence[int]]]
Traces = Dict[Hashable, np.ndarray]


# -------------------------
# Defaults
# -------------------------
def make_methods(data: pd.DataFrame) -> pd.Series:
    """Predictive mean matching for every column, in column order."""
    return pd.Series(["pmm"] * data.shape[1], index=data.columns, dtype=object)


def make_predictor_matrix(data: pd.DataFrame) -> pd.DataFrame:
    """Every column predicts every other column; the diagonal is zero."""
    n = data.shape[1]
    pm = np.ones((n, n), dtype=int)
    np.fill_diagonal(pm, 0)
    return pd.DataFrame(pm, index=data.columns, columns=data.columns)


def make_visit_sequence(data: pd.DataFrame) -> List[Hashable]:
    """Columns ordered by ascending missing count (ties keep column order)."""
    counts = data.isna().sum().to_numpy()
    order = np.argsort(counts, kind="stable")
    return [data.columns[i] for i in order]


# -------------------------
# Validation of user overrides
# -------------------------
def _check_labels(labels, columns: pd.Index, what: str) -> None:
    labels = list(labels)
    unknown = [c for c in labels if c not in columns]
    if unknown:
        raise MiceConfigurationError(f"{what} references unknown columns: {unknown}")
    if len(set(labels)) != len(labels):
        raise MiceConfigurationError(f"{what} contains duplicate column labels.")
    absent = [c for c in columns if c not in set(labels)]
    if absent:
        raise MiceConfigurationError(f"{what} is missing columns: {absent}")


def check_methods(data: pd.DataFrame, methods: MethodsLike) -> pd.Series:
    """Return ``methods`` as a Series aligned to ``data.columns``."""
    if isinstance(methods, (pd.Series, Mapping)):
        methods = pd.Series(methods, dtype=object)
        _check_labels(methods.index, data.columns, "methods")
        out = methods.reindex(data.columns)
    else:
        values = list(methods)
        if len(values) != data.shape[1]:
            raise MiceConfigurationError(
                f"methods has {len(values)} entries but the data has {data.shape[1]} columns."
            )
        out = pd.Series(values, index=data.columns, dtype=object)

    bad = {c: m for c, m in out.items() if m not in SUPPORTED_METHODS}
    if bad:
        raise MiceConfigurationError(
            f"Unsupported imputation methods {bad}; use 'pmm' or '' (do not impute)."
        )
    return out.astype(object)


def check_predictor_matrix(data: pd.DataFrame, predictor_matrix: PredictorMatrixLike) -> pd.DataFrame:
    """Return the predictor matrix as a 0/1 DataFrame aligned to ``data.columns``."""
    n = data.shape[1]
    if isinstance(predictor_matrix, pd.DataFrame):
        _check_labels(predictor_matrix.index, data.columns, "predictor_matrix rows")
        _check_labels(predictor_matrix.columns, data.columns, "predictor_matrix columns")
        values = predictor_matrix.loc[data.columns, data.columns].to_numpy()
    else:
        values = np.asarray(predictor_matrix)
        if values.shape != (n, n):
            raise MiceConfigurationError(
                f"predictor_matrix has shape {values.shape}; expected ({n}, {n})."
            )

    try:
        values = values.astype(float)
    except (TypeError, ValueError) as e:
        raise MiceConfigurationError(f"predictor_matrix must be numeric 0/1: {e}") from e
    if not np.isin(values, (0.0, 1.0)).all():
        raise MiceConfigurationError("predictor_matrix entries must be 0 or 1.")

    values = values.astype(int)
    if np.diag(values).any():
        logger.warning("predictor_matrix has non-zero diagonal entries; a column never predicts itself, setting them to 0.")
        np.fill_diagonal(values, 0)
    return pd.DataFrame(values, index=data.columns, columns=data.columns)


def check_visit_sequence(
    data: pd.DataFrame, visit_sequence: Sequence[Hashable], methods: pd.Series
) -> List[Hashable]:
    visit_sequence = list(visit_sequence)
    unknown = [c for c in visit_sequence if c not in data.columns]
    if unknown:
        raise MiceConfigurationError(f"visit_sequence references unknown columns: {unknown}")
    if len(set(visit_sequence)) != len(visit_sequence):
        raise MiceConfigurationError("visit_sequence visits a column more than once.")

    skipped = [c for c in visit_sequence if methods[c] == ""]
    if skipped:
        raise MiceConfigurationError(
            f"visit_sequence contains columns whose method is '' (not imputed): {skipped}"
        )
    left_out = [c for c in data.columns if methods[c] != "" and c not in set(visit_sequence)]
    if left_out:
        raise MiceConfigurationError(f"visit_sequence leaves out imputed columns: {left_out}")
    return visit_sequence


def check_column_kinds(columns: Dict[Hashable, Column], methods: pd.Series, predictor_matrix: pd.DataFrame) -> None:
    """Columns of unsupported dtype may only ride along untouched."""
    for name, col in columns.items():
        if col.kind != "other":
            continue
        if methods[name] != "":
            raise MiceConfigurationError(
                f"Column '{name}' has unsupported dtype for imputation; set its method to ''."
            )
        if predictor_matrix[name].any():
            raise MiceConfigurationError(
                f"Column '{name}' has unsupported dtype and cannot be used as a predictor."
            )


def drop_incomplete_predictors(
    predictor_matrix: pd.DataFrame, methods: pd.Series, columns: Dict[Hashable, Column]
) -> Tuple[pd.DataFrame, List[str]]:
    """
    Remove incomplete, non-imputed columns from every predictor set.

    Their missing cells are never filled in, so they cannot condition another
    column's model. One logged event is returned per removed column.
    """
    pm = predictor_matrix.copy()
    events: List[str] = []
    for name, col in columns.items():
        if methods[name] == "" and col.n_missing > 0 and pm[name].any():
            pm[name] = 0
            events.append(
                f"setup, {name}: has {col.n_missing} missing values and is not imputed; removed as predictor"
            )
    return pm, events


# -------------------------
# Initial state
# -------------------------
def initialise_imputations(
    columns: Dict[Hashable, Column],
    m: int,
    visit_sequence: Sequence[Hashable],
    rngs: Sequence[np.random.Generator],
) -> Dict[Hashable, np.ndarray]:
    """Seed each copy with a bootstrap of the observed values of each column."""
    imputations: Dict[Hashable, np.ndarray] = {}
    for var in visit_sequence:
        col = columns[var]
        imp = col.empty_imputations(m)
        for j in range(m):
            imp[:, j] = col.draw_marginal(rngs[j], col.n_missing)
        imputations[var] = imp
    return imputations


def initialise_traces(visit_sequence: Sequence[Hashable], n_iter: int, m: int) -> Traces:
    return {var: np.full((n_iter, m), np.nan) for var in visit_sequence}


def extend_traces(prev: Traces, visit_sequence: Sequence[Hashable], prev_iter: int, n_iter: int, m: int) -> Traces:
    """New traces sized for ``prev_iter + n_iter`` rows, prior rows copied verbatim."""
    traces = initialise_traces(visit_sequence, prev_iter + n_iter, m)
    for var in visit_sequence:
        traces[var][:prev_iter, :] = prev[var][:prev_iter, :]
    return traces


def record_traces(
    mean_traces: Traces,
    var_traces: Traces,
    imputations: Dict[Hashable, np.ndarray],
    col: Column,
    iteration: int,
) -> None:
    imp = imputations[col.name]
    if imp.shape[0] == 0:
        return
    for j in range(imp.shape[1]):
        v = col.trace_values(imp[:, j])
        mean_traces[col.name][iteration - 1, j] = float(np.mean(v))
        var_traces[col.name][iteration - 1, j] = float(np.var(v, ddof=1)) if len(v) > 1 else np.nan
