from __future__ import annotations

"""Data I/O helpers.

The imputation engine decides how to model a column from its pandas dtype:
numeric dtypes are imputed as numeric, ``category``/object/bool as
categorical. CSV files blur that line (integer-coded categories come back as
``float64``, e.g. ``2`` becomes ``2.0``), so this module casts tables to an
explicit schema before imputation:

- continuous vars -> ``float64``
- categorical vars -> ``category`` (integer-like codes are kept as integers)
"""

from typing import Dict, List, Optional, Tuple

import numpy as np
import pandas as pd


Schema = Dict[str, str]


def _strip_df_columns(df: pd.DataFrame) -> pd.DataFrame:
    """Return a copy of ``df`` with whitespace-trimmed column names."""
    out = df.copy()
    out.columns = [str(c).strip() for c in out.columns]
    if len(set(out.columns)) != len(out.columns):
        raise ValueError(
            "Duplicate column names after stripping whitespace. "
            "Please sanitize the dataset headers."
        )
    return out


def _clean_var_list(vars: Optional[List[str]]) -> List[str]:
    """Drop None/NaN/empty tokens and surrounding whitespace."""
    out: List[str] = []
    for v in vars or []:
        if v is None:
            continue
        if isinstance(v, float) and np.isnan(v):
            continue
        s = str(v).strip()
        if s == "" or s.lower() == "nan":
            continue
        out.append(s)
    return out


def _is_int_like(series: pd.Series, *, tol: float = 1e-6) -> bool:
    """Return True if values are (almost) all integers."""
    s = pd.to_numeric(series, errors="coerce").dropna()
    if len(s) == 0:
        return False
    frac = (s - np.round(s)).abs()
    return float((frac < tol).mean()) > 0.99


def infer_schema(
    df: pd.DataFrame,
    *,
    categorical_vars: Optional[List[str]] = None,
    continuous_vars: Optional[List[str]] = None,
) -> Schema:
    """Build a schema from variable lists; unlisted columns are typed from their values.

    Columns that parse as numbers become continuous, everything else categorical.
    """
    categorical_vars = _clean_var_list(categorical_vars)
    continuous_vars = _clean_var_list(continuous_vars)

    overlap = sorted(set(categorical_vars) & set(continuous_vars))
    if overlap:
        raise ValueError(f"Columns listed as both categorical and continuous: {overlap}")

    schema: Schema = {}
    for c in df.columns:
        if c in continuous_vars:
            schema[c] = "float64"
        elif c in categorical_vars:
            schema[c] = "category"
        else:
            observed = df[c].dropna()
            numeric = pd.to_numeric(observed, errors="coerce")
            schema[c] = "float64" if len(observed) > 0 and numeric.notna().all() else "category"
    return schema


def cast_dataframe_to_schema(df: pd.DataFrame, schema: Schema) -> pd.DataFrame:
    """Return a copy of ``df`` cast to ``schema``.

    Robust to common CSV artifacts, such as integer codes serialized as
    floats ("82.0") and empty strings.
    """
    out = df.copy()
    for col, dtype in schema.items():
        if col not in out.columns:
            continue

        if dtype in {"float64", "Float64"}:
            out[col] = pd.to_numeric(out[col], errors="coerce").astype("float64")

        elif dtype == "category":
            s = out[col].replace("", np.nan)
            if _is_int_like(s) and pd.to_numeric(s.dropna(), errors="coerce").notna().all():
                num = np.rint(pd.to_numeric(s, errors="coerce"))
                s = pd.Series(num, index=out.index).astype("Int64")
            out[col] = s.astype("category")

        else:
            out[col] = out[col].astype(dtype)

    return out


def load_incomplete_csv(
    path: str,
    *,
    categorical_vars: Optional[List[str]] = None,
    continuous_vars: Optional[List[str]] = None,
) -> Tuple[pd.DataFrame, Schema]:
    """Load an incomplete CSV and cast it to a stable schema.

    Read with ``dtype=str`` so that integer-coded categorical columns are not
    coerced to ``float64`` before the schema is applied. When variable lists
    are given, only those columns are kept.
    """
    df = _strip_df_columns(pd.read_csv(path, dtype=str, keep_default_na=True))

    wanted = _clean_var_list(categorical_vars) + _clean_var_list(continuous_vars)
    if wanted:
        absent = [c for c in wanted if c not in df.columns]
        if absent:
            raise KeyError(
                f"Columns {absent} not found in CSV: {path}. "
                f"Available columns: {list(df.columns)}"
            )
        df = df[wanted]

    schema = infer_schema(df, categorical_vars=categorical_vars, continuous_vars=continuous_vars)
    return cast_dataframe_to_schema(df, schema), schema


def load_complete_csv(path: str, schema: Schema) -> pd.DataFrame:
    """Load ground-truth data and cast it to the schema of the incomplete table."""
    df = _strip_df_columns(pd.read_csv(path, dtype=str))
    absent = [c for c in schema if c not in df.columns]
    if absent:
        raise KeyError(f"Columns {absent} not found in complete CSV: {path}")
    return cast_dataframe_to_schema(df[list(schema)], schema)
