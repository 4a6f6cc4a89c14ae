from __future__ import annotations

import os

import matplotlib

matplotlib.use("Agg")

import numpy as np
import pandas as pd
import pytest


@pytest.fixture(scope="session", autouse=True)
def _configure_matplotlib_cache(tmp_path_factory: pytest.TempPathFactory) -> None:
    """Ensure Matplotlib uses a writable cache during tests."""
    cache_dir = tmp_path_factory.mktemp("mplconfig")
    os.environ.setdefault("MPLCONFIGDIR", str(cache_dir))


@pytest.fixture
def numeric_df() -> pd.DataFrame:
    """4 numeric columns, 20 rows, 5 missing values in B only."""
    rng = np.random.default_rng(2025)
    n = 20
    a = rng.normal(50, 10, n)
    b = 0.5 * a + rng.normal(0, 5, n)
    c = rng.normal(10, 3, n)
    d = a - c + rng.normal(0, 2, n)
    df = pd.DataFrame({"A": a, "B": b, "C": c, "D": d})
    df.loc[[1, 4, 9, 13, 17], "B"] = np.nan
    return df


@pytest.fixture
def mixed_df() -> pd.DataFrame:
    """Numeric and categorical columns with missing values in several columns."""
    rng = np.random.default_rng(7)
    n = 60
    x1 = rng.normal(0, 1, n)
    x2 = 2.0 * x1 + rng.normal(0, 0.5, n)
    grp = np.where(x1 > 0.5, "high", np.where(x1 < -0.5, "low", "mid"))
    flag = rng.choice(["yes", "no"], n)
    df = pd.DataFrame(
        {
            "x1": x1,
            "x2": x2,
            "grp": pd.Categorical(grp, categories=["low", "mid", "high"]),
            "flag": flag.astype(object),
        }
    )
    df.loc[rng.choice(n, 6, replace=False), "x1"] = np.nan
    df.loc[rng.choice(n, 10, replace=False), "x2"] = np.nan
    df.loc[rng.choice(n, 8, replace=False), "grp"] = np.nan
    df.loc[rng.choice(n, 4, replace=False), "flag"] = np.nan
    return df
