from __future__ import annotations

import logging

import numpy as np
import pandas as pd
import pytest

from MICE_v0_1.columns import make_column
from MICE_v0_1.exceptions import MiceConfigurationError
from MICE_v0_1.helpers import (
    check_methods,
    check_predictor_matrix,
    check_visit_sequence,
    drop_incomplete_predictors,
    extend_traces,
    initialise_imputations,
    initialise_traces,
    make_methods,
    make_predictor_matrix,
    make_visit_sequence,
    record_traces,
)
from MICE_v0_1.utils import make_rngs


@pytest.fixture
def counts_df() -> pd.DataFrame:
    return pd.DataFrame(
        {
            "a": [np.nan, np.nan, 1.0, 2.0],
            "b": [1.0, 2.0, 3.0, 4.0],
            "c": [1.0, np.nan, np.nan, 4.0],
            "d": [np.nan, 2.0, 3.0, 4.0],
        }
    )


def test_make_methods_is_pmm_everywhere(counts_df):
    methods = make_methods(counts_df)
    assert list(methods.index) == ["a", "b", "c", "d"]
    assert (methods == "pmm").all()


@pytest.mark.parametrize("n", [2, 3, 6])
def test_make_predictor_matrix_zero_diagonal_ones_elsewhere(n):
    df = pd.DataFrame(np.zeros((3, n)), columns=[f"v{i}" for i in range(n)])
    pm = make_predictor_matrix(df).to_numpy()
    assert pm.shape == (n, n)
    assert (np.diag(pm) == 0).all()
    assert pm.sum() == n * n - n


def test_make_visit_sequence_orders_by_missing_count_stably(counts_df):
    assert make_visit_sequence(counts_df) == ["b", "d", "a", "c"]


def test_check_methods_accepts_mapping_and_sequence(counts_df):
    by_name = check_methods(counts_df, {"a": "pmm", "b": "", "c": "pmm", "d": "pmm"})
    assert by_name["b"] == ""
    by_pos = check_methods(counts_df, ["pmm", "", "pmm", "pmm"])
    assert list(by_pos) == list(by_name)


@pytest.mark.parametrize(
    "methods",
    [
        ["pmm", "pmm"],
        {"a": "pmm", "b": "pmm", "c": "pmm", "zzz": "pmm"},
        {"a": "pmm", "b": "pmm", "c": "pmm"},
        ["pmm", "norm", "pmm", "pmm"],
    ],
)
def test_check_methods_rejects_bad_overrides(counts_df, methods):
    with pytest.raises(MiceConfigurationError):
        check_methods(counts_df, methods)


def test_check_predictor_matrix_rejects_wrong_shape(counts_df):
    with pytest.raises(MiceConfigurationError):
        check_predictor_matrix(counts_df, np.ones((3, 3)))


def test_check_predictor_matrix_rejects_unknown_labels(counts_df):
    pm = make_predictor_matrix(counts_df).rename(columns={"d": "zzz"})
    with pytest.raises(MiceConfigurationError):
        check_predictor_matrix(counts_df, pm)


def test_check_predictor_matrix_rejects_non_binary_entries(counts_df):
    with pytest.raises(MiceConfigurationError):
        check_predictor_matrix(counts_df, np.full((4, 4), 2))


def test_check_predictor_matrix_reorders_labels_and_zeroes_diagonal(counts_df, caplog):
    pm = pd.DataFrame(np.ones((4, 4), dtype=int), index=list("dcba"), columns=list("dcba"))
    pm.loc["a", "b"] = 0
    with caplog.at_level(logging.WARNING, logger="MICE_v0_1.helpers"):
        out = check_predictor_matrix(counts_df, pm)
    assert list(out.index) == list("abcd")
    assert out.loc["a", "b"] == 0
    assert (np.diag(out.to_numpy()) == 0).all()
    assert "diagonal" in caplog.text


def test_check_visit_sequence(counts_df):
    methods = make_methods(counts_df)
    assert check_visit_sequence(counts_df, ["d", "c", "b", "a"], methods) == ["d", "c", "b", "a"]
    with pytest.raises(MiceConfigurationError):
        check_visit_sequence(counts_df, ["d", "c", "b", "zzz"], methods)
    with pytest.raises(MiceConfigurationError):
        check_visit_sequence(counts_df, ["d", "c", "b", "b", "a"], methods)
    with pytest.raises(MiceConfigurationError):
        check_visit_sequence(counts_df, ["d", "c", "b"], methods)

    methods["b"] = ""
    with pytest.raises(MiceConfigurationError):
        check_visit_sequence(counts_df, ["d", "c", "b", "a"], methods)


def test_drop_incomplete_predictors_logs_event(counts_df):
    methods = check_methods(counts_df, ["", "pmm", "pmm", "pmm"])
    columns = {c: make_column(counts_df[c]) for c in counts_df.columns}
    pm, events = drop_incomplete_predictors(make_predictor_matrix(counts_df), methods, columns)
    assert pm["a"].sum() == 0
    assert pm["b"].sum() == 3
    assert len(events) == 1 and "removed as predictor" in events[0]


def test_initialise_imputations_shapes_and_values(counts_df):
    columns = {c: make_column(counts_df[c]) for c in counts_df.columns}
    _, rngs = make_rngs(1, 3)
    imps = initialise_imputations(columns, 3, ["b", "d", "a", "c"], rngs)
    assert list(imps) == ["b", "d", "a", "c"]
    assert imps["b"].shape == (0, 3)
    assert imps["a"].shape == (2, 3)
    assert imps["c"].shape == (2, 3)
    assert set(np.unique(imps["a"])) <= {1.0, 2.0}
    assert set(np.unique(imps["c"])) <= {1.0, 4.0}


def test_traces_extend_preserves_prior_rows():
    prev = initialise_traces(["x"], 2, 3)
    prev["x"][:] = [[1, 2, 3], [4, 5, 6]]
    ext = extend_traces(prev, ["x"], 2, 3, 3)
    assert ext["x"].shape == (5, 3)
    np.testing.assert_array_equal(ext["x"][:2], prev["x"])
    assert np.isnan(ext["x"][2:]).all()


def test_record_traces_writes_mean_and_variance_row():
    col = make_column(pd.Series([np.nan, np.nan, np.nan, 1.0], name="x"))
    imps = {"x": np.array([[1.0, 2.0], [3.0, 2.0], [5.0, 2.0]])}
    mean_t = initialise_traces(["x"], 2, 2)
    var_t = initialise_traces(["x"], 2, 2)
    record_traces(mean_t, var_t, imps, col, 2)
    np.testing.assert_allclose(mean_t["x"][1], [3.0, 2.0])
    np.testing.assert_allclose(var_t["x"][1], [4.0, 0.0])
    assert np.isnan(mean_t["x"][0]).all()
