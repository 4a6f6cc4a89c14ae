from __future__ import annotations

import pandas as pd
import pytest

from MICE_v0_1.dataio import (
    cast_dataframe_to_schema,
    infer_schema,
    load_complete_csv,
    load_incomplete_csv,
)


@pytest.fixture
def csv_pair(tmp_path):
    incomplete = tmp_path / "incomplete.csv"
    incomplete.write_text(
        " age ,hyp,chl,city\n"
        "20,1,187,north\n"
        ",2,,south\n"
        "40,,220,\n"
        "30,1.0,199,north\n",
        encoding="utf-8",
    )
    complete = tmp_path / "complete.csv"
    complete.write_text(
        "age,hyp,chl,city\n"
        "20,1,187,north\n"
        "25,2,205,south\n"
        "40,2,220,south\n"
        "30,1,199,north\n",
        encoding="utf-8",
    )
    return incomplete, complete


def test_infer_schema_types_unlisted_columns_from_values():
    df = pd.DataFrame({"a": ["1", "2", None], "b": ["x", "y", "x"], "c": ["1", "2", "1"]})
    schema = infer_schema(df, categorical_vars=["c"])
    assert schema == {"a": "float64", "b": "category", "c": "category"}


def test_infer_schema_rejects_overlapping_lists():
    df = pd.DataFrame({"a": ["1"]})
    with pytest.raises(ValueError):
        infer_schema(df, categorical_vars=["a"], continuous_vars=["a"])


def test_cast_keeps_integer_codes_for_categories():
    df = pd.DataFrame({"hyp": ["1", "2.0", "", None]})
    out = cast_dataframe_to_schema(df, {"hyp": "category"})
    assert isinstance(out["hyp"].dtype, pd.CategoricalDtype)
    assert list(out["hyp"].cat.categories) == [1, 2]
    assert out["hyp"].isna().sum() == 2


def test_load_incomplete_csv_strips_headers_and_applies_schema(csv_pair):
    incomplete, _ = csv_pair
    df, schema = load_incomplete_csv(str(incomplete))
    assert list(df.columns) == ["age", "hyp", "chl", "city"]
    assert schema == {"age": "float64", "hyp": "float64", "chl": "float64", "city": "category"}
    assert df["age"].dtype == "float64"
    assert df.isna().sum().to_dict() == {"age": 1, "hyp": 1, "chl": 1, "city": 1}


def test_load_incomplete_csv_selects_listed_columns(csv_pair):
    incomplete, _ = csv_pair
    df, _ = load_incomplete_csv(str(incomplete), categorical_vars=["hyp"], continuous_vars=["chl"])
    assert list(df.columns) == ["hyp", "chl"]
    with pytest.raises(KeyError):
        load_incomplete_csv(str(incomplete), continuous_vars=["bmi"])


def test_load_complete_csv_follows_schema(csv_pair):
    incomplete, complete = csv_pair
    _, schema = load_incomplete_csv(str(incomplete), categorical_vars=["hyp"], continuous_vars=["age", "chl"])
    truth = load_complete_csv(str(complete), schema)
    assert list(truth.columns) == list(schema)
    assert isinstance(truth["hyp"].dtype, pd.CategoricalDtype)
    assert truth["chl"].tolist() == [187.0, 205.0, 220.0, 199.0]
