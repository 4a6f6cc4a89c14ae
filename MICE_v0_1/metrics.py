from __future__ import annotations

import warnings

from dataclasses import dataclass
from typing import Dict, Optional

import numpy as np
import pandas as pd
from sklearn.exceptions import UndefinedMetricWarning
from sklearn.metrics import (
    accuracy_score,
    f1_score,
    mean_absolute_error,
    mean_squared_error,
)

from .columns import make_column
from .mids import Mids


def nrmse(true: np.ndarray, pred: np.ndarray, value_range: Optional[float] = None) -> float:
    rmse = float(np.sqrt(mean_squared_error(true, pred)))
    if value_range is None:
        value_range = float(np.nanmax(true) - np.nanmin(true))
    return rmse / value_range if value_range and value_range > 0 else rmse


def compute_continuous_metrics(true_vals: np.ndarray, pred_vals: np.ndarray, value_range: Optional[float] = None) -> Dict[str, float]:
    true_vals = np.asarray(true_vals, dtype=float)
    pred_vals = np.asarray(pred_vals, dtype=float)
    return {
        "RMSE": float(np.sqrt(mean_squared_error(true_vals, pred_vals))),
        "NRMSE": nrmse(true_vals, pred_vals, value_range),
        "MAE": float(mean_absolute_error(true_vals, pred_vals)),
        "MB": float(np.mean(pred_vals - true_vals)),
    }


def compute_categorical_metrics(true_vals: np.ndarray, pred_vals: np.ndarray) -> Dict[str, float]:
    """Accuracy and macro-F1, compared as strings.

    Degenerate subsets (one class only) are expected when few cells are
    missing; sklearn warnings are silenced for them.
    """
    true_s = pd.Series(true_vals).astype(str).to_numpy()
    pred_s = pd.Series(pred_vals).astype(str).to_numpy()
    labels = sorted(set(true_s) | set(pred_s))

    with warnings.catch_warnings():
        warnings.filterwarnings("ignore", category=UndefinedMetricWarning)
        acc = float(accuracy_score(true_s, pred_s))
        f1_macro = float(f1_score(true_s, pred_s, labels=labels, average="macro", zero_division=0))
    return {"Accuracy": acc, "Macro-F1": f1_macro}


@dataclass
class EvaluationResult:
    per_feature: pd.DataFrame
    summary: Dict[str, float]


def evaluate_imputations(mids: Mids, X_complete: pd.DataFrame) -> EvaluationResult:
    '''
    Score every imputation against ground truth, on the cells missing in ``mids.data``.

    Besides the per-imputation accuracy, the summary reports the spread
    between imputations: the mean per-cell standard deviation for continuous
    columns, and the share of cells where imputations disagree for categorical
    columns.
    '''
    rows = []
    spread: Dict[str, list] = {"continuous": [], "categorical": []}

    for var in mids.visit_sequence:
        imp = mids.imputations[var]
        if imp.shape[0] == 0:
            continue
        col = make_column(mids.data[var])
        true_vals = X_complete.loc[col.missing_mask, var].to_numpy()
        keep = ~pd.isna(true_vals)
        if not keep.any():
            continue

        if col.kind == "numeric":
            truth = pd.to_numeric(X_complete[var], errors="coerce")
            vr = float(truth.max() - truth.min())
            for j in range(mids.m):
                metrics = compute_continuous_metrics(true_vals[keep], imp[keep, j], value_range=vr)
                metrics.update({"feature": var, "type": "continuous", "imputation": j, "n_eval": int(keep.sum())})
                rows.append(metrics)
            if mids.m > 1:
                spread["continuous"].append(float(np.mean(np.std(imp.astype(float), axis=1, ddof=1))))
        else:
            for j in range(mids.m):
                metrics = compute_categorical_metrics(true_vals[keep], imp[keep, j])
                metrics.update({"feature": var, "type": "categorical", "imputation": j, "n_eval": int(keep.sum())})
                rows.append(metrics)
            if mids.m > 1:
                codes = pd.DataFrame(imp).astype(str)
                spread["categorical"].append(float((codes.nunique(axis=1) > 1).mean()))

    per_feature = pd.DataFrame(rows)

    summary: Dict[str, float] = {}
    if not per_feature.empty:
        cont_df = per_feature[per_feature["type"] == "continuous"]
        cat_df = per_feature[per_feature["type"] == "categorical"]

        for metric in ["NRMSE", "RMSE", "MAE", "MB"]:
            if metric in cont_df.columns and len(cont_df) > 0:
                summary[f"cont_{metric}"] = float(np.nanmean(cont_df[metric].values))
        for metric in ["Accuracy", "Macro-F1"]:
            if metric in cat_df.columns and len(cat_df) > 0:
                summary[f"cat_{metric}"] = float(np.nanmean(cat_df[metric].values))

        summary["n_cont_features"] = int(cont_df["feature"].nunique()) if len(cont_df) else 0
        summary["n_cat_features"] = int(cat_df["feature"].nunique()) if len(cat_df) else 0

    if spread["continuous"]:
        summary["cont_between_imputation_sd"] = float(np.mean(spread["continuous"]))
    if spread["categorical"]:
        summary["cat_between_imputation_disagreement"] = float(np.mean(spread["categorical"]))

    return EvaluationResult(per_feature=per_feature, summary=summary)
