# sampler.py - per-variable PMM sampler for MICE (v0.1)

"""
Predictive mean matching (PMM) sampler.

One call updates every imputation copy of one column:

1. assemble the completed predictor view of copy ``j``
2. draw regression parameters from their posterior (Bayesian linear regression)
3. predict observed rows with the fitted coefficients and missing rows with the
   drawn coefficients (type-1 matching)
4. for each missing row, pick one of the ``donors`` observed rows whose
   prediction is closest and copy its observed value

Copies only read their own imputations, so they run in parallel threads; each
copy owns its random generator, which keeps results identical with or without
threads.

Reference:
    Van Buuren, S. (2018). Flexible Imputation of Missing Data.
    Second Edition. Chapman & Hall/CRC. Algorithm 3.1 and 3.3.
"""

from __future__ import annotations

import logging
from concurrent.futures import Executor
from typing import Dict, Hashable, List, Optional, Sequence, Tuple

import numpy as np

from .columns import Column

logger = logging.getLogger(__name__)

DEFAULT_DONORS = 5
DEFAULT_RIDGE = 1e-5


def pmm_match(
    yhat_obs: np.ndarray,
    yhat_mis: np.ndarray,
    y_obs: np.ndarray,
    rng: np.random.Generator,
    donors: int = DEFAULT_DONORS,
) -> np.ndarray:
    """
    Predictive Mean Matching core.

    For every missing row, take the ``donors`` observed rows whose predicted
    value is closest, draw one uniformly and return its observed value.

    Args:
        yhat_obs: predictions for observed rows (n_obs,)
        yhat_mis: predictions for missing rows (n_mis,)
        y_obs: observed values, aligned with ``yhat_obs`` (n_obs,)
        rng: random generator of the imputation copy
        donors: donor pool size; capped at n_obs

    Returns:
        y_imp: imputed values (n_mis,), always taken from ``y_obs``
    """
    n_mis = len(yhat_mis)
    n_obs = len(yhat_obs)
    d = max(1, min(donors, n_obs))

    y_imp = np.empty(n_mis, dtype=y_obs.dtype)
    for i in range(n_mis):
        distances = np.abs(yhat_obs - yhat_mis[i])
        # stable sort: equal distances resolve to the earlier observed row
        pool = np.argsort(distances, kind="stable")[:d]
        y_imp[i] = y_obs[pool[rng.integers(0, d)]]
    return y_imp


def bayesian_ridge_draw(
    X_train: np.ndarray,
    y_train: np.ndarray,
    X_pred: np.ndarray,
    rng: np.random.Generator,
    ridge: float = DEFAULT_RIDGE,
) -> Tuple[np.ndarray, np.ndarray]:
    """
    Posterior parameter draw for linear regression (van Buuren 2018, p.73).

    1. beta_hat = (S + diag(S) * ridge)^(-1) X'y with S = X'X
    2. sigma_dot^2 = residual SS / chi2(df)
    3. beta_dot = beta_hat + sigma_dot * chol(V) z

    An intercept is added to both design matrices.

    Returns:
        yhat_obs: predictions for the training rows using beta_hat
        yhat_mis: predictions for ``X_pred`` using beta_dot
    """
    n, p = X_train.shape
    X_train_aug = np.column_stack([np.ones(n), X_train])
    X_pred_aug = np.column_stack([np.ones(X_pred.shape[0]), X_pred])
    p_aug = p + 1

    S = X_train_aug.T @ X_train_aug
    S_diag = np.diag(np.diag(S)) * ridge
    try:
        V = np.linalg.inv(S + S_diag)
    except np.linalg.LinAlgError:
        V = np.linalg.inv(S + np.eye(p_aug) * 0.01)

    beta_hat = V @ X_train_aug.T @ y_train

    residuals = y_train - X_train_aug @ beta_hat
    df = max(n - p_aug, 1)
    sigma_dot = np.sqrt(np.sum(residuals ** 2) / rng.chisquare(df))

    try:
        V_sqrt = np.linalg.cholesky((V + V.T) / 2.0)
    except np.linalg.LinAlgError:
        U, s, _ = np.linalg.svd(V)
        V_sqrt = U @ np.diag(np.sqrt(np.maximum(s, 0)))

    z = rng.standard_normal(p_aug)
    beta_dot = beta_hat + sigma_dot * V_sqrt @ z

    yhat_obs = X_train_aug @ beta_hat
    yhat_mis = X_pred_aug @ beta_dot
    return yhat_obs, yhat_mis


def _completed_design(
    imputations: Dict[Hashable, np.ndarray],
    columns: Dict[Hashable, Column],
    predictors: Sequence[Hashable],
    j: int,
    n: int,
) -> Tuple[np.ndarray, np.ndarray, np.ndarray]:
    """
    Design matrix of the predictor columns as completed by copy ``j``.

    Also returns, per design column, the index of the predictor it encodes and
    whether it is one indicator of a categorical predictor.
    """
    blocks = []
    owner: List[int] = []
    indicator: List[bool] = []
    for b, p in enumerate(predictors):
        col = columns[p]
        if p in imputations:
            values = col.complete(imputations[p][:, j])
        else:
            values = col.values
        block = col.design(values)
        blocks.append(block)
        owner.extend([b] * block.shape[1])
        indicator.extend([col.kind == "categorical"] * block.shape[1])
    X = np.column_stack(blocks) if blocks else np.empty((n, 0))
    return X, np.asarray(owner, dtype=int), np.asarray(indicator, dtype=bool)


def _training_columns(X_train: np.ndarray, owner: np.ndarray, indicator: np.ndarray) -> np.ndarray:
    """
    Mask of design columns that enter the fit.

    Columns constant on the training rows are dropped. Each categorical block
    then loses its first remaining indicator, so the reference level is one
    that actually occurs on the training rows and the indicators never add up
    to the intercept.
    """
    keep = np.ptp(X_train, axis=0) > 0
    for b in np.unique(owner[indicator]):
        cols = np.flatnonzero(keep & indicator & (owner == b))
        if len(cols):
            keep[cols[0]] = False
    return keep


def _impute_copy(
    j: int,
    target: Column,
    imputations: Dict[Hashable, np.ndarray],
    columns: Dict[Hashable, Column],
    predictors: Sequence[Hashable],
    rng: np.random.Generator,
    iteration: int,
    donors: int,
    ridge: float,
) -> Tuple[np.ndarray, Optional[str]]:
    obs = ~target.missing_mask
    X, owner, indicator = _completed_design(imputations, columns, predictors, j, len(obs))
    X_train, X_pred = X[obs], X[~obs]

    keep = _training_columns(X_train, owner, indicator)
    X_train, X_pred = X_train[:, keep], X_pred[:, keep]

    if X_train.shape[1] == 0:
        event = (
            f"iteration {iteration}, {target.name}, imputation {j}: "
            "all predictors are constant on the observed rows; resampled from the marginal distribution"
        )
        return target.draw_marginal(rng, target.n_missing), event

    if np.linalg.matrix_rank(np.column_stack([np.ones(len(X_train)), X_train])) < X_train.shape[1] + 1:
        event = (
            f"iteration {iteration}, {target.name}, imputation {j}: "
            "predictors are rank deficient; resampled from the marginal distribution"
        )
        return target.draw_marginal(rng, target.n_missing), event

    y_obs = target.observed_values()
    y_train = target.response(y_obs, X_train)
    yhat_obs, yhat_mis = bayesian_ridge_draw(X_train, y_train, X_pred, rng, ridge=ridge)
    return pmm_match(yhat_obs, yhat_mis, y_obs, rng, donors=donors), None


def sampler(
    imputations: Dict[Hashable, np.ndarray],
    columns: Dict[Hashable, Column],
    var: Hashable,
    predictors: Sequence[Hashable],
    rngs: Sequence[np.random.Generator],
    iteration: int,
    donors: int = DEFAULT_DONORS,
    ridge: float = DEFAULT_RIDGE,
    executor: Optional[Executor] = None,
) -> List[str]:
    """
    Update ``imputations[var]`` in place for every imputation copy.

    ``predictors`` lists the columns that condition ``var`` (one row of the
    predictor matrix). When ``executor`` is given, copies are fanned out to it
    and joined before returning.

    Returns the logged events raised by degenerate fits, in copy order.
    """
    target = columns[var]
    imp = imputations[var]
    m = imp.shape[1]
    if target.n_missing == 0:
        return []

    if target.n_observed < 2 or len(predictors) == 0:
        reason = (
            f"only {target.n_observed} observed values"
            if target.n_observed < 2
            else "empty predictor set"
        )
        for j in range(m):
            imp[:, j] = target.draw_marginal(rngs[j], target.n_missing)
        return [f"iteration {iteration}, {var}: {reason}; resampled from the marginal distribution"]

    def work(j: int) -> Tuple[np.ndarray, Optional[str]]:
        return _impute_copy(j, target, imputations, columns, predictors, rngs[j], iteration, donors, ridge)

    if executor is None:
        results = [work(j) for j in range(m)]
    else:
        results = list(executor.map(work, range(m)))

    events: List[str] = []
    for j, (values, event) in enumerate(results):
        imp[:, j] = values
        if event is not None:
            events.append(event)
    return events
