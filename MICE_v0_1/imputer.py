# imputer.py - MICE driver (v0.1)
# Multiple Imputation by Chained Equations with predictive mean matching.
# Heavily based on the R package mice (van Buuren & Groothuis-Oudshoorn, 2011).

from __future__ import annotations

import contextlib
import logging
import os
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass
from typing import Dict, Hashable, List, Optional, Sequence

import numpy as np
import pandas as pd
from tqdm.auto import tqdm

from .columns import Column, make_column
from .exceptions import MiceConfigurationError
from .helpers import (
    MethodsLike,
    PredictorMatrixLike,
    Traces,
    check_column_kinds,
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
from .mids import Mids
from .sampler import DEFAULT_DONORS, DEFAULT_RIDGE, sampler
from .utils import make_rngs, reclaim_memory, restore_rngs, rng_states

logger = logging.getLogger(__name__)


@dataclass
class MiceConfig:
    """
    MICE run settings.

    ``threads``, ``progress_reports`` and ``gc_schedule`` never change the
    imputed values; each imputation draws from its own random stream.
    """
    m: int = 5                      # Number of imputations
    n_iter: int = 10                # Passes over the visit sequence
    donors: int = DEFAULT_DONORS    # PMM donor pool size
    ridge: float = DEFAULT_RIDGE    # Ridge penalty of the regression draw
    seed: Optional[int] = None

    # Performance / feedback only
    threads: bool = True
    progress_reports: bool = True
    gc_schedule: float = 1.0        # Collect garbage when free RAM fraction drops below this

    def validate(self) -> None:
        if int(self.m) < 1:
            raise MiceConfigurationError(f"m must be >= 1, got {self.m}")
        if int(self.n_iter) < 0:
            raise MiceConfigurationError(f"n_iter must be >= 0, got {self.n_iter}")
        if int(self.donors) < 1:
            raise MiceConfigurationError(f"donors must be >= 1, got {self.donors}")
        if float(self.ridge) < 0:
            raise MiceConfigurationError(f"ridge must be >= 0, got {self.ridge}")
        if float(self.gc_schedule) < 0:
            raise MiceConfigurationError(f"gc_schedule must be >= 0, got {self.gc_schedule}")


def _make_executor(threads: bool, m: int):
    if threads and m > 1:
        return ThreadPoolExecutor(max_workers=min(m, os.cpu_count() or 1))
    return contextlib.nullcontext()


def _predictor_sets(predictor_matrix: pd.DataFrame, visit_sequence: Sequence[Hashable]) -> Dict[Hashable, List[Hashable]]:
    return {
        var: [c for c in predictor_matrix.columns if predictor_matrix.loc[var, c] == 1]
        for var in visit_sequence
    }


def _iterate(
    columns: Dict[Hashable, Column],
    imputations: Dict[Hashable, np.ndarray],
    predictor_matrix: pd.DataFrame,
    visit_sequence: List[Hashable],
    rngs: List[np.random.Generator],
    mean_traces: Traces,
    var_traces: Traces,
    logged_events: List[str],
    first: int,
    last: int,
    cfg: MiceConfig,
) -> None:
    """Run iterations ``first..last`` (1-based, inclusive) in place."""
    predictors = _predictor_sets(predictor_matrix, visit_sequence)
    m = len(rngs)
    n_steps = max(0, last - first + 1) * len(visit_sequence)

    with _make_executor(cfg.threads, m) as executor, tqdm(
        total=n_steps, desc="MICE", unit="var", disable=not cfg.progress_reports, leave=False
    ) as pbar:
        for iteration in range(first, last + 1):
            for var in visit_sequence:
                events = sampler(
                    imputations,
                    columns,
                    var,
                    predictors[var],
                    rngs,
                    iteration,
                    donors=int(cfg.donors),
                    ridge=float(cfg.ridge),
                    executor=executor,
                )
                for event in events:
                    logger.debug(event)
                logged_events.extend(events)

                record_traces(mean_traces, var_traces, imputations, columns[var], iteration)

                reclaim_memory(float(cfg.gc_schedule))
                pbar.set_postfix(iteration=iteration, variable=str(var))
                pbar.update(1)
            logger.info("MICE iteration %d/%d done", iteration, last)


def mice(
    data: pd.DataFrame,
    *,
    m: int = 5,
    visit_sequence: Optional[Sequence[Hashable]] = None,
    methods: Optional[MethodsLike] = None,
    predictor_matrix: Optional[PredictorMatrixLike] = None,
    n_iter: int = 10,
    progress_reports: bool = True,
    gc_schedule: float = 1.0,
    threads: bool = True,
    seed: Optional[int] = None,
    donors: int = DEFAULT_DONORS,
    ridge: float = DEFAULT_RIDGE,
    config: Optional[MiceConfig] = None,
) -> Mids:
    """
    Impute missing values in ``data`` with the MICE algorithm.

    Args:
        data: incomplete table; missing cells are those where ``isna()`` holds.
            Numeric columns are imputed as numeric; category, object, string
            and bool columns as categorical.
        m: number of imputations.
        visit_sequence: order in which columns are imputed. Defaults to
            ascending number of missing values; must list every imputed column
            exactly once.
        methods: ``"pmm"`` or ``""`` (do not impute) per column, as a Series,
            a mapping keyed by column, or a sequence in column order.
            Defaults to ``"pmm"`` everywhere.
        predictor_matrix: N x N 0/1 matrix; row i lists the predictors of
            column i. Defaults to all ones with a zero diagonal.
        n_iter: number of passes over the visit sequence.
        progress_reports: show a progress bar.
        gc_schedule: fraction of RAM left free below which the garbage
            collector is invoked after each column update (0.0 = never).
        threads: fan the m imputations of each update out to worker threads.
        seed: seed for the per-imputation random streams.
        donors: donor pool size of predictive mean matching.
        ridge: ridge penalty of the Bayesian regression draw.
        config: a ``MiceConfig``; when given it replaces the tuning keywords
            (m, n_iter, progress_reports, gc_schedule, threads, seed, donors, ridge).

    Returns:
        Mids: the multiply imputed dataset.

    Raises:
        MiceConfigurationError: when the configuration does not match ``data``,
            or when an imputed categorical column has no observed values and
            no declared categories (nothing to draw from). Raised before any
            sampling happens.
    """
    cfg = config or MiceConfig(
        m=m,
        n_iter=n_iter,
        donors=donors,
        ridge=ridge,
        seed=seed,
        threads=threads,
        progress_reports=progress_reports,
        gc_schedule=gc_schedule,
    )
    cfg.validate()

    if not isinstance(data, pd.DataFrame):
        raise MiceConfigurationError(f"data must be a pandas DataFrame, got {type(data).__name__}")
    if data.columns.has_duplicates:
        raise MiceConfigurationError("data has duplicate column labels.")
    data = data.copy()

    methods = make_methods(data) if methods is None else check_methods(data, methods)
    predictor_matrix = (
        make_predictor_matrix(data)
        if predictor_matrix is None
        else check_predictor_matrix(data, predictor_matrix)
    )
    if visit_sequence is None:
        visit_sequence = [c for c in make_visit_sequence(data) if methods[c] != ""]
    else:
        visit_sequence = check_visit_sequence(data, visit_sequence, methods)

    columns = {c: make_column(data[c]) for c in data.columns}
    check_column_kinds(columns, methods, predictor_matrix)
    predictor_matrix, logged_events = drop_incomplete_predictors(predictor_matrix, methods, columns)
    for event in logged_events:
        logger.debug(event)

    m = int(cfg.m)
    n_iter = int(cfg.n_iter)
    entropy, rngs = make_rngs(cfg.seed, m)

    imputations = initialise_imputations(columns, m, visit_sequence, rngs)
    mean_traces = initialise_traces(visit_sequence, n_iter, m)
    var_traces = initialise_traces(visit_sequence, n_iter, m)

    logger.info(
        "MICE: %d imputations, %d iterations, visit sequence %s", m, n_iter, list(visit_sequence)
    )
    _iterate(
        columns, imputations, predictor_matrix, visit_sequence, rngs,
        mean_traces, var_traces, logged_events, 1, n_iter, cfg,
    )

    return Mids(
        data=data,
        imputations=imputations,
        m=m,
        methods=methods,
        predictor_matrix=predictor_matrix,
        visit_sequence=list(visit_sequence),
        iter=n_iter,
        mean_traces=mean_traces,
        var_traces=var_traces,
        logged_events=logged_events,
        seed=entropy,
        rng_states=rng_states(rngs),
        donors=int(cfg.donors),
        ridge=float(cfg.ridge),
    )


def resume(
    mids: Mids,
    *,
    n_iter: int = 10,
    progress_reports: bool = True,
    gc_schedule: float = 1.0,
    threads: bool = True,
) -> Mids:
    """
    Continue the chains of ``mids`` for ``n_iter`` more iterations.

    Imputations, methods, predictor matrix and visit sequence are inherited.
    The returned object is new: prior trace rows are copied verbatim and
    ``mids`` itself is left untouched.
    """
    cfg = MiceConfig(
        m=mids.m,
        n_iter=n_iter,
        donors=mids.donors,
        ridge=mids.ridge,
        seed=None,
        threads=threads,
        progress_reports=progress_reports,
        gc_schedule=gc_schedule,
    )
    cfg.validate()
    if len(mids.rng_states) != mids.m:
        raise MiceConfigurationError(
            f"Mids carries {len(mids.rng_states)} random states for {mids.m} imputations."
        )

    data = mids.data
    prev_iter = int(mids.iter)
    n_iter = int(n_iter)
    visit_sequence = list(mids.visit_sequence)

    columns = {c: make_column(data[c]) for c in data.columns}
    imputations = {var: imp.copy() for var, imp in mids.imputations.items()}
    rngs = restore_rngs(mids.rng_states)
    logged_events = list(mids.logged_events)

    mean_traces = extend_traces(mids.mean_traces, visit_sequence, prev_iter, n_iter, mids.m)
    var_traces = extend_traces(mids.var_traces, visit_sequence, prev_iter, n_iter, mids.m)

    logger.info("MICE: resuming at iteration %d for %d more iterations", prev_iter + 1, n_iter)
    _iterate(
        columns, imputations, mids.predictor_matrix, visit_sequence, rngs,
        mean_traces, var_traces, logged_events, prev_iter + 1, prev_iter + n_iter, cfg,
    )

    return Mids(
        data=data,
        imputations=imputations,
        m=mids.m,
        methods=mids.methods.copy(),
        predictor_matrix=mids.predictor_matrix.copy(),
        visit_sequence=visit_sequence,
        iter=prev_iter + n_iter,
        mean_traces=mean_traces,
        var_traces=var_traces,
        logged_events=logged_events,
        seed=mids.seed,
        rng_states=rng_states(rngs),
        donors=mids.donors,
        ridge=mids.ridge,
    )
