#!/usr/bin/env python3
"""Run (or resume) a MICE chain on a CSV file and export its artifacts.

Typical usage (from repo root):
  python scripts/run_mice.py \
    --input data/nhanes_missing.csv \
    --categorical-vars hyp --continuous-vars age bmi chl \
    --m 5 --iter 10 --seed 42 \
    --outdir results/nhanes

  python scripts/run_mice.py --resume results/nhanes/mids.joblib --iter 10 \
    --outdir results/nhanes_more

Outputs: imputed_<j>.csv per imputation, mean_traces.csv, var_traces.csv,
trace plots, logged_events.json, mids.joblib, run_config.json and, with
--input-complete, metrics_per_feature.csv / metrics_summary.json.
"""

from __future__ import annotations

import argparse
import json
import logging
import time
from pathlib import Path
from typing import List, Optional

import matplotlib
matplotlib.use('Agg')

from MICE_v0_1 import MiceConfig, load_mids, mice, resume, save_trace_plots
from MICE_v0_1.dataio import load_complete_csv, load_incomplete_csv
from MICE_v0_1.metrics import evaluate_imputations
from MICE_v0_1.utils import configure_logger


def _parse_list(arg: Optional[List[str]]) -> List[str]:
    if arg is None:
        return []
    # allow "A,B,C" or space separated
    out = []
    for x in arg:
        parts = [p.strip() for p in x.split(",") if p.strip()]
        out.extend(parts)
    return out


def _save_json(path: Path, obj) -> None:
    path.write_text(json.dumps(obj, indent=2, ensure_ascii=False, default=str) + "\n", encoding="utf-8")


def _ensure_outdir(outdir: str) -> Path:
    p = Path(outdir)
    p.mkdir(parents=True, exist_ok=True)
    return p


def main(argv: Optional[List[str]] = None) -> None:
    ap = argparse.ArgumentParser(description="Multiple imputation by chained equations (PMM).")
    src = ap.add_mutually_exclusive_group(required=True)
    src.add_argument("--input", type=str, help="Incomplete CSV (empty cells are missing).")
    src.add_argument("--resume", type=str, help="mids.joblib written by a previous run.")
    ap.add_argument("--categorical-vars", nargs="+", default=[], help="Categorical variable names.")
    ap.add_argument("--continuous-vars", nargs="+", default=[], help="Continuous variable names.")
    ap.add_argument("--exclude-vars", nargs="+", default=[], help="Columns kept as-is (method '').")
    ap.add_argument("--input-complete", type=str, default=None, help="Optional ground-truth CSV for evaluation.")
    ap.add_argument("--m", type=int, default=5)
    ap.add_argument("--iter", type=int, default=10)
    ap.add_argument("--seed", type=int, default=None)
    ap.add_argument("--donors", type=int, default=5)
    ap.add_argument("--ridge", type=float, default=1e-5)
    ap.add_argument("--threads", type=str, default="true", choices=["true", "false"])
    ap.add_argument("--progress", type=str, default="true", choices=["true", "false"])
    ap.add_argument("--gc-schedule", type=float, default=1.0)
    ap.add_argument("--outdir", type=str, required=True)
    ap.add_argument("--save-plots", type=str, default="true", choices=["true", "false"])
    ap.add_argument("--dpi", type=int, default=150)
    ap.add_argument("--verbose", action="store_true")
    ap.add_argument("--debug", action="store_true")

    args = ap.parse_args(argv)

    logging.basicConfig(format="%(asctime)s | %(levelname)-8s | %(name)s | %(message)s")
    configure_logger(logging.getLogger("MICE_v0_1"), verbose=args.verbose, debug=args.debug)

    outdir = _ensure_outdir(args.outdir)
    threads = args.threads == "true"
    progress = args.progress == "true"

    t0 = time.time()
    if args.resume is not None:
        prev = load_mids(args.resume)
        mids = resume(
            prev,
            n_iter=args.iter,
            progress_reports=progress,
            gc_schedule=args.gc_schedule,
            threads=threads,
        )
        schema = None
    else:
        data, schema = load_incomplete_csv(
            args.input,
            categorical_vars=_parse_list(args.categorical_vars),
            continuous_vars=_parse_list(args.continuous_vars),
        )
        excluded = _parse_list(args.exclude_vars)
        methods = {c: ("" if c in excluded else "pmm") for c in data.columns}

        cfg = MiceConfig(
            m=args.m,
            n_iter=args.iter,
            donors=args.donors,
            ridge=args.ridge,
            seed=args.seed,
            threads=threads,
            progress_reports=progress,
            gc_schedule=args.gc_schedule,
        )
        mids = mice(data, methods=methods, config=cfg)
    runtime_sec = float(time.time() - t0)

    # save artifacts
    for j, df in enumerate(mids.complete("all")):
        df.to_csv(outdir / f"imputed_{j}.csv", index=False)
    mids.trace_frame("mean").to_csv(outdir / "mean_traces.csv", index=False)
    mids.trace_frame("var").to_csv(outdir / "var_traces.csv", index=False)
    _save_json(outdir / "logged_events.json", mids.logged_events)
    mids.save(outdir / "mids.joblib")

    if args.save_plots == "true":
        save_trace_plots(mids, outdir / "traces", dpi=args.dpi)

    summary = {}
    if args.input_complete is not None:
        if schema is None:
            schema = {str(c): ("category" if str(mids.data[c].dtype) == "category" else "float64") for c in mids.data.columns}
        X_complete = load_complete_csv(args.input_complete, schema)
        eval_res = evaluate_imputations(mids, X_complete)
        eval_res.per_feature.to_csv(outdir / "metrics_per_feature.csv", index=False)
        summary = dict(eval_res.summary)
        _save_json(outdir / "metrics_summary.json", summary)

    run_cfg = {
        "input": args.input,
        "resume": args.resume,
        "input_complete": args.input_complete,
        "m": mids.m,
        "iter": mids.iter,
        "seed": mids.seed,
        "donors": mids.donors,
        "ridge": mids.ridge,
        "visit_sequence": [str(v) for v in mids.visit_sequence],
        "methods": {str(k): v for k, v in mids.methods.items()},
        "n_logged_events": len(mids.logged_events),
        "runtime_sec": runtime_sec,
    }
    _save_json(outdir / "run_config.json", run_cfg)

    print(f"[DONE] outdir={outdir}")
    if summary:
        print(json.dumps(summary, indent=2, ensure_ascii=False))


if __name__ == "__main__":
    main()
