# plotting.py - convergence trace plots (v0.1)

from __future__ import annotations

from pathlib import Path
from typing import Hashable, List, Union

import matplotlib.pyplot as plt
import numpy as np

from .mids import Mids


def _resolve_variable(mids: Mids, var: Union[Hashable, int]) -> Hashable:
    """Accept a column label, or a position in the visit sequence."""
    if var in mids.mean_traces:
        return var
    if isinstance(var, (int, np.integer)) and not isinstance(var, bool):
        if 0 <= var < len(mids.visit_sequence):
            return mids.visit_sequence[int(var)]
    raise KeyError(f"{var!r} is neither a visited column nor a position in the visit sequence.")


def plot(mids: Mids, var: Union[Hashable, int]):
    """
    Mean and standard deviation of the imputed values of ``var`` per iteration.

    One line per imputation. Chains that have mixed well overlap and show no
    trend.

    Returns:
        matplotlib.figure.Figure
    """
    name = _resolve_variable(mids, var)
    iterations = np.arange(1, mids.iter + 1)

    fig, (ax_mean, ax_sd) = plt.subplots(1, 2, figsize=(10, 4))
    ax_mean.plot(iterations, mids.mean_traces[name])
    ax_mean.set_xlabel("Iteration")
    ax_mean.set_ylabel("Mean")

    ax_sd.plot(iterations, np.sqrt(mids.var_traces[name]))
    ax_sd.set_xlabel("Iteration")
    ax_sd.set_ylabel("Standard deviation")

    fig.suptitle(str(name))
    fig.tight_layout()
    return fig


def save_trace_plots(mids: Mids, outdir: Union[str, Path], dpi: int = 150) -> List[Path]:
    """Write one ``trace_<column>.png`` per visited column."""
    outdir = Path(outdir)
    outdir.mkdir(parents=True, exist_ok=True)

    paths: List[Path] = []
    for var in mids.visit_sequence:
        fig = plot(mids, var)
        out_png = outdir / f"trace_{var}.png"
        fig.savefig(out_png, dpi=dpi, bbox_inches="tight")
        plt.close(fig)
        paths.append(out_png)
    return paths
