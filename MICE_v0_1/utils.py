# utils.py - Utility functions for MICE
# MICE v0.1

from __future__ import annotations

import gc
import logging
from typing import Any, Dict, List, Optional, Tuple

import numpy as np
import psutil


def configure_logger(
    logger: logging.Logger,
    *,
    verbose: bool = False,
    debug: bool = False,
    quiet_level: int = logging.WARNING,
) -> logging.Logger:
    """Force a logger and its handlers to respect verbose/debug controls."""
    if debug:
        level = logging.DEBUG
    elif verbose:
        level = logging.INFO
    else:
        level = quiet_level

    logger.setLevel(level)
    for handler in getattr(logger, "handlers", ()):
        handler.setLevel(level)
    return logger


def make_rngs(seed: Optional[int], m: int) -> Tuple[int, List[np.random.Generator]]:
    """
    One independent generator per imputation copy.

    Returns the entropy actually used (so an unseeded run can be replayed)
    and the list of ``m`` generators spawned from it.
    """
    ss = np.random.SeedSequence(seed)
    return ss.entropy, [np.random.Generator(np.random.PCG64(s)) for s in ss.spawn(m)]


def rng_states(rngs: List[np.random.Generator]) -> List[Dict[str, Any]]:
    return [g.bit_generator.state for g in rngs]


def restore_rngs(states: List[Dict[str, Any]]) -> List[np.random.Generator]:
    """Rebuild generators that continue exactly where ``states`` left off."""
    rngs = []
    for state in states:
        bitgen = np.random.PCG64()
        bitgen.state = state
        rngs.append(np.random.Generator(bitgen))
    return rngs


def memory_fraction_free() -> float:
    vm = psutil.virtual_memory()
    return float(vm.available) / float(vm.total)


def reclaim_memory(gc_schedule: float) -> bool:
    """
    Run the garbage collector when free RAM drops below ``gc_schedule``.

    ``gc_schedule`` is a fraction of total RAM: 1.0 collects after every call,
    0.0 never does. Returns whether a collection was triggered.
    """
    if gc_schedule <= 0.0:
        return False
    if memory_fraction_free() < gc_schedule:
        gc.collect()
        return True
    return False
