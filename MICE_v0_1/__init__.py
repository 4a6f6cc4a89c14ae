# MICE v0.1 - Multiple Imputation by Chained Equations
# Predictive mean matching, resumable chains, convergence traces

from .exceptions import MiceConfigurationError
from .helpers import make_methods, make_predictor_matrix, make_visit_sequence
from .imputer import MiceConfig, mice, resume
from .mids import Mids, load_mids
from .plotting import plot, save_trace_plots

__version__ = "0.1.0"
__all__ = [
    "mice",
    "resume",
    "MiceConfig",
    "Mids",
    "load_mids",
    "plot",
    "save_trace_plots",
    "make_methods",
    "make_predictor_matrix",
    "make_visit_sequence",
    "MiceConfigurationError",
]
