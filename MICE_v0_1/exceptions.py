# exceptions.py - error types for MICE (v0.1)

from __future__ import annotations


class MiceConfigurationError(ValueError):
    """Raised before sampling starts when the run configuration is unusable.

    Examples: a predictor matrix or method vector whose size does not match
    the dataset, or a visit sequence naming an unknown column.
    """
