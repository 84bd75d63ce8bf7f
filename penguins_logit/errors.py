from __future__ import annotations

"""
Configuration errors raised before any computation starts.
"""


class PipelineConfigError(ValueError):
    """Precondition violation in the pipeline configuration."""


class InvalidSplitProportion(PipelineConfigError):
    def __init__(self, fraction):
        super().__init__(f"Train fraction must lie in (0, 1), got {fraction!r}")
        self.fraction = fraction


class InvalidFoldCount(PipelineConfigError):
    def __init__(self, k, n_rows: int | None = None):
        limit = f" and <= {n_rows} rows" if n_rows is not None else ""
        super().__init__(f"Fold count must be an integer >= 2{limit}, got {k!r}")
        self.k = k
        self.n_rows = n_rows
