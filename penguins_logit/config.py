from __future__ import annotations

"""
Typed pipeline configuration. Features are listed explicitly by column name;
reference levels may be pinned per factor.
"""

from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Mapping

from .constants import (
    CATEGORICAL_COLUMNS,
    DEFAULT_FOLDS,
    DEFAULT_MAX_ITER,
    DEFAULT_SEED,
    DEFAULT_TOL,
    DEFAULT_TRAIN_FRACTION,
    NUMERIC_COLUMNS,
    OTHER_LABEL,
    RESPONSE,
    SPECIES,
)
from .errors import InvalidFoldCount, InvalidSplitProportion, PipelineConfigError


@dataclass(frozen=True)
class PipelineConfig:
    features: tuple[str, ...] = NUMERIC_COLUMNS + CATEGORICAL_COLUMNS
    reference_levels: Mapping[str, str] = field(default_factory=dict)
    response: str = RESPONSE
    positive_species: str = "Adelie"
    other_label: str = OTHER_LABEL
    multinomial_reference: str | None = "Adelie"
    train_fraction: float = DEFAULT_TRAIN_FRACTION
    n_folds: int = DEFAULT_FOLDS
    seed: int = DEFAULT_SEED
    threshold: float = 0.5
    max_iter: int = DEFAULT_MAX_ITER
    tol: float = DEFAULT_TOL
    drop_separated: bool = True
    retry_without_categorical: bool = True

    def __post_init__(self):
        object.__setattr__(self, "features", tuple(self.features))
        object.__setattr__(self, "reference_levels", MappingProxyType(dict(self.reference_levels)))

    @property
    def numeric_features(self) -> tuple[str, ...]:
        return tuple(f for f in self.features if f in NUMERIC_COLUMNS)

    @property
    def categorical_features(self) -> tuple[str, ...]:
        return tuple(f for f in self.features if f in CATEGORICAL_COLUMNS)

    def validate(self) -> "PipelineConfig":
        """Fail fast on settings that would make any later step meaningless."""
        fraction = self.train_fraction
        if isinstance(fraction, bool) or not isinstance(fraction, (int, float)) or not 0 < fraction < 1:
            raise InvalidSplitProportion(fraction)
        if isinstance(self.n_folds, bool) or not isinstance(self.n_folds, int) or self.n_folds < 2:
            raise InvalidFoldCount(self.n_folds)
        if not self.features:
            raise PipelineConfigError("At least one feature is required")
        unknown = [f for f in self.features if f not in NUMERIC_COLUMNS + CATEGORICAL_COLUMNS]
        if unknown:
            raise PipelineConfigError(f"Unknown features: {unknown}")
        if len(set(self.features)) != len(self.features):
            raise PipelineConfigError(f"Duplicate features in {self.features}")
        stray = [f for f in self.reference_levels if f not in self.categorical_features]
        if stray:
            raise PipelineConfigError(f"Reference levels given for non-selected factors: {stray}")
        if self.response == RESPONSE:
            if self.positive_species not in SPECIES:
                raise PipelineConfigError(
                    f"Unknown positive species {self.positive_species!r}; expected one of {SPECIES}"
                )
            if self.multinomial_reference is not None and self.multinomial_reference not in SPECIES:
                raise PipelineConfigError(
                    f"Unknown multinomial reference {self.multinomial_reference!r}; "
                    f"expected one of {SPECIES}"
                )
        if not 0 < self.threshold < 1:
            raise PipelineConfigError(f"Threshold must lie in (0, 1), got {self.threshold}")
        if self.max_iter < 1 or self.tol <= 0:
            raise PipelineConfigError("max_iter must be >= 1 and tol > 0")
        return self
