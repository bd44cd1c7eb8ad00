# src/ptdiag/config.py
from __future__ import annotations

from dataclasses import dataclass, field, fields
from typing import Any, Literal, Mapping, Optional

from .errors import (
    ConfigurationError,
    require_choice,
    require_fraction,
    require_positive,
    require_positive_int,
)


OutlierMode = Literal["neutral", "asymmetric"]
DensitySupport = Literal["hull", "bbox"]

OUTLIER_MODES = ("neutral", "asymmetric")
DENSITY_SUPPORTS = ("hull", "bbox")


@dataclass
class ConnectivityConfig:
    k_neighbors: int = 10
    # min inter-cluster distance / within-cluster kNN scale above which
    # two kNN components count as separate groups
    separation_ratio: float = 3.0

    def validate(self) -> None:
        require_positive_int("connectivity.k_neighbors", self.k_neighbors)
        require_positive("connectivity.separation_ratio", self.separation_ratio)


@dataclass
class HomogeneityConfig:
    n_permutations: int = 20
    alpha: float = 0.05
    max_cells: Optional[int] = 2000
    seed: int = 0

    def validate(self) -> None:
        require_positive_int("homogeneity.n_permutations", self.n_permutations)
        require_fraction("homogeneity.alpha", self.alpha)
        if self.max_cells is not None:
            require_positive_int("homogeneity.max_cells", self.max_cells)


@dataclass
class PreservationConfig:
    k_neighbors: int = 10
    overlap_threshold: float = 0.5
    cross_cluster_weight: float = 0.5

    def validate(self) -> None:
        require_positive_int("preservation.k_neighbors", self.k_neighbors)
        require_fraction("preservation.overlap_threshold", self.overlap_threshold)
        require_fraction(
            "preservation.cross_cluster_weight", self.cross_cluster_weight
        )


@dataclass
class DensityConfig:
    bin_width: float = 1.0
    min_count: int = 1
    support: DensitySupport = "hull"

    def validate(self) -> None:
        require_positive("density.bin_width", self.bin_width)
        require_positive_int("density.min_count", self.min_count)
        require_choice("density.support", self.support, DENSITY_SUPPORTS)


@dataclass
class AmbiguityConfig:
    outlier_mode: OutlierMode = "neutral"
    mad_multiplier: float = 3.0
    arc_bins: int = 10
    min_cells_per_bin: int = 5
    fold_ratio: float = 1.1
    fold_arc_fraction: float = 0.1
    # chord / arc gap between two projection points below which the curve
    # counts as bent back on itself; a straight stretch has ratio 1
    fold_chord_ratio: float = 0.5

    def validate(self) -> None:
        require_choice("ambiguity.outlier_mode", self.outlier_mode, OUTLIER_MODES)
        require_positive("ambiguity.mad_multiplier", self.mad_multiplier)
        require_positive_int("ambiguity.arc_bins", self.arc_bins)
        require_positive_int("ambiguity.min_cells_per_bin", self.min_cells_per_bin)
        if float(self.fold_ratio) < 1.0:
            raise ConfigurationError(
                f"ambiguity.fold_ratio must be >= 1; got {self.fold_ratio!r}"
            )
        require_fraction("ambiguity.fold_arc_fraction", self.fold_arc_fraction)
        if not 0.0 < float(self.fold_chord_ratio) < 1.0:
            raise ConfigurationError(
                f"ambiguity.fold_chord_ratio must lie in (0, 1); "
                f"got {self.fold_chord_ratio!r}"
            )


@dataclass
class ScoreConfig:
    simi_midpoint: float = 0.5
    gof_midpoint: float = 0.5
    simi_weight: float = 1.0
    gof_weight: float = 1.0
    ushape_weight: float = 1.0
    disconnect_penalty: float = 10.0

    def max_positive_contribution(self) -> float:
        return self.simi_weight * (1.0 - self.simi_midpoint) + self.gof_weight * (
            1.0 - self.gof_midpoint
        )

    def validate(self) -> None:
        require_fraction("score.simi_midpoint", self.simi_midpoint)
        require_fraction("score.gof_midpoint", self.gof_midpoint)
        for name in ("simi_weight", "gof_weight", "ushape_weight"):
            if float(getattr(self, name)) < 0:
                raise ConfigurationError(f"score.{name} must be >= 0")
        # the veto only works if it outweighs every possible positive sum
        if not self.disconnect_penalty > self.max_positive_contribution():
            raise ConfigurationError(
                "score.disconnect_penalty must exceed the maximal positive "
                f"contribution ({self.max_positive_contribution():.3f}); "
                f"got {self.disconnect_penalty!r}"
            )


@dataclass
class EvaluationConfig:
    """
    Every knob of a full embedding evaluation, grouped per stage.

    `high_dim_connectivity` is applied to the expression matrix and
    `connectivity` to each 2D embedding.
    """

    high_dim_connectivity: ConnectivityConfig = field(default_factory=ConnectivityConfig)
    connectivity: ConnectivityConfig = field(default_factory=ConnectivityConfig)
    homogeneity: HomogeneityConfig = field(default_factory=HomogeneityConfig)
    preservation: PreservationConfig = field(default_factory=PreservationConfig)
    density: DensityConfig = field(default_factory=DensityConfig)
    ambiguity: AmbiguityConfig = field(default_factory=AmbiguityConfig)
    score: ScoreConfig = field(default_factory=ScoreConfig)

    def validate(self) -> "EvaluationConfig":
        for f in fields(self):
            getattr(self, f.name).validate()
        return self


def _block(cls, raw: Mapping[str, Any] | None):
    block = dict(raw or {})
    valid_fields = {f.name for f in fields(cls)}
    filtered = {k: v for k, v in block.items() if k in valid_fields}
    return cls(**filtered)


def evaluation_config_from_params(
    params: Mapping[str, Any],
    key: str = "ptdiag",
) -> EvaluationConfig:
    """
    Build an EvaluationConfig from a params.yml-style dict.

    Looks up params[key], then one sub-block per stage (e.g.
    params[key]["density"]), filters unknown keys, and applies defaults
    from the dataclasses for anything not specified.
    """
    root = dict(params.get(key, {}) or {})
    stage_types = {f.name: f.default_factory for f in fields(EvaluationConfig)}
    built = {
        name: _block(factory, root.get(name))
        for name, factory in stage_types.items()
    }
    return EvaluationConfig(**built).validate()
