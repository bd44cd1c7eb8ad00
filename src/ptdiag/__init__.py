# src/ptdiag/__init__.py
from __future__ import annotations

__version__ = "0.1.0"

# Config
from .config import (
    EvaluationConfig,
    ConnectivityConfig,
    HomogeneityConfig,
    PreservationConfig,
    DensityConfig,
    AmbiguityConfig,
    ScoreConfig,
    evaluation_config_from_params,
)
from .errors import (
    PtdiagError,
    PreconditionError,
    NumericalDegeneracyError,
    ConfigurationError,
)

# Trajectory object model
from .trajectory import (
    TrajectoryObject,
    build_trajectory,
    curve_points_to_segments,
    AnnDataTrajectoryProvider,
)

# Diagnostics
from .checks import (
    check_connectivity,
    test_homogeneity,
    check_preservation,
    evaluate_density,
    detect_ambiguous,
)

# Scoring + orchestration
from .scoring import EvaluationMetrics, ScoreResult, score, score_metrics
from .evaluate import (
    DatasetChecks,
    EmbeddingCandidate,
    EmbeddingEvaluation,
    check_dataset,
    evaluate_embedding,
    evaluate_embeddings,
    metrics_table,
    rank_embeddings,
    validate_inputs,
)
