# src/ptdiag/trajectory/__init__.py
"""
Trajectory object model: embedding + pseudotime + fitted curve segments.

  - model:        TrajectoryObject, curve_points_to_segments, build_trajectory
  - data_sources: AnnDataTrajectoryProvider (pull the pieces out of AnnData)
"""

from __future__ import annotations

from .model import TrajectoryObject, build_trajectory, curve_points_to_segments
from .data_sources import AnnDataTrajectoryProvider
