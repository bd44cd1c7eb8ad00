# src/ptdiag/checks/__init__.py

"""
Per-stage diagnostics.

This subpackage provides:
  - connectivity: is a point cloud one connected structure?
  - homogeneity:  permutation test for any cell-to-cell structure
  - preservation: do kNN relationships survive the 2D projection?
  - density:      grid occupancy of a 2D embedding
  - ambiguity:    cells with ambiguous projections onto a fitted curve
"""

from .connectivity import ClusterCheckResult, check_connectivity
from .homogeneity import HomogeneityResult, test_homogeneity
from .preservation import PreservationResult, check_preservation
from .density import DensityResult, evaluate_density
from .ambiguity import AmbiguityResult, detect_ambiguous, project_onto_curve
