"""GPU k-means centroid update via a single-pass decoupled look-back scan."""

__version__ = "0.1.0"

from gpukmeans.config import KMeansConfig, config_from_dict, load_config
from gpukmeans.image import Image
from gpukmeans.centroids import (
    ConvergenceState,
    LookbackLivelockError,
    LookbackWorkspace,
    run_update_round,
    update_centroid,
)
