"""Reconstruction context dataclass for precomputed data."""

from dataclasses import dataclass

import numpy as np

from ..catalog import ReconstructionCatalog
from ..config import PipelineConfig
from ..volume import GridSpec
from .interfaces import FusionEngine


@dataclass
class ReconstructionContext:
    """Everything the fusion call needs, built once per run.

    Created by build_reconstruction_context(). The catalog is owned by the
    context and released by the runner once fusion has completed.
    """

    config: PipelineConfig
    catalog: ReconstructionCatalog
    grid_spec: GridSpec
    grid_matrix: np.ndarray  # shape (4, 4), float64
    engine: FusionEngine
    device: str
