"""Protocol interfaces for pipeline abstraction."""

from typing import Protocol, runtime_checkable

import numpy as np
import pyvista as pv

from ..catalog import ReconstructionCatalog
from ..config import FusionConfig
from ..fusion import FusionResult


@runtime_checkable
class FusionEngine(Protocol):
    """Protocol for volumetric fusion engines.

    An engine receives the empty axis-aligned volume, the ordered catalog,
    the grid alignment matrix and the fusion parameters, runs to completion,
    and returns a filled volume of identical topology plus the elapsed
    compute time. Engines must be deterministic for a fixed catalog order
    and fixed parameters. Any internal parallelism (GPU, thread pool) stays
    inside the call.
    """

    def fuse(
        self,
        volume: pv.ImageData,
        catalog: ReconstructionCatalog,
        grid_matrix: np.ndarray,
        params: FusionConfig,
    ) -> FusionResult:
        """Fuse every catalog record into a copy of ``volume``.

        Args:
            volume: Empty volume defining dimensions, spacing and origin.
            catalog: Ordered depth map / calibration records.
            grid_matrix: Local-to-world alignment matrix, shape (4, 4).
            params: Ray potential parameters and acceleration switch.

        Returns:
            FusionResult with the filled volume and elapsed seconds.
        """
        ...
