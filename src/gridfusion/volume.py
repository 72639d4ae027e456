"""Output volume geometry: allocation, voxel positions and world alignment."""

from dataclasses import dataclass

import numpy as np
import pyvista as pv
import torch

from .config import GridConfig


@dataclass(frozen=True)
class GridSpec:
    """Parameters of the axis-aligned scratch volume.

    Attributes:
        dimensions: Number of points along x, y, z.
        spacing: Point spacing along x, y, z.
        origin: Position of point (0, 0, 0) in the local grid frame.
    """

    dimensions: tuple[int, int, int]
    spacing: tuple[float, float, float]
    origin: tuple[float, float, float]

    @classmethod
    def from_config(cls, config: GridConfig) -> "GridSpec":
        """Build a GridSpec from the grid section of the configuration."""
        return cls(
            dimensions=tuple(int(d) for d in config.dimensions),
            spacing=tuple(float(s) for s in config.spacing),
            origin=tuple(float(o) for o in config.origin),
        )

    @property
    def n_points(self) -> int:
        """Total number of grid points."""
        nx, ny, nz = self.dimensions
        return nx * ny * nz


def allocate_volume(spec: GridSpec) -> pv.ImageData:
    """Allocate an empty axis-aligned volume.

    Args:
        spec: Grid dimensions, spacing and origin.

    Returns:
        PyVista ImageData without point arrays.
    """
    return pv.ImageData(
        dimensions=spec.dimensions,
        spacing=spec.spacing,
        origin=spec.origin,
    )


def voxel_positions(
    spec: GridSpec,
    start: int = 0,
    stop: int | None = None,
    device: str | torch.device = "cpu",
) -> torch.Tensor:
    """Local-frame positions of a range of grid points.

    Points are numbered in VTK order (x fastest, then y, then z), so index i
    matches row i of the volume's point-data arrays.

    Args:
        spec: Grid geometry.
        start: First flat point index.
        stop: One past the last flat point index (None = all points).
        device: Device of the returned tensor.

    Returns:
        Positions, shape (stop - start, 3), float64.
    """
    if stop is None:
        stop = spec.n_points
    nx, ny, _ = spec.dimensions

    index = torch.arange(start, stop, device=device, dtype=torch.int64)
    i = index % nx
    j = (index // nx) % ny
    k = index // (nx * ny)
    ijk = torch.stack([i, j, k], dim=-1).to(torch.float64)  # (N, 3)

    spacing = torch.tensor(spec.spacing, dtype=torch.float64, device=device)
    origin = torch.tensor(spec.origin, dtype=torch.float64, device=device)
    return origin + ijk * spacing


def apply_grid_matrix(volume: pv.ImageData, matrix: np.ndarray) -> pv.StructuredGrid:
    """Move a fused volume from the local grid frame into world alignment.

    The axis-aligned image is converted to a structured grid and its points
    are transformed by ``matrix``; point data is carried over unchanged.

    Args:
        volume: Fused volume in the local grid frame.
        matrix: Grid alignment matrix, shape (4, 4).

    Returns:
        Non-axis-aligned structured grid.
    """
    structured = volume.cast_to_structured_grid()
    return structured.transform(np.asarray(matrix, dtype=np.float64), inplace=False)
