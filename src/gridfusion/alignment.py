"""Grid alignment transform: orthogonality check and basis matrix construction."""

import logging
from collections.abc import Sequence

import numpy as np

logger = logging.getLogger(__name__)


def are_vectors_orthogonal(
    vec_x: Sequence[float],
    vec_y: Sequence[float],
    vec_z: Sequence[float],
    tolerance: float = 0.0,
) -> bool:
    """Check that three direction vectors are pairwise orthogonal.

    Compares the absolute pairwise dot products X.Y, Y.Z and Z.X against
    ``tolerance``. With the default tolerance of 0.0 the dot products must
    be exactly zero.

    Args:
        vec_x: Grid x direction, 3 values.
        vec_y: Grid y direction, 3 values.
        vec_z: Grid z direction, 3 values.
        tolerance: Largest absolute dot product accepted as orthogonal.

    Returns:
        True if all three dot products are within tolerance.

    Raises:
        ValueError: If a vector does not have 3 components or tolerance < 0.
    """
    if tolerance < 0:
        raise ValueError(f"tolerance must be >= 0, got {tolerance}")

    x = _as_vector(vec_x, "vec_x")
    y = _as_vector(vec_y, "vec_y")
    z = _as_vector(vec_z, "vec_z")

    dots = (float(np.dot(x, y)), float(np.dot(y, z)), float(np.dot(z, x)))
    return all(abs(d) <= tolerance for d in dots)


def build_grid_matrix(
    vec_x: Sequence[float],
    vec_y: Sequence[float],
    vec_z: Sequence[float],
) -> np.ndarray:
    """Build the 4x4 grid alignment matrix from three direction vectors.

    The vectors become rows 0, 1 and 2 of the upper-left 3x3 block. The last
    row and column are those of the identity (no translation).

    Args:
        vec_x: Grid x direction, 3 values.
        vec_y: Grid y direction, 3 values.
        vec_z: Grid z direction, 3 values.

    Returns:
        Homogeneous transform, shape (4, 4), float64.
    """
    matrix = np.eye(4, dtype=np.float64)
    matrix[0, :3] = _as_vector(vec_x, "vec_x")
    matrix[1, :3] = _as_vector(vec_y, "vec_y")
    matrix[2, :3] = _as_vector(vec_z, "vec_z")

    logger.debug("Reconstruction grid matrix:\n%s", format_grid_matrix(matrix))
    return matrix


def format_grid_matrix(matrix: np.ndarray) -> str:
    """Render the basis of a grid matrix for diagnostics.

    Each line holds one world axis; the columns are the x, y and z grid
    directions, so a direction vector reads top to bottom.

    Args:
        matrix: Grid alignment matrix, shape (4, 4).

    Returns:
        Three-line string.
    """
    basis = np.asarray(matrix, dtype=np.float64)[:3, :3]
    lines = []
    for axis in range(3):
        lines.append("  ".join(f"{basis[row, axis]:f}" for row in range(3)))
    return "\n".join(lines)


def transform_points(matrix: np.ndarray, points: np.ndarray) -> np.ndarray:
    """Apply a 4x4 homogeneous transform to a set of points.

    Args:
        matrix: Homogeneous transform, shape (4, 4).
        points: Points, shape (N, 3).

    Returns:
        Transformed points, shape (N, 3), float64.
    """
    points = np.asarray(points, dtype=np.float64).reshape(-1, 3)
    homogeneous = np.hstack([points, np.ones((points.shape[0], 1))])
    transformed = homogeneous @ np.asarray(matrix, dtype=np.float64).T
    return transformed[:, :3] / transformed[:, 3:4]


def _as_vector(values: Sequence[float], name: str) -> np.ndarray:
    vector = np.asarray(values, dtype=np.float64).reshape(-1)
    if vector.shape != (3,):
        raise ValueError(f"{name} must have 3 components, got {vector.shape[0]}")
    return vector
