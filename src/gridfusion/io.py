"""I/O adapters for depth maps and structured output grids."""

import logging
from pathlib import Path

import cv2
import numpy as np
import pyvista as pv
import torch

logger = logging.getLogger(__name__)

VTK_DEPTH_EXTENSIONS = {".vti", ".vtk", ".vtr"}
IMAGE_DEPTH_EXTENSIONS = {".png", ".tif", ".tiff", ".exr"}
NUMPY_DEPTH_EXTENSIONS = {".npy"}

# Point-data array used by VTK depth maps when none is requested explicitly
DEFAULT_DEPTH_ARRAY = "Depths"


class DepthMapReadError(OSError):
    """Raised when a depth map cannot be read."""


def load_depth_map(
    path: str | Path,
    array_name: str | None = None,
    depth_scale: float = 1.0,
) -> torch.Tensor:
    """Load a depth map as a (H, W) float32 tensor.

    Supported formats:
        - VTK image data (.vti, .vtk, .vtr) read with PyVista. The depth
          array is ``array_name`` if given, else "Depths" when present, else
          the active scalars, else the first point-data array.
        - NumPy arrays (.npy) of shape (H, W) or (H, W, 1).
        - Single-channel images (.png, .tif, .tiff, .exr) read with OpenCV at
          their native bit depth and divided by ``depth_scale``. OpenCV only
          decodes .exr when OPENCV_IO_ENABLE_OPENEXR=1 is set.

    Args:
        path: Path to the depth map.
        array_name: Point-data array to read from VTK files.
        depth_scale: Divisor applied to image depth maps (e.g. 1000 for
            millimetre PNGs).

    Returns:
        Depth map, shape (H, W), float32.

    Raises:
        DepthMapReadError: If the file is missing, has an unsupported
            extension, cannot be decoded, or holds no usable depth array.
    """
    path = Path(path)
    if not path.is_file():
        raise DepthMapReadError(f"Depth map not found: {path}")

    suffix = path.suffix.lower()
    if suffix in VTK_DEPTH_EXTENSIONS:
        depth = _load_vtk_depth(path, array_name)
    elif suffix in NUMPY_DEPTH_EXTENSIONS:
        try:
            depth = np.load(path)
        except (OSError, ValueError) as e:
            raise DepthMapReadError(f"Failed to read depth map {path}: {e}") from e
        if depth.ndim == 3 and depth.shape[-1] == 1:
            depth = depth[..., 0]
    elif suffix in IMAGE_DEPTH_EXTENSIONS:
        depth = cv2.imread(str(path), cv2.IMREAD_ANYDEPTH)
        if depth is None:
            hint = ""
            if suffix == ".exr":
                hint = " (OpenCV reads .exr only with OPENCV_IO_ENABLE_OPENEXR=1)"
            raise DepthMapReadError(f"Failed to read depth image: {path}{hint}")
        depth = depth.astype(np.float64) / depth_scale
    else:
        raise DepthMapReadError(
            f"Unsupported depth map format {suffix!r}: {path}. Valid extensions: "
            f"{sorted(VTK_DEPTH_EXTENSIONS | NUMPY_DEPTH_EXTENSIONS | IMAGE_DEPTH_EXTENSIONS)}"
        )

    if depth.ndim != 2:
        raise DepthMapReadError(
            f"Depth map must be 2-D, got shape {depth.shape}: {path}"
        )

    return torch.from_numpy(np.ascontiguousarray(depth, dtype=np.float32))


def _load_vtk_depth(path: Path, array_name: str | None) -> np.ndarray:
    """Read the depth array of a VTK image and reshape it to (H, W)."""
    try:
        mesh = pv.read(str(path))
    except Exception as e:
        raise DepthMapReadError(f"Failed to read depth map {path}: {e}") from e

    if not isinstance(mesh, (pv.ImageData, pv.RectilinearGrid)):
        raise DepthMapReadError(
            f"Depth map {path} is a {type(mesh).__name__}, expected image data"
        )

    names = list(mesh.point_data.keys())
    if array_name is not None:
        if array_name not in names:
            raise DepthMapReadError(
                f"Depth map {path} has no point array {array_name!r} (found {names})"
            )
        name = array_name
    elif DEFAULT_DEPTH_ARRAY in names:
        name = DEFAULT_DEPTH_ARRAY
    elif mesh.active_scalars_name in names:
        name = mesh.active_scalars_name
    elif names:
        name = names[0]
    else:
        raise DepthMapReadError(f"Depth map {path} has no point data")

    values = np.asarray(mesh.point_data[name])
    if values.ndim > 1:
        values = values[:, 0]

    nx, ny, nz = mesh.dimensions
    if nz != 1:
        raise DepthMapReadError(
            f"Depth map {path} must be a single slice, got dimensions {mesh.dimensions}"
        )
    # VTK point order is x fastest
    return values.reshape(ny, nx)


def save_depth_map(
    depth: torch.Tensor | np.ndarray,
    path: str | Path,
    array_name: str = DEFAULT_DEPTH_ARRAY,
) -> None:
    """Save a (H, W) depth map as .vti image data or .npy array.

    Args:
        depth: Depth map, shape (H, W).
        path: Output path ending with .vti or .npy.
        array_name: Point-data array name used for .vti output.
    """
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)

    if isinstance(depth, torch.Tensor):
        depth = depth.detach().cpu().numpy()
    depth = np.asarray(depth, dtype=np.float32)

    suffix = path.suffix.lower()
    if suffix == ".npy":
        np.save(path, depth)
    elif suffix == ".vti":
        H, W = depth.shape
        image = pv.ImageData(dimensions=(W, H, 1))
        image.point_data[array_name] = depth.reshape(-1)
        image.save(str(path))
    else:
        raise ValueError(f"Unsupported depth map output format: {suffix!r}")


def save_structured_grid(grid: pv.StructuredGrid, path: str | Path) -> None:
    """Save a structured grid (XML .vts or legacy .vtk).

    Args:
        grid: Structured grid to write.
        path: Output file path. Parent directories are created.
    """
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    grid.save(str(path))
    logger.debug("Wrote structured grid with %d points to %s", grid.n_points, path)


def load_structured_grid(path: str | Path) -> pv.StructuredGrid:
    """Load a structured grid written by save_structured_grid.

    Args:
        path: Path to .vts or .vtk file.

    Returns:
        PyVista StructuredGrid.
    """
    return pv.read(str(path))
