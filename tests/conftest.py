"""Shared pytest fixtures for GridFusion tests."""

from pathlib import Path

import numpy as np
import pytest
import torch


@pytest.fixture(params=["cpu", "cuda"])
def device(request):
    """Parametrized device fixture for CPU and CUDA testing.

    Args:
        request: pytest fixture request object.

    Returns:
        torch.device: Device to use for testing.

    Raises:
        pytest.skip: If CUDA is requested but not available.
    """
    if request.param == "cuda" and not torch.cuda.is_available():
        pytest.skip("CUDA not available")
    return torch.device(request.param)


def write_krtd(
    path: Path,
    K: np.ndarray | None = None,
    R: np.ndarray | None = None,
    t: np.ndarray | None = None,
) -> Path:
    """Write a calibration file in the KRTD layout.

    Args:
        path: Output path.
        K: Intrinsic matrix (default: f=10, principal point (2, 2)).
        R: Rotation (default: identity).
        t: Translation (default: zeros).

    Returns:
        ``path``.
    """
    if K is None:
        K = np.array([[10.0, 0.0, 2.0], [0.0, 10.0, 2.0], [0.0, 0.0, 1.0]])
    if R is None:
        R = np.eye(3)
    if t is None:
        t = np.zeros(3)

    lines = [" ".join(repr(float(v)) for v in row) for row in K]
    lines.append("")
    lines += [" ".join(repr(float(v)) for v in row) for row in R]
    lines.append("")
    lines.append(" ".join(repr(float(v)) for v in t))
    path.write_text("\n".join(lines) + "\n")
    return path


@pytest.fixture
def dataset(tmp_path):
    """Factory creating a data folder with depth maps, calibrations and manifests.

    Usage: ``dataset(depth_entries, calibration_entries)`` where each entry
    is a manifest line. Depth map entry i gets a 5x5 .npy depth map filled
    with i + 1; calibration entry i gets a default
    calibration file with translation (i + 1, 0, 0). Entries whose name
    starts with "missing" are listed but not created.

    Returns:
        Callable returning the data folder path.
    """

    def _make(
        depth_entries: list[str],
        calibration_entries: list[str],
        depth_manifest: str = "vtiList.txt",
        calibration_manifest: str = "kList.txt",
    ) -> Path:
        folder = tmp_path / "data"
        folder.mkdir(exist_ok=True)

        for i, entry in enumerate(depth_entries):
            name = entry.strip().split("/")[-1]
            if name and not name.startswith("missing"):
                np.save(folder / name, np.full((5, 5), float(i + 1), dtype=np.float32))

        for i, entry in enumerate(calibration_entries):
            name = entry.strip().split("/")[-1]
            if name and not name.startswith("missing"):
                write_krtd(folder / name, t=np.array([float(i + 1), 0.0, 0.0]))

        (folder / depth_manifest).write_text("\n".join(depth_entries) + "\n")
        (folder / calibration_manifest).write_text(
            "\n".join(calibration_entries) + "\n"
        )
        return folder

    return _make


@pytest.fixture
def krtd_writer():
    """Return the write_krtd helper for tests that need custom calibrations."""
    return write_krtd
