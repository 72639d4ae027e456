"""Reading and writing per-view KRTD calibration files."""

import logging
from dataclasses import dataclass
from pathlib import Path

import numpy as np
import torch

logger = logging.getLogger(__name__)


class CalibrationReadError(OSError):
    """Raised when a calibration file cannot be opened."""


@dataclass(frozen=True)
class CalibrationPose:
    """Intrinsic and extrinsic calibration of one depth map view.

    Attributes:
        K: Intrinsic matrix (pixel to camera ray), shape (3, 3), float64.
        TR: Extrinsic pose (world to camera), shape (4, 4), float64. Rotation
            in rows/columns 0-2, translation in column 3, last row always
            [0, 0, 0, 1].
    """

    K: torch.Tensor  # shape (3, 3), float64
    TR: torch.Tensor  # shape (4, 4), float64

    @property
    def R(self) -> torch.Tensor:
        """Rotation block (world to camera), shape (3, 3)."""
        return self.TR[:3, :3]

    @property
    def t(self) -> torch.Tensor:
        """Translation (world to camera), shape (3,)."""
        return self.TR[:3, 3]

    @property
    def camera_center(self) -> torch.Tensor:
        """World-frame camera center, computed as C = -R^T @ t."""
        return -self.R.T @ self.t

    def to(self, device: str | torch.device) -> "CalibrationPose":
        """Return a copy with both matrices on ``device``."""
        return CalibrationPose(K=self.K.to(device), TR=self.TR.to(device))


def _parse_row(line: str, count: int) -> list[float]:
    """Parse up to ``count`` whitespace-separated numbers from a line.

    Values that are missing or follow the first non-numeric token are 0.0,
    mirroring stream extraction: once a token fails, the rest of the line is
    not read.
    """
    values = [0.0] * count
    for i, token in enumerate(line.split()[:count]):
        try:
            values[i] = float(token)
        except ValueError:
            break
    return values


def parse_calibration_text(text: str) -> CalibrationPose:
    """Parse the contents of a KRTD calibration file.

    Expected layout (line oriented, whitespace separated)::

        k00 k01 k02
        k10 k11 k12
        k20 k21 k22
        <ignored>
        r00 r01 r02
        r10 r11 r12
        r20 r21 r22
        <ignored>
        t0 t1 t2

    No numeric validation is performed: missing lines or malformed tokens
    read as 0.0. The last row of TR is always forced to [0, 0, 0, 1].

    Args:
        text: File contents.

    Returns:
        Parsed CalibrationPose.
    """
    lines = text.splitlines()
    # Pad so that short files read as zeros
    lines += [""] * max(0, 9 - len(lines))

    K = np.zeros((3, 3), dtype=np.float64)
    TR = np.zeros((4, 4), dtype=np.float64)

    for i in range(3):
        K[i, :] = _parse_row(lines[i], 3)

    # Line 4 is a separator
    for i in range(3):
        TR[i, :3] = _parse_row(lines[4 + i], 3)

    # Line 8 is a separator
    TR[:3, 3] = _parse_row(lines[8], 3)

    TR[3, :] = (0.0, 0.0, 0.0, 1.0)

    return CalibrationPose(K=torch.from_numpy(K), TR=torch.from_numpy(TR))


def read_calibration_file(path: str | Path) -> CalibrationPose:
    """Read a KRTD calibration file.

    Args:
        path: Path to the calibration file.

    Returns:
        Parsed CalibrationPose.

    Raises:
        CalibrationReadError: If the file cannot be opened.
    """
    path = Path(path)
    try:
        text = path.read_text(errors="replace")
    except OSError as e:
        raise CalibrationReadError(f"Unable to open krtd file: {path}") from e

    return parse_calibration_text(text)


def save_calibration_file(pose: CalibrationPose, path: str | Path) -> None:
    """Write a CalibrationPose in the KRTD layout read by read_calibration_file.

    Args:
        pose: Calibration to write.
        path: Output file path. Parent directories are created.
    """
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)

    K = pose.K.detach().cpu().numpy()
    TR = pose.TR.detach().cpu().numpy()

    def _row(values) -> str:
        return " ".join(repr(float(v)) for v in values)

    lines = [_row(K[i]) for i in range(3)]
    lines.append("")
    lines += [_row(TR[i, :3]) for i in range(3)]
    lines.append("")
    lines.append(_row(TR[:3, 3]))

    path.write_text("\n".join(lines) + "\n")
