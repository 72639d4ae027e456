"""Pairing depth maps with calibrations into an ordered reconstruction catalog."""

import logging
from collections.abc import Callable, Iterator
from dataclasses import dataclass
from enum import Enum
from pathlib import Path

import torch

from .calibration import CalibrationPose, CalibrationReadError, read_calibration_file
from .io import load_depth_map

logger = logging.getLogger(__name__)


class ManifestOpenError(OSError):
    """Raised when the depth map or calibration manifest cannot be opened."""


class EmptyCatalogError(RuntimeError):
    """Raised when no usable (depth map, calibration) pair was loaded."""


class PairingPolicy(str, Enum):
    """How a blank line in the depth map manifest is handled.

    - LEGACY_SKIP: skip the depth line only. The calibration manifest is not
      advanced, so every later depth map is paired with the calibration one
      line above its own.
    - STRICT_PAIRING: skip the depth line and its calibration line, keeping
      both manifests aligned by line number.
    """

    LEGACY_SKIP = "legacy-skip"
    STRICT_PAIRING = "strict-pairing"


@dataclass
class ReconstructionRecord:
    """One depth map paired with the calibration of its view.

    Attributes:
        depth_map: Depth image, shape (H, W), float32.
        pose: Intrinsic and extrinsic calibration.
        depth_map_path: File the depth map was read from.
        calibration_path: File the calibration was read from.
    """

    depth_map: torch.Tensor  # shape (H, W), float32
    pose: CalibrationPose
    depth_map_path: Path
    calibration_path: Path

    @property
    def K(self) -> torch.Tensor:
        """Intrinsic matrix, shape (3, 3)."""
        return self.pose.K

    @property
    def TR(self) -> torch.Tensor:
        """Extrinsic pose (world to camera), shape (4, 4)."""
        return self.pose.TR


class ReconstructionCatalog:
    """Ordered sequence of reconstruction records.

    Order is the order in which records were accepted from the manifests,
    which does not necessarily match manifest line numbers.

    Args:
        records: Initial records, in order.
    """

    def __init__(self, records: list[ReconstructionRecord] | None = None):
        self._records: list[ReconstructionRecord] = list(records or [])

    def append(self, record: ReconstructionRecord) -> None:
        """Add a record at the end of the catalog."""
        self._records.append(record)

    def clear(self) -> None:
        """Release all records."""
        self._records.clear()

    def __len__(self) -> int:
        return len(self._records)

    def __iter__(self) -> Iterator[ReconstructionRecord]:
        return iter(self._records)

    def __getitem__(self, index: int) -> ReconstructionRecord:
        return self._records[index]

    def __repr__(self) -> str:
        return f"ReconstructionCatalog({len(self._records)} records)"


def manifest_entry_name(line: str) -> str | None:
    """Extract the file name of a manifest entry.

    Entries may carry a path prefix from another machine; only the last
    "/"-separated segment is kept. Surrounding whitespace (including "\\r")
    and trailing slashes are ignored.

    Args:
        line: Raw manifest line.

    Returns:
        File name, or None for a blank entry.
    """
    entry = line.strip().rstrip("/")
    if not entry:
        return None
    return entry.split("/")[-1] or None


def _read_manifest(path: Path) -> list[str]:
    try:
        with open(path) as f:
            return f.read().splitlines()
    except OSError as e:
        raise ManifestOpenError(
            f"Unable to open file which contains depth map or matrix path: {path}"
        ) from e


def load_catalog(
    data_folder: str | Path,
    depth_map_manifest: str | Path,
    calibration_manifest: str | Path,
    policy: PairingPolicy | str = PairingPolicy.LEGACY_SKIP,
    depth_loader: Callable[[Path], torch.Tensor] | None = None,
) -> ReconstructionCatalog:
    """Read both manifests and build the ordered reconstruction catalog.

    The manifests are read line by line in lockstep. For each depth map
    line, the file name is re-resolved inside ``data_folder`` and the depth
    map is loaded; the next calibration line is resolved the same way and
    parsed. Pairs whose calibration cannot be read are skipped (the loaded
    depth map is discarded) and loading continues.

    Blank depth map lines are skipped. Whether the matching calibration line
    is consumed as well depends on ``policy`` (see PairingPolicy).

    Args:
        data_folder: Folder containing the manifests, depth maps and
            calibration files.
        depth_map_manifest: Depth map manifest, relative to ``data_folder``
            (or absolute).
        calibration_manifest: Calibration manifest, relative to
            ``data_folder`` (or absolute).
        policy: Blank line pairing policy.
        depth_loader: Callable reading one depth map path into a (H, W)
            tensor. Defaults to io.load_depth_map.

    Returns:
        Non-empty ReconstructionCatalog.

    Raises:
        ManifestOpenError: If either manifest cannot be opened.
        DepthMapReadError: If a listed depth map cannot be read.
        EmptyCatalogError: If no pair survived.
    """
    data_folder = Path(data_folder)
    policy = PairingPolicy(policy)
    if depth_loader is None:
        depth_loader = load_depth_map

    logger.info("Reading depth map and calibration manifests")
    depth_lines = _read_manifest(data_folder / depth_map_manifest)
    calibration_lines = _read_manifest(data_folder / calibration_manifest)

    catalog = ReconstructionCatalog()
    calibration_cursor = 0

    for line_number, depth_line in enumerate(depth_lines, start=1):
        depth_name = manifest_entry_name(depth_line)
        if depth_name is None:
            if policy is PairingPolicy.STRICT_PAIRING:
                calibration_cursor += 1
            continue

        depth_path = data_folder / depth_name
        depth_map = depth_loader(depth_path)

        if calibration_cursor >= len(calibration_lines):
            logger.warning(
                "Calibration manifest exhausted at depth map line %d (%s), skipping",
                line_number,
                depth_name,
            )
            continue
        calibration_line = calibration_lines[calibration_cursor]
        calibration_cursor += 1

        calibration_name = manifest_entry_name(calibration_line)
        if calibration_name is None:
            logger.warning(
                "Blank calibration entry for depth map %s, skipping", depth_name
            )
            continue

        calibration_path = data_folder / calibration_name
        try:
            pose = read_calibration_file(calibration_path)
        except CalibrationReadError as e:
            logger.warning("%s (skipping depth map %s)", e, depth_name)
            continue

        logger.debug("Paired %s with %s", depth_name, calibration_name)
        catalog.append(
            ReconstructionRecord(
                depth_map=depth_map,
                pose=pose,
                depth_map_path=depth_path,
                calibration_path=calibration_path,
            )
        )

    if len(catalog) == 0:
        raise EmptyCatalogError(
            f"No usable depth map / calibration pair found in {data_folder}"
        )

    logger.info("%d depth maps have been loaded", len(catalog))
    return catalog
