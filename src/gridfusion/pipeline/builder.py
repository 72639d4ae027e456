"""Reconstruction context builder for one-time initialization."""

import logging

import torch

from ..alignment import build_grid_matrix
from ..catalog import load_catalog
from ..config import PipelineConfig
from ..fusion import RayPotentialFusionEngine
from ..io import load_depth_map
from ..volume import GridSpec
from .context import ReconstructionContext
from .interfaces import FusionEngine

logger = logging.getLogger(__name__)


def resolve_device(config: PipelineConfig) -> str:
    """Pick the PyTorch device for the fusion engine.

    runtime.device wins when set; otherwise fusion.use_accelerated selects
    CUDA. Requesting CUDA on a machine without it falls back to CPU.

    Args:
        config: Full pipeline configuration.

    Returns:
        "cpu" or "cuda".
    """
    if config.runtime.device is not None:
        device = config.runtime.device
    else:
        device = "cuda" if config.fusion.use_accelerated else "cpu"

    if device == "cuda" and not torch.cuda.is_available():
        logger.warning(
            "Accelerated fusion requested but CUDA is not available. "
            "Falling back to CPU."
        )
        device = "cpu"

    return device


def create_engine(config: PipelineConfig, device: str) -> FusionEngine:
    """Create the default ray potential fusion engine.

    Args:
        config: Full pipeline configuration.
        device: Device the engine runs on.

    Returns:
        RayPotentialFusionEngine.
    """
    return RayPotentialFusionEngine(device=device, show_progress=not config.runtime.quiet)


def build_reconstruction_context(
    config: PipelineConfig,
    engine: FusionEngine | None = None,
) -> ReconstructionContext:
    """Perform one-time reconstruction initialization.

    Loads and pairs all depth maps with their calibrations, then builds the
    grid alignment matrix and grid geometry. The configuration was already
    validated (including basis orthogonality) when it was constructed.

    Args:
        config: Full pipeline configuration.
        engine: Fusion engine to use. Defaults to a RayPotentialFusionEngine
            on the resolved device.

    Returns:
        ReconstructionContext with all precomputed data.

    Raises:
        ManifestOpenError: If a manifest cannot be opened.
        DepthMapReadError: If a listed depth map cannot be read.
        EmptyCatalogError: If no usable pair was found.
    """
    inputs = config.inputs

    # 1. Catalog
    logger.info("Loading depth maps from %s", inputs.data_folder)
    catalog = load_catalog(
        inputs.data_folder,
        inputs.depth_map_manifest,
        inputs.calibration_manifest,
        policy=inputs.pairing_policy,
        depth_loader=lambda path: load_depth_map(
            path, array_name=inputs.depth_array, depth_scale=inputs.depth_scale
        ),
    )

    # 2. Grid matrix from the alignment vectors
    grid = config.grid
    grid_matrix = build_grid_matrix(grid.vec_x, grid.vec_y, grid.vec_z)

    # 3. Grid geometry
    grid_spec = GridSpec.from_config(grid)
    logger.info(
        "Grid: dimensions %s, spacing %s, origin %s",
        grid_spec.dimensions,
        grid_spec.spacing,
        grid_spec.origin,
    )

    # 4. Engine
    device = resolve_device(config)
    if engine is None:
        engine = create_engine(config, device)

    return ReconstructionContext(
        config=config,
        catalog=catalog,
        grid_spec=grid_spec,
        grid_matrix=grid_matrix,
        engine=engine,
        device=device,
    )
