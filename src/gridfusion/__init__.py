"""Fusion of calibrated depth maps into a world-aligned scalar volume."""

from .alignment import (
    are_vectors_orthogonal,
    build_grid_matrix,
    format_grid_matrix,
    transform_points,
)
from .calibration import (
    CalibrationPose,
    CalibrationReadError,
    parse_calibration_text,
    read_calibration_file,
    save_calibration_file,
)
from .catalog import (
    EmptyCatalogError,
    ManifestOpenError,
    PairingPolicy,
    ReconstructionCatalog,
    ReconstructionRecord,
    load_catalog,
    manifest_entry_name,
)
from .config import (
    ConfigurationError,
    FusionConfig,
    GridConfig,
    InputConfig,
    PipelineConfig,
    RuntimeConfig,
)
from .fusion import FusionResult, RayPotentialFusionEngine, compute_ray_potential
from .io import (
    DepthMapReadError,
    load_depth_map,
    load_structured_grid,
    save_depth_map,
    save_structured_grid,
)
from .pipeline import (
    FusionEngine,
    Pipeline,
    ReconstructionContext,
    build_reconstruction_context,
    run_pipeline,
)
from .volume import GridSpec, allocate_volume, apply_grid_matrix, voxel_positions

__version__ = "0.1.0"

__all__ = [
    "PipelineConfig",
    "GridConfig",
    "InputConfig",
    "FusionConfig",
    "RuntimeConfig",
    "ConfigurationError",
    "CalibrationPose",
    "CalibrationReadError",
    "parse_calibration_text",
    "read_calibration_file",
    "save_calibration_file",
    "PairingPolicy",
    "ReconstructionRecord",
    "ReconstructionCatalog",
    "ManifestOpenError",
    "EmptyCatalogError",
    "manifest_entry_name",
    "load_catalog",
    "are_vectors_orthogonal",
    "build_grid_matrix",
    "format_grid_matrix",
    "transform_points",
    "GridSpec",
    "allocate_volume",
    "voxel_positions",
    "apply_grid_matrix",
    "DepthMapReadError",
    "load_depth_map",
    "save_depth_map",
    "save_structured_grid",
    "load_structured_grid",
    "FusionResult",
    "RayPotentialFusionEngine",
    "compute_ray_potential",
    "FusionEngine",
    "ReconstructionContext",
    "build_reconstruction_context",
    "run_pipeline",
    "Pipeline",
]
