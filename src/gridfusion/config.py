"""Configuration management for the GridFusion pipeline."""

import logging
from pathlib import Path
from typing import Any, Literal

import yaml
from pydantic import (
    BaseModel,
    ConfigDict,
    Field,
    ValidationError,
    field_validator,
    model_validator,
)

from .alignment import are_vectors_orthogonal

logger = logging.getLogger(__name__)

# Flat option names of the original command line, mapped to (section, field).
# A section of None means a top-level field.
LEGACY_KEYS = {
    "gridDims": ("grid", "dimensions"),
    "gridSpacing": ("grid", "spacing"),
    "gridOrigin": ("grid", "origin"),
    "gridVecX": ("grid", "vec_x"),
    "gridVecY": ("grid", "vec_y"),
    "gridVecZ": ("grid", "vec_z"),
    "outputGridFilename": (None, "output_path"),
    "dataFolder": ("inputs", "data_folder"),
    "depthMapFile": ("inputs", "depth_map_manifest"),
    "KRTFile": ("inputs", "calibration_manifest"),
    "rayThick": ("fusion", "ray_thickness"),
    "rayRho": ("fusion", "ray_rho"),
    "verbose": ("runtime", "verbose"),
}

VALID_OUTPUT_SUFFIXES = [".vts", ".vtk"]
PAIRING_POLICIES = ["legacy-skip", "strict-pairing"]


class ConfigurationError(ValueError):
    """Raised when the configuration is incomplete or inconsistent.

    Covers missing required fields, malformed grid parameters, and
    non-orthogonal alignment vectors. Always raised before any data I/O.
    """


class GridConfig(BaseModel):
    """Output grid geometry and world alignment.

    Attributes:
        dimensions: Number of grid points along x, y, z. Each must be > 0.
        spacing: Distance between grid points along x, y, z. Each must be > 0.
        origin: Position of the first grid point in the local grid frame.
        vec_x: Direction of the grid x axis in world space (row 0 of the
            alignment matrix).
        vec_y: Direction of the grid y axis in world space (row 1).
        vec_z: Direction of the grid z axis in world space (row 2).
        orthogonality_tolerance: Maximum absolute pairwise dot product still
            accepted as orthogonal. 0.0 requires exact zeros.
    """

    model_config = ConfigDict(extra="allow", frozen=True)

    dimensions: tuple[int, int, int]
    spacing: tuple[float, float, float]
    origin: tuple[float, float, float]
    vec_x: tuple[float, float, float] = (1.0, 0.0, 0.0)
    vec_y: tuple[float, float, float] = (0.0, 1.0, 0.0)
    vec_z: tuple[float, float, float] = (0.0, 0.0, 1.0)
    orthogonality_tolerance: float = Field(default=0.0, ge=0.0)

    @field_validator("dimensions")
    @classmethod
    def validate_dimensions(cls, v: tuple[int, int, int]) -> tuple[int, int, int]:
        """Validate that every grid dimension is positive."""
        if any(d <= 0 for d in v):
            raise ValueError(f"grid dimensions must all be > 0, got {v}")
        return v

    @field_validator("spacing")
    @classmethod
    def validate_spacing(
        cls, v: tuple[float, float, float]
    ) -> tuple[float, float, float]:
        """Validate that every grid spacing is positive."""
        if any(s <= 0 for s in v):
            raise ValueError(f"grid spacing must all be > 0, got {v}")
        return v

    @model_validator(mode="after")
    def check_orthogonal_basis(self) -> "GridConfig":
        """Reject alignment vectors that are not pairwise orthogonal."""
        if not are_vectors_orthogonal(
            self.vec_x, self.vec_y, self.vec_z, self.orthogonality_tolerance
        ):
            raise ValueError(
                f"Given vectors are not orthogonal: vec_x={self.vec_x}, "
                f"vec_y={self.vec_y}, vec_z={self.vec_z} "
                f"(tolerance {self.orthogonality_tolerance})"
            )
        return self

    @model_validator(mode="after")
    def warn_extra_fields(self) -> "GridConfig":
        """Warn about unknown configuration keys."""
        if self.__pydantic_extra__:
            logger.warning(
                "Unknown config keys in GridConfig (ignored): %s",
                list(self.__pydantic_extra__.keys()),
            )
        return self


class InputConfig(BaseModel):
    """Location of depth maps, calibrations and the manifests that pair them.

    Attributes:
        data_folder: Folder holding the manifests, depth maps and calibration
            files. Manifest entries are re-resolved against this folder.
        depth_map_manifest: Manifest listing one depth map per line.
        calibration_manifest: Manifest listing one calibration file per line.
        pairing_policy: How a blank depth-manifest line is handled.
            "legacy-skip" skips the depth line only (the calibration manifest
            is not advanced); "strict-pairing" skips both lines.
        depth_array: Point-data array read from VTK depth maps (None = pick
            "Depths", then the active scalars, then the first array).
        depth_scale: Divisor applied to depth maps stored as integer images.
    """

    model_config = ConfigDict(extra="allow", frozen=True)

    data_folder: str
    depth_map_manifest: str = "vtiList.txt"
    calibration_manifest: str = "kList.txt"
    pairing_policy: Literal["legacy-skip", "strict-pairing"] = "legacy-skip"
    depth_array: str | None = None
    depth_scale: float = Field(default=1.0, gt=0.0)

    @field_validator("data_folder", "depth_map_manifest", "calibration_manifest")
    @classmethod
    def validate_not_empty(cls, v: str) -> str:
        """Validate that paths and manifest names are not empty."""
        if not v.strip():
            raise ValueError("must not be empty")
        return v

    @model_validator(mode="after")
    def warn_extra_fields(self) -> "InputConfig":
        """Warn about unknown configuration keys."""
        if self.__pydantic_extra__:
            logger.warning(
                "Unknown config keys in InputConfig (ignored): %s",
                list(self.__pydantic_extra__.keys()),
            )
        return self


class FusionConfig(BaseModel):
    """Parameters handed to the fusion engine.

    Attributes:
        ray_thickness: Half-width of the ray potential band around the
            observed surface, in world units.
        ray_rho: Amplitude of the ray potential.
        use_accelerated: Run the fusion on the GPU when available.
        voxel_batch_size: Number of voxels processed per batch and view.
        scalar_name: Name of the fused point-data array in the output grid.
    """

    model_config = ConfigDict(extra="allow", frozen=True)

    ray_thickness: float = Field(default=2.0, gt=0.0)
    ray_rho: float = Field(default=3.0, gt=0.0)
    use_accelerated: bool = True
    voxel_batch_size: int = Field(default=262144, gt=0)
    scalar_name: str = "reconstruction_scalar"

    @model_validator(mode="after")
    def warn_extra_fields(self) -> "FusionConfig":
        """Warn about unknown configuration keys."""
        if self.__pydantic_extra__:
            logger.warning(
                "Unknown config keys in FusionConfig (ignored): %s",
                list(self.__pydantic_extra__.keys()),
            )
        return self


class RuntimeConfig(BaseModel):
    """Runtime settings.

    Attributes:
        device: Explicit PyTorch device. Overrides fusion.use_accelerated
            when set.
        verbose: Log debug information.
        quiet: Suppress progress bars.
    """

    model_config = ConfigDict(extra="allow", frozen=True)

    device: Literal["cpu", "cuda"] | None = None
    verbose: bool = False
    quiet: bool = False

    @model_validator(mode="after")
    def warn_extra_fields(self) -> "RuntimeConfig":
        """Warn about unknown configuration keys."""
        if self.__pydantic_extra__:
            logger.warning(
                "Unknown config keys in RuntimeConfig (ignored): %s",
                list(self.__pydantic_extra__.keys()),
            )
        return self


class PipelineConfig(BaseModel):
    """Top-level configuration for a GridFusion reconstruction.

    Built once at startup and never mutated; use with_overrides() to derive
    a modified copy.

    Attributes:
        output_path: Structured grid file written at the end of the run.
        grid: Output grid geometry and alignment.
        inputs: Depth map and calibration inputs.
        fusion: Fusion engine parameters.
        runtime: Runtime settings.
    """

    model_config = ConfigDict(extra="allow", frozen=True)

    output_path: str
    grid: GridConfig
    inputs: InputConfig
    fusion: FusionConfig = Field(default_factory=FusionConfig)
    runtime: RuntimeConfig = Field(default_factory=RuntimeConfig)

    @field_validator("output_path")
    @classmethod
    def validate_output_path(cls, v: str) -> str:
        """Validate that the output path is set and has a grid suffix."""
        if not v.strip():
            raise ValueError("must not be empty")
        suffix = Path(v).suffix.lower()
        if suffix not in VALID_OUTPUT_SUFFIXES:
            raise ValueError(
                f"unsupported output format {suffix!r}. "
                f"Valid suffixes: {VALID_OUTPUT_SUFFIXES}"
            )
        return v

    @model_validator(mode="after")
    def warn_extra_fields(self) -> "PipelineConfig":
        """Warn about unknown top-level keys."""
        if self.__pydantic_extra__:
            logger.warning(
                "Unknown config keys in PipelineConfig (ignored): %s",
                list(self.__pydantic_extra__.keys()),
            )
        return self

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "PipelineConfig":
        """Build a configuration from a (possibly legacy) dictionary.

        Args:
            data: Nested configuration dictionary. Flat option names of the
                original command line are migrated first.

        Returns:
            Validated configuration.

        Raises:
            ConfigurationError: If validation fails (with all errors collected).
        """
        data = cls._migrate_legacy_config(data)
        try:
            return cls.model_validate(data)
        except ValidationError as e:
            formatted_errors = format_validation_errors(e)
            raise ConfigurationError(
                f"Configuration validation failed:\n{formatted_errors}"
            ) from None

    @classmethod
    def from_yaml(cls, path: str | Path) -> "PipelineConfig":
        """Load configuration from a YAML file.

        Args:
            path: Path to YAML configuration file.

        Returns:
            Loaded configuration with defaults filled in.

        Raises:
            FileNotFoundError: If the file does not exist.
            yaml.YAMLError: If the file is not valid YAML.
            ConfigurationError: If validation fails.
        """
        path = Path(path)
        with open(path) as f:
            data = yaml.safe_load(f)

        if data is None:
            data = {}
        if not isinstance(data, dict):
            raise ConfigurationError(
                f"Configuration file must contain a mapping, got {type(data).__name__}"
            )

        for section in ("fusion", "runtime"):
            if section not in data:
                logger.info("Using default: %s (all defaults)", section)

        return cls.from_dict(data)

    @staticmethod
    def _migrate_legacy_config(data: dict[str, Any]) -> dict[str, Any]:
        """Move flat legacy option names into the nested structure.

        Args:
            data: Configuration dictionary.

        Returns:
            Migrated copy of the dictionary.
        """
        migrated = {
            key: dict(value) if isinstance(value, dict) else value
            for key, value in data.items()
        }

        for old_key, (section, field) in LEGACY_KEYS.items():
            if old_key not in migrated:
                continue
            logger.info("Migrating legacy config key '%s' to new structure", old_key)
            value = migrated.pop(old_key)
            if section is None:
                migrated[field] = value
            else:
                migrated.setdefault(section, {})[field] = value

        # noCuda is the negation of use_accelerated
        if "noCuda" in migrated:
            logger.info("Migrating legacy config key 'noCuda' to new structure")
            no_cuda = migrated.pop("noCuda")
            migrated.setdefault("fusion", {})["use_accelerated"] = not no_cuda

        return migrated

    def to_yaml(self, path: str | Path) -> None:
        """Save configuration to a YAML file.

        All fields including defaults are written for explicitness.

        Args:
            path: Path to output YAML file.
        """
        path = Path(path)
        path.parent.mkdir(parents=True, exist_ok=True)

        data = self.model_dump(mode="json")

        with open(path, "w") as f:
            yaml.safe_dump(data, f, default_flow_style=False, sort_keys=False)

    def with_overrides(self, **sections: dict[str, Any]) -> "PipelineConfig":
        """Return a validated copy with some section fields replaced.

        Args:
            **sections: Section name to a dict of field overrides, e.g.
                ``runtime={"device": "cuda"}``. Top-level fields may be
                passed directly (``output_path="out.vts"``).

        Returns:
            New configuration. The original is left untouched.

        Raises:
            ConfigurationError: If the resulting configuration is invalid.
        """
        data = self.model_dump()
        for key, value in sections.items():
            if isinstance(value, dict) and isinstance(data.get(key), dict):
                data[key].update(value)
            else:
                data[key] = value
        return self.from_dict(data)


def format_validation_errors(error: ValidationError) -> str:
    """Format Pydantic validation errors with YAML-style paths.

    Args:
        error: Pydantic ValidationError.

    Returns:
        Formatted error string with YAML paths and messages.
    """
    lines = []
    for err in error.errors():
        loc = err["loc"]
        path_parts = []
        for part in loc:
            if isinstance(part, int) and path_parts:
                path_parts[-1] = f"{path_parts[-1]}[{part}]"
            else:
                path_parts.append(str(part))

        path = ".".join(path_parts) or "<root>"
        msg = err["msg"]
        lines.append(f"  {path}: {msg}")

    return "\n".join(lines)
